"""
Configuration constants and run settings for the media organizer.
"""
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .exceptions import ConfigError

# --- File Type Definitions ---
IMAGE_EXTS = {
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.tiff', '.tif',
    '.nef', '.arw', '.cr2', '.cr3', '.dng', '.heic', '.raf',
}
VIDEO_EXTS = {
    '.mp4', '.avi', '.mov', '.mkv', '.wmv', '.flv', '.webm', '.m4v', '.mpeg',
    '.mpg', '.3gp', '.asf', '.m2v', '.vob', '.mts', '.m2ts',
}
AUDIO_EXTS = {'.mp3', '.wav', '.aac', '.ogg', '.flac', '.m4a', '.wma', '.amr'}

# Extension to Type Mapping
EXT_TO_TYPE = {}
for ext in IMAGE_EXTS: EXT_TO_TYPE[ext] = 'image'
for ext in VIDEO_EXTS: EXT_TO_TYPE[ext] = 'video'
for ext in AUDIO_EXTS: EXT_TO_TYPE[ext] = 'audio'

MEDIA_TYPES = ('image', 'video', 'audio')

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]

# MediaInfo general-track fields, most trustworthy first
MEDIAINFO_DATE_FIELDS = ['recorded_date', 'encoded_date', 'tagged_date']

EXIFTOOL_DATE_FIELDS = ['CreateDate', 'CreationDate', 'DateTimeOriginal', 'MediaCreateDate']

# --- Hashing ---
HASH_CHUNK_SIZE = 1024 * 1024  # 1 MB chunks for reading

# --- Naming ---
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
SEQUENCE_FORMAT = "_{:03d}"

# --- Journal ---
DEFAULT_DB_NAME = ".mediaorganizer.db"
DB_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DB_BUSY_TIMEOUT_MS = 5000
# Companion files SQLite creates next to the database in WAL mode
JOURNAL_SUFFIXES = ("", "-wal", "-shm", "-journal")

# Placeholder values for rows indexed from existing destination trees
DEST_INDEX_KEY = "dest_index"
DEST_INDEX_CREATION_TIME = "1970-01-01 00:00:00"

# --- Pipeline ---
QUEUE_SIZE = 100
PROGRESS_INTERVAL = 5.0  # seconds between progress refreshes

# --- Defaults ---
DEFAULT_DEST_DIRS = {
    'image': './output/images',
    'video': './output/videos',
    'audio': './output/audio',
}
DEFAULT_CONCURRENT_JOBS = 4
DEFAULT_DUPLICATES_DIR = "duplicates"
DEFAULT_SPACE_REPLACEMENT = "_"


class OrganizationScheme(str, Enum):
    # <dest>/<ext>/YYYY/YYYY-MM/YYYY-MM-DD/filename
    EXTENSION_FIRST = "extension_first"
    # <dest>/YYYY/YYYY-MM/YYYY-MM-DD/<ext>/filename
    DATE_FIRST = "date_first"


VALID_SCHEMES = [s.value for s in OrganizationScheme]


def is_valid_scheme(value: str) -> bool:
    return value in VALID_SCHEMES


def normalize_extension(ext: str) -> str:
    """'.JPG' -> 'jpg'"""
    return ext.strip().lstrip('.').lower()


def _abs(p) -> Path:
    return Path(os.path.abspath(os.path.expanduser(str(p))))


@dataclass
class OrganizerSettings:
    """
    Validated configuration for one organizer run.

    Directories are stored as absolute paths. `extension_dirs` is keyed by
    the lower-case extension without the dot.
    """
    source_dir: Path
    destination: Optional[Path] = None
    dest_dirs: Dict[str, Path] = field(default_factory=lambda: dict(DEFAULT_DEST_DIRS))
    extension_dirs: Dict[str, Path] = field(default_factory=dict)
    scheme: OrganizationScheme = OrganizationScheme.EXTENSION_FIRST
    duplicates_dir: str = DEFAULT_DUPLICATES_DIR
    space_replacement: str = DEFAULT_SPACE_REPLACEMENT
    no_original_name: bool = False
    dry_run: bool = False
    copy_files: bool = False
    delete_empty_dirs: bool = False
    concurrent_jobs: int = DEFAULT_CONCURRENT_JOBS
    db_path: Optional[Path] = None
    fresh: bool = False
    verbose: bool = False
    log_file: Optional[Path] = None

    def __post_init__(self):
        if not self.source_dir:
            raise ConfigError("source directory is required")
        self.source_dir = _abs(self.source_dir)

        scheme = self.scheme.value if isinstance(self.scheme, OrganizationScheme) else str(self.scheme)
        if not is_valid_scheme(scheme):
            raise ConfigError(
                f"invalid organization scheme: {scheme} (valid: {', '.join(VALID_SCHEMES)})"
            )
        self.scheme = OrganizationScheme(scheme)

        try:
            self.concurrent_jobs = int(self.concurrent_jobs)
        except (TypeError, ValueError):
            raise ConfigError(f"invalid number of concurrent jobs: {self.concurrent_jobs}")
        if self.concurrent_jobs < 1:
            raise ConfigError("concurrent jobs must be at least 1")

        if self.destination:
            self.destination = _abs(self.destination)
        else:
            self.destination = None

        dest_dirs = dict(DEFAULT_DEST_DIRS)
        dest_dirs.update({k: v for k, v in self.dest_dirs.items() if v})
        for media_type in dest_dirs:
            if media_type not in MEDIA_TYPES:
                raise ConfigError(f"unknown media type in destinations: {media_type}")
        self.dest_dirs = {k: _abs(v) for k, v in dest_dirs.items()}

        self.extension_dirs = {
            normalize_extension(k): _abs(v) for k, v in self.extension_dirs.items() if v
        }

        self.duplicates_dir = str(self.duplicates_dir or DEFAULT_DUPLICATES_DIR)
        if self.space_replacement is None:
            self.space_replacement = DEFAULT_SPACE_REPLACEMENT

        if self.db_path:
            self.db_path = _abs(self.db_path)
        else:
            self.db_path = self.source_dir / DEFAULT_DB_NAME

        if self.log_file:
            self.log_file = _abs(self.log_file)

    @property
    def journal_files(self) -> List[Path]:
        """The journal database and its SQLite companion files."""
        return [Path(f"{self.db_path}{suffix}") for suffix in JOURNAL_SUFFIXES]

    def destination_roots(self) -> List[Path]:
        """Every configured destination directory, without repeats."""
        roots: List[Path] = []
        candidates = []
        if self.scheme is OrganizationScheme.DATE_FIRST and self.destination:
            candidates.append(self.destination)
        candidates.extend(self.dest_dirs.values())
        candidates.extend(self.extension_dirs.values())
        dup = Path(self.duplicates_dir)
        if dup.is_absolute():
            candidates.append(dup)
        for c in candidates:
            if c not in roots:
                roots.append(c)
        return roots

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "OrganizerSettings":
        """
        Builds settings from config-file style keys
        (source, destination, destinations, extension_destinations, ...).
        """
        known = {
            'source': 'source_dir',
            'destination': 'destination',
            'destinations': 'dest_dirs',
            'extension_destinations': 'extension_dirs',
            'organization_scheme': 'scheme',
            'duplicates_dir': 'duplicates_dir',
            'space_replacement': 'space_replacement',
            'no_original_name': 'no_original_name',
            'dry_run': 'dry_run',
            'copy_files': 'copy_files',
            'delete_empty_dirs': 'delete_empty_dirs',
            'concurrent_jobs': 'concurrent_jobs',
            'db_path': 'db_path',
            'fresh': 'fresh',
            'verbose': 'verbose',
            'log_file': 'log_file',
        }
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logging.warning(f"Ignoring unknown configuration key: {key}")
                continue
            if value is None:
                continue
            kwargs[known[key]] = value

        for map_key in ('dest_dirs', 'extension_dirs'):
            if map_key in kwargs and not isinstance(kwargs[map_key], dict):
                raise ConfigError(f"'{map_key}' must be a mapping")

        if 'source_dir' not in kwargs:
            raise ConfigError("source directory is required")
        return cls(**kwargs)


def load_config_file(path: Path) -> Dict[str, Any]:
    """Reads a YAML (or JSON) configuration file into a plain dict."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"error reading config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"error parsing config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping at the top level")
    logging.debug(f"Loaded configuration from file: {path}")
    return data
