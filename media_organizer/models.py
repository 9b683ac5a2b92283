from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from . import config


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class FileStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    DRY_RUN = "dry_run"
    # Placeholder rows for files already sitting in a destination tree
    DEST_INDEX = "dest_index"


def media_type_for(path: Path) -> Optional[MediaType]:
    """Classifies a path by extension; None for anything that is not media."""
    ftype = config.EXT_TO_TYPE.get(path.suffix.lower())
    return MediaType(ftype) if ftype else None


def format_db_time(dt: datetime) -> str:
    return dt.strftime(config.DB_TIME_FORMAT)


def parse_db_time(value: str) -> datetime:
    return datetime.strptime(value, config.DB_TIME_FORMAT)


@dataclass
class MediaFile:
    """
    Metadata extracted from a single source file.
    """
    source_path: Path
    media_type: MediaType
    size_bytes: int
    creation_time: datetime
    larger_dimension: int = 0   # images only, 0 when unknown
    original_name: str = ""

    def __post_init__(self):
        if not self.original_name:
            self.original_name = self.source_path.name

    @property
    def extension(self) -> str:
        """Lower-case extension without the dot."""
        return config.normalize_extension(self.source_path.suffix)

    @property
    def timestamp_key(self) -> str:
        # creation time + type + extension: files sharing it would collide on name
        ts = self.creation_time.strftime(config.TIMESTAMP_FORMAT)
        return f"{ts}_{self.media_type.value}_.{self.extension}"


@dataclass
class FileRecord:
    """
    One row of the journal's files table.
    """
    source_path: str
    file_size: int
    media_type: str
    extension: str
    creation_time: str
    original_name: str
    timestamp_key: str
    larger_dimension: int = 0
    hash: str = ""
    dest_path: str = ""
    sequence_num: int = 0
    is_duplicate: bool = False
    status: FileStatus = FileStatus.PENDING
    error_message: str = ""
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_media(cls, media: MediaFile) -> "FileRecord":
        return cls(
            source_path=str(media.source_path),
            file_size=media.size_bytes,
            media_type=media.media_type.value,
            extension=media.extension,
            creation_time=format_db_time(media.creation_time),
            original_name=media.original_name,
            timestamp_key=media.timestamp_key,
            larger_dimension=media.larger_dimension,
        )

    def to_media(self) -> MediaFile:
        """Rebuilds the extractor view of this row (for re-planning)."""
        return MediaFile(
            source_path=Path(self.source_path),
            media_type=MediaType(self.media_type),
            size_bytes=self.file_size,
            creation_time=parse_db_time(self.creation_time),
            larger_dimension=self.larger_dimension,
            original_name=self.original_name,
        )


@dataclass
class DestinationEntry:
    """A file already present under a destination directory."""
    path: Path
    size_bytes: int
    media_type: MediaType
    extension: str


@dataclass
class TransferJob:
    record_id: int
    source_path: Path
    dest_path: Path


@dataclass
class ScanResult:
    total_files: int = 0
    processed_files: int = 0
    skipped_files: int = 0
    organized_files: int = 0
    error_count: int = 0
    duplicate_count: int = 0
    interrupted: bool = False
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()
