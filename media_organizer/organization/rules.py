"""
Destination naming rules.

Everything here is a pure function of the media file, the run settings,
the duplicate flag and the sequence number: no filesystem or journal access.
"""
import os
from pathlib import Path
from typing import Tuple

from .. import config
from ..config import OrganizationScheme, OrganizerSettings
from ..models import MediaFile, MediaType


def date_parts(media: MediaFile) -> Tuple[str, str, str]:
    """('2024', '2024-01', '2024-01-15')"""
    dt = media.creation_time
    return dt.strftime("%Y"), dt.strftime("%Y-%m"), dt.strftime("%Y-%m-%d")


def strip_extensions(name: str) -> str:
    """'IMG_1.tar.jpg' -> 'IMG_1'"""
    stem = name
    while True:
        root, ext = os.path.splitext(stem)
        if not ext:
            return stem
        stem = root


def build_directory(media: MediaFile, settings: OrganizerSettings, is_duplicate: bool) -> Path:
    ext = media.extension
    dated = date_parts(media)
    dup_dir = Path(settings.duplicates_dir)

    if is_duplicate and dup_dir.is_absolute():
        return dup_dir.joinpath(*dated)

    override = settings.extension_dirs.get(ext)
    if override is not None:
        if is_duplicate:
            return override.joinpath(settings.duplicates_dir, *dated)
        return override.joinpath(*dated)

    if settings.scheme is OrganizationScheme.DATE_FIRST:
        base = settings.destination or settings.dest_dirs[media.media_type.value]
        if is_duplicate:
            base = base / settings.duplicates_dir
        return base.joinpath(*dated, ext)

    base = settings.dest_dirs[media.media_type.value] / ext
    if is_duplicate:
        base = base / settings.duplicates_dir
    return base.joinpath(*dated)


def build_filename(media: MediaFile, settings: OrganizerSettings, sequence_num: int = 0) -> str:
    timestamp = media.creation_time.strftime(config.TIMESTAMP_FORMAT)
    date_first = settings.scheme is OrganizationScheme.DATE_FIRST

    dimension = ""
    if media.larger_dimension > 0 and (not date_first or media.media_type is MediaType.IMAGE):
        dimension = f"_{media.larger_dimension}"

    name_part = ""
    stem = strip_extensions(media.original_name)
    # Already-organized names start with the timestamp; don't nest them again
    if stem and not settings.no_original_name and not stem.startswith(timestamp):
        replacement = settings.space_replacement
        if replacement and replacement.strip():
            stem = stem.replace(" ", replacement)
        name_part = f"_{stem}" if date_first else f" ({stem})"

    sequence = config.SEQUENCE_FORMAT.format(sequence_num) if sequence_num > 0 else ""
    return f"{timestamp}{dimension}{name_part}{sequence}.{media.extension}"


def assign_destination(media: MediaFile,
                       settings: OrganizerSettings,
                       is_duplicate: bool = False,
                       sequence_num: int = 0) -> Tuple[Path, str]:
    """Returns (directory, filename) for a media file."""
    return (
        build_directory(media, settings, is_duplicate),
        build_filename(media, settings, sequence_num),
    )
