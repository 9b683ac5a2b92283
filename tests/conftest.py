import pytest
import sqlite3
from datetime import datetime
from pathlib import Path

from media_organizer.config import OrganizerSettings
from media_organizer.database.db import DBManager
from media_organizer.database.ops import Journal
from media_organizer.database.schema import init_schema
from media_organizer.exceptions import MetadataExtractionError
from media_organizer.models import FileRecord, MediaFile, media_type_for

DEFAULT_TIME = datetime(2024, 1, 15, 10, 30, 0)


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
    init_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def journal(conn):
    """Returns a Journal attached to the in-memory DB."""
    return Journal(conn)


@pytest.fixture
def disk_journal(tmp_path):
    """Journal backed by a real WAL database file, for multi-threaded runs."""
    manager = DBManager(tmp_path / "journal.db")
    conn = manager.connect()
    try:
        yield Journal(conn, manager.lock)
    finally:
        manager.close()


@pytest.fixture
def make_settings(tmp_path):
    """Settings factory with every destination under tmp_path/out."""
    def _make(**overrides):
        out = tmp_path / "out"
        kwargs = dict(
            source_dir=tmp_path / "src",
            dest_dirs={
                'image': out / "images",
                'video': out / "videos",
                'audio': out / "audio",
            },
            db_path=tmp_path / "journal.db",
        )
        kwargs.update(overrides)
        return OrganizerSettings(**kwargs)
    return _make


def write_file(path: Path, content: bytes = b"data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def make_record(source_path: str, size: int = 100, created: datetime = DEFAULT_TIME,
                ext: str = "jpg", media_type: str = "image", **kwargs) -> FileRecord:
    ts = created.strftime("%Y%m%d-%H%M%S")
    fields = dict(
        source_path=source_path,
        file_size=size,
        media_type=media_type,
        extension=ext,
        creation_time=created.strftime("%Y-%m-%d %H:%M:%S"),
        original_name=Path(source_path).name,
        timestamp_key=f"{ts}_{media_type}_.{ext}",
    )
    fields.update(kwargs)
    return FileRecord(**fields)


class FakeExtractor:
    """
    Deterministic stand-in for MetadataExtractor: creation times come from
    `times` (keyed by file name) instead of embedded metadata.
    """

    def __init__(self, times=None, dimension: int = 0, fail_names=()):
        self.times = times or {}
        self.dimension = dimension
        self.fail_names = set(fail_names)

    def extract(self, path: Path) -> MediaFile:
        if path.name in self.fail_names:
            raise MetadataExtractionError(f"cannot read {path}")
        media_type = media_type_for(path)
        if media_type is None:
            raise MetadataExtractionError(f"unsupported file type: {path}")
        return MediaFile(
            source_path=path,
            media_type=media_type,
            size_bytes=path.stat().st_size,
            creation_time=self.times.get(path.name, DEFAULT_TIME),
            larger_dimension=self.dimension,
        )
