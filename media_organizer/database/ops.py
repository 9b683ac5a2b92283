import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .. import config
from ..exceptions import AlreadyExistsError, JournalError
from ..models import DestinationEntry, FileRecord, FileStatus

_COLUMNS = """id, source_path, file_size, media_type, extension, creation_time,
    larger_dimension, original_name, timestamp_key, hash, dest_path,
    sequence_num, is_duplicate, status, error_message, created_at, updated_at"""


def _now() -> str:
    return datetime.now(UTC).strftime(config.DB_TIME_FORMAT)


def _row_to_record(row) -> FileRecord:
    (file_id, source_path, file_size, media_type, extension, creation_time,
     larger_dimension, original_name, timestamp_key, hash_value, dest_path,
     sequence_num, is_duplicate, status, error_message, created_at, updated_at) = row
    return FileRecord(
        id=file_id,
        source_path=source_path,
        file_size=file_size,
        media_type=media_type,
        extension=extension,
        creation_time=creation_time,
        larger_dimension=larger_dimension,
        original_name=original_name,
        timestamp_key=timestamp_key,
        hash=hash_value,
        dest_path=dest_path,
        sequence_num=sequence_num,
        is_duplicate=bool(is_duplicate),
        status=FileStatus(status),
        error_message=error_message,
        created_at=created_at,
        updated_at=updated_at,
    )


class Journal:
    """
    Durable record of every file the organizer has seen.

    All statements run in autocommit mode on a connection shared between
    pipeline threads, serialized by `lock`. Storage errors surface as
    JournalError.
    """

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self.lock = lock or threading.RLock()

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        with self.lock:
            try:
                yield self.conn.cursor()
            except sqlite3.Error as e:
                raise JournalError(str(e)) from e

    # --- Writes ---

    def insert(self, rec: FileRecord) -> int:
        """
        Inserts a new record and returns its id.
        Raises AlreadyExistsError if the source path is already journaled.
        """
        now = _now()
        with self.lock:
            try:
                cur = self.conn.execute(f"""
                    INSERT INTO files (source_path, file_size, media_type, extension, creation_time,
                        larger_dimension, original_name, timestamp_key, hash, dest_path,
                        sequence_num, is_duplicate, status, error_message, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    rec.source_path, rec.file_size, rec.media_type, rec.extension, rec.creation_time,
                    rec.larger_dimension, rec.original_name, rec.timestamp_key, rec.hash, rec.dest_path,
                    rec.sequence_num, int(rec.is_duplicate), FileStatus(rec.status).value,
                    rec.error_message, now, now,
                ))
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e) and "source_path" in str(e):
                    raise AlreadyExistsError(rec.source_path) from e
                raise JournalError(f"insert file: {e}") from e
            except sqlite3.Error as e:
                raise JournalError(f"insert file: {e}") from e

        if cur.lastrowid is None:
            raise JournalError("Database INSERT failed to return a row ID.")
        rec.id = cur.lastrowid
        return cur.lastrowid

    def update_status(self, file_id: int, status: FileStatus, error_message: str = ""):
        with self._cursor() as cur:
            cur.execute(
                "UPDATE files SET status = ?, error_message = ?, updated_at = ? WHERE id = ?",
                (FileStatus(status).value, error_message, _now(), file_id),
            )

    def update_hash(self, file_id: int, hash_value: str):
        with self._cursor() as cur:
            cur.execute(
                "UPDATE files SET hash = ?, updated_at = ? WHERE id = ?",
                (hash_value, _now(), file_id),
            )

    def update_destination(self, file_id: int, dest_path: str, sequence_num: int, is_duplicate: bool):
        """Sets destination, sequence number and duplicate flag in one statement."""
        with self._cursor() as cur:
            cur.execute(
                """UPDATE files SET dest_path = ?, sequence_num = ?, is_duplicate = ?, updated_at = ?
                   WHERE id = ?""",
                (str(dest_path), sequence_num, int(is_duplicate), _now(), file_id),
            )

    def reset_failed(self) -> int:
        """Moves every failed record back to pending. Returns the number reset."""
        with self._cursor() as cur:
            cur.execute(
                """UPDATE files SET status = 'pending', error_message = '', updated_at = ?
                   WHERE status = 'failed'""",
                (_now(),),
            )
            return cur.rowcount

    def delete(self, file_id: int):
        with self._cursor() as cur:
            cur.execute("DELETE FROM files WHERE id = ?", (file_id,))

    def drop_all(self):
        with self._cursor() as cur:
            cur.execute("DELETE FROM files")

    # --- Dedup / sequencing queries ---

    def count_by_size(self, size: int) -> int:
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM files WHERE file_size = ?", (size,))
            return cur.fetchone()[0]

    def count_by_timestamp_key(self, key: str) -> int:
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM files WHERE timestamp_key = ?", (key,))
            return cur.fetchone()[0]

    def find_by_hash(self, hash_value: str) -> List[FileRecord]:
        if not hash_value:
            return []
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM files WHERE hash = ? ORDER BY id", (hash_value,))
            return [_row_to_record(r) for r in cur.fetchall()]

    def find_unhashed_by_size(self, size: int) -> List[FileRecord]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM files WHERE file_size = ? AND hash = '' ORDER BY id",
                (size,),
            )
            return [_row_to_record(r) for r in cur.fetchall()]

    def first_unsequenced_by_timestamp_key(self, key: str, exclude_id: Optional[int] = None) -> Optional[FileRecord]:
        """Lowest-id member of a grouping key still filed without a sequence suffix."""
        with self._cursor() as cur:
            cur.execute(f"""
                SELECT {_COLUMNS} FROM files
                WHERE timestamp_key = ? AND sequence_num = 0 AND status != 'dest_index' AND id != ?
                ORDER BY id LIMIT 1
            """, (key, exclude_id if exclude_id is not None else -1))
            row = cur.fetchone()
            return _row_to_record(row) if row else None

    def destination_in_use(self, dest_path: str, exclude_id: Optional[int] = None) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "SELECT 1 FROM files WHERE dest_path = ? AND id != ? LIMIT 1",
                (str(dest_path), exclude_id if exclude_id is not None else -1),
            )
            return cur.fetchone() is not None

    # --- Lookups ---

    def get(self, file_id: int) -> Optional[FileRecord]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM files WHERE id = ?", (file_id,))
            row = cur.fetchone()
            return _row_to_record(row) if row else None

    def find_by_source_path(self, source_path: str) -> Optional[FileRecord]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM files WHERE source_path = ?", (str(source_path),))
            row = cur.fetchone()
            return _row_to_record(row) if row else None

    # --- Resume ---

    def completed_source_paths(self) -> Set[str]:
        """Paths already organized (or simulated) by a previous run."""
        with self._cursor() as cur:
            cur.execute("SELECT source_path FROM files WHERE status IN ('completed', 'dry_run')")
            return {row[0] for row in cur.fetchall()}

    def pending_with_destination(self) -> List[FileRecord]:
        """Pending records that already passed dedup and path assignment."""
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM files WHERE status = 'pending' AND dest_path != '' ORDER BY id")
            return [_row_to_record(r) for r in cur.fetchall()]

    # --- Stats ---

    def stats(self) -> Dict[FileStatus, int]:
        """Status histogram, excluding dest_index rows."""
        with self._cursor() as cur:
            cur.execute("SELECT status, COUNT(*) FROM files WHERE status != 'dest_index' GROUP BY status")
            return {FileStatus(status): count for status, count in cur.fetchall()}

    def total_count(self) -> int:
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM files WHERE status != 'dest_index'")
            return cur.fetchone()[0]

    def duplicate_count(self) -> int:
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM files WHERE is_duplicate = 1 AND status != 'dest_index'")
            return cur.fetchone()[0]

    def all_records(self) -> List[FileRecord]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM files WHERE status != 'dest_index' ORDER BY id")
            return [_row_to_record(r) for r in cur.fetchall()]

    # --- Destination index ---

    def clear_destination_index(self, keep_hashed: bool = True) -> int:
        """
        Removes dest_index rows. With keep_hashed, rows whose hash was already
        computed survive so the next run does not re-read those files.
        """
        sql = "DELETE FROM files WHERE status = 'dest_index'"
        if keep_hashed:
            sql += " AND hash = ''"
        with self._cursor() as cur:
            cur.execute(sql)
            return cur.rowcount

    def destination_index_entries(self) -> List[FileRecord]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM files WHERE status = 'dest_index' ORDER BY id")
            return [_row_to_record(r) for r in cur.fetchall()]

    def bulk_insert_destination_entries(self, entries: Iterable[DestinationEntry]) -> int:
        """
        Inserts destination files as dest_index rows in one transaction.
        Paths already journaled are left untouched. Returns the number inserted.
        """
        now = _now()
        inserted = 0
        with self.lock:
            try:
                self.conn.execute("BEGIN")
                for entry in entries:
                    cur = self.conn.execute("""
                        INSERT OR IGNORE INTO files (source_path, file_size, media_type, extension,
                            creation_time, larger_dimension, original_name, timestamp_key, hash,
                            dest_path, sequence_num, is_duplicate, status, error_message,
                            created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, 0, ?, ?, '', '', 0, 0, 'dest_index', '', ?, ?)
                    """, (
                        str(entry.path), entry.size_bytes, entry.media_type.value, entry.extension,
                        config.DEST_INDEX_CREATION_TIME, entry.path.name, config.DEST_INDEX_KEY,
                        now, now,
                    ))
                    inserted += cur.rowcount
                self.conn.execute("COMMIT")
            except sqlite3.Error as e:
                if self.conn.in_transaction:
                    self.conn.execute("ROLLBACK")
                raise JournalError(f"insert destination index: {e}") from e
        return inserted
