import os
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..config import OrganizerSettings
from ..database.ops import Journal
from ..exceptions import AlreadyExistsError, FileHashError
from ..models import FileRecord, FileStatus, MediaFile, TransferJob
from ..scanning.hasher import FileHasher
from .rules import assign_destination


class RecordLocks:
    """
    One lock per journal record, kept only while someone holds or waits on it.

    Held by a transfer for its whole duration and by the planner while it
    hashes or renames a record, so a transfer always uses the final
    destination and a file is never read mid-move.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # record id -> [lock, holders and waiters]
        self._locks: Dict[int, list] = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, record_id: int):
        with self._guard:
            entry = self._locks.get(record_id)
            if entry is None:
                entry = self._locks[record_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[record_id]


class DestinationPlanner:
    """
    The organize stage. Must be driven by a single thread: every dedup and
    sequencing decision relies on a serial view of the journal.
    """

    def __init__(self,
                 journal: Journal,
                 settings: OrganizerSettings,
                 hasher: Optional[FileHasher] = None,
                 record_locks: Optional[RecordLocks] = None):
        self.journal = journal
        self.settings = settings
        self.hasher = hasher or FileHasher()
        self.record_locks = record_locks or RecordLocks()

    def plan(self, media: MediaFile) -> Optional[TransferJob]:
        """
        Journals a freshly extracted file and assigns its destination.
        Returns None when the path was already journaled by an earlier run.
        """
        record = FileRecord.from_media(media)
        try:
            self.journal.insert(record)
        except AlreadyExistsError:
            existing = self.journal.find_by_source_path(record.source_path)
            if existing is None or existing.status is not FileStatus.PENDING or existing.dest_path:
                logging.debug(f"Already journaled, skipping: {media.source_path}")
                return None
            # Inserted by a run that stopped before assigning a destination
            logging.info(f"Resuming interrupted organize: {media.source_path}")
            record = existing
            media = existing.to_media()

        return self._organize(record, media)

    def _organize(self, record: FileRecord, media: MediaFile) -> TransferJob:
        is_duplicate = False
        if self.journal.count_by_size(record.file_size) >= 2:
            self._hash_size_group(record)
            if record.hash:
                matches = self.journal.find_by_hash(record.hash)
                is_duplicate = any(m.id != record.id for m in matches)
                if is_duplicate:
                    logging.debug(f"Duplicate content: {record.source_path}")

        count = self.journal.count_by_timestamp_key(record.timestamp_key)
        sequence_num = count if count > 1 else 0

        dest, sequence_num = self._free_destination(media, record.id, is_duplicate, sequence_num)
        self.journal.update_destination(record.id, str(dest), sequence_num, is_duplicate)

        if sequence_num > 0:
            self._sequence_first_member(record)

        return TransferJob(record_id=record.id, source_path=Path(record.source_path), dest_path=dest)

    # --- Lazy hashing ---

    def _hash_size_group(self, record: FileRecord):
        """Hashes the current file and backfills every unhashed record of the same size."""
        if not record.hash:
            try:
                record.hash = self.hasher.compute_hash(Path(record.source_path))
                self.journal.update_hash(record.id, record.hash)
            except FileHashError as e:
                logging.warning(f"Hashing failed, dedup skipped for this file: {e}")

        for other in self.journal.find_unhashed_by_size(record.file_size):
            if other.id == record.id:
                continue
            with self.record_locks.hold(other.id):
                self._backfill_hash(other.id)

    def _backfill_hash(self, record_id: int):
        """Hashes an earlier record wherever its file currently lives. Caller holds the record lock."""
        other = self.journal.get(record_id)
        if other is None or other.hash:
            return
        path = self._locate(other)
        if path is None:
            logging.debug(f"Cannot locate {other.source_path} for hashing, skipped")
            return
        try:
            digest = self.hasher.compute_hash(path)
        except FileHashError as e:
            # Moved between the lookup and the read
            moved = self._locate(other)
            if moved is None or moved == path:
                logging.warning(f"Backfill hashing failed: {e}")
                return
            try:
                digest = self.hasher.compute_hash(moved)
            except FileHashError as e:
                logging.warning(f"Backfill hashing failed: {e}")
                return
        self.journal.update_hash(record_id, digest)

    def _locate(self, record: FileRecord) -> Optional[Path]:
        source = Path(record.source_path)
        if source.exists():
            return source
        if record.dest_path and Path(record.dest_path).exists():
            return Path(record.dest_path)
        return None

    # --- Sequencing ---

    def _free_destination(self,
                          media: MediaFile,
                          record_id: int,
                          is_duplicate: bool,
                          sequence_num: int) -> Tuple[Path, int]:
        """Bumps the sequence until the path is neither on disk nor assigned to another record."""
        while True:
            directory, filename = assign_destination(media, self.settings, is_duplicate, sequence_num)
            dest = directory / filename
            if not dest.exists() and not self.journal.destination_in_use(str(dest), record_id):
                return dest, sequence_num
            logging.debug(f"Destination taken, bumping sequence: {dest}")
            sequence_num += 1

    def _sequence_first_member(self, record: FileRecord):
        """
        Gives the group's first unsequenced member sequence 1 so no member of
        a multi-file group keeps a bare name. Renames it on disk if it was
        already transferred. Does nothing once the group is consistent.
        """
        first = self.journal.first_unsequenced_by_timestamp_key(record.timestamp_key, record.id)
        if first is None or not first.dest_path:
            return

        with self.record_locks.hold(first.id):
            first = self.journal.get(first.id)
            if first is None or first.sequence_num != 0 or not first.dest_path:
                return

            old_dest = Path(first.dest_path)
            new_dest, seq = self._free_destination(first.to_media(), first.id, first.is_duplicate, 1)

            if first.status is FileStatus.COMPLETED:
                if self.settings.dry_run:
                    logging.info(f"[DRY RUN] Rename {old_dest} -> {new_dest}")
                    return
                try:
                    new_dest.parent.mkdir(parents=True, exist_ok=True)
                    os.rename(old_dest, new_dest)
                except OSError as e:
                    logging.warning(f"Could not rename {old_dest} -> {new_dest}: {e}")
                    return
                logging.info(f"Renamed {old_dest.name} -> {new_dest.name}")

            self.journal.update_destination(first.id, str(new_dest), seq, first.is_duplicate)
