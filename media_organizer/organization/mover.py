import errno
import os
import shutil
import logging
from pathlib import Path
from typing import Optional

from ..config import OrganizerSettings
from ..database.ops import Journal
from ..exceptions import DestinationCollisionError, FileOperationError
from ..models import FileStatus, TransferJob
from .planner import RecordLocks


class FileMover:
    def __init__(self, journal: Journal, settings: OrganizerSettings, record_locks: Optional[RecordLocks] = None):
        self.journal = journal
        self.settings = settings
        self.record_locks = record_locks or RecordLocks()

    def transfer(self, job: TransferJob) -> FileStatus:
        """
        Applies one transfer job and records its terminal status.

        The destination is re-read from the journal under the record lock,
        since the planner may have re-sequenced it after the job was queued.
        """
        with self.record_locks.hold(job.record_id):
            current = self.journal.get(job.record_id)
            dest = Path(current.dest_path) if current and current.dest_path else job.dest_path
            src = job.source_path
            verb = "Copy" if self.settings.copy_files else "Move"

            if self.settings.dry_run:
                logging.info(f"[DRY RUN] {verb} {src} -> {dest}")
                self.journal.update_status(job.record_id, FileStatus.DRY_RUN)
                return FileStatus.DRY_RUN

            try:
                self._transfer_file(src, dest)
            except FileOperationError as e:
                logging.error(f"Failed to process {src} -> {dest}: {e}")
                self.journal.update_status(job.record_id, FileStatus.FAILED, str(e))
                return FileStatus.FAILED

            logging.debug(f"{verb} {src} -> {dest}")
            self.journal.update_status(job.record_id, FileStatus.COMPLETED)
            return FileStatus.COMPLETED

    def _transfer_file(self, src: Path, dest: Path):
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileOperationError(f"cannot create directory {dest.parent}: {e}") from e

        # Never overwrite: a leftover from an interrupted transfer must fail here
        if dest.exists():
            raise DestinationCollisionError(dest)

        if self.settings.copy_files:
            self._copy_verified(src, dest)
        else:
            self._move(src, dest)

    def _move(self, src: Path, dest: Path):
        try:
            os.rename(src, dest)
            return
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise FileOperationError(f"move failed: {e}") from e

        # Different filesystems: copy, verify, then drop the source
        logging.debug(f"Cross-device move, copying {src} -> {dest}")
        self._copy_verified(src, dest)
        try:
            src.unlink()
        except OSError as e:
            raise FileOperationError(f"copied but could not remove source {src}: {e}") from e

    def _copy_verified(self, src: Path, dest: Path):
        """Copies with metadata (mtime preserved) and checks the byte count."""
        try:
            shutil.copy2(src, dest)
            expected = src.stat().st_size
            written = dest.stat().st_size
        except OSError as e:
            dest.unlink(missing_ok=True)
            raise FileOperationError(f"copy failed: {e}") from e

        if written != expected:
            dest.unlink(missing_ok=True)
            raise FileOperationError(
                f"size mismatch after copy: expected {expected} bytes, wrote {written}"
            )
