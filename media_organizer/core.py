import os
import queue
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Set, Tuple

from . import config
from .config import OrganizerSettings
from .database.ops import Journal
from .metadata.extract import MetadataExtractor
from .models import FileStatus, ScanResult, TransferJob
from .organization.mover import FileMover
from .organization.planner import DestinationPlanner, RecordLocks
from .progress import ProgressCounters, ProgressMonitor
from .scanning.filesystem import DiskScanner, is_within
from .scanning.hasher import FileHasher

# End-of-stream marker passed down every queue
_DONE = object()


class MediaOrganizer:
    """
    Runs the organize pipeline for one source tree:

        walk -> extract (N threads) -> organize (1 thread) -> transfer (N threads)

    Stages are connected by bounded queues. Only the organize thread makes
    dedup and naming decisions; transfer threads only write statuses.
    """

    def __init__(self,
                 settings: OrganizerSettings,
                 journal: Journal,
                 extractor: Optional[MetadataExtractor] = None,
                 hasher: Optional[FileHasher] = None,
                 resume: bool = False,
                 show_progress: bool = False):
        self.settings = settings
        self.journal = journal
        self.extractor = extractor or MetadataExtractor()
        self.resume = resume
        self.show_progress = show_progress

        self.scanner = DiskScanner()
        self.record_locks = RecordLocks()
        self.planner = DestinationPlanner(journal, settings, hasher, self.record_locks)
        self.mover = FileMover(journal, settings, self.record_locks)
        self.counters = ProgressCounters()
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self):
        """Stops accepting new work; transfers already running are allowed to finish."""
        if not self._stop_event.is_set():
            logging.warning("Stop requested, finishing in-flight transfers...")
        self._stop_event.set()

    def run(self) -> ScanResult:
        result = ScanResult()

        skip_paths: Set[str] = set()
        resumed_jobs: List[TransferJob] = []
        if self.resume:
            skip_paths, resumed_jobs = self._bootstrap_resume()

        self._index_destinations()

        monitor = ProgressMonitor(self.counters, enabled=self.show_progress)
        monitor.start()
        try:
            self._run_pipeline(skip_paths, resumed_jobs)
        finally:
            monitor.stop()
            # Hashed entries stay so the next run doesn't read those files again
            self.journal.clear_destination_index(keep_hashed=True)

        if (self.settings.delete_empty_dirs and not self.settings.dry_run
                and not self.settings.copy_files and not self.stopped):
            self._remove_empty_dirs()

        return self._collect_result(result)

    # --- Startup ---

    def _bootstrap_resume(self) -> Tuple[Set[str], List[TransferJob]]:
        """
        Loads what a previous run left behind: paths to skip during the walk
        and already-planned transfers to re-queue without re-planning.
        """
        skip_paths = self.journal.completed_source_paths()
        logging.info(f"Resuming: {len(skip_paths)} files already organized")

        simulated = self.journal.stats().get(FileStatus.DRY_RUN, 0)
        if simulated and not self.settings.dry_run:
            logging.warning(
                f"{simulated} files were only simulated by a previous dry run and will be skipped; "
                f"use --fresh to organize them"
            )

        reset = self.journal.reset_failed()
        if reset:
            logging.info(f"Retrying {reset} previously failed files")

        jobs: List[TransferJob] = []
        for rec in self.journal.pending_with_destination():
            skip_paths.add(rec.source_path)
            src = Path(rec.source_path)
            dest = Path(rec.dest_path)
            if src.exists():
                jobs.append(TransferJob(record_id=rec.id, source_path=src, dest_path=dest))
            elif dest.exists():
                # Transfer finished but the status update was lost
                logging.info(f"Already at destination, marking completed: {dest}")
                self.journal.update_status(rec.id, FileStatus.COMPLETED)
            else:
                logging.warning(f"Source file missing: {src}")
                self.journal.update_status(rec.id, FileStatus.FAILED, "source file missing")

        if jobs:
            logging.info(f"Re-queued {len(jobs)} pending transfers")
        return skip_paths, jobs

    def _index_destinations(self):
        """Registers files already in the destination trees so they take part in dedup."""
        self.journal.clear_destination_index(keep_hashed=True)

        stale = 0
        for rec in self.journal.destination_index_entries():
            if not Path(rec.source_path).exists():
                self.journal.delete(rec.id)
                stale += 1
        if stale:
            logging.debug(f"Dropped {stale} index entries for files no longer in the destination")

        entries = self.scanner.index_destinations(self.settings.destination_roots(), self.settings.source_dir)
        inserted = self.journal.bulk_insert_destination_entries(entries)
        logging.info(f"Indexed {inserted} existing files in destination directories")

    # --- Pipeline ---

    def _run_pipeline(self, skip_paths: Set[str], resumed_jobs: List[TransferJob]):
        workers = self.settings.concurrent_jobs
        path_q: queue.Queue = queue.Queue(maxsize=config.QUEUE_SIZE)
        media_q: queue.Queue = queue.Queue(maxsize=config.QUEUE_SIZE)
        job_q: queue.Queue = queue.Queue(maxsize=config.QUEUE_SIZE)

        self.counters.increment('discovered', len(resumed_jobs))

        threads = [threading.Thread(target=self._walk, args=(path_q, skip_paths, workers), name="walk")]
        threads += [
            threading.Thread(target=self._extract_worker, args=(path_q, media_q), name=f"extract-{i}")
            for i in range(workers)
        ]
        threads.append(threading.Thread(
            target=self._organize_worker, args=(media_q, job_q, workers, resumed_jobs), name="organize"
        ))
        threads += [
            threading.Thread(target=self._transfer_worker, args=(job_q,), name=f"transfer-{i}")
            for i in range(workers)
        ]

        logging.info(f"Scanning {self.settings.source_dir} with {workers} workers...")
        for t in threads:
            t.start()
        # Join with a timeout so signal handlers keep running on the main thread
        for t in threads:
            while t.is_alive():
                t.join(0.5)

    def _nested_destinations(self) -> Set[Path]:
        """Destination roots that live inside the source tree."""
        return {
            d for d in self.settings.destination_roots()
            if is_within(d, self.settings.source_dir) and d != self.settings.source_dir
        }

    def _walk(self, path_q: queue.Queue, skip_paths: Set[str], workers: int):
        skip_files = {str(p) for p in self.settings.journal_files}
        try:
            for path in self.scanner.iter_media(self.settings.source_dir, self._nested_destinations(), skip_files):
                if self.stopped:
                    break
                if str(path) in skip_paths:
                    self.counters.increment('skipped')
                    continue
                self.counters.increment('discovered')
                path_q.put(path)
        finally:
            for _ in range(workers):
                path_q.put(_DONE)

    def _extract_worker(self, path_q: queue.Queue, media_q: queue.Queue):
        try:
            while True:
                path = path_q.get()
                if path is _DONE:
                    break
                if self.stopped:
                    continue
                try:
                    media = self.extractor.extract(path)
                except Exception as e:
                    logging.error(f"Failed to read metadata of {path}: {e}")
                    self.counters.increment('errors')
                    continue
                self.counters.increment('processed')
                media_q.put(media)
        finally:
            media_q.put(_DONE)

    def _organize_worker(self, media_q: queue.Queue, job_q: queue.Queue, workers: int,
                         resumed_jobs: List[TransferJob]):
        try:
            for job in resumed_jobs:
                if self.stopped:
                    break
                job_q.put(job)

            finished = 0
            while finished < workers:
                media = media_q.get()
                if media is _DONE:
                    finished += 1
                    continue
                if self.stopped:
                    continue
                try:
                    job = self.planner.plan(media)
                except Exception as e:
                    logging.error(f"Failed to organize {media.source_path}: {e}")
                    self.counters.increment('errors')
                    continue
                if job is None:
                    self.counters.increment('skipped')
                    continue
                job_q.put(job)
        finally:
            for _ in range(workers):
                job_q.put(_DONE)

    def _transfer_worker(self, job_q: queue.Queue):
        while True:
            job = job_q.get()
            if job is _DONE:
                break
            # Left pending; the next run re-queues it
            if self.stopped:
                continue
            try:
                self.mover.transfer(job)
            except Exception as e:
                logging.error(f"Failed to transfer {job.source_path}: {e}")
                self.counters.increment('errors')
            self.counters.increment('transferred')

    # --- Shutdown ---

    def _remove_empty_dirs(self):
        """Removes empty directories under the source tree, deepest first."""
        root = self.settings.source_dir
        skip_dirs = self._nested_destinations()
        candidates = []
        for dirpath, dirnames, _filenames in os.walk(root):
            # Prune what the walk skips
            dirnames[:] = [
                d for d in dirnames
                if not d.startswith('.')
                and not os.path.islink(os.path.join(dirpath, d))
                and Path(dirpath, d) not in skip_dirs
            ]
            candidates.extend(Path(dirpath, d) for d in dirnames)

        removed = 0
        for path in reversed(candidates):
            try:
                path.rmdir()
            except OSError:
                # Not empty
                continue
            removed += 1
            logging.debug(f"Removed empty directory: {path}")
        if removed:
            logging.info(f"Removed {removed} empty directories")

    def _collect_result(self, result: ScanResult) -> ScanResult:
        """Final numbers come from the journal, not from in-memory tallies."""
        stats = self.journal.stats()
        snap = self.counters.snapshot()

        result.total_files = self.journal.total_count()
        result.processed_files = snap.processed
        result.skipped_files = snap.skipped
        result.organized_files = stats.get(FileStatus.COMPLETED, 0) + stats.get(FileStatus.DRY_RUN, 0)
        result.error_count = stats.get(FileStatus.FAILED, 0) + snap.errors
        result.duplicate_count = self.journal.duplicate_count()
        result.interrupted = self.stopped
        result.end_time = datetime.now()
        return result
