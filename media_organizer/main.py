import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .config import OrganizerSettings, load_config_file
from .core import MediaOrganizer
from .database.db import DBManager, remove_journal
from .database.ops import Journal
from .exceptions import ConfigError, JournalError
from .reporting import ReportGenerator


def setup_logging(verbose: bool, log_file: Optional[Path] = None):
    """Sets up logging to the console and, optionally, to a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
        force=True,
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    # Every option defaults to None so only flags given explicitly override the config file
    p = argparse.ArgumentParser(
        prog="media-organizer",
        description="Organize photos, videos and audio into a dated folder structure",
    )

    p.add_argument("-s", "--source", type=Path, default=None, help="Source directory to scan")
    p.add_argument("--dest", type=Path, default=None,
                   help="Unified destination directory (date_first scheme)")
    p.add_argument("--image-dest", type=Path, default=None, help="Destination for images")
    p.add_argument("--video-dest", type=Path, default=None, help="Destination for videos")
    p.add_argument("--audio-dest", type=Path, default=None, help="Destination for audio")
    p.add_argument("--ext-dest", action="append", default=None, metavar="EXT=DIR",
                   help="Destination for one extension, e.g. nef=/raw (repeatable)")
    p.add_argument("--scheme", choices=config.VALID_SCHEMES, default=None,
                   help="Folder layout (default: extension_first)")
    p.add_argument("--duplicates-dir", default=None,
                   help="Where duplicates go; relative names are nested under each destination")
    p.add_argument("--space-replacement", default=None,
                   help="Replacement for spaces in original names (default: '_')")
    p.add_argument("--no-original-name", action="store_true", default=None,
                   help="Do not append the original file name")

    p.add_argument("-d", "--dry-run", action="store_true", default=None,
                   help="Simulate actions without modifying disk")
    p.add_argument("-c", "--copy", action="store_true", default=None,
                   help="Copy files instead of moving them")
    p.add_argument("-j", "--jobs", type=int, default=None, help="Number of concurrent workers")
    p.add_argument("--delete-empty-dirs", action="store_true", default=None,
                   help="Remove empty source directories after moving")

    p.add_argument("--db", type=Path, default=None,
                   help="Journal database path (default: <source>/.mediaorganizer.db)")
    p.add_argument("--fresh", action="store_true", default=None,
                   help="Delete the journal and start over instead of resuming")
    p.add_argument("-v", "--verbose", action="store_true", default=None, help="Enable debug logging")
    p.add_argument("-l", "--log-file", type=Path, default=None, help="Also write the log to this file")
    p.add_argument("--config", type=Path, default=None, help="YAML or JSON configuration file")
    p.add_argument("--report-csv", type=Path, default=None,
                   help="Write a CSV of every journaled file after the run")

    return p.parse_args(argv)


def parse_ext_dest(values: List[str]) -> Dict[str, str]:
    """['nef=/raw', '.CR2=/raw'] -> {'nef': '/raw', '.CR2': '/raw'}"""
    result = {}
    for item in values:
        ext, sep, directory = item.partition("=")
        if not sep or not ext.strip() or not directory.strip():
            raise ConfigError(f"invalid --ext-dest value '{item}', expected EXT=DIR")
        result[ext.strip()] = directory.strip()
    return result


def build_settings(args: argparse.Namespace) -> OrganizerSettings:
    """Merges defaults < config file < command-line flags."""
    data: Dict[str, Any] = load_config_file(args.config) if args.config else {}

    destinations = data.get('destinations') or {}
    ext_dests = data.get('extension_destinations') or {}
    if not isinstance(destinations, dict) or not isinstance(ext_dests, dict):
        raise ConfigError("'destinations' and 'extension_destinations' must be mappings")
    destinations = dict(destinations)
    ext_dests = dict(ext_dests)

    for media_type, value in (('image', args.image_dest), ('video', args.video_dest), ('audio', args.audio_dest)):
        if value is not None:
            destinations[media_type] = value
    if args.ext_dest:
        ext_dests.update(parse_ext_dest(args.ext_dest))

    flags = {
        'source': args.source,
        'destination': args.dest,
        'organization_scheme': args.scheme,
        'duplicates_dir': args.duplicates_dir,
        'space_replacement': args.space_replacement,
        'no_original_name': args.no_original_name,
        'dry_run': args.dry_run,
        'copy_files': args.copy,
        'concurrent_jobs': args.jobs,
        'delete_empty_dirs': args.delete_empty_dirs,
        'db_path': args.db,
        'fresh': args.fresh,
        'verbose': args.verbose,
        'log_file': args.log_file,
    }

    merged = dict(data)
    merged.update({k: v for k, v in flags.items() if v is not None})
    merged['destinations'] = destinations
    merged['extension_destinations'] = ext_dests
    return OrganizerSettings.from_mapping(merged)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        settings = build_settings(args)
    except ConfigError as e:
        setup_logging(bool(args.verbose))
        logging.error(f"Configuration error: {e}")
        return 1

    setup_logging(settings.verbose, settings.log_file)

    logging.info("=== Media Organizer Started ===")
    logging.info(f"Source: {settings.source_dir}")
    if settings.destination:
        logging.info(f"Dest:   {settings.destination}")
    for media_type, directory in settings.dest_dirs.items():
        logging.debug(f"{media_type} destination: {directory}")
    logging.info(f"Scheme: {settings.scheme.value}")
    if settings.dry_run:
        logging.info("Running in DRY-RUN mode (no files will be moved or copied)")

    if not settings.source_dir.is_dir():
        logging.error(f"Source directory does not exist: {settings.source_dir}")
        return 1

    if settings.fresh and remove_journal(settings.db_path):
        logging.info(f"Removed existing journal: {settings.db_path}")
    resume = settings.db_path.exists()

    db_manager = DBManager(settings.db_path)
    try:
        conn = db_manager.connect()
    except JournalError as e:
        logging.error(f"Cannot open journal: {e}")
        return 1

    journal = Journal(conn, db_manager.lock)
    organizer = MediaOrganizer(settings, journal, resume=resume, show_progress=sys.stderr.isatty())

    def handle_signal(signum, _frame):
        logging.warning(f"Received {signal.Signals(signum).name}")
        organizer.stop()

    previous = {sig: signal.signal(sig, handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        result = organizer.run()
        reporter = ReportGenerator(journal)
        reporter.log_summary(result, settings.db_path)
        if args.report_csv:
            try:
                reporter.export_csv(args.report_csv)
            except OSError as e:
                logging.error(f"Failed to write report {args.report_csv}: {e}")
    except JournalError as e:
        logging.error(f"Journal error: {e}")
        return 1
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        db_manager.close()

    if result.interrupted:
        logging.warning("Interrupted. Run the same command again to resume where it stopped.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
