import csv
import logging
from pathlib import Path
from typing import Optional

from .database.ops import Journal
from .models import ScanResult


class ReportGenerator:
    def __init__(self, journal: Journal):
        self.journal = journal

    def log_summary(self, result: ScanResult, db_path: Optional[Path] = None):
        """Logs the end-of-run summary."""
        logging.info("=== Summary ===")
        logging.info(f"Total files:     {result.total_files}")
        logging.info(f"Processed:       {result.processed_files}")
        logging.info(f"Organized:       {result.organized_files}")
        logging.info(f"Skipped:         {result.skipped_files}")
        logging.info(f"Duplicates:      {result.duplicate_count}")
        logging.info(f"Errors:          {result.error_count}")
        if db_path:
            logging.info(f"Journal:         {db_path}")
        logging.info(f"Elapsed:         {result.elapsed_seconds:.1f}s")

    def export_csv(self, output_csv: Path) -> int:
        """
        Writes every journaled file (destination index rows excluded) to a CSV.
        Returns the number of rows written.
        """
        headers = [
            "Source Path",
            "Status",
            "Media Type",
            "Size",
            "Creation Time",
            "Destination Path",
            "Sequence",
            "Duplicate",
            "Hash",
            "Error",
        ]

        count = 0
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(headers)
            for rec in self.journal.all_records():
                writer.writerow([
                    rec.source_path,
                    rec.status.value,
                    rec.media_type,
                    rec.file_size,
                    rec.creation_time,
                    rec.dest_path,
                    rec.sequence_num,
                    "yes" if rec.is_duplicate else "no",
                    rec.hash,
                    rec.error_message,
                ])
                count += 1

        logging.info(f"Report complete: {count} files written to {output_csv}")
        return count
