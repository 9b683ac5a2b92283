"""
Custom exception hierarchy for the media organizer.

Per-file failures (extraction, hashing, transfer) are caught at the stage
that raised them and recorded in the journal; configuration and journal
startup failures abort the run.
"""


class MediaOrganizerError(Exception):
    """Base exception for all media organizer errors."""
    pass


class ConfigError(MediaOrganizerError):
    """Raised when the run configuration is missing or invalid."""
    pass


class JournalError(MediaOrganizerError):
    """Raised when the journal database cannot be opened or queried."""
    pass


class AlreadyExistsError(JournalError):
    """Raised when a source path is already tracked by the journal."""

    def __init__(self, source_path: str):
        super().__init__(f"file already exists in journal: {source_path}")
        self.source_path = source_path


class MetadataExtractionError(MediaOrganizerError):
    """Raised when metadata cannot be extracted from a file."""
    pass


class FileHashError(MediaOrganizerError):
    """Raised when file hashing fails."""
    pass


class FileOperationError(MediaOrganizerError):
    """Raised when file copy/move operations fail."""
    pass


class DestinationCollisionError(FileOperationError):
    """Raised when a file already exists at the computed destination."""

    def __init__(self, dest_path):
        super().__init__(f"destination already exists: {dest_path}")
        self.dest_path = dest_path
