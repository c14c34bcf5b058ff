"""
Custom exception hierarchy for the edit tracker.

Scan errors are fatal for the call that raised them, except below the root
of a tree walk where they are converted into skipped subtrees. Cache errors
never leave the cache service.
"""
from pathlib import Path
from typing import Optional


class EditTrackerError(Exception):
    """Base exception for all edit tracker errors."""
    pass


class ScanError(EditTrackerError):
    """Raised when a directory cannot be scanned."""

    def __init__(self, path: Path, message: str):
        super().__init__(f"{message}: {path}")
        self.path = path


class InvalidDirectory(ScanError):
    """Raised when the path is missing or is not a directory."""

    def __init__(self, path: Path):
        super().__init__(path, "Not a directory")


class NotAccessible(ScanError):
    """Raised when a directory exists but cannot be enumerated."""

    def __init__(self, path: Path, cause: Optional[BaseException] = None):
        super().__init__(path, "Directory not accessible")
        self.cause = cause


class SubtreeSkipped(EditTrackerError):
    """A subdirectory that failed during a tree walk. Logged, never raised to callers."""

    def __init__(self, path: Path, cause: BaseException):
        super().__init__(f"Skipped {path}: {cause}")
        self.path = path
        self.cause = cause


class ScanCancelled(EditTrackerError):
    """Raised when the caller cancels a tree walk."""
    pass


class CacheError(EditTrackerError):
    """Raised when the cache store fails."""
    pass


class CacheUnavailable(CacheError):
    """Raised when the cache database cannot be opened."""

    def __init__(self, path: Path, cause: Optional[BaseException] = None):
        super().__init__(f"Cache database unavailable at {path}: {cause}")
        self.path = path
        self.cause = cause


class CollectionNotFound(EditTrackerError):
    """Raised when a collection id is not part of any loaded tree."""
    pass


class ThumbnailError(EditTrackerError):
    """Raised when a thumbnail cannot be generated."""
    pass


class NotJPEGOnlyFolder(EditTrackerError):
    """Raised when a classification targets a folder that is not JPEG-only."""

    def __init__(self, path: Path):
        super().__init__(f"Only folders holding nothing but standalone JPEGs can be classified: {path}")
        self.path = path
