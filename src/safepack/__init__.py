"""safepack: hardened tar.gz archiving and extraction for Python.

Secure by default.  Zero dependencies.  Python 3.10+.
"""

from __future__ import annotations

__title__ = "safepack"
__version__ = "0.1"
__author__ = "Artur Barseghyan <artur.barseghyan@gmail.com>"
__copyright__ = "2026 Artur Barseghyan"
__license__ = "MIT"

from safepack._core import (
    BEST_COMPRESSION,
    BEST_SPEED,
    DEFAULT_COMPRESSION,
    NO_COMPRESSION,
    Archiver,
    ArchiverOptions,
    TarGzipArchiver,
    archive,
    new_archiver,
    unarchive,
)
from safepack._events import EntryKind, SecurityEvent
from safepack._exceptions import (
    AbsolutePathError,
    AbsoluteSymlinkError,
    ArchiveIOError,
    ArchiverError,
    ChainTooDeepError,
    CircularSymlinkError,
    FileConflictError,
    HardLinkEscapeError,
    MalformedArchiveError,
    OperationCancelledError,
    PathResolutionError,
    SourceNotFoundError,
    SymlinkEscapeError,
    TraversalAttemptError,
    UnsafeEntryError,
    UnsupportedEntryKindError,
    UnsupportedFormatError,
)
from safepack._guard import filter_redundant_paths, is_within

__all__ = [
    # Core
    "Archiver",
    "ArchiverOptions",
    "TarGzipArchiver",
    "new_archiver",
    "archive",
    "unarchive",
    "DEFAULT_COMPRESSION",
    "NO_COMPRESSION",
    "BEST_SPEED",
    "BEST_COMPRESSION",
    # Path helpers
    "is_within",
    "filter_redundant_paths",
    # Exceptions
    "ArchiverError",
    "UnsupportedFormatError",
    "SourceNotFoundError",
    "PathResolutionError",
    "UnsafeEntryError",
    "AbsolutePathError",
    "TraversalAttemptError",
    "AbsoluteSymlinkError",
    "SymlinkEscapeError",
    "CircularSymlinkError",
    "ChainTooDeepError",
    "HardLinkEscapeError",
    "FileConflictError",
    "UnsupportedEntryKindError",
    "ArchiveIOError",
    "MalformedArchiveError",
    "OperationCancelledError",
    # Events
    "EntryKind",
    "SecurityEvent",
]
