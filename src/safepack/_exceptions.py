"""Exception hierarchy for safepack.

All exceptions inherit from ``ArchiverError`` so callers can catch the
package's entire error surface with a single ``except`` clause.
"""

from __future__ import annotations

__author__ = "Artur Barseghyan <artur.barseghyan@gmail.com>"
__copyright__ = "2026 Artur Barseghyan"
__license__ = "MIT"


class ArchiverError(Exception):
    """Base exception for all safepack errors."""


class UnsupportedFormatError(ArchiverError):
    """The requested archive format is not supported."""


class SourceNotFoundError(ArchiverError):
    """A source path (or an entry beneath it) cannot be walked."""


class PathResolutionError(ArchiverError):
    """A source path cannot be stat'ed or made absolute."""


class UnsafeEntryError(ArchiverError):
    """Base for every entry rejected because it would land outside the
    destination root.
    """


class AbsolutePathError(UnsafeEntryError):
    """A member name is absolute (``/etc/passwd``, ``\\x``, ``C:\\x``)."""


class TraversalAttemptError(UnsafeEntryError):
    """A member name resolves outside the destination root."""


class AbsoluteSymlinkError(UnsafeEntryError):
    """A symlink member carries an absolute link target."""


class SymlinkEscapeError(UnsafeEntryError):
    """A symlink target, or a chain of symlinks, resolves outside the
    destination root.
    """


class CircularSymlinkError(UnsafeEntryError):
    """A symlink points back at itself, directly or through a chain."""


class ChainTooDeepError(UnsafeEntryError):
    """A symlink chain is longer than ``MAX_SYMLINK_DEPTH`` hops."""


class HardLinkEscapeError(UnsafeEntryError):
    """A hard link target resolves outside the destination root."""


class FileConflictError(ArchiverError):
    """A regular-file member targets a path that already exists."""


class UnsupportedEntryKindError(ArchiverError):
    """A member (or a file-system entry being archived) is of a kind the
    codec does not handle.
    """


class ArchiveIOError(ArchiverError):
    """An I/O failure while reading or writing archive streams or files."""


class MalformedArchiveError(ArchiveIOError):
    """The archive stream is structurally invalid.

    Raised for bad gzip headers, truncated streams and unreadable tar
    headers.
    """


class OperationCancelledError(ArchiverError):
    """The cancellation signal fired before or during the operation."""
