"""Entry-kind enum and security event dataclass for safepack."""

from __future__ import annotations

__author__ = "Artur Barseghyan <artur.barseghyan@gmail.com>"
__copyright__ = "2026 Artur Barseghyan"
__license__ = "MIT"

from dataclasses import dataclass
from enum import Enum


class EntryKind(Enum):
    """Logical kind of an archive entry.

    ``DIRECTORY``
        A directory header; carries no content.
    ``REGULAR_FILE``
        A regular file.  Character/block devices and FIFOs are folded
        into this kind on extraction and materialised as plain files.
    ``SYMLINK``
        A symbolic link; ``linkname`` is the literal link text.
    ``HARD_LINK``
        A hard link; ``linkname`` is the path of a sibling entry,
        relative to the destination root.
    ``OTHER``
        Anything else.  Rejected on extraction.
    """

    DIRECTORY = "directory"
    REGULAR_FILE = "regular_file"
    SYMLINK = "symlink"
    HARD_LINK = "hard_link"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class SecurityEvent:
    """Immutable record of an entry rejected during extraction.

    Carries no file names or member names, so an event can be forwarded
    to an external service as is.
    """

    event_type: str
    """Type identifier, e.g. ``"traversal_detected"``, ``"symlink_violation"``."""

    entry_kind: EntryKind
    """Kind of the offending entry."""

    timestamp: float
    """``time.time()`` at the moment of detection."""
