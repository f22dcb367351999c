"""The Sandbox: per-extraction session state, link target validation, and
metadata application.

Every ``unarchive`` call owns exactly one ``ExtractionSession``.  The
session remembers which symlinks it has created so that multi-hop chains
can be followed without touching the file system, and which directories
it has created so their metadata can be re-applied once their contents
are in place.
"""

from __future__ import annotations

__author__ = "Artur Barseghyan <artur.barseghyan@gmail.com>"
__copyright__ = "2026 Artur Barseghyan"
__license__ = "MIT"
__all__ = (
    "MAX_SYMLINK_DEPTH",
    "ExtractionSession",
    "apply_metadata",
    "remove_existing",
    "sanitise_mode",
)

import contextlib
import logging
import os
import shutil
import stat
import time

from safepack._exceptions import (
    AbsoluteSymlinkError,
    ChainTooDeepError,
    CircularSymlinkError,
    HardLinkEscapeError,
    SymlinkEscapeError,
    TraversalAttemptError,
    UnsafeEntryError,
)
from safepack._guard import is_absolute_name, is_within, reject_null_bytes

log = logging.getLogger("safepack.security")

# Maximum number of recorded symlink hops followed from a new link.
MAX_SYMLINK_DEPTH = 10


class ExtractionSession:
    """State for a single extraction into *root*.

    :param root: Absolute, normalised destination root.
    :param strip_special_bits: Strip setuid/setgid/sticky bits when
        applying directory modes.
    """

    def __init__(self, root: str, *, strip_special_bits: bool = True) -> None:
        self.root = os.path.normpath(root)
        self.real_root = os.path.realpath(self.root)
        self.strip_special_bits = strip_special_bits
        # Absolute path of each extracted symlink -> raw link text.
        self.symlinks: dict[str, str] = {}
        self._directories: list[tuple[str, int, float]] = []

    # ---- containment -------------------------------------------------------

    def ensure_physical(
        self,
        path: str,
        error: type[UnsafeEntryError],
        message: str,
    ) -> None:
        """Raise *error* unless *path* stays inside the root once every
        existing symlink along it is resolved.

        Catches escapes through symlinks that are already on disk, which
        the purely lexical checks cannot see.
        """
        if not is_within(os.path.realpath(path), self.real_root):
            log.warning("Rejected entry escaping the destination through a symlink")
            raise error(message)

    def ensure_not_root(self, target: str, name: str) -> None:
        """Refuse link entries that would replace the destination root."""
        if target == self.root:
            raise TraversalAttemptError(
                f"Link entry would replace the destination root: {name!r}"
            )

    # ---- symlinks ----------------------------------------------------------

    def resolve_symlink(self, target: str, linkname: str, name: str) -> str:
        """Validate a symlink to be created at *target* pointing at
        *linkname* and return its resolved (absolute, normalised) target.
        """
        reject_null_bytes(linkname, "symlink target")

        if is_absolute_name(linkname):
            log.warning("Rejected absolute symlink target")
            raise AbsoluteSymlinkError(
                f"Absolute symlinks are not supported: {name!r} -> {linkname!r}"
            )

        resolved = os.path.normpath(os.path.join(os.path.dirname(target), linkname))

        if not is_within(resolved, self.root):
            log.warning("Rejected symlink target escaping the destination")
            raise SymlinkEscapeError(
                f"Symlink target path traversal attempt detected: "
                f"{name!r} -> {linkname!r}"
            )

        if resolved == target:
            raise CircularSymlinkError(
                f"Circular symlink reference detected: {name!r} -> {linkname!r}"
            )

        self.check_symlink_chain(target, resolved)
        # The OS resolves the link text from the physical parent directory.
        physical_parent = os.path.realpath(os.path.dirname(target))
        self.ensure_physical(
            os.path.join(physical_parent, linkname),
            SymlinkEscapeError,
            f"Symlink target escapes through an existing link: {name!r} -> {linkname!r}",
        )
        return resolved

    def check_symlink_chain(self, link_path: str, resolved: str) -> None:
        """Follow recorded symlinks starting at *resolved*.

        Every hop must stay inside the root and must not lead back to
        *link_path*.  More than ``MAX_SYMLINK_DEPTH`` hops are rejected.
        """
        current = resolved
        for _ in range(MAX_SYMLINK_DEPTH):
            raw = self.symlinks.get(current)
            if raw is None:
                return

            nxt = os.path.normpath(os.path.join(os.path.dirname(current), raw))
            if not is_within(nxt, self.root):
                log.warning("Rejected symlink chain escaping the destination")
                raise SymlinkEscapeError(
                    f"Symlink chain traversal detected: {link_path!r} -> ... -> "
                    f"{nxt!r} resolves outside destination"
                )
            if nxt == link_path:
                raise CircularSymlinkError(
                    f"Circular symlink reference detected: {link_path!r} -> ... -> "
                    f"{nxt!r}"
                )
            current = nxt

        raise ChainTooDeepError(
            f"Symlink chain too deep (max {MAX_SYMLINK_DEPTH}): {link_path!r}"
        )

    def record_symlink(self, target: str, linkname: str) -> None:
        self.symlinks[target] = linkname

    def forget(self, path: str) -> None:
        """Drop recorded symlinks at or below *path* once it is replaced."""
        prefix = path + os.sep
        stale = [key for key in self.symlinks if key == path or key.startswith(prefix)]
        for key in stale:
            del self.symlinks[key]

    def recheck_symlinks(self) -> None:
        """Re-validate every recorded symlink whose text climbs with ``..``.

        A link entry extracted later can turn a directory component into a
        link, which moves where ``..`` lands for links created earlier.
        Links without ``..`` only ever descend from their own directory.
        """
        for link_path, raw in self.symlinks.items():
            if ".." not in raw.replace("\\", "/").split("/"):
                continue
            if not os.path.islink(link_path):
                continue
            if not is_within(os.path.realpath(link_path), self.real_root):
                log.warning("Rejected link entry redirecting an earlier symlink")
                raise SymlinkEscapeError(
                    f"Symlink chain traversal detected: "
                    f"{os.path.relpath(link_path, self.root)!r} -> {raw!r} "
                    f"now resolves outside destination"
                )

    # ---- hard links --------------------------------------------------------

    def resolve_hardlink(self, linkname: str, name: str) -> str:
        """Return the absolute path of the file a hard link entry refers to.

        *linkname* is relative to the destination root.
        """
        reject_null_bytes(linkname, "hard link target")
        source = os.path.normpath(os.path.join(self.root, linkname))

        if not is_within(source, self.root):
            log.warning("Rejected hard link target escaping the destination")
            raise HardLinkEscapeError(
                f"Hard link target path traversal attempt detected: "
                f"{name!r} -> {linkname!r}"
            )

        self.ensure_physical(
            os.path.dirname(source),
            HardLinkEscapeError,
            f"Hard link target escapes through an existing link: {name!r} -> {linkname!r}",
        )
        return source

    # ---- directories -------------------------------------------------------

    def record_directory(self, path: str, mode: int, mtime: float) -> None:
        # The root's own permissions belong to the caller.
        if path == self.root:
            return
        self._directories.append((path, mode, mtime))

    def finalise_directories(self) -> None:
        """Apply stored mode and mtime to every extracted directory.

        Deepest first, so restoring a parent's mtime is not undone by
        touching its children.  Directories replaced by a later link entry,
        or reachable only through a link leading outside the root, are
        skipped.
        """
        ordered = sorted(
            self._directories, key=lambda item: item[0].count(os.sep), reverse=True
        )
        for path, mode, mtime in ordered:
            if os.path.islink(path) or not os.path.isdir(path):
                continue
            if not is_within(os.path.realpath(path), self.real_root):
                log.warning("Skipped directory metadata resolving outside the destination")
                continue
            with contextlib.suppress(OSError):
                apply_metadata(
                    path, mode, mtime, strip_special_bits=self.strip_special_bits
                )


# ---- file-system helpers ---------------------------------------------------


def remove_existing(path: str) -> None:
    """Remove whatever occupies *path* (file, symlink or directory tree)."""
    if not os.path.lexists(path):
        return
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def sanitise_mode(mode: int, *, strip_special_bits: bool = True) -> int:
    """Return the permission bits of *mode*.

    By default removes setuid (``04000``), setgid (``02000``), and
    sticky (``01000``) bits.
    """
    mode = stat.S_IMODE(mode)
    if strip_special_bits:
        mode &= ~(stat.S_ISUID | stat.S_ISGID | stat.S_ISVTX)
    return mode


def apply_metadata(
    path: str,
    mode: int,
    mtime: float,
    *,
    strip_special_bits: bool = True,
) -> None:
    """Set permissions, then the modification time, on *path*."""
    os.chmod(path, sanitise_mode(mode, strip_special_bits=strip_special_bits))
    os.utime(path, (time.time(), mtime))
