"""The Guard: lexical path containment, member-name resolution, and
redundant source filtering.

Everything here is a pure path computation except
``filter_redundant_paths``, which needs to stat its inputs to tell
directories from files.  Symlinks are never resolved by these helpers;
callers that need physical containment use ``_sandbox.ensure_physical``
on top.
"""

from __future__ import annotations

__author__ = "Artur Barseghyan <artur.barseghyan@gmail.com>"
__copyright__ = "2026 Artur Barseghyan"
__license__ = "MIT"
__all__ = (
    "filter_redundant_paths",
    "is_absolute_name",
    "is_within",
    "reject_null_bytes",
    "resolve_target_path",
)

import logging
import os
import stat
from dataclasses import dataclass

from safepack._exceptions import (
    AbsolutePathError,
    PathResolutionError,
    TraversalAttemptError,
    UnsafeEntryError,
)

log = logging.getLogger("safepack.security")


def is_within(path: str, root: str) -> bool:
    """Return True if *path* is *root* or lies underneath it.

    Both arguments are normalised lexically first (``.``/``..`` and
    trailing separators).  No file-system access is performed, so this
    works for paths that do not exist yet.
    """
    if not path or not root:
        return False

    path = os.path.normpath(path)
    root = os.path.normpath(root)
    if path == root:
        return True

    # "/" (or "C:\") already ends with a separator after normalisation.
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def is_absolute_name(name: str) -> bool:
    """Return True if *name* is absolute on any platform.

    Catches POSIX roots, Windows backslash roots and drive-letter
    prefixes (``C:``) regardless of the platform we are running on.
    """
    if name.startswith(("/", "\\", os.sep)):
        return True
    return len(name) > 1 and name[1] == ":" and name[0].isascii() and name[0].isalpha()


def reject_null_bytes(value: str, what: str) -> None:
    """Raise ``UnsafeEntryError`` if *value* contains a NUL character."""
    if "\x00" in value:
        raise UnsafeEntryError(f"Null byte in {what}: {value[:256]!r}")


def resolve_target_path(name: str, root: str) -> str:
    """Resolve member *name* onto destination *root* and return the target.

    Raises ``AbsolutePathError`` for absolute names and
    ``TraversalAttemptError`` if the joined path escapes *root*.
    """
    reject_null_bytes(name, "member name")
    cleaned = os.path.normpath(name)

    if is_absolute_name(cleaned):
        log.warning("Rejected absolute member name")
        raise AbsolutePathError(f"Absolute paths are not allowed: {name!r}")

    target = os.path.normpath(os.path.join(root, cleaned))
    if not is_within(target, root):
        log.warning("Rejected member name escaping the destination")
        raise TraversalAttemptError(f"Path traversal detected: {name!r}")

    return target


# ---- redundant source filtering --------------------------------------------


@dataclass(frozen=True, slots=True)
class _SourceInfo:
    original: str
    abs: str
    is_dir: bool


def filter_redundant_paths(paths: list[str]) -> list[str]:
    """Drop every path already covered by a directory in *paths*.

    Paths are compared by absolute form, shortest first, so an ancestor
    is always seen before its descendants.  Non-directories never cover
    anything.  Returns the kept paths in their original spelling.

    Raises ``PathResolutionError`` if any path cannot be made absolute
    or stat'ed.
    """
    if len(paths) <= 1:
        return list(paths)

    infos: list[_SourceInfo] = []
    for path in paths:
        try:
            abs_path = os.path.abspath(path)
            is_dir = stat.S_ISDIR(os.stat(abs_path).st_mode)
        except (OSError, ValueError) as exc:
            raise PathResolutionError(f"Failed to resolve source {path!r}: {exc}") from exc

        # Trailing separator so "/a/dir" does not cover "/a/directory".
        if is_dir and not abs_path.endswith(os.sep):
            abs_path += os.sep
        infos.append(_SourceInfo(original=path, abs=abs_path, is_dir=is_dir))

    infos.sort(key=lambda info: len(info.abs))

    result: list[str] = []
    for i, info in enumerate(infos):
        covered = any(
            prev.is_dir and info.abs.startswith(prev.abs) for prev in infos[:i]
        )
        if covered:
            log.debug("Dropping redundant source %r", info.original)
            continue
        result.append(info.original)

    return result
