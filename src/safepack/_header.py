"""Header codec: file-system entry <-> ``tarfile.TarInfo``.

Headers are built by hand from an ``lstat`` result rather than through
``TarFile.gettarinfo()``, which would turn files with several links into
``LNKTYPE`` entries.  The writer always emits full content for regular
files.
"""

from __future__ import annotations

__author__ = "Artur Barseghyan <artur.barseghyan@gmail.com>"
__copyright__ = "2026 Artur Barseghyan"
__license__ = "MIT"
__all__ = (
    "build_header",
    "entry_kind",
    "stored_name",
)

import os
import stat
import tarfile

from safepack._events import EntryKind
from safepack._exceptions import UnsupportedEntryKindError


def build_header(path: str, st: os.stat_result, name: str) -> tarfile.TarInfo:
    """Return a ``TarInfo`` named *name* describing the entry at *path*.

    *st* must come from ``os.lstat`` so that symlinks are described as
    links; their targets are never followed.

    Raises ``UnsupportedEntryKindError`` for sockets and other kinds the
    tar format cannot carry.
    """
    info = tarfile.TarInfo(name)
    info.mode = stat.S_IMODE(st.st_mode)
    info.mtime = int(st.st_mtime)
    info.uid = st.st_uid
    info.gid = st.st_gid

    mode = st.st_mode
    if stat.S_ISLNK(mode):
        info.type = tarfile.SYMTYPE
        info.linkname = os.readlink(path)
    elif stat.S_ISDIR(mode):
        info.type = tarfile.DIRTYPE
    elif stat.S_ISREG(mode):
        info.type = tarfile.REGTYPE
        info.size = st.st_size
    elif stat.S_ISFIFO(mode):
        info.type = tarfile.FIFOTYPE
    elif stat.S_ISCHR(mode) or stat.S_ISBLK(mode):
        info.type = tarfile.CHRTYPE if stat.S_ISCHR(mode) else tarfile.BLKTYPE
        info.devmajor = os.major(st.st_rdev)
        info.devminor = os.minor(st.st_rdev)
    else:
        raise UnsupportedEntryKindError(f"Cannot archive {path!r}: unsupported file type")

    return info


def stored_name(
    source: str,
    path: str,
    *,
    source_is_dir: bool,
    preserve_path: bool,
    is_dir: bool,
) -> str:
    """Compute the stored member name for *path*, walked from *source*.

    A directory source always keeps its own leaf name as the first
    component, whatever *preserve_path* says.  A file source is stored
    under its full given path when *preserve_path* is set, otherwise
    under its base name.
    """
    if source_is_dir:
        parent = os.path.dirname(os.path.abspath(source))
        name = os.path.relpath(os.path.abspath(path), parent)
    elif preserve_path:
        name = source
    else:
        name = os.path.basename(path)

    if os.sep != "/":
        name = name.replace(os.sep, "/")

    if is_dir and not name.endswith("/"):
        name += "/"

    return name.lstrip("/")


def entry_kind(info: tarfile.TarInfo) -> EntryKind:
    """Classify a header read from an archive."""
    if info.isdir():
        return EntryKind.DIRECTORY
    if info.issym():
        return EntryKind.SYMLINK
    if info.islnk():
        return EntryKind.HARD_LINK
    # Devices and FIFOs are materialised as plain files.
    if info.isreg() or info.isdev():
        return EntryKind.REGULAR_FILE
    return EntryKind.OTHER
