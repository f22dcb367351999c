"""The Streamer: tree walking and byte copying between the file system and
the archive streams.

Content is always moved in fixed-size chunks and never beyond the size
recorded in the member header, in either direction.
"""

from __future__ import annotations

__author__ = "Artur Barseghyan <artur.barseghyan@gmail.com>"
__copyright__ = "2026 Artur Barseghyan"
__license__ = "MIT"
__all__ = (
    "closing_stream",
    "copy_exact",
    "open_binary",
    "walk_tree",
)

import contextlib
import os
import stat
from collections.abc import Iterator
from typing import BinaryIO, Protocol, TypeVar

from safepack._exceptions import MalformedArchiveError, SourceNotFoundError

# Chunk size for streaming copies.
_CHUNK_SIZE = 65536


class _Closable(Protocol):
    def close(self) -> None: ...


_StreamT = TypeVar("_StreamT", bound=_Closable)


def walk_tree(root: str) -> Iterator[tuple[str, os.stat_result]]:
    """Yield ``(path, lstat_result)`` for *root* and everything below it.

    Pre-order: a directory is yielded before its children, children in
    name order.  Symlinks are reported, never followed.  The generator is
    single-pass.

    Raises ``SourceNotFoundError`` if an entry cannot be stat'ed or a
    directory cannot be listed.
    """
    stack = [root]
    while stack:
        path = stack.pop()
        try:
            st = os.lstat(path)
        except OSError as exc:
            raise SourceNotFoundError(f"Cannot stat {path!r}: {exc}") from exc

        yield path, st

        if not stat.S_ISDIR(st.st_mode):
            continue
        try:
            names = os.listdir(path)
        except OSError as exc:
            raise SourceNotFoundError(f"Cannot list {path!r}: {exc}") from exc
        # Reversed so that popping restores name order.
        stack.extend(os.path.join(path, name) for name in sorted(names, reverse=True))


def copy_exact(source: BinaryIO, dest: BinaryIO, size: int) -> None:
    """Copy exactly *size* bytes from *source* to *dest*.

    Raises ``MalformedArchiveError`` if *source* ends early.
    """
    remaining = size
    while remaining > 0:
        chunk = source.read(min(_CHUNK_SIZE, remaining))
        if not chunk:
            raise MalformedArchiveError(
                f"Unexpected end of data: {remaining} of {size} bytes missing"
            )
        dest.write(chunk)
        remaining -= len(chunk)


@contextlib.contextmanager
def closing_stream(stream: _StreamT) -> Iterator[_StreamT]:
    """Close *stream* on exit.

    If the body raised, a failure while closing is suppressed so the
    original error surfaces.  Otherwise the close failure propagates.
    """
    try:
        yield stream
    except BaseException:
        with contextlib.suppress(Exception):
            stream.close()
        raise
    stream.close()


@contextlib.contextmanager
def open_binary(
    file: str | os.PathLike[str] | BinaryIO,
    mode: str,
) -> Iterator[BinaryIO]:
    """Yield a binary file object for *file*.

    Paths are opened with *mode* and closed on exit.  File objects are
    passed through untouched and stay open.
    """
    if isinstance(file, (str, os.PathLike)):
        with open(file, mode) as fobj:
            yield fobj  # type: ignore[misc]
        return
    yield file
