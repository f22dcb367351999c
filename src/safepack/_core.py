"""Archivers: pack source trees into a ``tar.gz`` stream and unpack such a
stream onto the file system without ever writing outside the destination.

``new_archiver()`` is the only supported way to build an archiver.  Each
archiver holds immutable options only; all per-extraction state lives in
an ``ExtractionSession`` owned by the ``unarchive`` call, so one archiver
can be shared between threads.
"""

from __future__ import annotations

__author__ = "Artur Barseghyan <artur.barseghyan@gmail.com>"
__copyright__ = "2026 Artur Barseghyan"
__license__ = "MIT"
__all__ = (
    "BEST_COMPRESSION",
    "BEST_SPEED",
    "DEFAULT_COMPRESSION",
    "NO_COMPRESSION",
    "Archiver",
    "ArchiverOptions",
    "TarGzipArchiver",
    "archive",
    "new_archiver",
    "unarchive",
)

import abc
import gzip
import logging
import os
import stat
import tarfile
import threading
import time
import zlib
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import BinaryIO

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
    SourceNotFoundError,
    SymlinkEscapeError,
    TraversalAttemptError,
    UnsafeEntryError,
    UnsupportedEntryKindError,
    UnsupportedFormatError,
)
from safepack._guard import filter_redundant_paths, resolve_target_path
from safepack._header import build_header, entry_kind, stored_name
from safepack._sandbox import (
    ExtractionSession,
    apply_metadata,
    remove_existing,
    sanitise_mode,
)
from safepack._streamer import closing_stream, copy_exact, open_binary, walk_tree

log = logging.getLogger("safepack")
security_log = logging.getLogger("safepack.security")

DEFAULT_COMPRESSION = zlib.Z_DEFAULT_COMPRESSION
NO_COMPRESSION = zlib.Z_NO_COMPRESSION
BEST_SPEED = zlib.Z_BEST_SPEED
BEST_COMPRESSION = zlib.Z_BEST_COMPRESSION

SUPPORTED_FORMATS = ("tar.gz",)

# Flags for creating extracted regular files: never reuse or follow
# anything already at the target path.
_CREATE_FLAGS = (
    os.O_WRONLY
    | os.O_CREAT
    | os.O_EXCL
    | getattr(os, "O_NOFOLLOW", 0)
    | getattr(os, "O_BINARY", 0)
)

Source = str | os.PathLike[str]
Stream = str | os.PathLike[str] | BinaryIO


# ---- environment-variable configuration helpers ----------------------------
# Each helper reads the relevant SAFEPACK_* variable and returns its typed
# value, falling back to *fallback* on absence or parse failure.


def _env_int(name: str, fallback: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def _env_bool(name: str, fallback: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return fallback
    return raw.lower() not in ("0", "false", "no", "off", "")


# Module-level defaults evaluated once at import time.
_DEFAULT_COMPRESSION_LEVEL: int = _env_int(
    "SAFEPACK_COMPRESSION_LEVEL", DEFAULT_COMPRESSION
)
_DEFAULT_PRESERVE_PATH: bool = _env_bool("SAFEPACK_PRESERVE_PATH", False)
_DEFAULT_STRIP_SPECIAL_BITS: bool = _env_bool("SAFEPACK_STRIP_SPECIAL_BITS", True)


def _check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation cancelled")


@dataclass(frozen=True, slots=True)
class ArchiverOptions:
    """Immutable archiver configuration.

    :param compression_level: gzip level: ``-1`` (default), ``0`` (none),
        ``1`` (fastest) through ``9`` (smallest).  zlib's Huffman-only
        strategy (``-2``) is not a level ``gzip.GzipFile`` accepts and is
        rejected.
    :param preserve_path: For *file* sources, store the full given path
        instead of the base name.  Directory sources always keep their
        own name.
    :param strip_special_bits: Strip setuid/setgid/sticky bits from
        extracted modes.
    """

    compression_level: int = DEFAULT_COMPRESSION
    preserve_path: bool = False
    strip_special_bits: bool = True

    def __post_init__(self) -> None:
        level = self.compression_level
        if isinstance(level, bool) or not isinstance(level, int):
            raise ValueError(f"Compression level must be an integer, got {level!r}")
        if level != DEFAULT_COMPRESSION and not NO_COMPRESSION <= level <= BEST_COMPRESSION:
            raise ValueError(
                f"Invalid compression level {level} "
                f"(expected -1 or 0-9; -2 Huffman-only is not supported)"
            )


class Archiver(abc.ABC):
    """Packs source paths into an archive stream and unpacks it again."""

    def __init__(
        self,
        options: ArchiverOptions,
        *,
        on_security_event: Callable[[SecurityEvent], None] | None = None,
    ) -> None:
        self.options = options
        self._on_security_event = on_security_event

    @abc.abstractmethod
    def archive(
        self,
        sources: Iterable[Source],
        sink: Stream,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        """Write an archive of *sources* to *sink*."""

    @abc.abstractmethod
    def unarchive(
        self,
        source: Stream,
        destination: Source,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        """Extract the archive read from *source* into *destination*."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.options!r})"


class TarGzipArchiver(Archiver):
    """Archiver for gzip-compressed PAX tar streams.

    *sink* and *source* may be paths or binary file objects.  File objects
    are left open; the source does not need to be seekable.
    """

    # ---- archiving ---------------------------------------------------------

    def archive(
        self,
        sources: Iterable[Source],
        sink: Stream,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        _check_cancelled(cancel)

        filtered = filter_redundant_paths([os.fspath(s) for s in sources])
        log.debug("Archiving %d source(s)", len(filtered))

        try:
            with (
                open_binary(sink, "wb") as raw,
                closing_stream(
                    gzip.GzipFile(
                        filename="",
                        mode="wb",
                        compresslevel=self.options.compression_level,
                        fileobj=raw,
                    )
                ) as gz,
                closing_stream(
                    tarfile.open(fileobj=gz, mode="w|", format=tarfile.PAX_FORMAT)
                ) as tar,
            ):
                for source in filtered:
                    self._archive_source(tar, source, cancel)
                    _check_cancelled(cancel)
        except ArchiverError:
            raise
        except (OSError, tarfile.TarError) as exc:
            raise ArchiveIOError(f"Failed to write archive: {exc}") from exc

    def _archive_source(
        self,
        tar: tarfile.TarFile,
        source: str,
        cancel: threading.Event | None,
    ) -> None:
        """Walk *source* and append every entry below it to *tar*."""
        source_is_dir = os.path.isdir(source)

        for path, st in walk_tree(source):
            _check_cancelled(cancel)

            name = stored_name(
                source,
                path,
                source_is_dir=source_is_dir,
                preserve_path=self.options.preserve_path,
                is_dir=stat.S_ISDIR(st.st_mode),
            )
            info = build_header(path, st, name)

            if not info.isreg():
                tar.addfile(info)
                continue

            try:
                fobj = open(path, "rb")  # noqa: SIM115
            except OSError as exc:
                raise SourceNotFoundError(f"Cannot open {path!r}: {exc}") from exc
            # addfile() copies at most info.size bytes, so a file growing
            # underneath us cannot overrun its header.
            with fobj:
                tar.addfile(info, fobj)
            log.debug("Archived %s", name)

    # ---- extraction --------------------------------------------------------

    def unarchive(
        self,
        source: Stream,
        destination: Source,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        _check_cancelled(cancel)

        session = ExtractionSession(
            os.path.abspath(destination),
            strip_special_bits=self.options.strip_special_bits,
        )

        try:
            os.makedirs(session.root, 0o755, exist_ok=True)
            with (
                open_binary(source, "rb") as raw,
                closing_stream(gzip.GzipFile(fileobj=raw, mode="rb")) as gz,
                closing_stream(tarfile.open(fileobj=gz, mode="r|")) as tar,
            ):
                while True:
                    _check_cancelled(cancel)
                    info = tar.next()
                    if info is None:
                        break
                    self._extract_one(tar, info, session)
            session.finalise_directories()
        except ArchiverError:
            raise
        except (tarfile.TarError, EOFError, zlib.error, gzip.BadGzipFile) as exc:
            # EOFError comes straight from the gzip decompressor on a
            # truncated stream.
            raise MalformedArchiveError(f"Malformed archive: {exc}") from exc
        except OSError as exc:
            raise ArchiveIOError(f"Extraction failed: {exc}") from exc

    def _extract_one(
        self,
        tar: tarfile.TarFile,
        info: tarfile.TarInfo,
        session: ExtractionSession,
    ) -> None:
        """Guard and extract a single member, reporting rejections."""
        kind = entry_kind(info)
        try:
            self._extract_one_inner(tar, info, kind, session)
        except (UnsafeEntryError, FileConflictError, UnsupportedEntryKindError) as exc:
            self._fire_event(exc, kind)
            raise

    def _extract_one_inner(
        self,
        tar: tarfile.TarFile,
        info: tarfile.TarInfo,
        kind: EntryKind,
        session: ExtractionSession,
    ) -> None:
        target = resolve_target_path(info.name, session.root)

        match kind:
            case EntryKind.DIRECTORY:
                self._extract_directory(info, target, session)
            case EntryKind.REGULAR_FILE:
                self._extract_file(tar, info, target, session)
            case EntryKind.SYMLINK:
                self._extract_symlink(info, target, session)
            case EntryKind.HARD_LINK:
                self._extract_hardlink(info, target, session)
            case _:
                raise UnsupportedEntryKindError(
                    f"Unsupported tar header type {info.type!r}: {info.name!r}"
                )
        log.debug("Extracted %s (%s)", info.name, kind.value)

    def _extract_directory(
        self,
        info: tarfile.TarInfo,
        target: str,
        session: ExtractionSession,
    ) -> None:
        if target == session.root:
            return
        session.ensure_physical(
            target,
            TraversalAttemptError,
            f"Directory escapes through an existing link: {info.name!r}",
        )
        # Owner keeps full access until the final pass so that a read-only
        # directory can still be populated.
        mode = sanitise_mode(
            info.mode, strip_special_bits=self.options.strip_special_bits
        )
        os.makedirs(target, mode | stat.S_IRWXU, exist_ok=True)
        os.utime(target, (time.time(), info.mtime))
        session.record_directory(target, info.mode, info.mtime)

    def _extract_file(
        self,
        tar: tarfile.TarFile,
        info: tarfile.TarInfo,
        target: str,
        session: ExtractionSession,
    ) -> None:
        parent = os.path.dirname(target)
        session.ensure_physical(
            parent,
            TraversalAttemptError,
            f"File escapes through an existing link: {info.name!r}",
        )
        os.makedirs(parent, 0o755, exist_ok=True)

        # An archive built without preserve_path can hold two files with the
        # same base name.  Never overwrite, and never write through a link.
        if os.path.lexists(target):
            raise FileConflictError(f"File conflict detected: {info.name!r} already exists")
        try:
            fd = os.open(target, _CREATE_FLAGS, 0o600)
        except FileExistsError as exc:
            raise FileConflictError(
                f"File conflict detected: {info.name!r} already exists"
            ) from exc

        with os.fdopen(fd, "wb") as out:
            member = tar.extractfile(info)
            if member is not None:
                with member:
                    copy_exact(member, out, info.size)

        apply_metadata(
            target,
            info.mode,
            info.mtime,
            strip_special_bits=self.options.strip_special_bits,
        )

    def _extract_symlink(
        self,
        info: tarfile.TarInfo,
        target: str,
        session: ExtractionSession,
    ) -> None:
        session.ensure_not_root(target, info.name)
        parent = os.path.dirname(target)
        session.ensure_physical(
            parent,
            TraversalAttemptError,
            f"Symlink escapes through an existing link: {info.name!r}",
        )
        session.resolve_symlink(target, info.linkname, info.name)

        os.makedirs(parent, 0o755, exist_ok=True)
        remove_existing(target)
        session.forget(target)
        os.symlink(info.linkname, target)
        session.record_symlink(target, info.linkname)
        _recheck_links(target, session)

    def _extract_hardlink(
        self,
        info: tarfile.TarInfo,
        target: str,
        session: ExtractionSession,
    ) -> None:
        session.ensure_not_root(target, info.name)
        link_source = session.resolve_hardlink(info.linkname, info.name)
        parent = os.path.dirname(target)
        session.ensure_physical(
            parent,
            TraversalAttemptError,
            f"Hard link escapes through an existing link: {info.name!r}",
        )

        os.makedirs(parent, 0o755, exist_ok=True)
        remove_existing(target)
        session.forget(target)
        # The referenced member must already be on disk; a forward
        # reference fails here and surfaces as ArchiveIOError.
        os.link(link_source, target, follow_symlinks=False)
        _recheck_links(target, session)

    def _fire_event(self, exc: ArchiverError, kind: EntryKind) -> None:
        """Invoke the on_security_event callback if configured."""
        if self._on_security_event is None:
            return

        event = SecurityEvent(
            event_type=_event_type_for(exc),
            entry_kind=kind,
            timestamp=time.time(),
        )
        try:
            self._on_security_event(event)
        except Exception:
            security_log.exception("on_security_event callback raised an exception")


def _recheck_links(target: str, session: ExtractionSession) -> None:
    """Undo the link just created at *target* if it redirects an earlier
    symlink outside the destination.
    """
    try:
        session.recheck_symlinks()
    except SymlinkEscapeError:
        os.unlink(target)
        session.forget(target)
        raise


def _event_type_for(exc: ArchiverError) -> str:
    """Derive a security event type string from the rejection."""
    match exc:
        case AbsolutePathError() | TraversalAttemptError():
            return "traversal_detected"
        case (
            AbsoluteSymlinkError()
            | SymlinkEscapeError()
            | CircularSymlinkError()
            | ChainTooDeepError()
        ):
            return "symlink_violation"
        case HardLinkEscapeError():
            return "hardlink_violation"
        case FileConflictError():
            return "file_conflict"
        case UnsupportedEntryKindError():
            return "unsupported_entry"
    return "security_violation"


def new_archiver(
    format: str = "tar.gz",  # noqa: A002
    *,
    compression_level: int = _DEFAULT_COMPRESSION_LEVEL,
    preserve_path: bool = _DEFAULT_PRESERVE_PATH,
    strip_special_bits: bool = _DEFAULT_STRIP_SPECIAL_BITS,
    on_security_event: Callable[[SecurityEvent], None] | None = None,
) -> Archiver:
    """Build an archiver for *format*.

    :raises UnsupportedFormatError: If *format* is not ``"tar.gz"``.
    :raises ValueError: If *compression_level* is out of range.
    """
    options = ArchiverOptions(
        compression_level=compression_level,
        preserve_path=preserve_path,
        strip_special_bits=strip_special_bits,
    )

    match format:
        case "tar.gz":
            return TarGzipArchiver(options, on_security_event=on_security_event)

    raise UnsupportedFormatError(
        f"Unsupported archive format: {format!r} "
        f"(supported formats: {', '.join(SUPPORTED_FORMATS)})"
    )


def archive(
    sources: Iterable[Source],
    sink: Stream,
    *,
    cancel: threading.Event | None = None,
    **kwargs: object,
) -> None:
    """Archive *sources* into *sink* with a ``tar.gz`` archiver.

    All other keyword arguments are forwarded to ``new_archiver()``.
    """
    new_archiver(**kwargs).archive(sources, sink, cancel=cancel)  # type: ignore[arg-type]


def unarchive(
    source: Stream,
    destination: Source,
    *,
    cancel: threading.Event | None = None,
    **kwargs: object,
) -> None:
    """Extract *source* into *destination* with a ``tar.gz`` archiver.

    All other keyword arguments are forwarded to ``new_archiver()``.
    """
    new_archiver(**kwargs).unarchive(source, destination, cancel=cancel)  # type: ignore[arg-type]
