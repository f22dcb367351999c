"""Archive factory fixtures for safepack tests.

Every fixture generates a real, crafted ``tar.gz`` archive
programmatically using Python's ``tarfile`` and ``gzip`` modules.  No
mocks, no stubs.
"""

from __future__ import annotations

__author__ = "Artur Barseghyan <artur.barseghyan@gmail.com>"
__copyright__ = "2026 Artur Barseghyan"
__license__ = "MIT"

import gzip
import io
import tarfile

import pytest

# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _tgz_bytes(callback) -> bytes:
    """Create a gzip-compressed TAR archive via *callback(tf)*."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tf:
        callback(tf)
    return gzip.compress(buf.getvalue())


def _write_to_path(tmp_path, name: str, data: bytes) -> str:
    p = tmp_path / name
    p.write_bytes(data)
    return str(p)


def _add_regular(tf, name: str, content: bytes, *, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(content)
    info.mode = mode
    tf.addfile(info, io.BytesIO(content))


def _add_dir(tf, name: str, *, mode: int = 0o755) -> None:
    info = tarfile.TarInfo(name=name)
    info.type = tarfile.DIRTYPE
    info.mode = mode
    tf.addfile(info)


def _add_symlink(tf, name: str, target: str) -> None:
    info = tarfile.TarInfo(name=name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    tf.addfile(info)


def _add_hardlink(tf, name: str, target: str) -> None:
    info = tarfile.TarInfo(name=name)
    info.type = tarfile.LNKTYPE
    info.linkname = target
    tf.addfile(info)


@pytest.fixture()
def make_archive(tmp_path):
    """Return a builder: ``make_archive(callback, name=...)`` -> path."""

    def build(callback, name: str = "archive.tar.gz") -> str:
        return _write_to_path(tmp_path, name, _tgz_bytes(callback))

    return build


# ---------------------------------------------------------------------------
# path traversal archives
# ---------------------------------------------------------------------------


@pytest.fixture()
def traversal_archive(tmp_path):
    """Archive with a relative traversal entry ``../outside/evil.txt``."""

    def build(tf):
        _add_regular(tf, "../outside/evil.txt", b"pwned")

    return _write_to_path(tmp_path, "traversal.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def absolute_path_archive(tmp_path):
    """Archive with an absolute path entry ``/etc/passwd``."""

    def build(tf):
        _add_regular(tf, "/etc/passwd", b"root:x:0:0:")

    return _write_to_path(tmp_path, "absolute.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def pax_traversal_archive(tmp_path):
    """Archive with a safe ustar name but malicious PAX path override."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tf:
        info = tarfile.TarInfo(name="safe.txt")
        info.size = 5
        info.pax_headers = {"path": "../../etc/cron.d/evil"}
        tf.addfile(info, io.BytesIO(b"pwned"))
    return _write_to_path(tmp_path, "pax_traversal.tar.gz", gzip.compress(buf.getvalue()))


# ---------------------------------------------------------------------------
# symlink archives
# ---------------------------------------------------------------------------


@pytest.fixture()
def symlink_escape_archive(tmp_path):
    """Archive with a symlink pointing outside the extraction root."""

    def build(tf):
        _add_regular(tf, "readme.txt", b"safe content\n")
        _add_symlink(tf, "escape_link", "../../outside")

    return _write_to_path(tmp_path, "symlink_escape.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def symlink_deceptive_archive(tmp_path):
    """Archive with a symlink that looks internal but resolves outside."""

    def build(tf):
        _add_symlink(tf, "deceptive", "subdir/../../outside")

    return _write_to_path(tmp_path, "symlink_deceptive.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def symlink_absolute_archive(tmp_path):
    """Archive with an absolute symlink target."""

    def build(tf):
        _add_symlink(tf, "passwd", "/etc/passwd")

    return _write_to_path(tmp_path, "symlink_absolute.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def symlink_self_archive(tmp_path):
    """Archive with a symlink pointing at itself."""

    def build(tf):
        _add_symlink(tf, "loop", "loop")

    return _write_to_path(tmp_path, "symlink_self.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def symlink_cycle_archive(tmp_path):
    """Archive with ``link1 -> link2`` followed by ``link2 -> link1``."""

    def build(tf):
        _add_symlink(tf, "link1", "link2")
        _add_symlink(tf, "link2", "link1")

    return _write_to_path(tmp_path, "symlink_cycle.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def symlink_long_chain_archive(tmp_path):
    """Archive with a chain of twelve symlinks, each pointing at the next.

    Links are written tail first so every hop already exists when the
    link in front of it is extracted.
    """

    def build(tf):
        _add_regular(tf, "target.txt", b"end of chain\n")
        _add_symlink(tf, "chain_11", "target.txt")
        for i in range(10, -1, -1):
            _add_symlink(tf, f"chain_{i}", f"chain_{i + 1}")

    return _write_to_path(tmp_path, "symlink_long_chain.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def symlink_nested_escape_archive(tmp_path):
    """Symlink placed inside a symlinked directory that resolves to the
    root, whose text climbs out once followed physically.

    ``d/up -> ..`` makes ``d/up`` the root itself; ``d/up/x -> ../..``
    then looks like ``<root>`` lexically but leaves it on disk.
    """

    def build(tf):
        _add_dir(tf, "d/")
        _add_symlink(tf, "d/up", "..")
        _add_symlink(tf, "d/up/x", "../..")

    return _write_to_path(tmp_path, "symlink_nested.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def symlink_internal_archive(tmp_path):
    """Archive with a symlink that stays inside the extraction root."""

    def build(tf):
        _add_dir(tf, "data/")
        _add_regular(tf, "data/target.txt", b"target content\n")
        _add_symlink(tf, "internal_link.txt", "data/target.txt")
        _add_symlink(tf, "data/sibling.txt", "target.txt")

    return _write_to_path(tmp_path, "symlink_internal.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def symlink_overwrite_archive(tmp_path):
    """Archive where a symlink entry lands on an already extracted file."""

    def build(tf):
        _add_regular(tf, "target.txt", b"target\n")
        _add_regular(tf, "occupied.txt", b"first\n")
        _add_symlink(tf, "occupied.txt", "target.txt")

    return _write_to_path(tmp_path, "symlink_overwrite.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def write_through_symlink_archive(tmp_path):
    """Archive that plants a dangling internal symlink and then a file of
    the same name.
    """

    def build(tf):
        _add_symlink(tf, "planted", "nowhere.txt")
        _add_regular(tf, "planted", b"overwrite attempt")

    return _write_to_path(tmp_path, "write_through.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def redirected_parent_archive(tmp_path):
    """Archive that turns a directory into a link after another symlink
    climbed out of it with ``..``.

    ``p -> a/../z`` stays inside while ``a`` is a real directory.  The
    later ``a -> .`` would make ``p`` resolve next to the destination,
    where ``p/q`` (mode 0777, mtime 0) would be applied on the final
    directory pass.
    """

    def build(tf):
        _add_dir(tf, "a/")
        _add_dir(tf, "p/q/", mode=0o777)
        _add_symlink(tf, "p", "a/../z")
        _add_symlink(tf, "a", ".")

    return _write_to_path(tmp_path, "redirected_parent.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def replaced_tree_archive(tmp_path):
    """Archive whose directory holding a symlink is replaced by a link,
    followed by a valid symlink into the replaced tree.
    """

    def build(tf):
        _add_dir(tf, "d/")
        _add_symlink(tf, "d/l", "../y")
        _add_symlink(tf, "d", "z")
        _add_symlink(tf, "y", "d/l")

    return _write_to_path(tmp_path, "replaced_tree.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def symlink_replaced_by_hardlink_archive(tmp_path):
    """Archive where a symlink is replaced by a hard link, then a valid
    symlink points at the hard link.
    """

    def build(tf):
        _add_regular(tf, "file.txt", b"payload")
        _add_symlink(tf, "a", "b")
        _add_hardlink(tf, "a", "file.txt")
        _add_symlink(tf, "b", "a")

    return _write_to_path(tmp_path, "replaced_symlink.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def root_symlink_archive(tmp_path):
    """Archive whose symlink entry is named ``.``, i.e. the root itself."""

    def build(tf):
        _add_symlink(tf, ".", "elsewhere")

    return _write_to_path(tmp_path, "root_symlink.tar.gz", _tgz_bytes(build))


# ---------------------------------------------------------------------------
# hard link archives
# ---------------------------------------------------------------------------


@pytest.fixture()
def hardlink_internal_archive(tmp_path):
    """Archive with a valid internal hard link (target first)."""

    def build(tf):
        _add_regular(tf, "original.txt", b"original content\n")
        _add_hardlink(tf, "copy.txt", "original.txt")

    return _write_to_path(tmp_path, "hardlink_internal.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def hardlink_escape_archive(tmp_path):
    """Archive with a hard link pointing outside the extraction root."""

    def build(tf):
        _add_regular(tf, "normal.txt", b"normal content")
        _add_hardlink(tf, "hardlink", "../outside/outside.txt")

    return _write_to_path(tmp_path, "hardlink_escape.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def hardlink_deceptive_archive(tmp_path):
    """Archive with a hard link that looks internal but resolves outside."""

    def build(tf):
        _add_hardlink(tf, "deceptive", "subdir/../../outside/outside.txt")

    return _write_to_path(tmp_path, "hardlink_deceptive.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def hardlink_forward_ref_archive(tmp_path):
    """Archive where the hard link appears before its target."""

    def build(tf):
        _add_hardlink(tf, "link_first.txt", "target_later.txt")
        _add_regular(tf, "target_later.txt", b"target content\n")

    return _write_to_path(tmp_path, "hardlink_forward.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def hardlink_nested_archive(tmp_path):
    """Archive with a hard link in a subdirectory naming a top-level file.

    Link names are relative to the archive root, not to the entry's parent.
    """

    def build(tf):
        _add_regular(tf, "top.txt", b"top")
        _add_dir(tf, "nested/")
        _add_hardlink(tf, "nested/alias.txt", "top.txt")

    return _write_to_path(tmp_path, "hardlink_nested.tar.gz", _tgz_bytes(build))


# ---------------------------------------------------------------------------
# entry kinds
# ---------------------------------------------------------------------------


@pytest.fixture()
def unsupported_type_archive(tmp_path):
    """Archive with a regular file followed by an entry of type ``Z``."""

    def build(tf):
        _add_regular(tf, "normal.txt", b"normal content")
        info = tarfile.TarInfo(name="unsupported")
        info.type = b"Z"
        tf.addfile(info)

    return _write_to_path(tmp_path, "unsupported.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def fifo_archive(tmp_path):
    """Archive containing a FIFO entry, materialised as a plain file."""

    def build(tf):
        info = tarfile.TarInfo(name="my_fifo")
        info.type = tarfile.FIFOTYPE
        tf.addfile(info)

    return _write_to_path(tmp_path, "fifo.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def duplicate_file_archive(tmp_path):
    """Archive holding two regular files with the same name."""

    def build(tf):
        _add_regular(tf, "dup.txt", b"first")
        _add_regular(tf, "dup.txt", b"second")

    return _write_to_path(tmp_path, "duplicate.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def setuid_archive(tmp_path):
    """Archive with a regular file that has the setuid bit (04755)."""

    def build(tf):
        _add_regular(tf, "suid_binary", b"ELF\x00", mode=0o4755)

    return _write_to_path(tmp_path, "setuid.tar.gz", _tgz_bytes(build))


# ---------------------------------------------------------------------------
# malformed archives
# ---------------------------------------------------------------------------


@pytest.fixture()
def truncated_archive(tmp_path):
    """A .tar.gz archive truncated mid-member."""

    def build(tf):
        _add_regular(tf, "zeros.bin", bytes(range(256)) * 400)

    data = _tgz_bytes(build)
    return _write_to_path(tmp_path, "truncated.tar.gz", data[: len(data) // 2])


@pytest.fixture()
def not_gzip_archive(tmp_path):
    """A plain, uncompressed tar archive."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tf:
        _add_regular(tf, "plain.txt", b"plain")
    return _write_to_path(tmp_path, "plain.tar", buf.getvalue())


# ---------------------------------------------------------------------------
# legitimate archives
# ---------------------------------------------------------------------------


@pytest.fixture()
def legitimate_archive(tmp_path):
    """A perfectly safe multi-entry archive."""

    def build(tf):
        _add_regular(tf, "readme.txt", b"Hello, world!\n")
        _add_dir(tf, "data/")
        _add_regular(tf, "data/report.csv", b"a,b,c\n1,2,3\n")
        _add_regular(tf, "data/notes.txt", b"Some notes.\n")

    return _write_to_path(tmp_path, "legitimate.tar.gz", _tgz_bytes(build))


@pytest.fixture()
def source_tree(tmp_path):
    """A small directory tree to archive.

    ::

        src/project/
            README.md          (0o644)
            run.sh             (0o755)
            locked.txt         (0o444)
            empty/             (empty directory)
            pkg/
                module.py
                link.py -> module.py
    """
    root = tmp_path / "src" / "project"
    (root / "empty").mkdir(parents=True)
    (root / "pkg").mkdir()
    (root / "README.md").write_text("# project\n")
    (root / "run.sh").write_text("#!/bin/sh\necho hi\n")
    (root / "run.sh").chmod(0o755)
    (root / "locked.txt").write_text("read only\n")
    (root / "locked.txt").chmod(0o444)
    (root / "pkg" / "module.py").write_text("VALUE = 42\n")
    (root / "pkg" / "link.py").symlink_to("module.py")
    return root
