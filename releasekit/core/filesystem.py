"""
Filesystem helpers shared by the cache, the provisioners and the packager.

Toolchain archives are unpacked only after every member has been checked to
stay inside the destination. Manifests and cache metadata are written through
a sibling temporary file so readers never see half a file. Deletion of cache
and staging directories is confined to a caller supplied root.
"""

import hashlib
import os
import shutil
import stat
import sys
import tarfile
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Optional, Union

PathLike = Union[str, Path]


class FilesystemError(Exception):
    """Filesystem operation failed."""


class ArchiveExtractionError(FilesystemError):
    """A toolchain archive could not be unpacked."""


class UnsupportedArchiveFormat(ArchiveExtractionError):
    """The archive suffix maps to no known reader."""


class InsecureArchiveError(ArchiveExtractionError):
    """An archive member resolves outside the extraction root."""


def is_relative_to(path: Path, parent: Path) -> bool:
    """Return True when path lies below (or equals) parent."""
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


# ============================================================================
# Archives
# ============================================================================

# Suffix -> tarfile mode; None marks a zip file
_ARCHIVE_READERS = {
    ".zip": None,
    ".tar.gz": "r:gz",
    ".tgz": "r:gz",
    ".tar.xz": "r:xz",
    ".tar.bz2": "r:bz2",
    ".tbz2": "r:bz2",
}


def _reader_for(path: PathLike):
    name = Path(path).name.lower()
    for suffix, mode in _ARCHIVE_READERS.items():
        if name.endswith(suffix):
            return suffix, mode
    return None, None


def is_archive(path: PathLike) -> bool:
    """True if the file name ends in a suffix extract_archive understands."""
    suffix, _ = _reader_for(path)
    return suffix is not None


def _check_members(names: Iterable[str], root: Path) -> None:
    root = root.resolve()
    for name in names:
        if not is_relative_to((root / name).resolve(), root):
            raise InsecureArchiveError(
                f"Refusing to extract '{name}': it would land outside {root}"
            )


def extract_archive(archive_path: PathLike, destination: PathLike) -> None:
    """
    Unpack a zip or compressed tar archive into destination.

    Nothing is written until all member names have been checked.

    Args:
        archive_path: Archive file; its suffix selects the reader
        destination: Extraction root, created when missing

    Raises:
        UnsupportedArchiveFormat: Unknown suffix
        InsecureArchiveError: A member would escape destination
        ArchiveExtractionError: Missing or unreadable archive
    """
    archive_path = Path(archive_path)
    destination = Path(destination)

    if not archive_path.exists():
        raise ArchiveExtractionError(f"Archive not found: {archive_path}")

    suffix, mode = _reader_for(archive_path)
    if suffix is None:
        known = ", ".join(_ARCHIVE_READERS)
        raise UnsupportedArchiveFormat(
            f"Cannot unpack {archive_path.name}; expected one of: {known}"
        )

    destination.mkdir(parents=True, exist_ok=True)
    try:
        if mode is None:
            with zipfile.ZipFile(archive_path) as zf:
                _check_members(zf.namelist(), destination)
                zf.extractall(destination)
        else:
            with tarfile.open(archive_path, mode) as tf:
                _check_members(tf.getnames(), destination)
                if sys.version_info >= (3, 12):
                    tf.extractall(destination, filter="data")
                else:
                    tf.extractall(destination)
    except ArchiveExtractionError:
        raise
    except (OSError, zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
        raise ArchiveExtractionError(f"Cannot unpack {archive_path}: {e}") from e


# ============================================================================
# Writing, hashing, removal
# ============================================================================


def atomic_write(file_path: PathLike, content: Union[str, bytes]) -> None:
    """
    Replace file_path with content in a single rename.

    Text is encoded as UTF-8. Parent directories are created as needed.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, scratch = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(scratch, file_path)
    except BaseException:
        Path(scratch).unlink(missing_ok=True)
        raise


def _clear_readonly_and_retry(func, failed_path, _exc_info):
    # Windows refuses to unlink read-only files that toolchain installers leave
    os.chmod(failed_path, stat.S_IWRITE)
    func(failed_path)


def safe_rmtree(path: PathLike, require_prefix: Optional[PathLike] = None) -> None:
    """
    Delete a directory tree.

    Args:
        path: Directory to delete; a missing path is ignored
        require_prefix: When given, path must resolve somewhere below it

    Raises:
        ValueError: path is outside require_prefix
        FilesystemError: path is not a directory or could not be removed
    """
    target = Path(path).resolve()

    if require_prefix is not None:
        root = Path(require_prefix).resolve()
        if not is_relative_to(target, root):
            raise ValueError(f"Refusing to delete '{target}': outside '{root}'")

    if not target.exists():
        return
    if not target.is_dir():
        raise FilesystemError(f"Not a directory: {target}")

    try:
        shutil.rmtree(target, onerror=_clear_readonly_and_retry)
    except OSError as e:
        raise FilesystemError(f"Cannot delete '{target}': {e}") from e


def directory_size(path: PathLike) -> int:
    """Total size in bytes of all files below path."""
    return sum(f.stat().st_size for f in Path(path).rglob("*") if f.is_file())


def compute_file_hash(file_path: PathLike, algorithm: str = "sha256") -> str:
    """Hex digest of a file's content."""
    file_path = Path(file_path)
    if not file_path.is_file():
        raise FilesystemError(f"File not found: {file_path}")

    digest = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for block in iter(lambda: f.read(1 << 16), b""):
            digest.update(block)
    return digest.hexdigest()


@contextmanager
def temporary_directory(prefix: str = "releasekit-"):
    """Yield a fresh directory that is deleted when the block exits."""
    scratch = Path(tempfile.mkdtemp(prefix=prefix))
    try:
        yield scratch
    finally:
        safe_rmtree(scratch)


__all__ = [
    "FilesystemError",
    "ArchiveExtractionError",
    "UnsupportedArchiveFormat",
    "InsecureArchiveError",
    "is_relative_to",
    "is_archive",
    "extract_archive",
    "atomic_write",
    "safe_rmtree",
    "directory_size",
    "compute_file_hash",
    "temporary_directory",
]
