"""Archive extraction engine for zip and gzip-compressed tar input.

Both container formats are walked into :class:`ArchiveEntry` records, one at a
time and in archive order, and a single writer places each record on disk.
Every output path and every symlink target is checked for containment in the
destination directory before anything is written for that entry.

Extraction never rolls back: when an error is raised, entries processed before
it remain on disk and the destination should be treated as contaminated.
"""

from __future__ import annotations

import functools
import gzip
import io
import logging
import os
import stat
import tarfile
import zipfile
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, BinaryIO, Callable, Iterator, Optional, Set, Union

from .constants import COPY_CHUNK_SIZE, RESERVED_ZIP_PREFIXES
from .errors import (
    ArchiveReadError,
    ExtractionError,
    FilesystemWriteError,
    MalformedArchiveError,
    PathTraversalError,
)

ArchiveSource = Union[str, "os.PathLike[str]", bytes, bytearray, BinaryIO]

_ZIP_MAGIC = (b"PK\x03\x04", b"PK\x05\x06")
_GZIP_MAGIC = b"\x1f\x8b"

# Errors raised while decoding archive data rather than touching the filesystem.
_DECODE_ERRORS = (
    zipfile.BadZipFile,
    tarfile.TarError,
    gzip.BadGzipFile,
    zlib.error,
    EOFError,
)


class ArchiveFormat(str, Enum):
    ZIP = "zip"
    TAR_GZ = "tar.gz"


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    OTHER = "other"


@dataclass
class ArchiveEntry:
    """A logical unit inside an archive, produced while walking it."""

    path: str
    kind: EntryKind
    mode: int = 0
    link_target: Optional[str] = None
    opener: Optional[Callable[[], IO[bytes]]] = field(default=None, repr=False)


@dataclass
class ExtractionSummary:
    """What a single extraction wrote."""

    files: int = 0
    directories: int = 0
    symlinks: int = 0
    skipped: int = 0
    top_level: Set[str] = field(default_factory=set)

    def record(self, dest_root: Path, target: Path, kind: EntryKind) -> None:
        if kind is EntryKind.FILE:
            self.files += 1
        elif kind is EntryKind.DIRECTORY:
            self.directories += 1
        elif kind is EntryKind.SYMLINK:
            self.symlinks += 1
        parts = target.relative_to(dest_root).parts
        if parts:
            self.top_level.add(parts[0])


def detect_format(path: Union[str, "os.PathLike[str]"]) -> ArchiveFormat:
    """Infer the archive format from the file name, then from magic bytes."""
    name = os.fspath(path).lower()
    if name.endswith(".zip"):
        return ArchiveFormat.ZIP
    if name.endswith((".tar.gz", ".tgz")):
        return ArchiveFormat.TAR_GZ

    try:
        with open(path, "rb") as handle:
            head = handle.read(4)
    except OSError as exc:
        raise ArchiveReadError(f"Cannot read archive {name!r}: {exc}") from exc
    if head.startswith(_ZIP_MAGIC):
        return ArchiveFormat.ZIP
    if head.startswith(_GZIP_MAGIC):
        return ArchiveFormat.TAR_GZ
    raise MalformedArchiveError(f"Unrecognised archive format for {name!r}")


def extract_archive(
    source: ArchiveSource,
    archive_format: Union[ArchiveFormat, str],
    destination: Union[str, "os.PathLike[str]"],
    logger: Optional[logging.Logger] = None,
) -> ExtractionSummary:
    """Unpack ``source`` into ``destination``, keeping every entry inside it.

    ``source`` may be a filesystem path, the raw archive bytes or a readable
    binary file object (zip input must be seekable). The destination and its
    parents are created when missing.
    """
    log = logger or logging.getLogger(__name__)
    archive_format = ArchiveFormat(archive_format)
    dest_root = _prepare_destination(destination)
    summary = ExtractionSummary()

    with _open_source(source) as stream:
        if archive_format is ArchiveFormat.ZIP:
            entries = _iter_zip_entries(stream)
        else:
            entries = _iter_tar_entries(stream)
        for entry in entries:
            _write_entry(dest_root, entry, summary, log)

    log.debug(
        "Extracted %d files, %d directories, %d symlinks into %s (%d skipped).",
        summary.files,
        summary.directories,
        summary.symlinks,
        dest_root,
        summary.skipped,
    )
    return summary


def resolve_member_path(dest_root: Path, name: str) -> Path:
    """Return the on-disk location for entry ``name`` under ``dest_root``.

    ``..`` segments are collapsed and existing symlinks in the parent chain
    are resolved before the containment check. The final component is left
    unresolved so that an existing symlink at that location is replaced rather
    than followed.
    """
    relative = name.replace("\\", "/")
    candidate = Path(os.path.normpath(os.path.join(dest_root, relative)))
    if candidate == dest_root:
        return dest_root
    target = candidate.parent.resolve() / candidate.name
    if not _is_within(dest_root, target):
        raise PathTraversalError(
            f"Entry {name!r} resolves outside of {str(dest_root)!r}", entry=name
        )
    return target


def _is_within(base: Path, target: Path) -> bool:
    return target == base or base in target.parents


def _prepare_destination(destination: Union[str, "os.PathLike[str]"]) -> Path:
    root = Path(destination).expanduser()
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FilesystemWriteError(f"Failed to create directory {str(root)!r}: {exc}") from exc
    return root.resolve()


@contextmanager
def _open_source(source: ArchiveSource) -> Iterator[BinaryIO]:
    if isinstance(source, (bytes, bytearray)):
        yield io.BytesIO(source)
        return
    if hasattr(source, "read"):
        yield source  # type: ignore[misc]
        return
    try:
        handle = open(source, "rb")  # type: ignore[arg-type]
    except OSError as exc:
        raise ArchiveReadError(f"Cannot open archive {os.fspath(source)!r}: {exc}") from exc  # type: ignore[arg-type]
    with handle:
        yield handle


def _iter_zip_entries(stream: BinaryIO) -> Iterator[ArchiveEntry]:
    try:
        archive = zipfile.ZipFile(stream)
    except zipfile.BadZipFile as exc:
        raise MalformedArchiveError(f"Invalid zip archive: {exc}") from exc
    except OSError as exc:
        raise ArchiveReadError(f"Cannot read zip archive: {exc}") from exc

    with archive:
        for info in archive.infolist():
            name = info.filename
            if name.startswith(RESERVED_ZIP_PREFIXES):
                yield ArchiveEntry(name, EntryKind.OTHER)
                continue

            unix_mode = info.external_attr >> 16
            perm = stat.S_IMODE(unix_mode)
            if stat.S_ISLNK(unix_mode):
                try:
                    link_target = archive.read(info).decode("utf-8")
                except _DECODE_ERRORS + (UnicodeDecodeError,) as exc:
                    raise MalformedArchiveError(
                        f"Unreadable symlink entry {name!r}: {exc}", entry=name
                    ) from exc
                yield ArchiveEntry(name, EntryKind.SYMLINK, perm, link_target=link_target)
            elif info.is_dir():
                yield ArchiveEntry(name, EntryKind.DIRECTORY, perm)
            else:
                yield ArchiveEntry(
                    name,
                    EntryKind.FILE,
                    perm,
                    opener=functools.partial(archive.open, info),
                )


def _iter_tar_entries(stream: BinaryIO) -> Iterator[ArchiveEntry]:
    try:
        archive = tarfile.open(fileobj=stream, mode="r|gz")
    except _DECODE_ERRORS as exc:
        raise MalformedArchiveError(f"Invalid tar.gz archive: {exc}") from exc
    except OSError as exc:
        raise ArchiveReadError(f"Cannot read tar.gz archive: {exc}") from exc

    with archive:
        members = iter(archive)
        while True:
            try:
                member = next(members)
            except StopIteration:
                return
            except _DECODE_ERRORS as exc:
                raise MalformedArchiveError(f"Corrupt tar.gz archive: {exc}") from exc
            except OSError as exc:
                raise ArchiveReadError(f"Cannot read tar.gz archive: {exc}") from exc
            yield _tar_entry(archive, member)


def _tar_entry(archive: tarfile.TarFile, member: tarfile.TarInfo) -> ArchiveEntry:
    perm = stat.S_IMODE(member.mode)
    if member.isdir():
        return ArchiveEntry(member.name, EntryKind.DIRECTORY, perm)
    if member.isreg():
        return ArchiveEntry(
            member.name,
            EntryKind.FILE,
            perm,
            opener=functools.partial(archive.extractfile, member),
        )
    if member.issym():
        return ArchiveEntry(member.name, EntryKind.SYMLINK, perm, link_target=member.linkname)
    return ArchiveEntry(member.name, EntryKind.OTHER, perm)


def _write_entry(
    dest_root: Path,
    entry: ArchiveEntry,
    summary: ExtractionSummary,
    log: logging.Logger,
) -> None:
    if entry.kind is EntryKind.OTHER:
        log.debug("Skipping archive entry %r.", entry.path)
        summary.skipped += 1
        return

    target = resolve_member_path(dest_root, entry.path)
    if target == dest_root:
        if entry.kind is not EntryKind.DIRECTORY:
            raise PathTraversalError(
                f"Entry {entry.path!r} would replace the destination directory", entry=entry.path
            )
        return

    try:
        if entry.kind is EntryKind.DIRECTORY:
            _make_directory(target, entry.mode)
        elif entry.kind is EntryKind.FILE:
            _write_file(target, entry)
        else:
            _write_symlink(dest_root, target, entry)
    except ExtractionError:
        raise
    except OSError as exc:
        raise FilesystemWriteError(
            f"Failed writing entry {entry.path!r}: {exc}", entry=entry.path
        ) from exc
    summary.record(dest_root, target, entry.kind)


def _make_directory(target: Path, mode: int) -> None:
    target.mkdir(parents=True, exist_ok=True)
    if mode:
        # Owner keeps rwx so entries below this directory can still be written.
        os.chmod(target, mode | stat.S_IRWXU)


def _remove_existing(target: Path) -> None:
    if target.is_symlink() or target.is_file():
        target.unlink()


def _write_file(target: Path, entry: ArchiveEntry) -> None:
    if entry.opener is None:
        raise MalformedArchiveError(f"Entry {entry.path!r} has no content", entry=entry.path)
    target.parent.mkdir(parents=True, exist_ok=True)
    _remove_existing(target)

    try:
        source = entry.opener()
    except _DECODE_ERRORS as exc:
        raise MalformedArchiveError(
            f"Cannot read entry {entry.path!r}: {exc}", entry=entry.path
        ) from exc
    if source is None:
        raise MalformedArchiveError(f"Entry {entry.path!r} has no content", entry=entry.path)

    with source, target.open("wb") as handle:
        while True:
            try:
                chunk = source.read(COPY_CHUNK_SIZE)
            except _DECODE_ERRORS as exc:
                raise MalformedArchiveError(
                    f"Corrupt data in entry {entry.path!r}: {exc}", entry=entry.path
                ) from exc
            if not chunk:
                break
            handle.write(chunk)

    if entry.mode:
        os.chmod(target, entry.mode)


def _check_parent_steps(link_dir: Path, name: str, link_target: str) -> None:
    """Reject ``..`` steps taken from anything but a real directory.

    A component that is missing or is itself a symlink could be replaced by a
    later entry, which would move where the ``..`` lands.
    """
    current = link_dir
    for part in link_target.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if current.is_symlink() or not current.is_dir():
                raise PathTraversalError(
                    f"Symlink {name!r} -> {link_target!r} steps out of {str(current)!r}, "
                    "which is not a real directory",
                    entry=name,
                )
            current = current.parent
        else:
            current = current / part


def _write_symlink(dest_root: Path, target: Path, entry: ArchiveEntry) -> None:
    link_target = entry.link_target or ""
    if not link_target:
        raise MalformedArchiveError(f"Symlink entry {entry.path!r} has no target", entry=entry.path)

    target.parent.mkdir(parents=True, exist_ok=True)
    _check_parent_steps(target.parent, entry.path, link_target)
    # resolve() follows links already on disk before applying each "..".
    pointed = Path(os.path.join(target.parent, link_target)).resolve()
    if not _is_within(dest_root, pointed):
        raise PathTraversalError(
            f"Symlink {entry.path!r} -> {link_target!r} points outside of {str(dest_root)!r}",
            entry=entry.path,
        )

    _remove_existing(target)
    os.symlink(link_target, target)
