"""Artifact acquisition from a local directory or an HTTP(S) base URL."""

from __future__ import annotations

import hashlib
import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional

from .constants import CHECKSUM_SUFFIX, COPY_CHUNK_SIZE, DOWNLOAD_TIMEOUT
from .errors import TransferError


def is_remote(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


def artifact_location(source: str, name: str) -> str:
    if is_remote(source):
        return f"{source.rstrip('/')}/{name}"
    return str(Path(source).expanduser() / name)


def _download_file(url: str, destination: Path) -> None:
    with urllib.request.urlopen(url, timeout=DOWNLOAD_TIMEOUT) as response, destination.open(  # noqa: S310
        "wb"
    ) as out_file:
        while True:
            chunk = response.read(COPY_CHUNK_SIZE)
            if not chunk:
                break
            out_file.write(chunk)


def _verify_sha512(archive_path: Path, checksum_path: Path) -> bool:
    lines = checksum_path.read_text(encoding="utf-8", errors="ignore").splitlines()
    expected = ""
    for line in lines:
        if archive_path.name in line:
            expected = line.split()[0].strip()
            break
    if not expected and len(lines) == 1 and lines[0].strip():
        expected = lines[0].split()[0].strip()
    if not expected:
        return False

    digest = hashlib.sha512()
    with archive_path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(COPY_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest().lower() == expected.lower()


def _obtain(source: str, name: str, destination: Path) -> None:
    location = artifact_location(source, name)
    try:
        if is_remote(source):
            _download_file(location, destination)
        else:
            shutil.copyfile(location, destination)
    except (urllib.error.URLError, TimeoutError, OSError) as exc:
        raise TransferError(f"Failed to obtain {location}: {exc}", source=location) from exc


def _obtain_checksum(source: str, name: str, staging_dir: Path) -> Optional[Path]:
    checksum_name = f"{name}{CHECKSUM_SUFFIX}"
    destination = staging_dir / checksum_name
    if not is_remote(source):
        local = Path(artifact_location(source, checksum_name))
        if not local.is_file():
            return None
    try:
        _obtain(source, checksum_name, destination)
    except TransferError:
        return None
    return destination


def fetch_artifact(
    source: str,
    name: str,
    staging_dir: Path,
    logger: logging.Logger,
    verify_checksum: bool = True,
) -> Path:
    """Copy or download artifact ``name`` from ``source`` into ``staging_dir``."""
    staging_dir.mkdir(parents=True, exist_ok=True)
    destination = staging_dir / name
    logger.info("Fetching %s", artifact_location(source, name))
    _obtain(source, name, destination)

    if not verify_checksum:
        return destination

    checksum = _obtain_checksum(source, name, staging_dir)
    if checksum is None:
        logger.info("No %s checksum published for %s; skipping verification.", CHECKSUM_SUFFIX, name)
        return destination
    if not _verify_sha512(destination, checksum):
        raise TransferError(
            f"Checksum verification failed for {name}",
            source=artifact_location(source, name),
        )
    logger.debug("Checksum verified for %s.", name)
    return destination
