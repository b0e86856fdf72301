"""Zip transport for scene bundles.

A bundle travels as a single zip archive of named byte streams. Directory
entries are never written and are skipped on read, so a round trip yields
exactly the file entries that went in.
"""

from __future__ import annotations

import asyncio
import io
import logging
import zipfile
from pathlib import Path
from typing import Iterable, Mapping

from ..core.errors import MalformedArchiveError

logger = logging.getLogger(__name__)

Entries = Mapping[str, bytes] | Iterable[tuple[str, bytes]]


def _iter_entries(entries: Entries) -> Iterable[tuple[str, bytes]]:
    if isinstance(entries, Mapping):
        return entries.items()
    return entries


def pack_archive(entries: Entries) -> bytes:
    """Pack named byte streams into an in-memory zip archive.

    Args:
        entries: Mapping or iterable of (archive path, data)

    Returns:
        Zip archive bytes
    """
    buffer = io.BytesIO()
    count = 0
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in _iter_entries(entries):
            zf.writestr(name, data)
            count += 1

    logger.debug(f"Packed {count} archive entries")
    return buffer.getvalue()


def unpack_archive(data: bytes) -> dict[str, bytes]:
    """Read every file entry of a zip archive.

    Raises:
        MalformedArchiveError: If the data is not a readable zip archive
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
            return {
                info.filename: zf.read(info)
                for info in zf.infolist()
                if not info.is_dir()
            }
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise MalformedArchiveError(f"Not a readable zip archive: {e}") from e


def save_archive(path: str | Path, data: bytes) -> Path:
    """Write already packed archive bytes to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    logger.info(f"Wrote archive {path}")
    return path


def write_archive(path: str | Path, entries: Entries) -> Path:
    """Pack entries and write the archive to ``path``."""
    return save_archive(path, pack_archive(entries))


def read_archive(path: str | Path) -> dict[str, bytes]:
    """Read an archive from disk.

    Raises:
        MalformedArchiveError: If the file is not a readable zip archive
    """
    return unpack_archive(Path(path).read_bytes())


async def write_archive_async(path: str | Path, entries: Entries) -> Path:
    """Like :func:`write_archive`, run on a worker thread."""
    snapshot = list(_iter_entries(entries))
    return await asyncio.to_thread(write_archive, path, snapshot)


async def read_archive_async(path: str | Path) -> dict[str, bytes]:
    """Like :func:`read_archive`, run on a worker thread."""
    return await asyncio.to_thread(read_archive, path)
