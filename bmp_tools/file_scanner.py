"""Locating convertible images on disk and inside ZIP archives."""
from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, List, Sequence, Tuple

from .errors import InputError


logger = logging.getLogger(__name__)

_IMAGE_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".webp",
    ".bmp",
    ".tga",
}

ARCHIVE_EXTENSIONS = {".zip"}


def _suffix(name: str) -> str:
    return PurePosixPath(name).suffix.lower()


def is_supported_image(path: Path | str) -> bool:
    return _suffix(str(path)) in _IMAGE_EXTENSIONS


def is_archive(path: Path | str) -> bool:
    return _suffix(str(path)) in ARCHIVE_EXTENSIONS


@dataclass(slots=True)
class ScanOptions:
    roots: Sequence[Path]
    recursive: bool = True
    allowed_exts: Iterable[str] | None = None


def iter_image_files(options: ScanOptions) -> Iterator[Path]:
    """Yield files matching extensions under the given roots."""

    allowed = {
        ext.lower() if ext.startswith(".") else f".{ext.lower()}"
        for ext in (options.allowed_exts or _IMAGE_EXTENSIONS)
    }
    for root in options.roots:
        root = root.expanduser()
        candidates = root.rglob("*") if options.recursive else root.glob("*")
        for path in sorted(candidates):
            if path.is_file() and path.suffix.lower() in allowed:
                yield path


def list_archive_entries(data: bytes) -> List[Tuple[str, bytes]]:
    """Return ``(name, bytes)`` for every image entry of a ZIP archive, in archive order."""

    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise InputError(f"Not a valid ZIP archive: {exc}") from exc

    entries: List[Tuple[str, bytes]] = []
    with archive:
        for info in archive.infolist():
            if info.is_dir() or not is_supported_image(info.filename):
                continue
            try:
                entries.append((info.filename, archive.read(info)))
            except (zipfile.BadZipFile, OSError) as exc:
                raise InputError(f"Could not extract '{info.filename}': {exc}") from exc

    if not entries:
        raise InputError("No valid images were found in the ZIP archive")
    logger.debug("Archive entries=%s names=%s", len(entries), [name for name, _ in entries])
    return entries
