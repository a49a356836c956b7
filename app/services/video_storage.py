"""
Video file storage.

Stores uploaded videos and thumbnails on local disk under the configured
storage directory and resolves stored relative paths back to files.

- Content type and size validated while writing (uploads are streamed to
  disk in chunks, never held in memory)
- Magic byte check on the first chunk
- Path-traversal protection on every resolve
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from app.config import settings

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024

# (offset, signature) pairs; mp4 carries "ftyp" after the 4-byte box size.
MAGIC_BYTES: dict[str, list[tuple[int, bytes]]] = {
    "video/mp4": [(4, b"ftyp")],
    "image/jpeg": [(0, b"\xff\xd8\xff")],
}

CONTENT_TYPE_EXTENSIONS: dict[str, str] = {
    "video/mp4": ".mp4",
    "image/jpeg": ".jpg",
}


def resolve_safe_path(base_dir: Path, relative_path: str) -> Path:
    """
    Resolve a relative path safely within a base directory.

    Raises ValueError if the resolved path would escape base_dir.
    """
    base = base_dir.resolve()
    full_path = (base / relative_path).resolve()
    if base != full_path and base not in full_path.parents:
        raise ValueError("Invalid file path: outside storage directory")
    return full_path


def build_stored_filename(original_filename: str | None, content_type: str | None) -> str:
    """``{epoch_ms}-{uuid}{ext}``, keeping the original extension when present."""
    ext = Path(original_filename).suffix.lower() if original_filename else ""
    if not ext and content_type:
        ext = CONTENT_TYPE_EXTENSIONS.get(content_type, "")
    return f"{int(time.time() * 1000)}-{uuid.uuid4()}{ext}"


@dataclass
class StoredUpload:
    file_path: Path
    relative_path: str
    file_size: int
    content_type: str


class VideoStorageError(Exception):
    """Base exception for storage errors."""


class InvalidContentTypeError(VideoStorageError):
    pass


class FileTooLargeError(VideoStorageError):
    pass


class InvalidMagicBytesError(VideoStorageError):
    pass


class EmptyFileError(VideoStorageError):
    pass


def _matches_magic(content_type: str, head: bytes) -> bool:
    signatures = MAGIC_BYTES.get(content_type)
    if not signatures:
        return True
    return any(head[offset : offset + len(sig)] == sig for offset, sig in signatures)


class VideoStorage:
    def __init__(self, base_dir: str | Path, max_size_bytes: int) -> None:
        self.base_dir = Path(base_dir)
        self.max_size_bytes = max_size_bytes

    @property
    def base_path(self) -> Path:
        return self.base_dir.resolve()

    def resolve(self, relative_path: str) -> Path:
        return resolve_safe_path(self.base_dir, relative_path)

    def save(
        self,
        stream: BinaryIO,
        content_type: str | None,
        original_filename: str | None,
        allowed_content_types: frozenset[str],
    ) -> StoredUpload:
        """Copy an upload stream to disk.

        Raises:
            VideoStorageError subclass on validation failure; nothing is left
            on disk in that case.
        """
        if content_type not in allowed_content_types:
            allowed = ", ".join(sorted(allowed_content_types))
            raise InvalidContentTypeError(
                f"Content type '{content_type}' not allowed. Allowed: {allowed}"
            )

        self.base_path.mkdir(parents=True, exist_ok=True)
        filename = build_stored_filename(original_filename, content_type)
        target = self.resolve(filename)

        written = 0
        try:
            with open(target, "wb") as handle:
                first = True
                for chunk in iter(lambda: stream.read(COPY_CHUNK_SIZE), b""):
                    if first:
                        if not _matches_magic(content_type, chunk):
                            raise InvalidMagicBytesError(
                                "File content does not match the expected format"
                            )
                        first = False
                    written += len(chunk)
                    if written > self.max_size_bytes:
                        raise FileTooLargeError(
                            f"File too large. Maximum size: {self.max_size_bytes} bytes"
                        )
                    handle.write(chunk)
            if not written:
                raise EmptyFileError("Uploaded file is empty")
        except VideoStorageError:
            target.unlink(missing_ok=True)
            raise

        logger.info("Stored %s upload %s (%s bytes)", content_type, filename, written)
        return StoredUpload(
            file_path=target,
            relative_path=filename,
            file_size=written,
            content_type=content_type,
        )

    def delete(self, relative_path: str | None) -> bool:
        if not relative_path:
            return False
        try:
            path = self.resolve(relative_path)
        except ValueError:
            logger.warning("Refusing to delete path outside storage: %s", relative_path)
            return False
        if path.exists():
            path.unlink()
            return True
        return False


def get_video_storage() -> VideoStorage:
    return VideoStorage(settings.video_storage_dir, settings.video_max_size_bytes)
