"""Video streaming with HTTP byte-range support.

Resolves a video id to a file under the storage directory and plans the
response: status code, headers, and a lazy chunk iterator over the requested
byte window. Headers are fully computed before any body bytes are produced.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import STREAM_BYTES, STREAM_REQUESTS
from app.models.content import Video
from app.services.common import coerce_uuid
from app.services.video_storage import resolve_safe_path

logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPE = "video/mp4"

_RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


class VideoNotFoundError(HTTPException):
    def __init__(self, video_id) -> None:
        super().__init__(status_code=404, detail=f"Video with id {video_id} not found")
        self.video_id = video_id


class RangeNotSatisfiableError(HTTPException):
    def __init__(self, total_size: int, detail: str = "Requested range not satisfiable") -> None:
        super().__init__(
            status_code=416,
            detail=detail,
            headers={"Content-Range": f"bytes */{total_size}"},
        )
        self.total_size = total_size


@dataclass(frozen=True)
class ResolvedVideoFile:
    path: Path
    total_size_bytes: int


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int
    total: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total}"


@dataclass
class StreamResult:
    status_code: int
    headers: dict[str, str]
    chunks: Iterator[bytes]
    byte_range: ByteRange | None = None


def resolve(db: Session, video_id, storage_dir: str | Path | None = None) -> ResolvedVideoFile:
    """Look up the video record and stat its file on disk.

    Raises:
        VideoNotFoundError: unknown or malformed id, inactive record, or the
            file is missing from storage.
    """
    try:
        video_uuid = coerce_uuid(video_id)
    except ValueError as exc:
        raise VideoNotFoundError(video_id) from exc

    video = db.get(Video, video_uuid)
    if not video or not video.is_active:
        raise VideoNotFoundError(video_id)

    base_dir = Path(storage_dir or settings.video_storage_dir)
    try:
        path = resolve_safe_path(base_dir, video.url)
    except ValueError as exc:
        logger.warning("Video %s has a path outside storage: %s", video_id, video.url)
        raise VideoNotFoundError(video_id) from exc

    if not path.is_file():
        logger.warning("Video %s file is missing from storage: %s", video_id, path)
        raise VideoNotFoundError(video_id)

    return ResolvedVideoFile(path=path, total_size_bytes=path.stat().st_size)


def parse_range_header(header: str, total_size: int) -> ByteRange:
    """Parse a single ``bytes=start-end`` range against a resource size.

    ``end`` defaults to the last byte and is clamped to it when it points
    past the end of the file. The suffix form ``bytes=-N`` selects the last
    N bytes. Multiple ranges are not supported.

    Raises:
        RangeNotSatisfiableError: malformed header or a window that does not
            overlap the resource.
    """
    match = _RANGE_PATTERN.match(header.strip().replace(" ", ""))
    if not match:
        raise RangeNotSatisfiableError(total_size, "Malformed Range header")
    raw_start, raw_end = match.groups()
    if not raw_start and not raw_end:
        raise RangeNotSatisfiableError(total_size, "Malformed Range header")
    if total_size <= 0:
        raise RangeNotSatisfiableError(total_size)

    if not raw_start:
        suffix = int(raw_end)
        if suffix == 0:
            raise RangeNotSatisfiableError(total_size)
        return ByteRange(start=max(total_size - suffix, 0), end=total_size - 1, total=total_size)

    start = int(raw_start)
    end = int(raw_end) if raw_end else total_size - 1
    if start >= total_size or end < start:
        raise RangeNotSatisfiableError(total_size)
    return ByteRange(start=start, end=min(end, total_size - 1), total=total_size)


def open_range(path: str | Path, start: int, end: int, chunk_size: int | None = None) -> Iterator[bytes]:
    """Yield the bytes ``start..end`` (inclusive) of a file in chunks.

    The file is opened on first iteration and closed when the window is
    exhausted or the consumer closes the generator (client disconnect).
    """
    chunk_size = chunk_size or settings.stream_chunk_size
    remaining = end - start + 1
    with open(path, "rb") as handle:
        handle.seek(start)
        while remaining > 0:
            chunk = handle.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            STREAM_BYTES.inc(len(chunk))
            yield chunk


def stream_video(
    db: Session,
    video_id,
    range_header: str | None = None,
    storage_dir: str | Path | None = None,
    chunk_size: int | None = None,
) -> StreamResult:
    """Plan a full (200) or partial (206) response for a video."""
    try:
        resolved = resolve(db, video_id, storage_dir)
    except VideoNotFoundError:
        STREAM_REQUESTS.labels(status="404").inc()
        raise
    total = resolved.total_size_bytes

    if not range_header or not range_header.strip():
        STREAM_REQUESTS.labels(status="200").inc()
        chunks = open_range(resolved.path, 0, total - 1, chunk_size) if total else iter(())
        return StreamResult(
            status_code=200,
            headers={
                "Content-Length": str(total),
                "Content-Type": VIDEO_CONTENT_TYPE,
                "Accept-Ranges": "bytes",
            },
            chunks=chunks,
        )

    try:
        byte_range = parse_range_header(range_header, total)
    except RangeNotSatisfiableError:
        STREAM_REQUESTS.labels(status="416").inc()
        logger.info("Unsatisfiable range %r for video %s (%s bytes)", range_header, video_id, total)
        raise

    STREAM_REQUESTS.labels(status="206").inc()
    return StreamResult(
        status_code=206,
        headers={
            "Content-Range": byte_range.content_range,
            "Accept-Ranges": "bytes",
            "Content-Length": str(byte_range.length),
            "Content-Type": VIDEO_CONTENT_TYPE,
        },
        chunks=open_range(resolved.path, byte_range.start, byte_range.end, chunk_size),
        byte_range=byte_range,
    )
