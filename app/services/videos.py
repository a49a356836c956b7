import logging

from fastapi import HTTPException, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.content import Video
from app.services.common import apply_ordering, apply_pagination, get_or_404
from app.services.media_player import VIDEO_CONTENT_TYPE
from app.services.response import ListResponseMixin
from app.services.video_storage import (
    FileTooLargeError,
    StoredUpload,
    VideoStorage,
    VideoStorageError,
    get_video_storage,
)

logger = logging.getLogger(__name__)

THUMBNAIL_CONTENT_TYPE = "image/jpeg"


def _store(storage: VideoStorage, upload: UploadFile, content_type: str, label: str) -> StoredUpload:
    try:
        return storage.save(
            upload.file,
            upload.content_type,
            upload.filename,
            frozenset({content_type}),
        )
    except FileTooLargeError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except VideoStorageError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label}: {exc}") from exc


class Videos(ListResponseMixin):
    @staticmethod
    def get(db: Session, video_id: str):
        return get_or_404(db, Video, video_id, detail=f"Video with id {video_id} not found")

    @staticmethod
    def list(
        db: Session,
        is_active: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(Video)
        if is_active is None:
            query = query.filter(Video.is_active.is_(True))
        else:
            query = query.filter(Video.is_active == is_active)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Video.created_at, "title": Video.title},
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def upload(
        db: Session,
        title: str,
        description: str | None,
        video: UploadFile | None,
        thumbnail: UploadFile | None,
        storage: VideoStorage | None = None,
    ):
        """Store an mp4 and its jpeg thumbnail, then create the video record.

        Stored files are removed again if any later step fails.
        """
        if video is None or thumbnail is None:
            raise HTTPException(status_code=400, detail="Video and thumbnail are required")
        storage = storage or get_video_storage()

        stored_video = _store(storage, video, VIDEO_CONTENT_TYPE, "video")
        try:
            stored_thumbnail = _store(storage, thumbnail, THUMBNAIL_CONTENT_TYPE, "thumbnail")
        except HTTPException:
            storage.delete(stored_video.relative_path)
            raise

        record = Video(
            title=title,
            description=description,
            url=stored_video.relative_path,
            thumbnail_url=stored_thumbnail.relative_path,
            size_bytes=stored_video.file_size,
            content_type=VIDEO_CONTENT_TYPE,
        )
        db.add(record)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            storage.delete(stored_video.relative_path)
            storage.delete(stored_thumbnail.relative_path)
            raise
        db.refresh(record)
        logger.info("Uploaded video %s (%s bytes)", record.id, record.size_bytes)
        return record


videos = Videos()
