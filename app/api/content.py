"""Video upload, metadata and range-request streaming endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Header, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.common import ListResponse
from app.schemas.content import VideoRead
from app.services import media_player
from app.services import videos as videos_service

router = APIRouter(tags=["content"])


@router.get("/stream/{video_id}")
def stream_video(
    video_id: str,
    range_header: str | None = Header(default=None, alias="Range"),
    db: Session = Depends(get_db),
):
    result = media_player.stream_video(db, video_id, range_header)
    return StreamingResponse(
        result.chunks,
        status_code=result.status_code,
        media_type=media_player.VIDEO_CONTENT_TYPE,
        headers=result.headers,
    )


@router.post("/video", response_model=VideoRead, status_code=status.HTTP_201_CREATED)
def upload_video(
    title: str = Form(..., min_length=1, max_length=255),
    description: str | None = Form(default=None),
    video: UploadFile | None = File(default=None),
    thumbnail: UploadFile | None = File(default=None),
    db: Session = Depends(get_db),
):
    return videos_service.videos.upload(db, title, description, video, thumbnail)


@router.get("/videos", response_model=ListResponse[VideoRead])
def list_videos(
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return videos_service.videos.list_response(
        db, is_active, order_by, order_dir, limit, offset
    )


@router.get("/videos/{video_id}", response_model=VideoRead)
def get_video(video_id: str, db: Session = Depends(get_db)):
    return videos_service.videos.get(db, video_id)
