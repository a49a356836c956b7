from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class VideoBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None


class VideoRead(VideoBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    url: str
    thumbnail_url: str | None = None
    size_bytes: int
    content_type: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
