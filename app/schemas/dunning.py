from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.models.dunning import DunningAttemptStatus, DunningStage


class DunningAttemptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    invoice_id: UUID
    stage: DunningStage
    attempt_number: int
    attempted_at: datetime
    next_attempt_at: datetime | None = None
    status: DunningAttemptStatus
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class DunningScheduleRequest(BaseModel):
    first_failure_at: datetime | None = None


class DunningScheduleResponse(BaseModel):
    invoice_id: UUID
    created: bool
    attempts: list[DunningAttemptRead]


class DunningAttemptResult(BaseModel):
    success: bool
    status: DunningAttemptStatus
    next_attempt_scheduled: bool
    next_attempt_at: datetime | None = None
    stage: DunningStage
