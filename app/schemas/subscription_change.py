from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.models.subscription_change import PlanChangeStatus


class PlanChangeCreate(BaseModel):
    new_plan_id: UUID
    effective_date: datetime | None = None


class PlanChangeRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    old_plan_id: UUID
    new_plan_id: UUID
    effective_date: datetime
    proration_credit: Decimal
    proration_charge: Decimal
    proration_credit_breakdown: list[dict] | None = None
    proration_charge_breakdown: list[dict] | None = None
    status: PlanChangeStatus
    invoice_id: UUID | None = None
    error_message: str | None = None
    retry_count: int
    created_at: datetime
    updated_at: datetime
