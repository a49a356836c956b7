from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator


class ProrationLineItem(BaseModel):
    description: str
    amount: Decimal
    period_start: datetime
    period_end: datetime
    rate: Decimal


class ProrationBreakdown(BaseModel):
    amount: Decimal = Decimal("0.00")
    breakdown: list[ProrationLineItem] = Field(default_factory=list)


class ProrationResult(BaseModel):
    credit: ProrationBreakdown
    charge: ProrationBreakdown
    net: Decimal
    unused_days: int
    period_days: int
    rate: Decimal


class ProrationPreviewRequest(BaseModel):
    old_rate: Decimal = Field(ge=0)
    new_rate: Decimal = Field(ge=0)
    period_start: datetime
    period_end: datetime
    effective_date: datetime

    @model_validator(mode="after")
    def _check_period(self) -> "ProrationPreviewRequest":
        if self.period_end <= self.period_start:
            raise ValueError("period_end must be after period_start")
        return self
