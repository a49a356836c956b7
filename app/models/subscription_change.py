"""Plan change audit records carrying the computed proration."""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class PlanChangeStatus(enum.Enum):
    """Invoice generation state for a completed plan change."""
    pending_invoice = "pending_invoice"
    invoice_generated = "invoice_generated"
    invoice_failed = "invoice_failed"


class PlanChangeRequest(Base):
    """Plan change applied to a subscription mid-cycle.

    The row is created when the plan is switched and updated once the
    corresponding invoice is generated in the background. Its id doubles as
    the idempotency key for invoice generation.
    """
    __tablename__ = "plan_change_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    old_plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False
    )
    new_plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False
    )
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    proration_credit: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    proration_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    proration_credit_breakdown: Mapped[list | None] = mapped_column(JSON)
    proration_charge_breakdown: Mapped[list | None] = mapped_column(JSON)
    status: Mapped[PlanChangeStatus] = mapped_column(
        Enum(PlanChangeStatus), default=PlanChangeStatus.pending_invoice
    )
    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id")
    )
    error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    subscription = relationship("Subscription", foreign_keys=[subscription_id])
    old_plan = relationship("Plan", foreign_keys=[old_plan_id])
    new_plan = relationship("Plan", foreign_keys=[new_plan_id])
    invoice = relationship("Invoice", foreign_keys=[invoice_id])
