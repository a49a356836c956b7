import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class DunningStage(enum.Enum):
    retry_1 = "retry_1"
    retry_2 = "retry_2"
    retry_3 = "retry_3"
    downgrade = "downgrade"
    cancel = "cancel"


class DunningAttemptStatus(enum.Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"


class DunningAttempt(Base):
    """One planned collection attempt for a failed invoice.

    A full schedule (one row per stage) is created when the invoice payment
    first fails; each row is settled independently afterwards.
    """

    __tablename__ = "dunning_attempts"
    __table_args__ = (
        UniqueConstraint("invoice_id", "stage", name="uq_dunning_attempts_invoice_stage"),
        Index("ix_dunning_attempts_status_next_attempt_at", "status", "next_attempt_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=False
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=False
    )
    stage: Mapped[DunningStage] = mapped_column(Enum(DunningStage), nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[DunningAttemptStatus] = mapped_column(
        Enum(DunningAttemptStatus), default=DunningAttemptStatus.pending
    )
    error_message: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    subscription = relationship("Subscription", back_populates="dunning_attempts")
    invoice = relationship("Invoice", back_populates="dunning_attempts")
