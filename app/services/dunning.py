"""Dunning: scheduled payment retries for failed invoices.

When an invoice payment fails, a fixed five-stage schedule of attempts is
created in one transaction. Each attempt is later processed on its own:
the invoice is re-charged through the payment gateway and the stage's
follow-up actions (emails, warnings, cancellation) are dispatched when the
charge fails again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.metrics import DUNNING_ACTIONS, DUNNING_ATTEMPTS
from app.models.billing import Invoice, InvoiceStatus, Subscription, SubscriptionStatus
from app.models.dunning import DunningAttempt, DunningAttemptStatus, DunningStage
from app.schemas.dunning import DunningAttemptResult
from app.services.clock import Clock, utc_now
from app.services.common import (
    apply_ordering,
    apply_pagination,
    as_utc,
    coerce_uuid,
    get_or_404,
    validate_enum,
    validate_uuid,
)
from app.services.payment_gateway import ChargeContext, PaymentGateway
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

SUPERSEDED_MESSAGE = "superseded"


@dataclass(frozen=True)
class DunningScheduleStep:
    stage: DunningStage
    days_from_first_failure: int
    actions: frozenset[str]


DUNNING_SCHEDULE: tuple[DunningScheduleStep, ...] = (
    DunningScheduleStep(DunningStage.retry_1, 1, frozenset({"retry", "email"})),
    DunningScheduleStep(DunningStage.retry_2, 3, frozenset({"retry", "email", "notification"})),
    DunningScheduleStep(DunningStage.retry_3, 7, frozenset({"retry", "urgent_email"})),
    DunningScheduleStep(DunningStage.downgrade, 10, frozenset({"warning"})),
    DunningScheduleStep(DunningStage.cancel, 15, frozenset({"cancel"})),
)

_STEPS_BY_STAGE = {step.stage: step for step in DUNNING_SCHEDULE}

# Deterministic dispatch order for follow-up actions.
_ACTION_ORDER = ("retry", "email", "urgent_email", "notification", "warning", "cancel")


def schedule_step(stage: DunningStage) -> DunningScheduleStep:
    return _STEPS_BY_STAGE[stage]


class DunningAttemptNotFoundError(HTTPException):
    def __init__(self, attempt_id) -> None:
        super().__init__(status_code=404, detail="Dunning attempt not found")
        self.attempt_id = attempt_id


@dataclass
class DunningScheduleOutcome:
    attempts: list[DunningAttempt]
    created: bool


def _attempts_for_invoice(db: Session, invoice_id) -> list[DunningAttempt]:
    return (
        db.query(DunningAttempt)
        .filter(DunningAttempt.invoice_id == invoice_id)
        .order_by(DunningAttempt.attempt_number.asc())
        .all()
    )


def _next_pending_attempt(db: Session, attempt: DunningAttempt) -> DunningAttempt | None:
    return (
        db.query(DunningAttempt)
        .filter(DunningAttempt.invoice_id == attempt.invoice_id)
        .filter(DunningAttempt.status == DunningAttemptStatus.pending)
        .filter(DunningAttempt.attempt_number > attempt.attempt_number)
        .order_by(DunningAttempt.attempt_number.asc())
        .first()
    )


def _build_result(db: Session, attempt: DunningAttempt) -> DunningAttemptResult:
    success = attempt.status == DunningAttemptStatus.succeeded
    next_attempt = None
    if attempt.status == DunningAttemptStatus.failed and attempt.stage != DunningStage.cancel:
        next_attempt = _next_pending_attempt(db, attempt)
    return DunningAttemptResult(
        success=success,
        status=attempt.status,
        next_attempt_scheduled=next_attempt is not None,
        next_attempt_at=as_utc(next_attempt.next_attempt_at) if next_attempt else None,
        stage=attempt.stage,
    )


def _settle_attempt(
    db: Session,
    attempt: DunningAttempt,
    status: DunningAttemptStatus,
    now: datetime,
    error_message: str | None,
) -> bool:
    """Flip a pending attempt to its final status.

    Returns False when another worker settled it first.
    """
    updated = (
        db.query(DunningAttempt)
        .filter(DunningAttempt.id == attempt.id)
        .filter(DunningAttempt.status == DunningAttemptStatus.pending)
        .update(
            {
                DunningAttempt.status: status,
                DunningAttempt.attempted_at: now,
                DunningAttempt.error_message: error_message,
                DunningAttempt.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def _supersede_pending(db: Session, attempt: DunningAttempt, now: datetime) -> int:
    return (
        db.query(DunningAttempt)
        .filter(DunningAttempt.invoice_id == attempt.invoice_id)
        .filter(DunningAttempt.id != attempt.id)
        .filter(DunningAttempt.status == DunningAttemptStatus.pending)
        .update(
            {
                DunningAttempt.status: DunningAttemptStatus.failed,
                DunningAttempt.error_message: SUPERSEDED_MESSAGE,
                DunningAttempt.updated_at: now,
            },
            synchronize_session=False,
        )
    )


def _cancel_subscription(subscription: Subscription, now: datetime) -> None:
    if subscription.status == SubscriptionStatus.canceled:
        return
    subscription.status = SubscriptionStatus.canceled
    subscription.canceled_at = now
    subscription.cancel_reason = "dunning"
    logger.info("Subscription %s canceled after final dunning stage", subscription.id)


def _dispatch_actions(
    db: Session,
    attempt: DunningAttempt,
    invoice: Invoice,
    now: datetime,
) -> list[str]:
    step = schedule_step(attempt.stage)
    dispatched: list[str] = []
    for action in _ACTION_ORDER:
        if action not in step.actions:
            continue
        DUNNING_ACTIONS.labels(action=action).inc()
        dispatched.append(action)
        if action == "retry":
            continue
        if action == "cancel":
            subscription = db.get(Subscription, attempt.subscription_id)
            if subscription:
                _cancel_subscription(subscription, now)
            continue
        # Notification delivery lives outside this service.
        logger.info(
            "Dunning %s for invoice %s (stage %s)",
            action,
            invoice.id,
            attempt.stage.value,
        )
    return dispatched


class DunningAttempts(ListResponseMixin):
    @staticmethod
    def get(db: Session, attempt_id: str):
        try:
            attempt_uuid = coerce_uuid(attempt_id)
        except ValueError as exc:
            raise DunningAttemptNotFoundError(attempt_id) from exc
        attempt = db.get(DunningAttempt, attempt_uuid)
        if not attempt:
            raise DunningAttemptNotFoundError(attempt_id)
        return attempt

    @staticmethod
    def list(
        db: Session,
        subscription_id: str | None,
        invoice_id: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(DunningAttempt)
        if subscription_id:
            query = query.filter(
                DunningAttempt.subscription_id == validate_uuid(subscription_id, "subscription_id")
            )
        if invoice_id:
            query = query.filter(
                DunningAttempt.invoice_id == validate_uuid(invoice_id, "invoice_id")
            )
        if status:
            query = query.filter(
                DunningAttempt.status
                == validate_enum(status, DunningAttemptStatus, "status")
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": DunningAttempt.created_at,
                "next_attempt_at": DunningAttempt.next_attempt_at,
                "attempt_number": DunningAttempt.attempt_number,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def list_due(db: Session, now: datetime, limit: int = 100):
        """Pending attempts whose scheduled time has passed, oldest first."""
        return (
            db.query(DunningAttempt)
            .filter(DunningAttempt.status == DunningAttemptStatus.pending)
            .filter(DunningAttempt.next_attempt_at <= now)
            .order_by(DunningAttempt.next_attempt_at.asc())
            .limit(limit)
            .all()
        )


class DunningManager:
    @staticmethod
    def schedule_dunning_attempts(
        db: Session,
        invoice_id: str,
        first_failure_at: datetime | None = None,
        clock: Clock = utc_now,
    ) -> DunningScheduleOutcome:
        """Create the full retry schedule for an invoice whose payment failed.

        Idempotent per invoice: when attempts already exist they are returned
        unchanged. All five rows are committed together or not at all.
        """
        invoice = get_or_404(db, Invoice, invoice_id, detail="Invoice not found")
        existing = _attempts_for_invoice(db, invoice.id)
        if existing:
            return DunningScheduleOutcome(attempts=existing, created=False)
        if invoice.status in (InvoiceStatus.paid, InvoiceStatus.void):
            raise HTTPException(
                status_code=400,
                detail=f"Cannot schedule dunning for invoice with status {invoice.status.value}",
            )

        first_failure = as_utc(first_failure_at) if first_failure_at else clock()
        attempts = [
            DunningAttempt(
                subscription_id=invoice.subscription_id,
                invoice_id=invoice.id,
                stage=step.stage,
                attempt_number=number,
                attempted_at=first_failure,
                next_attempt_at=first_failure + timedelta(days=step.days_from_first_failure),
                status=DunningAttemptStatus.pending,
                error_message=None,
            )
            for number, step in enumerate(DUNNING_SCHEDULE, start=1)
        ]
        db.add_all(attempts)
        invoice.status = InvoiceStatus.payment_failed
        subscription = db.get(Subscription, invoice.subscription_id)
        if subscription and subscription.status == SubscriptionStatus.active:
            subscription.status = SubscriptionStatus.past_due
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = _attempts_for_invoice(db, invoice.id)
            if existing:
                logger.info("Dunning schedule for invoice %s created concurrently", invoice.id)
                return DunningScheduleOutcome(attempts=existing, created=False)
            raise
        for attempt in attempts:
            db.refresh(attempt)
        logger.info(
            "Scheduled %s dunning attempts for invoice %s from %s",
            len(attempts),
            invoice.id,
            first_failure.isoformat(),
        )
        return DunningScheduleOutcome(attempts=attempts, created=True)

    @staticmethod
    def process_dunning_attempt(
        db: Session,
        attempt_id: str,
        gateway: PaymentGateway,
        clock: Clock = utc_now,
    ) -> DunningAttemptResult:
        """Retry the invoice charge for one scheduled attempt.

        The attempt row is locked for the duration and settled with a
        conditional update, so an attempt is charged and settled at most once.
        Settled attempts are reported as-is without contacting the gateway.
        """
        try:
            attempt_uuid = coerce_uuid(attempt_id)
        except ValueError as exc:
            raise DunningAttemptNotFoundError(attempt_id) from exc
        attempt = (
            db.query(DunningAttempt)
            .filter(DunningAttempt.id == attempt_uuid)
            .with_for_update()
            .first()
        )
        if not attempt:
            raise DunningAttemptNotFoundError(attempt_id)
        if attempt.status != DunningAttemptStatus.pending:
            result = _build_result(db, attempt)
            db.rollback()
            return result

        now = clock()
        invoice = db.get(Invoice, attempt.invoice_id)
        if invoice is None or invoice.status in (InvoiceStatus.paid, InvoiceStatus.void):
            # Paid through another channel.
            if _settle_attempt(db, attempt, DunningAttemptStatus.failed, now, SUPERSEDED_MESSAGE):
                _supersede_pending(db, attempt, now)
            db.commit()
            db.refresh(attempt)
            return _build_result(db, attempt)

        charge = gateway.charge(
            ChargeContext(
                attempt_id=attempt.id,
                invoice_id=invoice.id,
                subscription_id=attempt.subscription_id,
                amount=invoice.total,
                currency=invoice.currency,
            )
        )

        if charge.success:
            status = DunningAttemptStatus.succeeded
            error_message = None
        else:
            status = DunningAttemptStatus.failed
            error_message = charge.error_message or "Payment failed"

        if not _settle_attempt(db, attempt, status, now, error_message):
            db.rollback()
            logger.info("Dunning attempt %s was settled concurrently", attempt.id)
            attempt = db.get(DunningAttempt, attempt.id)
            db.refresh(attempt)
            return _build_result(db, attempt)

        if charge.success:
            invoice.status = InvoiceStatus.paid
            invoice.paid_at = now
            superseded = _supersede_pending(db, attempt, now)
            subscription = db.get(Subscription, attempt.subscription_id)
            if subscription and subscription.status == SubscriptionStatus.past_due:
                subscription.status = SubscriptionStatus.active
            logger.info(
                "Dunning attempt %s collected invoice %s (ref %s); %s later attempts superseded",
                attempt.id,
                invoice.id,
                charge.reference,
                superseded,
            )
        else:
            actions = _dispatch_actions(db, attempt, invoice, now)
            logger.info(
                "Dunning attempt %s failed at stage %s: %s (actions: %s)",
                attempt.id,
                attempt.stage.value,
                error_message,
                ", ".join(actions),
            )

        db.commit()
        db.refresh(attempt)
        DUNNING_ATTEMPTS.labels(stage=attempt.stage.value, status=attempt.status.value).inc()
        return _build_result(db, attempt)


dunning_attempts = DunningAttempts()
dunning_manager = DunningManager()
