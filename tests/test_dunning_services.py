import uuid
from datetime import UTC, date, datetime

import pytest
from fastapi import HTTPException

from app.models.billing import InvoiceStatus, SubscriptionStatus
from app.models.dunning import DunningAttempt, DunningAttemptStatus, DunningStage
from app.services import dunning as dunning_service
from app.services.dunning import DUNNING_SCHEDULE, DunningAttemptNotFoundError
from tests.mocks import FakePaymentGateway, FixedClock

FIRST_FAILURE = datetime(2021, 1, 1, tzinfo=UTC)


def _schedule(db_session, invoice, first_failure_at=FIRST_FAILURE):
    return dunning_service.dunning_manager.schedule_dunning_attempts(
        db_session, str(invoice.id), first_failure_at=first_failure_at
    )


def _attempt(outcome, stage: DunningStage) -> DunningAttempt:
    return next(item for item in outcome.attempts if item.stage == stage)


def test_schedule_table_is_ordered_and_ends_with_cancel():
    offsets = [step.days_from_first_failure for step in DUNNING_SCHEDULE]
    assert offsets == [1, 3, 7, 10, 15]
    assert offsets == sorted(set(offsets))
    assert DUNNING_SCHEDULE[-1].stage == DunningStage.cancel
    assert DUNNING_SCHEDULE[1].actions == frozenset({"retry", "email", "notification"})


def test_schedule_creates_five_pending_attempts(db_session, invoice, subscription):
    outcome = _schedule(db_session, invoice)

    assert outcome.created is True
    assert [item.stage for item in outcome.attempts] == [step.stage for step in DUNNING_SCHEDULE]
    assert [item.attempt_number for item in outcome.attempts] == [1, 2, 3, 4, 5]
    assert [item.next_attempt_at.date() for item in outcome.attempts] == [
        date(2021, 1, 2),
        date(2021, 1, 4),
        date(2021, 1, 8),
        date(2021, 1, 11),
        date(2021, 1, 16),
    ]
    assert all(item.status == DunningAttemptStatus.pending for item in outcome.attempts)
    assert all(item.attempted_at.date() == date(2021, 1, 1) for item in outcome.attempts)
    assert all(item.subscription_id == subscription.id for item in outcome.attempts)

    db_session.refresh(invoice)
    db_session.refresh(subscription)
    assert invoice.status == InvoiceStatus.payment_failed
    assert subscription.status == SubscriptionStatus.past_due


def test_schedule_is_idempotent_per_invoice(db_session, invoice):
    first = _schedule(db_session, invoice)
    second = _schedule(db_session, invoice, first_failure_at=datetime(2021, 3, 1, tzinfo=UTC))

    assert second.created is False
    assert [item.id for item in second.attempts] == [item.id for item in first.attempts]
    count = db_session.query(DunningAttempt).filter(DunningAttempt.invoice_id == invoice.id).count()
    assert count == 5


def test_schedule_uses_clock_when_no_failure_time_given(db_session, invoice):
    clock = FixedClock(datetime(2022, 6, 30, 12, 0, tzinfo=UTC))

    outcome = dunning_service.dunning_manager.schedule_dunning_attempts(
        db_session, str(invoice.id), clock=clock
    )

    assert outcome.attempts[0].next_attempt_at.date() == date(2022, 7, 1)
    assert outcome.attempts[-1].next_attempt_at.date() == date(2022, 7, 15)


def test_schedule_rejects_paid_invoice(db_session, invoice):
    invoice.status = InvoiceStatus.paid
    db_session.commit()

    with pytest.raises(HTTPException) as exc:
        _schedule(db_session, invoice)
    assert exc.value.status_code == 400


def test_schedule_unknown_invoice(db_session):
    with pytest.raises(HTTPException) as exc:
        dunning_service.dunning_manager.schedule_dunning_attempts(db_session, str(uuid.uuid4()))
    assert exc.value.status_code == 404


def test_process_success_pays_invoice_and_supersedes_rest(db_session, invoice, subscription):
    outcome = _schedule(db_session, invoice)
    first = outcome.attempts[0]
    gateway = FakePaymentGateway()
    gateway.succeed_next("ch_123")

    result = dunning_service.dunning_manager.process_dunning_attempt(
        db_session, str(first.id), gateway, clock=FixedClock(datetime(2021, 1, 2, tzinfo=UTC))
    )

    assert result.success is True
    assert result.status == DunningAttemptStatus.succeeded
    assert result.next_attempt_scheduled is False
    assert result.next_attempt_at is None
    assert result.stage == DunningStage.retry_1

    charge = gateway.charges[0]
    assert charge.invoice_id == invoice.id
    assert charge.amount == invoice.total
    assert charge.idempotency_key == f"dunning-{first.id}"

    db_session.refresh(invoice)
    db_session.refresh(subscription)
    assert invoice.status == InvoiceStatus.paid
    assert subscription.status == SubscriptionStatus.active
    remaining = (
        db_session.query(DunningAttempt)
        .filter(DunningAttempt.invoice_id == invoice.id)
        .filter(DunningAttempt.id != first.id)
        .all()
    )
    assert all(item.status == DunningAttemptStatus.failed for item in remaining)
    assert all(item.error_message == "superseded" for item in remaining)


def test_process_failure_schedules_next_attempt(db_session, invoice):
    outcome = _schedule(db_session, invoice)
    first = outcome.attempts[0]
    gateway = FakePaymentGateway()
    gateway.fail_next("Insufficient funds")

    result = dunning_service.dunning_manager.process_dunning_attempt(
        db_session, str(first.id), gateway
    )

    assert result.success is False
    assert result.status == DunningAttemptStatus.failed
    assert result.next_attempt_scheduled is True
    assert result.next_attempt_at.date() == date(2021, 1, 4)

    db_session.refresh(first)
    assert first.error_message == "Insufficient funds"
    db_session.refresh(invoice)
    assert invoice.status == InvoiceStatus.payment_failed


def test_process_cancel_stage_failure_never_schedules_more(db_session, invoice, subscription):
    outcome = _schedule(db_session, invoice)
    cancel = _attempt(outcome, DunningStage.cancel)
    gateway = FakePaymentGateway()
    gateway.fail_next()

    result = dunning_service.dunning_manager.process_dunning_attempt(
        db_session, str(cancel.id), gateway
    )

    assert result.success is False
    assert result.stage == DunningStage.cancel
    assert result.next_attempt_scheduled is False
    assert result.next_attempt_at is None
    db_session.refresh(subscription)
    assert subscription.status == SubscriptionStatus.canceled
    assert subscription.cancel_reason == "dunning"


def test_process_cancel_stage_success(db_session, invoice, subscription):
    outcome = _schedule(db_session, invoice)
    cancel = _attempt(outcome, DunningStage.cancel)

    result = dunning_service.dunning_manager.process_dunning_attempt(
        db_session, str(cancel.id), FakePaymentGateway()
    )

    assert result.success is True
    assert result.next_attempt_scheduled is False
    db_session.refresh(subscription)
    assert subscription.status == SubscriptionStatus.active


def test_process_settled_attempt_does_not_charge_again(db_session, invoice):
    outcome = _schedule(db_session, invoice)
    first = outcome.attempts[0]
    gateway = FakePaymentGateway()
    gateway.fail_next()

    first_result = dunning_service.dunning_manager.process_dunning_attempt(
        db_session, str(first.id), gateway
    )
    second_result = dunning_service.dunning_manager.process_dunning_attempt(
        db_session, str(first.id), gateway
    )

    assert len(gateway.charges) == 1
    assert second_result == first_result


def test_process_attempt_settled_concurrently_reports_winner(db_session, invoice):
    outcome = _schedule(db_session, invoice)
    first = outcome.attempts[0]

    class RacingGateway(FakePaymentGateway):
        def charge(self, context):
            # Another worker settles the attempt while this charge is in flight.
            db_session.query(DunningAttempt).filter(DunningAttempt.id == context.attempt_id).update(
                {DunningAttempt.status: DunningAttemptStatus.succeeded},
                synchronize_session=False,
            )
            db_session.commit()
            return super().charge(context)

    gateway = RacingGateway()
    gateway.fail_next()

    result = dunning_service.dunning_manager.process_dunning_attempt(
        db_session, str(first.id), gateway
    )

    assert len(gateway.charges) == 1
    assert result.success is True
    assert result.status == DunningAttemptStatus.succeeded
    db_session.refresh(first)
    assert first.status == DunningAttemptStatus.succeeded
    assert first.error_message is None
    pending = (
        db_session.query(DunningAttempt)
        .filter(DunningAttempt.invoice_id == invoice.id)
        .filter(DunningAttempt.status == DunningAttemptStatus.pending)
        .count()
    )
    assert pending == 4


def test_schedule_conflict_commits_no_partial_schedule(db_session, invoice, monkeypatch):
    existing = DunningAttempt(
        subscription_id=invoice.subscription_id,
        invoice_id=invoice.id,
        stage=DunningStage.cancel,
        attempt_number=5,
        attempted_at=FIRST_FAILURE,
        next_attempt_at=datetime(2021, 1, 16, tzinfo=UTC),
        status=DunningAttemptStatus.pending,
    )
    db_session.add(existing)
    db_session.commit()

    # The pre-insert check misses the row, as it would for a concurrent insert.
    real_lookup = dunning_service._attempts_for_invoice
    calls = []

    def lookup_missing_once(db, invoice_id):
        calls.append(invoice_id)
        if len(calls) == 1:
            return []
        return real_lookup(db, invoice_id)

    monkeypatch.setattr(dunning_service, "_attempts_for_invoice", lookup_missing_once)

    outcome = _schedule(db_session, invoice)

    assert outcome.created is False
    assert [item.id for item in outcome.attempts] == [existing.id]
    count = db_session.query(DunningAttempt).filter(DunningAttempt.invoice_id == invoice.id).count()
    assert count == 1
    db_session.refresh(invoice)
    assert invoice.status == InvoiceStatus.open


def test_process_attempt_for_paid_invoice_skips_gateway(db_session, invoice):
    outcome = _schedule(db_session, invoice)
    invoice.status = InvoiceStatus.paid
    db_session.commit()
    gateway = FakePaymentGateway()

    result = dunning_service.dunning_manager.process_dunning_attempt(
        db_session, str(outcome.attempts[1].id), gateway
    )

    assert gateway.charges == []
    assert result.success is False
    assert result.next_attempt_scheduled is False
    pending = (
        db_session.query(DunningAttempt)
        .filter(DunningAttempt.invoice_id == invoice.id)
        .filter(DunningAttempt.status == DunningAttemptStatus.pending)
        .count()
    )
    assert pending == 0


def test_process_unknown_attempt(db_session):
    with pytest.raises(DunningAttemptNotFoundError) as exc:
        dunning_service.dunning_manager.process_dunning_attempt(
            db_session, str(uuid.uuid4()), FakePaymentGateway()
        )
    assert exc.value.status_code == 404

    with pytest.raises(DunningAttemptNotFoundError):
        dunning_service.dunning_manager.process_dunning_attempt(
            db_session, "garbage", FakePaymentGateway()
        )


def test_list_due_returns_pending_attempts_oldest_first(db_session, invoice):
    _schedule(db_session, invoice)

    due = dunning_service.dunning_attempts.list_due(db_session, datetime(2021, 1, 5, tzinfo=UTC))

    assert [item.stage for item in due] == [DunningStage.retry_1, DunningStage.retry_2]


def test_list_filters_by_invoice_and_status(db_session, invoice):
    outcome = _schedule(db_session, invoice)
    gateway = FakePaymentGateway()
    gateway.fail_next()
    dunning_service.dunning_manager.process_dunning_attempt(
        db_session, str(outcome.attempts[0].id), gateway
    )

    failed = dunning_service.dunning_attempts.list(
        db_session, None, str(invoice.id), "failed", "attempt_number", "asc", 50, 0
    )
    pending = dunning_service.dunning_attempts.list(
        db_session, None, str(invoice.id), "pending", "attempt_number", "asc", 50, 0
    )

    assert [item.attempt_number for item in failed] == [1]
    assert [item.attempt_number for item in pending] == [2, 3, 4, 5]


def test_list_rejects_unknown_status(db_session):
    with pytest.raises(HTTPException) as exc:
        dunning_service.dunning_attempts.list(
            db_session, None, None, "bogus", "created_at", "asc", 50, 0
        )
    assert exc.value.status_code == 400


def test_schedule_commit_is_visible_within_the_test(db_session, invoice):
    _schedule(db_session, invoice)

    assert db_session.query(DunningAttempt).count() == 5


def test_committed_attempts_do_not_carry_into_the_next_test(db_session):
    assert db_session.query(DunningAttempt).count() == 0
