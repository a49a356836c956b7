"""Service for mid-cycle plan changes and their proration invoices."""

import logging
from datetime import datetime
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.billing import Invoice, InvoiceStatus, Plan, Subscription, SubscriptionStatus
from app.models.subscription_change import PlanChangeRequest, PlanChangeStatus
from app.services.clock import Clock, utc_now
from app.services.common import (
    apply_ordering,
    apply_pagination,
    as_utc,
    get_or_404,
    round_money,
    validate_enum,
    validate_uuid,
)
from app.services.proration import compute_proration, daily_rate
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


def _enqueue_invoice_generation(request_id: str) -> None:
    try:
        from app.tasks.subscription_changes import generate_plan_change_invoice

        generate_plan_change_invoice.delay(request_id)
    except Exception as exc:
        logger.error("Failed to queue invoice generation for plan change %s: %s", request_id, exc)


class PlanChangeRequests(ListResponseMixin):
    """Plan switches applied to subscriptions, with their computed proration."""

    @staticmethod
    def create(
        db: Session,
        subscription_id: str,
        new_plan_id: str,
        effective_date: datetime | None = None,
        clock: Clock = utc_now,
    ) -> PlanChangeRequest:
        """Switch a subscription to a new plan and record the proration.

        The credit for the old plan and the charge for the new one cover the
        unused part of the current period. Invoice generation is queued once
        the change is committed.

        Raises:
            HTTPException: 404 for an unknown subscription or plan, 400 when
                the change cannot be applied.
        """
        subscription = get_or_404(db, Subscription, subscription_id, detail="Subscription not found")
        if subscription.status == SubscriptionStatus.canceled:
            raise HTTPException(status_code=400, detail="Subscription is canceled")
        if not subscription.current_period_start or not subscription.current_period_end:
            raise HTTPException(status_code=400, detail="Subscription has no current billing period")

        new_plan = get_or_404(db, Plan, new_plan_id, detail="Plan not found")
        if not new_plan.is_active:
            raise HTTPException(status_code=400, detail="Requested plan is not active")
        if new_plan.id == subscription.plan_id:
            raise HTTPException(status_code=400, detail="Subscription is already on this plan")
        old_plan = db.get(Plan, subscription.plan_id)

        period_start = as_utc(subscription.current_period_start)
        period_end = as_utc(subscription.current_period_end)
        effective = as_utc(effective_date) if effective_date else clock()
        if effective < period_start or effective >= period_end:
            raise HTTPException(
                status_code=400,
                detail="Effective date must fall within the current billing period",
            )

        proration = compute_proration(
            old_rate=daily_rate(old_plan.amount, old_plan.interval, period_start),
            new_rate=daily_rate(new_plan.amount, new_plan.interval, period_start),
            period_start=period_start,
            period_end=period_end,
            effective_date=effective,
            old_label=old_plan.name,
            new_label=new_plan.name,
        )

        request = PlanChangeRequest(
            subscription_id=subscription.id,
            old_plan_id=old_plan.id,
            new_plan_id=new_plan.id,
            effective_date=effective,
            proration_credit=proration.credit.amount,
            proration_charge=proration.charge.amount,
            proration_credit_breakdown=[
                item.model_dump(mode="json") for item in proration.credit.breakdown
            ],
            proration_charge_breakdown=[
                item.model_dump(mode="json") for item in proration.charge.breakdown
            ],
            status=PlanChangeStatus.pending_invoice,
        )
        db.add(request)
        subscription.plan_id = new_plan.id
        db.commit()
        db.refresh(request)

        logger.info(
            "Subscription %s changed plan %s -> %s (credit %s, charge %s)",
            subscription.id,
            old_plan.id,
            new_plan.id,
            request.proration_credit,
            request.proration_charge,
        )
        _enqueue_invoice_generation(str(request.id))
        return request

    @staticmethod
    def get(db: Session, request_id: str) -> PlanChangeRequest:
        return get_or_404(db, PlanChangeRequest, request_id, detail="Plan change request not found")

    @staticmethod
    def list(
        db: Session,
        subscription_id: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(PlanChangeRequest)
        if subscription_id:
            query = query.filter(
                PlanChangeRequest.subscription_id
                == validate_uuid(subscription_id, "subscription_id")
            )
        if status:
            query = query.filter(
                PlanChangeRequest.status == validate_enum(status, PlanChangeStatus, "status")
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": PlanChangeRequest.created_at,
                "effective_date": PlanChangeRequest.effective_date,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def generate_invoice(
        db: Session,
        request_id: str,
        clock: Clock = utc_now,
    ) -> PlanChangeRequest:
        """Create the invoice for a plan change.

        Safe to call repeatedly: a request that already has its invoice is
        returned unchanged. On a database error the request is marked
        ``invoice_failed`` and the error is re-raised for the caller to retry.
        """
        request = PlanChangeRequests.get(db, request_id)
        if request.status == PlanChangeStatus.invoice_generated and request.invoice_id:
            return request

        try:
            new_plan = db.get(Plan, request.new_plan_id)
            old_plan = db.get(Plan, request.old_plan_id)
            credit = Decimal(request.proration_credit or 0)
            charge = Decimal(request.proration_charge or 0)
            net = round_money(charge - credit)
            memo = f"Plan change: {old_plan.name} -> {new_plan.name}"
            if net < 0:
                memo += f"; credit of {-net} carried to next invoice"

            now = clock()
            invoice = Invoice(
                subscription_id=request.subscription_id,
                status=InvoiceStatus.open,
                currency=new_plan.currency,
                total=max(net, Decimal("0.00")),
                due_at=now,
                memo=memo,
            )
            db.add(invoice)
            db.flush()
            request.invoice_id = invoice.id
            request.status = PlanChangeStatus.invoice_generated
            request.error_message = None
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            request = db.get(PlanChangeRequest, request.id)
            request.status = PlanChangeStatus.invoice_failed
            request.error_message = str(exc)[:500]
            request.retry_count = (request.retry_count or 0) + 1
            db.commit()
            logger.error("Invoice generation failed for plan change %s: %s", request.id, exc)
            raise

        db.refresh(request)
        logger.info("Generated invoice %s for plan change %s", request.invoice_id, request.id)
        return request


plan_change_requests = PlanChangeRequests()
