from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_clock, get_db, get_gateway
from app.schemas.common import ListResponse
from app.schemas.dunning import (
    DunningAttemptRead,
    DunningAttemptResult,
    DunningScheduleRequest,
    DunningScheduleResponse,
)
from app.services import dunning as dunning_service
from app.services.clock import Clock
from app.services.payment_gateway import PaymentGateway

router = APIRouter(tags=["dunning"])


@router.post(
    "/invoices/{invoice_id}/dunning-schedule",
    response_model=DunningScheduleResponse,
    status_code=status.HTTP_201_CREATED,
)
def schedule_dunning(
    invoice_id: str,
    response: Response,
    payload: DunningScheduleRequest | None = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    outcome = dunning_service.dunning_manager.schedule_dunning_attempts(
        db,
        invoice_id,
        first_failure_at=payload.first_failure_at if payload else None,
        clock=clock,
    )
    if not outcome.created:
        response.status_code = status.HTTP_200_OK
    return DunningScheduleResponse(
        invoice_id=outcome.attempts[0].invoice_id,
        created=outcome.created,
        attempts=[DunningAttemptRead.model_validate(item) for item in outcome.attempts],
    )


@router.get("/dunning-attempts", response_model=ListResponse[DunningAttemptRead])
def list_dunning_attempts(
    subscription_id: str | None = None,
    invoice_id: str | None = None,
    status: str | None = None,
    order_by: str = Query(default="next_attempt_at"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return dunning_service.dunning_attempts.list_response(
        db, subscription_id, invoice_id, status, order_by, order_dir, limit, offset
    )


@router.get("/dunning-attempts/{attempt_id}", response_model=DunningAttemptRead)
def get_dunning_attempt(attempt_id: str, db: Session = Depends(get_db)):
    return dunning_service.dunning_attempts.get(db, attempt_id)


@router.post(
    "/dunning-attempts/{attempt_id}/process",
    response_model=DunningAttemptResult,
)
def process_dunning_attempt(
    attempt_id: str,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    clock: Clock = Depends(get_clock),
):
    return dunning_service.dunning_manager.process_dunning_attempt(
        db, attempt_id, gateway, clock=clock
    )
