from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_clock, get_db
from app.schemas.common import ListResponse
from app.schemas.subscription_change import PlanChangeCreate, PlanChangeRequestRead
from app.services import subscription_changes as subscription_changes_service
from app.services.clock import Clock

router = APIRouter(tags=["subscriptions"])


@router.post(
    "/subscriptions/{subscription_id}/plan-changes",
    response_model=PlanChangeRequestRead,
    status_code=status.HTTP_201_CREATED,
)
def create_plan_change(
    subscription_id: str,
    payload: PlanChangeCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return subscription_changes_service.plan_change_requests.create(
        db,
        subscription_id,
        str(payload.new_plan_id),
        effective_date=payload.effective_date,
        clock=clock,
    )


@router.get("/plan-changes", response_model=ListResponse[PlanChangeRequestRead])
def list_plan_changes(
    subscription_id: str | None = None,
    status: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return subscription_changes_service.plan_change_requests.list_response(
        db, subscription_id, status, order_by, order_dir, limit, offset
    )


@router.get("/plan-changes/{request_id}", response_model=PlanChangeRequestRead)
def get_plan_change(request_id: str, db: Session = Depends(get_db)):
    return subscription_changes_service.plan_change_requests.get(db, request_id)
