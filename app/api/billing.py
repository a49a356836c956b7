from fastapi import APIRouter

from app.schemas.proration import ProrationPreviewRequest, ProrationResult
from app.services import proration as proration_service

router = APIRouter(prefix="/proration", tags=["billing"])


@router.post("/preview", response_model=ProrationResult)
def preview_proration(payload: ProrationPreviewRequest):
    return proration_service.compute_proration(
        payload.old_rate,
        payload.new_rate,
        payload.period_start,
        payload.period_end,
        payload.effective_date,
    )
