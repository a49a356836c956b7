import logging

from sqlalchemy.exc import SQLAlchemyError

from app.celery_app import celery_app
from app.db import SessionLocal
from app.services import subscription_changes as subscription_changes_service

logger = logging.getLogger(__name__)

MAX_RETRIES = 5


@celery_app.task(
    name="app.tasks.subscription_changes.generate_plan_change_invoice",
    bind=True,
    max_retries=MAX_RETRIES,
    autoretry_for=(SQLAlchemyError,),
    retry_backoff=True,
    retry_backoff_max=3600,
)
def generate_plan_change_invoice(self, request_id: str):
    """Create the proration invoice for a plan change, retrying on database errors."""
    session = SessionLocal()
    try:
        request = subscription_changes_service.plan_change_requests.generate_invoice(
            session, request_id
        )
        return str(request.invoice_id)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
