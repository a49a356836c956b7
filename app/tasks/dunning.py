import logging
import time
from datetime import datetime

from app.celery_app import celery_app
from app.db import SessionLocal
from app.metrics import observe_job
from app.services import dunning as dunning_service
from app.services.clock import utc_now
from app.services.dunning import DunningAttemptNotFoundError
from app.services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.dunning.schedule_dunning_attempts")
def schedule_dunning_attempts(invoice_id: str, first_failure_at: str | None = None):
    session = SessionLocal()
    try:
        outcome = dunning_service.dunning_manager.schedule_dunning_attempts(
            session,
            invoice_id,
            first_failure_at=datetime.fromisoformat(first_failure_at) if first_failure_at else None,
        )
        return [str(attempt.id) for attempt in outcome.attempts]
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.dunning.process_dunning_attempt")
def process_dunning_attempt(attempt_id: str):
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        result = dunning_service.dunning_manager.process_dunning_attempt(
            session, attempt_id, get_payment_gateway()
        )
        return result.model_dump(mode="json")
    except DunningAttemptNotFoundError:
        status = "error"
        session.rollback()
        logger.error("Dunning attempt not found: %s", attempt_id)
        raise
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("dunning_attempt", status, time.monotonic() - start)


@celery_app.task(name="app.tasks.dunning.process_due_dunning_attempts")
def process_due_dunning_attempts():
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        due = dunning_service.dunning_attempts.list_due(session, utc_now())
        for attempt in due:
            process_dunning_attempt.delay(str(attempt.id))
        if due:
            logger.info("Queued %s due dunning attempts", len(due))
        return len(due)
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("dunning_due_scan", status, time.monotonic() - start)
