import logging
import os
from datetime import timedelta

from app.config import settings

logger = logging.getLogger(__name__)


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_bool(name: str) -> bool | None:
    raw = _env_value(name)
    if raw is None:
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s: %r", name, raw)
        return None


def get_celery_config() -> dict:
    config: dict[str, object] = {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "timezone": settings.celery_timezone,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
    }
    config["beat_max_loop_interval"] = _env_int("CELERY_BEAT_MAX_LOOP_INTERVAL") or 5
    return config


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}
    dunning_enabled = _env_bool("DUNNING_BEAT_ENABLED")
    if dunning_enabled is None:
        dunning_enabled = True
    if dunning_enabled:
        schedule["process_due_dunning_attempts"] = {
            "task": "app.tasks.dunning.process_due_dunning_attempts",
            "schedule": timedelta(seconds=max(settings.dunning_poll_interval_seconds, 60)),
        }
    else:
        logger.info("Dunning beat schedule disabled")
    return schedule
