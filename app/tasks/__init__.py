from app.tasks.dunning import (
    process_due_dunning_attempts,
    process_dunning_attempt,
    schedule_dunning_attempts,
)
from app.tasks.subscription_changes import generate_plan_change_invoice

__all__ = [
    "generate_plan_change_invoice",
    "process_due_dunning_attempts",
    "process_dunning_attempt",
    "schedule_dunning_attempts",
]
