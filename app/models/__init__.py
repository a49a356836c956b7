from app.models.billing import (  # noqa: F401
    Invoice,
    InvoiceStatus,
    Plan,
    PlanInterval,
    Subscription,
    SubscriptionStatus,
)
from app.models.content import Video  # noqa: F401
from app.models.dunning import DunningAttempt, DunningAttemptStatus, DunningStage  # noqa: F401
from app.models.subscription_change import PlanChangeRequest, PlanChangeStatus  # noqa: F401
