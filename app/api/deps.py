from app.db import get_db
from app.services.clock import Clock, utc_now
from app.services.payment_gateway import PaymentGateway, get_payment_gateway


def get_gateway() -> PaymentGateway:
    """Payment gateway used by request handlers; overridden in tests."""
    return get_payment_gateway()


def get_clock() -> Clock:
    return utc_now


__all__ = [
    "get_clock",
    "get_db",
    "get_gateway",
]
