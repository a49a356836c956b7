"""Mock utilities for testing external dependencies."""

from datetime import datetime, timedelta

from app.services.payment_gateway import ChargeContext, ChargeResult

MP4_HEADER = b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00mp42isom"
JPEG_HEADER = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00"


class FakePaymentGateway:
    """Payment gateway returning queued results, succeeding by default."""

    def __init__(self, results: list[ChargeResult] | None = None):
        self.results = list(results or [])
        self.charges: list[ChargeContext] = []

    def fail_next(self, message: str = "Card declined") -> None:
        self.results.append(ChargeResult(success=False, error_message=message))

    def succeed_next(self, reference: str = "ch_test") -> None:
        self.results.append(ChargeResult(success=True, reference=reference))

    def charge(self, context: ChargeContext) -> ChargeResult:
        self.charges.append(context)
        if self.results:
            return self.results.pop(0)
        return ChargeResult(success=True, reference=f"ch_{len(self.charges)}")


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)
