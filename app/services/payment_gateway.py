"""Payment gateway used to retry failed invoice charges."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Any, Protocol
from uuid import UUID

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChargeContext:
    attempt_id: UUID
    invoice_id: UUID
    subscription_id: UUID
    amount: Decimal
    currency: str

    @property
    def idempotency_key(self) -> str:
        # Stable per attempt so a retried charge is not collected twice.
        return f"dunning-{self.attempt_id}"


@dataclass(frozen=True)
class ChargeResult:
    success: bool
    reference: str | None = None
    error_message: str | None = None


class PaymentGateway(Protocol):
    def charge(self, context: ChargeContext) -> ChargeResult: ...


class HttpPaymentGateway:
    """Charges invoices through the payment provider's REST API.

    Transport errors and non-2xx responses are returned as failed results,
    never raised, so the dunning schedule can record them.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _headers(self, context: ChargeContext) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Idempotency-Key": context.idempotency_key,
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(url, json=payload, headers=headers)

    def charge(self, context: ChargeContext) -> ChargeResult:
        payload = {
            "invoice_id": str(context.invoice_id),
            "subscription_id": str(context.subscription_id),
            "amount": str(context.amount),
            "currency": context.currency,
        }
        try:
            response = self._post(f"{self.base_url}/charges", payload, self._headers(context))
        except httpx.HTTPError as exc:
            logger.warning(
                "Payment gateway request failed for invoice %s: %s",
                context.invoice_id,
                exc,
            )
            return ChargeResult(success=False, error_message=f"Gateway unreachable: {exc}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            message = data.get("message") or data.get("error") or response.text[:200]
            logger.info(
                "Charge declined for invoice %s (HTTP %s): %s",
                context.invoice_id,
                response.status_code,
                message,
            )
            return ChargeResult(
                success=False,
                error_message=f"HTTP {response.status_code}: {message}",
            )

        status = str(data.get("status", "succeeded")).lower()
        reference = data.get("reference") or data.get("id")
        if status not in ("succeeded", "success", "paid"):
            return ChargeResult(
                success=False,
                reference=reference,
                error_message=data.get("message") or f"Charge {status}",
            )
        return ChargeResult(success=True, reference=reference)


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    settings.validate_gateway_config()
    return HttpPaymentGateway(
        settings.payment_gateway_url,
        api_key=settings.payment_gateway_api_key,
        timeout=settings.payment_gateway_timeout,
    )
