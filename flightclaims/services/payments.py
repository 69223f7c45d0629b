"""
Payment processor client (Stripe REST API).

Every money-moving call carries a caller-supplied idempotency key; Stripe
returns the original result for a repeated key instead of acting twice.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from flightclaims.core import get_logger, settings
from flightclaims.core.exceptions import ConfigurationError, ExternalServiceError

logger = get_logger(__name__)


@dataclass
class RefundTransaction:
    id: str
    status: str
    amount: int
    currency: Optional[str] = None


@dataclass
class PaymentIntent:
    id: str
    client_secret: str
    amount: int
    currency: str


class PaymentClient(ABC):
    """Abstract payment processor."""

    @abstractmethod
    async def refund(
        self,
        transaction_id: str,
        amount: Optional[int],
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> RefundTransaction:
        """Refund (part of) a captured payment."""

    @abstractmethod
    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        """Create a payment intent for the service fee."""


def _flatten_metadata(metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
    # Stripe expects form-encoded nested keys: metadata[claim_id]=...
    return {f"metadata[{k}]": str(v) for k, v in (metadata or {}).items()}


class StripePaymentClient(PaymentClient):
    """Stripe via its form-encoded REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.stripe.com/v1",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _post(self, path: str, data: Dict[str, str], idempotency_key: str) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}{path}",
                    data=data,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Idempotency-Key": idempotency_key,
                    },
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:200]
            raise ExternalServiceError(
                f"Stripe {path} failed ({exc.response.status_code}): {detail}",
                service="payment",
                original_error=exc,
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                f"Stripe {path} request failed: {exc}", service="payment", original_error=exc
            )
        return response.json()

    async def refund(
        self,
        transaction_id: str,
        amount: Optional[int],
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> RefundTransaction:
        data = {"payment_intent": transaction_id, "reason": "requested_by_customer"}
        if amount is not None:
            data["amount"] = str(amount)
        data.update(_flatten_metadata({"service": "flightclaims", **(metadata or {})}))

        body = await self._post("/refunds", data, idempotency_key)
        logger.info(f"Stripe refund {body.get('id')} status={body.get('status')} for {transaction_id}")
        return RefundTransaction(
            id=body["id"],
            status=body.get("status", "pending"),
            amount=body.get("amount", amount or 0),
            currency=body.get("currency"),
        )

    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        data = {
            "amount": str(amount),
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
        }
        data.update(_flatten_metadata({"service": "flightclaims", **metadata}))

        body = await self._post("/payment_intents", data, idempotency_key)
        return PaymentIntent(
            id=body["id"],
            client_secret=body.get("client_secret", ""),
            amount=body.get("amount", amount),
            currency=body.get("currency", currency),
        )


def build_payment_client() -> PaymentClient:
    """Client for the configured processor; raises ConfigurationError without credentials."""
    return StripePaymentClient(
        api_key=settings.STRIPE_SECRET_KEY,
        base_url=settings.STRIPE_API_BASE,
        timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
    )
