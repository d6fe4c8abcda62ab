"""Stripe Checkout client for card reward payments, plus webhook verification."""

import hashlib
import hmac
import os
import time
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from disc_recovery.core.errors import PaymentProviderError

log = structlog.get_logger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300


@dataclass
class CheckoutSession:
    id: str
    url: str


class StripeCheckoutGateway:
    """Creates Checkout sessions that pay a finder's connected account."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.stripe.com",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def create_checkout_session(
        self,
        *,
        amount_cents: int,
        product_name: str,
        destination_account: str,
        success_url: str,
        cancel_url: str,
        metadata: dict,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Raises:
            PaymentProviderError: transport failure, non-2xx response or a
                response without a session url.
        """
        if not self._api_key:
            raise PaymentProviderError("Card payments are not configured")

        form = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items[0][quantity]": "1",
            "line_items[0][price_data][currency]": "usd",
            "line_items[0][price_data][unit_amount]": str(amount_cents),
            "line_items[0][price_data][product_data][name]": product_name,
            "payment_intent_data[transfer_data][destination]": destination_account,
        }
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = str(value)

        headers = {"Authorization": f"Bearer {self._api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(
                    f"{self._base_url}/v1/checkout/sessions",
                    data=form,
                    headers=headers,
                )
        except httpx.HTTPError as e:
            log.error("checkout_request_failed", error=str(e))
            raise PaymentProviderError() from e

        if response.status_code >= 400:
            log.error(
                "checkout_rejected",
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise PaymentProviderError()

        data = response.json()
        if not data.get("url"):
            log.error("checkout_missing_url", session_id=data.get("id"))
            raise PaymentProviderError()

        return CheckoutSession(id=data["id"], url=data["url"])


def verify_webhook_signature(payload: bytes, signature_header: Optional[str], secret: Optional[str], now=None) -> bool:
    """Check a Stripe-Signature header: t=<ts>,v1=<hex hmac of "t.payload">."""
    if not signature_header or not secret:
        return False

    timestamp = None
    signatures = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if not timestamp or not signatures:
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False

    now = int(now if now is not None else time.time())
    if abs(now - ts) > SIGNATURE_TOLERANCE_SECONDS:
        return False

    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()

    return any(hmac.compare_digest(expected, sig) for sig in signatures)


def get_payment_gateway() -> StripeCheckoutGateway:
    return StripeCheckoutGateway(
        api_key=os.getenv("STRIPE_SECRET_KEY"),
        base_url=os.getenv("STRIPE_API_BASE", "https://api.stripe.com"),
    )
