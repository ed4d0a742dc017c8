import hashlib
import hmac
import json
import logging
import time
import uuid
from typing import Dict, Optional

import requests

from storefront.core.ports import IPaymentGateway
from storefront.core.entities import PaymentIntent, PaymentEvent
from storefront.core.exceptions import (
    PaymentGatewayError, WebhookSignatureError, InvalidWebhookPayloadError,
)

logger = logging.getLogger(__name__)


# ====================================================================
# WEBHOOK SIGNATURES
# Header format: "t=<unix timestamp>,v1=<hex hmac-sha256>[,v1=...]".
# The signed string is "<timestamp>.<raw payload>".
# ====================================================================

def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode('utf-8') + payload
    return hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Builds a signature header the way the processor sends it."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={compute_signature(payload, secret, timestamp)}"


def verify_signature(payload: bytes, signature_header: str, secret: str, tolerance: int = 300) -> None:
    """Raises WebhookSignatureError unless the header authenticates payload."""
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured.")
    if not signature_header:
        raise WebhookSignatureError("Missing signature header.")

    timestamp = None
    candidates = []
    for part in signature_header.split(','):
        key, _, value = part.strip().partition('=')
        if key == 't':
            timestamp = value
        elif key == 'v1':
            candidates.append(value)

    try:
        timestamp = int(timestamp)
    except (TypeError, ValueError):
        raise WebhookSignatureError("Unable to extract timestamp from signature header.")

    if not candidates:
        raise WebhookSignatureError("No v1 signature found in header.")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
        raise WebhookSignatureError()

    if tolerance and abs(time.time() - timestamp) > tolerance:
        raise WebhookSignatureError("Timestamp outside the tolerance zone.")


def parse_event(payload: bytes) -> PaymentEvent:
    """Parses an already authenticated payload. Raises InvalidWebhookPayloadError."""
    try:
        data = json.loads(payload.decode('utf-8'))
        data_object = data.get('data', {}).get('object', {}) or {}
        metadata = data_object.get('metadata') or {}
        if not isinstance(metadata, dict):
            raise InvalidWebhookPayloadError(f"metadata must be an object, got {type(metadata).__name__}")
        return PaymentEvent(
            id=str(data.get('id', '')),
            type=str(data.get('type', '')),
            object_id=data_object.get('id'),
            metadata={str(k): str(v) for k, v in metadata.items()},
        )
    except (ValueError, AttributeError) as e:
        raise InvalidWebhookPayloadError(f"Invalid payload: {e}")


# ====================================================================
# GATEWAYS: concrete implementations talking to external APIs.
# ====================================================================

class StripeGateway(IPaymentGateway):
    """
    Payment gateway for the Stripe REST API.

    Intents are created with a single form-encoded POST. There is no retry:
    a timeout or error status surfaces as PaymentGatewayError.
    """

    def __init__(self, api_key: str, webhook_secret: str,
                 api_base: str = "https://api.stripe.com/v1",
                 timeout: float = 15, tolerance: int = 300):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_base = api_base.rstrip('/')
        self.timeout = timeout
        self.tolerance = tolerance

        if not self.api_key:
            logger.warning("STRIPE_API_KEY is not configured. Payment intents will fail.")

    def create_payment_intent(self, amount: int, currency: str,
                              metadata: Dict[str, str]) -> PaymentIntent:
        payload = {
            "amount": amount,
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in metadata.items():
            payload[f"metadata[{key}]"] = value

        try:
            response = requests.post(
                f"{self.api_base}/payment_intents",
                data=payload,
                auth=(self.api_key, ""),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error("Stripe payment intent request failed: %s", e)
            raise PaymentGatewayError(f"Error creating payment intent: {e}")
        except ValueError as e:
            raise PaymentGatewayError(f"Unreadable response from payment processor: {e}")

        return PaymentIntent(
            id=data.get("id"),
            client_secret=data.get("client_secret"),
            amount=data.get("amount", amount),
            currency=data.get("currency", currency),
            status=data.get("status"),
            metadata=data.get("metadata") or dict(metadata),
        )

    def construct_event(self, payload: bytes, signature_header: str) -> PaymentEvent:
        verify_signature(payload, signature_header, self.webhook_secret, self.tolerance)
        return parse_event(payload)


class PaymentGatewayMock(IPaymentGateway):
    """Offline gateway for development. Webhooks are still verified."""

    def __init__(self, webhook_secret: str, tolerance: int = 300):
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def create_payment_intent(self, amount: int, currency: str,
                              metadata: Dict[str, str]) -> PaymentIntent:
        intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
        logger.info("Mock payment intent %s for %s %s", intent_id, amount, currency)
        return PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:16]}",
            amount=amount,
            currency=currency,
            status="requires_payment_method",
            metadata=dict(metadata),
        )

    def construct_event(self, payload: bytes, signature_header: str) -> PaymentEvent:
        verify_signature(payload, signature_header, self.webhook_secret, self.tolerance)
        return parse_event(payload)
