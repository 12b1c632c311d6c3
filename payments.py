"""
Payment gateway integration.

The order pipeline only sees ``PaymentGateway``.  ``RazorpayGateway``
talks to the real REST API; ``MockPaymentGateway`` is used when no keys
are configured so checkout still works in development.

Callbacks are trusted only when their signature matches
``hex(HMAC_SHA256(secret, "<order_ref>|<payment_ref>"))``.
"""

import hashlib
import hmac
import logging
import secrets
import time

import httpx

from config import Settings
from errors import UpstreamError

logger = logging.getLogger(__name__)


def compute_signature(secret: str, order_ref: str, payment_ref: str) -> str:
    message = f"{order_ref}|{payment_ref}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def timestamp_ref(prefix: str) -> str:
    """Locally generated transaction reference, unique per call."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class PaymentGateway:
    """Interface for payment gateways."""

    key_id = "mock_key"

    def create_transaction(self, amount_minor: int, currency: str, receipt: str) -> str:
        """Open a pending charge and return the gateway's order reference."""
        raise NotImplementedError

    def verify_callback(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        raise NotImplementedError


class _HmacVerifier:
    secret: str

    def verify_callback(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        expected = compute_signature(self.secret, order_ref, payment_ref)
        return hmac.compare_digest(expected, signature)


class RazorpayGateway(_HmacVerifier, PaymentGateway):
    def __init__(self, key_id: str, secret: str,
                 base_url: str = "https://api.razorpay.com/v1", timeout: float = 10.0,
                 client: httpx.Client = None):
        self.key_id = key_id
        self.secret = secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.Client(timeout=timeout)

    def create_transaction(self, amount_minor: int, currency: str, receipt: str) -> str:
        try:
            resp = self.client.post(
                f"{self.base_url}/orders",
                auth=(self.key_id, self.secret),
                json={"amount": amount_minor, "currency": currency, "receipt": receipt},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
            if not isinstance(body, dict) or not isinstance(body.get("id"), str):
                raise ValueError(f"unexpected gateway response: {body!r}")
            return body["id"]
        except httpx.TimeoutException:
            logger.error("Payment gateway timed out for receipt %s", receipt)
            raise UpstreamError("Payment gateway timed out")
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.error("Payment gateway error for receipt %s: %s", receipt, e)
            raise UpstreamError("Payment initialization failed")


class MockPaymentGateway(_HmacVerifier, PaymentGateway):
    """No network calls; references are synthesized from the clock."""

    def __init__(self, secret: str = "mock_secret"):
        self.secret = secret

    def create_transaction(self, amount_minor: int, currency: str, receipt: str) -> str:
        return timestamp_ref("mock_order")


def build_gateway(settings: Settings) -> PaymentGateway:
    if settings.gateway_configured:
        logger.info("Using Razorpay gateway")
        return RazorpayGateway(
            settings.gateway_key_id,
            settings.gateway_key_secret,
            base_url=settings.gateway_base_url,
            timeout=settings.gateway_timeout,
        )
    logger.info("Payment gateway keys not set, using mock gateway")
    return MockPaymentGateway(settings.mock_gateway_secret)
