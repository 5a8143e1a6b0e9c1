"""
Payment gateway bridge.

Creates provider-side payment orders ("intents") keyed to our order number.
The storefront only needs two things from a provider: create an order for an
amount, and sign the payment callback with a shared secret (checked in
verifier.py). Implementations:

- RazorpayGateway: the Razorpay Orders REST API over httpx
- SandboxGateway: mints ids locally, for development without credentials
"""
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional

import httpx

from .config import Settings, get_settings
from .errors import PaymentProviderError, ValidationError
from .money import to_minor
from .stats import CREATE_INTENT, Outcome, get_payment_stats

logger = logging.getLogger(__name__)

# Razorpay rejects receipts longer than this
MAX_RECEIPT_LENGTH = 40


@dataclass
class PaymentIntent:
    """A provider-side payment order awaiting the customer's payment."""
    provider_order_id: str
    amount: int  # minor units, as confirmed by the provider
    currency: str
    key_id: str  # public key the client widget opens with
    receipt: str


class PaymentGateway(ABC):
    """
    Interface every payment provider implements.

    Implementations set provider_name and implement _create_intent and
    health_check. Timing and stats are handled here.
    """

    provider_name: str

    async def create_intent(self, amount_minor: int, currency: str, receipt: str) -> PaymentIntent:
        """
        Ask the provider for a payment order.

        Raises:
            PaymentProviderError if the provider rejects the request or
            cannot be reached. No retry is attempted.
        """
        start_time = time.time()
        stats = get_payment_stats()

        try:
            intent = await self._create_intent(amount_minor, currency, receipt)
        except PaymentProviderError as e:
            stats.record(CREATE_INTENT, Outcome.PROVIDER_ERROR,
                         latency_ms=int((time.time() - start_time) * 1000), detail=e.message)
            raise

        latency_ms = int((time.time() - start_time) * 1000)
        stats.record(CREATE_INTENT, Outcome.OK, latency_ms=latency_ms)
        logger.info(
            "Payment intent %s created via %s: receipt=%s amount=%d %s (%dms)",
            intent.provider_order_id, self.provider_name, receipt,
            intent.amount, intent.currency, latency_ms,
        )
        return intent

    @abstractmethod
    async def _create_intent(self, amount_minor: int, currency: str, receipt: str) -> PaymentIntent:
        pass

    @abstractmethod
    async def health_check(self) -> tuple[bool, Optional[str]]:
        """
        Check the provider is reachable with our credentials.

        Returns:
            Tuple of (is_healthy, error_message)
        """
        pass

    async def close(self) -> None:
        """Release any connections."""
        pass


class RazorpayGateway(PaymentGateway):
    """Razorpay Orders API client."""

    provider_name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._key_id = key_id
        self._base_url = base_url.rstrip("/")
        self._configured = bool(key_id and key_secret)
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

        logger.info("Razorpay client initialized: %s", self._base_url)

    async def _create_intent(self, amount_minor: int, currency: str, receipt: str) -> PaymentIntent:
        if not self._configured:
            raise PaymentProviderError("Payment gateway is not configured", provider=self.provider_name)

        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        }

        try:
            response = await self._client.post("/orders", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            description = _error_description(e.response)
            logger.error("Razorpay rejected order for receipt %s: HTTP %d %s",
                         receipt, e.response.status_code, description)
            raise PaymentProviderError(
                f"Payment provider rejected the request: {description}",
                provider=self.provider_name,
            )
        except httpx.HTTPError as e:
            logger.error("Razorpay unreachable for receipt %s: %s", receipt, e)
            raise PaymentProviderError("Payment provider is unreachable", provider=self.provider_name)
        except ValueError:
            raise PaymentProviderError("Payment provider sent an unreadable response", provider=self.provider_name)

        if not isinstance(data, dict):
            raise PaymentProviderError("Payment provider sent an unreadable response", provider=self.provider_name)
        if not data.get("id"):
            raise PaymentProviderError("Payment provider response had no order id", provider=self.provider_name)

        return PaymentIntent(
            provider_order_id=data["id"],
            amount=int(data.get("amount", amount_minor)),
            currency=data.get("currency", currency),
            key_id=self._key_id,
            receipt=data.get("receipt", receipt),
        )

    async def health_check(self) -> tuple[bool, Optional[str]]:
        if not self._configured:
            return (False, "Razorpay credentials not configured")

        try:
            response = await self._client.get("/orders", params={"count": 1})
            response.raise_for_status()
            return (True, None)
        except httpx.HTTPStatusError as e:
            return (False, f"HTTP {e.response.status_code}: {_error_description(e.response)}")
        except httpx.HTTPError as e:
            return (False, str(e))

    async def close(self) -> None:
        await self._client.aclose()


def _error_description(response: httpx.Response) -> str:
    """Pull Razorpay's error description out of an error body."""
    try:
        return response.json()["error"]["description"]
    except (ValueError, KeyError, TypeError):
        return response.text[:200]


class SandboxGateway(PaymentGateway):
    """Issues payment orders locally. Nothing is charged."""

    provider_name = "sandbox"

    def __init__(self, key_id: str = ""):
        self._key_id = key_id or "rzp_test_sandbox"

    async def _create_intent(self, amount_minor: int, currency: str, receipt: str) -> PaymentIntent:
        return PaymentIntent(
            provider_order_id=f"order_sandbox_{secrets.token_hex(7)}",
            amount=amount_minor,
            currency=currency,
            key_id=self._key_id,
            receipt=receipt,
        )

    async def health_check(self) -> tuple[bool, Optional[str]]:
        return (True, None)


def build_gateway(settings: Settings) -> PaymentGateway:
    """Create the gateway named by PAYMENT_GATEWAY."""
    provider = settings.payment_gateway.lower()

    if provider == "razorpay":
        return RazorpayGateway(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            base_url=settings.razorpay_api_url,
            timeout=settings.razorpay_timeout,
        )
    elif provider == "sandbox":
        return SandboxGateway(key_id=settings.razorpay_key_id)
    else:
        raise ValueError(
            f"Unknown payment gateway: {provider}. "
            f"Supported gateways: razorpay, sandbox"
        )


@lru_cache()
def get_gateway() -> PaymentGateway:
    """Get the configured payment gateway."""
    return build_gateway(get_settings())


async def create_payment_intent(
    gateway: PaymentGateway,
    amount: Optional[Decimal],
    receipt: Optional[str],
    currency: str,
) -> PaymentIntent:
    """
    Turn a major-unit amount and a receipt into a provider payment order.

    Raises:
        ValidationError for a missing or non-positive amount or bad receipt
        PaymentProviderError if the provider call fails
    """
    if amount is None:
        raise ValidationError("Amount is required", field="amount")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero", field="amount")

    receipt = receipt or f"order_{int(time.time() * 1000)}"
    if len(receipt) > MAX_RECEIPT_LENGTH:
        raise ValidationError(f"Receipt must be at most {MAX_RECEIPT_LENGTH} characters", field="receipt")

    return await gateway.create_intent(to_minor(amount), currency.upper(), receipt)
