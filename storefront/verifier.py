"""
Payment callback verification.

After the customer pays, the provider's widget hands the client the provider
order id, the payment id and a signature:

    signature = hex(HMAC-SHA256(key_secret, "<provider_order_id>|<payment_id>"))

Only the server knows key_secret, so a matching signature proves the
callback came from the provider. This module is the only place an order's
payment status becomes paid.
"""
import hashlib
import hmac
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .auth import Caller
from .errors import NotFound, PaymentProviderError, SignatureInvalid, StorefrontError, ValidationError
from .models import OrderStatus, PaymentStatus, VerifyPaymentRequest
from .stats import VERIFY, Outcome, get_payment_stats
from .status import PaymentActor, check_payment_status_change
from .tables import Order

logger = logging.getLogger(__name__)


def compute_signature(secret: str, provider_order_id: str, payment_id: str) -> str:
    """Signature the provider attaches to a payment callback."""
    return hmac.new(
        secret.encode("utf-8"),
        f"{provider_order_id}|{payment_id}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def signature_matches(secret: str, provider_order_id: str, payment_id: str, signature: str) -> bool:
    """Constant-time comparison against the expected signature."""
    if not secret or not signature:
        return False
    expected = compute_signature(secret, provider_order_id, payment_id)
    return hmac.compare_digest(expected, signature)


def _required(value: Optional[str]) -> str:
    if not value or not value.strip():
        raise ValidationError("Missing required fields")
    return value.strip()


def _apply_callback(
    db: Session,
    caller: Caller,
    request: VerifyPaymentRequest,
    secret: str,
) -> Order:
    """Checks and state change behind verify_payment."""
    provider_order_id = _required(request.razorpay_order_id)
    payment_id = _required(request.razorpay_payment_id)
    signature = _required(request.razorpay_signature)
    order_id = _required(request.order_id)

    if not secret:
        logger.error("Payment verification attempted without a signing secret configured")
        raise PaymentProviderError("Payment verification is not configured")

    query = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
    if not caller.is_admin:
        query = query.where(Order.user_id == caller.user_id)
    order = db.scalar(query)
    if order is None:
        raise NotFound("Order", order_id)

    if not signature_matches(secret, provider_order_id, payment_id, signature):
        logger.warning(
            "SECURITY: invalid payment signature for order %s (provider order %s, payment %s, user %s)",
            order.order_number, provider_order_id, payment_id, caller.user_id,
        )
        raise SignatureInvalid()

    if order.payment_intent_id and order.payment_intent_id != provider_order_id:
        logger.warning(
            "SECURITY: payment for provider order %s presented against order %s issued %s",
            provider_order_id, order.order_number, order.payment_intent_id,
        )
        raise SignatureInvalid("Payment does not belong to this order")

    if order.payment_status == PaymentStatus.PAID.value:
        logger.info("Order %s already paid, verification is a no-op", order.order_number)
        return order

    if order.status == OrderStatus.CANCELLED.value:
        # staff refund these by hand
        logger.warning(
            "Payment %s (provider order %s) received for cancelled order %s, needs refund",
            payment_id, provider_order_id, order.order_number,
        )
        raise ValidationError("Order has been cancelled", field="order_id")

    check_payment_status_change(
        PaymentStatus(order.payment_status),
        PaymentStatus.PAID,
        PaymentActor.VERIFIER,
        enforce=True,
    )

    order.payment_status = PaymentStatus.PAID.value
    if order.status == OrderStatus.PENDING.value:
        order.status = OrderStatus.PROCESSING.value
    order.payment_id = payment_id
    if not order.payment_intent_id:
        order.payment_intent_id = provider_order_id
    db.commit()
    db.refresh(order)

    logger.info("Payment %s verified for order %s", payment_id, order.order_number)
    return order


def verify_payment(
    db: Session,
    caller: Caller,
    request: VerifyPaymentRequest,
    secret: str,
) -> Order:
    """
    Check a payment callback and mark the order paid.

    On success the order becomes paid in a single commit, and a pending order
    moves on to processing; later fulfilment states are left alone. On any
    failure nothing is written and the order stays as it was. Every outcome
    is counted in the payment stats.

    Raises:
        ValidationError if a field is missing or the order was cancelled
        PaymentProviderError if no signing secret is configured
        NotFound if the order does not exist or is not the caller's
        SignatureInvalid if the signature or provider order id do not match
    """
    stats = get_payment_stats()
    try:
        order = _apply_callback(db, caller, request, secret)
    except SignatureInvalid as e:
        stats.record(VERIFY, Outcome.SIGNATURE_INVALID, detail=e.message)
        raise
    except PaymentProviderError as e:
        stats.record(VERIFY, Outcome.PROVIDER_ERROR, detail=e.message)
        raise
    except StorefrontError as e:
        stats.record(VERIFY, Outcome.REJECTED, detail=e.message)
        raise

    stats.record(VERIFY, Outcome.OK)
    return order
