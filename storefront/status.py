"""
Order status state machine.

Two independent axes: fulfilment status and payment status. By default an
elevated caller may force-set any fulfilment status (the store's historical
behaviour); with ENFORCE_STATUS_TRANSITIONS the graph below is enforced.
Payment status "paid" is never reachable through a plain update, only through
payment verification.
"""
from enum import Enum

from .errors import ValidationError
from .models import OrderStatus, PaymentStatus

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    # a user may retry payment after a failed attempt
    PaymentStatus.FAILED: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Fulfilment states that only follow a received payment
REQUIRES_PAYMENT = frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED})


class PaymentActor(str, Enum):
    """Who is changing a payment status."""
    VERIFIER = "verifier"
    STAFF = "staff"


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return current == target or target in ORDER_TRANSITIONS[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return current == target or target in PAYMENT_TRANSITIONS[current]


def check_status_change(
    current: OrderStatus,
    target: OrderStatus,
    payment_status: PaymentStatus,
    enforce: bool,
) -> None:
    """Raise ValidationError if moving current -> target is not allowed."""
    if not enforce:
        return

    if not can_transition(current, target):
        raise ValidationError(
            f"Cannot change order status from {current.value} to {target.value}",
            field="status",
        )
    if target in REQUIRES_PAYMENT and payment_status != PaymentStatus.PAID:
        raise ValidationError(
            f"Order cannot be {target.value} before payment is received",
            field="status",
        )


def check_payment_status_change(
    current: PaymentStatus,
    target: PaymentStatus,
    actor: PaymentActor,
    enforce: bool,
) -> None:
    """Raise ValidationError if the actor may not move current -> target."""
    if target == PaymentStatus.PAID and current != PaymentStatus.PAID:
        if actor is not PaymentActor.VERIFIER:
            raise ValidationError(
                "Payment status can only become paid through payment verification",
                field="payment_status",
            )
        if not can_transition_payment(current, target):
            raise ValidationError(
                f"Cannot mark a {current.value} payment as paid",
                field="payment_status",
            )
        return

    if enforce and not can_transition_payment(current, target):
        raise ValidationError(
            f"Cannot change payment status from {current.value} to {target.value}",
            field="payment_status",
        )
