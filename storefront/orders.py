"""
Order records.

Orders are created pending/pending with their line prices and shipping
address frozen. After that only statuses and the tracking number change;
orders are never deleted and their money fields are never recomputed.
"""
import logging
import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .addresses import resolve_shipping_address
from .auth import Caller
from .cart import price_lines
from .config import Settings
from .errors import Forbidden, NotFound, ValidationError
from .models import (
    AddressSnapshot,
    OrderCreate,
    OrderItemOut,
    OrderOut,
    OrderStatus,
    OrderUpdate,
    PaymentStatus,
)
from .money import from_minor, to_decimal, to_minor
from .status import PaymentActor, check_payment_status_change, check_status_change
from .tables import Order, OrderItem, Product

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_TOKEN_LENGTH = 6
ORDER_NUMBER_ATTEMPTS = 5

# Statuses a customer may still cancel from
CUSTOMER_CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})


def generate_order_number(prefix: str, now: Optional[datetime] = None) -> str:
    """e.g. ORD-20261019-7KQ2ZD"""
    now = now or datetime.now(timezone.utc)
    token = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(ORDER_NUMBER_TOKEN_LENGTH))
    return f"{prefix}{now:%Y%m%d}-{token}"


def _unused_order_number(db: Session, prefix: str) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number(prefix)
        if db.scalar(select(Order.id).where(Order.order_number == candidate)) is None:
            return candidate
    raise RuntimeError("Could not allocate a unique order number")


def order_to_out(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        items=[
            OrderItemOut(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product_name,
                size=item.size,
                quantity=item.quantity,
                unit_price=from_minor(item.unit_price_minor),
                line_total=from_minor(item.unit_price_minor * item.quantity),
            )
            for item in order.items
        ],
        shipping_address=AddressSnapshot(**order.shipping_address),
        subtotal=from_minor(order.subtotal_minor),
        shipping=from_minor(order.shipping_minor),
        total=from_minor(order.total_minor),
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        payment_intent_id=order.payment_intent_id,
        payment_id=order.payment_id,
        tracking_number=order.tracking_number,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def _find_by_idempotency_key(db: Session, user_id: str, key: str) -> Optional[Order]:
    return db.scalar(
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.user_id == user_id, Order.idempotency_key == key)
    )


def create_order(
    db: Session,
    caller: Caller,
    data: OrderCreate,
    settings: Settings,
) -> tuple[Order, bool]:
    """
    Create a pending order from submitted cart lines.

    Each line's unit price is the product's live price right now; the
    submitted subtotal and shipping must agree with what those prices give.

    Returns:
        Tuple of (order, created). created is False when an idempotency key
        matched an order this user already placed.

    Raises:
        ValidationError for an empty cart, unknown/unavailable products,
        sizes not offered, or totals that do not add up
        NotFound if a saved address id is not the caller's
    """
    key = data.idempotency_key
    if key:
        existing = _find_by_idempotency_key(db, caller.user_id, key)
        if existing is not None:
            logger.info("Replaying order %s for idempotency key %s", existing.order_number, key)
            return existing, False

    if not data.items:
        raise ValidationError("Order must contain at least one item", field="items")

    subtotal = to_decimal(data.subtotal)
    shipping = to_decimal(data.shipping)
    total = to_decimal(data.total)
    if total != subtotal + shipping:
        raise ValidationError("Order total does not match subtotal plus shipping", field="total")

    address = resolve_shipping_address(db, caller, data.address_id, data.shipping_address)

    # Freeze live prices
    frozen: list[tuple[Product, int, str, int]] = []
    for index, item in enumerate(data.items):
        product = db.get(Product, item.product_id)
        if product is None:
            raise ValidationError(f"Product {item.product_id} not found", field=f"items[{index}].product_id")
        if not product.in_stock:
            raise ValidationError(f"{product.name} is out of stock", field=f"items[{index}].product_id")
        if item.size.value not in (product.sizes or []):
            raise ValidationError(
                f"{product.name} is not available in size {item.size.value}",
                field=f"items[{index}].size",
            )
        frozen.append((product, item.quantity, item.size.value, product.price_minor))

    priced = price_lines(
        ((from_minor(price_minor), quantity) for _, quantity, _, price_minor in frozen),
        settings.free_shipping_threshold,
        settings.flat_shipping_fee,
    )
    if priced.subtotal != subtotal:
        raise ValidationError(
            "Prices have changed since this cart was built, please review your cart",
            field="subtotal",
        )
    if priced.shipping != shipping:
        raise ValidationError("Shipping does not match the current shipping policy", field="shipping")

    order = Order(
        order_number=_unused_order_number(db, settings.order_number_prefix),
        user_id=caller.user_id,
        shipping_address=address.model_dump(),
        subtotal_minor=to_minor(subtotal),
        shipping_minor=to_minor(shipping),
        total_minor=to_minor(total),
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        payment_method=data.payment_method.value,
        idempotency_key=key,
    )
    for position, (product, quantity, size, price_minor) in enumerate(frozen):
        order.items.append(OrderItem(
            product_id=product.id,
            position=position,
            product_name=product.name,
            size=size,
            quantity=quantity,
            unit_price_minor=price_minor,
        ))

    db.add(order)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # Two submissions with the same key raced; the other one won
        if key:
            existing = _find_by_idempotency_key(db, caller.user_id, key)
            if existing is not None:
                return existing, False
        raise

    logger.info(
        "Order %s created for user %s: %d item(s), total=%s",
        order.order_number, caller.user_id, len(order.items), from_minor(order.total_minor),
    )
    return order, True


def find_order(db: Session, caller: Caller, ref: str, prefix: str) -> Order:
    """
    Fetch an order by internal id or by order number.

    Order numbers carry the configured prefix, ids never do. Customers only
    see their own orders; admins see any.
    """
    query = select(Order).options(selectinload(Order.items))
    if ref.startswith(prefix):
        query = query.where(Order.order_number == ref)
    else:
        query = query.where(Order.id == ref)

    if not caller.is_admin:
        query = query.where(Order.user_id == caller.user_id)

    order = db.scalar(query)
    if order is None:
        raise NotFound("Order", ref)
    return order


def find_order_by_number(db: Session, order_number: str) -> Optional[Order]:
    return db.scalar(select(Order).where(Order.order_number == order_number))


def payable_order_for_receipt(
    db: Session,
    caller: Caller,
    receipt: Optional[str],
    amount: Optional[Decimal],
) -> Optional[Order]:
    """
    The order a payment receipt refers to, if the receipt is an order number.

    Receipts that are not order numbers are passed through untouched.

    Raises:
        NotFound if the order belongs to someone else
        ValidationError if the order cannot take a payment for this amount
    """
    if not receipt:
        return None
    order = find_order_by_number(db, receipt)
    if order is None:
        return None
    if not caller.can_access(order.user_id):
        raise NotFound("Order", receipt)

    if order.payment_status == PaymentStatus.PAID.value:
        raise ValidationError("Order is already paid", field="receipt")
    if order.status == OrderStatus.CANCELLED.value:
        raise ValidationError("Order has been cancelled", field="receipt")
    if amount is not None and to_minor(amount) != order.total_minor:
        raise ValidationError("Amount does not match the order total", field="amount")
    return order


def record_payment_intent(db: Session, order: Order, provider_order_id: str) -> None:
    """Remember the latest provider order issued for an order."""
    if order.payment_intent_id and order.payment_intent_id != provider_order_id:
        # TODO: reuse the open provider order instead of issuing a new one per retry
        logger.warning(
            "Order %s already had payment intent %s, replacing with %s",
            order.order_number, order.payment_intent_id, provider_order_id,
        )
    order.payment_intent_id = provider_order_id
    db.commit()


def list_orders_for_caller(db: Session, caller: Caller) -> list[Order]:
    return list(
        db.scalars(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.user_id == caller.user_id)
            .order_by(Order.created_at.desc())
        )
    )


def _parse_filter(value: Optional[str], enum, field: str):
    if value is None or value == "all":
        return None
    try:
        return enum(value)
    except ValueError:
        raise ValidationError(f"Unknown {field}: {value}", field=field)


def list_orders_admin(
    db: Session,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
) -> list[Order]:
    """
    All orders for the back-office, newest first.

    Without a payment_status filter only paid orders are shown; pass "all"
    to see every order.
    """
    query = select(Order).options(selectinload(Order.items))

    status_filter = _parse_filter(status, OrderStatus, "status")
    if status_filter is not None:
        query = query.where(Order.status == status_filter.value)

    if payment_status is None:
        query = query.where(Order.payment_status == PaymentStatus.PAID.value)
    else:
        payment_filter = _parse_filter(payment_status, PaymentStatus, "payment_status")
        if payment_filter is not None:
            query = query.where(Order.payment_status == payment_filter.value)

    return list(db.scalars(query.order_by(Order.created_at.desc())))


def update_order(
    db: Session,
    caller: Caller,
    order_id: str,
    patch: OrderUpdate,
    settings: Settings,
) -> Order:
    """
    Apply a partial status/payment/tracking update.

    Admins may set any supplied field, subject to the status rules.
    Customers may only cancel their own order while it is pending or
    processing. Nobody may set payment_status to paid here.
    """
    query = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
    if not caller.is_admin:
        query = query.where(Order.user_id == caller.user_id)
    order = db.scalar(query)
    if order is None:
        raise NotFound("Order", order_id)

    current_status = OrderStatus(order.status)
    current_payment = PaymentStatus(order.payment_status)
    fields = patch.model_dump(exclude_none=True)

    if not caller.is_admin:
        if set(fields) != {"status"} or patch.status != OrderStatus.CANCELLED:
            raise Forbidden("Customers may only cancel their own orders")
        if current_status not in CUSTOMER_CANCELLABLE and current_status != OrderStatus.CANCELLED:
            raise ValidationError(f"A {current_status.value} order can no longer be cancelled", field="status")

    if patch.payment_status is not None:
        check_payment_status_change(
            current_payment,
            patch.payment_status,
            PaymentActor.STAFF,
            settings.enforce_status_transitions,
        )
        order.payment_status = patch.payment_status.value

    if patch.status is not None:
        check_status_change(
            current_status,
            patch.status,
            PaymentStatus(order.payment_status),
            settings.enforce_status_transitions,
        )
        order.status = patch.status.value

    if patch.tracking_number:
        order.tracking_number = patch.tracking_number

    db.commit()
    db.refresh(order)

    logger.info(
        "Order %s updated by %s (%s): %s",
        order.order_number, caller.user_id, caller.role.value, fields,
    )
    return order
