"""Tests for the order and payment status rules."""

import pytest

from storefront.errors import ValidationError
from storefront.models import OrderStatus, PaymentStatus
from storefront.status import (
    ORDER_TRANSITIONS,
    TERMINAL_STATUSES,
    PaymentActor,
    can_transition,
    can_transition_payment,
    check_payment_status_change,
    check_status_change,
)


class TestOrderTransitions:
    def test_every_status_has_an_entry(self):
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)

    def test_terminal_statuses_go_nowhere(self):
        for status in TERMINAL_STATUSES:
            assert ORDER_TRANSITIONS[status] == frozenset()

    @pytest.mark.parametrize("current,target", [
        (OrderStatus.PENDING, OrderStatus.PROCESSING),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.SHIPPED, OrderStatus.SHIPPED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (OrderStatus.PENDING, OrderStatus.DELIVERED),
        (OrderStatus.DELIVERED, OrderStatus.PENDING),
        (OrderStatus.CANCELLED, OrderStatus.PROCESSING),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)


class TestCheckStatusChange:
    def test_not_enforced_allows_anything(self):
        check_status_change(OrderStatus.PENDING, OrderStatus.DELIVERED, PaymentStatus.PENDING, enforce=False)

    def test_enforced_rejects_skips(self):
        with pytest.raises(ValidationError) as exc_info:
            check_status_change(OrderStatus.PENDING, OrderStatus.SHIPPED, PaymentStatus.PAID, enforce=True)
        assert exc_info.value.field == "status"

    def test_enforced_requires_payment(self):
        with pytest.raises(ValidationError):
            check_status_change(OrderStatus.PENDING, OrderStatus.PROCESSING, PaymentStatus.PENDING, enforce=True)
        check_status_change(OrderStatus.PENDING, OrderStatus.PROCESSING, PaymentStatus.PAID, enforce=True)

    def test_enforced_allows_cancel_before_payment(self):
        check_status_change(OrderStatus.PENDING, OrderStatus.CANCELLED, PaymentStatus.PENDING, enforce=True)


class TestPaymentStatusChange:
    def test_staff_cannot_mark_paid(self):
        for enforce in (False, True):
            with pytest.raises(ValidationError) as exc_info:
                check_payment_status_change(PaymentStatus.PENDING, PaymentStatus.PAID, PaymentActor.STAFF, enforce)
            assert exc_info.value.field == "payment_status"

    def test_verifier_marks_paid(self):
        check_payment_status_change(PaymentStatus.PENDING, PaymentStatus.PAID, PaymentActor.VERIFIER, enforce=True)
        check_payment_status_change(PaymentStatus.FAILED, PaymentStatus.PAID, PaymentActor.VERIFIER, enforce=True)

    def test_refunded_cannot_be_paid_again(self):
        with pytest.raises(ValidationError):
            check_payment_status_change(
                PaymentStatus.REFUNDED, PaymentStatus.PAID, PaymentActor.VERIFIER, enforce=False
            )

    def test_staff_refund(self):
        check_payment_status_change(PaymentStatus.PAID, PaymentStatus.REFUNDED, PaymentActor.STAFF, enforce=True)

    def test_enforced_payment_graph(self):
        assert not can_transition_payment(PaymentStatus.REFUNDED, PaymentStatus.PENDING)
        with pytest.raises(ValidationError):
            check_payment_status_change(
                PaymentStatus.REFUNDED, PaymentStatus.PENDING, PaymentActor.STAFF, enforce=True
            )
        check_payment_status_change(PaymentStatus.REFUNDED, PaymentStatus.PENDING, PaymentActor.STAFF, enforce=False)
