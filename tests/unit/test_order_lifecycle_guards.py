"""
Unit tests for the lifecycle guards (no database).
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from campstore.exceptions import IllegalTransitionError, ValidationError
from campstore.models import Order, OrderLine, OrderStatus, OrderType, LineType, PaymentStatus
from campstore.services.order_lifecycle import (
    ACTOR_CUSTOMER, ACTOR_STAFF, validate_transition, can_edit, can_cancel, edit_deadline,
    is_overdue, calculate_late_fee
)
from campstore.services.payment_workflow import validate_payment_transition

CREATED = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def make_order(status=OrderStatus.PENDING, rental=False, created_at=CREATED, **kwargs):
    order = Order(
        order_number='ORD-TEST',
        order_type=OrderType.RENTAL if rental else OrderType.SALES,
        status=status,
        payment_status=kwargs.pop('payment_status', PaymentStatus.PENDING),
        created_at=created_at,
        **kwargs
    )
    order.lines.append(OrderLine(
        product_id=1,
        name='Dome Tent' if rental else 'Gas Stove',
        line_type=LineType.RENTAL if rental else LineType.SALE,
        quantity=1,
        unit_price=Decimal('1000'),
        rental_days=3 if rental else None,
        subtotal=Decimal('3000') if rental else Decimal('1000')
    ))
    return order


class TestValidateTransition:
    """The canonical fulfillment guard."""

    @pytest.mark.parametrize('current,target', [
        (OrderStatus.PENDING, OrderStatus.PROCESSING),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        (OrderStatus.DELIVERED, OrderStatus.COMPLETED),
    ])
    def test_staff_forward_moves(self, current, target):
        assert validate_transition(make_order(current), target, ACTOR_STAFF) == target

    @pytest.mark.parametrize('terminal', [OrderStatus.CANCELLED, OrderStatus.COMPLETED, OrderStatus.RETURNED])
    @pytest.mark.parametrize('target', list(OrderStatus))
    def test_terminal_states_never_change(self, terminal, target):
        with pytest.raises(IllegalTransitionError):
            validate_transition(make_order(terminal, rental=True), target, ACTOR_STAFF)

    def test_shipped_cannot_be_cancelled(self):
        with pytest.raises(IllegalTransitionError):
            validate_transition(make_order(OrderStatus.SHIPPED), OrderStatus.CANCELLED, ACTOR_STAFF)

    def test_cannot_go_backwards(self):
        with pytest.raises(IllegalTransitionError):
            validate_transition(make_order(OrderStatus.DELIVERED), OrderStatus.PROCESSING, ACTOR_STAFF)

    def test_returned_requires_rental_lines(self):
        with pytest.raises(IllegalTransitionError):
            validate_transition(make_order(OrderStatus.DELIVERED), OrderStatus.RETURNED, ACTOR_STAFF)
        assert validate_transition(
            make_order(OrderStatus.DELIVERED, rental=True), 'returned', ACTOR_STAFF
        ) == OrderStatus.RETURNED

    def test_customer_can_only_cancel(self):
        order = make_order(OrderStatus.PENDING)
        assert validate_transition(order, 'cancelled', ACTOR_CUSTOMER) == OrderStatus.CANCELLED
        with pytest.raises(IllegalTransitionError):
            validate_transition(order, 'processing', ACTOR_CUSTOMER)

    def test_unknown_status_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            validate_transition(make_order(), 'teleported', ACTOR_STAFF)


class TestWindows:
    """Edit window and cancellation rules."""

    def test_editable_at_23h59m(self):
        assert can_edit(make_order(), now=CREATED + timedelta(hours=23, minutes=59)) is True

    def test_not_editable_at_24h01m(self):
        assert can_edit(make_order(), now=CREATED + timedelta(hours=24, minutes=1)) is False

    def test_not_editable_once_shipped(self):
        assert can_edit(make_order(OrderStatus.SHIPPED), now=CREATED + timedelta(minutes=5)) is False

    def test_naive_created_at_is_treated_as_utc(self):
        order = make_order(created_at=CREATED.replace(tzinfo=None))
        assert can_edit(order, now=CREATED + timedelta(hours=1)) is True

    def test_cancel_has_no_time_limit(self):
        assert can_cancel(make_order(OrderStatus.PROCESSING, created_at=CREATED - timedelta(days=30))) is True
        assert can_cancel(make_order(OrderStatus.SHIPPED)) is False

    def test_edit_deadline(self):
        assert edit_deadline(make_order()) == CREATED + timedelta(hours=24)


class TestOverdue:
    def test_rental_past_end_date_is_overdue(self):
        order = make_order(OrderStatus.DELIVERED, rental=True, rental_end_date=date(2026, 10, 10))
        assert is_overdue(order, today=date(2026, 10, 13)) is True
        assert calculate_late_fee(order, Decimal('10'), today=date(2026, 10, 13)) == Decimal('30.00')

    def test_returned_rental_is_not_overdue(self):
        order = make_order(OrderStatus.RETURNED, rental=True, rental_end_date=date(2026, 10, 10))
        assert is_overdue(order, today=date(2026, 10, 13)) is False
        assert calculate_late_fee(order, today=date(2026, 10, 13)) == Decimal('0.00')

    def test_sales_order_is_never_overdue(self):
        assert is_overdue(make_order(OrderStatus.PROCESSING), today=date(2030, 1, 1)) is False


class TestPaymentTransitions:
    """Payment status guard, independent from fulfillment."""

    @pytest.mark.parametrize('current,target', [
        (PaymentStatus.PENDING, PaymentStatus.VERIFICATION_PENDING),
        (PaymentStatus.VERIFICATION_PENDING, PaymentStatus.COMPLETED),
        (PaymentStatus.VERIFICATION_PENDING, PaymentStatus.FAILED),
        (PaymentStatus.FAILED, PaymentStatus.VERIFICATION_PENDING),
        (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED),
    ])
    def test_allowed(self, current, target):
        order = make_order(payment_status=current)
        assert validate_payment_transition(order, target) == target

    @pytest.mark.parametrize('current,target', [
        (PaymentStatus.PENDING, PaymentStatus.COMPLETED),
        (PaymentStatus.REFUNDED, PaymentStatus.COMPLETED),
        (PaymentStatus.COMPLETED, PaymentStatus.FAILED),
    ])
    def test_rejected(self, current, target):
        with pytest.raises(IllegalTransitionError):
            validate_payment_transition(make_order(payment_status=current), target)

    def test_payment_moves_even_when_shipped(self):
        order = make_order(OrderStatus.SHIPPED, payment_status=PaymentStatus.VERIFICATION_PENDING)
        assert validate_payment_transition(order, 'completed') == PaymentStatus.COMPLETED

    def test_cancelled_order_refuses_new_slip(self):
        order = make_order(OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED)
        with pytest.raises(IllegalTransitionError):
            validate_payment_transition(order, PaymentStatus.VERIFICATION_PENDING)
