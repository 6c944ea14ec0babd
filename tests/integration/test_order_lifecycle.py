"""
Integration tests for cancellation, edits, staff updates and bulk updates.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from campstore.exceptions import IllegalTransitionError, NotFoundError, ValidationError
from campstore.models import Order, OrderStatus, OrderPriority, RentalProduct, SalesProduct
from campstore.services.order_lifecycle import (
    ACTOR_STAFF, cancel_order, edit_order_details, update_order, bulk_update_orders
)
from campstore.utils.dates import as_utc

CUSTOMER_ID = 'user-1'
OTHER_CUSTOMER_ID = 'user-2'


class TestCancelOrder:
    """Cancellation releases stock exactly once."""

    def test_cancel_restores_rental_units(self, session, rental_order, tent):
        tent_id, order_id = tent.id, rental_order.id
        assert session.get(RentalProduct, tent_id).available_quantity == 3

        order = cancel_order(session, order_id, reason='Plans changed', customer_user_id=CUSTOMER_ID)

        assert order.status == OrderStatus.CANCELLED
        assert order.cancel_reason == 'Plans changed'
        assert order.cancelled_at is not None
        assert session.get(RentalProduct, tent_id).available_quantity == 5

    def test_cancel_restocks_sale_units(self, session, sales_order, stove):
        stove_id = stove.id
        assert session.get(SalesProduct, stove_id).stock == 7

        cancel_order(session, sales_order.id, customer_user_id=CUSTOMER_ID)

        assert session.get(SalesProduct, stove_id).stock == 10

    def test_second_cancel_is_rejected_without_double_release(self, session, rental_order, tent):
        tent_id, order_id = tent.id, rental_order.id
        cancel_order(session, order_id, customer_user_id=CUSTOMER_ID)

        with pytest.raises(IllegalTransitionError):
            cancel_order(session, order_id, customer_user_id=CUSTOMER_ID)
        assert session.get(RentalProduct, tent_id).available_quantity == 5

    def test_empty_reason_gets_a_default(self, session, rental_order):
        order = cancel_order(session, rental_order.id, reason='   ', customer_user_id=CUSTOMER_ID)
        assert order.cancel_reason == 'Cancelled by customer'

    def test_staff_default_reason(self, session, rental_order):
        order = cancel_order(session, rental_order.id, actor=ACTOR_STAFF)
        assert order.cancel_reason == 'Cancelled by admin'

    def test_reason_longer_than_limit(self, session, rental_order):
        order_id = rental_order.id
        with pytest.raises(ValidationError):
            cancel_order(session, order_id, reason='x' * 501, customer_user_id=CUSTOMER_ID)
        assert session.get(Order, order_id).status == OrderStatus.PENDING

    def test_customer_cannot_cancel_shipped_order(self, session, sales_order):
        order_id = sales_order.id
        update_order(session, order_id, status='shipped')

        with pytest.raises(IllegalTransitionError):
            cancel_order(session, order_id, customer_user_id=CUSTOMER_ID)

    def test_customer_cannot_cancel_someone_elses_order(self, session, rental_order):
        with pytest.raises(NotFoundError):
            cancel_order(session, rental_order.id, customer_user_id=OTHER_CUSTOMER_ID)


class TestEditOrderDetails:
    """Customer edits inside the 24 hour window."""

    def test_edit_at_23h59m(self, session, sales_order):
        order_id = sales_order.id
        now = as_utc(sales_order.created_at) + timedelta(hours=23, minutes=59)

        order = edit_order_details(
            session, order_id,
            {'customer': {'phone': '+232 77 999888'}, 'delivery': {'city': 'Bo'}, 'notes': 'Call on arrival'},
            customer_user_id=CUSTOMER_ID, now=now
        )

        assert order.customer_phone == '+232 77 999888'
        assert order.delivery_city == 'Bo'
        assert order.delivery_address == '12 Lumley Beach Road'
        assert order.notes == 'Call on arrival'
        assert order.total_amount == Decimal('6450.00')

    def test_edit_at_24h01m_is_rejected(self, session, sales_order):
        order_id = sales_order.id
        now = as_utc(sales_order.created_at) + timedelta(hours=24, minutes=1)

        with pytest.raises(IllegalTransitionError):
            edit_order_details(session, order_id, {'notes': 'too late'}, customer_user_id=CUSTOMER_ID, now=now)
        assert session.get(Order, order_id).notes is None

    def test_rental_order_has_no_delivery_to_edit(self, session, rental_order):
        with pytest.raises(ValidationError):
            edit_order_details(session, rental_order.id, {'delivery': {'city': 'Bo'}}, customer_user_id=CUSTOMER_ID)

    def test_blank_delivery_field_is_rejected(self, session, sales_order):
        order_id = sales_order.id
        with pytest.raises(ValidationError):
            edit_order_details(session, order_id, {'delivery': {'address': ''}}, customer_user_id=CUSTOMER_ID)
        assert session.get(Order, order_id).delivery_address == '12 Lumley Beach Road'

    @pytest.mark.parametrize('changes,field', [
        ({'customer': 'Bob'}, 'customer'),
        ({'delivery': 'Bo'}, 'delivery'),
        ({'delivery': ['Bo']}, 'delivery'),
        (['notes'], 'changes'),
    ])
    def test_non_object_parts_are_rejected(self, session, sales_order, changes, field):
        order_id = sales_order.id
        with pytest.raises(ValidationError) as exc:
            edit_order_details(session, order_id, changes, customer_user_id=CUSTOMER_ID)

        assert exc.value.field == field
        order = session.get(Order, order_id)
        assert order.customer_name == 'Aminata Kamara'
        assert order.delivery_city == 'Freetown'

    def test_invalid_phone(self, session, sales_order):
        with pytest.raises(ValidationError):
            edit_order_details(session, sales_order.id, {'customer': {'phone': 'call me'}},
                               customer_user_id=CUSTOMER_ID)


class TestStaffUpdate:
    """Staff status changes and their inventory effects."""

    def test_full_rental_lifecycle_returns_units(self, session, rental_order, tent):
        tent_id, order_id = tent.id, rental_order.id
        for status in ('processing', 'shipped', 'delivered'):
            update_order(session, order_id, status=status)
        assert session.get(RentalProduct, tent_id).available_quantity == 3

        order = update_order(session, order_id, status='returned')

        assert order.status == OrderStatus.RETURNED
        assert session.get(RentalProduct, tent_id).available_quantity == 5

    def test_completed_rental_releases_units(self, session, rental_order, tent):
        tent_id = tent.id
        update_order(session, rental_order.id, status='completed')
        assert session.get(RentalProduct, tent_id).available_quantity == 5

    def test_completed_sale_does_not_restock(self, session, sales_order, stove):
        stove_id = stove.id
        update_order(session, sales_order.id, status='completed')
        assert session.get(SalesProduct, stove_id).stock == 7

    def test_priority_tracking_and_notes(self, session, sales_order):
        order = update_order(
            session, sales_order.id,
            priority='urgent', tracking_number=' TRK-001 ', admin_notes='Fragile'
        )
        assert order.priority == OrderPriority.URGENT
        assert order.tracking_number == 'TRK-001'
        assert order.admin_notes == 'Fragile'
        assert order.status == OrderStatus.PENDING

    def test_same_status_on_live_order_is_a_no_op(self, session, sales_order):
        order = update_order(session, sales_order.id, status='pending', priority='high')
        assert order.status == OrderStatus.PENDING
        assert order.priority == OrderPriority.HIGH

    def test_terminal_order_rejects_any_status(self, session, rental_order):
        order_id = rental_order.id
        update_order(session, order_id, status='completed')
        with pytest.raises(IllegalTransitionError):
            update_order(session, order_id, status='completed')
        with pytest.raises(IllegalTransitionError):
            update_order(session, order_id, status='processing')

    def test_invalid_priority(self, session, sales_order):
        with pytest.raises(ValidationError):
            update_order(session, sales_order.id, priority='whenever')

    def test_version_increments_on_each_write(self, session, sales_order):
        order_id = sales_order.id
        first = session.get(Order, order_id).version_id
        update_order(session, order_id, priority='low')
        assert session.get(Order, order_id).version_id == first + 1


class TestBulkUpdate:
    """Per-order transactions with partial failure."""

    def test_partial_failure(self, session, rental_order, sales_order):
        live_id, cancelled_id = sales_order.id, rental_order.id
        cancel_order(session, cancelled_id, customer_user_id=CUSTOMER_ID)

        result = bulk_update_orders(session, [live_id, cancelled_id, 999999], status='processing')

        assert result.succeeded == [live_id]
        failed = {item['order_id']: item['error'] for item in result.failed}
        assert failed == {cancelled_id: 'IllegalTransitionError', 999999: 'NotFoundError'}
        assert session.get(Order, live_id).status == OrderStatus.PROCESSING
        assert session.get(Order, cancelled_id).status == OrderStatus.CANCELLED

    def test_unexpected_error_does_not_stop_the_batch(self, session, rental_order, sales_order):
        first_id, last_id = rental_order.id, sales_order.id
        too_big = 10 ** 20

        result = bulk_update_orders(session, [first_id, too_big, last_id], priority='high')

        assert result.succeeded == [first_id, last_id]
        assert result.failed == [{
            'order_id': too_big, 'error': 'InternalError', 'message': 'Unexpected error updating order'
        }]
        assert session.get(Order, first_id).priority == OrderPriority.HIGH
        assert session.get(Order, last_id).priority == OrderPriority.HIGH

    def test_priority_only(self, session, rental_order, sales_order):
        ids = [rental_order.id, sales_order.id]
        result = bulk_update_orders(session, ids, priority='high')

        assert sorted(result.succeeded) == sorted(ids)
        assert result.to_dict()['failure_count'] == 0

    def test_requires_something_to_update(self, session, rental_order):
        with pytest.raises(ValidationError):
            bulk_update_orders(session, [rental_order.id])

    def test_invalid_status_fails_before_any_write(self, session, sales_order):
        order_id = sales_order.id
        with pytest.raises(ValidationError):
            bulk_update_orders(session, [order_id], status='lost')
        assert session.get(Order, order_id).status == OrderStatus.PENDING
