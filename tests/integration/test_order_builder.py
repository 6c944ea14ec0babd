"""
Integration tests for drafting and persisting orders.
"""

import pytest
from datetime import date
from decimal import Decimal

from campstore.exceptions import ValidationError, InsufficientStockError, NotFoundError
from campstore.models import Order, OrderLine, OrderType, RentalProduct, SalesProduct, LineType
from campstore.services.cart_service import CartAggregator
from campstore.services.order_builder import (
    CustomerInfo, DeliveryInfo, RentalPeriod, SalesDraft, RentalDraft, PackageDraft,
    build_order_draft, build_order
)


def rental_cart(product, quantity=1):
    cart = CartAggregator()
    cart.add(product.id, 'rental', product.daily_rate, quantity=quantity,
             weekly_rate=product.weekly_rate, name=product.name)
    return cart


class TestBuildOrderDraft:
    """Validation and pricing before anything is written."""

    def test_mixed_cart_is_a_sales_order_with_shipping(self, tent, stove, customer, delivery, week_period, catalog):
        cart = CartAggregator()
        cart.add(stove.id, 'sale', stove.price, quantity=2)
        cart.add(tent.id, 'rental', tent.daily_rate, weekly_rate=tent.weekly_rate)

        draft = build_order_draft(cart, customer, delivery, week_period, catalog)

        assert isinstance(draft, SalesDraft)
        assert draft.subtotal == Decimal('10000.00')
        assert draft.shipping_cost == Decimal('450.00')
        assert draft.total_amount == Decimal('10450.00')
        assert draft.rental_period.days == 7
        assert draft.delivery.country == 'SL'

    def test_rental_only_needs_no_delivery(self, tent, customer, week_period, catalog):
        draft = build_order_draft(rental_cart(tent, 2), customer, None, week_period, catalog)

        assert isinstance(draft, RentalDraft)
        assert draft.shipping_cost == Decimal('0.00')
        assert draft.delivery is None
        assert draft.total_amount == Decimal('12000.00')

    def test_package_line_makes_a_package_order(self, weekend_kit, customer, delivery, catalog):
        cart = CartAggregator()
        cart.add(weekend_kit.id, 'package', weekend_kit.price)

        draft = build_order_draft(cart, customer, delivery, None, catalog)

        assert isinstance(draft, PackageDraft)
        assert draft.total_amount == Decimal('15450.00')

    def test_prices_come_from_the_catalog(self, stove, customer, delivery, catalog):
        cart = CartAggregator()
        cart.add(stove.id, 'sale', Decimal('1.00'), quantity=1)

        draft = build_order_draft(cart, customer, delivery, None, catalog)
        assert draft.lines[0].unit_price == Decimal('2000.00')

    def test_empty_cart_is_reported_first(self, catalog):
        bad_customer = CustomerInfo(name=None, email='nope', phone=None)
        with pytest.raises(ValidationError) as exc:
            build_order_draft(CartAggregator(), bad_customer, None, None, catalog)
        assert exc.value.field == 'cart'

    def test_customer_checked_before_delivery(self, stove, catalog):
        cart = CartAggregator()
        cart.add(stove.id, 'sale', stove.price)
        bad_customer = CustomerInfo(name='Aminata', email='not-an-email', phone='+232 76 123456')

        with pytest.raises(ValidationError) as exc:
            build_order_draft(cart, bad_customer, None, None, catalog)
        assert exc.value.field == 'customer.email'

    def test_delivery_checked_before_rental_period(self, stove, tent, customer, catalog):
        cart = CartAggregator()
        cart.add(stove.id, 'sale', stove.price)
        cart.add(tent.id, 'rental', tent.daily_rate)

        with pytest.raises(ValidationError) as exc:
            build_order_draft(cart, customer, None, None, catalog)
        assert exc.value.field == 'delivery'

    def test_missing_delivery_field(self, stove, customer, catalog):
        cart = CartAggregator()
        cart.add(stove.id, 'sale', stove.price)
        partial = DeliveryInfo(address='12 Lumley Beach Road', city='Freetown', state=None, postal_code='00232')

        with pytest.raises(ValidationError) as exc:
            build_order_draft(cart, customer, partial, None, catalog)
        assert exc.value.field == 'delivery.state'

    def test_rental_period_longer_than_a_year(self, tent, customer, catalog):
        period = RentalPeriod(start_date='2026-01-01', end_date='2027-01-10')
        with pytest.raises(ValidationError):
            build_order_draft(rental_cart(tent), customer, None, period, catalog)

    def test_rental_end_before_start(self, tent, customer, catalog):
        period = RentalPeriod(start_date=date(2026, 11, 8), end_date=date(2026, 11, 1))
        with pytest.raises(ValidationError):
            build_order_draft(rental_cart(tent), customer, None, period, catalog)

    def test_inactive_product_is_rejected(self, session, tent, customer, week_period, catalog):
        tent.active = False
        session.commit()
        with pytest.raises(ValidationError):
            build_order_draft(rental_cart(tent), customer, None, week_period, catalog)

    def test_unknown_product(self, customer, week_period, catalog):
        cart = CartAggregator()
        cart.add(999, 'rental', Decimal('10'))
        with pytest.raises(NotFoundError):
            build_order_draft(cart, customer, None, week_period, catalog)


class TestBuildOrder:
    """Persisting drafts and reserving stock in one transaction."""

    def test_mixed_order_persists_and_reserves(self, session, tent, stove, customer, delivery, week_period, catalog):
        tent_id, stove_id = tent.id, stove.id
        cart = CartAggregator()
        cart.add(stove_id, 'sale', stove.price, quantity=2)
        cart.add(tent_id, 'rental', tent.daily_rate, weekly_rate=tent.weekly_rate)

        order = build_order(session, cart, customer, delivery, week_period, catalog)

        assert order.id is not None
        assert order.order_number.startswith('ORD')
        assert order.order_type == OrderType.SALES
        assert order.total_amount == Decimal('10450.00')
        assert order.rental_start_date == date(2026, 11, 1)
        assert order.rental_end_date == date(2026, 11, 8)
        assert [line.line_type for line in order.lines] == [LineType.SALE, LineType.RENTAL]
        assert session.get(RentalProduct, tent_id).available_quantity == 4
        assert session.get(SalesProduct, stove_id).stock == 8

    def test_failed_reservation_leaves_nothing_behind(self, session, tent, lantern, customer, week_period, catalog):
        tent_id, lantern_id = tent.id, lantern.id
        cart = CartAggregator()
        cart.add(tent_id, 'rental', tent.daily_rate, quantity=2)
        cart.add(lantern_id, 'rental', lantern.daily_rate, quantity=2)

        with pytest.raises(InsufficientStockError) as exc:
            build_order(session, cart, customer, None, week_period, catalog)

        assert 'Lantern' in exc.value.message
        assert exc.value.payload == {'product': 'Lantern', 'requested': 2, 'available': 1}
        assert session.query(Order).count() == 0
        assert session.query(OrderLine).count() == 0
        assert session.get(RentalProduct, tent_id).available_quantity == 5
        assert session.get(RentalProduct, lantern_id).available_quantity == 1

    def test_rental_order_has_no_delivery_address(self, session, tent, customer, week_period, catalog):
        order = build_order(session, rental_cart(tent), customer, None, week_period, catalog)

        assert order.order_type == OrderType.RENTAL
        assert order.delivery_address is None
        assert order.shipping_cost == Decimal('0.00')
        assert order.requires_delivery is False

    def test_order_numbers_are_unique(self, session, tent, customer, week_period, catalog):
        first = build_order(session, rental_cart(tent), customer, None, week_period, catalog)
        second = build_order(session, rental_cart(tent), customer, None, week_period, catalog)
        assert first.order_number != second.order_number
