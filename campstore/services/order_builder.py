"""
Order builder: cart + customer input -> OrderDraft -> persisted Order.

Drafting is pure validation and pricing against catalog snapshots.
Persisting writes the order and reserves stock in one transaction; a
failed reservation rolls back every reservation taken before it and no
order row survives.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple, Union, Mapping, Any

from campstore.models import (
    Order, OrderLine, OrderType, OrderStatus, PaymentStatus, PaymentMethod,
    OrderPriority, LineType
)
from campstore.exceptions import StoreError, ValidationError
from campstore.services.rental_pricing import price_rental_line, compute_rental_days
from campstore.services.inventory_ledger import InventoryLedger
from campstore.utils.dates import parse_date, utcnow
from campstore.utils.text import clean_text

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
DEFAULT_SHIPPING_FEE = Decimal('450.00')
DEFAULT_MAX_RENTAL_DAYS = 365
EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
PHONE_PATTERN = re.compile(r'^\+?[0-9][0-9\s\-()]{6,19}$')


# =====================================================
# INPUT TYPES
# =====================================================

def optional_object(data, field: str) -> Optional[Mapping[str, Any]]:
    """The payload part as a mapping; None when absent, ValidationError for any other JSON type."""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValidationError(f'{field} must be an object', field=field)
    return data


@dataclass(frozen=True)
class CustomerInfo:
    name: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    user_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], user_id: Optional[str] = None) -> Optional['CustomerInfo']:
        if not optional_object(data, 'customer'):
            return None
        return cls(
            name=clean_text(data.get('name')),
            email=clean_text(data.get('email')),
            phone=clean_text(data.get('phone')),
            user_id=user_id
        )


@dataclass(frozen=True)
class DeliveryInfo:
    address: Optional[str]
    city: Optional[str]
    state: Optional[str]
    postal_code: Optional[str]
    country: Optional[str] = None

    FIELDS = ('address', 'city', 'state', 'postal_code')

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional['DeliveryInfo']:
        if not optional_object(data, 'delivery'):
            return None
        return cls(
            address=clean_text(data.get('address')),
            city=clean_text(data.get('city')),
            state=clean_text(data.get('state')),
            postal_code=clean_text(data.get('postal_code') or data.get('postalCode')),
            country=clean_text(data.get('country'))
        )


@dataclass(frozen=True)
class RentalPeriod:
    start_date: Union[date, str, None]
    end_date: Union[date, str, None]

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional['RentalPeriod']:
        if not optional_object(data, 'rental_period'):
            return None
        return cls(
            start_date=data.get('start_date') or data.get('startDate'),
            end_date=data.get('end_date') or data.get('endDate')
        )


# =====================================================
# DRAFTS
# =====================================================

@dataclass(frozen=True)
class DraftLine:
    product_id: int
    name: str
    line_type: LineType
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    rental_days: Optional[int] = None


@dataclass(frozen=True)
class ValidRentalPeriod:
    start_date: date
    end_date: date
    days: int


class _DraftTotals:
    """Totals shared by every draft variant."""

    tax = Decimal('0.00')

    @property
    def subtotal(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal('0.00')).quantize(CENTS)

    @property
    def total_amount(self) -> Decimal:
        return (self.subtotal + self.shipping_cost + self.tax).quantize(CENTS)

    @property
    def rental_lines(self) -> List[DraftLine]:
        return [line for line in self.lines if line.line_type == LineType.RENTAL]

    @property
    def sale_lines(self) -> List[DraftLine]:
        return [line for line in self.lines if line.line_type == LineType.SALE]


@dataclass(frozen=True)
class SalesDraft(_DraftTotals):
    """Contains sale lines (and possibly rentals riding along). Delivered, ships."""
    customer: CustomerInfo
    delivery: DeliveryInfo
    lines: Tuple[DraftLine, ...]
    shipping_cost: Decimal
    rental_period: Optional[ValidRentalPeriod] = None
    order_type = OrderType.SALES


@dataclass(frozen=True)
class RentalDraft(_DraftTotals):
    """Rental lines only. Picked up at the shop, no delivery, no shipping."""
    customer: CustomerInfo
    rental_period: ValidRentalPeriod
    lines: Tuple[DraftLine, ...]
    order_type = OrderType.RENTAL
    shipping_cost = Decimal('0.00')
    delivery = None


@dataclass(frozen=True)
class PackageDraft(_DraftTotals):
    """Contains a pre-bundled package. Delivered, ships."""
    customer: CustomerInfo
    delivery: DeliveryInfo
    lines: Tuple[DraftLine, ...]
    shipping_cost: Decimal
    rental_period: Optional[ValidRentalPeriod] = None
    order_type = OrderType.PACKAGE


OrderDraft = Union[SalesDraft, RentalDraft, PackageDraft]


# =====================================================
# VALIDATION
# =====================================================

def validate_customer(customer: Optional[CustomerInfo]) -> CustomerInfo:
    if customer is None:
        raise ValidationError('Customer information is required', field='customer')
    if not customer.name:
        raise ValidationError('Customer name is required', field='customer.name')
    if len(customer.name) > 120:
        raise ValidationError('Customer name is too long', field='customer.name')
    if not customer.email:
        raise ValidationError('Customer email is required', field='customer.email')
    if not EMAIL_PATTERN.match(customer.email):
        raise ValidationError(f'Invalid email address: {customer.email}', field='customer.email')
    if not customer.phone:
        raise ValidationError('Customer phone is required', field='customer.phone')
    if not PHONE_PATTERN.match(customer.phone):
        raise ValidationError(f'Invalid phone number: {customer.phone}', field='customer.phone')
    return customer


def validate_delivery(delivery: Optional[DeliveryInfo], default_country: str = 'SL') -> DeliveryInfo:
    if delivery is None:
        raise ValidationError('Delivery address is required for this order', field='delivery')
    for name in DeliveryInfo.FIELDS:
        if not getattr(delivery, name):
            raise ValidationError(f'Delivery {name.replace("_", " ")} is required', field=f'delivery.{name}')
    return DeliveryInfo(
        address=delivery.address,
        city=delivery.city,
        state=delivery.state,
        postal_code=delivery.postal_code,
        country=delivery.country or default_country
    )


def validate_rental_period(
    period: Optional[RentalPeriod],
    max_days: int = DEFAULT_MAX_RENTAL_DAYS
) -> ValidRentalPeriod:
    if period is None:
        raise ValidationError('A rental period is required for rental items', field='rental_period')
    start = parse_date(period.start_date, 'start_date')
    end = parse_date(period.end_date, 'end_date')
    if start is None:
        raise ValidationError('Rental start date is required', field='start_date')
    if end is None:
        raise ValidationError('Rental end date is required', field='end_date')

    days = compute_rental_days(start, end)
    if days > max_days:
        raise ValidationError(f'Rental period cannot exceed {max_days} days', field='end_date')
    return ValidRentalPeriod(start_date=start, end_date=end, days=days)


# =====================================================
# DRAFTING
# =====================================================

def _price_lines(cart, catalog, period: Optional[ValidRentalPeriod]) -> Tuple[DraftLine, ...]:
    """Price each cart line from the catalog, never from client-side prices."""
    lines = []
    for cart_line in cart.lines:
        if cart_line.line_type == LineType.RENTAL:
            product = catalog.get_rental_product(cart_line.product_id)
            subtotal = price_rental_line(product.daily_rate, product.weekly_rate, period.days, cart_line.quantity)
            lines.append(DraftLine(
                product_id=product.id,
                name=product.name,
                line_type=LineType.RENTAL,
                quantity=cart_line.quantity,
                unit_price=product.daily_rate,
                rental_days=period.days,
                subtotal=subtotal
            ))
        elif cart_line.line_type == LineType.SALE:
            product = catalog.get_sale_product(cart_line.product_id)
            lines.append(DraftLine(
                product_id=product.id,
                name=product.name,
                line_type=LineType.SALE,
                quantity=cart_line.quantity,
                unit_price=product.price,
                subtotal=(product.price * cart_line.quantity).quantize(CENTS)
            ))
        else:
            package = catalog.get_package(cart_line.product_id)
            lines.append(DraftLine(
                product_id=package.id,
                name=package.name,
                line_type=LineType.PACKAGE,
                quantity=cart_line.quantity,
                unit_price=package.price,
                subtotal=(package.price * cart_line.quantity).quantize(CENTS)
            ))
    return tuple(lines)


def build_order_draft(
    cart,
    customer: Optional[CustomerInfo],
    delivery: Optional[DeliveryInfo],
    rental_period: Optional[RentalPeriod],
    catalog,
    shipping_fee=DEFAULT_SHIPPING_FEE,
    max_rental_days: int = DEFAULT_MAX_RENTAL_DAYS,
    default_country: str = 'SL'
) -> OrderDraft:
    """
    Validate checkout input and price it.

    Checks run in a fixed order and the first failure is raised:
    cart -> customer -> delivery (if anything ships) -> rental period
    (if anything is rented).
    """
    if cart is None or cart.is_empty:
        raise ValidationError('The cart is empty', field='cart')

    customer = validate_customer(customer)

    has_sale = cart.has_line_type(LineType.SALE)
    has_package = cart.has_line_type(LineType.PACKAGE)
    has_rental = cart.has_line_type(LineType.RENTAL)

    valid_delivery = None
    if has_sale or has_package:
        valid_delivery = validate_delivery(delivery, default_country)

    period = None
    if has_rental:
        period = validate_rental_period(rental_period, max_rental_days)

    lines = _price_lines(cart, catalog, period)
    shipping = Decimal(str(shipping_fee)).quantize(CENTS) if (has_sale or has_package) else Decimal('0.00')

    if has_package:
        return PackageDraft(customer=customer, delivery=valid_delivery, lines=lines,
                            shipping_cost=shipping, rental_period=period)
    if has_sale:
        return SalesDraft(customer=customer, delivery=valid_delivery, lines=lines,
                          shipping_cost=shipping, rental_period=period)
    return RentalDraft(customer=customer, rental_period=period, lines=lines)


# =====================================================
# PERSISTENCE
# =====================================================

def generate_order_number(now: Optional[datetime] = None) -> str:
    """Human-facing order number, e.g. ORD20261018093015A1B2C3."""
    now = now or utcnow()
    return f"ORD{now:%Y%m%d%H%M%S}{uuid.uuid4().hex[:6].upper()}"


def persist_order(
    session,
    draft: OrderDraft,
    ledger: Optional[InventoryLedger] = None,
    payment_method: PaymentMethod = PaymentMethod.SLIP,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    slip: Optional[Mapping[str, Any]] = None,
    notes: Optional[str] = None
) -> Order:
    """
    Write the order and reserve its stock atomically.

    Reserves once per rental line and consumes sale stock once per sale
    line. Any failure rolls the whole transaction back.
    """
    ledger = ledger or InventoryLedger(session)

    try:
        order = Order(
            order_number=generate_order_number(),
            order_type=draft.order_type,
            customer_user_id=draft.customer.user_id,
            customer_name=draft.customer.name,
            customer_email=draft.customer.email,
            customer_phone=draft.customer.phone,
            shipping_cost=draft.shipping_cost,
            tax=draft.tax,
            status=OrderStatus.PENDING,
            priority=OrderPriority.MEDIUM,
            payment_method=payment_method,
            payment_status=payment_status,
            notes=clean_text(notes)
        )

        if draft.delivery is not None:
            order.delivery_address = draft.delivery.address
            order.delivery_city = draft.delivery.city
            order.delivery_state = draft.delivery.state
            order.delivery_postal_code = draft.delivery.postal_code
            order.delivery_country = draft.delivery.country

        if draft.rental_period is not None:
            order.rental_start_date = draft.rental_period.start_date
            order.rental_end_date = draft.rental_period.end_date

        if slip:
            order.slip_file_name = slip.get('file_name')
            order.slip_url = slip.get('url')
            order.slip_mime_type = slip.get('mime_type')
            order.slip_size = slip.get('size')
            order.slip_uploaded_at = slip.get('uploaded_at') or utcnow()

        for position, line in enumerate(draft.lines):
            order.lines.append(OrderLine(
                position=position,
                product_id=line.product_id,
                name=line.name,
                line_type=line.line_type,
                quantity=line.quantity,
                unit_price=line.unit_price,
                rental_days=line.rental_days,
                subtotal=line.subtotal
            ))

        order.recompute_totals()
        session.add(order)

        for line in draft.lines:
            if line.line_type == LineType.RENTAL:
                ledger.reserve(line.product_id, line.quantity)
            elif line.line_type == LineType.SALE:
                ledger.consume_sale_stock(line.product_id, line.quantity)

        session.flush()
        session.commit()

    except StoreError:
        session.rollback()
        ledger.discard_alerts()
        raise
    except Exception:
        session.rollback()
        ledger.discard_alerts()
        logger.exception("[ORDER] Unexpected error while persisting order")
        raise

    logger.info(
        f"[ORDER] Created {order.order_number} ({order.order_type.value}) "
        f"total={order.total_amount} lines={len(order.lines)}"
    )
    ledger.dispatch_low_stock_alerts()
    return order


def build_order(
    session,
    cart,
    customer: Optional[CustomerInfo],
    delivery: Optional[DeliveryInfo],
    rental_period: Optional[RentalPeriod],
    catalog,
    ledger: Optional[InventoryLedger] = None,
    shipping_fee=DEFAULT_SHIPPING_FEE,
    max_rental_days: int = DEFAULT_MAX_RENTAL_DAYS,
    **persist_kwargs
) -> Order:
    """Draft and persist in one call (all-or-nothing)."""
    draft = build_order_draft(
        cart, customer, delivery, rental_period, catalog,
        shipping_fee=shipping_fee, max_rental_days=max_rental_days
    )
    return persist_order(session, draft, ledger=ledger, **persist_kwargs)
