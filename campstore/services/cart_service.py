"""
Cart aggregation.

The cart lives in whatever mapping the caller owns (the Flask session in
the web layer) under a key the caller passes in. Nothing here reads
request globals.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, MutableMapping, Any

from campstore.models import LineType, parse_enum
from campstore.exceptions import InvalidQuantityError, ValidationError, InsufficientStockError
from campstore.services.rental_pricing import price_rental_line, estimate_line

CENTS = Decimal('0.01')
GUEST_KEY = 'guest'


def cart_storage_key(user_id: Optional[str]) -> str:
    """Storage key for a customer's cart, or the guest cart."""
    return f"cart:{user_id or GUEST_KEY}"


@dataclass
class CartLine:
    """One cart entry, identified by (product_id, line_type)."""
    product_id: int
    line_type: LineType
    quantity: int
    unit_price: Decimal
    rental_days: Optional[int] = None
    name: str = ''
    weekly_rate: Optional[Decimal] = None

    def __post_init__(self):
        self.line_type = parse_enum(LineType, self.line_type, 'line_type')
        self.unit_price = Decimal(str(self.unit_price))
        if self.weekly_rate is not None:
            self.weekly_rate = Decimal(str(self.weekly_rate))
        self.validate()

    @property
    def key(self) -> Tuple[int, LineType]:
        return (self.product_id, self.line_type)

    def validate(self):
        if self.quantity is None or int(self.quantity) < 1:
            raise InvalidQuantityError('Quantity must be at least 1')
        if self.line_type == LineType.RENTAL:
            if self.rental_days is None or int(self.rental_days) < 1:
                raise InvalidQuantityError('Rental days must be at least 1', field='rental_days')
        elif self.rental_days is not None:
            raise ValidationError('Only rental lines carry rental days', field='rental_days')

    @property
    def total(self) -> Decimal:
        if self.line_type == LineType.RENTAL:
            return price_rental_line(self.unit_price, self.weekly_rate, self.rental_days, self.quantity)
        return (self.unit_price * self.quantity).quantize(CENTS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'line_type': self.line_type.value,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'rental_days': self.rental_days,
            'name': self.name,
            'weekly_rate': str(self.weekly_rate) if self.weekly_rate is not None else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartLine':
        return cls(
            product_id=int(data['product_id']),
            line_type=data['line_type'],
            quantity=int(data['quantity']),
            unit_price=Decimal(str(data['unit_price'])),
            rental_days=int(data['rental_days']) if data.get('rental_days') is not None else None,
            name=data.get('name') or '',
            weekly_rate=Decimal(str(data['weekly_rate'])) if data.get('weekly_rate') is not None else None
        )


@dataclass
class CartAggregator:
    """Ordered collection of cart lines with at most one line per (product, type)."""
    lines: List[CartLine] = field(default_factory=list)

    def find(self, product_id: int, line_type) -> Optional[CartLine]:
        line_type = parse_enum(LineType, line_type, 'line_type')
        for line in self.lines:
            if line.key == (product_id, line_type):
                return line
        return None

    def add(
        self,
        product_id: int,
        line_type,
        unit_price,
        quantity: int = 1,
        rental_days: Optional[int] = None,
        name: str = '',
        weekly_rate=None
    ) -> CartLine:
        """Add a line, or merge quantity into the existing line with the same key."""
        line_type = parse_enum(LineType, line_type, 'line_type')
        if line_type == LineType.RENTAL and rental_days is None:
            rental_days = 1

        existing = self.find(product_id, line_type)
        if existing:
            if quantity is None or int(quantity) < 1:
                raise InvalidQuantityError('Quantity must be at least 1')
            existing.quantity += int(quantity)
            if rental_days is not None and line_type == LineType.RENTAL:
                existing.rental_days = int(rental_days)
            existing.unit_price = Decimal(str(unit_price))
            existing.weekly_rate = Decimal(str(weekly_rate)) if weekly_rate is not None else None
            if name:
                existing.name = name
            existing.validate()
            return existing

        line = CartLine(
            product_id=product_id,
            line_type=line_type,
            quantity=int(quantity) if quantity is not None else 0,
            unit_price=unit_price,
            rental_days=int(rental_days) if rental_days is not None else None,
            name=name,
            weekly_rate=weekly_rate
        )
        self.lines.append(line)
        return line

    def update(
        self,
        product_id: int,
        line_type,
        quantity: Optional[int] = None,
        rental_days: Optional[int] = None
    ) -> Optional[CartLine]:
        """
        Change quantity and/or rental days. A quantity of 0 removes the line.

        Returns the updated line, or None when it was removed.
        """
        line = self.find(product_id, line_type)
        if line is None:
            raise ValidationError('The product is not in the cart', field='product_id')

        if quantity is not None:
            quantity = int(quantity)
            if quantity == 0:
                self.remove(product_id, line_type)
                return None
            if quantity < 0:
                raise InvalidQuantityError('Quantity must be at least 1')
            line.quantity = quantity

        if rental_days is not None:
            if line.line_type != LineType.RENTAL:
                raise ValidationError('Only rental lines carry rental days', field='rental_days')
            line.rental_days = int(rental_days)

        line.validate()
        return line

    def remove(self, product_id: int, line_type) -> bool:
        line = self.find(product_id, line_type)
        if line is None:
            return False
        self.lines.remove(line)
        return True

    def clear(self):
        self.lines.clear()

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def has_line_type(self, line_type: LineType) -> bool:
        return any(line.line_type == line_type for line in self.lines)

    @property
    def subtotal(self) -> Decimal:
        return sum((line.total for line in self.lines), Decimal('0.00')).quantize(CENTS)

    def to_dict(self) -> Dict[str, Any]:
        return {'items': [line.to_dict() for line in self.lines]}

    def summary(self) -> Dict[str, Any]:
        """Authoritative cart state returned to clients after each mutation."""
        return {
            'items': [_summary_item(line) for line in self.lines],
            'item_count': self.item_count,
            'subtotal': str(self.subtotal)
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CartAggregator':
        if not data:
            return cls()
        return cls(lines=[CartLine.from_dict(item) for item in data.get('items', [])])


def load_cart(store: MutableMapping, key: str) -> CartAggregator:
    """Read a cart from a session-like mapping."""
    return CartAggregator.from_dict(store.get(key))


def save_cart(store: MutableMapping, key: str, cart: CartAggregator) -> None:
    """Write a cart back as plain JSON-serializable data."""
    store[key] = cart.to_dict()
    if hasattr(store, 'modified'):
        store.modified = True


def discard_cart(store: MutableMapping, key: str) -> None:
    store.pop(key, None)
    if hasattr(store, 'modified'):
        store.modified = True


def add_catalog_item(
    cart: CartAggregator,
    catalog,
    product_id: int,
    line_type,
    quantity: int = 1,
    rental_days: Optional[int] = None
) -> CartLine:
    """
    Add a catalog product to the cart at its current catalog price.

    Availability is checked against the catalog snapshot but nothing is
    reserved; reservations happen when the order is placed.
    """
    line_type = parse_enum(LineType, line_type, 'line_type')
    existing = cart.find(product_id, line_type)
    wanted = (existing.quantity if existing else 0) + int(quantity)

    if line_type == LineType.RENTAL:
        product = catalog.get_rental_product(product_id)
        if wanted > product.available_quantity:
            raise InsufficientStockError(product.name, wanted, product.available_quantity)
        return cart.add(
            product_id, line_type, product.daily_rate, quantity,
            rental_days=rental_days, name=product.name, weekly_rate=product.weekly_rate
        )

    if line_type == LineType.SALE:
        product = catalog.get_sale_product(product_id)
        if wanted > product.stock:
            raise InsufficientStockError(product.name, wanted, product.stock)
        return cart.add(product_id, line_type, product.price, quantity, name=product.name)

    package = catalog.get_package(product_id)
    return cart.add(product_id, line_type, package.price, quantity, name=package.name)


def _summary_item(line: CartLine) -> Dict[str, Any]:
    item = dict(line.to_dict(), total=str(line.total))
    if line.line_type == LineType.RENTAL:
        estimate = estimate_line(line.unit_price, line.weekly_rate, line.rental_days, line.quantity)
        item['weekly_rate_applied'] = estimate['weekly_rate_applied']
        item['weeks'] = estimate['weeks']
    return item
