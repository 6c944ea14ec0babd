"""Models package - exports all SQLAlchemy models."""
# Catalog (read-only for the order core)
from campstore.models.rental_product import RentalProduct
from campstore.models.sales_product import SalesProduct
from campstore.models.special_package import SpecialPackage

# Orders
from campstore.models.order import (
    Order, OrderType, OrderStatus, PaymentStatus, PaymentMethod, OrderPriority, parse_enum
)
from campstore.models.order_line import OrderLine, LineType

__all__ = [
    # Catalog
    'RentalProduct', 'SalesProduct', 'SpecialPackage',
    # Orders
    'Order', 'OrderType', 'OrderStatus', 'PaymentStatus', 'PaymentMethod', 'OrderPriority',
    'OrderLine', 'LineType', 'parse_enum',
]
