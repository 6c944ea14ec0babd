"""Customer Order model."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, Numeric, Date, DateTime, Enum
from sqlalchemy.orm import relationship
from campstore.database import Base
from campstore.utils.dates import utcnow
import enum


class OrderType(str, enum.Enum):
    """Order type, derived from the line composition."""
    SALES = 'sales'
    RENTAL = 'rental'
    PACKAGE = 'package'


class OrderStatus(str, enum.Enum):
    """Fulfillment status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    RETURNED = 'returned'


class PaymentStatus(str, enum.Enum):
    """Payment status, independent from fulfillment."""
    PENDING = 'pending'
    VERIFICATION_PENDING = 'verification_pending'
    COMPLETED = 'completed'
    FAILED = 'failed'
    REFUNDED = 'refunded'


class PaymentMethod(str, enum.Enum):
    """Payment method claimed by the customer."""
    CARD = 'card'
    SLIP = 'slip'


class OrderPriority(str, enum.Enum):
    """Operational triage hint set by staff."""
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    URGENT = 'urgent'


def parse_enum(enum_cls, value, field: str):
    """
    Coerce a raw value into a closed enumeration.

    Raises ValidationError naming the allowed values.
    """
    from campstore.exceptions import ValidationError

    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationError(f'Invalid {field} "{value}". Allowed: {allowed}', field=field)


class Order(Base):
    """Customer order (sales, rental or package)."""

    __tablename__ = 'customer_order'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    order_number = Column(String(40), unique=True, nullable=False, index=True)
    order_type = Column(Enum(OrderType, name='order_type'), nullable=False)

    # Customer snapshot
    customer_user_id = Column(String(64), nullable=True, index=True)
    customer_name = Column(String(120), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(40), nullable=False)

    # Delivery address (sales and package orders only)
    delivery_address = Column(String(255), nullable=True)
    delivery_city = Column(String(100), nullable=True)
    delivery_state = Column(String(100), nullable=True)
    delivery_postal_code = Column(String(20), nullable=True)
    delivery_country = Column(String(10), nullable=True)

    # Shared rental period (present iff any rental line)
    rental_start_date = Column(Date, nullable=True)
    rental_end_date = Column(Date, nullable=True)

    # Amounts
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)

    # Fulfillment
    status = Column(Enum(OrderStatus, name='order_status'), nullable=False, default=OrderStatus.PENDING, index=True)
    priority = Column(Enum(OrderPriority, name='order_priority'), nullable=False, default=OrderPriority.MEDIUM)
    tracking_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)
    cancel_reason = Column(String(500), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Payment
    payment_method = Column(Enum(PaymentMethod, name='payment_method'), nullable=False, default=PaymentMethod.SLIP)
    payment_status = Column(Enum(PaymentStatus, name='payment_status'), nullable=False, default=PaymentStatus.PENDING, index=True)
    slip_file_name = Column(String(255), nullable=True)
    slip_url = Column(String(1024), nullable=True)
    slip_mime_type = Column(String(100), nullable=True)
    slip_size = Column(Integer, nullable=True)
    slip_uploaded_at = Column(DateTime(timezone=True), nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Optimistic lock: every UPDATE checks and bumps this column
    version_id = Column(Integer, nullable=False)

    lines = relationship(
        'OrderLine',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderLine.position'
    )

    __mapper_args__ = {'version_id_col': version_id}

    @property
    def has_rental_lines(self) -> bool:
        from campstore.models.order_line import LineType
        return any(line.line_type == LineType.RENTAL for line in self.lines)

    @property
    def requires_delivery(self) -> bool:
        return self.order_type in (OrderType.SALES, OrderType.PACKAGE)

    @property
    def has_payment_slip(self) -> bool:
        return bool(self.slip_url)

    def recompute_totals(self):
        """Derive subtotal and total from the lines; the only way totals change."""
        from decimal import Decimal
        subtotal = sum((line.subtotal for line in self.lines), Decimal('0.00'))
        self.subtotal = subtotal
        self.total_amount = subtotal + (self.shipping_cost or Decimal('0')) + (self.tax or Decimal('0'))

    def __repr__(self):
        return (
            f"<Order(id={self.id}, number={self.order_number}, type={self.order_type.value}, "
            f"status={self.status.value}, payment={self.payment_status.value})>"
        )
