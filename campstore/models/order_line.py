"""Order Line model."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, Enum, ForeignKey
from sqlalchemy.orm import relationship
from campstore.database import Base
import enum


class LineType(str, enum.Enum):
    """Kind of line item."""
    SALE = 'sale'
    RENTAL = 'rental'
    PACKAGE = 'package'


class OrderLine(Base):
    """Immutable snapshot of a cart line at checkout time."""

    __tablename__ = 'order_line'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    order_id = Column(BigInteger().with_variant(Integer, 'sqlite'), ForeignKey('customer_order.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(BigInteger().with_variant(Integer, 'sqlite'), nullable=False)
    name = Column(String(100), nullable=False)
    line_type = Column(Enum(LineType, name='line_type'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    rental_days = Column(Integer, nullable=True)
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship('Order', back_populates='lines')

    def __repr__(self):
        return (
            f"<OrderLine(id={self.id}, product_id={self.product_id}, "
            f"type={self.line_type.value}, qty={self.quantity})>"
        )
