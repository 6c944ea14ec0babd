"""Rental Product model."""
from sqlalchemy import Column, BigInteger, Integer, String, Boolean, Numeric, DateTime, CheckConstraint
from sqlalchemy.sql import func
from campstore.database import Base


class RentalProduct(Base):
    """Rentable equipment with its inventory record (total vs available units)."""

    __tablename__ = 'rental_product'
    __table_args__ = (
        CheckConstraint('available_quantity >= 0', name='ck_rental_available_non_negative'),
        CheckConstraint('available_quantity <= total_quantity', name='ck_rental_available_le_total'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    daily_rate = Column(Numeric(10, 2), nullable=False)
    weekly_rate = Column(Numeric(10, 2), nullable=True)
    total_quantity = Column(Integer, nullable=False, default=0)
    available_quantity = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    @property
    def reserved_quantity(self):
        """Units currently out on rental."""
        return (self.total_quantity or 0) - (self.available_quantity or 0)

    def __repr__(self):
        return (
            f"<RentalProduct(id={self.id}, name='{self.name}', "
            f"available={self.available_quantity}/{self.total_quantity})>"
        )
