"""Special Package model."""
from sqlalchemy import Column, BigInteger, Integer, String, Boolean, Numeric, DateTime
from sqlalchemy.sql import func
from campstore.database import Base


class SpecialPackage(Base):
    """Pre-bundled offer (camping kit). Packages carry no stock of their own."""

    __tablename__ = 'special_package'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<SpecialPackage(id={self.id}, name='{self.name}', price={self.price})>"
