"""Read-only catalog lookups used by the cart and the order builder."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from campstore.models import RentalProduct, SalesProduct, SpecialPackage
from campstore.exceptions import NotFoundError, ValidationError


@dataclass(frozen=True)
class RentalSnapshot:
    id: int
    name: str
    daily_rate: Decimal
    weekly_rate: Optional[Decimal]
    total_quantity: int
    available_quantity: int


@dataclass(frozen=True)
class SaleSnapshot:
    id: int
    name: str
    price: Decimal
    stock: int


@dataclass(frozen=True)
class PackageSnapshot:
    id: int
    name: str
    price: Decimal


class CatalogLookup:
    """Snapshot reads over the catalog tables. Inactive products are treated as missing."""

    def __init__(self, session: Session):
        self.session = session

    def get_rental_product(self, product_id: int) -> RentalSnapshot:
        product = self.session.query(RentalProduct).filter(RentalProduct.id == product_id).first()
        if not product:
            raise NotFoundError(f'Rental product {product_id} not found')
        if not product.active:
            raise ValidationError(f'Rental product "{product.name}" is not available', field='product_id')
        return RentalSnapshot(
            id=product.id,
            name=product.name,
            daily_rate=product.daily_rate,
            weekly_rate=product.weekly_rate,
            total_quantity=product.total_quantity,
            available_quantity=product.available_quantity
        )

    def get_sale_product(self, product_id: int) -> SaleSnapshot:
        product = self.session.query(SalesProduct).filter(SalesProduct.id == product_id).first()
        if not product:
            raise NotFoundError(f'Sales product {product_id} not found')
        if not product.active:
            raise ValidationError(f'Product "{product.name}" is not available', field='product_id')
        return SaleSnapshot(id=product.id, name=product.name, price=product.price, stock=product.stock)

    def get_package(self, package_id: int) -> PackageSnapshot:
        package = self.session.query(SpecialPackage).filter(SpecialPackage.id == package_id).first()
        if not package:
            raise NotFoundError(f'Package {package_id} not found')
        if not package.active:
            raise ValidationError(f'Package "{package.name}" is not available', field='product_id')
        return PackageSnapshot(id=package.id, name=package.name, price=package.price)
