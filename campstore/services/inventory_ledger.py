"""
Inventory ledger for rental equipment and sale stock.

Every change is a single conditional UPDATE so the availability check and
the write happen in one statement. The database row lock taken by that
statement serializes concurrent writers on the same product, which is what
keeps the last unit from being handed out twice. Transaction boundaries
belong to the caller: a rollback undoes every reservation made through the
same session.

Updates bypass the identity map, so product objects already loaded in the
session show the new quantities only after commit (or an explicit refresh).
"""
import logging
from typing import List, Dict, Any

from sqlalchemy import select, update, case

from campstore.models import RentalProduct, SalesProduct
from campstore.exceptions import InsufficientStockError, InvalidQuantityError, NotFoundError

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Reserve and release units against rental and sale products.

    Usage:
        ledger = InventoryLedger(session)
        ledger.reserve(product_id, 2)
        session.commit()
        ledger.dispatch_low_stock_alerts()
    """

    def __init__(self, session, low_stock_threshold: int = 5):
        self.session = session
        self.low_stock_threshold = low_stock_threshold
        self._low_stock: List[Dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Rental inventory
    # ------------------------------------------------------------------

    def reserve(self, product_id: int, quantity: int) -> int:
        """
        Hold `quantity` rental units. Returns the remaining available quantity.

        Raises InsufficientStockError without touching the row when fewer
        units are available.
        """
        self._check_quantity(quantity)

        result = self.session.execute(
            update(RentalProduct)
            .where(
                RentalProduct.id == product_id,
                RentalProduct.available_quantity >= quantity
            )
            .values(available_quantity=RentalProduct.available_quantity - quantity)
            .execution_options(synchronize_session=False)
        )

        row = self.session.execute(
            select(RentalProduct.name, RentalProduct.available_quantity)
            .where(RentalProduct.id == product_id)
        ).first()

        if result.rowcount == 0:
            if row is None:
                raise NotFoundError(f'Rental product {product_id} not found')
            logger.info(
                f"[STOCK] Reservation refused for rental {product_id}: "
                f"requested {quantity}, available {row.available_quantity}"
            )
            raise InsufficientStockError(row.name, quantity, row.available_quantity)

        logger.info(f"[STOCK] Reserved {quantity} x rental {product_id} ({row.available_quantity} left)")
        self._track_low_stock(row.name, 'rental', row.available_quantity)
        return row.available_quantity

    def release(self, product_id: int, quantity: int) -> int:
        """
        Return `quantity` rental units to the shelf, capped at the total.

        Releasing more than was reserved is a programming error; it is
        logged and clamped so the record never exceeds its total.
        """
        self._check_quantity(quantity)

        row = self.session.execute(
            select(RentalProduct.name, RentalProduct.available_quantity, RentalProduct.total_quantity)
            .where(RentalProduct.id == product_id)
            .with_for_update()
        ).first()

        if row is None:
            raise NotFoundError(f'Rental product {product_id} not found')

        if row.available_quantity + quantity > row.total_quantity:
            logger.warning(
                f"[STOCK] Over-release on rental {product_id} ({row.name}): "
                f"available {row.available_quantity} + {quantity} > total {row.total_quantity}. Clamping."
            )

        restored = RentalProduct.available_quantity + quantity
        self.session.execute(
            update(RentalProduct)
            .where(RentalProduct.id == product_id)
            .values(available_quantity=case(
                (restored > RentalProduct.total_quantity, RentalProduct.total_quantity),
                else_=restored
            ))
            .execution_options(synchronize_session=False)
        )

        available = self.session.execute(
            select(RentalProduct.available_quantity).where(RentalProduct.id == product_id)
        ).scalar_one()
        logger.info(f"[STOCK] Released {quantity} x rental {product_id} ({available} available)")
        return available

    def availability(self, product_id: int) -> Dict[str, int]:
        """Current total/available snapshot for a rental product."""
        row = self.session.execute(
            select(RentalProduct.total_quantity, RentalProduct.available_quantity)
            .where(RentalProduct.id == product_id)
        ).first()
        if row is None:
            raise NotFoundError(f'Rental product {product_id} not found')
        return {'total_quantity': row.total_quantity, 'available_quantity': row.available_quantity}

    # ------------------------------------------------------------------
    # Sale stock
    # ------------------------------------------------------------------

    def consume_sale_stock(self, product_id: int, quantity: int) -> int:
        """Decrement sale stock; same all-or-nothing rule as reserve()."""
        self._check_quantity(quantity)

        result = self.session.execute(
            update(SalesProduct)
            .where(SalesProduct.id == product_id, SalesProduct.stock >= quantity)
            .values(stock=SalesProduct.stock - quantity)
            .execution_options(synchronize_session=False)
        )

        row = self.session.execute(
            select(SalesProduct.name, SalesProduct.stock).where(SalesProduct.id == product_id)
        ).first()

        if result.rowcount == 0:
            if row is None:
                raise NotFoundError(f'Sales product {product_id} not found')
            raise InsufficientStockError(row.name, quantity, row.stock)

        logger.info(f"[STOCK] Consumed {quantity} x sale {product_id} ({row.stock} left)")
        self._track_low_stock(row.name, 'sales', row.stock)
        return row.stock

    def restock_sale(self, product_id: int, quantity: int) -> int:
        """Put sale units back (order cancelled before shipping)."""
        self._check_quantity(quantity)

        result = self.session.execute(
            update(SalesProduct)
            .where(SalesProduct.id == product_id)
            .values(stock=SalesProduct.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f'Sales product {product_id} not found')

        stock = self.session.execute(
            select(SalesProduct.stock).where(SalesProduct.id == product_id)
        ).scalar_one()
        logger.info(f"[STOCK] Restocked {quantity} x sale {product_id} ({stock} in stock)")
        return stock

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    @property
    def low_stock(self) -> List[Dict[str, Any]]:
        return list(self._low_stock)

    def dispatch_low_stock_alerts(self) -> int:
        """
        Send queued low-stock alerts. Call only after the transaction commits.

        Returns the number of alerts handed to the notifier.
        """
        if not self._low_stock:
            return 0

        from campstore.services.notification_service import send_low_stock_alert

        sent = 0
        for alert in self._low_stock:
            if send_low_stock_alert(alert['product_name'], alert['product_type'], alert['remaining']):
                sent += 1
        self._low_stock.clear()
        return sent

    def discard_alerts(self):
        self._low_stock.clear()

    def _track_low_stock(self, product_name: str, product_type: str, remaining: int):
        if remaining <= self.low_stock_threshold:
            logger.warning(f"[STOCK] Low stock for {product_type} '{product_name}': {remaining} left")
            self._low_stock.append({
                'product_name': product_name,
                'product_type': product_type,
                'remaining': remaining
            })

    @staticmethod
    def _check_quantity(quantity: int):
        if quantity is None or int(quantity) < 1:
            raise InvalidQuantityError('Quantity must be at least 1')
