"""
Order lifecycle: fulfillment transitions, customer self-service windows,
staff updates and bulk updates.

Every status change goes through validate_transition(). Mutators lock the
order row (FOR UPDATE where the database supports it) and the Order
mapper's version column rejects a write based on a stale read.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional, Any, Iterable

from sqlalchemy.orm.exc import StaleDataError

from campstore.models import Order, OrderStatus, OrderPriority, LineType, parse_enum
from campstore.exceptions import StoreError, IllegalTransitionError, NotFoundError, ValidationError
from campstore.services.inventory_ledger import InventoryLedger
from campstore.services.order_builder import DeliveryInfo, validate_delivery, optional_object, PHONE_PATTERN
from campstore.utils.dates import utcnow, as_utc
from campstore.utils.text import clean_text

logger = logging.getLogger(__name__)

ACTOR_CUSTOMER = 'customer'
ACTOR_STAFF = 'staff'

EDIT_WINDOW = timedelta(hours=24)
CANCEL_REASON_MAX_LENGTH = 500

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.CANCELLED, OrderStatus.COMPLETED, OrderStatus.RETURNED
})
CUSTOMER_MUTABLE_STATUSES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.PENDING, OrderStatus.PROCESSING
})

# Staff transitions. Terminal states have no outgoing edges.
STAFF_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED,
        OrderStatus.COMPLETED, OrderStatus.CANCELLED
    }),
    OrderStatus.PROCESSING: frozenset({
        OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.COMPLETED, OrderStatus.CANCELLED
    }),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED, OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
}

# Customers may only cancel, and only before shipping.
CUSTOMER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.CANCELLED}),
}

# Reaching these states hands rental units back to the shelf.
RELEASING_STATUSES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.CANCELLED, OrderStatus.COMPLETED, OrderStatus.RETURNED
})


# =====================================================
# GUARDS
# =====================================================

def validate_transition(order: Order, target, actor: str = ACTOR_STAFF) -> OrderStatus:
    """
    Canonical guard for every fulfillment status change.

    Returns the target as an OrderStatus or raises IllegalTransitionError.
    """
    target = parse_enum(OrderStatus, target, 'status')
    current = order.status

    if current in TERMINAL_STATUSES:
        raise IllegalTransitionError(
            f'Order {order.order_number} is {current.value} and cannot change anymore',
            current=current.value, target=target.value
        )

    table = CUSTOMER_TRANSITIONS if actor == ACTOR_CUSTOMER else STAFF_TRANSITIONS
    if target not in table.get(current, frozenset()):
        raise IllegalTransitionError(
            f'Cannot move order {order.order_number} from {current.value} to {target.value}',
            current=current.value, target=target.value
        )

    if target == OrderStatus.RETURNED and not order.has_rental_lines:
        raise IllegalTransitionError(
            f'Only rental orders can be returned (order {order.order_number})',
            current=current.value, target=target.value
        )

    return target


def can_edit(order: Order, now: Optional[datetime] = None, window: timedelta = EDIT_WINDOW) -> bool:
    """Editable while pending/processing and within the window after creation."""
    if order.status not in CUSTOMER_MUTABLE_STATUSES:
        return False
    now = as_utc(now) if now else utcnow()
    return now - as_utc(order.created_at) <= window


def can_cancel(order: Order) -> bool:
    """Customers can cancel pending/processing orders at any time."""
    return order.status in CUSTOMER_MUTABLE_STATUSES


def edit_deadline(order: Order, window: timedelta = EDIT_WINDOW) -> datetime:
    return as_utc(order.created_at) + window


# =====================================================
# HELPERS
# =====================================================

def get_order_for_update(session, order_id: int, customer_user_id: Optional[str] = None) -> Order:
    """Fetch and row-lock an order, optionally scoped to its owner."""
    query = session.query(Order).filter(Order.id == order_id)
    if customer_user_id is not None:
        query = query.filter(Order.customer_user_id == str(customer_user_id))
    order = query.with_for_update().populate_existing().first()
    if not order:
        raise NotFoundError(f'Order {order_id} not found')
    return order


def _release_stock(order: Order, ledger: InventoryLedger, include_sales: bool):
    """Hand back rental units, and sale units when the order never shipped."""
    for line in order.lines:
        if line.line_type == LineType.RENTAL:
            ledger.release(line.product_id, line.quantity)
        elif include_sales and line.line_type == LineType.SALE:
            ledger.restock_sale(line.product_id, line.quantity)


def _apply_status(order: Order, target: OrderStatus, ledger: InventoryLedger, reason: Optional[str] = None):
    """Write an already validated status and its inventory side effects."""
    previous = order.status
    order.status = target

    if target == OrderStatus.CANCELLED:
        order.cancel_reason = reason
        order.cancelled_at = utcnow()

    if target in RELEASING_STATUSES:
        # Sale units only go back on the shelf when the order is cancelled
        _release_stock(order, ledger, include_sales=(target == OrderStatus.CANCELLED))

    logger.info(f"[ORDER] {order.order_number}: {previous.value} -> {target.value}")


def commit_order(session, order: Order):
    """Commit, mapping a version conflict to IllegalTransitionError."""
    order_number = order.order_number
    try:
        session.commit()
    except StaleDataError:
        session.rollback()
        logger.warning(f"[ORDER] Version conflict on {order_number}, write discarded")
        raise IllegalTransitionError(f'Order {order_number} was modified concurrently, reload and try again')


def _normalize_reason(reason: Optional[str], default: str, max_length: int) -> str:
    reason = clean_text(reason)
    if reason and len(reason) > max_length:
        raise ValidationError(f'Cancel reason cannot exceed {max_length} characters', field='cancel_reason')
    return reason or default


# =====================================================
# CUSTOMER OPERATIONS
# =====================================================

def cancel_order(
    session,
    order_id: int,
    reason: Optional[str] = None,
    actor: str = ACTOR_CUSTOMER,
    customer_user_id: Optional[str] = None,
    ledger: Optional[InventoryLedger] = None,
    max_reason_length: int = CANCEL_REASON_MAX_LENGTH
) -> Order:
    """
    Cancel an order and release its stock.

    Customers are limited to pending/processing orders (no time limit).
    """
    ledger = ledger or InventoryLedger(session)
    default_reason = 'Cancelled by customer' if actor == ACTOR_CUSTOMER else 'Cancelled by admin'

    try:
        reason = _normalize_reason(reason, default_reason, max_reason_length)
        order = get_order_for_update(session, order_id, customer_user_id)
        target = validate_transition(order, OrderStatus.CANCELLED, actor)
        _apply_status(order, target, ledger, reason)
        commit_order(session, order)
    except StoreError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception(f"[ORDER] Unexpected error cancelling order {order_id}")
        raise

    return order


def edit_order_details(
    session,
    order_id: int,
    changes: Dict[str, Any],
    customer_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
    window: timedelta = EDIT_WINDOW
) -> Order:
    """
    Customer edit of contact and delivery details inside the edit window.

    Lines, totals and status are never touched here.
    """
    try:
        order = get_order_for_update(session, order_id, customer_user_id)

        if not can_edit(order, now, window):
            if order.status not in CUSTOMER_MUTABLE_STATUSES:
                message = f'Order {order.order_number} can no longer be edited (status {order.status.value})'
            else:
                message = (
                    f'Order {order.order_number} can only be edited within '
                    f'{int(window.total_seconds() // 3600)} hours of placing it'
                )
            raise IllegalTransitionError(message, current=order.status.value)

        _apply_contact_changes(order, changes)
        commit_order(session, order)
    except StoreError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception(f"[ORDER] Unexpected error editing order {order_id}")
        raise

    logger.info(f"[ORDER] {order.order_number}: customer details updated")
    return order


def _apply_contact_changes(order: Order, changes: Dict[str, Any]):
    changes = optional_object(changes, 'changes') or {}
    customer = optional_object(changes.get('customer'), 'customer') or {}
    if 'name' in customer:
        name = clean_text(customer.get('name'))
        if not name:
            raise ValidationError('Customer name is required', field='customer.name')
        order.customer_name = name
    if 'phone' in customer:
        phone = clean_text(customer.get('phone'))
        if not phone or not PHONE_PATTERN.match(phone):
            raise ValidationError(f'Invalid phone number: {phone}', field='customer.phone')
        order.customer_phone = phone

    delivery = optional_object(changes.get('delivery'), 'delivery')
    if delivery is not None:
        if not order.requires_delivery:
            raise ValidationError('Rental orders are picked up at the shop and have no delivery address',
                                  field='delivery')
        merged = DeliveryInfo.from_dict({
            'address': delivery.get('address', order.delivery_address),
            'city': delivery.get('city', order.delivery_city),
            'state': delivery.get('state', order.delivery_state),
            'postal_code': delivery.get('postal_code', delivery.get('postalCode', order.delivery_postal_code)),
            'country': delivery.get('country', order.delivery_country),
        })
        valid = validate_delivery(merged, order.delivery_country or 'SL')
        order.delivery_address = valid.address
        order.delivery_city = valid.city
        order.delivery_state = valid.state
        order.delivery_postal_code = valid.postal_code
        order.delivery_country = valid.country

    if 'notes' in changes:
        order.notes = clean_text(changes.get('notes'))


# =====================================================
# STAFF OPERATIONS
# =====================================================

def update_order(
    session,
    order_id: int,
    status=None,
    priority=None,
    tracking_number: Optional[str] = None,
    admin_notes: Optional[str] = None,
    cancel_reason: Optional[str] = None,
    ledger: Optional[InventoryLedger] = None
) -> Order:
    """
    Staff update: status, priority, tracking number and internal notes.

    Status goes through the same guard as every other mutator; priority
    never affects legality.
    """
    ledger = ledger or InventoryLedger(session)

    try:
        order = get_order_for_update(session, order_id)

        if status is not None:
            target = parse_enum(OrderStatus, status, 'status')
            # Re-asserting the current status is a no-op, except on terminal orders
            if target != order.status or order.status in TERMINAL_STATUSES:
                target = validate_transition(order, target, ACTOR_STAFF)
                reason = None
                if target == OrderStatus.CANCELLED:
                    reason = _normalize_reason(cancel_reason, 'Cancelled by admin', CANCEL_REASON_MAX_LENGTH)
                _apply_status(order, target, ledger, reason)

        if priority is not None:
            order.priority = parse_enum(OrderPriority, priority, 'priority')
        if tracking_number is not None:
            order.tracking_number = clean_text(tracking_number)
        if admin_notes is not None:
            order.admin_notes = clean_text(admin_notes)

        commit_order(session, order)
    except StoreError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception(f"[ORDER] Unexpected error updating order {order_id}")
        raise

    return order


@dataclass
class BulkUpdateResult:
    """Per-order outcome of a bulk update."""
    succeeded: List[int] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'succeeded': self.succeeded,
            'failed': self.failed,
            'success_count': len(self.succeeded),
            'failure_count': len(self.failed)
        }


def bulk_update_orders(
    session,
    order_ids: Iterable[int],
    status=None,
    priority=None
) -> BulkUpdateResult:
    """
    Apply status and/or priority to many orders, each in its own transaction.

    A failing order is reported and skipped; earlier successes stay committed.
    """
    if status is None and priority is None:
        raise ValidationError('Provide a status or a priority to update', field='updates')

    # Reject bad enum values once, before touching any order
    if status is not None:
        status = parse_enum(OrderStatus, status, 'status')
    if priority is not None:
        priority = parse_enum(OrderPriority, priority, 'priority')

    result = BulkUpdateResult()
    for raw_id in order_ids:
        try:
            order_id = int(raw_id)
        except (TypeError, ValueError):
            result.failed.append({'order_id': raw_id, 'error': 'ValidationError', 'message': 'Invalid order id'})
            continue

        try:
            update_order(session, order_id, status=status, priority=priority)
            result.succeeded.append(order_id)
        except StoreError as e:
            result.failed.append({'order_id': order_id, 'error': type(e).__name__, 'message': e.message})
            logger.info(f"[ORDER] Bulk update skipped order {order_id}: {e.message}")
        except Exception:
            # update_order has already rolled back and logged the traceback
            result.failed.append({
                'order_id': order_id, 'error': 'InternalError', 'message': 'Unexpected error updating order'
            })

    logger.info(
        f"[ORDER] Bulk update finished: {len(result.succeeded)} updated, {len(result.failed)} failed"
    )
    return result


# =====================================================
# OVERDUE RENTALS
# =====================================================

def is_overdue(order: Order, today=None) -> bool:
    """A rental past its end date that has not been returned, completed or cancelled."""
    if not order.has_rental_lines or order.rental_end_date is None:
        return False
    today = today or utcnow().date()
    return today > order.rental_end_date and order.status not in TERMINAL_STATUSES


def calculate_late_fee(order: Order, daily_late_fee=Decimal('10'), today=None) -> Decimal:
    """Late fee = overdue days x daily fee."""
    today = today or utcnow().date()
    if not is_overdue(order, today):
        return Decimal('0.00')
    overdue_days = (today - order.rental_end_date).days
    return (Decimal(str(daily_late_fee)) * overdue_days).quantize(Decimal('0.01'))
