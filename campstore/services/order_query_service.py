"""
Read side of the order service: listings, detail views and statistics
for customers and staff. Nothing here writes.
"""
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, desc

from campstore.models import Order, OrderStatus, OrderPriority, OrderType, PaymentStatus, parse_enum
from campstore.exceptions import NotFoundError
from campstore.services.order_lifecycle import (
    EDIT_WINDOW, TERMINAL_STATUSES, can_edit, can_cancel, edit_deadline, calculate_late_fee
)
from campstore.utils.dates import utcnow

DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 100


def _money(value) -> Optional[str]:
    if value is None:
        return None
    return str(Decimal(str(value)).quantize(Decimal('0.01')))


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_line(line) -> Dict[str, Any]:
    return {
        'id': line.id,
        'product_id': line.product_id,
        'name': line.name,
        'line_type': line.line_type.value,
        'quantity': line.quantity,
        'unit_price': _money(line.unit_price),
        'rental_days': line.rental_days,
        'subtotal': _money(line.subtotal)
    }


def serialize_order(
    order: Order,
    include_lines: bool = True,
    staff_view: bool = False,
    edit_window: timedelta = EDIT_WINDOW
) -> Dict[str, Any]:
    """
    JSON-ready view of an order.

    Customers get the derived can_edit/can_cancel flags; staff additionally
    see internal notes and the slip reference.
    """
    data = {
        'id': order.id,
        'order_number': order.order_number,
        'order_type': order.order_type.value,
        'status': order.status.value,
        'priority': order.priority.value,
        'customer': {
            'name': order.customer_name,
            'email': order.customer_email,
            'phone': order.customer_phone
        },
        'delivery': None,
        'rental_period': None,
        'subtotal': _money(order.subtotal),
        'shipping_cost': _money(order.shipping_cost),
        'tax': _money(order.tax),
        'total_amount': _money(order.total_amount),
        'payment': {
            'method': order.payment_method.value,
            'status': order.payment_status.value,
            'has_slip': order.has_payment_slip,
            'slip_file_name': order.slip_file_name,
            'slip_uploaded_at': _iso(order.slip_uploaded_at),
            'refund_amount': _money(order.refund_amount),
            'refunded_at': _iso(order.refunded_at)
        },
        'tracking_number': order.tracking_number,
        'notes': order.notes,
        'cancel_reason': order.cancel_reason,
        'cancelled_at': _iso(order.cancelled_at),
        'created_at': _iso(order.created_at),
        'updated_at': _iso(order.updated_at),
        'can_edit': can_edit(order, window=edit_window),
        'can_cancel': can_cancel(order),
        'edit_deadline': _iso(edit_deadline(order, edit_window)) if order.created_at else None
    }

    if order.requires_delivery:
        data['delivery'] = {
            'address': order.delivery_address,
            'city': order.delivery_city,
            'state': order.delivery_state,
            'postal_code': order.delivery_postal_code,
            'country': order.delivery_country
        }
    if order.rental_start_date is not None:
        data['rental_period'] = {
            'start_date': _iso(order.rental_start_date),
            'end_date': _iso(order.rental_end_date)
        }
    if include_lines:
        data['lines'] = [serialize_line(line) for line in order.lines]
    if staff_view:
        data['admin_notes'] = order.admin_notes
        data['customer']['user_id'] = order.customer_user_id
        data['payment']['slip_url'] = order.slip_url
        data['payment']['slip_mime_type'] = order.slip_mime_type
        data['payment']['slip_size'] = order.slip_size
    return data


def _page_args(page, per_page):
    try:
        page = max(int(page or 1), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        per_page = int(per_page or DEFAULT_PER_PAGE)
    except (TypeError, ValueError):
        per_page = DEFAULT_PER_PAGE
    return page, min(max(per_page, 1), MAX_PER_PAGE)


def paginate(query, page=1, per_page=DEFAULT_PER_PAGE) -> Dict[str, Any]:
    """Slice a query and report totals the way list endpoints return them."""
    page, per_page = _page_args(page, per_page)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        'items': items,
        'page': page,
        'per_page': per_page,
        'total': total,
        'pages': (total + per_page - 1) // per_page
    }


# =====================================================
# CUSTOMER
# =====================================================

def list_customer_orders(session, user_id: str, status=None, page=1, per_page=DEFAULT_PER_PAGE) -> Dict[str, Any]:
    """A customer's own orders, newest first."""
    query = session.query(Order).filter(Order.customer_user_id == str(user_id))
    if status:
        query = query.filter(Order.status == parse_enum(OrderStatus, status, 'status'))
    return paginate(query.order_by(desc(Order.created_at), desc(Order.id)), page, per_page)


def get_customer_order(session, order_id: int, user_id: str) -> Order:
    """One order, only if it belongs to the customer."""
    order = session.query(Order).filter(
        Order.id == order_id,
        Order.customer_user_id == str(user_id)
    ).first()
    if not order:
        raise NotFoundError(f'Order {order_id} not found')
    return order


def _status_breakdown(query) -> Dict[str, int]:
    breakdown = {status.value: 0 for status in OrderStatus}
    for status, count in query.with_entities(Order.status, func.count(Order.id)).group_by(Order.status).all():
        breakdown[status.value] = count
    return breakdown


def get_customer_stats(session, user_id: str) -> Dict[str, Any]:
    """Order count, money spent (cancelled orders excluded) and status breakdown."""
    base = session.query(Order).filter(Order.customer_user_id == str(user_id))

    total_orders = base.with_entities(func.count(Order.id)).scalar() or 0
    total_spent = base.filter(Order.status != OrderStatus.CANCELLED).with_entities(
        func.coalesce(func.sum(Order.total_amount), 0)
    ).scalar()

    return {
        'total_orders': total_orders,
        'total_spent': _money(total_spent or 0),
        'status_breakdown': _status_breakdown(base)
    }


# =====================================================
# STAFF
# =====================================================

def list_orders(
    session,
    status=None,
    priority=None,
    order_type=None,
    payment_status=None,
    search: Optional[str] = None,
    page=1,
    per_page=DEFAULT_PER_PAGE
) -> Dict[str, Any]:
    """All orders with optional filters; search matches number, name or email."""
    query = session.query(Order)

    if status:
        query = query.filter(Order.status == parse_enum(OrderStatus, status, 'status'))
    if priority:
        query = query.filter(Order.priority == parse_enum(OrderPriority, priority, 'priority'))
    if order_type:
        query = query.filter(Order.order_type == parse_enum(OrderType, order_type, 'order_type'))
    if payment_status:
        query = query.filter(Order.payment_status == parse_enum(PaymentStatus, payment_status, 'payment_status'))
    if search and search.strip():
        pattern = f'%{search.strip()}%'
        query = query.filter(or_(
            Order.order_number.ilike(pattern),
            Order.customer_name.ilike(pattern),
            Order.customer_email.ilike(pattern)
        ))

    return paginate(query.order_by(desc(Order.created_at), desc(Order.id)), page, per_page)


def get_order(session, order_id: int) -> Order:
    order = session.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(f'Order {order_id} not found')
    return order


def get_admin_stats(session) -> Dict[str, Any]:
    """Dashboard numbers for the staff order screen."""
    base = session.query(Order)

    total_orders = base.with_entities(func.count(Order.id)).scalar() or 0
    revenue = base.filter(Order.status != OrderStatus.CANCELLED).with_entities(
        func.coalesce(func.sum(Order.total_amount), 0)
    ).scalar()

    priority_breakdown = {priority.value: 0 for priority in OrderPriority}
    rows = base.with_entities(Order.priority, func.count(Order.id)).group_by(Order.priority).all()
    for priority, count in rows:
        priority_breakdown[priority.value] = count

    awaiting_verification = base.filter(
        Order.payment_status == PaymentStatus.VERIFICATION_PENDING
    ).with_entities(func.count(Order.id)).scalar() or 0

    status_breakdown = _status_breakdown(base)
    return {
        'total_orders': total_orders,
        'total_revenue': _money(revenue or 0),
        'pending_orders': status_breakdown[OrderStatus.PENDING.value],
        'awaiting_payment_verification': awaiting_verification,
        'status_breakdown': status_breakdown,
        'priority_breakdown': priority_breakdown
    }


def list_overdue_rentals(
    session,
    today: Optional[date] = None,
    daily_late_fee=Decimal('10')
) -> List[Dict[str, Any]]:
    """Rental orders past their end date and still out, with the late fee so far."""
    today = today or utcnow().date()
    orders = session.query(Order).filter(
        Order.rental_end_date.isnot(None),
        Order.rental_end_date < today,
        Order.status.notin_(list(TERMINAL_STATUSES))
    ).order_by(Order.rental_end_date).all()

    overdue = []
    for order in orders:
        fee = calculate_late_fee(order, daily_late_fee, today)
        if fee <= 0:
            continue
        overdue.append({
            'order_id': order.id,
            'order_number': order.order_number,
            'customer_name': order.customer_name,
            'customer_email': order.customer_email,
            'customer_phone': order.customer_phone,
            'rental_end_date': _iso(order.rental_end_date),
            'days_overdue': (today - order.rental_end_date).days,
            'late_fee': _money(fee),
            'status': order.status.value
        })
    return overdue
