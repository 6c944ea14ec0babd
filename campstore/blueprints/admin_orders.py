"""
Staff order management blueprint.

Listing, detail, status/priority/tracking updates, cancellation, payment
verification and bulk updates. Every route requires the admin role.
"""
from datetime import timedelta
from decimal import Decimal

from flask import Blueprint, request, jsonify, g, current_app

from campstore.database import get_session
from campstore.middleware import require_staff
from campstore.exceptions import ValidationError
from campstore.models import OrderStatus
from campstore.services.inventory_ledger import InventoryLedger
from campstore.services.order_lifecycle import (
    ACTOR_STAFF, cancel_order, update_order, bulk_update_orders
)
from campstore.services.payment_workflow import update_payment_status, verify_payment
from campstore.services.order_query_service import (
    serialize_order, list_orders, get_order, get_admin_stats, list_overdue_rentals
)
from campstore.blueprints.metrics import orders_cancelled_total
from campstore.utils.payload import json_body

admin_orders_bp = Blueprint('admin_orders', __name__, url_prefix='/admin/orders')


def _ledger(db_session) -> InventoryLedger:
    return InventoryLedger(db_session, current_app.config.get('LOW_STOCK_THRESHOLD', 5))


def _staff_view(order, include_lines=True):
    window = timedelta(hours=current_app.config.get('EDIT_WINDOW_HOURS', 24))
    return serialize_order(order, include_lines=include_lines, staff_view=True, edit_window=window)


@admin_orders_bp.route('', methods=['GET'])
@require_staff
def list_all_orders():
    """Query: status, priority, order_type, payment_status, search (or q), page, per_page."""
    args = request.args
    result = list_orders(
        get_session(),
        status=args.get('status') or None,
        priority=args.get('priority') or None,
        order_type=args.get('order_type') or None,
        payment_status=args.get('payment_status') or None,
        search=args.get('search') or args.get('q'),
        page=args.get('page', 1),
        per_page=args.get('per_page', 10)
    )
    return jsonify({
        'status': 'success',
        'orders': [_staff_view(order, include_lines=False) for order in result['items']],
        'pagination': {k: result[k] for k in ('page', 'per_page', 'total', 'pages')}
    })


@admin_orders_bp.route('/stats', methods=['GET'])
@require_staff
def order_stats():
    return jsonify({'status': 'success', 'stats': get_admin_stats(get_session())})


@admin_orders_bp.route('/overdue', methods=['GET'])
@require_staff
def overdue_rentals():
    """Rentals past their end date, with the late fee accrued so far."""
    fee = Decimal(str(current_app.config.get('RENTAL_LATE_FEE_PER_DAY', '10')))
    overdue = list_overdue_rentals(get_session(), daily_late_fee=fee)
    return jsonify({'status': 'success', 'count': len(overdue), 'orders': overdue})


@admin_orders_bp.route('/<int:order_id>', methods=['GET'])
@require_staff
def order_detail(order_id):
    return jsonify({'status': 'success', 'order': _staff_view(get_order(get_session(), order_id))})


@admin_orders_bp.route('/<int:order_id>', methods=['PUT'])
@require_staff
def update_order_route(order_id):
    """
    Body (all optional): status, priority, tracking_number, admin_notes, cancel_reason.
    """
    data = json_body()
    db_session = get_session()
    order = update_order(
        db_session,
        order_id,
        status=data.get('status') or None,
        priority=data.get('priority') or None,
        tracking_number=data.get('tracking_number'),
        admin_notes=data.get('admin_notes'),
        cancel_reason=data.get('cancel_reason'),
        ledger=_ledger(db_session)
    )
    if order.status == OrderStatus.CANCELLED and data.get('status'):
        orders_cancelled_total.labels(actor=ACTOR_STAFF).inc()
    current_app.logger.info(f"[ADMIN] {g.customer.email or g.customer.user_id} updated order {order.order_number}")
    return jsonify({'status': 'success', 'order': _staff_view(order)})


@admin_orders_bp.route('/<int:order_id>/cancel', methods=['PUT'])
@require_staff
def cancel_order_route(order_id):
    data = json_body()
    db_session = get_session()
    order = cancel_order(
        db_session,
        order_id,
        reason=data.get('reason'),
        actor=ACTOR_STAFF,
        ledger=_ledger(db_session),
        max_reason_length=current_app.config.get('CANCEL_REASON_MAX_LENGTH', 500)
    )
    orders_cancelled_total.labels(actor=ACTOR_STAFF).inc()
    return jsonify({
        'status': 'success',
        'message': f'Order {order.order_number} cancelled',
        'order': _staff_view(order)
    })


@admin_orders_bp.route('/<int:order_id>/payment', methods=['PUT'])
@require_staff
def update_payment_route(order_id):
    """
    Body: {"approved": true|false} to decide on a slip, or
    {"payment_status": "...", "refund_amount": "..."} for any allowed change.
    """
    data = json_body()
    db_session = get_session()

    if 'approved' in data:
        if not isinstance(data['approved'], bool):
            raise ValidationError('approved must be true or false', field='approved')
        order = verify_payment(db_session, order_id, data['approved'])
    elif data.get('payment_status'):
        order = update_payment_status(
            db_session, order_id, data['payment_status'],
            refund_amount=data.get('refund_amount')
        )
    else:
        raise ValidationError('Provide approved or payment_status', field='payment_status')

    return jsonify({'status': 'success', 'order': _staff_view(order)})


@admin_orders_bp.route('/bulk-update', methods=['PUT'])
@require_staff
def bulk_update_route():
    """Body: {"order_ids": [1, 2], "status": "processing", "priority": "high"}"""
    data = json_body()
    order_ids = data.get('order_ids')
    if not isinstance(order_ids, list) or not order_ids:
        raise ValidationError('order_ids must be a non-empty list', field='order_ids')

    result = bulk_update_orders(
        get_session(),
        order_ids,
        status=data.get('status') or None,
        priority=data.get('priority') or None
    )
    return jsonify(dict(result.to_dict(), status='success'))
