"""
Customer orders blueprint: checkout, order history and self-service
(edit details, cancel, re-submit a payment slip).
"""
from datetime import timedelta
from decimal import Decimal

from flask import Blueprint, request, jsonify, session, g, current_app

from campstore.database import get_session
from campstore.middleware import require_login
from campstore.utils.payload import parse_json_field, json_body
from campstore.services.catalog_service import CatalogLookup
from campstore.services.cart_service import load_cart, discard_cart
from campstore.services.inventory_ledger import InventoryLedger
from campstore.services.storage_service import get_storage_service
from campstore.services.order_builder import CustomerInfo, DeliveryInfo, RentalPeriod
from campstore.services.payment_workflow import (
    SlipUpload, submit_order, submit_slip, DEFAULT_ALLOWED_SLIP_TYPES
)
from campstore.services.order_lifecycle import ACTOR_CUSTOMER, cancel_order, edit_order_details
from campstore.services.order_query_service import (
    serialize_order, list_customer_orders, get_customer_order, get_customer_stats
)
from campstore.blueprints.cart import current_cart_key
from campstore.blueprints.metrics import orders_created_total, orders_cancelled_total

orders_bp = Blueprint('orders', __name__, url_prefix='/orders')


def _edit_window() -> timedelta:
    return timedelta(hours=current_app.config.get('EDIT_WINDOW_HOURS', 24))


def _slip_limits() -> dict:
    cfg = current_app.config
    return {
        'max_slip_size': cfg.get('MAX_SLIP_SIZE', 24 * 1024 * 1024),
        'allowed_slip_types': cfg.get('ALLOWED_SLIP_MIME_TYPES') or DEFAULT_ALLOWED_SLIP_TYPES
    }


def _order_payload() -> dict:
    """Checkout payload: multipart 'order' JSON field, or a plain JSON body."""
    if request.is_json:
        return json_body()
    return parse_json_field(request.form.get('order'), 'order')


@orders_bp.route('', methods=['POST'])
@require_login
def create_order():
    """
    Place an order from the current cart.

    Multipart form:
        order: JSON {customer, delivery, rental_period, payment_method, notes}
        payment_slip: PDF/JPEG/PNG proof of payment
    """
    cfg = current_app.config
    db_session = get_session()
    payload = _order_payload()
    key = current_cart_key()
    cart = load_cart(session, key)

    order = submit_order(
        db_session,
        cart,
        CustomerInfo.from_dict(payload.get('customer'), g.customer.user_id),
        DeliveryInfo.from_dict(payload.get('delivery')),
        RentalPeriod.from_dict(payload.get('rental_period')),
        payload.get('payment_method'),
        SlipUpload.from_file_storage(request.files.get('payment_slip')),
        get_storage_service(),
        CatalogLookup(db_session),
        ledger=InventoryLedger(db_session, cfg.get('LOW_STOCK_THRESHOLD', 5)),
        card_enabled=cfg.get('CARD_PAYMENTS_ENABLED', False),
        shipping_fee=Decimal(str(cfg.get('SHIPPING_FEE', '450'))),
        max_rental_days=cfg.get('MAX_RENTAL_DAYS', 365),
        default_country=cfg.get('DEFAULT_DELIVERY_COUNTRY', 'SL'),
        notes=payload.get('notes'),
        **_slip_limits()
    )

    discard_cart(session, key)
    orders_created_total.labels(order_type=order.order_type.value).inc()

    return jsonify({
        'status': 'success',
        'message': f'Order {order.order_number} placed',
        'order': serialize_order(order, edit_window=_edit_window())
    }), 201


@orders_bp.route('/user', methods=['GET'])
@require_login
def my_orders():
    """Own orders, newest first. Query: status, page, per_page."""
    result = list_customer_orders(
        get_session(),
        g.customer.user_id,
        status=request.args.get('status') or None,
        page=request.args.get('page', 1),
        per_page=request.args.get('per_page', 10)
    )
    window = _edit_window()
    return jsonify({
        'status': 'success',
        'orders': [serialize_order(order, include_lines=False, edit_window=window) for order in result['items']],
        'pagination': {k: result[k] for k in ('page', 'per_page', 'total', 'pages')}
    })


@orders_bp.route('/user/stats', methods=['GET'])
@require_login
def my_stats():
    return jsonify({'status': 'success', 'stats': get_customer_stats(get_session(), g.customer.user_id)})


@orders_bp.route('/user/<int:order_id>', methods=['GET'])
@require_login
def my_order(order_id):
    order = get_customer_order(get_session(), order_id, g.customer.user_id)
    return jsonify({'status': 'success', 'order': serialize_order(order, edit_window=_edit_window())})


@orders_bp.route('/user/<int:order_id>/delivery', methods=['PUT'])
@require_login
def edit_my_order(order_id):
    """
    Edit contact/delivery details within the edit window.

    Body: {"customer": {"name", "phone"}, "delivery": {...}, "notes": "..."}
    """
    changes = json_body()
    window = _edit_window()
    order = edit_order_details(
        get_session(), order_id, changes,
        customer_user_id=g.customer.user_id,
        window=window
    )
    return jsonify({'status': 'success', 'order': serialize_order(order, edit_window=window)})


@orders_bp.route('/user/<int:order_id>/cancel', methods=['PUT'])
@require_login
def cancel_my_order(order_id):
    data = json_body()
    db_session = get_session()
    order = cancel_order(
        db_session,
        order_id,
        reason=data.get('reason'),
        actor=ACTOR_CUSTOMER,
        customer_user_id=g.customer.user_id,
        ledger=InventoryLedger(db_session, current_app.config.get('LOW_STOCK_THRESHOLD', 5)),
        max_reason_length=current_app.config.get('CANCEL_REASON_MAX_LENGTH', 500)
    )
    orders_cancelled_total.labels(actor=ACTOR_CUSTOMER).inc()
    return jsonify({
        'status': 'success',
        'message': f'Order {order.order_number} cancelled',
        'order': serialize_order(order, edit_window=_edit_window())
    })


@orders_bp.route('/user/<int:order_id>/payment-slip', methods=['POST'])
@require_login
def upload_my_slip(order_id):
    """Attach or replace the payment slip (payment pending or rejected)."""
    order = submit_slip(
        get_session(),
        order_id,
        SlipUpload.from_file_storage(request.files.get('payment_slip')),
        get_storage_service(),
        customer_user_id=g.customer.user_id,
        **_slip_limits()
    )
    return jsonify({
        'status': 'success',
        'message': 'Payment slip received, awaiting verification',
        'order': serialize_order(order, edit_window=_edit_window())
    })
