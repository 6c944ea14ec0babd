"""
Cart blueprint.

The cart lives in the Flask session, keyed per customer (or guest). Every
mutation answers with the full cart so clients never keep their own copy.
"""
from flask import Blueprint, jsonify, session, g

from campstore.database import get_session
from campstore.utils.payload import int_field, json_body
from campstore.services.catalog_service import CatalogLookup
from campstore.services.cart_service import (
    cart_storage_key, load_cart, save_cart, discard_cart, add_catalog_item
)

cart_bp = Blueprint('cart', __name__, url_prefix='/cart')


def current_cart_key() -> str:
    customer = g.get('customer')
    return cart_storage_key(customer.user_id if customer else None)


def _cart_response(cart, status_code=200):
    return jsonify({'status': 'success', 'cart': cart.summary()}), status_code


@cart_bp.route('', methods=['GET'])
def get_cart():
    """Current cart with line totals and subtotal."""
    return _cart_response(load_cart(session, current_cart_key()))


@cart_bp.route('', methods=['DELETE'])
def clear_cart():
    key = current_cart_key()
    discard_cart(session, key)
    return _cart_response(load_cart(session, key))


@cart_bp.route('/items', methods=['POST'])
def add_item():
    """
    Add a product to the cart.

    Body: {"product_id": 3, "line_type": "rental", "quantity": 2, "rental_days": 4}
    Prices come from the catalog, never from the request.
    """
    data = json_body()
    key = current_cart_key()
    cart = load_cart(session, key)

    add_catalog_item(
        cart,
        CatalogLookup(get_session()),
        int_field(data, 'product_id'),
        data.get('line_type', 'sale'),
        quantity=int_field(data, 'quantity', default=1),
        rental_days=int_field(data, 'rental_days', default=None)
    )
    save_cart(session, key, cart)
    return _cart_response(cart, 201)


@cart_bp.route('/items/<line_type>/<int:product_id>', methods=['PATCH'])
def update_item(line_type, product_id):
    """Change quantity and/or rental days. Quantity 0 removes the line."""
    data = json_body()
    key = current_cart_key()
    cart = load_cart(session, key)

    cart.update(
        product_id,
        line_type,
        quantity=int_field(data, 'quantity', default=None),
        rental_days=int_field(data, 'rental_days', default=None)
    )
    save_cart(session, key, cart)
    return _cart_response(cart)


@cart_bp.route('/items/<line_type>/<int:product_id>', methods=['DELETE'])
def remove_item(line_type, product_id):
    key = current_cart_key()
    cart = load_cart(session, key)
    cart.remove(product_id, line_type)
    save_cart(session, key, cart)
    return _cart_response(cart)
