"""Middleware for customer identity and access control."""
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import session, g, jsonify

STAFF_ROLE = 'admin'


@dataclass(frozen=True)
class CustomerIdentity:
    """Who is calling, as asserted by the session issued by the auth service."""
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role == STAFF_ROLE


def load_customer_identity():
    """
    Load the current customer into g.customer.

    Called before each request. Anonymous callers get g.customer = None
    and shop with the guest cart.
    """
    g.customer = None

    user_id = session.get('user_id')
    if user_id:
        g.customer = CustomerIdentity(
            user_id=str(user_id),
            email=session.get('user_email'),
            name=session.get('user_name'),
            role=session.get('user_role')
        )


def require_login(f):
    """Decorator: reject anonymous callers with 401."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('customer') is None:
            return jsonify({'status': 'error', 'message': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function


def require_staff(f):
    """Decorator: staff-only routes (401 anonymous, 403 customers)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        customer = g.get('customer')
        if customer is None:
            return jsonify({'status': 'error', 'message': 'Authentication required'}), 401
        if not customer.is_staff:
            return jsonify({'status': 'error', 'message': 'Staff access required'}), 403
        return f(*args, **kwargs)
    return decorated_function
