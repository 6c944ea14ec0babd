"""
Payment verification workflow.

Card payments are switched off; customers pay by bank transfer and upload
a proof-of-payment slip that staff later approve or reject. Slip checks
always run before anything is written, so a rejected upload never leaves
an order or a stored file behind.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import BinaryIO, Dict, FrozenSet, Iterable, Optional

from werkzeug.utils import secure_filename

from campstore.models import Order, OrderStatus, PaymentMethod, PaymentStatus, parse_enum
from campstore.exceptions import (
    StoreError, ValidationError, UploadRejectedError, IllegalTransitionError, NotFoundError
)
from campstore.services.order_builder import build_order_draft, persist_order, DEFAULT_SHIPPING_FEE
from campstore.services.order_lifecycle import get_order_for_update, commit_order
from campstore.services.inventory_ledger import InventoryLedger
from campstore.utils.dates import utcnow

logger = logging.getLogger(__name__)

CARD_UNAVAILABLE_MESSAGE = (
    'Card payments are temporarily unavailable. Please upload a payment slip.'
)
DEFAULT_MAX_SLIP_SIZE = 24 * 1024 * 1024
DEFAULT_ALLOWED_SLIP_TYPES = frozenset({'application/pdf', 'image/jpeg', 'image/png'})
# Browsers still send the non-standard alias for JPEG
MIME_ALIASES = {'image/jpg': 'image/jpeg', 'image/pjpeg': 'image/jpeg'}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.VERIFICATION_PENDING, PaymentStatus.FAILED}),
    PaymentStatus.VERIFICATION_PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.VERIFICATION_PENDING}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# A new slip can be attached while nothing has been verified yet
SLIP_ACCEPTING_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED})


@dataclass
class SlipUpload:
    """An uploaded proof-of-payment file, detached from the web framework."""
    file_name: str
    mime_type: str
    size: int
    stream: BinaryIO

    @classmethod
    def from_file_storage(cls, file) -> Optional['SlipUpload']:
        """Wrap a werkzeug FileStorage; None when no file was sent."""
        if file is None or not getattr(file, 'filename', None):
            return None
        stream = file.stream
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        return cls(
            file_name=file.filename,
            mime_type=(file.mimetype or file.content_type or '').lower(),
            size=size,
            stream=stream
        )


# =====================================================
# VALIDATION
# =====================================================

def validate_payment_method(method, card_enabled: bool = False) -> PaymentMethod:
    """Parse the claimed method; card is refused while the gateway is off."""
    if method is None or method == '':
        raise ValidationError('Payment method is required', field='payment_method')
    method = parse_enum(PaymentMethod, method, 'payment_method')
    if method == PaymentMethod.CARD and not card_enabled:
        raise ValidationError(CARD_UNAVAILABLE_MESSAGE, field='payment_method')
    return method


def validate_slip(
    slip: Optional[SlipUpload],
    max_size: int = DEFAULT_MAX_SLIP_SIZE,
    allowed_types: Iterable[str] = DEFAULT_ALLOWED_SLIP_TYPES
) -> SlipUpload:
    """
    Check presence, size and type. Returns the slip with a canonical MIME type.

    Raises:
        UploadRejectedError: 400 for a missing/empty/wrong-type file, 413 when too large
    """
    if slip is None or not slip.file_name:
        raise UploadRejectedError('A payment slip file is required')
    if slip.size <= 0:
        raise UploadRejectedError('The payment slip file is empty')
    if slip.size > max_size:
        raise UploadRejectedError(
            f'Payment slip is too large ({slip.size} bytes). Maximum size is {max_size // (1024 * 1024)}MB',
            status_code=413
        )

    mime_type = MIME_ALIASES.get(slip.mime_type, slip.mime_type)
    if mime_type not in set(allowed_types):
        raise UploadRejectedError(
            f'Unsupported payment slip type "{slip.mime_type}". Upload a PDF, JPEG or PNG file'
        )
    slip.mime_type = mime_type
    return slip


def validate_payment_transition(order: Order, target) -> PaymentStatus:
    """Canonical guard for every payment status change."""
    target = parse_enum(PaymentStatus, target, 'payment_status')
    current = order.payment_status
    if target not in PAYMENT_TRANSITIONS.get(current, frozenset()):
        raise IllegalTransitionError(
            f'Cannot move payment of order {order.order_number} from {current.value} to {target.value}',
            current=current.value, target=target.value
        )
    if target == PaymentStatus.VERIFICATION_PENDING and order.status == OrderStatus.CANCELLED:
        raise IllegalTransitionError(
            f'Order {order.order_number} is cancelled and no longer accepts payment slips',
            current=current.value, target=target.value
        )
    return target


# =====================================================
# STORAGE HELPERS
# =====================================================

def slip_object_name(file_name: str, prefix: Optional[str] = None) -> str:
    """Unique object key, e.g. slips/ORD2026.../3f2a..._receipt.pdf"""
    safe_name = secure_filename(file_name) or 'slip'
    folder = f"slips/{prefix}" if prefix else 'slips'
    return f"{folder}/{uuid.uuid4().hex}_{safe_name}"


def _store_slip(storage, slip: SlipUpload, prefix: Optional[str] = None) -> Dict:
    object_name = slip_object_name(slip.file_name, prefix)
    url = storage.upload_file(
        slip.stream,
        object_name,
        slip.mime_type,
        metadata={'original-name': secure_filename(slip.file_name) or 'slip'}
    )
    return {
        'object_name': object_name,
        'file_name': slip.file_name,
        'url': url,
        'mime_type': slip.mime_type,
        'size': slip.size,
        'uploaded_at': utcnow()
    }


def _discard_slip(storage, object_name: str):
    """Best-effort cleanup of an upload whose order was never written."""
    if not storage.delete_file(object_name):
        logger.warning(f"[PAYMENT] Orphaned payment slip left in storage: {object_name}")


# =====================================================
# CHECKOUT
# =====================================================

def submit_order(
    session,
    cart,
    customer,
    delivery,
    rental_period,
    payment_method,
    slip: Optional[SlipUpload],
    storage,
    catalog,
    ledger: Optional[InventoryLedger] = None,
    card_enabled: bool = False,
    max_slip_size: int = DEFAULT_MAX_SLIP_SIZE,
    allowed_slip_types: Iterable[str] = DEFAULT_ALLOWED_SLIP_TYPES,
    shipping_fee=DEFAULT_SHIPPING_FEE,
    max_rental_days: int = 365,
    default_country: str = 'SL',
    notes: Optional[str] = None
) -> Order:
    """
    Checkout with proof of payment.

    Order of operations:
        1. payment method and slip checks (nothing written yet)
        2. draft validation and pricing (nothing written yet)
        3. slip upload
        4. order insert + stock reservation in one transaction
        5. the cart is emptied

    If step 4 fails the uploaded slip is deleted again.
    """
    method = validate_payment_method(payment_method, card_enabled)

    if method == PaymentMethod.SLIP:
        slip = validate_slip(slip, max_slip_size, allowed_slip_types)

    draft = build_order_draft(
        cart, customer, delivery, rental_period, catalog,
        shipping_fee=shipping_fee,
        max_rental_days=max_rental_days,
        default_country=default_country
    )

    if method != PaymentMethod.SLIP:
        order = persist_order(session, draft, ledger=ledger, payment_method=method, notes=notes)
        cart.clear()
        return order

    stored = _store_slip(storage, slip)
    try:
        order = persist_order(
            session,
            draft,
            ledger=ledger,
            payment_method=method,
            payment_status=PaymentStatus.VERIFICATION_PENDING,
            slip=stored,
            notes=notes
        )
    except Exception:
        _discard_slip(storage, stored['object_name'])
        raise

    cart.clear()
    logger.info(f"[PAYMENT] Order {order.order_number} awaiting slip verification")
    return order


# =====================================================
# AFTER CHECKOUT
# =====================================================

def _check_accepts_slip(order: Order) -> PaymentStatus:
    if order.payment_status not in SLIP_ACCEPTING_STATUSES:
        raise IllegalTransitionError(
            f'Order {order.order_number} does not accept a payment slip '
            f'(payment {order.payment_status.value})',
            current=order.payment_status.value,
            target=PaymentStatus.VERIFICATION_PENDING.value
        )
    return validate_payment_transition(order, PaymentStatus.VERIFICATION_PENDING)


def submit_slip(
    session,
    order_id: int,
    slip: Optional[SlipUpload],
    storage,
    customer_user_id: Optional[str] = None,
    max_slip_size: int = DEFAULT_MAX_SLIP_SIZE,
    allowed_slip_types: Iterable[str] = DEFAULT_ALLOWED_SLIP_TYPES
) -> Order:
    """
    Attach (or replace after a rejection) the payment slip of an order.

    Allowed while payment is pending or failed; moves it to
    verification_pending. The upload happens between an unlocked
    pre-check and the locked write, and the state is checked again once
    the row is locked. If that second check fails the upload is deleted.
    """
    slip = validate_slip(slip, max_slip_size, allowed_slip_types)

    try:
        query = session.query(Order).filter(Order.id == order_id)
        if customer_user_id is not None:
            query = query.filter(Order.customer_user_id == str(customer_user_id))
        order = query.first()
        if not order:
            raise NotFoundError(f'Order {order_id} not found')
        _check_accepts_slip(order)
        order_number = order.order_number
    except StoreError:
        session.rollback()
        raise
    # End the read transaction before talking to storage
    session.rollback()

    stored = _store_slip(storage, slip, prefix=order_number)
    try:
        order = get_order_for_update(session, order_id, customer_user_id)
        target = _check_accepts_slip(order)
        previous_url = order.slip_url
        order.slip_file_name = stored['file_name']
        order.slip_url = stored['url']
        order.slip_mime_type = stored['mime_type']
        order.slip_size = stored['size']
        order.slip_uploaded_at = stored['uploaded_at']
        order.payment_status = target
        commit_order(session, order)
    except Exception:
        session.rollback()
        _discard_slip(storage, stored['object_name'])
        raise

    if previous_url:
        previous_object = storage.object_name_from_url(previous_url)
        if previous_object:
            _discard_slip(storage, previous_object)

    logger.info(f"[PAYMENT] Slip received for order {order.order_number}")
    return order


def _parse_refund_amount(refund_amount, default: Decimal) -> Decimal:
    if refund_amount is None:
        return default
    if isinstance(refund_amount, bool):
        raise ValidationError('Refund amount must be a number', field='refund_amount')
    try:
        amount = Decimal(str(refund_amount))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f'Refund amount must be a number, got {refund_amount!r}', field='refund_amount')
    if not amount.is_finite():
        raise ValidationError('Refund amount must be a finite number', field='refund_amount')
    return amount


def update_payment_status(
    session,
    order_id: int,
    payment_status,
    refund_amount=None
) -> Order:
    """
    Staff change of payment status through the canonical guard.

    verification_pending is only reachable by uploading a slip.
    Refunds record the amount (defaults to the order total) and the time.
    """
    try:
        order = get_order_for_update(session, order_id)
        target = parse_enum(PaymentStatus, payment_status, 'payment_status')
        if target == PaymentStatus.VERIFICATION_PENDING:
            raise IllegalTransitionError(
                'Payment moves to verification only when a slip is uploaded',
                current=order.payment_status.value, target=target.value
            )
        target = validate_payment_transition(order, target)

        if target == PaymentStatus.REFUNDED:
            amount = _parse_refund_amount(refund_amount, order.total_amount)
            if amount <= 0 or amount > order.total_amount:
                raise ValidationError(
                    f'Refund amount must be between 0 and {order.total_amount}', field='refund_amount'
                )
            order.refund_amount = amount
            order.refunded_at = utcnow()

        previous = order.payment_status
        order.payment_status = target
        commit_order(session, order)
    except StoreError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception(f"[PAYMENT] Unexpected error updating payment of order {order_id}")
        raise

    logger.info(f"[PAYMENT] {order.order_number}: {previous.value} -> {target.value}")
    return order


def verify_payment(session, order_id: int, approved: bool) -> Order:
    """Staff decision on a submitted slip."""
    target = PaymentStatus.COMPLETED if approved else PaymentStatus.FAILED
    return update_payment_status(session, order_id, target)
