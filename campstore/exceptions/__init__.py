"""Custom exceptions for the Camp Store order service."""


class StoreError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error'] = type(self).__name__
        return rv


class ValidationError(StoreError):
    """Malformed or incomplete input. Never partially applied."""
    def __init__(self, message, field=None, status_code=400):
        payload = {'field': field} if field else None
        super().__init__(message, status_code, payload)
        self.field = field


class InvalidQuantityError(ValidationError):
    """Raised when a quantity or a number of rental days is below 1."""
    def __init__(self, message="Quantity must be at least 1", field='quantity'):
        super().__init__(message, field=field)


class NotFoundError(StoreError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InsufficientStockError(StoreError):
    """Raised when a reservation cannot be satisfied."""
    def __init__(self, product_name, required, available):
        message = (
            f'"{product_name}" is unavailable: requested {int(required)}, '
            f'available {int(available)}'
        )
        super().__init__(message, 409, {
            'product': product_name,
            'requested': int(required),
            'available': int(available)
        })
        self.product_name = product_name
        self.required = required
        self.available = available


class IllegalTransitionError(StoreError):
    """Raised when a state change violates the order lifecycle guards."""
    def __init__(self, message, current=None, target=None):
        payload = {}
        if current is not None:
            payload['current'] = current
        if target is not None:
            payload['target'] = target
        super().__init__(message, 409, payload or None)


class UploadRejectedError(StoreError):
    """Raised when a proof-of-payment file fails size or type checks."""
    def __init__(self, message, status_code=400):
        super().__init__(message, status_code)
