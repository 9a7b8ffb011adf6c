"""Custom exceptions for the estimates service."""


class EstimateError(Exception):
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
        return rv


class ValidationError(EstimateError):
    """Raised for malformed or out-of-range input, before any state is touched."""
    def __init__(self, message, field=None, payload=None):
        payload = dict(payload or ())
        if field:
            payload['field'] = field
        super().__init__(message, 400, payload)
        self.field = field


class InvalidStateError(EstimateError):
    """Raised when an action is not allowed for the estimate's current status."""
    def __init__(self, current_status, action, message=None):
        status_str = current_status.value if hasattr(current_status, 'value') else str(current_status)
        if message is None:
            message = f"Cannot {action} an estimate in status {status_str}"
        super().__init__(message, 409, {'current_status': status_str, 'action': action})
        self.current_status = status_str
        self.action = action


class NotFoundError(EstimateError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class ConcurrentModificationError(EstimateError):
    """Raised when another writer changed the estimate between read and commit."""
    def __init__(self, message="The estimate was modified by another request. Reload and try again."):
        super().__init__(message, 409)


class NegativeTotalWarning(UserWarning):
    """Non-fatal flag: total before VAT came out negative. Attached to results, never raised."""
    def __init__(self, total_before_vat):
        super().__init__(f"Total before VAT is negative ({total_before_vat})")
        self.total_before_vat = total_before_vat
