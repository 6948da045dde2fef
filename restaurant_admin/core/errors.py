"""
Domain error taxonomy shared by the ledger, order and dashboard services.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer maps it to. Routers never translate these by hand; the exception handler
in ``observability`` renders them.
"""


class ServiceError(Exception):
    code = "service_error"
    status_code = 400

    def __init__(self, message: str, *, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ServiceError):
    """Malformed or out-of-range input. Never retried automatically."""

    code = "validation_error"
    status_code = 422


class InvalidMovement(ValidationError):
    code = "invalid_movement"


class InsufficientStock(InvalidMovement):
    """The movement would drive stock below zero."""

    code = "insufficient_stock"
    status_code = 409

    def __init__(self, message: str, *, available=None, requested=None):
        details = None
        if available is not None and requested is not None:
            details = [{"available": str(available), "requested": str(requested)}]
        super().__init__(message, details=details)
        self.available = available
        self.requested = requested


class InvalidTransition(ServiceError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, message: str, *, current_status: str | None = None, requested_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404


class StoreUnavailable(ServiceError):
    """Persistence failed. Callers may retry with backoff."""

    code = "store_unavailable"
    status_code = 503
