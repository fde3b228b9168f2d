from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass names one error kind and carries both the HTTP status and a
    stable error code:
    - unauthorized (401)
    - bad_request (400)
    - not_found (404)
    - conflict (409)
    - payload_too_large (413)
    - internal (500)
    - service_unavailable (503)

    ``message`` and ``detail`` are returned to clients as-is. Store and
    cryptographic failure detail only goes to the server logs.
    """

    status_code: int = 400
    error_code: str = "bad_request"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class BadRequestError(ServiceError):
    """Request is malformed or invalid (400)."""
    status_code = 400
    error_code = "bad_request"


class AuthorizationError(ServiceError):
    """Bad credentials, signature, expiry or revoked token (401)."""
    status_code = 401
    error_code = "unauthorized"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Duplicate unique field, e.g. email (409)."""
    status_code = 409
    error_code = "conflict"


class PayloadTooLargeError(ServiceError):
    """Request body exceeds the configured limit (413)."""
    status_code = 413
    error_code = "payload_too_large"


class InternalError(ServiceError):
    """Unexpected failure in a store or signing step (500)."""
    status_code = 500
    error_code = "internal"

    def __init__(self, message: str = "internal server error", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ServiceUnavailableError(ServiceError):
    """Timeout or backpressure (503)."""
    status_code = 503
    error_code = "service_unavailable"

    def __init__(
        self,
        message: str = "service unavailable: request took too long to process",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)


__all__ = [
    "ServiceError",
    "BadRequestError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "PayloadTooLargeError",
    "InternalError",
    "ServiceUnavailableError",
]
