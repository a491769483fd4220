"""
Error taxonomy shared by services and the HTTP layer.

Every error carries an HTTP status and a machine-readable code; the
exception handlers in app.main turn them into JSON responses.
"""


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed or out-of-range input. Carries every problem found, not just the first."""

    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"

    def __init__(self, message: str | None = None, errors: list[str] | None = None) -> None:
        self.errors = list(errors or [])
        if message is None and self.errors:
            message = f"Validation failed: {', '.join(self.errors)}"
        super().__init__(message)


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Access forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(AppError):
    """Well-formed request that is illegal given the current state."""

    status_code = 409
    code = "CONFLICT"
    default_message = "Conflict"


class CertificateStateError(ConflictError):
    code = "CERTIFICATE_STATE"


class PaymentStateError(ConflictError):
    code = "PAYMENT_STATE"

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        self.current = current
        self.target = target
        super().__init__(message or f"Illegal payment transition: {current} -> {target}")


class SignatureMismatchError(AppError):
    status_code = 401
    code = "INVALID_SIGNATURE"
    default_message = "Invalid webhook signature"


class UpstreamError(AppError):
    """An external dependency failed. `retryable` tells callers whether the outcome is unknown."""

    status_code = 502
    code = "UPSTREAM_ERROR"
    default_message = "Upstream service failed"

    def __init__(
        self,
        message: str | None = None,
        retryable: bool = False,
        upstream_status: int | None = None,
    ) -> None:
        self.retryable = retryable
        self.upstream_status = upstream_status
        super().__init__(message)


class UpstreamTimeoutError(UpstreamError):
    status_code = 504
    code = "UPSTREAM_TIMEOUT"
    default_message = "Upstream service timed out"

    def __init__(self, message: str | None = None, upstream_status: int | None = None) -> None:
        super().__init__(message, retryable=True, upstream_status=upstream_status)


class GatewayError(UpstreamError):
    code = "GATEWAY_ERROR"
    default_message = "Payment gateway request failed"


class GatewayTimeoutError(GatewayError):
    status_code = 504
    code = "GATEWAY_TIMEOUT"
    default_message = "Payment gateway timed out"

    def __init__(self, message: str | None = None, upstream_status: int | None = None) -> None:
        super().__init__(message, retryable=True, upstream_status=upstream_status)


class GatewayUnavailableError(GatewayError):
    """Circuit open: calls are refused locally without reaching the gateway."""

    status_code = 503
    code = "GATEWAY_UNAVAILABLE"
    default_message = "Payment gateway temporarily unavailable"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message, retryable=True)
