"""Error types raised by services and rendered by the API layer.

Route-level guards use ``HTTPException`` directly. Services raise
``ServixingError`` subclasses so they stay usable outside a request; the
handler registered in ``servixing.main`` turns them into
``{"detail": ..., "code": ...}`` responses.
"""


class ServixingError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(ServixingError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(ServixingError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AuthorizationError(ServixingError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(ServixingError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class PaymentStateError(ServixingError):
    status_code = 409
    code = "PAYMENT_STATE_CONFLICT"


class RateLimitError(ServixingError):
    status_code = 429
    code = "RATE_LIMIT"

    def __init__(self, message: str = "Too many attempts"):
        super().__init__(message)


class ExternalServiceError(ServixingError):
    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class WebhookAnomaly(Exception):
    """A webhook delivery that cannot be applied.

    Never leaves the reconciliation service: it is logged, recorded in the
    audit trail and the delivery is still acknowledged.
    """

    kind = "anomaly"

    def __init__(self, message: str, reference: str | None = None, **details):
        super().__init__(message)
        self.reference = reference
        self.details = details


class SignatureInvalid(WebhookAnomaly):
    kind = "signature_invalid"


class MalformedPayload(WebhookAnomaly):
    kind = "malformed_payload"


class UnknownReference(WebhookAnomaly):
    kind = "unknown_reference"


class InvalidTransition(WebhookAnomaly):
    kind = "invalid_transition"


class PersistenceFailure(WebhookAnomaly):
    kind = "persistence_failure"
