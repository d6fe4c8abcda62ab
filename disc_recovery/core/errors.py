from typing import Optional


class RecoveryError(Exception):
    """Base error for the recovery flow. Rendered as {"detail", "code"}."""

    code = "recovery_error"
    status_code = 400
    default_message = "Unable to complete request"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(RecoveryError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Your session has expired. Please sign in again."


class Forbidden(RecoveryError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not part of this recovery"


class InvalidRole(RecoveryError):
    code = "invalid_role"
    status_code = 403
    default_message = "You cannot perform this action"


class InvalidTransition(RecoveryError):
    code = "invalid_transition"
    status_code = 409
    default_message = "This action is no longer available"


class NotFound(RecoveryError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class ValidationFailed(RecoveryError):
    code = "validation_failed"
    status_code = 400
    default_message = "Please check your input and try again"


class PaymentProviderError(RecoveryError):
    code = "payment_provider_error"
    status_code = 502
    default_message = "Unable to start the payment. Please try again."
