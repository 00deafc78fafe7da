# exceptions.py
# Error taxonomy for the payment engine. Routers map these to HTTP status codes.


class LoanServeError(Exception):
    """Base class for errors raised by the payment services."""


class ValidationError(LoanServeError, ValueError):
    """Bad caller input: missing identifiers, malformed amounts, unknown channels."""


class LockboxFormatError(ValidationError):
    """Lockbox file does not carry the configured header."""


class WebhookSignatureError(LoanServeError):
    """Webhook body does not match its keyed signature."""


class NotFoundError(LoanServeError):
    pass


class PaymentNotFound(NotFoundError):
    pass


class OriginalPaymentNotFound(NotFoundError):
    """No posted payment matches an NSF/chargeback notice."""


class MatchNotFound(NotFoundError):
    pass


class StatementNotFound(NotFoundError):
    pass


class StorageError(LoanServeError):
    """Artifact could not be written to or read from object storage."""
