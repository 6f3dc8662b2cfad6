"""Error kinds raised by the settlement engine."""


class SettlementError(Exception):
    """Base class for every expected failure of a core operation."""

    kind = "SettlementError"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(SettlementError):
    """Malformed or missing input; fixable by the client."""
    kind = "ValidationError"


class InvalidInput(ValidationError):
    """Numeric input outside the range the commission policy accepts."""
    kind = "InvalidInput"


class NotFound(SettlementError):
    kind = "NotFound"


class Forbidden(SettlementError):
    """Authenticated, but not allowed to act on this record."""
    kind = "Forbidden"


class InvalidTransition(SettlementError):
    """Current status does not permit the requested transition."""
    kind = "InvalidTransition"


class SignatureMismatch(SettlementError):
    kind = "SignatureMismatch"


class GatewayError(SettlementError):
    """The payment gateway failed, timed out, or refused the request."""
    kind = "GatewayError"


class AmountExceeded(SettlementError):
    kind = "AmountExceeded"


class AlreadyProcessed(SettlementError):
    kind = "AlreadyProcessed"


class NotCancelable(SettlementError):
    """Refund requested for an appointment that is not canceled."""
    kind = "NotCancelable"


class NoPayment(SettlementError):
    kind = "NoPayment"


class BankDetailsMissing(SettlementError):
    kind = "BankDetailsMissing"


class OutOfRange(SettlementError):
    kind = "OutOfRange"


class ConfigurationError(SettlementError):
    """Missing credentials or settings; fixable by the operator."""
    kind = "ConfigurationError"


class StorageError(SettlementError):
    """A generated document could not be written to storage."""
    kind = "StorageError"
