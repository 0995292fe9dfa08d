"""
Custom exceptions for rewards ledger business logic.

Business-rule rejections of a redemption are returned as data by the
redemption engine; these exceptions cover everything a caller cannot
simply show to the user and move on from.
"""
from .errors import ErrorCode


class LedgerError(Exception):
    """Base exception for all rewards ledger errors."""

    status_code = 400

    def __init__(self, message: str, code: str = "LEDGER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(LedgerError):
    """Resource not found."""

    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with ID {identifier} not found"
        code = resource.upper().replace(' ', '_')
        super().__init__(message, f"{code}_NOT_FOUND")


class AccountNotFoundError(NotFoundError):
    """Points account not found."""

    def __init__(self, identifier=None):
        super().__init__("Points account", identifier)


class RewardNotFoundError(NotFoundError):
    """Reward not found."""

    def __init__(self, identifier=None):
        super().__init__("Reward", identifier)


class RequestNotFoundError(NotFoundError):
    """Reward request not found."""

    def __init__(self, identifier=None):
        super().__init__("Reward request", identifier)


class RedemptionNotFoundError(NotFoundError):
    """Redemption record not found."""

    def __init__(self, identifier=None):
        super().__init__("Redemption", identifier)


class ValidationError(LedgerError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else ErrorCode.VALIDATION_ERROR.value
        super().__init__(message, code)


class InsufficientStockError(LedgerError):
    """Stock adjustment would leave a negative stock."""

    status_code = 409

    def __init__(self, reward_id, current: int, delta: int):
        self.reward_id = reward_id
        self.current = current
        self.delta = delta
        message = f"Insufficient stock for reward {reward_id}. Current: {current}, Adjustment: {delta}"
        super().__init__(message, ErrorCode.INSUFFICIENT_STOCK.value)


class InvalidStatusTransitionError(LedgerError):
    """Invalid status transition for a resource."""

    status_code = 409

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, ErrorCode.INVALID_STATUS_TRANSITION.value)


class StorageError(LedgerError):
    """
    The store failed to complete a transaction.

    The transaction has been rolled back; nothing it wrote is visible.
    ``retryable`` is set for lock, deadlock and serialization failures,
    where running the whole unit of work again may succeed.
    """

    status_code = 503

    def __init__(self, message: str, original_error: Exception = None, retryable: bool = False):
        self.original_error = original_error
        self.retryable = retryable
        super().__init__(message, ErrorCode.STORAGE_ERROR.value)


class CompensationError(LedgerError):
    """
    An automatic reversal of an approval could not be written.

    The request is left approved without a redemption behind it and
    needs manual administrator attention.
    """

    status_code = 500

    def __init__(self, request_id, reason: str, original_error: Exception = None):
        self.request_id = request_id
        self.reason = reason
        self.original_error = original_error
        message = (
            f"Request {request_id} could not be reversed after a failed redemption "
            f"({reason}); manual intervention required"
        )
        super().__init__(message, ErrorCode.COMPENSATION_FAILED.value)


class AuthorizationError(LedgerError):
    """User not authorized for this operation."""

    status_code = 403

    def __init__(self, message: str = "Not authorized for this operation"):
        super().__init__(message, "AUTHORIZATION_ERROR")
