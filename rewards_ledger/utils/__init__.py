"""
Utility modules for the rewards ledger.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    bad_request,
    unauthorized,
    forbidden,
    not_found,
    internal_error
)
from .exceptions import (
    LedgerError,
    NotFoundError,
    AccountNotFoundError,
    RewardNotFoundError,
    RequestNotFoundError,
    RedemptionNotFoundError,
    ValidationError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    StorageError,
    CompensationError,
    AuthorizationError
)
