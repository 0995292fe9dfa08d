"""
Input checks shared by the services.

Each check raises ValidationError naming the offending field, so bad
client input is reported as a 400 and never reaches the store.
"""
import json
from typing import Any, Dict, Optional

from .exceptions import ValidationError

# Points, stock and ids live in INTEGER columns
MAX_INT = 2**31 - 1


def is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_positive_int(value, field: str) -> int:
    if not is_int(value) or not 0 < value <= MAX_INT:
        raise ValidationError(f'{field} must be a positive integer no greater than {MAX_INT}', field=field)
    return value


def validate_int_range(value, field: str, minimum: int = -MAX_INT, maximum: int = MAX_INT) -> int:
    if not is_int(value) or not minimum <= value <= maximum:
        raise ValidationError(f'{field} must be an integer between {minimum} and {maximum}', field=field)
    return value


def validate_text(value, field: str, required: bool = False, max_length: int = None) -> Optional[str]:
    """
    Check an optional (or required) string field.

    Returns:
        The value unchanged, or None when it is absent and not required
    """
    if value is None:
        if required:
            raise ValidationError(f'{field} is required', field=field)
        return None

    if not isinstance(value, str):
        raise ValidationError(f'{field} must be a string', field=field)
    if required and not value.strip():
        raise ValidationError(f'{field} is required', field=field)
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f'{field} must be at most {max_length} characters', field=field)
    return value


def validate_metadata(value, field: str = 'metadata') -> Optional[Dict[str, Any]]:
    """Metadata must be a JSON-serializable object."""
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f'{field} must be an object', field=field)
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be JSON-serializable', field=field) from None
    return value
