"""Amount helpers.

Amounts are integer cents. Stored amounts are unsigned magnitudes and the
direction travels separately (income or expense); signed values only exist
at the edges, via ``signed_cents``.
"""

from errors import InvalidAmount


def require_cents(value: object) -> int:
    """Reject anything that is not a plain integer number of cents."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"Amount must be whole cents, got {value!r}")
    return value


def require_positive(value: object) -> int:
    cents = require_cents(value)
    if cents <= 0:
        raise InvalidAmount(f"Amount must be greater than zero, got {cents}")
    return cents


def require_non_negative(value: object) -> int:
    cents = require_cents(value)
    if cents < 0:
        raise InvalidAmount(f"Amount cannot be negative, got {cents}")
    return cents


def signed_cents(amount_cents: int, is_income: bool) -> int:
    return amount_cents if is_income else -amount_cents
