"""Validation of coin and cash amounts before they reach the store."""

from __future__ import annotations

import math

from coin_ledger_service.core.exceptions import ServiceError

# Largest value an SQLite INTEGER column holds
MAX_COINS = 2**63 - 1


def require_coin_amount(value: object, field: str) -> int:
    """
    Return ``value`` if it is a whole number of coins in ``1..MAX_COINS``.

    Raises:
        ServiceError: INVALID_AMOUNT otherwise.
    """
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"{field} must be a positive integer",
            400,
            {"field": field},
        )
    if value > MAX_COINS:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"{field} must not exceed {MAX_COINS}",
            400,
            {"field": field, "maximum": MAX_COINS},
        )
    return value


def require_cash_amount(value: object, field: str) -> float:
    """
    Return ``value`` as a float if it is a finite positive number.

    Raises:
        ServiceError: INVALID_AMOUNT for zero, negatives, NaN and infinities.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ServiceError(
            "INVALID_AMOUNT",
            f"{field} must be a positive number",
            400,
            {"field": field},
        )
    try:
        amount = float(value)
    except OverflowError as exc:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"{field} is too large",
            400,
            {"field": field},
        ) from exc
    if not math.isfinite(amount) or amount <= 0:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"{field} must be a positive number",
            400,
            {"field": field},
        )
    return amount
