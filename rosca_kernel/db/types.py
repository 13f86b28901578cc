"""
Module: rosca_kernel.db.types
Responsibility: Money and JSON payload helpers every model and
    service uses, so precision and rounding are identical system-wide.
Architecture position: Kernel > DB.  May be imported by models/, domain/ and
    services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money.  Amounts are Decimal (Numeric(38, 9) columns).
    - round_money() is the only rounding function applied to fees and payouts.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID


MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_money(value: Decimal | int | str | float | None) -> Decimal:
    """Coerce a webhook/config value to Decimal without going through float repr."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to ``decimal_places`` (half-up by default)."""
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def json_safe(value: Any) -> Any:
    """Convert a payload into plain JSON types for JSON columns.

    UUID and Decimal become strings, dates ISO strings, enums their value.
    """
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value
