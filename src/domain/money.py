# kitchen_cost_engine/src/domain/money.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from src.domain.errors import ValidationError

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """Coerce int/float/str/Decimal into Decimal via its string form (0.1 stays 0.1)."""
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number, got {value!r}")
    else:
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"{field} must be a number, got {value!r}") from e
    if not d.is_finite():
        raise ValidationError(f"{field} must be finite, got {value!r}")
    return d


def optional_decimal(value: Any, field: str = "value") -> Optional[Decimal]:
    if value is None:
        return None
    return to_decimal(value, field)


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


# percentages are reported with the same 2 dp half-up rule
round_percent = round_money


def percent_change(old: Decimal, new: Decimal) -> Decimal:
    # callers guarantee old > 0
    return (new - old) / old * HUNDRED
