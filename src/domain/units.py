# kitchen_cost_engine/src/domain/units.py
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Tuple

from src.domain.errors import IncompatibleUnitError, ValidationError
from src.domain.money import to_decimal


class Unit(str, Enum):
    KG = "kg"
    GM = "gm"
    LTR = "ltr"
    ML = "ml"
    PC = "pc"


# unit -> (family, factor into the family's smallest unit)
_UNIT_TABLE: Dict[Unit, Tuple[str, Decimal]] = {
    Unit.KG: ("mass", Decimal(1000)),
    Unit.GM: ("mass", Decimal(1)),
    Unit.LTR: ("volume", Decimal(1000)),
    Unit.ML: ("volume", Decimal(1)),
    Unit.PC: ("count", Decimal(1)),
}

_ALIASES: Dict[str, Unit] = {
    "kg": Unit.KG,
    "kgs": Unit.KG,
    "kilogram": Unit.KG,
    "gm": Unit.GM,
    "g": Unit.GM,
    "gram": Unit.GM,
    "grams": Unit.GM,
    "ltr": Unit.LTR,
    "l": Unit.LTR,
    "litre": Unit.LTR,
    "liter": Unit.LTR,
    "ml": Unit.ML,
    "pc": Unit.PC,
    "pcs": Unit.PC,
    "piece": Unit.PC,
    "pieces": Unit.PC,
}


def parse_unit(value: Any) -> Unit:
    if isinstance(value, Unit):
        return value
    key = str(value or "").strip().lower()
    unit = _ALIASES.get(key)
    if unit is None:
        raise ValidationError(f"Unknown unit: {value!r}")
    return unit


def unit_family(unit: Any) -> str:
    return _UNIT_TABLE[parse_unit(unit)][0]


def normalize(quantity: Any, from_unit: Any, to_base_unit: Any) -> Decimal:
    """Convert ``quantity`` expressed in ``from_unit`` into ``to_base_unit``.

    Only conversions inside one family (mass, volume, count) are allowed.
    Density is unknown, so gm -> ml and similar raise IncompatibleUnitError.
    """
    src = parse_unit(from_unit)
    dst = parse_unit(to_base_unit)
    qty = to_decimal(quantity, "quantity")
    if src == dst:
        return qty

    src_family, src_factor = _UNIT_TABLE[src]
    dst_family, dst_factor = _UNIT_TABLE[dst]
    if src_family != dst_family:
        raise IncompatibleUnitError(src.value, dst.value)
    return qty * src_factor / dst_factor
