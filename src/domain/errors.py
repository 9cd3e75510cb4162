# kitchen_cost_engine/src/domain/errors.py
from __future__ import annotations


class CostingError(Exception):
    """Base class for every error raised by the costing engine."""


class ValidationError(CostingError, ValueError):
    """Bad input: non-positive price/quantity, empty recipe, negative percentages."""


class IncompatibleUnitError(CostingError, ValueError):
    def __init__(self, from_unit: str, to_unit: str) -> None:
        self.from_unit = from_unit
        self.to_unit = to_unit
        super().__init__(f"Cannot convert {from_unit} to {to_unit}: different measurement families")


class NotFound(CostingError, LookupError):
    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class SourceFetchError(CostingError):
    """Raised by a price source when no price could be obtained."""

    def __init__(self, ingredient_name: str, reason: str) -> None:
        self.ingredient_name = ingredient_name
        self.reason = reason
        super().__init__(f"Price fetch failed for {ingredient_name}: {reason}")
