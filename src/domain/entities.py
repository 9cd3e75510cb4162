# kitchen_cost_engine/src/domain/entities.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from src.domain.units import Unit


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Category(str, Enum):
    VEGETABLES = "vegetables"
    SPICES = "spices"
    DAIRY = "dairy"
    MEAT = "meat"
    GRAINS = "grains"
    OILS = "oils"
    BEVERAGES = "beverages"
    OTHERS = "others"


class PriceSourceKind(str, Enum):
    MANUAL = "manual"
    AGMARKNET = "agmarknet"
    SCRAPED = "scraped"
    API = "api"
    SUPPLIER = "supplier"


@dataclass
class Ingredient:
    id: str
    name: str
    category: Category
    market_price: Decimal
    unit: Unit
    price_source: PriceSourceKind = PriceSourceKind.MANUAL
    auto_update_enabled: bool = False
    last_price_fetch: Optional[datetime] = None
    previous_price: Optional[Decimal] = None
    price_change_percentage: Optional[Decimal] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PriceHistory:
    ingredient_id: str
    ingredient_name: str
    price: Decimal
    unit: Unit
    source: PriceSourceKind
    recorded_at: datetime
    change_percentage: Optional[Decimal] = None
    market_name: Optional[str] = None
    notes: Optional[str] = None
    id: str = field(default_factory=new_id)


@dataclass
class PriceUpdateSettings:
    id: str = "default"
    auto_update_enabled: bool = False
    update_frequency_hours: int = 24
    min_change_percentage_to_record: Decimal = Decimal("2.0")
    alert_threshold_percentage: Decimal = Decimal("15.0")
    enabled_categories: Set[Category] = field(default_factory=set)
    last_update_run: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class IngredientUsage:
    ingredient_id: str
    ingredient_name: str
    quantity: Decimal
    unit: Unit
    unit_price: Decimal
    # unit the frozen unit_price is quoted in (the ingredient's base unit at snapshot time)
    price_unit: Optional[Unit] = None
    total_cost: Decimal = Decimal("0")

    @property
    def base_unit(self) -> Unit:
        return self.price_unit or self.unit


@dataclass(frozen=True)
class OverheadCosts:
    labour_charge: Decimal = Decimal("10")
    rent_allocation: Decimal = Decimal("5")
    electricity_charge: Decimal = Decimal("3")
    wastage_percentage: Decimal = Decimal("5")
    miscellaneous: Decimal = Decimal("2")


@dataclass(frozen=True)
class CostBreakdown:
    ingredients: List[IngredientUsage]
    ingredient_subtotal: Decimal
    labour: Decimal
    rent: Decimal
    electricity: Decimal
    wastage: Decimal
    miscellaneous: Decimal
    overhead_subtotal: Decimal
    making_cost: Decimal
    profit_amount: Decimal
    profit_percentage: Decimal
    selling_price: Decimal


@dataclass(frozen=True)
class PriceCalculation:
    recipe_id: str
    recipe_name: str
    breakdown: CostBreakdown
    calculated_at: datetime
    id: str = field(default_factory=new_id)


@dataclass
class MenuItemRecipe:
    id: str
    menu_item_name: str
    ingredients: List[IngredientUsage] = field(default_factory=list)
    overhead_costs: OverheadCosts = field(default_factory=OverheadCosts)
    menu_item_id: Optional[str] = None
    total_ingredient_cost: Decimal = Decimal("0")
    total_overhead_cost: Decimal = Decimal("0")
    total_making_cost: Decimal = Decimal("0")
    profit_margin: Decimal = Decimal("30")
    suggested_selling_price: Decimal = Decimal("0")
    actual_selling_price: Optional[Decimal] = None
    notes: Optional[str] = None
    stale: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def references(self, ingredient_id: str) -> bool:
        return any(u.ingredient_id == ingredient_id for u in self.ingredients)

    def apply_calculation(self, calc: PriceCalculation, at: Optional[datetime] = None) -> None:
        """Write every derived total from one receipt; actual_selling_price is left alone."""
        b = calc.breakdown
        self.ingredients = list(b.ingredients)
        self.total_ingredient_cost = b.ingredient_subtotal
        self.total_overhead_cost = b.overhead_subtotal
        self.total_making_cost = b.making_cost
        self.suggested_selling_price = b.selling_price
        self.stale = False
        self.updated_at = at or calc.calculated_at


@dataclass(frozen=True)
class PriceObservation:
    ingredient_id: str
    price: Decimal
    source: PriceSourceKind
    # None means "stamp when recorded"
    recorded_at: Optional[datetime] = None
    market_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PriceAlert:
    ingredient_id: str
    ingredient_name: str
    old_price: Decimal
    new_price: Decimal
    change_percentage: Decimal
    recorded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ingredient_id": self.ingredient_id,
            "ingredient_name": self.ingredient_name,
            "old_price": self.old_price,
            "new_price": self.new_price,
            "change_percentage": self.change_percentage,
            "recorded_at": self.recorded_at,
        }


@dataclass(frozen=True)
class Offer:
    id: str
    title: str
    code: str
    valid_till: datetime
    valid_from: Optional[datetime] = None
    is_active: bool = True


