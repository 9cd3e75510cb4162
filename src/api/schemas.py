# =========================
# FILE: kitchen_cost_engine/src/api/schemas.py
# =========================
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.domain.entities import (
    Category,
    Ingredient,
    IngredientUsage,
    MenuItemRecipe,
    OverheadCosts,
    PriceCalculation,
    PriceHistory,
    PriceSourceKind,
    PriceUpdateSettings,
)
from src.domain.units import Unit


# -------------------------
# Requests
# -------------------------
class IngredientCreateRequest(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., example="Onion")
    category: str = Field(..., example="vegetables")
    market_price: Decimal = Field(..., example="40.00")
    unit: str = Field(..., example="kg")
    price_source: str = "manual"
    auto_update_enabled: bool = False


class IngredientUpdateRequest(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    unit: Optional[str] = None
    is_active: Optional[bool] = None


class PriceRecordRequest(BaseModel):
    price: Decimal = Field(..., example="42.50")
    source: str = "manual"
    recorded_at: Optional[datetime] = None
    market_name: Optional[str] = None
    notes: Optional[str] = None


class ToggleAutoUpdateRequest(BaseModel):
    enabled: Optional[bool] = Field(default=None, description="Omit to flip the current flag")


class BulkRefreshRequest(BaseModel):
    ingredient_ids: Optional[List[str]] = None


class SettingsUpdateRequest(BaseModel):
    auto_update_enabled: Optional[bool] = None
    update_frequency_hours: Optional[int] = None
    min_change_percentage_to_record: Optional[Decimal] = None
    alert_threshold_percentage: Optional[Decimal] = None
    enabled_categories: Optional[List[str]] = None


class UsageRequest(BaseModel):
    ingredient_id: str
    ingredient_name: str = ""
    quantity: Decimal
    unit: str
    unit_price: Decimal = Decimal("0")
    price_unit: Optional[str] = None


class OverheadRequest(BaseModel):
    labour_charge: Optional[Decimal] = None
    rent_allocation: Optional[Decimal] = None
    electricity_charge: Optional[Decimal] = None
    wastage_percentage: Optional[Decimal] = None
    miscellaneous: Optional[Decimal] = None


class RecipeRequest(BaseModel):
    id: Optional[str] = None
    menu_item_id: Optional[str] = None
    menu_item_name: str = Field(..., example="Masala Dosa")
    ingredients: List[UsageRequest] = Field(default_factory=list)
    overhead_costs: Optional[OverheadRequest] = None
    profit_margin: Optional[Decimal] = None
    actual_selling_price: Optional[Decimal] = None
    notes: Optional[str] = None


class RunCycleRequest(BaseModel):
    now: Optional[datetime] = None
    recompute: bool = False


class OfferValidityRequest(BaseModel):
    valid_till: datetime
    now: Optional[datetime] = None
    tz: Optional[str] = None


# -------------------------
# Responses
# -------------------------
class IngredientResponse(BaseModel):
    id: str
    name: str
    category: Category
    market_price: Decimal
    unit: Unit
    price_source: PriceSourceKind
    auto_update_enabled: bool
    last_price_fetch: Optional[datetime] = None
    previous_price: Optional[Decimal] = None
    price_change_percentage: Optional[Decimal] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, i: Ingredient) -> "IngredientResponse":
        return cls(**i.__dict__)


class PriceHistoryResponse(BaseModel):
    id: str
    ingredient_id: str
    ingredient_name: str
    price: Decimal
    unit: Unit
    source: PriceSourceKind
    recorded_at: datetime
    change_percentage: Optional[Decimal] = None
    market_name: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_entity(cls, h: PriceHistory) -> "PriceHistoryResponse":
        return cls(**h.__dict__)


class PriceRecordResponse(BaseModel):
    entry: PriceHistoryResponse
    live_updated: bool
    alert: Optional[Dict[str, Any]] = None
    stale_recipes: List[str] = Field(default_factory=list)


class SettingsResponse(BaseModel):
    id: str
    auto_update_enabled: bool
    update_frequency_hours: int
    min_change_percentage_to_record: Decimal
    alert_threshold_percentage: Decimal
    enabled_categories: List[Category]
    last_update_run: Optional[datetime] = None
    updated_at: datetime

    @classmethod
    def from_entity(cls, s: PriceUpdateSettings) -> "SettingsResponse":
        return cls(
            id=s.id,
            auto_update_enabled=s.auto_update_enabled,
            update_frequency_hours=s.update_frequency_hours,
            min_change_percentage_to_record=s.min_change_percentage_to_record,
            alert_threshold_percentage=s.alert_threshold_percentage,
            enabled_categories=sorted(s.enabled_categories, key=lambda c: c.value),
            last_update_run=s.last_update_run,
            updated_at=s.updated_at,
        )


class UsageResponse(BaseModel):
    ingredient_id: str
    ingredient_name: str
    quantity: Decimal
    unit: Unit
    unit_price: Decimal
    price_unit: Optional[Unit] = None
    total_cost: Decimal

    @classmethod
    def from_entity(cls, u: IngredientUsage) -> "UsageResponse":
        return cls(**u.__dict__)


class OverheadResponse(BaseModel):
    labour_charge: Decimal
    rent_allocation: Decimal
    electricity_charge: Decimal
    wastage_percentage: Decimal
    miscellaneous: Decimal

    @classmethod
    def from_entity(cls, o: OverheadCosts) -> "OverheadResponse":
        return cls(**o.__dict__)


class RecipeResponse(BaseModel):
    id: str
    menu_item_id: Optional[str] = None
    menu_item_name: str
    ingredients: List[UsageResponse]
    overhead_costs: OverheadResponse
    total_ingredient_cost: Decimal
    total_overhead_cost: Decimal
    total_making_cost: Decimal
    profit_margin: Decimal
    suggested_selling_price: Decimal
    actual_selling_price: Optional[Decimal] = None
    notes: Optional[str] = None
    stale: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, r: MenuItemRecipe) -> "RecipeResponse":
        data = dict(r.__dict__)
        data["ingredients"] = [UsageResponse.from_entity(u) for u in r.ingredients]
        data["overhead_costs"] = OverheadResponse.from_entity(r.overhead_costs)
        return cls(**data)


class CalculationResponse(BaseModel):
    id: str
    recipe_id: str
    recipe_name: str
    calculated_at: datetime
    ingredients: List[UsageResponse]
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

    @classmethod
    def from_entity(cls, c: PriceCalculation) -> "CalculationResponse":
        data = dict(c.breakdown.__dict__)
        data["ingredients"] = [UsageResponse.from_entity(u) for u in c.breakdown.ingredients]
        return cls(id=c.id, recipe_id=c.recipe_id, recipe_name=c.recipe_name, calculated_at=c.calculated_at, **data)


class MakingCostResponse(BaseModel):
    menu_item_name: str
    making_cost: Decimal
    selling_price: Decimal
    actual_selling_price: Optional[Decimal] = None
    profit_margin: Decimal
    stale: bool


class OfferValidityResponse(BaseModel):
    days_left: int
    label: str
