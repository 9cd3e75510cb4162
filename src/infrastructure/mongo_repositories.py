# kitchen_cost_engine/src/infrastructure/mongo_repositories.py
from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional
import logging
from bson.decimal128 import Decimal128
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection
from src.domain.entities import (
    Category,
    CostBreakdown,
    Ingredient,
    IngredientUsage,
    MenuItemRecipe,
    OverheadCosts,
    PriceCalculation,
    PriceHistory,
    PriceSourceKind,
    PriceUpdateSettings,
)
from src.domain.repositories import CalculationRepo, IngredientRepo, PriceHistoryRepo, RecipeRepo, SettingsRepo
from src.domain.units import Unit

log = logging.getLogger("infra.mongo_repo")


def _d128(v: Optional[Decimal]) -> Optional[Decimal128]:
    return Decimal128(str(v)) if v is not None else None


def _dec(v: Any) -> Optional[Decimal]:
    if v is None:
        return None
    if isinstance(v, Decimal128):
        return v.to_decimal()
    return Decimal(str(v))


def _utc(v: Optional[datetime]) -> Optional[datetime]:
    # pymongo returns naive UTC datetimes unless tz_aware=True
    if v is None:
        return None
    return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v


# -------------------------
# Document mapping
# -------------------------
def ingredient_to_doc(i: Ingredient) -> Dict[str, Any]:
    return {
        "_id": i.id,
        "name": i.name,
        "category": i.category.value,
        "marketPrice": _d128(i.market_price),
        "unit": i.unit.value,
        "priceSource": i.price_source.value,
        "autoUpdateEnabled": i.auto_update_enabled,
        "lastPriceFetch": i.last_price_fetch,
        "previousPrice": _d128(i.previous_price),
        "priceChangePercentage": _d128(i.price_change_percentage),
        "isActive": i.is_active,
        "createdAt": i.created_at,
        "updatedAt": i.updated_at,
    }


def ingredient_from_doc(doc: Dict[str, Any]) -> Ingredient:
    return Ingredient(
        id=str(doc["_id"]),
        name=(doc.get("name") or "").strip(),
        category=Category(doc.get("category") or Category.OTHERS.value),
        market_price=_dec(doc.get("marketPrice")) or Decimal("0"),
        unit=Unit(doc.get("unit")),
        price_source=PriceSourceKind(doc.get("priceSource") or PriceSourceKind.MANUAL.value),
        auto_update_enabled=bool(doc.get("autoUpdateEnabled", False)),
        last_price_fetch=_utc(doc.get("lastPriceFetch")),
        previous_price=_dec(doc.get("previousPrice")),
        price_change_percentage=_dec(doc.get("priceChangePercentage")),
        is_active=bool(doc.get("isActive", True)),
        created_at=_utc(doc.get("createdAt")) or datetime.now(timezone.utc),
        updated_at=_utc(doc.get("updatedAt")) or datetime.now(timezone.utc),
    )


def history_to_doc(h: PriceHistory) -> Dict[str, Any]:
    return {
        "_id": h.id,
        "ingredientId": h.ingredient_id,
        "ingredientName": h.ingredient_name,
        "price": _d128(h.price),
        "unit": h.unit.value,
        "source": h.source.value,
        "marketName": h.market_name,
        "recordedAt": h.recorded_at,
        "changePercentage": _d128(h.change_percentage),
        "notes": h.notes,
    }


def history_from_doc(doc: Dict[str, Any]) -> PriceHistory:
    return PriceHistory(
        id=str(doc["_id"]),
        ingredient_id=str(doc.get("ingredientId")),
        ingredient_name=doc.get("ingredientName") or "",
        price=_dec(doc.get("price")) or Decimal("0"),
        unit=Unit(doc.get("unit")),
        source=PriceSourceKind(doc.get("source") or PriceSourceKind.MANUAL.value),
        market_name=doc.get("marketName"),
        recorded_at=_utc(doc.get("recordedAt")),
        change_percentage=_dec(doc.get("changePercentage")),
        notes=doc.get("notes"),
    )


def usage_to_doc(u: IngredientUsage) -> Dict[str, Any]:
    return {
        "ingredientId": u.ingredient_id,
        "ingredientName": u.ingredient_name,
        "quantity": _d128(u.quantity),
        "unit": u.unit.value,
        "unitPrice": _d128(u.unit_price),
        "priceUnit": u.price_unit.value if u.price_unit else None,
        "totalCost": _d128(u.total_cost),
    }


def usage_from_doc(doc: Dict[str, Any]) -> IngredientUsage:
    return IngredientUsage(
        ingredient_id=str(doc.get("ingredientId")),
        ingredient_name=doc.get("ingredientName") or "",
        quantity=_dec(doc.get("quantity")) or Decimal("0"),
        unit=Unit(doc.get("unit")),
        unit_price=_dec(doc.get("unitPrice")) or Decimal("0"),
        price_unit=Unit(doc["priceUnit"]) if doc.get("priceUnit") else None,
        total_cost=_dec(doc.get("totalCost")) or Decimal("0"),
    )


def overheads_to_doc(o: OverheadCosts) -> Dict[str, Any]:
    return {
        "labourCharge": _d128(o.labour_charge),
        "rentAllocation": _d128(o.rent_allocation),
        "electricityCharge": _d128(o.electricity_charge),
        "wastagePercentage": _d128(o.wastage_percentage),
        "miscellaneous": _d128(o.miscellaneous),
    }


def overheads_from_doc(doc: Optional[Dict[str, Any]]) -> OverheadCosts:
    if not doc:
        return OverheadCosts()
    d = OverheadCosts()
    return OverheadCosts(
        labour_charge=_dec(doc.get("labourCharge")) if doc.get("labourCharge") is not None else d.labour_charge,
        rent_allocation=_dec(doc.get("rentAllocation")) if doc.get("rentAllocation") is not None else d.rent_allocation,
        electricity_charge=_dec(doc.get("electricityCharge")) if doc.get("electricityCharge") is not None else d.electricity_charge,
        wastage_percentage=_dec(doc.get("wastagePercentage")) if doc.get("wastagePercentage") is not None else d.wastage_percentage,
        miscellaneous=_dec(doc.get("miscellaneous")) if doc.get("miscellaneous") is not None else d.miscellaneous,
    )


def recipe_to_doc(r: MenuItemRecipe) -> Dict[str, Any]:
    return {
        "_id": r.id,
        "menuItemId": r.menu_item_id,
        "menuItemName": r.menu_item_name,
        "menuItemNameLower": r.menu_item_name.strip().lower(),
        "ingredients": [usage_to_doc(u) for u in r.ingredients],
        "ingredientIds": sorted({u.ingredient_id for u in r.ingredients}),
        "overheadCosts": overheads_to_doc(r.overhead_costs),
        "totalIngredientCost": _d128(r.total_ingredient_cost),
        "totalOverheadCost": _d128(r.total_overhead_cost),
        "totalMakingCost": _d128(r.total_making_cost),
        "profitMargin": _d128(r.profit_margin),
        "suggestedSellingPrice": _d128(r.suggested_selling_price),
        "actualSellingPrice": _d128(r.actual_selling_price),
        "notes": r.notes,
        "stale": r.stale,
        "createdAt": r.created_at,
        "updatedAt": r.updated_at,
    }


def recipe_from_doc(doc: Dict[str, Any]) -> MenuItemRecipe:
    return MenuItemRecipe(
        id=str(doc["_id"]),
        menu_item_id=doc.get("menuItemId"),
        menu_item_name=(doc.get("menuItemName") or "").strip(),
        ingredients=[usage_from_doc(u) for u in (doc.get("ingredients") or [])],
        overhead_costs=overheads_from_doc(doc.get("overheadCosts")),
        total_ingredient_cost=_dec(doc.get("totalIngredientCost")) or Decimal("0"),
        total_overhead_cost=_dec(doc.get("totalOverheadCost")) or Decimal("0"),
        total_making_cost=_dec(doc.get("totalMakingCost")) or Decimal("0"),
        profit_margin=_dec(doc.get("profitMargin")) if doc.get("profitMargin") is not None else Decimal("30"),
        suggested_selling_price=_dec(doc.get("suggestedSellingPrice")) or Decimal("0"),
        actual_selling_price=_dec(doc.get("actualSellingPrice")),
        notes=doc.get("notes"),
        stale=bool(doc.get("stale", False)),
        created_at=_utc(doc.get("createdAt")) or datetime.now(timezone.utc),
        updated_at=_utc(doc.get("updatedAt")) or datetime.now(timezone.utc),
    )


def calculation_to_doc(c: PriceCalculation) -> Dict[str, Any]:
    b = c.breakdown
    return {
        "_id": c.id,
        "recipeId": c.recipe_id,
        "recipeName": c.recipe_name,
        "calculatedAt": c.calculated_at,
        "breakdown": {
            "ingredients": [usage_to_doc(u) for u in b.ingredients],
            "ingredientSubtotal": _d128(b.ingredient_subtotal),
            "labour": _d128(b.labour),
            "rent": _d128(b.rent),
            "electricity": _d128(b.electricity),
            "wastage": _d128(b.wastage),
            "miscellaneous": _d128(b.miscellaneous),
            "overheadSubtotal": _d128(b.overhead_subtotal),
            "makingCost": _d128(b.making_cost),
            "profitAmount": _d128(b.profit_amount),
            "profitPercentage": _d128(b.profit_percentage),
            "sellingPrice": _d128(b.selling_price),
        },
    }


def calculation_from_doc(doc: Dict[str, Any]) -> PriceCalculation:
    b = doc.get("breakdown") or {}
    return PriceCalculation(
        id=str(doc["_id"]),
        recipe_id=str(doc.get("recipeId")),
        recipe_name=doc.get("recipeName") or "",
        calculated_at=_utc(doc.get("calculatedAt")),
        breakdown=CostBreakdown(
            ingredients=[usage_from_doc(u) for u in (b.get("ingredients") or [])],
            ingredient_subtotal=_dec(b.get("ingredientSubtotal")),
            labour=_dec(b.get("labour")),
            rent=_dec(b.get("rent")),
            electricity=_dec(b.get("electricity")),
            wastage=_dec(b.get("wastage")),
            miscellaneous=_dec(b.get("miscellaneous")),
            overhead_subtotal=_dec(b.get("overheadSubtotal")),
            making_cost=_dec(b.get("makingCost")),
            profit_amount=_dec(b.get("profitAmount")),
            profit_percentage=_dec(b.get("profitPercentage")),
            selling_price=_dec(b.get("sellingPrice")),
        ),
    )


def settings_to_doc(s: PriceUpdateSettings) -> Dict[str, Any]:
    return {
        "_id": s.id,
        "autoUpdateEnabled": s.auto_update_enabled,
        "updateFrequencyHours": s.update_frequency_hours,
        "minChangePercentageToRecord": _d128(s.min_change_percentage_to_record),
        "alertThresholdPercentage": _d128(s.alert_threshold_percentage),
        "enabledCategories": sorted(c.value for c in s.enabled_categories),
        "lastUpdateRun": s.last_update_run,
        "createdAt": s.created_at,
        "updatedAt": s.updated_at,
    }


def settings_from_doc(doc: Dict[str, Any]) -> PriceUpdateSettings:
    d = PriceUpdateSettings()
    min_change = _dec(doc.get("minChangePercentageToRecord"))
    alert = _dec(doc.get("alertThresholdPercentage"))
    return PriceUpdateSettings(
        id=str(doc["_id"]),
        auto_update_enabled=bool(doc.get("autoUpdateEnabled", d.auto_update_enabled)),
        update_frequency_hours=int(doc.get("updateFrequencyHours") or d.update_frequency_hours),
        min_change_percentage_to_record=min_change if min_change is not None else d.min_change_percentage_to_record,
        alert_threshold_percentage=alert if alert is not None else d.alert_threshold_percentage,
        enabled_categories={Category(c) for c in (doc.get("enabledCategories") or [])},
        last_update_run=_utc(doc.get("lastUpdateRun")),
        created_at=_utc(doc.get("createdAt")) or d.created_at,
        updated_at=_utc(doc.get("updatedAt")) or d.updated_at,
    )


# -------------------------
# Repositories
# -------------------------
class MongoIngredientRepository(IngredientRepo):
    def __init__(self, col: Collection) -> None:
        self._col = col

    def get(self, ingredient_id: str) -> Optional[Ingredient]:
        doc = self._col.find_one({"_id": ingredient_id})
        return ingredient_from_doc(doc) if doc else None

    def save(self, ingredient: Ingredient) -> None:
        doc = ingredient_to_doc(ingredient)
        self._col.replace_one({"_id": ingredient.id}, doc, upsert=True)

    def all(self) -> List[Ingredient]:
        out: List[Ingredient] = []
        for doc in self._col.find({}):
            try:
                out.append(ingredient_from_doc(doc))
            except (KeyError, ValueError):
                log.exception("Invalid ingredient document: %s", doc.get("_id"))
        return out


class MongoPriceHistoryRepository(PriceHistoryRepo):
    """
    Append-only. BSON keeps recordedAt to the millisecond, so records that
    land on the same instant are ordered by a per-ingredient ``seq``.
    Appends for one ingredient are serialized by the ledger's lock.
    """

    ORDER = [("recordedAt", ASCENDING), ("seq", ASCENDING)]
    NEWEST_FIRST = [("recordedAt", DESCENDING), ("seq", DESCENDING)]

    def __init__(self, col: Collection) -> None:
        self._col = col
        self._col.create_index([("ingredientId", ASCENDING), ("recordedAt", ASCENDING), ("seq", ASCENDING)])

    def _next_seq(self, ingredient_id: str) -> int:
        last = self._col.find_one({"ingredientId": ingredient_id}, sort=[("seq", DESCENDING)])
        return int(last.get("seq") or 0) + 1 if last else 1

    def append(self, entry: PriceHistory) -> None:
        doc = history_to_doc(entry)
        doc["seq"] = self._next_seq(entry.ingredient_id)
        self._col.insert_one(doc)

    def latest(self, ingredient_id: str) -> Optional[PriceHistory]:
        doc = self._col.find_one({"ingredientId": ingredient_id}, sort=self.NEWEST_FIRST)
        return history_from_doc(doc) if doc else None

    def iter_range(
        self,
        ingredient_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Iterator[PriceHistory]:
        q: Dict[str, Any] = {"ingredientId": ingredient_id}
        window: Dict[str, Any] = {}
        if start is not None:
            window["$gte"] = start
        if end is not None:
            window["$lte"] = end
        if window:
            q["recordedAt"] = window
        for doc in self._col.find(q).sort(self.ORDER):
            yield history_from_doc(doc)


class MongoRecipeRepository(RecipeRepo):
    def __init__(self, col: Collection) -> None:
        self._col = col
        self._col.create_index("ingredientIds")
        self._col.create_index("menuItemNameLower")

    def get(self, recipe_id: str) -> Optional[MenuItemRecipe]:
        doc = self._col.find_one({"_id": recipe_id})
        return recipe_from_doc(doc) if doc else None

    def save(self, recipe: MenuItemRecipe) -> None:
        self._col.replace_one({"_id": recipe.id}, recipe_to_doc(recipe), upsert=True)

    def delete(self, recipe_id: str) -> bool:
        return self._col.delete_one({"_id": recipe_id}).deleted_count > 0

    def all(self) -> List[MenuItemRecipe]:
        return [recipe_from_doc(doc) for doc in self._col.find({})]

    def by_ingredient(self, ingredient_id: str) -> List[MenuItemRecipe]:
        return [recipe_from_doc(doc) for doc in self._col.find({"ingredientIds": ingredient_id})]

    def by_menu_item_name(self, name: str) -> Optional[MenuItemRecipe]:
        doc = self._col.find_one({"menuItemNameLower": (name or "").strip().lower()})
        return recipe_from_doc(doc) if doc else None


class MongoCalculationRepository(CalculationRepo):
    def __init__(self, col: Collection) -> None:
        self._col = col

    def append(self, calc: PriceCalculation) -> None:
        self._col.insert_one(calculation_to_doc(calc))

    def for_recipe(self, recipe_id: str) -> List[PriceCalculation]:
        return [calculation_from_doc(d) for d in self._col.find({"recipeId": recipe_id}).sort([("calculatedAt", ASCENDING)])]


class MongoSettingsRepository(SettingsRepo):
    def __init__(self, col: Collection, profile_id: str = "default", defaults: Optional[PriceUpdateSettings] = None) -> None:
        self._col = col
        self.profile_id = profile_id
        self._defaults = defaults

    def load(self) -> PriceUpdateSettings:
        doc = self._col.find_one({"_id": self.profile_id})
        if doc:
            return settings_from_doc(doc)
        base = self._defaults or PriceUpdateSettings()
        fresh = PriceUpdateSettings(**{**base.__dict__, "id": self.profile_id})
        # insert-if-absent so concurrent first loads agree on one document
        doc = self._col.find_one_and_update(
            {"_id": self.profile_id},
            {"$setOnInsert": settings_to_doc(fresh)},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return settings_from_doc(doc)

    def save(self, settings: PriceUpdateSettings) -> None:
        settings.id = self.profile_id
        self._col.replace_one({"_id": self.profile_id}, settings_to_doc(settings), upsert=True)
