# =========================
# FILE: kitchen_cost_engine/src/application/usecases.py
# =========================
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import anyio

from src.application.cost_calculator import RecipeCostingService, compute_cost
from src.application.price_ledger import PriceLedger, PriceRecordResult, parse_source
from src.application.price_policy import CheckOutcome, CycleReport, PricePolicyEngine
from src.application.price_trends import PriceTrend, summarize
from src.domain.entities import (
    Category,
    Ingredient,
    IngredientUsage,
    MenuItemRecipe,
    OverheadCosts,
    PriceCalculation,
    PriceHistory,
    PriceUpdateSettings,
    new_id,
    utcnow,
)
from src.domain.errors import NotFound, ValidationError
from src.domain.money import optional_decimal, to_decimal
from src.domain.repositories import IngredientRepo, RecipeRepo, SettingsRepo
from src.domain.units import parse_unit


def parse_category(value: Any) -> Category:
    try:
        return Category(str(value or "").strip().lower())
    except ValueError as e:
        raise ValidationError(f"Unknown category: {value!r}") from e


def build_usage(raw: Dict[str, Any]) -> IngredientUsage:
    unit = parse_unit(raw.get("unit"))
    price_unit = raw.get("price_unit")
    return IngredientUsage(
        ingredient_id=str(raw.get("ingredient_id") or ""),
        ingredient_name=str(raw.get("ingredient_name") or "").strip(),
        quantity=to_decimal(raw.get("quantity"), "quantity"),
        unit=unit,
        unit_price=to_decimal(raw.get("unit_price", 0), "unit_price"),
        price_unit=parse_unit(price_unit) if price_unit else None,
    )


def build_overheads(raw: Optional[Dict[str, Any]]) -> OverheadCosts:
    raw = raw or {}
    defaults = OverheadCosts()
    return OverheadCosts(
        **{
            name: to_decimal(raw[name], name) if raw.get(name) is not None else getattr(defaults, name)
            for name in ("labour_charge", "rent_allocation", "electricity_charge", "wastage_percentage", "miscellaneous")
        }
    )


def build_recipe(raw: Dict[str, Any], recipe_id: Optional[str] = None) -> MenuItemRecipe:
    name = str(raw.get("menu_item_name") or "").strip()
    if not name:
        raise ValidationError("menu_item_name is required")
    margin = raw.get("profit_margin")
    return MenuItemRecipe(
        id=recipe_id or raw.get("id") or new_id(),
        menu_item_id=raw.get("menu_item_id"),
        menu_item_name=name,
        ingredients=[build_usage(u) for u in (raw.get("ingredients") or [])],
        overhead_costs=build_overheads(raw.get("overhead_costs")),
        profit_margin=to_decimal(margin, "profit_margin") if margin is not None else Decimal("30"),
        actual_selling_price=optional_decimal(raw.get("actual_selling_price"), "actual_selling_price"),
        notes=raw.get("notes"),
    )


# -------------------------
# Ingredients
# -------------------------
@dataclass(frozen=True)
class CreateIngredient:
    ingredients: IngredientRepo
    ledger: PriceLedger

    def __call__(self, raw: Dict[str, Any], now: Optional[datetime] = None) -> Ingredient:
        name = str(raw.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required")
        price = to_decimal(raw.get("market_price"), "market_price")
        if price <= 0:
            raise ValidationError(f"market_price must be > 0, got {price}")
        ingredient_id = raw.get("id") or new_id()
        # unit and price changes go through UpdateIngredient / the ledger
        if self.ingredients.get(ingredient_id) is not None:
            raise ValidationError(f"Ingredient {ingredient_id!r} already exists")
        ing = Ingredient(
            id=ingredient_id,
            name=name,
            category=parse_category(raw.get("category")),
            market_price=price,
            unit=parse_unit(raw.get("unit")),
            price_source=parse_source(raw.get("price_source")),
            auto_update_enabled=bool(raw.get("auto_update_enabled", False)),
        )
        self.ingredients.save(ing)
        # the opening price is the first history record
        self.ledger.record_price(ing.id, price, ing.price_source, now, notes="initial price")
        return self.ingredients.get(ing.id) or ing


@dataclass(frozen=True)
class GetIngredient:
    ingredients: IngredientRepo

    def __call__(self, ingredient_id: str) -> Ingredient:
        ing = self.ingredients.get(ingredient_id)
        if ing is None:
            raise NotFound("Ingredient", ingredient_id)
        return ing


@dataclass(frozen=True)
class ListIngredients:
    ingredients: IngredientRepo

    def __call__(self, category: Optional[str] = None, include_inactive: bool = False) -> List[Ingredient]:
        wanted = parse_category(category) if category else None
        out = [
            i
            for i in self.ingredients.all()
            if (include_inactive or i.is_active) and (wanted is None or i.category == wanted)
        ]
        return sorted(out, key=lambda i: i.name.lower())


@dataclass(frozen=True)
class DeactivateIngredient:
    """Ingredients are never removed: their price history stays addressable."""

    ingredients: IngredientRepo
    recipes: RecipeRepo

    def __call__(self, ingredient_id: str) -> Ingredient:
        ing = GetIngredient(self.ingredients)(ingredient_id)
        used_by = self.recipes.by_ingredient(ing.id)
        if used_by:
            names = ", ".join(sorted(r.menu_item_name for r in used_by))
            raise ValidationError(f"Cannot delete {ing.name}: used by {names}")
        ing.is_active = False
        ing.updated_at = utcnow()
        self.ingredients.save(ing)
        return ing


@dataclass(frozen=True)
class UpdateIngredient:
    """Edit descriptive fields; unit changes are refused once recipes reference the ingredient."""

    ingredients: IngredientRepo
    recipes: RecipeRepo

    def __call__(self, ingredient_id: str, raw: Dict[str, Any]) -> Ingredient:
        ing = GetIngredient(self.ingredients)(ingredient_id)
        if raw.get("unit") is not None:
            unit = parse_unit(raw["unit"])
            if unit != ing.unit and self.recipes.by_ingredient(ing.id):
                raise ValidationError(
                    f"Cannot change unit of {ing.name} from {ing.unit.value} to {unit.value}: referenced by recipes"
                )
            ing.unit = unit
        if raw.get("name") is not None:
            name = str(raw["name"]).strip()
            if not name:
                raise ValidationError("name must not be empty")
            ing.name = name
        if raw.get("category") is not None:
            ing.category = parse_category(raw["category"])
        if raw.get("is_active") is not None:
            ing.is_active = bool(raw["is_active"])
        ing.updated_at = utcnow()
        self.ingredients.save(ing)
        return ing


@dataclass(frozen=True)
class ToggleAutoUpdate:
    ingredients: IngredientRepo

    def __call__(self, ingredient_id: str, enabled: Optional[bool] = None) -> Ingredient:
        ing = GetIngredient(self.ingredients)(ingredient_id)
        ing.auto_update_enabled = (not ing.auto_update_enabled) if enabled is None else bool(enabled)
        ing.updated_at = utcnow()
        self.ingredients.save(ing)
        return ing


# -------------------------
# Price ledger
# -------------------------
@dataclass(frozen=True)
class RecordManualPrice:
    ledger: PriceLedger
    costing: RecipeCostingService

    def __call__(
        self,
        ingredient_id: str,
        price: Any,
        source: Any = "manual",
        recorded_at: Optional[datetime] = None,
        market_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        result: PriceRecordResult = self.ledger.record_price(
            ingredient_id, price, source, recorded_at, market_name=market_name, notes=notes
        )
        stale = self.costing.mark_stale_for_ingredient(ingredient_id) if result.live_updated else []
        return {"result": result, "stale_recipes": stale}


@dataclass(frozen=True)
class GetPriceHistory:
    ledger: PriceLedger

    def __call__(
        self,
        ingredient_id: str,
        days: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> List[PriceHistory]:
        if self.ledger.ingredients.get(ingredient_id) is None:
            raise NotFound("Ingredient", ingredient_id)
        if days is not None:
            return self.ledger.history_for_days(ingredient_id, days, now).to_list()
        return self.ledger.get_history(ingredient_id, start, end).to_list()


@dataclass(frozen=True)
class GetPriceTrends:
    ledger: PriceLedger

    def __call__(self, ingredient_id: str, days: int = 30, now: Optional[datetime] = None) -> Optional[PriceTrend]:
        if self.ledger.ingredients.get(ingredient_id) is None:
            raise NotFound("Ingredient", ingredient_id)
        view = self.ledger.history_for_days(ingredient_id, days, now)
        return summarize(view, self.ledger.settings.alert_threshold_percentage)


# -------------------------
# Policy engine
# -------------------------
@dataclass(frozen=True)
class RefreshIngredientPrice:
    engine: PricePolicyEngine

    async def __call__(self, ingredient_id: str, now: Optional[datetime] = None) -> CheckOutcome:
        return await self.engine.refresh(ingredient_id, now)


@dataclass(frozen=True)
class BulkRefreshPrices:
    engine: PricePolicyEngine

    async def __call__(self, ingredient_ids: Optional[Iterable[str]] = None, now: Optional[datetime] = None) -> List[CheckOutcome]:
        """Refresh the given ids, or every auto-update-enabled active ingredient."""
        if ingredient_ids is None:
            candidates = await anyio.to_thread.run_sync(self.engine.ingredients.all)
            targets = [i.id for i in candidates if i.auto_update_enabled and i.is_active]
        else:
            targets = list(dict.fromkeys(ingredient_ids))
        return [await self.engine.refresh(i, now) for i in targets]


@dataclass(frozen=True)
class RunPriceUpdateCycle:
    engine: PricePolicyEngine
    costing: RecipeCostingService

    async def __call__(self, now: Optional[datetime] = None, recompute: bool = False) -> Dict[str, Any]:
        report: CycleReport = await self.engine.run_cycle(now)
        out = report.to_dict()
        if recompute:
            out["recompute"] = await anyio.to_thread.run_sync(self.costing.recompute_stale, now)
        return out


# -------------------------
# Settings
# -------------------------
@dataclass(frozen=True)
class GetPriceSettings:
    settings: SettingsRepo

    def __call__(self) -> PriceUpdateSettings:
        return self.settings.load()


@dataclass(frozen=True)
class UpdatePriceSettings:
    settings: SettingsRepo

    def __call__(self, raw: Dict[str, Any]) -> PriceUpdateSettings:
        s = self.settings.load()
        if raw.get("auto_update_enabled") is not None:
            s.auto_update_enabled = bool(raw["auto_update_enabled"])
        if raw.get("update_frequency_hours") is not None:
            hours = int(raw["update_frequency_hours"])
            if hours <= 0:
                raise ValidationError(f"update_frequency_hours must be > 0, got {hours}")
            s.update_frequency_hours = hours
        for name in ("min_change_percentage_to_record", "alert_threshold_percentage"):
            if raw.get(name) is not None:
                value = to_decimal(raw[name], name)
                if value < 0:
                    raise ValidationError(f"{name} must be >= 0, got {value}")
                setattr(s, name, value)
        if raw.get("enabled_categories") is not None:
            s.enabled_categories = {parse_category(c) for c in raw["enabled_categories"]}
        s.updated_at = utcnow()
        self.settings.save(s)
        return s


# -------------------------
# Recipes
# -------------------------
@dataclass(frozen=True)
class CreateRecipe:
    costing: RecipeCostingService

    def __call__(self, raw: Dict[str, Any], now: Optional[datetime] = None) -> MenuItemRecipe:
        recipe = build_recipe(raw)
        self.costing.save_new(recipe, refresh_prices=True, now=now)
        return recipe


@dataclass(frozen=True)
class GetRecipe:
    recipes: RecipeRepo

    def __call__(self, recipe_id: str) -> MenuItemRecipe:
        recipe = self.recipes.get(recipe_id)
        if recipe is None:
            raise NotFound("Recipe", recipe_id)
        return recipe


@dataclass(frozen=True)
class ListRecipes:
    recipes: RecipeRepo

    def __call__(self) -> List[MenuItemRecipe]:
        return sorted(self.recipes.all(), key=lambda r: r.menu_item_name.lower())


@dataclass(frozen=True)
class GetRecipeByMenuItem:
    recipes: RecipeRepo

    def __call__(self, menu_item_name: str) -> MenuItemRecipe:
        recipe = self.recipes.by_menu_item_name(menu_item_name)
        if recipe is None:
            raise NotFound("Recipe", menu_item_name)
        return recipe


@dataclass(frozen=True)
class UpdateRecipe:
    """
    Replace usages, overheads and margin, then recompute every derived total
    from one fresh receipt. actual_selling_price is kept unless the caller
    sends a new one.
    """

    recipes: RecipeRepo
    costing: RecipeCostingService

    def __call__(self, recipe_id: str, raw: Dict[str, Any], now: Optional[datetime] = None) -> MenuItemRecipe:
        current = GetRecipe(self.recipes)(recipe_id)
        recipe = build_recipe(raw, recipe_id=recipe_id)
        if recipe.actual_selling_price is None:
            recipe.actual_selling_price = current.actual_selling_price
        recipe.created_at = current.created_at
        self.costing.save_new(recipe, refresh_prices=True, now=now)
        return recipe


@dataclass(frozen=True)
class DeleteRecipe:
    recipes: RecipeRepo

    def __call__(self, recipe_id: str) -> None:
        if not self.recipes.delete(recipe_id):
            raise NotFound("Recipe", recipe_id)


@dataclass(frozen=True)
class CalculateRecipePrice:
    """What-if costing of a posted recipe; nothing is persisted."""

    def __call__(self, raw: Dict[str, Any], now: Optional[datetime] = None) -> PriceCalculation:
        return compute_cost(build_recipe(raw, recipe_id=raw.get("id") or ""), now)


@dataclass(frozen=True)
class RecalculateRecipe:
    costing: RecipeCostingService

    def __call__(self, recipe_id: str, refresh_prices: bool = True, now: Optional[datetime] = None) -> PriceCalculation:
        return self.costing.recalculate(recipe_id, refresh_prices=refresh_prices, now=now)


@dataclass(frozen=True)
class GetMakingCost:
    costing: RecipeCostingService

    def __call__(self, menu_item_name: str) -> Dict[str, Any]:
        return self.costing.making_cost_for(menu_item_name)


# -------------------------
# Container for routes.py (app.state.usecases)
# -------------------------
@dataclass(frozen=True)
class UseCases:
    create_ingredient: CreateIngredient
    get_ingredient: GetIngredient
    list_ingredients: ListIngredients
    update_ingredient: UpdateIngredient
    deactivate_ingredient: DeactivateIngredient
    toggle_auto_update: ToggleAutoUpdate
    record_manual_price: RecordManualPrice
    get_price_history: GetPriceHistory
    get_price_trends: GetPriceTrends
    refresh_ingredient_price: RefreshIngredientPrice
    bulk_refresh_prices: BulkRefreshPrices
    run_price_update_cycle: RunPriceUpdateCycle
    get_price_settings: GetPriceSettings
    update_price_settings: UpdatePriceSettings
    create_recipe: CreateRecipe
    get_recipe: GetRecipe
    list_recipes: ListRecipes
    get_recipe_by_menu_item: GetRecipeByMenuItem
    update_recipe: UpdateRecipe
    delete_recipe: DeleteRecipe
    calculate_recipe_price: CalculateRecipePrice
    recalculate_recipe: RecalculateRecipe
    get_making_cost: GetMakingCost

    @classmethod
    def wire(
        cls,
        ingredients: IngredientRepo,
        recipes: RecipeRepo,
        settings: SettingsRepo,
        ledger: PriceLedger,
        costing: RecipeCostingService,
        engine: PricePolicyEngine,
    ) -> "UseCases":
        return cls(
            create_ingredient=CreateIngredient(ingredients, ledger),
            get_ingredient=GetIngredient(ingredients),
            list_ingredients=ListIngredients(ingredients),
            update_ingredient=UpdateIngredient(ingredients, recipes),
            deactivate_ingredient=DeactivateIngredient(ingredients, recipes),
            toggle_auto_update=ToggleAutoUpdate(ingredients),
            record_manual_price=RecordManualPrice(ledger, costing),
            get_price_history=GetPriceHistory(ledger),
            get_price_trends=GetPriceTrends(ledger),
            refresh_ingredient_price=RefreshIngredientPrice(engine),
            bulk_refresh_prices=BulkRefreshPrices(engine),
            run_price_update_cycle=RunPriceUpdateCycle(engine, costing),
            get_price_settings=GetPriceSettings(settings),
            update_price_settings=UpdatePriceSettings(settings),
            create_recipe=CreateRecipe(costing),
            get_recipe=GetRecipe(recipes),
            list_recipes=ListRecipes(recipes),
            get_recipe_by_menu_item=GetRecipeByMenuItem(recipes),
            update_recipe=UpdateRecipe(recipes, costing),
            delete_recipe=DeleteRecipe(recipes),
            calculate_recipe_price=CalculateRecipePrice(),
            recalculate_recipe=RecalculateRecipe(costing),
            get_making_cost=GetMakingCost(costing),
        )
