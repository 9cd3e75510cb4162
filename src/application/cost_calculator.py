# =========================
# FILE: kitchen_cost_engine/src/application/cost_calculator.py
# =========================
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from src.domain.entities import (
    CostBreakdown,
    IngredientUsage,
    MenuItemRecipe,
    OverheadCosts,
    PriceCalculation,
    utcnow,
)
from src.domain.errors import CostingError, NotFound, ValidationError
from src.domain.money import HUNDRED, round_money
from src.domain.repositories import CalculationRepo, IngredientRepo, RecipeRepo
from src.domain.units import normalize

log = logging.getLogger("app.cost_calculator")


def _validate(recipe: MenuItemRecipe) -> None:
    if not recipe.ingredients:
        raise ValidationError(f"Recipe {recipe.menu_item_name!r} has no ingredients")
    for u in recipe.ingredients:
        if u.quantity <= 0:
            raise ValidationError(f"quantity must be > 0 for {u.ingredient_name}, got {u.quantity}")
        if u.unit_price < 0:
            raise ValidationError(f"unit_price must be >= 0 for {u.ingredient_name}, got {u.unit_price}")

    oh = recipe.overhead_costs
    if oh.wastage_percentage < 0:
        raise ValidationError(f"wastage_percentage must be >= 0, got {oh.wastage_percentage}")
    if recipe.profit_margin < 0:
        raise ValidationError(f"profit_margin must be >= 0, got {recipe.profit_margin}")
    for name in ("labour_charge", "rent_allocation", "electricity_charge", "miscellaneous"):
        if getattr(oh, name) < 0:
            raise ValidationError(f"{name} must be >= 0, got {getattr(oh, name)}")


def usage_cost(usage: IngredientUsage) -> Decimal:
    """Exact (unrounded) cost of one usage at its frozen unit price."""
    return normalize(usage.quantity, usage.unit, usage.base_unit) * usage.unit_price


def compute_cost(recipe: MenuItemRecipe, calculated_at: Optional[datetime] = None) -> PriceCalculation:
    """Cost one recipe into an immutable PriceCalculation receipt.

    Pure: reads only the recipe (frozen unit prices included) and returns a
    new receipt. Intermediate values stay exact; every derived monetary field
    is rounded to 2 dp half-up exactly once, when it is written out. Profit
    and selling price are taken from the published making cost so that
    selling == making * (1 + margin/100) holds on the receipt itself.
    """
    _validate(recipe)
    oh: OverheadCosts = recipe.overhead_costs

    exact_costs = [usage_cost(u) for u in recipe.ingredients]
    usages = [replace(u, total_cost=round_money(c)) for u, c in zip(recipe.ingredients, exact_costs)]

    ingredient_subtotal = sum(exact_costs, Decimal("0"))
    wastage = ingredient_subtotal * oh.wastage_percentage / HUNDRED
    overhead_subtotal = oh.labour_charge + oh.rent_allocation + oh.electricity_charge + wastage + oh.miscellaneous
    making_cost = round_money(ingredient_subtotal + overhead_subtotal)
    profit_amount = making_cost * recipe.profit_margin / HUNDRED
    selling_price = making_cost + profit_amount

    breakdown = CostBreakdown(
        ingredients=usages,
        ingredient_subtotal=round_money(ingredient_subtotal),
        labour=round_money(oh.labour_charge),
        rent=round_money(oh.rent_allocation),
        electricity=round_money(oh.electricity_charge),
        wastage=round_money(wastage),
        miscellaneous=round_money(oh.miscellaneous),
        overhead_subtotal=round_money(overhead_subtotal),
        making_cost=making_cost,
        profit_amount=round_money(profit_amount),
        profit_percentage=recipe.profit_margin,
        selling_price=round_money(selling_price),
    )
    return PriceCalculation(
        recipe_id=recipe.id,
        recipe_name=recipe.menu_item_name,
        breakdown=breakdown,
        calculated_at=calculated_at or utcnow(),
    )


class RecipeCostingService:
    """Keeps live MenuItemRecipe totals in step with compute_cost receipts."""

    def __init__(
        self,
        recipes: RecipeRepo,
        ingredients: IngredientRepo,
        calculations: Optional[CalculationRepo] = None,
    ) -> None:
        self.recipes = recipes
        self.ingredients = ingredients
        self.calculations = calculations
        self._in_flight: Set[str] = set()
        self._mu = threading.Lock()

    def _get(self, recipe_id: str) -> MenuItemRecipe:
        recipe = self.recipes.get(recipe_id)
        if recipe is None:
            raise NotFound("Recipe", recipe_id)
        return recipe

    def snapshot_prices(self, recipe: MenuItemRecipe) -> List[IngredientUsage]:
        """Freeze each usage's unit price at the ingredient's current market price."""
        out: List[IngredientUsage] = []
        for u in recipe.ingredients:
            ing = self.ingredients.get(u.ingredient_id)
            if ing is None:
                raise NotFound("Ingredient", u.ingredient_id)
            out.append(
                replace(u, ingredient_name=ing.name, unit_price=ing.market_price, price_unit=ing.unit)
            )
        return out

    def save_new(self, recipe: MenuItemRecipe, refresh_prices: bool = True, now: Optional[datetime] = None) -> PriceCalculation:
        """Cost a recipe for the first time and persist it with its receipt."""
        if refresh_prices:
            recipe.ingredients = self.snapshot_prices(recipe)
        calc = compute_cost(recipe, now)
        recipe.apply_calculation(calc)
        self.recipes.save(recipe)
        if self.calculations is not None:
            self.calculations.append(calc)
        return calc

    def recalculate(self, recipe_id: str, refresh_prices: bool = True, now: Optional[datetime] = None) -> PriceCalculation:
        recipe = self._get(recipe_id)
        calc = self.save_new(recipe, refresh_prices=refresh_prices, now=now)
        log.info(
            "Recalculated %s: making=%s selling=%s",
            recipe.menu_item_name,
            calc.breakdown.making_cost,
            calc.breakdown.selling_price,
        )
        return calc

    def mark_stale_for_ingredient(self, ingredient_id: str) -> List[str]:
        marked: List[str] = []
        for recipe in self.recipes.by_ingredient(ingredient_id):
            if not recipe.stale:
                recipe.stale = True
                self.recipes.save(recipe)
            marked.append(recipe.id)
        if marked:
            log.info("Marked %d recipe(s) stale after price change of %s", len(marked), ingredient_id)
        return marked

    def _claim(self, recipe_id: str) -> bool:
        with self._mu:
            if recipe_id in self._in_flight:
                return False
            self._in_flight.add(recipe_id)
            return True

    def _release(self, recipe_id: str) -> None:
        with self._mu:
            self._in_flight.discard(recipe_id)

    def recompute_stale(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Recompute every stale recipe; one recipe is never recomputed twice concurrently."""
        done: List[str] = []
        skipped: List[str] = []
        failed: List[Dict[str, str]] = []
        for recipe in self.recipes.all():
            if not recipe.stale:
                continue
            if not self._claim(recipe.id):
                skipped.append(recipe.id)
                continue
            try:
                self.recalculate(recipe.id, refresh_prices=True, now=now)
                done.append(recipe.id)
            except CostingError as e:
                log.warning("Recompute failed for %s: %s", recipe.menu_item_name, e)
                failed.append({"recipe_id": recipe.id, "error": str(e)})
            finally:
                self._release(recipe.id)
        return {"recomputed": done, "skipped": skipped, "failed": failed}

    def making_cost_for(self, menu_item_name: str) -> Dict[str, Any]:
        recipe = self.recipes.by_menu_item_name(menu_item_name)
        if recipe is None:
            raise NotFound("Recipe", menu_item_name)
        return {
            "menu_item_name": recipe.menu_item_name,
            "making_cost": recipe.total_making_cost,
            "selling_price": recipe.suggested_selling_price,
            "actual_selling_price": recipe.actual_selling_price,
            "profit_margin": recipe.profit_margin,
            "stale": recipe.stale,
        }
