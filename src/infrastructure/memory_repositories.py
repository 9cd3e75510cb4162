# =========================
# FILE: kitchen_cost_engine/src/infrastructure/memory_repositories.py
# =========================
from __future__ import annotations

import bisect
import copy
import threading
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from src.domain.entities import (
    Ingredient,
    MenuItemRecipe,
    PriceCalculation,
    PriceHistory,
    PriceUpdateSettings,
)


class InMemoryIngredientRepository:
    """Stores copies so callers never share mutable state with the store."""

    def __init__(self) -> None:
        self._data: Dict[str, Ingredient] = {}
        self._mu = threading.Lock()

    def get(self, ingredient_id: str) -> Optional[Ingredient]:
        with self._mu:
            ing = self._data.get(ingredient_id)
            return copy.deepcopy(ing) if ing else None

    def save(self, ingredient: Ingredient) -> None:
        with self._mu:
            self._data[ingredient.id] = copy.deepcopy(ingredient)

    def all(self) -> List[Ingredient]:
        with self._mu:
            return [copy.deepcopy(i) for i in self._data.values()]


class InMemoryPriceHistoryRepository:
    def __init__(self) -> None:
        self._by_ingredient: Dict[str, List[PriceHistory]] = {}
        self._mu = threading.Lock()

    def append(self, entry: PriceHistory) -> None:
        with self._mu:
            rows = self._by_ingredient.setdefault(entry.ingredient_id, [])
            keys = [r.recorded_at for r in rows]
            # equal timestamps keep insertion order
            rows.insert(bisect.bisect_right(keys, entry.recorded_at), entry)

    def latest(self, ingredient_id: str) -> Optional[PriceHistory]:
        with self._mu:
            rows = self._by_ingredient.get(ingredient_id)
            return rows[-1] if rows else None

    def iter_range(
        self,
        ingredient_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Iterator[PriceHistory]:
        with self._mu:
            rows = list(self._by_ingredient.get(ingredient_id, []))
        for r in rows:
            if start is not None and r.recorded_at < start:
                continue
            if end is not None and r.recorded_at > end:
                break
            yield r


class InMemoryRecipeRepository:
    def __init__(self) -> None:
        self._data: Dict[str, MenuItemRecipe] = {}
        self._mu = threading.Lock()

    def get(self, recipe_id: str) -> Optional[MenuItemRecipe]:
        with self._mu:
            r = self._data.get(recipe_id)
            return copy.deepcopy(r) if r else None

    def save(self, recipe: MenuItemRecipe) -> None:
        with self._mu:
            self._data[recipe.id] = copy.deepcopy(recipe)

    def delete(self, recipe_id: str) -> bool:
        with self._mu:
            return self._data.pop(recipe_id, None) is not None

    def all(self) -> List[MenuItemRecipe]:
        with self._mu:
            return [copy.deepcopy(r) for r in self._data.values()]

    def by_ingredient(self, ingredient_id: str) -> List[MenuItemRecipe]:
        return [r for r in self.all() if r.references(ingredient_id)]

    def by_menu_item_name(self, name: str) -> Optional[MenuItemRecipe]:
        key = (name or "").strip().lower()
        for r in self.all():
            if r.menu_item_name.strip().lower() == key:
                return r
        return None


class InMemoryCalculationRepository:
    def __init__(self) -> None:
        self._by_recipe: Dict[str, List[PriceCalculation]] = {}
        self._mu = threading.Lock()

    def append(self, calc: PriceCalculation) -> None:
        with self._mu:
            self._by_recipe.setdefault(calc.recipe_id, []).append(calc)

    def for_recipe(self, recipe_id: str) -> List[PriceCalculation]:
        with self._mu:
            return list(self._by_recipe.get(recipe_id, []))


class InMemorySettingsRepository:
    def __init__(self, initial: Optional[PriceUpdateSettings] = None) -> None:
        self._settings = initial or PriceUpdateSettings()
        self._mu = threading.Lock()

    def load(self) -> PriceUpdateSettings:
        with self._mu:
            return copy.deepcopy(self._settings)

    def save(self, settings: PriceUpdateSettings) -> None:
        with self._mu:
            self._settings = copy.deepcopy(settings)
