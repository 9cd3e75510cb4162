# kitchen_cost_engine/src/domain/repositories.py
from __future__ import annotations

from datetime import datetime
from typing import Iterator, List, Optional, Protocol

from src.domain.entities import (
    Ingredient,
    MenuItemRecipe,
    PriceAlert,
    PriceCalculation,
    PriceHistory,
    PriceObservation,
    PriceUpdateSettings,
)


class IngredientRepo(Protocol):
    def get(self, ingredient_id: str) -> Optional[Ingredient]: ...

    def save(self, ingredient: Ingredient) -> None: ...

    def all(self) -> List[Ingredient]: ...


class PriceHistoryRepo(Protocol):
    def append(self, entry: PriceHistory) -> None: ...

    def latest(self, ingredient_id: str) -> Optional[PriceHistory]:
        """Most recent record; ties on recorded_at go to the later append."""
        ...

    def iter_range(
        self,
        ingredient_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Iterator[PriceHistory]:
        """Oldest-to-newest records with start <= recorded_at <= end."""
        ...


class RecipeRepo(Protocol):
    def get(self, recipe_id: str) -> Optional[MenuItemRecipe]: ...

    def save(self, recipe: MenuItemRecipe) -> None: ...

    def delete(self, recipe_id: str) -> bool: ...

    def all(self) -> List[MenuItemRecipe]: ...

    def by_ingredient(self, ingredient_id: str) -> List[MenuItemRecipe]: ...

    def by_menu_item_name(self, name: str) -> Optional[MenuItemRecipe]: ...


class CalculationRepo(Protocol):
    def append(self, calc: PriceCalculation) -> None: ...

    def for_recipe(self, recipe_id: str) -> List[PriceCalculation]: ...


class SettingsRepo(Protocol):
    def load(self) -> PriceUpdateSettings: ...

    def save(self, settings: PriceUpdateSettings) -> None: ...


class PriceSource(Protocol):
    def fetch(self, ingredient: Ingredient) -> PriceObservation:
        """Latest observed price; raises SourceFetchError when none is available."""
        ...


class AlertSink(Protocol):
    def publish(self, alert: PriceAlert) -> None: ...
