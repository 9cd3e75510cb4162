# kitchen_cost_engine/test/conftest.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from src.application.cost_calculator import RecipeCostingService
from src.application.price_ledger import PriceLedger
from src.domain.entities import Category, Ingredient, PriceUpdateSettings
from src.domain.units import Unit
from src.infrastructure.alerts import CollectingAlertSink
from src.infrastructure.memory_repositories import (
    InMemoryCalculationRepository,
    InMemoryIngredientRepository,
    InMemoryPriceHistoryRepository,
    InMemoryRecipeRepository,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> PriceUpdateSettings:
    return PriceUpdateSettings(
        auto_update_enabled=True,
        update_frequency_hours=24,
        min_change_percentage_to_record=Decimal("5"),
        alert_threshold_percentage=Decimal("10"),
        enabled_categories={Category.VEGETABLES, Category.OILS},
    )


@pytest.fixture
def repos():
    return SimpleNamespace(
        ingredients=InMemoryIngredientRepository(),
        history=InMemoryPriceHistoryRepository(),
        recipes=InMemoryRecipeRepository(),
        calculations=InMemoryCalculationRepository(),
    )


@pytest.fixture
def alerts() -> CollectingAlertSink:
    return CollectingAlertSink()


@pytest.fixture
def ledger(repos, settings, alerts) -> PriceLedger:
    return PriceLedger(repos.ingredients, repos.history, settings, alerts=alerts)


@pytest.fixture
def costing(repos) -> RecipeCostingService:
    return RecipeCostingService(repos.recipes, repos.ingredients, repos.calculations)


@pytest.fixture
def add_ingredient(repos):
    """Save a bare ingredient (no history yet)."""

    def _add(
        ingredient_id: str,
        price: str = "100",
        unit: Unit = Unit.KG,
        category: Category = Category.VEGETABLES,
        auto_update: bool = True,
    ) -> Ingredient:
        ing = Ingredient(
            id=ingredient_id,
            name=ingredient_id.capitalize(),
            category=category,
            market_price=Decimal(price),
            unit=unit,
            auto_update_enabled=auto_update,
        )
        repos.ingredients.save(ing)
        return ing

    return _add
