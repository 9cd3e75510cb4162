from __future__ import annotations

import logging
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI
from pymongo import MongoClient
from dotenv import load_dotenv
load_dotenv()
from src.api.routes import router
from src.core.config import (
    FETCH_TIMEOUT_S,
    MONGO_CALCULATIONS_COL,
    MONGO_DB,
    MONGO_INGREDIENTS_COL,
    MONGO_PRICE_HISTORY_COL,
    MONGO_RECIPES_COL,
    MONGO_SETTINGS_COL,
    MONGO_URI,
    PRICE_SOURCE_URL,
    STORAGE_BACKEND,
    SettingsDefaults,
)

from src.application.cost_calculator import RecipeCostingService
from src.application.price_ledger import PriceLedger
from src.application.price_policy import PricePolicyEngine
from src.application.usecases import UseCases
from src.domain.entities import PriceUpdateSettings
from src.infrastructure.alerts import LoggingAlertSink
from src.infrastructure.memory_repositories import (
    InMemoryCalculationRepository,
    InMemoryIngredientRepository,
    InMemoryPriceHistoryRepository,
    InMemoryRecipeRepository,
    InMemorySettingsRepository,
)
from src.infrastructure.mongo_repositories import (
    MongoCalculationRepository,
    MongoIngredientRepository,
    MongoPriceHistoryRepository,
    MongoRecipeRepository,
    MongoSettingsRepository,
)
from src.services.price_sources import HttpPriceSource, StaticPriceSource

log = logging.getLogger("app")

_mongo_client: MongoClient | None = None


def default_price_settings() -> PriceUpdateSettings:
    """First-run settings for either backend, taken from the PRICE_* env defaults."""
    return PriceUpdateSettings(
        update_frequency_hours=SettingsDefaults.UPDATE_FREQUENCY_HOURS,
        min_change_percentage_to_record=SettingsDefaults.MIN_CHANGE_PERCENTAGE,
        alert_threshold_percentage=SettingsDefaults.ALERT_THRESHOLD_PERCENTAGE,
    )


def build_usecases(storage: Optional[str] = None, source: Any = None) -> UseCases:
    """Wire repositories, ledger, costing service and policy engine."""
    global _mongo_client
    storage = (storage or STORAGE_BACKEND).lower()

    if storage == "mongo":
        _mongo_client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=3000)
        db = _mongo_client[MONGO_DB]
        ingredients = MongoIngredientRepository(db[MONGO_INGREDIENTS_COL])
        history = MongoPriceHistoryRepository(db[MONGO_PRICE_HISTORY_COL])
        recipes = MongoRecipeRepository(db[MONGO_RECIPES_COL])
        calculations = MongoCalculationRepository(db[MONGO_CALCULATIONS_COL])
        settings = MongoSettingsRepository(db[MONGO_SETTINGS_COL], defaults=default_price_settings())
    elif storage == "memory":
        ingredients = InMemoryIngredientRepository()
        history = InMemoryPriceHistoryRepository()
        recipes = InMemoryRecipeRepository()
        calculations = InMemoryCalculationRepository()
        settings = InMemorySettingsRepository(default_price_settings())
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {storage!r}")

    if source is None:
        # without a market endpoint the engine can only re-read a static table
        source = HttpPriceSource(PRICE_SOURCE_URL, timeout_s=FETCH_TIMEOUT_S) if PRICE_SOURCE_URL else StaticPriceSource()

    ledger = PriceLedger(ingredients, history, settings, alerts=LoggingAlertSink())
    costing = RecipeCostingService(recipes, ingredients, calculations)
    engine = PricePolicyEngine(ingredients, ledger, source, costing, settings, fetch_timeout_s=FETCH_TIMEOUT_S)
    log.info("Wired %s storage with %s price source", storage, type(source).__name__)
    return UseCases.wire(ingredients, recipes, settings, ledger, costing, engine)


def create_app(usecases: Optional[UseCases] = None) -> FastAPI:
    app = FastAPI(title="Kitchen Cost Engine")
    app.include_router(router)
    if usecases is not None:
        app.state.usecases = usecases

    @app.on_event("startup")
    def on_startup() -> None:
        if getattr(app.state, "usecases", None) is None:
            # DI for routes.py
            app.state.usecases = build_usecases()
        log.info("Startup complete")

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        global _mongo_client
        if _mongo_client:
            _mongo_client.close()
            _mongo_client = None

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8081, reload=False)
