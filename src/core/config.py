# kitchen_cost_engine/src/core/config.py
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
import os
import logging

# Storage: "memory" for local runs and tests, "mongo" for deployments
STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory").strip().lower()

# Mongo settings
MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB: str = os.getenv("MONGO_DB", "cafe")
MONGO_INGREDIENTS_COL: str = os.getenv("MONGO_INGREDIENTS_COL", "ingredients")
MONGO_PRICE_HISTORY_COL: str = os.getenv("MONGO_PRICE_HISTORY_COL", "ingredientPriceHistory")
MONGO_RECIPES_COL: str = os.getenv("MONGO_RECIPES_COL", "menuItemRecipes")
MONGO_CALCULATIONS_COL: str = os.getenv("MONGO_CALCULATIONS_COL", "priceCalculations")
MONGO_SETTINGS_COL: str = os.getenv("MONGO_SETTINGS_COL", "priceUpdateSettings")

# day-granular offer labels are computed in this civil zone
BUSINESS_TZ: str = os.getenv("BUSINESS_TZ", "Asia/Kolkata")

# Price sources
PRICE_SOURCE_URL: str = os.getenv("PRICE_SOURCE_URL", "")
FETCH_TIMEOUT_S: float = float(os.getenv("FETCH_TIMEOUT_S", "30"))
HISTORY_DEFAULT_DAYS: int = int(os.getenv("HISTORY_DEFAULT_DAYS", "30"))


@dataclass(frozen=True)
class SettingsDefaults:
    UPDATE_FREQUENCY_HOURS: int = int(os.getenv("PRICE_UPDATE_FREQUENCY_HOURS", "24"))
    MIN_CHANGE_PERCENTAGE: Decimal = Decimal(os.getenv("PRICE_MIN_CHANGE_PERCENTAGE", "2.0"))
    ALERT_THRESHOLD_PERCENTAGE: Decimal = Decimal(os.getenv("PRICE_ALERT_THRESHOLD_PERCENTAGE", "15.0"))


# Global logging (module-level loggers inherit this)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
LOGGER = logging.getLogger("kitchen_cost_engine")
