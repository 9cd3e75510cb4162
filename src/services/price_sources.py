# kitchen_cost_engine/src/services/price_sources.py
from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from src.domain.entities import Ingredient, PriceObservation, PriceSourceKind
from src.domain.errors import CostingError, SourceFetchError
from src.domain.money import to_decimal
from src.domain.units import normalize, parse_unit

log = logging.getLogger("services.price_sources")

# ingredient name -> market commodity name
COMMODITY_MAPPING: Dict[str, str] = {
    # Vegetables
    "onion": "onion",
    "tomato": "tomato",
    "potato": "potato",
    "capsicum": "capsicum",
    "carrot": "carrot",
    "cabbage": "cabbage",
    "cauliflower": "cauliflower",
    "brinjal": "brinjal",
    "eggplant": "brinjal",
    "ladyfinger": "bhindi",
    "okra": "bhindi",
    # Grains & pulses
    "rice": "rice",
    "wheat": "wheat",
    "dal": "gram dal",
    "moong dal": "green gram dal",
    "toor dal": "arhar dal",
    "chana": "gram dal",
    # Others
    "ginger": "ginger",
    "garlic": "garlic",
    "green chilli": "green chilli",
}


def commodity_for(ingredient_name: str) -> Optional[str]:
    """Exact mapping first, then a substring match either way."""
    key = (ingredient_name or "").strip().lower()
    if not key:
        return None
    if key in COMMODITY_MAPPING:
        return COMMODITY_MAPPING[key]
    for name, commodity in COMMODITY_MAPPING.items():
        if name in key or key in name:
            return commodity
    return None


def price_in_unit(price: Any, quoted_unit: Any, target_unit: Any) -> Decimal:
    """Re-express a price quoted per ``quoted_unit`` as a price per ``target_unit``."""
    return to_decimal(price, "price") * normalize(1, target_unit, quoted_unit)


class StaticPriceSource:
    """Price table keyed by ingredient id (or lower-cased name).

    Used for manual price lists and as a fake collaborator in tests;
    ``failures`` lists keys that should raise SourceFetchError.
    """

    def __init__(
        self,
        prices: Optional[Dict[str, Any]] = None,
        source: PriceSourceKind = PriceSourceKind.MANUAL,
        failures: Optional[Sequence[str]] = None,
        clock: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.prices: Dict[str, Any] = dict(prices or {})
        self.source = source
        self.failures = set(failures or [])
        self.clock = clock
        self.calls: List[str] = []
        self._mu = threading.Lock()

    def set_price(self, key: str, price: Any) -> None:
        with self._mu:
            self.prices[key] = price

    def fetch(self, ingredient: Ingredient) -> PriceObservation:
        with self._mu:
            self.calls.append(ingredient.id)
            keys = (ingredient.id, ingredient.name.strip().lower())
            if any(k in self.failures for k in keys):
                raise SourceFetchError(ingredient.name, "source unavailable")
            price = next((self.prices[k] for k in keys if k in self.prices), None)
        if price is None:
            raise SourceFetchError(ingredient.name, "no price listed")
        return PriceObservation(
            ingredient_id=ingredient.id,
            price=to_decimal(price, "price"),
            source=self.source,
            recorded_at=self.clock() if self.clock else None,
        )


class HttpPriceSource:
    """
    JSON market-price endpoint:
      GET {base_url}/prices?commodity=<name>
      -> {"price": 42.5, "unit": "kg", "market": "Azadpur"}
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 30.0,
        source: PriceSourceKind = PriceSourceKind.API,
        session: Optional[requests.Session] = None,
        use_commodity_mapping: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.source = source
        self.session = session or requests.Session()
        self.use_commodity_mapping = use_commodity_mapping

    def fetch(self, ingredient: Ingredient) -> PriceObservation:
        commodity = commodity_for(ingredient.name) if self.use_commodity_mapping else ingredient.name
        if not commodity:
            raise SourceFetchError(ingredient.name, "ingredient not found in commodity mapping")

        try:
            r = self.session.get(
                f"{self.base_url}/prices",
                params={"commodity": commodity},
                timeout=self.timeout_s,
            )
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise SourceFetchError(ingredient.name, f"http error: {e}") from e
        except ValueError as e:
            raise SourceFetchError(ingredient.name, "invalid JSON payload") from e

        if not isinstance(data, dict) or data.get("price") is None:
            raise SourceFetchError(ingredient.name, "no price in payload")

        try:
            quoted_unit = parse_unit(data.get("unit") or ingredient.unit)
            price = price_in_unit(data["price"], quoted_unit, ingredient.unit)
        except CostingError as e:
            raise SourceFetchError(ingredient.name, str(e)) from e

        return PriceObservation(
            ingredient_id=ingredient.id,
            price=price,
            source=self.source,
            recorded_at=None,
            market_name=data.get("market"),
        )


class ChainedPriceSource:
    """Try each source in order; the first success wins."""

    def __init__(self, sources: Sequence[Any]) -> None:
        if not sources:
            raise ValueError("ChainedPriceSource needs at least one source")
        self.sources = list(sources)

    def fetch(self, ingredient: Ingredient) -> PriceObservation:
        reasons: List[str] = []
        for src in self.sources:
            try:
                return src.fetch(ingredient)
            except SourceFetchError as e:
                log.debug("Source %s failed for %s: %s", type(src).__name__, ingredient.name, e.reason)
                reasons.append(e.reason)
        raise SourceFetchError(ingredient.name, "; ".join(reasons) or "no price source available")
