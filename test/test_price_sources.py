from __future__ import annotations

from decimal import Decimal

import pytest
import requests

from src.domain.entities import Category, Ingredient, PriceSourceKind
from src.domain.errors import SourceFetchError
from src.domain.units import Unit
from src.services.price_sources import (
    ChainedPriceSource,
    HttpPriceSource,
    StaticPriceSource,
    commodity_for,
    price_in_unit,
)


def _ingredient(name="Onion", unit=Unit.KG) -> Ingredient:
    return Ingredient(id=name.lower(), name=name, category=Category.VEGETABLES, market_price=Decimal("40"), unit=unit)


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params, timeout))
        if self.error:
            raise self.error
        return self.response


def test_commodity_mapping():
    assert commodity_for("Onion") == "onion"
    assert commodity_for("okra") == "bhindi"
    assert commodity_for("red onion") == "onion"
    assert commodity_for("saffron") is None


def test_price_in_unit():
    assert price_in_unit("40", Unit.KG, Unit.GM) == Decimal("0.04")
    assert price_in_unit("0.05", Unit.ML, Unit.LTR) == Decimal("50")


def test_static_source_by_id_or_name():
    src = StaticPriceSource({"onion": "42"}, source=PriceSourceKind.SUPPLIER)
    obs = src.fetch(_ingredient())
    assert obs.price == Decimal("42")
    assert obs.source == PriceSourceKind.SUPPLIER
    assert obs.recorded_at is None
    with pytest.raises(SourceFetchError):
        src.fetch(_ingredient("Garlic"))


def test_http_source_converts_quoted_unit():
    session = FakeSession(FakeResponse({"price": 40, "unit": "kg", "market": "Azadpur"}))
    src = HttpPriceSource("http://prices.local/", timeout_s=5, session=session)

    obs = src.fetch(_ingredient("Onion", Unit.GM))

    assert obs.price == Decimal("0.04")
    assert obs.market_name == "Azadpur"
    assert obs.source == PriceSourceKind.API
    assert session.requests == [("http://prices.local/prices", {"commodity": "onion"}, 5)]


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.ConnectionError("down")),
        FakeSession(FakeResponse({}, status=503)),
        FakeSession(FakeResponse(ValueError("not json"))),
        FakeSession(FakeResponse({"market": "x"})),
        FakeSession(FakeResponse({"price": 40, "unit": "ltr"})),
    ],
)
def test_http_source_failures(session):
    src = HttpPriceSource("http://prices.local", session=session)
    with pytest.raises(SourceFetchError):
        src.fetch(_ingredient())


def test_http_source_needs_a_commodity():
    session = FakeSession(FakeResponse({"price": 1}))
    with pytest.raises(SourceFetchError):
        HttpPriceSource("http://prices.local", session=session).fetch(_ingredient("Saffron"))
    assert session.requests == []


def test_chained_source_falls_through():
    first = StaticPriceSource({}, failures=["onion"])
    second = StaticPriceSource({"onion": "38"}, source=PriceSourceKind.SCRAPED)
    obs = ChainedPriceSource([first, second]).fetch(_ingredient())
    assert obs.price == Decimal("38")
    assert first.calls == ["onion"]

    with pytest.raises(SourceFetchError) as e:
        ChainedPriceSource([first]).fetch(_ingredient())
    assert "source unavailable" in e.value.reason
