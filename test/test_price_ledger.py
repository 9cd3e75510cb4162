from __future__ import annotations

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from src.application.price_ledger import PriceLedger, parse_source
from src.domain.entities import PriceObservation, PriceSourceKind
from src.domain.errors import NotFound, ValidationError
from src.domain.money import percent_change, round_percent
from src.infrastructure.memory_repositories import InMemorySettingsRepository

from conftest import NOW


def test_non_positive_price_leaves_history_untouched(ledger, add_ingredient):
    add_ingredient("onion")
    for bad in (0, -3, "0.00"):
        with pytest.raises(ValidationError):
            ledger.record_price("onion", bad, recorded_at=NOW)
    assert ledger.get_history("onion").to_list() == []


def test_first_price_is_always_applied(ledger, repos, add_ingredient):
    add_ingredient("onion", "90")
    result = ledger.record_price("onion", "100", recorded_at=NOW)
    assert result.live_updated is True
    assert result.entry.change_percentage is None
    assert result.alert is None

    ing = repos.ingredients.get("onion")
    assert ing.market_price == Decimal("100")
    assert ing.last_price_fetch == NOW


def test_small_change_is_logged_but_not_applied(ledger, repos, add_ingredient, alerts):
    add_ingredient("onion")
    ledger.record_price("onion", "100", recorded_at=NOW)
    result = ledger.record_price("onion", "102", recorded_at=NOW + timedelta(hours=1))

    assert result.live_updated is False
    assert result.entry.change_percentage == Decimal("2.00")
    assert repos.ingredients.get("onion").market_price == Decimal("100")
    assert [h.price for h in ledger.get_history("onion")] == [Decimal("100"), Decimal("102")]
    assert alerts.alerts == []


def test_large_change_updates_and_alerts_once(ledger, repos, add_ingredient, alerts):
    add_ingredient("onion")
    ledger.record_price("onion", "100", recorded_at=NOW)
    result = ledger.record_price("onion", "120", PriceSourceKind.AGMARKNET, NOW + timedelta(hours=1))

    assert result.live_updated is True
    ing = repos.ingredients.get("onion")
    assert ing.market_price == Decimal("120")
    assert ing.previous_price == Decimal("100")
    assert ing.price_change_percentage == Decimal("20.00")
    assert ing.price_source == PriceSourceKind.AGMARKNET

    assert len(alerts.alerts) == 1
    alert = alerts.alerts[0]
    assert alert.change_percentage == Decimal("20.00")
    assert (alert.old_price, alert.new_price) == (Decimal("100"), Decimal("120"))


def test_slow_drift_is_gated_against_the_live_price(ledger, repos, add_ingredient):
    # each step is under 5% of the one before, but not of the live price
    add_ingredient("onion")
    ledger.record_price("onion", "100", recorded_at=NOW)
    steps = []
    for k, price in enumerate(["104", "108", "112", "116", "120"], start=1):
        steps.append(ledger.record_price("onion", price, recorded_at=NOW + timedelta(hours=k)))

    assert [s.live_updated for s in steps] == [False, True, False, True, False]
    # history keeps the change against the previous record
    assert [s.entry.change_percentage for s in steps] == [
        Decimal("4.00"),
        Decimal("3.85"),
        Decimal("3.70"),
        Decimal("3.57"),
        Decimal("3.45"),
    ]
    onion = repos.ingredients.get("onion")
    assert onion.market_price == Decimal("116")
    assert onion.previous_price == Decimal("108")
    assert onion.price_change_percentage == Decimal("7.41")


def test_alert_uses_change_against_live_price(ledger, add_ingredient, alerts, settings):
    settings.min_change_percentage_to_record = Decimal("50")
    add_ingredient("onion")
    ledger.record_price("onion", "100", recorded_at=NOW)
    assert ledger.record_price("onion", "106", recorded_at=NOW + timedelta(hours=1)).alert is None

    result = ledger.record_price("onion", "112", recorded_at=NOW + timedelta(hours=2))
    assert result.live_updated is False
    assert result.entry.change_percentage == Decimal("5.66")
    assert result.alert is not None
    assert (result.alert.old_price, result.alert.new_price) == (Decimal("100"), Decimal("112"))
    assert result.alert.change_percentage == Decimal("12.00")
    assert alerts.alerts == [result.alert]


def test_default_source_is_manual(ledger, add_ingredient):
    add_ingredient("onion")
    result = ledger.record_price("onion", "100", recorded_at=NOW)
    assert result.entry.source == PriceSourceKind.MANUAL


def test_observation_keeps_its_source(ledger, repos, add_ingredient):
    add_ingredient("onion")
    result = ledger.record_observation(PriceObservation("onion", Decimal("100"), PriceSourceKind.AGMARKNET, NOW))
    assert result.entry.source == PriceSourceKind.AGMARKNET
    assert repos.ingredients.get("onion").price_source == PriceSourceKind.AGMARKNET


@pytest.mark.parametrize("raw", [PriceSourceKind.API, "api", " API "])
def test_parse_source_accepts_members_and_names(raw):
    assert parse_source(raw) == PriceSourceKind.API


def test_settings_are_read_from_a_repository(repos, add_ingredient, settings):
    settings_repo = InMemorySettingsRepository(settings)
    ledger = PriceLedger(repos.ingredients, repos.history, settings_repo)
    add_ingredient("onion")
    ledger.record_price("onion", "100", recorded_at=NOW)

    stored = settings_repo.load()
    stored.min_change_percentage_to_record = Decimal("1")
    settings_repo.save(stored)
    assert ledger.record_price("onion", "102", recorded_at=NOW + timedelta(hours=1)).live_updated is True


def test_backdated_record_is_rejected(ledger, add_ingredient):
    add_ingredient("onion")
    ledger.record_price("onion", "100", recorded_at=NOW)
    with pytest.raises(ValidationError):
        ledger.record_price("onion", "130", recorded_at=NOW - timedelta(minutes=1))
    assert len(ledger.get_history("onion").to_list()) == 1


def test_unknown_ingredient(ledger):
    with pytest.raises(NotFound):
        ledger.record_price("ghost", "10", recorded_at=NOW)


def test_unknown_source_is_rejected(ledger, add_ingredient):
    add_ingredient("onion")
    with pytest.raises(ValidationError):
        ledger.record_price("onion", "10", source="carrier-pigeon", recorded_at=NOW)


def test_history_view_is_restartable_and_live(ledger, add_ingredient):
    add_ingredient("onion")
    ledger.record_price("onion", "100", recorded_at=NOW)
    view = ledger.get_history("onion")
    assert len(list(view)) == 1
    assert len(list(view)) == 1

    ledger.record_price("onion", "110", recorded_at=NOW + timedelta(days=1))
    assert [h.price for h in view] == [Decimal("100"), Decimal("110")]


def test_history_window(ledger, add_ingredient):
    add_ingredient("onion")
    ledger.record_price("onion", "100", recorded_at=NOW - timedelta(days=40))
    ledger.record_price("onion", "110", recorded_at=NOW - timedelta(days=1))
    recent = ledger.history_for_days("onion", 30, now=NOW).to_list()
    assert [h.price for h in recent] == [Decimal("110")]
    with pytest.raises(ValidationError):
        ledger.history_for_days("onion", 0, now=NOW)


def test_ingest_reports_bad_items_without_aborting(ledger, add_ingredient):
    add_ingredient("onion")
    add_ingredient("garlic")
    report = ledger.ingest(
        [
            PriceObservation("onion", Decimal("100"), PriceSourceKind.API, NOW),
            PriceObservation("ghost", Decimal("5"), PriceSourceKind.API, NOW),
            PriceObservation("garlic", Decimal("-1"), PriceSourceKind.API, NOW),
            PriceObservation("garlic", Decimal("250"), PriceSourceKind.API, NOW),
        ]
    )
    assert len(report.recorded) == 2
    assert [e["ingredient_id"] for e in report.errors] == ["ghost", "garlic"]


def test_concurrent_records_are_serialized(ledger, repos, add_ingredient, settings):
    settings.min_change_percentage_to_record = Decimal("0")
    add_ingredient("onion")
    ledger.record_price("onion", "100")

    def worker(base: int) -> None:
        for k in range(20):
            ledger.record_price("onion", Decimal(base + k))

    threads = [threading.Thread(target=worker, args=(100 + 50 * t,)) for t in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    rows = ledger.get_history("onion").to_list()
    assert len(rows) == 1 + 6 * 20
    for prev, cur in zip(rows, rows[1:]):
        assert cur.change_percentage == round_percent(percent_change(prev.price, cur.price))
    assert repos.ingredients.get("onion").market_price == rows[-1].price
