from __future__ import annotations

import threading
import time
from datetime import timedelta
from decimal import Decimal

import anyio
import pytest

from src.application.cost_calculator import RecipeCostingService
from src.application.price_ledger import PriceLedger
from src.application.price_policy import CheckState, PricePolicyEngine
from src.domain.entities import Category, IngredientUsage, MenuItemRecipe
from src.domain.errors import NotFound
from src.domain.units import Unit
from src.infrastructure.memory_repositories import InMemorySettingsRepository
from src.services.price_sources import StaticPriceSource

from conftest import NOW


class SlowSource:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    def fetch(self, ingredient):
        time.sleep(self.delay)
        raise AssertionError("should have timed out")


@pytest.fixture
def source() -> StaticPriceSource:
    return StaticPriceSource({"onion": "130", "oil": "150"})


@pytest.fixture
def engine(repos, ledger, costing, settings, source) -> PricePolicyEngine:
    return PricePolicyEngine(repos.ingredients, ledger, source, costing, settings, fetch_timeout_s=2.0)


def _seed(ledger, add_ingredient, ingredient_id, price="100", at=NOW - timedelta(days=2), **kw):
    add_ingredient(ingredient_id, price, **kw)
    ledger.record_price(ingredient_id, price, recorded_at=at)


def test_due_rules(engine, repos, ledger, add_ingredient, settings):
    _seed(ledger, add_ingredient, "onion")
    onion = repos.ingredients.get("onion")
    assert engine.is_due(onion, NOW)
    assert not engine.is_due(onion, onion.last_price_fetch + timedelta(hours=23))
    assert engine.is_due(onion, onion.last_price_fetch + timedelta(hours=24))

    onion.auto_update_enabled = False
    assert not engine.is_due(onion, NOW)
    onion.auto_update_enabled = True
    onion.is_active = False
    assert not engine.is_due(onion, NOW)

    milk = add_ingredient("milk", "60", unit=Unit.LTR, category=Category.DAIRY)
    assert not engine.is_due(milk, NOW)
    settings.enabled_categories.add(Category.DAIRY)
    assert engine.is_due(milk, NOW)


def test_cycle_applies_large_change_and_marks_recipes_stale(engine, repos, ledger, costing, add_ingredient, settings):
    _seed(ledger, add_ingredient, "onion")
    recipe = MenuItemRecipe(
        id="r1",
        menu_item_name="Onion Soup",
        ingredients=[IngredientUsage("onion", "Onion", Decimal("250"), Unit.GM, Decimal("0"))],
    )
    costing.save_new(recipe, now=NOW)

    report = anyio.run(engine.run_cycle, NOW)

    assert report.ran is True
    assert report.updated == 1
    [outcome] = report.outcomes
    assert outcome.state == CheckState.UPDATED
    assert outcome.stale_recipes == ["r1"]

    onion = repos.ingredients.get("onion")
    assert onion.market_price == Decimal("130")
    assert onion.last_price_fetch == NOW
    assert repos.recipes.get("r1").stale is True
    assert settings.last_update_run == NOW
    assert engine.state_of("onion") == CheckState.IDLE


def test_below_threshold_keeps_live_price_and_schedule(engine, repos, ledger, add_ingredient, source):
    _seed(ledger, add_ingredient, "onion")
    before = repos.ingredients.get("onion").last_price_fetch
    source.set_price("onion", "103")

    report = anyio.run(engine.run_cycle, NOW)

    [outcome] = report.outcomes
    assert outcome.state == CheckState.SKIPPED
    assert outcome.reason == "below_threshold"
    onion = repos.ingredients.get("onion")
    assert onion.market_price == Decimal("100")
    assert onion.last_price_fetch == before
    assert len(ledger.get_history("onion").to_list()) == 2


def test_fetch_failure_is_skipped_and_touches_nothing(repos, ledger, costing, settings, add_ingredient):
    _seed(ledger, add_ingredient, "onion")
    _seed(ledger, add_ingredient, "oil", "120", unit=Unit.LTR, category=Category.OILS)
    source = StaticPriceSource({"oil": "150"}, failures=["onion"])
    engine = PricePolicyEngine(repos.ingredients, ledger, source, costing, settings)

    report = anyio.run(engine.run_cycle, NOW)

    states = {o.ingredient_id: o for o in report.outcomes}
    assert states["onion"].state == CheckState.SKIPPED
    assert states["onion"].reason.startswith("fetch_failed")
    assert states["oil"].state == CheckState.UPDATED
    assert report.failed == 1
    assert repos.ingredients.get("onion").market_price == Decimal("100")
    assert len(ledger.get_history("onion").to_list()) == 1


def test_fetch_timeout_is_skipped(repos, ledger, costing, settings, add_ingredient):
    _seed(ledger, add_ingredient, "onion")
    engine = PricePolicyEngine(repos.ingredients, ledger, SlowSource(0.5), costing, settings, fetch_timeout_s=0.05)

    outcome = anyio.run(engine.refresh, "onion", NOW)

    assert outcome.state == CheckState.SKIPPED
    assert outcome.reason == "fetch_failed: timeout"
    assert len(ledger.get_history("onion").to_list()) == 1


def test_disabled_auto_update_skips_cycle(engine, ledger, add_ingredient, settings, source):
    _seed(ledger, add_ingredient, "onion")
    settings.auto_update_enabled = False

    report = anyio.run(engine.run_cycle, NOW)

    assert report.ran is False
    assert report.reason == "auto_update_disabled"
    assert source.calls == []
    assert settings.last_update_run is None


def test_nothing_due(engine, ledger, add_ingredient, source):
    _seed(ledger, add_ingredient, "onion", at=NOW - timedelta(hours=1))
    report = anyio.run(engine.run_cycle, NOW)
    assert report.ran is True
    assert report.reason == "nothing_due"
    assert source.calls == []


def test_manual_refresh_ignores_schedule(engine, repos, ledger, add_ingredient):
    _seed(ledger, add_ingredient, "onion", at=NOW - timedelta(hours=1), category=Category.MEAT)
    outcome = anyio.run(engine.refresh, "onion", NOW)
    assert outcome.state == CheckState.UPDATED
    assert repos.ingredients.get("onion").market_price == Decimal("130")


def test_refresh_unknown_ingredient(engine):
    with pytest.raises(NotFound):
        anyio.run(engine.refresh, "ghost", NOW)


class ThreadRecordingLedger(PriceLedger):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.threads = []

    def record_observation(self, obs):
        self.threads.append(threading.current_thread())
        return super().record_observation(obs)


class ThreadRecordingCosting(RecipeCostingService):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.threads = []

    def mark_stale_for_ingredient(self, ingredient_id):
        self.threads.append(threading.current_thread())
        return super().mark_stale_for_ingredient(ingredient_id)


def test_ledger_and_costing_run_in_worker_threads(repos, settings, add_ingredient, source):
    ledger = ThreadRecordingLedger(repos.ingredients, repos.history, settings)
    costing = ThreadRecordingCosting(repos.recipes, repos.ingredients, repos.calculations)
    _seed(ledger, add_ingredient, "onion")
    engine = PricePolicyEngine(repos.ingredients, ledger, source, costing, settings)

    loop_thread = threading.current_thread()
    outcome = anyio.run(engine.refresh, "onion", NOW)

    assert outcome.state == CheckState.UPDATED
    assert len(ledger.threads) == 1 and ledger.threads[0] is not loop_thread
    assert len(costing.threads) == 1 and costing.threads[0] is not loop_thread


def test_cycle_stamps_last_run_in_settings_repository(repos, settings, add_ingredient, source, costing):
    settings_repo = InMemorySettingsRepository(settings)
    ledger = PriceLedger(repos.ingredients, repos.history, settings_repo)
    _seed(ledger, add_ingredient, "onion")
    engine = PricePolicyEngine(repos.ingredients, ledger, source, costing, settings_repo)

    report = anyio.run(engine.run_cycle, NOW)

    assert report.updated == 1
    assert settings_repo.load().last_update_run == NOW
