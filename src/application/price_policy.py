# =========================
# FILE: kitchen_cost_engine/src/application/price_policy.py
# =========================
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

import anyio

from src.application.cost_calculator import RecipeCostingService
from src.application.price_ledger import PriceLedger, PriceRecordResult, as_utc, resolve_settings
from src.domain.entities import Ingredient, PriceUpdateSettings, utcnow
from src.domain.errors import CostingError, NotFound, SourceFetchError
from src.domain.repositories import IngredientRepo, PriceSource, SettingsRepo

log = logging.getLogger("app.price_policy")


class CheckState(str, Enum):
    IDLE = "idle"
    DUE_FOR_CHECK = "due_for_check"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CheckOutcome:
    ingredient_id: str
    ingredient_name: str
    state: CheckState
    reason: str = ""
    result: Optional[PriceRecordResult] = None
    stale_recipes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "ingredient_id": self.ingredient_id,
            "ingredient_name": self.ingredient_name,
            "state": self.state.value,
            "reason": self.reason,
            "stale_recipes": list(self.stale_recipes),
        }
        if self.result is not None:
            out["price"] = self.result.entry.price
            out["change_percentage"] = self.result.entry.change_percentage
            out["live_updated"] = self.result.live_updated
            out["alert"] = self.result.alert is not None
        return out


@dataclass
class CycleReport:
    started_at: datetime
    ran: bool
    outcomes: List[CheckOutcome] = field(default_factory=list)
    reason: str = ""

    @property
    def updated(self) -> int:
        return sum(1 for o in self.outcomes if o.state == CheckState.UPDATED)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.state == CheckState.SKIPPED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.state == CheckState.SKIPPED and o.reason.startswith("fetch_failed"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "ran": self.ran,
            "reason": self.reason,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "total": len(self.outcomes),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class PricePolicyEngine:
    """
    Scheduled price refresh per ingredient:
      Idle -> DueForCheck -> Updated | Skipped -> Idle

    The scheduler itself is external; it calls run_cycle() periodically.
    Fetch failures are never retried inside a cycle, the next cycle picks
    the ingredient up again because its last_price_fetch did not move.
    """

    def __init__(
        self,
        ingredients: IngredientRepo,
        ledger: PriceLedger,
        source: PriceSource,
        costing: Optional[RecipeCostingService],
        settings: SettingsRepo | PriceUpdateSettings,
        fetch_timeout_s: float = 30.0,
    ) -> None:
        self.ingredients = ingredients
        self.ledger = ledger
        self.source = source
        self.costing = costing
        self._settings = settings
        self.fetch_timeout_s = fetch_timeout_s
        self._states: Dict[str, CheckState] = {}

    @property
    def settings(self) -> PriceUpdateSettings:
        return resolve_settings(self._settings)

    def _stamp_last_run(self, at: datetime) -> None:
        s = self._settings
        if isinstance(s, PriceUpdateSettings):
            s.last_update_run = at
            return
        current = s.load()
        current.last_update_run = at
        current.updated_at = utcnow()
        s.save(current)

    def state_of(self, ingredient_id: str) -> CheckState:
        return self._states.get(ingredient_id, CheckState.IDLE)

    def is_due(self, ingredient: Ingredient, now: datetime, settings: Optional[PriceUpdateSettings] = None) -> bool:
        s = settings or self.settings
        if not ingredient.is_active or not ingredient.auto_update_enabled:
            return False
        if ingredient.category not in s.enabled_categories:
            return False
        if ingredient.last_price_fetch is None:
            return True
        return as_utc(now) - as_utc(ingredient.last_price_fetch) >= timedelta(hours=s.update_frequency_hours)

    def due_ingredients(self, now: datetime) -> List[Ingredient]:
        s = self.settings
        return [i for i in self.ingredients.all() if self.is_due(i, now, s)]

    async def check(self, ingredient: Ingredient, now: Optional[datetime] = None) -> CheckOutcome:
        self._states[ingredient.id] = CheckState.DUE_FOR_CHECK
        try:
            outcome = await self._check(ingredient, now)
        finally:
            self._states[ingredient.id] = CheckState.IDLE
        return outcome

    async def _check(self, ingredient: Ingredient, now: Optional[datetime]) -> CheckOutcome:
        try:
            with anyio.fail_after(self.fetch_timeout_s):
                obs = await anyio.to_thread.run_sync(self.source.fetch, ingredient, abandon_on_cancel=True)
        except TimeoutError:
            log.warning("Price fetch for %s timed out after %ss", ingredient.name, self.fetch_timeout_s)
            return self._skipped(ingredient, "fetch_failed: timeout")
        except SourceFetchError as e:
            log.warning("Failed to fetch price for %s: %s", ingredient.name, e.reason)
            return self._skipped(ingredient, f"fetch_failed: {e.reason}")

        if now is not None and obs.recorded_at is None:
            obs = replace(obs, recorded_at=now)

        # ledger and repo calls block on locks and storage I/O; keep them off the loop
        try:
            result = await anyio.to_thread.run_sync(self.ledger.record_observation, obs)
        except CostingError as e:
            log.warning("Rejected fetched price for %s: %s", ingredient.name, e)
            return self._skipped(ingredient, f"rejected: {e}")

        if not result.live_updated:
            log.info(
                "Skipped %s: %s is within the threshold of the live price",
                ingredient.name,
                result.entry.price,
            )
            self._states[ingredient.id] = CheckState.SKIPPED
            return CheckOutcome(ingredient.id, ingredient.name, CheckState.SKIPPED, "below_threshold", result)

        stale: List[str] = []
        if self.costing is not None:
            stale = await anyio.to_thread.run_sync(self.costing.mark_stale_for_ingredient, ingredient.id)
        self._states[ingredient.id] = CheckState.UPDATED
        return CheckOutcome(ingredient.id, ingredient.name, CheckState.UPDATED, "", result, stale)

    def _skipped(self, ingredient: Ingredient, reason: str) -> CheckOutcome:
        self._states[ingredient.id] = CheckState.SKIPPED
        return CheckOutcome(ingredient.id, ingredient.name, CheckState.SKIPPED, reason)

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        now = as_utc(now) if now else utcnow()
        settings = await anyio.to_thread.run_sync(resolve_settings, self._settings)
        report = CycleReport(started_at=now, ran=False)
        log.info("Price update cycle triggered at %s", now.isoformat())

        if not settings.auto_update_enabled:
            log.info("Auto-update is disabled. Skipping price refresh.")
            report.reason = "auto_update_disabled"
            return report

        candidates = await anyio.to_thread.run_sync(self.ingredients.all)
        due = [i for i in candidates if self.is_due(i, now, settings)]
        report.ran = True
        if not due:
            log.info("No ingredients due for a price check.")
            report.reason = "nothing_due"
        for ingredient in due:
            report.outcomes.append(await self.check(ingredient, now))

        await anyio.to_thread.run_sync(self._stamp_last_run, now)
        log.info(
            "Automatic price update completed: %d updated, %d skipped, %d failed, %d total",
            report.updated,
            report.skipped,
            report.failed,
            len(due),
        )
        return report

    async def refresh(self, ingredient_id: str, now: Optional[datetime] = None) -> CheckOutcome:
        """Manual refresh of one ingredient, ignoring schedule and category filters."""
        ingredient = await anyio.to_thread.run_sync(self.ingredients.get, ingredient_id)
        if ingredient is None:
            raise NotFound("Ingredient", ingredient_id)
        return await self.check(ingredient, now)
