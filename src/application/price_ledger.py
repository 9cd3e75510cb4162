# =========================
# FILE: kitchen_cost_engine/src/application/price_ledger.py
# =========================
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional

from src.domain.entities import (
    PriceAlert,
    PriceHistory,
    PriceObservation,
    PriceSourceKind,
    PriceUpdateSettings,
    utcnow,
)
from src.domain.errors import CostingError, NotFound, ValidationError
from src.domain.money import percent_change, round_percent, to_decimal
from src.domain.repositories import AlertSink, IngredientRepo, PriceHistoryRepo, SettingsRepo

log = logging.getLogger("app.price_ledger")


def as_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken as UTC; aware ones are converted."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def resolve_settings(source: PriceUpdateSettings | SettingsRepo) -> PriceUpdateSettings:
    """Accept a settings value or a SettingsRepo."""
    if isinstance(source, PriceUpdateSettings):
        return source
    return source.load()


def parse_source(value: Any) -> PriceSourceKind:
    if isinstance(value, PriceSourceKind):
        return value
    try:
        return PriceSourceKind(str(value or PriceSourceKind.MANUAL.value).strip().lower())
    except ValueError as e:
        raise ValidationError(f"Unknown price source: {value!r}") from e


@dataclass(frozen=True)
class PriceRecordResult:
    entry: PriceHistory
    live_updated: bool
    alert: Optional[PriceAlert] = None


@dataclass
class IngestReport:
    recorded: List[PriceRecordResult] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


class HistoryView:
    """Lazy, finite, restartable view over one ingredient's history.

    Each iteration re-reads the store, so a view created before new
    prices are recorded still sees them on its next pass.
    """

    def __init__(
        self,
        repo: PriceHistoryRepo,
        ingredient_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> None:
        self._repo = repo
        self.ingredient_id = ingredient_id
        self.start = as_utc(start) if start else None
        self.end = as_utc(end) if end else None

    def __iter__(self) -> Iterator[PriceHistory]:
        return iter(self._repo.iter_range(self.ingredient_id, self.start, self.end))

    def to_list(self) -> List[PriceHistory]:
        return list(self)


class _KeyedLocks:
    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._mu = threading.Lock()

    def for_key(self, key: str) -> threading.Lock:
        with self._mu:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


class PriceLedger:
    """Current price per ingredient plus an append-only price history.

    ``settings`` may be a PriceUpdateSettings value or a SettingsRepo; it is
    resolved on every record_price call.

    History rows carry the change against the previous record. The live
    price only moves when the change against the current live price reaches
    min_change_percentage_to_record, so slow drift still lands eventually.
    """

    def __init__(
        self,
        ingredients: IngredientRepo,
        history: PriceHistoryRepo,
        settings: PriceUpdateSettings | SettingsRepo,
        alerts: Optional[AlertSink] = None,
    ) -> None:
        self.ingredients = ingredients
        self.history = history
        self._settings = settings
        self.alerts = alerts
        self._locks = _KeyedLocks()

    @property
    def settings(self) -> PriceUpdateSettings:
        return resolve_settings(self._settings)

    def record_price(
        self,
        ingredient_id: str,
        new_price: Any,
        source: Any = PriceSourceKind.MANUAL,
        recorded_at: Optional[datetime] = None,
        market_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> PriceRecordResult:
        price = to_decimal(new_price, "price")
        if price <= 0:
            raise ValidationError(f"price must be > 0, got {price}")
        src = parse_source(source)
        settings = self.settings

        with self._locks.for_key(ingredient_id):
            ts = as_utc(recorded_at) if recorded_at else utcnow()
            ingredient = self.ingredients.get(ingredient_id)
            if ingredient is None:
                raise NotFound("Ingredient", ingredient_id)

            prior = self.history.latest(ingredient_id)
            if prior is not None and ts < prior.recorded_at:
                raise ValidationError(
                    f"recorded_at {ts.isoformat()} is older than the latest record {prior.recorded_at.isoformat()}"
                )
            change: Optional[Decimal] = None
            if prior is not None:
                change = percent_change(prior.price, price)

            entry = PriceHistory(
                ingredient_id=ingredient.id,
                ingredient_name=ingredient.name,
                price=price,
                unit=ingredient.unit,
                source=src,
                recorded_at=ts,
                change_percentage=round_percent(change) if change is not None else None,
                market_name=market_name,
                notes=notes,
            )
            self.history.append(entry)

            live_price = ingredient.market_price
            # the opening record always sets the live price
            live_change = percent_change(live_price, price) if prior is not None and live_price > 0 else None
            live_updated = live_change is None or abs(live_change) >= settings.min_change_percentage_to_record
            if live_updated:
                if live_price != price:
                    ingredient.previous_price = live_price
                ingredient.market_price = price
                ingredient.price_change_percentage = round_percent(live_change) if live_change is not None else None
                ingredient.price_source = src
                ingredient.last_price_fetch = ts
                ingredient.updated_at = utcnow()
                self.ingredients.save(ingredient)
                log.info(
                    "Updated %s: %s -> %s (%s%%)",
                    ingredient.name,
                    live_price,
                    price,
                    ingredient.price_change_percentage,
                )
            else:
                log.info(
                    "Logged %s at %s; change %s%% against live %s below threshold %s%%",
                    ingredient.name,
                    price,
                    round_percent(live_change),
                    live_price,
                    settings.min_change_percentage_to_record,
                )

            alert: Optional[PriceAlert] = None
            if live_change is not None and abs(live_change) >= settings.alert_threshold_percentage:
                alert = PriceAlert(
                    ingredient_id=ingredient.id,
                    ingredient_name=ingredient.name,
                    old_price=live_price,
                    new_price=price,
                    change_percentage=round_percent(live_change),
                    recorded_at=ts,
                )

        # alert sink is called outside the per-ingredient lock
        if alert is not None and self.alerts is not None:
            self.alerts.publish(alert)
        return PriceRecordResult(entry=entry, live_updated=live_updated, alert=alert)

    def record_observation(self, obs: PriceObservation) -> PriceRecordResult:
        return self.record_price(
            obs.ingredient_id,
            obs.price,
            obs.source,
            obs.recorded_at,
            market_name=obs.market_name,
            notes=obs.notes,
        )

    def ingest(self, observations: Iterable[PriceObservation]) -> IngestReport:
        """Record a batch; bad items are reported and do not abort the rest."""
        report = IngestReport()
        for obs in observations:
            try:
                report.recorded.append(self.record_observation(obs))
            except CostingError as e:
                log.warning("Rejected observation for %s: %s", obs.ingredient_id, e)
                report.errors.append({"ingredient_id": obs.ingredient_id, "error": str(e)})
        return report

    def get_history(
        self,
        ingredient_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> HistoryView:
        return HistoryView(self.history, ingredient_id, start, end)

    def history_for_days(self, ingredient_id: str, days: int, now: Optional[datetime] = None) -> HistoryView:
        if days <= 0:
            raise ValidationError(f"days must be > 0, got {days}")
        end = as_utc(now) if now else utcnow()
        return self.get_history(ingredient_id, end - timedelta(days=days), end)
