# kitchen_cost_engine/src/application/price_trends.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from src.domain.entities import PriceHistory
from src.domain.money import percent_change, round_money, round_percent


@dataclass(frozen=True)
class PriceTrend:
    ingredient_id: str
    samples: int
    first_price: Decimal
    last_price: Decimal
    min_price: Decimal
    max_price: Decimal
    average_price: Decimal
    net_change_percentage: Decimal
    volatility: Decimal
    large_moves: int
    first_recorded_at: datetime
    last_recorded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ingredient_id": self.ingredient_id,
            "samples": self.samples,
            "first_price": self.first_price,
            "last_price": self.last_price,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "average_price": self.average_price,
            "net_change_percentage": self.net_change_percentage,
            "volatility": self.volatility,
            "large_moves": self.large_moves,
            "first_recorded_at": self.first_recorded_at,
            "last_recorded_at": self.last_recorded_at,
        }


def summarize(history: Iterable[PriceHistory], large_move_threshold: Optional[Decimal] = None) -> Optional[PriceTrend]:
    """Window statistics over oldest-to-newest history; None for an empty window.

    volatility is the population standard deviation of the recorded
    change percentages inside the window (0 with fewer than two).
    """
    rows: List[PriceHistory] = list(history)
    if not rows:
        return None

    prices = [r.price for r in rows]
    changes = np.array([float(r.change_percentage) for r in rows if r.change_percentage is not None], dtype=np.float64)
    volatility = float(np.std(changes)) if changes.size >= 2 else 0.0

    large = 0
    if large_move_threshold is not None:
        large = sum(
            1 for r in rows
            if r.change_percentage is not None and abs(r.change_percentage) >= large_move_threshold
        )

    avg = sum(prices, Decimal("0")) / len(prices)
    return PriceTrend(
        ingredient_id=rows[0].ingredient_id,
        samples=len(rows),
        first_price=prices[0],
        last_price=prices[-1],
        min_price=min(prices),
        max_price=max(prices),
        average_price=round_money(avg),
        net_change_percentage=round_percent(percent_change(prices[0], prices[-1])),
        volatility=round_percent(Decimal(str(volatility))),
        large_moves=large,
        first_recorded_at=rows[0].recorded_at,
        last_recorded_at=rows[-1].recorded_at,
    )
