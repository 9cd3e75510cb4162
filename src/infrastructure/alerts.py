# kitchen_cost_engine/src/infrastructure/alerts.py
from __future__ import annotations

import logging
import threading
from typing import List

from src.domain.entities import PriceAlert

log = logging.getLogger("infra.alerts")


class LoggingAlertSink:
    """Default notification collaborator: writes one WARNING per alert."""

    def publish(self, alert: PriceAlert) -> None:
        log.warning(
            "ALERT: Significant price change for %s: %s -> %s (%s%%)",
            alert.ingredient_name,
            alert.old_price,
            alert.new_price,
            alert.change_percentage,
        )


class CollectingAlertSink:
    def __init__(self) -> None:
        self.alerts: List[PriceAlert] = []
        self._mu = threading.Lock()

    def publish(self, alert: PriceAlert) -> None:
        with self._mu:
            self.alerts.append(alert)
