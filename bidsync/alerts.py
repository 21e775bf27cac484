"""User-facing alerts (toasts) raised by the push channel and mutations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alert:
    level: str
    title: str
    message: str
    action_label: str | None = None
    action_target: str | None = None


class AlertSink(Protocol):
    def emit(self, alert: Alert) -> None: ...


class AlertCollector:
    """Keeps emitted alerts and forwards each one to an optional callback."""

    def __init__(self, callback: Callable[[Alert], None] | None = None) -> None:
        self._callback = callback
        self.alerts: list[Alert] = []

    def emit(self, alert: Alert) -> None:
        logger.info("alert level=%s title=%s", alert.level, alert.title)
        self.alerts.append(alert)
        if self._callback is not None:
            self._callback(alert)

    def clear(self) -> None:
        self.alerts.clear()
