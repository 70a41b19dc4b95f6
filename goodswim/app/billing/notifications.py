"""In-process subscription change channel."""
from __future__ import annotations

import logging
from threading import Lock
from typing import Callable, List, Protocol

logger = logging.getLogger("billing")

ChangeListener = Callable[[str], None]


class SubscriptionChangeNotifier(Protocol):
    """Announces that a team's subscription record was written."""

    def publish(self, team_id: str) -> None:
        ...


class SubscriptionChangeBus:
    """Fan-out of subscription change notifications to registered listeners.

    A failing listener is logged and does not stop delivery to the others or
    propagate back into the write path that published the change.
    """

    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []
        self._lock = Lock()

    def subscribe(self, listener: ChangeListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, team_id: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        logger.debug("Subscription change team=%s listeners=%s", team_id, len(listeners))
        for listener in listeners:
            try:
                listener(team_id)
            except Exception:
                logger.exception("Subscription change listener failed for team %s", team_id)


__all__ = ["ChangeListener", "SubscriptionChangeBus", "SubscriptionChangeNotifier"]
