"""In-process publish/subscribe keyed by user id."""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class SubscriberChannel:
    """Fan out payloads to the callbacks registered for one key.

    Each ``subscribe`` call is its own subscription, so the same callable
    registered twice is delivered to twice and disposed independently.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[tuple[object, Callable[[Any], None]]]] = {}

    def subscribe(self, key: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        token = object()
        self._subscribers.setdefault(key, []).append((token, callback))

        def unsubscribe() -> None:
            entries = self._subscribers.get(key)
            if not entries:
                return
            entries[:] = [e for e in entries if e[0] is not token]
            if not entries:
                del self._subscribers[key]

        return unsubscribe

    def publish(self, key: str, payload: Any) -> int:
        """Deliver ``payload`` to every subscriber of ``key``.

        A failing callback is logged and does not stop delivery to the
        others.

        Returns:
            Number of callbacks invoked.
        """
        entries = list(self._subscribers.get(key, ()))
        for _, callback in entries:
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber for %s raised", key)
        return len(entries)

    def subscriber_count(self, key: str) -> int:
        return len(self._subscribers.get(key, ()))
