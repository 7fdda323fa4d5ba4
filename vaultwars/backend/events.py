"""Room notifications carrying identities, amounts and sealed handle strings only."""

from __future__ import annotations

from collections import deque
import logging
from typing import Any, Callable

from vaultwars.backend.sealed import SealedHandle

logger = logging.getLogger(__name__)

Subscriber = Callable[[dict[str, Any]], None]

DEFAULT_HISTORY_LIMIT = 10_000


class EventBus:
    """Fans events out to subscribers and keeps the most recent ones for replay."""

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._log: deque[dict[str, Any]] = deque(maxlen=history_limit)
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def publish(self, kind: str, room_id: int, **payload: Any) -> dict[str, Any]:
        event: dict[str, Any] = {"kind": kind, "roomId": room_id}
        for key, value in payload.items():
            event[key] = _render(value)
        self._log.append(event)
        logger.debug(f"Published {kind} for room {room_id}")
        for subscriber in list(self._subscribers):
            subscriber(event)
        return event

    def events_for(self, room_id: int) -> list[dict[str, Any]]:
        return [event for event in self._log if event["roomId"] == room_id]

    def all_events(self) -> list[dict[str, Any]]:
        return list(self._log)


def _render(value: Any) -> Any:
    if isinstance(value, SealedHandle):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_render(item) for item in value]
    return value
