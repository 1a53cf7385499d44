"""In-process publisher for session lifecycle events.

Subscribers run synchronously after the state change has been committed. A
subscriber that raises is logged and skipped; it can never change the outcome
of the operation that published the event.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    name: str
    session_id: str
    flow: str
    from_state: str | None
    to_state: str
    timestamp: datetime
    payload_snapshot: dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[LifecycleEvent], None]


class EventEmitter:
    def __init__(self, subscribers: list[Subscriber] | None = None):
        self._subscribers: list[Subscriber] = list(subscribers or [])

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def publish(self, event: LifecycleEvent) -> None:
        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.warning(
                    "Subscriber %r failed on %s for session %s",
                    subscriber,
                    event.name,
                    event.session_id,
                    exc_info=True,
                )
