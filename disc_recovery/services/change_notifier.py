"""
Per-recovery change feed.

Payloads say only "recovery X changed"; subscribers re-fetch the projection,
so delivery order across recoveries does not matter and a stale subscriber
corrects itself on the next fetch.
"""
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

import structlog

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RecoveryChanged:
    recovery_event_id: uuid.UUID

    def to_dict(self) -> dict:
        return {
            "type": "recovery_changed",
            "recovery_event_id": str(self.recovery_event_id),
        }


Subscriber = Callable[[RecoveryChanged], None]


class ChangeNotifier:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[uuid.UUID, list[Subscriber]] = defaultdict(list)

    def subscribe(self, recovery_event_id: uuid.UUID, callback: Subscriber) -> Callable[[], None]:
        """Register callback; returns a function that removes it again."""
        with self._lock:
            self._subscribers[recovery_event_id].append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(recovery_event_id)
                if callbacks and callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(recovery_event_id, None)

        return unsubscribe

    def subscriber_count(self, recovery_event_id: uuid.UUID) -> int:
        with self._lock:
            return len(self._subscribers.get(recovery_event_id, ()))

    def publish(self, event: RecoveryChanged):
        with self._lock:
            callbacks = list(self._subscribers.get(event.recovery_event_id, ()))

        log.debug("recovery_changed", recovery_event_id=str(event.recovery_event_id), subscribers=len(callbacks))

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                log.exception("subscriber_failed", recovery_event_id=str(event.recovery_event_id))


change_notifier = ChangeNotifier()


def get_change_notifier() -> ChangeNotifier:
    return change_notifier
