import logging
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[Optional[dict]], None]

SAVE_COMPLETED = "save.completed"
SAVE_FAILED = "save.failed"
LOAD_STARTED = "load.started"
LOAD_CHUNK = "load.chunk"
LOAD_COMPLETED = "load.completed"
LOAD_FAILED = "load.failed"
PERFORMANCE_WARNING = "performance.warning"
RECOVERY_STARTED = "recovery.started"
RECOVERY_STEP = "recovery.step"
RECOVERY_COMPLETED = "recovery.completed"
RECOVERY_FAILED = "recovery.failed"
MIGRATION_STARTED = "migration.started"
MIGRATION_STEP = "migration.step"
MIGRATION_COMPLETED = "migration.completed"
MIGRATION_FAILED = "migration.failed"


class EventBus:
    """Minimal synchronous pub/sub event bus.

    Progress and outcome notifications flow through here so storage code never
    depends on whoever displays them. A failing subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Callback]] = {}

    def subscribe(self, event_name: str, callback: Callback) -> None:
        logger.debug("Subscribing to event '%s': %s", event_name, callback)
        self._subscribers.setdefault(event_name, []).append(callback)

    def unsubscribe(self, event_name: str, callback: Callback) -> None:
        callbacks = self._subscribers.get(event_name, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def publish(self, event_name: str, payload: Optional[dict] = None) -> None:
        logger.debug("Publishing event '%s' to %d subscribers", event_name, len(self._subscribers.get(event_name, [])))
        for cb in list(self._subscribers.get(event_name, [])):
            try:
                cb(payload)
            except Exception as exc:
                logger.exception("Error in event subscriber for '%s': %s", event_name, exc)
