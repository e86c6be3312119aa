import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field


class RalphEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    hook: str
    iteration: int = 0
    payload: Dict[str, Any] = Field(default_factory=dict)


class EventBus:
    """A lightweight, synchronous event bus decoupling the controller from its audit trail."""

    def __init__(self):
        self._subscribers: List[Callable[[RalphEvent], None]] = []

    def subscribe(self, callback: Callable[[RalphEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def emit(self, event_type: str, hook: str, iteration: int = 0, payload: Dict[str, Any] | None = None) -> RalphEvent:
        """Construct and broadcast a RalphEvent to all subscribers."""
        event = RalphEvent(
            event_type=event_type,
            hook=hook,
            iteration=iteration,
            payload=payload or {},
        )

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                # A failing subscriber (like a bad file write) must not fail the hook
                logger.warning(f"[EVENTS] Subscriber failed on {event_type}: {e}")
        return event
