"""Event system for observing a pipeline controller.

The controller owns one EventEmitter and emits an event whenever its
observable state changes. Display surfaces (the CLI and the WebSocket
server) subscribe to it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events emitted by the controller."""

    # Run lifecycle
    PIPELINE_START = "pipeline_start"
    REFINEMENT_START = "refinement_start"

    # State changes
    STATUS_CHANGE = "status_change"
    MISSION_LOG_UPDATED = "mission_log_updated"
    FINAL_PROMPT_UPDATED = "final_prompt_updated"
    FILES_FETCHED = "files_fetched"
    IMAGES_CHANGED = "images_changed"

    ERROR = "error"
    LOG = "log"


@dataclass
class Event:
    """A single event to broadcast to subscribers."""

    type: EventType
    data: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict())


class EventEmitter:
    """Synchronous fan-out of events to subscribed callbacks."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[Event], None]] = []

    def subscribe(self, callback: Callable[[Event], None]) -> None:
        """Subscribe to events with a synchronous callback."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Event], None]) -> None:
        """Remove a subscriber."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, event_type: EventType, data: Optional[dict] = None) -> Event:
        """Emit an event to all subscribers.

        A failing subscriber is logged and does not affect the others or the
        emitting controller.
        """
        event = Event(type=event_type, data=data or {})
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in event subscriber: {e}")
        return event
