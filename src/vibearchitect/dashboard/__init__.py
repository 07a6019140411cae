"""Browser dashboard and event plumbing for the pipeline controller."""

from .events import Event, EventEmitter, EventType
from .server import create_app, run_server

__all__ = [
    "Event",
    "EventEmitter",
    "EventType",
    "create_app",
    "run_server",
]
