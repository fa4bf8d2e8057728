import logging
import threading
from typing import Any, Callable, Dict, List

from .errors import ConfigurationError, HandlerNotFound

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]
Listener = Callable[[Any], None]

EVENTS = ("start", "done", "failed", "recover")


class HandlerRegistry:
    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, name: str, handler: Handler) -> None:
        if not name or not str(name).strip():
            raise ConfigurationError("Handler name cannot be empty.")
        if not callable(handler):
            raise ConfigurationError(f"Handler for '{name}' is not callable.")
        self._handlers[name] = handler

    def get(self, name: str) -> Handler:
        try:
            return self._handlers[name]
        except KeyError:
            raise HandlerNotFound(name) from None

    def __contains__(self, name) -> bool:
        return name in self._handlers

    def names(self) -> List[str]:
        return sorted(self._handlers)


class EventBus:
    """Ordered listener lists per event; a failing listener is logged and skipped."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {e: [] for e in EVENTS}
        self._lock = threading.Lock()

    def subscribe(self, event: str, listener: Listener) -> None:
        if event not in self._listeners:
            raise ConfigurationError(f"Unknown event '{event}'. Events: {', '.join(EVENTS)}")
        with self._lock:
            self._listeners[event].append(listener)

    def emit(self, event: str, job) -> None:
        with self._lock:
            listeners = list(self._listeners[event])
        for listener in listeners:
            try:
                listener(job)
            except Exception:
                logger.exception("Listener %r for '%s' failed on job %s", listener, event, job.id)
