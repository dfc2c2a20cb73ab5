# music_presence/events.py
import logging
import threading
from typing import Callable, Generic, List, Optional, TypeVar

from .logs import get_logger

T = TypeVar("T")


class EventStream(Generic[T]):
    """
    Typed publish/subscribe channel owned by the component that emits on it.

    Handlers run synchronously in the emitting thread, in subscription order.
    A handler that raises is logged and skipped; the emitter and the other
    handlers are unaffected.
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self._log = logger or get_logger("events")
        self._handlers: List[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe():
            self.unsubscribe(handler)

        return unsubscribe

    def unsubscribe(self, handler: Callable[[T], None]) -> None:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    def emit(self, event: T) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                self._log.exception("Handler for %s failed", self.name)

    def __len__(self) -> int:
        return len(self._handlers)
