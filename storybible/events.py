"""In-process publish/subscribe bus for domain events."""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Any]
Unsubscribe = Callable[[], None]


class EventBus:
    """Synchronous event bus.

    Handlers are called in subscription order, type-specific handlers first and
    universal handlers afterwards. A failing handler is logged and does not stop
    delivery to the remaining handlers.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._any_handlers: List[EventHandler] = []

    def on(self, event_type: str, handler: EventHandler) -> Unsubscribe:
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

        def unsubscribe() -> None:
            self.off(event_type, handler)

        return unsubscribe

    def on_any(self, handler: EventHandler) -> Unsubscribe:
        if handler not in self._any_handlers:
            self._any_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._any_handlers:
                self._any_handlers.remove(handler)

        return unsubscribe

    def off(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event_type: str, **payload: Any) -> Dict[str, Any]:
        event = dict(payload)
        event["type"] = event_type
        event["_id"] = uuid.uuid4().hex
        event["_timestamp"] = int(time.time() * 1000)

        for handler in list(self._handlers.get(event_type, [])):
            try:
                handler(event)
            except Exception:
                LOGGER.exception("Error in event handler for %s", event_type)

        for handler in list(self._any_handlers):
            try:
                handler(event)
            except Exception:
                LOGGER.exception("Error in universal event handler for %s", event_type)

        return event

    def handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))

    def any_handler_count(self) -> int:
        return len(self._any_handlers)

    def remove_all_listeners(self, event_type: Optional[str] = None) -> None:
        if event_type:
            self._handlers.pop(event_type, None)
        else:
            self._handlers.clear()
            self._any_handlers.clear()


__all__ = ["EventBus", "EventHandler", "Unsubscribe"]
