from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


logger = logging.getLogger("salesfunnel.events")


@dataclass(frozen=True, slots=True)
class InternalEvent:
    name: str
    payload: dict[str, Any]


FunnelEventHandler = Callable[[InternalEvent], None]


class FunnelEventBus:
    """Synchronous fan-out for funnel events.

    Events are published after the owning transaction has committed, so a failing subscriber
    is logged and skipped rather than raised back into the caller.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[FunnelEventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: FunnelEventHandler) -> None:
        if handler not in self._handlers[event_name]:
            self._handlers[event_name].append(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> int:
        """Deliver to every subscriber of ``event_name``; returns how many handled it."""
        event = InternalEvent(name=event_name, payload=payload)
        delivered = 0
        for handler in tuple(self._handlers.get(event_name, ())):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "events.handler_failed",
                    extra={"event_name": event_name, "handler": getattr(handler, "__qualname__", repr(handler))},
                )
            else:
                delivered += 1
        return delivered


event_bus = FunnelEventBus()
