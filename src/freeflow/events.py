"""
Scene notifications.

The payload types a scene host publishes, and the EventBus it publishes them
on. The reconciliation pipeline and the session subscribe; hosts emit.

Example:
    from freeflow.events import NODE_CHANGE, EventBus

    async def on_change(event: NodeChangeEvent):
        for change in event.changes:
            print(change.type, change.id)

    bus = EventBus()
    bus.on(NODE_CHANGE, on_change, source="0:1")
    await bus.emit(NODE_CHANGE, NodeChangeEvent(page_id="0:1", changes=[...]))
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from freeflow.logging import get_logger

logger = get_logger("events")


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

# Event name constants
NODE_CHANGE = "nodechange"
CURRENT_PAGE_CHANGE = "currentpagechange"
SELECTION_CHANGE = "selectionchange"
CLOSE = "close"


class ChangeType(str, Enum):
    """Kind of node mutation reported by the host."""

    CREATE = "CREATE"
    PROPERTY_CHANGE = "PROPERTY_CHANGE"
    DELETE = "DELETE"


@dataclass
class NodeChange:
    """A single node mutation."""

    id: str
    type: ChangeType


@dataclass
class NodeChangeEvent:
    """A batch of node mutations on one page."""

    page_id: str
    changes: list[NodeChange] = field(default_factory=list)


@dataclass
class CurrentPageChangeEvent:
    """Emitted after the active page switched."""

    previous_page_id: str
    page_id: str


@dataclass
class SelectionChangeEvent:
    """Emitted when the user selection changes. Ids are in selection order."""

    node_ids: list[str] = field(default_factory=list)


@dataclass
class CloseEvent:
    """Emitted when the host session is about to end."""

    reason: str = ""


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------

# Handlers take the event payload and may be sync or async.
EventHandler = Callable[[Any], Any]


@dataclass
class _Subscription:
    handler: EventHandler
    source: str = ""  # page id or component that subscribed


class EventBus:
    """
    Delivers host notifications to subscribers in subscription order.

    Each subscription carries a ``source`` tag so a component can drop all of
    its handlers at once, e.g. when the pipeline detaches from a page.

    Usage:
        bus = EventBus()
        unsub = bus.on(NODE_CHANGE, pipeline.handle_node_change, source="0:1")
        await bus.emit(NODE_CHANGE, event)
        unsub()
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}

    def on(self, event: str, handler: EventHandler, source: str = "") -> Callable[[], None]:
        """Subscribe to an event. Returns a function that removes the subscription."""
        subscription = _Subscription(handler=handler, source=source)
        self._subscriptions.setdefault(event, []).append(subscription)

        def unsubscribe() -> None:
            subscriptions = self._subscriptions.get(event, [])
            if subscription in subscriptions:
                subscriptions.remove(subscription)

        return unsubscribe

    def off(self, event: str, handler: EventHandler) -> None:
        """Remove every subscription of ``handler`` to ``event``."""
        self._subscriptions[event] = [
            s for s in self._subscriptions.get(event, []) if s.handler is not handler
        ]

    def off_by_source(self, source: str) -> int:
        """Remove all subscriptions made by ``source``. Returns how many were removed."""
        removed = 0
        for event, subscriptions in self._subscriptions.items():
            kept = [s for s in subscriptions if s.source != source]
            removed += len(subscriptions) - len(kept)
            self._subscriptions[event] = kept
        return removed

    async def emit(self, event: str, data: Any = None) -> list[Any]:
        """
        Deliver ``data`` to every subscriber of ``event``.

        Async handlers are awaited one after another, so every handler has
        finished with the event when ``emit`` returns. Subscriptions made
        while delivering see only later events. A failing handler is logged
        and the rest still run.

        Returns:
            Non-None handler results, in delivery order
        """
        results: list[Any] = []
        for subscription in list(self._subscriptions.get(event, [])):
            try:
                result = subscription.handler(data)
                if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                    result = await result
            except Exception as e:
                logger.warning("Handler for %s (source=%s) failed: %s", event, subscription.source, e)
                continue
            if result is not None:
                results.append(result)
        return results

    @property
    def handler_count(self) -> int:
        """Total number of subscriptions."""
        return sum(len(s) for s in self._subscriptions.values())

    def has_handlers(self, event: str) -> bool:
        return bool(self._subscriptions.get(event))
