"""
Change reconciliation pipeline.

Turns host mutation notifications into connector updates. Property changes
are collected into a pending set and flushed after a quiet period; deletions
are handled immediately, inside the notification that reported them, so a
flush never runs against a connector whose endpoint is already gone.

Example:
    pipeline = ReconciliationPipeline(scene, store, config)
    pipeline.start()

    scene.move_node(a, 40, 0)
    await scene.flush()      # change recorded, timer armed
    await pipeline.settle()  # or wait config.debounce_ms
"""

from __future__ import annotations

import asyncio

from freeflow.config import FreeflowConfig
from freeflow.debounce import Debouncer
from freeflow.events import (
    CURRENT_PAGE_CHANGE,
    NODE_CHANGE,
    ChangeType,
    CurrentPageChangeEvent,
    NodeChangeEvent,
)
from freeflow.logging import get_logger
from freeflow.scene.base import SceneHost, SceneNode
from freeflow.store import ConnectorStore

logger = get_logger("pipeline")

_SOURCE = "pipeline"


class ReconciliationPipeline:
    """Keeps the connectors of the active page in sync with the scene."""

    def __init__(
        self,
        host: SceneHost,
        store: ConnectorStore,
        config: FreeflowConfig | None = None,
    ) -> None:
        self.host = host
        self.store = store
        self.config = config or store.config
        self.pending: set[str] = set()
        self.debouncer = Debouncer(self.flush, self.config.debounce_seconds)
        self._page: SceneNode | None = None
        self._started = False

    @property
    def page(self) -> SceneNode | None:
        """The page currently attached, if any."""
        return self._page

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Load and attach the current page and follow page switches."""
        if self._started:
            return
        self._started = True
        page = self.host.current_page
        self.store.load(page)
        self.attach(page)
        self.host.events.on(CURRENT_PAGE_CHANGE, self.handle_page_change, source=_SOURCE)

    def stop(self) -> None:
        """Unsubscribe from everything. Pending changes are dropped."""
        if not self._started:
            return
        self._started = False
        self.debouncer.cancel()
        self.detach()
        self.host.events.off_by_source(_SOURCE)

    def attach(self, page: SceneNode) -> None:
        """Listen to node changes on ``page``."""
        self.detach()
        self._page = page
        self.host.events.on(NODE_CHANGE, self.handle_node_change, source=page.id)
        logger.debug("Attached to page %s", page.id)

    def detach(self) -> None:
        """Stop listening to the attached page."""
        if self._page is None:
            return
        self.host.events.off_by_source(self._page.id)
        logger.debug("Detached from page %s", self._page.id)
        self._page = None

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def handle_node_change(self, event: NodeChangeEvent) -> None:
        if self._page is None or event.page_id != self._page.id:
            return

        for change in event.changes:
            if change.type == ChangeType.PROPERTY_CHANGE:
                await self._collect(change.id)
            elif change.type == ChangeType.DELETE:
                await self._handle_delete(change.id)

        if self.pending:
            self.debouncer.trigger()

    async def _collect(self, node_id: str) -> None:
        if self.store.is_connector(node_id):
            return

        node = await self.host.get_node(node_id)
        affected = self.host.get_descendant_ids(node) if node is not None else [node_id]

        for connector_id in self.store.ids():
            if any(self.store.affects_connector(connector_id, i) for i in affected):
                self.pending.add(connector_id)

    async def _handle_delete(self, node_id: str) -> None:
        for connector_id in self.store.ids():
            if self.store.is_label_of(connector_id, node_id):
                await self.store.remove_label(connector_id)
            if self.store.affects_connector(connector_id, node_id):
                self.pending.discard(connector_id)
                await self.store.remove(connector_id)

    async def handle_page_change(self, event: CurrentPageChangeEvent) -> None:
        """Persist the outgoing page and switch to the new one."""
        outgoing = self._page
        await self.settle()

        if outgoing is not None:
            await self.store.sweep()
            self.store.save(outgoing)
        self.detach()

        page = await self.host.get_node(event.page_id)
        if page is None:
            logger.warning("Page %s vanished before it could be loaded", event.page_id)
            return
        self.store.load(page)
        self.attach(page)
        logger.info("Switched to page %s", page.name or page.id)

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    async def flush(self) -> list[str]:
        """
        Update every pending connector once, in parallel.

        A failing update is logged and does not affect the others.

        Returns:
            Ids that were processed
        """
        connector_ids = sorted(self.pending)
        self.pending.clear()
        if not connector_ids:
            return []

        logger.debug("Flushing %d connectors", len(connector_ids))
        await asyncio.gather(*(self._update_one(i) for i in connector_ids))
        return connector_ids

    async def _update_one(self, connector_id: str) -> None:
        try:
            await self.store.update(connector_id)
        except Exception:
            logger.exception("Failed to update connector %s", connector_id)

    async def settle(self) -> None:
        """Flush pending changes now and wait for in-flight flushes."""
        self.debouncer.cancel()
        await self.flush()
        await self.debouncer.drain()
