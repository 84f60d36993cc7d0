"""
FreeflowSession - wires settings, store, pipeline and controller to a host.
"""

from __future__ import annotations

from typing import Any

from freeflow.config import FreeflowConfig
from freeflow.events import CLOSE, SELECTION_CHANGE, CloseEvent
from freeflow.interaction import Controller, PostMessage, SelectionTracker
from freeflow.logging import get_logger
from freeflow.pipeline import ReconciliationPipeline
from freeflow.scene.base import SceneHost
from freeflow.settings import SettingsStore
from freeflow.store import ConnectorStore

logger = get_logger("session")

_SOURCE = "session"


class FreeflowSession:
    """
    One connector-editing session on a scene host.

    ``start()`` loads the connectors of the current page and subscribes to
    host notifications. ``close()`` (also triggered by the host's close
    event) reconciles outstanding changes, drops stale connectors, persists
    the page and unsubscribes.

    Example:
        async with FreeflowSession(scene, config) as session:
            scene.selection = [a, b]
            await session.controller.handle_draw()
    """

    def __init__(
        self,
        host: SceneHost,
        config: FreeflowConfig | None = None,
        post_message: PostMessage | None = None,
    ) -> None:
        self.host = host
        self.config = config or FreeflowConfig()
        self.settings = SettingsStore(host, self.config.defaults)
        self.store = ConnectorStore(host, self.config)
        self.tracker = SelectionTracker()
        self.pipeline = ReconciliationPipeline(host, self.store, self.config)
        self.controller = Controller(
            host, self.store, self.settings, self.tracker, post_message
        )
        self._started = False
        self._closed = False

    @property
    def active(self) -> bool:
        return self._started and not self._closed

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.pipeline.start()
        self.host.events.on(
            SELECTION_CHANGE, self.controller.handle_selection_change, source=_SOURCE
        )
        self.host.events.on(CLOSE, self._on_close, source=_SOURCE)
        logger.info(
            "Session started on page %s with %d connectors",
            self.host.current_page.name or self.host.current_page.id,
            len(self.store),
        )

    async def _on_close(self, event: CloseEvent) -> None:
        await self.close()

    async def close(self) -> None:
        if not self.active:
            return
        self._closed = True

        page = self.pipeline.page or self.host.current_page
        await self.pipeline.settle()
        await self.store.sweep()
        self.store.save(page)

        self.pipeline.stop()
        self.host.events.off_by_source(_SOURCE)
        logger.info("Session closed")

    async def __aenter__(self) -> FreeflowSession:
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
