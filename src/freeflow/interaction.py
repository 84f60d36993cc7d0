"""
Selection tracking and user intents.

:class:`SelectionTracker` remembers which nodes the user picked as connector
endpoints (in order) and which connector is selected. :class:`Controller`
turns user intents (draw, flip, set direction, change settings) into store
operations and reports the selected connector through an optional
``post_message`` callback.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from freeflow.geometry import RoutingError
from freeflow.logging import get_logger
from freeflow.models import Connector, ConnectorText, Direction
from freeflow.scene.base import SceneHost, SceneNode
from freeflow.settings import SettingsStore
from freeflow.store import ConnectionRejected, ConnectorStore

logger = get_logger("interaction")

PostMessage = Callable[[dict[str, Any]], None]


class SelectionTracker:
    """Ordered endpoint candidates, selected connector and the auto-draw flag."""

    def __init__(self) -> None:
        self.first_id: str | None = None
        self.second_id: str | None = None
        self.connector_id: str | None = None
        self.auto_draw = False

    @property
    def connector_selected(self) -> bool:
        return self.connector_id is not None

    def select_connector(self, connector_id: str) -> None:
        self.connector_id = connector_id

    def clear_connector(self) -> None:
        self.connector_id = None

    def set_first(self, node_id: str) -> None:
        self.first_id = node_id

    def set_first_and_second(self, selection: list[SceneNode]) -> None:
        """
        Record a two-node selection. If the first candidate is still selected
        it stays the start; otherwise the selection order decides.
        """
        ids = [n.id for n in selection]
        if self.first_id in ids:
            second = next((i for i in ids if i != self.first_id), None)
            if second is not None:
                self.second_id = second
                return
        self.first_id, self.second_id = ids[0], ids[1]

    def start_and_end(self, selection: list[SceneNode]) -> tuple[SceneNode, SceneNode]:
        """
        Pick the start and end node from a selection.

        Raises:
            ConnectionRejected: unless exactly two nodes are selected
        """
        if len(selection) != 2:
            raise ConnectionRejected("Please select exactly 2 objects to create a connector.")

        by_id = {n.id: n for n in selection}
        if (
            self.first_id in by_id
            and self.second_id in by_id
            and self.first_id != self.second_id
        ):
            return by_id[self.first_id], by_id[self.second_id]
        return selection[0], selection[1]


class Controller:
    """
    Applies user intents to the connector store.

    Example:
        controller = Controller(scene, store, settings, SelectionTracker())
        scene.selection = [a, b]
        await controller.handle_selection_change()
        node = await controller.handle_draw()
        await controller.handle_settings_change({"weight": 4}, text="calls")
    """

    def __init__(
        self,
        host: SceneHost,
        store: ConnectorStore,
        settings: SettingsStore,
        tracker: SelectionTracker | None = None,
        post_message: PostMessage | None = None,
    ) -> None:
        self.host = host
        self.store = store
        self.settings = settings
        self.tracker = tracker or SelectionTracker()
        self.post_message = post_message
        self._quiet_reselect = False

    def _is_marked(self, node: SceneNode) -> bool:
        return self.host.get_plugin_data(node, self.store.config.marker_key) == "true"

    def _post(self, payload: dict[str, Any]) -> None:
        if self.post_message is not None:
            self.post_message(payload)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def handle_selection_change(self, event: Any = None) -> None:
        selection = self.host.selection

        if len(selection) == 1 and self._is_marked(selection[0]):
            self.tracker.select_connector(selection[0].id)
            self.send_selected(selection[0])
            return

        if self.tracker.connector_selected:
            self._post({"type": "connector-deselected"})
            self.tracker.clear_connector()

        if len(selection) == 1:
            self.tracker.set_first(selection[0].id)
        elif len(selection) == 2:
            if any(self._is_marked(n) for n in selection):
                return
            self.tracker.set_first_and_second(selection)
            if self.tracker.auto_draw:
                await self.handle_draw()

    def send_selected(self, node: SceneNode) -> dict[str, Any] | None:
        """Post the description of a selected connector node."""
        if self._quiet_reselect:
            self._quiet_reselect = False
            return None

        payload = self.describe(node.id)
        if payload is None:
            # Marked but untracked, e.g. a copy pasted from elsewhere
            self.store.unmark(node)
            self.tracker.clear_connector()
            return None
        self._post(payload)
        return payload

    def describe(self, connector_id: str) -> dict[str, Any] | None:
        """The "connector selected" payload, or None for an unknown id."""
        connector: Connector | None = self.store.get(connector_id)
        if connector is None:
            return None
        return {
            "type": "connector-selected",
            "id": connector.id,
            "start_node_name": connector.name.start_name,
            "end_node_name": connector.name.end_name,
            "direction": connector.direction.value,
            "stroke_color": connector.style.color,
            "stroke_opacity": connector.style.opacity,
            "stroke_weight": connector.style.weight,
            "stroke_radius": connector.style.radius,
            "stroke_dash": connector.style.dash,
            "stroke_dash_gap": connector.style.dash_gap,
            "stroke_start_margin": connector.geometry.start_margin,
            "stroke_end_margin": connector.geometry.end_margin,
            "start_stroke_cap": connector.geometry.start_cap.value,
            "end_stroke_cap": connector.geometry.end_cap.value,
            "line_style": connector.geometry.line_style.value,
            "text": connector.text.text if connector.text else "",
        }

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def handle_draw(self) -> SceneNode | None:
        """Connect the two selected nodes with the current settings."""
        try:
            start, end = self.tracker.start_and_end(self.host.selection)
            node = await self.store.create(
                start, end, self.settings.style(), self.settings.geometry()
            )
        except ConnectionRejected as e:
            self.host.notify(e.reason)
            return None
        except RoutingError as e:
            logger.error("Cannot route new connector: %s", e)
            self.host.notify(f"Cannot route connector: {e}")
            return None

        self.host.selection = [node]
        return node

    def handle_auto_draw_toggle(self, enabled: bool) -> None:
        self.tracker.auto_draw = enabled

    async def handle_settings_change(
        self, changes: dict[str, Any], text: str | None = None
    ) -> SceneNode | None:
        """
        Store new settings and apply them to the selected connector.

        ``text`` replaces the selected connector's label; an empty string
        removes it and None leaves it alone.
        """
        try:
            self.settings.update(**changes)
        except ValueError as e:
            logger.warning("Rejected settings change %r: %s", changes, e)
            self.host.notify(f"Invalid settings: {e}")
            return None

        connector_id = self.tracker.connector_id
        if connector_id is None:
            return None

        node = await self.store.update(
            connector_id,
            self.settings.style(),
            self.settings.geometry(),
            ConnectorText(text) if text is not None else None,
        )
        if node is not None:
            # The panel already shows these values
            self._quiet_reselect = True
            self.host.selection = [node]
        return node

    async def handle_flip(self) -> SceneNode | None:
        connector_id = self.tracker.connector_id
        if connector_id is None:
            return None

        node = await self.store.flip(connector_id)
        if node is not None:
            self.host.selection = [node]
            self.send_selected(node)
        return node

    async def handle_set_direction(self, direction: Direction | str) -> SceneNode | None:
        """Force the selected connector's direction while the layout allows it."""
        connector_id = self.tracker.connector_id
        if connector_id is None:
            return None

        try:
            direction = Direction(direction)
        except ValueError:
            logger.warning("Rejected direction %r for connector %s", direction, connector_id)
            self.host.notify(f"Invalid direction: {direction}")
            return None

        node = await self.store.update(connector_id, direction=direction)
        if node is not None:
            self.host.selection = [node]
            self.send_selected(node)
        return node
