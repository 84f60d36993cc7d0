"""
ConnectorStore - registry and lifecycle of connectors on the active page.

The store owns the in-memory connector records, draws them into the scene
through a :class:`SceneHost`, and persists them as one JSON blob per page.
Records reference nodes by id only; every operation looks nodes up again and
treats a missing node as a prior deletion rather than an error.

Two guard sets keep at most one update and one removal in flight per
connector. A guard is claimed before the first suspension point and released
on every exit path, so overlapping calls for the same id are skipped instead
of racing.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterator
from dataclasses import replace

from freeflow.colors import hex_to_rgb, opacity_to_unit, text_color_for
from freeflow.config import FreeflowConfig
from freeflow.geometry import (
    POSITION_OVERLAP,
    POSITION_UNKNOWN,
    RoutingError,
    anchor_points,
    build_path,
    reconcile_direction,
    relative_position,
    resolve_direction,
)
from freeflow.logging import get_logger
from freeflow.models import (
    Anchors,
    Connector,
    ConnectorGeometry,
    ConnectorName,
    ConnectorPosition,
    ConnectorStyle,
    ConnectorText,
    Direction,
    Rect,
    VectorPath,
)
from freeflow.scene.base import LabelContent, SceneHost, SceneNode, Stroke

logger = get_logger("store")


class ConnectionRejected(Exception):
    """Two nodes cannot be connected. ``reason`` is meant for the user."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CorruptBlobError(ValueError):
    """Persisted connector data could not be parsed."""


class ConnectorStore:
    """
    Registry of connectors for one page at a time.

    Example:
        store = ConnectorStore(scene, config)
        store.load(scene.current_page)

        node = await store.create(a, b, settings.style(), settings.geometry())
        await store.update(node.id, text=ConnectorText("depends on"))
        await store.flip(node.id)

        store.save(scene.current_page)
    """

    def __init__(self, host: SceneHost, config: FreeflowConfig | None = None) -> None:
        self.host = host
        self.config = config or FreeflowConfig()
        self._connectors: dict[str, Connector] = {}
        self._updating: set[str] = set()
        self._removing: set[str] = set()

    # ------------------------------------------------------------------
    # Registry access
    # ------------------------------------------------------------------

    def get(self, connector_id: str) -> Connector | None:
        return self._connectors.get(connector_id)

    def ids(self) -> list[str]:
        """Snapshot of connector ids."""
        return list(self._connectors)

    @property
    def connectors(self) -> list[Connector]:
        return list(self._connectors.values())

    def __len__(self) -> int:
        return len(self._connectors)

    def __contains__(self, connector_id: object) -> bool:
        return connector_id in self._connectors

    def __iter__(self) -> Iterator[Connector]:
        return iter(list(self._connectors.values()))

    def is_updating(self, connector_id: str) -> bool:
        return connector_id in self._updating

    def is_removing(self, connector_id: str) -> bool:
        return connector_id in self._removing

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def is_connector(self, node_id: str) -> bool:
        """True if ``node_id`` is the drawn node of a tracked connector."""
        return node_id in self._connectors

    def is_managed_node(self, node: SceneNode) -> bool:
        """True if ``node`` carries the connector marker and is tracked."""
        marked = self.host.get_plugin_data(node, self.config.marker_key) == "true"
        return marked and node.id in self._connectors

    def unmark(self, node: SceneNode) -> None:
        """Drop the connector marker from a node that is no longer tracked."""
        self.host.set_plugin_data(node, self.config.marker_key, "")

    def is_label_of(self, connector_id: str, node_id: str) -> bool:
        connector = self._connectors.get(connector_id)
        return connector is not None and connector.text_node_id == node_id

    def affects_connector(self, connector_id: str, node_id: str) -> bool:
        """True if ``node_id`` is the connector itself or one of its endpoints."""
        if connector_id == node_id:
            return True
        connector = self._connectors.get(connector_id)
        if connector is None:
            return False
        return node_id in connector.endpoint_ids

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def validate(self, start: SceneNode, end: SceneNode) -> tuple[Rect, Rect]:
        """
        Check that ``start`` and ``end`` can be connected.

        Returns:
            The absolute rectangles of both nodes

        Raises:
            ConnectionRejected: with a user-facing reason
        """
        start_rect = self.host.get_bounds(start)
        end_rect = self.host.get_bounds(end)
        if start_rect is None or end_rect is None:
            raise ConnectionRejected("Selected nodes do not have valid bounds.")
        if start.id == end.id:
            raise ConnectionRejected("Cannot create a connector between the same node.")
        position = relative_position(start_rect, end_rect, self.config.clearance_margin)
        if position in (POSITION_OVERLAP, POSITION_UNKNOWN):
            raise ConnectionRejected("The selected objects are too close.")
        return start_rect, end_rect

    def can_create(self, start: SceneNode, end: SceneNode) -> bool:
        """Like :meth:`validate`, but notifies the user and returns a bool."""
        try:
            self.validate(start, end)
        except ConnectionRejected as e:
            self.host.notify(e.reason)
            return False
        return True

    async def create(
        self,
        start: SceneNode,
        end: SceneNode,
        style: ConnectorStyle,
        geometry: ConnectorGeometry,
        text: ConnectorText | None = None,
    ) -> SceneNode:
        """
        Draw a new connector from ``start`` to ``end`` and track it.

        The label, if any, is drawn by the next :meth:`update`.

        Raises:
            ConnectionRejected: if the nodes cannot be connected
            RoutingError: if the geometry cannot be routed
        """
        start_rect, end_rect = self.validate(start, end)
        margin = self.config.clearance_margin
        direction = resolve_direction(start_rect, end_rect, margin)
        geometry = replace(geometry)
        path = build_path(start_rect, end_rect, geometry, direction, margin)

        name = ConnectorName(start_name=start.name, end_name=end.name)
        node = self.host.create_vector()
        await self._draw(node, path, start, end)
        self.host.set_stroke(node, self._stroke(style))
        self.host.rename(node, self.display_name(name))
        self.host.set_plugin_data(node, self.config.marker_key, "true")

        self._connectors[node.id] = Connector(
            id=node.id,
            start_node_id=start.id,
            end_node_id=end.id,
            position=ConnectorPosition(start_rect=start_rect, end_rect=end_rect),
            geometry=geometry,
            style=replace(style),
            name=name,
            direction=direction,
            text=replace(text) if text else None,
        )
        logger.info(
            "Created connector %s (%s -> %s, %s)",
            node.id,
            start.name or start.id,
            end.name or end.id,
            direction.value,
        )
        return node

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(
        self,
        connector_id: str,
        style: ConnectorStyle | None = None,
        geometry: ConnectorGeometry | None = None,
        text: ConnectorText | None = None,
        direction: Direction | None = None,
    ) -> SceneNode | None:
        """
        Recompute a connector against the current endpoint positions.

        Arguments left as ``None`` keep their stored values. A requested
        direction is kept only while the endpoints allow it.

        Returns:
            The connector node, or None when the update was skipped
            (already in flight, or the connector is being removed), the
            connector turned out to be deleted, or it could not be routed
        """
        if connector_id in self._updating or connector_id in self._removing:
            logger.debug("Connector %s is already updating or being removed, skipping", connector_id)
            return None

        self._updating.add(connector_id)
        try:
            return await self._update(connector_id, style, geometry, text, direction)
        except RoutingError as e:
            logger.error("Cannot route connector %s: %s", connector_id, e)
            self.host.notify(f"Cannot route connector: {e}")
            return None
        finally:
            self._updating.discard(connector_id)

    async def _update(
        self,
        connector_id: str,
        style: ConnectorStyle | None,
        geometry: ConnectorGeometry | None,
        text: ConnectorText | None,
        direction: Direction | None,
    ) -> SceneNode | None:
        connector = self._connectors.get(connector_id)
        if connector is None:
            logger.info("Connector %s not found, probably deleted mid-update", connector_id)
            await self.remove(connector_id)
            return None

        node = await self.host.get_node(connector_id)
        if node is None:
            logger.info("Connector node %s is gone, dropping its record", connector_id)
            await self.remove(connector_id)
            return None

        start, end = await asyncio.gather(
            self.host.get_node(connector.start_node_id),
            self.host.get_node(connector.end_node_id),
        )
        start_rect = self.host.get_bounds(start) if start is not None else None
        end_rect = self.host.get_bounds(end) if end is not None else None
        if start is None or end is None or start_rect is None or end_rect is None:
            logger.info("Endpoint of connector %s is gone, removing it", connector_id)
            await self.remove(connector_id)
            return None

        margin = self.config.clearance_margin
        geometry = replace(geometry) if geometry is not None else connector.geometry
        style = replace(style) if style is not None else connector.style
        if text is None:
            text = connector.text
        direction = reconcile_direction(direction or connector.direction, start_rect, end_rect, margin)

        # Route before touching the scene so a failure leaves the last-good state
        path = build_path(start_rect, end_rect, geometry, direction, margin)
        anchors = anchor_points(
            start_rect, end_rect, geometry.start_margin, geometry.end_margin, direction, margin
        )
        name = ConnectorName(start_name=start.name, end_name=end.name)

        await self._draw(node, path, start, end)
        if self._connectors.get(connector_id) is not connector:
            logger.info("Connector %s was removed while drawing", connector_id)
            return None
        self.host.set_stroke(node, self._stroke(style))
        self.host.rename(node, self.display_name(name))

        connector.geometry = geometry
        connector.style = style
        connector.name = name
        connector.text = text
        connector.position = ConnectorPosition(start_rect=start_rect, end_rect=end_rect)
        connector.direction = direction

        await self.reconcile_label(connector, text, start, end, anchors)
        return node

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    async def reconcile_label(
        self,
        connector: Connector,
        text: ConnectorText | None,
        start: SceneNode,
        end: SceneNode,
        anchors: Anchors,
    ) -> None:
        """Bring the label node in line with ``text``: update, remove or create it."""
        has_text = text is not None and text.text != ""

        if connector.text_node_id:
            if not has_text:
                await self.remove_label(connector.id)
                return
            label = await self.host.get_node(connector.text_node_id)
            if label is not None:
                await self._render_label(label, text, connector.style, start, end, anchors)
                return
            # Label deleted behind our back; draw a new one
            connector.text_node_id = None

        if has_text:
            label = self.host.create_label()
            connector.text_node_id = label.id
            await self._render_label(label, text, connector.style, start, end, anchors)

    async def _render_label(
        self,
        label: SceneNode,
        text: ConnectorText,
        style: ConnectorStyle,
        start: SceneNode,
        end: SceneNode,
        anchors: Anchors,
    ) -> None:
        font_size = style.weight * 2 + 8
        padding = font_size / 2
        content = LabelContent(
            text=text.text,
            font_family=self.config.label_font,
            font_size=font_size,
            padding=padding,
            corner_radius=padding,
            fill=hex_to_rgb(style.color),
            text_color=text_color_for(style.color),
        )
        await self.host.set_label(label, content)

        mid_x, mid_y = anchors.midpoint
        self._place(label, mid_x - label.width / 2, mid_y - label.height / 2, start, end)

    async def remove_label(self, connector_id: str) -> None:
        """Delete a connector's label node, if any, and clear its text."""
        connector = self._connectors.get(connector_id)
        if connector is None:
            return

        label_id = connector.text_node_id
        connector.text_node_id = None
        connector.text = None
        if label_id:
            label = await self.host.get_node(label_id)
            if label is not None:
                self.host.remove_node(label)

    # ------------------------------------------------------------------
    # Flip and removal
    # ------------------------------------------------------------------

    async def flip(self, connector_id: str) -> SceneNode | None:
        """
        Reverse a connector's direction of travel.

        Does nothing while the connector is updating or being removed, so an
        in-flight update never writes back the old endpoint order.
        """
        connector = self._connectors.get(connector_id)
        if connector is None:
            logger.warning("Cannot flip unknown connector %s", connector_id)
            return None
        if connector_id in self._updating or connector_id in self._removing:
            logger.debug("Connector %s is busy, not flipping", connector_id)
            return None

        connector.start_node_id, connector.end_node_id = (
            connector.end_node_id,
            connector.start_node_id,
        )
        connector.position = connector.position.swapped()
        connector.name = ConnectorName(
            start_name=connector.name.end_name, end_name=connector.name.start_name
        )
        return await self.update(connector_id)

    async def remove(self, connector_id: str) -> None:
        """
        Delete a connector's node, its label and its record.

        Safe to call repeatedly and concurrently; nodes that are already gone
        are skipped.
        """
        if connector_id in self._removing:
            return

        self._removing.add(connector_id)
        try:
            connector = self._connectors.get(connector_id)
            node = await self.host.get_node(connector_id)
            if node is not None:
                marked = self.host.get_plugin_data(node, self.config.marker_key) == "true"
                if connector is not None or marked:
                    self.host.remove_node(node)

            if connector is not None and connector.text_node_id:
                await self.remove_label(connector_id)

            if self._connectors.pop(connector_id, None) is not None:
                logger.debug("Removed connector %s", connector_id)
        finally:
            self._removing.discard(connector_id)

    async def sweep(self) -> list[str]:
        """
        Remove connectors whose node or either endpoint no longer exists.

        Returns:
            Ids of the removed connectors
        """
        removed: list[str] = []
        for connector in list(self._connectors.values()):
            node, start, end = await asyncio.gather(
                self.host.get_node(connector.id),
                self.host.get_node(connector.start_node_id),
                self.host.get_node(connector.end_node_id),
            )
            if node is None or start is None or end is None:
                await self.remove(connector.id)
                removed.append(connector.id)

        if removed:
            logger.info("Swept %d stale connectors", len(removed))
        return removed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self) -> str:
        """Serialize all records as a JSON array."""
        return json.dumps([c.to_dict() for c in self._connectors.values()])

    def deserialize(self, blob: str) -> int:
        """
        Replace the registry with the records in ``blob``.

        An empty blob yields an empty registry.

        Returns:
            Number of connectors loaded

        Raises:
            CorruptBlobError: if the blob is not a valid list of records; the
                registry is left untouched
        """
        if blob.strip() == "":
            self._connectors = {}
            return 0

        try:
            data = json.loads(blob)
        except json.JSONDecodeError as e:
            raise CorruptBlobError(f"Unparsable connector data: {e}") from e
        if not isinstance(data, list):
            raise CorruptBlobError("Connector data must be a JSON array")

        connectors: dict[str, Connector] = {}
        for item in data:
            try:
                connector = Connector.from_dict(item)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise CorruptBlobError(f"Malformed connector record: {e!r}") from e
            if connector.start_node_id == connector.end_node_id:
                raise CorruptBlobError(f"Connector {connector.id} links a node to itself")
            connectors.setdefault(connector.id, connector)

        self._connectors = connectors
        return len(connectors)

    def load(self, page: SceneNode) -> int:
        """
        Load the connectors persisted on ``page``, replacing the registry.

        Corrupt data is logged and cleared; the registry starts empty.
        """
        blob = self.host.get_plugin_data(page, self.config.storage_key)
        try:
            count = self.deserialize(blob)
        except CorruptBlobError as e:
            logger.error("Discarding connector data on page %s: %s", page.name or page.id, e)
            self._connectors = {}
            self.host.set_plugin_data(page, self.config.storage_key, "")
            return 0

        logger.info("Loaded %d connectors from page %s", count, page.name or page.id)
        return count

    def save(self, page: SceneNode) -> None:
        """Persist the registry on ``page``."""
        self.host.set_plugin_data(page, self.config.storage_key, self.serialize())
        logger.info("Saved %d connectors to page %s", len(self._connectors), page.name or page.id)

    # ------------------------------------------------------------------
    # Drawing helpers
    # ------------------------------------------------------------------

    def display_name(self, name: ConnectorName) -> str:
        return f"{self.config.label_prefix} {name.start_name} -> {name.end_name}"

    @staticmethod
    def _stroke(style: ConnectorStyle) -> Stroke:
        return Stroke(
            color=hex_to_rgb(style.color),
            opacity=opacity_to_unit(style.opacity),
            weight=style.weight,
            corner_radius=style.radius,
            dash_pattern=[style.dash, style.dash_gap] if style.dash > 0 else [],
        )

    async def _draw(self, node: SceneNode, path: VectorPath, start: SceneNode, end: SceneNode) -> None:
        # Vertices are absolute, so the node origin must sit at the canvas origin
        await self.host.set_vector_path(node, path)
        self._place(node, 0.0, 0.0, start, end)

    def _place(self, node: SceneNode, x: float, y: float, start: SceneNode, end: SceneNode) -> None:
        """Attach ``node`` to the endpoints' shared container at absolute ``(x, y)``."""
        container = self.host.find_common_container(start, end)
        offset_x = offset_y = 0.0
        if container is not None:
            bounds = self.host.get_bounds(container)
            if bounds is not None:
                offset_x, offset_y = bounds.x, bounds.y
            parent = container
        else:
            parent = self.host.page_of(start) or self.host.current_page

        if node.parent_id != parent.id:
            self.host.append_child(parent, node)
        self.host.move_node(node, x - offset_x, y - offset_y)
