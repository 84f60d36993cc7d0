"""
In-memory scene host.

MemoryScene models a document with pages, nested containers, plugin data and
mutation notifications. It backs the CLI (through JSON scene documents) and
the test suite.

Notifications are queued as mutations happen and delivered on the running
event loop, or explicitly with :meth:`MemoryScene.flush`:

    scene = MemoryScene()
    a = scene.add_node(NodeType.RECTANGLE, name="A", width=100, height=50)
    scene.move_node(a, 40, 0)
    await scene.flush()  # handlers have now seen PROPERTY_CHANGE for a
"""

from __future__ import annotations

import asyncio
from typing import Any

from freeflow.events import (
    CLOSE,
    CURRENT_PAGE_CHANGE,
    NODE_CHANGE,
    SELECTION_CHANGE,
    ChangeType,
    CloseEvent,
    CurrentPageChangeEvent,
    EventBus,
    NodeChange,
    NodeChangeEvent,
    SelectionChangeEvent,
)
from freeflow.logging import get_logger
from freeflow.models import RGB, Rect, Segment, StrokeCap, StrokeJoin, VectorPath, Vertex
from freeflow.scene.base import (
    ATTACHABLE_TYPES,
    LabelContent,
    NodeType,
    SceneHost,
    SceneNode,
    Stroke,
)

logger = get_logger("scene")

# Rough glyph metrics used to size labels
_CHAR_WIDTH = 0.6
_LINE_HEIGHT = 1.2

# Attributes compared when syncing a document into the scene
_SYNCED_FIELDS = ("name", "x", "y", "width", "height")


class MemoryScene(SceneHost):
    """
    A scene graph held entirely in memory.

    Args:
        auto_dispatch: Deliver queued notifications on the running event loop
            as soon as possible. When False (or when no loop is running),
            notifications wait for :meth:`flush`.
        id_prefix: Prefix of generated node ids (``"<prefix>:<n>"``).
    """

    def __init__(self, auto_dispatch: bool = True, id_prefix: str = "1") -> None:
        self.events = EventBus()
        self.notices: list[str] = []

        self._auto_dispatch = auto_dispatch
        self._id_prefix = id_prefix
        self._next_id = 1
        self._nodes: dict[str, SceneNode] = {}
        self._queue: list[tuple[str, Any]] = []
        self._dispatch_task: asyncio.Task[None] | None = None
        self._selection: list[str] = []
        self._revision = 0

        self._root = SceneNode(id="0:0", type=NodeType.DOCUMENT, name="Document")
        self._nodes[self._root.id] = self._root
        page = self.add_page("Page 1", node_id="0:1")
        self._current_page_id = page.id

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def root(self) -> SceneNode:
        return self._root

    @property
    def current_page(self) -> SceneNode:
        return self._nodes[self._current_page_id]

    @property
    def pages(self) -> list[SceneNode]:
        return [self._nodes[i] for i in self._root.children]

    @property
    def selection(self) -> list[SceneNode]:
        return [self._nodes[i] for i in self._selection if i in self._nodes]

    @selection.setter
    def selection(self, nodes: list[SceneNode]) -> None:
        self._selection = [n.id for n in nodes]
        self._enqueue(SELECTION_CHANGE, SelectionChangeEvent(node_ids=list(self._selection)))

    @property
    def revision(self) -> int:
        """Counter bumped by every mutation; unchanged means nothing changed."""
        return self._revision

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def _new_id(self) -> str:
        while True:
            node_id = f"{self._id_prefix}:{self._next_id}"
            self._next_id += 1
            if node_id not in self._nodes:
                return node_id

    def add_page(self, name: str, node_id: str | None = None) -> SceneNode:
        """Add an empty page to the document."""
        page = SceneNode(id=node_id or self._new_id(), type=NodeType.PAGE, name=name)
        page.parent_id = self._root.id
        self._nodes[page.id] = page
        self._root.children.append(page.id)
        self._revision += 1
        return page

    def add_node(
        self,
        type: NodeType,
        name: str = "",
        x: float = 0.0,
        y: float = 0.0,
        width: float = 0.0,
        height: float = 0.0,
        parent: SceneNode | None = None,
        node_id: str | None = None,
    ) -> SceneNode:
        """Create a node under ``parent`` (the current page by default)."""
        parent = parent or self.current_page
        if not parent.is_container:
            raise ValueError(f"Node {parent.id} ({parent.type.value}) cannot hold children")
        if node_id is not None and node_id in self._nodes:
            raise ValueError(f"Duplicate node id: {node_id}")

        node = SceneNode(
            id=node_id or self._new_id(),
            type=type,
            name=name,
            x=x,
            y=y,
            width=width,
            height=height,
            parent_id=parent.id,
        )
        self._nodes[node.id] = node
        parent.children.append(node.id)
        self._record(node.id, ChangeType.CREATE)
        return node

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_node(self, node_id: str) -> SceneNode | None:
        return self._nodes.get(node_id)

    def node(self, node_id: str) -> SceneNode | None:
        """Synchronous lookup for callers outside the event loop."""
        return self._nodes.get(node_id)

    def find_by_name(self, name: str, page: SceneNode | None = None) -> list[SceneNode]:
        """Nodes on ``page`` (the current page by default) named ``name``."""
        page = page or self.current_page
        return [
            self._nodes[i]
            for i in self.get_descendant_ids(page)[1:]
            if self._nodes[i].name == name
        ]

    def _ancestors(self, node: SceneNode) -> list[SceneNode]:
        ancestors: list[SceneNode] = []
        parent_id = node.parent_id
        while parent_id is not None:
            parent = self._nodes.get(parent_id)
            if parent is None:
                break
            ancestors.append(parent)
            parent_id = parent.parent_id
        return ancestors

    def page_of(self, node: SceneNode) -> SceneNode | None:
        """The page a node lives on, or None for the root."""
        if node.type == NodeType.PAGE:
            return node
        for ancestor in self._ancestors(node):
            if ancestor.type == NodeType.PAGE:
                return ancestor
        return None

    def _absolute_origin(self, node: SceneNode) -> tuple[float, float]:
        x, y = node.x, node.y
        for ancestor in self._ancestors(node):
            if ancestor.type in (NodeType.PAGE, NodeType.DOCUMENT):
                break
            x += ancestor.x
            y += ancestor.y
        return x, y

    def get_bounds(self, node: SceneNode) -> Rect | None:
        if node.type in (NodeType.PAGE, NodeType.DOCUMENT):
            return None
        x, y = self._absolute_origin(node)
        if node.type == NodeType.VECTOR and node.path and node.path.vertices:
            xs = [v.x for v in node.path.vertices]
            ys = [v.y for v in node.path.vertices]
            return Rect(x + min(xs), y + min(ys), max(xs) - min(xs), max(ys) - min(ys))
        return Rect(x, y, node.width, node.height)

    def get_descendant_ids(self, node: SceneNode) -> list[str]:
        ids: list[str] = []
        stack = [node.id]
        while stack:
            current = stack.pop()
            ids.append(current)
            child_ids = self._nodes[current].children if current in self._nodes else []
            stack.extend(reversed(child_ids))
        return ids

    def find_common_container(self, a: SceneNode, b: SceneNode) -> SceneNode | None:
        b_ancestors = {n.id for n in self._ancestors(b) if n.type in ATTACHABLE_TYPES}
        for ancestor in self._ancestors(a):
            if ancestor.type in ATTACHABLE_TYPES and ancestor.id in b_ancestors:
                return ancestor
        return None

    # ------------------------------------------------------------------
    # Plugin data
    # ------------------------------------------------------------------

    def get_plugin_data(self, node: SceneNode, key: str) -> str:
        return node.plugin_data.get(key, "")

    def set_plugin_data(self, node: SceneNode, key: str, value: str) -> None:
        if node.plugin_data.get(key, "") == value:
            return
        if value == "":
            node.plugin_data.pop(key, None)
        else:
            node.plugin_data[key] = value
        self._revision += 1

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def create_vector(self) -> SceneNode:
        return self.add_node(NodeType.VECTOR)

    async def set_vector_path(self, node: SceneNode, path: VectorPath) -> None:
        node.path = path
        if path.vertices:
            xs = [v.x for v in path.vertices]
            ys = [v.y for v in path.vertices]
            node.width = max(xs) - min(xs)
            node.height = max(ys) - min(ys)
        self._record(node.id, ChangeType.PROPERTY_CHANGE)

    def set_stroke(self, node: SceneNode, stroke: Stroke) -> None:
        node.stroke = stroke
        self._record(node.id, ChangeType.PROPERTY_CHANGE)

    def create_label(self) -> SceneNode:
        return self.add_node(NodeType.FRAME, name=" ")

    async def set_label(self, node: SceneNode, content: LabelContent) -> None:
        lines = content.text.split("\n") or [""]
        longest = max(len(line) for line in lines)
        node.label = content
        node.width = longest * content.font_size * _CHAR_WIDTH + 2 * content.padding
        node.height = len(lines) * content.font_size * _LINE_HEIGHT + 2 * content.padding
        self._record(node.id, ChangeType.PROPERTY_CHANGE)

    def move_node(self, node: SceneNode, x: float, y: float) -> None:
        node.x, node.y = x, y
        self._record(node.id, ChangeType.PROPERTY_CHANGE)

    def resize_node(self, node: SceneNode, width: float, height: float) -> None:
        node.width, node.height = width, height
        self._record(node.id, ChangeType.PROPERTY_CHANGE)

    def append_child(self, parent: SceneNode, child: SceneNode) -> None:
        if not parent.is_container:
            raise ValueError(f"Node {parent.id} ({parent.type.value}) cannot hold children")
        if child.id == parent.id or child.id in {a.id for a in self._ancestors(parent)}:
            raise ValueError(f"Cannot move {child.id} inside itself")
        old_parent = self._nodes.get(child.parent_id) if child.parent_id else None
        if old_parent is not None:
            old_parent.children.remove(child.id)
        child.parent_id = parent.id
        parent.children.append(child.id)
        self._record(child.id, ChangeType.PROPERTY_CHANGE)

    def rename(self, node: SceneNode, name: str) -> None:
        if node.name == name:
            return
        node.name = name
        self._record(node.id, ChangeType.PROPERTY_CHANGE)

    def remove_node(self, node: SceneNode) -> None:
        if node.type in (NodeType.DOCUMENT, NodeType.PAGE):
            raise ValueError(f"Cannot remove {node.type.value.lower()} {node.id}")
        if node.id not in self._nodes:
            return
        page = self.page_of(node)
        removed = self.get_descendant_ids(node)

        parent = self._nodes.get(node.parent_id) if node.parent_id else None
        if parent is not None:
            parent.children.remove(node.id)
        for node_id in removed:
            self._nodes.pop(node_id, None)
        self._selection = [i for i in self._selection if i not in removed]

        if page is not None:
            for node_id in removed:
                self._record(node_id, ChangeType.DELETE, page_id=page.id)

    def notify(self, message: str) -> None:
        logger.info("Notice: %s", message)
        self.notices.append(message)

    # ------------------------------------------------------------------
    # Pages and session
    # ------------------------------------------------------------------

    def set_current_page(self, page: SceneNode) -> None:
        """Switch the active page and queue a page change notification."""
        if page.type != NodeType.PAGE:
            raise ValueError(f"Node {page.id} is not a page")
        if page.id == self._current_page_id:
            return
        previous = self._current_page_id
        self._current_page_id = page.id
        self._selection = []
        self._enqueue(CURRENT_PAGE_CHANGE, CurrentPageChangeEvent(previous, page.id))

    def close(self, reason: str = "") -> None:
        """Queue a close notification."""
        self._enqueue(CLOSE, CloseEvent(reason=reason))

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _record(self, node_id: str, change_type: ChangeType, page_id: str | None = None) -> None:
        self._revision += 1
        if page_id is None:
            node = self._nodes.get(node_id)
            page = self.page_of(node) if node is not None else None
            if page is None:
                return
            page_id = page.id

        change = NodeChange(id=node_id, type=change_type)
        if self._queue:
            name, last = self._queue[-1]
            if name == NODE_CHANGE and last.page_id == page_id:
                last.changes.append(change)
                return
        self._enqueue(NODE_CHANGE, NodeChangeEvent(page_id=page_id, changes=[change]))

    def _enqueue(self, event: str, data: Any) -> None:
        self._queue.append((event, data))
        if not self._auto_dispatch:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = loop.create_task(self.flush())

    @property
    def pending_notifications(self) -> int:
        return len(self._queue)

    async def flush(self) -> None:
        """Deliver queued notifications in order, including ones queued by handlers."""
        while self._queue:
            event, data = self._queue.pop(0)
            await self.events.emit(event, data)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize the whole document."""
        return {
            "document": {
                "id": self._root.id,
                "name": self._root.name,
                "plugin_data": dict(self._root.plugin_data),
            },
            "current_page": self._current_page_id,
            "pages": [self._node_to_dict(page) for page in self.pages],
        }

    def _node_to_dict(self, node: SceneNode) -> dict[str, Any]:
        data: dict[str, Any] = {"id": node.id, "type": node.type.value, "name": node.name}
        if node.type != NodeType.PAGE:
            data.update(x=node.x, y=node.y, width=node.width, height=node.height)
        if node.plugin_data:
            data["plugin_data"] = dict(node.plugin_data)
        if node.path is not None:
            data["path"] = _path_to_dict(node.path)
        if node.stroke is not None:
            data["stroke"] = _stroke_to_dict(node.stroke)
        if node.label is not None:
            data["label"] = _label_to_dict(node.label)
        if node.children:
            data["children"] = [self._node_to_dict(self._nodes[c]) for c in node.children]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], auto_dispatch: bool = True) -> MemoryScene:
        """Build a scene from a document dict. Loading queues no notifications."""
        scene = cls(auto_dispatch=auto_dispatch)
        scene._nodes.clear()
        doc = data.get("document", {})
        scene._root = SceneNode(
            id=doc.get("id", "0:0"),
            type=NodeType.DOCUMENT,
            name=doc.get("name", "Document"),
            plugin_data=dict(doc.get("plugin_data", {})),
        )
        scene._nodes[scene._root.id] = scene._root

        pages = data.get("pages") or [{"id": "0:1", "name": "Page 1"}]
        for page_data in pages:
            scene._load_node(page_data, scene._root)

        current = data.get("current_page")
        scene._current_page_id = current if current in scene._nodes else scene._root.children[0]
        scene._queue.clear()
        scene._revision = 0
        return scene

    def _load_node(self, data: dict[str, Any], parent: SceneNode) -> SceneNode:
        node = _node_from_dict(data)
        if node.id in self._nodes:
            raise ValueError(f"Duplicate node id: {node.id}")
        node.parent_id = parent.id
        self._nodes[node.id] = node
        parent.children.append(node.id)
        for child in data.get("children", []):
            self._load_node(child, node)
        return node

    def sync_from(self, data: dict[str, Any]) -> int:
        """
        Apply an edited document to this scene, reporting each difference as
        a node change. Pages, plugin data and drawn content are left alone;
        only node presence, names, geometry and parents are synced.

        Returns:
            Number of nodes created, changed, moved or removed
        """
        seen: dict[str, tuple[dict[str, Any], str]] = {}

        def collect(node_data: dict[str, Any], parent_id: str) -> None:
            seen[str(node_data["id"])] = (node_data, parent_id)
            for child in node_data.get("children", []):
                collect(child, str(node_data["id"]))

        for page_data in data.get("pages", []):
            page_id = str(page_data["id"])
            if page_id not in self._nodes:
                continue
            for child in page_data.get("children", []):
                collect(child, page_id)

        count = 0
        for node_id, (node_data, parent_id) in seen.items():
            parent = self._nodes.get(parent_id)
            if parent is None or not parent.is_container:
                continue
            node = self._nodes.get(node_id)
            if node is None:
                node = _node_from_dict({**node_data, "children": []})
                node.parent_id = parent.id
                self._nodes[node.id] = node
                parent.children.append(node.id)
                self._record(node.id, ChangeType.CREATE)
                count += 1
                continue

            changed = False
            for attr in _SYNCED_FIELDS:
                if attr in node_data and node_data[attr] != getattr(node, attr):
                    setattr(node, attr, node_data[attr])
                    changed = True
            if node.parent_id != parent_id:
                old_parent = self._nodes.get(node.parent_id) if node.parent_id else None
                if old_parent is not None:
                    old_parent.children.remove(node.id)
                node.parent_id = parent.id
                parent.children.append(node.id)
                changed = True
            if changed:
                self._record(node.id, ChangeType.PROPERTY_CHANGE)
                count += 1

        synced_pages = {str(p["id"]) for p in data.get("pages", [])}
        for node_id in list(self._nodes):
            node = self._nodes.get(node_id)
            if node is None or node.type in (NodeType.DOCUMENT, NodeType.PAGE):
                continue
            page = self.page_of(node)
            if page is not None and page.id in synced_pages and node_id not in seen:
                self.remove_node(node)
                count += 1

        return count


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------


def _rgb_to_dict(color: RGB) -> dict[str, float]:
    return {"r": color.r, "g": color.g, "b": color.b}


def _rgb_from_dict(data: dict[str, Any]) -> RGB:
    return RGB(float(data["r"]), float(data["g"]), float(data["b"]))


def _path_to_dict(path: VectorPath) -> dict[str, Any]:
    return {
        "vertices": [
            {
                "x": v.x,
                "y": v.y,
                "stroke_cap": v.stroke_cap.value,
                "stroke_join": v.stroke_join.value if v.stroke_join else None,
            }
            for v in path.vertices
        ],
        "segments": [
            {
                "start": s.start,
                "end": s.end,
                "tangent_start": list(s.tangent_start),
                "tangent_end": list(s.tangent_end),
            }
            for s in path.segments
        ],
    }


def _path_from_dict(data: dict[str, Any]) -> VectorPath:
    return VectorPath(
        vertices=[
            Vertex(
                x=v["x"],
                y=v["y"],
                stroke_cap=StrokeCap(v.get("stroke_cap", "NONE")),
                stroke_join=StrokeJoin(v["stroke_join"]) if v.get("stroke_join") else None,
            )
            for v in data.get("vertices", [])
        ],
        segments=[
            Segment(
                start=s["start"],
                end=s["end"],
                tangent_start=tuple(s.get("tangent_start", (0.0, 0.0))),
                tangent_end=tuple(s.get("tangent_end", (0.0, 0.0))),
            )
            for s in data.get("segments", [])
        ],
    )


def _stroke_to_dict(stroke: Stroke) -> dict[str, Any]:
    return {
        "color": _rgb_to_dict(stroke.color),
        "opacity": stroke.opacity,
        "weight": stroke.weight,
        "corner_radius": stroke.corner_radius,
        "dash_pattern": list(stroke.dash_pattern),
        "align": stroke.align,
    }


def _stroke_from_dict(data: dict[str, Any]) -> Stroke:
    return Stroke(
        color=_rgb_from_dict(data["color"]),
        opacity=data.get("opacity", 1.0),
        weight=data.get("weight", 1.0),
        corner_radius=data.get("corner_radius", 0.0),
        dash_pattern=list(data.get("dash_pattern", [])),
        align=data.get("align", "CENTER"),
    )


def _label_to_dict(label: LabelContent) -> dict[str, Any]:
    return {
        "text": label.text,
        "font_family": label.font_family,
        "font_size": label.font_size,
        "padding": label.padding,
        "corner_radius": label.corner_radius,
        "fill": _rgb_to_dict(label.fill),
        "text_color": _rgb_to_dict(label.text_color),
    }


def _label_from_dict(data: dict[str, Any]) -> LabelContent:
    return LabelContent(
        text=data["text"],
        font_family=data.get("font_family", "Inter"),
        font_size=data.get("font_size", 12.0),
        padding=data.get("padding", 6.0),
        corner_radius=data.get("corner_radius", 6.0),
        fill=_rgb_from_dict(data["fill"]),
        text_color=_rgb_from_dict(data["text_color"]),
    )


def _node_from_dict(data: dict[str, Any]) -> SceneNode:
    return SceneNode(
        id=str(data["id"]),
        type=NodeType(data.get("type", NodeType.RECTANGLE.value)),
        name=data.get("name", ""),
        x=data.get("x", 0.0),
        y=data.get("y", 0.0),
        width=data.get("width", 0.0),
        height=data.get("height", 0.0),
        plugin_data=dict(data.get("plugin_data", {})),
        path=_path_from_dict(data["path"]) if data.get("path") else None,
        stroke=_stroke_from_dict(data["stroke"]) if data.get("stroke") else None,
        label=_label_from_dict(data["label"]) if data.get("label") else None,
    )
