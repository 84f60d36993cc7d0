"""
Base scene host interface.

A scene host owns the node tree connectors are drawn into. freeflow never
holds node objects across suspension points: it keeps node ids and looks them
up again, treating a missing node as an ordinary outcome.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from freeflow.events import EventBus
from freeflow.models import RGB, Rect, VectorPath


class NodeType(str, Enum):
    """Kinds of scene nodes."""

    DOCUMENT = "DOCUMENT"
    PAGE = "PAGE"
    FRAME = "FRAME"
    SECTION = "SECTION"
    GROUP = "GROUP"
    RECTANGLE = "RECTANGLE"
    ELLIPSE = "ELLIPSE"
    TEXT = "TEXT"
    VECTOR = "VECTOR"


# Node types that can hold children
CONTAINER_TYPES = frozenset(
    {NodeType.DOCUMENT, NodeType.PAGE, NodeType.FRAME, NodeType.SECTION, NodeType.GROUP}
)

# Node types a connector or label may be attached to besides the page
ATTACHABLE_TYPES = frozenset({NodeType.FRAME, NodeType.SECTION})


@dataclass
class Stroke:
    """Stroke paint of a vector node."""

    color: RGB
    opacity: float = 1.0  # 0-1
    weight: float = 1.0
    corner_radius: float = 0.0
    dash_pattern: list[float] = field(default_factory=list)
    align: str = "CENTER"


@dataclass
class LabelContent:
    """Content and look of a label container."""

    text: str
    font_family: str = "Inter"
    font_size: float = 12.0
    padding: float = 6.0
    corner_radius: float = 6.0
    fill: RGB = field(default_factory=lambda: RGB(0.0, 0.0, 0.0))
    text_color: RGB = field(default_factory=lambda: RGB(1.0, 1.0, 1.0))


@dataclass
class SceneNode:
    """
    A node in the scene tree.

    ``x`` and ``y`` are relative to the parent; use
    :meth:`SceneHost.get_bounds` for absolute coordinates.
    """

    id: str
    type: NodeType
    name: str = ""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    parent_id: str | None = None
    children: list[str] = field(default_factory=list)
    plugin_data: dict[str, str] = field(default_factory=dict)
    path: VectorPath | None = None
    stroke: Stroke | None = None
    label: LabelContent | None = None

    @property
    def is_container(self) -> bool:
        return self.type in CONTAINER_TYPES


class SceneHost(ABC):
    """
    Abstract base class for scene graph hosts.

    A host publishes node mutations, page switches, selection changes and
    session close on :attr:`events` and offers the primitive lookup and
    drawing operations the connector store needs.
    """

    events: EventBus

    @property
    @abstractmethod
    def root(self) -> SceneNode:
        """The document root; holds document-wide plugin data."""

    @property
    @abstractmethod
    def current_page(self) -> SceneNode:
        """The active page."""

    @property
    @abstractmethod
    def selection(self) -> list[SceneNode]:
        """Currently selected nodes on the active page, in selection order."""

    @selection.setter
    @abstractmethod
    def selection(self, nodes: list[SceneNode]) -> None: ...

    @abstractmethod
    async def get_node(self, node_id: str) -> SceneNode | None:
        """Look up a node by id. Returns None if it does not exist."""

    @abstractmethod
    def get_bounds(self, node: SceneNode) -> Rect | None:
        """Absolute bounding box of a node, or None if it has none."""

    @abstractmethod
    def get_descendant_ids(self, node: SceneNode) -> list[str]:
        """Ids of ``node`` and all of its descendants, node first."""

    @abstractmethod
    def find_common_container(self, a: SceneNode, b: SceneNode) -> SceneNode | None:
        """Nearest frame or section that is an ancestor of both nodes."""

    @abstractmethod
    def page_of(self, node: SceneNode) -> SceneNode | None:
        """The page a node lives on, or None for the document root."""

    @abstractmethod
    def get_plugin_data(self, node: SceneNode, key: str) -> str:
        """Read a plugin data value; missing keys read as ``""``."""

    @abstractmethod
    def set_plugin_data(self, node: SceneNode, key: str, value: str) -> None:
        """Write a plugin data value."""

    @abstractmethod
    def create_vector(self) -> SceneNode:
        """Create an empty vector node on the current page."""

    @abstractmethod
    async def set_vector_path(self, node: SceneNode, path: VectorPath) -> None:
        """Commit a vector path to a vector node."""

    @abstractmethod
    def set_stroke(self, node: SceneNode, stroke: Stroke) -> None:
        """Apply stroke paint to a vector node."""

    @abstractmethod
    def create_label(self) -> SceneNode:
        """Create an empty, auto-sized label container on the current page."""

    @abstractmethod
    async def set_label(self, node: SceneNode, content: LabelContent) -> None:
        """Commit label content; the container resizes to hug it."""

    @abstractmethod
    def move_node(self, node: SceneNode, x: float, y: float) -> None:
        """Move a node to ``(x, y)`` relative to its parent."""

    @abstractmethod
    def append_child(self, parent: SceneNode, child: SceneNode) -> None:
        """Reparent ``child`` under ``parent`` as its last child."""

    @abstractmethod
    def rename(self, node: SceneNode, name: str) -> None:
        """Change a node's display name."""

    @abstractmethod
    def remove_node(self, node: SceneNode) -> None:
        """Delete a node and its subtree."""

    @abstractmethod
    def notify(self, message: str) -> None:
        """Show a short notice to the user."""
