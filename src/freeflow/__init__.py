"""
freeflow - live connectors between scene nodes.

Connectors are directed links drawn between two nodes of a scene. freeflow
keeps their routing, arrowheads and labels anchored as the nodes move,
resize, change containers or disappear, and persists them per page.

Example:
    from freeflow import FreeflowSession, MemoryScene, NodeType

    scene = MemoryScene()
    a = scene.add_node(NodeType.RECTANGLE, name="A", width=100, height=50)
    b = scene.add_node(NodeType.RECTANGLE, name="B", y=200, width=100, height=50)

    async with FreeflowSession(scene) as session:
        scene.selection = [a, b]
        node = await session.controller.handle_draw()

        scene.move_node(b, 300, 0)  # the connector follows after the quiet period
"""

from freeflow.config import FreeflowConfig, load_config
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
from freeflow.geometry import (
    CLEARANCE_MARGIN,
    RoutingError,
    anchor_points,
    build_path,
    reconcile_direction,
    relative_position,
    resolve_direction,
)
from freeflow.interaction import Controller, SelectionTracker
from freeflow.logging import get_logger, setup_logging
from freeflow.models import (
    Anchors,
    Connector,
    ConnectorGeometry,
    ConnectorName,
    ConnectorPosition,
    ConnectorStyle,
    ConnectorText,
    Direction,
    LineStyle,
    Rect,
    Segment,
    StrokeCap,
    StrokeJoin,
    VectorPath,
    Vertex,
)
from freeflow.pipeline import ReconciliationPipeline
from freeflow.scene import MemoryScene, NodeType, SceneHost, SceneNode
from freeflow.session import FreeflowSession
from freeflow.settings import DrawSettings, SettingsStore
from freeflow.store import ConnectionRejected, ConnectorStore, CorruptBlobError

__version__ = "0.1.0"

__all__ = [
    # Session
    "FreeflowSession",
    "FreeflowConfig",
    "load_config",
    # Core
    "ConnectorStore",
    "ReconciliationPipeline",
    "Controller",
    "SelectionTracker",
    "DrawSettings",
    "SettingsStore",
    # Errors
    "ConnectionRejected",
    "CorruptBlobError",
    "RoutingError",
    # Geometry
    "CLEARANCE_MARGIN",
    "relative_position",
    "resolve_direction",
    "reconcile_direction",
    "anchor_points",
    "build_path",
    # Models
    "Anchors",
    "Connector",
    "ConnectorGeometry",
    "ConnectorName",
    "ConnectorPosition",
    "ConnectorStyle",
    "ConnectorText",
    "Direction",
    "LineStyle",
    "Rect",
    "Segment",
    "StrokeCap",
    "StrokeJoin",
    "VectorPath",
    "Vertex",
    # Scene
    "MemoryScene",
    "NodeType",
    "SceneHost",
    "SceneNode",
    # Events
    "EventBus",
    "ChangeType",
    "NodeChange",
    "NodeChangeEvent",
    "CurrentPageChangeEvent",
    "SelectionChangeEvent",
    "CloseEvent",
    "NODE_CHANGE",
    "CURRENT_PAGE_CHANGE",
    "SELECTION_CHANGE",
    "CLOSE",
    # Logging
    "get_logger",
    "setup_logging",
]
