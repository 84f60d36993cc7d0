"""
Core data models for freeflow.

These models describe connector records, the rectangles they are routed
between, and the vector path primitives the resolver produces. Records are
plain dataclasses that convert to and from JSON-ready dicts so a page's
connectors can be persisted as a single blob.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Direction(str, Enum):
    """Routing axis of a connector."""

    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"
    INVALID = "invalid"


class LineStyle(str, Enum):
    """Shape of the drawn path."""

    CURVE = "CURVE"  # smooth S-curve between the anchors
    GRID = "GRID"  # orthogonal elbow with rounded joins


class StrokeCap(str, Enum):
    """Decoration at a path end point."""

    NONE = "NONE"
    ROUND = "ROUND"
    SQUARE = "SQUARE"
    ARROW_LINES = "ARROW_LINES"
    ARROW_EQUILATERAL = "ARROW_EQUILATERAL"
    DIAMOND_FILLED = "DIAMOND_FILLED"
    TRIANGLE_FILLED = "TRIANGLE_FILLED"
    CIRCLE_FILLED = "CIRCLE_FILLED"


class StrokeJoin(str, Enum):
    """How two segments meet at a vertex."""

    MITER = "MITER"
    BEVEL = "BEVEL"
    ROUND = "ROUND"


# ---------------------------------------------------------------------------
# Geometry primitives
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in absolute canvas coordinates."""

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x, self.y, self.width, self.height))

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rect:
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


@dataclass(frozen=True)
class Anchors:
    """Start and end points of a connector after margins are applied."""

    start_x: float
    start_y: float
    end_x: float
    end_y: float

    @property
    def midpoint(self) -> tuple[float, float]:
        return ((self.start_x + self.end_x) / 2, (self.start_y + self.end_y) / 2)


@dataclass(frozen=True)
class Vertex:
    """A path vertex with its end decoration."""

    x: float
    y: float
    stroke_cap: StrokeCap = StrokeCap.NONE
    stroke_join: StrokeJoin | None = None


@dataclass(frozen=True)
class Segment:
    """A path segment between two vertex indices.

    Tangents are relative to their vertex; ``(0, 0)`` on both ends is a
    straight line.
    """

    start: int
    end: int
    tangent_start: tuple[float, float] = (0.0, 0.0)
    tangent_end: tuple[float, float] = (0.0, 0.0)


@dataclass(frozen=True)
class VectorPath:
    """Vertices and segments of a connector's drawn path."""

    vertices: list[Vertex]
    segments: list[Segment]


@dataclass(frozen=True)
class RGB:
    """Colour with unit-interval channels."""

    r: float
    g: float
    b: float


# ---------------------------------------------------------------------------
# Connector record
# ---------------------------------------------------------------------------


@dataclass
class ConnectorStyle:
    """Visual parameters of a connector."""

    color: str = "000000"  # 6-char hex, no leading '#'
    opacity: int = 100  # 0-100
    weight: int = 2  # 1-10
    radius: int = 12  # 0-100
    dash: int = 0  # 0-10, 0 = solid
    dash_gap: int = 0  # 0-10

    def to_dict(self) -> dict[str, Any]:
        return {
            "color": self.color,
            "opacity": self.opacity,
            "weight": self.weight,
            "radius": self.radius,
            "dash": self.dash,
            "dash_gap": self.dash_gap,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConnectorStyle:
        return cls(
            color=str(data["color"]),
            opacity=data["opacity"],
            weight=data["weight"],
            radius=data["radius"],
            dash=data["dash"],
            dash_gap=data["dash_gap"],
        )


@dataclass
class ConnectorGeometry:
    """Routing parameters of a connector."""

    start_margin: int = 0  # 0-10
    end_margin: int = 0  # 0-10
    start_cap: StrokeCap = StrokeCap.ROUND
    end_cap: StrokeCap = StrokeCap.ARROW_LINES
    line_style: LineStyle = LineStyle.GRID

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_margin": self.start_margin,
            "end_margin": self.end_margin,
            "start_cap": self.start_cap.value,
            "end_cap": self.end_cap.value,
            "line_style": self.line_style.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConnectorGeometry:
        return cls(
            start_margin=data["start_margin"],
            end_margin=data["end_margin"],
            start_cap=StrokeCap(data["start_cap"]),
            end_cap=StrokeCap(data["end_cap"]),
            line_style=LineStyle(data["line_style"]),
        )


@dataclass
class ConnectorName:
    """Endpoint names captured when the connector was last computed."""

    start_name: str = ""
    end_name: str = ""


@dataclass
class ConnectorPosition:
    """Snapshot of both endpoint rectangles at the last reconciliation."""

    start_rect: Rect
    end_rect: Rect

    def swapped(self) -> ConnectorPosition:
        return ConnectorPosition(start_rect=self.end_rect, end_rect=self.start_rect)


@dataclass
class ConnectorText:
    """Label content of a connector."""

    text: str = ""

    def __bool__(self) -> bool:
        return self.text != ""


@dataclass
class Connector:
    """
    A directed link between two scene nodes.

    Endpoints and the label are referenced by node id only; the nodes are
    owned by the scene and may disappear at any time.
    """

    id: str
    start_node_id: str
    end_node_id: str
    position: ConnectorPosition
    geometry: ConnectorGeometry = field(default_factory=ConnectorGeometry)
    style: ConnectorStyle = field(default_factory=ConnectorStyle)
    name: ConnectorName = field(default_factory=ConnectorName)
    direction: Direction = Direction.INVALID
    text_node_id: str | None = None
    text: ConnectorText | None = None

    @property
    def endpoint_ids(self) -> tuple[str, str]:
        return (self.start_node_id, self.end_node_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dict."""
        return {
            "id": self.id,
            "start_node_id": self.start_node_id,
            "end_node_id": self.end_node_id,
            "text_node_id": self.text_node_id,
            "position": {
                "start_rect": self.position.start_rect.to_dict(),
                "end_rect": self.position.end_rect.to_dict(),
            },
            "geometry": self.geometry.to_dict(),
            "style": self.style.to_dict(),
            "name": {"start_name": self.name.start_name, "end_name": self.name.end_name},
            "text": {"text": self.text.text} if self.text is not None else None,
            "direction": self.direction.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Connector:
        """
        Build a connector from a dict produced by :meth:`to_dict`.

        Raises KeyError, TypeError or ValueError on malformed input.
        """
        text = data.get("text")
        name = data.get("name") or {}
        return cls(
            id=str(data["id"]),
            start_node_id=str(data["start_node_id"]),
            end_node_id=str(data["end_node_id"]),
            text_node_id=data.get("text_node_id"),
            position=ConnectorPosition(
                start_rect=Rect.from_dict(data["position"]["start_rect"]),
                end_rect=Rect.from_dict(data["position"]["end_rect"]),
            ),
            geometry=ConnectorGeometry.from_dict(data["geometry"]),
            style=ConnectorStyle.from_dict(data["style"]),
            name=ConnectorName(
                start_name=name.get("start_name", ""),
                end_name=name.get("end_name", ""),
            ),
            text=ConnectorText(text=str(text["text"])) if text else None,
            direction=Direction(data["direction"]),
        )
