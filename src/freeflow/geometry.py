"""
Direction and geometry resolution for connectors.

Everything here is a pure function of two absolute rectangles and routing
parameters. The relative position of the end rectangle is described by a
two-letter code: a vertical letter (``T`` above, ``B`` below, ``M``
overlapping) followed by a horizontal letter (``L``, ``R`` or ``M``),
measured against the start rectangle grown by a clearance margin.

Example:
    a = Rect(0, 0, 100, 50)
    b = Rect(0, 200, 100, 50)

    relative_position(a, b)   # "BM"
    resolve_direction(a, b)   # Direction.VERTICAL
    anchor_points(a, b, 0, 0, Direction.VERTICAL)
    # Anchors(start_x=50, start_y=50, end_x=50, end_y=200)
"""

from __future__ import annotations

from freeflow.models import (
    Anchors,
    ConnectorGeometry,
    Direction,
    LineStyle,
    Rect,
    Segment,
    StrokeCap,
    StrokeJoin,
    VectorPath,
    Vertex,
)

# Clearance around the start rectangle before the end counts as "beside" it
CLEARANCE_MARGIN = 16

POSITION_OVERLAP = "MM"
POSITION_UNKNOWN = "UNKNOWN"


class RoutingError(ValueError):
    """A direction or line style that no path can be built for."""


def relative_position(a: Rect, b: Rect, margin: float = CLEARANCE_MARGIN) -> str:
    """
    Classify where ``b`` lies relative to ``a`` on a 3x3 grid.

    Returns one of ``TL TM TR ML MM MR BL BM BR``, or ``UNKNOWN`` when either
    rectangle has a non-finite coordinate.
    """
    if not (a.is_finite() and b.is_finite()):
        return POSITION_UNKNOWN

    top = a.y - margin
    bottom = a.bottom + margin
    left = a.x - margin
    right = a.right + margin

    if b.bottom < top:
        position = "T"
    elif b.y > bottom:
        position = "B"
    else:
        position = "M"

    if b.right < left:
        position += "L"
    elif b.x > right:
        position += "R"
    else:
        position += "M"

    return position


def _is_horizontal(position: str) -> bool:
    return "L" in position or "R" in position


def _is_vertical(position: str) -> bool:
    return "T" in position or "B" in position


def resolve_direction(a: Rect, b: Rect, margin: float = CLEARANCE_MARGIN) -> Direction:
    """Derive the routing axis from the relative position alone."""
    position = relative_position(a, b, margin)
    if position == POSITION_UNKNOWN:
        return Direction.INVALID
    if _is_horizontal(position):
        return Direction.HORIZONTAL
    if _is_vertical(position):
        return Direction.VERTICAL
    return Direction.INVALID


def reconcile_direction(
    requested: Direction,
    a: Rect,
    b: Rect,
    margin: float = CLEARANCE_MARGIN,
) -> Direction:
    """
    Keep ``requested`` while the rectangles still allow it, otherwise fall back
    to :func:`resolve_direction`.

    The fallback is silent; callers see only the returned direction.
    """
    position = relative_position(a, b, margin)
    if requested == Direction.HORIZONTAL and _is_horizontal(position):
        return requested
    if requested == Direction.VERTICAL and _is_vertical(position):
        return requested
    return resolve_direction(a, b, margin)


def anchor_points(
    a: Rect,
    b: Rect,
    start_margin: float,
    end_margin: float,
    direction: Direction,
    margin: float = CLEARANCE_MARGIN,
) -> Anchors:
    """
    Compute where the connector leaves ``a`` and enters ``b``.

    Horizontal anchors sit at mid-height on the facing sides, vertical anchors
    at mid-width on the facing edges; each is pushed outward by its margin.

    Raises:
        RoutingError: if ``direction`` is not horizontal or vertical
    """
    position = relative_position(a, b, margin)

    if direction == Direction.HORIZONTAL:
        if "L" in position:
            return Anchors(
                start_x=a.x - start_margin,
                start_y=a.center_y,
                end_x=b.right + end_margin,
                end_y=b.center_y,
            )
        return Anchors(
            start_x=a.right + start_margin,
            start_y=a.center_y,
            end_x=b.x - end_margin,
            end_y=b.center_y,
        )

    if direction == Direction.VERTICAL:
        if "T" in position:
            return Anchors(
                start_x=a.center_x,
                start_y=a.y - start_margin,
                end_x=b.center_x,
                end_y=b.bottom + end_margin,
            )
        return Anchors(
            start_x=a.center_x,
            start_y=a.bottom + start_margin,
            end_x=b.center_x,
            end_y=b.y - end_margin,
        )

    raise RoutingError(f"Cannot anchor a connector with direction {direction!r} ({position})")


def _curve_path(anchors: Anchors, geometry: ConnectorGeometry, direction: Direction) -> VectorPath:
    vertices = [
        Vertex(anchors.start_x, anchors.start_y, stroke_cap=geometry.start_cap),
        Vertex(anchors.end_x, anchors.end_y, stroke_cap=geometry.end_cap),
    ]
    if direction == Direction.HORIZONTAL:
        dx = (anchors.end_x - anchors.start_x) / 2
        tangent_start, tangent_end = (dx, 0.0), (-dx, 0.0)
    else:
        dy = (anchors.end_y - anchors.start_y) / 2
        tangent_start, tangent_end = (0.0, dy), (0.0, -dy)
    segment = Segment(0, 1, tangent_start=tangent_start, tangent_end=tangent_end)
    return VectorPath(vertices=vertices, segments=[segment])


def _elbow_path(anchors: Anchors, geometry: ConnectorGeometry, direction: Direction) -> VectorPath:
    sx, sy, ex, ey = anchors.start_x, anchors.start_y, anchors.end_x, anchors.end_y
    if direction == Direction.HORIZONTAL:
        mid = (sx + ex) / 2
        bends = [(mid, sy), (mid, ey)]
    else:
        mid = (sy + ey) / 2
        bends = [(sx, mid), (ex, mid)]

    vertices = [Vertex(sx, sy, stroke_cap=geometry.start_cap, stroke_join=StrokeJoin.ROUND)]
    vertices += [Vertex(x, y, stroke_cap=StrokeCap.NONE, stroke_join=StrokeJoin.ROUND) for x, y in bends]
    vertices.append(Vertex(ex, ey, stroke_cap=geometry.end_cap, stroke_join=StrokeJoin.ROUND))

    segments = [Segment(i, i + 1) for i in range(len(vertices) - 1)]
    return VectorPath(vertices=vertices, segments=segments)


def build_path(
    a: Rect,
    b: Rect,
    geometry: ConnectorGeometry,
    direction: Direction,
    margin: float = CLEARANCE_MARGIN,
) -> VectorPath:
    """
    Build the vector path of a connector from ``a`` to ``b``.

    ``CURVE`` yields 2 vertices and 1 curved segment, ``GRID`` yields 4
    vertices and 3 straight segments.

    Raises:
        RoutingError: for an invalid direction or unknown line style
    """
    if geometry.line_style not in (LineStyle.CURVE, LineStyle.GRID):
        raise RoutingError(f"Invalid line style: {geometry.line_style!r}")

    anchors = anchor_points(a, b, geometry.start_margin, geometry.end_margin, direction, margin)

    if geometry.line_style == LineStyle.CURVE:
        return _curve_path(anchors, geometry, direction)
    return _elbow_path(anchors, geometry, direction)
