"""
Edge geometry engine — anchors, waypoints and label placement.

Everything here is a pure function of explicit arguments: a mapping of
cells, plus precomputed bounds and center caches.  Nothing is persisted on
the cells; the codec calls :func:`plan_edge_routes` while exporting and
writes the result into the emitted XML only.

Rules, in the order they apply to each edge:

* **Anchors** — edges without explicit ``exitX/exitY/entryX/entryY`` get
  opposite-facing connection points on the axis where the centers differ most.
* **Group avoidance** — an edge whose straight-line bounding box overlaps a group
  it does not live inside is detoured around it, either past a flank with
  ``AVOIDANCE_MARGIN`` clearance or through the nearer gap beside the group.
* **Alignment** — otherwise, when anchors were auto-computed and the ends are
  not lined up, one midpoint waypoint gives a single clean bend.
* **Flattened lines** — edges between the same unordered pair of cells
  share one visual line; duplicate labels on it are hidden and the remaining
  ones are stacked ``LABEL_OFFSET_STEP`` apart.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from drawio_engine.models import Cell, CellBounds, Point

AVOIDANCE_MARGIN = 30
LABEL_OFFSET_STEP = 14
ALIGN_TOLERANCE = 1.0

ANCHOR_KEYS = ("exitX", "exitY", "entryX", "entryY")


@dataclass
class EdgeRoute:
    """Export-time rendering decisions for one edge."""
    style: str
    points: list[Point] = field(default_factory=list)
    show_label: bool = True
    label_offset: float = 0


# ---------------------------------------------------------------------------
# Style helpers
# ---------------------------------------------------------------------------

def parse_style(style: Optional[str]) -> dict[str, str]:
    """Split a draw.io style string into ``key -> value`` (bare flags map to "")."""
    result: dict[str, str] = {}
    for part in (style or "").split(";"):
        part = part.strip()
        if not part:
            continue
        key, _, value = part.partition("=")
        result[key] = value
    return result


def has_explicit_anchors(style: Optional[str]) -> bool:
    keys = parse_style(style)
    return any(k in keys for k in ANCHOR_KEYS)


def strip_anchors(style: str) -> str:
    """Remove exit/entry anchor properties, keeping everything else in order."""
    kept = [
        part for part in style.split(";")
        if part.strip() and part.strip().partition("=")[0] not in ANCHOR_KEYS
    ]
    return "".join(f"{part};" for part in kept)


def _append_style(style: str, addition: str) -> str:
    if style and not style.endswith(";"):
        style += ";"
    return style + addition


# ---------------------------------------------------------------------------
# Bounds & containment
# ---------------------------------------------------------------------------

def absolute_bounds(cells: Mapping[str, Cell], cell_id: str) -> Optional[CellBounds]:
    """Rendered bounds of a vertex: local x/y plus the offsets of enclosing groups.

    Accumulation stops at the first ancestor that is not a group.  Returns
    None for edges and unknown ids.
    """
    cell = cells.get(cell_id)
    if cell is None or not cell.is_vertex:
        return None
    x = cell.x or 0
    y = cell.y or 0
    seen = {cell_id}
    parent = cells.get(cell.parent)
    while parent is not None and parent.is_group and parent.id not in seen:
        seen.add(parent.id)
        x += parent.x or 0
        y += parent.y or 0
        parent = cells.get(parent.parent)
    return CellBounds(x, y, cell.width or 0, cell.height or 0)


def build_bounds_cache(cells: Mapping[str, Cell]) -> dict[str, CellBounds]:
    cache: dict[str, CellBounds] = {}
    for cid, cell in cells.items():
        if cell.is_vertex:
            bounds = absolute_bounds(cells, cid)
            if bounds is not None:
                cache[cid] = bounds
    return cache


def build_center_cache(bounds: Mapping[str, CellBounds]) -> dict[str, Point]:
    return {cid: b.center for cid, b in bounds.items()}


def is_cell_inside_group(cells: Mapping[str, Cell], cell_id: str, group_id: str) -> bool:
    """True when *cell_id* is *group_id* or nested (at any depth) inside it."""
    seen: set[str] = set()
    current: Optional[str] = cell_id
    while current is not None and current not in seen:
        if current == group_id:
            return True
        seen.add(current)
        cell = cells.get(current)
        current = cell.parent if cell is not None else None
    return False


# ---------------------------------------------------------------------------
# Anchors & alignment
# ---------------------------------------------------------------------------

def symmetric_anchor_style(
    style: Optional[str],
    source_center: Optional[Point],
    target_center: Optional[Point],
) -> str:
    """Append opposite-facing exit/entry anchors chosen from the center delta.

    Styles that already carry an anchor key, and edges whose centers cannot
    be resolved (or coincide), come back unchanged.
    """
    base = style or ""
    if has_explicit_anchors(base) or source_center is None or target_center is None:
        return base
    dx = target_center.x - source_center.x
    dy = target_center.y - source_center.y
    if dx == 0 and dy == 0:
        return base
    if abs(dx) >= abs(dy):
        if dx > 0:
            anchors = "exitX=1;exitY=0.5;entryX=0;entryY=0.5;"
        else:
            anchors = "exitX=0;exitY=0.5;entryX=1;entryY=0.5;"
    else:
        if dy > 0:
            anchors = "exitX=0.5;exitY=1;entryX=0.5;entryY=0;"
        else:
            anchors = "exitX=0.5;exitY=0;entryX=0.5;entryY=1;"
    return _append_style(base, anchors)


def alignment_waypoints(
    source_bounds: Optional[CellBounds],
    target_bounds: Optional[CellBounds],
    source_center: Optional[Point],
    target_center: Optional[Point],
) -> list[Point]:
    """One bend point halfway between the facing sides, or nothing when aligned."""
    if None in (source_bounds, target_bounds, source_center, target_center):
        return []
    dx = target_center.x - source_center.x
    dy = target_center.y - source_center.y

    if abs(dx) >= abs(dy):
        if abs(dy) < ALIGN_TOLERANCE:
            return []
        if dx >= 0:
            x = (source_bounds.right + target_bounds.x) / 2
        else:
            x = (source_bounds.x + target_bounds.right) / 2
        return [Point(x, (source_center.y + target_center.y) / 2)]

    if abs(dx) < ALIGN_TOLERANCE:
        return []
    if dy >= 0:
        y = (source_bounds.bottom + target_bounds.y) / 2
    else:
        y = (source_bounds.y + target_bounds.bottom) / 2
    return [Point((source_center.x + target_center.x) / 2, y)]


# ---------------------------------------------------------------------------
# Group avoidance
# ---------------------------------------------------------------------------

_SIDE_ORDER = ("left", "right", "above", "below")


def _sides(box: CellBounds, group: CellBounds) -> set[str]:
    sides: set[str] = set()
    if box.right < group.x:
        sides.add("left")
    if box.x > group.right:
        sides.add("right")
    if box.bottom < group.y:
        sides.add("above")
    if box.y > group.bottom:
        sides.add("below")
    return sides


def _is_corner(sides: set[str]) -> bool:
    return bool(sides & {"left", "right"}) and bool(sides & {"above", "below"})


def _side_gap(box: CellBounds, side: str, group: CellBounds) -> float:
    """Width of the empty strip between *box* and *group* on *side*."""
    if side == "left":
        return group.x - box.right
    if side == "right":
        return box.x - group.right
    if side == "above":
        return group.y - box.bottom
    return box.y - group.bottom


def _gap_channel(box: CellBounds, side: str, group: CellBounds) -> float:
    """Midline coordinate of the strip between *box* and *group* on *side*."""
    if side == "left":
        return (box.right + group.x) / 2
    if side == "right":
        return (box.x + group.right) / 2
    if side == "above":
        return (box.bottom + group.y) / 2
    return (box.y + group.bottom) / 2


def _clears_band(point: Point, side: str, group: CellBounds) -> bool:
    """Is *point* outside the group's band across the axis of *side*, plus margin?

    A beside-the-group channel is vertical, so the far end must sit above or
    below the group for its horizontal run to miss it, and vice versa.
    """
    m = AVOIDANCE_MARGIN
    if side in ("left", "right"):
        return point.y > group.bottom + m or point.y < group.y - m
    return point.x > group.right + m or point.x < group.x - m


def _straddle_detour(
    group: CellBounds,
    s_sides: set[str],
    t_sides: set[str],
    sc: Point,
    tc: Point,
) -> list[Point]:
    m = AVOIDANCE_MARGIN
    mid_x = (sc.x + tc.x) / 2
    mid_y = (sc.y + tc.y) / 2
    if ("left" in s_sides and "right" in t_sides) or ("right" in s_sides and "left" in t_sides):
        y = group.bottom + m if mid_y > group.cy else group.y - m
        return [Point(mid_x, y)]
    if ("above" in s_sides and "below" in t_sides) or ("below" in s_sides and "above" in t_sides):
        x = group.right + m if mid_x > group.cx else group.x - m
        return [Point(x, mid_y)]
    return []


def _channel_detour(
    group: CellBounds,
    src_box: CellBounds,
    tgt_box: CellBounds,
    s_sides: set[str],
    t_sides: set[str],
    sc: Point,
    tc: Point,
) -> list[Point]:
    # Candidate strips: (gap, box, side).  Source strips come first so that
    # equal gaps resolve to the source.
    candidates: list[tuple[float, CellBounds, str]] = []
    for box, sides, far in ((src_box, s_sides, tc), (tgt_box, t_sides, sc)):
        for side in _SIDE_ORDER:
            if side in sides and _clears_band(far, side, group):
                candidates.append((_side_gap(box, side, group), box, side))
    if not candidates:
        return []
    _, box, side = min(candidates, key=lambda c: c[0])
    ch = _gap_channel(box, side, group)
    if side in ("left", "right"):
        return [Point(ch, sc.y), Point(ch, tc.y)]
    return [Point(sc.x, ch), Point(tc.x, ch)]


def _detour_around(
    group: CellBounds,
    src_box: CellBounds,
    tgt_box: CellBounds,
    sc: Point,
    tc: Point,
) -> list[Point]:
    """Waypoints around *group*: a flank detour or an L through the nearer gap.

    Ends on opposite sides go around the flank nearer the midline.  Ends on
    perpendicular sides take an L-shaped path whose channel runs down the
    middle of the narrowest usable gap between an end and the group.  When
    an end sits off a corner of the group the L is tried first, since the
    flank waypoint would pull its first run across the group.
    """
    s_sides = _sides(src_box, group)
    t_sides = _sides(tgt_box, group)
    straddle = _straddle_detour(group, s_sides, t_sides, sc, tc)
    channel = _channel_detour(group, src_box, tgt_box, s_sides, t_sides, sc, tc)
    if _is_corner(s_sides) or _is_corner(t_sides):
        return channel or straddle
    return straddle or channel


def group_avoidance_waypoints(
    cells: Mapping[str, Cell],
    edge: Cell,
    centers: Mapping[str, Point],
    bounds: Mapping[str, CellBounds],
) -> list[Point]:
    """Waypoints steering *edge* around the first group in its way.

    A group is in the way when the bounding box of the straight line between
    the end centers overlaps it.  End boxes come from *bounds*; an end with no
    known bounds is treated as a point at its center.  Groups that contain
    both ends, or that an end center sits on, are not obstacles.
    """
    if not edge.source or not edge.target:
        return []
    sc = centers.get(edge.source)
    tc = centers.get(edge.target)
    src_box = bounds.get(edge.source)
    tgt_box = bounds.get(edge.target)
    if sc is None and src_box is not None:
        sc = src_box.center
    if tc is None and tgt_box is not None:
        tc = tgt_box.center
    if sc is None or tc is None:
        return []
    if src_box is None:
        src_box = CellBounds(sc.x, sc.y, 0, 0)
    if tgt_box is None:
        tgt_box = CellBounds(tc.x, tc.y, 0, 0)

    line_box = CellBounds(
        min(sc.x, tc.x), min(sc.y, tc.y), abs(tc.x - sc.x), abs(tc.y - sc.y),
    )
    for gid, cell in cells.items():
        if not cell.is_group:
            continue
        if (
            is_cell_inside_group(cells, edge.source, gid)
            and is_cell_inside_group(cells, edge.target, gid)
        ):
            continue
        group = bounds.get(gid) or absolute_bounds(cells, gid)
        if group is None or not line_box.intersects(group):
            continue
        if group.contains_point(sc.x, sc.y) or group.contains_point(tc.x, tc.y):
            continue
        points = _detour_around(group, src_box, tgt_box, sc, tc)
        if points:
            return points
    return []


# ---------------------------------------------------------------------------
# Flattened-edge labels
# ---------------------------------------------------------------------------

def route_key(edge: Cell) -> Optional[tuple[str, str, str]]:
    """Undirected ``(parent, a, b)`` key of the visual line an edge lies on."""
    if not edge.source or not edge.target:
        return None
    a, b = sorted((edge.source, edge.target))
    return (edge.parent or "", a, b)


def normalize_label(text: str) -> str:
    return text.strip().casefold()


def plan_edge_labels(edges: Iterable[Cell]) -> dict[str, tuple[bool, float]]:
    """Decide, per edge id, whether its label renders and at what vertical offset.

    Edges are taken in creation order.  On one flattened line the first
    occurrence of a label text wins; later duplicates are hidden.  Rendered
    labels on the same line are offset 0, -14, +14, -28, +28, ...
    """
    seen_labels: set[tuple[str, str, str, str]] = set()
    rendered_per_line: dict[tuple[str, str, str], int] = {}
    plan: dict[str, tuple[bool, float]] = {}

    for edge in edges:
        key = route_key(edge)
        text = normalize_label(edge.value or "")
        if key is None or not text:
            plan[edge.id] = (True, 0)
            continue
        label_key = (*key, text)
        if label_key in seen_labels:
            plan[edge.id] = (False, 0)
            continue
        seen_labels.add(label_key)
        k = rendered_per_line.get(key, 0)
        rendered_per_line[key] = k + 1
        if k == 0:
            offset = 0
        else:
            step = (k + 1) // 2 * LABEL_OFFSET_STEP
            offset = -step if k % 2 else step
        plan[edge.id] = (True, offset)
    return plan


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def plan_edge_routes(cells: Mapping[str, Cell]) -> dict[str, EdgeRoute]:
    """Compute anchors, waypoints and label placement for every edge."""
    bounds = build_bounds_cache(cells)
    centers = build_center_cache(bounds)
    edges = [c for c in cells.values() if c.is_edge]
    labels = plan_edge_labels(edges)

    # route key -> (source id the points were computed for, points)
    waypoint_cache: dict[tuple[str, str, str], tuple[str, list[Point]]] = {}
    routes: dict[str, EdgeRoute] = {}

    for edge in edges:
        explicit = has_explicit_anchors(edge.style)
        sc = centers.get(edge.source) if edge.source else None
        tc = centers.get(edge.target) if edge.target else None
        style = edge.style if explicit else symmetric_anchor_style(edge.style, sc, tc)

        key = route_key(edge)
        if key is not None and key in waypoint_cache:
            origin, cached = waypoint_cache[key]
            points = list(cached) if origin == edge.source else list(reversed(cached))
        else:
            points = group_avoidance_waypoints(cells, edge, centers, bounds)
            if not points and not explicit and edge.source and edge.target:
                points = alignment_waypoints(
                    bounds.get(edge.source), bounds.get(edge.target), sc, tc,
                )
            if key is not None:
                waypoint_cache[key] = (edge.source or "", points)

        show, offset = labels.get(edge.id, (True, 0))
        routes[edge.id] = EdgeRoute(style=style, points=points, show_label=show, label_offset=offset)
    return routes
