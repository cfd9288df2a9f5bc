"""
Core data model for the diagram graph.

Cells, layers and the small geometric value types shared by the graph store,
the XML codec and the routing engine.  ``Geometry`` and ``Point`` know how to
render themselves as mxGraph ``<mxGeometry>`` / ``<mxPoint>`` elements.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ErrorCode(str, Enum):
    CELL_NOT_FOUND = "CELL_NOT_FOUND"
    GROUP_NOT_FOUND = "GROUP_NOT_FOUND"
    NOT_A_GROUP = "NOT_A_GROUP"
    NOT_IN_GROUP = "NOT_IN_GROUP"
    NOT_AN_EDGE = "NOT_AN_EDGE"
    SELF_REFERENCE = "SELF_REFERENCE"
    WRONG_CELL_TYPE = "WRONG_CELL_TYPE"
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    TARGET_NOT_FOUND = "TARGET_NOT_FOUND"
    INVALID_SOURCE = "INVALID_SOURCE"
    INVALID_TARGET = "INVALID_TARGET"
    LAYER_NOT_FOUND = "LAYER_NOT_FOUND"
    EMPTY_XML = "EMPTY_XML"
    INVALID_XML = "INVALID_XML"
    PLACEHOLDER_RESOLUTION_FAILED = "PLACEHOLDER_RESOLUTION_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    SHAPE_NOT_FOUND = "SHAPE_NOT_FOUND"
    CATEGORY_NOT_FOUND = "CATEGORY_NOT_FOUND"


class DiagramError(Exception):
    """A caller-recoverable failure of a graph, codec or batch operation.

    Carries the structured payload returned to tool callers:
    ``{code, message, cell_id?, index?, suggestion?}``.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        cell_id: Optional[str] = None,
        index: Optional[int] = None,
        suggestion: Optional[str] = None,
        details: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.cell_id = cell_id
        self.index = index
        self.suggestion = suggestion
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.cell_id is not None:
            data["cell_id"] = self.cell_id
        if self.index is not None:
            data["index"] = self.index
        if self.suggestion:
            data["suggestion"] = self.suggestion
        if self.details:
            data["details"] = self.details
        return data


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class CellKind(str, Enum):
    VERTEX = "vertex"
    EDGE = "edge"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class Point:
    """A 2-D coordinate."""
    x: float
    y: float

    def to_element(self, role: Optional[str] = None) -> ET.Element:
        el = ET.Element("mxPoint", attrib={"x": fmt_number(self.x), "y": fmt_number(self.y)})
        if role:
            el.set("as", role)
        return el


@dataclass
class Geometry:
    """Geometry of an exported mxCell (position + size for vertices, relative for edges)."""
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    relative: bool = False
    points: list[Point] = field(default_factory=list)
    offset: Optional[Point] = None

    def to_element(self) -> ET.Element:
        attrib: dict[str, str] = {}
        if self.relative:
            attrib["relative"] = "1"
        else:
            attrib["x"] = fmt_number(self.x)
            attrib["y"] = fmt_number(self.y)
            attrib["width"] = fmt_number(self.width)
            attrib["height"] = fmt_number(self.height)
        attrib["as"] = "geometry"
        el = ET.Element("mxGeometry", attrib=attrib)
        if self.points:
            arr = ET.SubElement(el, "Array", attrib={"as": "points"})
            for pt in self.points:
                arr.append(pt.to_element())
        if self.offset:
            el.append(self.offset.to_element("offset"))
        return el


@dataclass
class Layer:
    """A direct child of the root cell "0"."""
    id: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name}


@dataclass
class Cell:
    """A vertex or an edge.

    ``is_group`` is decided once (creation or import) and is the only source
    of truth for container behaviour.  ``pending_shape`` tags a placeholder
    vertex whose catalogue style has not been resolved yet.
    """
    id: str
    kind: CellKind
    value: str = ""
    style: str = ""
    parent: str = "1"
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    source: Optional[str] = None
    target: Optional[str] = None
    is_group: bool = False
    children: list[str] = field(default_factory=list)
    pending_shape: Optional[str] = None

    @property
    def is_vertex(self) -> bool:
        return self.kind is CellKind.VERTEX

    @property
    def is_edge(self) -> bool:
        return self.kind is CellKind.EDGE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "value": self.value,
            "style": self.style,
            "parent": self.parent,
        }
        if self.is_vertex:
            data.update(x=self.x, y=self.y, width=self.width, height=self.height)
            if self.is_group:
                data["isGroup"] = True
                data["children"] = list(self.children)
            if self.pending_shape is not None:
                data["pendingShape"] = self.pending_shape
        else:
            if self.source is not None:
                data["sourceId"] = self.source
            if self.target is not None:
                data["targetId"] = self.target
        return data


@dataclass
class CellBounds:
    """Axis-aligned bounding box for a cell."""
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
    def cx(self) -> float:
        return self.x + self.width / 2

    @property
    def cy(self) -> float:
        return self.y + self.height / 2

    @property
    def center(self) -> Point:
        return Point(self.cx, self.cy)

    def intersects(self, other: 'CellBounds', margin: float = 0) -> bool:
        """Check if two bounding boxes overlap (with optional margin)."""
        return not (
            self.right + margin < other.x
            or other.right + margin < self.x
            or self.bottom + margin < other.y
            or other.bottom + margin < self.y
        )

    def contains_point(self, px: float, py: float, margin: float = 0) -> bool:
        """Check if a point is inside this bounding box (with margin)."""
        return (
            self.x - margin <= px <= self.right + margin
            and self.y - margin <= py <= self.bottom + margin
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def fmt_number(value: float) -> str:
    """Render a coordinate the way draw.io writes it (``100`` not ``100.0``)."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)
