"""
Draw.io XML codec.

Serializes a :class:`~drawio_engine.graph.DiagramGraph` to a single-page
``<mxfile>`` document (optionally with the page body deflate-compressed the
way the draw.io desktop app writes it) and parses draw.io documents back,
merging every page into one graph.

Edge routing is applied here, at export time only: anchors, waypoints and
label offsets computed by :mod:`drawio_engine.geometry` go into the emitted
XML and never back into the stored cells.
"""

from __future__ import annotations

import base64
import binascii
import logging
import xml.etree.ElementTree as ET
import zlib
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote

from drawio_engine.geometry import EdgeRoute, plan_edge_routes
from drawio_engine.graph import DEFAULT_LAYER_ID, DEFAULT_LAYER_NAME, ROOT_ID, DiagramGraph
from drawio_engine.models import (
    Cell,
    CellKind,
    DiagramError,
    ErrorCode,
    Geometry,
    Layer,
    Point,
)
from drawio_engine.placeholder import (
    extract_shape_name_from_placeholder_id,
    has_placeholder_marker,
)

logger = logging.getLogger("drawio-engine")

HOST = "drawio-engine"

GRAPH_MODEL_ATTRS = {
    "dx": "800",
    "dy": "600",
    "grid": "1",
    "gridSize": "10",
    "guides": "1",
    "tooltips": "1",
    "connect": "1",
    "arrows": "1",
    "fold": "1",
    "page": "1",
    "pageScale": "1",
    "pageWidth": "850",
    "pageHeight": "1100",
    "math": "0",
    "shadow": "0",
}

# Characters encodeURIComponent leaves alone
_URI_SAFE = "-_.!~*'()"

_CELL_TAGS = ("mxCell", "UserObject", "object")
_INNER_KEYS = ("style", "vertex", "edge", "parent", "source", "target")


@dataclass
class ImportResult:
    pages: int
    cells: int
    layers: int

    def to_dict(self) -> dict[str, int]:
        return {"pages": self.pages, "cells": self.cells, "layers": self.layers}


# ---------------------------------------------------------------------------
# Escaping & compression
# ---------------------------------------------------------------------------

def escape_xml(text: str) -> str:
    """Escape the five XML special characters for use in an attribute value."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def compress_xml(xml: str) -> str:
    """URI-encode, raw-deflate and base64 *xml* (draw.io ``Graph.compress``)."""
    encoded = quote(xml, safe=_URI_SAFE).encode("ascii")
    compressor = zlib.compressobj(9, zlib.DEFLATED, -15)
    deflated = compressor.compress(encoded) + compressor.flush()
    return base64.b64encode(deflated).decode("ascii")


def decompress_xml(data: str) -> str:
    """Inverse of :func:`compress_xml`; bad payloads raise INVALID_XML."""
    try:
        raw = base64.b64decode(data.strip(), validate=False)
        inflated = zlib.decompress(raw, -15)
        return unquote(inflated.decode("utf-8"))
    except (binascii.Error, zlib.error, UnicodeDecodeError) as exc:
        raise DiagramError(
            ErrorCode.INVALID_XML,
            f"Failed to decompress diagram content: {exc}",
            suggestion="Provide uncompressed XML or a valid deflate+base64 payload",
        ) from exc


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _group_style(style: str) -> str:
    if "container=1" in style:
        return style
    if style and not style.endswith(";"):
        style += ";"
    return style + "container=1;"


def _vertex_element(cell: Cell) -> ET.Element:
    el = ET.Element("mxCell", attrib={"id": cell.id, "value": cell.value})
    if cell.is_group:
        el.set("style", _group_style(cell.style))
        el.set("vertex", "1")
        el.set("connectable", "0")
    else:
        el.set("style", cell.style)
        el.set("vertex", "1")
    el.set("parent", cell.parent)
    geo = Geometry(cell.x, cell.y, cell.width, cell.height)
    el.append(geo.to_element())
    return el


def _edge_element(cell: Cell, route: Optional[EdgeRoute]) -> ET.Element:
    value = cell.value if route is None or route.show_label else ""
    style = cell.style if route is None else route.style
    el = ET.Element("mxCell", attrib={"id": cell.id, "value": value, "style": style})
    el.set("edge", "1")
    el.set("parent", cell.parent)
    if cell.source:
        el.set("source", cell.source)
    if cell.target:
        el.set("target", cell.target)
    geo = Geometry(relative=True)
    if route is not None:
        geo.points = list(route.points)
        if route.show_label and route.label_offset:
            geo.offset = Point(0, route.label_offset)
    el.append(geo.to_element())
    return el


def build_graph_model(graph: DiagramGraph) -> ET.Element:
    """The ``<mxGraphModel>`` element for the graph's current state."""
    model = ET.Element("mxGraphModel", attrib=dict(GRAPH_MODEL_ATTRS))
    root = ET.SubElement(model, "root")
    ET.SubElement(root, "mxCell", attrib={"id": ROOT_ID})

    for layer in graph.list_layers():
        if layer.id == DEFAULT_LAYER_ID:
            attrib = {"id": DEFAULT_LAYER_ID}
            if layer.name != DEFAULT_LAYER_NAME:
                attrib["value"] = layer.name
            attrib["parent"] = ROOT_ID
            ET.SubElement(root, "mxCell", attrib=attrib)
        else:
            ET.SubElement(root, "mxCell", attrib={
                "id": layer.id, "value": layer.name, "style": "", "parent": ROOT_ID,
            })

    cells = graph.cells
    routes = plan_edge_routes(cells)
    for cell in cells.values():
        if cell.is_vertex:
            root.append(_vertex_element(cell))
        else:
            root.append(_edge_element(cell, routes.get(cell.id)))
    return model


def _serialize(element: ET.Element) -> str:
    # All text lives in double-quoted attributes, so bare apostrophes only
    # occur inside attribute values.
    return ET.tostring(element, encoding="unicode").replace("'", "&apos;")


def export_xml(graph: DiagramGraph, compress: bool = False) -> str:
    """Serialize *graph* as a single-page draw.io document."""
    model_xml = _serialize(build_graph_model(graph))
    content = compress_xml(model_xml) if compress else model_xml
    if compress:
        logger.debug("Compressed page body %d -> %d chars", len(model_xml), len(content))
    return (
        f'<mxfile host="{HOST}" activeLayerId="{escape_xml(graph.active_layer_id)}">'
        f'<diagram id="page-1" name="Page-1">{content}</diagram></mxfile>'
    )


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def _parse(xml: str) -> ET.Element:
    try:
        return ET.fromstring(xml)
    except ET.ParseError as exc:
        raise DiagramError(
            ErrorCode.INVALID_XML,
            f"XML could not be parsed: {exc}",
            suggestion="Provide well-formed draw.io XML",
        ) from exc


def _page_models(doc: ET.Element) -> list[Optional[ET.Element]]:
    """One ``<mxGraphModel>`` (or None for an empty page) per diagram page."""
    if doc.tag == "mxGraphModel":
        return [doc]
    diagrams = doc.findall("diagram")
    if not diagrams:
        return [doc.find("mxGraphModel")]
    models: list[Optional[ET.Element]] = []
    for diagram in diagrams:
        model = diagram.find("mxGraphModel")
        if model is None and diagram.text and diagram.text.strip():
            model = _parse(decompress_xml(diagram.text))
            if model.tag != "mxGraphModel":
                model = model.find("mxGraphModel")
        models.append(model)
    return models


def _float(value: Optional[str], default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _cell_attrs(el: ET.Element) -> tuple[dict[str, str], Optional[ET.Element]]:
    """Merged attributes and geometry of an mxCell or a UserObject/object wrapper."""
    if el.tag == "mxCell":
        return dict(el.attrib), el.find("mxGeometry")
    attrs = dict(el.attrib)
    if "value" not in attrs and "label" in attrs:
        attrs["value"] = attrs["label"]
    inner = el.find("mxCell")
    geometry = None
    if inner is not None:
        geometry = inner.find("mxGeometry")
        for key in _INNER_KEYS:
            if key not in attrs and key in inner.attrib:
                attrs[key] = inner.attrib[key]
    return attrs, geometry


def _read_page(
    model: Optional[ET.Element],
    cells: dict[str, Cell],
    layers: dict[str, Layer],
) -> None:
    if model is None:
        return
    root = model.find("root")
    if root is None:
        return

    for el in root:
        if el.tag not in _CELL_TAGS:
            continue
        attrs, geo = _cell_attrs(el)
        cid = attrs.get("id", "")
        parent = attrs.get("parent", "")
        value = attrs.get("value", "")
        is_vertex = attrs.get("vertex") == "1"
        is_edge = attrs.get("edge") == "1"
        if not cid or cid == ROOT_ID:
            continue
        if cid == DEFAULT_LAYER_ID and parent == ROOT_ID:
            if value:
                layers[DEFAULT_LAYER_ID] = Layer(DEFAULT_LAYER_ID, value)
            continue
        if parent == ROOT_ID and not is_vertex and not is_edge:
            layers[cid] = Layer(cid, value or cid)
            continue

        style = attrs.get("style", "")
        if is_edge:
            cell = Cell(
                id=cid,
                kind=CellKind.EDGE,
                value=value,
                style=style,
                parent=parent or DEFAULT_LAYER_ID,
                source=attrs.get("source") or None,
                target=attrs.get("target") or None,
            )
        else:
            g = geo.attrib if geo is not None else {}
            cell = Cell(
                id=cid,
                kind=CellKind.VERTEX,
                value=value,
                style=style,
                parent=parent or DEFAULT_LAYER_ID,
                x=_float(g.get("x"), 0),
                y=_float(g.get("y"), 0),
                width=_float(g.get("width"), 200),
                height=_float(g.get("height"), 100),
                is_group="container=1" in style or "swimlane" in style.lower(),
            )
            if has_placeholder_marker(style):
                cell.pending_shape = extract_shape_name_from_placeholder_id(cid)
        cells[cid] = cell


def _link_children(cells: dict[str, Cell]) -> None:
    # A vertex used as a parent by another cell is a container too.
    for cell in cells.values():
        parent = cells.get(cell.parent)
        if parent is not None and parent.is_vertex:
            parent.is_group = True
    for cell in cells.values():
        cell.children = []
    for cell in cells.values():
        parent = cells.get(cell.parent)
        if parent is not None and parent.is_group:
            parent.children.append(cell.id)


def import_xml(graph: DiagramGraph, xml: str) -> ImportResult:
    """Replace *graph* with the contents of a draw.io document.

    Accepts ``<mxfile>`` (single or multi-page, plain or compressed pages)
    and bare ``<mxGraphModel>`` documents.  Pages are merged in document
    order; on an id clash the later page wins.  The graph is only touched
    once the whole document has been read.
    """
    if not xml or not xml.strip():
        raise DiagramError(
            ErrorCode.EMPTY_XML,
            "XML string is empty",
            suggestion="Provide a valid Draw.io XML string",
        )
    doc = _parse(xml.strip())
    if doc.tag not in ("mxfile", "mxGraphModel"):
        raise DiagramError(
            ErrorCode.INVALID_XML,
            "XML does not appear to be a Draw.io file",
            suggestion="Provide XML that contains <mxfile> or <mxGraphModel> elements",
        )

    models = _page_models(doc)
    cells: dict[str, Cell] = {}
    layers: dict[str, Layer] = {}
    for model in models:
        _read_page(model, cells, layers)
    _link_children(cells)

    active = doc.get("activeLayerId") if doc.tag == "mxfile" else None
    graph.load(cells.values(), layers.values(), active)

    result = ImportResult(
        pages=len(models),
        cells=len(cells),
        layers=len(graph.list_layers()),
    )
    logger.info(
        "Imported %d page(s): %d cells, %d layers",
        result.pages, result.cells, result.layers,
    )
    return result
