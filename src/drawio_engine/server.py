"""
Draw.io engine MCP server — build and edit draw.io diagrams via Model Context Protocol.

The server keeps no diagrams between calls.  Every stateful tool call
receives the current diagram as ``diagram_xml`` (plus the optional
``active_layer_id``), rebuilds a graph from it, applies the action and
answers with the updated XML, so the caller carries the state.

Tools:
  1. diagram  — import, export, stats, clear, list_cells, finish
  2. cells    — add, edit, edit_edges, delete, delete_edge, set_shape
  3. layers   — list, get_active, set_active, create, move_cell
  4. groups   — create, add_cells, remove_cell, list_children
  5. shapes   — categories, in_category, by_name, search, presets

Every tool returns a JSON string: ``{"success": true, "data": {...}}`` or
``{"success": false, "error": {"code", "message", ...}}``.
"""

from __future__ import annotations

import json
import logging
import math
import sys
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from drawio_engine.batch import (
    batch_add_cells,
    batch_add_cells_to_group,
    batch_create_groups,
    batch_edit_cells,
    batch_edit_edges,
    batch_set_cell_shape,
    finish_diagram,
)
from drawio_engine.codec import export_xml, import_xml
from drawio_engine.config import ConfigError, ServerConfig, parse_config
from drawio_engine.graph import DiagramGraph
from drawio_engine.models import CellKind, DiagramError, ErrorCode
from drawio_engine.shapes import (
    BASIC_SHAPES,
    STYLE_PRESETS,
    IconLibrary,
    ShapeResolver,
)
from drawio_engine.validation import (
    CELL_ACTIONS,
    DIAGRAM_ACTIONS,
    GROUP_ACTIONS,
    LAYER_ACTIONS,
    SHAPE_ACTIONS,
    ValidationError,
    validate_action,
    validate_assignment_item,
    validate_cell_item,
    validate_edge_edit_item,
    validate_edit_item,
    validate_group_item,
    validate_int,
    validate_items,
    validate_list,
    validate_non_empty_string,
    validate_shape_item,
    validate_string,
)

# ---------------------------------------------------------------------------
# Logging: suppress routine FastMCP INFO messages on stderr.
# ---------------------------------------------------------------------------
logging.getLogger("mcp.server").setLevel(logging.WARNING)
logger = logging.getLogger("drawio-engine")

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "drawio-engine",
    instructions=(
        "MCP server for building draw.io / diagrams.net diagrams.\n\n"
        "=== STATE ===\n"
        "The server is stateless. Pass the diagram_xml (and active_layer_id)\n"
        "returned by the previous call into the next one.\n\n"
        "=== 5 TOOLS — use the 'action' parameter to pick the operation ===\n\n"
        "1. diagram(action, ...) — import, export, stats, clear, list_cells, finish.\n"
        "2. cells(action, ...) — add, edit, edit_edges, delete, delete_edge, set_shape.\n"
        "3. layers(action, ...) — list, get_active, set_active, create, move_cell.\n"
        "4. groups(action, ...) — create, add_cells, remove_cell, list_children.\n"
        "5. shapes(action, ...) — categories, in_category, by_name, search, presets.\n\n"
        "=== RULES ===\n"
        "- Batch actions take arrays; each item succeeds or fails on its own.\n"
        "- Give items a temp_id and reference it from later items of the same call.\n"
        "- Edge anchors and waypoints are computed on export; do not set\n"
        "  exitX/exitY/entryX/entryY yourself.\n"
        "- For large icon diagrams use cells(action='add', transactional=True)\n"
        "  with shape_name items, then diagram(action='finish') once at the end.\n"
    ),
)

# Shape catalogue shared by every call; replaced by configure_shapes().
_resolver = ShapeResolver()


def configure_shapes(library: Optional[IconLibrary] = None, cache_size: int = 10_000) -> ShapeResolver:
    """Install the shape catalogue used by all tools."""
    global _resolver
    _resolver = ShapeResolver(library or IconLibrary(), max_cache_size=cache_size)
    return _resolver


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------

def _ok(data: dict[str, Any]) -> str:
    return json.dumps({"success": True, "data": data}, indent=2)


def _fail(error: dict[str, Any]) -> str:
    return json.dumps({"success": False, "error": error}, indent=2)


def _invalid(message: str) -> str:
    return _fail({"code": ErrorCode.INVALID_INPUT.value, "message": message})


def _load(diagram_xml: str, active_layer_id: str) -> DiagramGraph:
    graph = DiagramGraph()
    if diagram_xml and diagram_xml.strip():
        import_xml(graph, diagram_xml)
    if active_layer_id:
        graph.set_active_layer(active_layer_id)
    return graph


def _state(graph: DiagramGraph, data: dict[str, Any], *, echo: Optional[str] = None,
           compress: bool = False) -> dict[str, Any]:
    """Attach the diagram state to a response; read-only actions echo the caller's XML."""
    data["diagram_xml"] = echo if echo else export_xml(graph, compress=compress)
    data["active_layer_id"] = graph.active_layer_id
    return data


def _remaining(graph: DiagramGraph) -> dict[str, int]:
    stats = graph.get_stats()
    return {k: stats[k] for k in ("total_cells", "vertices", "edges")}


# ===================================================================
# RESOURCES: catalogues for the LLM
# ===================================================================

@mcp.resource("drawio://styles/presets")
def style_presets() -> str:
    """Return the named style presets (azure, flowchart, general, edges)."""
    return json.dumps(STYLE_PRESETS, indent=2)


@mcp.resource("drawio://shapes/basic")
def basic_shapes() -> str:
    """Return the built-in basic shapes with their styles and default sizes."""
    return json.dumps([s.to_dict() for s in BASIC_SHAPES.values()], indent=2)


# ===================================================================
# TOOL 1: diagram (whole-document operations)
# ===================================================================

@mcp.tool()
def diagram(
    action: str,
    diagram_xml: str = "",
    active_layer_id: str = "",
    compress: bool = False,
    page: int = 0,
    page_size: int = 50,
    cell_type: str = "",
) -> str:
    """Whole-diagram operations.

    Actions:
      import     — Parse draw.io XML (single/multi-page, plain or compressed). Params: diagram_xml.
      export     — Serialize with computed edge routing. Params: diagram_xml, compress.
      stats      — Counts, bounds and per-layer totals. Params: diagram_xml.
      clear      — Reset to an empty diagram. Params: diagram_xml.
      list_cells — Paged cell listing. Params: diagram_xml, page, page_size, cell_type.
      finish     — Resolve transactional placeholders to real shapes. Params: diagram_xml, compress.

    Args:
        action: One of: import, export, stats, clear, list_cells, finish.
        diagram_xml: Current diagram XML (empty = new diagram).
        active_layer_id: Layer that new cells go to.
        compress: Deflate+base64 the page body in the returned XML.
        page: Zero-based page for list_cells.
        page_size: Cells per page for list_cells (1..1000).
        cell_type: Optional list_cells filter — "vertex" or "edge".

    Returns:
        JSON result envelope.
    """
    try:
        action = validate_action(action, "diagram", DIAGRAM_ACTIONS)
        if action == "import":
            graph = DiagramGraph()
            result = import_xml(graph, diagram_xml)
            if active_layer_id:
                graph.set_active_layer(active_layer_id)
            data = {
                "message": (
                    f"Imported {result.pages} page(s) with {result.cells} cell(s) "
                    f"and {result.layers} layer(s)"
                ),
                **result.to_dict(),
            }
            return _ok(_state(graph, data))

        graph = _load(diagram_xml, active_layer_id)

        if action == "export":
            xml = export_xml(graph, compress=compress)
            compression: dict[str, Any] = {"enabled": compress}
            if compress:
                compression.update(algorithm="deflate-raw", encoding="base64")
            data = {
                "stats": graph.get_stats(),
                "compression": compression,
                "diagram_xml": xml,
                "active_layer_id": graph.active_layer_id,
            }
            return _ok(data)

        elif action == "stats":
            return _ok(_state(graph, {"stats": graph.get_stats()}, echo=diagram_xml))

        elif action == "clear":
            cleared = graph.clear()
            return _ok(_state(graph, {"cleared": cleared}))

        elif action == "list_cells":
            validate_int(page, "page", min_val=0)
            validate_int(page_size, "page_size", min_val=1, max_val=1000)
            kind = None
            if cell_type:
                if cell_type not in ("vertex", "edge"):
                    raise ValidationError("'cell_type' must be 'vertex' or 'edge'.")
                kind = CellKind(cell_type)
            cells = graph.list_cells(kind)
            start = page * page_size
            data = {
                "page": page,
                "page_size": page_size,
                "total_cells": len(cells),
                "total_pages": math.ceil(len(cells) / page_size),
                "active_layer": graph.get_active_layer().to_dict(),
                "cells": [c.to_dict() for c in cells[start:start + page_size]],
            }
            return _ok(_state(graph, data, echo=diagram_xml))

        elif action == "finish":
            result = finish_diagram(graph, _resolver)
            return _ok(_state(graph, result, compress=compress))

        return _invalid(f"Unhandled diagram action '{action}'.")
    except ValidationError as exc:
        return _invalid(exc.message)
    except DiagramError as exc:
        return _fail(exc.to_dict())


# ===================================================================
# TOOL 2: cells (vertices and edges)
# ===================================================================

@mcp.tool()
def cells(
    action: str,
    diagram_xml: str = "",
    active_layer_id: str = "",
    cells: Optional[list[dict[str, Any]]] = None,
    edges: Optional[list[dict[str, Any]]] = None,
    cell_id: str = "",
    dry_run: bool = False,
    transactional: bool = False,
) -> str:
    """Create, edit and delete cells.

    Actions:
      add         — Batch-add vertices and edges. Params: cells, dry_run, transactional.
                    Item: {type: "vertex"|"edge", x, y, width, height, text, style,
                           source_id, target_id, temp_id, shape_name}.
      edit        — Batch-edit vertices. Params: cells [{cell_id, text, x, y, width, height, style}].
      edit_edges  — Batch-edit edges. Params: edges [{cell_id, text, source_id, target_id, style}].
      delete      — Delete a cell and every edge attached to it. Params: cell_id.
      delete_edge — Delete one edge (fails NOT_AN_EDGE for vertices). Params: cell_id.
      set_shape   — Restyle vertices from the shape catalogue. Params: cells [{cell_id, shape_name}].

    Args:
        action: One of: add, edit, edit_edges, delete, delete_edge, set_shape.
        diagram_xml: Current diagram XML (empty = new diagram).
        active_layer_id: Layer that new cells go to.
        cells: Items for add / edit / set_shape.
        edges: Items for edit_edges.
        cell_id: Target of delete / delete_edge.
        dry_run: add only — validate without changing the diagram.
        transactional: add only — create placeholders for shape_name items.

    Returns:
        JSON result envelope; batch actions carry {summary, results}.
    """
    try:
        action = validate_action(action, "cells", CELL_ACTIONS)
        if action == "add":
            items = validate_items(cells, "cells")
            for i, item in enumerate(items):
                validate_cell_item(item, i)
        elif action in ("edit", "set_shape"):
            items = validate_items(cells, "cells")
            check = validate_edit_item if action == "edit" else validate_shape_item
            for i, item in enumerate(items):
                check(item, i)
        elif action == "edit_edges":
            items = validate_items(edges, "edges")
            for i, item in enumerate(items):
                validate_edge_edit_item(item, i)
        else:
            cell_id = validate_non_empty_string(cell_id, "cell_id")

        graph = _load(diagram_xml, active_layer_id)

        if action == "add":
            batch = batch_add_cells(graph, items, dry_run=dry_run,
                                    transactional=transactional, resolver=_resolver)
            data = {**batch.to_dict(), "dry_run": dry_run}
            return _ok(_state(graph, data, echo=diagram_xml if dry_run else None))

        elif action == "edit":
            return _ok(_state(graph, batch_edit_cells(graph, items).to_dict()))

        elif action == "edit_edges":
            return _ok(_state(graph, batch_edit_edges(graph, items).to_dict()))

        elif action == "set_shape":
            return _ok(_state(graph, batch_set_cell_shape(graph, items, _resolver).to_dict()))

        elif action == "delete":
            result = graph.delete_cell(cell_id)
            if not result.deleted:
                raise DiagramError(
                    ErrorCode.CELL_NOT_FOUND,
                    f"Cell '{cell_id}' not found",
                    cell_id=cell_id,
                    suggestion="Use diagram(action='list_cells') to see available cells",
                )
            data = {"deleted": cell_id}
            if result.cascaded_edge_ids:
                data["cascaded_edges"] = result.cascaded_edge_ids
            data["remaining"] = _remaining(graph)
            return _ok(_state(graph, data))

        elif action == "delete_edge":
            cell = graph.get_cell(cell_id)
            if cell is None:
                raise DiagramError(
                    ErrorCode.CELL_NOT_FOUND,
                    f"Edge '{cell_id}' not found",
                    cell_id=cell_id,
                    suggestion="Use diagram(action='list_cells', cell_type='edge') to see available edges",
                )
            if not cell.is_edge:
                raise DiagramError(
                    ErrorCode.NOT_AN_EDGE,
                    f"Cell '{cell_id}' is a vertex, not an edge",
                    cell_id=cell_id,
                    suggestion="Use cells(action='delete') to delete vertices",
                )
            graph.delete_cell(cell_id)
            return _ok(_state(graph, {"deleted": cell_id, "remaining": _remaining(graph)}))

        return _invalid(f"Unhandled cells action '{action}'.")
    except ValidationError as exc:
        return _invalid(exc.message)
    except DiagramError as exc:
        return _fail(exc.to_dict())


# ===================================================================
# TOOL 3: layers
# ===================================================================

@mcp.tool()
def layers(
    action: str,
    diagram_xml: str = "",
    active_layer_id: str = "",
    name: str = "",
    layer_id: str = "",
    cell_id: str = "",
) -> str:
    """Layer management.

    Actions:
      list       — All layers in order. Params: diagram_xml.
      get_active — The layer new cells go to. Params: diagram_xml, active_layer_id.
      set_active — Switch the active layer. Params: layer_id.
      create     — Add a layer (ids are layer-N). Params: name.
      move_cell  — Move a cell onto a layer, out of any group. Params: cell_id, layer_id.

    Args:
        action: One of: list, get_active, set_active, create, move_cell.
        diagram_xml: Current diagram XML (empty = new diagram).
        active_layer_id: Active layer carried over from the previous call.
        name: Layer name for create.
        layer_id: Target layer for set_active / move_cell.
        cell_id: Cell to move for move_cell.

    Returns:
        JSON result envelope.
    """
    try:
        action = validate_action(action, "layers", LAYER_ACTIONS)
        if action == "create":
            name = validate_non_empty_string(name, "name")
        if action in ("set_active", "move_cell"):
            layer_id = validate_non_empty_string(layer_id, "layer_id")
        if action == "move_cell":
            cell_id = validate_non_empty_string(cell_id, "cell_id")

        graph = _load(diagram_xml, active_layer_id)

        if action == "list":
            data = {"layers": [layer.to_dict() for layer in graph.list_layers()]}
            return _ok(_state(graph, data, echo=diagram_xml))

        elif action == "get_active":
            data = {"layer": graph.get_active_layer().to_dict()}
            return _ok(_state(graph, data, echo=diagram_xml))

        elif action == "set_active":
            layer = graph.set_active_layer(layer_id)
            return _ok(_state(graph, {"layer": layer.to_dict()}))

        elif action == "create":
            layer = graph.create_layer(name)
            return _ok(_state(graph, {"layer": layer.to_dict()}))

        elif action == "move_cell":
            cell = graph.move_cell_to_layer(cell_id, layer_id)
            return _ok(_state(graph, {"cell": cell.to_dict()}))

        return _invalid(f"Unhandled layers action '{action}'.")
    except ValidationError as exc:
        return _invalid(exc.message)
    except DiagramError as exc:
        return _fail(exc.to_dict())


# ===================================================================
# TOOL 4: groups
# ===================================================================

@mcp.tool()
def groups(
    action: str,
    diagram_xml: str = "",
    active_layer_id: str = "",
    groups: Optional[list[dict[str, Any]]] = None,
    assignments: Optional[list[dict[str, Any]]] = None,
    cell_id: str = "",
    group_id: str = "",
) -> str:
    """Group (container) management.

    Actions:
      create        — Batch-create groups. Params: groups [{x, y, width, height, text, style, temp_id}].
      add_cells     — Batch-assign cells to groups; the group grows to fit and the
                      child is centered. Params: assignments [{cell_id, group_id}].
      remove_cell   — Move a cell out of its group, keeping its page position. Params: cell_id.
      list_children — Direct children of a group. Params: group_id.

    Args:
        action: One of: create, add_cells, remove_cell, list_children.
        diagram_xml: Current diagram XML (empty = new diagram).
        active_layer_id: Layer that new groups go to.
        groups: Items for create.
        assignments: Items for add_cells.
        cell_id: Cell for remove_cell.
        group_id: Group for list_children.

    Returns:
        JSON result envelope.
    """
    try:
        action = validate_action(action, "groups", GROUP_ACTIONS)
        if action == "create":
            items = validate_items(groups, "groups")
            for i, item in enumerate(items):
                validate_group_item(item, i)
        elif action == "add_cells":
            items = validate_items(assignments, "assignments")
            for i, item in enumerate(items):
                validate_assignment_item(item, i)
        elif action == "remove_cell":
            cell_id = validate_non_empty_string(cell_id, "cell_id")
        else:
            group_id = validate_non_empty_string(group_id, "group_id")

        graph = _load(diagram_xml, active_layer_id)

        if action == "create":
            return _ok(_state(graph, batch_create_groups(graph, items).to_dict()))

        elif action == "add_cells":
            return _ok(_state(graph, batch_add_cells_to_group(graph, items).to_dict()))

        elif action == "remove_cell":
            cell = graph.remove_cell_from_group(cell_id)
            return _ok(_state(graph, {"cell": cell.to_dict()}))

        elif action == "list_children":
            children = graph.list_group_children(group_id)
            data = {
                "group_id": group_id,
                "children": [c.to_dict() for c in children],
                "total": len(children),
            }
            return _ok(_state(graph, data, echo=diagram_xml))

        return _invalid(f"Unhandled groups action '{action}'.")
    except ValidationError as exc:
        return _invalid(exc.message)
    except DiagramError as exc:
        return _fail(exc.to_dict())


# ===================================================================
# TOOL 5: shapes, catalogue lookups with no diagram state
# ===================================================================

@mcp.tool()
def shapes(
    action: str,
    category_id: str = "",
    shape_name: str = "",
    queries: Optional[list[str]] = None,
    limit: int = 10,
) -> str:
    """Shape catalogue queries.

    Actions:
      categories  — Basic and icon-library categories. No params.
      in_category — Shapes in a category. Params: category_id.
      by_name     — Resolve one shape (basic, exact, then fuzzy). Params: shape_name.
      search      — Fuzzy search, one result list per query. Params: queries, limit.
      presets     — Named style presets. No params.

    Args:
        action: One of: categories, in_category, by_name, search, presets.
        category_id: Category id from the categories action.
        shape_name: Name to resolve for by_name.
        queries: Search terms for search.
        limit: Max matches per query (1..100).

    Returns:
        JSON result envelope.
    """
    try:
        action = validate_action(action, "shapes", SHAPE_ACTIONS)

        if action == "categories":
            return _ok({"categories": _resolver.categories()})

        elif action == "in_category":
            category_id = validate_non_empty_string(category_id, "category_id")
            found = _resolver.shapes_in_category(category_id)
            return _ok({"category": category_id.lower(), "shapes": found, "total": len(found)})

        elif action == "by_name":
            shape_name = validate_non_empty_string(shape_name, "shape_name")
            return _ok({"shape": _resolver.require(shape_name).to_dict()})

        elif action == "search":
            if queries is None:
                raise ValidationError("Must provide a non-empty 'queries' array.")
            validate_list(queries, "queries", min_length=1)
            for i, q in enumerate(queries):
                validate_string(q, f"queries[{i}]", allow_empty=False)
            validate_int(limit, "limit", min_val=1, max_val=100)
            results = []
            for q in queries:
                matches = _resolver.search(q, limit)
                results.append({"query": q, "matches": matches, "total": len(matches)})
            return _ok({"results": results, "total_queries": len(queries)})

        elif action == "presets":
            return _ok({"presets": STYLE_PRESETS})

        return _invalid(f"Unhandled shapes action '{action}'.")
    except ValidationError as exc:
        return _invalid(exc.message)
    except DiagramError as exc:
        return _fail(exc.to_dict())


# ===================================================================
# Entry point
# ===================================================================

def run(config: ServerConfig) -> None:
    """Configure logging and the shape catalogue, then serve."""
    logging.basicConfig(
        level=config.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    library = IconLibrary()
    if config.icon_library_path:
        try:
            library = IconLibrary.load(config.icon_library_path)
        except DiagramError as exc:
            logger.error("Could not load icon library %s: %s", config.icon_library_path, exc.message)
    configure_shapes(library, config.resolve_cache_size)

    if config.transport == "http":
        mcp.settings.port = config.http_port
        logger.info("Serving streamable HTTP on port %d", config.http_port)
        mcp.run(transport="streamable-http")
    else:
        mcp.run()


def main() -> None:
    """Run the MCP server."""
    try:
        config = parse_config()
    except ConfigError as exc:
        print(f"drawio-engine: {exc.message}", file=sys.stderr)
        sys.exit(2)
    run(config)


if __name__ == "__main__":
    main()
