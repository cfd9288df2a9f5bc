"""
Batch and transactional operations over a :class:`DiagramGraph`.

Every batch processes its items in order and independently: a failing item
is reported in its own result slot and never aborts its siblings.  Each
result is a JSON-ready dict ``{success, ..., error?}``; the batch as a whole
returns a :class:`BatchResult` carrying a ``{total, succeeded, failed}``
summary.

``batch_add_cells`` additionally supports

* **temp ids**: an item may declare ``temp_id`` and later items of the same
  call may use it wherever a real cell id is expected;
* **dry run**: the batch runs against a throwaway copy of the graph, so
  every check happens but nothing persists;
* **transactional mode**: shapes named by ``shape_name`` are created as
  placeholders and resolved later by :func:`finish_diagram`.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from drawio_engine.geometry import strip_anchors
from drawio_engine.graph import DiagramGraph
from drawio_engine.models import Cell, DiagramError, ErrorCode
from drawio_engine.placeholder import (
    extract_shape_name_from_placeholder_id,
    has_placeholder_marker,
    make_placeholder_id,
    placeholder_style,
    shape_name_candidates,
)
from drawio_engine.shapes import ResolvedShape, ShapeResolver

logger = logging.getLogger("drawio-engine")

NEUTRAL_PLACEHOLDER_STYLE = "whiteSpace=wrap;html=1;"
PLACEHOLDER_SIZE = 48
_TEMP_ID_HINT = "Ensure {field} references an existing cell or a temp_id defined earlier in the batch"


@dataclass
class BatchResult:
    results: list[dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r["success"])

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def summary(self) -> dict[str, int]:
        return {"total": len(self.results), "succeeded": self.succeeded, "failed": self.failed}

    def to_dict(self) -> dict[str, Any]:
        return {"summary": self.summary, "results": self.results}


def _failure(error: DiagramError, **extra: Any) -> dict[str, Any]:
    return {"success": False, **extra, "error": error.to_dict()}


def _run_each(
    items: Iterable[dict[str, Any]],
    apply: Callable[[int, dict[str, Any]], dict[str, Any]],
    echo: tuple[str, ...] = (),
) -> BatchResult:
    """Apply *apply* to every item, turning a DiagramError into a failed slot."""
    batch = BatchResult()
    for i, item in enumerate(items):
        context = {k: item.get(k) for k in echo if item.get(k) is not None}
        try:
            batch.results.append({"success": True, **context, **apply(i, item)})
        except DiagramError as e:
            batch.results.append(_failure(e, **context))
    return batch


# ---------------------------------------------------------------------------
# add cells
# ---------------------------------------------------------------------------

def _resolve_endpoint(
    graph: DiagramGraph,
    temp_ids: dict[str, str],
    ref: Optional[str],
    index: int,
    code: ErrorCode,
    label: str,
) -> str:
    real = temp_ids.get(ref, ref) if ref else None
    if not real or not graph.has_cell(real):
        raise DiagramError(
            code,
            f"Edge at index {index}: {label} cell '{ref}' not found",
            index=index,
            suggestion=_TEMP_ID_HINT.format(field=f"{label}_id"),
        )
    return real


def _add_placeholder(graph: DiagramGraph, item: dict[str, Any], shape_name: str) -> Cell:
    style = placeholder_style(item.get("style") or NEUTRAL_PLACEHOLDER_STYLE)
    text = item.get("text")
    cell = graph.add_vertex(
        x=item.get("x"),
        y=item.get("y"),
        width=item.get("width") or PLACEHOLDER_SIZE,
        height=item.get("height") or PLACEHOLDER_SIZE,
        text=text if text else shape_name,
        style=style,
        cell_id=make_placeholder_id(shape_name),
    )
    cell.pending_shape = shape_name
    return cell


def _add_shape(graph: DiagramGraph, item: dict[str, Any], resolved: ResolvedShape) -> Cell:
    text = item.get("text")
    if not text and not resolved.is_basic:
        text = resolved.name
    return graph.add_vertex(
        x=item.get("x"),
        y=item.get("y"),
        width=item.get("width") if item.get("width") is not None else resolved.width,
        height=item.get("height") if item.get("height") is not None else resolved.height,
        text=text,
        style=item.get("style") if item.get("style") is not None else resolved.style,
    )


def _add_one(
    graph: DiagramGraph,
    index: int,
    item: dict[str, Any],
    temp_ids: dict[str, str],
    transactional: bool,
    resolver: Optional[ShapeResolver],
) -> tuple[Cell, Optional[str]]:
    kind = item.get("type", "vertex")
    info = None
    if kind == "edge":
        source = _resolve_endpoint(
            graph, temp_ids, item.get("source_id"), index, ErrorCode.INVALID_SOURCE, "source",
        )
        target = _resolve_endpoint(
            graph, temp_ids, item.get("target_id"), index, ErrorCode.INVALID_TARGET, "target",
        )
        style = item.get("style")
        cell = graph.add_edge(
            source, target, item.get("text"),
            strip_anchors(style) if style is not None else None,
        )
    elif kind == "vertex":
        shape_name = item.get("shape_name")
        if shape_name and transactional:
            cell = _add_placeholder(graph, item, shape_name)
            info = f"Placeholder for '{shape_name}', resolved by finish"
        elif shape_name:
            if resolver is None:
                raise DiagramError(ErrorCode.SHAPE_NOT_FOUND, f"Unknown shape '{shape_name}'", index=index)
            resolved = resolver.require(shape_name)
            cell = _add_shape(graph, item, resolved)
            if not resolved.is_basic:
                info = f"Added library shape: {resolved.name}"
        else:
            cell = graph.add_vertex(
                x=item.get("x"),
                y=item.get("y"),
                width=item.get("width"),
                height=item.get("height"),
                text=item.get("text"),
                style=item.get("style"),
            )
    else:
        raise DiagramError(
            ErrorCode.INVALID_INPUT,
            f"Item at index {index}: type must be 'vertex' or 'edge', got {kind!r}",
            index=index,
        )
    return cell, info


def batch_add_cells(
    graph: DiagramGraph,
    items: list[dict[str, Any]],
    dry_run: bool = False,
    transactional: bool = False,
    resolver: Optional[ShapeResolver] = None,
) -> BatchResult:
    """Add vertices and edges in one call.

    Items are ``{type, x, y, width, height, text, style, source_id,
    target_id, temp_id, shape_name}``.  Edge endpoints may name an existing
    cell or the ``temp_id`` of any earlier vertex or edge in the batch.
    Anchor keys in edge styles are dropped so that export-time anchoring
    stays in charge.

    With *dry_run* the batch runs on a deep copy and reports
    ``temp-cell-{index}`` ids in place of the ids that would be assigned.
    """
    target = copy.deepcopy(graph) if dry_run else graph
    temp_ids: dict[str, str] = {}
    # real id -> reported id, only populated in dry runs
    reported: dict[str, str] = {}

    batch = BatchResult()
    for i, item in enumerate(items):
        temp_id = item.get("temp_id")
        context = {"temp_id": temp_id} if temp_id is not None else {}
        try:
            cell, info = _add_one(target, i, item, temp_ids, transactional, resolver)
        except DiagramError as e:
            if e.index is None:
                e.index = i
            batch.results.append(_failure(e, index=i, **context))
            continue

        if temp_id:
            temp_ids[temp_id] = cell.id
        data = cell.to_dict()
        if dry_run:
            reported[cell.id] = f"temp-cell-{i}"
            data["id"] = reported[cell.id]
            for key in ("sourceId", "targetId"):
                if key in data:
                    data[key] = reported.get(data[key], data[key])
        result: dict[str, Any] = {"success": True, "index": i, **context, "cell": data}
        if info:
            result["info"] = info
        batch.results.append(result)
    return batch


# ---------------------------------------------------------------------------
# edit / groups / shapes
# ---------------------------------------------------------------------------

def batch_edit_cells(graph: DiagramGraph, items: list[dict[str, Any]]) -> BatchResult:
    """Edit vertices: ``{cell_id, text?, x?, y?, width?, height?, style?}``."""
    def apply(_: int, item: dict[str, Any]) -> dict[str, Any]:
        cell = graph.edit_cell(
            item.get("cell_id", ""),
            text=item.get("text"),
            x=item.get("x"),
            y=item.get("y"),
            width=item.get("width"),
            height=item.get("height"),
            style=item.get("style"),
        )
        return {"cell": cell.to_dict()}
    return _run_each(items, apply, echo=("cell_id",))


def batch_edit_edges(graph: DiagramGraph, items: list[dict[str, Any]]) -> BatchResult:
    """Edit edges: ``{cell_id, text?, source_id?, target_id?, style?}``."""
    def apply(_: int, item: dict[str, Any]) -> dict[str, Any]:
        style = item.get("style")
        cell = graph.edit_edge(
            item.get("cell_id", ""),
            text=item.get("text"),
            source_id=item.get("source_id"),
            target_id=item.get("target_id"),
            style=strip_anchors(style) if style is not None else None,
        )
        return {"cell": cell.to_dict()}
    return _run_each(items, apply, echo=("cell_id",))


def batch_create_groups(graph: DiagramGraph, items: list[dict[str, Any]]) -> BatchResult:
    def apply(_: int, item: dict[str, Any]) -> dict[str, Any]:
        group = graph.create_group(
            x=item.get("x"),
            y=item.get("y"),
            width=item.get("width"),
            height=item.get("height"),
            text=item.get("text"),
            style=item.get("style"),
        )
        return {"cell": group.to_dict()}
    return _run_each(items, apply, echo=("temp_id",))


def batch_add_cells_to_group(graph: DiagramGraph, items: list[dict[str, Any]]) -> BatchResult:
    """Assign cells to groups: ``{cell_id, group_id}``."""
    def apply(_: int, item: dict[str, Any]) -> dict[str, Any]:
        cell = graph.add_cell_to_group(item.get("cell_id", ""), item.get("group_id", ""))
        return {"cell": cell.to_dict()}
    return _run_each(items, apply, echo=("cell_id", "group_id"))


def batch_set_cell_shape(
    graph: DiagramGraph,
    items: list[dict[str, Any]],
    resolver: ShapeResolver,
) -> BatchResult:
    """Restyle vertices from the catalogue: ``{cell_id, shape_name}``."""
    def apply(_: int, item: dict[str, Any]) -> dict[str, Any]:
        resolved = resolver.require(item.get("shape_name", ""))
        cell = graph.edit_cell(item.get("cell_id", ""), style=resolved.style)
        cell.pending_shape = None
        return {"cell": cell.to_dict()}
    return _run_each(items, apply, echo=("cell_id", "shape_name"))


# ---------------------------------------------------------------------------
# finish
# ---------------------------------------------------------------------------

def _pending_name(cell: Cell) -> Optional[str]:
    if cell.pending_shape:
        return cell.pending_shape
    if cell.is_vertex and has_placeholder_marker(cell.style):
        return extract_shape_name_from_placeholder_id(cell.id) or ""
    return None


def _resolve_pending(resolver: ShapeResolver, name: str) -> Optional[ResolvedShape]:
    for candidate in shape_name_candidates(name):
        resolved = resolver.resolve(candidate)
        if resolved is not None:
            return resolved
    return None


def finish_diagram(graph: DiagramGraph, resolver: ShapeResolver) -> dict[str, Any]:
    """Resolve every placeholder to its catalogue style.

    All placeholders are resolved before any is touched: if one fails, a
    PLACEHOLDER_RESOLUTION_FAILED error lists every failure and the graph is
    left as it was.  Resolved cells keep their position, size and label.
    """
    plan: list[tuple[Cell, ResolvedShape]] = []
    failures: list[dict[str, str]] = []
    for cell in graph.list_cells():
        name = _pending_name(cell)
        if name is None:
            continue
        resolved = _resolve_pending(resolver, name) if name else None
        if resolved is None:
            failures.append({"placeholderId": cell.id, "shapeName": name})
        else:
            plan.append((cell, resolved))

    if failures:
        logger.warning("Failed to resolve %d placeholder(s): %s", len(failures), failures)
        raise DiagramError(
            ErrorCode.PLACEHOLDER_RESOLUTION_FAILED,
            f"Failed to resolve {len(failures)} placeholder(s)",
            suggestion="Use set_shape or the shapes tool (action='search') to pick valid shape names",
            details=failures,
        )

    for cell, resolved in plan:
        graph.edit_cell(cell.id, style=resolved.style)
        cell.pending_shape = None
    return {
        "resolved": len(plan),
        "cells": [{"id": cell.id, "shape": resolved.name} for cell, resolved in plan],
    }
