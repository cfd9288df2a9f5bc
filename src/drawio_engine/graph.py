"""
In-memory cell graph store.

Owns the cells, layers and group memberships of one diagram, allocates ids,
and keeps a reverse index from every cell to the edges attached to it so that
deleting a cell cascades to exactly the edges currently referencing it.

A ``DiagramGraph`` lives for one request: it is rebuilt from the caller's
XML, mutated, and serialized back out by :mod:`drawio_engine.codec`.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from drawio_engine.models import (
    Cell,
    CellKind,
    DiagramError,
    ErrorCode,
    Layer,
)

DEFAULT_LAYER_ID = "1"
DEFAULT_LAYER_NAME = "Default Layer"
ROOT_ID = "0"

DEFAULT_VERTEX_STYLE = "whiteSpace=wrap;html=1;fillColor=#dae8fc;strokeColor=#6c8ebf;"
DEFAULT_EDGE_STYLE = "edgeStyle=orthogonalEdgeStyle;rounded=0;orthogonalLoop=1;jettySize=auto;html=1;"
DEFAULT_GROUP_STYLE = (
    "rounded=1;whiteSpace=wrap;html=1;fillColor=#f5f5f5;strokeColor=#666666;"
    "dashed=1;container=1;collapsible=0;"
)

_LIST_CELLS_HINT = "Use list_cells to see available cells"
_TRAILING_DIGITS = re.compile(r"(\d+)$")


@dataclass
class DeleteResult:
    deleted: bool
    cascaded_edge_ids: list[str] = field(default_factory=list)


def _cell_not_found(cell_id: str, noun: str = "Cell") -> DiagramError:
    return DiagramError(
        ErrorCode.CELL_NOT_FOUND,
        f"{noun} '{cell_id}' not found",
        cell_id=cell_id,
        suggestion=_LIST_CELLS_HINT,
    )


def id_suffix(cell_id: str) -> int | None:
    """Trailing numeric suffix of an id (``cell-50`` -> 50), or None."""
    m = _TRAILING_DIGITS.search(cell_id)
    return int(m.group(1)) if m else None


class DiagramGraph:
    """Cells, layers and groups of a single diagram."""

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self._cells: dict[str, Cell] = {}
        self._layers: list[Layer] = [Layer(DEFAULT_LAYER_ID, DEFAULT_LAYER_NAME)]
        self._active_layer_id = DEFAULT_LAYER_ID
        self._next_id = 2
        self._next_layer_id = 2
        # cell id -> ids of edges using it as source or target
        self._edge_index: dict[str, set[str]] = {}
        # edge id -> creation sequence, orders index lookups
        self._edge_seq: dict[str, int] = {}
        self._next_edge_seq = 0
        self._stats: dict[str, Any] | None = None

    def _touch(self) -> None:
        self._stats = None

    # ----- id allocation -----

    def _generate_id(self) -> str:
        while True:
            cid = f"cell-{self._next_id}"
            self._next_id += 1
            if cid not in self._cells and not self._find_layer(cid):
                return cid

    def _generate_layer_id(self) -> str:
        while True:
            lid = f"layer-{self._next_layer_id}"
            self._next_layer_id += 1
            if lid not in self._cells and not self._find_layer(lid):
                return lid

    # ----- edge index -----

    def _index_edge(self, edge: Cell) -> None:
        if edge.id not in self._edge_seq:
            self._edge_seq[edge.id] = self._next_edge_seq
            self._next_edge_seq += 1
        for endpoint in (edge.source, edge.target):
            if endpoint:
                self._edge_index.setdefault(endpoint, set()).add(edge.id)

    def _unindex_edge(self, edge: Cell) -> None:
        for endpoint in (edge.source, edge.target):
            if endpoint and endpoint in self._edge_index:
                self._edge_index[endpoint].discard(edge.id)
                if not self._edge_index[endpoint]:
                    del self._edge_index[endpoint]

    def incident_edge_ids(self, cell_id: str) -> list[str]:
        """Ids of edges whose current source or target is *cell_id*, in creation order."""
        return sorted(self._edge_index.get(cell_id, ()), key=self._edge_seq.__getitem__)

    # ----- lookups -----

    def _find_layer(self, layer_id: str) -> Layer | None:
        for layer in self._layers:
            if layer.id == layer_id:
                return layer
        return None

    def _require_cell(self, cell_id: str, noun: str = "Cell") -> Cell:
        cell = self._cells.get(cell_id)
        if cell is None:
            raise _cell_not_found(cell_id, noun)
        return cell

    def _require_layer(self, layer_id: str) -> Layer:
        layer = self._find_layer(layer_id)
        if layer is None:
            raise DiagramError(
                ErrorCode.LAYER_NOT_FOUND,
                f"Layer '{layer_id}' not found",
                suggestion="Use the layers tool (action='list') to see available layers",
            )
        return layer

    def _require_group(self, group_id: str) -> Cell:
        group = self._cells.get(group_id)
        if group is None:
            raise DiagramError(
                ErrorCode.GROUP_NOT_FOUND,
                f"Group '{group_id}' not found",
                cell_id=group_id,
                suggestion="Use list_cells to see available groups",
            )
        if not group.is_group:
            raise DiagramError(
                ErrorCode.NOT_A_GROUP,
                f"Cell '{group_id}' is not a group/container",
                cell_id=group_id,
                suggestion="Create a group first with the groups tool (action='create')",
            )
        return group

    def has_cell(self, cell_id: str) -> bool:
        return cell_id in self._cells

    def get_cell(self, cell_id: str) -> Optional[Cell]:
        return self._cells.get(cell_id)

    @property
    def cells(self) -> dict[str, Cell]:
        """Live mapping of cell id to cell, in creation order."""
        return self._cells

    def list_cells(self, kind: Optional[CellKind] = None) -> list[Cell]:
        if kind is None:
            return list(self._cells.values())
        return [c for c in self._cells.values() if c.kind is kind]

    @property
    def active_layer_id(self) -> str:
        return self._active_layer_id

    def layer_of(self, cell_id: str) -> Optional[str]:
        """Id of the layer a cell ultimately lives on, walking up through groups."""
        seen: set[str] = set()
        current = self._cells.get(cell_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            if self._find_layer(current.parent):
                return current.parent
            current = self._cells.get(current.parent)
        return None

    def ancestor_ids(self, cell_id: str) -> list[str]:
        """Ids of the cells above *cell_id*, nearest first."""
        chain: list[str] = []
        current = self._cells.get(cell_id)
        while current is not None and current.parent in self._cells:
            if current.parent in chain or current.parent == cell_id:
                break
            chain.append(current.parent)
            current = self._cells[current.parent]
        return chain

    def absolute_position(self, cell_id: str) -> tuple[float, float]:
        """Page position of a vertex, adding the offsets of enclosing groups."""
        cell = self._require_cell(cell_id)
        x, y = cell.x, cell.y
        for aid in self.ancestor_ids(cell_id):
            ancestor = self._cells[aid]
            if not ancestor.is_group:
                break
            x += ancestor.x
            y += ancestor.y
        return x, y

    # ----- vertices & edges -----

    def add_vertex(
        self,
        x: Optional[float] = None,
        y: Optional[float] = None,
        width: Optional[float] = None,
        height: Optional[float] = None,
        text: Optional[str] = None,
        style: Optional[str] = None,
        cell_id: Optional[str] = None,
    ) -> Cell:
        """Add a vertex on the active layer.

        *cell_id* lets callers supply a pre-formed id (placeholders); it must
        not collide with an existing cell or layer.
        """
        if cell_id is None:
            cell_id = self._generate_id()
        elif cell_id in self._cells or self._find_layer(cell_id):
            raise DiagramError(
                ErrorCode.INVALID_INPUT,
                f"Cell id '{cell_id}' is already in use",
                cell_id=cell_id,
            )
        cell = Cell(
            id=cell_id,
            kind=CellKind.VERTEX,
            value="New Cell" if text is None else text,
            style=DEFAULT_VERTEX_STYLE if style is None else style,
            parent=self._active_layer_id,
            x=100 if x is None else x,
            y=100 if y is None else y,
            width=max(1, 200 if width is None else width),
            height=max(1, 100 if height is None else height),
        )
        self._cells[cell.id] = cell
        self._touch()
        return cell

    def add_edge(
        self,
        source_id: str,
        target_id: str,
        text: Optional[str] = None,
        style: Optional[str] = None,
    ) -> Cell:
        if source_id not in self._cells:
            raise DiagramError(
                ErrorCode.SOURCE_NOT_FOUND,
                f"Source cell '{source_id}' not found",
                cell_id=source_id,
                suggestion=_LIST_CELLS_HINT,
            )
        if target_id not in self._cells:
            raise DiagramError(
                ErrorCode.TARGET_NOT_FOUND,
                f"Target cell '{target_id}' not found",
                cell_id=target_id,
                suggestion=_LIST_CELLS_HINT,
            )
        edge = Cell(
            id=self._generate_id(),
            kind=CellKind.EDGE,
            value=text or "",
            style=DEFAULT_EDGE_STYLE if style is None else style,
            parent=self._active_layer_id,
            source=source_id,
            target=target_id,
        )
        self._cells[edge.id] = edge
        self._index_edge(edge)
        self._touch()
        return edge

    def edit_cell(
        self,
        cell_id: str,
        text: Optional[str] = None,
        x: Optional[float] = None,
        y: Optional[float] = None,
        width: Optional[float] = None,
        height: Optional[float] = None,
        style: Optional[str] = None,
    ) -> Cell:
        cell = self._require_cell(cell_id)
        if not cell.is_vertex:
            raise DiagramError(
                ErrorCode.WRONG_CELL_TYPE,
                f"Cell '{cell_id}' is not a vertex",
                cell_id=cell_id,
                suggestion="This cell is an edge. Use the edit_edges action for edge cells.",
            )
        if text is not None:
            cell.value = text
        if x is not None:
            cell.x = x
        if y is not None:
            cell.y = y
        if width is not None:
            cell.width = max(1, width)
        if height is not None:
            cell.height = max(1, height)
        if style is not None:
            cell.style = style
        self._touch()
        return cell

    def edit_edge(
        self,
        cell_id: str,
        text: Optional[str] = None,
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
        style: Optional[str] = None,
    ) -> Cell:
        """Edit an edge in place.

        Fields apply in order text, source, target, style.  The edit is not
        atomic: a source change made before a failing target lookup stays.
        """
        edge = self._require_cell(cell_id, "Edge")
        if not edge.is_edge:
            raise DiagramError(
                ErrorCode.WRONG_CELL_TYPE,
                f"Cell '{cell_id}' is not an edge",
                cell_id=cell_id,
                suggestion="This cell is a vertex. Use the edit action for vertex cells.",
            )
        self._touch()
        if text is not None:
            edge.value = text
        if source_id is not None:
            if source_id not in self._cells:
                raise DiagramError(
                    ErrorCode.SOURCE_NOT_FOUND,
                    f"Source cell '{source_id}' not found",
                    cell_id=source_id,
                    suggestion=_LIST_CELLS_HINT,
                )
            self._unindex_edge(edge)
            edge.source = source_id
            self._index_edge(edge)
        if target_id is not None:
            if target_id not in self._cells:
                raise DiagramError(
                    ErrorCode.TARGET_NOT_FOUND,
                    f"Target cell '{target_id}' not found",
                    cell_id=target_id,
                    suggestion=_LIST_CELLS_HINT,
                )
            self._unindex_edge(edge)
            edge.target = target_id
            self._index_edge(edge)
        if style is not None:
            edge.style = style
        return edge

    def delete_cell(self, cell_id: str) -> DeleteResult:
        """Delete a cell and every edge attached to it (transitively)."""
        cell = self._cells.get(cell_id)
        if cell is None:
            return DeleteResult(deleted=False)

        cascaded: list[str] = []
        seen = {cell_id}
        pending = [cell_id]
        while pending:
            current = pending.pop()
            for eid in self.incident_edge_ids(current):
                if eid not in seen:
                    seen.add(eid)
                    cascaded.append(eid)
                    pending.append(eid)

        for eid in cascaded:
            self._remove(self._cells[eid])
        if cell.is_group:
            self._release_children(cell)
        self._remove(cell)
        self._touch()
        return DeleteResult(deleted=True, cascaded_edge_ids=cascaded)

    def _remove(self, cell: Cell) -> None:
        if cell.is_edge:
            self._unindex_edge(cell)
        parent = self._cells.get(cell.parent)
        if parent is not None and cell.id in parent.children:
            parent.children.remove(cell.id)
        self._edge_index.pop(cell.id, None)
        self._edge_seq.pop(cell.id, None)
        del self._cells[cell.id]

    def _release_children(self, group: Cell) -> None:
        # Children keep their page position when their container goes away.
        for child_id in list(group.children):
            child = self._cells.get(child_id)
            if child is None:
                continue
            child.parent = group.parent
            if child.is_vertex:
                child.x += group.x
                child.y += group.y
            outer = self._cells.get(group.parent)
            if outer is not None and outer.is_group:
                outer.children.append(child_id)
        group.children.clear()

    # ----- layers -----

    def create_layer(self, name: str) -> Layer:
        layer = Layer(self._generate_layer_id(), name)
        self._layers.append(layer)
        self._touch()
        return layer

    def list_layers(self) -> list[Layer]:
        return list(self._layers)

    def set_active_layer(self, layer_id: str) -> Layer:
        layer = self._require_layer(layer_id)
        self._active_layer_id = layer.id
        return layer

    def get_active_layer(self) -> Layer:
        return self._require_layer(self._active_layer_id)

    def move_cell_to_layer(self, cell_id: str, layer_id: str) -> Cell:
        cell = self._require_cell(cell_id)
        self._require_layer(layer_id)
        self._detach_from_group(cell)
        cell.parent = layer_id
        self._touch()
        return cell

    # ----- groups -----

    def create_group(
        self,
        x: Optional[float] = None,
        y: Optional[float] = None,
        width: Optional[float] = None,
        height: Optional[float] = None,
        text: Optional[str] = None,
        style: Optional[str] = None,
    ) -> Cell:
        group = Cell(
            id=self._generate_id(),
            kind=CellKind.VERTEX,
            value=text or "",
            style=DEFAULT_GROUP_STYLE if style is None else style,
            parent=self._active_layer_id,
            x=0 if x is None else x,
            y=0 if y is None else y,
            width=max(1, 400 if width is None else width),
            height=max(1, 300 if height is None else height),
            is_group=True,
        )
        self._cells[group.id] = group
        self._touch()
        return group

    def add_cell_to_group(self, cell_id: str, group_id: str) -> Cell:
        """Make *cell_id* a child of *group_id* and fit it inside the group.

        The child is centered in the group's local coordinate space.  When
        it is larger than the group on either axis, the group grows to just
        accommodate it first.
        """
        cell = self._require_cell(cell_id)
        group = self._require_group(group_id)
        if cell_id == group_id or cell_id in self.ancestor_ids(group_id):
            raise DiagramError(
                ErrorCode.SELF_REFERENCE,
                "Cannot add a group to itself or to one of its own children",
                cell_id=cell_id,
                suggestion="Provide a different cell_id and group_id",
            )

        if cell.parent != group_id:
            self._detach_from_group(cell)
        cell.parent = group_id
        if cell_id not in group.children:
            group.children.append(cell_id)

        if cell.is_vertex:
            group.width = max(group.width, cell.width)
            group.height = max(group.height, cell.height)
            cell.x = (group.width - cell.width) / 2
            cell.y = (group.height - cell.height) / 2
        self._touch()
        return cell

    def remove_cell_from_group(self, cell_id: str) -> Cell:
        cell = self._require_cell(cell_id)
        parent = self._cells.get(cell.parent)
        if parent is None or not parent.is_group:
            raise DiagramError(
                ErrorCode.NOT_IN_GROUP,
                f"Cell '{cell_id}' is not inside a group",
                cell_id=cell_id,
                suggestion="Cell is already at the layer level",
            )
        if cell.is_vertex:
            cell.x, cell.y = self.absolute_position(cell_id)
        if cell_id in parent.children:
            parent.children.remove(cell_id)
        cell.parent = self._active_layer_id
        self._touch()
        return cell

    def list_group_children(self, group_id: str) -> list[Cell]:
        group = self._require_group(group_id)
        return [self._cells[cid] for cid in group.children if cid in self._cells]

    def _detach_from_group(self, cell: Cell) -> None:
        parent = self._cells.get(cell.parent)
        if parent is None or not parent.is_group:
            return
        if cell.is_vertex:
            cell.x, cell.y = self.absolute_position(cell.id)
        if cell.id in parent.children:
            parent.children.remove(cell.id)

    # ----- whole-graph operations -----

    def get_stats(self) -> dict[str, Any]:
        """Counts, page bounds and per-layer totals; cached until the next mutation."""
        if self._stats is None:
            self._stats = self._compute_stats()
        return copy.deepcopy(self._stats)

    def _compute_stats(self) -> dict[str, Any]:
        vertices = edges = groups = with_text = 0
        min_x = min_y = float("inf")
        max_x = max_y = float("-inf")
        by_layer: dict[str, int] = {}

        for cell in self._cells.values():
            if cell.is_vertex:
                vertices += 1
                if cell.is_group:
                    groups += 1
                ax, ay = self.absolute_position(cell.id)
                min_x = min(min_x, ax)
                min_y = min(min_y, ay)
                max_x = max(max_x, ax + cell.width)
                max_y = max(max_y, ay + cell.height)
            else:
                edges += 1
            if cell.value and cell.value.strip():
                with_text += 1
            layer_id = self.layer_of(cell.id) or cell.parent
            by_layer[layer_id] = by_layer.get(layer_id, 0) + 1

        total = vertices + edges
        bounds = None
        if vertices:
            bounds = {"minX": min_x, "minY": min_y, "maxX": max_x, "maxY": max_y}
        return {
            "total_cells": total,
            "vertices": vertices,
            "edges": edges,
            "groups": groups,
            "layers": len(self._layers),
            "bounds": bounds,
            "cells_with_text": with_text,
            "cells_without_text": total - with_text,
            "cells_by_layer": by_layer,
        }

    def clear(self) -> dict[str, int]:
        vertices = sum(1 for c in self._cells.values() if c.is_vertex)
        edges = len(self._cells) - vertices
        self._reset()
        return {"vertices": vertices, "edges": edges}

    def load(
        self,
        cells: Iterable[Cell],
        layers: Iterable[Layer],
        active_layer_id: Optional[str] = None,
    ) -> None:
        """Replace the whole graph (used by XML import).

        Id counters are reseeded above every numeric id suffix present, so
        generated ids never collide with loaded ones.
        """
        self._reset()
        cell_list = list(cells)
        layer_list = list(layers)
        extra_layers = [layer for layer in layer_list if layer.id != DEFAULT_LAYER_ID]
        for layer in layer_list:
            if layer.id == DEFAULT_LAYER_ID:
                self._layers[0].name = layer.name
        self._layers.extend(extra_layers)
        for cell in cell_list:
            self._cells[cell.id] = cell
        for cell in cell_list:
            if cell.is_edge:
                self._index_edge(cell)

        max_cell = max(
            (n for n in (id_suffix(c.id) for c in cell_list) if n is not None),
            default=1,
        )
        max_layer = max(
            (n for n in (id_suffix(layer.id) for layer in extra_layers) if n is not None),
            default=1,
        )
        self._next_id = max(max_cell, max_layer) + 1
        self._next_layer_id = max(max_cell, max_layer) + 1

        if active_layer_id and self._find_layer(active_layer_id):
            self._active_layer_id = active_layer_id
        self._touch()
