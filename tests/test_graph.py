"""Tests for the in-memory cell graph store."""

import pytest

from drawio_engine.graph import (
    DEFAULT_GROUP_STYLE,
    DEFAULT_LAYER_ID,
    DEFAULT_VERTEX_STYLE,
    DiagramGraph,
    id_suffix,
)
from drawio_engine.models import Cell, CellKind, DiagramError, ErrorCode, Layer


def _pair(graph: DiagramGraph) -> tuple[str, str]:
    a = graph.add_vertex(0, 0, 100, 50, "A").id
    b = graph.add_vertex(300, 0, 100, 50, "B").id
    return a, b


# ===================================================================
# Vertices and edges
# ===================================================================


def test_add_vertex_defaults() -> None:
    graph = DiagramGraph()
    cell = graph.add_vertex()
    assert cell.id == "cell-2"
    assert cell.value == "New Cell"
    assert cell.style == DEFAULT_VERTEX_STYLE
    assert (cell.x, cell.y, cell.width, cell.height) == (100, 100, 200, 100)
    assert cell.parent == DEFAULT_LAYER_ID


def test_ids_are_sequential() -> None:
    graph = DiagramGraph()
    ids = [graph.add_vertex().id for _ in range(3)]
    assert ids == ["cell-2", "cell-3", "cell-4"]


def test_zero_size_is_clamped() -> None:
    graph = DiagramGraph()
    cell = graph.add_vertex(width=0, height=-5)
    assert cell.width == 1
    assert cell.height == 1
    graph.edit_cell(cell.id, width=0)
    assert cell.width == 1


def test_explicit_id_must_be_unused() -> None:
    graph = DiagramGraph()
    graph.add_vertex(cell_id="custom")
    with pytest.raises(DiagramError) as exc:
        graph.add_vertex(cell_id="custom")
    assert exc.value.code is ErrorCode.INVALID_INPUT


def test_add_edge() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    edge = graph.add_edge(a, b, "calls")
    assert edge.is_edge
    assert (edge.source, edge.target) == (a, b)
    assert graph.incident_edge_ids(a) == [edge.id]
    assert graph.incident_edge_ids(b) == [edge.id]


def test_add_edge_missing_endpoints() -> None:
    graph = DiagramGraph()
    a = graph.add_vertex().id
    with pytest.raises(DiagramError) as exc:
        graph.add_edge("nope", a)
    assert exc.value.code is ErrorCode.SOURCE_NOT_FOUND
    with pytest.raises(DiagramError) as exc:
        graph.add_edge(a, "nope")
    assert exc.value.code is ErrorCode.TARGET_NOT_FOUND


def test_edit_cell_partial() -> None:
    graph = DiagramGraph()
    cell = graph.add_vertex(10, 20, 30, 40, "Old")
    graph.edit_cell(cell.id, text="New", y=99)
    assert cell.value == "New"
    assert (cell.x, cell.y, cell.width) == (10, 99, 30)


def test_edit_cell_rejects_edges() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    edge = graph.add_edge(a, b)
    with pytest.raises(DiagramError) as exc:
        graph.edit_cell(edge.id, text="x")
    assert exc.value.code is ErrorCode.WRONG_CELL_TYPE


def test_edit_edge_rejects_vertices() -> None:
    graph = DiagramGraph()
    a, _ = _pair(graph)
    with pytest.raises(DiagramError) as exc:
        graph.edit_edge(a, text="x")
    assert exc.value.code is ErrorCode.WRONG_CELL_TYPE


def test_edit_edge_missing() -> None:
    graph = DiagramGraph()
    with pytest.raises(DiagramError) as exc:
        graph.edit_edge("ghost")
    assert exc.value.code is ErrorCode.CELL_NOT_FOUND
    assert "Edge 'ghost'" in exc.value.message


def test_edit_edge_rewires_index() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    c = graph.add_vertex(600, 0).id
    edge = graph.add_edge(a, b)
    graph.edit_edge(edge.id, target_id=c)
    assert graph.incident_edge_ids(b) == []
    assert graph.incident_edge_ids(c) == [edge.id]
    # Deleting the old target no longer touches the edge.
    result = graph.delete_cell(b)
    assert result.cascaded_edge_ids == []
    assert graph.has_cell(edge.id)


def test_edit_edge_is_not_atomic() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    c = graph.add_vertex().id
    edge = graph.add_edge(a, b)
    with pytest.raises(DiagramError) as exc:
        graph.edit_edge(edge.id, text="moved", source_id=c, target_id="ghost")
    assert exc.value.code is ErrorCode.TARGET_NOT_FOUND
    assert edge.value == "moved"
    assert edge.source == c
    assert edge.target == b


# ===================================================================
# Deletion
# ===================================================================


def test_delete_cascades_to_edges() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    e1 = graph.add_edge(a, b).id
    e2 = graph.add_edge(b, a).id
    result = graph.delete_cell(a)
    assert result.deleted
    assert sorted(result.cascaded_edge_ids) == sorted([e1, e2])
    assert graph.has_cell(b)
    assert graph.list_cells(CellKind.EDGE) == []


def test_delete_cascades_through_edge_references() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    e1 = graph.add_edge(a, b).id
    e2 = graph.add_edge(e1, b).id
    result = graph.delete_cell(a)
    assert set(result.cascaded_edge_ids) == {e1, e2}
    assert not graph.has_cell(e2)


def test_incident_edges_keep_creation_order_after_repointing() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    c = graph.add_vertex(600, 0, 100, 50, "C").id
    e1 = graph.add_edge(a, b).id
    e2 = graph.add_edge(a, c).id
    graph.edit_edge(e1, target_id=c)
    graph.edit_edge(e1, target_id=b)
    assert graph.incident_edge_ids(a) == [e1, e2]
    assert graph.incident_edge_ids(c) == [e2]
    result = graph.delete_cell(a)
    assert result.cascaded_edge_ids == [e1, e2]
    assert graph.incident_edge_ids(b) == []
    assert graph.incident_edge_ids(c) == []


def test_delete_missing() -> None:
    graph = DiagramGraph()
    result = graph.delete_cell("ghost")
    assert not result.deleted
    assert result.cascaded_edge_ids == []


def test_delete_edge_keeps_endpoints() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    edge = graph.add_edge(a, b).id
    graph.delete_cell(edge)
    assert graph.has_cell(a) and graph.has_cell(b)
    assert graph.incident_edge_ids(a) == []


def test_delete_group_releases_children() -> None:
    graph = DiagramGraph()
    group = graph.create_group(50, 50, 300, 200)
    child = graph.add_vertex(0, 0, 100, 40)
    graph.add_cell_to_group(child.id, group.id)
    graph.delete_cell(group.id)
    assert child.parent == DEFAULT_LAYER_ID
    assert (child.x, child.y) == (150, 130)


# ===================================================================
# Layers
# ===================================================================


def test_default_layer() -> None:
    graph = DiagramGraph()
    assert [layer.id for layer in graph.list_layers()] == ["1"]
    assert graph.get_active_layer().name == "Default Layer"


def test_create_and_activate_layer() -> None:
    graph = DiagramGraph()
    layer = graph.create_layer("Background")
    assert layer.id == "layer-2"
    graph.set_active_layer(layer.id)
    cell = graph.add_vertex()
    assert cell.parent == "layer-2"
    assert graph.layer_of(cell.id) == "layer-2"


def test_set_active_unknown_layer() -> None:
    graph = DiagramGraph()
    with pytest.raises(DiagramError) as exc:
        graph.set_active_layer("nope")
    assert exc.value.code is ErrorCode.LAYER_NOT_FOUND
    assert graph.active_layer_id == "1"


def test_move_cell_to_layer() -> None:
    graph = DiagramGraph()
    layer = graph.create_layer("Top")
    cell = graph.add_vertex()
    graph.move_cell_to_layer(cell.id, layer.id)
    assert cell.parent == layer.id
    with pytest.raises(DiagramError) as exc:
        graph.move_cell_to_layer(cell.id, "nope")
    assert exc.value.code is ErrorCode.LAYER_NOT_FOUND


def test_move_grouped_cell_to_layer_leaves_group() -> None:
    graph = DiagramGraph()
    layer = graph.create_layer("Top")
    group = graph.create_group(50, 50, 300, 200)
    child = graph.add_vertex(0, 0, 100, 40)
    graph.add_cell_to_group(child.id, group.id)
    graph.move_cell_to_layer(child.id, layer.id)
    assert group.children == []
    assert (child.x, child.y) == (150, 130)


# ===================================================================
# Groups
# ===================================================================


def test_create_group_defaults() -> None:
    graph = DiagramGraph()
    group = graph.create_group()
    assert group.is_group
    assert group.style == DEFAULT_GROUP_STYLE
    assert (group.width, group.height) == (400, 300)


def test_add_cell_to_group_centers_child() -> None:
    graph = DiagramGraph()
    group = graph.create_group(50, 50, 300, 200)
    child = graph.add_vertex(500, 500, 100, 40)
    graph.add_cell_to_group(child.id, group.id)
    assert child.parent == group.id
    assert group.children == [child.id]
    assert (child.x, child.y) == (100, 80)
    assert graph.absolute_position(child.id) == (150, 130)


def test_add_cell_to_group_grows_group() -> None:
    graph = DiagramGraph()
    group = graph.create_group(0, 0, 100, 100)
    child = graph.add_vertex(0, 0, 200, 50)
    graph.add_cell_to_group(child.id, group.id)
    assert (group.width, group.height) == (200, 100)
    assert (child.x, child.y) == (0, 25)


def test_add_cell_to_group_errors() -> None:
    graph = DiagramGraph()
    group = graph.create_group()
    plain = graph.add_vertex()
    with pytest.raises(DiagramError) as exc:
        graph.add_cell_to_group(plain.id, "ghost")
    assert exc.value.code is ErrorCode.GROUP_NOT_FOUND
    with pytest.raises(DiagramError) as exc:
        graph.add_cell_to_group(group.id, plain.id)
    assert exc.value.code is ErrorCode.NOT_A_GROUP
    with pytest.raises(DiagramError) as exc:
        graph.add_cell_to_group(group.id, group.id)
    assert exc.value.code is ErrorCode.SELF_REFERENCE


def test_group_cycle_rejected() -> None:
    graph = DiagramGraph()
    outer = graph.create_group()
    inner = graph.create_group(0, 0, 100, 100)
    graph.add_cell_to_group(inner.id, outer.id)
    with pytest.raises(DiagramError) as exc:
        graph.add_cell_to_group(outer.id, inner.id)
    assert exc.value.code is ErrorCode.SELF_REFERENCE


def test_move_between_groups() -> None:
    graph = DiagramGraph()
    g1 = graph.create_group(0, 0, 300, 200)
    g2 = graph.create_group(400, 0, 300, 200)
    child = graph.add_vertex(0, 0, 100, 40)
    graph.add_cell_to_group(child.id, g1.id)
    graph.add_cell_to_group(child.id, g2.id)
    assert g1.children == []
    assert g2.children == [child.id]


def test_remove_cell_from_group_keeps_page_position() -> None:
    graph = DiagramGraph()
    group = graph.create_group(50, 50, 300, 200)
    child = graph.add_vertex(0, 0, 100, 40)
    graph.add_cell_to_group(child.id, group.id)
    graph.remove_cell_from_group(child.id)
    assert child.parent == DEFAULT_LAYER_ID
    assert (child.x, child.y) == (150, 130)
    assert group.children == []


def test_remove_cell_not_in_group() -> None:
    graph = DiagramGraph()
    cell = graph.add_vertex()
    with pytest.raises(DiagramError) as exc:
        graph.remove_cell_from_group(cell.id)
    assert exc.value.code is ErrorCode.NOT_IN_GROUP


def test_list_group_children() -> None:
    graph = DiagramGraph()
    group = graph.create_group()
    a = graph.add_vertex(width=50, height=50)
    b = graph.add_vertex(width=50, height=50)
    graph.add_cell_to_group(a.id, group.id)
    graph.add_cell_to_group(b.id, group.id)
    assert [c.id for c in graph.list_group_children(group.id)] == [a.id, b.id]


# ===================================================================
# Stats, clear and load
# ===================================================================


def test_stats() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    graph.add_edge(a, b)
    graph.add_vertex(0, 200, 10, 10, "")
    stats = graph.get_stats()
    assert stats["total_cells"] == 4
    assert stats["vertices"] == 3
    assert stats["edges"] == 1
    assert stats["groups"] == 0
    assert stats["layers"] == 1
    assert stats["cells_with_text"] == 2
    assert stats["cells_without_text"] == 2
    assert stats["bounds"] == {"minX": 0, "minY": 0, "maxX": 400, "maxY": 210}
    assert stats["cells_by_layer"] == {"1": 4}


def test_stats_empty_graph_has_no_bounds() -> None:
    assert DiagramGraph().get_stats()["bounds"] is None


def test_stats_refresh_after_mutation() -> None:
    graph = DiagramGraph()
    graph.add_vertex()
    first = graph.get_stats()
    first["vertices"] = 99
    assert graph.get_stats()["vertices"] == 1
    graph.add_vertex()
    assert graph.get_stats()["vertices"] == 2


def test_clear() -> None:
    graph = DiagramGraph()
    a, b = _pair(graph)
    graph.add_edge(a, b)
    graph.create_layer("Extra")
    assert graph.clear() == {"vertices": 2, "edges": 1}
    assert graph.list_cells() == []
    assert len(graph.list_layers()) == 1
    assert graph.add_vertex().id == "cell-2"


def test_load_reseeds_ids() -> None:
    graph = DiagramGraph()
    graph.load([Cell("cell-50", CellKind.VERTEX)], [Layer("layer-7", "L")])
    assert graph.add_vertex().id == "cell-51"
    assert graph.create_layer("Next").id == "layer-51"


def test_load_renames_default_layer_and_activates() -> None:
    graph = DiagramGraph()
    graph.load([], [Layer("1", "Base"), Layer("layer-2", "Top")], active_layer_id="layer-2")
    assert [layer.name for layer in graph.list_layers()] == ["Base", "Top"]
    assert graph.active_layer_id == "layer-2"


def test_id_suffix() -> None:
    assert id_suffix("cell-50") == 50
    assert id_suffix("abc") is None
    assert id_suffix("7") == 7
