"""Tests for the shape catalogue: basic shapes, icon library and resolution."""

import json
from xml.sax.saxutils import escape

import pytest

from drawio_engine.models import DiagramError, ErrorCode
from drawio_engine.shapes import (
    BASIC_SHAPE_CATEGORIES,
    STYLE_PRESETS,
    IconLibrary,
    IconShape,
    ShapeResolver,
    display_title,
    get_basic_shape,
    parse_library,
)

KEY_VAULT_STYLE = "shape=mxgraph.azure.key_vault;html=1;"


def _library_xml() -> str:
    items = [
        {
            "data": "data:image/svg+xml;base64,PHN2Zz48L3N2Zz4=",
            "w": 50,
            "h": 50,
            "title": "02989-icon-service-Container-Apps",
        },
        {
            "xml": f'<mxGraphModel><root><mxCell id="2" style="{KEY_VAULT_STYLE}" vertex="1"/></root></mxGraphModel>',
            "w": 40,
            "h": 40,
            "title": "Key Vaults",
        },
        {"xml": "", "title": "Widget"},
    ]
    return f"<mxlibrary>{escape(json.dumps(items))}</mxlibrary>"


def _library() -> IconLibrary:
    return IconLibrary(parse_library(_library_xml()))


# ===================================================================
# Basic shapes & presets
# ===================================================================


def test_basic_shape_lookup_case_insensitive() -> None:
    shape = get_basic_shape("Rectangle")
    assert shape is not None
    assert (shape.width, shape.height) == (200, 100)
    assert get_basic_shape("nope") is None


def test_basic_categories_reference_known_shapes() -> None:
    for names in BASIC_SHAPE_CATEGORIES.values():
        for name in names:
            assert get_basic_shape(name) is not None


def test_presets() -> None:
    assert set(STYLE_PRESETS) == {"azure", "flowchart", "general", "edges"}
    assert "dashed=1" in STYLE_PRESETS["edges"]["dashed"]


def test_display_title() -> None:
    assert display_title("02989-icon-service-Container-Apps") == "Container Apps"
    assert display_title("Key Vaults") == "Key Vaults"


# ===================================================================
# Library parsing
# ===================================================================


def test_parse_library() -> None:
    shapes = parse_library(_library_xml())
    assert [s.name for s in shapes] == ["Container Apps", "Key Vaults", "Widget"]
    apps, kv, widget = shapes
    assert apps.id == "02989-icon-service-container-apps"
    assert apps.style.endswith("image=data:image/svg+xml,PHN2Zz48L3N2Zz4=")
    assert (apps.width, apps.height) == (50, 50)
    assert kv.style == KEY_VAULT_STYLE
    assert widget.style is None
    assert (widget.width, widget.height) == (48, 48)


def test_parse_library_rejects_other_roots() -> None:
    with pytest.raises(DiagramError) as exc:
        parse_library("<library>[]</library>")
    assert exc.value.code is ErrorCode.INVALID_INPUT


def test_parse_library_rejects_bad_json() -> None:
    with pytest.raises(DiagramError) as exc:
        parse_library("<mxlibrary>not json</mxlibrary>")
    assert exc.value.code is ErrorCode.INVALID_INPUT


def test_load_library_file(tmp_path) -> None:
    path = tmp_path / "icons.xml"
    path.write_text(_library_xml(), encoding="utf-8")
    library = IconLibrary.load(path)
    assert len(library) == 3


def test_load_missing_library_is_empty(tmp_path) -> None:
    library = IconLibrary.load(tmp_path / "missing.xml")
    assert len(library) == 0
    assert library.category_names() == []


# ===================================================================
# Library indexes & search
# ===================================================================


def test_categories_from_title_keywords() -> None:
    library = _library()
    assert library.category_names() == ["Containers", "Other", "Security"]
    assert [s.name for s in library.categories["Security"]] == ["Key Vaults"]


def test_exact_lookup_by_title_id_and_name() -> None:
    library = _library()
    assert library.get("key vaults").name == "Key Vaults"
    assert library.get("KEY-VAULTS").name == "Key Vaults"
    assert library.get("container apps").name == "Container Apps"
    assert library.get("02989-icon-service-Container-Apps").name == "Container Apps"
    assert library.get("missing") is None


def test_search_prefix_match() -> None:
    library = _library()
    hits = library.search("key vault")
    assert [h.shape.name for h in hits] == ["Key Vaults"]
    assert hits[0].score == pytest.approx(0.8)


def test_search_exact_title_scores_one() -> None:
    hits = _library().search("Widget")
    assert hits[0].shape.name == "Widget"
    assert hits[0].score == 1.0


def test_search_subsequence() -> None:
    hits = _library().search("kyvlt")
    assert [h.shape.name for h in hits] == ["Key Vaults"]


def test_search_no_match() -> None:
    assert _library().search("zzzz") == []


def test_search_cache_clears_when_full() -> None:
    library = IconLibrary(parse_library(_library_xml()), max_search_cache=2)
    library.search("key")
    library.search("wid")
    assert library.search_cache_size == 2
    library.search("key")
    assert library.search_cache_size == 2
    library.search("con")
    assert library.search_cache_size == 1


# ===================================================================
# Resolution
# ===================================================================


def test_resolve_prefers_basic_shapes() -> None:
    shapes = [IconShape(id="start-menu", title="Start Menu", width=10, height=10, style="x")]
    resolver = ShapeResolver(IconLibrary(shapes))
    resolved = resolver.resolve("start")
    assert resolved.source == "basic"
    assert resolved.is_basic
    assert (resolved.width, resolved.height) == (120, 80)


def test_resolve_library_exact_and_fuzzy() -> None:
    resolver = ShapeResolver(_library())
    exact = resolver.resolve("Key Vaults")
    assert exact.source == "library-exact"
    assert exact.style == KEY_VAULT_STYLE
    assert (exact.width, exact.height) == (40, 40)
    fuzzy = resolver.resolve("keyvault")
    assert fuzzy.source == "library-fuzzy"
    assert fuzzy.name == "Key Vaults"
    assert "confidence" in fuzzy.to_dict()


def test_resolve_miss_is_cached() -> None:
    resolver = ShapeResolver(_library())
    assert resolver.resolve("zzzz") is None
    assert resolver.cache_size == 1
    assert resolver.resolve("ZZZZ") is None
    assert resolver.cache_size == 1


def test_resolver_cache_clears_when_full() -> None:
    resolver = ShapeResolver(_library(), max_cache_size=2)
    resolver.resolve("rectangle")
    resolver.resolve("ellipse")
    resolver.resolve("diamond")
    assert resolver.cache_size == 1
    resolver.clear_cache()
    assert resolver.cache_size == 0


def test_require_unknown_shape() -> None:
    with pytest.raises(DiagramError) as exc:
        ShapeResolver().require("zzzz")
    assert exc.value.code is ErrorCode.SHAPE_NOT_FOUND


def test_resolver_categories() -> None:
    resolver = ShapeResolver(_library())
    ids = [c["id"] for c in resolver.categories()]
    assert ids == ["general", "flowchart", "containers", "other", "security"]


def test_shapes_in_category() -> None:
    resolver = ShapeResolver(_library())
    general = resolver.shapes_in_category("General")
    assert [s["name"] for s in general] == BASIC_SHAPE_CATEGORIES["general"]
    security = resolver.shapes_in_category("security")
    assert [s["name"] for s in security] == ["Key Vaults"]
    with pytest.raises(DiagramError) as exc:
        resolver.shapes_in_category("bogus")
    assert exc.value.code is ErrorCode.CATEGORY_NOT_FOUND


def test_resolver_search_basic_first() -> None:
    resolver = ShapeResolver(_library())
    matches = resolver.search("rect")
    assert matches[0]["name"] == "rectangle"
    assert matches[0]["confidence"] == 0.8
    exact = resolver.search("diamond")
    assert exact[0]["confidence"] == 1.0


def test_resolver_search_library_hits() -> None:
    matches = ShapeResolver(_library()).search("vault", limit=5)
    assert [m["name"] for m in matches] == ["Key Vaults"]
    assert matches[0]["category"] == "Security"
