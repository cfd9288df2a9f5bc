"""Tests for transactional placeholder helpers."""

import re

from drawio_engine.placeholder import (
    extract_shape_name_from_placeholder_id,
    has_placeholder_marker,
    is_placeholder,
    make_placeholder_id,
    placeholder_style,
    shape_name_candidates,
    strip_image_from_style,
)


def test_make_placeholder_id() -> None:
    pid = make_placeholder_id("Front Doors")
    assert re.fullmatch(r"placeholder-front-doors-[0-9a-f]{8}", pid)
    assert make_placeholder_id("Front Doors") != pid
    assert is_placeholder(pid)


def test_extract_shape_name() -> None:
    assert extract_shape_name_from_placeholder_id("placeholder-front-doors-abc12345") == "front-doors"
    assert extract_shape_name_from_placeholder_id("placeholder-vm-0a1b2c3d") == "vm"


def test_extract_shape_name_malformed() -> None:
    assert extract_shape_name_from_placeholder_id("cell-2") is None
    assert extract_shape_name_from_placeholder_id("placeholder-foo") is None
    assert extract_shape_name_from_placeholder_id("placeholder-foo-XYZ12345") is None
    assert extract_shape_name_from_placeholder_id("placeholder--abc12345") is None


def test_extract_roundtrips_generated_id() -> None:
    pid = make_placeholder_id("Key Vaults")
    assert extract_shape_name_from_placeholder_id(pid) == "key-vaults"


def test_strip_image_from_style() -> None:
    style = "shape=image;image=data:image/svg+xml,PHN2Zz4=;html=1;"
    assert strip_image_from_style(style) == "shape=image;html=1;"
    assert strip_image_from_style("image=x;html=1;") == "html=1;"


def test_placeholder_style_marks_once() -> None:
    style = placeholder_style("whiteSpace=wrap;html=1")
    assert style == "whiteSpace=wrap;html=1;placeholder=1;"
    assert placeholder_style(style) == style
    assert has_placeholder_marker(style)
    assert not has_placeholder_marker("html=1;")
    assert not has_placeholder_marker(None)


def test_shape_name_candidates() -> None:
    assert shape_name_candidates("front-doors") == ["front-doors", "front doors"]
    assert shape_name_candidates("vm") == ["vm"]
