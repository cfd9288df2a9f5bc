"""
Placeholder cells for transactional diagram building.

In transactional mode shapes are added as lightweight stand-ins: a plain
vertex whose style carries ``placeholder=1`` and whose id encodes the shape
name still to be resolved, ``placeholder-{hyphenated-name}-{8 hex}``.
``finish`` later swaps each stand-in's style for the real catalogue style.

Resolution reads the shape name from the cell (or, after an XML round trip,
from its id), never from the label, so callers may relabel placeholders
freely.
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

PLACEHOLDER_MARKER = "placeholder=1"
PLACEHOLDER_PREFIX = "placeholder-"

_WHITESPACE = re.compile(r"\s+")
_HEX_SUFFIX = re.compile(r"^[a-f0-9]{8}$")
_IMAGE_PROP = re.compile(r"image=[^;]*")


def make_placeholder_id(shape_name: str) -> str:
    """``"Front Doors"`` -> ``"placeholder-front-doors-1a2b3c4d"``."""
    slug = _WHITESPACE.sub("-", shape_name.strip().lower())
    return f"{PLACEHOLDER_PREFIX}{slug}-{uuid.uuid4().hex[:8]}"


def is_placeholder(cell_id: str) -> bool:
    return cell_id.startswith(PLACEHOLDER_PREFIX)


def has_placeholder_marker(style: Optional[str]) -> bool:
    return bool(style) and PLACEHOLDER_MARKER in style


def extract_shape_name_from_placeholder_id(cell_id: str) -> Optional[str]:
    """Hyphenated shape name encoded in a placeholder id, or None if malformed.

    >>> extract_shape_name_from_placeholder_id("placeholder-front-doors-abc12345")
    'front-doors'
    """
    if not is_placeholder(cell_id):
        return None
    parts = cell_id[len(PLACEHOLDER_PREFIX):].split("-")
    if len(parts) < 2 or not _HEX_SUFFIX.match(parts[-1]):
        return None
    name = "-".join(parts[:-1])
    return name or None


def strip_image_from_style(style: str) -> str:
    """Drop ``image=...`` properties (embedded SVG data) from a style."""
    cleaned = _IMAGE_PROP.sub("", style)
    cleaned = re.sub(r";;+", ";", cleaned)
    return cleaned.lstrip(";")


def placeholder_style(base_style: str) -> str:
    """Image-free *base_style* with the placeholder marker appended once."""
    style = strip_image_from_style(base_style)
    if PLACEHOLDER_MARKER in style:
        return style
    if style and not style.endswith(";"):
        style += ";"
    return f"{style}{PLACEHOLDER_MARKER};"


def shape_name_candidates(shape_name: str) -> list[str]:
    """Names to try when resolving a placeholder, most literal first.

    Ids store names hyphenated, so ``front-doors`` is also tried as
    ``front doors``.
    """
    candidates = [shape_name]
    spaced = shape_name.replace("-", " ")
    if spaced != shape_name:
        candidates.append(spaced)
    return candidates
