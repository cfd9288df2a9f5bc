"""
Shape catalogue — built-in basic shapes plus an optional draw.io icon library.

The icon library is any draw.io ``<mxlibrary>`` file (a JSON array of
``{xml|data, w, h, title}`` entries wrapped in an XML element).  Shapes are
bucketed into categories by title keywords and can be looked up by title,
slug id or display name, or searched fuzzily.

:class:`ShapeResolver` turns a free-form shape name into a style and a
default size, trying basic shapes first so names like ``start``/``end`` are
never hijacked by a fuzzy library hit.
"""

from __future__ import annotations

import html as _html
import json
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from drawio_engine.models import DiagramError, ErrorCode

logger = logging.getLogger("drawio-engine")


# ---------------------------------------------------------------------------
# Basic shapes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BasicShape:
    name: str
    style: str
    width: int
    height: int

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "style": self.style, "width": self.width, "height": self.height}


BASIC_SHAPES: dict[str, BasicShape] = {
    s.name: s for s in (
        BasicShape("rectangle", "whiteSpace=wrap;html=1;fillColor=#dae8fc;strokeColor=#6c8ebf;", 200, 100),
        BasicShape("rounded", "whiteSpace=wrap;html=1;rounded=1;fillColor=#d5e8d4;strokeColor=#82b366;", 200, 100),
        BasicShape("ellipse", "ellipse;whiteSpace=wrap;html=1;fillColor=#ffe6cc;strokeColor=#d79b00;", 120, 80),
        BasicShape("diamond", "rhombus;whiteSpace=wrap;html=1;fillColor=#fff2cc;strokeColor=#d6b656;", 120, 80),
        BasicShape("circle", "ellipse;whiteSpace=wrap;html=1;aspect=fixed;fillColor=#f8cecc;strokeColor=#b85450;", 80, 80),
        BasicShape("process", "whiteSpace=wrap;html=1;fillColor=#dae8fc;strokeColor=#6c8ebf;", 200, 100),
        BasicShape("decision", "rhombus;whiteSpace=wrap;html=1;fillColor=#fff2cc;strokeColor=#d6b656;", 120, 80),
        BasicShape("start", "ellipse;whiteSpace=wrap;html=1;fillColor=#d5e8d4;strokeColor=#82b366;", 120, 80),
        BasicShape("end", "ellipse;whiteSpace=wrap;html=1;fillColor=#f8cecc;strokeColor=#b85450;", 120, 80),
        BasicShape("parallelogram", "shape=parallelogram;whiteSpace=wrap;html=1;fillColor=#e1d5e7;strokeColor=#9673a6;", 200, 100),
        BasicShape(
            "hexagon",
            "shape=hexagon;perimeter=hexagonPerimeter2;whiteSpace=wrap;html=1;fillColor=#ffe6cc;strokeColor=#d79b00;",
            120, 80,
        ),
        BasicShape(
            "cylinder",
            "shape=cylinder3;whiteSpace=wrap;html=1;boundedLbl=1;backgroundOutline=1;size=15;"
            "fillColor=#dae8fc;strokeColor=#6c8ebf;",
            80, 100,
        ),
        BasicShape("triangle", "triangle;whiteSpace=wrap;html=1;fillColor=#fff2cc;strokeColor=#d6b656;", 80, 100),
    )
}

BASIC_SHAPE_CATEGORIES: dict[str, list[str]] = {
    "general": ["rectangle", "rounded", "ellipse", "diamond", "circle", "hexagon", "cylinder", "triangle"],
    "flowchart": ["process", "decision", "start", "end", "parallelogram"],
}


def get_basic_shape(name: str) -> Optional[BasicShape]:
    return BASIC_SHAPES.get(name.lower())


# ---------------------------------------------------------------------------
# Style presets
# ---------------------------------------------------------------------------

STYLE_PRESETS: dict[str, dict[str, str]] = {
    "azure": {
        "primary": "fillColor=#0078D4;strokeColor=#0078D4;fontColor=#ffffff;",
        "secondary": "fillColor=#50E6FF;strokeColor=#0078D4;fontColor=#000000;",
        "container": "fillColor=#E6F2FA;strokeColor=#0078D4;rounded=1;dashed=1;",
    },
    "flowchart": {
        "process": "whiteSpace=wrap;html=1;fillColor=#dae8fc;strokeColor=#6c8ebf;",
        "decision": "rhombus;whiteSpace=wrap;html=1;fillColor=#fff2cc;strokeColor=#d6b656;",
        "start": "ellipse;whiteSpace=wrap;html=1;fillColor=#d5e8d4;strokeColor=#82b366;",
        "end": "ellipse;whiteSpace=wrap;html=1;fillColor=#f8cecc;strokeColor=#b85450;",
        "data": "shape=parallelogram;whiteSpace=wrap;html=1;fillColor=#e1d5e7;strokeColor=#9673a6;",
    },
    "general": {
        "blue": "fillColor=#dae8fc;strokeColor=#6c8ebf;",
        "green": "fillColor=#d5e8d4;strokeColor=#82b366;",
        "orange": "fillColor=#ffe6cc;strokeColor=#d79b00;",
        "red": "fillColor=#f8cecc;strokeColor=#b85450;",
        "purple": "fillColor=#e1d5e7;strokeColor=#9673a6;",
        "yellow": "fillColor=#fff2cc;strokeColor=#d6b656;",
        "gray": "fillColor=#f5f5f5;strokeColor=#666666;",
    },
    "edges": {
        "solid": "edgeStyle=orthogonalEdgeStyle;rounded=0;html=1;",
        "dashed": "edgeStyle=orthogonalEdgeStyle;rounded=0;html=1;dashed=1;",
        "curved": "edgeStyle=orthogonalEdgeStyle;rounded=1;html=1;",
        "arrow": "edgeStyle=orthogonalEdgeStyle;rounded=0;html=1;endArrow=block;endFill=1;",
    },
}


# ---------------------------------------------------------------------------
# Icon library
# ---------------------------------------------------------------------------

# First match wins; anything unmatched lands in "Other".
CATEGORY_KEYWORDS: dict[str, re.Pattern[str]] = {
    name: re.compile(pattern, re.IGNORECASE) for name, pattern in (
        ("AI + Machine Learning",
         r"^(cognitive|bot|openai|azure openai|machine learning|speech|vision|language|translator|"
         r"form recognizer|content safety|computer vision|custom vision|face api)"),
        ("Analytics",
         r"^(synapse|azure synapse|databricks|azure databricks|data factory|data factories|stream analytics|"
         r"event hub|data lake|power bi|hd insight|azure data explorer)"),
        ("Compute",
         r"^(virtual machine|vm |vm$|batch|cloud service|availability set|scale set|disk|image|host group)"),
        ("Containers", r"^(container|aks|kubernetes|registry|docker|azure red hat openshift|azure spring|worker container)"),
        ("Databases",
         r"^(sql|azure sql|mysql|mariadb|postgresql|cosmos|azure cosmos|cache|redis|azure managed redis|"
         r"database|azure database|elastic pool|managed instance)"),
        ("DevOps", r"^(azure devops|devops|devtest|pipeline|repo|artifact|build|load test)"),
        ("Identity",
         r"^(active directory|entra|access|conditional access|identity|app registration|enterprise app|"
         r"managed identit|groups$|users$|azure ad)"),
        ("Integration",
         r"^(service bus|azure service bus|logic app|api management|api connection|event grid|integration|"
         r"relay|notification hub|signalr)"),
        ("IoT", r"^(iot|device provisioning|device update|digital twin|azure sphere|azure iot)"),
        ("Management + Governance",
         r"^(monitor|azure monitor|log analytics|automation|policy|backup|recovery|cost|blueprint|"
         r"compliance|diagnostic|activity log|service health|application insight|purview)"),
        ("Networking",
         r"^(virtual network|load balancer|application gateway|vpn|firewall|azure firewall|dns|front door|"
         r"cdn|traffic|network|bastion|expressroute|express route|nat$|nat |public ip|private endpoint|"
         r"private link|route|subnet|ddos|virtual wan)"),
        ("Security", r"^(security|key vault|keys$|sentinel|azure sentinel|defender|microsoft defender|confidential)"),
        ("Storage", r"^(storage|blob|file share|azure netapp|data box|elastic san|table$)"),
        ("Web", r"^(web |app service|static app|function app|web app|website)"),
    )
}

OTHER_CATEGORY = "Other"
DEFAULT_ICON_SIZE = 48
MAX_SEARCH_RESULTS = 50

_TITLE_PREFIX = re.compile(r"^\d+-icon-service-")
_IMAGE_DATA = re.compile(r"image=(data:image/[^;\")]*)")
_NON_PRINTABLE = re.compile(r"[^\x20-\x7E]")
_ICON_STYLE = "shape=image;verticalLabelPosition=bottom;verticalAlign=top;imageAspect=0;aspect=fixed;image="


def display_title(raw_title: str) -> str:
    """``02989-icon-service-Container-Apps`` -> ``Container Apps``."""
    return _TITLE_PREFIX.sub("", raw_title).replace("-", " ").strip()


def category_id(name: str) -> str:
    return re.sub(r"\s+", "-", name.lower())


def _normalize_for_search(value: str) -> str:
    value = _TITLE_PREFIX.sub("", value.lower())
    value = re.sub(r"[-_]+", " ", value)
    value = re.sub(r"[()]", " ", value)
    return re.sub(r"\s+", " ", value).strip()


def _slug(title: str) -> str:
    slug = re.sub(r"[^a-z0-9-]", "-", title.lower())
    return re.sub(r"-+", "-", slug).strip("-")


def _extract_style(item: dict[str, Any], xml: str) -> Optional[str]:
    data = item.get("data")
    if isinstance(data, str) and data.startswith("data:image/"):
        return _ICON_STYLE + data.replace(";base64", "")
    m = _IMAGE_DATA.search(xml)
    if m:
        return _ICON_STYLE + m.group(1)
    m = re.search(r'style="([^"]*)"', xml)
    return _html.unescape(m.group(1)) if m else None


def _fuzzy_rank(needle: str, haystack: str) -> Optional[tuple[int, int, int]]:
    """Rank of *needle* inside *haystack* (lower is better), None when absent.

    Prefix beats substring beats in-order subsequence; ties go to the tighter
    span, then the shorter haystack.
    """
    if not needle:
        return None
    pos = haystack.find(needle)
    if pos == 0:
        return (0, 0, len(haystack))
    if pos > 0:
        return (1, pos, len(haystack))
    start = -1
    i = 0
    for j, ch in enumerate(haystack):
        if ch == needle[i]:
            if start < 0:
                start = j
            i += 1
            if i == len(needle):
                return (2, j - start, len(haystack))
    return None


@dataclass
class IconShape:
    id: str
    title: str
    width: float
    height: float
    style: Optional[str] = None
    category: str = OTHER_CATEGORY

    @property
    def name(self) -> str:
        return display_title(self.title)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "id": self.id, "width": self.width, "height": self.height}


@dataclass
class SearchHit:
    shape: IconShape
    score: float


class IconLibrary:
    """A loaded draw.io shape library with category, name and fuzzy indexes."""

    def __init__(self, shapes: Optional[list[IconShape]] = None, max_search_cache: int = 1_000) -> None:
        self.shapes: list[IconShape] = list(shapes or [])
        self.categories: dict[str, list[IconShape]] = {}
        self._index: dict[str, IconShape] = {}
        self._search_keys: list[tuple[str, str]] = []
        self._search_cache: dict[str, list[SearchHit]] = {}
        self.max_search_cache = max_search_cache
        self._build()

    # ----- loading -----

    @classmethod
    def load(cls, path: str | Path) -> "IconLibrary":
        """Parse an ``<mxlibrary>`` file.  A missing file yields an empty library."""
        path = Path(path)
        if not path.is_file():
            logger.warning("Icon library not found at %s; only basic shapes available", path)
            return cls()
        shapes = parse_library(path.read_text(encoding="utf-8"))
        logger.info("Loaded %d icon(s) from %s", len(shapes), path)
        return cls(shapes)

    def _build(self) -> None:
        for shape in self.shapes:
            clean = display_title(shape.title)
            shape.category = next(
                (name for name, pat in CATEGORY_KEYWORDS.items() if pat.search(clean)),
                OTHER_CATEGORY,
            )
            self.categories.setdefault(shape.category, []).append(shape)
            self._index[shape.title.lower()] = shape
            self._index[shape.id.lower()] = shape
            self._index.setdefault(shape.name.lower(), shape)
            self._search_keys.append(
                (_normalize_for_search(shape.title), _normalize_for_search(shape.id))
            )

    # ----- lookups -----

    def __len__(self) -> int:
        return len(self.shapes)

    def category_names(self) -> list[str]:
        return sorted(self.categories)

    def get(self, name: str) -> Optional[IconShape]:
        """Exact lookup by title, slug id or display name (case-insensitive)."""
        return self._index.get(name.lower())

    def search(self, query: str, limit: int = 10) -> list[SearchHit]:
        """Fuzzy search over titles and ids, best first.

        Results are cached per lowercased query at full depth and sliced to
        *limit* on read; the cache is emptied whenever it fills up.
        """
        key = query.lower()
        cached = self._search_cache.get(key)
        if cached is not None:
            return cached[:limit]

        needle = _normalize_for_search(query)
        ranked: list[tuple[tuple[int, int, int], int]] = []
        for i, (s_title, s_id) in enumerate(self._search_keys):
            ranks = [r for r in (_fuzzy_rank(needle, s_title), _fuzzy_rank(needle, s_id)) if r]
            if ranks:
                ranked.append((min(ranks), i))
        ranked.sort()
        ranked = ranked[:MAX_SEARCH_RESULTS]

        hits: list[SearchHit] = []
        for pos, (_, i) in enumerate(ranked):
            s_title, s_id = self._search_keys[i]
            title_match = 1.0 if s_title == needle else 0
            id_match = 0.95 if s_id == needle else 0
            decay = 1 - pos / len(ranked) * 0.2
            score = max(title_match, id_match) or 0.5 + 0.3 * decay
            hits.append(SearchHit(self.shapes[i], min(1.0, max(0.0, score))))
        hits.sort(key=lambda h: h.score, reverse=True)

        if len(self._search_cache) >= self.max_search_cache:
            self._search_cache.clear()
        self._search_cache[key] = hits
        return hits[:limit]

    @property
    def search_cache_size(self) -> int:
        return len(self._search_cache)


def parse_library(content: str) -> list[IconShape]:
    """Shapes from the text of an ``<mxlibrary>`` document.

    Raises INVALID_INPUT when the document is not an mxlibrary or its JSON
    payload is malformed.
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise DiagramError(ErrorCode.INVALID_INPUT, f"Icon library is not valid XML: {exc}") from exc
    if root.tag != "mxlibrary":
        raise DiagramError(ErrorCode.INVALID_INPUT, "Icon library has no <mxlibrary> root")
    try:
        items = json.loads(root.text or "[]")
    except json.JSONDecodeError as exc:
        raise DiagramError(ErrorCode.INVALID_INPUT, f"Icon library JSON is malformed: {exc}") from exc

    shapes: list[IconShape] = []
    for index, item in enumerate(items):
        xml = item.get("xml") or ""
        if xml.startswith("&lt;"):
            xml = _html.unescape(xml)
        raw_title = (item.get("title") or "").strip()
        title = _NON_PRINTABLE.sub("", raw_title).strip() or f"shape-{index}"
        shapes.append(IconShape(
            id=_slug(title) or f"shape-{index}",
            title=title,
            width=item.get("w") or DEFAULT_ICON_SIZE,
            height=item.get("h") or DEFAULT_ICON_SIZE,
            style=_extract_style(item, xml),
        ))
    return shapes


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

@dataclass
class ResolvedShape:
    name: str
    style: str
    width: float
    height: float
    source: str  # "basic" | "library-exact" | "library-fuzzy"
    score: Optional[float] = None

    @property
    def is_basic(self) -> bool:
        return self.source == "basic"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "style": self.style,
            "width": self.width,
            "height": self.height,
            "source": self.source,
        }
        if self.score is not None:
            data["confidence"] = round(self.score, 3)
        return data


@dataclass
class ShapeResolver:
    """Name -> shape resolution with a bounded, clear-on-overflow cache.

    Order: basic shape, exact library match, top fuzzy library hit.  Misses
    are cached too.
    """
    library: IconLibrary = field(default_factory=IconLibrary)
    max_cache_size: int = 10_000
    _cache: dict[str, Optional[ResolvedShape]] = field(default_factory=dict, repr=False)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def resolve(self, shape_name: str) -> Optional[ResolvedShape]:
        key = shape_name.lower()
        if key in self._cache:
            return self._cache[key]
        if len(self._cache) >= self.max_cache_size:
            logger.debug("Shape cache full (%d entries), clearing", len(self._cache))
            self._cache.clear()
        result = self._lookup(shape_name)
        self._cache[key] = result
        return result

    def _lookup(self, shape_name: str) -> Optional[ResolvedShape]:
        basic = get_basic_shape(shape_name)
        if basic:
            return ResolvedShape(basic.name, basic.style, basic.width, basic.height, "basic")
        exact = self.library.get(shape_name)
        if exact:
            return ResolvedShape(exact.name, exact.style or "", exact.width, exact.height, "library-exact")
        hits = self.library.search(shape_name, 1)
        if hits:
            top = hits[0]
            return ResolvedShape(
                top.shape.name, top.shape.style or "", top.shape.width, top.shape.height,
                "library-fuzzy", top.score,
            )
        return None

    def require(self, shape_name: str) -> ResolvedShape:
        resolved = self.resolve(shape_name)
        if resolved is None:
            raise DiagramError(
                ErrorCode.SHAPE_NOT_FOUND,
                f"Unknown shape '{shape_name}'",
                suggestion="Use the shapes tool (action='search') to find available shapes",
            )
        return resolved

    # ----- catalogue queries -----

    def categories(self) -> list[dict[str, str]]:
        basic = [{"id": "general", "name": "General"}, {"id": "flowchart", "name": "Flowchart"}]
        return basic + [
            {"id": category_id(name), "name": name} for name in self.library.category_names()
        ]

    def shapes_in_category(self, cat_id: str) -> list[dict[str, Any]]:
        cat_id = cat_id.lower()
        if cat_id in BASIC_SHAPE_CATEGORIES:
            return [BASIC_SHAPES[n].to_dict() for n in BASIC_SHAPE_CATEGORIES[cat_id]]
        for name in self.library.category_names():
            if category_id(name) == cat_id:
                return [s.to_dict() for s in self.library.categories[name]]
        raise DiagramError(
            ErrorCode.CATEGORY_NOT_FOUND,
            f"Category '{cat_id}' not found",
            suggestion="Use the shapes tool (action='categories') to list available categories",
        )

    def search(self, query: str, limit: int = 10) -> list[dict[str, Any]]:
        """Basic shapes (substring match) first, then library hits, up to *limit*."""
        q = query.lower()
        matches: list[dict[str, Any]] = [
            {
                "name": s.name,
                "id": s.name,
                "category": "basic",
                "width": s.width,
                "height": s.height,
                "confidence": 1.0 if s.name == q else 0.8,
            }
            for s in BASIC_SHAPES.values() if q in s.name
        ]
        for hit in self.library.search(query, limit):
            matches.append({
                "name": hit.shape.name,
                "id": hit.shape.id,
                "category": hit.shape.category,
                "width": hit.shape.width,
                "height": hit.shape.height,
                "confidence": round(hit.score, 3),
            })
        return matches[:limit]
