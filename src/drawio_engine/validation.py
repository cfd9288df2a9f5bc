"""
Input validation for drawio-engine tool parameters.

Checks the *shape* of what callers send (types, required keys, ranges)
before anything touches a graph.  Failures raise :class:`ValidationError`,
which the tool layer reports as ``INVALID_INPUT``.  Whether referenced cells
actually exist is the graph's business, not this module's.
"""

from __future__ import annotations

from typing import Any


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Primitive validators
# ---------------------------------------------------------------------------

def validate_non_empty_string(value: Any, field_name: str) -> str:
    """Ensure *value* is a non-empty string after stripping whitespace."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field_name}' must be a non-empty string.")
    return value.strip()


def validate_string(value: Any, field_name: str, *, allow_empty: bool = True) -> str:
    """Ensure *value* is a string (optionally non-empty)."""
    if not isinstance(value, str):
        raise ValidationError(f"'{field_name}' must be a string, got {type(value).__name__}.")
    if not allow_empty and not value.strip():
        raise ValidationError(f"'{field_name}' must not be empty.")
    return value


def validate_int(
    value: Any,
    field_name: str,
    *,
    min_val: int | None = None,
    max_val: int | None = None,
) -> int:
    """Validate an integer value and optional range."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(
            f"'{field_name}' must be an integer, got {type(value).__name__}."
        )
    if min_val is not None and value < min_val:
        raise ValidationError(
            f"'{field_name}' must be >= {min_val}, got {value}."
        )
    if max_val is not None and value > max_val:
        raise ValidationError(
            f"'{field_name}' must be <= {max_val}, got {value}."
        )
    return value


def validate_list(value: Any, field_name: str, *, min_length: int = 0) -> list:
    """Ensure *value* is a list with at least *min_length* items."""
    if not isinstance(value, list):
        raise ValidationError(
            f"'{field_name}' must be a list, got {type(value).__name__}."
        )
    if len(value) < min_length:
        raise ValidationError(
            f"'{field_name}' must have at least {min_length} item(s), got {len(value)}."
        )
    return value


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

DIAGRAM_ACTIONS = {"IMPORT", "EXPORT", "STATS", "CLEAR", "LIST_CELLS", "FINISH"}
CELL_ACTIONS = {"ADD", "EDIT", "EDIT_EDGES", "DELETE", "DELETE_EDGE", "SET_SHAPE"}
LAYER_ACTIONS = {"LIST", "GET_ACTIVE", "SET_ACTIVE", "CREATE", "MOVE_CELL"}
GROUP_ACTIONS = {"CREATE", "ADD_CELLS", "REMOVE_CELL", "LIST_CHILDREN"}
SHAPE_ACTIONS = {"CATEGORIES", "IN_CATEGORY", "BY_NAME", "SEARCH", "PRESETS"}


def validate_action(value: Any, tool_name: str, allowed: set[str]) -> str:
    """Validate the action parameter for a tool."""
    if not isinstance(value, str) or not value.strip():
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"'{tool_name}' requires an 'action' parameter. Valid actions: {choices}."
        )
    normalized = value.strip().upper()
    if normalized not in allowed:
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"Unknown {tool_name} action '{value}'. Valid actions: {choices}."
        )
    return value.strip().lower()


def validate_items(value: Any, field_name: str) -> list[dict]:
    """A non-empty list of dicts (the payload of every batch action)."""
    if value is None:
        raise ValidationError(f"Must provide a non-empty '{field_name}' array.")
    items = validate_list(value, field_name, min_length=1)
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"'{field_name}[{i}]' must be a dict/object.")
    return items


# ---------------------------------------------------------------------------
# Item validators
# ---------------------------------------------------------------------------

def _check_optional(item: dict, index: int, what: str, *, strings=(), numbers=()) -> None:
    for key in strings:
        if item.get(key) is not None and not isinstance(item[key], str):
            raise ValidationError(f"{what} at index {index}: '{key}' must be a string.")
    for key in numbers:
        value = item.get(key)
        if value is not None and (not isinstance(value, (int, float)) or isinstance(value, bool)):
            raise ValidationError(f"{what} at index {index}: '{key}' must be a number.")


def validate_cell_item(item: dict, index: int) -> None:
    """Validate one item of ``cells(action='add')``.

    Only field types are checked here.  An unknown ``type`` or a missing
    endpoint is reported against that single item by the batch itself.
    """
    _check_optional(
        item, index, "Cell",
        strings=("type", "text", "style", "source_id", "target_id", "temp_id", "shape_name"),
        numbers=("x", "y", "width", "height"),
    )


def validate_edit_item(item: dict, index: int) -> None:
    """Validate one item of ``cells(action='edit')``."""
    validate_non_empty_string(item.get("cell_id"), f"cells[{index}].cell_id")
    _check_optional(
        item, index, "Update",
        strings=("text", "style"),
        numbers=("x", "y", "width", "height"),
    )


def validate_edge_edit_item(item: dict, index: int) -> None:
    """Validate one item of ``cells(action='edit_edges')``."""
    validate_non_empty_string(item.get("cell_id"), f"edges[{index}].cell_id")
    _check_optional(item, index, "Edge", strings=("text", "style", "source_id", "target_id"))


def validate_group_item(item: dict, index: int) -> None:
    """Validate one item of ``groups(action='create')``."""
    _check_optional(
        item, index, "Group",
        strings=("text", "style", "temp_id"),
        numbers=("x", "y", "width", "height"),
    )


def validate_assignment_item(item: dict, index: int) -> None:
    """Validate one ``{cell_id, group_id}`` assignment."""
    validate_non_empty_string(item.get("cell_id"), f"assignments[{index}].cell_id")
    validate_non_empty_string(item.get("group_id"), f"assignments[{index}].group_id")


def validate_shape_item(item: dict, index: int) -> None:
    """Validate one ``{cell_id, shape_name}`` item of ``cells(action='set_shape')``."""
    validate_non_empty_string(item.get("cell_id"), f"cells[{index}].cell_id")
    validate_non_empty_string(item.get("shape_name"), f"cells[{index}].shape_name")
