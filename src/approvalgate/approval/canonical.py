"""Recursive canonical JSON used for approval signing.

Two independent implementations given the same logical record must produce
identical bytes, so ordering is fixed at every depth:

* mapping keys are sorted lexicographically at every nesting level;
* arrays stored under a set-valued field (``scopesApproved``) are sorted and
  de-duplicated, all other arrays keep their order;
* ``None`` values are dropped (optional fields are absent, never ``null``);
* output is compact, ASCII-escaped UTF-8 and rejects NaN/Infinity.

Dependencies: errors
Wired in: approval/signing.py
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Any, cast

from approvalgate.errors import ApprovalValidationError

SET_VALUED_FIELDS: frozenset[str] = frozenset({"scopesApproved", "scopes_approved"})

_MAX_DEPTH = 32


def canonical_json(value: Any) -> str:
    return json.dumps(
        _normalize(value, field=None, depth=0),
        separators=(",", ":"),
        ensure_ascii=True,
        allow_nan=False,
    )


def canonicalize(value: Any) -> bytes:
    """Return the canonical UTF-8 bytes of a JSON-compatible value."""
    return canonical_json(value).encode("utf-8")


def _normalize(value: Any, *, field: str | None, depth: int) -> Any:  # noqa: PLR0911
    if depth > _MAX_DEPTH:
        raise ApprovalValidationError("canonical_depth", "Value is nested too deeply to sign.")
    if value is None or isinstance(value, bool | str):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ApprovalValidationError(
                "canonical_non_finite", f"Field {field!r} holds a non-finite number."
            )
        return value
    if isinstance(value, Mapping):
        return _normalize_mapping(cast(Mapping[Any, Any], value), depth=depth)
    if isinstance(value, list | tuple | set | frozenset):
        items = [
            _normalize(item, field=None, depth=depth + 1)
            for item in cast(list[Any], list(value))
        ]
        if field in SET_VALUED_FIELDS or isinstance(value, set | frozenset):
            return _sorted_set(items, field)
        return items
    raise ApprovalValidationError(
        "canonical_non_json",
        f"Field {field!r} holds a non-JSON value of type {type(value).__name__}.",
    )


def _normalize_mapping(value: Mapping[Any, Any], *, depth: int) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    keys = list(value.keys())
    if not all(isinstance(key, str) for key in keys):
        raise ApprovalValidationError("canonical_key_type", "Mapping keys must be strings.")
    for key in sorted(cast(list[str], keys)):
        item = value[key]
        if item is None:
            continue
        normalized[key] = _normalize(item, field=key, depth=depth + 1)
    return normalized


def _sorted_set(items: list[Any], field: str | None) -> list[str]:
    if not all(isinstance(item, str) for item in items):
        raise ApprovalValidationError(
            "canonical_set_type", f"Set-valued field {field!r} must contain only strings."
        )
    return sorted(set(cast(list[str], items)))
