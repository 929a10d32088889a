# src/clearbridge/core/keymap.py
"""Derive an external -> internal field map from an endpoint payload template.

The template already says which internal value lands in which external
field; reading it backwards tells the context resolver where to look for
internal ids inside a logged request body.

Derivation order (first that yields anything wins):
1. Explicit map: ``{"keyMap": {"externalBatchId": "ProgramId"}}``
2. JSON template whose string values are single placeholders, inverted to
   ext -> int for both the bare property name and its dotted path
3. Regex scan over ``"ext": <placeholder>`` pairs, for templates that are
   not valid JSON (unquoted placeholders, control blocks)
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

from clearbridge.core.keybag import KeyBag
from clearbridge.core.templates import placeholder_path

logger = structlog.get_logger(__name__)

_PAIR_PATTERN = re.compile(
    r'"(?P<ext>[^"\\]+)"\s*:\s*"?\s*(?P<ph>\{\{\s*[A-Za-z_][\w.]*\s*(?:\|[^}]*)?\}\}|\$\{\s*[A-Za-z_][\w.]*\s*\}|\{\s*[A-Za-z_][\w.]*\s*\})'
)


class KeyMappingProvider:
    """Builds and caches key maps per template text."""

    def __init__(self) -> None:
        self._cache: dict[str, dict[str, str]] = {}

    def key_map_for(self, template: str | None) -> dict[str, str]:
        """External field name/path -> internal field path. Empty if none derivable."""
        if template is None or not template.strip():
            return {}
        cached = self._cache.get(template)
        if cached is None:
            cached = derive_key_map(template)
            self._cache[template] = cached
        return dict(cached)


def derive_key_map(template: str) -> dict[str, str]:
    parsed: Any
    try:
        parsed = json.loads(template)
    except json.JSONDecodeError:
        parsed = None

    if isinstance(parsed, dict):
        explicit = parsed.get("keyMap")
        if isinstance(explicit, dict):
            return {str(k): str(v) for k, v in explicit.items() if isinstance(v, str) and v.strip()}

        inverted: dict[str, str] = {}
        _invert_json_template(parsed, "", inverted)
        if inverted:
            return inverted

    scanned: dict[str, str] = {}
    for match in _PAIR_PATTERN.finditer(template):
        path = placeholder_path(match.group("ph"))
        if path is not None:
            scanned.setdefault(match.group("ext"), path)
    if not scanned:
        logger.debug("No key map derivable from payload template")
    return scanned


def _invert_json_template(node: Any, prefix: str, out: dict[str, str]) -> None:
    if isinstance(node, dict):
        for name, child in node.items():
            full = f"{prefix}.{name}" if prefix else name
            if isinstance(child, str):
                path = placeholder_path(child)
                if path is not None:
                    out.setdefault(name, path)
                    out.setdefault(full, path)
            else:
                _invert_json_template(child, full, out)
    elif isinstance(node, list):
        for item in node:
            _invert_json_template(item, prefix, out)


def apply_key_map(bag: KeyBag, key_map: dict[str, str]) -> int:
    """Copy external values into their internal names.

    An internal name already present in the bag is never overwritten.
    Returns the number of names populated.
    """
    applied = 0
    for external, internal in key_map.items():
        if internal in bag:
            continue
        value = bag.get(external)
        if value is None:
            continue
        if bag.put(internal, value):
            applied += 1
    return applied
