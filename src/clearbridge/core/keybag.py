# src/clearbridge/core/keybag.py
"""Key bag: a flat, tolerant view of the identifiers inside an arbitrary JSON body.

Provider payloads and our own logged request bodies come in many shapes.
Instead of binding to a schema, we walk the parsed JSON tree and collect
every property whose name looks like an identifier, keyed by both its bare
name and its dotted path:

    {"program": {"programId": "3"}, "subjectId": 7}

    -> programId = 3, program.programId = 3, subjectId = 7

Which names count as identifiers is data (KeyRules), not code, so a new
provider can be onboarded by configuration.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class KeyRules:
    """Which JSON property names are collected into a key bag.

    Attributes:
        suffixes: Case-insensitive name endings that mark an identifier
        special_names: Exact names (case-insensitive) collected regardless of
            suffix, mapped to the spelling they are stored under
    """

    suffixes: tuple[str, ...] = ("id",)
    special_names: dict[str, str] = field(
        default_factory=lambda: {
            "indexno": "IndexNo",
            "indexnumber": "IndexNumber",
            "referencenumber": "ReferenceNumber",
        }
    )

    def stored_name(self, name: str) -> str | None:
        """Name to store a matching property under, or None if not collected."""
        lowered = name.lower()
        if lowered in self.special_names:
            return self.special_names[lowered]
        if any(lowered.endswith(suffix) for suffix in self.suffixes):
            return name
        return None

    def with_names(self, names: Iterable[str]) -> KeyRules:
        """Rules that additionally collect the given exact names."""
        extra = {name.lower(): name for name in names if name}
        return KeyRules(suffixes=self.suffixes, special_names={**extra, **self.special_names})


DEFAULT_RULES = KeyRules()


def coerce_identifier(value: Any) -> Any:
    """Opportunistically turn numeric-looking strings into ints.

    Other values (including bools and non-numeric strings) pass through.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.isascii() and text and (text.isdigit() or (text[0] in "+-" and text[1:].isdigit())):
            return int(text)
    return value


class KeyBag:
    """Ordered, first-write-wins map of name/path -> value.

    Lookups never raise: a miss is None. Matching is exact first, then
    case-insensitive, then by dotted suffix (``programId`` finds
    ``ProviderRequest.programId``).
    """

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self._find_key(key) is not None

    def __repr__(self) -> str:
        return f"KeyBag({self._entries!r})"

    def put(self, key: str, value: Any) -> bool:
        """Store ``value`` under ``key`` unless the key already has one."""
        if key in self._entries:
            return False
        self._entries[key] = value
        return True

    def _find_key(self, key: str) -> str | None:
        if key in self._entries:
            return key
        lowered = key.lower()
        for existing in self._entries:
            if existing.lower() == lowered:
                return existing
        suffix = f".{lowered}"
        for existing in self._entries:
            if existing.lower().endswith(suffix):
                return existing
        return None

    def get(self, key: str) -> Any:
        found = self._find_key(key)
        return self._entries[found] if found is not None else None

    def get_int(self, key: str) -> int | None:
        """Value as int when it is (or looks like) an integer, else None."""
        value = coerce_identifier(self.get(key))
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return None

    def get_str(self, key: str) -> str | None:
        value = self.get(key)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def as_dict(self) -> dict[str, Any]:
        return dict(self._entries)


def collect_keys(value: Any, bag: KeyBag, rules: KeyRules = DEFAULT_RULES, prefix: str = "") -> None:
    """Walk a parsed JSON value, collecting identifier-like scalars into ``bag``.

    Arrays are walked with the same prefix as their parent, so the first
    element that carries a name wins.
    """
    if isinstance(value, dict):
        for name, child in value.items():
            if not isinstance(name, str):
                continue
            if isinstance(child, (dict, list)):
                collect_keys(child, bag, rules, f"{prefix}.{name}" if prefix else name)
                continue
            stored = rules.stored_name(name)
            if stored is None or child is None:
                continue
            if isinstance(child, str) and not child.strip():
                continue
            coerced = coerce_identifier(child)
            bag.put(stored, coerced)
            bag.put(f"{prefix}.{stored}" if prefix else stored, coerced)
    elif isinstance(value, list):
        for item in value:
            collect_keys(item, bag, rules, prefix)


def parse_json(text: str | None) -> Any:
    """Parse JSON text, returning None for blank or malformed input."""
    if text is None or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug("Body is not JSON; nothing to collect", error=str(e))
        return None


def build_key_bag(
    body: str | None,
    *,
    provider_code: str | None = None,
    operation: str | None = None,
    rules: KeyRules = DEFAULT_RULES,
) -> KeyBag:
    """Key bag for a JSON body, seeded with the integration type and operation."""
    bag = KeyBag()
    if provider_code is not None:
        bag.put("IntegrationType", provider_code)
    if operation is not None:
        bag.put("IntegrationOperation", operation)
    parsed = parse_json(body)
    if parsed is not None:
        collect_keys(parsed, bag, rules)
    return bag
