from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from hookbridge.bitrix.errors import MalformedConfig


@dataclass(frozen=True, slots=True)
class FieldMappingRule:
    source_field: str
    target_field: str


class _Absent:
    def __repr__(self) -> str:
        return "ABSENT"


ABSENT: Any = _Absent()


def resolve_path(payload: Any, path: str) -> Any:
    """Walk a dot-delimited path through dicts and lists.

    Returns ``ABSENT`` when a segment is missing or an intermediate value is
    not indexable. List segments must be decimal indexes.
    """
    current = payload
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return ABSENT
            current = current[segment]
        elif isinstance(current, list):
            if not segment.isdecimal():
                return ABSENT
            index = int(segment)
            if index >= len(current):
                return ABSENT
            current = current[index]
        else:
            return ABSENT
    return current


def apply_field_mapping(payload: Any, rules: Iterable[FieldMappingRule]) -> dict[str, Any]:
    mapped: dict[str, Any] = {}
    for rule in rules:
        value = resolve_path(payload, rule.source_field)
        if value is ABSENT:
            continue
        mapped[rule.target_field] = value
    return mapped


def _coerce_rule(item: Any) -> FieldMappingRule | None:
    if not isinstance(item, dict):
        return None
    source = item.get("sourceField", item.get("source_field"))
    target = item.get("targetField", item.get("target_field"))
    if not isinstance(source, str) or not isinstance(target, str) or not target:
        return None
    return FieldMappingRule(source_field=source, target_field=target)


def parse_field_mapping(raw: str | list[Any] | None) -> list[FieldMappingRule]:
    """Decode stored mapping rules.

    Items that do not look like rules are dropped; only undecodable text or a
    non-list document is an error.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedConfig("field mapping is not valid JSON", details=str(exc)) from exc
    else:
        decoded = raw

    if decoded is None:
        return []
    if not isinstance(decoded, list):
        raise MalformedConfig("field mapping must be a JSON list")

    rules: list[FieldMappingRule] = []
    for item in decoded:
        rule = _coerce_rule(item)
        if rule is not None:
            rules.append(rule)
    return rules


def dump_field_mapping(rules: Iterable[FieldMappingRule]) -> str:
    return json.dumps([{"sourceField": rule.source_field, "targetField": rule.target_field} for rule in rules])
