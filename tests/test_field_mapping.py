from __future__ import annotations

import pytest

from hookbridge.bitrix.errors import MalformedConfig
from hookbridge.bitrix.mapping import (
    ABSENT,
    FieldMappingRule,
    apply_field_mapping,
    dump_field_mapping,
    parse_field_mapping,
    resolve_path,
)


def test_nested_paths_and_list_indexes_resolve() -> None:
    payload = {
        "contact": {"name": "Ivan", "phones": [{"value": "+7 900 000-00-00"}]},
        "amount": 1500,
    }
    rules = [
        FieldMappingRule("contact.name", "NAME"),
        FieldMappingRule("contact.phones.0.value", "PHONE"),
        FieldMappingRule("amount", "OPPORTUNITY"),
    ]

    assert apply_field_mapping(payload, rules) == {
        "NAME": "Ivan",
        "PHONE": "+7 900 000-00-00",
        "OPPORTUNITY": 1500,
    }


def test_absent_paths_contribute_nothing_but_null_leaves_are_kept() -> None:
    payload = {"a": {"b": None}, "scalar": "text", "items": [1]}
    rules = [
        FieldMappingRule("a.b", "B"),
        FieldMappingRule("a.missing", "MISSING"),
        FieldMappingRule("scalar.deeper", "DEEPER"),
        FieldMappingRule("items.5", "OUT_OF_RANGE"),
        FieldMappingRule("items.first", "NOT_AN_INDEX"),
    ]

    assert apply_field_mapping(payload, rules) == {"B": None}


def test_later_rules_overwrite_earlier_targets() -> None:
    rules = [FieldMappingRule("first", "TITLE"), FieldMappingRule("second", "TITLE")]

    assert apply_field_mapping({"first": "one", "second": "two"}, rules) == {"TITLE": "two"}


def test_mapping_is_pure() -> None:
    payload = {"name": "Acme", "nested": {"k": [1, 2]}}
    rules = [FieldMappingRule("name", "TITLE")]

    first = apply_field_mapping(payload, rules)
    second = apply_field_mapping(payload, rules)

    assert first == second
    assert payload == {"name": "Acme", "nested": {"k": [1, 2]}}


def test_resolve_path_returns_sentinel_for_missing_segment() -> None:
    assert resolve_path({"a": 1}, "b") is ABSENT
    assert resolve_path([10, 20], "1") == 20


def test_parse_field_mapping_skips_malformed_rules() -> None:
    raw = (
        '[{"sourceField": "name", "targetField": "TITLE"},'
        ' {"sourceField": "phone"},'
        ' "garbage",'
        ' {"sourceField": 5, "targetField": "X"},'
        ' {"source_field": "email", "target_field": "EMAIL"}]'
    )

    rules = parse_field_mapping(raw)

    assert rules == [FieldMappingRule("name", "TITLE"), FieldMappingRule("email", "EMAIL")]


@pytest.mark.parametrize("raw", [None, "", "   ", "null"])
def test_parse_field_mapping_treats_empty_input_as_no_rules(raw: str | None) -> None:
    assert parse_field_mapping(raw) == []


@pytest.mark.parametrize("raw", ["not json", '{"sourceField": "a", "targetField": "b"}', "42"])
def test_parse_field_mapping_rejects_undecodable_or_non_list(raw: str) -> None:
    with pytest.raises(MalformedConfig) as exc_info:
        parse_field_mapping(raw)

    assert exc_info.value.code == "malformed_config"
    assert exc_info.value.status_code == 422


def test_dump_field_mapping_uses_camel_case_keys() -> None:
    dumped = dump_field_mapping([FieldMappingRule("contact.name", "NAME")])

    assert dumped == '[{"sourceField": "contact.name", "targetField": "NAME"}]'
    assert parse_field_mapping(dumped) == [FieldMappingRule("contact.name", "NAME")]
