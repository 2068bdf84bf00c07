"""Tests for the schema validator."""

import math
from unittest.mock import MagicMock

import pytest

from switchboard.exceptions import ValidationError
from switchboard.schema import UNSET, field_definitions, formats, is_schema, t


# -------------------------------------------------------------------
# Primitives
# -------------------------------------------------------------------

class TestNumber:

    @pytest.mark.parametrize("value, expected", [
        ("42", 42),
        (" 7 ", 7),
        ("1.5", 1.5),
        ("-3", -3),
        (10, 10),
        (2.5, 2.5),
        (True, 1),
        ("", 0),
        ("0x1f", 31),
        ("1e3", 1000.0),
        (".5", 0.5),
    ])
    def test_coerces(self, value, expected):
        assert t.number().parse(value) == expected

    @pytest.mark.parametrize("value", [
        "abc", "nan", "inf", "1_000", "\u0661\u0662", "\uff11", None, UNSET, [], float("nan"),
    ])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError) as exc:
            t.number().parse(value)
        assert exc.value.issues[0].message == "Expected a number"

    def test_integer_strings_stay_int(self):
        assert isinstance(t.number().parse("10"), int)

    def test_infinity_is_a_number(self):
        assert t.number().parse("Infinity") == math.inf
        assert t.number().parse("-Infinity") == -math.inf


class TestString:

    def test_accepts_string(self):
        assert t.string().parse("hello") == "hello"

    def test_rejects_non_string(self):
        with pytest.raises(ValidationError, match="Expected a string"):
            t.string().parse(5)

    def test_min_length(self):
        with pytest.raises(ValidationError, match="String too short, min 3 characters"):
            t.string(min_length=3).parse("ab")

    def test_max_length(self):
        with pytest.raises(ValidationError, match="String too long, max 2 characters"):
            t.string(max_length=2).parse("abc")


def test_boolean_is_strict():
    assert t.boolean().parse(False) is False
    with pytest.raises(ValidationError, match="Expected a boolean"):
        t.boolean().parse("true")


def test_literal_requires_exact_value():
    assert t.literal("on").parse("on") == "on"
    with pytest.raises(ValidationError, match="Expected literal value: on, received: off"):
        t.literal("on").parse("off")


def test_literal_distinguishes_bool_from_int():
    with pytest.raises(ValidationError):
        t.literal(1).parse(True)


def test_array_collects_every_element_issue():
    with pytest.raises(ValidationError) as exc:
        t.array(t.number()).parse(["1", "x", "y"])
    assert [issue.path for issue in exc.value.issues] == [(1,), (2,)]


def test_array_rejects_non_list():
    with pytest.raises(ValidationError, match="Expected an array"):
        t.array(t.string()).parse("abc")


def test_union_returns_first_match():
    schema = t.union(t.literal("all"), t.number())
    assert schema.parse("all") == "all"
    assert schema.parse("3") == 3


def test_union_reports_every_variant_and_summary():
    schema = t.union(t.boolean(), t.literal("x"))
    with pytest.raises(ValidationError) as exc:
        schema.parse("y")
    messages = [issue.message for issue in exc.value.issues]
    assert messages[0] == "Expected a boolean"
    assert messages[-1] == "Value did not match any of the expected types"
    assert len(messages) == 3


# -------------------------------------------------------------------
# Wrappers
# -------------------------------------------------------------------

def test_optional_skips_inner_schema_for_missing_value():
    schema = t.number().optional()
    assert schema.parse(UNSET) is None
    assert schema.parse("4") == 4
    assert schema.definition.optional is True


def test_nullable_accepts_none():
    schema = t.string().nullable()
    assert schema.parse(None) is None
    assert schema.definition.nullable is True
    with pytest.raises(ValidationError):
        schema.parse(3)


def test_default_fills_missing_value():
    schema = t.string().default("world!")
    assert schema.parse(UNSET) == "world!"
    assert schema.parse("bob") == "bob"
    assert schema.definition.has_default


def test_optional_after_default_keeps_default():
    schema = t.number().default(5).optional()
    assert schema.parse(UNSET) == 5


def test_refine_runs_after_inner_schema():
    even = t.number().refine(lambda n: n % 2 == 0, "Must be even")
    assert even.parse("4") == 4
    with pytest.raises(ValidationError, match="Must be even"):
        even.parse("3")


def test_wrappers_copy_inner_definition():
    schema = t.string().nullable().default("x")
    assert schema.definition.nullable is True
    assert schema.definition.default == "x"
    assert schema.definition.is_optionalish


# -------------------------------------------------------------------
# Objects
# -------------------------------------------------------------------

class TestObject:

    def test_parses_fields(self):
        schema = t.object({"a": t.number(), "b": t.string()})
        assert schema.parse({"a": "1", "b": "x"}) == {"a": 1, "b": "x"}

    def test_rejects_non_mapping(self):
        with pytest.raises(ValidationError, match="Expected an object"):
            t.object({}).parse("nope")

    def test_collects_all_field_issues(self):
        schema = t.object({"a": t.number(), "b": t.number()})
        with pytest.raises(ValidationError) as exc:
            schema.parse({"a": "x", "b": "y"})
        assert str(exc.value) == "2 issues found"
        assert [issue.path for issue in exc.value.issues] == [("a",), ("b",)]

    def test_single_issue_message_has_path(self):
        schema = t.object({"a": t.number()})
        with pytest.raises(ValidationError) as exc:
            schema.parse({"a": "x"})
        assert str(exc.value) == 'Expected a number at path "a"'

    def test_strict_reports_each_unknown_key(self):
        schema = t.object({"a": t.string()})
        with pytest.raises(ValidationError) as exc:
            schema.parse({"a": "x", "b": 1, "c": 2})
        messages = [issue.message for issue in exc.value.issues]
        assert "Unknown property 'b'" in messages
        assert "Unknown property 'c'" in messages

    def test_non_strict_ignores_unknown_keys(self):
        schema = t.object({"a": t.string()}).strict(False)
        assert schema.parse({"a": "x", "b": 1}) == {"a": "x"}

    def test_missing_optional_field_uses_default(self):
        schema = t.object({"a": t.string().default("d").optional()})
        assert schema.parse({}) == {"a": "d"}

    def test_missing_optional_field_is_none(self):
        schema = t.object({"a": t.string().optional()})
        assert schema.parse({}) == {"a": None}

    def test_missing_required_field_fails(self):
        schema = t.object({"a": t.string()})
        with pytest.raises(ValidationError, match='Expected a string at path "a"'):
            schema.parse({})

    def test_nested_paths_are_prefixed(self):
        schema = t.object({"tags": t.array(t.number())})
        with pytest.raises(ValidationError) as exc:
            schema.parse({"tags": ["1", "x"]})
        assert exc.value.issues[0].path == ("tags", 1)
        assert '"tags.1"' in exc.value.format()

    def test_partial_makes_every_field_optional(self):
        schema = t.object({"a": t.number(), "b": t.string()}).partial()
        assert schema.parse({}) == {"a": None, "b": None}

    def test_extend_adds_fields(self):
        schema = t.object({"a": t.number()}).extend({"b": t.boolean()})
        assert list(schema.shape) == ["a", "b"]

    def test_non_validation_errors_become_issues(self):
        def explode(value):
            raise RuntimeError("boom")

        schema = t.object({"a": t.string().refine(explode)})
        with pytest.raises(ValidationError) as exc:
            schema.parse({"a": "x"})
        assert exc.value.issues[0].message == "boom"
        assert exc.value.issues[0].path == ("a",)


# -------------------------------------------------------------------
# Formats and helpers
# -------------------------------------------------------------------

def test_formats():
    assert formats.email().parse("a@b.io") == "a@b.io"
    assert formats.url().parse("https://example.com/x") == "https://example.com/x"
    assert formats.uuid().parse("123e4567-e89b-12d3-a456-426614174000")
    assert formats.date_string().parse("2024-05-01T10:00:00Z")
    with pytest.raises(ValidationError, match="Invalid email format"):
        formats.email().parse("nope")
    with pytest.raises(ValidationError, match="Invalid URL"):
        formats.url().parse("not a url")
    with pytest.raises(ValidationError, match="Invalid UUID format"):
        formats.uuid().parse("123")
    with pytest.raises(ValidationError, match="Invalid date string"):
        formats.date_string().parse("yesterday")


def test_is_schema_and_field_definitions():
    schema = t.object({"a": t.number(), "b": t.string().optional()})
    assert is_schema(schema)
    assert not is_schema(lambda ctx: None)
    assert not is_schema("Pong!")
    assert not is_schema(MagicMock())

    class Custom:
        def parse(self, data):
            return data

    assert is_schema(Custom())

    definitions = field_definitions(schema)
    assert list(definitions) == ["a", "b"]
    assert definitions["b"].optional is True
    assert field_definitions(t.number()) == {}
    assert field_definitions(None) == {}
