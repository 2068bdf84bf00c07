"""Tests for command pattern compilation."""

import re

import pytest

from switchboard.exceptions import ConfigurationError
from switchboard.patterns import (
    check_args_order,
    compile_pattern,
    compose_prefix,
    describe_pattern,
    strip_anchors,
)
from switchboard.schema import t


def _params(pattern, body):
    found = pattern.fullmatch(body)
    if found is None:
        return None
    return {k: v for k, v in found.groupdict().items() if v is not None}


def test_literal_pattern_is_anchored():
    pattern = compile_pattern("ping")
    assert pattern.pattern == "^ping$"
    assert _params(pattern, "ping") == {}
    assert _params(pattern, "ping pong") is None
    assert _params(pattern, "xping") is None


def test_last_capture_is_greedy():
    pattern = compile_pattern("echo :text")
    assert _params(pattern, "echo hello world") == {"text": "hello world"}


def test_inner_captures_stop_at_whitespace():
    pattern = compile_pattern("kick :user :reason")
    assert _params(pattern, "kick bob being rude") == {"user": "bob", "reason": "being rude"}
    assert _params(pattern, "kick bob") is None


def test_literal_segments_are_escaped():
    pattern = compile_pattern("a.b :x")
    assert _params(pattern, "a.b 1") == {"x": "1"}
    assert _params(pattern, "axb 1") is None


def test_explicit_optional_segment():
    pattern = compile_pattern("greet :name?")
    assert _params(pattern, "greet") == {}
    assert _params(pattern, "greet ann") == {"name": "ann"}
    assert _params(pattern, "greet ") is None


def test_schema_marks_segments_optional():
    args = t.object({"name": t.string().default("world!")})
    pattern = compile_pattern("hi :name", args=args)
    assert _params(pattern, "hi") == {}
    assert _params(pattern, "hi there") == {"name": "there"}


def test_nullable_field_makes_segment_optional():
    args = t.object({"city": t.string().nullable()})
    pattern = compile_pattern("weather :city", args=args)
    assert _params(pattern, "weather") == {}


def test_string_prefix_adds_separator():
    pattern = compile_pattern("kick :user", prefix="admin")
    assert _params(pattern, "admin kick bob") == {"user": "bob"}
    assert _params(pattern, "kick bob") is None
    assert _params(pattern, "adminkick bob") is None


def test_prefix_only_when_pattern_empty():
    pattern = compile_pattern("", prefix="admin")
    assert pattern.pattern == "^admin$"


def test_regex_pattern_keeps_flags_and_drops_anchors():
    pattern = compile_pattern(re.compile(r"^stic?ker$", re.IGNORECASE), prefix="media")
    assert pattern.flags & re.IGNORECASE
    assert _params(pattern, "media STIKER") == {}
    assert _params(pattern, "stiker") is None


def test_regex_prefix_uses_source():
    pattern = compile_pattern("ping", prefix=re.compile(r"^[!/]$"))
    assert _params(pattern, "! ping") == {}
    assert _params(pattern, "/ ping") == {}


def test_regex_named_groups_are_params():
    pattern = compile_pattern(re.compile(r"roll (?P<dice>\d+d\d+)"))
    assert _params(pattern, "roll 2d6") == {"dice": "2d6"}


@pytest.mark.parametrize("template", ["say :", "say :1abc", "say :a-b"])
def test_invalid_parameter_names(template):
    with pytest.raises(ConfigurationError, match="Invalid parameter name"):
        compile_pattern(template)


def test_duplicate_parameter_names():
    with pytest.raises(ConfigurationError, match="Cannot compile pattern"):
        compile_pattern("swap :a :a")


def test_rejects_non_pattern():
    with pytest.raises(ConfigurationError):
        compile_pattern(42)


class TestArgsOrder:

    def test_required_after_optional_fails(self):
        args = t.object({"a": t.string().optional(), "b": t.string()})
        with pytest.raises(ConfigurationError) as exc:
            check_args_order(args)
        assert exc.value.setting_name == "b"
        assert "Schema order: [a, b]" in exc.value.message

    @pytest.mark.parametrize("trailing", [
        t.string().optional(),
        t.string().default("x"),
        t.string().nullable(),
    ])
    def test_trailing_optionalish_fields_pass(self, trailing):
        check_args_order(t.object({"a": t.number(), "b": trailing}))

    def test_non_object_schemas_are_ignored(self):
        check_args_order(t.number())
        check_args_order(None)


def test_compose_prefix_skips_empty_parts():
    assert compose_prefix("", "admin") == "admin"
    assert compose_prefix("admin", "") == "admin"
    assert compose_prefix("admin", "p") == "admin p"
    assert compose_prefix("a", "b", sep=".") == "a.b"


def test_compose_prefix_with_regex():
    composed = compose_prefix(re.compile("^[!/]", re.IGNORECASE), "admin")
    assert isinstance(composed, re.Pattern)
    assert composed.flags & re.IGNORECASE
    assert re.fullmatch(composed.pattern, "! admin")


def test_describe_and_strip():
    assert strip_anchors("^abc$") == "abc"
    assert describe_pattern(re.compile(r"^stic?ker$")) == "stic?ker"
    assert describe_pattern("echo :text") == "echo :text"
    assert describe_pattern(None) == ""


def test_regex_alternation_stays_under_prefix():
    pattern = compile_pattern(re.compile("ping|pong"), prefix="admin")
    assert _params(pattern, "admin ping") == {}
    assert _params(pattern, "admin pong") == {}
    assert _params(pattern, "pong") is None
    assert _params(pattern, "admin ping|pong") is None


def test_prefix_alternation_stays_before_body():
    pattern = compile_pattern("status", prefix=re.compile("!|/"))
    assert _params(pattern, "! status") == {}
    assert _params(pattern, "/ status") == {}
    assert _params(pattern, "!") is None


def test_composed_regex_prefix_keeps_alternation_grouped():
    composed = compose_prefix(re.compile("a|b"), "admin")
    pattern = compile_pattern("kick", prefix=composed)
    assert _params(pattern, "b admin kick") == {}
    assert _params(pattern, "a") is None
    assert _params(pattern, "b") is None
