"""Compile command patterns into anchored regular expressions.

Two pattern kinds are supported:

    "kick :user :reason?"    template; ``:name`` segments capture words,
                             the last capture takes the rest of the line
    re.compile(r"stic?ker")  raw regular expression, flags preserved

Both are joined with the active prefix (from ``Bot.group``/``Bot.use``)
and anchored at both ends.
"""

import re
from typing import Any, Optional, Pattern, Tuple, Union

from .exceptions import ConfigurationError
from .schema import field_definitions

PrefixType = Union[str, Pattern]
PatternType = Union[str, Pattern]

_ANCHORS = re.compile(r"^\^|\$$")
_SEPARATOR = r"\s+"


def strip_anchors(source: str) -> str:
    """Drop one leading ``^`` and one trailing ``$``."""
    return _ANCHORS.sub("", source)


def _group(source: str) -> str:
    # Keeps a top-level alternation from escaping whatever it is joined to
    return f"(?:{source})" if source else ""


def prefix_source(prefix: Optional[PrefixType]) -> Tuple[str, int]:
    """Return (regex source, flags) contributed by a prefix."""
    if not prefix:
        return "", 0
    if isinstance(prefix, re.Pattern):
        return _group(strip_anchors(prefix.pattern)), prefix.flags
    return re.escape(prefix), 0


def check_args_order(args: Any) -> None:
    """Reject object schemas where a required field follows an optional one.

    Only a trailing run of optional/default/nullable fields can be left
    out of a message, so any other order can never match as declared.

    Raises:
        ConfigurationError: On the first required field found after an
            optional/default/nullable one.
    """
    definitions = field_definitions(args)
    keys = list(definitions)
    seen_optional = False
    for key, definition in definitions.items():
        if definition.is_optionalish:
            seen_optional = True
            continue
        if seen_optional:
            raise ConfigurationError(
                f'Invalid args schema: property "{key}" is required but follows an '
                "optional/default/nullable property. All optional/default/nullable "
                "properties must appear only as a trailing suffix in the object schema. "
                f"Schema order: [{', '.join(keys)}]",
                setting_name=key,
                module="patterns",
            )


def _template_source(template: str, args: Any) -> str:
    definitions = field_definitions(args)
    parts = template.split()
    source = ""

    for index, part in enumerate(parts):
        sep = "" if index == 0 else _SEPARATOR
        is_last = index == len(parts) - 1

        if not part.startswith(":"):
            source += sep + re.escape(part)
            continue

        raw = part[1:]
        explicit_optional = raw.endswith("?")
        name = raw[:-1] if explicit_optional else raw
        if not name.isidentifier():
            raise ConfigurationError(
                f"Invalid parameter name {name!r} in pattern {template!r}",
                module="patterns",
            )

        definition = definitions.get(name)
        optional = explicit_optional or bool(definition and definition.is_optionalish)

        capture = f"(?P<{name}>.+)" if is_last else rf"(?P<{name}>\S+)"
        if optional:
            source += f"(?:{sep}{capture})?"
        else:
            source += sep + capture

    return source


def compile_pattern(
    pattern: PatternType,
    prefix: Optional[PrefixType] = "",
    args: Any = None,
) -> Pattern:
    """Build the anchored matcher for a command.

    Args:
        pattern: Template string or compiled regular expression.
        prefix: Active prefix; a string is matched literally, a
            compiled pattern by its source.
        args: Args schema; its optional/default/nullable fields make
            the matching template segments optional.

    Raises:
        ConfigurationError: On malformed parameter names or a regex
            that fails to compile.
    """
    head, flags = prefix_source(prefix)

    if isinstance(pattern, re.Pattern):
        body = _group(strip_anchors(pattern.pattern))
        flags |= pattern.flags
    elif isinstance(pattern, str):
        body = _template_source(pattern, args)
    else:
        raise ConfigurationError(
            f"Pattern must be a string or compiled regex, got {type(pattern).__name__}",
            module="patterns",
        )

    separator = _SEPARATOR if head and body else ""
    try:
        return re.compile(f"^{head}{separator}{body}$", flags)
    except re.error as e:
        raise ConfigurationError(
            f"Cannot compile pattern {describe_pattern(pattern)!r}: {e}",
            module="patterns",
        ) from e


def compose_prefix(current: Optional[PrefixType], prefix: Optional[PrefixType], sep: str = " ") -> PrefixType:
    """Join a group prefix onto the active one, skipping empty parts.

    When either part is a compiled pattern the result is a compiled
    pattern whose literal parts are escaped.
    """
    if not isinstance(current, re.Pattern) and not isinstance(prefix, re.Pattern):
        return sep.join(part for part in (current or "", prefix or "") if part)

    sources = []
    flags = 0
    for part in (current, prefix):
        source, part_flags = prefix_source(part)
        if source:
            sources.append(source)
            flags |= part_flags
    return re.compile(re.escape(sep).join(sources), flags)


def describe_pattern(pattern: Optional[PatternType]) -> str:
    """Human-readable form of a command pattern for help output."""
    if pattern is None:
        return ""
    if isinstance(pattern, re.Pattern):
        return strip_anchors(pattern.pattern)
    return pattern
