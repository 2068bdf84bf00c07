"""Runtime schema validation for command parameters.

A schema turns untyped input (usually the strings captured from a
command pattern) into typed values, or raises ValidationError listing
every mismatch. Schemas are built through the ``t`` namespace::

    args = t.object({
        "a": t.number(),
        "b": t.number().default(1),
    })
    args.parse({"a": "2"})  # {"a": 2, "b": 1}

Wrapper variants (optional, nullable, default, refine) compose around
an inner schema and copy its definition record, so the router can ask
any schema whether a field may be left out of the message text.
"""

import math
import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from .exceptions import Issue, ValidationError


class _Unset:
    """Marker for a value that was never provided (a missing key)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()


@dataclass(frozen=True)
class Refinement:
    predicate: Callable[[Any], bool]
    message: str


@dataclass(frozen=True)
class SchemaDef:
    """Inspectable description of a schema node.

    Attributes:
        optional: A missing value is accepted.
        nullable: ``None`` is accepted.
        default: Value substituted for a missing input, or UNSET.
        shape: Field schemas of an object schema, in declaration order.
        strict: Whether an object schema rejects unknown keys.
        refinement: Last predicate attached with ``refine``.
    """

    optional: bool = False
    nullable: bool = False
    default: Any = UNSET
    shape: Optional[Dict[str, "Schema"]] = None
    strict: bool = True
    refinement: Optional[Refinement] = None

    @property
    def has_default(self) -> bool:
        return self.default is not UNSET

    @property
    def is_optionalish(self) -> bool:
        """True when the field may be absent from the message text."""
        return self.optional or self.nullable or self.has_default


def _fail(message: str, path=()) -> None:
    raise ValidationError([Issue(message, tuple(path))])


def _collect(exc: Exception, key) -> List[Issue]:
    """Turn any exception from a nested parse into issues under ``key``."""
    if isinstance(exc, ValidationError):
        return [issue.prefixed(key) for issue in exc.issues]
    return [Issue(str(exc), (key,))]


class Schema:
    """Base class of every schema variant."""

    def __init__(self, definition: Optional[SchemaDef] = None):
        self.definition = definition or SchemaDef()

    def parse(self, data: Any) -> Any:
        raise NotImplementedError("parse method must be implemented")

    def optional(self) -> "Schema":
        return OptionalSchema(self)

    def nullable(self) -> "Schema":
        return NullableSchema(self)

    def default(self, value: Any) -> "Schema":
        return DefaultSchema(self, value)

    def refine(
        self,
        predicate: Callable[[Any], bool],
        message: str = "Validation failed",
    ) -> "Schema":
        return RefinedSchema(self, predicate, message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.definition!r})"


# ---------------------------------------------------------------------------
# Wrapper variants
# ---------------------------------------------------------------------------

class OptionalSchema(Schema):
    def __init__(self, inner: Schema):
        super().__init__(replace(inner.definition, optional=True))
        self.inner = inner

    def parse(self, data: Any) -> Any:
        if data is UNSET:
            if self.definition.has_default:
                return self.definition.default
            return None
        return self.inner.parse(data)


class NullableSchema(Schema):
    def __init__(self, inner: Schema):
        super().__init__(replace(inner.definition, nullable=True))
        self.inner = inner

    def parse(self, data: Any) -> Any:
        if data is None:
            return None
        return self.inner.parse(data)


class DefaultSchema(Schema):
    def __init__(self, inner: Schema, value: Any):
        super().__init__(replace(inner.definition, default=value))
        self.inner = inner

    def parse(self, data: Any) -> Any:
        if data is UNSET:
            return self.definition.default
        return self.inner.parse(data)


class RefinedSchema(Schema):
    def __init__(self, inner: Schema, predicate: Callable[[Any], bool], message: str):
        refinement = Refinement(predicate, message)
        super().__init__(replace(inner.definition, refinement=refinement))
        self.inner = inner
        self.predicate = predicate
        self.message = message

    def parse(self, data: Any) -> Any:
        value = self.inner.parse(data)
        if not self.predicate(value):
            _fail(self.message)
        return value


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------

# ASCII-only numeric literals; int() and float() alone also accept "1_000" and non-ASCII digits
_DECIMAL_RE = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_RADIX_RE = re.compile(r"0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)")
_INFINITY_RE = re.compile(r"[+-]?Infinity")


class NumberSchema(Schema):
    """Numeric conversion: "42" -> 42, "1.5" -> 1.5, "0x1f" -> 31, True -> 1.

    Strings must be a decimal, hex, octal or binary literal, or
    ``Infinity``; anything else fails.
    """

    def parse(self, data: Any) -> Any:
        if isinstance(data, bool):
            return int(data)
        if isinstance(data, (int, float)):
            if isinstance(data, float) and math.isnan(data):
                _fail("Expected a number")
            return data
        if isinstance(data, str):
            text = data.strip()
            if not text:
                return 0
            if _RADIX_RE.fullmatch(text):
                return int(text, 0)
            if _INFINITY_RE.fullmatch(text):
                return -math.inf if text.startswith("-") else math.inf
            if not _DECIMAL_RE.fullmatch(text):
                _fail("Expected a number")
            try:
                return int(text)
            except ValueError:
                return float(text)
        _fail("Expected a number")


class StringSchema(Schema):
    def __init__(self, min_length: Optional[int] = None, max_length: Optional[int] = None):
        super().__init__()
        self.min_length = min_length
        self.max_length = max_length

    def parse(self, data: Any) -> str:
        if not isinstance(data, str):
            _fail("Expected a string")
        if self.min_length is not None and len(data) < self.min_length:
            _fail(f"String too short, min {self.min_length} characters")
        if self.max_length is not None and len(data) > self.max_length:
            _fail(f"String too long, max {self.max_length} characters")
        return data


class BooleanSchema(Schema):
    def parse(self, data: Any) -> bool:
        if not isinstance(data, bool):
            _fail("Expected a boolean")
        return data


class LiteralSchema(Schema):
    def __init__(self, expected: Any):
        super().__init__()
        self.expected = expected

    def parse(self, data: Any) -> Any:
        # True == 1 in Python; a literal must also agree on bool-ness
        same_kind = isinstance(data, bool) == isinstance(self.expected, bool)
        if not same_kind or data != self.expected:
            _fail(f"Expected literal value: {self.expected}, received: {data}")
        return data


class ArraySchema(Schema):
    def __init__(self, element: Schema):
        super().__init__()
        self.element = element

    def parse(self, data: Any) -> list:
        if not isinstance(data, (list, tuple)):
            _fail("Expected an array")

        parsed = []
        issues: List[Issue] = []
        for index, item in enumerate(data):
            try:
                parsed.append(self.element.parse(item))
            except Exception as e:
                issues.extend(_collect(e, index))

        if issues:
            raise ValidationError(issues)
        return parsed


class UnionSchema(Schema):
    def __init__(self, *variants: Schema):
        super().__init__()
        self.variants = variants

    def parse(self, data: Any) -> Any:
        issues: List[Issue] = []
        for variant in self.variants:
            try:
                return variant.parse(data)
            except ValidationError as e:
                issues.extend(e.issues)
            except Exception as e:
                issues.append(Issue(str(e)))

        issues.append(Issue("Value did not match any of the expected types"))
        raise ValidationError(issues)


class ObjectSchema(Schema):
    """Mapping with a fixed set of keys.

    Strict by default: keys not declared in the shape are reported.
    All keys are checked before raising, so the error enumerates every
    failing field.
    """

    def __init__(self, shape: Mapping[str, Schema], strict: bool = True):
        super().__init__(SchemaDef(shape=dict(shape), strict=strict))

    @property
    def shape(self) -> Dict[str, Schema]:
        return self.definition.shape

    def parse(self, data: Any) -> Dict[str, Any]:
        if not isinstance(data, Mapping):
            _fail("Expected an object")

        parsed: Dict[str, Any] = {}
        issues: List[Issue] = []

        if self.definition.strict:
            issues.extend(
                Issue(f"Unknown property '{key}'", (key,))
                for key in data
                if key not in self.shape
            )

        for key, schema in self.shape.items():
            value = data.get(key, UNSET)
            definition = schema.definition
            try:
                if value is UNSET and definition.optional:
                    parsed[key] = definition.default if definition.has_default else None
                elif value is None and definition.nullable:
                    parsed[key] = None
                else:
                    parsed[key] = schema.parse(value)
            except Exception as e:
                issues.extend(_collect(e, key))

        if issues:
            raise ValidationError(issues)
        return parsed

    def strict(self, strict: bool = True) -> "ObjectSchema":
        return ObjectSchema(self.shape, strict)

    def partial(self) -> "ObjectSchema":
        return ObjectSchema(
            {key: schema.optional() for key, schema in self.shape.items()},
            self.definition.strict,
        )

    def extend(self, shape: Mapping[str, Schema]) -> "ObjectSchema":
        return ObjectSchema({**self.shape, **shape}, self.definition.strict)


class SchemaBuilder:
    """Entry points for building schemas, exposed as ``t``."""

    @staticmethod
    def object(shape: Mapping[str, Schema]) -> ObjectSchema:
        return ObjectSchema(shape)

    @staticmethod
    def number() -> NumberSchema:
        return NumberSchema()

    @staticmethod
    def string(min_length: Optional[int] = None, max_length: Optional[int] = None) -> StringSchema:
        return StringSchema(min_length=min_length, max_length=max_length)

    @staticmethod
    def boolean() -> BooleanSchema:
        return BooleanSchema()

    @staticmethod
    def literal(expected: Any) -> LiteralSchema:
        return LiteralSchema(expected)

    @staticmethod
    def array(element: Schema) -> ArraySchema:
        return ArraySchema(element)

    @staticmethod
    def union(*variants: Schema) -> UnionSchema:
        return UnionSchema(*variants)


t = SchemaBuilder()


# ---------------------------------------------------------------------------
# Common string formats
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and (parsed.netloc or parsed.path))


def _is_date(value: str) -> bool:
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


class _Formats:
    """Refined string schemas for common formats."""

    @staticmethod
    def email() -> Schema:
        return t.string().refine(lambda v: bool(_EMAIL_RE.match(v)), "Invalid email format")

    @staticmethod
    def url() -> Schema:
        return t.string().refine(_is_url, "Invalid URL")

    @staticmethod
    def uuid() -> Schema:
        return t.string().refine(lambda v: bool(_UUID_RE.match(v)), "Invalid UUID format")

    @staticmethod
    def date_string() -> Schema:
        return t.string().refine(_is_date, "Invalid date string")


formats = _Formats()


def is_schema(value: Any) -> bool:
    """Whether ``value`` can be used as an args schema.

    Anything exposing ``parse`` counts, except callables: those are
    handlers.
    """
    if isinstance(value, Schema):
        return True
    return callable(getattr(value, "parse", None)) and not callable(value)


def field_definitions(schema: Any) -> Dict[str, SchemaDef]:
    """Return {field: definition} for an object schema, else an empty dict."""
    definition = getattr(schema, "definition", None)
    shape = getattr(definition, "shape", None)
    if not shape:
        return {}
    return {
        key: getattr(field_schema, "definition", None) or SchemaDef()
        for key, field_schema in shape.items()
    }
