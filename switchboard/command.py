"""Registered command records."""

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Pattern

from .exceptions import ConfigurationError
from .middleware import MiddlewareEngine, as_list
from .patterns import PatternType, PrefixType, describe_pattern

Handler = Callable[..., Any]
Predicate = Callable[[Any], bool]


@dataclass
class CommandOptions:
    """Per-command options as given at registration.

    Middleware arguments may be a bare callable or a list; they are
    stored as lists.
    """

    description: str = ""
    before_handle: List[Callable] = field(default_factory=list)
    after_handle: List[Callable] = field(default_factory=list)
    error: List[Callable] = field(default_factory=list)
    args: Any = None

    @classmethod
    def build(
        cls,
        description: str = "",
        before_handle=None,
        after_handle=None,
        error=None,
        args: Any = None,
    ) -> "CommandOptions":
        return cls(
            description=description or "",
            before_handle=as_list(before_handle),
            after_handle=as_list(after_handle),
            error=as_list(error),
            args=args,
        )


@dataclass(frozen=True)
class Command:
    """One routable unit: matcher, handler and bound middleware.

    Exactly one of ``pattern`` and ``predicate`` is set. ``middleware``
    is the engine snapshot taken when the command was registered.
    """

    handler: Handler
    middleware: MiddlewareEngine
    options: CommandOptions
    pattern: Optional[Pattern] = None
    original_pattern: Optional[PatternType] = None
    predicate: Optional[Predicate] = None
    args: Any = None
    prefix: Optional[PrefixType] = None

    def __post_init__(self):
        if (self.pattern is None) == (self.predicate is None):
            raise ConfigurationError(
                "A command needs exactly one of pattern or predicate",
                module="command",
            )

    @property
    def description(self) -> str:
        return self.options.description

    @property
    def display_pattern(self) -> str:
        """Pattern as written, preceded by the prefix it was registered under."""
        if self.original_pattern is None:
            return ""
        parts = (describe_pattern(self.prefix), describe_pattern(self.original_pattern))
        return " ".join(part for part in parts if part)

    def match(self, body: str, raw: Any) -> Optional[dict]:
        """Return captured params on a match, otherwise None.

        Pattern commands match against the message body; predicate
        commands see the raw transport payload.
        """
        if self.pattern is not None:
            found = self.pattern.fullmatch(body or "")
            if found is None:
                return None
            return {k: v for k, v in found.groupdict().items() if v is not None}
        if self.predicate(raw):
            return {}
        return None
