"""Exception hierarchy for switchboard.

Errors fall into two groups. Authoring-time misuse (bad scope names,
unknown hooks, badly ordered args schemas) raises ConfigurationError
synchronously while commands are being registered and is meant to
crash setup. Everything raised while a single message is dispatched
(ValidationError from args schemas, handler failures) is caught by the
router and handed to error middleware; it never escapes Bot.handle().
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

PathItem = Union[str, int]


class SwitchboardError(Exception):
    """Base exception for all switchboard errors.

    Attributes:
        message: Human-readable error description.
        module: Originating module name (e.g. "patterns").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.module = module
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return f"{cls}({self.message!r}, module={self.module!r})"


class ConfigurationError(SwitchboardError):
    """Invalid bot configuration or command registration.

    Raised at registration time, never during dispatch.
    """

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(message, module=module or "config", **context)


@dataclass(frozen=True)
class Issue:
    """One schema mismatch and where it happened."""

    message: str
    path: Tuple[PathItem, ...] = ()

    def prefixed(self, key: PathItem) -> "Issue":
        return Issue(self.message, (key,) + self.path)

    @property
    def dotted_path(self) -> str:
        return ".".join(str(p) for p in self.path)


class ValidationError(SwitchboardError):
    """Input did not conform to a schema.

    Attributes:
        issues: Every mismatch found, not just the first one.
    """

    def __init__(self, issues: Sequence[Issue]) -> None:
        self.issues: List[Issue] = list(issues)
        if len(self.issues) == 1:
            issue = self.issues[0]
            message = f'{issue.message} at path "{issue.dotted_path}"'
        else:
            message = f"{len(self.issues)} issues found"
        super().__init__(message, module="schema")

    def __str__(self) -> str:
        return self.message

    def format(self) -> str:
        """Render one bullet line per issue."""
        return "\n".join(
            f'• {issue.message} at "{issue.dotted_path}"' for issue in self.issues
        )


class HandlerError(SwitchboardError):
    """A command handler or middleware failed.

    Handlers may raise this to attach structured context for error
    middleware; any other exception is delivered unchanged.
    """

    def __init__(
        self,
        message: str = "",
        *,
        command: Optional[str] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.command = command
        super().__init__(message, module=module or "bot", **context)
