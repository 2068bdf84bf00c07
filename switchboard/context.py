"""Per-dispatch state passed through hooks, middleware and handlers."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .message import Message


@dataclass
class ResponseMeta:
    """Response metadata carried on every context.

    Not consumed by the router; kept so middleware can annotate a
    reply without changing the context shape.
    """

    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class Context:
    """Mutable bag for one inbound message.

    Attributes:
        msg: Normalized message wrapper (sender, chat, body, reply()).
        raw: Untouched transport payload.
        params: Parameters captured from the pattern, then parsed by
            the command's args schema when it has one.
        set: Response metadata.
        result: Last handler or short-circuiting middleware result.
        error: Set by the router before error middleware runs.
    """

    msg: "Message"
    raw: Any
    params: Dict[str, Any] = field(default_factory=dict)
    set: ResponseMeta = field(default_factory=ResponseMeta)
    result: Any = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class ErrorEvent:
    """Argument handed to error middleware."""

    error: BaseException
    ctx: Context
