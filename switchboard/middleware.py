"""Before/after/error middleware chains.

A MiddlewareEngine holds three ordered lists. Commands receive a merged
engine when they are registered, so an engine is treated as a snapshot:
merging always builds a new engine and never touches its inputs.
"""

import inspect
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import structlog

from .context import Context, ErrorEvent
from .exceptions import ConfigurationError

logger = structlog.get_logger("switchboard.router")

Middleware = Callable[[Context, Callable[[], Awaitable[None]]], Any]
ErrorHandler = Callable[[ErrorEvent], Any]

MIDDLEWARE_KINDS = ("before_handle", "after_handle", "error")

INTERNAL_ERROR = {"text": "Internal server error", "status": 500}


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, so callbacks may be sync or async."""
    if inspect.isawaitable(value):
        return await value
    return value


async def _call_next() -> None:
    return None


def as_list(value: Union[None, Callable, Iterable[Callable]]) -> List[Callable]:
    """Coerce a bare callable, a sequence of callables, or None to a list."""
    if value is None:
        return []
    if callable(value):
        return [value]
    return list(value)


class MiddlewareEngine:
    """Ordered before-handle, after-handle and error handlers."""

    def __init__(
        self,
        before_handle: Optional[Iterable[Middleware]] = None,
        after_handle: Optional[Iterable[Middleware]] = None,
        error: Optional[Iterable[ErrorHandler]] = None,
    ):
        self._handlers: Dict[str, List[Callable]] = {
            "before_handle": list(before_handle or []),
            "after_handle": list(after_handle or []),
            "error": list(error or []),
        }

    @property
    def before_handle(self) -> List[Middleware]:
        return self._handlers["before_handle"]

    @property
    def after_handle(self) -> List[Middleware]:
        return self._handlers["after_handle"]

    @property
    def error(self) -> List[ErrorHandler]:
        return self._handlers["error"]

    def add(self, kind: str, fn: Callable) -> "MiddlewareEngine":
        if kind not in self._handlers:
            raise ConfigurationError(
                f"Invalid middleware kind: {kind}. Valid kinds: {', '.join(MIDDLEWARE_KINDS)}",
                module="middleware",
            )
        self._handlers[kind].append(fn)
        return self

    def add_before_handle(self, fn: Middleware) -> "MiddlewareEngine":
        return self.add("before_handle", fn)

    def add_after_handle(self, fn: Middleware) -> "MiddlewareEngine":
        return self.add("after_handle", fn)

    def add_error_handler(self, fn: ErrorHandler) -> "MiddlewareEngine":
        return self.add("error", fn)

    def copy(self) -> "MiddlewareEngine":
        return MiddlewareEngine(self.before_handle, self.after_handle, self.error)

    def merge(self, other: "MiddlewareEngine") -> "MiddlewareEngine":
        """Return a new engine with ``other``'s handlers after this one's."""
        return MiddlewareEngine.merge_all(self, other)

    @classmethod
    def merge_all(cls, *engines: Any) -> "MiddlewareEngine":
        """Concatenate any objects exposing the three handler lists.

        ``None`` entries are skipped.
        """
        merged = cls()
        for engine in engines:
            if engine is None:
                continue
            merged.before_handle.extend(engine.before_handle)
            merged.after_handle.extend(engine.after_handle)
            merged.error.extend(engine.error)
        return merged

    def __len__(self) -> int:
        return sum(len(handlers) for handlers in self._handlers.values())

    def __repr__(self) -> str:
        return (
            f"MiddlewareEngine(before_handle={len(self.before_handle)}, "
            f"after_handle={len(self.after_handle)}, error={len(self.error)})"
        )

    # --- Execution ---

    async def execute_before(self, ctx: Context) -> Any:
        """Run before-handle middleware; the first truthy return wins.

        A truthy result means the command handler must not run and the
        result is the final reply.
        """
        for fn in self.before_handle:
            result = await maybe_await(fn(ctx, _call_next))
            if result:
                return result
        return None

    async def execute_after(self, ctx: Context, result: Any) -> Any:
        ctx.result = result
        for fn in self.after_handle:
            res = await maybe_await(fn(ctx, _call_next))
            if res:
                return res
        return None

    async def execute_error(self, ctx: Context, error: BaseException) -> Any:
        """Hand ``error`` to error handlers until one claims it.

        Returns the claiming handler's result, or INTERNAL_ERROR when
        none does. A handler that raises is logged and skipped.
        """
        ctx.error = error
        event = ErrorEvent(error=error, ctx=ctx)
        for fn in self.error:
            try:
                result = await maybe_await(fn(event))
            except Exception as e:
                logger.error(
                    "error_handler_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    original_error=type(error).__name__,
                )
                continue
            if result:
                return result

        logger.warning(
            "command_error_unhandled",
            error=str(error),
            error_type=type(error).__name__,
        )
        return dict(INTERNAL_ERROR)
