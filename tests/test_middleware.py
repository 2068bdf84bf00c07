"""Tests for the middleware engine."""

from unittest.mock import MagicMock

import pytest

from switchboard.context import Context, ErrorEvent
from switchboard.exceptions import ConfigurationError
from switchboard.middleware import INTERNAL_ERROR, MiddlewareEngine, as_list


def _ctx():
    return Context(msg=MagicMock(), raw={})


def test_add_is_chainable():
    engine = MiddlewareEngine()
    result = engine.add_before_handle(lambda ctx, nxt: None).add_error_handler(lambda ev: None)
    assert result is engine
    assert len(engine.before_handle) == 1
    assert len(engine.error) == 1


def test_add_rejects_unknown_kind():
    with pytest.raises(ConfigurationError, match="Invalid middleware kind"):
        MiddlewareEngine().add("around", lambda ctx, nxt: None)


def test_merge_builds_new_engine():
    first = MiddlewareEngine(before_handle=[lambda ctx, nxt: 1])
    second = MiddlewareEngine(before_handle=[lambda ctx, nxt: 2], error=[lambda ev: 3])
    merged = first.merge(second)

    assert merged is not first and merged is not second
    assert merged.before_handle == first.before_handle + second.before_handle
    assert len(first.before_handle) == 1
    assert len(first.error) == 0

    merged.add_after_handle(lambda ctx, nxt: None)
    assert first.after_handle == [] and second.after_handle == []


def test_merge_all_skips_none_and_accepts_plain_lists():
    class Options:
        before_handle = [lambda ctx, nxt: None]
        after_handle = []
        error = []

    merged = MiddlewareEngine.merge_all(None, MiddlewareEngine(), Options())
    assert len(merged) == 1


def test_as_list():
    fn = lambda ctx, nxt: None  # noqa: E731
    assert as_list(None) == []
    assert as_list(fn) == [fn]
    assert as_list((fn, fn)) == [fn, fn]


@pytest.mark.asyncio
async def test_execute_before_first_truthy_wins():
    calls = []

    def falsy(ctx, nxt):
        calls.append("falsy")

    async def stop(ctx, nxt):
        await nxt()
        calls.append("stop")
        return "stopped"

    def never(ctx, nxt):
        calls.append("never")

    engine = MiddlewareEngine(before_handle=[falsy, stop, never])
    assert await engine.execute_before(_ctx()) == "stopped"
    assert calls == ["falsy", "stop"]


@pytest.mark.asyncio
async def test_execute_before_none_when_nothing_returns():
    engine = MiddlewareEngine(before_handle=[lambda ctx, nxt: None])
    assert await engine.execute_before(_ctx()) is None


@pytest.mark.asyncio
async def test_execute_after_sets_result():
    seen = []
    engine = MiddlewareEngine(after_handle=[lambda ctx, nxt: seen.append(ctx.result)])
    ctx = _ctx()
    assert await engine.execute_after(ctx, "done") is None
    assert ctx.result == "done"
    assert seen == ["done"]


@pytest.mark.asyncio
async def test_execute_error_passes_event():
    events = []

    async def handler(event):
        events.append(event)
        return {"text": "handled"}

    engine = MiddlewareEngine(error=[handler])
    ctx = _ctx()
    error = RuntimeError("boom")
    assert await engine.execute_error(ctx, error) == {"text": "handled"}
    assert isinstance(events[0], ErrorEvent)
    assert events[0].error is error
    assert events[0].ctx is ctx
    assert ctx.error is error


@pytest.mark.asyncio
async def test_execute_error_falls_back_to_internal_error():
    engine = MiddlewareEngine(error=[lambda ev: None])
    result = await engine.execute_error(_ctx(), ValueError("x"))
    assert result == INTERNAL_ERROR
    assert result == {"text": "Internal server error", "status": 500}


@pytest.mark.asyncio
async def test_failing_error_handler_is_skipped():
    def broken(event):
        raise RuntimeError("handler broke")

    engine = MiddlewareEngine(error=[broken, lambda ev: "second"])
    assert await engine.execute_error(_ctx(), ValueError("x")) == "second"
