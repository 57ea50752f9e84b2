"""The uniform wrapper every trace operation runs through."""
import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rpa_agent.constants import ErrorCode
from rpa_agent.error_handling import format_error
from rpa_agent.exceptions import AgentError
from rpa_agent.trace.types import HookFn, ToolResult, TraceContext, TraceEvent, now_ms
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.trace.trace_call")

_AMBIGUOUS_MARKERS = ("multiple elements", "strict mode")


def classify_error(exc: BaseException) -> Dict[str, Any]:
    """Map an exception raised by an operation body onto the error taxonomy."""
    if isinstance(exc, AgentError):
        error = format_error(exc.code, exc.message, exc.details)
        error["phase"] = "trace"
        return error

    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    if isinstance(exc, (PlaywrightTimeoutError, asyncio.TimeoutError, TimeoutError)):
        code = ErrorCode.ERR_TIMEOUT
    elif any(marker in lowered for marker in _AMBIGUOUS_MARKERS):
        code = ErrorCode.ERR_AMBIGUOUS
    else:
        code = ErrorCode.ERR_UNKNOWN
    error = format_error(code, message)
    error["phase"] = "trace"
    return error


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


async def _emit(ctx: TraceContext, event: TraceEvent) -> None:
    for sink in ctx.sinks:
        try:
            await _maybe_await(sink.write(event))
        except Exception as e:
            # A broken sink must not change the outcome of the operation.
            logger.warning(f"Trace sink {sink.__class__.__name__} failed: {e}", op=event.get("op"))


async def _run_hook(hook: Optional[HookFn], event: TraceEvent) -> None:
    if hook is None:
        return
    try:
        await _maybe_await(hook(event))
    except Exception as e:
        logger.warning(f"Trace hook failed: {e}", op=event.get("op"))


async def trace_call(
    ctx: TraceContext,
    op: str,
    args: Optional[Dict[str, Any]],
    fn: Callable[[], Awaitable[Any]],
) -> ToolResult:
    """Run `fn` as the named operation and return a tagged result.

    Emits `op.start` before and `op.end` after, to every sink and hook in
    `ctx`. Exceptions from `fn` are classified and returned as a failed
    ToolResult; nothing raised by `fn` escapes.
    """
    tags = ctx.tags.to_dict()
    args = args or {}
    started = time.perf_counter()

    if ctx.enabled:
        start_event: TraceEvent = {"type": "op.start", "ts": now_ms(), "op": op, "args": args, "tags": tags}
        await _emit(ctx, start_event)
        await _run_hook(ctx.hooks.before_op, start_event)

    try:
        data = await fn()
    except Exception as exc:
        error = classify_error(exc)
        if ctx.enabled:
            end_event: TraceEvent = {
                "type": "op.end",
                "ts": now_ms(),
                "op": op,
                "ok": False,
                "duration_ms": int((time.perf_counter() - started) * 1000),
                "args": args,
                "error": error,
                "tags": tags,
            }
            await _emit(ctx, end_event)
            await _run_hook(ctx.hooks.after_op, end_event)
            await _run_hook(ctx.hooks.on_error, end_event)
        return ToolResult.failure(error)

    if ctx.enabled:
        end_event = {
            "type": "op.end",
            "ts": now_ms(),
            "op": op,
            "ok": True,
            "duration_ms": int((time.perf_counter() - started) * 1000),
            "args": args,
            "result": data,
            "tags": tags,
        }
        await _emit(ctx, end_event)
        await _run_hook(ctx.hooks.after_op, end_event)
    return ToolResult.success(data)
