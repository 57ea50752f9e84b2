"""Trace hooks: callbacks around every operation."""
import json
from typing import Any, Optional

from rich.markup import escape

from rpa_agent.trace.types import TraceEvent, TraceHooks
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.trace")

MAX_STRING_LENGTH = 160
MAX_JSON_LENGTH = 1000


def _truncate_strings(value: Any, max_string_length: int) -> Any:
    if isinstance(value, str):
        return value if len(value) <= max_string_length else f"{value[:max_string_length]}..."
    if isinstance(value, dict):
        return {key: _truncate_strings(item, max_string_length) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_truncate_strings(item, max_string_length) for item in value]
    return value


def safe_json(
    value: Any,
    max_string_length: int = MAX_STRING_LENGTH,
    max_json_length: int = MAX_JSON_LENGTH,
) -> str:
    """Serialize `value` for a single log line.

    Strings longer than `max_string_length` are cut (screenshots are base64),
    and output longer than `max_json_length` is replaced by `{len, preview}`.
    """
    try:
        text = json.dumps(_truncate_strings(value, max_string_length), ensure_ascii=False, default=str)
    except (TypeError, ValueError) as e:
        return json.dumps({"error": "stringify_failed", "message": str(e)})
    if len(text) > max_json_length:
        return json.dumps({"len": len(text), "preview": text[:max_json_length]}, ensure_ascii=False)
    return text


def create_noop_hooks() -> TraceHooks:
    return TraceHooks()


def format_trace_line(event: TraceEvent, log_args: bool = True) -> str:
    """Render an `op.end` event as `op=.. ok=.. ms=.. args=.. result=..`."""
    parts = [f"op={event.get('op')}", f"ok={str(event.get('ok')).lower()}", f"ms={event.get('duration_ms')}"]
    if log_args:
        parts.append(f"args={safe_json(event.get('args'))}")
    if event.get("ok"):
        parts.append(f"result={safe_json(event.get('result'))}")
    else:
        parts.append(f"error={safe_json(event.get('error'))}")
    return " ".join(parts)


def create_logging_hooks(log_args: bool = False, level: Optional[str] = "info") -> TraceHooks:
    """Hooks that write one greppable line per finished operation."""

    def after_op(event: TraceEvent) -> None:
        if event.get("type") != "op.end":
            return
        line = escape(format_trace_line(event, log_args=log_args))
        if event.get("ok"):
            logger.log(level or "info", line, emoji_key="trace", **(event.get("tags") or {}))
        else:
            logger.warning(line, emoji_key="trace", **(event.get("tags") or {}))

    return TraceHooks(after_op=after_op)
