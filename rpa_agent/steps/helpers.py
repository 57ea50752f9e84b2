"""Shared pieces of the step executors: target resolution, error mapping, human pacing."""
import asyncio
import random
from typing import Any, Dict, Optional

from rpa_agent.config import DelayRange, HumanPolicy
from rpa_agent.constants import PASSTHROUGH_ERROR_CODES, ErrorCode
from rpa_agent.error_handling import format_error
from rpa_agent.steps.models import Target
from rpa_agent.trace.tools import TraceTools
from rpa_agent.trace.types import ToolResult


class StepFailure(Exception):
    """Ends the current step with `error`; converted to a failed StepResult by the dispatcher."""

    def __init__(self, error: Dict[str, Any]):
        super().__init__(error.get("message"))
        self.error = error

    @classmethod
    def internal(cls, message: str, details: Optional[Any] = None) -> "StepFailure":
        return cls(format_error(ErrorCode.ERR_INTERNAL, message, details))


def map_trace_error(error: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Pass not-found, ambiguous and timeout through; narrow everything else to ERR_INTERNAL."""
    if not error:
        return format_error(ErrorCode.ERR_INTERNAL, "trace error")
    if error.get("code") in PASSTHROUGH_ERROR_CODES:
        return format_error(error["code"], error.get("message") or "", error.get("details"))
    return format_error(ErrorCode.ERR_INTERNAL, error.get("message") or "internal error", error.get("details"))


def require(result: ToolResult) -> Any:
    """Return the data of a successful trace result or raise StepFailure."""
    if not result.ok:
        raise StepFailure(map_trace_error(result.error))
    return result.data


def normalize_target(target: Optional[Target]) -> Optional[Target]:
    if target is None or target.is_empty:
        return None
    return target


async def resolve_target(tools: TraceTools, target: Optional[Target]) -> str:
    """Turn a target into exactly one node id of the current snapshot.

    Raises:
        StepFailure: missing target or selector (ERR_INTERNAL), no match
            (ERR_NOT_FOUND, hint echoed in details), several matches
            (ERR_AMBIGUOUS, with the candidate list), or a trace error.
    """
    target = normalize_target(target)
    if target is None:
        raise StepFailure.internal("missing target")
    if target.selector:
        raise StepFailure.internal("selector not supported")

    if target.a11y_node_id:
        require(await tools.resolve_by_node_id(target.a11y_node_id))
        return target.a11y_node_id

    if target.a11y_hint:
        hint = target.a11y_hint.to_query()
        candidates = require(await tools.find_by_a11y_hint(hint)) or []
        if not candidates:
            raise StepFailure(format_error(ErrorCode.ERR_NOT_FOUND, "target not found", {"hint": hint}))
        if len(candidates) > 1:
            raise StepFailure(format_error(
                ErrorCode.ERR_AMBIGUOUS, "target ambiguous", {"hint": hint, "candidates": candidates}
            ))
        return candidates[0]["node_id"]

    raise StepFailure(format_error(ErrorCode.ERR_NOT_FOUND, "target not found"))


async def ensure_visible(tools: TraceTools, node_id: str, timeout: Optional[int] = None) -> None:
    """Scroll the node into view, then wait until it is visible."""
    require(await tools.scroll_into_view(node_id, timeout=timeout))
    require(await tools.wait_for_visible(node_id, timeout=timeout))


def pick_delay_ms(delay_range: DelayRange) -> int:
    """Uniform integer in [min, max]; `min` (floored at 0) when the range is empty."""
    if delay_range.max <= delay_range.min:
        return max(0, delay_range.min)
    return random.randint(delay_range.min, delay_range.max)


async def human_pause(policy: HumanPolicy, delay_range: DelayRange) -> int:
    """Sleep for a random delay from `delay_range` when the human policy is on. Returns the delay."""
    if not policy.enabled:
        return 0
    delay_ms = pick_delay_ms(delay_range)
    if delay_ms > 0:
        await asyncio.sleep(delay_ms / 1000)
    return delay_ms
