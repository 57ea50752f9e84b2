"""Runs a step list against one workspace through the scheduler."""
import inspect
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from rpa_agent.error_handling import error_from_exception
from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.steps.executors import execute_step
from rpa_agent.steps.models import RunStepsResult, Step, StepResult
from rpa_agent.steps.sinks import StepEvent
from rpa_agent.trace.sinks import MemorySink
from rpa_agent.trace.types import now_ms
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.steps.runner")

TRACE_TAIL = 20


async def _emit(deps: AgentDeps, event: StepEvent) -> None:
    for sink in deps.step_sinks:
        try:
            outcome = sink.write(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Step sink {sink.__class__.__name__} failed: {e}", step_id=event.get("step_id"))


def _trace_summary(deps: AgentDeps, workspace_id: str) -> Optional[Dict[str, Any]]:
    memory = next((sink for sink in deps.trace_sinks if isinstance(sink, MemorySink)), None)
    if memory is None:
        return None
    events = [
        event for event in memory.get_events()
        if (event.get("tags") or {}).get("workspace_id") == workspace_id
    ]
    return {"count": len(events), "last_events": events[-TRACE_TAIL:]}


async def _run_one(step: Step, deps: AgentDeps, workspace_id: str) -> StepResult:
    level = deps.config.observability.step_log_level
    source = step.meta.source.value if step.meta else None
    await _emit(deps, {
        "type": "step.start",
        "ts": now_ms(),
        "step_id": step.id,
        "name": step.name,
        "workspace_id": workspace_id,
        "source": source,
    })
    logger.log(level, f"Step {step.name} started", emoji_key="step", workspace_id=workspace_id, step_id=step.id)

    started = time.perf_counter()
    try:
        result = await execute_step(step, deps, workspace_id)
    except Exception as e:
        logger.error(f"Step {step.name} crashed: {e}", workspace_id=workspace_id, exc_info=True)
        result = StepResult.failure(step.id, error_from_exception(e))
    duration_ms = int((time.perf_counter() - started) * 1000)

    end_event: StepEvent = {
        "type": "step.end",
        "ts": now_ms(),
        "step_id": step.id,
        "name": step.name,
        "workspace_id": workspace_id,
        "source": source,
        "ok": result.ok,
        "duration_ms": duration_ms,
    }
    if result.error:
        end_event["error"] = result.error
    await _emit(deps, end_event)

    if result.ok:
        logger.log(level, f"Step {step.name} ok", emoji_key="step", workspace_id=workspace_id, duration_ms=duration_ms)
    else:
        logger.warning(
            f"Step {step.name} failed",
            emoji_key="step",
            workspace_id=workspace_id,
            code=result.error.get("code") if result.error else None,
            duration_ms=duration_ms,
        )
    return result


async def run_steps(
    workspace_id: str,
    steps: Sequence[Step],
    deps: AgentDeps,
    stop_on_error: bool = True,
    should_stop: Optional[Callable[[], bool]] = None,
) -> RunStepsResult:
    """Execute `steps` in order against `workspace_id`.

    The whole list runs as one task of the workspace's queue, so step lists
    for the same workspace never interleave.

    Args:
        workspace_id: Target workspace; created on demand.
        steps: Steps to run.
        deps: Engine dependencies.
        stop_on_error: Halt at the first failed step.
        should_stop: Checked before each step; returning True ends the run early.

    Returns:
        RunStepsResult whose `ok` is the conjunction of the executed steps.
    """
    async def run_all() -> RunStepsResult:
        results: List[StepResult] = []
        for step in steps:
            if should_stop is not None and should_stop():
                logger.info("Step run stopped by caller", emoji_key="step", workspace_id=workspace_id)
                break
            result = await _run_one(step, deps, workspace_id)
            results.append(result)
            if not result.ok and stop_on_error:
                break
        return RunStepsResult(
            ok=all(result.ok for result in results),
            results=results,
            trace=_trace_summary(deps, workspace_id),
        )

    return await deps.scheduler.run(workspace_id, run_all)
