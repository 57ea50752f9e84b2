"""Script adapter: compiles a tiny line language (or a JSON step array) to steps.

Line commands, one per line; blank lines and `#` comments are skipped:

    goto <url>
    snapshot
    click <a11yNodeId>
    fill <a11yNodeId> <value...>

Any other line becomes a snapshot step.
"""
import json
from typing import Any, List, Sequence, Union

from rpa_agent.constants import StepName, StepSource
from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.steps.models import RunStepsResult, Step, build_step, parse_steps
from rpa_agent.steps.runner import run_steps
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.adapters.script")

ScriptInput = Union[str, Sequence[Any]]


def _snapshot() -> Step:
    return build_step(StepName.SNAPSHOT.value, {"include_a11y": True}, source=StepSource.SCRIPT)


def _compile_line(line: str) -> Step:
    cmd, _, rest = line.partition(" ")
    rest = rest.strip()
    if cmd == "goto" and rest:
        return build_step(StepName.GOTO.value, {"url": rest}, source=StepSource.SCRIPT)
    if cmd == "click" and rest:
        node_id = rest.split()[0]
        return build_step(StepName.CLICK.value, {"a11y_node_id": node_id}, source=StepSource.SCRIPT)
    if cmd == "fill":
        node_id, _, value = rest.partition(" ")
        if node_id and value:
            return build_step(
                StepName.FILL.value,
                {"a11y_node_id": node_id, "value": value.strip()},
                source=StepSource.SCRIPT,
            )
    if cmd != "snapshot":
        logger.debug(f"Unrecognized script line compiled to snapshot: {line!r}", emoji_key="script")
    return _snapshot()


def compile_script(script: ScriptInput) -> List[Step]:
    """Turn script text, a JSON step array, or a list of step dicts into steps.

    Raises:
        pydantic.ValidationError: a JSON step array contains an invalid step.
        json.JSONDecodeError: text starting with `[` is not valid JSON.
    """
    if not isinstance(script, str):
        return parse_steps(list(script))
    text = script.strip()
    if text.startswith("["):
        return parse_steps(json.loads(text))

    steps: List[Step] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        steps.append(_compile_line(line))
    return steps


async def run_script(
    workspace_id: str,
    script: ScriptInput,
    deps: AgentDeps,
    stop_on_error: bool = True,
) -> RunStepsResult:
    """Compile `script` and run it against `workspace_id`."""
    steps = compile_script(script)
    logger.info("Running script", emoji_key="script", workspace_id=workspace_id, steps=len(steps))
    return await run_steps(workspace_id, steps, deps, stop_on_error=stop_on_error)
