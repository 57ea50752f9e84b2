"""Tool catalogue shared by the MCP server: one tool per step kind."""
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from rpa_agent.constants import ErrorCode, StepName, StepSource
from rpa_agent.error_handling import format_error, format_tool_content
from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.runtime.session import AgentSession
from rpa_agent.steps.models import STEP_ARGS_MODELS, build_step
from rpa_agent.steps.runner import run_steps
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.adapters.tools")

TOOL_DESCRIPTIONS: Dict[str, str] = {
    StepName.GOTO.value: "Navigate the active workspace to a URL.",
    StepName.GO_BACK.value: "Go back in history for the current tab.",
    StepName.RELOAD.value: "Reload the current tab.",
    StepName.CREATE_TAB.value: "Create a new tab in the current workspace.",
    StepName.SWITCH_TAB.value: "Switch to a tab by id.",
    StepName.CLOSE_TAB.value: "Close a tab by id or the current tab.",
    StepName.GET_PAGE_INFO.value: "Return page metadata and tab list.",
    StepName.SNAPSHOT.value: "Return page metadata and the accessibility tree with node ids.",
    StepName.TAKE_SCREENSHOT.value: "Capture a PNG screenshot of the page or a target.",
    StepName.CLICK.value: "Click a target element or viewport coordinates.",
    StepName.FILL.value: "Fill a target element with a value.",
    StepName.TYPE.value: "Type text into a target element key by key.",
    StepName.SELECT_OPTION.value: "Select option values in a target element.",
    StepName.HOVER.value: "Hover over a target element.",
    StepName.SCROLL.value: "Scroll the page or a target element into view.",
    StepName.PRESS_KEY.value: "Press a keyboard key with optional target focus.",
    StepName.DRAG_AND_DROP.value: "Drag a source element to a destination.",
    StepName.MOUSE.value: "Perform a low-level mouse action.",
}


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


def get_tool_specs() -> List[ToolSpec]:
    """Specs for every step kind, with input schemas generated from the argument models."""
    return [
        ToolSpec(name=name, description=TOOL_DESCRIPTIONS[name], input_schema=model.model_json_schema())
        for name, model in STEP_ARGS_MODELS.items()
    ]


def _validation_issues(error: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(issue.get("loc", ())), "msg": issue.get("msg"), "type": issue.get("type")}
        for issue in error.errors(include_url=False)
    ]


class ToolRegistry:
    """Executes tool calls as single-step runs against the session's active workspace."""

    def __init__(self, deps: AgentDeps, session: Optional[AgentSession] = None):
        self.deps = deps
        self.session = session or AgentSession(deps.page_registry)

    async def execute_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        workspace_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Validate, run and wrap one tool call.

        Returns:
            `{content: [{type: "text", text}], isError}` where the text is the
            JSON of the step's data, or of its error on failure.
        """
        if name not in STEP_ARGS_MODELS:
            logger.warning(f"Unknown tool: {name}", emoji_key="tool")
            return format_tool_content(format_error(ErrorCode.ERR_UNSUPPORTED, f"unknown tool: {name}"), True)

        try:
            step = build_step(name, arguments or {}, source=StepSource.MCP)
        except ValidationError as e:
            issues = _validation_issues(e)
            logger.warning(f"Invalid arguments for {name}", emoji_key="tool", issues=len(issues))
            return format_tool_content(
                format_error(ErrorCode.ERR_BAD_ARGS, "invalid tool arguments", issues), True
            )

        workspace_id = workspace_id or await self.session.ensure_active_workspace()
        started = time.time()
        logger.info(f"TOOL CALL: {name}", emoji_key="tool", workspace_id=workspace_id)
        run = await run_steps(workspace_id, [step], self.deps, stop_on_error=True)
        first = run.results[0] if run.results else None
        duration_ms = int((time.time() - started) * 1000)

        if first is None:
            return format_tool_content(format_error(ErrorCode.ERR_INTERNAL, "no step result"), True)
        if first.ok:
            logger.success(f"TOOL SUCCESS: {name}", emoji_key="tool", duration_ms=duration_ms)
            return format_tool_content(first.data, False)
        logger.warning(
            f"TOOL ERROR: {name}", emoji_key="tool", code=first.error.get("code"), duration_ms=duration_ms
        )
        return format_tool_content(first.error, True)
