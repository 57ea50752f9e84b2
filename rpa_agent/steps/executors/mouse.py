"""Raw mouse step."""
from typing import Any

from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.steps.helpers import StepFailure, human_pause, require
from rpa_agent.steps.models import MouseStep


async def execute_mouse(step: MouseStep, deps: AgentDeps, workspace_id: str) -> Any:
    args = step.args
    if args.action == "wheel" and args.delta_y is None:
        raise StepFailure.internal("mouse wheel requires deltaY")
    binding = await deps.runtime.ensure_active_page(workspace_id)
    require(await binding.tools.mouse_action(
        args.action, args.x, args.y, delta_y=args.delta_y, button=args.button
    ))
    human = deps.config.human_policy
    delay_range = human.scroll_delay_ms_range if args.action == "wheel" else human.click_delay_ms_range
    await human_pause(human, delay_range)
