"""Navigation steps: goto, go_back, reload."""
from typing import Any

from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.steps.helpers import require
from rpa_agent.steps.models import GoBackStep, GotoStep, ReloadStep


async def execute_goto(step: GotoStep, deps: AgentDeps, workspace_id: str) -> Any:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    timeout = step.args.timeout or deps.config.wait_policy.navigation_timeout_ms
    require(await binding.tools.goto(step.args.url, timeout=timeout))


async def execute_go_back(step: GoBackStep, deps: AgentDeps, workspace_id: str) -> Any:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    timeout = step.args.timeout or deps.config.wait_policy.navigation_timeout_ms
    require(await binding.tools.go_back(timeout=timeout))


async def execute_reload(step: ReloadStep, deps: AgentDeps, workspace_id: str) -> Any:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    timeout = step.args.timeout or deps.config.wait_policy.navigation_timeout_ms
    require(await binding.tools.reload(timeout=timeout))
