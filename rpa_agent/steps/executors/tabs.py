"""Tab management steps and page info."""
from typing import Any, Dict

from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.steps.helpers import require
from rpa_agent.steps.models import CloseTabStep, CreateTabStep, GetPageInfoStep, SwitchTabStep


async def execute_create_tab(step: CreateTabStep, deps: AgentDeps, workspace_id: str) -> Dict[str, Any]:
    """Open a tab (optionally navigating it) that becomes the workspace's active tab."""
    binding = await deps.runtime.ensure_active_page(workspace_id)
    created = require(await binding.tools.tabs_create(
        url=step.args.url, timeout=deps.config.wait_policy.navigation_timeout_ms
    ))
    return {"tab_id": created["tab_id"]}


async def execute_switch_tab(step: SwitchTabStep, deps: AgentDeps, workspace_id: str) -> Dict[str, Any]:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    return require(await binding.tools.tabs_switch(step.args.tab_id))


async def execute_close_tab(step: CloseTabStep, deps: AgentDeps, workspace_id: str) -> Dict[str, Any]:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    return require(await binding.tools.tabs_close(step.args.tab_id))


async def execute_get_page_info(step: GetPageInfoStep, deps: AgentDeps, workspace_id: str) -> Dict[str, Any]:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    info = require(await binding.tools.get_info()) or {}
    return {
        "url": info.get("url"),
        "title": info.get("title"),
        "tab_id": info.get("tab_id"),
        "tabs": info.get("tabs"),
    }
