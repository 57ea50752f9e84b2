"""Whole-page steps: snapshot, screenshot, scroll."""
from typing import Any, Dict, Optional

from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.steps.helpers import human_pause, normalize_target, require, resolve_target
from rpa_agent.steps.models import ScrollStep, SnapshotStep, TakeScreenshotStep


async def execute_snapshot(step: SnapshotStep, deps: AgentDeps, workspace_id: str) -> Dict[str, Any]:
    """Page info plus a fresh snapshot id and, unless disabled, the accessibility tree.

    The tree's node ids are what later element steps of this tab accept as
    `a11y_node_id`.
    """
    binding = await deps.runtime.ensure_active_page(workspace_id)
    info = require(await binding.tools.get_info()) or {}
    snapshot = require(await binding.tools.snapshot_a11y(
        include_a11y=step.args.include_a11y, focus_only=step.args.focus_only
    )) or {}
    data: Dict[str, Any] = {
        "url": info.get("url"),
        "title": info.get("title"),
        "snapshot_id": snapshot.get("snapshot_id"),
    }
    if step.args.include_a11y:
        data["a11y"] = snapshot.get("a11y", "")
    return data


async def execute_take_screenshot(step: TakeScreenshotStep, deps: AgentDeps, workspace_id: str) -> Dict[str, Any]:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    node_id: Optional[str] = None
    if normalize_target(step.args.target):
        node_id = await resolve_target(binding.tools, step.args.target)
    encoded = require(await binding.tools.screenshot(a11y_node_id=node_id, full_page=step.args.full_page))
    return {"mime": "image/png", "base64": encoded}


async def execute_scroll(step: ScrollStep, deps: AgentDeps, workspace_id: str) -> Any:
    """Scroll a target into view, or scroll the page by `amount` pixels."""
    binding = await deps.runtime.ensure_active_page(workspace_id)
    human = deps.config.human_policy
    if normalize_target(step.args.target):
        node_id = await resolve_target(binding.tools, step.args.target)
        require(await binding.tools.scroll_into_view(node_id, timeout=step.args.timeout))
    else:
        require(await binding.tools.scroll_by(step.args.direction, step.args.amount))
    await human_pause(human, human.scroll_delay_ms_range)
