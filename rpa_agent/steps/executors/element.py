"""Element steps.

Interactive steps resolve their target, scroll it into view, wait for it to
be visible and only then act. Clicks, hovers and drags are followed by a
click-range human pause, key presses by a type-range pause.
"""
from typing import Any, Optional

from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.steps.helpers import (
    StepFailure,
    ensure_visible,
    human_pause,
    normalize_target,
    pick_delay_ms,
    require,
    resolve_target,
)
from rpa_agent.steps.models import (
    ClickStep,
    DragAndDropStep,
    FillStep,
    HoverStep,
    PressKeyStep,
    SelectOptionStep,
    TypeStep,
)


def _visible_timeout(timeout: Optional[int], deps: AgentDeps) -> int:
    return timeout or deps.config.wait_policy.visible_timeout_ms


def _action_timeout(timeout: Optional[int], deps: AgentDeps) -> int:
    return timeout or deps.config.wait_policy.default_timeout_ms


async def execute_click(step: ClickStep, deps: AgentDeps, workspace_id: str) -> Any:
    """Click a target, or press and release the mouse at `coord`.

    `coord` and `target` are mutually exclusive. `options.double` repeats
    the click.
    """
    binding = await deps.runtime.ensure_active_page(workspace_id)
    tools = binding.tools
    args = step.args
    target = normalize_target(args.target)
    button = args.options.button if args.options else None
    repeat = 2 if args.options and args.options.double else 1

    if args.coord is not None:
        if target is not None:
            raise StepFailure.internal("coord and target are mutually exclusive")
        for _ in range(repeat):
            require(await tools.mouse_action("down", args.coord.x, args.coord.y, button=button))
            require(await tools.mouse_action("up", args.coord.x, args.coord.y, button=button))
    else:
        node_id = await resolve_target(tools, target)
        await ensure_visible(tools, node_id, _visible_timeout(args.timeout, deps))
        for _ in range(repeat):
            require(await tools.click(node_id, timeout=_action_timeout(args.timeout, deps), button=button))

    human = deps.config.human_policy
    await human_pause(human, human.click_delay_ms_range)


async def execute_fill(step: FillStep, deps: AgentDeps, workspace_id: str) -> Any:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    tools = binding.tools
    node_id = await resolve_target(tools, step.args.target)
    await ensure_visible(tools, node_id, _visible_timeout(step.args.timeout, deps))
    require(await tools.focus(node_id))
    require(await tools.fill(node_id, step.args.value, timeout=_action_timeout(step.args.timeout, deps)))


async def execute_type(step: TypeStep, deps: AgentDeps, workspace_id: str) -> Any:
    """Type text key by key; without an explicit delay the human type range paces the keys."""
    binding = await deps.runtime.ensure_active_page(workspace_id)
    tools = binding.tools
    node_id = await resolve_target(tools, step.args.target)
    await ensure_visible(tools, node_id, _visible_timeout(step.args.timeout, deps))
    require(await tools.focus(node_id))

    delay_ms = step.args.delay_ms
    human = deps.config.human_policy
    if delay_ms is None and human.enabled:
        delay_ms = pick_delay_ms(human.type_delay_ms_range)
    require(await tools.type(node_id, step.args.text, delay_ms=delay_ms))


async def execute_select_option(step: SelectOptionStep, deps: AgentDeps, workspace_id: str) -> Any:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    tools = binding.tools
    node_id = await resolve_target(tools, step.args.target)
    await ensure_visible(tools, node_id, _visible_timeout(step.args.timeout, deps))
    selected = require(await tools.select_option(
        node_id, list(step.args.values), timeout=_action_timeout(step.args.timeout, deps)
    ))
    return {"selected": selected}


async def execute_hover(step: HoverStep, deps: AgentDeps, workspace_id: str) -> Any:
    binding = await deps.runtime.ensure_active_page(workspace_id)
    tools = binding.tools
    node_id = await resolve_target(tools, step.args.target)
    await ensure_visible(tools, node_id, _visible_timeout(step.args.timeout, deps))
    require(await tools.hover(node_id, timeout=_action_timeout(step.args.timeout, deps)))
    human = deps.config.human_policy
    await human_pause(human, human.click_delay_ms_range)


async def execute_press_key(step: PressKeyStep, deps: AgentDeps, workspace_id: str) -> Any:
    """Press a key, focusing the target first when one is given."""
    binding = await deps.runtime.ensure_active_page(workspace_id)
    tools = binding.tools
    if normalize_target(step.args.target):
        node_id = await resolve_target(tools, step.args.target)
        await ensure_visible(tools, node_id, _visible_timeout(step.args.timeout, deps))
        require(await tools.focus(node_id))
    require(await tools.keyboard_press(step.args.key))
    human = deps.config.human_policy
    await human_pause(human, human.type_delay_ms_range)


async def execute_drag_and_drop(step: DragAndDropStep, deps: AgentDeps, workspace_id: str) -> Any:
    """Drag `source` onto `dest_target`, or to `dest_coord`. Exactly one destination is allowed."""
    binding = await deps.runtime.ensure_active_page(workspace_id)
    tools = binding.tools
    args = step.args
    dest_target = normalize_target(args.dest_target)
    if dest_target is not None and args.dest_coord is not None:
        raise StepFailure.internal("dest_target and dest_coord are mutually exclusive")
    if dest_target is None and args.dest_coord is None:
        raise StepFailure.internal("missing drag destination")

    source_id = await resolve_target(tools, args.source)
    await ensure_visible(tools, source_id, _visible_timeout(args.timeout, deps))
    if dest_target is not None:
        dest_id = await resolve_target(tools, dest_target)
        require(await tools.drag_drop(source_id, dest_node_id=dest_id))
    else:
        require(await tools.drag_drop(source_id, dest_coord={"x": args.dest_coord.x, "y": args.dest_coord.y}))

    human = deps.config.human_policy
    await human_pause(human, human.click_delay_ms_range)
