"""Step dispatch.

`execute_step` matches the closed step union exhaustively; adding a step
model without an executor is caught by the type checker at `assert_never`.
"""
from typing import Any, assert_never

from rpa_agent.exceptions import AgentError
from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.steps.executors.element import (
    execute_click,
    execute_drag_and_drop,
    execute_fill,
    execute_hover,
    execute_press_key,
    execute_select_option,
    execute_type,
)
from rpa_agent.steps.executors.mouse import execute_mouse
from rpa_agent.steps.executors.navigation import execute_go_back, execute_goto, execute_reload
from rpa_agent.steps.executors.page import execute_scroll, execute_snapshot, execute_take_screenshot
from rpa_agent.steps.executors.tabs import (
    execute_close_tab,
    execute_create_tab,
    execute_get_page_info,
    execute_switch_tab,
)
from rpa_agent.steps.helpers import StepFailure
from rpa_agent.steps.models import (
    ClickStep,
    CloseTabStep,
    CreateTabStep,
    DragAndDropStep,
    FillStep,
    GetPageInfoStep,
    GoBackStep,
    GotoStep,
    HoverStep,
    MouseStep,
    PressKeyStep,
    ReloadStep,
    ScrollStep,
    SelectOptionStep,
    SnapshotStep,
    Step,
    StepResult,
    SwitchTabStep,
    TakeScreenshotStep,
    TypeStep,
)


async def _dispatch(step: Step, deps: AgentDeps, workspace_id: str) -> Any:
    match step:
        case GotoStep():
            return await execute_goto(step, deps, workspace_id)
        case GoBackStep():
            return await execute_go_back(step, deps, workspace_id)
        case ReloadStep():
            return await execute_reload(step, deps, workspace_id)
        case CreateTabStep():
            return await execute_create_tab(step, deps, workspace_id)
        case SwitchTabStep():
            return await execute_switch_tab(step, deps, workspace_id)
        case CloseTabStep():
            return await execute_close_tab(step, deps, workspace_id)
        case GetPageInfoStep():
            return await execute_get_page_info(step, deps, workspace_id)
        case SnapshotStep():
            return await execute_snapshot(step, deps, workspace_id)
        case TakeScreenshotStep():
            return await execute_take_screenshot(step, deps, workspace_id)
        case ClickStep():
            return await execute_click(step, deps, workspace_id)
        case FillStep():
            return await execute_fill(step, deps, workspace_id)
        case TypeStep():
            return await execute_type(step, deps, workspace_id)
        case SelectOptionStep():
            return await execute_select_option(step, deps, workspace_id)
        case HoverStep():
            return await execute_hover(step, deps, workspace_id)
        case ScrollStep():
            return await execute_scroll(step, deps, workspace_id)
        case PressKeyStep():
            return await execute_press_key(step, deps, workspace_id)
        case DragAndDropStep():
            return await execute_drag_and_drop(step, deps, workspace_id)
        case MouseStep():
            return await execute_mouse(step, deps, workspace_id)
        case _:
            assert_never(step)


async def execute_step(step: Step, deps: AgentDeps, workspace_id: str) -> StepResult:
    """Run one step and return its result. Step and registry failures become failed results."""
    try:
        data = await _dispatch(step, deps, workspace_id)
    except StepFailure as failure:
        return StepResult.failure(step.id, failure.error)
    except AgentError as e:
        return StepResult.failure(step.id, e.to_dict())
    return StepResult.success(step.id, data)


__all__ = ["execute_step"]
