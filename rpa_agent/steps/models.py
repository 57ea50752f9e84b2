"""Typed step models.

A step is one immutable unit of automation intent. `name` selects the
argument model, and the `Step` union is discriminated on it, so a step can
only be built with the argument shape its name requires.
"""
import uuid
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from rpa_agent.constants import StepName, StepSource
from rpa_agent.trace.types import now_ms

_LEGACY_TARGET_KEYS = {
    "a11y_node_id": "a11y_node_id",
    "a11yNodeId": "a11y_node_id",
    "a11y_hint": "a11y_hint",
    "a11yHint": "a11y_hint",
    "selector": "selector",
}


class _Frozen(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)


# --- targets ---------------------------------------------------------------

class A11yHint(_Frozen):
    """Accessibility description of the element to act on."""
    role: Optional[str] = Field(None, description="Exact ARIA role, e.g. 'button'")
    name: Optional[str] = Field(None, description="Case-insensitive substring of the accessible name")
    text: Optional[str] = Field(None, description="Case-insensitive substring of name, description or value")

    def to_query(self) -> Dict[str, str]:
        return self.model_dump(exclude_none=True)


class Target(_Frozen):
    """Exactly one way of addressing an element."""
    a11y_node_id: Optional[str] = Field(
        None, alias="a11yNodeId", description="Node id from the latest snapshot of this tab"
    )
    a11y_hint: Optional[A11yHint] = Field(None, alias="a11yHint", description="Hint resolved against the snapshot")
    selector: Optional[str] = Field(None, description="CSS selector (not supported, rejected at execution)")

    @property
    def is_empty(self) -> bool:
        return not (self.a11y_node_id or self.a11y_hint or self.selector)


class Coord(_Frozen):
    x: float
    y: float


class ClickOptions(_Frozen):
    button: Optional[Literal["left", "right", "middle"]] = None
    double: bool = False


# --- argument models -------------------------------------------------------

class _TargetedArgs(_Frozen):
    """Arguments addressing an element via `target`.

    Top-level `a11y_node_id` / `a11y_hint` / `selector` (and their camelCase
    spellings) are merged into `target`; fields already set on `target` win.
    """
    target: Optional[Target] = Field(None, description="Element to act on")

    @model_validator(mode="before")
    @classmethod
    def merge_legacy_target(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not any(key in data for key in _LEGACY_TARGET_KEYS):
            return data
        legacy = {
            field_name: data[key]
            for key, field_name in _LEGACY_TARGET_KEYS.items()
            if data.get(key) is not None
        }
        data = {key: value for key, value in data.items() if key not in _LEGACY_TARGET_KEYS}
        target = data.get("target")
        if isinstance(target, Target):
            target = target.model_dump(exclude_none=True)
        merged = dict(legacy)
        merged.update({
            _LEGACY_TARGET_KEYS.get(key, key): value
            for key, value in (target or {}).items()
            if value is not None
        })
        if merged:
            data["target"] = merged
        return data


class GotoArgs(_Frozen):
    url: str = Field(..., description="Absolute URL to open")
    timeout: Optional[int] = Field(None, description="Navigation timeout in ms")


class GoBackArgs(_Frozen):
    timeout: Optional[int] = Field(None, description="Navigation timeout in ms")


class ReloadArgs(_Frozen):
    timeout: Optional[int] = Field(None, description="Navigation timeout in ms")


class CreateTabArgs(_Frozen):
    url: Optional[str] = Field(None, description="URL to open in the new tab")


class SwitchTabArgs(_Frozen):
    tab_id: str = Field(..., description="Tab to activate")


class CloseTabArgs(_Frozen):
    tab_id: Optional[str] = Field(None, description="Tab to close, defaults to the active tab")


class GetPageInfoArgs(_Frozen):
    pass


class SnapshotArgs(_Frozen):
    include_a11y: bool = Field(True, alias="includeA11y", description="Return the accessibility tree")
    focus_only: bool = Field(False, description="Return only the focused subtree when one exists")


class TakeScreenshotArgs(_TargetedArgs):
    full_page: bool = Field(False, description="Capture the full scrollable page")


class ClickArgs(_TargetedArgs):
    coord: Optional[Coord] = Field(None, description="Viewport coordinates; excludes `target`")
    options: Optional[ClickOptions] = None
    timeout: Optional[int] = Field(None, description="Action timeout in ms")


class FillArgs(_TargetedArgs):
    value: str = Field(..., description="Value to fill")
    timeout: Optional[int] = None


class TypeArgs(_TargetedArgs):
    text: str = Field(..., description="Text typed key by key")
    delay_ms: Optional[int] = Field(None, description="Delay between key presses in ms")
    timeout: Optional[int] = None


class SelectOptionArgs(_TargetedArgs):
    values: List[str] = Field(..., description="Option values or labels to select")
    timeout: Optional[int] = None


class HoverArgs(_TargetedArgs):
    timeout: Optional[int] = None


class ScrollArgs(_TargetedArgs):
    direction: Literal["up", "down"] = "down"
    amount: int = Field(600, ge=0, description="Pixels to scroll when no target is given")
    timeout: Optional[int] = None


class PressKeyArgs(_TargetedArgs):
    key: str = Field(..., description="Key or chord, e.g. 'Enter' or 'Control+A'")
    timeout: Optional[int] = None


class DragAndDropArgs(_Frozen):
    source: Target = Field(..., description="Element to drag")
    dest_target: Optional[Target] = Field(None, description="Element to drop onto")
    dest_coord: Optional[Coord] = Field(None, description="Viewport coordinates to drop at")
    timeout: Optional[int] = None


class MouseArgs(_Frozen):
    action: Literal["move", "down", "up", "wheel"]
    x: float
    y: float
    delta_y: Optional[float] = Field(None, alias="deltaY", description="Wheel delta, required for 'wheel'")
    button: Optional[Literal["left", "right", "middle"]] = None


# --- steps -----------------------------------------------------------------

class StepMeta(_Frozen):
    request_id: Optional[str] = None
    source: StepSource = StepSource.MCP
    ts: int = Field(default_factory=now_ms)


class _StepBase(_Frozen):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    meta: Optional[StepMeta] = None


class GotoStep(_StepBase):
    name: Literal["browser.goto"] = "browser.goto"
    args: GotoArgs


class GoBackStep(_StepBase):
    name: Literal["browser.go_back"] = "browser.go_back"
    args: GoBackArgs = Field(default_factory=GoBackArgs)


class ReloadStep(_StepBase):
    name: Literal["browser.reload"] = "browser.reload"
    args: ReloadArgs = Field(default_factory=ReloadArgs)


class CreateTabStep(_StepBase):
    name: Literal["browser.create_tab"] = "browser.create_tab"
    args: CreateTabArgs = Field(default_factory=CreateTabArgs)


class SwitchTabStep(_StepBase):
    name: Literal["browser.switch_tab"] = "browser.switch_tab"
    args: SwitchTabArgs


class CloseTabStep(_StepBase):
    name: Literal["browser.close_tab"] = "browser.close_tab"
    args: CloseTabArgs = Field(default_factory=CloseTabArgs)


class GetPageInfoStep(_StepBase):
    name: Literal["browser.get_page_info"] = "browser.get_page_info"
    args: GetPageInfoArgs = Field(default_factory=GetPageInfoArgs)


class SnapshotStep(_StepBase):
    name: Literal["browser.snapshot"] = "browser.snapshot"
    args: SnapshotArgs = Field(default_factory=SnapshotArgs)


class TakeScreenshotStep(_StepBase):
    name: Literal["browser.take_screenshot"] = "browser.take_screenshot"
    args: TakeScreenshotArgs = Field(default_factory=TakeScreenshotArgs)


class ClickStep(_StepBase):
    name: Literal["browser.click"] = "browser.click"
    args: ClickArgs


class FillStep(_StepBase):
    name: Literal["browser.fill"] = "browser.fill"
    args: FillArgs


class TypeStep(_StepBase):
    name: Literal["browser.type"] = "browser.type"
    args: TypeArgs


class SelectOptionStep(_StepBase):
    name: Literal["browser.select_option"] = "browser.select_option"
    args: SelectOptionArgs


class HoverStep(_StepBase):
    name: Literal["browser.hover"] = "browser.hover"
    args: HoverArgs


class ScrollStep(_StepBase):
    name: Literal["browser.scroll"] = "browser.scroll"
    args: ScrollArgs = Field(default_factory=ScrollArgs)


class PressKeyStep(_StepBase):
    name: Literal["browser.press_key"] = "browser.press_key"
    args: PressKeyArgs


class DragAndDropStep(_StepBase):
    name: Literal["browser.drag_and_drop"] = "browser.drag_and_drop"
    args: DragAndDropArgs


class MouseStep(_StepBase):
    name: Literal["browser.mouse"] = "browser.mouse"
    args: MouseArgs


Step = Annotated[
    Union[
        GotoStep,
        GoBackStep,
        ReloadStep,
        CreateTabStep,
        SwitchTabStep,
        CloseTabStep,
        GetPageInfoStep,
        SnapshotStep,
        TakeScreenshotStep,
        ClickStep,
        FillStep,
        TypeStep,
        SelectOptionStep,
        HoverStep,
        ScrollStep,
        PressKeyStep,
        DragAndDropStep,
        MouseStep,
    ],
    Field(discriminator="name"),
]

step_adapter: TypeAdapter = TypeAdapter(Step)
step_list_adapter: TypeAdapter = TypeAdapter(List[Step])

STEP_ARGS_MODELS: Dict[str, Type[BaseModel]] = {
    StepName.GOTO.value: GotoArgs,
    StepName.GO_BACK.value: GoBackArgs,
    StepName.RELOAD.value: ReloadArgs,
    StepName.CREATE_TAB.value: CreateTabArgs,
    StepName.SWITCH_TAB.value: SwitchTabArgs,
    StepName.CLOSE_TAB.value: CloseTabArgs,
    StepName.GET_PAGE_INFO.value: GetPageInfoArgs,
    StepName.SNAPSHOT.value: SnapshotArgs,
    StepName.TAKE_SCREENSHOT.value: TakeScreenshotArgs,
    StepName.CLICK.value: ClickArgs,
    StepName.FILL.value: FillArgs,
    StepName.TYPE.value: TypeArgs,
    StepName.SELECT_OPTION.value: SelectOptionArgs,
    StepName.HOVER.value: HoverArgs,
    StepName.SCROLL.value: ScrollArgs,
    StepName.PRESS_KEY.value: PressKeyArgs,
    StepName.DRAG_AND_DROP.value: DragAndDropArgs,
    StepName.MOUSE.value: MouseArgs,
}


def build_step(
    name: str,
    args: Optional[Dict[str, Any]] = None,
    source: StepSource = StepSource.MCP,
    step_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Step:
    """Validate `args` against the model of `name` and return the step.

    Raises:
        pydantic.ValidationError: unknown name or arguments of the wrong shape.
    """
    payload: Dict[str, Any] = {
        "name": name,
        "args": args or {},
        "meta": {"source": source, "request_id": request_id},
    }
    if step_id:
        payload["id"] = step_id
    return step_adapter.validate_python(payload)


def parse_steps(raw_steps: List[Any]) -> List[Step]:
    """Validate a list of step dicts (or already-built steps)."""
    return step_list_adapter.validate_python(raw_steps)


# --- results ---------------------------------------------------------------

class StepResult(BaseModel):
    """Outcome of one step; produced once and never mutated."""
    model_config = ConfigDict(frozen=True)

    step_id: str
    ok: bool
    data: Any = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, step_id: str, data: Any = None) -> "StepResult":
        return cls(step_id=step_id, ok=True, data=data)

    @classmethod
    def failure(cls, step_id: str, error: Dict[str, Any]) -> "StepResult":
        return cls(step_id=step_id, ok=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"step_id": self.step_id, "ok": self.ok}
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        return out


class RunStepsResult(BaseModel):
    ok: bool
    results: List[StepResult] = Field(default_factory=list)
    trace: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok, "results": [result.to_dict() for result in self.results]}
        if self.trace is not None:
            out["trace"] = self.trace
        return out
