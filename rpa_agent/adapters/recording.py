"""Per-tab recording and replay of user events.

Events reach the recorder from two places: the main-frame navigation
listener installed on the page, and `record.event` commands forwarded by an
external recorder (e.g. a browser extension). Replay turns the recorded
events back into steps and runs them through the normal step engine.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Set, Tuple

from playwright.async_api import Frame
from pydantic import BaseModel, ConfigDict, Field

from rpa_agent.constants import ErrorCode, StepName, StepSource
from rpa_agent.error_handling import format_error
from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.runtime.runtime_registry import PageBinding
from rpa_agent.steps.models import Step, StepResult, build_step
from rpa_agent.steps.runner import run_steps
from rpa_agent.trace.types import now_ms
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.adapters.recording")

MASK = "***"
MASK_OVER_CHARS = 200
TRUNCATE_OVER_CHARS = 80

NAV_LISTENER_META_KEY = "recorder_nav_listener"

RecordedEventType = Literal[
    "click", "input", "change", "check", "select", "date",
    "keydown", "navigate", "scroll", "paste", "copy",
]


class RecordedEvent(BaseModel):
    """One user interaction captured on a tab."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tab_token: str = Field(alias="tabToken")
    ts: int
    type: RecordedEventType
    url: Optional[str] = None
    a11y_node_id: Optional[str] = Field(None, alias="a11yNodeId")
    value: Optional[str] = None
    key: Optional[str] = None
    source: Optional[Literal["click", "direct"]] = None
    page_url: Optional[str] = Field(None, alias="pageUrl")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def sanitize_value(value: str) -> str:
    """Trim a recorded value, masking long ones and truncating medium ones."""
    if value == MASK:
        return value
    value = value.strip()
    if len(value) > MASK_OVER_CHARS:
        return MASK
    if len(value) > TRUNCATE_OVER_CHARS:
        return value[:TRUNCATE_OVER_CHARS]
    return value


def build_steps_from_events(events: List[RecordedEvent]) -> Tuple[List[Step], List[RecordedEvent]]:
    """Convert recorded events into replay steps.

    Returns:
        `(steps, unsupported)`; only navigations with a URL, and clicks and
        inputs carrying an a11y node id, can be replayed.
    """
    steps: List[Step] = []
    unsupported: List[RecordedEvent] = []
    for event in events:
        if event.type == "navigate" and event.url:
            steps.append(build_step(StepName.GOTO.value, {"url": event.url}, source=StepSource.PLAY))
        elif event.type == "click" and event.a11y_node_id:
            steps.append(build_step(
                StepName.CLICK.value,
                {"target": {"a11y_node_id": event.a11y_node_id}},
                source=StepSource.PLAY,
            ))
        elif event.type == "input" and event.a11y_node_id and isinstance(event.value, str):
            steps.append(build_step(
                StepName.FILL.value,
                {"target": {"a11y_node_id": event.a11y_node_id}, "value": event.value},
                source=StepSource.PLAY,
            ))
        else:
            unsupported.append(event)
    return steps, unsupported


@dataclass
class ReplayResult:
    ok: bool
    results: List[StepResult] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None


@dataclass
class RecordingState:
    """Recording bookkeeping for every tab token."""
    recording_enabled: Set[str] = field(default_factory=set)
    recordings: Dict[str, List[RecordedEvent]] = field(default_factory=dict)
    last_navigate_ts: Dict[str, int] = field(default_factory=dict)
    last_click_ts: Dict[str, int] = field(default_factory=dict)
    replaying: Set[str] = field(default_factory=set)
    replay_cancel: Set[str] = field(default_factory=set)


class RecordingManager:
    """Owns the recording state of one agent process.

    Recording and replay never overlap on a tab: events that arrive while a
    tab is replaying are dropped so the replay does not record itself.
    """

    def __init__(self, deps: AgentDeps):
        self.deps = deps
        self.state = RecordingState()
        self.nav_dedupe_window_ms = deps.config.registry.nav_dedupe_window_ms
        deps.page_registry.on_token_closed(self.cleanup)

    def is_recording(self, tab_token: str) -> bool:
        return tab_token in self.state.recording_enabled

    def is_replaying(self, tab_token: str) -> bool:
        return tab_token in self.state.replaying

    def record_event(self, event: RecordedEvent) -> bool:
        """Append an event to its tab's recording.

        Returns:
            True if the event was stored, False if it was ignored (tab not
            recording, tab replaying, or a navigation inside the dedupe window).
        """
        state = self.state
        token = event.tab_token
        if not token or token not in state.recording_enabled:
            return False
        if token in state.replaying:
            return False

        if event.type == "click":
            state.last_click_ts[token] = event.ts

        if event.type == "navigate":
            last = state.last_navigate_ts.get(token, 0)
            if event.ts - last < self.nav_dedupe_window_ms:
                return False
            state.last_navigate_ts[token] = event.ts

        if event.value:
            event.value = sanitize_value(event.value)

        state.recordings.setdefault(token, []).append(event)
        logger.debug(f"Recorded {event.type}", emoji_key="record", tab_token=token, ts=event.ts, url=event.url)
        return True

    def _install_navigation_listener(self, binding: PageBinding) -> None:
        if binding.meta.get(NAV_LISTENER_META_KEY):
            return
        binding.meta[NAV_LISTENER_META_KEY] = True
        page = binding.page
        token = binding.tab_token

        def handle_navigated(frame: Frame) -> None:
            if frame != page.main_frame or token not in self.state.recording_enabled:
                return
            ts = now_ms()
            last_click = self.state.last_click_ts.get(token, 0)
            source = "click" if ts - last_click < self.nav_dedupe_window_ms else "direct"
            self.record_event(RecordedEvent(tab_token=token, ts=ts, type="navigate", url=frame.url, source=source))

        page.on("framenavigated", handle_navigated)

    def start(self, binding: PageBinding) -> None:
        """Enable recording on the binding's tab, keeping any earlier events."""
        token = binding.tab_token
        self.state.recording_enabled.add(token)
        self.state.recordings.setdefault(token, [])
        self.state.last_navigate_ts[token] = 0
        self.state.last_click_ts[token] = 0
        self._install_navigation_listener(binding)
        logger.info("Recording started", emoji_key="record", tab_token=token, url=binding.page.url)

    def stop(self, tab_token: str) -> None:
        """Disable recording; recorded events are kept."""
        self.state.recording_enabled.discard(tab_token)
        self.state.last_navigate_ts.pop(tab_token, None)
        self.state.last_click_ts.pop(tab_token, None)
        logger.info("Recording stopped", emoji_key="record", tab_token=tab_token)

    def get(self, tab_token: str) -> List[RecordedEvent]:
        return list(self.state.recordings.get(tab_token, []))

    def clear(self, tab_token: str) -> None:
        self.state.recordings[tab_token] = []

    def begin_replay(self, tab_token: str) -> None:
        self.state.replaying.add(tab_token)
        self.state.replay_cancel.discard(tab_token)

    def end_replay(self, tab_token: str) -> None:
        self.state.replaying.discard(tab_token)
        self.state.replay_cancel.discard(tab_token)

    def cancel_replay(self, tab_token: str) -> None:
        """Ask a running replay to stop before its next step."""
        self.state.replay_cancel.add(tab_token)
        logger.info("Replay cancellation requested", emoji_key="replay", tab_token=tab_token)

    def cleanup(self, tab_token: str) -> None:
        """Forget everything about a closed tab."""
        state = self.state
        state.recording_enabled.discard(tab_token)
        state.recordings.pop(tab_token, None)
        state.last_navigate_ts.pop(tab_token, None)
        state.last_click_ts.pop(tab_token, None)
        state.replaying.discard(tab_token)
        state.replay_cancel.discard(tab_token)

    async def replay(self, workspace_id: str, tab_token: str, stop_on_error: bool = True) -> ReplayResult:
        """Replay the tab's recording into `workspace_id`.

        Recording is suspended on the tab for the duration, and a pending
        `cancel_replay` ends the run before its next step.
        """
        events = self.get(tab_token)
        steps, unsupported = build_steps_from_events(events)
        if unsupported:
            details = [{"type": event.type, "ts": event.ts} for event in unsupported]
            logger.warning(
                "Replay refused: unsupported recorded events",
                emoji_key="replay",
                tab_token=tab_token,
                unsupported=len(unsupported),
            )
            return ReplayResult(
                ok=False,
                error=format_error(ErrorCode.ERR_NOT_IMPLEMENTED, "recorded events require a11yNodeId", details),
            )

        logger.info("Replay started", emoji_key="replay", workspace_id=workspace_id, steps=len(steps))
        self.begin_replay(tab_token)
        try:
            run = await run_steps(
                workspace_id,
                steps,
                self.deps,
                stop_on_error=stop_on_error,
                should_stop=lambda: tab_token in self.state.replay_cancel,
            )
        finally:
            self.end_replay(tab_token)
        return ReplayResult(ok=run.ok, results=list(run.results))
