"""Tests for recording and replay."""
from rpa_agent.adapters.recording import (
    MASK,
    RecordedEvent,
    RecordingManager,
    build_steps_from_events,
    sanitize_value,
)
from rpa_agent.constants import StepSource
from rpa_agent.trace.types import now_ms
from rpa_agent.utils.logging import get_logger

logger = get_logger("test.recording")

T0 = 1_700_000_000_000


def event(token, type_, ts=T0, **fields):
    return RecordedEvent(tab_token=token, ts=ts, type=type_, **fields)


async def bound_tab(deps, workspace_id="ws-rec"):
    binding = await deps.runtime.ensure_active_page(workspace_id)
    return binding


class TestSanitize:
    def test_short_values_are_trimmed(self):
        assert sanitize_value("  hello ") == "hello"

    def test_medium_values_are_truncated(self):
        assert sanitize_value("x" * 120) == "x" * 80

    def test_long_values_are_masked(self):
        assert sanitize_value("x" * 201) == MASK
        assert sanitize_value(MASK) == MASK


class TestRecordedEvent:
    def test_camel_case_round_trip(self):
        recorded = RecordedEvent.model_validate(
            {"tabToken": "t", "ts": 5, "type": "click", "a11yNodeId": "n0.1", "selector": "#go"}
        )

        assert recorded.a11y_node_id == "n0.1"
        assert recorded.to_dict() == {
            "tabToken": "t", "ts": 5, "type": "click", "a11yNodeId": "n0.1", "selector": "#go",
        }


class TestBuildSteps:
    def test_supported_events_become_play_steps(self):
        steps, unsupported = build_steps_from_events([
            event("t", "navigate", url="https://example.com"),
            event("t", "click", a11y_node_id="n0.1"),
            event("t", "input", a11y_node_id="n0.2", value="hi"),
        ])

        assert unsupported == []
        assert [step.name for step in steps] == ["browser.goto", "browser.click", "browser.fill"]
        assert steps[1].args.target.a11y_node_id == "n0.1"
        assert steps[2].args.value == "hi"
        assert all(step.meta.source == StepSource.PLAY for step in steps)

    def test_events_without_node_ids_are_unsupported(self):
        steps, unsupported = build_steps_from_events([
            event("t", "click"),
            event("t", "scroll"),
            event("t", "navigate"),
        ])

        assert steps == []
        assert [e.type for e in unsupported] == ["click", "scroll", "navigate"]


class TestRecording:
    async def test_events_are_ignored_until_started(self, deps):
        logger.info("Testing recording lifecycle", emoji_key="test")
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)

        assert recorder.record_event(event(binding.tab_token, "click", a11y_node_id="n0.1")) is False

        recorder.start(binding)
        assert recorder.is_recording(binding.tab_token)
        assert recorder.record_event(event(binding.tab_token, "click", a11y_node_id="n0.1")) is True
        assert [e.type for e in recorder.get(binding.tab_token)] == ["click"]

    async def test_values_are_sanitized(self, deps):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        recorder.start(binding)

        recorder.record_event(event(binding.tab_token, "input", a11y_node_id="n0.2", value="p" * 300))

        assert recorder.get(binding.tab_token)[0].value == MASK

    async def test_navigations_inside_window_are_deduped(self, deps):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        recorder.start(binding)
        token = binding.tab_token

        assert recorder.record_event(event(token, "navigate", ts=T0, url="https://a.example"))
        assert not recorder.record_event(event(token, "navigate", ts=T0 + 500, url="https://b.example"))
        assert recorder.record_event(event(token, "navigate", ts=T0 + 1500, url="https://c.example"))

        assert [e.url for e in recorder.get(token)] == ["https://a.example", "https://c.example"]

    async def test_main_frame_navigation_is_recorded(self, deps):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        recorder.start(binding)
        recorder.start(binding)

        binding.page.navigate("https://example.com/next")

        [recorded] = recorder.get(binding.tab_token)
        assert recorded.type == "navigate"
        assert recorded.url == "https://example.com/next"
        assert recorded.source == "direct"

    async def test_navigation_after_click_is_attributed_to_click(self, deps):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        recorder.start(binding)

        recorder.record_event(event(binding.tab_token, "click", ts=now_ms(), a11y_node_id="n0.1"))
        binding.page.navigate("https://example.com/after-click")

        assert recorder.get(binding.tab_token)[-1].source == "click"

    async def test_stop_keeps_events_and_clear_drops_them(self, deps):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        token = binding.tab_token
        recorder.start(binding)
        recorder.record_event(event(token, "click", a11y_node_id="n0.1"))

        recorder.stop(token)
        assert not recorder.is_recording(token)
        assert len(recorder.get(token)) == 1
        binding.page.navigate("https://example.com/ignored")
        assert len(recorder.get(token)) == 1

        recorder.clear(token)
        assert recorder.get(token) == []

    async def test_events_during_replay_are_dropped(self, deps):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        recorder.start(binding)

        recorder.begin_replay(binding.tab_token)
        assert not recorder.record_event(event(binding.tab_token, "click", a11y_node_id="n0.1"))
        recorder.end_replay(binding.tab_token)
        assert recorder.record_event(event(binding.tab_token, "click", a11y_node_id="n0.1"))

    async def test_closed_tab_state_is_forgotten(self, deps):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        recorder.start(binding)
        recorder.record_event(event(binding.tab_token, "click", a11y_node_id="n0.1"))

        await deps.page_registry.close_tab(binding.workspace_id, binding.tab_id)

        assert not recorder.is_recording(binding.tab_token)
        assert recorder.get(binding.tab_token) == []


class TestReplay:
    async def test_replay_runs_recorded_steps(self, deps, fake_tools, step_sink):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        token = binding.tab_token
        recorder.start(binding)
        recorder.record_event(event(token, "navigate", url="https://example.com"))
        recorder.record_event(event(token, "click", ts=T0 + 10, a11y_node_id="n0.1"))

        result = await recorder.replay(binding.workspace_id, token)

        assert result.ok
        assert len(result.results) == 2
        assert fake_tools.call("goto")[0] == ("https://example.com",)
        assert {e["source"] for e in step_sink.get_events()} == {"play"}
        assert not recorder.is_replaying(token)

    async def test_unsupported_events_refuse_replay(self, deps, fake_tools):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        recorder.start(binding)
        recorder.record_event(event(binding.tab_token, "keydown", ts=T0 + 3, key="Enter"))

        result = await recorder.replay(binding.workspace_id, binding.tab_token)

        assert not result.ok
        assert result.error["code"] == "ERR_NOT_IMPLEMENTED"
        assert result.error["details"] == [{"type": "keydown", "ts": T0 + 3}]
        assert fake_tools.calls == []

    async def test_cancel_stops_before_next_step(self, deps, fake_tools):
        recorder = RecordingManager(deps)
        binding = await bound_tab(deps)
        token = binding.tab_token
        recorder.start(binding)
        recorder.record_event(event(token, "click", ts=T0, a11y_node_id="n0.1"))
        recorder.record_event(event(token, "click", ts=T0 + 1, a11y_node_id="n0.2"))

        original_click = fake_tools.click

        async def click_then_cancel(*args, **kwargs):
            recorder.cancel_replay(token)
            return await original_click(*args, **kwargs)

        fake_tools.click = click_then_cancel

        result = await recorder.replay(binding.workspace_id, token)

        assert result.ok
        assert len(result.results) == 1
        assert token not in recorder.state.replay_cancel
