"""Tests for step execution over recorded trace calls."""
from rpa_agent.constants import ErrorCode
from rpa_agent.exceptions import TabNotFoundError
from rpa_agent.steps.executors import execute_step
from rpa_agent.steps.models import build_step
from rpa_agent.utils.logging import get_logger

logger = get_logger("test.executors")

HINT = {"role": "button", "name": "Action A"}


async def run(deps, name, args=None, workspace_id="ws-exec"):
    return await execute_step(build_step(name, args), deps, workspace_id)


class TestClick:
    async def test_coordinate_click_presses_and_releases(self, deps, fake_tools):
        logger.info("Testing coordinate click", emoji_key="test")
        result = await run(deps, "browser.click", {"coord": {"x": 10, "y": 20}})

        assert result.ok
        assert fake_tools.names() == ["mouse_action", "mouse_action"]
        assert [call[1][0] for call in fake_tools.calls] == ["down", "up"]
        assert fake_tools.calls[0][1][1:] == (10, 20)

    async def test_double_coordinate_click(self, deps, fake_tools):
        result = await run(deps, "browser.click", {"coord": {"x": 1, "y": 1}, "options": {"double": True}})

        assert result.ok
        assert fake_tools.names().count("mouse_action") == 4

    async def test_target_click_resolves_scrolls_waits_then_clicks(self, deps, fake_tools):
        result = await run(deps, "browser.click", {"target": {"a11yHint": HINT}})

        assert result.ok
        assert fake_tools.names() == ["find_by_a11y_hint", "scroll_into_view", "wait_for_visible", "click"]
        args, kwargs = fake_tools.call("find_by_a11y_hint")
        assert args == (HINT,)
        args, kwargs = fake_tools.call("click")
        assert args == ("n0.1",)
        assert kwargs["timeout"] == deps.config.wait_policy.default_timeout_ms

    async def test_node_id_click_is_resolved_through_the_cache(self, deps, fake_tools):
        result = await run(deps, "browser.click", {"a11y_node_id": "n0.3"})

        assert result.ok
        assert fake_tools.names()[0] == "resolve_by_node_id"
        assert fake_tools.call("click")[0] == ("n0.3",)

    async def test_coord_with_target_is_internal_error(self, deps, fake_tools):
        result = await run(deps, "browser.click", {"coord": {"x": 1, "y": 1}, "target": {"a11yNodeId": "n0.1"}})

        assert not result.ok
        assert result.error["code"] == ErrorCode.ERR_INTERNAL.value
        assert fake_tools.calls == []

    async def test_missing_target_is_internal_error(self, deps):
        result = await run(deps, "browser.click", {})
        assert result.error == {"code": "ERR_INTERNAL", "message": "missing target"}

    async def test_selector_is_not_supported(self, deps, fake_tools):
        result = await run(deps, "browser.click", {"target": {"selector": "#go"}})

        assert result.error["code"] == ErrorCode.ERR_INTERNAL.value
        assert result.error["message"] == "selector not supported"
        assert fake_tools.calls == []


class TestTargetResolution:
    async def test_no_candidates_is_not_found(self, deps, fake_tools):
        fake_tools.returns["find_by_a11y_hint"] = []

        result = await run(deps, "browser.click", {"a11y_hint": HINT})

        assert result.error["code"] == ErrorCode.ERR_NOT_FOUND.value
        assert result.error["details"] == {"hint": HINT}
        assert "click" not in fake_tools.names()

    async def test_several_candidates_are_ambiguous(self, deps, fake_tools):
        candidates = [
            {"node_id": "n0.1", "role": "button", "name": "Action A", "preview": "Action A"},
            {"node_id": "n0.4", "role": "button", "name": "Action A", "preview": "Action A"},
        ]
        fake_tools.returns["find_by_a11y_hint"] = candidates

        result = await run(deps, "browser.click", {"a11y_hint": HINT})

        assert result.error["code"] == ErrorCode.ERR_AMBIGUOUS.value
        assert result.error["details"]["candidates"] == candidates

    async def test_timeouts_pass_through(self, deps, fake_tools):
        fake_tools.failures["wait_for_visible"] = {"code": "ERR_TIMEOUT", "message": "Timeout 5000ms exceeded"}

        result = await run(deps, "browser.click", {"a11y_hint": HINT})

        assert result.error == {"code": "ERR_TIMEOUT", "message": "Timeout 5000ms exceeded"}

    async def test_unknown_trace_errors_narrow_to_internal(self, deps, fake_tools):
        fake_tools.failures["click"] = {"code": "ERR_UNKNOWN", "message": "element detached", "phase": "trace"}

        result = await run(deps, "browser.click", {"a11y_hint": HINT})

        assert result.error == {"code": "ERR_INTERNAL", "message": "element detached"}


class TestInputSteps:
    async def test_fill_focuses_before_filling(self, deps, fake_tools):
        result = await run(deps, "browser.fill", {"a11y_hint": {"role": "textbox"}, "value": "hello"})

        assert result.ok
        names = fake_tools.names()
        assert names[-2:] == ["focus", "fill"]
        assert fake_tools.call("fill")[0] == ("n0.1", "hello")

    async def test_type_uses_explicit_delay(self, deps, fake_tools):
        result = await run(deps, "browser.type", {"a11y_node_id": "n0.2", "text": "abc", "delay_ms": 5})

        assert result.ok
        assert fake_tools.call("type")[1] == {"delay_ms": 5}

    async def test_press_key_with_target_focuses_first(self, deps, fake_tools):
        result = await run(deps, "browser.press_key", {"a11y_node_id": "n0.2", "key": "Enter"})

        assert result.ok
        assert fake_tools.names()[-2:] == ["focus", "keyboard_press"]
        assert fake_tools.call("keyboard_press")[0] == ("Enter",)

    async def test_press_key_without_target(self, deps, fake_tools):
        result = await run(deps, "browser.press_key", {"key": "Control+A"})

        assert result.ok
        assert fake_tools.names() == ["keyboard_press"]

    async def test_select_option_returns_selection(self, deps, fake_tools):
        result = await run(deps, "browser.select_option", {"a11y_node_id": "n0.5", "values": ["a"]})

        assert result.ok
        assert result.data == {"selected": ["a"]}


class TestPageSteps:
    async def test_snapshot_returns_snapshot_id_and_tree(self, deps, fake_tools):
        result = await run(deps, "browser.snapshot")

        assert result.ok
        assert result.data["snapshot_id"] == "snap-1"
        assert result.data["a11y"] == fake_tools.returns["snapshot_a11y"]["a11y"]
        assert fake_tools.call("snapshot_a11y")[1] == {"include_a11y": True, "focus_only": False}

    async def test_snapshot_without_tree(self, deps):
        result = await run(deps, "browser.snapshot", {"include_a11y": False})
        assert "a11y" not in result.data

    async def test_screenshot_payload(self, deps):
        result = await run(deps, "browser.take_screenshot", {"full_page": True})
        assert result.data == {"mime": "image/png", "base64": "aGVsbG8="}

    async def test_scroll_by_page(self, deps, fake_tools):
        result = await run(deps, "browser.scroll", {"direction": "up", "amount": 200})

        assert result.ok
        assert fake_tools.call("scroll_by")[0] == ("up", 200)

    async def test_goto_uses_navigation_timeout(self, deps, fake_tools):
        result = await run(deps, "browser.goto", {"url": "https://example.com"})

        assert result.ok
        args, kwargs = fake_tools.call("goto")
        assert args == ("https://example.com",)
        assert kwargs == {"timeout": deps.config.wait_policy.navigation_timeout_ms}

    async def test_create_tab_returns_tab_id(self, deps):
        result = await run(deps, "browser.create_tab", {"url": "https://example.com"})
        assert result.data == {"tab_id": "tab-2"}


class TestMouseAndDrag:
    async def test_wheel_requires_delta(self, deps, fake_tools):
        result = await run(deps, "browser.mouse", {"action": "wheel", "x": 0, "y": 0})

        assert result.error["code"] == ErrorCode.ERR_INTERNAL.value
        assert fake_tools.calls == []

    async def test_wheel_with_delta(self, deps, fake_tools):
        result = await run(deps, "browser.mouse", {"action": "wheel", "x": 0, "y": 0, "deltaY": 300})

        assert result.ok
        assert fake_tools.call("mouse_action")[1]["delta_y"] == 300

    async def test_drag_needs_exactly_one_destination(self, deps):
        both = await run(deps, "browser.drag_and_drop", {
            "source": {"a11yNodeId": "n0.1"},
            "dest_target": {"a11yNodeId": "n0.2"},
            "dest_coord": {"x": 1, "y": 2},
        })
        neither = await run(deps, "browser.drag_and_drop", {"source": {"a11yNodeId": "n0.1"}})

        assert both.error["code"] == ErrorCode.ERR_INTERNAL.value
        assert neither.error["message"] == "missing drag destination"

    async def test_drag_to_coordinates(self, deps, fake_tools):
        result = await run(deps, "browser.drag_and_drop", {
            "source": {"a11yNodeId": "n0.1"},
            "dest_coord": {"x": 5, "y": 6},
        })

        assert result.ok
        args, kwargs = fake_tools.call("drag_drop")
        assert args == ("n0.1",)
        assert kwargs == {"dest_coord": {"x": 5, "y": 6}}


class TestRegistryErrors:
    async def test_registry_errors_become_failed_results(self, deps, monkeypatch):
        async def missing_tab(workspace_id):
            raise TabNotFoundError(workspace_id, "gone")

        monkeypatch.setattr(deps.runtime, "ensure_active_page", missing_tab)

        result = await run(deps, "browser.reload")

        assert not result.ok
        assert result.error["code"] == ErrorCode.ERR_NOT_FOUND.value
        assert result.error["details"] == {"workspace_id": "ws-exec", "tab_id": "gone"}

    async def test_workspace_is_created_on_demand(self, deps):
        result = await run(deps, "browser.get_page_info", workspace_id="fresh")

        assert result.ok
        assert deps.page_registry.has_workspace("fresh")
