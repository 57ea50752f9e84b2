"""Tests for the trace layer: trace_call, sinks, hooks and the a11y index."""
import asyncio
import json

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rpa_agent.constants import ErrorCode
from rpa_agent.exceptions import ToolError
from rpa_agent.trace.a11y import (
    adopt_a11y_node,
    build_a11y_tree_from_cdp,
    cache_a11y_snapshot,
    find_a11y_candidates,
    find_focused_subtree,
    invalidate_a11y_cache,
)
from rpa_agent.trace.hooks import create_logging_hooks, format_trace_line, safe_json
from rpa_agent.trace.sinks import FileSink, MemorySink
from rpa_agent.trace.trace_call import classify_error, trace_call
from rpa_agent.trace.types import TraceCache, TraceContext, TraceHooks, TraceTags
from rpa_agent.utils.logging import get_logger

logger = get_logger("test.trace")

SNAPSHOT = {
    "role": "WebArea",
    "name": "Fixture A",
    "children": [
        {"role": "heading", "name": "Fixture A"},
        {"role": "button", "name": "Action A"},
        {"role": "textbox", "name": "Name A", "value": "hello", "focused": True},
        {"role": "button", "name": "Action B"},
    ],
}


class BrokenSink:
    def write(self, event):
        raise RuntimeError("disk full")


class TestTraceCall:
    async def test_success_emits_start_and_end(self):
        logger.info("Testing trace_call success path", emoji_key="test")
        sink = MemorySink()
        ctx = TraceContext(sinks=[sink], tags=TraceTags(workspace_id="ws-1", tab_token="tok"))

        async def body():
            return {"value": 42}

        result = await trace_call(ctx, "trace.page.goto", {"url": "https://example.com"}, body)

        assert result.ok and result.data == {"value": 42}
        events = sink.get_events()
        assert [event["type"] for event in events] == ["op.start", "op.end"]
        assert events[1]["ok"] is True
        assert events[1]["result"] == {"value": 42}
        assert events[1]["tags"] == {"workspace_id": "ws-1", "tab_token": "tok"}
        assert events[1]["duration_ms"] >= 0

    async def test_exceptions_become_failed_results(self):
        sink = MemorySink()
        ctx = TraceContext(sinks=[sink])

        async def body():
            raise asyncio.TimeoutError()

        result = await trace_call(ctx, "trace.locator.click", None, body)

        assert not result.ok
        assert result.code == ErrorCode.ERR_TIMEOUT.value
        assert result.error["phase"] == "trace"
        assert sink.get_events()[-1]["error"]["code"] == ErrorCode.ERR_TIMEOUT.value

    async def test_broken_sink_does_not_change_outcome(self):
        ctx = TraceContext(sinks=[BrokenSink()])

        async def body():
            return "done"

        result = await trace_call(ctx, "trace.page.reload", None, body)
        assert result.ok and result.data == "done"

    async def test_disabled_context_emits_nothing(self):
        sink = MemorySink()
        seen = []
        ctx = TraceContext(sinks=[sink], hooks=TraceHooks(after_op=seen.append), enabled=False)

        async def body():
            return 1

        result = await trace_call(ctx, "trace.page.getInfo", None, body)

        assert result.ok
        assert sink.get_events() == []
        assert seen == []

    async def test_hooks_run_in_order(self):
        order = []

        async def before(event):
            order.append(("before", event["type"]))

        ctx = TraceContext(hooks=TraceHooks(
            before_op=before,
            after_op=lambda event: order.append(("after", event["ok"])),
            on_error=lambda event: order.append(("error", event["error"]["code"])),
        ))

        async def body():
            raise ToolError("no match", code=ErrorCode.ERR_NOT_FOUND)

        await trace_call(ctx, "trace.a11y.resolveByNodeId", None, body)

        assert order == [("before", "op.start"), ("after", False), ("error", "ERR_NOT_FOUND")]


class TestClassifyError:
    def test_tool_error_code_survives(self):
        error = classify_error(ToolError("multiple matches", code=ErrorCode.ERR_AMBIGUOUS, details={"count": 2}))
        assert error == {"code": "ERR_AMBIGUOUS", "message": "multiple matches", "details": {"count": 2}, "phase": "trace"}

    def test_strict_mode_message_is_ambiguous(self):
        error = classify_error(RuntimeError("strict mode violation: resolved to 2 elements"))
        assert error["code"] == ErrorCode.ERR_AMBIGUOUS.value

    def test_playwright_timeout_is_timeout(self):
        error = classify_error(PlaywrightTimeoutError("Timeout 500ms exceeded."))
        assert error["code"] == ErrorCode.ERR_TIMEOUT.value
        assert error["message"] == "Timeout 500ms exceeded."

    def test_other_errors_are_unknown(self):
        assert classify_error(ValueError("boom"))["code"] == ErrorCode.ERR_UNKNOWN.value


class TestSinks:
    async def test_file_sink_writes_json_lines(self, tmp_path):
        path = tmp_path / "nested" / "trace.jsonl"
        sink = FileSink(path)

        await sink.write({"type": "op.start", "op": "trace.page.goto"})
        await sink.write({"type": "op.end", "op": "trace.page.goto", "ok": True})

        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["type"] for line in lines] == ["op.start", "op.end"]

    def test_memory_sink_clear(self):
        sink = MemorySink()
        sink.write({"type": "op.start"})
        sink.clear()
        assert sink.get_events() == []


class TestHooks:
    def test_safe_json_truncates_long_strings(self):
        text = safe_json({"base64": "x" * 500})
        assert len(json.loads(text)["base64"]) == 163

    def test_safe_json_falls_back_to_preview(self):
        payload = json.loads(safe_json(["abcdefghij" * 10] * 30))
        assert set(payload) == {"len", "preview"}
        assert len(payload["preview"]) == 1000

    def test_trace_line_without_args(self):
        line = format_trace_line(
            {"op": "trace.page.goto", "ok": True, "duration_ms": 12, "args": {"url": "u"}, "result": None},
            log_args=False,
        )
        assert line == "op=trace.page.goto ok=true ms=12 result=null"

    def test_logging_hooks_only_define_after_op(self):
        hooks = create_logging_hooks(log_args=True)
        assert hooks.after_op is not None
        assert hooks.before_op is None and hooks.on_error is None
        hooks.after_op({"type": "op.end", "op": "trace.page.reload", "ok": False, "duration_ms": 1,
                        "error": {"code": "ERR_TIMEOUT"}, "tags": {"workspace_id": "ws"}})


class TestA11yIndex:
    def test_snapshot_ids_are_depth_first(self):
        cache = TraceCache()
        tree = cache_a11y_snapshot(cache, json.dumps(SNAPSHOT))

        assert tree["id"] == "n0"
        assert [child["id"] for child in tree["children"]] == ["n0.0", "n0.1", "n0.2", "n0.3"]
        assert cache.node_map["n0.2"].value == "hello"
        assert not cache.is_empty

    def test_invalid_snapshot_leaves_cache_alone(self):
        cache = TraceCache()
        assert cache_a11y_snapshot(cache, "not json") is None
        assert cache.is_empty

    def test_invalidate_bumps_generation(self):
        cache = TraceCache()
        cache_a11y_snapshot(cache, json.dumps(SNAPSHOT))

        invalidate_a11y_cache(cache, "click", TraceTags(workspace_id="ws"))

        assert cache.is_empty
        assert cache.a11y_tree is None
        assert cache.generation == 1

    def test_hint_matching(self):
        tree = cache_a11y_snapshot(TraceCache(), json.dumps(SNAPSHOT))

        buttons = find_a11y_candidates(tree, {"role": "button"})
        assert [candidate.node_id for candidate in buttons] == ["n0.1", "n0.3"]

        named = find_a11y_candidates(tree, {"role": "button", "name": "action a"})
        assert [candidate.to_dict() for candidate in named] == [
            {"node_id": "n0.1", "role": "button", "name": "Action A", "preview": "Action A"}
        ]

        by_text = find_a11y_candidates(tree, {"text": "HELLO"})
        assert [candidate.node_id for candidate in by_text] == ["n0.2"]

        assert find_a11y_candidates(tree, {"role": "link"}) == []

    def test_focused_subtree(self):
        tree = cache_a11y_snapshot(TraceCache(), json.dumps(SNAPSHOT))
        assert find_focused_subtree(tree)["id"] == "n0.2"

    def test_tree_from_cdp_nodes(self):
        nodes = [
            {"nodeId": "1", "role": {"value": "RootWebArea"}, "name": {"value": "Doc"}, "childIds": ["2", "3"]},
            {"nodeId": "2", "parentId": "1", "role": {"value": "button"}, "name": {"value": "Go"}},
            {"nodeId": "3", "parentId": "1", "role": {"value": "textbox"}, "value": {"value": 5}},
        ]

        tree = build_a11y_tree_from_cdp(nodes)

        assert tree == {
            "role": "RootWebArea",
            "name": "Doc",
            "children": [{"role": "button", "name": "Go"}, {"role": "textbox", "value": "5"}],
        }

    async def test_adopt_with_empty_cache_is_not_found(self):
        with pytest.raises(ToolError) as exc_info:
            await adopt_a11y_node(page=None, node_id="n0.1", cache=TraceCache())
        assert exc_info.value.code == ErrorCode.ERR_NOT_FOUND.value

    async def test_adopt_unknown_node_is_not_found(self):
        cache = TraceCache()
        cache_a11y_snapshot(cache, json.dumps(SNAPSHOT))
        with pytest.raises(ToolError) as exc_info:
            await adopt_a11y_node(page=None, node_id="n9", cache=cache)
        assert exc_info.value.details == {"a11y_node_id": "n9"}


class FakeLocator:
    """Locator double: `count` live matches, each summarized as a button."""

    def __init__(self, count, fail=False):
        self._count = count
        self._fail = fail
        self.first = self

    async def count(self):
        if self._fail:
            raise RuntimeError("target closed")
        return self._count

    async def evaluate_all(self, script):
        return [{"tag": "button", "text": f"Save {i}"} for i in range(self._count)]


class FakeA11yPage:
    def __init__(self, locator):
        self.locator = locator
        self.queries = []

    def get_by_role(self, role, name=None):
        self.queries.append(("role", role, name))
        return self.locator

    def get_by_text(self, text, exact=False):
        self.queries.append(("text", text, exact))
        return self.locator


class TestAdoption:
    @pytest.fixture
    def a11y_cache(self):
        cache = TraceCache()
        cache_a11y_snapshot(cache, json.dumps(SNAPSHOT))
        return cache

    async def test_single_live_match_is_adopted(self, a11y_cache):
        logger.info("Testing live match count on adoption", emoji_key="test")
        locator = FakeLocator(1)
        page = FakeA11yPage(locator)

        adopted = await adopt_a11y_node(page, "n0.1", a11y_cache)

        assert adopted is locator
        assert page.queries == [("role", "button", "Action A")]

    async def test_no_live_match_is_not_found(self, a11y_cache):
        with pytest.raises(ToolError) as exc_info:
            await adopt_a11y_node(FakeA11yPage(FakeLocator(0)), "n0.1", a11y_cache)

        assert exc_info.value.code == ErrorCode.ERR_NOT_FOUND.value
        assert exc_info.value.message == "no match"
        assert exc_info.value.details == {"a11y_node_id": "n0.1"}

    async def test_two_live_matches_are_ambiguous(self, a11y_cache):
        with pytest.raises(ToolError) as exc_info:
            await adopt_a11y_node(FakeA11yPage(FakeLocator(2)), "n0.1", a11y_cache)

        assert exc_info.value.code == ErrorCode.ERR_AMBIGUOUS.value
        assert exc_info.value.details == {
            "count": 2,
            "items": [{"tag": "button", "text": "Save 0"}, {"tag": "button", "text": "Save 1"}],
        }

    async def test_ambiguity_summary_is_capped_at_ten(self, a11y_cache):
        with pytest.raises(ToolError) as exc_info:
            await adopt_a11y_node(FakeA11yPage(FakeLocator(14)), "n0.1", a11y_cache)

        details = exc_info.value.details
        assert details["count"] == 14
        assert len(details["items"]) == 10

    async def test_nameless_node_falls_back_to_description(self):
        cache = TraceCache()
        cache_a11y_snapshot(cache, json.dumps({"role": "WebArea", "children": [{"description": "Help text"}]}))
        page = FakeA11yPage(FakeLocator(1))

        await adopt_a11y_node(page, "n0.0", cache)

        assert page.queries == [("text", "Help text", True)]

    async def test_counting_failure_is_unknown(self, a11y_cache):
        with pytest.raises(ToolError) as exc_info:
            await adopt_a11y_node(FakeA11yPage(FakeLocator(1, fail=True)), "n0.1", a11y_cache)

        assert exc_info.value.code == ErrorCode.ERR_UNKNOWN.value
        assert exc_info.value.details == {"reason": "target closed"}
