"""Tests for run_steps and the workspace scheduler."""
import asyncio

import pytest

from rpa_agent.runtime.scheduler import WorkspaceScheduler
from rpa_agent.steps.models import parse_steps
from rpa_agent.steps.runner import run_steps
from rpa_agent.utils.logging import get_logger

logger = get_logger("test.runner")


def three_steps():
    return parse_steps([
        {"id": "a", "name": "browser.goto", "args": {"url": "https://example.com"}},
        {"id": "b", "name": "browser.click", "args": {"a11y_hint": {"role": "button"}}},
        {"id": "c", "name": "browser.snapshot"},
    ])


class TestRunSteps:
    async def test_all_steps_succeed(self, deps, step_sink):
        logger.info("Testing successful step run", emoji_key="test")
        result = await run_steps("ws-run", three_steps(), deps)

        assert result.ok
        assert [r.step_id for r in result.results] == ["a", "b", "c"]
        events = step_sink.get_events()
        assert [(e["type"], e["step_id"]) for e in events] == [
            ("step.start", "a"), ("step.end", "a"),
            ("step.start", "b"), ("step.end", "b"),
            ("step.start", "c"), ("step.end", "c"),
        ]
        assert all(e["workspace_id"] == "ws-run" for e in events)
        assert events[1]["ok"] is True and events[1]["duration_ms"] >= 0

    async def test_stop_on_error(self, deps, fake_tools, step_sink):
        fake_tools.returns["find_by_a11y_hint"] = []

        result = await run_steps("ws-run", three_steps(), deps)

        assert not result.ok
        assert [r.ok for r in result.results] == [True, False]
        assert step_sink.get_events()[-1]["error"]["code"] == "ERR_NOT_FOUND"
        assert "snapshot_a11y" not in fake_tools.names()

    async def test_continue_on_error(self, deps, fake_tools):
        fake_tools.returns["find_by_a11y_hint"] = []

        result = await run_steps("ws-run", three_steps(), deps, stop_on_error=False)

        assert not result.ok
        assert [r.ok for r in result.results] == [True, False, True]

    async def test_should_stop_ends_run_early(self, deps):
        seen = []

        def should_stop():
            seen.append(len(seen))
            return len(seen) > 1

        result = await run_steps("ws-run", three_steps(), deps, should_stop=should_stop)

        assert result.ok
        assert [r.step_id for r in result.results] == ["a"]

    async def test_empty_run_is_ok(self, deps):
        result = await run_steps("ws-run", [], deps)
        assert result.ok and result.results == []

    async def test_broken_step_sink_is_ignored(self, deps):
        class Broken:
            def write(self, event):
                raise RuntimeError("sink down")

        deps.step_sinks.append(Broken())
        result = await run_steps("ws-run", three_steps()[:1], deps)
        assert result.ok

    async def test_trace_summary_from_memory_sink(self, deps, trace_sink):
        trace_sink.write({"type": "op.end", "op": "trace.page.goto", "tags": {"workspace_id": "ws-run"}})
        trace_sink.write({"type": "op.end", "op": "trace.page.goto", "tags": {"workspace_id": "other"}})

        result = await run_steps("ws-run", [], deps)

        assert result.trace["count"] == 1
        assert result.to_dict()["trace"]["last_events"][0]["tags"] == {"workspace_id": "ws-run"}


class TestScheduler:
    async def test_same_workspace_runs_in_submission_order(self):
        scheduler = WorkspaceScheduler(max_concurrent=4)
        order = []

        def task(name, delay):
            async def body():
                order.append(f"{name}:start")
                await asyncio.sleep(delay)
                order.append(f"{name}:end")
                return name
            return body

        results = await asyncio.gather(
            scheduler.run("ws", task("first", 0.02)),
            scheduler.run("ws", task("second", 0)),
        )

        assert results == ["first", "second"]
        assert order == ["first:start", "first:end", "second:start", "second:end"]
        assert scheduler.pending_workspaces() == 0

    async def test_global_concurrency_bound(self):
        scheduler = WorkspaceScheduler(max_concurrent=2)
        running = 0
        peak = 0

        async def body():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await asyncio.gather(*(scheduler.run(f"ws-{i}", body) for i in range(5)))

        assert peak == 2

    async def test_different_workspaces_overlap(self):
        scheduler = WorkspaceScheduler(max_concurrent=2)
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocker():
            started.set()
            await release.wait()

        async def other():
            await started.wait()
            release.set()
            return "other"

        results = await asyncio.wait_for(
            asyncio.gather(scheduler.run("a", blocker), scheduler.run("b", other)),
            timeout=1,
        )
        assert results == [None, "other"]

    async def test_failure_does_not_block_the_queue(self):
        scheduler = WorkspaceScheduler(max_concurrent=1)

        async def boom():
            raise RuntimeError("boom")

        async def fine():
            return "fine"

        first = scheduler.run("ws", boom)
        second = scheduler.run("ws", fine)
        outcomes = await asyncio.gather(first, second, return_exceptions=True)

        assert isinstance(outcomes[0], RuntimeError)
        assert outcomes[1] == "fine"

    async def test_invalid_bound_falls_back_to_one(self):
        assert WorkspaceScheduler(max_concurrent=0).max_concurrent == 1

    async def test_cancelled_waiter_keeps_chain(self):
        scheduler = WorkspaceScheduler(max_concurrent=2)
        release = asyncio.Event()
        order = []

        async def first():
            await release.wait()
            order.append("first")

        async def third():
            order.append("third")

        first_task = asyncio.ensure_future(scheduler.run("ws", first))
        await asyncio.sleep(0)
        second_task = asyncio.ensure_future(scheduler.run("ws", lambda: asyncio.sleep(0)))
        await asyncio.sleep(0)
        third_task = asyncio.ensure_future(scheduler.run("ws", third))
        await asyncio.sleep(0)

        second_task.cancel()
        await asyncio.sleep(0)
        assert order == []

        release.set()
        await asyncio.gather(first_task, third_task)
        with pytest.raises(asyncio.CancelledError):
            await second_task
        assert order == ["first", "third"]
