"""Trace tools: the atomic page operations bound to one page handle.

Every public coroutine runs through `trace_call`, so each returns a
`ToolResult` and emits `op.start`/`op.end` events. This layer applies no
policy of its own (no waits, no delays); it only calls Playwright.
"""
import base64
import json
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from playwright.async_api import Locator, Page

from rpa_agent.constants import ErrorCode, TraceOp
from rpa_agent.exceptions import ToolError
from rpa_agent.trace.a11y import (
    adopt_a11y_node,
    ensure_a11y_tree,
    find_a11y_candidates,
    find_focused_subtree,
    invalidate_a11y_cache,
)
from rpa_agent.trace.trace_call import trace_call
from rpa_agent.trace.types import ToolResult, TraceCache, TraceContext, TraceHooks, TraceSink, TraceTags


class TraceTools:
    """Atomic operations against the current page of one tab binding.

    Args:
        page: Page the tools start on.
        registry: Page registry used by the tab operations and by `get_info`.
        workspace_id: Workspace the tools belong to.
        sinks: Trace sinks receiving every event.
        hooks: Trace hooks, defaults to none.
        tags: Attribution added to every event.
        enabled: When False no events are emitted (results are unchanged).
        snapshot_timeout_ms: Upper bound for a single accessibility snapshot.
    """

    def __init__(
        self,
        page: Page,
        registry: Optional[Any] = None,
        workspace_id: Optional[str] = None,
        sinks: Optional[Sequence[TraceSink]] = None,
        hooks: Optional[TraceHooks] = None,
        tags: Optional[TraceTags] = None,
        enabled: bool = True,
        snapshot_timeout_ms: Optional[int] = None,
    ):
        self._page = page
        self.registry = registry
        self.workspace_id = workspace_id
        self.ctx = TraceContext(
            sinks=list(sinks or []),
            hooks=hooks or TraceHooks(),
            tags=tags or TraceTags(workspace_id=workspace_id),
            enabled=enabled,
        )
        self.cache = TraceCache()
        self.snapshot_timeout_ms = snapshot_timeout_ms

    @property
    def page(self) -> Page:
        return self._page

    # --- plumbing ----------------------------------------------------------

    async def _run(self, op: TraceOp, args: Optional[Dict[str, Any]], fn: Callable[[], Awaitable[Any]]) -> ToolResult:
        return await trace_call(self.ctx, op.value, args, fn)

    async def _run_mutating(
        self,
        op: TraceOp,
        args: Optional[Dict[str, Any]],
        fn: Callable[[], Awaitable[Any]],
        reason: str,
    ) -> ToolResult:
        result = await self._run(op, args, fn)
        if result.ok:
            invalidate_a11y_cache(self.cache, reason, self.ctx.tags)
        return result

    async def _adopt(self, node_id: str) -> Locator:
        await ensure_a11y_tree(self._page, self.cache, self.snapshot_timeout_ms)
        return await adopt_a11y_node(self._page, node_id, self.cache)

    def _switch_page(self, page: Page, reason: str) -> None:
        if page is not self._page:
            self._page = page
            invalidate_a11y_cache(self.cache, reason, self.ctx.tags)

    def attach_page(self, page: Page) -> None:
        """Point the tools back at `page`, dropping the cache if it changed."""
        self._switch_page(page, "rebind")

    def _require_registry(self) -> Any:
        if self.registry is None or not self.workspace_id:
            raise ToolError("missing page registry", code=ErrorCode.ERR_INTERNAL)
        return self.registry

    # --- context / tabs ----------------------------------------------------

    async def new_page(self) -> ToolResult:
        """Open a bare page in the current browser context and switch to it."""
        async def run():
            page = await self._page.context.new_page()
            self._switch_page(page, "new_page")
            return {"url": page.url}
        return await self._run(TraceOp.CONTEXT_NEW_PAGE, None, run)

    async def tabs_create(self, url: Optional[str] = None, timeout: Optional[int] = None) -> ToolResult:
        args = {"workspace_id": self.workspace_id, "url": url}

        async def run():
            registry = self._require_registry()
            tab_id = await registry.create_tab(self.workspace_id)
            page = await registry.resolve_page(self.workspace_id, tab_id)
            self._switch_page(page, "tab_create")
            if url:
                await page.goto(url, timeout=timeout)
            return {"tab_id": tab_id}

        return await self._run_mutating(TraceOp.TABS_CREATE, args, run, "tab_create")

    async def tabs_switch(self, tab_id: str) -> ToolResult:
        args = {"workspace_id": self.workspace_id, "tab_id": tab_id}

        async def run():
            registry = self._require_registry()
            registry.set_active_tab(self.workspace_id, tab_id)
            page = await registry.resolve_page(self.workspace_id, tab_id)
            self._switch_page(page, "tab_switch")
            return {"tab_id": tab_id}

        return await self._run_mutating(TraceOp.TABS_SWITCH, args, run, "tab_switch")

    async def tabs_close(self, tab_id: Optional[str] = None) -> ToolResult:
        args = {"workspace_id": self.workspace_id, "tab_id": tab_id}

        async def run():
            registry = self._require_registry()
            workspace_id, resolved_tab = registry.resolve_scope(self.workspace_id, tab_id)
            await registry.close_tab(workspace_id, resolved_tab)
            if registry.has_workspace(workspace_id):
                page = await registry.resolve_page(workspace_id)
                self._switch_page(page, "tab_close")
            return {"tab_id": resolved_tab}

        return await self._run_mutating(TraceOp.TABS_CLOSE, args, run, "tab_close")

    # --- page --------------------------------------------------------------

    async def goto(self, url: str, timeout: Optional[int] = None) -> ToolResult:
        async def run():
            await self._page.goto(url, timeout=timeout)
        return await self._run_mutating(TraceOp.PAGE_GOTO, {"url": url, "timeout": timeout}, run, "navigate")

    async def go_back(self, timeout: Optional[int] = None) -> ToolResult:
        async def run():
            await self._page.go_back(timeout=timeout)
        return await self._run_mutating(TraceOp.PAGE_GO_BACK, {"timeout": timeout}, run, "navigate")

    async def reload(self, timeout: Optional[int] = None) -> ToolResult:
        async def run():
            await self._page.reload(timeout=timeout)
        return await self._run_mutating(TraceOp.PAGE_RELOAD, {"timeout": timeout}, run, "navigate")

    async def get_info(self) -> ToolResult:
        async def run():
            info: Dict[str, Any] = {"url": self._page.url, "title": await self._page.title()}
            if self.registry is None or not self.workspace_id:
                return info
            _, active_tab = self.registry.resolve_scope(self.workspace_id)
            tabs = await self.registry.list_tabs(self.workspace_id)
            info["tab_id"] = active_tab
            info["tabs"] = [{"tab_id": tab.tab_id, "url": tab.url, "title": tab.title} for tab in tabs]
            return info
        return await self._run(TraceOp.PAGE_GET_INFO, None, run)

    async def snapshot_a11y(self, include_a11y: bool = True, focus_only: bool = False) -> ToolResult:
        """Snapshot the accessibility tree into the cache.

        Returns `{snapshot_id}` plus, when `include_a11y` is set, `a11y`: the
        indexed tree as a JSON string (only the focused subtree when
        `focus_only` is set and a focused node exists).
        """
        args = {"include_a11y": include_a11y, "focus_only": focus_only}

        async def run():
            snapshot_id = str(uuid.uuid4())
            if not include_a11y:
                return {"snapshot_id": snapshot_id}
            tree = await ensure_a11y_tree(self._page, self.cache, self.snapshot_timeout_ms)
            if tree is None:
                raise ToolError("a11y snapshot unreadable", code=ErrorCode.ERR_UNKNOWN)
            if focus_only:
                tree = find_focused_subtree(tree) or tree
            return {"snapshot_id": snapshot_id, "a11y": json.dumps(tree, ensure_ascii=False)}

        return await self._run(TraceOp.PAGE_SNAPSHOT_A11Y, args, run)

    async def screenshot(self, a11y_node_id: Optional[str] = None, full_page: bool = False) -> ToolResult:
        async def run():
            if a11y_node_id:
                locator = await self._adopt(a11y_node_id)
                buffer = await locator.screenshot()
            else:
                buffer = await self._page.screenshot(full_page=full_page)
            return base64.b64encode(buffer).decode("ascii")
        return await self._run(
            TraceOp.PAGE_SCREENSHOT, {"a11y_node_id": a11y_node_id, "full_page": full_page}, run
        )

    async def scroll_to(self, x: float, y: float) -> ToolResult:
        async def run():
            await self._page.evaluate("([x, y]) => window.scrollTo(x, y)", [x, y])
        return await self._run(TraceOp.PAGE_SCROLL_TO, {"x": x, "y": y}, run)

    async def scroll_by(self, direction: str, amount: int) -> ToolResult:
        async def run():
            delta_y = -abs(amount) if direction == "up" else abs(amount)
            await self._page.evaluate("(dy) => window.scrollBy(0, dy)", delta_y)
        return await self._run(TraceOp.PAGE_SCROLL_BY, {"direction": direction, "amount": amount}, run)

    # --- accessibility -----------------------------------------------------

    async def find_by_a11y_hint(self, hint: Dict[str, Optional[str]]) -> ToolResult:
        """Search the cached tree (snapshotting first if empty). Data is a candidate list."""
        async def run():
            tree = await ensure_a11y_tree(self._page, self.cache, self.snapshot_timeout_ms)
            if tree is None:
                return []
            return [candidate.to_dict() for candidate in find_a11y_candidates(tree, hint)]
        return await self._run(TraceOp.A11Y_FIND_BY_HINT, {"hint": hint}, run)

    async def resolve_by_node_id(self, a11y_node_id: str) -> ToolResult:
        async def run():
            await ensure_a11y_tree(self._page, self.cache, self.snapshot_timeout_ms)
            if a11y_node_id not in self.cache.node_map:
                raise ToolError(
                    "a11y node not found",
                    code=ErrorCode.ERR_NOT_FOUND,
                    details={"a11y_node_id": a11y_node_id},
                )
            return {"a11y_node_id": a11y_node_id}
        return await self._run(TraceOp.A11Y_RESOLVE_BY_NODE_ID, {"a11y_node_id": a11y_node_id}, run)

    # --- locator -----------------------------------------------------------

    async def wait_for_visible(self, a11y_node_id: str, timeout: Optional[int] = None) -> ToolResult:
        async def run():
            locator = await self._adopt(a11y_node_id)
            await locator.wait_for(state="visible", timeout=timeout)
        return await self._run(
            TraceOp.LOCATOR_WAIT_FOR_VISIBLE, {"a11y_node_id": a11y_node_id, "timeout": timeout}, run
        )

    async def scroll_into_view(self, a11y_node_id: str, timeout: Optional[int] = None) -> ToolResult:
        async def run():
            locator = await self._adopt(a11y_node_id)
            await locator.scroll_into_view_if_needed(timeout=timeout)
        return await self._run_mutating(
            TraceOp.LOCATOR_SCROLL_INTO_VIEW, {"a11y_node_id": a11y_node_id}, run, "scroll"
        )

    async def click(
        self,
        a11y_node_id: str,
        timeout: Optional[int] = None,
        button: Optional[str] = None,
        click_count: int = 1,
    ) -> ToolResult:
        args = {"a11y_node_id": a11y_node_id, "timeout": timeout, "button": button, "click_count": click_count}

        async def run():
            locator = await self._adopt(a11y_node_id)
            kwargs: Dict[str, Any] = {"timeout": timeout, "click_count": click_count}
            if button:
                kwargs["button"] = button
            await locator.click(**kwargs)

        return await self._run_mutating(TraceOp.LOCATOR_CLICK, args, run, "click")

    async def focus(self, a11y_node_id: str) -> ToolResult:
        async def run():
            locator = await self._adopt(a11y_node_id)
            await locator.focus()
        return await self._run(TraceOp.LOCATOR_FOCUS, {"a11y_node_id": a11y_node_id}, run)

    async def fill(self, a11y_node_id: str, value: str, timeout: Optional[int] = None) -> ToolResult:
        async def run():
            locator = await self._adopt(a11y_node_id)
            await locator.fill(value, timeout=timeout)
        return await self._run_mutating(
            TraceOp.LOCATOR_FILL, {"a11y_node_id": a11y_node_id, "value": value}, run, "input"
        )

    async def type(self, a11y_node_id: str, text: str, delay_ms: Optional[int] = None) -> ToolResult:
        async def run():
            locator = await self._adopt(a11y_node_id)
            await locator.press_sequentially(text, delay=delay_ms)
        return await self._run_mutating(
            TraceOp.LOCATOR_TYPE, {"a11y_node_id": a11y_node_id, "text": text, "delay_ms": delay_ms}, run, "input"
        )

    async def select_option(self, a11y_node_id: str, values: List[str], timeout: Optional[int] = None) -> ToolResult:
        async def run():
            locator = await self._adopt(a11y_node_id)
            return await locator.select_option(values, timeout=timeout)
        return await self._run_mutating(
            TraceOp.LOCATOR_SELECT_OPTION, {"a11y_node_id": a11y_node_id, "values": values}, run, "input"
        )

    async def hover(self, a11y_node_id: str, timeout: Optional[int] = None) -> ToolResult:
        async def run():
            locator = await self._adopt(a11y_node_id)
            await locator.hover(timeout=timeout)
        return await self._run(TraceOp.LOCATOR_HOVER, {"a11y_node_id": a11y_node_id}, run)

    async def drag_drop(
        self,
        source_node_id: str,
        dest_node_id: Optional[str] = None,
        dest_coord: Optional[Dict[str, float]] = None,
    ) -> ToolResult:
        args = {"source_node_id": source_node_id, "dest_node_id": dest_node_id, "dest_coord": dest_coord}

        async def run():
            source = await self._adopt(source_node_id)
            if dest_node_id:
                dest = await self._adopt(dest_node_id)
                await source.drag_to(dest)
                return
            if not dest_coord:
                raise ToolError("missing drag destination", code=ErrorCode.ERR_NOT_FOUND)
            box = await source.bounding_box()
            if not box:
                raise ToolError("source not visible", code=ErrorCode.ERR_NOT_FOUND)
            mouse = self._page.mouse
            await mouse.move(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)
            await mouse.down()
            await mouse.move(dest_coord["x"], dest_coord["y"])
            await mouse.up()

        return await self._run_mutating(TraceOp.LOCATOR_DRAG_DROP, args, run, "drag")

    # --- input devices -----------------------------------------------------

    async def keyboard_press(self, key: str) -> ToolResult:
        async def run():
            await self._page.keyboard.press(key)
        return await self._run_mutating(TraceOp.KEYBOARD_PRESS, {"key": key}, run, "keyboard")

    async def mouse_action(
        self,
        action: str,
        x: float,
        y: float,
        delta_y: Optional[float] = None,
        button: Optional[str] = None,
    ) -> ToolResult:
        """Move to (x, y), then press, release or wheel as requested."""
        args = {"action": action, "x": x, "y": y, "delta_y": delta_y, "button": button}

        async def run():
            mouse = self._page.mouse
            await mouse.move(x, y)
            if action == "down":
                await mouse.down(button=button or "left")
            elif action == "up":
                await mouse.up(button=button or "left")
            elif action == "wheel":
                await mouse.wheel(0, delta_y or 0)

        result = await self._run(TraceOp.MOUSE_ACTION, args, run)
        if result.ok and action in ("down", "up"):
            invalidate_a11y_cache(self.cache, "mouse", self.ctx.tags)
        return result
