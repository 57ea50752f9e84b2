"""Binds live pages to TraceTools instances, keyed by tab token.

This layer owns no browser resources and executes no actions. It only
guarantees that each tab has at most one TraceTools binding, tagged with
its workspace and token, and that the binding disappears with its page.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from playwright.async_api import Page

from rpa_agent.config import RunnerConfig
from rpa_agent.runtime.page_registry import PageRegistry
from rpa_agent.trace.tools import TraceTools
from rpa_agent.trace.types import TraceHooks, TraceSink, TraceTags
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.runtime.bindings")


@dataclass
class PageBinding:
    """A tab's page together with the TraceTools (and a11y cache) bound to it.

    `meta` is scratch space for auxiliary per-page state (for example a
    recorder-installed flag). It lives exactly as long as the binding.
    """
    workspace_id: str
    tab_id: str
    tab_token: str
    page: Page
    tools: TraceTools
    meta: Dict[str, Any] = field(default_factory=dict)


class RuntimeRegistry:
    """Produces and caches PageBindings on top of a PageRegistry."""

    def __init__(
        self,
        page_registry: PageRegistry,
        trace_sinks: Optional[Sequence[TraceSink]] = None,
        trace_hooks: Optional[TraceHooks] = None,
        config: Optional[RunnerConfig] = None,
    ):
        self.page_registry = page_registry
        self.trace_sinks: List[TraceSink] = list(trace_sinks or [])
        self.trace_hooks = trace_hooks or TraceHooks()
        self.config = config or RunnerConfig()
        self._bindings: Dict[str, PageBinding] = {}
        page_registry.on_token_closed(self._drop_binding)

    def _drop_binding(self, tab_token: str) -> None:
        if self._bindings.pop(tab_token, None) is not None:
            logger.debug("Binding removed", emoji_key="tab", tab_token=tab_token)

    def bind_page(self, page: Page, tab_token: str) -> PageBinding:
        """Return the binding for `tab_token`, creating or replacing it.

        Binding the same page again returns the existing binding, with its
        tools re-attached to that page; a different page for the same token
        gets a fresh TraceTools instance.

        Raises:
            TokenNotFoundError: the token is not registered.
        """
        workspace_id, tab_id = self.page_registry.resolve_scope_from_token(tab_token)
        existing = self._bindings.get(tab_token)
        if existing is not None and existing.page is page:
            # Tab operations may have moved the tools to a sibling tab's page.
            existing.tools.attach_page(page)
            return existing

        observability = self.config.observability
        tools = TraceTools(
            page,
            registry=self.page_registry,
            workspace_id=workspace_id,
            sinks=self.trace_sinks,
            hooks=self.trace_hooks,
            tags=TraceTags(workspace_id=workspace_id, tab_token=tab_token),
            enabled=observability.trace_enabled,
            snapshot_timeout_ms=self.config.wait_policy.a11y_snapshot_timeout_ms,
        )
        binding = PageBinding(
            workspace_id=workspace_id,
            tab_id=tab_id,
            tab_token=tab_token,
            page=page,
            tools=tools,
        )
        self._bindings[tab_token] = binding

        def handle_close(_page: Page) -> None:
            # Only the binding still holding this page may be dropped.
            current = self._bindings.get(tab_token)
            if current is not None and current.page is page:
                self._drop_binding(tab_token)

        page.on("close", handle_close)
        logger.debug("Page bound to trace tools", emoji_key="trace", workspace_id=workspace_id, tab_token=tab_token)
        return binding

    async def ensure_active_page(self, workspace_id: str) -> PageBinding:
        """Return a binding for the workspace's active tab.

        A workspace that does not exist is created under the requested id,
        and a workspace without an active tab gets a new one.
        """
        page = await self.page_registry.resolve_page(workspace_id)
        tab_token = self.page_registry.resolve_tab_token(workspace_id)
        return self.bind_page(page, tab_token)

    def set_active_tab(self, workspace_id: str, tab_id: str) -> None:
        self.page_registry.set_active_tab(workspace_id, tab_id)
