"""Workspace / tab / page registry.

Maps opaque tab tokens to (workspace, tab) pairs and owns the page handle of
every tab. A token is also written into the page's sessionStorage, so a page
that reloads, or one opened outside the registry, can be re-identified.

The registry holds no "active workspace" pointer; default resolution is the
job of `AgentSession`. Every operation that takes a workspace id requires it.
"""
import asyncio
import json
import time
import uuid
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from playwright.async_api import BrowserContext, Page

from rpa_agent.config import RegistryConfig
from rpa_agent.constants import TAB_TOKEN_KEY
from rpa_agent.exceptions import TabNotFoundError, TokenNotFoundError, WorkspaceNotFoundError
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.runtime.page_registry")

Scope = Tuple[str, str]
TokenClosedListener = Callable[[str], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class WorkspaceTab:
    tab_id: str
    tab_token: str
    page: Page
    created_at: int = field(default_factory=_now_ms)
    updated_at: int = field(default_factory=_now_ms)


@dataclass
class Workspace:
    id: str
    tabs: Dict[str, WorkspaceTab] = field(default_factory=dict)
    active_tab_id: Optional[str] = None
    created_at: int = field(default_factory=_now_ms)
    updated_at: int = field(default_factory=_now_ms)

    def touch(self) -> None:
        self.updated_at = _now_ms()


@dataclass
class WorkspaceInfo:
    workspace_id: str
    active_tab_id: Optional[str]
    tab_count: int
    created_at: int
    updated_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workspace_id": self.workspace_id,
            "active_tab_id": self.active_tab_id,
            "tab_count": self.tab_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class TabInfo:
    tab_id: str
    url: str
    title: str
    active: bool
    created_at: int
    updated_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tab_id": self.tab_id,
            "url": self.url,
            "title": self.title,
            "active": self.active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _token_init_script(token: str) -> str:
    return f"sessionStorage.setItem({json.dumps(TAB_TOKEN_KEY)}, {json.dumps(token)});"


class PageRegistry:
    """Owns workspaces, their tabs and the token maps.

    Args:
        context_manager: Object with `get_context()` and `new_page()` coroutines.
        config: Token polling settings.
    """

    def __init__(self, context_manager: Any, config: Optional[RegistryConfig] = None):
        self.context_manager = context_manager
        self.config = config or RegistryConfig()
        self._workspaces: Dict[str, Workspace] = {}
        self._token_to_page: Dict[str, Page] = {}
        self._token_to_tab: Dict[str, Scope] = {}
        self._token_closed_listeners: List[TokenClosedListener] = []
        self._watched_pages: "weakref.WeakSet[Page]" = weakref.WeakSet()

    # --- listeners ---------------------------------------------------------

    def on_token_closed(self, listener: TokenClosedListener) -> None:
        """Call `listener(tab_token)` whenever a bound page closes."""
        self._token_closed_listeners.append(listener)

    def _notify_token_closed(self, token: str) -> None:
        for listener in self._token_closed_listeners:
            try:
                listener(token)
            except Exception as e:
                logger.warning(f"Token-closed listener failed: {e}", tab_token=token)

    # --- token plumbing ----------------------------------------------------

    async def _read_token(self, page: Page) -> Optional[str]:
        return await page.evaluate("(key) => sessionStorage.getItem(key)", TAB_TOKEN_KEY)

    async def wait_for_token(
        self, page: Page, attempts: Optional[int] = None, interval_ms: Optional[int] = None
    ) -> Optional[str]:
        """Poll the page's sessionStorage for its token; None when the budget runs out."""
        attempts = self.config.token_poll_attempts if attempts is None else attempts
        interval_ms = self.config.token_poll_interval_ms if interval_ms is None else interval_ms
        for _ in range(attempts):
            if page.is_closed():
                return None
            try:
                token = await self._read_token(page)
            except Exception as e:
                # Evaluation fails while the page is mid-navigation; keep polling.
                logger.debug(f"Token read failed, retrying: {e}")
                token = None
            if token:
                return token
            await asyncio.sleep(interval_ms / 1000)
        return None

    async def _ensure_token_on_page(self, page: Page, token: str) -> None:
        try:
            await page.evaluate(
                "([key, token]) => sessionStorage.setItem(key, token)", [TAB_TOKEN_KEY, token]
            )
        except Exception as e:
            # about:blank and some error pages have no sessionStorage; the init script covers later loads.
            logger.debug(f"Could not write tab token into page: {e}", tab_token=token)

    async def _open_tokened_page(self) -> Tuple[Page, str]:
        page = await self.context_manager.new_page()
        token = _new_id()
        await page.add_init_script(script=_token_init_script(token))
        await self._ensure_token_on_page(page, token)
        return page, token

    def _attach_tab(self, workspace: Workspace, tab_id: str, token: str, page: Page) -> WorkspaceTab:
        tab = WorkspaceTab(tab_id=tab_id, tab_token=token, page=page)
        workspace.tabs[tab_id] = tab
        workspace.active_tab_id = workspace.active_tab_id or tab_id
        workspace.touch()
        self._token_to_page[token] = page
        self._token_to_tab[token] = (workspace.id, tab_id)
        return tab

    def _create_workspace_internal(self, token: str, page: Page, workspace_id: Optional[str] = None) -> Scope:
        workspace = Workspace(id=workspace_id or _new_id())
        tab_id = _new_id()
        self._attach_tab(workspace, tab_id, token, page)
        self._workspaces[workspace.id] = workspace
        logger.info("Workspace created", emoji_key="workspace", workspace_id=workspace.id, tab_id=tab_id)
        return workspace.id, tab_id

    def _watch_close(self, page: Page) -> None:
        """Listen for the page closing once; re-binds reuse the same listener."""
        if page in self._watched_pages:
            return
        self._watched_pages.add(page)

        def handle_close(_page: Page) -> None:
            for token in [t for t, bound in self._token_to_page.items() if bound is page]:
                self._purge_token(token)
                self._notify_token_closed(token)

        page.on("close", handle_close)

    def _purge_token(self, token: str) -> None:
        self._token_to_page.pop(token, None)
        scope = self._token_to_tab.pop(token, None)
        if scope is None:
            return
        workspace = self._workspaces.get(scope[0])
        if workspace is None:
            return
        workspace.tabs.pop(scope[1], None)
        if workspace.active_tab_id == scope[1]:
            workspace.active_tab_id = next(iter(workspace.tabs), None)
        workspace.touch()
        logger.info("Tab closed", emoji_key="tab", workspace_id=scope[0], tab_id=scope[1])

    # --- binding -----------------------------------------------------------

    async def bind_page(self, page: Page, hinted_token: Optional[str] = None) -> Optional[str]:
        """Register (or refresh) the mapping for a live page and return its token.

        The token is `hinted_token` or the one found in the page's
        sessionStorage. An unknown token gets a brand-new workspace. Returns
        None when no token can be determined within the polling budget.
        """
        if page.is_closed():
            return None
        token = hinted_token or await self.wait_for_token(page)
        if not token:
            return None

        self._token_to_page[token] = page
        scope = self._token_to_tab.get(token)
        if scope is None:
            self._create_workspace_internal(token, page)
        else:
            workspace = self._workspaces.get(scope[0])
            tab = workspace.tabs.get(scope[1]) if workspace else None
            if workspace and tab:
                tab.page = page
                tab.updated_at = _now_ms()
                workspace.touch()

        self._watch_close(page)
        logger.debug("Page bound", emoji_key="tab", tab_token=token, url=page.url)
        return token

    async def rebuild_token_map(self) -> None:
        """Re-discover tokens from every page of the live context."""
        context: BrowserContext = await self.context_manager.get_context()
        for page in context.pages:
            token = await self.wait_for_token(page, attempts=3, interval_ms=100)
            if not token:
                continue
            self._token_to_page[token] = page
            if token not in self._token_to_tab:
                self._create_workspace_internal(token, page)
            self._watch_close(page)

    async def get_page(self, tab_token: str, url_hint: Optional[str] = None) -> Page:
        """Return the live page for a token, reopening one bound to the same token if it closed."""
        if not tab_token:
            raise TokenNotFoundError(tab_token)
        page = self._token_to_page.get(tab_token)
        if page is not None and not page.is_closed():
            return page

        await self.rebuild_token_map()
        page = self._token_to_page.get(tab_token)
        if page is not None and not page.is_closed():
            return page

        page = await self.context_manager.new_page()
        await page.add_init_script(script=_token_init_script(tab_token))
        if url_hint:
            await page.goto(url_hint, wait_until="domcontentloaded")
        await self._ensure_token_on_page(page, tab_token)
        await self.bind_page(page, tab_token)
        return page

    def cleanup(self, tab_token: Optional[str] = None) -> None:
        """Forget one token, or everything when no token is given. Pages are not closed."""
        if tab_token is None:
            self._token_to_page.clear()
            self._token_to_tab.clear()
            self._workspaces.clear()
            return
        self._purge_token(tab_token)

    # --- workspaces --------------------------------------------------------

    def has_workspace(self, workspace_id: Optional[str]) -> bool:
        return bool(workspace_id) and workspace_id in self._workspaces

    def workspace_ids(self) -> List[str]:
        return list(self._workspaces)

    def _get_workspace(self, workspace_id: Optional[str]) -> Workspace:
        workspace = self._workspaces.get(workspace_id) if workspace_id else None
        if workspace is None:
            raise WorkspaceNotFoundError(str(workspace_id))
        return workspace

    async def create_workspace(self, workspace_id: Optional[str] = None) -> Scope:
        """Open a page with a fresh token inside a new workspace.

        Args:
            workspace_id: Id to use instead of a generated one.

        Returns:
            (workspace_id, tab_id)
        """
        if workspace_id and workspace_id in self._workspaces:
            raise ValueError(f"workspace already exists: {workspace_id}")
        page, token = await self._open_tokened_page()
        scope = self._create_workspace_internal(token, page, workspace_id)
        await self.bind_page(page, token)
        return scope

    def list_workspaces(self) -> List[WorkspaceInfo]:
        return [
            WorkspaceInfo(
                workspace_id=workspace.id,
                active_tab_id=workspace.active_tab_id,
                tab_count=len(workspace.tabs),
                created_at=workspace.created_at,
                updated_at=workspace.updated_at,
            )
            for workspace in self._workspaces.values()
        ]

    # --- tabs --------------------------------------------------------------

    async def create_tab(self, workspace_id: str) -> str:
        """Open a new tab in an existing workspace and make it the active tab."""
        workspace = self._get_workspace(workspace_id)
        page, token = await self._open_tokened_page()
        tab_id = _new_id()
        self._attach_tab(workspace, tab_id, token, page)
        workspace.active_tab_id = tab_id
        workspace.touch()
        await self.bind_page(page, token)
        logger.info("Tab created", emoji_key="tab", workspace_id=workspace_id, tab_id=tab_id)
        return tab_id

    async def close_tab(self, workspace_id: str, tab_id: str) -> None:
        """Close a tab's page (running unload handlers) and drop its state.

        A workspace left without tabs is removed. Unknown ids are ignored.
        """
        workspace = self._workspaces.get(workspace_id)
        if workspace is None:
            return
        tab = workspace.tabs.pop(tab_id, None)
        if tab is None:
            return
        self._token_to_page.pop(tab.tab_token, None)
        self._token_to_tab.pop(tab.tab_token, None)
        if not tab.page.is_closed():
            await tab.page.close(run_before_unload=True)
        if workspace.active_tab_id == tab_id:
            workspace.active_tab_id = next(iter(workspace.tabs), None)
        workspace.touch()
        self._notify_token_closed(tab.tab_token)
        logger.info("Tab closed", emoji_key="tab", workspace_id=workspace_id, tab_id=tab_id)
        if not workspace.tabs:
            del self._workspaces[workspace_id]
            logger.info("Workspace removed", emoji_key="workspace", workspace_id=workspace_id)

    def set_active_tab(self, workspace_id: str, tab_id: str) -> None:
        """Make `tab_id` the workspace's active tab; unknown ids are ignored."""
        workspace = self._workspaces.get(workspace_id)
        if workspace is None or tab_id not in workspace.tabs:
            return
        workspace.active_tab_id = tab_id
        workspace.touch()

    async def list_tabs(self, workspace_id: str) -> List[TabInfo]:
        workspace = self._workspaces.get(workspace_id)
        if workspace is None:
            return []
        items = []
        for tab in list(workspace.tabs.values()):
            try:
                title = await tab.page.title()
            except Exception:
                title = ""
            items.append(TabInfo(
                tab_id=tab.tab_id,
                url=tab.page.url,
                title=title,
                active=workspace.active_tab_id == tab.tab_id,
                created_at=tab.created_at,
                updated_at=tab.updated_at,
            ))
        return items

    # --- resolution --------------------------------------------------------

    def resolve_scope(self, workspace_id: Optional[str], tab_id: Optional[str] = None) -> Scope:
        """Resolve an explicit workspace (and optional tab) to (workspace_id, tab_id).

        Raises:
            WorkspaceNotFoundError: the workspace does not exist.
            TabNotFoundError: the tab is not a member, or the workspace has no active tab.
        """
        workspace = self._get_workspace(workspace_id)
        resolved_tab = tab_id or workspace.active_tab_id
        if not resolved_tab or resolved_tab not in workspace.tabs:
            raise TabNotFoundError(workspace.id, str(resolved_tab))
        return workspace.id, resolved_tab

    async def resolve_page(self, workspace_id: Optional[str] = None, tab_id: Optional[str] = None) -> Page:
        """Like `resolve_scope` but always yields a page.

        A missing workspace (or no workspace id at all) is created, and a
        workspace without an active tab gets a new one. An explicit tab id
        that is not a member still raises TabNotFoundError.
        """
        if not workspace_id or workspace_id not in self._workspaces:
            workspace_id, _ = await self.create_workspace(workspace_id)
        workspace = self._workspaces[workspace_id]
        resolved_tab = tab_id or workspace.active_tab_id
        if not resolved_tab:
            resolved_tab = await self.create_tab(workspace_id)
            return workspace.tabs[resolved_tab].page
        tab = workspace.tabs.get(resolved_tab)
        if tab is None:
            raise TabNotFoundError(workspace_id, resolved_tab)
        return tab.page

    def resolve_scope_from_token(self, tab_token: str) -> Scope:
        scope = self._token_to_tab.get(tab_token)
        if scope is None:
            raise TokenNotFoundError(tab_token)
        return scope

    def resolve_tab_token(self, workspace_id: Optional[str], tab_id: Optional[str] = None) -> str:
        workspace_id, tab_id = self.resolve_scope(workspace_id, tab_id)
        return self._workspaces[workspace_id].tabs[tab_id].tab_token
