"""Adapter-owned default-resolution state."""
import asyncio
from typing import Optional

from rpa_agent.runtime.page_registry import PageRegistry


class AgentSession:
    """Holds the "active workspace" for one adapter.

    The registry never falls back to an implicit workspace; adapters that
    want default resolution (the command router, the CLI) keep it here.
    """

    def __init__(self, page_registry: PageRegistry):
        self.page_registry = page_registry
        self._active_workspace_id: Optional[str] = None
        self._create_lock = asyncio.Lock()

    @property
    def active_workspace_id(self) -> Optional[str]:
        """The active workspace, or None if it was never set or has since been removed."""
        if self._active_workspace_id and not self.page_registry.has_workspace(self._active_workspace_id):
            self._active_workspace_id = None
        return self._active_workspace_id

    def set_active_workspace(self, workspace_id: Optional[str]) -> None:
        self._active_workspace_id = workspace_id

    def adopt_if_unset(self, workspace_id: str) -> None:
        """Make `workspace_id` active unless another live workspace already is."""
        if self.active_workspace_id is None:
            self._active_workspace_id = workspace_id

    async def ensure_active_workspace(self) -> str:
        """Return the active workspace, creating and adopting one if none is active.

        Concurrent callers that find no active workspace share the single
        workspace created by the first of them.
        """
        workspace_id = self.active_workspace_id
        if workspace_id:
            return workspace_id
        async with self._create_lock:
            workspace_id = self.active_workspace_id
            if workspace_id:
                return workspace_id
            workspace_id, _ = await self.page_registry.create_workspace()
            self._active_workspace_id = workspace_id
            return workspace_id

    def resolve_workspace_id(self, workspace_id: Optional[str] = None) -> Optional[str]:
        """Explicit id first, then the active one."""
        return workspace_id or self.active_workspace_id
