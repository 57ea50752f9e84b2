"""Per-workspace FIFO serialization with a global concurrency bound."""
import asyncio
from typing import Awaitable, Callable, Dict, TypeVar

from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.runtime.scheduler")

T = TypeVar("T")


class WorkspaceScheduler:
    """Runs coroutines one at a time per workspace, at most `max_concurrent` overall.

    Each workspace keeps only the future of its most recently submitted task.
    A new task waits for that tail (whatever its outcome), then for a slot of
    the shared semaphore. The tail entry is removed once the last queued task
    of a workspace finishes, so idle workspaces cost nothing.
    """

    def __init__(self, max_concurrent: int = 2):
        if max_concurrent <= 0:
            logger.warning(f"Invalid max_concurrent ({max_concurrent}), defaulting to 1.", emoji_key="scheduler")
            max_concurrent = 1
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tails: Dict[str, asyncio.Future] = {}

    def pending_workspaces(self) -> int:
        """Number of workspaces with a running or queued task."""
        return len(self._tails)

    async def run(self, workspace_id: str, task_factory: Callable[[], Awaitable[T]]) -> T:
        """Queue `task_factory()` behind earlier tasks of the same workspace and await it.

        Exceptions raised by the task propagate to this caller only; the next
        queued task still runs.
        """
        loop = asyncio.get_running_loop()
        previous = self._tails.get(workspace_id)
        done: asyncio.Future = loop.create_future()
        self._tails[workspace_id] = done

        def release(_: object = None) -> None:
            if not done.done():
                done.set_result(None)
            if self._tails.get(workspace_id) is done:
                del self._tails[workspace_id]

        try:
            if previous is not None:
                await asyncio.shield(previous)
        except asyncio.CancelledError:
            # Keep the chain intact: successors still wait for our predecessor.
            if previous.done():
                release()
            else:
                previous.add_done_callback(release)
            raise

        try:
            async with self._semaphore:
                return await task_factory()
        finally:
            release()
