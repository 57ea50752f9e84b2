"""WebSocket endpoint for the command router (aiohttp)."""
import asyncio
from typing import Optional, Set

from aiohttp import WSMsgType, web

from rpa_agent.adapters.commands import CommandRouter
from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.runtime.session import AgentSession
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.adapters.ws")


class CommandSocketServer:
    """Serves `CommandRouter` on `ws://host:port/path`.

    Each inbound message is handled in its own task so a long command (a
    replay, say) does not block `record.stopReplay` on the same socket.
    Replies carry the command's `request_id` for correlation.
    """

    def __init__(self, router: CommandRouter, path: str = "/ws"):
        self.router = router
        self.path = path
        self.app = web.Application()
        self.app.router.add_get(path, self.handle_ws)
        self._tasks: Set[asyncio.Task] = set()

    async def _answer(self, ws: web.WebSocketResponse, send_lock: asyncio.Lock, data: str) -> None:
        reply = await self.router.handle(data)
        if ws.closed:
            logger.debug("Socket closed before reply", emoji_key="response", request_id=reply.get("request_id"))
            return
        async with send_lock:
            await ws.send_json(reply)

    async def handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=20)
        await ws.prepare(request)
        send_lock = asyncio.Lock()
        logger.info("Client connected", emoji_key="server", remote=request.remote)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    task = asyncio.create_task(self._answer(ws, send_lock, msg.data))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket error: {ws.exception()}", emoji_key="server")
        finally:
            logger.info("Client disconnected", emoji_key="server", remote=request.remote)
        return ws

    async def drain(self) -> None:
        """Cancel in-flight commands and wait for them to unwind."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def create_ws_app(deps: AgentDeps, session: Optional[AgentSession] = None) -> web.Application:
    """Build the aiohttp application exposing the command socket."""
    router = CommandRouter(deps, session)
    return CommandSocketServer(router, deps.config.server.ws_path).app


async def serve_ws(
    deps: AgentDeps,
    session: Optional[AgentSession] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Serve the command socket until `stop_event` is set (or forever)."""
    server_config = deps.config.server
    server = CommandSocketServer(CommandRouter(deps, session), server_config.ws_path)
    runner = web.AppRunner(server.app)
    await runner.setup()
    site = web.TCPSite(runner, server_config.ws_host, server_config.ws_port)
    await site.start()
    logger.success(
        f"Command socket listening on ws://{server_config.ws_host}:{server_config.ws_port}{server_config.ws_path}",
        emoji_key="server",
    )
    stop_event = stop_event or asyncio.Event()
    try:
        await stop_event.wait()
    finally:
        await server.drain()
        await runner.cleanup()
        logger.info("Command socket closed", emoji_key="shutdown")
