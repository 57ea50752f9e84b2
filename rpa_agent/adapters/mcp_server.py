"""MCP adapter: `tools/list` and `tools/call` over stdio."""
from typing import Any, Dict, List, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from rpa_agent import __version__
from rpa_agent.adapters.tool_registry import ToolRegistry, get_tool_specs
from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.runtime.session import AgentSession
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.adapters.mcp")


class ToolCallError(Exception):
    """Raised from the call handler so the server answers with `isError: true`.

    The message is the JSON error text of the failed step.
    """


def create_mcp_server(tools: ToolRegistry, name: str = "rpa-agent") -> Server:
    """Build a low-level MCP server whose tools are the step kinds."""
    server: Server = Server(name, version=__version__)
    specs = get_tool_specs()

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return [
            types.Tool(name=spec.name, description=spec.description, inputSchema=spec.input_schema)
            for spec in specs
        ]

    # Arguments are validated by the step models so failures carry ERR_BAD_ARGS.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
        result = await tools.execute_tool(name, arguments or {})
        text = result["content"][0]["text"]
        if result["isError"]:
            raise ToolCallError(text)
        return [types.TextContent(type="text", text=text)]

    return server


async def serve_stdio(deps: AgentDeps, session: Optional[AgentSession] = None) -> None:
    """Serve MCP on stdin/stdout until the client disconnects."""
    tools = ToolRegistry(deps, session)
    server = create_mcp_server(tools, deps.config.server.name)
    logger.info(f"MCP server '{deps.config.server.name}' listening on stdio", emoji_key="server")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())
