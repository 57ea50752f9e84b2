"""Entry points onto the step engine: MCP tools, WebSocket commands, recording replay and scripts."""
