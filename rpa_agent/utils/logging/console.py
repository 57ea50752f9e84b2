"""Shared Rich console for log output."""
from rich.console import Console
from rich.theme import Theme

RICH_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "red",
    "critical": "red reverse",
    "debug": "dim",
    "success": "green",
    "op": "blue",
    "workspace": "magenta",
    "tab": "bright_magenta",
    "time": "bright_black",
})

# stdout belongs to the MCP stdio transport, so everything human-facing goes to stderr.
console = Console(theme=RICH_THEME, highlight=True, stderr=True)
