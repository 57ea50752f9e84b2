"""RPA Agent - accessibility-addressed browser automation over MCP, commands and scripts."""

__version__ = "0.1.0"
