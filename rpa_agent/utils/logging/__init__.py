"""Rich-based logging for the RPA agent."""
from rpa_agent.utils.logging.console import console
from rpa_agent.utils.logging.logger import (
    AgentLogger,
    critical,
    debug,
    error,
    get_logger,
    info,
    logger,
    set_level,
    success,
    warning,
)

__all__ = [
    "AgentLogger",
    "console",
    "critical",
    "debug",
    "error",
    "get_logger",
    "info",
    "logger",
    "set_level",
    "success",
    "warning",
]
