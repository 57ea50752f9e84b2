"""Utility functions for the RPA agent."""
from rpa_agent.utils.logging import console, get_logger, logger

__all__ = ["console", "get_logger", "logger"]
