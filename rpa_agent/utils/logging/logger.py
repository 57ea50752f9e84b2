"""Enhanced logging using Rich."""
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Union

from rich.logging import RichHandler
from rich.markup import escape

from rpa_agent.constants import EMOJI_MAP
from rpa_agent.utils.logging.console import console

# Keys passed straight through to the stdlib logger instead of being rendered as context.
_PASSTHROUGH_KWARGS = ("exc_info", "stack_info")


class AgentLogger:
    """Logger with Rich formatting, emojis and key=value context."""

    def __init__(self, name: str, level: Union[str, int, None] = None):
        """Initialize the logger.

        Args:
            name: Logger name
            level: Log level, defaults to the configured level
        """
        # Imported here so config loading never depends on logging setup.
        from rpa_agent.config import get_config

        log_config = get_config().logging
        self.name = name
        self.emoji_enabled = log_config.emoji_enabled

        self.console = console
        rich_handler = RichHandler(
            console=self.console,
            rich_tracebacks=True,
            markup=True,
            show_time=log_config.show_timestamps,
            show_path=False,
            enable_link_path=False,
        )

        handlers: list = [rich_handler]
        if log_config.file:
            log_path = Path(log_config.file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))
            handlers.append(file_handler)

        self.logger = logging.getLogger(name)

        level = level or log_config.level
        if isinstance(level, str):
            level = getattr(logging, level.upper(), logging.INFO)
        self.logger.setLevel(level)

        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
        for handler in handlers:
            self.logger.addHandler(handler)
        # Every AgentLogger has its own handlers; parents must not print the record again.
        self.logger.propagate = False

    def _format_message(
        self,
        message: str,
        emoji_key: Optional[str] = None,
        style: Optional[str] = None,
        **kwargs: Any,
    ) -> str:
        """Format a log message with emoji and key=value context.

        The message and context values are escaped, so text coming from
        clients is never parsed as Rich markup.

        Args:
            message: The log message
            emoji_key: Key for emoji lookup
            style: Theme style wrapped around the message
            **kwargs: Additional context data to include

        Returns:
            Formatted message
        """
        emoji = ""
        if self.emoji_enabled and emoji_key and emoji_key in EMOJI_MAP:
            emoji = f"{EMOJI_MAP[emoji_key]} "

        text = escape(message)
        if style:
            text = f"[{style}]{text}[/{style}]"
        formatted_message = f"{emoji}{text}"

        if kwargs:
            context_pairs = []
            for key, value in kwargs.items():
                if not isinstance(value, (int, float)):
                    value = escape(str(value))
                if key in ("duration_ms", "ms") and isinstance(value, (int, float)):
                    context_pairs.append(f"[time]{key}={value:.0f}[/time]")
                elif key == "workspace_id":
                    context_pairs.append(f"[workspace]{key}={value}[/workspace]")
                elif key in ("tab_id", "tab_token"):
                    context_pairs.append(f"[tab]{key}={value}[/tab]")
                elif key == "op":
                    context_pairs.append(f"[op]op={value}[/op]")
                else:
                    context_pairs.append(f"{key}={value}")
            formatted_message = f"{formatted_message} " + " ".join(context_pairs)

        return formatted_message

    def _log(
        self,
        level: int,
        message: str,
        emoji_key: Optional[str],
        kwargs: dict,
        style: Optional[str] = None,
    ) -> None:
        passthrough = {key: kwargs.pop(key) for key in _PASSTHROUGH_KWARGS if key in kwargs}
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(level, self._format_message(message, emoji_key, style, **kwargs), **passthrough)

    def debug(self, message: str, emoji_key: Optional[str] = "debug", **kwargs: Any) -> None:
        """Log a debug message."""
        self._log(logging.DEBUG, message, emoji_key, kwargs)

    def info(self, message: str, emoji_key: Optional[str] = "info", **kwargs: Any) -> None:
        """Log an info message."""
        self._log(logging.INFO, message, emoji_key, kwargs)

    def warning(self, message: str, emoji_key: Optional[str] = "warning", **kwargs: Any) -> None:
        """Log a warning message."""
        self._log(logging.WARNING, message, emoji_key, kwargs)

    def error(self, message: str, emoji_key: Optional[str] = "error", **kwargs: Any) -> None:
        """Log an error message."""
        self._log(logging.ERROR, message, emoji_key, kwargs)

    def critical(self, message: str, emoji_key: Optional[str] = "critical", **kwargs: Any) -> None:
        """Log a critical message."""
        self._log(logging.CRITICAL, message, emoji_key, kwargs)

    def success(self, message: str, emoji_key: Optional[str] = "success", **kwargs: Any) -> None:
        """Log a success message (info level with success styling)."""
        self._log(logging.INFO, message, emoji_key, kwargs, style="success")

    def log(self, level: Union[str, int], message: str, emoji_key: Optional[str] = None, **kwargs: Any) -> None:
        """Log at a level given by name, as configured for step telemetry."""
        if isinstance(level, str):
            level = getattr(logging, level.upper(), logging.INFO)
        self._log(level, message, emoji_key, kwargs)


@lru_cache(maxsize=64)
def get_logger(name: str) -> AgentLogger:
    """Get a cached AgentLogger by name."""
    return AgentLogger(name)


logger = get_logger("rpa_agent")


def debug(message: str, **kwargs: Any) -> None:
    logger.debug(message, **kwargs)


def info(message: str, **kwargs: Any) -> None:
    logger.info(message, **kwargs)


def success(message: str, **kwargs: Any) -> None:
    logger.success(message, **kwargs)


def warning(message: str, **kwargs: Any) -> None:
    logger.warning(message, **kwargs)


def error(message: str, **kwargs: Any) -> None:
    logger.error(message, **kwargs)


def critical(message: str, **kwargs: Any) -> None:
    logger.critical(message, **kwargs)


def set_level(level: Union[str, int]) -> None:
    """Change the level of every logger created so far (e.g. from a CLI flag)."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    for name, candidate in logging.Logger.manager.loggerDict.items():
        if name.startswith("rpa_agent") and isinstance(candidate, logging.Logger):
            candidate.setLevel(level)
