"""
Graceful shutdown utilities for the RPA agent.

Signals only request shutdown by setting an event; the serving coroutine
returns, and the registered handlers (closing the browser, flushing sinks)
then run in reverse registration order.
"""

import asyncio
import signal
import sys
from typing import Callable, List, Optional

from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.shutdown")

# Track registered shutdown handlers and state
_shutdown_handlers: List[Callable] = []
_shutdown_in_progress = False


def register_shutdown_handler(handler: Callable) -> None:
    """Register a function to be called during graceful shutdown.

    Args:
        handler: Async or sync callable to execute during shutdown
    """
    if handler not in _shutdown_handlers:
        _shutdown_handlers.append(handler)
        logger.debug(f"Registered shutdown handler: {getattr(handler, '__name__', handler)}", emoji_key="shutdown")


def remove_shutdown_handler(handler: Callable) -> None:
    """Remove a previously registered shutdown handler."""
    if handler in _shutdown_handlers:
        _shutdown_handlers.remove(handler)


def is_shutting_down() -> bool:
    return _shutdown_in_progress


def reset_shutdown_state() -> None:
    """Forget handlers and the in-progress flag (used between test runs)."""
    global _shutdown_in_progress
    _shutdown_handlers.clear()
    _shutdown_in_progress = False


async def run_shutdown_handlers() -> None:
    """Execute every registered handler, newest first.

    A failing handler is logged and does not prevent the remaining ones
    from running.
    """
    for handler in reversed(list(_shutdown_handlers)):
        name = getattr(handler, "__name__", repr(handler))
        try:
            outcome = handler()
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Error in shutdown handler {name}: {e}", emoji_key="shutdown", exc_info=True)
    logger.info("Shutdown handlers completed", emoji_key="shutdown")


def _request_shutdown(sig_name: str, stop_event: asyncio.Event) -> None:
    global _shutdown_in_progress

    if _shutdown_in_progress:
        logger.warning(f"Received {sig_name} while shutdown in progress - forcing exit", emoji_key="shutdown")
        sys.exit(1)

    _shutdown_in_progress = True
    logger.info(f"Received {sig_name} signal. Initiating graceful shutdown...", emoji_key="shutdown")
    stop_event.set()


def setup_signal_handlers(stop_event: asyncio.Event, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    """Set up SIGINT/SIGTERM handlers that set `stop_event`.

    Args:
        stop_event: Event the serving coroutine waits on
        loop: Event loop to register on; defaults to the running loop
    """
    if loop is None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Cannot set up signal handlers - no running asyncio loop", emoji_key="shutdown")
            return

    for sig_name, sig_num in [("SIGINT", signal.SIGINT), ("SIGTERM", signal.SIGTERM)]:
        try:
            loop.add_signal_handler(sig_num, _request_shutdown, sig_name, stop_event)
            logger.debug(f"Registered {sig_name} handler for graceful shutdown", emoji_key="shutdown")
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(
                sig_num,
                lambda _s, _f, name=sig_name: loop.call_soon_threadsafe(_request_shutdown, name, stop_event),
            )
            logger.debug(f"Registered {sig_name} handler via signal module", emoji_key="shutdown")
