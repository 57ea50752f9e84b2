"""Helpers that render errors into the result envelopes used by every adapter."""
import functools
import json
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from rpa_agent.constants import ErrorCode
from rpa_agent.exceptions import AgentError
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.error_handling")

F = TypeVar("F", bound=Callable[..., Awaitable[Dict[str, Any]]])


def format_error(
    code: Union[ErrorCode, str],
    message: str,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    """Build the `{code, message, details?}` error dict.

    Args:
        code: Taxonomy code
        message: Human-readable error message
        details: Extra diagnostic payload, omitted when None

    Returns:
        Error dict
    """
    error: Dict[str, Any] = {
        "code": code.value if isinstance(code, ErrorCode) else str(code),
        "message": message,
    }
    if details is not None:
        error["details"] = details
    return error


def error_from_exception(exc: BaseException) -> Dict[str, Any]:
    """Convert any exception into an error dict, keeping AgentError codes."""
    if isinstance(exc, AgentError):
        return format_error(exc.code, exc.message, exc.details)
    return format_error(ErrorCode.ERR_UNKNOWN, str(exc) or exc.__class__.__name__)


def format_tool_content(payload: Any, is_error: bool) -> Dict[str, Any]:
    """Wrap a payload as an MCP tool result: `{content:[{type:"text", text}], isError}`."""
    return {
        "content": [{"type": "text", "text": json.dumps(payload, ensure_ascii=False, default=str)}],
        "isError": is_error,
    }


def with_error_handling(func: F) -> F:
    """Decorator for command handlers.

    Registry failures and other AgentErrors raised by the wrapped coroutine
    become `{ok: False, error}` envelopes. Unexpected exceptions are logged
    with their traceback and reported as ERR_UNKNOWN.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except AgentError as e:
            logger.warning(f"{func.__name__} failed: {e.message}", code=e.code)
            return {"ok": False, "error": e.to_dict()}
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            return {"ok": False, "error": error_from_exception(e)}

    return wrapper  # type: ignore[return-value]
