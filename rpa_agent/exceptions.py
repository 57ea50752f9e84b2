"""Exception hierarchy for the RPA agent.

Inside the trace layer exceptions are classified into result envelopes and
never escape. Registry and scheduler failures are raised as hard errors
because they indicate a caller passed an unknown workspace, tab or token.
"""
from typing import Any, Dict, Optional, Union

from rpa_agent.constants import ErrorCode


class AgentError(Exception):
    """Base error carrying a taxonomy code and optional details."""

    code: str = ErrorCode.ERR_UNKNOWN.value

    def __init__(
        self,
        message: str,
        code: Optional[Union[ErrorCode, str]] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code.value if isinstance(code, ErrorCode) else str(code)
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Render the error as a `{code, message, details?}` dict."""
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ToolError(AgentError):
    """Raised inside a trace operation; its code survives classification."""

    phase = "trace"

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["phase"] = self.phase
        return payload


class ToolInputError(AgentError):
    """Arguments were rejected before any page operation ran."""

    code = ErrorCode.ERR_BAD_ARGS.value


class RegistryError(AgentError):
    """Base for hard failures raised by the workspace/tab registry."""

    code = ErrorCode.ERR_NOT_FOUND.value


class WorkspaceNotFoundError(RegistryError):
    def __init__(self, workspace_id: str):
        super().__init__(f"workspace not found: {workspace_id}", details={"workspace_id": workspace_id})
        self.workspace_id = workspace_id


class TabNotFoundError(RegistryError):
    def __init__(self, workspace_id: str, tab_id: str):
        super().__init__(
            f"tab not found: {tab_id}",
            details={"workspace_id": workspace_id, "tab_id": tab_id},
        )
        self.workspace_id = workspace_id
        self.tab_id = tab_id


class TokenNotFoundError(RegistryError):
    def __init__(self, tab_token: str):
        super().__init__(f"tab token not found: {tab_token}", details={"tab_token": tab_token})
        self.tab_token = tab_token


class BrowserNotStartedError(AgentError):
    """The browser context was used before `start()` or after `close()`."""

    code = ErrorCode.ERR_INTERNAL.value
