"""Command router for the WebSocket protocol.

A command is a JSON envelope `{cmd, tab_token?, scope?, args, request_id?}`
and every reply is `{ok, tab_token, request_id?, data | error}`. Element and
page level work goes through `steps.run`; the remaining commands only manage
workspaces, tabs and recordings.
"""
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rpa_agent.adapters.recording import RecordedEvent, RecordingManager
from rpa_agent.constants import ErrorCode
from rpa_agent.error_handling import format_error, with_error_handling
from rpa_agent.exceptions import ToolInputError
from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.runtime.runtime_registry import PageBinding
from rpa_agent.runtime.session import AgentSession
from rpa_agent.steps.models import parse_steps
from rpa_agent.steps.runner import run_steps
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.adapters.commands")


class CommandScope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workspace_id: Optional[str] = Field(None, alias="workspaceId")
    tab_id: Optional[str] = Field(None, alias="tabId")


class CommandEnvelope(BaseModel):
    """Inbound command. camelCase keys are accepted alongside snake_case."""
    model_config = ConfigDict(populate_by_name=True)

    cmd: str
    tab_token: Optional[str] = Field(None, alias="tabToken")
    scope: Optional[CommandScope] = None
    args: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = Field(None, alias="requestId")


def _issues(error: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(issue.get("loc", ())), "msg": issue.get("msg"), "type": issue.get("type")}
        for issue in error.errors(include_url=False)
    ]


def _arg(args: Dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    """Read an argument under its snake_case or camelCase key."""
    if snake in args:
        return args[snake]
    return args.get(camel, default)


Handler = Callable[[CommandEnvelope], Awaitable[Dict[str, Any]]]


class CommandRouter:
    """Maps command names to handlers and wraps their replies.

    Handlers return `{ok, data}` or `{ok, error}` and may name the tab token
    the reply refers to (for example the token of a tab they created).
    Registry errors raised inside a handler become error replies.
    """

    def __init__(
        self,
        deps: AgentDeps,
        session: Optional[AgentSession] = None,
        recording: Optional[RecordingManager] = None,
    ):
        self.deps = deps
        self.session = session or AgentSession(deps.page_registry)
        self.recording = recording or RecordingManager(deps)
        self.handlers: Dict[str, Handler] = {
            "workspace.list": self.workspace_list,
            "workspace.create": self.workspace_create,
            "workspace.setActive": self.workspace_set_active,
            "tab.list": self.tab_list,
            "tab.create": self.tab_create,
            "tab.close": self.tab_close,
            "tab.setActive": self.tab_set_active,
            "steps.run": self.steps_run,
            "record.start": self.record_start,
            "record.stop": self.record_stop,
            "record.get": self.record_get,
            "record.clear": self.record_clear,
            "record.event": self.record_event,
            "record.replay": self.record_replay,
            "record.stopReplay": self.record_stop_replay,
        }

    # --- entry point -------------------------------------------------------

    async def handle(self, message: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
        """Decode, route and answer one command."""
        if isinstance(message, (str, bytes)):
            try:
                message = json.loads(message)
            except json.JSONDecodeError as e:
                logger.warning(f"Rejected command with invalid JSON: {e}", emoji_key="request")
                return self._reply(None, {"ok": False, "error": format_error(ErrorCode.ERR_BAD_ARGS, "invalid json")})

        try:
            envelope = CommandEnvelope.model_validate(message)
        except ValidationError as e:
            request_id = None
            if isinstance(message, dict):
                request_id = message.get("request_id") or message.get("requestId")
            return self._reply(None, {
                "ok": False,
                "error": format_error(ErrorCode.ERR_BAD_ARGS, "invalid command envelope", _issues(e)),
            }, request_id=request_id)

        handler = self.handlers.get(envelope.cmd)
        if handler is None:
            logger.warning(f"Unsupported command: {envelope.cmd}", emoji_key="request")
            return self._reply(envelope, {
                "ok": False,
                "error": format_error(ErrorCode.ERR_UNSUPPORTED, f"unsupported command: {envelope.cmd}"),
            })

        logger.debug(f"Command {envelope.cmd}", emoji_key="request", request_id=envelope.request_id)
        outcome = await handler(envelope)
        return self._reply(envelope, outcome)

    def _reply(
        self,
        envelope: Optional[CommandEnvelope],
        outcome: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        tab_token = outcome.get("tab_token") or (envelope.tab_token if envelope else None)
        reply: Dict[str, Any] = {"ok": bool(outcome.get("ok")), "tab_token": tab_token}
        request_id = envelope.request_id if envelope else request_id
        if request_id is not None:
            reply["request_id"] = request_id
        if reply["ok"]:
            reply["data"] = outcome.get("data")
        else:
            reply["error"] = outcome.get("error")
        return reply

    # --- resolution --------------------------------------------------------

    def _workspace_id(self, envelope: CommandEnvelope, explicit: Optional[str] = None) -> str:
        """Explicit argument, then scope, then the token's workspace, then the active one."""
        if explicit:
            return explicit
        if envelope.scope and envelope.scope.workspace_id:
            return envelope.scope.workspace_id
        if envelope.tab_token:
            return self.deps.page_registry.resolve_scope_from_token(envelope.tab_token)[0]
        workspace_id = self.session.active_workspace_id
        if not workspace_id:
            raise ToolInputError("workspace not found")
        return workspace_id

    async def _binding(self, envelope: CommandEnvelope) -> PageBinding:
        """Resolve the tab a command addresses, creating a workspace if nothing is active."""
        registry = self.deps.page_registry
        runtime = self.deps.runtime
        scope = envelope.scope
        if scope and scope.workspace_id:
            page = await registry.resolve_page(scope.workspace_id, scope.tab_id)
            token = registry.resolve_tab_token(scope.workspace_id, scope.tab_id)
            return runtime.bind_page(page, token)
        if envelope.tab_token:
            page = await registry.get_page(envelope.tab_token)
            return runtime.bind_page(page, envelope.tab_token)

        workspace_id = await self.session.ensure_active_workspace()
        return await runtime.ensure_active_page(workspace_id)

    async def _open_start_url(self, workspace_id: str, tab_id: str, args: Dict[str, Any]) -> None:
        start_url = _arg(args, "start_url", "startUrl")
        if not start_url:
            return
        wait_until = _arg(args, "wait_until", "waitUntil", "domcontentloaded")
        page = await self.deps.page_registry.resolve_page(workspace_id, tab_id)
        try:
            await page.goto(start_url, wait_until=wait_until)
            await page.bring_to_front()
        except Exception as e:
            # The tab exists either way; a failed first navigation is only reported.
            logger.warning(f"Start URL failed to load: {e}", emoji_key="browser", url=start_url)

    async def _bring_to_front(self, workspace_id: str, tab_id: Optional[str] = None) -> None:
        try:
            page = await self.deps.page_registry.resolve_page(workspace_id, tab_id)
            await page.bring_to_front()
        except Exception as e:
            logger.debug(f"Could not focus tab: {e}", emoji_key="tab", workspace_id=workspace_id)

    # --- workspace commands ------------------------------------------------

    @with_error_handling
    async def workspace_list(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        workspaces = [info.to_dict() for info in self.deps.page_registry.list_workspaces()]
        return {
            "ok": True,
            "data": {"workspaces": workspaces, "active_workspace_id": self.session.active_workspace_id},
        }

    @with_error_handling
    async def workspace_create(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        registry = self.deps.page_registry
        workspace_id, tab_id = await registry.create_workspace()
        token = registry.resolve_tab_token(workspace_id, tab_id)
        self.session.adopt_if_unset(workspace_id)
        await self._open_start_url(workspace_id, tab_id, envelope.args)
        return {
            "ok": True,
            "tab_token": token,
            "data": {"workspace_id": workspace_id, "tab_id": tab_id, "tab_token": token},
        }

    @with_error_handling
    async def workspace_set_active(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        workspace_id = _arg(envelope.args, "workspace_id", "workspaceId")
        if not workspace_id:
            raise ToolInputError("missing workspace_id")
        self.deps.page_registry.resolve_scope(workspace_id)
        self.session.set_active_workspace(workspace_id)
        await self._bring_to_front(workspace_id)
        logger.info("Active workspace changed", emoji_key="workspace", workspace_id=workspace_id)
        return {"ok": True, "data": {"workspace_id": workspace_id}}

    # --- tab commands ------------------------------------------------------

    @with_error_handling
    async def tab_list(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        workspace_id = self._workspace_id(envelope, _arg(envelope.args, "workspace_id", "workspaceId"))
        tabs = await self.deps.page_registry.list_tabs(workspace_id)
        return {"ok": True, "data": {"workspace_id": workspace_id, "tabs": [tab.to_dict() for tab in tabs]}}

    @with_error_handling
    async def tab_create(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        registry = self.deps.page_registry
        workspace_id = self._workspace_id(envelope, _arg(envelope.args, "workspace_id", "workspaceId"))
        tab_id = await registry.create_tab(workspace_id)
        token = registry.resolve_tab_token(workspace_id, tab_id)
        await self._open_start_url(workspace_id, tab_id, envelope.args)
        return {
            "ok": True,
            "tab_token": token,
            "data": {"workspace_id": workspace_id, "tab_id": tab_id, "tab_token": token},
        }

    @with_error_handling
    async def tab_close(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        workspace_id = self._workspace_id(envelope, _arg(envelope.args, "workspace_id", "workspaceId"))
        tab_id = _arg(envelope.args, "tab_id", "tabId")
        if not tab_id:
            raise ToolInputError("missing tab_id")
        await self.deps.page_registry.close_tab(workspace_id, tab_id)
        return {"ok": True, "data": {"workspace_id": workspace_id, "tab_id": tab_id}}

    @with_error_handling
    async def tab_set_active(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        workspace_id = self._workspace_id(envelope, _arg(envelope.args, "workspace_id", "workspaceId"))
        tab_id = _arg(envelope.args, "tab_id", "tabId")
        if not tab_id:
            raise ToolInputError("missing tab_id")
        self.deps.runtime.set_active_tab(workspace_id, tab_id)
        await self._bring_to_front(workspace_id, tab_id)
        return {"ok": True, "data": {"workspace_id": workspace_id, "tab_id": tab_id}}

    # --- steps -------------------------------------------------------------

    @with_error_handling
    async def steps_run(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        raw_steps = envelope.args.get("steps")
        if not isinstance(raw_steps, list):
            raise ToolInputError("missing steps")
        try:
            steps = parse_steps(raw_steps)
        except ValidationError as e:
            raise ToolInputError("invalid steps", details=_issues(e)) from e

        binding = await self._binding(envelope)
        stop_on_error = _arg(envelope.args, "stop_on_error", "stopOnError", True)
        run = await run_steps(binding.workspace_id, steps, self.deps, stop_on_error=stop_on_error)
        results = [result.to_dict() for result in run.results]
        if not run.ok:
            return {
                "ok": False,
                "tab_token": binding.tab_token,
                "error": format_error(ErrorCode.ERR_ASSERTION_FAILED, "steps failed", results),
            }
        return {"ok": True, "tab_token": binding.tab_token, "data": results}

    # --- recording ---------------------------------------------------------

    @with_error_handling
    async def record_start(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        binding = await self._binding(envelope)
        self.recording.start(binding)
        return {"ok": True, "tab_token": binding.tab_token, "data": {"page_url": binding.page.url}}

    @with_error_handling
    async def record_stop(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        binding = await self._binding(envelope)
        self.recording.stop(binding.tab_token)
        return {"ok": True, "tab_token": binding.tab_token, "data": {"page_url": binding.page.url}}

    @with_error_handling
    async def record_get(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        binding = await self._binding(envelope)
        events = [event.to_dict() for event in self.recording.get(binding.tab_token)]
        return {"ok": True, "tab_token": binding.tab_token, "data": {"events": events}}

    @with_error_handling
    async def record_clear(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        binding = await self._binding(envelope)
        self.recording.clear(binding.tab_token)
        return {"ok": True, "tab_token": binding.tab_token, "data": {"cleared": True}}

    @with_error_handling
    async def record_event(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        payload = envelope.args.get("event")
        if not isinstance(payload, dict):
            raise ToolInputError("missing record.event payload")
        token = _arg(envelope.args, "tab_token", "tabToken") or envelope.tab_token
        if not token:
            raise ToolInputError("missing tab_token")
        try:
            fields = {key: value for key, value in payload.items() if key not in ("tabToken", "tab_token")}
            event = RecordedEvent.model_validate({**fields, "tab_token": token})
        except ValidationError as e:
            raise ToolInputError("invalid recorded event", details=_issues(e)) from e
        accepted = self.recording.record_event(event)
        return {"ok": True, "tab_token": token, "data": {"accepted": accepted}}

    @with_error_handling
    async def record_replay(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        binding = await self._binding(envelope)
        stop_on_error = _arg(envelope.args, "stop_on_error", "stopOnError", True)
        replay = await self.recording.replay(binding.workspace_id, binding.tab_token, stop_on_error=stop_on_error)
        results = [result.to_dict() for result in replay.results]
        if replay.error is not None:
            return {"ok": False, "tab_token": binding.tab_token, "error": replay.error}
        if not replay.ok:
            return {
                "ok": False,
                "tab_token": binding.tab_token,
                "error": format_error(ErrorCode.ERR_ASSERTION_FAILED, "replay failed", results),
            }
        return {"ok": True, "tab_token": binding.tab_token, "data": results}

    @with_error_handling
    async def record_stop_replay(self, envelope: CommandEnvelope) -> Dict[str, Any]:
        binding = await self._binding(envelope)
        self.recording.cancel_replay(binding.tab_token)
        return {"ok": True, "tab_token": binding.tab_token, "data": {"stopped": True}}
