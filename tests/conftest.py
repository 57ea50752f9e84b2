"""Shared fixtures: browser-free doubles for pages, contexts and trace tools."""
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from rpa_agent.config import HumanPolicy, ObservabilityConfig, RegistryConfig, RunnerConfig
from rpa_agent.constants import TAB_TOKEN_KEY
from rpa_agent.runtime.deps import AgentDeps
from rpa_agent.runtime.page_registry import PageRegistry
from rpa_agent.runtime.runtime_registry import PageBinding
from rpa_agent.runtime.scheduler import WorkspaceScheduler
from rpa_agent.runtime.session import AgentSession
from rpa_agent.steps.sinks import MemoryStepSink
from rpa_agent.trace.sinks import MemorySink
from rpa_agent.trace.types import ToolResult


class FakeFrame:
    def __init__(self, page: "FakePage"):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url


class FakePage:
    """Just enough of a Playwright page for the registry, recorder and command router."""

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.session_storage: Dict[str, str] = {}
        self.init_scripts: List[str] = []
        self.closed = False
        self.close_kwargs: Dict[str, Any] = {}
        self.front_calls = 0
        self.goto_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.main_frame = FakeFrame(self)
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)

    def on(self, event: str, handler: Callable) -> None:
        self._handlers[event].append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)

    def navigate(self, url: str) -> None:
        """Simulate a main-frame navigation."""
        self.url = url
        self.emit("framenavigated", self.main_frame)

    async def add_init_script(self, script: Optional[str] = None, path: Optional[str] = None) -> None:
        self.init_scripts.append(script or "")

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        if "setItem" in expression:
            key, value = arg
            self.session_storage[key] = value
            return None
        if "getItem" in expression:
            return self.session_storage.get(arg)
        return None

    def is_closed(self) -> bool:
        return self.closed

    async def close(self, run_before_unload: bool = False) -> None:
        self.closed = True
        self.close_kwargs = {"run_before_unload": run_before_unload}
        self.emit("close", self)

    async def title(self) -> str:
        return f"Title of {self.url}"

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.goto_calls.append((url, kwargs))
        self.navigate(url)

    async def bring_to_front(self) -> None:
        self.front_calls += 1

    @property
    def token(self) -> Optional[str]:
        return self.session_storage.get(TAB_TOKEN_KEY)


class FakeContext:
    def __init__(self) -> None:
        self.pages: List[FakePage] = []


class FakeContextManager:
    """Stands in for BrowserContextManager; every page is a FakePage."""

    def __init__(self) -> None:
        self.context = FakeContext()
        self.closed = False

    async def get_context(self) -> FakeContext:
        return self.context

    async def new_page(self) -> FakePage:
        page = FakePage()
        self.context.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


DEFAULT_CANDIDATE = {"node_id": "n0.1", "role": "button", "name": "Action A", "preview": "Action A"}


class FakeTraceTools:
    """Records every trace call; results come from `returns` unless listed in `failures`."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, tuple, dict]] = []
        self.returns: Dict[str, Any] = {
            "find_by_a11y_hint": [dict(DEFAULT_CANDIDATE)],
            "snapshot_a11y": {"snapshot_id": "snap-1", "a11y": '{"id": "n0", "role": "document"}'},
            "get_info": {"url": "about:blank", "title": "", "tab_id": "tab-1", "tabs": []},
            "screenshot": "aGVsbG8=",
            "tabs_create": {"tab_id": "tab-2"},
            "tabs_switch": {"tab_id": "tab-2"},
            "tabs_close": {"closed": True},
            "select_option": ["a"],
        }
        self.failures: Dict[str, Dict[str, Any]] = {}

    def __getattr__(self, name: str) -> Callable:
        if name.startswith("_"):
            raise AttributeError(name)

        async def operation(*args: Any, **kwargs: Any) -> ToolResult:
            self.calls.append((name, args, kwargs))
            if name in self.failures:
                return ToolResult.failure(self.failures[name])
            return ToolResult.success(self.returns.get(name))

        return operation

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def call(self, name: str) -> Tuple[tuple, dict]:
        for call_name, args, kwargs in self.calls:
            if call_name == name:
                return args, kwargs
        raise AssertionError(f"{name} was not called; calls: {self.names()}")


class FakeRuntime:
    """RuntimeRegistry look-alike whose bindings all share one FakeTraceTools."""

    def __init__(self, page_registry: PageRegistry, tools: FakeTraceTools):
        self.page_registry = page_registry
        self.tools = tools
        self._bindings: Dict[str, PageBinding] = {}
        page_registry.on_token_closed(lambda token: self._bindings.pop(token, None))

    def bind_page(self, page: Any, tab_token: str) -> PageBinding:
        workspace_id, tab_id = self.page_registry.resolve_scope_from_token(tab_token)
        binding = self._bindings.get(tab_token)
        if binding is None or binding.page is not page:
            binding = PageBinding(workspace_id, tab_id, tab_token, page, self.tools)
            self._bindings[tab_token] = binding
        return binding

    async def ensure_active_page(self, workspace_id: str) -> PageBinding:
        page = await self.page_registry.resolve_page(workspace_id)
        return self.bind_page(page, self.page_registry.resolve_tab_token(workspace_id))

    def set_active_tab(self, workspace_id: str, tab_id: str) -> None:
        self.page_registry.set_active_tab(workspace_id, tab_id)


@pytest.fixture
def config() -> RunnerConfig:
    """Config with human pacing off so tests never sleep."""
    return RunnerConfig(
        human_policy=HumanPolicy(enabled=False),
        observability=ObservabilityConfig(trace_enabled=True),
        registry=RegistryConfig(token_poll_attempts=2, token_poll_interval_ms=1, nav_dedupe_window_ms=1200),
    )


@pytest.fixture
def context_manager() -> FakeContextManager:
    return FakeContextManager()


@pytest.fixture
def page_registry(context_manager: FakeContextManager, config: RunnerConfig) -> PageRegistry:
    return PageRegistry(context_manager, config.registry)


@pytest.fixture
def fake_tools() -> FakeTraceTools:
    return FakeTraceTools()


@pytest.fixture
def step_sink() -> MemoryStepSink:
    return MemoryStepSink()


@pytest.fixture
def trace_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def deps(
    config: RunnerConfig,
    context_manager: FakeContextManager,
    page_registry: PageRegistry,
    fake_tools: FakeTraceTools,
    step_sink: MemoryStepSink,
    trace_sink: MemorySink,
) -> AgentDeps:
    """Engine dependencies over fake pages, with every binding sharing `fake_tools`."""
    return AgentDeps(
        config=config,
        context_manager=context_manager,
        page_registry=page_registry,
        runtime=FakeRuntime(page_registry, fake_tools),
        scheduler=WorkspaceScheduler(config.scheduler.max_concurrent),
        trace_sinks=[trace_sink],
        step_sinks=[step_sink],
    )


@pytest.fixture
def session(page_registry: PageRegistry) -> AgentSession:
    return AgentSession(page_registry)
