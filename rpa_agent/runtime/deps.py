"""Dependency container shared by every adapter of one process."""
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Optional

from rpa_agent.config import RunnerConfig, load_config
from rpa_agent.runtime.context_manager import BrowserContextManager
from rpa_agent.runtime.page_registry import PageRegistry
from rpa_agent.runtime.runtime_registry import RuntimeRegistry
from rpa_agent.runtime.scheduler import WorkspaceScheduler
from rpa_agent.trace.hooks import create_logging_hooks, create_noop_hooks
from rpa_agent.trace.sinks import FileSink
from rpa_agent.trace.types import TraceHooks, TraceSink
from rpa_agent.utils.logging import get_logger

if TYPE_CHECKING:
    # The steps package imports this module; keep the reverse edge type-only.
    from rpa_agent.steps.sinks import StepSink

logger = get_logger("rpa_agent.runtime.deps")


@dataclass
class AgentDeps:
    """Everything the step engine needs, built once at process start.

    Adapters receive this object in their constructors; nothing in the engine
    reaches for a module-level default.
    """
    config: RunnerConfig
    context_manager: Any
    page_registry: PageRegistry
    runtime: RuntimeRegistry
    scheduler: WorkspaceScheduler
    trace_sinks: List[TraceSink] = field(default_factory=list)
    trace_hooks: TraceHooks = field(default_factory=TraceHooks)
    step_sinks: List["StepSink"] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        config: Optional[RunnerConfig] = None,
        context_manager: Optional[Any] = None,
        trace_sinks: Optional[List[TraceSink]] = None,
        step_sinks: Optional[List["StepSink"]] = None,
    ) -> "AgentDeps":
        """Wire the runtime from a config.

        Args:
            config: Runner config; loaded from the default sources when omitted.
            context_manager: Page factory; a `BrowserContextManager` for the
                configured browser when omitted.
            trace_sinks: Extra trace sinks, added after the configured file sink.
            step_sinks: Receivers of step events.
        """
        config = config or load_config()
        observability = config.observability

        sinks: List[TraceSink] = []
        if observability.trace_file_enabled:
            sinks.append(FileSink(observability.trace_file_path))
        sinks.extend(trace_sinks or [])

        if observability.trace_enabled:
            hooks = create_logging_hooks(log_args=observability.trace_log_args)
        else:
            hooks = create_noop_hooks()

        context_manager = context_manager or BrowserContextManager(config.browser)
        page_registry = PageRegistry(context_manager, config.registry)
        runtime = RuntimeRegistry(page_registry, trace_sinks=sinks, trace_hooks=hooks, config=config)
        scheduler = WorkspaceScheduler(config.scheduler.max_concurrent)

        logger.debug(
            "Agent dependencies created",
            emoji_key="config",
            trace_file=observability.trace_file_enabled,
            max_concurrent=config.scheduler.max_concurrent,
        )
        return cls(
            config=config,
            context_manager=context_manager,
            page_registry=page_registry,
            runtime=runtime,
            scheduler=scheduler,
            trace_sinks=sinks,
            trace_hooks=hooks,
            step_sinks=list(step_sinks or []),
        )

    async def aclose(self) -> None:
        """Forget registry state and close the browser."""
        self.page_registry.cleanup()
        close = getattr(self.context_manager, "close", None)
        if close is not None:
            await close()
