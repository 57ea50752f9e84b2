"""Data types shared by the trace layer."""
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

TraceEvent = Dict[str, Any]


@dataclass(frozen=True)
class TraceTags:
    """Attribution attached to every event emitted by one TraceTools instance."""
    workspace_id: Optional[str] = None
    tab_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in (("workspace_id", self.workspace_id), ("tab_token", self.tab_token)) if value}


@dataclass
class ToolResult:
    """Tagged result of one trace operation. Exactly one of data/error is meaningful."""
    ok: bool
    data: Any = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: Any = None) -> "ToolResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: Dict[str, Any]) -> "ToolResult":
        return cls(ok=False, error=error)

    @property
    def code(self) -> Optional[str]:
        return self.error.get("code") if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "data": self.data}
        return {"ok": False, "error": self.error}


@dataclass
class A11yNodeInfo:
    """The subset of an accessibility node used to rebuild a locator."""
    id: str
    role: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    value: Optional[str] = None


@dataclass
class A11yCandidate:
    """One match of a hint search, in depth-first order."""
    node_id: str
    role: Optional[str]
    name: Optional[str]
    preview: str

    def to_dict(self) -> Dict[str, Any]:
        return {"node_id": self.node_id, "role": self.role, "name": self.name, "preview": self.preview}


@dataclass
class TraceCache:
    """Per-binding accessibility scratch state.

    `node_map` is only valid against `a11y_tree`; both are cleared together
    and `generation` increases on every invalidation.
    """
    a11y_tree: Optional[Dict[str, Any]] = None
    a11y_snapshot_raw: Optional[str] = None
    node_map: Dict[str, A11yNodeInfo] = field(default_factory=dict)
    generation: int = 0
    snapshot_at: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not self.node_map

    def clear(self) -> None:
        self.a11y_tree = None
        self.a11y_snapshot_raw = None
        self.node_map = {}
        self.snapshot_at = None
        self.generation += 1


def now_ms() -> int:
    return int(time.time() * 1000)


class TraceSink(Protocol):
    """Receives every op.start/op.end event. `write` may be sync or async."""

    def write(self, event: TraceEvent) -> Union[None, Awaitable[None]]:
        ...


HookFn = Callable[[TraceEvent], Union[None, Awaitable[None]]]


@dataclass
class TraceHooks:
    """Optional callbacks around each operation."""
    before_op: Optional[HookFn] = None
    after_op: Optional[HookFn] = None
    on_error: Optional[HookFn] = None


@dataclass
class TraceContext:
    """Everything `trace_call` needs besides the operation itself."""
    sinks: List[TraceSink] = field(default_factory=list)
    hooks: TraceHooks = field(default_factory=TraceHooks)
    tags: TraceTags = field(default_factory=TraceTags)
    enabled: bool = True
