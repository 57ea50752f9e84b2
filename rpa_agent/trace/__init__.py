"""Traced atomic page operations and accessibility resolution."""
from rpa_agent.trace.hooks import create_logging_hooks, create_noop_hooks, safe_json
from rpa_agent.trace.sinks import FileSink, MemorySink
from rpa_agent.trace.tools import TraceTools
from rpa_agent.trace.trace_call import classify_error, trace_call
from rpa_agent.trace.types import ToolResult, TraceCache, TraceContext, TraceHooks, TraceTags

__all__ = [
    "FileSink",
    "MemorySink",
    "ToolResult",
    "TraceCache",
    "TraceContext",
    "TraceHooks",
    "TraceTags",
    "TraceTools",
    "classify_error",
    "create_logging_hooks",
    "create_noop_hooks",
    "safe_json",
    "trace_call",
]
