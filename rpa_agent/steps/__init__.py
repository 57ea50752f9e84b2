"""Typed steps and the engine that runs them."""
from rpa_agent.steps.models import RunStepsResult, Step, StepMeta, StepResult, build_step, parse_steps
from rpa_agent.steps.runner import run_steps
from rpa_agent.steps.sinks import MemoryStepSink

__all__ = [
    "MemoryStepSink",
    "RunStepsResult",
    "Step",
    "StepMeta",
    "StepResult",
    "build_step",
    "parse_steps",
    "run_steps",
]
