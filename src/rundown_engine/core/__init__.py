"""Core package initialization."""

from rundown_engine.core.command import ExecutionResult, execute_command
from rundown_engine.core.orchestrator import (
    AgentStart,
    ApplyOutcome,
    WorkflowOrchestrator,
    derive_action,
)

__all__ = [
    "AgentStart",
    "ApplyOutcome",
    "ExecutionResult",
    "WorkflowOrchestrator",
    "derive_action",
    "execute_command",
]
