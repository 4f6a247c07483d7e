"""Durable state: per-run records and the per-project session stacks."""

from rundown_engine.state.manager import WorkflowStateStore, generate_workflow_id
from rundown_engine.state.models import (
    AgentBinding,
    PendingStep,
    StepState,
    SubstepState,
    WorkflowState,
)
from rundown_engine.state.session import Session, SessionStackManager, SessionStore

__all__ = [
    "AgentBinding",
    "PendingStep",
    "Session",
    "SessionStackManager",
    "SessionStore",
    "StepState",
    "SubstepState",
    "WorkflowState",
    "WorkflowStateStore",
    "generate_workflow_id",
]
