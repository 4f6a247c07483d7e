"""Workflow domain concepts.

This package introduces first-class types for:
- The workflow definition handed over by the parser (steps, substeps, actions)
- The compiler that flattens it into an explicit state table
- Pure transition policy (PASS/FAIL/retry/substep aggregation)
- A resumable execution context driven by one event at a time

The intent is to make execution restartable from a persisted snapshot and
deterministic in its control flow.
"""

from rundown_engine.workflow.actions import (
    DEFAULT_TRANSITIONS,
    Action,
    CompleteAction,
    ContinueAction,
    GotoAction,
    NonRetryAction,
    RetryAction,
    StopAction,
    TransitionRule,
    Transitions,
)
from rundown_engine.workflow.compiler import (
    COMPLETE,
    STOPPED,
    CompiledMachine,
    CompiledState,
    RetryTransition,
    StateRef,
    Transition,
    compile_workflow,
)
from rundown_engine.workflow.definition import Command, Step, Substep, Workflow
from rundown_engine.workflow.events import (
    FAIL,
    PASS,
    RETRY,
    FailEvent,
    GotoEvent,
    PassEvent,
    RetryEvent,
    WorkflowEvent,
    goto,
)
from rundown_engine.workflow.policy import (
    ConditionResult,
    evaluate_fail,
    evaluate_pass,
    evaluate_substep_aggregation,
)
from rundown_engine.workflow.state_machine import ExecutionContext, ExecutionSnapshot
from rundown_engine.workflow.step_id import StepId

__all__ = [
    "COMPLETE",
    "DEFAULT_TRANSITIONS",
    "FAIL",
    "PASS",
    "RETRY",
    "STOPPED",
    "Action",
    "Command",
    "CompiledMachine",
    "CompiledState",
    "CompleteAction",
    "ConditionResult",
    "ContinueAction",
    "ExecutionContext",
    "ExecutionSnapshot",
    "FailEvent",
    "GotoAction",
    "GotoEvent",
    "NonRetryAction",
    "PassEvent",
    "RetryAction",
    "RetryEvent",
    "RetryTransition",
    "StateRef",
    "Step",
    "StepId",
    "StopAction",
    "Substep",
    "Transition",
    "TransitionRule",
    "Transitions",
    "Workflow",
    "WorkflowEvent",
    "compile_workflow",
    "evaluate_fail",
    "evaluate_pass",
    "evaluate_substep_aggregation",
    "goto",
]
