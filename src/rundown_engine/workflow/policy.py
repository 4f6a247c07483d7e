"""Transition policy: (step rules, retry count, substep outcomes) -> what happens next.

These are pure functions. They answer the question without a compiled state
table, which keeps simple execution paths (substep aggregation, completion
messages) independent of the compiler.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, assert_never

from .actions import (
    CompleteAction,
    ContinueAction,
    GotoAction,
    RetryAction,
    StopAction,
    Transitions,
)
from .definition import Step, Substep
from .step_id import StepId

if TYPE_CHECKING:
    from rundown_engine.state.models import SubstepState

ConditionKind = Literal["continue", "retry", "stopped", "goto", "complete"]
Outcome = Literal["pass", "fail"]

NO_FAIL_CONDITION_MESSAGE = "No FAIL condition defined for step"


@dataclass(frozen=True, slots=True)
class ConditionResult:
    """A single decision chosen by policy.

    ``new_retry_count`` is only set for ``retry`` and ``goto_target`` only
    for ``goto``.
    """

    kind: ConditionKind
    new_retry_count: int | None = None
    goto_target: StepId | None = None
    message: str | None = None


def evaluate_non_retry_action(
    action: ContinueAction | CompleteAction | StopAction | GotoAction,
) -> ConditionResult:
    match action:
        case ContinueAction():
            return ConditionResult(kind="continue")
        case CompleteAction(message=message):
            return ConditionResult(kind="complete", message=message)
        case StopAction(message=message):
            return ConditionResult(kind="stopped", message=message)
        case GotoAction(target=target):
            return ConditionResult(kind="goto", goto_target=target)
        case _:
            assert_never(action)


def evaluate_fail(step: Step | Substep, current_retry_count: int) -> ConditionResult:
    """Decide what a FAIL outcome does for ``step``.

    Without declared transitions FAIL always stops. A RETRY action bumps the
    count; once it exceeds ``max`` the wrapped ``then`` action decides instead.
    """

    if step.transitions is None:
        return ConditionResult(kind="stopped", message=NO_FAIL_CONDITION_MESSAGE)

    action = step.transitions.fail.action
    if isinstance(action, RetryAction):
        new_count = current_retry_count + 1
        if new_count > action.max:
            return evaluate_non_retry_action(action.then)
        return ConditionResult(kind="retry", new_retry_count=new_count)
    return evaluate_non_retry_action(action)


def evaluate_pass(step: Step | Substep) -> ConditionResult:
    """Decide what a PASS outcome does for ``step``. Retrying on success means continuing."""

    if step.transitions is None:
        return ConditionResult(kind="continue")

    action = step.transitions.pass_.action
    if isinstance(action, RetryAction):
        return ConditionResult(kind="continue")
    return evaluate_non_retry_action(action)


def aggregate_outcome(
    substep_states: Sequence[SubstepState], transitions: Transitions
) -> Outcome | None:
    """Collapse substep results into one step outcome, or None while any substep is unfinished."""

    if not all(s.status == "done" for s in substep_states):
        return None

    if transitions.all:
        return "fail" if any(s.result == "fail" for s in substep_states) else "pass"
    return "pass" if any(s.result == "pass" for s in substep_states) else "fail"


def evaluate_substep_aggregation(
    substep_states: Sequence[SubstepState], transitions: Transitions
) -> ConditionResult | None:
    outcome = aggregate_outcome(substep_states, transitions)
    if outcome is None:
        return None

    rule = transitions.pass_ if outcome == "pass" else transitions.fail
    if isinstance(rule.action, RetryAction):
        return ConditionResult(kind="retry")
    return evaluate_non_retry_action(rule.action)
