"""Unit tests for the resumable execution context.

These tests assert that one event produces exactly one new snapshot and that a
snapshot survives serialization unchanged.
"""

from __future__ import annotations

import json

import pytest

from rundown_engine.errors import InvalidSnapshotError
from rundown_engine.workflow.actions import (
    CompleteAction,
    ContinueAction,
    GotoAction,
    RetryAction,
    StopAction,
    Transitions,
)
from rundown_engine.workflow.compiler import COMPLETE, STOPPED, compile_workflow
from rundown_engine.workflow.definition import Step, Workflow
from rundown_engine.workflow.events import FAIL, PASS, RETRY, goto
from rundown_engine.workflow.state_machine import (
    ExecutionContext,
    ExecutionSnapshot,
    initial_snapshot,
)
from rundown_engine.workflow.step_id import StepId


def test_fresh_context_starts_at_first_state(substep_workflow: Workflow) -> None:
    context = ExecutionContext(compile_workflow(substep_workflow.steps))

    assert context.snapshot.state_id == "step_1"
    assert context.snapshot.retry_count == 0
    assert context.status == "running"


def test_pass_follows_default_continue(linear_workflow: Workflow) -> None:
    context = ExecutionContext(compile_workflow(linear_workflow.steps))

    assert context.send(PASS).state_id == "step_2"
    assert context.send(PASS).state_id == "step_3"
    assert context.send(PASS).state_id == COMPLETE
    assert context.status == "complete"


def test_fail_without_transitions_stops(linear_workflow: Workflow) -> None:
    context = ExecutionContext(compile_workflow(linear_workflow.steps))

    assert context.send(FAIL).state_id == STOPPED
    assert context.is_done


def test_retry_exhaustion_counts_then_stops() -> None:
    steps = (
        Step(
            number=1,
            transitions=Transitions.of(ContinueAction(), RetryAction(max=2, then=StopAction())),
        ),
    )
    context = ExecutionContext(compile_workflow(steps))

    assert context.send(FAIL).retry_count == 1
    assert context.send(FAIL).retry_count == 2
    final = context.send(FAIL)
    assert final.state_id == STOPPED
    assert final.retry_count == 0


def test_pass_after_retry_resets_count(substep_workflow: Workflow) -> None:
    machine = compile_workflow(substep_workflow.steps)
    snapshot = ExecutionSnapshot(state_id="step_3_b", substep="b", retry_count=1)

    nxt = ExecutionContext(machine, snapshot).send(PASS)

    assert nxt.state_id == "step_4"
    assert nxt.retry_count == 0
    assert nxt.substep is None


def test_retry_event_bumps_count_unconditionally(linear_workflow: Workflow) -> None:
    context = ExecutionContext(compile_workflow(linear_workflow.steps))

    context.send(RETRY)
    assert context.send(RETRY).retry_count == 2
    assert context.snapshot.state_id == "step_1"


def test_goto_event_jumps_from_any_state(substep_workflow: Workflow) -> None:
    context = ExecutionContext(compile_workflow(substep_workflow.steps))

    nxt = context.send(goto("3.c"))

    assert nxt.state_id == "step_3_c"
    assert nxt.substep == "c"


def test_events_on_finished_run_are_ignored(linear_workflow: Workflow) -> None:
    machine = compile_workflow(linear_workflow.steps)
    done = ExecutionSnapshot(state_id=COMPLETE, variables={"x": True})

    assert ExecutionContext(machine, done).send(FAIL) == done


def test_next_instance_flag_only_on_next_transition(dynamic_workflow: Workflow) -> None:
    context = ExecutionContext(compile_workflow(dynamic_workflow.steps))

    assert context.send(PASS).next_instance is False
    wrapped = context.send(PASS)
    assert wrapped.state_id == "step_{N}_1"
    assert wrapped.next_instance is True
    assert context.send(PASS).next_instance is False


def test_resume_round_trip(substep_workflow: Workflow) -> None:
    machine = compile_workflow(substep_workflow.steps)
    snapshot = ExecutionSnapshot(
        state_id="step_3_b", substep="b", retry_count=1, variables={"x": True}
    )

    after = ExecutionContext(machine, snapshot).send(PASS)
    restored = ExecutionSnapshot.model_validate(json.loads(json.dumps(after.to_json())))
    resumed = ExecutionContext(machine, restored)

    assert restored == after
    assert resumed.snapshot == after
    assert resumed.ref is not None
    assert (resumed.ref.step, resumed.ref.substep) == ("4", None)
    assert resumed.snapshot.variables == {"x": True}
    assert resumed.snapshot.retry_count == 0


def test_snapshot_serializes_camel_case() -> None:
    payload = ExecutionSnapshot(state_id="step_2", retry_count=1).to_json()

    assert payload["stateId"] == "step_2"
    assert payload["retryCount"] == 1
    assert payload["nextInstance"] is False


def test_statechart_layout_is_normalized() -> None:
    legacy = {"value": "step_3_b", "context": {"retryCount": 2, "substep": "b", "variables": {"y": 1}}}

    snapshot = ExecutionSnapshot.model_validate(legacy)

    assert snapshot.state_id == "step_3_b"
    assert snapshot.retry_count == 2
    assert snapshot.substep == "b"
    assert snapshot.variables == {"y": 1}


def test_snapshot_for_unknown_state_is_rejected(linear_workflow: Workflow) -> None:
    machine = compile_workflow(linear_workflow.steps)

    with pytest.raises(InvalidSnapshotError):
        ExecutionContext(machine, ExecutionSnapshot(state_id="step_9"))


def test_literal_pass_goto_loop_never_reaches_step_three() -> None:
    steps = (
        Step(number=1),
        Step(
            number=2,
            transitions=Transitions.of(GotoAction(target=StepId(step=1)), StopAction()),
        ),
        Step(number=3, transitions=Transitions.of(CompleteAction(), StopAction())),
    )
    context = ExecutionContext(compile_workflow(steps))

    visited = [context.send(PASS).state_id for _ in range(5)]

    assert visited == ["step_2", "step_1", "step_2", "step_1", "step_2"]


def test_initial_snapshot_carries_first_substep(dynamic_workflow: Workflow) -> None:
    snapshot = initial_snapshot(compile_workflow(dynamic_workflow.steps))

    assert snapshot.state_id == "step_{N}_1"
    assert snapshot.substep == "1"
