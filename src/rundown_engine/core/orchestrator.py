"""Host-side dispatch.

One host event (a tool call, a subagent start/stop, a user message) maps to
one call here:

    session stack -> active run -> compiled machine + snapshot -> one event
    -> new snapshot -> run store -> session stack (on finish / nesting)

The orchestrator never keeps state between calls; everything it needs is
re-read from the stores.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from rundown_engine.config import EngineSettings
from rundown_engine.core.command import execute_command
from rundown_engine.errors import AgentBindingNotFoundError, NoActiveWorkflowError
from rundown_engine.state.manager import WorkflowStateStore
from rundown_engine.state.models import (
    LastAction,
    PendingStep,
    Result,
    SubstepState,
    WorkflowState,
)
from rundown_engine.state.session import SessionStackManager, SessionStore
from rundown_engine.workflow.actions import DEFAULT_TRANSITIONS
from rundown_engine.workflow.compiler import CompiledMachine, StateRef, compile_workflow
from rundown_engine.workflow.definition import Step, Substep, Workflow
from rundown_engine.workflow.events import FAIL, PASS, FailEvent, PassEvent, WorkflowEvent
from rundown_engine.workflow.policy import (
    ConditionResult,
    evaluate_fail,
    evaluate_pass,
    evaluate_substep_aggregation,
)
from rundown_engine.workflow.state_machine import (
    ExecutionContext,
    ExecutionStatus,
    initial_snapshot,
)
from rundown_engine.workflow.step_id import DYNAMIC_STEP, DYNAMIC_SUBSTEP, StepId

logger = logging.getLogger(__name__)

RunStatus = Literal["done", "stopped", "waiting"]


@dataclass(frozen=True, slots=True)
class ApplyOutcome:
    state: WorkflowState
    status: ExecutionStatus
    action: str
    message: str | None = None
    parent_workflow_id: str | None = None


@dataclass(frozen=True, slots=True)
class AgentStart:
    pending: PendingStep
    child: WorkflowState | None = None


def derive_action(
    *,
    prev_step: str,
    prev_substep: str | None,
    prev_retry_count: int,
    new_step: str,
    new_substep: str | None,
    new_retry_count: int,
    retry_max: int,
    status: ExecutionStatus,
    sequential: bool,
    instance: int | None = None,
    substep_instance: int | None = None,
) -> str:
    """Render a transition as ``COMPLETE``, ``STOP``, ``RETRY (n/max)``, ``GOTO x[.y]`` or ``CONTINUE``."""

    if status == "complete":
        return "COMPLETE"
    if status == "stopped":
        return "STOP"
    if (
        new_step == prev_step
        and new_substep == prev_substep
        and new_retry_count > prev_retry_count
    ):
        return f"RETRY ({new_retry_count}/{retry_max})"
    if sequential:
        return "CONTINUE"

    def resolve(text: str) -> str:
        if instance is not None:
            text = text.replace(DYNAMIC_STEP, str(instance))
        if substep_instance is not None:
            text = text.replace(DYNAMIC_SUBSTEP, str(substep_instance))
        return text

    target = new_step if new_substep is None else f"{new_step}.{new_substep}"
    return f"GOTO {resolve(target)}"


def _item_for(machine: CompiledMachine, ref: StateRef) -> Step | Substep | None:
    step = machine.step_for(ref)
    if step is None or ref.substep is None:
        return step
    return step.substep(ref.substep) or step


def _is_step_entry(machine: CompiledMachine, ref: StateRef) -> bool:
    """Whether ``ref`` is the first state of its step."""

    step = machine.step_for(ref)
    if step is None or not step.substeps:
        return step is not None
    return ref.substep == step.substeps[0].id


class WorkflowOrchestrator:
    """Drives workflow runs for a single project root."""

    def __init__(
        self,
        store: WorkflowStateStore,
        sessions: SessionStackManager,
        *,
        command_timeout: float | None = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.command_timeout = command_timeout

    @classmethod
    def from_settings(
        cls, project_root: Path, settings: EngineSettings | None = None
    ) -> WorkflowOrchestrator:
        settings = settings or EngineSettings()
        store = WorkflowStateStore(settings.runs_dir(project_root))
        sessions = SessionStackManager(SessionStore(settings.session_file(project_root)), store)
        return cls(store, sessions, command_timeout=settings.command_timeout)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        workflow_file: str,
        workflow: Workflow,
        *,
        agent_id: str | None = None,
        parent_workflow_id: str | None = None,
        parent_step_id: StepId | None = None,
        prompted: bool = False,
    ) -> WorkflowState:
        """Create a run, seed its snapshot and make it the caller's active workflow."""

        state = self.store.create(
            workflow_file,
            workflow,
            agent_id=agent_id,
            parent_workflow_id=parent_workflow_id,
            parent_step_id=parent_step_id,
            prompted=prompted,
        )
        machine = compile_workflow(workflow.steps)
        snapshot = initial_snapshot(machine)

        if snapshot.is_done:
            # Nothing to execute: an empty workflow completes on creation.
            return self.store.update(
                state.id,
                snapshot=snapshot,
                variables={"completed": True},
                last_action="COMPLETE",
            )

        self.store.update_from_snapshot(state.id, snapshot, workflow)
        first = workflow.steps[0]
        self.store.update(
            state.id,
            substep_states=self._fresh_substep_states(first),
            last_action="START",
        )
        self.store.mark_step(state.id, first.key, "running")
        self.sessions.push_workflow(state.id, agent_id)
        return self.store.require(state.id)

    def apply(
        self, event: WorkflowEvent, workflow: Workflow, *, agent_id: str | None = None
    ) -> ApplyOutcome:
        """Feed one event to the caller's active workflow and persist the result."""

        state = self.sessions.get_active(agent_id)
        if state is None:
            raise NoActiveWorkflowError("No active workflow", agent_id=agent_id)
        return self._apply_to(state, event, workflow, agent_id)

    def run(self, workflow: Workflow, cwd: Path, *, agent_id: str | None = None) -> RunStatus:
        """Auto-execute command steps until the run finishes or needs outside input.

        Returns ``waiting`` at a prompt-only step or in prompted mode.
        """

        active = self.sessions.get_active(agent_id)
        if active is None:
            raise NoActiveWorkflowError("No active workflow", agent_id=agent_id)
        workflow_id = active.id
        machine = compile_workflow(workflow.steps)

        while True:
            state = self.store.load(workflow_id)
            if state is None:
                return "stopped"
            context = ExecutionContext(machine, state.snapshot)
            if context.status == "complete":
                return "done"
            if context.status == "stopped":
                return "stopped"

            ref = context.ref
            assert ref is not None
            item = _item_for(machine, ref)
            step = machine.step_for(ref)
            command = (item.command if item is not None else None) or (
                step.command if step is not None else None
            )
            if state.prompted or command is None:
                return "waiting"

            result = execute_command(command.code, cwd, timeout=self.command_timeout)
            outcome = self._apply_to(state, PASS if result.success else FAIL, workflow, agent_id)
            if outcome.status == "complete":
                return "done"
            if outcome.status == "stopped":
                return "stopped"

    def _apply_to(
        self,
        state: WorkflowState,
        event: WorkflowEvent,
        workflow: Workflow,
        agent_id: str | None,
    ) -> ApplyOutcome:
        machine = compile_workflow(workflow.steps)
        context = ExecutionContext(machine, state.snapshot)
        prev_ref = context.ref
        if prev_ref is None:
            # Finished runs ignore further events.
            return ApplyOutcome(state=state, status=context.status, action="NONE")

        prev_state_id = context.snapshot.state_id
        prev_retry = context.snapshot.retry_count
        snapshot = context.send(event)
        updated = self.store.update_from_snapshot(state.id, snapshot, workflow)

        changes: dict[str, object] = {}
        if isinstance(event, PassEvent):
            changes["last_result"] = "pass"
        elif isinstance(event, FailEvent):
            changes["last_result"] = "fail"

        new_ref = None if snapshot.is_done else machine.state(snapshot.state_id).ref
        instance = updated.instance
        if snapshot.next_instance and new_ref is not None and instance is not None:
            instance += 1
            changes["instance"] = instance
            logger.info(
                "Dynamic instance advanced",
                extra={"workflow_id": state.id, "instance": instance},
            )

        entered_step = new_ref is not None and (
            new_ref.step != prev_ref.step
            or snapshot.next_instance
            or (new_ref != prev_ref and _is_step_entry(machine, new_ref))
        )
        substep_states = updated.substep_states
        if entered_step:
            assert new_ref is not None
            step = machine.step_for(new_ref)
            substep_states = self._fresh_substep_states(step) if step else None
            changes["substep_states"] = substep_states

        action = derive_action(
            prev_step=prev_ref.step,
            prev_substep=prev_ref.substep,
            prev_retry_count=prev_retry,
            new_step=updated.step,
            new_substep=updated.substep,
            new_retry_count=updated.retry_count,
            retry_max=machine.retry_max(prev_state_id),
            status=snapshot.status,
            sequential=(
                not snapshot.next_instance
                and snapshot.state_id == machine.successor(prev_state_id)
                and snapshot.state_id != prev_state_id
            ),
            instance=instance,
            substep_instance=len(substep_states or []) or 1,
        )
        changes["last_action"] = _last_action_kind(action)
        updated = self.store.update(state.id, **changes)

        if entered_step:
            assert new_ref is not None
            self.store.mark_step(state.id, prev_ref.step, "complete")
            updated = self.store.mark_step(state.id, new_ref.step, "running")

        message = self._outcome_message(machine, prev_ref, event, prev_retry)
        parent_id: str | None = None
        if snapshot.is_done:
            updated, parent_id = self._finish(updated, snapshot.status, prev_ref, agent_id)

        return ApplyOutcome(
            state=updated,
            status=snapshot.status,
            action=action,
            message=message,
            parent_workflow_id=parent_id,
        )

    def _finish(
        self,
        state: WorkflowState,
        status: ExecutionStatus,
        last_ref: StateRef,
        agent_id: str | None,
    ) -> tuple[WorkflowState, str | None]:
        completed = status == "complete"
        flag = "completed" if completed else "stopped"
        self.store.mark_step(state.id, last_ref.step, "complete" if completed else "stopped")
        state = self.store.update(state.id, variables={flag: True})

        result: Result = "pass" if completed else "fail"
        parent_workflow_id = state.parent_workflow_id
        if agent_id and parent_workflow_id and self.store.load(parent_workflow_id) is not None:
            if self.store.get_agent_binding(parent_workflow_id, agent_id) is not None:
                self.store.update_agent_binding(
                    parent_workflow_id, agent_id, status="done", result=result
                )
            else:
                logger.warning(
                    "Parent has no binding for child agent",
                    extra={"workflow_id": parent_workflow_id, "agent_id": agent_id},
                )

        parent_id = self.sessions.pop_workflow(agent_id)
        logger.info(
            "Workflow run finished",
            extra={"workflow_id": state.id, "status": status, "parent_id": parent_id},
        )
        return state, parent_id

    @staticmethod
    def _outcome_message(
        machine: CompiledMachine, ref: StateRef, event: WorkflowEvent, retry_count: int
    ) -> str | None:
        item = _item_for(machine, ref)
        if item is None:
            return None
        if isinstance(event, PassEvent):
            return evaluate_pass(item).message
        if isinstance(event, FailEvent):
            return evaluate_fail(item, retry_count).message
        return None

    @staticmethod
    def _fresh_substep_states(step: Step) -> list[SubstepState] | None:
        if not step.substeps:
            return None
        return [SubstepState(id=s.id) for s in step.static_substeps]

    # ------------------------------------------------------------------
    # Agent correlation
    # ------------------------------------------------------------------

    def add_dynamic_substep(self, *, agent_id: str | None = None) -> str:
        """Open the next numbered substep of the active run's current step."""

        active = self.sessions.get_active(agent_id)
        if active is None:
            raise NoActiveWorkflowError("No active workflow", agent_id=agent_id)
        substep_id = self.store.add_dynamic_substep(active.id)
        logger.info(
            "Dynamic substep added",
            extra={"workflow_id": active.id, "substep": substep_id},
        )
        return substep_id

    def dispatch_step(
        self,
        step_id: StepId,
        *,
        workflow: str | None = None,
        agent_id: str | None = None,
    ) -> PendingStep:
        """Queue a step whose work is about to be handed to an asynchronous agent."""

        active = self.sessions.get_active(agent_id)
        if active is None:
            raise NoActiveWorkflowError("No active workflow", agent_id=agent_id)
        pending = PendingStep(step_id=step_id, workflow=workflow)
        self.store.push_pending_step(active.id, pending)
        return pending

    def agent_started(
        self,
        agent_id: str,
        *,
        child: Workflow | None = None,
        parent_agent_id: str | None = None,
    ) -> AgentStart | None:
        """Correlate a started agent with the oldest pending step of the active run.

        When the pending step names a child workflow and its parsed definition
        is supplied, the child is started on the agent's own stack.
        """

        parent = self.sessions.get_active(parent_agent_id)
        if parent is None:
            raise NoActiveWorkflowError("No active workflow", agent_id=parent_agent_id)

        pending = self.store.pop_pending_step(parent.id)
        if pending is None:
            logger.debug("No pending step for started agent", extra={"agent_id": agent_id})
            return None

        self.store.bind_agent(parent.id, agent_id, pending.step_id)
        substep_id = pending.step_id.substep
        if substep_id is not None and any(
            s.id == substep_id for s in parent.substep_states or []
        ):
            self.store.bind_substep_agent(parent.id, substep_id, agent_id)

        child_state: WorkflowState | None = None
        if pending.workflow is not None and child is not None:
            child_state = self.start(
                pending.workflow,
                child,
                agent_id=agent_id,
                parent_workflow_id=parent.id,
                parent_step_id=pending.step_id,
                prompted=bool(parent.prompted),
            )
            self.store.update_agent_binding(
                parent.id, agent_id, child_workflow_id=child_state.id
            )
        return AgentStart(pending=pending, child=child_state)

    def agent_stopped(
        self,
        agent_id: str,
        workflow: Workflow,
        *,
        result: Result | None = None,
        parent_agent_id: str | None = None,
    ) -> ConditionResult | None:
        """Record an agent's outcome against the step it was bound to.

        Without an explicit ``result`` the outcome comes from the agent's child
        workflow, or counts as ``pass`` when there is none. Returns the
        substep aggregation decision once every substep of the step is done.
        """

        parent = self.sessions.get_active(parent_agent_id)
        if parent is None:
            raise NoActiveWorkflowError("No active workflow", agent_id=parent_agent_id)

        binding = self.store.get_agent_binding(parent.id, agent_id)
        if binding is None:
            raise AgentBindingNotFoundError(
                "No binding for agent", workflow_id=parent.id, agent_id=agent_id
            )

        if result is None and binding.child_workflow_id is not None:
            result = self.store.get_child_workflow_result(binding.child_workflow_id)
            if result is None:
                logger.info(
                    "Child workflow still running",
                    extra={"child_workflow_id": binding.child_workflow_id},
                )
                return None
        resolved: Result = result or "pass"
        self.store.update_agent_binding(parent.id, agent_id, status="done", result=resolved)

        substep_states = parent.substep_states or []
        bound = next((s for s in substep_states if s.agent_id == agent_id), None)
        substep_id = bound.id if bound is not None else binding.step_id.substep
        if substep_id is None or not any(s.id == substep_id for s in substep_states):
            return None

        updated = self.store.complete_substep(parent.id, substep_id, resolved)
        step = workflow.step(binding.step_id.step_key)
        transitions = (step.transitions if step is not None else None) or DEFAULT_TRANSITIONS
        return evaluate_substep_aggregation(updated.substep_states or [], transitions)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def prune(
        self,
        *,
        completed: bool = False,
        active: bool = False,
        inactive: bool = False,
        all_: bool = False,
        dry_run: bool = False,
    ) -> list[WorkflowState]:
        """Delete run records matching the filters (default: completed runs)."""

        has_filter = completed or active or inactive or all_
        prune_completed = all_ or completed or not has_filter
        prune_active = all_ or active
        prune_inactive = all_ or inactive
        stashed_id = self.sessions.get_stashed_workflow_id()

        selected: list[WorkflowState] = []
        for state in self.store.list():
            is_active = self.sessions.is_on_any_stack(state.id)
            is_inactive = not is_active and state.id != stashed_id and not state.is_completed
            if (
                (prune_completed and state.is_completed)
                or (prune_active and is_active)
                or (prune_inactive and is_inactive)
            ):
                selected.append(state)

        if not dry_run:
            for state in selected:
                self.store.delete(state.id)
        logger.info(
            "Pruned workflow runs",
            extra={"count": len(selected), "dry_run": dry_run},
        )
        return selected


def _last_action_kind(action: str) -> LastAction:
    head = action.split(" ", 1)[0]
    if head in ("CONTINUE", "GOTO", "COMPLETE", "STOP", "RETRY"):
        return head  # type: ignore[return-value]
    return "CONTINUE"
