"""Durable store for workflow runs.

One JSON record per run under a runs directory, keyed by a generated id.
Operations are sequential load/modify/save cycles; there is no locking, so two
overlapping writers against the same run race and the last write wins.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from rundown_engine.errors import AgentBindingNotFoundError, NotFoundError, StoreIOError
from rundown_engine.state.models import (
    AgentBinding,
    PendingStep,
    Result,
    StepState,
    StepStatus,
    SubstepState,
    WorkflowState,
    utc_now_iso,
)
from rundown_engine.workflow.compiler import compile_workflow
from rundown_engine.workflow.definition import Substep, Workflow
from rundown_engine.workflow.state_machine import ExecutionContext, ExecutionSnapshot
from rundown_engine.workflow.step_id import StepId

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "started_at"})


def generate_workflow_id() -> str:
    """Time-based prefix plus random suffix, e.g. ``wf-2025-01-12-3f9a1c0b``."""

    date = datetime.now(tz=UTC).strftime("%Y-%m-%d")
    return f"wf-{date}-{uuid.uuid4().hex[:8]}"


def write_json_atomic(path: Path, payload: object) -> None:
    """Write JSON via a sibling temp file and rename, so readers never see half a file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        tmp.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )
        tmp.replace(path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


class WorkflowStateStore:
    """JSON-file backed store of ``WorkflowState`` records."""

    def __init__(self, runs_dir: Path) -> None:
        self._runs_dir = runs_dir

    @property
    def runs_dir(self) -> Path:
        return self._runs_dir

    def path_for(self, workflow_id: str) -> Path:
        return self._runs_dir / f"{workflow_id}.json"

    # ------------------------------------------------------------------
    # Record lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        workflow_file: str,
        workflow: Workflow,
        *,
        agent_id: str | None = None,
        parent_workflow_id: str | None = None,
        parent_step_id: StepId | None = None,
        prompted: bool | None = None,
    ) -> WorkflowState:
        """Create and persist a fresh run positioned at the workflow's first step."""

        first = workflow.steps[0] if workflow.steps else None
        state = WorkflowState(
            id=generate_workflow_id(),
            workflow=workflow_file,
            title=workflow.title,
            description=workflow.description,
            step=first.key if first else "1",
            instance=1 if first is not None and first.is_dynamic else None,
            step_name=first.description if first else "",
            agent_id=agent_id,
            parent_workflow_id=parent_workflow_id,
            parent_step_id=parent_step_id,
            prompted=prompted,
        )
        self.save(state)
        logger.info(
            "Workflow run created",
            extra={"workflow_id": state.id, "workflow": workflow_file, "agent_id": agent_id},
        )
        return state

    def load(self, workflow_id: str) -> WorkflowState | None:
        """Load a run; a missing or structurally invalid record yields None."""

        path = self.path_for(workflow_id)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning(
                "Workflow state file is not valid JSON; treating as missing",
                extra={"path": str(path)},
            )
            return None
        except OSError as e:
            raise StoreIOError("Failed to read workflow state", workflow_id=workflow_id) from e

        try:
            return WorkflowState.model_validate(raw)
        except ValidationError:
            logger.warning(
                "Workflow state file has unexpected shape; treating as missing",
                extra={"path": str(path)},
            )
            return None

    def require(self, workflow_id: str) -> WorkflowState:
        state = self.load(workflow_id)
        if state is None:
            raise NotFoundError("Workflow not found", workflow_id=workflow_id)
        return state

    def save(self, state: WorkflowState) -> WorkflowState:
        """Persist ``state`` with a fresh ``updated_at`` stamp."""

        stamped = state.model_copy(update={"updated_at": utc_now_iso()})
        try:
            write_json_atomic(self.path_for(stamped.id), stamped.to_json())
        except OSError as e:
            raise StoreIOError("Failed to write workflow state", workflow_id=state.id) from e
        logger.debug("Workflow state saved", extra={"workflow_id": stamped.id})
        return stamped

    def update(self, workflow_id: str, **changes: Any) -> WorkflowState:
        """Merge ``changes`` into the stored record.

        ``variables`` merge key-wise (old keys not mentioned survive); every
        other field is replaced wholesale.

        Raises:
            NotFoundError: if ``workflow_id`` does not resolve.
        """

        blocked = _IMMUTABLE_FIELDS.intersection(changes)
        if blocked:
            raise ValueError(f"Cannot update immutable fields: {sorted(blocked)}")

        existing = self.require(workflow_id)
        if "variables" in changes:
            changes["variables"] = {**existing.variables, **(changes["variables"] or {})}
        merged = WorkflowState.model_validate(
            {**existing.model_dump(), **changes}
        )
        return self.save(merged)

    def delete(self, workflow_id: str) -> None:
        """Remove a run record. Deleting an unknown id is not an error."""

        try:
            self.path_for(workflow_id).unlink(missing_ok=True)
        except OSError as e:
            raise StoreIOError("Failed to delete workflow state", workflow_id=workflow_id) from e
        logger.info("Workflow run deleted", extra={"workflow_id": workflow_id})

    def list(self) -> list[WorkflowState]:
        """All readable runs, ordered by id. Invalid entries are skipped."""

        if not self._runs_dir.exists():
            return []
        states: list[WorkflowState] = []
        for path in sorted(self._runs_dir.glob("*.json")):
            state = self.load(path.stem)
            if state is not None:
                states.append(state)
        return states

    # ------------------------------------------------------------------
    # Resume engine bridge
    # ------------------------------------------------------------------

    def resume(self, workflow_id: str, workflow: Workflow) -> ExecutionContext | None:
        """Rebuild an execution context from the run's persisted snapshot."""

        state = self.load(workflow_id)
        if state is None:
            return None
        return ExecutionContext(compile_workflow(workflow.steps), state.snapshot)

    def update_from_snapshot(
        self, workflow_id: str, snapshot: ExecutionSnapshot, workflow: Workflow
    ) -> WorkflowState:
        """Persist the resume engine's output.

        A terminal snapshot only refreshes variables and the raw snapshot; the
        last known step, substep and retry count are preserved.
        """

        if snapshot.is_done:
            return self.update(workflow_id, variables=snapshot.variables, snapshot=snapshot)

        machine = compile_workflow(workflow.steps)
        ref = machine.state(snapshot.state_id).ref
        step = machine.step_for(ref)
        return self.update(
            workflow_id,
            step=ref.step,
            substep=snapshot.substep or ref.substep,
            step_name=step.description if step is not None else "",
            retry_count=snapshot.retry_count,
            variables=snapshot.variables,
            snapshot=snapshot,
        )

    def set_last_result(self, workflow_id: str, result: Result) -> WorkflowState:
        return self.update(workflow_id, last_result=result)

    def is_parent_prompted(self, parent_workflow_id: str) -> bool:
        parent = self.load(parent_workflow_id)
        return bool(parent is not None and parent.prompted)

    def mark_step(
        self,
        workflow_id: str,
        step_id: str,
        status: StepStatus,
        *,
        subagent_type: str | None = None,
    ) -> WorkflowState:
        """Record a step-execution status change in the run's history.

        A ``running`` mark opens a new record; any other status closes the most
        recent open record for ``step_id`` (or appends one if none is open).
        """

        state = self.require(workflow_id)
        now = utc_now_iso()
        records = list(state.steps)

        if status in ("pending", "running"):
            records.append(
                StepState(
                    id=step_id,
                    status=status,
                    subagent_type=subagent_type,
                    started_at=now if status == "running" else None,
                )
            )
        else:
            for idx in range(len(records) - 1, -1, -1):
                record = records[idx]
                if record.id == step_id and record.status in ("pending", "running"):
                    records[idx] = record.model_copy(
                        update={"status": status, "completed_at": now}
                    )
                    break
            else:
                records.append(
                    StepState(
                        id=step_id,
                        status=status,
                        subagent_type=subagent_type,
                        completed_at=now,
                    )
                )
        return self.update(workflow_id, steps=records)

    # ------------------------------------------------------------------
    # Pending-step queue (FIFO)
    # ------------------------------------------------------------------

    def push_pending_step(self, workflow_id: str, pending: PendingStep) -> WorkflowState:
        state = self.require(workflow_id)
        return self.update(workflow_id, pending_steps=[*state.pending_steps, pending])

    def pop_pending_step(self, workflow_id: str) -> PendingStep | None:
        state = self.load(workflow_id)
        if state is None or not state.pending_steps:
            return None
        first, *rest = state.pending_steps
        self.update(workflow_id, pending_steps=rest)
        return first

    # ------------------------------------------------------------------
    # Agent bindings
    # ------------------------------------------------------------------

    def bind_agent(self, workflow_id: str, agent_id: str, step_id: StepId) -> WorkflowState:
        state = self.require(workflow_id)
        bindings = dict(state.agent_bindings)
        bindings[agent_id] = AgentBinding(step_id=step_id, status="running")
        return self.update(workflow_id, agent_bindings=bindings)

    def get_agent_binding(self, workflow_id: str, agent_id: str) -> AgentBinding | None:
        return self.require(workflow_id).agent_bindings.get(agent_id)

    def update_agent_binding(self, workflow_id: str, agent_id: str, **changes: Any) -> WorkflowState:
        """Update ``status``, ``result`` and/or ``child_workflow_id`` of a binding.

        Raises:
            NotFoundError: unknown workflow.
            AgentBindingNotFoundError: the agent was never bound to this workflow.
        """

        state = self.require(workflow_id)
        existing = state.agent_bindings.get(agent_id)
        if existing is None:
            raise AgentBindingNotFoundError(
                "No binding for agent", workflow_id=workflow_id, agent_id=agent_id
            )
        bindings = dict(state.agent_bindings)
        bindings[agent_id] = AgentBinding.model_validate({**existing.model_dump(), **changes})
        return self.update(workflow_id, agent_bindings=bindings)

    def get_child_workflow_result(self, child_id: str) -> Result | None:
        """``fail`` if the child stopped, ``pass`` if it completed, None while running.

        A child record that cannot be found counts as ``pass``.
        """

        child = self.load(child_id)
        if child is None:
            logger.warning(
                "Child workflow record missing; reporting pass",
                extra={"child_workflow_id": child_id},
            )
            return "pass"
        if child.is_stopped:
            return "fail"
        if child.is_completed:
            return "pass"
        return None

    # ------------------------------------------------------------------
    # Substep tracking
    # ------------------------------------------------------------------

    def initialize_substeps(self, workflow_id: str, substeps: Sequence[Substep]) -> WorkflowState:
        """Seed one pending entry per non-dynamic substep."""

        self.require(workflow_id)
        states = [SubstepState(id=s.id) for s in substeps if not s.is_dynamic]
        return self.update(workflow_id, substep_states=states)

    def add_dynamic_substep(self, workflow_id: str) -> str:
        """Append a pending substep with the next sequential numeric id and return that id."""

        state = self.require(workflow_id)
        existing = list(state.substep_states or [])
        next_id = str(len(existing) + 1)
        self.update(workflow_id, substep_states=[*existing, SubstepState(id=next_id)])
        return next_id

    def bind_substep_agent(self, workflow_id: str, substep_id: str, agent_id: str) -> WorkflowState:
        state = self.require(workflow_id)
        updated = [
            s.model_copy(update={"status": "running", "agent_id": agent_id})
            if s.id == substep_id
            else s
            for s in state.substep_states or []
        ]
        return self.update(workflow_id, substep_states=updated)

    def complete_substep(self, workflow_id: str, substep_id: str, result: Result) -> WorkflowState:
        state = self.require(workflow_id)
        updated = [
            s.model_copy(update={"status": "done", "result": result}) if s.id == substep_id else s
            for s in state.substep_states or []
        ]
        return self.update(workflow_id, substep_states=updated)
