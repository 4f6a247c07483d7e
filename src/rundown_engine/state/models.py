"""Persisted records for workflow runs.

Records are written as camelCase JSON (``retryCount``, ``agentBindings``) and
validated on every load; a record that does not validate is treated as absent.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt
from pydantic.alias_generators import to_camel

from rundown_engine.workflow.state_machine import ExecutionSnapshot, Variables
from rundown_engine.workflow.step_id import StepId

StepStatus = Literal["pending", "running", "complete", "stopped"]
AgentStatus = Literal["running", "done", "stopped"]
SubstepStatus = Literal["pending", "running", "done"]
Result = Literal["pass", "fail"]
LastAction = Literal["START", "CONTINUE", "GOTO", "COMPLETE", "STOP", "RETRY"]

RECORD_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="ignore",
)


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


class StepState(BaseModel):
    """One step-execution record in a run's history."""

    model_config = RECORD_CONFIG

    id: str
    status: StepStatus
    subagent_type: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


class PendingStep(BaseModel):
    """Queued when a step dispatches asynchronous work; dequeued when the agent starts."""

    model_config = RECORD_CONFIG

    step_id: StepId
    workflow: str | None = Field(default=None, description="Child workflow file, if any")


class AgentBinding(BaseModel):
    model_config = RECORD_CONFIG

    step_id: StepId
    status: AgentStatus = "running"
    result: Result | None = None
    child_workflow_id: str | None = None


class SubstepState(BaseModel):
    model_config = RECORD_CONFIG

    id: str
    status: SubstepStatus = "pending"
    agent_id: str | None = None
    result: Result | None = None


class WorkflowState(BaseModel):
    """The full persisted record of one workflow run."""

    model_config = RECORD_CONFIG

    id: str
    workflow: str = Field(description="Source workflow file reference")
    title: str | None = None
    description: str | None = None

    step: str = Field(description='Current step key: "1", "Cleanup" or "{N}"')
    instance: PositiveInt | None = Field(
        default=None, description="Dynamic instance counter (dynamic workflows only)"
    )
    substep: str | None = None
    step_name: str = ""
    retry_count: NonNegativeInt = 0
    variables: Variables = Field(default_factory=dict)
    steps: list[StepState] = Field(default_factory=list)

    pending_steps: list[PendingStep] = Field(default_factory=list)
    agent_bindings: dict[str, AgentBinding] = Field(default_factory=dict)
    substep_states: list[SubstepState] | None = None

    agent_id: str | None = None
    parent_workflow_id: str | None = None
    parent_step_id: StepId | None = None

    snapshot: ExecutionSnapshot | None = None

    started_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    prompted: bool | None = None
    last_result: Result | None = None
    last_action: LastAction | None = None

    @property
    def is_completed(self) -> bool:
        return self.variables.get("completed") is True

    @property
    def is_stopped(self) -> bool:
        return self.variables.get("stopped") is True

    def to_json(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
