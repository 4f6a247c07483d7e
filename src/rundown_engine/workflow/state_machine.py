"""Resumable execution over a compiled workflow.

The engine runs as a fresh process per host event, so nothing lives in memory
between invocations: an ``ExecutionContext`` is rebuilt from the compiled
machine plus the persisted ``ExecutionSnapshot``, accepts exactly one event,
and hands back the next snapshot.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, assert_never

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, model_validator
from pydantic.alias_generators import to_camel

from rundown_engine.errors import InvalidSnapshotError

from .compiler import COMPLETE, STOPPED, CompiledMachine, RetryTransition, StateRef, Transition
from .events import FailEvent, GotoEvent, PassEvent, RetryEvent, WorkflowEvent

logger = logging.getLogger(__name__)

Variables = dict[str, bool | int | float | str]
ExecutionStatus = Literal["running", "complete", "stopped"]


class ExecutionSnapshot(BaseModel):
    """Minimal serializable execution position."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    state_id: str
    retry_count: NonNegativeInt = 0
    substep: str | None = None
    variables: Variables = Field(default_factory=dict)
    next_instance: bool = False

    @model_validator(mode="before")
    @classmethod
    def _from_statechart_layout(cls, data: Any) -> Any:
        # Older records persisted a statechart snapshot: {"value": ..., "context": {...}}.
        if not isinstance(data, dict) or "value" not in data:
            return data
        if "stateId" in data or "state_id" in data:
            return data
        context = data.get("context") or {}
        return {
            "stateId": data["value"],
            "retryCount": context.get("retryCount", 0),
            "substep": context.get("substep"),
            "variables": context.get("variables") or {},
            "nextInstance": bool(context.get("nextInstance", False)),
        }

    @property
    def status(self) -> ExecutionStatus:
        if self.state_id == COMPLETE:
            return "complete"
        if self.state_id == STOPPED:
            return "stopped"
        return "running"

    @property
    def is_done(self) -> bool:
        return self.status != "running"

    def to_json(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


def initial_snapshot(machine: CompiledMachine) -> ExecutionSnapshot:
    substep = None
    if not machine.is_terminal(machine.initial):
        substep = machine.state(machine.initial).ref.substep
    return ExecutionSnapshot(state_id=machine.initial, substep=substep)


class ExecutionContext:
    """A runnable cursor over a compiled machine."""

    def __init__(
        self, machine: CompiledMachine, snapshot: ExecutionSnapshot | None = None
    ) -> None:
        snapshot = snapshot or initial_snapshot(machine)
        if not machine.is_terminal(snapshot.state_id):
            # Fails loudly when the definition changed under a persisted run.
            machine.state(snapshot.state_id)
        self._machine = machine
        self._snapshot = snapshot

    @property
    def machine(self) -> CompiledMachine:
        return self._machine

    @property
    def snapshot(self) -> ExecutionSnapshot:
        return self._snapshot

    @property
    def status(self) -> ExecutionStatus:
        return self._snapshot.status

    @property
    def is_done(self) -> bool:
        return self._snapshot.is_done

    @property
    def ref(self) -> StateRef | None:
        """Step/substep of the current state; None once terminal."""

        if self.is_done:
            return None
        return self._machine.state(self._snapshot.state_id).ref

    def send(self, event: WorkflowEvent) -> ExecutionSnapshot:
        """Apply one event and return the resulting snapshot.

        Events sent to a finished run are ignored.
        """

        current = self._snapshot
        if current.is_done:
            logger.debug("Ignoring event on finished run", extra={"event": event.type})
            return current

        state = self._machine.state(current.state_id)
        match event:
            case PassEvent():
                nxt = self._follow(state.on_pass, current)
            case FailEvent():
                nxt = self._follow(state.on_fail, current)
            case RetryEvent():
                nxt = self._retry(current)
            case GotoEvent(target=target):
                nxt = self._take(self._machine.resolve_goto(target), current)
            case _:
                assert_never(event)

        logger.debug(
            "Applied event",
            extra={
                "event": event.type,
                "from_state": current.state_id,
                "to_state": nxt.state_id,
                "retry_count": nxt.retry_count,
            },
        )
        self._snapshot = nxt
        return nxt

    def _follow(
        self, rule: Transition | RetryTransition, current: ExecutionSnapshot
    ) -> ExecutionSnapshot:
        if isinstance(rule, RetryTransition):
            if current.retry_count < rule.max:
                return self._retry(current)
            return self._take(rule.fallback, current)
        return self._take(rule, current)

    @staticmethod
    def _retry(current: ExecutionSnapshot) -> ExecutionSnapshot:
        return current.model_copy(
            update={"retry_count": current.retry_count + 1, "next_instance": False}
        )

    @staticmethod
    def _take(transition: Transition, current: ExecutionSnapshot) -> ExecutionSnapshot:
        return ExecutionSnapshot(
            state_id=transition.target,
            retry_count=0,
            substep=transition.substep,
            variables=dict(current.variables),
            next_instance=transition.next_instance,
        )
