"""Compile a workflow definition into an explicit state table.

Every (step, substep) pair becomes one addressable state, in document order;
steps without substeps yield a single state. Two synthetic terminal states,
``COMPLETE`` and ``STOPPED``, always exist.

Each state carries its resolved PASS and FAIL rules. A rule is either a plain
``Transition`` (target state + substep + whether it advances the dynamic
instance counter) or a ``RetryTransition`` whose self-loop must be tried
before its fallback.

State ids (``step_3``, ``step_3_b``) are only keys. The step/substep they
stand for travels alongside in ``StateRef``; nothing parses ids back.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import assert_never

from rundown_engine.errors import DefinitionError, InvalidSnapshotError

from .actions import (
    DEFAULT_TRANSITIONS,
    CompleteAction,
    ContinueAction,
    GotoAction,
    RetryAction,
    StopAction,
    Transitions,
)
from .definition import Step
from .step_id import DYNAMIC_STEP, NAMED_IDENTIFIER, NEXT, RESERVED_WORDS, StepId

logger = logging.getLogger(__name__)

COMPLETE = "COMPLETE"
STOPPED = "STOPPED"
TERMINAL_STATES: frozenset[str] = frozenset({COMPLETE, STOPPED})


@dataclass(frozen=True, slots=True)
class StateRef:
    """The step (by key) and optional substep a compiled state stands for."""

    step: str
    substep: str | None = None

    @property
    def state_id(self) -> str:
        if self.substep is None:
            return f"step_{self.step}"
        return f"step_{self.step}_{self.substep}"


@dataclass(frozen=True, slots=True)
class Transition:
    """Move to ``target``, reset the retry count and set the current substep."""

    target: str
    substep: str | None = None
    next_instance: bool = False


@dataclass(frozen=True, slots=True)
class RetryTransition:
    """Self-loop while ``retry_count < max``; otherwise take ``fallback``."""

    max: int
    fallback: Transition


CompiledRule = Transition | RetryTransition


@dataclass(frozen=True, slots=True)
class CompiledState:
    ref: StateRef
    transitions: Transitions
    on_pass: CompiledRule
    on_fail: CompiledRule

    @property
    def state_id(self) -> str:
        return self.ref.state_id


@dataclass(frozen=True, slots=True)
class CompiledMachine:
    initial: str
    states: Mapping[str, CompiledState]
    goto_table: Mapping[str, Transition]
    steps: tuple[Step, ...]

    def is_terminal(self, state_id: str) -> bool:
        return state_id in TERMINAL_STATES

    def state(self, state_id: str) -> CompiledState:
        try:
            return self.states[state_id]
        except KeyError:
            raise InvalidSnapshotError(
                "State is not part of the compiled workflow",
                found=state_id,
            ) from None

    def successor(self, state_id: str) -> str:
        """The state CONTINUE would reach from ``state_id`` in flattened order."""

        ids = list(self.states)
        index = ids.index(state_id)
        return ids[index + 1] if index + 1 < len(ids) else COMPLETE

    def retry_max(self, state_id: str) -> int:
        state = self.state(state_id)
        for rule in (state.on_fail, state.on_pass):
            if isinstance(rule, RetryTransition):
                return rule.max
        return 0

    def step_for(self, ref: StateRef) -> Step | None:
        for step in self.steps:
            if step.key == ref.step:
                return step
        return None

    def resolve_goto(self, target: StepId) -> Transition:
        """Resolve an inbound GOTO event, independent of the issuing state."""

        transition = self.goto_table.get(target.key)
        if transition is None:
            raise DefinitionError("GOTO target does not exist", found=target.key)
        return transition


def _check_identities(steps: Sequence[Step]) -> None:
    seen_keys: set[str] = set()
    seen_state_ids: set[str] = set()
    for step in steps:
        if step.name is not None and (
            not NAMED_IDENTIFIER.match(step.name) or step.name in RESERVED_WORDS
        ):
            raise DefinitionError("Invalid step name", step=step.name)
        if step.key in seen_keys:
            raise DefinitionError("Duplicate step identity", step=step.key)
        seen_keys.add(step.key)

        substep_ids: set[str] = set()
        for substep in step.substeps:
            if substep.id in substep_ids:
                raise DefinitionError("Duplicate substep id", step=step.key, substep=substep.id)
            substep_ids.add(substep.id)

        for ref in _refs_for(step):
            if ref.state_id in seen_state_ids:
                raise DefinitionError("Ambiguous state id", found=ref.state_id, step=step.key)
            seen_state_ids.add(ref.state_id)


def _refs_for(step: Step) -> list[StateRef]:
    if step.substeps:
        return [StateRef(step.key, substep.id) for substep in step.substeps]
    return [StateRef(step.key)]


class _Resolver:
    def __init__(self, steps: tuple[Step, ...], order: list[StateRef]) -> None:
        self._steps = steps
        self._known = {ref.state_id for ref in order}
        self._first: dict[str, StateRef] = {}
        for ref in order:
            self._first.setdefault(ref.step, ref)
        self._by_number = {s.number: s for s in steps if s.number is not None}
        self._by_name = {s.name: s for s in steps if s.name is not None}
        self._dynamic = next((s for s in steps if s.is_dynamic), None)
        self.goto_table: dict[str, Transition] = {}

    def _checked(self, ref: StateRef, target: StepId) -> Transition:
        if ref.state_id not in self._known:
            raise DefinitionError(
                "GOTO target substep does not exist",
                step=ref.step,
                substep=ref.substep,
                found=target.key,
            )
        return Transition(target=ref.state_id, substep=ref.substep)

    def goto(self, target: StepId) -> Transition:
        transition = self._goto(target)
        self.goto_table[target.key] = transition
        return transition

    def _goto(self, target: StepId) -> Transition:
        step = target.step

        if step == NEXT:
            first = self._first[self._steps[0].key]
            return Transition(target=first.state_id, substep=first.substep, next_instance=True)

        if step == DYNAMIC_STEP:
            dynamic = self._dynamic or self._steps[0]
            substep = target.substep
            if substep is None:
                # "{N}" alone means the first substep of the instance.
                if dynamic.substep("1") is not None:
                    substep = "1"
                else:
                    substep = self._first[dynamic.key].substep
            return self._checked(StateRef(dynamic.key, substep), target)

        if isinstance(step, int):
            if not 1 <= step <= len(self._steps):
                raise DefinitionError(
                    "GOTO step number out of range",
                    expected=f"1..{len(self._steps)}",
                    found=step,
                )
            resolved = self._by_number.get(step)
        else:
            resolved = self._by_name.get(step)
        if resolved is None:
            raise DefinitionError("GOTO target step does not exist", found=target.key)

        substep = target.substep
        if substep is None:
            substep = self._first[resolved.key].substep
        return self._checked(StateRef(resolved.key, substep), target)

    def rule(
        self,
        action: ContinueAction | CompleteAction | StopAction | GotoAction | RetryAction,
        following: StateRef | None,
    ) -> CompiledRule:
        match action:
            case ContinueAction():
                if following is None:
                    return Transition(target=COMPLETE)
                return Transition(target=following.state_id, substep=following.substep)
            case CompleteAction():
                return Transition(target=COMPLETE)
            case StopAction():
                return Transition(target=STOPPED)
            case GotoAction(target=target):
                return self.goto(target)
            case RetryAction(max=max_retries, then=then):
                fallback = self.rule(then, following)
                assert isinstance(fallback, Transition)
                return RetryTransition(max=max_retries, fallback=fallback)
            case _:
                assert_never(action)


def compile_workflow(steps: Sequence[Step]) -> CompiledMachine:
    """Compile ordered steps into a deterministic state table.

    Raises:
        DefinitionError: duplicate identities, invalid names or unresolvable
            GOTO targets (including step numbers outside ``1..len(steps)``).
    """

    steps = tuple(steps)
    if not steps:
        return CompiledMachine(initial=COMPLETE, states={}, goto_table={}, steps=())

    _check_identities(steps)

    flattened: list[tuple[StateRef, Transitions]] = []
    for step in steps:
        if step.substeps:
            for substep in step.substeps:
                flattened.append(
                    (StateRef(step.key, substep.id), substep.transitions or DEFAULT_TRANSITIONS)
                )
        else:
            flattened.append((StateRef(step.key), step.transitions or DEFAULT_TRANSITIONS))

    order = [ref for ref, _ in flattened]
    resolver = _Resolver(steps, order)

    states: dict[str, CompiledState] = {}
    for index, (ref, transitions) in enumerate(flattened):
        following = order[index + 1] if index + 1 < len(order) else None
        states[ref.state_id] = CompiledState(
            ref=ref,
            transitions=transitions,
            on_pass=resolver.rule(transitions.pass_.action, following),
            on_fail=resolver.rule(transitions.fail.action, following),
        )

    # Inbound GOTO events may address any state, not only targets declared in actions.
    resolver.goto(StepId(step=NEXT))
    for ref in order:
        resolver.goto(StepId(step=ref.step))
        if ref.substep is not None:
            resolver.goto(StepId(step=ref.step, substep=ref.substep))

    logger.debug(
        "Compiled workflow",
        extra={"states": len(states), "initial": order[0].state_id},
    )
    return CompiledMachine(
        initial=order[0].state_id,
        states=states,
        goto_table=dict(sorted(resolver.goto_table.items())),
        steps=steps,
    )
