from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .step_id import StepId


@dataclass(frozen=True, slots=True)
class PassEvent:
    """The current step (or substep) succeeded."""

    type: Literal["PASS"] = "PASS"


@dataclass(frozen=True, slots=True)
class FailEvent:
    """The current step (or substep) failed."""

    type: Literal["FAIL"] = "FAIL"


@dataclass(frozen=True, slots=True)
class RetryEvent:
    """Re-enter the current state, bumping the retry count unconditionally."""

    type: Literal["RETRY"] = "RETRY"


@dataclass(frozen=True, slots=True)
class GotoEvent:
    """Jump to an explicit target from whatever state is current."""

    target: StepId
    type: Literal["GOTO"] = "GOTO"


WorkflowEvent = PassEvent | FailEvent | RetryEvent | GotoEvent

PASS = PassEvent()
FAIL = FailEvent()
RETRY = RetryEvent()


def goto(target: StepId | str) -> GotoEvent:
    if isinstance(target, str):
        target = StepId.parse(target)
    return GotoEvent(target=target)
