"""Actions and transition rules.

An Action is a closed tagged union discriminated on ``type``:

- CONTINUE: advance to the next state in flattened order
- COMPLETE: terminate successfully (optional message)
- STOP: terminate with failure (optional message)
- GOTO: jump to an explicit StepId
- RETRY: re-attempt up to ``max`` times, then fall through to ``then``

RETRY wraps a NonRetryAction, so retries cannot nest.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, PositiveInt

from .step_id import DEFINITION_CONFIG, StepId


class ContinueAction(BaseModel):
    model_config = DEFINITION_CONFIG

    type: Literal["CONTINUE"] = "CONTINUE"


class CompleteAction(BaseModel):
    model_config = DEFINITION_CONFIG

    type: Literal["COMPLETE"] = "COMPLETE"
    message: str | None = None


class StopAction(BaseModel):
    model_config = DEFINITION_CONFIG

    type: Literal["STOP"] = "STOP"
    message: str | None = None


class GotoAction(BaseModel):
    model_config = DEFINITION_CONFIG

    type: Literal["GOTO"] = "GOTO"
    target: StepId


NonRetryAction = Annotated[
    ContinueAction | CompleteAction | StopAction | GotoAction,
    Field(discriminator="type"),
]


class RetryAction(BaseModel):
    model_config = DEFINITION_CONFIG

    type: Literal["RETRY"] = "RETRY"
    max: PositiveInt
    then: NonRetryAction = Field(default_factory=StopAction)


Action = Annotated[
    ContinueAction | CompleteAction | StopAction | GotoAction | RetryAction,
    Field(discriminator="type"),
]

TransitionKind = Literal["pass", "fail", "yes", "no"]


class TransitionRule(BaseModel):
    """One named outcome (pass/fail, or yes/no for boolean-style steps) and its action."""

    model_config = DEFINITION_CONFIG

    kind: TransitionKind
    action: Action


class Transitions(BaseModel):
    """The pass/fail pair attached to a step or substep.

    ``all`` governs substep aggregation: True means every substep must pass
    for the step to pass, False means a single pass is enough.
    """

    model_config = DEFINITION_CONFIG

    all: bool = True
    pass_: TransitionRule = Field(alias="pass")
    fail: TransitionRule

    @classmethod
    def of(
        cls,
        on_pass: ContinueAction | CompleteAction | StopAction | GotoAction | RetryAction,
        on_fail: ContinueAction | CompleteAction | StopAction | GotoAction | RetryAction,
        *,
        require_all: bool = True,
    ) -> Transitions:
        return cls(
            all=require_all,
            pass_=TransitionRule(kind="pass", action=on_pass),
            fail=TransitionRule(kind="fail", action=on_fail),
        )


DEFAULT_TRANSITIONS = Transitions.of(ContinueAction(), StopAction())
