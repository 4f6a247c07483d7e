"""Step addressing.

A StepId targets a numbered step (``3``), a named step (``Cleanup``), the
current dynamic instance (``{N}``) or the next dynamic instance (``NEXT``),
optionally paired with a substep id (``3.b``, ``{N}.1``).
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

NEXT = "NEXT"
DYNAMIC_STEP = "{N}"
DYNAMIC_SUBSTEP = "{n}"

RESERVED_WORDS: frozenset[str] = frozenset(
    {
        "NEXT",
        "CONTINUE",
        "COMPLETE",
        "STOP",
        "GOTO",
        "RETRY",
        "PASS",
        "FAIL",
        "YES",
        "NO",
        "ALL",
        "ANY",
    }
)

NAMED_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Definition objects are produced once by the parser and only read afterwards.
DEFINITION_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
    extra="ignore",
)


def is_step_number(text: str) -> bool:
    return text.isascii() and text.isdigit()


class StepId(BaseModel):
    """A GOTO target or the step a pending agent was dispatched for."""

    model_config = DEFINITION_CONFIG

    step: int | str
    substep: str | None = None

    @field_validator("step", mode="before")
    @classmethod
    def _digits_to_number(cls, value: object) -> object:
        if isinstance(value, str) and is_step_number(value):
            return int(value)
        return value

    @field_validator("step")
    @classmethod
    def _valid_step(cls, value: int | str) -> int | str:
        if isinstance(value, int):
            if value < 1:
                raise ValueError(f"Step number must be positive, got {value}")
            return value
        if value in (NEXT, DYNAMIC_STEP):
            return value
        if not NAMED_IDENTIFIER.match(value) or value in RESERVED_WORDS:
            raise ValueError(f"Invalid step name: {value!r}")
        return value

    @model_validator(mode="after")
    def _next_has_no_substep(self) -> StepId:
        if self.step == NEXT and self.substep is not None:
            raise ValueError("NEXT target cannot have a substep")
        return self

    @property
    def step_key(self) -> str:
        return str(self.step)

    @property
    def key(self) -> str:
        if self.substep is None:
            return self.step_key
        return f"{self.step}.{self.substep}"

    @classmethod
    def parse(cls, text: str) -> StepId:
        """Parse ``"3"``, ``"3.b"``, ``"{N}.1"``, ``"NEXT"`` or ``"Cleanup.Recover"``."""

        text = text.strip()
        if text.startswith(DYNAMIC_STEP):
            rest = text[len(DYNAMIC_STEP) :]
            substep = rest[1:] if rest.startswith(".") else None
            if rest and substep is None:
                raise ValueError(f"Invalid step id: {text!r}")
            return cls(step=DYNAMIC_STEP, substep=substep or None)
        step, sep, substep = text.partition(".")
        if sep and not substep:
            raise ValueError(f"Invalid step id: {text!r}")
        return cls(step=step, substep=substep or None)

    def __str__(self) -> str:
        return self.key
