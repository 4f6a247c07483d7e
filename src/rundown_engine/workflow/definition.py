"""In-memory workflow definition.

The textual DSL is parsed elsewhere; this module only describes the structure
the parser hands over. Field names accept both snake_case and the parser's
camelCase (``isDynamic``, ``agentType``), and a raw ``name`` made of digits is
treated as a step number so parser output can be validated directly.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, PositiveInt, model_validator

from .actions import Transitions
from .step_id import DEFINITION_CONFIG, DYNAMIC_STEP, DYNAMIC_SUBSTEP, is_step_number


class Command(BaseModel):
    model_config = DEFINITION_CONFIG

    code: str

    @model_validator(mode="before")
    @classmethod
    def _from_plain_string(cls, data: object) -> object:
        if isinstance(data, str):
            return {"code": data}
        return data


class Substep(BaseModel):
    model_config = DEFINITION_CONFIG

    id: str
    description: str = ""
    agent_type: str | None = None
    is_dynamic: bool = False
    command: Command | None = None
    prompt: str | None = Field(default=None, min_length=1)
    transitions: Transitions | None = None
    workflows: tuple[str, ...] = ()

    @property
    def is_named(self) -> bool:
        return not is_step_number(self.id) and self.id != DYNAMIC_SUBSTEP


class Step(BaseModel):
    """A numbered, named or dynamic step.

    Exactly one addressing scheme applies: ``number`` for static steps,
    ``name`` for named steps, neither for the dynamic ``{N}`` template.
    """

    model_config = DEFINITION_CONFIG

    number: PositiveInt | None = None
    name: str | None = None
    is_dynamic: bool = False
    description: str = ""
    command: Command | None = None
    prompt: str | None = Field(default=None, min_length=1)
    transitions: Transitions | None = None
    substeps: tuple[Substep, ...] = ()
    workflows: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _normalize_name(cls, data: object) -> object:
        if not isinstance(data, dict):
            return data
        name = data.get("name")
        if not isinstance(name, str):
            return data
        data = dict(data)
        if name == DYNAMIC_STEP:
            data.pop("name")
            data["isDynamic"] = True
            data.pop("is_dynamic", None)
        elif is_step_number(name) and data.get("number") is None:
            data.pop("name")
            data["number"] = int(name)
        return data

    @model_validator(mode="after")
    def _one_addressing_scheme(self) -> Step:
        if self.is_dynamic:
            if self.number is not None or self.name is not None:
                raise ValueError("A dynamic step cannot carry a fixed number or name")
            return self
        if self.number is not None and self.name is not None:
            raise ValueError("A step is either numbered or named, not both")
        if self.number is None and self.name is None:
            raise ValueError("A static step needs a number or a name")
        return self

    @property
    def is_named(self) -> bool:
        return self.name is not None

    @property
    def key(self) -> str:
        """Addressing key: ``"3"``, ``"Cleanup"`` or ``"{N}"``."""

        if self.is_dynamic:
            return DYNAMIC_STEP
        if self.number is not None:
            return str(self.number)
        assert self.name is not None
        return self.name

    @property
    def static_substeps(self) -> tuple[Substep, ...]:
        return tuple(s for s in self.substeps if not s.is_dynamic)

    def substep(self, substep_id: str) -> Substep | None:
        for substep in self.substeps:
            if substep.id == substep_id:
                return substep
        return None


class Workflow(BaseModel):
    model_config = DEFINITION_CONFIG

    title: str | None = None
    description: str | None = None
    steps: tuple[Step, ...] = ()

    @property
    def is_dynamic(self) -> bool:
        return bool(self.steps) and self.steps[0].is_dynamic

    def step(self, key: str) -> Step | None:
        for step in self.steps:
            if step.key == key:
                return step
        return None
