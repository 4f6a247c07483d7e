"""Typed errors raised by the engine.

Every error carries keyword context (workflow id, step, substep, expected vs
found, ...) so a CLI/hook layer can render a precise message without parsing
strings.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, object] = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class NotFoundError(EngineError, LookupError):
    """A workflow id (or other record) does not resolve on a mutating path."""


class AgentBindingNotFoundError(NotFoundError):
    pass


class DefinitionError(EngineError, ValueError):
    """The workflow definition is inconsistent (bad GOTO target, duplicate ids, ...)."""


class InvalidSnapshotError(EngineError, ValueError):
    """A persisted snapshot points at a state the compiled machine does not have."""


class StoreIOError(EngineError):
    """Reading or writing the durable store failed."""


class NoActiveWorkflowError(EngineError):
    pass
