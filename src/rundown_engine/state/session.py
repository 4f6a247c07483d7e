"""Per-project session: workflow stacks per calling agent plus one stash slot.

The session is an explicit value. The stack operations below are pure
functions over a ``Session``; ``SessionStore`` loads and saves it, and
``SessionStackManager`` combines both with the run store for the host.

Older session files only carried a single ``activeWorkflow`` field. That shape
is normalized once on load and never written back.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from rundown_engine.errors import StoreIOError
from rundown_engine.state.manager import WorkflowStateStore, write_json_atomic
from rundown_engine.state.models import WorkflowState

logger = logging.getLogger(__name__)


class Session(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    stacks: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    default_stack: tuple[str, ...] = ()
    stashed_workflow_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_active_workflow(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        legacy = data.pop("activeWorkflow", None)
        has_stacks = any(k in data for k in ("stacks", "defaultStack", "default_stack"))
        if legacy and not has_stacks:
            data["defaultStack"] = [legacy]
        return data

    def stack(self, agent_id: str | None = None) -> tuple[str, ...]:
        if agent_id:
            return self.stacks.get(agent_id, ())
        return self.default_stack

    def with_stack(self, stack: tuple[str, ...], agent_id: str | None = None) -> Session:
        if agent_id:
            return self.model_copy(update={"stacks": {**self.stacks, agent_id: stack}})
        return self.model_copy(update={"default_stack": stack})

    def to_json(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def active_id(session: Session, agent_id: str | None = None) -> str | None:
    stack = session.stack(agent_id)
    return stack[-1] if stack else None


def push(session: Session, workflow_id: str, agent_id: str | None = None) -> Session:
    return session.with_stack((*session.stack(agent_id), workflow_id), agent_id)


def pop(session: Session, agent_id: str | None = None) -> tuple[Session, str | None]:
    """Drop the top of the stack; return the new session and the new top (the parent)."""

    stack = session.stack(agent_id)[:-1]
    return session.with_stack(stack, agent_id), (stack[-1] if stack else None)


def stash(session: Session, agent_id: str | None = None) -> tuple[Session, str | None]:
    """Move the active workflow off its stack into the (single, shared) stash slot."""

    current = active_id(session, agent_id)
    if current is None:
        return session, None
    session, _ = pop(session, agent_id)
    return session.model_copy(update={"stashed_workflow_id": current}), current


def restore(session: Session, agent_id: str | None = None) -> tuple[Session, str | None]:
    """Push the stashed id back onto the indicated stack and clear the slot."""

    stashed = session.stashed_workflow_id
    if stashed is None:
        return session, None
    session = push(session, stashed, agent_id)
    return session.model_copy(update={"stashed_workflow_id": None}), stashed


class SessionStore:
    """Loads and saves the session file. A missing or unreadable file is an empty session."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Session:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return Session()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning(
                "Session file is not valid JSON; starting empty",
                extra={"path": str(self._path)},
            )
            return Session()
        except OSError as e:
            raise StoreIOError("Failed to read session", path=str(self._path)) from e

        try:
            return Session.model_validate(raw)
        except ValidationError:
            logger.warning(
                "Session file has unexpected shape; starting empty",
                extra={"path": str(self._path)},
            )
            return Session()

    def save(self, session: Session) -> None:
        try:
            write_json_atomic(self._path, session.to_json())
        except OSError as e:
            raise StoreIOError("Failed to write session", path=str(self._path)) from e


class SessionStackManager:
    """Stack operations over the persisted session, resolved against the run store."""

    def __init__(self, sessions: SessionStore, store: WorkflowStateStore) -> None:
        self._sessions = sessions
        self._store = store

    def get_active(self, agent_id: str | None = None) -> WorkflowState | None:
        workflow_id = active_id(self._sessions.load(), agent_id)
        return self._store.load(workflow_id) if workflow_id else None

    def get_active_id(self, agent_id: str | None = None) -> str | None:
        return active_id(self._sessions.load(), agent_id)

    def push_workflow(self, workflow_id: str, agent_id: str | None = None) -> None:
        self._sessions.save(push(self._sessions.load(), workflow_id, agent_id))
        logger.info("Workflow pushed", extra={"workflow_id": workflow_id, "agent_id": agent_id})

    def pop_workflow(self, agent_id: str | None = None) -> str | None:
        """Pop the active workflow; return the parent now on top, or None."""

        session, parent_id = pop(self._sessions.load(), agent_id)
        self._sessions.save(session)
        logger.info("Workflow popped", extra={"parent_id": parent_id, "agent_id": agent_id})
        return parent_id

    def stash(self, agent_id: str | None = None) -> str | None:
        session, stashed = stash(self._sessions.load(), agent_id)
        if stashed is None:
            return None
        self._sessions.save(session)
        logger.info("Workflow stashed", extra={"workflow_id": stashed, "agent_id": agent_id})
        return stashed

    def restore(self, agent_id: str | None = None) -> WorkflowState | None:
        """Bring back the stashed workflow.

        If the stashed record no longer exists the slot is still cleared and
        None is returned.
        """

        session = self._sessions.load()
        stashed_id = session.stashed_workflow_id
        if stashed_id is None:
            return None

        state = self._store.load(stashed_id)
        if state is None:
            self._sessions.save(session.model_copy(update={"stashed_workflow_id": None}))
            logger.warning("Stashed workflow no longer exists", extra={"workflow_id": stashed_id})
            return None

        session, _ = restore(session, agent_id)
        self._sessions.save(session)
        logger.info("Workflow restored", extra={"workflow_id": stashed_id, "agent_id": agent_id})
        return state

    def get_stashed_workflow_id(self) -> str | None:
        return self._sessions.load().stashed_workflow_id

    def is_on_any_stack(self, workflow_id: str) -> bool:
        session = self._sessions.load()
        if workflow_id in session.default_stack:
            return True
        return any(workflow_id in stack for stack in session.stacks.values())
