"""Unit tests for per-agent workflow stacks and the stash slot."""

from __future__ import annotations

import json
from pathlib import Path

from rundown_engine.state.manager import WorkflowStateStore
from rundown_engine.state.session import (
    Session,
    SessionStackManager,
    SessionStore,
    active_id,
    pop,
    push,
    restore,
    stash,
)
from rundown_engine.workflow.definition import Workflow


def test_stack_functions_are_pure() -> None:
    empty = Session()
    pushed = push(empty, "wf-A")

    assert active_id(empty) is None
    assert active_id(pushed) == "wf-A"

    popped, parent = pop(push(pushed, "wf-B"))
    assert parent == "wf-A"
    assert active_id(popped) == "wf-A"


def test_pop_on_empty_stack_is_a_no_op() -> None:
    session, parent = pop(Session())

    assert parent is None
    assert session.default_stack == ()


def test_stash_then_restore_is_identity() -> None:
    before = push(push(Session(), "wf-A"), "wf-B")

    stashed, stashed_id = stash(before)
    after, restored_id = restore(stashed)

    assert stashed_id == restored_id == "wf-B"
    assert stashed.stashed_workflow_id == "wf-B"
    assert after == before


def test_legacy_active_workflow_is_migrated() -> None:
    session = Session.model_validate({"activeWorkflow": "wf-old"})

    assert session.default_stack == ("wf-old",)
    assert "activeWorkflow" not in session.to_json()


def test_legacy_field_ignored_when_stacks_present() -> None:
    session = Session.model_validate({"activeWorkflow": "wf-old", "defaultStack": ["wf-new"]})

    assert session.default_stack == ("wf-new",)


def test_session_store_roundtrip(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "rundown" / "session.json")
    assert store.load() == Session()

    store.save(push(push(Session(), "wf-A", "agent1"), "wf-B"))

    raw = json.loads(store.path.read_text(encoding="utf-8"))
    assert raw["stacks"] == {"agent1": ["wf-A"]}
    assert raw["defaultStack"] == ["wf-B"]
    assert store.load().stack("agent1") == ("wf-A",)


def test_invalid_session_file_loads_empty(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    path.write_text("[1, 2", encoding="utf-8")

    assert SessionStore(path).load() == Session()


def test_stacks_are_isolated_per_agent(
    sessions: SessionStackManager, store: WorkflowStateStore, linear_workflow: Workflow
) -> None:
    wf_a = store.create("a.runbook.md", linear_workflow, agent_id="agent1")
    wf_b = store.create("b.runbook.md", linear_workflow)

    sessions.push_workflow(wf_a.id, "agent1")
    sessions.push_workflow(wf_b.id)

    active_agent = sessions.get_active("agent1")
    active_default = sessions.get_active()
    assert active_agent is not None and active_agent.id == wf_a.id
    assert active_default is not None and active_default.id == wf_b.id

    assert sessions.pop_workflow("agent1") is None
    assert sessions.get_active("agent1") is None
    assert sessions.get_active_id() == wf_b.id


def test_manager_stash_restore_round_trip(
    sessions: SessionStackManager, store: WorkflowStateStore, linear_workflow: Workflow
) -> None:
    parent = store.create("p.runbook.md", linear_workflow)
    child = store.create("c.runbook.md", linear_workflow)
    sessions.push_workflow(parent.id)
    sessions.push_workflow(child.id)

    assert sessions.stash() == child.id
    assert sessions.get_active_id() == parent.id
    assert sessions.get_stashed_workflow_id() == child.id
    assert sessions.is_on_any_stack(child.id) is False

    restored = sessions.restore()

    assert restored is not None and restored.id == child.id
    assert sessions.get_active_id() == child.id
    assert sessions.get_stashed_workflow_id() is None
    assert sessions.pop_workflow() == parent.id


def test_restore_of_deleted_run_clears_slot(
    sessions: SessionStackManager, store: WorkflowStateStore, linear_workflow: Workflow
) -> None:
    created = store.create("a.runbook.md", linear_workflow)
    sessions.push_workflow(created.id)
    sessions.stash()
    store.delete(created.id)

    assert sessions.restore() is None
    assert sessions.get_stashed_workflow_id() is None
    assert sessions.get_active_id() is None


def test_stash_with_nothing_active(sessions: SessionStackManager) -> None:
    assert sessions.stash() is None
    assert sessions.restore() is None
