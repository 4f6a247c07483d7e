"""Test configuration and fixtures."""

from pathlib import Path

import pytest

from rundown_engine.config import EngineSettings
from rundown_engine.core.orchestrator import WorkflowOrchestrator
from rundown_engine.state.manager import WorkflowStateStore
from rundown_engine.state.session import SessionStackManager, SessionStore
from rundown_engine.workflow.actions import (
    CompleteAction,
    ContinueAction,
    GotoAction,
    RetryAction,
    StopAction,
    Transitions,
)
from rundown_engine.workflow.definition import Step, Substep, Workflow
from rundown_engine.workflow.step_id import StepId


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Provide a temporary project root."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    """Provide test settings that never pick up a developer `.env`."""
    return EngineSettings(_env_file=None, state_dir=tmp_path / ".state", log_level="DEBUG")


@pytest.fixture
def store(settings: EngineSettings, project_root: Path) -> WorkflowStateStore:
    return WorkflowStateStore(settings.runs_dir(project_root))


@pytest.fixture
def sessions(
    settings: EngineSettings, project_root: Path, store: WorkflowStateStore
) -> SessionStackManager:
    return SessionStackManager(SessionStore(settings.session_file(project_root)), store)


@pytest.fixture
def orchestrator(
    store: WorkflowStateStore, sessions: SessionStackManager
) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(store, sessions)


@pytest.fixture
def linear_workflow() -> Workflow:
    """Three numbered steps with default transitions."""
    return Workflow(
        title="Linear",
        steps=(
            Step(number=1, description="First"),
            Step(number=2, description="Second"),
            Step(number=3, description="Third"),
        ),
    )


@pytest.fixture
def loop_workflow() -> Workflow:
    """1 -> 2 -> (FAIL: back to 1) -> 3 -> COMPLETE."""
    return Workflow(
        title="Loop",
        steps=(
            Step(number=1, description="Build"),
            Step(
                number=2,
                description="Verify",
                transitions=Transitions.of(ContinueAction(), GotoAction(target=StepId(step=1))),
            ),
            Step(
                number=3,
                description="Ship",
                transitions=Transitions.of(CompleteAction(message="Shipped"), StopAction()),
            ),
        ),
    )


@pytest.fixture
def substep_workflow() -> Workflow:
    """Step 3 has substeps a/b/c; b jumps to step 4 on pass."""
    return Workflow(
        title="Substeps",
        steps=(
            Step(number=1, description="One"),
            Step(number=2, description="Two"),
            Step(
                number=3,
                description="Three",
                substeps=(
                    Substep(id="a", description="3a"),
                    Substep(
                        id="b",
                        description="3b",
                        transitions=Transitions.of(
                            GotoAction(target=StepId(step=4)),
                            RetryAction(max=2, then=StopAction()),
                        ),
                    ),
                    Substep(id="c", description="3c"),
                ),
            ),
            Step(number=4, description="Four"),
        ),
    )


@pytest.fixture
def dynamic_workflow() -> Workflow:
    """A single `{N}` template step with two substeps; PASS on the last starts the next instance."""
    return Workflow(
        title="Batches",
        steps=(
            Step(
                name="{N}",
                description="Process batch",
                substeps=(
                    Substep(id="1", description="Fetch"),
                    Substep(
                        id="2",
                        description="Apply",
                        transitions=Transitions.of(
                            GotoAction(target=StepId(step="NEXT")), StopAction()
                        ),
                    ),
                ),
            ),
        ),
    )


@pytest.fixture
def dynamic_substep_workflow() -> Workflow:
    """A `{N}` step whose only substep is the `{n}` template; items are opened at run time."""
    next_or_stop = Transitions.of(GotoAction(target=StepId(step="NEXT")), StopAction())
    return Workflow(
        title="Items",
        steps=(
            Step(
                name="{N}",
                description="Process batch",
                transitions=next_or_stop,
                substeps=(
                    Substep(
                        id="{n}",
                        description="Process item",
                        is_dynamic=True,
                        transitions=next_or_stop,
                    ),
                ),
            ),
        ),
    )
