#!/usr/bin/env python3
"""Programmatic workflow run example.

This demonstrates using the engine components directly:

* load settings from `.env`
* start a run of a small three-step workflow
* feed PASS/FAIL events and watch the run move through its states

Runs are persisted under `<project>/.claude/rundown/runs/`.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from rundown_engine.config import EngineSettings
from rundown_engine.core.orchestrator import WorkflowOrchestrator
from rundown_engine.logging import configure_logging
from rundown_engine.workflow import FAIL, PASS, Workflow


def _build_workflow() -> Workflow:
    return Workflow.model_validate(
        {
            "title": "Build and verify",
            "steps": [
                {
                    "number": 1,
                    "description": "Build",
                    "command": "echo build",
                },
                {
                    "number": 2,
                    "description": "Verify",
                    "prompt": "Check the build output",
                    "transitions": {
                        "all": True,
                        "pass": {"kind": "pass", "action": {"type": "CONTINUE"}},
                        "fail": {
                            "kind": "fail",
                            "action": {
                                "type": "RETRY",
                                "max": 1,
                                "then": {"type": "GOTO", "target": {"step": 1}},
                            },
                        },
                    },
                },
                {"number": 3, "description": "Ship"},
            ],
        }
    )


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive a workflow run (programmatic example).")
    parser.add_argument("--project", default=".", help="Project root holding the state directory")
    parser.add_argument(
        "--events",
        default="PASS,FAIL,FAIL,PASS,PASS,PASS",
        help='Comma-separated events to feed, e.g. "PASS,FAIL"',
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings()
    configure_logging(settings.log_level, module_levels=settings.module_log_levels)

    workflow = _build_workflow()
    orchestrator = WorkflowOrchestrator.from_settings(Path(args.project), settings)
    state = orchestrator.start("build-and-verify.runbook.md", workflow)
    print(f"Started {state.id} at step {state.step}")

    for name in (e.strip().upper() for e in args.events.split(",") if e.strip()):
        outcome = orchestrator.apply(PASS if name == "PASS" else FAIL, workflow)
        print(f"{name:<4} -> {outcome.action:<16} step={outcome.state.step} ({outcome.status})")
        if outcome.status != "running":
            break

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
