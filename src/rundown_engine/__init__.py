"""Rundown engine.

A resumable workflow engine for step-by-step runbooks:
- workflow definitions compiled into an explicit state table
- execution driven by one event per process, restartable from a snapshot
- JSON-file persistence of runs and per-agent workflow stacks
"""

__version__ = "0.1.0"

from rundown_engine.config import EngineSettings
from rundown_engine.core.orchestrator import WorkflowOrchestrator

__all__ = ["__version__", "EngineSettings", "WorkflowOrchestrator"]
