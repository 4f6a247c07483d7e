"""Structured logging configuration.

One JSON object per line on stdout. The engine runs as a short-lived process
per host event, so every record has to stand on its own: the run it belongs
to (``workflow_id``), the agent that caused it (``agent_id``) and the
position in the workflow are lifted to the top level of the payload, where a
log query can filter on them without digging into ``extra``.

Engine errors attached to a record (``logger.exception`` or ``exc_info=``)
also carry their keyword context as a structured ``error`` object.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TextIO

from rundown_engine.errors import EngineError

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}

CONTEXT_FIELDS: tuple[str, ...] = ("workflow_id", "agent_id", "step", "substep", "instance")


class JsonFormatter(logging.Formatter):
    """Render records as JSON with run context at the top level."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in CONTEXT_FIELDS:
                if value is not None:
                    payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            error = record.exc_info[1]
            if isinstance(error, EngineError):
                payload["error"] = {
                    "type": type(error).__name__,
                    "message": error.message,
                    "context": error.context,
                }
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(
    level: str,
    *,
    module_levels: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Install a single JSON handler on the root logger.

    ``module_levels`` overrides the level of individual loggers, e.g.
    ``{"rundown_engine.state": "WARNING"}`` to quiet store traffic while the
    orchestrator logs at DEBUG.
    """

    root = logging.getLogger()

    # Re-configuring must not duplicate output.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    for name, module_level in (module_levels or {}).items():
        logging.getLogger(name).setLevel(module_level.upper())
