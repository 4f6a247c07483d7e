"""Unit tests for the Sphinx API pages."""

from __future__ import annotations

import importlib
import pkgutil
import re
from pathlib import Path

import rundown_engine

DOCS = Path(__file__).resolve().parents[2] / "docs"


def _documented_modules() -> list[str]:
    text = (DOCS / "api.rst").read_text(encoding="utf-8")
    return re.findall(r"^\.\. automodule:: (\S+)$", text, flags=re.MULTILINE)


def test_api_page_modules_import() -> None:
    modules = _documented_modules()

    assert modules
    for name in modules:
        importlib.import_module(name)


def test_api_page_covers_every_module() -> None:
    package_modules = {
        info.name
        for info in pkgutil.walk_packages(rundown_engine.__path__, prefix="rundown_engine.")
        if not info.ispkg
    }

    assert package_modules == set(_documented_modules())
