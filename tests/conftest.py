"""Shared pytest configuration for the importer test suite.

Places ``src/`` on ``sys.path`` so the suite runs from a source checkout and
registers the markers used to scope platform-dependent tests.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "posix_only: mark test as POSIX-specific (Linux/macOS). "
        "Use for tests that spawn processes under rlimits.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    skip_posix = pytest.mark.skip(reason="requires a POSIX platform")
    for item in items:
        if "posix_only" in item.keywords and os.name != "posix":
            item.add_marker(skip_posix)
