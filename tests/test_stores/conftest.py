"""Fixtures shared by the store tests."""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import MagicMock

import pytest


@pytest.fixture
def completed_process() -> Callable[..., MagicMock]:
    """Build a stand-in for ``subprocess.CompletedProcess``."""

    def _make(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
        result = MagicMock()
        result.stdout = stdout
        result.stderr = stderr
        result.returncode = returncode
        return result

    return _make
