"""Shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

from orchid_modules.observability.metrics import reset_metrics_recorder

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"
SAMPLE_PACKAGE = "orchid_sample_app"


@pytest.fixture()
def sample_app(monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
    """Make the sample package importable and forget it afterwards."""
    monkeypatch.syspath_prepend(str(FIXTURES_DIR / "packages"))
    yield SAMPLE_PACKAGE
    for name in [name for name in sys.modules if name.split(".")[0] == SAMPLE_PACKAGE]:
        del sys.modules[name]


@pytest.fixture(autouse=True)
def _default_metrics_recorder() -> Iterator[None]:
    yield
    reset_metrics_recorder()
