"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the operator's configuration variables out of every test."""
    for name in list(os.environ):
        if name.startswith("KIWIX_HOTSPOT_") or name in {"KIWIX_PORT", "ZIM_DIR"}:
            monkeypatch.delenv(name, raising=False)
