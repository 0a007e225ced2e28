"""Shared test fixtures for the filter builder."""

from __future__ import annotations

from pathlib import Path

import pytest

from scripts.store import MemoryArtifactStore, MemorySourceStore

TIMESTAMP = "2026-10-19T08:00:00.000Z"


@pytest.fixture
def fixed_now():
    """Timestamp factory returning a fixed time."""
    return lambda: TIMESTAMP


@pytest.fixture
def artifacts() -> MemoryArtifactStore:
    """Provide an empty in-memory artifact store."""
    return MemoryArtifactStore()


@pytest.fixture
def sources() -> MemorySourceStore:
    """Provide a single-filter source store."""
    return MemorySourceStore({"myfilter": "||ads.example.com^\n"})


@pytest.fixture
def src_dir(tmp_path: Path) -> Path:
    """Source directory with two filters."""
    path = tmp_path / "src"
    path.mkdir()
    (path / "annoyances.txt").write_text("||popup.example.com^\n", encoding="utf-8")
    (path / "myfilter.txt").write_text("||ads.example.com^\n||tracker.example.net^\n", encoding="utf-8")
    return path
