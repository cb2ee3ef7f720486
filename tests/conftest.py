"""Global test fixtures for agentfleet."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers.fakes import FakeGit, FakePool


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


@pytest.fixture
def storage(tmp_path: Path) -> Path:
    path = tmp_path / "fleet"
    path.mkdir()
    return path
