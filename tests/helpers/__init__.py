"""Shared test helpers for the agentfleet test suite."""

from __future__ import annotations

from tests.helpers.fakes import FakeGit, FakePool, git_failure

__all__ = ["FakeGit", "FakePool", "git_failure"]
