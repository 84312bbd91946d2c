"""
Shared pytest fixtures for rollout-spine tests.

This module provides:
- A fake clock that advances only when the code under test sleeps
- A pipeline config with short, deterministic timings
- In-memory remote services recording every call in one shared log

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(config, remote, clock):
            ctx = remote.context(config, clock)
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import structlog

# Ensure rollout package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from _support.fake_remote import REVISION, FakeClock, FakeRemote  # noqa: E402

from rollout.deploy.config import PipelineConfig  # noqa: E402


# =============================================================================
# Environment isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_rollout_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Strip ROLLOUT_* and CI revision variables so tests see defaults."""
    import os

    for name in list(os.environ):
        if name.startswith("ROLLOUT_"):
            monkeypatch.delenv(name, raising=False)
    for name in ("GITHUB_SHA", "CODEBUILD_RESOLVED_SOURCE_VERSION", "AWS_REGION"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo CLI logging setup, which binds the runner's temporary stderr."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def config(tmp_path: Path) -> PipelineConfig:
    """Production-shaped config with the default 30s poll / 600s stabilize bounds."""
    return PipelineConfig(
        environment="prod",
        source_revision=REVISION,
        database_secret_arn="arn:aws:secretsmanager:us-east-1:123456789012:secret:pathfinder-db",
        output_dir=tmp_path / "deploy-results",
        write_artifacts=False,
        run_id="run000000001",
    )
