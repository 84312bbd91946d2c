"""Tests for stage success tokens."""

from __future__ import annotations

import pytest

from rollout.deploy.results import MigrationOutcome, MigrationStatus
from rollout.deploy.tokens import (
    MigratedToken,
    ProvisionedToken,
    issue_built,
    issue_migrated,
    issue_preflight,
    issue_provisioned,
)


class TestTokens:
    def test_cannot_construct_directly(self):
        with pytest.raises(TypeError, match="cannot be constructed directly"):
            ProvisionedToken(run_id="run1")
        with pytest.raises(TypeError):
            MigratedToken(run_id="run1", load_balancer_dns="x")

    def test_values_flow_down_the_chain(self):
        preflight = issue_preflight(issue_provisioned("run1", skipped=True), load_balancer_dns="lb")
        migrated = issue_migrated(
            preflight, MigrationOutcome(status=MigrationStatus.SKIPPED, strategy="skip-if-unchanged")
        )
        built = issue_built(migrated, image_tag="prod-a1b2c3d-2024-06-01", build_id="b:1")
        assert built.run_id == "run1"
        assert built.load_balancer_dns == "lb"

    def test_failed_migration_gets_no_token(self):
        preflight = issue_preflight(issue_provisioned("run1"), load_balancer_dns="lb")
        with pytest.raises(ValueError):
            issue_migrated(preflight, MigrationOutcome(status=MigrationStatus.FAILED, strategy="task"))

    def test_tokens_are_frozen(self):
        token = issue_provisioned("run1")
        with pytest.raises(AttributeError):
            token.run_id = "other"
