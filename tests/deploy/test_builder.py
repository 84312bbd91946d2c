"""Tests for the application build stage."""

from __future__ import annotations

from datetime import datetime

import pytest
from _support.fake_remote import REVISION, FakeClock, FakeRemote

from rollout.core.enums import Stage
from rollout.core.errors import ConfigError, RemoteCallError, RemoteJobFailure
from rollout.deploy.builder import (
    app_build_overrides,
    build_application,
    derive_image_tag,
    resolve_source_revision,
)
from rollout.deploy.results import MigrationOutcome, MigrationStatus
from rollout.deploy.tokens import issue_migrated, issue_preflight, issue_provisioned


def _migrated_token():
    preflight = issue_preflight(issue_provisioned("run000000001"), load_balancer_dns="lb.example.com")
    return issue_migrated(preflight, MigrationOutcome(status=MigrationStatus.SUCCEEDED, strategy="build"))


class TestImageTag:
    def test_date_precision(self):
        assert derive_image_tag("prod", "a1b2c3d4e5f6", datetime(2024, 6, 1, 15, 4, 5)) == "prod-a1b2c3d-2024-06-01"

    def test_second_precision(self):
        tag = derive_image_tag("staging", "a1b2c3d4e5f6", datetime(2024, 6, 1, 15, 4, 5), "second")
        assert tag == "staging-a1b2c3d-2024-06-01-150405"


class TestResolveSourceRevision:
    def test_configured_wins(self):
        assert resolve_source_revision("abc123", environ={"GITHUB_SHA": "def456"}) == "abc123"

    def test_ci_variables(self):
        assert resolve_source_revision(None, environ={"GITHUB_SHA": "def456"}) == "def456"
        assert (
            resolve_source_revision(None, environ={"CODEBUILD_RESOLVED_SOURCE_VERSION": "789abc"})
            == "789abc"
        )

    def test_git_fallback(self):
        assert resolve_source_revision(None, environ={}, git_head=lambda: "feedbeef") == "feedbeef"

    def test_nothing_found(self):
        with pytest.raises(ConfigError) as exc_info:
            resolve_source_revision(None, environ={}, git_head=lambda: None)
        assert exc_info.value.key == "ROLLOUT_SOURCE_REVISION"


class TestBuildOverrides:
    def test_database_url_from_secret(self, config):
        overrides = {o.name: o for o in app_build_overrides(config, "prod-a1b2c3d-2024-06-01")}
        assert overrides["IMAGE_TAG"].value == "prod-a1b2c3d-2024-06-01"
        assert overrides["MIGRATIONS_COMPLETE"].value == "true"
        database_url = overrides["DATABASE_URL"]
        assert database_url.type == "SECRETS_MANAGER"
        assert database_url.value == f"{config.database_secret_arn}:database_url"

    def test_no_database_url_without_secret(self, config):
        config = config.model_copy(update={"database_secret_arn": None})
        names = {o.name for o in app_build_overrides(config, "tag")}
        assert "DATABASE_URL" not in names


class TestBuildApplication:
    def test_success(self, config, remote: FakeRemote, clock: FakeClock):
        token = build_application(remote.context(config, clock), _migrated_token(), revision=REVISION)
        assert token.image_tag == "prod-a1b2c3d-2024-06-01"
        assert token.build_id == "pathfinder-app-build:0001"
        assert token.load_balancer_dns == "lb.example.com"
        started = remote.builds.started[0]
        assert started["source_version"] == REVISION
        assert started["overrides"]["IMAGE_TAG"].value == token.image_tag

    def test_failed_build(self, config, remote: FakeRemote, clock: FakeClock):
        remote.builds.script("pathfinder-app-build", ["IN_PROGRESS", "FAULT"])
        with pytest.raises(RemoteJobFailure) as exc_info:
            build_application(remote.context(config, clock), _migrated_token(), revision=REVISION)
        error = exc_info.value
        assert error.stage == Stage.BUILD
        assert error.exit_code == 30
        assert error.status == "FAULT"
        assert error.context.identifiers["build_id"] == "pathfinder-app-build:0001"

    def test_build_timeout(self, config, remote: FakeRemote, clock: FakeClock):
        remote.builds.script("pathfinder-app-build", ["IN_PROGRESS"])
        config = config.model_copy(update={"build_timeout_seconds": 60.0})
        with pytest.raises(RemoteJobFailure, match="still IN_PROGRESS after 60s"):
            build_application(remote.context(config, clock), _migrated_token(), revision=REVISION)

    def test_waits_for_registry(self, config, remote: FakeRemote, clock: FakeClock):
        config = config.model_copy(update={"image_repository": "pathfinder-app"})
        remote.registry.appears_after = 3
        build_application(remote.context(config, clock), _migrated_token(), revision=REVISION)
        assert remote.registry.lookups == 3

    def test_image_never_appears(self, config, remote: FakeRemote, clock: FakeClock):
        config = config.model_copy(
            update={"image_repository": "pathfinder-app", "registry_timeout_seconds": 20.0}
        )
        remote.registry.appears_after = 100
        with pytest.raises(RemoteJobFailure, match="not found in the registry"):
            build_application(remote.context(config, clock), _migrated_token(), revision=REVISION)

    def test_lost_build_keeps_build_id(self, config, remote: FakeRemote, clock: FakeClock):
        def throttled(build_id):
            raise RemoteCallError("Rate exceeded", service="codebuild", code="ThrottlingException")

        remote.builds.get_build = throttled
        with pytest.raises(RemoteJobFailure) as exc_info:
            build_application(remote.context(config, clock), _migrated_token(), revision=REVISION)
        error = exc_info.value
        assert error.exit_code == 30
        assert error.job_id == "pathfinder-app-build:0001"
        assert error.context.identifiers["build_id"] == "pathfinder-app-build:0001"
        assert isinstance(error.cause, RemoteCallError)
        assert "lost track of build pathfinder-app-build:0001" in error.message

    def test_registry_error_keeps_build_id(self, config, remote: FakeRemote, clock: FakeClock):
        def denied(repository, tag):
            raise RemoteCallError("not authorized", service="ecr", code="AccessDeniedException")

        config = config.model_copy(update={"image_repository": "pathfinder-app"})
        remote.registry.image_exists = denied
        with pytest.raises(RemoteJobFailure) as exc_info:
            build_application(remote.context(config, clock), _migrated_token(), revision=REVISION)
        assert exc_info.value.job_id == "pathfinder-app-build:0001"
        assert exc_info.value.exit_code == 30

    def test_requires_migrated_token(self, config, remote, clock):
        preflight = issue_preflight(issue_provisioned("r"), load_balancer_dns="x")
        with pytest.raises(TypeError):
            build_application(remote.context(config, clock), preflight, revision=REVISION)
