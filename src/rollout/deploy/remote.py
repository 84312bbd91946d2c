"""Contracts for the remote systems the pipeline drives.

Each stage talks to the outside world only through these protocols. The
boto3-backed implementations live in :mod:`rollout.deploy.aws`, the
Pulumi subprocess in :mod:`rollout.deploy.provision`, the HTTP probe in
:mod:`rollout.deploy.health`; tests substitute in-memory fakes.

Related Modules:
    - :mod:`rollout.deploy.aws` — boto3 implementations
    - :mod:`rollout.deploy.workflow` — Wires a ``RemoteServices`` bundle
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from rollout.deploy.results import (
    BuildJob,
    HealthProbeResult,
    ServiceSnapshot,
    StoppedTask,
    TargetHealth,
    TaskDescription,
)


@dataclass(frozen=True)
class EnvironmentOverride:
    """An environment variable override for a remote build."""

    name: str
    value: str
    type: str = "PLAINTEXT"  # PLAINTEXT | PARAMETER_STORE | SECRETS_MANAGER

    def to_api(self) -> dict[str, str]:
        return {"name": self.name, "value": self.value, "type": self.type}


@dataclass(frozen=True)
class BuildProjectInfo:
    """What preflight needs to know about a build project."""

    name: str
    vpc_id: str | None = None
    subnets: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProvisionOutcome:
    """Result of applying the infrastructure program."""

    exit_code: int
    duration_seconds: float
    stdout_tail: list[str] = field(default_factory=list)
    stderr_tail: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class BuildService(Protocol):
    def start_build(
        self,
        project: str,
        *,
        overrides: Sequence[EnvironmentOverride] = (),
        source_version: str | None = None,
    ) -> BuildJob: ...

    def get_build(self, build_id: str) -> BuildJob: ...

    def describe_project(self, project: str) -> BuildProjectInfo: ...


class ContainerService(Protocol):
    def run_task(
        self,
        cluster: str,
        task_definition: str,
        *,
        subnets: Sequence[str],
        security_groups: Sequence[str],
        assign_public_ip: bool,
        launch_type: str,
        started_by: str | None = None,
    ) -> str: ...

    def describe_task(
        self, cluster: str, task_arn: str, container_name: str | None = None
    ) -> TaskDescription: ...

    def describe_service(self, cluster: str, service: str) -> ServiceSnapshot: ...

    def force_new_deployment(
        self, cluster: str, service: str, task_definition: str | None = None
    ) -> ServiceSnapshot: ...

    def list_stopped_tasks(
        self, cluster: str, service: str, *, limit: int = 10
    ) -> list[StoppedTask]: ...

    def register_image_revision(
        self, task_definition: str, container_name: str, image: str
    ) -> str: ...


class LoadBalancerService(Protocol):
    def dns_name(self, name: str) -> str: ...

    def target_health(self, target_group_arn: str) -> list[TargetHealth]: ...


class NetworkService(Protocol):
    def resolve_subnets(self, refs: Sequence[str]) -> list[str]: ...

    def resolve_security_groups(self, refs: Sequence[str]) -> list[str]: ...


class LogService(Protocol):
    def latest_stream(self, log_group: str, contains: str) -> str | None: ...

    def tail(self, log_group: str, stream: str, *, limit: int = 50) -> list[str]: ...


class RegistryService(Protocol):
    def image_exists(self, repository: str, tag: str) -> bool: ...


class ParameterService(Protocol):
    def get(self, name: str) -> str | None: ...

    def put(self, name: str, value: str) -> None: ...


class Provisioner(Protocol):
    def apply(self) -> ProvisionOutcome: ...


class HealthProbe(Protocol):
    def probe(self, url: str) -> HealthProbeResult: ...


@dataclass
class RemoteServices:
    """Every remote dependency of one pipeline run."""

    builds: BuildService
    containers: ContainerService
    load_balancers: LoadBalancerService
    network: NetworkService
    logs: LogService
    registry: RegistryService
    parameters: ParameterService
    provisioner: Provisioner
    probe: HealthProbe


__all__ = [
    "BuildProjectInfo",
    "BuildService",
    "ContainerService",
    "EnvironmentOverride",
    "HealthProbe",
    "LoadBalancerService",
    "LogService",
    "NetworkService",
    "ParameterService",
    "ProvisionOutcome",
    "Provisioner",
    "RegistryService",
    "RemoteServices",
]
