"""boto3-backed implementations of the remote contracts.

One adapter per AWS service, each a thin translation layer between the
boto3 response shapes and the pipeline's result models. No adapter waits
or retries on its own beyond botocore's standard retry mode; waiting is the
stages' job (see :mod:`rollout.deploy.polling`).

Key Concepts:
    _AwsAdapter: Base class holding the client and the ``_call`` wrapper
        that turns ``ClientError`` / ``BotoCoreError`` into
        ``RemoteCallError`` carrying the service, operation and AWS code.
    NOT_FOUND: Error code used when a lookup succeeds but matches nothing.

Architecture Decisions:
    - All clients come from one ``boto3.session.Session`` so region and
      credentials are resolved once.
    - ``botocore.config.Config(retries={"mode": "standard"})`` for
      throttling and transient errors.
    - Adapters never raise stage failures; stages decide what a remote
      error means for them.

Related Modules:
    - :mod:`rollout.deploy.remote` — The contracts implemented here
    - :mod:`rollout.deploy.workflow` — ``build_pipeline()`` wires these

Tags:
    aws, boto3, codebuild, ecs, elbv2, ecr, cloudwatch-logs, ssm
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from rollout.core.errors import ConfigError, RemoteCallError
from rollout.core.logging import get_logger
from rollout.deploy.remote import BuildProjectInfo, EnvironmentOverride
from rollout.deploy.results import (
    BuildJob,
    BuildStatus,
    ServiceDeployment,
    ServiceEvent,
    ServiceSnapshot,
    StoppedContainer,
    StoppedTask,
    TargetHealth,
    TaskDescription,
)

logger = get_logger(__name__)

NOT_FOUND = "NotFound"

DEFAULT_CLIENT_CONFIG = Config(
    retries={"max_attempts": 5, "mode": "standard"},
    user_agent_extra="rollout-spine",
)


def aws_session(region: str) -> boto3.session.Session:
    """Create the session every adapter of a run is built from."""
    return boto3.session.Session(region_name=region)


def _iso(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value) if value is not None else ""


class _AwsAdapter:
    service_name: str = ""

    def __init__(self, client: Any):
        self.client = client

    @classmethod
    def from_session(cls, session: boto3.session.Session, config: Config | None = None):
        return cls(session.client(cls.service_name, config=config or DEFAULT_CLIENT_CONFIG))

    def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            return getattr(self.client, operation)(**kwargs)
        except ClientError as exc:
            error = exc.response.get("Error", {})
            code = error.get("Code")
            message = error.get("Message") or str(exc)
            logger.warning(
                "aws.call_failed",
                aws_service=self.service_name,
                operation=operation,
                error_code=code,
            )
            raise RemoteCallError(
                f"{self.service_name} {operation} failed: {message}",
                service=self.service_name,
                operation=operation,
                code=code,
                cause=exc,
            ) from exc
        except BotoCoreError as exc:
            logger.warning("aws.call_failed", aws_service=self.service_name, operation=operation)
            raise RemoteCallError(
                f"{self.service_name} {operation} failed: {exc}",
                service=self.service_name,
                operation=operation,
                cause=exc,
            ) from exc

    def _not_found(self, operation: str, what: str) -> RemoteCallError:
        return RemoteCallError(
            f"{what} not found",
            service=self.service_name,
            operation=operation,
            code=NOT_FOUND,
            retryable=False,
        )


# ---------------------------------------------------------------------------
# CodeBuild
# ---------------------------------------------------------------------------


class CodeBuildService(_AwsAdapter):
    """Remote build executor."""

    service_name = "codebuild"

    def start_build(
        self,
        project: str,
        *,
        overrides: Sequence[EnvironmentOverride] = (),
        source_version: str | None = None,
    ) -> BuildJob:
        kwargs: dict[str, Any] = {"projectName": project}
        if overrides:
            kwargs["environmentVariablesOverride"] = [o.to_api() for o in overrides]
        if source_version:
            kwargs["sourceVersion"] = source_version
        response = self._call("start_build", **kwargs)
        return self._to_job(response["build"])

    def get_build(self, build_id: str) -> BuildJob:
        response = self._call("batch_get_builds", ids=[build_id])
        builds = response.get("builds") or []
        if not builds:
            raise self._not_found("batch_get_builds", f"Build {build_id}")
        return self._to_job(builds[0])

    def describe_project(self, project: str) -> BuildProjectInfo:
        response = self._call("batch_get_projects", names=[project])
        projects = response.get("projects") or []
        if not projects:
            raise self._not_found("batch_get_projects", f"Build project {project}")
        vpc = projects[0].get("vpcConfig") or {}
        return BuildProjectInfo(
            name=project,
            vpc_id=vpc.get("vpcId") or None,
            subnets=tuple(vpc.get("subnets") or ()),
        )

    @staticmethod
    def _to_job(build: dict[str, Any]) -> BuildJob:
        logs = build.get("logs") or {}
        return BuildJob(
            id=build["id"],
            project=build.get("projectName", build["id"].split(":", 1)[0]),
            status=BuildStatus.parse(build.get("buildStatus")),
            phase=build.get("currentPhase"),
            logs_url=logs.get("deepLink"),
            source_version=build.get("resolvedSourceVersion") or build.get("sourceVersion"),
        )


# ---------------------------------------------------------------------------
# ECS
# ---------------------------------------------------------------------------

# Keys of describe_task_definition output accepted by register_task_definition
_TASK_DEFINITION_KEYS = (
    "family",
    "taskRoleArn",
    "executionRoleArn",
    "networkMode",
    "containerDefinitions",
    "volumes",
    "placementConstraints",
    "requiresCompatibilities",
    "cpu",
    "memory",
    "runtimePlatform",
    "ephemeralStorage",
    "proxyConfiguration",
    "ipcMode",
    "pidMode",
)


class EcsService(_AwsAdapter):
    """Container orchestrator: one-shot tasks and the long-running service."""

    service_name = "ecs"

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
    ) -> str:
        kwargs: dict[str, Any] = {
            "cluster": cluster,
            "taskDefinition": task_definition,
            "launchType": launch_type,
            "count": 1,
            "networkConfiguration": {
                "awsvpcConfiguration": {
                    "subnets": list(subnets),
                    "securityGroups": list(security_groups),
                    "assignPublicIp": "ENABLED" if assign_public_ip else "DISABLED",
                }
            },
        }
        if started_by:
            kwargs["startedBy"] = started_by[:36]
        response = self._call("run_task", **kwargs)
        tasks = response.get("tasks") or []
        if not tasks:
            failures = response.get("failures") or []
            reasons = ", ".join(f.get("reason", "unknown") for f in failures) or "no task started"
            raise RemoteCallError(
                f"ecs run_task started no task: {reasons}",
                service=self.service_name,
                operation="run_task",
                code="RunTaskFailure",
                retryable=False,
            )
        return tasks[0]["taskArn"]

    def describe_task(
        self, cluster: str, task_arn: str, container_name: str | None = None
    ) -> TaskDescription:
        response = self._call("describe_tasks", cluster=cluster, tasks=[task_arn])
        tasks = response.get("tasks") or []
        if not tasks:
            raise self._not_found("describe_tasks", f"Task {task_arn}")
        task = tasks[0]
        containers = task.get("containers") or []
        container: dict[str, Any] = {}
        if container_name:
            container = next((c for c in containers if c.get("name") == container_name), {})
        elif containers:
            container = containers[0]
        return TaskDescription(
            task_arn=task.get("taskArn", task_arn),
            last_status=task.get("lastStatus", "PROVISIONING"),
            exit_code=container.get("exitCode"),
            stopped_reason=task.get("stoppedReason"),
            stop_code=task.get("stopCode"),
            container_name=container.get("name"),
            container_reason=container.get("reason"),
        )

    def describe_service(self, cluster: str, service: str) -> ServiceSnapshot:
        response = self._call("describe_services", cluster=cluster, services=[service])
        services = [s for s in response.get("services") or [] if s.get("status") != "INACTIVE"]
        if not services:
            raise self._not_found("describe_services", f"Service {service} in cluster {cluster}")
        return self._to_snapshot(cluster, services[0])

    def force_new_deployment(
        self, cluster: str, service: str, task_definition: str | None = None
    ) -> ServiceSnapshot:
        kwargs: dict[str, Any] = {
            "cluster": cluster,
            "service": service,
            "forceNewDeployment": True,
        }
        if task_definition:
            kwargs["taskDefinition"] = task_definition
        response = self._call("update_service", **kwargs)
        return self._to_snapshot(cluster, response["service"])

    def list_stopped_tasks(
        self, cluster: str, service: str, *, limit: int = 10
    ) -> list[StoppedTask]:
        response = self._call(
            "list_tasks",
            cluster=cluster,
            serviceName=service,
            desiredStatus="STOPPED",
            maxResults=limit,
        )
        arns = response.get("taskArns") or []
        if not arns:
            return []
        described = self._call("describe_tasks", cluster=cluster, tasks=arns)
        tasks = sorted(
            described.get("tasks") or [],
            key=lambda t: _iso(t.get("stoppedAt")),
            reverse=True,
        )
        return [
            StoppedTask(
                task_arn=t["taskArn"],
                stopped_reason=t.get("stoppedReason"),
                stop_code=t.get("stopCode"),
                started_by=t.get("startedBy"),
                task_definition=t.get("taskDefinitionArn"),
                containers=[
                    StoppedContainer(
                        name=c.get("name", ""),
                        exit_code=c.get("exitCode"),
                        reason=c.get("reason"),
                    )
                    for c in t.get("containers") or []
                ],
            )
            for t in tasks
        ]

    def register_image_revision(
        self, task_definition: str, container_name: str, image: str
    ) -> str:
        response = self._call("describe_task_definition", taskDefinition=task_definition)
        current = response["taskDefinition"]
        revision = {key: current[key] for key in _TASK_DEFINITION_KEYS if key in current}
        containers = [dict(c) for c in revision.get("containerDefinitions", [])]
        matched = False
        for container in containers:
            if container.get("name") == container_name:
                container["image"] = image
                matched = True
        if not matched:
            raise ConfigError(
                f"Task definition {task_definition} has no container named {container_name!r}",
                key="ROLLOUT_CONTAINER_NAME",
            )
        revision["containerDefinitions"] = containers
        registered = self._call("register_task_definition", **revision)
        arn = registered["taskDefinition"]["taskDefinitionArn"]
        logger.info("ecs.task_definition_registered", task_definition=arn, image=image)
        return arn

    @staticmethod
    def _to_snapshot(cluster: str, service: dict[str, Any]) -> ServiceSnapshot:
        return ServiceSnapshot(
            cluster=cluster,
            service=service.get("serviceName", ""),
            status=service.get("status", "ACTIVE"),
            desired_count=service.get("desiredCount", 0),
            running_count=service.get("runningCount", 0),
            pending_count=service.get("pendingCount", 0),
            task_definition=service.get("taskDefinition"),
            deployments=[
                ServiceDeployment(
                    id=d["id"],
                    status=d.get("status", ""),
                    task_definition=d.get("taskDefinition"),
                    desired_count=d.get("desiredCount", 0),
                    running_count=d.get("runningCount", 0),
                    pending_count=d.get("pendingCount", 0),
                    rollout_state=d.get("rolloutState"),
                    rollout_state_reason=d.get("rolloutStateReason"),
                )
                for d in service.get("deployments") or []
            ],
            events=[
                ServiceEvent(timestamp=_iso(e.get("createdAt")), message=e.get("message", ""))
                for e in service.get("events") or []
            ],
            target_group_arns=[
                lb["targetGroupArn"]
                for lb in service.get("loadBalancers") or []
                if lb.get("targetGroupArn")
            ],
        )


# ---------------------------------------------------------------------------
# Load balancing / network
# ---------------------------------------------------------------------------


class ElbV2Service(_AwsAdapter):
    """Application load balancer and its target groups."""

    service_name = "elbv2"

    def dns_name(self, name: str) -> str:
        response = self._call("describe_load_balancers", Names=[name])
        balancers = response.get("LoadBalancers") or []
        if not balancers:
            raise self._not_found("describe_load_balancers", f"Load balancer {name}")
        return balancers[0]["DNSName"]

    def target_health(self, target_group_arn: str) -> list[TargetHealth]:
        response = self._call("describe_target_health", TargetGroupArn=target_group_arn)
        return [
            TargetHealth(
                target_id=d["Target"]["Id"],
                port=d["Target"].get("Port"),
                state=d.get("TargetHealth", {}).get("State", "unavailable"),
                reason=d.get("TargetHealth", {}).get("Reason"),
                description=d.get("TargetHealth", {}).get("Description"),
                target_group_arn=target_group_arn,
            )
            for d in response.get("TargetHealthDescriptions") or []
        ]


class Ec2NetworkService(_AwsAdapter):
    """Resolves subnet and security group references to ids.

    A reference is either an id (``subnet-…`` / ``sg-…``) or a ``Name``
    tag (security groups also match on group name).
    """

    service_name = "ec2"

    def resolve_subnets(self, refs: Sequence[str]) -> list[str]:
        ids = [r for r in refs if r.startswith("subnet-")]
        names = [r for r in refs if not r.startswith("subnet-")]
        resolved: list[str] = []
        if ids:
            response = self._call("describe_subnets", SubnetIds=ids)
            resolved.extend(s["SubnetId"] for s in response.get("Subnets") or [])
        if names:
            response = self._call(
                "describe_subnets", Filters=[{"Name": "tag:Name", "Values": names}]
            )
            found = response.get("Subnets") or []
            tagged = {self._name_tag(s) for s in found}
            missing = [n for n in names if n not in tagged]
            if missing:
                raise self._not_found("describe_subnets", f"Subnets {', '.join(missing)}")
            resolved.extend(s["SubnetId"] for s in found)
        return resolved

    def resolve_security_groups(self, refs: Sequence[str]) -> list[str]:
        ids = [r for r in refs if r.startswith("sg-")]
        names = [r for r in refs if not r.startswith("sg-")]
        resolved: list[str] = []
        if ids:
            response = self._call("describe_security_groups", GroupIds=ids)
            resolved.extend(g["GroupId"] for g in response.get("SecurityGroups") or [])
        for name in names:
            response = self._call(
                "describe_security_groups", Filters=[{"Name": "group-name", "Values": [name]}]
            )
            groups = response.get("SecurityGroups") or []
            if not groups:
                response = self._call(
                    "describe_security_groups", Filters=[{"Name": "tag:Name", "Values": [name]}]
                )
                groups = response.get("SecurityGroups") or []
            if not groups:
                raise self._not_found("describe_security_groups", f"Security group {name}")
            resolved.extend(g["GroupId"] for g in groups)
        return resolved

    @staticmethod
    def _name_tag(resource: dict[str, Any]) -> str | None:
        for tag in resource.get("Tags") or []:
            if tag.get("Key") == "Name":
                return tag.get("Value")
        return None


# ---------------------------------------------------------------------------
# Logs / registry / parameters
# ---------------------------------------------------------------------------


class CloudWatchLogService(_AwsAdapter):
    service_name = "logs"

    def latest_stream(self, log_group: str, contains: str) -> str | None:
        response = self._call(
            "describe_log_streams",
            logGroupName=log_group,
            orderBy="LastEventTime",
            descending=True,
            limit=50,
        )
        for stream in response.get("logStreams") or []:
            if contains in stream.get("logStreamName", ""):
                return stream["logStreamName"]
        return None

    def tail(self, log_group: str, stream: str, *, limit: int = 50) -> list[str]:
        response = self._call(
            "get_log_events",
            logGroupName=log_group,
            logStreamName=stream,
            limit=limit,
            startFromHead=False,
        )
        return [e.get("message", "").rstrip("\n") for e in response.get("events") or []]


class EcrRegistryService(_AwsAdapter):
    service_name = "ecr"

    def image_exists(self, repository: str, tag: str) -> bool:
        try:
            response = self._call(
                "describe_images", repositoryName=repository, imageIds=[{"imageTag": tag}]
            )
        except RemoteCallError as exc:
            if exc.code == "ImageNotFoundException":
                return False
            raise
        return bool(response.get("imageDetails"))


class SsmParameterService(_AwsAdapter):
    service_name = "ssm"

    def get(self, name: str) -> str | None:
        try:
            response = self._call("get_parameter", Name=name)
        except RemoteCallError as exc:
            if exc.code == "ParameterNotFound":
                return None
            raise
        return response["Parameter"]["Value"]

    def put(self, name: str, value: str) -> None:
        self._call("put_parameter", Name=name, Value=value, Type="String", Overwrite=True)


__all__ = [
    "CloudWatchLogService",
    "CodeBuildService",
    "DEFAULT_CLIENT_CONFIG",
    "Ec2NetworkService",
    "EcrRegistryService",
    "EcsService",
    "ElbV2Service",
    "NOT_FOUND",
    "SsmParameterService",
    "aws_session",
]
