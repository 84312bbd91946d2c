"""
Structured error types for rollout-spine.

Every failure the pipeline can surface is a typed error carrying enough
metadata for the operator to act on it without re-running anything:

- **Category:** What kind of error (config, remote, deployment, ...)
- **Retryable:** Whether calling the same thing again could succeed
- **Context:** Stage, run id and remote identifiers (build id, task ARN)
- **Cause:** Chained underlying exception for root cause analysis

Stage failures derive from ``DeploymentError``. Each one knows the stage it
belongs to, which in turn picks the process exit code.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        RolloutError                           │
        │           (category, retryable, context, cause)              │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError        RemoteCallError       DeploymentError    │
        │  (CONFIG)           (REMOTE, retryable)   (DEPLOYMENT)       │
        │                                                │             │
        │                     PreconditionFailure  ProvisioningFailure │
        │                     RemoteJobFailure     TriggerRejected     │
        │                     StabilizationTimeout StabilizationFailure│
        │                     HealthCheckFailure                       │
        └──────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Raise a bare Exception from a stage - the operator loses the stage
    ✅ DO: Raise the stage's DeploymentError subclass with identifiers

    ❌ DON'T: Swallow the botocore exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, deployment, rollout-spine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rollout.core.enums import ExitCode, Stage


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    CONFIG = "CONFIG"
    REMOTE = "REMOTE"
    DEPLOYMENT = "DEPLOYMENT"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover what every stage failure reports; anything else goes
    into ``identifiers`` (remote ids the operator can look up) or
    ``metadata`` (free-form detail).

    Examples:
        >>> ctx = ErrorContext(stage="build", run_id="abc123")
        >>> ctx.identifiers["build_id"] = "pathfinder-app-build:42"
        >>> ctx.to_dict()
        {'stage': 'build', 'run_id': 'abc123', 'identifiers': {'build_id': 'pathfinder-app-build:42'}}
    """

    stage: str | None = None
    run_id: str | None = None
    environment: str | None = None
    service: str | None = None
    identifiers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["stage", "run_id", "environment", "service"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.identifiers:
            result["identifiers"] = dict(self.identifiers)
        if self.metadata:
            result.update(self.metadata)
        return result


class RolloutError(Exception):
    """
    Base class for all rollout-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    only override them when they know better than the type does.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        # Partial PipelineResult, attached by the orchestrator
        self.result: Any = None

        if cause is not None:
            self.__cause__ = cause

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.UNEXPECTED

    def with_context(self, **kwargs: Any) -> RolloutError:
        """
        Add context to this error (fluent API).

        Usage:
            raise RemoteJobFailure("Build failed", stage=Stage.BUILD).with_context(
                run_id=config.run_id,
                build_id=build.id,
            )

        Unknown keys with string values are treated as remote identifiers.
        """
        for key, value in kwargs.items():
            if key in ("identifiers", "metadata"):
                getattr(self.context, key).update(value)
            elif hasattr(self.context, key):
                setattr(self.context, key, value)
            elif isinstance(value, str):
                self.context.identifiers[key] = value
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            "exit_code": int(self.exit_code),
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION / REMOTE CALL ERRORS
# =============================================================================


class ConfigError(RolloutError):
    """Missing or invalid configuration. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False

    def __init__(self, message: str, *, key: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.key = key
        if key is not None:
            self.context.metadata["config_key"] = key

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.CONFIG


class RemoteCallError(RolloutError):
    """
    A single call to a remote API failed.

    Wraps ``botocore`` client errors with the service, operation and AWS
    error code. Usually transient, so retryable by default; the stage that
    made the call decides whether to wrap it into a stage failure.
    """

    default_category = ErrorCategory.REMOTE
    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        service: str | None = None,
        operation: str | None = None,
        code: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.service_name = service
        self.operation = operation
        self.code = code
        for key, value in (("aws_service", service), ("operation", operation), ("error_code", code)):
            if value is not None:
                self.context.metadata[key] = value


# =============================================================================
# STAGE FAILURES
# =============================================================================


class DeploymentError(RolloutError):
    """
    A pipeline stage ended in failure.

    ``stage`` names the gate that stopped the run and selects the exit
    code. The orchestrator attaches the partial ``PipelineResult`` as
    ``result`` before returning the error.
    """

    default_category = ErrorCategory.DEPLOYMENT
    default_retryable = False
    default_stage: Stage | None = None

    def __init__(self, message: str, *, stage: Stage | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.stage = stage or self.default_stage
        if self.stage is not None and self.context.stage is None:
            self.context.stage = self.stage.value

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.for_stage(self.stage)

    @property
    def identifiers(self) -> dict[str, str]:
        return self.context.identifiers


class PreconditionFailure(DeploymentError):
    """An expected remote resource could not be resolved."""

    default_stage = Stage.PREFLIGHT


class ProvisioningFailure(DeploymentError):
    """The infrastructure program did not apply cleanly."""

    default_stage = Stage.PROVISION


class RemoteJobFailure(DeploymentError):
    """
    A remote build or one-shot task ended in a non-success state.

    Used for both the migration and the build stage, so ``stage`` must be
    passed explicitly.
    """

    def __init__(
        self,
        message: str,
        *,
        job_id: str | None = None,
        status: str | None = None,
        logs_url: str | None = None,
        container_exit_code: int | None = None,
        log_tail: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.job_id = job_id
        self.status = status
        self.logs_url = logs_url
        self.container_exit_code = container_exit_code
        self.log_tail = log_tail or []
        if job_id is not None:
            self.context.identifiers.setdefault("job_id", job_id)
        if status is not None:
            self.context.metadata["status"] = status
        if logs_url is not None:
            self.context.metadata["logs_url"] = logs_url
        if container_exit_code is not None:
            self.context.metadata["container_exit_code"] = container_exit_code


class TriggerRejected(DeploymentError):
    """The service refused the force-new-deployment request."""

    default_stage = Stage.TRIGGER

    def __init__(self, message: str, *, reason: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason or message


class StabilizationTimeout(DeploymentError):
    """The service never converged within the configured bound."""

    default_stage = Stage.STABILIZE

    def __init__(self, message: str, *, diagnostics: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.diagnostics = diagnostics


class StabilizationFailure(DeploymentError):
    """The orchestrator reported the rollout itself as failed."""

    default_stage = Stage.STABILIZE

    def __init__(self, message: str, *, diagnostics: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.diagnostics = diagnostics


class HealthCheckFailure(DeploymentError):
    """The public health endpoint did not answer with a 2xx."""

    default_stage = Stage.VERIFY

    def __init__(self, message: str, *, probe: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.probe = probe


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RolloutError",
    "ConfigError",
    "RemoteCallError",
    "DeploymentError",
    "PreconditionFailure",
    "ProvisioningFailure",
    "RemoteJobFailure",
    "TriggerRejected",
    "StabilizationTimeout",
    "StabilizationFailure",
    "HealthCheckFailure",
]
