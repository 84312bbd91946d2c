"""Rollout Core -- Errors, results, logging and hashing shared by every stage.

Architecture::

    enums.py       Stage names, stage statuses, exit code taxonomy
    errors.py      Structured error hierarchy (RolloutError, DeploymentError)
    result.py      Result[T] envelope (Ok / Err)
    logging.py     structlog configuration + LogContext
    hashing.py     hash_tree for migration change detection
"""

from rollout.core.enums import ExitCode, Stage, StageStatus
from rollout.core.errors import (
    ConfigError,
    DeploymentError,
    ErrorCategory,
    ErrorContext,
    HealthCheckFailure,
    PreconditionFailure,
    ProvisioningFailure,
    RemoteCallError,
    RemoteJobFailure,
    RolloutError,
    StabilizationFailure,
    StabilizationTimeout,
    TriggerRejected,
)
from rollout.core.result import Err, Ok, Result

__all__ = [
    "ConfigError",
    "DeploymentError",
    "Err",
    "ErrorCategory",
    "ErrorContext",
    "ExitCode",
    "HealthCheckFailure",
    "Ok",
    "PreconditionFailure",
    "ProvisioningFailure",
    "RemoteCallError",
    "RemoteJobFailure",
    "Result",
    "RolloutError",
    "StabilizationFailure",
    "StabilizationTimeout",
    "Stage",
    "StageStatus",
    "TriggerRejected",
]
