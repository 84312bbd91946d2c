"""
Shared pipeline enums.

Stage names, stage statuses and the exit code taxonomy are used by the
error hierarchy, the result models and the CLI, so they live here rather
than in any one of those modules.

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum, IntEnum


class Stage(str, Enum):
    """
    Pipeline stages in execution order.

    The order of declaration is the order of execution; ``Stage.ordered()``
    relies on it.
    """

    PROVISION = "provision"
    PREFLIGHT = "preflight"
    MIGRATE = "migrate"
    BUILD = "build"
    TRIGGER = "trigger"
    STABILIZE = "stabilize"
    VERIFY = "verify"

    @classmethod
    def ordered(cls) -> list["Stage"]:
        return list(cls)


class StageStatus(str, Enum):
    """Status of a single stage within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExitCode(IntEnum):
    """
    Process exit codes.

    Zero is success. Each stage has its own band so an operator (or CI)
    can tell which gate stopped the run without reading the output.
    """

    SUCCESS = 0
    UNEXPECTED = 1
    CONFIG = 2
    PRECONDITION = 3
    PROVISION = 10
    MIGRATE = 20
    BUILD = 30
    TRIGGER = 40
    STABILIZE = 50
    VERIFY = 60

    @classmethod
    def for_stage(cls, stage: Stage | None) -> "ExitCode":
        if stage is None:
            return cls.UNEXPECTED
        return {
            Stage.PROVISION: cls.PROVISION,
            Stage.PREFLIGHT: cls.PRECONDITION,
            Stage.MIGRATE: cls.MIGRATE,
            Stage.BUILD: cls.BUILD,
            Stage.TRIGGER: cls.TRIGGER,
            Stage.STABILIZE: cls.STABILIZE,
            Stage.VERIFY: cls.VERIFY,
        }[stage]


__all__ = ["Stage", "StageStatus", "ExitCode"]
