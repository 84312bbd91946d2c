"""
Result envelope for pipeline outcomes.

The pipeline never lets a stage failure escape as an exception to its
caller. ``DeploymentPipeline.run()`` returns ``Ok(PipelineResult)`` or
``Err(DeploymentError)`` and the CLI turns that into output and an exit
code. Inside the stages, failures are still raised as typed errors; the
envelope exists only at the outer seam.

Examples:
    >>> result = Ok(42)
    >>> result.unwrap()
    42

    >>> err = Err(ConfigError("ROLLOUT_CLUSTER is empty"))
    >>> err.is_err()
    True

Tags:
    result-type, error-handling, rollout-spine
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from rollout.core.errors import RolloutError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result containing an error."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if isinstance(self.error, RolloutError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Type alias for Result
Result = Ok[T] | Err[T]


__all__ = ["Ok", "Err", "Result"]
