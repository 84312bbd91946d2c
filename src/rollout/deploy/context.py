"""Per-run context handed to every stage."""

from __future__ import annotations

from dataclasses import dataclass

from rollout.deploy.config import PipelineConfig
from rollout.deploy.polling import SYSTEM_CLOCK, Clock
from rollout.deploy.progress import SilentReporter, StageReporter
from rollout.deploy.remote import RemoteServices


@dataclass(frozen=True)
class StageContext:
    """Configuration, remote services, progress sink and clock for one run."""

    config: PipelineConfig
    services: RemoteServices
    reporter: StageReporter = SilentReporter()
    clock: Clock = SYSTEM_CLOCK

    def reporting_poll(self, stage):
        """``on_poll`` callback forwarding status to the reporter."""

        def on_poll(value, attempt: int, elapsed: float) -> None:
            status = getattr(value, "status", None) or getattr(value, "last_status", None) or value
            self.reporter.progress(stage, getattr(status, "value", str(status)), elapsed)

        return on_poll


__all__ = ["StageContext"]
