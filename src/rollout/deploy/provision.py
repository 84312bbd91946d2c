"""Infrastructure provisioning stage.

Applies the Pulumi program as an opaque external step
(``pulumi up --yes`` in the infra directory) and issues the first token
of the chain. What the program creates is not this package's concern;
preflight checks afterwards that what the pipeline needs is there.

Key Concepts:
    PulumiProvisioner: subprocess wrapper returning a ``ProvisionOutcome``
        (exit code, duration, output tails). It never raises for a failed
        apply; the stage does.
    provision_infrastructure: The stage. Skippable per run, optionally
        followed by a settle delay before preflight looks things up.
"""

from __future__ import annotations

import os
import subprocess
import time
from pathlib import Path

from rollout.core.enums import Stage
from rollout.core.errors import ProvisioningFailure
from rollout.core.logging import get_logger
from rollout.deploy.context import StageContext
from rollout.deploy.remote import ProvisionOutcome
from rollout.deploy.tokens import ProvisionedToken, issue_provisioned

logger = get_logger(__name__)

_TAIL_LINES = 20


def _tail(text: str, lines: int = _TAIL_LINES) -> list[str]:
    return [line for line in text.splitlines() if line.strip()][-lines:]


class PulumiProvisioner:
    """Runs ``pulumi up`` for the configured stack."""

    def __init__(
        self,
        infra_dir: str | Path,
        *,
        stack: str | None = None,
        binary: str = "pulumi",
        timeout: float = 1800.0,
        env: dict[str, str] | None = None,
    ) -> None:
        self.infra_dir = Path(infra_dir)
        self.stack = stack
        self.binary = binary
        self.timeout = timeout
        self.env = {"NODE_ENV": "production", **(env or {})}

    def command(self) -> list[str]:
        cmd = [self.binary, "up", "--yes", "--non-interactive"]
        if self.stack:
            cmd.extend(["--stack", self.stack])
        return cmd

    def apply(self) -> ProvisionOutcome:
        """Apply the infrastructure program.

        Returns
        -------
        ProvisionOutcome
            ``exit_code`` -1 with ``error`` set when the binary is missing
            or the apply exceeded the timeout.
        """
        start = time.monotonic()
        try:
            proc = subprocess.run(
                self.command(),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=str(self.infra_dir),
                env={**os.environ, **self.env},
            )
        except subprocess.TimeoutExpired as exc:
            return ProvisionOutcome(
                exit_code=-1,
                duration_seconds=time.monotonic() - start,
                stdout_tail=_tail(exc.stdout if isinstance(exc.stdout, str) else ""),
                error=f"pulumi up timed out after {self.timeout:.0f}s",
            )
        except FileNotFoundError:
            return ProvisionOutcome(
                exit_code=-1,
                duration_seconds=time.monotonic() - start,
                error=f"{self.binary} not found on PATH (or {self.infra_dir} missing)",
            )
        return ProvisionOutcome(
            exit_code=proc.returncode,
            duration_seconds=time.monotonic() - start,
            stdout_tail=_tail(proc.stdout),
            stderr_tail=_tail(proc.stderr),
        )


def provision_infrastructure(ctx: StageContext) -> ProvisionedToken:
    """Apply infrastructure and issue the provisioned token.

    Raises:
        ProvisioningFailure: The apply exited non-zero, timed out, or could
            not be started.
    """
    config = ctx.config
    if not config.provision_enabled:
        logger.info("provision.skipped", reason="disabled")
        ctx.reporter.skipped(Stage.PROVISION, "infrastructure apply disabled for this run")
        return issue_provisioned(config.run_id, skipped=True)

    ctx.reporter.started(Stage.PROVISION, f"pulumi up in {config.infra_dir}")
    logger.info("provision.started", infra_dir=str(config.infra_dir), stack=config.pulumi_stack)
    outcome = ctx.services.provisioner.apply()

    if not outcome.succeeded:
        detail = outcome.error or (outcome.stderr_tail[-1] if outcome.stderr_tail else "")
        logger.error("provision.failed", exit_code=outcome.exit_code, detail=detail)
        error = ProvisioningFailure(
            f"Infrastructure apply failed (exit {outcome.exit_code})"
            + (f": {detail}" if detail else ""),
        )
        error.with_context(run_id=config.run_id, metadata={"stderr_tail": outcome.stderr_tail})
        raise error

    logger.info("provision.completed", duration_seconds=round(outcome.duration_seconds, 1))
    if config.post_provision_delay_seconds > 0:
        ctx.reporter.info(f"waiting {config.post_provision_delay_seconds:.0f}s for infrastructure to settle")
        ctx.clock.sleep(config.post_provision_delay_seconds)
    ctx.reporter.succeeded(Stage.PROVISION, f"applied in {outcome.duration_seconds:.0f}s")
    return issue_provisioned(config.run_id)


__all__ = ["PulumiProvisioner", "provision_infrastructure"]
