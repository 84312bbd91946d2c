"""Run artifacts.

Writes what a run observed to disk so a failed deploy can be inspected
after the terminal scrolled away, and so CI can upload it.

Output structure::

    {output_dir}/{run_id}/
    ├── summary.json        PipelineResult
    ├── diagnostics.json    DeploymentDiagnostics (stabilization failures)
    └── migration.log       migration task log tail (task failures)

Related Modules:
    - :mod:`rollout.deploy.results` — Models serialised by the collector
    - :mod:`rollout.deploy.workflow` — Invokes the collector at the end of a run
"""

from __future__ import annotations

import json
from pathlib import Path

from rollout.core.logging import get_logger
from rollout.deploy.results import DeploymentDiagnostics, PipelineResult

logger = get_logger(__name__)


class LogCollector:
    """Collects run artifacts under ``{output_dir}/{run_id}``.

    Parameters
    ----------
    output_dir
        Base directory for output.
    run_id
        Unique run identifier.
    """

    def __init__(self, output_dir: Path, run_id: str) -> None:
        self.run_dir = Path(output_dir) / run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id

    def write_summary(self, result: PipelineResult) -> Path:
        """Write the run result as ``summary.json``."""
        path = self.run_dir / "summary.json"
        path.write_text(result.model_dump_json(indent=2))
        logger.info("artifacts.summary_written", path=str(path))
        return path

    def write_diagnostics(self, diagnostics: DeploymentDiagnostics) -> Path:
        path = self.run_dir / "diagnostics.json"
        path.write_text(diagnostics.model_dump_json(indent=2))
        logger.info("artifacts.diagnostics_written", path=str(path))
        return path

    def write_log_tail(self, name: str, lines: list[str]) -> Path:
        path = self.run_dir / f"{name}.log"
        path.write_text("\n".join(lines) + ("\n" if lines else ""))
        return path

    @staticmethod
    def load_summary(output_dir: Path, run_id: str | None = None) -> PipelineResult | None:
        """Load a run's summary, or the most recent one when ``run_id`` is None."""
        base = Path(output_dir)
        if run_id is not None:
            candidates = [base / run_id / "summary.json"]
        else:
            candidates = sorted(
                base.glob("*/summary.json"), key=lambda p: p.stat().st_mtime, reverse=True
            )
        for path in candidates:
            if path.exists():
                return PipelineResult.model_validate(json.loads(path.read_text()))
        return None


__all__ = ["LogCollector"]
