"""Storage for the last successfully applied migration hash.

Used only by the ``SkipIfUnchanged`` strategy. A hash is written after a
migration succeeds and never before, so a failed migration is retried on
the next run even if nothing changed.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from rollout.core.errors import ConfigError
from rollout.deploy.remote import ParameterService


class HashStore(Protocol):
    def load(self) -> str | None: ...

    def save(self, digest: str) -> None: ...


class FileHashStore:
    """Local JSON file, one entry per environment.

    File shape::

        {"prod": {"hash": "9f2c…", "recorded_at": "2024-06-01T10:00:00+00:00"}}
    """

    def __init__(self, path: str | Path, environment: str) -> None:
        self.path = Path(path)
        self.environment = environment

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as exc:
            raise ConfigError(
                f"Migration hash file {self.path} is not valid JSON", key="ROLLOUT_MIGRATION_HASH_FILE", cause=exc
            ) from exc
        if not isinstance(data, dict):
            raise ConfigError(
                f"Migration hash file {self.path} must hold a JSON object, got {type(data).__name__}",
                key="ROLLOUT_MIGRATION_HASH_FILE",
            )
        return data

    def load(self) -> str | None:
        entry = self._read().get(self.environment)
        return entry.get("hash") if isinstance(entry, dict) else None

    def save(self, digest: str) -> None:
        data = self._read()
        data[self.environment] = {
            "hash": digest,
            "recorded_at": datetime.now(UTC).isoformat(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True))


class ParameterStoreHashStore:
    """SSM Parameter Store entry, shared by every machine deploying the stack."""

    def __init__(self, parameters: ParameterService, name: str) -> None:
        self.parameters = parameters
        self.name = name

    def load(self) -> str | None:
        return self.parameters.get(self.name)

    def save(self, digest: str) -> None:
        self.parameters.put(self.name, digest)


__all__ = ["FileHashStore", "HashStore", "ParameterStoreHashStore"]
