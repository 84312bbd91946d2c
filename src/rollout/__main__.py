"""Allow ``python -m rollout``."""

from rollout.cli.app import app

app()
