"""Tests for the Ok/Err result envelope."""

from __future__ import annotations

import pytest

from rollout.core.errors import ConfigError, HealthCheckFailure
from rollout.core.result import Err, Ok


class TestOk:
    def test_unwrap(self):
        result = Ok(21)
        assert result.is_ok() and not result.is_err()
        assert result.unwrap() == 21

    def test_to_dict(self):
        assert Ok("done").to_dict() == {"ok": True, "value": "done"}


class TestErr:
    def test_unwrap_raises_error(self):
        error = HealthCheckFailure("HTTP 503")
        with pytest.raises(HealthCheckFailure):
            Err(error).unwrap()

    def test_keeps_error(self):
        error = ConfigError("missing")
        result = Err(error)
        assert result.is_err() and not result.is_ok()
        assert result.error is error

    def test_to_dict_uses_error_dict(self):
        data = Err(ConfigError("missing", key="ROLLOUT_CLUSTER")).to_dict()
        assert data["ok"] is False
        assert data["error"]["error_type"] == "ConfigError"
        assert data["error"]["exit_code"] == 2

    def test_to_dict_plain_exception(self):
        data = Err(ValueError("boom")).to_dict()
        assert data["ok"] is False
        assert "boom" in str(data)
