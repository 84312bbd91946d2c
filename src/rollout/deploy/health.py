"""Final health verification stage.

One synchronous ``GET`` against the load balancer's public health path.
A 2xx is the only way a run succeeds; anything else, including a transport
error or timeout, fails the run.
"""

from __future__ import annotations

import time

import httpx

from rollout.core.enums import Stage
from rollout.core.errors import HealthCheckFailure
from rollout.core.logging import get_logger
from rollout.deploy.context import StageContext
from rollout.deploy.results import HealthProbeResult
from rollout.deploy.tokens import StableToken

logger = get_logger(__name__)


class HttpHealthProbe:
    """``GET`` an HTTP endpoint and expect a 2xx response."""

    def __init__(self, *, timeout: float = 10.0, transport: httpx.BaseTransport | None = None):
        self.timeout = timeout
        self.transport = transport

    def probe(self, url: str) -> HealthProbeResult:
        start = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(url)
        except httpx.HTTPError as exc:
            return HealthProbeResult(
                endpoint=url,
                success=False,
                error=f"{type(exc).__name__}: {exc}",
                elapsed_ms=(time.perf_counter() - start) * 1000,
            )
        return HealthProbeResult(
            endpoint=url,
            http_status=response.status_code,
            success=response.is_success,
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )


def verify_health(ctx: StageContext, token: StableToken) -> HealthProbeResult:
    """Probe the public health endpoint.

    Raises:
        HealthCheckFailure: The endpoint did not answer with a 2xx.
    """
    if not isinstance(token, StableToken):
        raise TypeError("health verification requires the stabilization stage's token")

    url = ctx.config.health_url(token.load_balancer_dns)
    ctx.reporter.started(Stage.VERIFY, f"GET {url}")
    result = ctx.services.probe.probe(url)
    logger.info(
        "verify.probed",
        endpoint=url,
        http_status=result.http_status,
        success=result.success,
        elapsed_ms=round(result.elapsed_ms, 1),
    )

    if not result.success:
        detail = f"HTTP {result.http_status}" if result.http_status is not None else result.error
        error = HealthCheckFailure(f"health check {url} failed: {detail}", probe=result)
        error.with_context(run_id=ctx.config.run_id, endpoint=url)
        raise error

    ctx.reporter.succeeded(Stage.VERIFY, f"HTTP {result.http_status} from {url}")
    return result


__all__ = ["HttpHealthProbe", "verify_health"]
