"""Post-deployment checks for Stackwright.

After a deploy, every published port that speaks HTTP is probed on localhost
until the service answers or the timeout elapses. On the kubernetes target
the ports are reachable through the port-forward tunnels; on compose they are
published by the container runtime directly.

Example usage:
    >>> from stackwright.config import ChecksConfig
    >>> from stackwright.pipeline.checks import run_checks
    >>>
    >>> results = await run_checks(document, ChecksConfig(timeout_seconds=60))
    >>> failed = [r for r in results if not r.passed]
"""

from __future__ import annotations

import asyncio
import time

import httpx
from pydantic import BaseModel, Field

from stackwright.config import ChecksConfig
from stackwright.logging import get_logger
from stackwright.model.resolved import url_scheme
from stackwright.model.stack import StackDocument

logger = get_logger(__name__)

PROBE_HOST = "localhost"


class CheckResult(BaseModel):
    """Outcome of probing one service endpoint.

    Attributes:
        service_id: Probed service
        url: Probed URL
        passed: Whether the endpoint answered with a non-error status
        status_code: Last HTTP status received (None if nothing answered)
        error: Last error seen while probing
        attempts: Number of requests sent
        duration_seconds: Time until the verdict
    """

    service_id: str = Field(description="Probed service")
    url: str = Field(description="Probed URL")
    passed: bool = Field(description="Check verdict")
    status_code: int | None = Field(default=None, description="Last HTTP status")
    error: str | None = Field(default=None, description="Last error")
    attempts: int = Field(default=0, ge=0, description="Requests sent")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Time to verdict")


class ServiceProbe:
    """Polls one HTTP endpoint until it answers or time runs out."""

    def __init__(self, service_id: str, url: str, config: ChecksConfig) -> None:
        self.service_id = service_id
        self.url = url
        self.config = config

    async def check(self, client: httpx.AsyncClient) -> tuple[int | None, str | None]:
        """Send a single request.

        Returns:
            Tuple of (status code, error message); the status is None when the
            request itself failed
        """
        try:
            response = await client.get(self.url, timeout=self.config.request_timeout_seconds)
        except httpx.HTTPError as e:
            return None, f"{type(e).__name__}: {e}"

        if response.status_code >= 400:
            return response.status_code, f"unexpected status code: {response.status_code}"
        return response.status_code, None

    async def poll(self, client: httpx.AsyncClient) -> CheckResult:
        """Probe until the endpoint answers without error or the timeout elapses."""
        start_time = time.monotonic()
        deadline = start_time + self.config.timeout_seconds
        attempts = 0

        while True:
            attempts += 1
            status_code, error = await self.check(client)

            if error is None:
                logger.info("service_check_passed", service=self.service_id, url=self.url)
                return CheckResult(
                    service_id=self.service_id,
                    url=self.url,
                    passed=True,
                    status_code=status_code,
                    attempts=attempts,
                    duration_seconds=time.monotonic() - start_time,
                )

            logger.debug(
                "service_check_retry",
                service=self.service_id,
                url=self.url,
                attempt=attempts,
                error=error,
            )

            if time.monotonic() + self.config.interval_seconds > deadline:
                logger.warning(
                    "service_check_failed",
                    service=self.service_id,
                    url=self.url,
                    attempts=attempts,
                    error=error,
                )
                return CheckResult(
                    service_id=self.service_id,
                    url=self.url,
                    passed=False,
                    status_code=status_code,
                    error=error,
                    attempts=attempts,
                    duration_seconds=time.monotonic() - start_time,
                )

            await asyncio.sleep(self.config.interval_seconds)


def build_probes(document: StackDocument, config: ChecksConfig) -> list[ServiceProbe]:
    """One probe per published port that speaks HTTP."""
    probes: list[ServiceProbe] = []
    for service in document.services:
        path = service.health_path
        if not path.startswith("/"):
            path = f"/{path}"
        for port in service.ports:
            scheme = url_scheme(port.protocol)
            if port.source_port is None or scheme not in ("http", "https"):
                continue
            url = f"{scheme}://{PROBE_HOST}:{port.source_port}{path}"
            probes.append(ServiceProbe(service.id, url, config))
    return probes


async def run_checks(
    document: StackDocument,
    config: ChecksConfig,
    client: httpx.AsyncClient | None = None,
) -> list[CheckResult]:
    """Probe every HTTP endpoint of a deployed stack concurrently.

    Args:
        document: Generated stack (its services carry the published ports)
        config: Probe timing settings
        client: HTTP client to use, a private one is created when omitted

    Returns:
        One CheckResult per probed endpoint, in service order
    """
    probes = build_probes(document, config)
    logger.info("checks_started", name=document.name, probes=len(probes))
    if not probes:
        return []

    if client is not None:
        results = await asyncio.gather(*(p.poll(client) for p in probes))
    else:
        async with httpx.AsyncClient(follow_redirects=True) as own_client:
            results = await asyncio.gather(*(p.poll(own_client) for p in probes))

    logger.info(
        "checks_completed",
        name=document.name,
        passed=sum(1 for r in results if r.passed),
        failed=sum(1 for r in results if not r.passed),
    )
    return list(results)
