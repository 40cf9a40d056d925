"""Unit tests for post-deployment checks."""

from __future__ import annotations

import httpx
import pytest
import respx

from stackwright.config import ChecksConfig
from stackwright.model.stack import StackDocument, StackPort, StackService, Target
from stackwright.pipeline.checks import ServiceProbe, build_probes, run_checks


@pytest.fixture
def fast_checks() -> ChecksConfig:
    return ChecksConfig(timeout_seconds=0.3, interval_seconds=0.05, request_timeout_seconds=1.0)


@pytest.fixture
def document() -> StackDocument:
    return StackDocument(
        target=Target.COMPOSE,
        name="shop",
        services=(
            StackService(
                id="gateway",
                image="example/web:1",
                ports=(StackPort(source_port=8080, target_port=8080, protocol="http-rest"),),
                health_path="actuator/health",
            ),
            StackService(
                id="jobs",
                image="example/worker:1",
                ports=(StackPort(source_port=9000, target_port=9000, protocol="grpc"),),
            ),
            StackService(
                id="db",
                image="example/db:1",
                ports=(StackPort(target_port=5432, protocol="jdbc"),),
            ),
        ),
    )


def test_build_probes_only_for_published_http_ports(
    document: StackDocument, fast_checks: ChecksConfig
) -> None:
    probes = build_probes(document, fast_checks)

    assert [(p.service_id, p.url) for p in probes] == [
        ("gateway", "http://localhost:8080/actuator/health"),
    ]


def test_no_probes_for_reread_artifact(fast_checks: ChecksConfig) -> None:
    document = StackDocument(target=Target.COMPOSE, name="shop", documents=({"name": "shop"},))
    assert build_probes(document, fast_checks) == []


@respx.mock
@pytest.mark.asyncio
async def test_check_passes(document: StackDocument, fast_checks: ChecksConfig) -> None:
    """Endpoint answering 200 passes on the first attempt."""
    respx.get("http://localhost:8080/actuator/health").mock(return_value=httpx.Response(200))

    results = await run_checks(document, fast_checks)

    assert len(results) == 1
    assert results[0].passed is True
    assert results[0].status_code == 200
    assert results[0].attempts == 1


@respx.mock
@pytest.mark.asyncio
async def test_check_retries_until_ready(fast_checks: ChecksConfig) -> None:
    """Endpoint failing at first passes once it answers."""
    route = respx.get("http://localhost:8080/").mock(
        side_effect=[
            httpx.ConnectError("connection refused"),
            httpx.Response(503),
            httpx.Response(204),
        ]
    )
    config = fast_checks.model_copy(update={"timeout_seconds": 5.0})
    probe = ServiceProbe("gateway", "http://localhost:8080/", config)

    async with httpx.AsyncClient() as client:
        result = await probe.poll(client)

    assert result.passed is True
    assert result.attempts == 3
    assert route.call_count == 3


@respx.mock
@pytest.mark.asyncio
async def test_check_fails_after_timeout(
    document: StackDocument, fast_checks: ChecksConfig
) -> None:
    """Endpoint answering 500 fails once the timeout elapses."""
    respx.get("http://localhost:8080/actuator/health").mock(return_value=httpx.Response(500))

    results = await run_checks(document, fast_checks)

    assert results[0].passed is False
    assert results[0].status_code == 500
    assert results[0].error == "unexpected status code: 500"
    assert results[0].attempts > 1


@pytest.mark.asyncio
async def test_no_endpoints(fast_checks: ChecksConfig) -> None:
    document = StackDocument(target=Target.COMPOSE, name="empty")
    assert await run_checks(document, fast_checks) == []
