import asyncio
from typing import AsyncGenerator

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from supermodel_client.api import SupermodelApi
from supermodel_client.errors import (
    JobFailedError,
    PollingAbortedError,
    PollingTimeoutError,
    ProtocolViolationError,
)
from supermodel_client.models import (
    AsyncClientConfig,
    CodeGraphEnvelope,
    DomainClassificationResponse,
    GraphRequestOptions,
    JobStatus,
    SupermodelIR,
)
from supermodel_client.supermodel_client import SupermodelClient
from supermodel_server import SupermodelServer

BASE_URL_TEMPLATE = "http://127.0.0.1:{}"
ARCHIVE = b"PK\x05\x06" + b"\x00" * 18


@pytest_asyncio.fixture
async def server() -> AsyncGenerator[tuple[SupermodelServer, int], None]:
    """Start and yield a test SupermodelServer instance on a free port."""
    server_instance = SupermodelServer(completion_time=0.3, error_rate=0.0, retry_after=0.05)
    port = await server_instance.start(port=0)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest_asyncio.fixture
async def api(server) -> AsyncGenerator[SupermodelApi, None]:
    _, port = server
    async with SupermodelApi(BASE_URL_TEMPLATE.format(port), api_key="test-key") as api_instance:
        yield api_instance


@pytest.fixture
def config() -> AsyncClientConfig:
    """Provide default configuration for the client."""
    return AsyncClientConfig(
        timeout_ms=10000,
        default_retry_interval_ms=100,
        max_polling_attempts=50,
    )


@pytest.mark.asyncio
async def test_successful_completion(server, api, config):
    """Test normal successful completion flow."""
    status_changes = []

    async def progress_callback(progress):
        status_changes.append(progress.status)

    client = SupermodelClient(
        api, config.model_copy(update={"on_polling_progress": progress_callback})
    )

    result = await client.generate_dependency_graph(ARCHIVE)

    assert isinstance(result, CodeGraphEnvelope)
    assert len(result.graph.nodes) == 2
    assert result.graph.relationships[0]["type"] == "IMPORTS"
    assert status_changes[0] == JobStatus.pending
    assert JobStatus.processing in status_changes
    assert status_changes[-1] == JobStatus.completed


@pytest.mark.asyncio
async def test_every_operation_returns_its_result_type(api, config):
    client = SupermodelClient(api, config)

    assert isinstance(await client.generate_call_graph(ARCHIVE), CodeGraphEnvelope)
    assert isinstance(await client.generate_parse_graph(ARCHIVE), CodeGraphEnvelope)
    domains = await client.generate_domain_graph(ARCHIVE)
    assert isinstance(domains, DomainClassificationResponse)
    assert domains.domains[0]["name"] == "Core"
    ir = await client.generate_supermodel_graph(ARCHIVE)
    assert isinstance(ir, SupermodelIR)
    assert ir.repo == "example"


@pytest.mark.asyncio
async def test_error_scenario(server, api, config):
    """Test job failure with high error rate."""
    server_instance, _ = server
    server_instance.error_rate = 1.0
    client = SupermodelClient(api, config)

    with pytest.raises(JobFailedError) as exc_info:
        await client.generate_call_graph(ARCHIVE)

    assert exc_info.value.error_message == "bad archive"


@pytest.mark.asyncio
async def test_timeout_scenario(server, api, config):
    """Test timeout handling."""
    server_instance, _ = server
    server_instance.completion_time = 30.0
    client = SupermodelClient(api, config.model_copy(update={"timeout_ms": 500}))

    with pytest.raises(PollingTimeoutError) as exc_info:
        await client.generate_parse_graph(ARCHIVE)

    assert exc_info.value.job_id == next(iter(server_instance.jobs.values()))["job_id"]


@pytest.mark.asyncio
async def test_server_unavailable(config):
    """Test behavior when server is not available."""
    async with SupermodelApi("http://127.0.0.1:9999") as api:  # Invalid port
        client = SupermodelClient(api, config)

        with pytest.raises(aiohttp.ClientConnectionError):
            await client.generate_dependency_graph(ARCHIVE)


@pytest.mark.asyncio
async def test_explicit_idempotency_key_reuses_job(server, api, config):
    """Two calls with the same key observe the same job."""
    server_instance, _ = server
    job_ids = []
    client = SupermodelClient(
        api,
        config.model_copy(update={"on_polling_progress": lambda p: job_ids.append(p.job_id)}),
    )
    options = GraphRequestOptions(idempotency_key="repo-abc")

    await client.generate_dependency_graph(ARCHIVE, options)
    await client.generate_dependency_graph(ARCHIVE, options)

    assert len(server_instance.jobs) == 1
    assert set(job_ids) == {server_instance.jobs["repo-abc"]["job_id"]}
    assert server_instance.last_headers["Idempotency-Key"] == "repo-abc"


@pytest.mark.asyncio
async def test_generated_keys_start_separate_jobs(server, api, config):
    server_instance, _ = server
    keys = iter(["key-1", "key-2"])
    client = SupermodelClient(
        api, config.model_copy(update={"generate_idempotency_key": lambda: next(keys)})
    )

    await client.generate_domain_graph(ARCHIVE)
    await client.generate_domain_graph(ARCHIVE)

    assert set(server_instance.jobs) == {"key-1", "key-2"}


@pytest.mark.asyncio
async def test_client_signal_aborts_before_request(server, api, config):
    server_instance, _ = server
    signal = asyncio.Event()
    signal.set()
    client = SupermodelClient(api, config.model_copy(update={"signal": signal}))

    with pytest.raises(PollingAbortedError):
        await client.generate_dependency_graph(ARCHIVE)

    assert server_instance.request_count == 0


@pytest.mark.asyncio
async def test_per_call_signal_replaces_client_signal(api, config):
    client_signal = asyncio.Event()
    client_signal.set()
    client = SupermodelClient(api, config.model_copy(update={"signal": client_signal}))

    result = await client.generate_dependency_graph(
        ARCHIVE, GraphRequestOptions(signal=asyncio.Event())
    )

    assert isinstance(result, CodeGraphEnvelope)


@pytest.mark.asyncio
async def test_raw_api_returns_envelope(server, api, config):
    server_instance, _ = server
    client = SupermodelClient(api, config)

    envelope = await client.raw_api.generate_call_graph(
        "raw-key", ARCHIVE, headers={"X-Trace-Id": "trace-1"}
    )

    assert envelope.status == JobStatus.pending
    assert envelope.retry_after == 0.05
    assert envelope.job_id == server_instance.jobs["raw-key"]["job_id"]
    assert server_instance.last_headers["X-Api-Key"] == "test-key"
    assert server_instance.last_headers["X-Trace-Id"] == "trace-1"


@pytest.mark.asyncio
async def test_missing_idempotency_key_is_http_error(api):
    with pytest.raises(aiohttp.ClientResponseError) as exc_info:
        await api.generate_dependency_graph("", ARCHIVE)

    assert exc_info.value.status == 400


@pytest.mark.asyncio
async def test_unknown_status_is_protocol_violation(config):
    """Statuses outside the known set are rejected rather than polled forever."""

    async def handle(request):
        return web.json_response({"status": "queued", "jobId": "job-q"})

    app = web.Application()
    app.router.add_post("/v1/graphs/dependency", handle)
    runner = web.AppRunner(app)
    await runner.setup()
    await web.TCPSite(runner, "127.0.0.1", 0).start()
    port = runner.addresses[0][1]
    try:
        async with SupermodelApi(BASE_URL_TEMPLATE.format(port)) as api:
            client = SupermodelClient(api, config)
            with pytest.raises(ProtocolViolationError) as exc_info:
                await client.generate_dependency_graph(ARCHIVE)
    finally:
        await runner.cleanup()

    assert exc_info.value.job_id == "job-q"


@pytest.mark.asyncio
async def test_non_json_success_body_is_protocol_violation(config):
    """A 2xx reply that is not JSON is reported as a malformed envelope."""

    async def handle(request):
        return web.Response(text="<html>gateway</html>", content_type="text/html")

    app = web.Application()
    app.router.add_post("/v1/graphs/call", handle)
    runner = web.AppRunner(app)
    await runner.setup()
    await web.TCPSite(runner, "127.0.0.1", 0).start()
    port = runner.addresses[0][1]
    try:
        async with SupermodelApi(BASE_URL_TEMPLATE.format(port)) as api:
            with pytest.raises(ProtocolViolationError) as exc_info:
                await api.generate_call_graph("key-1", ARCHIVE)
    finally:
        await runner.cleanup()

    assert exc_info.value.job_id == "unknown"
    assert "not valid JSON" in str(exc_info.value)
