"""Tests for the HTTP health checker and process controller client."""

import httpx
import pytest

from orchestrate.errors import HealthCheckUnreachable, LaunchError
from orchestrate.health import DryRunHealthChecker, HttpHealthChecker
from orchestrate.models import ReadinessState, Service
from orchestrate.process import DryRunProcessController, ProcessControllerClient


def _checker(handler, process_status=None):
    services = [
        Service(id="api", health_url="http://api.local/health"),
        Service(id="worker"),
    ]
    return HttpHealthChecker(
        services,
        process_status=process_status,
        transport=httpx.MockTransport(handler),
    )


class TestHttpHealthChecker:
    @pytest.mark.asyncio
    async def test_2xx_is_healthy(self):
        checker = _checker(lambda request: httpx.Response(204))
        assert await checker.check("api") == ReadinessState.HEALTHY
        await checker.close()

    @pytest.mark.asyncio
    async def test_error_status_is_unhealthy(self):
        checker = _checker(lambda request: httpx.Response(503, json={"status": "DOWN"}))
        assert await checker.check("api") == ReadinessState.UNHEALTHY
        await checker.close()

    @pytest.mark.asyncio
    async def test_connection_error_raises_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        checker = _checker(handler)
        with pytest.raises(HealthCheckUnreachable):
            await checker.check("api")
        await checker.close()

    @pytest.mark.asyncio
    async def test_no_health_url_without_process_status_is_unknown(self):
        checker = _checker(lambda request: httpx.Response(200))
        assert await checker.check("worker") == ReadinessState.UNKNOWN
        await checker.close()

    @pytest.mark.asyncio
    async def test_no_health_url_uses_process_status(self):
        async def running(service_id):
            return True

        checker = _checker(lambda request: httpx.Response(200), process_status=running)
        assert await checker.check("worker") == ReadinessState.HEALTHY
        await checker.close()

    @pytest.mark.asyncio
    async def test_stopped_process_skips_http_probe(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(200)

        async def not_running(service_id):
            return False

        checker = _checker(handler, process_status=not_running)
        assert await checker.check("api") == ReadinessState.STOPPED
        assert calls == []
        await checker.close()

    @pytest.mark.asyncio
    async def test_registered_service_is_probed(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200)

        checker = _checker(handler)
        checker.register(Service(id="late", health_url="http://late.local/ready"))
        assert await checker.check("late") == ReadinessState.HEALTHY
        assert seen == ["http://late.local/ready"]
        await checker.close()


class TestDryRunHealthChecker:
    @pytest.mark.asyncio
    async def test_warmup_then_healthy(self):
        controller = DryRunProcessController()
        checker = DryRunHealthChecker(controller, warmup_polls=1)

        assert await checker.check("api") == ReadinessState.STOPPED
        await controller.launch("api")
        assert await checker.check("api") == ReadinessState.STARTING
        assert await checker.check("api") == ReadinessState.HEALTHY

        await controller.terminate("api")
        assert await checker.check("api") == ReadinessState.STOPPED


class TestProcessControllerClient:
    @pytest.mark.asyncio
    async def test_launch_posts_start(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"status": "starting"})

        client = ProcessControllerClient("http://ctl.local/", transport=httpx.MockTransport(handler))
        await client.launch("cache")
        assert seen == [("POST", "/api/services/cache/start")]
        await client.close()

    @pytest.mark.asyncio
    async def test_launch_retries_transient_errors(self):
        responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200)])

        client = ProcessControllerClient(
            "http://ctl.local",
            transport=httpx.MockTransport(lambda request: next(responses)),
            base_delay=0,
        )
        await client.launch("cache")
        await client.close()

    @pytest.mark.asyncio
    async def test_launch_failure_raises_launch_error(self):
        client = ProcessControllerClient(
            "http://ctl.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
            base_delay=0,
        )
        with pytest.raises(LaunchError) as exc_info:
            await client.launch("cache")
        assert exc_info.value.service_id == "cache"
        await client.close()

    @pytest.mark.asyncio
    async def test_launch_gives_up_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = ProcessControllerClient(
            "http://ctl.local", transport=httpx.MockTransport(handler), base_delay=0,
        )
        with pytest.raises(LaunchError):
            await client.launch("cache")
        assert len(calls) == 4
        await client.close()

    @pytest.mark.asyncio
    async def test_terminate_already_stopped_is_ok(self):
        client = ProcessControllerClient(
            "http://ctl.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(409)),
        )
        await client.terminate("cache")
        await client.close()

    @pytest.mark.asyncio
    async def test_terminate_error_propagates(self):
        client = ProcessControllerClient(
            "http://ctl.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await client.terminate("cache")
        await client.close()

    @pytest.mark.asyncio
    async def test_is_running(self):
        def handler(request):
            if request.url.path.endswith("/cache"):
                return httpx.Response(200, json={"status": "running"})
            return httpx.Response(404)

        client = ProcessControllerClient("http://ctl.local", transport=httpx.MockTransport(handler))
        assert await client.is_running("cache") is True
        assert await client.is_running("ghost") is False
        await client.close()

    def test_requires_base_url(self):
        with pytest.raises(ValueError, match="Process controller URL is required"):
            ProcessControllerClient("")
