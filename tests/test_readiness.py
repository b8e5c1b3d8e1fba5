"""Tests for the readiness prober."""

import asyncio
import time

import pytest
import pytest_asyncio

from orchestrate.errors import HealthCheckUnreachable
from orchestrate.models import ReadinessState
from orchestrate.readiness import ReadinessProber


class ScriptedChecker:
    """Returns queued states per service, repeating the last one."""

    def __init__(self, **scripts):
        self.scripts = {sid: list(states) for sid, states in scripts.items()}
        self.calls: dict[str, int] = {}

    async def check(self, service_id):
        self.calls[service_id] = self.calls.get(service_id, 0) + 1
        script = self.scripts.get(service_id, [ReadinessState.UNKNOWN])
        state = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(state, Exception):
            raise state
        return state


@pytest_asyncio.fixture
async def prober_factory():
    probers = []

    def make(checker, **kwargs):
        kwargs.setdefault("min_interval", 0.01)
        prober = ReadinessProber(checker, **kwargs)
        probers.append(prober)
        return prober

    yield make
    for prober in probers:
        await prober.close()


class TestObserve:
    @pytest.mark.asyncio
    async def test_unknown_before_any_poll(self, prober_factory):
        prober = prober_factory(ScriptedChecker())
        assert prober.observe("registry") == ReadinessState.UNKNOWN

    @pytest.mark.asyncio
    async def test_observe_reflects_latest_poll(self, prober_factory):
        checker = ScriptedChecker(registry=[ReadinessState.STARTING, ReadinessState.HEALTHY])
        prober = prober_factory(checker)
        ok, state = await prober.await_ready("registry", True, timeout=1.0, interval=0.02)
        assert ok
        assert state == ReadinessState.HEALTHY
        assert prober.observe("registry") == ReadinessState.HEALTHY
        assert prober.snapshot() == {"registry": ReadinessState.HEALTHY}


class TestAwaitReady:
    @pytest.mark.asyncio
    async def test_waits_until_healthy(self, prober_factory):
        checker = ScriptedChecker(api=[
            ReadinessState.STARTING,
            ReadinessState.UNHEALTHY,
            ReadinessState.HEALTHY,
        ])
        prober = prober_factory(checker)
        ok, state = await prober.await_ready("api", True, timeout=2.0, interval=0.02)
        assert ok and state == ReadinessState.HEALTHY
        assert checker.calls["api"] >= 3

    @pytest.mark.asyncio
    async def test_running_is_enough_without_health_gate(self, prober_factory):
        checker = ScriptedChecker(api=[ReadinessState.STARTING])
        prober = prober_factory(checker)
        ok, state = await prober.await_ready("api", False, timeout=1.0, interval=0.02)
        assert ok and state == ReadinessState.STARTING

    @pytest.mark.asyncio
    async def test_stopped_does_not_count_as_running(self, prober_factory):
        checker = ScriptedChecker(api=[ReadinessState.STOPPED])
        prober = prober_factory(checker)
        ok, state = await prober.await_ready("api", False, timeout=0.2, interval=0.02)
        assert not ok
        assert state == ReadinessState.STOPPED

    @pytest.mark.asyncio
    async def test_timeout_is_wall_clock(self, prober_factory):
        checker = ScriptedChecker(api=[ReadinessState.UNHEALTHY])
        prober = prober_factory(checker)
        started = time.monotonic()
        # Interval longer than the timeout: the wait still ends on time.
        ok, state = await prober.await_ready("api", True, timeout=0.3, interval=5)
        elapsed = time.monotonic() - started
        assert not ok
        assert state == ReadinessState.UNHEALTHY
        assert 0.25 <= elapsed < 1.0

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_reads_as_unhealthy(self, prober_factory):
        checker = ScriptedChecker(api=[HealthCheckUnreachable("api", "connection refused")])
        prober = prober_factory(checker)
        ok, state = await prober.await_ready("api", True, timeout=0.2, interval=0.02)
        assert not ok
        assert state == ReadinessState.UNHEALTHY

    @pytest.mark.asyncio
    async def test_unexpected_checker_error_reads_as_unhealthy(self, prober_factory):
        checker = ScriptedChecker(api=[RuntimeError("boom"), ReadinessState.HEALTHY])
        prober = prober_factory(checker)
        ok, _ = await prober.await_ready("api", True, timeout=1.0, interval=0.02)
        assert ok


class TestSharedPolling:
    @pytest.mark.asyncio
    async def test_concurrent_waiters_share_one_poll_loop(self, prober_factory):
        checker = ScriptedChecker(hub=[ReadinessState.UNHEALTHY])
        prober = prober_factory(checker)

        results = await asyncio.gather(*(
            prober.await_ready("hub", True, timeout=0.3, interval=0.05)
            for _ in range(5)
        ))

        assert all(not ok for ok, _ in results)
        # One loop at 0.05s over 0.3s, not five.
        assert checker.calls["hub"] <= 10

    @pytest.mark.asyncio
    async def test_all_waiters_woken_by_one_state_change(self, prober_factory):
        checker = ScriptedChecker(hub=[ReadinessState.STARTING, ReadinessState.STARTING, ReadinessState.HEALTHY])
        prober = prober_factory(checker)

        results = await asyncio.gather(*(
            prober.await_ready("hub", True, timeout=2.0, interval=0.02)
            for _ in range(3)
        ))
        assert [ok for ok, _ in results] == [True, True, True]

    @pytest.mark.asyncio
    async def test_shorter_interval_tightens_running_loop(self, prober_factory):
        checker = ScriptedChecker(hub=[ReadinessState.UNHEALTHY])
        prober = prober_factory(checker)
        prober.watch("hub", interval=10)
        await asyncio.sleep(0.05)
        await prober.await_ready("hub", True, timeout=0.3, interval=0.02)
        assert checker.calls["hub"] >= 5

    @pytest.mark.asyncio
    async def test_interval_tightened_during_poll_is_not_lost(self, prober_factory):
        gate = asyncio.Event()
        calls = []

        class SlowFirstPoll:
            async def check(self, service_id):
                calls.append(service_id)
                if len(calls) == 1:
                    await gate.wait()
                return ReadinessState.UNHEALTHY

        prober = prober_factory(SlowFirstPoll())
        prober.watch("hub", interval=10)
        await asyncio.sleep(0.05)
        assert len(calls) == 1

        # First poll is still in flight when the interval drops.
        prober.watch("hub", interval=0.02)
        gate.set()
        await asyncio.sleep(0.3)

        assert len(calls) >= 2


class TestStopWatching:
    @pytest.mark.asyncio
    async def test_stop_watching_publishes_stopped(self, prober_factory):
        checker = ScriptedChecker(api=[ReadinessState.HEALTHY])
        prober = prober_factory(checker)
        prober.watch("api", interval=0.02)
        await asyncio.sleep(0.05)
        assert prober.is_watching("api")

        await prober.stop_watching("api")
        assert not prober.is_watching("api")
        assert prober.observe("api") == ReadinessState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_watching_unknown_service_is_noop(self, prober_factory):
        prober = prober_factory(ScriptedChecker())
        await prober.stop_watching("ghost")
        assert prober.observe("ghost") == ReadinessState.UNKNOWN
