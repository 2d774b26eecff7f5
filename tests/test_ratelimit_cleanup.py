from __future__ import annotations

import asyncio

from prometheus_client import REGISTRY

from sheltergate.limits import build_limiters
from sheltergate.ratelimit import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_cleanup_task_sweeps_stale_buckets_until_stopped():
    async def scenario() -> None:
        clock = FakeClock()
        # cleanup runs every 0.05s of real time
        limiter = RateLimiter(1, 0.005, name="cleanup-test", clock=clock)
        limiter.allow("a")
        limiter.allow("b")
        clock.now = 1.0

        task = limiter.start()
        assert limiter.start() is task
        assert limiter.running
        await asyncio.sleep(0.2)
        assert len(limiter) == 0

        await limiter.stop()
        assert not limiter.running
        assert task.cancelled()

    asyncio.run(scenario())
    gauge = REGISTRY.get_sample_value(
        "shelter_ratelimit_buckets", {"limiter": "cleanup-test"}
    )
    assert gauge == 0.0


def test_stop_without_start_is_noop():
    async def scenario() -> None:
        limiter = RateLimiter(1, 1)
        await limiter.stop()
        assert not limiter.running

    asyncio.run(scenario())


def test_limiters_start_and_stop_together():
    async def scenario() -> None:
        limiters = build_limiters()
        limiters.start_all()
        assert all(lim.running for lim in limiters.all().values())
        await limiters.stop_all()
        assert not any(lim.running for lim in limiters.all().values())

    asyncio.run(scenario())


def test_limiters_do_not_share_buckets():
    limiters = build_limiters()
    for _ in range(limiters.auth.rate):
        assert limiters.auth.allow("192.0.2.9")
    assert not limiters.auth.allow("192.0.2.9")
    assert limiters.user.allow("192.0.2.9")
    assert limiters.api.allow("192.0.2.9")


def test_unstarted_limiter_only_sweeps_on_demand():
    async def scenario() -> None:
        clock = FakeClock()
        limiter = RateLimiter(1, 0.005, clock=clock)
        limiter.allow("a")
        clock.now = 1.0
        await asyncio.sleep(0.1)
        assert not limiter.running
        assert len(limiter) == 1
        assert limiter.sweep() == 1

    asyncio.run(scenario())
