
"""Testes dos blocos de infraestrutura: hub de eventos, coalescência, cache e JID."""
from __future__ import annotations
import asyncio
import pytest
from ponte_bot.core.cache import BoundedCache
from ponte_bot.core.coalesce import KeyedLock, SingleFlight
from ponte_bot.core.events import EventHub
from ponte_bot.core.jid import is_group, is_lid, is_pn, normalize_jid, phone_of


class TestEventHub:
    async def test_failing_subscriber_is_isolated(self):
        hub = EventHub("t")
        seen = []

        def broken(_payload):
            raise RuntimeError("boom")

        hub.subscribe("x", broken)
        hub.subscribe("x", seen.append)
        assert await hub.publish("x", 1) == 1
        assert seen == [1]

    async def test_unsubscribe(self):
        hub = EventHub("t")
        seen = []
        cancel = hub.subscribe("x", seen.append)
        cancel()
        await hub.publish("x", 1)
        assert seen == []

    async def test_publish_nowait_schedules_coroutines(self):
        hub = EventHub("t")
        seen = []

        async def handler(payload):
            await asyncio.sleep(0)
            seen.append(payload)

        hub.subscribe("x", handler)
        hub.publish_nowait("x", 2)
        assert seen == []
        await hub.drain()
        assert seen == [2]


class TestSingleFlight:
    async def test_concurrent_callers_share_one_run(self):
        flight = SingleFlight("t")
        runs = 0

        async def work():
            nonlocal runs
            runs += 1
            await asyncio.sleep(0.01)
            return runs

        results = await asyncio.gather(*(flight.do("k", work) for _ in range(5)))
        assert results == [1] * 5 and runs == 1
        assert not flight.in_flight("k")

    async def test_error_reaches_every_caller_and_releases_key(self):
        flight = SingleFlight("t")

        async def fail():
            await asyncio.sleep(0)
            raise ValueError("x")

        results = await asyncio.gather(flight.do("k", fail), flight.do("k", fail), return_exceptions=True)
        assert all(isinstance(r, ValueError) for r in results)
        assert len(flight) == 0

    async def test_cancelled_caller_does_not_cancel_the_run(self):
        flight = SingleFlight("t")
        done = asyncio.Event()

        async def work():
            await asyncio.sleep(0.02)
            done.set()
            return "ok"

        caller = asyncio.ensure_future(flight.do("k", work))
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        await asyncio.wait_for(done.wait(), 1)


    async def test_wait_joins_without_starting(self):
        flight = SingleFlight("t")
        assert await flight.wait("k") is False

        async def work():
            await asyncio.sleep(0.01)
            return 7

        running = asyncio.ensure_future(flight.do("k", work))
        await asyncio.sleep(0)
        assert await flight.wait("k") is True
        assert running.done() and running.result() == 7


class TestKeyedLock:
    async def test_same_key_runs_in_order(self):
        locks = KeyedLock()
        order = []

        async def job(n):
            async with locks.hold("k"):
                await asyncio.sleep(0.01 if n == 0 else 0)
                order.append(n)

        await asyncio.gather(*(job(n) for n in range(3)))
        assert order == [0, 1, 2]
        assert len(locks) == 0


class TestBoundedCache:
    def test_evicts_least_recent(self):
        cache = BoundedCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert "b" not in cache and "a" in cache and "c" in cache

    def test_ttl(self):
        now = [0.0]
        cache = BoundedCache(max_size=10, ttl_s=30, clock=lambda: now[0])
        cache.set("k", True)
        now[0] = 29.9
        assert "k" in cache
        now[0] = 30.0
        assert "k" not in cache

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            BoundedCache(max_size=0)


class TestJid:
    def test_shapes(self):
        assert is_pn("5511@s.whatsapp.net") and is_pn("5511@c.us")
        assert is_lid("123@lid") and not is_pn("123@lid")
        assert is_group("1203@g.us")
        assert normalize_jid("5511:7@s.whatsapp.net") == "5511@s.whatsapp.net"
        assert phone_of("5511:7@s.whatsapp.net") == "5511"
