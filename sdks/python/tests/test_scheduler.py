import asyncio

from compact_client.scheduler import Ticker


def test_ticks_until_stopped():
    calls = []

    async def tick():
        calls.append(1)

    async def scenario():
        ticker = Ticker(0.01, tick)
        ticker.start()
        await asyncio.sleep(0.055)
        await ticker.stop()
        await ticker.drain()
        count = len(calls)
        await asyncio.sleep(0.03)
        return ticker, count

    ticker, count = asyncio.run(scenario())
    assert count >= 3
    assert len(calls) == count
    assert not ticker.running


def test_slow_tick_does_not_block_the_next():
    started = []
    release = None

    async def slow():
        started.append(1)
        await release.wait()

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        ticker = Ticker(0.01, slow)
        ticker.start()
        await asyncio.sleep(0.045)
        await ticker.stop()
        inflight = ticker.inflight
        release.set()
        await ticker.drain()
        return inflight, ticker.inflight

    inflight, after = asyncio.run(scenario())
    assert len(started) >= 3
    assert inflight >= 3
    assert after == 0


def test_failing_tick_keeps_ticking():
    calls = []

    async def broken():
        calls.append(1)
        raise RuntimeError("boom")

    async def scenario():
        ticker = Ticker(0.01, broken)
        ticker.start()
        await asyncio.sleep(0.035)
        await ticker.stop()
        await ticker.drain()

    asyncio.run(scenario())
    assert len(calls) >= 2


def test_delayed_first_tick():
    calls = []

    async def tick():
        calls.append(1)

    async def scenario():
        ticker = Ticker(10, tick, run_immediately=False)
        ticker.start()
        await asyncio.sleep(0.01)
        await ticker.stop()

    asyncio.run(scenario())
    assert calls == []
