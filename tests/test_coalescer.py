import asyncio

import pytest

from staffing.coalescer import RequestCoalescer


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_computation() -> None:
    coalescer = RequestCoalescer()
    calls = 0
    release = asyncio.Event()

    async def compute():
        nonlocal calls
        calls += 1
        await release.wait()
        return {"payload": calls}

    waiters = [
        asyncio.create_task(coalescer.run_coalesced("sector:s1", compute))
        for _ in range(10)
    ]
    await asyncio.sleep(0)
    assert coalescer.active_requests == 1

    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert all(r is results[0] for r in results)
    assert coalescer.active_requests == 0


@pytest.mark.asyncio
async def test_distinct_keys_run_independently() -> None:
    coalescer = RequestCoalescer()
    seen = []

    async def compute(key):
        seen.append(key)
        await asyncio.sleep(0)
        return key

    results = await asyncio.gather(
        coalescer.run_coalesced("a", lambda: compute("a")),
        coalescer.run_coalesced("b", lambda: compute("b")),
    )
    assert results == ["a", "b"]
    assert sorted(seen) == ["a", "b"]


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter_and_releases_the_key() -> None:
    coalescer = RequestCoalescer()
    release = asyncio.Event()

    async def boom():
        await release.wait()
        raise RuntimeError("store down")

    waiters = [
        asyncio.create_task(coalescer.run_coalesced("k", boom)) for _ in range(3)
    ]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert all(isinstance(r, RuntimeError) for r in results)
    assert coalescer.active_requests == 0

    async def ok():
        return "recovered"

    assert await coalescer.run_coalesced("k", ok) == "recovered"


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_the_shared_computation() -> None:
    coalescer = RequestCoalescer()
    release = asyncio.Event()
    calls = 0

    async def compute():
        nonlocal calls
        calls += 1
        await release.wait()
        return "done"

    first = asyncio.create_task(coalescer.run_coalesced("k", compute))
    second = asyncio.create_task(coalescer.run_coalesced("k", compute))
    await asyncio.sleep(0)

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    release.set()
    assert await second == "done"
    assert calls == 1


@pytest.mark.asyncio
async def test_forget_lets_the_next_caller_start_afresh() -> None:
    coalescer = RequestCoalescer()
    release = asyncio.Event()
    calls = 0

    async def compute():
        nonlocal calls
        calls += 1
        n = calls
        await release.wait()
        return n

    old = asyncio.create_task(coalescer.run_coalesced("k", compute))
    await asyncio.sleep(0)
    coalescer.forget("k")
    new = asyncio.create_task(coalescer.run_coalesced("k", compute))
    await asyncio.sleep(0)

    release.set()
    assert await old == 1
    assert await new == 2
    assert coalescer.active_requests == 0


@pytest.mark.asyncio
async def test_forget_tagged_leaves_unrelated_computations_shared() -> None:
    coalescer = RequestCoalescer()
    release = asyncio.Event()
    calls = []

    async def compute(key):
        calls.append(key)
        await release.wait()
        return key

    sector = asyncio.create_task(
        coalescer.run_coalesced(
            "sector:s1", lambda: compute("sector"), tags={"s1", "assignments:*"}
        )
    )
    missions = asyncio.create_task(
        coalescer.run_coalesced(
            "missions:v1", lambda: compute("missions"), tags={"v1", "missions:*"}
        )
    )
    await asyncio.sleep(0)

    assert coalescer.forget_tagged({"m1", "missions:*"}) == 1
    again = asyncio.create_task(
        coalescer.run_coalesced(
            "sector:s1", lambda: compute("sector"), tags={"s1", "assignments:*"}
        )
    )
    await asyncio.sleep(0)
    assert coalescer.active_requests == 1

    release.set()
    assert await asyncio.gather(sector, missions, again) == [
        "sector",
        "missions",
        "sector",
    ]
    assert sorted(calls) == ["missions", "sector"]
    assert coalescer.active_requests == 0
