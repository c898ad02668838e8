"""
Tests for the single-flight player script cache
"""
import asyncio

import pytest
from pydantic import ValidationError

from errors import FunctionNameNotFound
from models import CacheEntry, ExtractedFunctionSet
from player_cache import PlayerScriptCache
from test_fixtures import PLAYER_SCRIPT, PLAYER_SCRIPT_WITHOUT_DECIPHER, PLAYER_SCRIPT_WITHOUT_N

PLAYER_URL = "https://example/s/player/abc123/base.js"


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_fetch(cache, counting_fetch):
    fetch = counting_fetch(PLAYER_SCRIPT, delay=0.05)

    results = await asyncio.gather(
        *(cache.get_or_compute(PLAYER_URL, fetch) for _ in range(10))
    )

    assert fetch.calls == [PLAYER_URL]
    assert all(result is results[0] for result in results)
    assert len(results[0]) == 2


@pytest.mark.asyncio
async def test_result_is_memoized(cache, counting_fetch):
    fetch = counting_fetch(PLAYER_SCRIPT)

    first = await cache.get_or_compute(PLAYER_URL, fetch)
    second = await cache.get_or_compute(PLAYER_URL, fetch)

    assert first is second
    assert len(fetch.calls) == 1
    assert PLAYER_URL in cache


@pytest.mark.asyncio
async def test_distinct_keys_fetch_separately(cache, counting_fetch):
    fetch = counting_fetch(PLAYER_SCRIPT)

    await asyncio.gather(
        cache.get_or_compute(PLAYER_URL, fetch),
        cache.get_or_compute(PLAYER_URL + "?v=2", fetch),
    )

    assert sorted(fetch.calls) == [PLAYER_URL, PLAYER_URL + "?v=2"]
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_sync_fetch_is_accepted(cache):
    functions = await cache.get_or_compute(PLAYER_URL, lambda url: PLAYER_SCRIPT)
    assert functions.n_transform is not None


def test_empty_function_set_cannot_be_built():
    with pytest.raises(ValidationError):
        ExtractedFunctionSet(functions=[])


def test_cache_entry_timestamp_is_timezone_aware():
    entry = CacheEntry(functions=ExtractedFunctionSet(functions=["f(sig);"]), monotonic_at=0.0)
    assert entry.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_failure_reaches_all_waiters_and_is_not_cached(cache, counting_fetch):
    fetch = counting_fetch(PLAYER_SCRIPT_WITHOUT_DECIPHER, delay=0.05)

    results = await asyncio.gather(
        *(cache.get_or_compute(PLAYER_URL, fetch) for _ in range(5)),
        return_exceptions=True
    )

    assert len(fetch.calls) == 1
    assert all(isinstance(result, FunctionNameNotFound) for result in results)
    assert PLAYER_URL not in cache

    retry_fetch = counting_fetch(PLAYER_SCRIPT)
    functions = await cache.get_or_compute(PLAYER_URL, retry_fetch)

    assert retry_fetch.calls == [PLAYER_URL]
    assert len(functions) == 2


@pytest.mark.asyncio
async def test_fetch_error_is_not_cached(cache, counting_fetch):
    async def broken_fetch(url):
        raise ConnectionError("connection reset")

    with pytest.raises(ConnectionError):
        await cache.get_or_compute(PLAYER_URL, broken_fetch)

    fetch = counting_fetch(PLAYER_SCRIPT)
    await cache.get_or_compute(PLAYER_URL, fetch)
    assert len(fetch.calls) == 1


@pytest.mark.asyncio
async def test_degraded_flag_is_sticky(cache, counting_fetch):
    assert cache.degraded is False

    functions = await cache.get_or_compute(PLAYER_URL, counting_fetch(PLAYER_SCRIPT_WITHOUT_N))
    assert functions.diagnostics.degraded is True
    assert cache.degraded is True

    functions = await cache.get_or_compute(PLAYER_URL + "?v=2", counting_fetch(PLAYER_SCRIPT))
    assert functions.diagnostics.degraded is False
    assert cache.degraded is True


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_fetch(cache, counting_fetch):
    fetch = counting_fetch(PLAYER_SCRIPT, delay=0.05)

    first = asyncio.ensure_future(cache.get_or_compute(PLAYER_URL, fetch))
    second = asyncio.ensure_future(cache.get_or_compute(PLAYER_URL, fetch))
    await asyncio.sleep(0)
    first.cancel()

    functions = await second
    assert len(functions) == 2
    assert len(fetch.calls) == 1


@pytest.mark.asyncio
async def test_ttl_expires_entries(counting_fetch):
    now = [100.0]
    cache = PlayerScriptCache(ttl=60, clock=lambda: now[0])
    fetch = counting_fetch(PLAYER_SCRIPT)

    try:
        await cache.get_or_compute(PLAYER_URL, fetch)
        now[0] += 30
        await cache.get_or_compute(PLAYER_URL, fetch)
        assert len(fetch.calls) == 1

        now[0] += 31
        await cache.get_or_compute(PLAYER_URL, fetch)
        assert len(fetch.calls) == 2
    finally:
        cache.close()


@pytest.mark.asyncio
async def test_max_size_evicts_oldest(counting_fetch):
    now = [0.0]

    def clock():
        now[0] += 1
        return now[0]

    cache = PlayerScriptCache(max_size=2, clock=clock)
    fetch = counting_fetch(PLAYER_SCRIPT)

    try:
        for version in range(3):
            await cache.get_or_compute(f"{PLAYER_URL}?v={version}", fetch)

        assert len(cache) == 2
        assert f"{PLAYER_URL}?v=0" not in cache
        assert f"{PLAYER_URL}?v=2" in cache
    finally:
        cache.close()


@pytest.mark.asyncio
async def test_invalidate_forces_refetch(cache, counting_fetch):
    fetch = counting_fetch(PLAYER_SCRIPT)

    await cache.get_or_compute(PLAYER_URL, fetch)
    assert cache.invalidate(PLAYER_URL) is True
    assert cache.invalidate(PLAYER_URL) is False

    await cache.get_or_compute(PLAYER_URL, fetch)
    assert len(fetch.calls) == 2
