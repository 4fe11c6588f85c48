"""Tests for the in-memory ResultCache.

Tests:
- get/set by (fingerprint, variant)
- TTL expiry on access
- Image and per-image variant capacity eviction
- clear_image / clear_all / stats
- Single-flight get_or_generate
- clear_all discards results of generations still in flight
"""

import asyncio

import pytest

from fakes import make_image
from restora.services.cache import ResultCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> ResultCache:
    return ResultCache(ttl_seconds=3600, max_images=2, max_variants=3, clock=clock)


def test_set_and_get(cache):
    blue = make_image("blue")
    cache.set("fp-1", "blue", blue)

    assert cache.get("fp-1", "blue") == blue
    assert cache.get("fp-1", "green") is None
    assert cache.get("fp-2", "blue") is None
    assert cache.is_cached("fp-1", "blue")


def test_entries_expire_after_ttl(cache, clock):
    cache.set("fp-1", "blue", make_image("blue"))

    clock.now += 3600
    assert cache.get("fp-1", "blue") is not None

    clock.now += 1
    assert cache.get("fp-1", "blue") is None
    assert cache.cached_variants("fp-1") == []
    assert cache.stats().images == 0


def test_oldest_image_evicted_at_capacity(cache, clock):
    cache.set("fp-1", "blue", make_image("1"))
    clock.now += 1
    cache.set("fp-2", "blue", make_image("2"))
    clock.now += 1
    cache.set("fp-3", "blue", make_image("3"))

    assert cache.get("fp-1", "blue") is None
    assert cache.get("fp-2", "blue") is not None
    assert cache.get("fp-3", "blue") is not None


def test_oldest_variant_evicted_at_capacity(cache, clock):
    for color in ("blue", "green", "brown"):
        cache.set("fp-1", color, make_image(color))
        clock.now += 1

    cache.set("fp-1", "hazel", make_image("hazel"))

    assert cache.cached_variants("fp-1") == ["green", "brown", "hazel"]


def test_replacing_variant_does_not_evict(cache):
    for color in ("blue", "green", "brown"):
        cache.set("fp-1", color, make_image(color))

    cache.set("fp-1", "blue", make_image("blue-again"))

    assert cache.get("fp-1", "blue") == make_image("blue-again")
    assert len(cache.cached_variants("fp-1")) == 3


def test_clear_image_and_clear_all(cache):
    cache.set("fp-1", "blue", make_image("1"))
    cache.set("fp-2", "blue", make_image("2"))

    cache.clear_image("fp-1")
    assert cache.get("fp-1", "blue") is None
    assert cache.get("fp-2", "blue") is not None

    cache.clear_all()
    assert cache.stats().images == 0


def test_stats(cache):
    cache.set("fp-1", "blue", make_image("blue"))
    cache.set("fp-1", "green", make_image("green"))

    stats = cache.stats()

    assert stats.images == 1
    assert stats.variants == 2
    assert stats.approximate_bytes == make_image("blue").size + make_image("green").size


@pytest.mark.asyncio
class TestGetOrGenerate:
    async def test_generates_once_then_hits_cache(self, cache):
        calls = []

        async def generate():
            calls.append(1)
            return make_image("blue")

        first, first_cached = await cache.get_or_generate("fp-1", "blue", generate)
        second, second_cached = await cache.get_or_generate("fp-1", "blue", generate)

        assert first == second == make_image("blue")
        assert (first_cached, second_cached) == (False, True)
        assert len(calls) == 1

    async def test_concurrent_requests_share_generation(self, cache):
        release = asyncio.Event()
        calls = []

        async def generate():
            calls.append(1)
            await release.wait()
            return make_image("blue")

        first = asyncio.create_task(cache.get_or_generate("fp-1", "blue", generate))
        second = asyncio.create_task(cache.get_or_generate("fp-1", "blue", generate))
        await asyncio.sleep(0)
        release.set()

        results = await asyncio.gather(first, second)

        assert len(calls) == 1
        assert results[0] == (make_image("blue"), False)
        assert results[1] == (make_image("blue"), True)

    async def test_failures_are_not_cached(self, cache):
        async def failing():
            raise RuntimeError("provider down")

        async def succeeding():
            return make_image("blue")

        with pytest.raises(RuntimeError):
            await cache.get_or_generate("fp-1", "blue", failing)

        assert not cache.is_cached("fp-1", "blue")
        image, was_cached = await cache.get_or_generate("fp-1", "blue", succeeding)
        assert image == make_image("blue")
        assert was_cached is False

    async def test_clear_all_drops_in_flight_result(self, cache):
        release = asyncio.Event()

        async def generate():
            await release.wait()
            return make_image("blue")

        task = asyncio.create_task(cache.get_or_generate("fp-1", "blue", generate))
        await asyncio.sleep(0)
        cache.clear_all()
        release.set()

        image, was_cached = await task

        assert image == make_image("blue")
        assert was_cached is False
        assert cache.get("fp-1", "blue") is None
        assert cache.stats().variants == 0

    async def test_generation_after_clear_all_does_not_join_stale_one(self, cache):
        release = asyncio.Event()
        calls = []

        async def stale():
            calls.append("stale")
            await release.wait()
            return make_image("stale")

        async def fresh():
            calls.append("fresh")
            return make_image("fresh")

        task = asyncio.create_task(cache.get_or_generate("fp-1", "blue", stale))
        await asyncio.sleep(0)
        cache.clear_all()

        image, was_cached = await cache.get_or_generate("fp-1", "blue", fresh)
        release.set()
        await task

        assert (image, was_cached) == (make_image("fresh"), False)
        assert calls == ["stale", "fresh"]
        assert cache.get("fp-1", "blue") == make_image("fresh")
