"""Tests for the daily rate limiter and IP geolocation.

Tests:
- count < limit is allowed with remaining = limit - count
- count >= limit is denied
- check() never consumes quota; increment() does
- Counters reset when the day advances
- Local addresses resolve to the home country
- Geolocation failures get the stricter default quota
- Unexpected errors fail open
"""

from datetime import datetime, timedelta

import httpx
import pytest

from restora.services.rate_limiter import GeoLocator, RateLimiter, is_local_address


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def geo_client(payload: dict | None = None, status_code: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload or {})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 10, 15, 30))


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(
        locator=GeoLocator(home_country="CL"),
        home_daily_limit=3,
        default_daily_limit=1,
        clock=clock,
    )


@pytest.mark.parametrize(
    "ip, local",
    [
        ("127.0.0.1", True),
        ("::1", True),
        ("192.168.1.20", True),
        ("10.0.0.5", True),
        ("not-an-ip", True),
        ("8.8.8.8", False),
        ("181.43.12.9", False),
    ],
)
def test_is_local_address(ip, local):
    assert is_local_address(ip) is local


@pytest.mark.asyncio
class TestRateLimiter:
    async def test_remaining_tracks_usage(self, limiter):
        for used in range(3):
            result = await limiter.check("client-1", "127.0.0.1")
            assert result.allowed is True
            assert result.remaining == 3 - used
            assert result.limit == 3
            limiter.increment("client-1")

        result = await limiter.check("client-1", "127.0.0.1")
        assert result.allowed is False
        assert result.remaining == 0
        assert result.country == "Chile"

    async def test_check_does_not_consume(self, limiter):
        for _ in range(5):
            result = await limiter.check("client-1", "127.0.0.1")

        assert result.remaining == 3
        assert limiter.usage("client-1").count == 0

    async def test_identities_are_independent(self, limiter):
        await limiter.check("client-1", "127.0.0.1")
        limiter.increment("client-1")

        result = await limiter.check("client-2", "127.0.0.1")

        assert result.remaining == 3

    async def test_counter_resets_next_day(self, limiter, clock):
        for _ in range(3):
            await limiter.check("client-1", "127.0.0.1")
            limiter.increment("client-1")
        assert (await limiter.check("client-1", "127.0.0.1")).allowed is False

        clock.now = clock.now + timedelta(days=1)
        result = await limiter.check("client-1", "127.0.0.1")

        assert result.allowed is True
        assert result.remaining == 3

    async def test_reset_time_is_next_midnight(self, limiter):
        result = await limiter.check("client-1", "127.0.0.1")

        assert result.reset_time == datetime(2024, 5, 11, 0, 0)

    async def test_foreign_caller_gets_default_limit(self, clock):
        locator = GeoLocator(
            home_country="CL",
            http_client=geo_client({"country_name": "Argentina", "country_code": "AR"}),
        )
        limiter = RateLimiter(locator, home_daily_limit=3, default_daily_limit=1, clock=clock)

        first = await limiter.check("client-1", "181.43.12.9")
        limiter.increment("client-1")
        second = await limiter.check("client-1", "181.43.12.9")

        assert first.allowed is True
        assert first.limit == 1
        assert first.country == "Argentina"
        assert second.allowed is False

    async def test_unknown_identity_increment_is_ignored(self, limiter):
        limiter.increment("never-checked")

        assert limiter.usage("never-checked") is None

    async def test_fails_open_on_unexpected_error(self, clock):
        class BrokenLocator:
            async def locate(self, ip):
                raise RuntimeError("lookup exploded")

        limiter = RateLimiter(BrokenLocator(), default_daily_limit=5, clock=clock)

        result = await limiter.check("client-1", "8.8.8.8")

        assert result.allowed is True
        assert result.remaining == 1
        assert result.country == "Unknown"

    async def test_purge_drops_idle_entries(self, limiter, clock):
        await limiter.check("client-1", "127.0.0.1")
        clock.now = clock.now + timedelta(hours=25)
        await limiter.check("client-2", "127.0.0.1")

        assert limiter.purge() == 1
        assert limiter.usage("client-1") is None
        assert limiter.usage("client-2") is not None


@pytest.mark.asyncio
class TestGeoLocator:
    async def test_local_address_is_home(self):
        location = await GeoLocator(home_country="CL").locate("127.0.0.1")

        assert location.is_home is True
        assert location.country_code == "CL"
        assert location.country == "Chile"

    async def test_lookup_success(self):
        locator = GeoLocator(
            home_country="CL",
            http_client=geo_client({"country_name": "Chile", "country_code": "cl"}),
        )

        location = await locator.locate("181.43.12.9")

        assert location.is_home is True
        assert location.country_code == "CL"

    async def test_lookup_failure_is_unknown(self):
        locator = GeoLocator(home_country="CL", http_client=geo_client(status_code=500))

        location = await locator.locate("181.43.12.9")

        assert location.country == "Unknown"
        assert location.country_code == "XX"
        assert location.is_home is False
