"""Daily rate limiting for anonymous callers with country-based quotas.

Callers are identified by an opaque identity token (client fingerprint or IP).
Counters reset at local midnight; callers geolocated to the home country get
a larger quota. Geolocation uses an HTTP lookup (ipapi.co by default).

The limiter is an injected store: the app owns one instance and tests build
isolated ones.
"""

import ipaddress
from datetime import datetime, timedelta
from typing import Callable

import httpx
import structlog

from restora.models.rate_limit import GeoLocation, RateLimitEntry, RateLimitResult

logger = structlog.get_logger(__name__)

DEFAULT_GEOLOCATION_URL = "https://ipapi.co/{ip}/json/"
IDLE_ENTRY_TTL = timedelta(hours=24)
UNKNOWN_COUNTRY = "Unknown"
UNKNOWN_COUNTRY_CODE = "XX"

COUNTRY_NAMES = {"CL": "Chile"}


def is_local_address(ip: str) -> bool:
    """True for loopback, private and unparseable addresses."""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return address.is_loopback or address.is_private or address.is_link_local


class GeoLocator:
    """Resolves a client IP to a country via an HTTP geolocation API."""

    def __init__(
        self,
        home_country: str = "CL",
        url_template: str = DEFAULT_GEOLOCATION_URL,
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.home_country = home_country.upper()
        self.url_template = url_template
        self.timeout = timeout
        self._http_client = http_client

    def _home(self) -> GeoLocation:
        return GeoLocation(
            country=COUNTRY_NAMES.get(self.home_country, self.home_country),
            country_code=self.home_country,
            is_home=True,
        )

    async def locate(self, ip: str) -> GeoLocation:
        """Resolve an IP address to a country.

        Local and private addresses resolve to the home country (development).
        Lookup failures resolve to "Unknown", which gets the stricter quota.
        """
        if is_local_address(ip):
            logger.debug("geolocation.local_address", ip=ip)
            return self._home()

        url = self.url_template.format(ip=ip)
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, headers={"User-Agent": "Restora"})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("geolocation.failed", ip=ip, error=str(e))
            return GeoLocation(
                country=UNKNOWN_COUNTRY, country_code=UNKNOWN_COUNTRY_CODE, is_home=False
            )

        country_code = (data.get("country_code") or UNKNOWN_COUNTRY_CODE).upper()
        return GeoLocation(
            country=data.get("country_name") or UNKNOWN_COUNTRY,
            country_code=country_code,
            is_home=country_code == self.home_country,
        )


class RateLimiter:
    """Per-identity daily counters with per-country limits.

    check() never increments; callers increment only after the counted
    operation succeeded.
    """

    def __init__(
        self,
        locator: GeoLocator,
        home_daily_limit: int = 10,
        default_daily_limit: int = 5,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.locator = locator
        self.home_daily_limit = home_daily_limit
        self.default_daily_limit = default_daily_limit
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def _next_reset(self, now: datetime) -> datetime:
        return datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), now.tzinfo)

    async def check(self, identity: str, ip: str) -> RateLimitResult:
        """Check the quota for an identity without consuming it.

        Fails open: any unexpected error allows the request and is logged.

        Args:
            identity: Opaque caller identity token
            ip: Client IP address used for geolocation

        Returns:
            RateLimitResult with allow/deny and quota metadata
        """
        now = self._clock()
        try:
            location = await self.locator.locate(ip)
            limit = self.home_daily_limit if location.is_home else self.default_daily_limit

            entry = self._entries.get(identity)
            if entry is None:
                entry = RateLimitEntry(
                    count=0, last_reset=now, country=location.country, last_access=now
                )
                self._entries[identity] = entry
            else:
                entry.last_access = now
                if now.date() > entry.last_reset.date():
                    entry.count = 0
                    entry.last_reset = now
                    entry.country = location.country

            result = RateLimitResult(
                allowed=entry.count < limit,
                remaining=max(0, limit - entry.count),
                reset_time=self._next_reset(now),
                country=entry.country,
                limit=limit,
            )
        except Exception as e:
            logger.error("rate_limit.check_failed", identity=identity[:16], error=str(e))
            return RateLimitResult(
                allowed=True,
                remaining=1,
                reset_time=self._next_reset(now),
                country=UNKNOWN_COUNTRY,
                limit=self.default_daily_limit,
            )

        if not result.allowed:
            logger.info(
                "rate_limit.denied",
                identity=identity[:16],
                country=result.country,
                limit=result.limit,
            )
        return result

    def increment(self, identity: str) -> None:
        """Consume one unit of quota. Unknown identities are ignored."""
        entry = self._entries.get(identity)
        if entry is None:
            return
        entry.count += 1
        entry.last_access = self._clock()
        logger.debug("rate_limit.incremented", identity=identity[:16], count=entry.count)

    def usage(self, identity: str) -> RateLimitEntry | None:
        return self._entries.get(identity)

    def reset(self, identity: str) -> None:
        self._entries.pop(identity, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge(self, max_idle: timedelta = IDLE_ENTRY_TTL) -> int:
        """Drop entries idle for longer than max_idle.

        Returns:
            Number of entries removed
        """
        cutoff = self._clock() - max_idle
        stale = [k for k, v in self._entries.items() if v.last_access < cutoff]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.info("rate_limit.purged", count=len(stale))
        return len(stale)
