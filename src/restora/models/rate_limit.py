"""Rate limit entities for anonymous callers."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class RateLimitEntry:
    """Daily usage counter for one caller identity."""

    count: int
    last_reset: datetime
    country: str
    last_access: datetime


@dataclass(slots=True, frozen=True)
class RateLimitResult:
    """Allow/deny decision plus quota metadata."""

    allowed: bool
    remaining: int
    reset_time: datetime
    country: str
    limit: int


@dataclass(slots=True, frozen=True)
class GeoLocation:
    country: str
    country_code: str
    is_home: bool
