"""In-memory result cache for generated image variants.

Maps (source-image fingerprint, variant key) to a previously generated
ImageAsset so that reselecting a variant (e.g. an eye color already tried)
does not trigger another expensive provider call.

Key Features:
- TTL expiry (entries older than the TTL are purged on access)
- Capacity eviction: oldest image (by creation time) evicted first
- Bounded number of variants per image
- Single-flight get_or_generate: concurrent requests for the same key
  share one in-flight generation

The cache is an injected store: each session owns its own instance.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import structlog

from restora.models.image import ImageAsset

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_IMAGES = 10
DEFAULT_MAX_VARIANTS = 6


@dataclass(slots=True)
class CacheEntry:
    """One generated variant and when it was stored."""

    image: ImageAsset
    created_at: float


@dataclass(slots=True)
class _ImageEntry:
    variants: dict[str, CacheEntry] = field(default_factory=dict)
    created_at: float = 0.0


@dataclass(slots=True, frozen=True)
class CacheStats:
    images: int
    variants: int
    approximate_bytes: int


class ResultCache:
    """Per-session cache of generated variants keyed by (fingerprint, variant).

    Example:
        >>> cache = ResultCache(ttl_seconds=3600)
        >>> cache.set(restored.fingerprint, "blue", blue_image)
        >>> cache.get(restored.fingerprint, "blue") == blue_image
        True
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_images: int = DEFAULT_MAX_IMAGES,
        max_variants: int = DEFAULT_MAX_VARIANTS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize an empty cache.

        Args:
            ttl_seconds: Lifetime of an entry
            max_images: Maximum number of distinct source fingerprints
            max_variants: Maximum number of variants kept per fingerprint
            clock: Monotonic time source (injectable for tests)
        """
        self.ttl_seconds = ttl_seconds
        self.max_images = max_images
        self.max_variants = max_variants
        self._clock = clock
        self._images: dict[str, _ImageEntry] = {}
        self._in_flight: dict[tuple[str, str], asyncio.Future[ImageAsset]] = {}
        # Bumped by clear_all; generations started under an older epoch are not stored.
        self._epoch = 0

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl_seconds

    def _purge_expired(self, fingerprint: str, now: float) -> _ImageEntry | None:
        image_entry = self._images.get(fingerprint)
        if image_entry is None:
            return None
        expired = [k for k, v in image_entry.variants.items() if self._is_expired(v, now)]
        for key in expired:
            del image_entry.variants[key]
        if expired:
            logger.debug("cache.expired", fingerprint=fingerprint[:12], variants=expired)
        if not image_entry.variants:
            del self._images[fingerprint]
            return None
        return image_entry

    def get(self, fingerprint: str, variant: str) -> ImageAsset | None:
        """Return the cached variant, or None if missing or expired."""
        image_entry = self._purge_expired(fingerprint, self._clock())
        if image_entry is None or variant not in image_entry.variants:
            logger.debug("cache.miss", fingerprint=fingerprint[:12], variant=variant)
            return None
        logger.debug("cache.hit", fingerprint=fingerprint[:12], variant=variant)
        return image_entry.variants[variant].image

    def set(self, fingerprint: str, variant: str, image: ImageAsset) -> None:
        """Store a variant, replacing any existing entry for the same key.

        Evicts the oldest image when the image capacity is reached and the
        oldest variant when the per-image variant capacity is reached.
        """
        now = self._clock()
        image_entry = self._purge_expired(fingerprint, now)

        if image_entry is None:
            if len(self._images) >= self.max_images:
                self._evict_oldest_image()
            image_entry = _ImageEntry(created_at=now)
            self._images[fingerprint] = image_entry

        if variant not in image_entry.variants and len(image_entry.variants) >= self.max_variants:
            oldest = min(image_entry.variants, key=lambda k: image_entry.variants[k].created_at)
            del image_entry.variants[oldest]
            logger.debug("cache.variant_evicted", fingerprint=fingerprint[:12], variant=oldest)

        image_entry.variants[variant] = CacheEntry(image=image, created_at=now)
        logger.debug(
            "cache.stored",
            fingerprint=fingerprint[:12],
            variant=variant,
            size_bytes=image.size,
        )

    def _evict_oldest_image(self) -> None:
        oldest = min(self._images, key=lambda fp: self._images[fp].created_at)
        del self._images[oldest]
        logger.info("cache.image_evicted", fingerprint=oldest[:12])

    def is_cached(self, fingerprint: str, variant: str) -> bool:
        return self.get(fingerprint, variant) is not None

    def cached_variants(self, fingerprint: str) -> list[str]:
        """Valid (non-expired) variant keys for an image."""
        image_entry = self._purge_expired(fingerprint, self._clock())
        return list(image_entry.variants) if image_entry else []

    def clear_image(self, fingerprint: str) -> None:
        self._images.pop(fingerprint, None)

    def clear_all(self) -> None:
        """Drop every entry.

        In-flight generations still complete for their waiters, but their
        results are not stored and later callers start a fresh generation.
        """
        self._images.clear()
        self._in_flight.clear()
        self._epoch += 1
        logger.debug("cache.cleared", epoch=self._epoch)

    def stats(self) -> CacheStats:
        variants = sum(len(e.variants) for e in self._images.values())
        approximate_bytes = sum(
            v.image.size for e in self._images.values() for v in e.variants.values()
        )
        return CacheStats(
            images=len(self._images),
            variants=variants,
            approximate_bytes=approximate_bytes,
        )

    async def get_or_generate(
        self,
        fingerprint: str,
        variant: str,
        generate: Callable[[], Awaitable[ImageAsset]],
    ) -> tuple[ImageAsset, bool]:
        """Return the cached variant or generate it exactly once.

        A second caller for a key whose generation is in flight awaits the
        first caller's result instead of starting another generation.
        Failures are not cached.

        Args:
            fingerprint: Source image fingerprint
            variant: Variant key
            generate: Coroutine factory producing the variant

        Returns:
            Tuple of (image, was_cached)
        """
        cached = self.get(fingerprint, variant)
        if cached is not None:
            return cached, True

        key = (fingerprint, variant)
        pending = self._in_flight.get(key)
        if pending is not None:
            logger.debug("cache.joined_in_flight", fingerprint=fingerprint[:12], variant=variant)
            return await asyncio.shield(pending), True

        future: asyncio.Future[ImageAsset] = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        epoch = self._epoch
        try:
            image = await generate()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Waiters re-raise; mark retrieved so an unawaited future does not warn.
            future.exception()
            raise
        else:
            if epoch == self._epoch:
                self.set(fingerprint, variant, image)
            else:
                logger.debug(
                    "cache.stale_result_dropped", fingerprint=fingerprint[:12], variant=variant
                )
            future.set_result(image)
            return image, False
        finally:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]
