import time
from typing import Callable, Dict, Optional, Tuple, Union

from loguru import logger

from episoderatings.lib.models import EpisodeRecord, SeriesRecord

CachedValue = Union[SeriesRecord, EpisodeRecord]


class Cache:
    """
    In-memory key/value store with a per-entry time-to-live.

    Expired entries behave exactly like missing ones and are dropped lazily
    on read, callers never need to evict anything themselves.
    """

    def __init__(
            self,
            default_ttl: float = 24 * 60 * 60,
            maxsize: Optional[int] = None,
            enabled: bool = True,
            clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.maxsize = maxsize
        self.enabled = enabled
        self.clock = clock
        self.items: Dict[str, Tuple[float, CachedValue]] = {}
        logger.debug(f"Initializing empty cache ({enabled=}, {default_ttl=}s, {maxsize=})")

    @property
    def is_disabled(self):
        return not self.enabled

    def __len__(self):
        return len(self.items)

    def get(self, key: str) -> Optional[CachedValue]:
        if self.is_disabled:
            return

        hit = self.items.get(key)
        if not hit:
            return

        expires_at, value = hit
        if self.clock() >= expires_at:
            logger.debug(f"cache expired: {key}")
            self.items.pop(key, None)
            return

        logger.debug(f"cache hit: {key}")
        return value

    def set(self, key: str, value: CachedValue, ttl: Optional[float] = None):
        if self.is_disabled:
            return

        ttl = self.default_ttl if ttl is None else ttl
        self.items.pop(key, None)
        if self.maxsize and len(self.items) >= self.maxsize:
            self._evict()
        self.items[key] = (self.clock() + ttl, value)

    def purge(self) -> int:
        """Drop all expired entries, return how many were removed."""
        now = self.clock()
        expired = [key for key, (expires_at, _) in self.items.items() if now >= expires_at]
        for key in expired:
            del self.items[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries.")
        return len(expired)

    def clear(self):
        self.items.clear()

    def _evict(self):
        if self.purge():
            return
        # Nothing expired yet; make room by dropping the entry closest to expiry.
        key = min(self.items, key=lambda k: self.items[k][0])
        logger.debug(f"Cache full ({self.maxsize} items), evicting {key}")
        del self.items[key]
