"""TTL cache for pairwise analyses keyed by unordered wallet pair."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Generic, TypeVar

from polymarket_coordination_tracker.detector.models import CacheStats

logger = logging.getLogger(__name__)

V = TypeVar("V")

PairKey = tuple[str, str, Hashable]

DEFAULT_TTL_SECONDS = 300.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


def pair_key(wallet_a: str, wallet_b: str, signature: Hashable = None) -> PairKey:
    """Canonical cache key: wallets sorted, so (A, B) and (B, A) collide."""
    lo, hi = sorted((wallet_a, wallet_b))
    return (lo, hi, signature)


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    computed_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class PairCache(Generic[V]):
    """Pairwise result cache with TTL expiry and per-wallet invalidation.

    A secondary ``wallet -> keys`` index keeps invalidation proportional to
    the number of entries that involve the wallet, not the cache size.

    Args:
        ttl_seconds: Lifetime of an entry.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or _utcnow
        self._entries: dict[PairKey, CacheEntry[V]] = {}
        self._by_wallet: dict[str, set[PairKey]] = defaultdict(set)
        self.hits = 0
        self.misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl.total_seconds()

    def get(self, wallet_a: str, wallet_b: str, signature: Hashable = None) -> V | None:
        """Return a live cached value or None, dropping it if expired."""
        key = pair_key(wallet_a, wallet_b, signature)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.is_expired(self._clock()):
            self._discard(key)
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def put(self, wallet_a: str, wallet_b: str, value: V, signature: Hashable = None) -> None:
        key = pair_key(wallet_a, wallet_b, signature)
        now = self._clock()
        self._entries[key] = CacheEntry(value=value, computed_at=now, expires_at=now + self._ttl)
        self._by_wallet[key[0]].add(key)
        self._by_wallet[key[1]].add(key)

    def invalidate_wallet(self, wallet: str) -> int:
        """Drop every entry involving ``wallet``; return the number removed."""
        keys = self._by_wallet.pop(wallet, set())
        for key in keys:
            self._discard(key)
        return len(keys)

    def invalidate_wallets(self, wallets: Iterable[str]) -> int:
        return sum(self.invalidate_wallet(w) for w in wallets)

    def prune(self) -> int:
        """Remove expired entries; return the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._discard(key)
        if expired:
            logger.debug("Pruned %d expired pair analyses", len(expired))
        return len(expired)

    def clear(self) -> int:
        """Remove all entries and reset counters; return the number removed."""
        removed = len(self._entries)
        self._entries.clear()
        self._by_wallet.clear()
        self.hits = 0
        self.misses = 0
        return removed

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._entries),
            hits=self.hits,
            misses=self.misses,
            ttl_seconds=self.ttl_seconds,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _discard(self, key: PairKey) -> None:
        if self._entries.pop(key, None) is None:
            return
        for wallet in key[:2]:
            keys = self._by_wallet.get(wallet)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._by_wallet[wallet]
