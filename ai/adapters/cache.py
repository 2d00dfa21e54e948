"""Response cache for the adapter layer.

ResponseCache – in-memory TTL cache keyed by a **normalized** lookup string
(lower-cased, whitespace-collapsed, punctuation-stripped).  Besides exact
lookups it offers :meth:`ResponseCache.get_similar`, which tolerates
near-duplicate keys ("clean my room" vs "clean room") using a normalized
Levenshtein similarity.

Eviction at capacity removes the entry with the lowest *effective age*
(``created_at - hit_count * hit_weight``); each hit ages an entry by
``hit_weight`` seconds, so this is not LRU.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from ai.types import CacheStats
from core.logging import logger

__all__ = [
    "CacheEntry",
    "ResponseCache",
    "normalize_key",
    "similarity",
    "levenshtein_distance",
]

V = TypeVar("V")

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    created_at: float
    expires_at: float
    hit_count: int = 0


def normalize_key(key: str) -> str:
    key = _WHITESPACE.sub(" ", key.lower().strip())
    return _PUNCTUATION.sub("", key)


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance, two rows at a time."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """``1 - distance / max_len``; very different lengths short-circuit to the length ratio."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    length_ratio = min(len(a), len(b)) / max(len(a), len(b))
    if length_ratio < 0.5:
        return length_ratio

    return 1 - levenshtein_distance(a, b) / max(len(a), len(b))


class ResponseCache(Generic[V]):
    """TTL cache with exact and fuzzy lookup and usage-weighted eviction."""

    def __init__(
        self,
        max_size: int = 100,
        ttl: float = 3600.0,
        similarity_threshold: float = 0.8,
        hit_weight: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._max_size = max_size
        self._ttl = ttl
        self._similarity_threshold = similarity_threshold
        self._hit_weight = hit_weight
        self._clock = clock
        self._store: Dict[str, CacheEntry[V]] = {}

    # ------------------------------------------------------------------
    def get(self, key: str) -> Optional[V]:
        return self._get_normalized(normalize_key(key))

    def get_similar(self, key: str) -> Optional[V]:
        """Exact lookup first, then the first live entry at or above the similarity threshold."""
        normalized = normalize_key(key)

        exact = self._get_normalized(normalized)
        if exact is not None:
            return exact

        now = self._clock()
        for cached_key, entry in list(self._store.items()):
            if now > entry.expires_at:
                del self._store[cached_key]
                continue
            if similarity(normalized, cached_key) >= self._similarity_threshold:
                entry.hit_count += 1
                return entry.value
        return None

    def set(self, key: str, value: V, ttl: Optional[float] = None) -> None:
        ttl = self._ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        normalized = normalize_key(key)
        if normalized not in self._store and len(self._store) >= self._max_size:
            self._evict_one()

        now = self._clock()
        self._store[normalized] = CacheEntry(value=value, created_at=now, expires_at=now + ttl)

    def delete(self, key: str) -> bool:
        return self._store.pop(normalize_key(key), None) is not None

    def clear(self) -> None:
        self._store.clear()

    def prune(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        expired: List[str] = [k for k, entry in self._store.items() if now > entry.expires_at]
        for key in expired:
            del self._store[key]
        return len(expired)

    @property
    def size(self) -> int:
        return len(self._store)

    def __len__(self) -> int:
        return len(self._store)

    def get_stats(self) -> CacheStats:
        total_hits = sum(entry.hit_count for entry in self._store.values())
        size = len(self._store)
        return CacheStats(
            size=size,
            total_hits=total_hits,
            hit_rate=total_hits / size if size else 0.0,
        )

    # ------------------------------------------------------------------
    def _get_normalized(self, normalized: str) -> Optional[V]:
        entry = self._store.get(normalized)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            # expired
            del self._store[normalized]
            return None
        entry.hit_count += 1
        return entry.value

    def _evict_one(self) -> None:
        victim = min(
            self._store.items(),
            key=lambda kv: kv[1].created_at - kv[1].hit_count * self._hit_weight,
        )[0]
        del self._store[victim]
        logger.debug(f"Cache full ({self._max_size}), evicted '{victim}'")
