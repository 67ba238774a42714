"""
Tiered Result Cache
===================

Keyed, time-boxed memoisation of expensive capability results, split into
independent tiers so that identical literal keys never collide across kinds
of artifact.

Key derivation per tier:

* ``RESPONSE`` - ``"<session_id>:<first N chars of normalised text>"``.
  Normalisation collapses whitespace and case-folds. Two different long inputs
  sharing a prefix in the same session return the same reply; this is a known
  approximation traded for hit rate, tune ``response_prefix_chars`` to adjust.
* ``SPEECH`` - the literal text that was synthesised, independent of session.
* ``TRANSCRIPTION`` - the first 32 hex chars of the SHA-256 of the raw audio.
  Only transcripts shorter than ``transcription_max_chars`` are stored.

Entries are never mutated in place. Reads at or after ``inserted_at + ttl``
behave as a miss and drop the entry; ``sweep_expired`` removes the rest.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from avatarcore.enums.orchestration import CacheTier
from utils.ml_logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]

DEFAULT_TIER_TTLS: Dict[CacheTier, float] = {
    CacheTier.RESPONSE: 300.0,
    CacheTier.SPEECH: 1800.0,
    CacheTier.TRANSCRIPTION: 300.0,
}


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    inserted_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.inserted_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0


class TTLStore:
    """
    Single partition of TTL entries guarded by an asyncio lock.

    ``None`` is reserved as the miss marker and cannot be stored.
    """

    def __init__(
        self,
        name: str,
        default_ttl: float,
        *,
        clock: Clock = time.time,
        max_entries: Optional[int] = None,
    ):
        if default_ttl <= 0:
            raise ValueError(f"default_ttl for {name} must be positive")
        self.name = name
        self.default_ttl = default_ttl
        self._clock = clock
        self._max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats.misses += 1
                self._stats.evictions += 1
                return None
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if value is None:
            raise ValueError("None cannot be cached")
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        async with self._lock:
            self._entries.pop(key, None)
            if self._max_entries:
                while len(self._entries) >= self._max_entries:
                    self._entries.popitem(last=False)
                    self._stats.evictions += 1
            self._entries[key] = CacheEntry(
                key=key, value=value, inserted_at=self._clock(), ttl=ttl
            )
            self._stats.sets += 1

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._stats.evictions += len(expired)
            return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        data = asdict(self._stats)
        data["size"] = len(self._entries)
        data["default_ttl"] = self.default_ttl
        return data


class TieredCache:
    """Three independent ``TTLStore`` partitions plus their key policies."""

    def __init__(
        self,
        *,
        ttls: Optional[Dict[CacheTier, float]] = None,
        clock: Clock = time.time,
        max_entries_per_tier: Optional[int] = 10_000,
        response_prefix_chars: int = 50,
        transcription_max_chars: int = 100,
    ):
        merged = dict(DEFAULT_TIER_TTLS)
        merged.update(ttls or {})
        self._tiers: Dict[CacheTier, TTLStore] = {
            tier: TTLStore(
                tier.value,
                merged[tier],
                clock=clock,
                max_entries=max_entries_per_tier,
            )
            for tier in CacheTier
        }
        self.response_prefix_chars = response_prefix_chars
        self.transcription_max_chars = transcription_max_chars

    def tier(self, tier: CacheTier) -> TTLStore:
        return self._tiers[CacheTier(tier)]

    async def get(self, tier: CacheTier, key: str) -> Optional[Any]:
        return await self.tier(tier).get(key)

    async def set(
        self, tier: CacheTier, key: str, value: Any, ttl: Optional[float] = None
    ) -> None:
        await self.tier(tier).set(key, value, ttl)

    async def sweep_expired(self) -> Dict[str, int]:
        removed = {tier.value: await store.sweep() for tier, store in self._tiers.items()}
        total = sum(removed.values())
        if total:
            logger.info("Cache sweep removed %s expired entries: %s", total, removed)
        return removed

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {tier.value: store.stats() for tier, store in self._tiers.items()}

    # ------------------------------------------------------------------ #
    # Key derivation
    # ------------------------------------------------------------------ #
    @staticmethod
    def normalize_text(text: str) -> str:
        return " ".join((text or "").split()).casefold()

    def response_key(self, session_id: str, text: str) -> str:
        prefix = self.normalize_text(text)[: self.response_prefix_chars]
        return f"{session_id}:{prefix}"

    @staticmethod
    def speech_key(text: str) -> str:
        return text

    @staticmethod
    def transcription_key(audio: bytes) -> str:
        return hashlib.sha256(audio).hexdigest()[:32]

    def accepts_transcription(self, text: Optional[str]) -> bool:
        return bool(text) and len(text) < self.transcription_max_chars
