"""Tiered freshness cache for expensive sensor categories."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class Tier(str, Enum):
    STATIC = "static"
    MEDIUM = "medium"
    SMART = "smart"


DEFAULT_TTLS: dict[Tier, float] = {
    Tier.STATIC: 30.0,
    Tier.MEDIUM: 1.0,
    Tier.SMART: 60.0,
}


@dataclass(frozen=True)
class CacheEntry:
    payload: Any | None
    last_refreshed_at: float | None
    ttl: float


class TieredCache:
    def __init__(self, ttls: Mapping[Tier, float] | None = None, stale_factor: float = 3.0) -> None:
        merged = dict(DEFAULT_TTLS)
        merged.update(ttls or {})
        self.stale_factor = stale_factor
        self._lock = threading.RLock()
        self._entries: dict[Tier, CacheEntry] = {
            tier: CacheEntry(payload=None, last_refreshed_at=None, ttl=float(merged[tier])) for tier in Tier
        }

    def entry(self, tier: Tier) -> CacheEntry:
        with self._lock:
            return self._entries[tier]

    def get(self, tier: Tier) -> Any | None:
        return self.entry(tier).payload

    def needs_refresh(self, tier: Tier, now: float) -> bool:
        entry = self.entry(tier)
        return entry.last_refreshed_at is None or (now - entry.last_refreshed_at) > entry.ttl

    def stale_tiers(self, now: float) -> list[Tier]:
        return [tier for tier in Tier if self.needs_refresh(tier, now)]

    def store(self, tier: Tier, payload: Any, now: float) -> None:
        with self._lock:
            ttl = self._entries[tier].ttl
            self._entries[tier] = CacheEntry(payload=payload, last_refreshed_at=now, ttl=ttl)

    def drop(self, tier: Tier) -> None:
        with self._lock:
            ttl = self._entries[tier].ttl
            self._entries[tier] = CacheEntry(payload=None, last_refreshed_at=None, ttl=ttl)

    def sweep(self, now: float) -> list[Tier]:
        """Drop every tier whose payload is older than ``stale_factor`` x its TTL."""
        dropped: list[Tier] = []
        with self._lock:
            for tier, entry in self._entries.items():
                if entry.last_refreshed_at is None:
                    continue
                if now - entry.last_refreshed_at > entry.ttl * self.stale_factor:
                    dropped.append(tier)
            for tier in dropped:
                self.drop(tier)
        return dropped

    def clear(self) -> None:
        with self._lock:
            for tier in Tier:
                self.drop(tier)
