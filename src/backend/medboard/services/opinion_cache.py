# [Core: Opinion Cache]
"""
Opinion Cache — content-addressable store for specialist opinions.

Entries are keyed by (specialty, case fingerprint). The fingerprint hashes a
deliberately reduced slice of the case (age, gender, condition, a short sorted
medication sample, history/report counts), so unrelated edits do not bust the
cache while clinically relevant ones do.

Eviction is TTL-based plus a hard size cap, oldest-written first. The cache is
a pure optimisation: losing an entry never changes a result, only its cost.

One instance is owned by the host process (see medboard.main) and passed to
the board executor; tests build their own with an injected clock.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple

from medboard.config import settings
from medboard.models.schemas import CacheStats, CaseContext, Gender, SpecialistOpinion

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]

# Medications sampled into the fingerprint
FINGERPRINT_MED_SAMPLE = 5


def case_fingerprint(case: CaseContext) -> str:
    """Stable hash over the reduced feature set of a case."""
    meds = sorted(case.current_status.medications[:FINGERPRINT_MED_SAMPLE])
    features = {
        "age": case.age,
        "gender": Gender(case.gender).value,
        "condition": case.current_status.condition,
        "meds": ",".join(meds),
        "history_count": len(case.medical_history),
        "reports_count": len(case.reports),
    }
    payload = json.dumps(features, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


@dataclass
class CacheEntry:
    specialty: str
    fingerprint: str
    opinion: SpecialistOpinion
    written_at: float
    expires_at: float


class OpinionCache:
    """
    TTL + size-bounded cache of specialist opinions.

    Usage:
        cache = OpinionCache()
        opinion = cache.get(case, "Cardiology")
        if opinion is None:
            opinion = await dispatch(...)
            cache.set(case, "Cardiology", opinion)

        # or, sharing one computation between concurrent callers:
        opinion, hit = await cache.get_or_compute(case, "Cardiology", compute)
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.cache_ttl_seconds
        self.max_entries = max_entries if max_entries is not None else settings.cache_max_entries
        self._clock = clock
        # Insertion order == write order; re-writes move to the end
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._in_flight: Dict[CacheKey, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    # ──────────────────────────────────────────────
    # Core operations
    # ──────────────────────────────────────────────

    def get(self, case: CaseContext, specialty: str) -> Optional[SpecialistOpinion]:
        """Return the cached opinion, or None. Expired or mismatched entries are purged."""
        fingerprint = case_fingerprint(case)
        key = (specialty, fingerprint)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock() or entry.fingerprint != fingerprint:
                del self._entries[key]
                logger.debug("Opinion cache purge on read: %s", specialty)
                return None
            return entry.opinion

    def set(self, case: CaseContext, specialty: str, opinion: SpecialistOpinion) -> None:
        """Write through. Purges expired entries first, then evicts oldest-written past the cap."""
        fingerprint = case_fingerprint(case)
        key = (specialty, fingerprint)
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(
                specialty=specialty,
                fingerprint=fingerprint,
                opinion=opinion,
                written_at=now,
                expires_at=now + self.ttl_seconds,
            )
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug("Opinion cache evicted %s", evicted_key[0])

    def get_many(
        self, case: CaseContext, specialties: Iterable[str]
    ) -> Dict[str, SpecialistOpinion]:
        """Cached opinions for whichever of the given specialties are present."""
        found: Dict[str, SpecialistOpinion] = {}
        for specialty in specialties:
            opinion = self.get(case, specialty)
            if opinion is not None:
                found[specialty] = opinion
        return found

    def invalidate(self, case: CaseContext) -> int:
        """Drop every entry for this case's current fingerprint. Returns the number removed."""
        fingerprint = case_fingerprint(case)
        with self._lock:
            stale = [k for k in self._entries if k[1] == fingerprint]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.info("Opinion cache invalidated %d entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            valid = sum(1 for e in self._entries.values() if e.expires_at > now)
            total = len(self._entries)
        return CacheStats(total_entries=total, valid_entries=valid, in_flight=len(self._in_flight))

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]

    # ──────────────────────────────────────────────
    # Single-flight
    # ──────────────────────────────────────────────

    async def get_or_compute(
        self,
        case: CaseContext,
        specialty: str,
        compute: Callable[[], Awaitable[SpecialistOpinion]],
    ) -> Tuple[SpecialistOpinion, bool]:
        """
        Return (opinion, cache_hit).

        On a miss, concurrent callers for the same key share one in-flight
        computation. A successful result is written through; a failure is
        re-raised to every waiter and nothing is cached.
        """
        cached = self.get(case, specialty)
        if cached is not None:
            return cached, True

        key = (specialty, case_fingerprint(case))
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute_and_store(case, specialty, compute))
            self._in_flight[key] = task
            task.add_done_callback(lambda _t, k=key: self._in_flight.pop(k, None))
        else:
            logger.debug("Opinion cache joined in-flight computation: %s", specialty)
        return await asyncio.shield(task), False

    async def _compute_and_store(
        self,
        case: CaseContext,
        specialty: str,
        compute: Callable[[], Awaitable[SpecialistOpinion]],
    ) -> SpecialistOpinion:
        opinion = await compute()
        self.set(case, specialty, opinion)
        return opinion
