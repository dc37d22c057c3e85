"""
audience.py — Select the users to alert for one disaster.

═══════════════════════════════════════════════════════════════════════════
SELECTION ALGORITHM
═══════════════════════════════════════════════════════════════════════════

    disaster pincode ──► GeoResolver ──► centre point
                                           (failure aborts: no partial audience)

    directory users                        (read failure aborts as upstream error)
        │
        ├── no pincode ──────────────► skipped (logged)
        │
        └── group by pincode ──► BoundedPool(resolve_coordinates)
                                     │
                                     ├── failure / timeout ──► those users skipped
                                     │
                                     └── point ──► bounding box ──► haversine ≤ radius ──► AlertCandidate

The directory stores postal codes, not coordinates, so every user needs a
forward geocode. Users sharing a pincode share one lookup, and the
resolver's cache carries results across runs. Lookups run concurrently,
bounded by RESOLUTION_CONCURRENCY, each under its own timeout.

The returned list is a set: callers must not rely on its order.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from crowdalert.alerts.directory import SERVICE_NAME as DIRECTORY_SERVICE
from crowdalert.alerts.directory import UserDirectory
from crowdalert.alerts.models import AlertCandidate, UserRecord
from crowdalert.core.config import settings
from crowdalert.core.errors import UpstreamUnavailableError
from crowdalert.core.pool import BoundedPool, UnitFailure
from crowdalert.spatial.distance import bounding_box, distance_meters, within_bounding_box
from crowdalert.spatial.geocoding import GeoResolver

logger = logging.getLogger(__name__)


def resolution_unit_timeout(resolver: GeoResolver) -> float:
    """
    Time budget for one pincode lookup: every attempt plus the longest
    backoff sleep between attempts.
    """
    policy = resolver.retry_policy
    return (
        resolver.timeout * (policy.max_retries + 1)
        + policy.backoff_max_seconds * policy.max_retries
    )


@dataclass
class SelectionStats:
    """Counters for one selection run."""
    scanned: int = 0
    skipped_no_pincode: int = 0
    unresolved: int = 0
    excluded: int = 0
    selected: int = 0
    unique_pincodes: int = 0
    duration_ms: float = 0.0


class AudienceSelector:
    """
    Finds directory users whose home pincode lies within a radius.

    Usage:
        selector = AudienceSelector(resolver, directory, concurrency=20)
        candidates = await selector.select_within_radius("400001", 100_000)
    """

    def __init__(
        self,
        resolver: GeoResolver,
        directory: UserDirectory,
        *,
        concurrency: Optional[int] = None,
        unit_timeout: Optional[float] = None,
    ):
        self.resolver = resolver
        self.directory = directory
        self.concurrency = concurrency or settings.RESOLUTION_CONCURRENCY
        self.unit_timeout = unit_timeout or resolution_unit_timeout(resolver)

    async def _group_by_pincode(self, stats: SelectionStats) -> Dict[str, List[UserRecord]]:
        groups: Dict[str, List[UserRecord]] = {}
        try:
            async for user in self.directory.iter_users():
                stats.scanned += 1
                if not user.has_pincode:
                    stats.skipped_no_pincode += 1
                    logger.info("User %s missing pincode — skipped", user.id, extra={"user_id": user.id})
                    continue
                groups.setdefault(user.pincode.strip(), []).append(user)
        except OSError as e:
            raise UpstreamUnavailableError(DIRECTORY_SERVICE, type(e).__name__) from e
        return groups

    async def select_within_radius(
        self,
        pincode: str,
        radius_meters: Optional[float] = None,
    ) -> List[AlertCandidate]:
        """
        Users within ``radius_meters`` of ``pincode``'s centre point.

        Raises
        ------
        NotFoundError, UpstreamUnavailableError
            The disaster pincode itself could not be resolved, or the
            directory could not be read.
        """
        candidates, _ = await self.select_with_stats(pincode, radius_meters)
        return candidates

    async def select_with_stats(
        self,
        pincode: str,
        radius_meters: Optional[float] = None,
    ) -> Tuple[List[AlertCandidate], SelectionStats]:
        """Same as select_within_radius, also returning the run's counters."""
        radius = settings.ALERT_RADIUS_METERS if radius_meters is None else radius_meters
        started = time.perf_counter()
        stats = SelectionStats()

        centre = await self.resolver.resolve_coordinates(pincode)
        box = bounding_box(centre, radius)

        groups = await self._group_by_pincode(stats)
        codes = list(groups)
        stats.unique_pincodes = len(codes)

        pool = BoundedPool(
            self.resolver.resolve_coordinates,
            concurrency=self.concurrency,
            timeout=self.unit_timeout,
            name="audience-geocode",
        )
        slots = await pool.map(codes)

        candidates: List[AlertCandidate] = []
        for code, slot in zip(codes, slots):
            users = groups[code]
            if isinstance(slot, UnitFailure):
                stats.unresolved += len(users)
                for user in users:
                    logger.info(
                        "Could not resolve location for user %s (pincode %s): %s",
                        user.id, code, slot.message,
                        extra={"user_id": user.id, "pincode": code},
                    )
                continue

            if not within_bounding_box(slot, box):
                stats.excluded += len(users)
                continue

            distance = distance_meters(centre, slot)
            if distance > radius:
                stats.excluded += len(users)
                continue

            for user in users:
                candidates.append(AlertCandidate(user=user, location=slot, distance_m=distance))

        stats.selected = len(candidates)
        stats.duration_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "Audience for %s: %d selected, %d excluded, %d unresolved, "
            "%d without pincode (%d scanned, %d pincodes, radius=%.0f m, %.0f ms)",
            pincode, stats.selected, stats.excluded, stats.unresolved,
            stats.skipped_no_pincode, stats.scanned, stats.unique_pincodes,
            radius, stats.duration_ms,
            extra={"pincode": pincode, "recipient_count": stats.selected},
        )
        return candidates, stats
