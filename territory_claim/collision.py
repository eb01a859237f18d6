"""Index of finalized territories with overlap and proximity queries.

Reads never take a lock: every mutation builds a new mapping and publishes it with a
single reference swap, so a query iterates one consistent snapshot and can never
observe a half-inserted territory. Writers serialize on a lock.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Protocol, Sequence

from territory_claim.geo import bounding_box, distance_m, point_in_polygon, segments_intersect
from territory_claim.models import FinalizedTerritory, GeoPoint

logger = logging.getLogger(__name__)


class CrossingKind(str, Enum):
    BOUNDARY_CROSSED = "boundary_crossed"
    INTERIOR_ENTERED = "interior_entered"


@dataclass(frozen=True, slots=True)
class Crossing:
    """First violation found by `CollisionIndex.path_crosses_any`."""

    territory_id: str
    owner_id: str
    kind: CrossingKind


class ProximityTier(str, Enum):
    SAFE = "safe"
    CAUTION = "caution"
    WARNING = "warning"
    DANGER = "danger"

    @classmethod
    def from_distance(cls, distance_m: float) -> ProximityTier:
        """>100 m safe, 50-100 m caution, 25-50 m warning, <=25 m danger."""

        if distance_m > 100:
            return cls.SAFE
        if distance_m > 50:
            return cls.CAUTION
        if distance_m > 25:
            return cls.WARNING
        return cls.DANGER


@dataclass(frozen=True, slots=True)
class Proximity:
    distance_m: float
    is_own: bool

    @property
    def tier(self) -> ProximityTier:
        return ProximityTier.from_distance(self.distance_m)


class TerritoryLookup(Protocol):
    """The read side of the index the claim tracker depends on."""

    def point_in_any_territory(self, point: GeoPoint, exclude_owner_id: str | None = None) -> str | None: ...

    def path_crosses_any(
        self, path: Sequence[GeoPoint], exclude_owner_id: str | None = None
    ) -> Crossing | None: ...

    def min_distance_to_any(self, point: GeoPoint, owner_id: str, include_own: bool = True) -> Proximity: ...


def same_owner(a: str, b: str) -> bool:
    """Owner ids are UUID strings; compare case-insensitively."""

    return a.lower() == b.lower()


class CollisionIndex:
    """Thread-safe set of finalized territories (own and others')."""

    def __init__(self, territories: Iterable[FinalizedTerritory] = ()) -> None:
        self._write_lock = threading.Lock()
        self._snapshot: Mapping[str, FinalizedTerritory] = {t.territory_id: t for t in territories}

    # --- mutation (external collaborators) ---

    def insert(self, territory: FinalizedTerritory) -> None:
        """Add a territory, replacing any existing one with the same id."""

        with self._write_lock:
            updated = dict(self._snapshot)
            updated[territory.territory_id] = territory
            self._snapshot = updated
        logger.debug("领地加入索引：%s（%s）", territory.territory_id, territory.formatted_area)

    def remove(self, territory_id: str) -> bool:
        """Remove a territory. Returns False if it was not present."""

        with self._write_lock:
            if territory_id not in self._snapshot:
                return False
            updated = dict(self._snapshot)
            del updated[territory_id]
            self._snapshot = updated
        logger.debug("领地移出索引：%s", territory_id)
        return True

    def replace_all(self, territories: Iterable[FinalizedTerritory]) -> None:
        """Swap in a full catalog load."""

        fresh = {t.territory_id: t for t in territories}
        with self._write_lock:
            self._snapshot = fresh

    # --- reads ---

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, territory_id: object) -> bool:
        return territory_id in self._snapshot

    def get(self, territory_id: str) -> FinalizedTerritory | None:
        return self._snapshot.get(territory_id)

    def territories(self) -> tuple[FinalizedTerritory, ...]:
        return tuple(self._snapshot.values())

    def _targets(self, exclude_owner_id: str | None) -> list[FinalizedTerritory]:
        snap = self._snapshot
        if exclude_owner_id is None:
            return list(snap.values())
        return [t for t in snap.values() if not same_owner(t.owner_id, exclude_owner_id)]

    def point_in_any_territory(self, point: GeoPoint, exclude_owner_id: str | None = None) -> str | None:
        """Id of the first territory containing the point, or None."""

        for territory in self._targets(exclude_owner_id):
            if point_in_polygon(point, territory.polygon):
                return territory.territory_id
        return None

    def path_crosses_any(self, path: Sequence[GeoPoint], exclude_owner_id: str | None = None) -> Crossing | None:
        """Check a candidate ring against every (non-excluded) territory.

        Every ring edge, including the closing edge back to the first point, is tested
        against every boundary edge of each territory; then the path's last point is
        tested for containment. Territories whose bounding box is disjoint from the
        ring's are skipped.

        Returns:
            The first violation found, or None.
        """

        n = len(path)
        if n < 2:
            return None

        edges = [(path[i], path[(i + 1) % n]) for i in range(n)]
        path_box = bounding_box(path)
        last = path[-1]

        for territory in self._targets(exclude_owner_id):
            ring = territory.polygon
            m = len(ring)
            if m < 3:
                continue
            if not path_box.intersects(territory.bbox):
                continue

            for a1, a2 in edges:
                for j in range(m):
                    if segments_intersect(a1, a2, ring[j], ring[(j + 1) % m]):
                        return Crossing(territory.territory_id, territory.owner_id, CrossingKind.BOUNDARY_CROSSED)

            if point_in_polygon(last, ring):
                return Crossing(territory.territory_id, territory.owner_id, CrossingKind.INTERIOR_ENTERED)
        return None

    def min_distance_to_any(self, point: GeoPoint, owner_id: str, include_own: bool = True) -> Proximity:
        """Nearest territory vertex distance (advisory only).

        Returns:
            Proximity with distance inf when there is nothing to compare against.
        """

        targets = self._targets(None if include_own else owner_id)
        best = math.inf
        best_own = False
        for territory in targets:
            own = same_owner(territory.owner_id, owner_id)
            for vertex in territory.polygon:
                d = distance_m(point, vertex)
                if d < best:
                    best = d
                    best_own = own
        return Proximity(distance_m=best, is_own=best_own)
