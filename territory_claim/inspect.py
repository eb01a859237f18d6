"""Fix-quality inspection for recorded fix streams."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from territory_claim.geo import bounding_box, path_length_m
from territory_claim.models import BoundingBox, Fix
from territory_claim.speed import MPS_TO_KMH
from territory_claim.timeutils import CadenceStats, cadence_stats


@dataclass(frozen=True, slots=True)
class InspectResult:
    """How usable a fix stream is for claiming."""

    fixes: int
    min_time_ms: int | None
    max_time_ms: int | None
    cadence: CadenceStats | None
    bbox: BoundingBox | None
    raw_length_m: float
    unknown_accuracy: int
    above_ceiling: int
    unknown_speed: int
    over_warn_speed: int
    over_abort_speed: int
    duplicate_timestamps: int


def inspect_fixes(
    fixes: Sequence[Fix],
    accuracy_ceiling_m: float = 10.0,
    warn_kmh: float = 15.0,
    abort_kmh: float = 30.0,
) -> InspectResult:
    """Count the fixes a claim session would reject or flag."""

    if not fixes:
        return InspectResult(
            fixes=0,
            min_time_ms=None,
            max_time_ms=None,
            cadence=None,
            bbox=None,
            raw_length_m=0.0,
            unknown_accuracy=0,
            above_ceiling=0,
            unknown_speed=0,
            over_warn_speed=0,
            over_abort_speed=0,
            duplicate_timestamps=0,
        )

    times = sorted(f.timestamp_ms for f in fixes)
    dupe = 0
    for i in range(1, len(times)):
        if times[i] == times[i - 1]:
            dupe += 1

    speeds_kmh = [f.speed_mps * MPS_TO_KMH for f in fixes if f.speed_mps >= 0]
    return InspectResult(
        fixes=len(fixes),
        min_time_ms=times[0],
        max_time_ms=times[-1],
        cadence=cadence_stats(fixes),
        bbox=bounding_box(f.point for f in fixes),
        raw_length_m=path_length_m([f.point for f in fixes]),
        unknown_accuracy=sum(1 for f in fixes if f.horizontal_accuracy_m <= 0),
        above_ceiling=sum(1 for f in fixes if f.horizontal_accuracy_m > accuracy_ceiling_m),
        unknown_speed=len(fixes) - len(speeds_kmh),
        over_warn_speed=sum(1 for s in speeds_kmh if warn_kmh < s <= abort_kmh),
        over_abort_speed=sum(1 for s in speeds_kmh if s > abort_kmh),
        duplicate_timestamps=dupe,
    )
