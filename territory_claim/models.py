"""Data models for position fixes, territories and claim sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Final, Sequence


EARTH_RADIUS_M: Final[float] = 6_371_000.0
DEFAULT_TZ: Final[str] = "Asia/Shanghai"


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """A WGS-84 coordinate in decimal degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class Fix:
    """A single position sample (raw or filtered).

    Attributes:
        point: Position.
        horizontal_accuracy_m: Horizontal accuracy in meters. Values <= 0 mean unknown
            and are never trusted.
        speed_mps: Speed in meters/second. Negative values mean unknown.
        timestamp_ms: Unix epoch milliseconds.
        altitude_m: Altitude in meters. May be 0.0 depending on device/app.
    """

    point: GeoPoint
    horizontal_accuracy_m: float
    speed_mps: float
    timestamp_ms: int
    altitude_m: float = 0.0

    @property
    def latitude(self) -> float:
        return self.point.latitude

    @property
    def longitude(self) -> float:
        return self.point.longitude


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Axis-aligned lat/lon box."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def intersects(self, other: BoundingBox) -> bool:
        """Whether the two boxes overlap (touching edges count as overlap)."""

        return not (
            other.min_lat > self.max_lat
            or other.max_lat < self.min_lat
            or other.min_lon > self.max_lon
            or other.max_lon < self.min_lon
        )


@dataclass(frozen=True, slots=True)
class FinalizedTerritory:
    """An accepted, persisted claim.

    The polygon is a ring: the last vertex implicitly connects back to the first.
    Instances are immutable; renames and deletions happen outside the engine by
    replacing or removing the territory in the index.
    """

    territory_id: str
    owner_id: str
    polygon: tuple[GeoPoint, ...]
    area_sq_m: float
    name: str | None = None
    bbox: BoundingBox = field(init=False, compare=False)

    def __post_init__(self) -> None:
        # Local import: geo depends on this module.
        from territory_claim.geo import bounding_box

        ring = tuple(self.polygon)
        object.__setattr__(self, "polygon", ring)
        object.__setattr__(self, "bbox", bounding_box(ring))

    @property
    def display_name(self) -> str:
        return self.name or "unnamed territory"

    @property
    def formatted_area(self) -> str:
        """Area for display: square meters below 1 km², square kilometers above."""

        if self.area_sq_m >= 1_000_000:
            return f"{self.area_sq_m / 1_000_000:.2f} km²"
        return f"{self.area_sq_m:.0f} m²"


@dataclass(frozen=True, slots=True)
class ValidationThresholds:
    """Per-session claim rules. Immutable for the lifetime of a session."""

    min_points: int = 10
    min_total_distance_m: float = 50.0
    min_area_sq_m: float = 100.0
    closure_distance_m: float = 30.0
    speed_warn_kmh: float = 15.0
    speed_abort_kmh: float = 30.0
    min_sample_spacing_m: float = 10.0
    max_jump_m: float = 100.0

    def __post_init__(self) -> None:
        if self.min_points < 3:
            raise ValueError(f"min_points 至少为 3，实际：{self.min_points}")
        for name in (
            "min_total_distance_m",
            "min_area_sq_m",
            "closure_distance_m",
            "min_sample_spacing_m",
            "max_jump_m",
            "speed_warn_kmh",
            "speed_abort_kmh",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} 不能为负数，实际：{value}")
        if self.speed_warn_kmh > self.speed_abort_kmh:
            raise ValueError(
                f"speed_warn_kmh ({self.speed_warn_kmh}) 不能大于 speed_abort_kmh ({self.speed_abort_kmh})"
            )


class ClaimState(str, Enum):
    """Lifecycle of a claim session."""

    IDLE = "idle"
    TRACKING = "tracking"
    CLOSED = "closed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RejectReason(str, Enum):
    """Why a claim was rejected. The value doubles as the reason code."""

    INSUFFICIENT_POINTS = "insufficient points"
    INSUFFICIENT_DISTANCE = "insufficient distance"
    SELF_INTERSECTION = "self-intersection"
    INSUFFICIENT_AREA = "insufficient area"
    TERRITORY_COLLISION = "territory collision"
    OVERSPEED = "overspeed"
    VALIDATION_UNAVAILABLE = "validation_unavailable"


@dataclass(frozen=True, slots=True)
class ClaimResult:
    """Outcome of a closure attempt (or of an overspeed abort).

    Build with `ClaimResult.accept` / `ClaimResult.reject` rather than directly.
    """

    accepted: bool
    reason: RejectReason | None
    detail: str
    polygon: tuple[GeoPoint, ...] = ()
    area_sq_m: float = 0.0

    @classmethod
    def accept(cls, polygon: Sequence[GeoPoint], area_sq_m: float) -> ClaimResult:
        return cls(
            accepted=True,
            reason=None,
            detail=f"accepted: {len(polygon)} points, area {area_sq_m:.0f} m²",
            polygon=tuple(polygon),
            area_sq_m=area_sq_m,
        )

    @classmethod
    def reject(cls, reason: RejectReason, detail: str) -> ClaimResult:
        return cls(accepted=False, reason=reason, detail=detail)

    @property
    def retryable(self) -> bool:
        """Whether the same session may try again (re-arm or retry_closure).

        Overspeed is an anti-cheat abort: the claimant has to clear and start over.
        """

        return not self.accepted and self.reason is not RejectReason.OVERSPEED


@dataclass(frozen=True, slots=True)
class Advisory:
    """A non-fatal, observational message for the notification/log collaborator.

    Attributes:
        kind: Machine-readable category, e.g. "speed_warning", "proximity",
            "start_in_territory", "closure", "rejected", "accepted", "rearmed".
        message: Human-readable text.
        level: One of "info", "success", "warning", "error".
        timestamp_ms: Epoch ms of the fix that produced it.
    """

    kind: str
    message: str
    level: str
    timestamp_ms: int


@dataclass(frozen=True, slots=True)
class ClaimSubmission:
    """What the persistence collaborator receives for an accepted claim."""

    owner_id: str
    polygon: tuple[GeoPoint, ...]
    area_sq_m: float
    started_at_ms: int
    point_count: int
