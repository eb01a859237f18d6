"""Accuracy-weighted smoothing of noisy position fixes."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

from territory_claim.models import Fix, GeoPoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FilterParams:
    """Parameters controlling the sample filter."""

    # Fixes worse than this (or with unknown accuracy) are dropped.
    accuracy_ceiling_m: float = 10.0
    # Number of most recent accepted fixes averaged together.
    window: int = 5

    def __post_init__(self) -> None:
        if self.window < 1:
            raise ValueError(f"window 至少为 1，实际：{self.window}")
        if self.accuracy_ceiling_m <= 0:
            raise ValueError(f"accuracy_ceiling_m 必须为正数，实际：{self.accuracy_ceiling_m}")


class SampleFilter:
    """Inverse-variance weighted moving average over the last few accurate fixes.

    Each buffered fix gets weight 1 / max(accuracy, 1)². Latitude, longitude and
    altitude are averaged independently; the estimate reports the best accuracy in the
    buffer, the latest timestamp, and the speed of the most recent fix.
    """

    def __init__(self, params: FilterParams | None = None) -> None:
        self._params = params or FilterParams()
        self._buffer: deque[Fix] = deque(maxlen=self._params.window)
        self._estimate: Fix | None = None

    @property
    def params(self) -> FilterParams:
        return self._params

    @property
    def estimate(self) -> Fix | None:
        """Current filtered estimate (None until a fix is accepted)."""

        return self._estimate

    @property
    def is_stable(self) -> bool:
        """At least 3 fixes are buffered."""

        return len(self._buffer) >= 3

    def accepts(self, fix: Fix) -> bool:
        acc = fix.horizontal_accuracy_m
        return 0 < acc <= self._params.accuracy_ceiling_m

    def add_sample(self, fix: Fix) -> Fix | None:
        """Add a fix and return the filtered estimate.

        A rejected fix leaves the state untouched and the previous estimate (the same
        object) is returned, so callers can detect "no change" by identity.
        """

        if not self.accepts(fix):
            logger.debug("定位精度差 (%.1fm)，跳过", fix.horizontal_accuracy_m)
            return self._estimate

        self._buffer.append(fix)
        self._estimate = self._compute()
        return self._estimate

    def reset(self) -> None:
        """Clear the buffer and the estimate."""

        self._buffer.clear()
        self._estimate = None

    def _compute(self) -> Fix:
        if len(self._buffer) == 1:
            return self._buffer[0]

        # Offsets from the newest fix keep identical inputs exact.
        ref = self._buffer[-1]
        total_w = 0.0
        d_lat = 0.0
        d_lon = 0.0
        d_alt = 0.0
        latest = self._buffer[0]
        for f in self._buffer:
            acc = max(f.horizontal_accuracy_m, 1.0)
            w = 1.0 / (acc * acc)
            total_w += w
            d_lat += (f.latitude - ref.latitude) * w
            d_lon += (f.longitude - ref.longitude) * w
            d_alt += (f.altitude_m - ref.altitude_m) * w
            if f.timestamp_ms >= latest.timestamp_ms:
                latest = f

        best_acc = min(f.horizontal_accuracy_m for f in self._buffer)
        return Fix(
            point=GeoPoint(latitude=ref.latitude + d_lat / total_w, longitude=ref.longitude + d_lon / total_w),
            horizontal_accuracy_m=best_acc,
            speed_mps=self._buffer[-1].speed_mps,
            timestamp_ms=latest.timestamp_ms,
            altitude_m=ref.altitude_m + d_alt / total_w,
        )
