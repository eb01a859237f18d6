"""Movement-speed anti-cheat checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from territory_claim.models import Fix

logger = logging.getLogger(__name__)

MPS_TO_KMH = 3.6


@dataclass(frozen=True, slots=True)
class SpeedParams:
    """Speed thresholds (km/h) and warning behaviour."""

    warn_kmh: float = 15.0
    abort_kmh: float = 30.0
    # Minimum time between two warnings for sustained moderate speed.
    warn_cooldown_s: float = 5.0
    # Fixes with accuracy outside (0, max_accuracy_m] are not evaluated at all.
    max_accuracy_m: float = 50.0


class SpeedVerdict(str, Enum):
    OK = "ok"
    WARN = "warn"
    # Warn-level speed, but a warning was issued less than warn_cooldown_s ago.
    SUPPRESSED = "suppressed"
    ABORT = "abort"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class SpeedCheck:
    verdict: SpeedVerdict
    speed_kmh: float
    message: str = ""

    @property
    def aborts(self) -> bool:
        return self.verdict is SpeedVerdict.ABORT


class SpeedGuard:
    """Evaluates each fix's reported speed.

    Above `abort_kmh` the session must stop (hard anti-cheat stop). Above `warn_kmh`
    a warning is raised, at most once per `warn_cooldown_s` of fix time; dropping back
    to normal speed clears the cooldown so the next excursion warns immediately.
    """

    def __init__(self, params: SpeedParams | None = None) -> None:
        self._params = params or SpeedParams()
        self._last_warning_ms: int | None = None

    @property
    def params(self) -> SpeedParams:
        return self._params

    def reset(self) -> None:
        self._last_warning_ms = None

    def evaluate(self, fix: Fix) -> SpeedCheck:
        p = self._params
        acc = fix.horizontal_accuracy_m
        if acc <= 0 or acc > p.max_accuracy_m:
            logger.debug("GPS 精度差 (%.1fm)，跳过速度检测", acc)
            return SpeedCheck(SpeedVerdict.SKIPPED, 0.0)
        if fix.speed_mps < 0:
            return SpeedCheck(SpeedVerdict.SKIPPED, 0.0)

        kmh = fix.speed_mps * MPS_TO_KMH
        if kmh > p.abort_kmh:
            logger.warning("速度过快 %.1f km/h，停止圈地", kmh)
            return SpeedCheck(
                SpeedVerdict.ABORT,
                kmh,
                f"moving too fast ({kmh:.1f} km/h > {p.abort_kmh:.0f} km/h), claim stopped",
            )

        if kmh > p.warn_kmh:
            if self._last_warning_ms is not None:
                since_s = (fix.timestamp_ms - self._last_warning_ms) / 1000.0
                if since_s < p.warn_cooldown_s:
                    return SpeedCheck(SpeedVerdict.SUPPRESSED, kmh)
            self._last_warning_ms = fix.timestamp_ms
            return SpeedCheck(
                SpeedVerdict.WARN,
                kmh,
                f"moving fast ({kmh:.1f} km/h), please slow down",
            )

        self._last_warning_ms = None
        return SpeedCheck(SpeedVerdict.OK, kmh)
