"""Replay a recorded fix stream through a claim session."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from territory_claim.models import Advisory, ClaimResult, ClaimState, GeoPoint, Fix, ValidationThresholds
from territory_claim.tracker import ClaimTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReplaySummary:
    """Outcome of one replayed session.

    Attributes:
        fixes: Fixes fed to the tracker (the replay stops early on a final outcome).
        appended: Fixes that became path points.
        discards: Discard reason -> count.
        attempts: Completed closure attempts (including the overspeed abort).
        state: Session state after the last fix.
        result: Latest closure outcome, if any.
        path: Path points at the end of the replay.
        advisories: Every advisory, in order.
    """

    fixes: int
    appended: int
    discards: dict[str, int]
    attempts: int
    state: ClaimState
    result: ClaimResult | None
    path: tuple[GeoPoint, ...]
    advisories: tuple[Advisory, ...] = field(default=())

    @property
    def accepted(self) -> bool:
        return self.result is not None and self.result.accepted


def _is_final(tracker: ClaimTracker) -> bool:
    if tracker.state is ClaimState.ACCEPTED:
        return True
    res = tracker.result
    return tracker.state is ClaimState.REJECTED and res is not None and not res.retryable


def replay(
    tracker: ClaimTracker,
    fixes: Iterable[Fix],
    thresholds: ValidationThresholds | None = None,
) -> ReplaySummary:
    """Start a session on an idle tracker and feed it every fix in order.

    Stops at the first accepted claim or non-retryable rejection; a retryable
    rejection keeps going so the session can re-arm. The tracker is left in its
    final state, so the caller may `commit()` an accepted claim.

    Raises:
        AlreadyTrackingError: If the tracker is not IDLE.
    """

    tracker.start(thresholds)
    seen = 0
    appended = 0
    attempts = 0
    discards: Counter[str] = Counter()
    advisories: list[Advisory] = []

    for fix in fixes:
        seen += 1
        report = tracker.ingest(fix)
        advisories.extend(report.advisories)
        if report.appended:
            appended += 1
        if report.discarded is not None:
            discards[report.discarded] += 1
        if report.result is not None:
            attempts += 1
        if _is_final(tracker):
            break

    logger.info("回放结束：%d 个定位，%d 个路径点，状态 %s", seen, appended, tracker.state.value)
    return ReplaySummary(
        fixes=seen,
        appended=appended,
        discards=dict(discards),
        attempts=attempts,
        state=tracker.state,
        result=tracker.result,
        path=tracker.path,
        advisories=tuple(advisories),
    )
