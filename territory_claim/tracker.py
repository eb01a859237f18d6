"""Claim session: path assembly, loop-closure detection and claim validation.

One `ClaimTracker` serves one claimant. Fixes are pushed in arrival order with
`ingest()`; the tracker never pulls positions itself. Session lifecycle:

    IDLE --start()--> TRACKING --loop closes--> CLOSED --> ACCEPTED | REJECTED

`stop()` / `clear()` / `reset()` return to IDLE from any state. A validation rejection
re-arms (back to TRACKING) when the claimant walks more than 50 m from the start, or
appends another point while still within closure range.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Final, Protocol

from territory_claim.collision import CrossingKind, ProximityTier, TerritoryLookup, same_owner
from territory_claim.filtering import FilterParams, SampleFilter
from territory_claim.geo import distance_m, has_self_intersection, path_length_m, polygon_area_sq_m
from territory_claim.models import (
    Advisory,
    ClaimResult,
    ClaimState,
    ClaimSubmission,
    FinalizedTerritory,
    Fix,
    GeoPoint,
    RejectReason,
    ValidationThresholds,
)
from territory_claim.speed import SpeedGuard, SpeedParams, SpeedVerdict

logger = logging.getLogger(__name__)

DISCARD_LOW_ACCURACY: Final[str] = "low_accuracy"
DISCARD_TOO_CLOSE: Final[str] = "too_close"
DISCARD_GPS_JUMP: Final[str] = "gps_jump"
DISCARD_SESSION_CLOSED: Final[str] = "session_closed"

MIN_CLOSURE_POINTS: Final[int] = 5
REARM_DISTANCE_M: Final[float] = 50.0
# A hop is also treated as a GPS jump when it is both fast and imprecise.
JUMP_SPEED_MPS: Final[float] = 15.0
JUMP_ACCURACY_M: Final[float] = 20.0


class SessionStateError(RuntimeError):
    """A tracker method was called in a state that does not allow it."""


class AlreadyTrackingError(SessionStateError):
    """`start()` was called while a session is not IDLE."""


class NotTrackingError(SessionStateError):
    """The operation needs an active (or accepted) session."""


class ClaimStore(Protocol):
    """Persistence collaborator: stores an accepted claim, returns a stable id."""

    def save(self, submission: ClaimSubmission) -> str: ...


AdvisoryListener = Callable[[Advisory], None]


@dataclass(frozen=True, slots=True)
class IngestReport:
    """What happened to one ingested fix."""

    state: ClaimState
    appended: bool = False
    discarded: str | None = None
    advisories: tuple[Advisory, ...] = ()
    # Set when this fix triggered a closure attempt (or an overspeed abort).
    result: ClaimResult | None = None


@dataclass(frozen=True, slots=True)
class _ClosureAttempt:
    path: tuple[GeoPoint, ...]
    thresholds: ValidationThresholds
    token: threading.Event
    timestamp_ms: int


class ClaimTracker:
    """Stateful claim session for one owner.

    Args:
        index: Read access to existing territories (own and others').
        owner_id: The claimant.
        filter_params: Sample filter settings; defaults to a 10 m ceiling, 5-fix window.
        collaborator_timeout_s: Upper bound for waiting on the index during the
            collision check and on the store during `commit()`.
    """

    def __init__(
        self,
        index: TerritoryLookup,
        owner_id: str,
        *,
        filter_params: FilterParams | None = None,
        collaborator_timeout_s: float = 3.0,
    ) -> None:
        self._index = index
        self._owner_id = owner_id
        self._filter = SampleFilter(filter_params)
        self._speed = SpeedGuard()
        self._thresholds = ValidationThresholds()
        self._timeout_s = collaborator_timeout_s

        self._lock = threading.RLock()
        self._state = ClaimState.IDLE
        self._path: list[GeoPoint] = []
        self._last_append_ms: int | None = None
        self._started_at_ms: int | None = None
        self._result: ClaimResult | None = None
        self._proximity_tier: ProximityTier | None = None
        self._cancel = threading.Event()
        self._committed: FinalizedTerritory | None = None

        self._listeners: list[AdvisoryListener] = []
        self._executor: ThreadPoolExecutor | None = None

    # --- introspection ---

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def state(self) -> ClaimState:
        return self._state

    @property
    def thresholds(self) -> ValidationThresholds:
        return self._thresholds

    @property
    def path(self) -> tuple[GeoPoint, ...]:
        """Snapshot of the accepted path points, in walking order."""

        with self._lock:
            return tuple(self._path)

    @property
    def result(self) -> ClaimResult | None:
        """Latest closure outcome (None while no attempt has completed)."""

        return self._result

    @property
    def started_at_ms(self) -> int | None:
        return self._started_at_ms

    @property
    def distance_to_start_m(self) -> float | None:
        with self._lock:
            if len(self._path) < 2:
                return None
            return distance_m(self._path[0], self._path[-1])

    def add_listener(self, listener: AdvisoryListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: AdvisoryListener) -> None:
        with self._lock:
            self._listeners.remove(listener)

    # --- lifecycle ---

    def start(self, thresholds: ValidationThresholds | None = None, *, started_at_ms: int | None = None) -> None:
        """IDLE -> TRACKING with a fresh path, filter and speed guard.

        Raises:
            AlreadyTrackingError: If the session is not IDLE (terminal states need an
                explicit `reset()` first).
        """

        with self._lock:
            if self._state is not ClaimState.IDLE:
                raise AlreadyTrackingError(f"会话状态为 {self._state.value}，请先 stop()/reset() 再开始")
            t = thresholds or ValidationThresholds()
            self._thresholds = t
            self._clear_session()
            self._speed = SpeedGuard(SpeedParams(warn_kmh=t.speed_warn_kmh, abort_kmh=t.speed_abort_kmh))
            self._cancel = threading.Event()
            self._started_at_ms = started_at_ms
            self._state = ClaimState.TRACKING
        logger.info("开始圈地追踪：owner=%s", self._owner_id)

    def stop(self) -> None:
        """Return to IDLE from any state, discarding the path. Emits no polygon.

        Safe to call while a validation is in flight: the pending attempt is abandoned.
        """

        self._to_idle("停止追踪")

    def clear(self) -> None:
        self._to_idle("清除路径")

    def reset(self) -> None:
        """Leave a terminal state (ACCEPTED/REJECTED) so a new session can start."""

        self._to_idle("重置会话")

    def close(self) -> None:
        """Release the collaborator worker thread."""

        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    # --- ingestion ---

    def ingest(self, fix: Fix) -> IngestReport:
        """Process one raw fix.

        Raises:
            NotTrackingError: If no session was started.
        """

        advisories: list[Advisory] = []
        with self._lock:
            report, attempt = self._ingest_locked(fix, advisories)
        if attempt is not None:
            report = self._attempt_closure(attempt, advisories)
        self._notify(advisories)
        return replace(report, advisories=tuple(advisories))

    def _accepting_fixes(self) -> bool:
        if self._state is ClaimState.TRACKING:
            return True
        return self._state is ClaimState.REJECTED and self._result is not None and self._result.retryable

    def _ingest_locked(self, fix: Fix, advisories: list[Advisory]) -> tuple[IngestReport, _ClosureAttempt | None]:
        if self._state is ClaimState.IDLE:
            raise NotTrackingError("会话未开始，请先调用 start()")
        if not self._accepting_fixes():
            logger.debug("会话状态为 %s，忽略新定位", self._state.value)
            return IngestReport(self._state, discarded=DISCARD_SESSION_CLOSED), None

        before = self._filter.estimate
        filtered = self._filter.add_sample(fix)
        if filtered is None or filtered is before:
            return IngestReport(self._state, discarded=DISCARD_LOW_ACCURACY), None
        ts = filtered.timestamp_ms

        check = self._speed.evaluate(filtered)
        if check.aborts:
            self._result = ClaimResult.reject(RejectReason.OVERSPEED, check.message)
            self._state = ClaimState.REJECTED
            advisories.append(Advisory("overspeed", check.message, "error", ts))
            return IngestReport(self._state, result=self._result), None
        if check.verdict is SpeedVerdict.WARN:
            advisories.append(Advisory("speed_warning", check.message, "warning", ts))

        t = self._thresholds
        point = filtered.point
        if self._path:
            hop = distance_m(self._path[-1], point)
            if hop < t.min_sample_spacing_m:
                logger.debug("距离上个点仅 %.1f 米，跳过", hop)
                return IngestReport(self._state, discarded=DISCARD_TOO_CLOSE), None
            if self._is_jump(hop, filtered):
                logger.debug("GPS 跳点 %.1f 米，跳过", hop)
                return IngestReport(self._state, discarded=DISCARD_GPS_JUMP), None

        self._path.append(point)
        self._last_append_ms = ts
        if self._started_at_ms is None:
            self._started_at_ms = ts
        logger.debug("记录第 %d 个点", len(self._path))

        if len(self._path) == 1:
            self._check_start_point(point, ts, advisories)
        self._check_proximity(point, ts, advisories)

        to_start = distance_m(self._path[0], point)
        if self._state is ClaimState.REJECTED:
            if to_start > REARM_DISTANCE_M or to_start <= t.closure_distance_m:
                self._state = ClaimState.TRACKING
                advisories.append(
                    Advisory("rearmed", f"closure re-armed ({to_start:.0f} m from start)", "info", ts)
                )
            else:
                return IngestReport(self._state, appended=True), None

        if len(self._path) >= MIN_CLOSURE_POINTS and to_start <= t.closure_distance_m:
            self._state = ClaimState.CLOSED
            logger.info("闭环成功！距起点 %.1fm，共 %d 个点", to_start, len(self._path))
            advisories.append(
                Advisory("closure", f"loop closed {to_start:.1f} m from start, validating", "info", ts)
            )
            attempt = _ClosureAttempt(tuple(self._path), t, self._cancel, ts)
            return IngestReport(self._state, appended=True), attempt

        return IngestReport(self._state, appended=True), None

    def _is_jump(self, hop_m: float, fix: Fix) -> bool:
        if hop_m > self._thresholds.max_jump_m:
            return True
        if fix.horizontal_accuracy_m <= JUMP_ACCURACY_M or self._last_append_ms is None:
            return False
        dt_s = (fix.timestamp_ms - self._last_append_ms) / 1000.0
        implied = hop_m / dt_s if dt_s > 0 else float("inf")
        return implied > JUMP_SPEED_MPS

    def _check_start_point(self, point: GeoPoint, ts: int, advisories: list[Advisory]) -> None:
        hit = self._index.point_in_any_territory(point, exclude_owner_id=self._owner_id)
        if hit is not None:
            logger.warning("起点位于他人领地 %s 内", hit)
            advisories.append(
                Advisory("start_in_territory", f"starting inside another owner's territory {hit}", "error", ts)
            )

    def _check_proximity(self, point: GeoPoint, ts: int, advisories: list[Advisory]) -> None:
        prox = self._index.min_distance_to_any(point, self._owner_id, include_own=True)
        tier = prox.tier
        previous = self._proximity_tier
        self._proximity_tier = tier
        if tier is previous or (previous is None and tier is ProximityTier.SAFE):
            return

        whose = "your own territory" if prox.is_own else "another owner's territory"
        if tier is ProximityTier.SAFE:
            advisories.append(Advisory("proximity", f"clear of {whose}", "info", ts))
            return
        prefix = {
            ProximityTier.CAUTION: "caution: near",
            ProximityTier.WARNING: "warning: approaching",
            ProximityTier.DANGER: "danger: about to enter",
        }[tier]
        advisories.append(Advisory("proximity", f"{prefix} {whose} ({prox.distance_m:.0f} m)", "warning", ts))

    # --- validation ---

    def retry_closure(self) -> ClaimResult | None:
        """Re-run validation after a `validation_unavailable` outcome.

        Returns:
            The new result, or None if the session was cancelled meanwhile.

        Raises:
            NotTrackingError: If the last outcome was not `validation_unavailable` or
                the path is no longer closed.
        """

        advisories: list[Advisory] = []
        with self._lock:
            res = self._result
            if (
                self._state is not ClaimState.REJECTED
                or res is None
                or res.reason is not RejectReason.VALIDATION_UNAVAILABLE
            ):
                raise NotTrackingError("只有在 validation_unavailable 之后才能重试闭环校验")
            to_start = distance_m(self._path[0], self._path[-1])
            if len(self._path) < MIN_CLOSURE_POINTS or to_start > self._thresholds.closure_distance_m:
                raise NotTrackingError(f"路径未闭合（距起点 {to_start:.1f}m），无法重试")
            self._state = ClaimState.CLOSED
            ts = self._last_append_ms or 0
            attempt = _ClosureAttempt(tuple(self._path), self._thresholds, self._cancel, ts)
        report = self._attempt_closure(attempt, advisories)
        self._notify(advisories)
        return report.result

    def _attempt_closure(self, attempt: _ClosureAttempt, advisories: list[Advisory]) -> IngestReport:
        result = self._validate(attempt)
        with self._lock:
            if result is None or attempt.token.is_set() or attempt.token is not self._cancel:
                logger.info("校验期间会话已取消")
                return IngestReport(self._state, appended=True)
            self._result = result
            if result.accepted:
                self._state = ClaimState.ACCEPTED
                logger.info("圈地校验通过：%s", result.detail)
                advisories.append(Advisory("accepted", result.detail, "success", attempt.timestamp_ms))
            else:
                self._state = ClaimState.REJECTED
                logger.info("圈地校验失败：%s", result.detail)
                advisories.append(Advisory("rejected", result.detail, "error", attempt.timestamp_ms))
            return IngestReport(self._state, appended=True, result=result)

    def _validate(self, attempt: _ClosureAttempt) -> ClaimResult | None:
        """Run the five checks in order; the first failure decides the reason.

        Returns None as soon as the attempt is cancelled.
        """

        path = attempt.path
        t = attempt.thresholds
        token = attempt.token

        if len(path) < t.min_points:
            return ClaimResult.reject(
                RejectReason.INSUFFICIENT_POINTS, f"points {len(path)} < required {t.min_points}"
            )
        if token.is_set():
            return None

        walked = path_length_m(path)
        if walked < t.min_total_distance_m:
            return ClaimResult.reject(
                RejectReason.INSUFFICIENT_DISTANCE,
                f"distance {walked:.0f} m < required {t.min_total_distance_m:.0f} m",
            )
        if token.is_set():
            return None

        if has_self_intersection(path):
            return ClaimResult.reject(RejectReason.SELF_INTERSECTION, "path crosses itself")
        if token.is_set():
            return None

        area = polygon_area_sq_m(path)
        if area < t.min_area_sq_m:
            return ClaimResult.reject(
                RejectReason.INSUFFICIENT_AREA, f"area {area:.0f} m² < required {t.min_area_sq_m:.0f} m²"
            )
        if token.is_set():
            return None

        try:
            crossing = self._call_collaborator(self._index.path_crosses_any, path, None)
        except TimeoutError:
            logger.warning("碰撞检测超时（%.1fs）", self._timeout_s)
            return ClaimResult.reject(
                RejectReason.VALIDATION_UNAVAILABLE, f"collision check timed out after {self._timeout_s:.1f} s"
            )
        except Exception as exc:
            logger.warning("碰撞检测失败：%r", exc)
            return ClaimResult.reject(RejectReason.VALIDATION_UNAVAILABLE, f"collision check failed: {exc}")
        if token.is_set():
            return None

        if crossing is not None:
            whose = "your own" if same_owner(crossing.owner_id, self._owner_id) else "another owner's"
            verb = "crosses the boundary of" if crossing.kind is CrossingKind.BOUNDARY_CROSSED else "enters"
            return ClaimResult.reject(
                RejectReason.TERRITORY_COLLISION, f"path {verb} {whose} territory {crossing.territory_id}"
            )
        return ClaimResult.accept(path, area)

    # --- persistence ---

    def commit(self, store: ClaimStore) -> FinalizedTerritory | None:
        """Persist the accepted claim and return it as a finalized territory.

        The caller decides whether to insert the returned territory into its index.
        Once stored, repeated calls return the same territory without saving again.

        Returns:
            The territory, or None when the store failed (the session then becomes
            REJECTED with `validation_unavailable`, retryable via `retry_closure()`)
            or the session was cancelled during the wait.

        Raises:
            NotTrackingError: If the session is not ACCEPTED.
        """

        with self._lock:
            res = self._result
            if self._state is not ClaimState.ACCEPTED or res is None:
                raise NotTrackingError(f"会话状态为 {self._state.value}，只有 accepted 才能提交")
            if self._committed is not None:
                return self._committed
            token = self._cancel
            submission = ClaimSubmission(
                owner_id=self._owner_id,
                polygon=res.polygon,
                area_sq_m=res.area_sq_m,
                started_at_ms=self._started_at_ms or 0,
                point_count=len(res.polygon),
            )
            ts = self._last_append_ms or 0

        failure: str | None = None
        territory_id = ""
        try:
            territory_id = str(self._call_collaborator(store.save, submission))
        except TimeoutError:
            failure = f"claim store timed out after {self._timeout_s:.1f} s"
        except Exception as exc:
            failure = f"claim store failed: {exc}"

        advisories: list[Advisory] = []
        territory: FinalizedTerritory | None = None
        with self._lock:
            if token.is_set() or token is not self._cancel:
                logger.info("提交期间会话已取消")
                return None
            if failure is not None:
                logger.warning("领地上传失败：%s", failure)
                self._result = ClaimResult.reject(RejectReason.VALIDATION_UNAVAILABLE, failure)
                self._state = ClaimState.REJECTED
                advisories.append(Advisory("rejected", failure, "error", ts))
            else:
                territory = FinalizedTerritory(
                    territory_id=territory_id,
                    owner_id=self._owner_id,
                    polygon=submission.polygon,
                    area_sq_m=submission.area_sq_m,
                )
                self._committed = territory
                logger.info("领地上传成功！面积: %s", territory.formatted_area)
                advisories.append(
                    Advisory("committed", f"territory {territory_id} saved ({territory.formatted_area})", "success", ts)
                )
        self._notify(advisories)
        return territory

    # --- internals ---

    def _call_collaborator(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="claim-collaborator")
        future = self._executor.submit(fn, *args)
        return future.result(timeout=self._timeout_s)

    def _to_idle(self, what: str) -> None:
        with self._lock:
            self._cancel.set()
            points = len(self._path)
            self._clear_session()
            self._state = ClaimState.IDLE
        logger.info("%s，共 %d 个点", what, points)

    def _clear_session(self) -> None:
        self._path.clear()
        self._filter.reset()
        self._speed.reset()
        self._last_append_ms = None
        self._started_at_ms = None
        self._result = None
        self._proximity_tier = None
        self._committed = None

    def _notify(self, advisories: list[Advisory]) -> None:
        for advisory in advisories:
            with self._lock:
                listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(advisory)
                except Exception:
                    logger.exception("advisory listener 出错：%r", listener)
