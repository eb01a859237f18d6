"""Time parsing, formatting and sampling-cadence utilities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Iterable

from zoneinfo import ZoneInfo

from territory_claim.models import Fix


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"无效时区：{tz_name!r}。例如可用：Asia/Shanghai") from exc


def dt_from_epoch_ms(epoch_ms: int, tz_name: str) -> datetime:
    """Convert epoch milliseconds to a timezone-aware datetime."""

    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=tzinfo_from_name(tz_name))


def format_epoch_ms(epoch_ms: int, tz_name: str, fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    return dt_from_epoch_ms(epoch_ms, tz_name).strftime(fmt)


def epoch_ms_from_text(text: str, tz_name: str) -> int:
    """Parse user-provided datetime text to epoch milliseconds.

    Supported formats: "YYYY-MM-DD HH:MM:SS" or "YYYY-MM-DDTHH:MM:SS", with an optional
    offset such as "+08:00". Naive strings are read in tz_name.

    Raises:
        ValueError: If the text cannot be parsed.
    """

    s = text.strip().replace("T", " ")
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as exc:
        raise ValueError(f"无法解析时间：{text!r}。建议格式：2025-12-18 09:30:00") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tzinfo_from_name(tz_name))
    return int(dt.timestamp() * 1000)


@dataclass(frozen=True, slots=True)
class CadenceStats:
    """Sampling interval stats (seconds) of a fix stream."""

    count: int
    min_s: float
    median_s: float
    p95_s: float
    max_s: float


def cadence_stats(fixes: Iterable[Fix]) -> CadenceStats | None:
    """Basic sampling-interval statistics over timestamp-sorted fixes.

    Returns:
        CadenceStats or None with fewer than 2 fixes.
    """

    ms = sorted(f.timestamp_ms for f in fixes)
    if len(ms) < 2:
        return None
    deltas = sorted((ms[i] - ms[i - 1]) / 1000.0 for i in range(1, len(ms)))
    n = len(deltas)
    median = deltas[n // 2] if n % 2 == 1 else 0.5 * (deltas[n // 2 - 1] + deltas[n // 2])
    return CadenceStats(
        count=n,
        min_s=deltas[0],
        median_s=median,
        p95_s=deltas[int(0.95 * (n - 1))],
        max_s=deltas[-1],
    )
