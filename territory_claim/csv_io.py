"""CSV input/output for recorded fix streams."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Sequence

from territory_claim.models import Fix, GeoPoint

logger = logging.getLogger(__name__)

FIELDNAMES: tuple[str, ...] = ("geoTime", "latitude", "longitude", "altitude", "speed", "horizontalAccuracy")


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def _parse_int(value: str) -> int:
    return int(value.strip())


def _parse_float(value: str) -> float:
    return float(value.strip())


def _fix_from_row(row: Mapping[str, str]) -> Fix:
    return Fix(
        point=GeoPoint(latitude=_parse_float(row["latitude"]), longitude=_parse_float(row["longitude"])),
        horizontal_accuracy_m=_parse_float(row.get("horizontalAccuracy", "-1") or "-1"),
        speed_mps=_parse_float(row.get("speed", "-1") or "-1"),
        timestamp_ms=_parse_int(row["geoTime"]),
        altitude_m=_parse_float(row.get("altitude", "0") or "0"),
    )


def iter_fixes(csv_path: str | Path) -> Iterator[Fix]:
    """Yield Fix objects from a recorded track CSV.

    Args:
        csv_path: Path to the CSV.

    Yields:
        Fixes parsed successfully, in file order.

    Notes:
        Columns used:
          - geoTime: epoch milliseconds
          - latitude/longitude: decimal degrees
          - altitude/speed/horizontalAccuracy: optional; a missing accuracy or
            speed reads as -1 (unknown)

    Raises:
        KeyError: If a required column is missing.
    """

    p = Path(csv_path)
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            return

        for row in reader:
            try:
                yield _fix_from_row(row)
            except KeyError as exc:
                raise KeyError(f"CSV缺少必要字段：{exc}. 实际字段：{reader.fieldnames}") from exc
            except (ValueError, TypeError, AttributeError):
                # 某些行可能损坏/空行，直接跳过
                continue


def load_fixes(csv_path: str | Path) -> tuple[list[Fix], CsvSummary]:
    """Load all fixes into memory.

    Returns:
        (fixes, summary)

    Raises:
        KeyError: If a required column is missing from the header.
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[Fix] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        missing = [c for c in ("geoTime", "latitude", "longitude") if fieldnames and c not in fieldnames]
        if missing:
            raise KeyError(f"CSV缺少必要字段：{missing}. 实际字段：{list(fieldnames)}")
        for row in reader:
            rows_total += 1
            try:
                parsed.append(_fix_from_row(row))
            except (KeyError, ValueError, TypeError, AttributeError):
                continue

    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("CSV中有 %s 行解析失败已跳过", summary.rows_skipped)
    return parsed, summary


def write_fixes(fixes: Iterable[Fix], out_path: str | Path) -> int:
    """Write fixes in the same column layout `iter_fixes` reads. Returns the row count."""

    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=list(FIELDNAMES))
        w.writeheader()
        for fix in fixes:
            w.writerow(
                {
                    "geoTime": fix.timestamp_ms,
                    "latitude": f"{fix.latitude:.8f}",
                    "longitude": f"{fix.longitude:.8f}",
                    "altitude": f"{fix.altitude_m:.2f}",
                    "speed": f"{fix.speed_mps:.3f}",
                    "horizontalAccuracy": f"{fix.horizontal_accuracy_m:.2f}",
                }
            )
            n += 1
    return n
