from __future__ import annotations

import argparse
import csv
import math
import random
from datetime import datetime
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo


TZ: Final[str] = "Asia/Shanghai"
EARTH_RADIUS_M: Final[float] = 6_371_000.0


def _offset(lat0: float, lon0: float, east_m: float, north_m: float) -> tuple[float, float]:
    """Shift a coordinate by a small metric offset."""

    dlat = math.degrees(north_m / EARTH_RADIUS_M)
    dlon = math.degrees(east_m / (EARTH_RADIUS_M * math.cos(math.radians(lat0))))
    return lat0 + dlat, lon0 + dlon


def _loop_positions(width_m: float, height_m: float, step_m: float) -> list[tuple[float, float]]:
    """Points every step_m along a rectangle's perimeter, ending back at the start."""

    corners = [(0.0, 0.0), (width_m, 0.0), (width_m, height_m), (0.0, height_m), (0.0, 0.0)]
    out: list[tuple[float, float]] = [corners[0]]
    carry = 0.0
    for (x1, y1), (x2, y2) in zip(corners, corners[1:]):
        seg = math.hypot(x2 - x1, y2 - y1)
        d = step_m - carry
        while d <= seg:
            t = d / seg
            out.append((x1 + (x2 - x1) * t, y1 + (y2 - y1) * t))
            d += step_m
        carry = seg - (d - step_m)
    if out[-1] != corners[-1]:
        out.append(corners[-1])
    return out


def generate_walk(
    *,
    seed: int,
    start_local: datetime,
    origin: tuple[float, float],
    width_m: float,
    height_m: float,
    speed_mps: float,
    interval_s: float,
    noise_m: float,
    overspeed: bool,
) -> list[dict[str, str]]:
    """Generate fake walk rows: one noisy lap of a rectangle (privacy-safe)."""

    rng = random.Random(seed)
    cur_ms = int(start_local.replace(tzinfo=ZoneInfo(TZ)).timestamp() * 1000)
    positions = _loop_positions(width_m, height_m, speed_mps * interval_s)
    # Overspeed burst somewhere along the second side
    burst = range(len(positions) // 4, len(positions) // 4 + 3) if overspeed else range(0)

    rows: list[dict[str, str]] = []
    for i, (east, north) in enumerate(positions):
        lat, lon = _offset(
            origin[0],
            origin[1],
            east + rng.gauss(0.0, noise_m),
            north + rng.gauss(0.0, noise_m),
        )
        # Mostly good fixes, the occasional poor one the filter should drop
        hacc = rng.choice([3.0, 4.0, 5.0, 5.0, 6.0, 8.0, 8.0, 25.0])
        speed = speed_mps + rng.uniform(-0.3, 0.3)
        if i in burst:
            speed = rng.uniform(9.0, 12.0)
        rows.append(
            {
                "geoTime": str(cur_ms),
                "latitude": f"{lat:.8f}",
                "longitude": f"{lon:.8f}",
                "altitude": f"{rng.uniform(3.0, 6.0):.1f}",
                "speed": f"{speed:.2f}",
                "horizontalAccuracy": f"{hacc:.1f}",
            }
        )
        cur_ms += int(interval_s * 1000)
    return rows


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake closed-loop walk CSV for demo/testing (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/walk.csv", help="Output CSV path")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument("--start", type=str, default="2025-01-01 08:00:00", help="Start local time in Asia/Shanghai")
    p.add_argument("--width-m", type=float, default=120.0, help="Loop width (east-west), meters")
    p.add_argument("--height-m", type=float, default=80.0, help="Loop height (north-south), meters")
    p.add_argument("--speed-mps", type=float, default=1.4, help="Walking speed, m/s")
    p.add_argument("--interval-s", type=float, default=8.0, help="Seconds between fixes")
    p.add_argument("--noise-m", type=float, default=1.5, help="Position noise (std dev), meters")
    p.add_argument("--overspeed", action="store_true", help="Insert a short too-fast burst (claim should abort)")
    args = p.parse_args()

    rows = generate_walk(
        seed=args.seed,
        start_local=datetime.fromisoformat(args.start),
        origin=(31.2304000, 121.4737000),
        width_m=args.width_m,
        height_m=args.height_m,
        speed_mps=args.speed_mps,
        interval_s=args.interval_s,
        noise_m=args.noise_m,
        overspeed=args.overspeed,
    )
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = ["geoTime", "latitude", "longitude", "altitude", "speed", "horizontalAccuracy"]
    with out_path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()
        w.writerows(rows)

    print(f"Generated: {out_path} (rows={len(rows)}, seed={args.seed}, overspeed={args.overspeed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
