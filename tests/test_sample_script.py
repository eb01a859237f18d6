"""Tests for the sample walk generator script."""

import importlib.util
import math
from datetime import datetime
from pathlib import Path

import pytest

from territory_claim.csv_io import load_fixes

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "generate_sample_walk_csv.py"


@pytest.fixture(scope="module")
def script():
    spec = importlib.util.spec_from_file_location("generate_sample_walk_csv", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestSampleWalk:
    """Tests for the generated walk."""

    def test_loop_positions_closed(self, script):
        """The lap starts and ends at the origin with even steps."""
        pos = script._loop_positions(120.0, 80.0, 11.2)
        assert pos[0] == (0.0, 0.0)
        assert pos[-1] == (0.0, 0.0)
        for (x1, y1), (x2, y2) in zip(pos, pos[1:]):
            assert math.hypot(x2 - x1, y2 - y1) <= 11.2 + 1e-9

    def test_rows_readable(self, script, tmp_path):
        """Generated rows load as fixes in time order."""
        rows = script.generate_walk(
            seed=1,
            start_local=datetime(2025, 1, 1, 8, 0, 0),
            origin=(31.2304, 121.4737),
            width_m=120.0,
            height_m=80.0,
            speed_mps=1.4,
            interval_s=8.0,
            noise_m=1.5,
            overspeed=True,
        )
        p = tmp_path / "walk.csv"
        p.write_text(
            "geoTime,latitude,longitude,altitude,speed,horizontalAccuracy\n"
            + "".join(
                f"{r['geoTime']},{r['latitude']},{r['longitude']},{r['altitude']},{r['speed']},{r['horizontalAccuracy']}\n"
                for r in rows
            ),
            encoding="utf-8",
        )
        fixes, summary = load_fixes(p)
        assert summary.rows_skipped == 0
        assert len(fixes) == len(rows)
        assert [f.timestamp_ms for f in fixes] == sorted(f.timestamp_ms for f in fixes)
        assert max(f.speed_mps for f in fixes) > 30 / 3.6
