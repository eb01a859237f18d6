"""Tests for catalog records, WKT and the JSON territory store."""

import json

import pytest

from territory_claim.catalog import JsonTerritoryStore, territory_from_record, territory_to_record, to_wkt
from territory_claim.collision import CollisionIndex
from territory_claim.models import ClaimSubmission, GeoPoint

RECORD = {
    "id": "t1",
    "user_id": "owner-a",
    "name": "Park",
    "path": [{"lat": 31.0, "lon": 121.0}, {"lat": 31.001, "lon": 121.0}, {"lat": 31.001, "lon": 121.001}],
    "area": 1234.5,
    "point_count": 3,
}


def submission(owner="owner-a"):
    return ClaimSubmission(
        owner_id=owner,
        polygon=(GeoPoint(31.0, 121.0), GeoPoint(31.001, 121.0), GeoPoint(31.001, 121.001)),
        area_sq_m=1234.5,
        started_at_ms=1_735_689_600_000,
        point_count=3,
    )


class TestRecords:
    """Tests for record conversion."""

    def test_from_record(self):
        """A well-formed record becomes a territory."""
        t = territory_from_record(RECORD)
        assert t.territory_id == "t1"
        assert t.owner_id == "owner-a"
        assert t.name == "Park"
        assert t.area_sq_m == 1234.5
        assert t.polygon[1] == GeoPoint(31.001, 121.0)

    def test_round_trip_fields(self):
        """Converting back keeps the catalog fields."""
        rec = territory_to_record(territory_from_record(RECORD))
        assert rec["id"] == "t1"
        assert rec["user_id"] == "owner-a"
        assert rec["path"] == RECORD["path"]
        assert rec["point_count"] == 3

    def test_malformed_path_entries_skipped(self):
        """Broken coordinates are dropped as long as 3 remain."""
        rec = dict(RECORD, path=RECORD["path"] + [{"lat": "x", "lon": 1}, {"lat": 2}, "junk"])
        assert len(territory_from_record(rec).polygon) == 3

    def test_too_few_vertices(self):
        """Fewer than 3 valid vertices is an error."""
        with pytest.raises(ValueError):
            territory_from_record(dict(RECORD, path=RECORD["path"][:2]))

    @pytest.mark.parametrize("field", ["id", "user_id", "area"])
    def test_missing_field(self, field):
        """Missing required fields name the field."""
        rec = {k: v for k, v in RECORD.items() if k != field}
        with pytest.raises(ValueError, match=field):
            territory_from_record(rec)


class TestWkt:
    """Tests for WKT rendering."""

    def test_closed_ring_lon_first(self):
        """Longitude first, ring closed, SRID prefix."""
        wkt = to_wkt(territory_from_record(RECORD).polygon)
        assert wkt == "SRID=4326;POLYGON((121.0 31.0, 121.0 31.001, 121.001 31.001, 121.0 31.0))"

    def test_already_closed(self):
        """A ring that already repeats its start is not closed twice."""
        ring = [GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0), GeoPoint(1.0, 1.0), GeoPoint(0.0, 0.0)]
        assert to_wkt(ring) == "SRID=4326;POLYGON((0.0 0.0, 1.0 0.0, 1.0 1.0, 0.0 0.0))"


class TestJsonTerritoryStore:
    """Tests for the local JSON catalog."""

    def test_save_returns_new_ids(self, tmp_path):
        """Each save gets a fresh id."""
        store = JsonTerritoryStore(tmp_path / "territories.json")
        a = store.save(submission())
        b = store.save(submission())
        assert a != b
        assert {t.territory_id for t in store.territories()} == {a, b}

    def test_journal_survives_without_flush(self, tmp_path):
        """Unflushed saves are recovered from the journal."""
        path = tmp_path / "territories.json"
        tid = JsonTerritoryStore(path).save(submission())
        assert not path.exists()
        reloaded = JsonTerritoryStore(path)
        assert [t.territory_id for t in reloaded.territories()] == [tid]

    def test_flush_writes_file_and_clears_journal(self, tmp_path):
        """Flush persists the catalog and drops the journal."""
        path = tmp_path / "territories.json"
        store = JsonTerritoryStore(path)
        tid = store.save(submission())
        store.flush()
        assert tid in json.loads(path.read_text(encoding="utf-8"))
        assert not (tmp_path / "territories.journal.jsonl").exists()

    def test_remove_and_rename(self, tmp_path):
        """Deletions and renames replay from the journal."""
        path = tmp_path / "territories.json"
        store = JsonTerritoryStore(path)
        keep = store.save(submission())
        drop = store.save(submission())
        assert store.rename(keep, "Riverside")
        assert store.remove(drop)
        assert not store.remove(drop)
        assert not store.rename("missing", "x")

        reloaded = JsonTerritoryStore(path).territories()
        assert [(t.territory_id, t.name) for t in reloaded] == [(keep, "Riverside")]

    def test_owner_filter(self, tmp_path):
        """Territories can be listed per owner, case-insensitively."""
        store = JsonTerritoryStore(tmp_path / "t.json")
        store.save(submission("owner-a"))
        store.save(submission("owner-b"))
        assert len(store.territories(owner_id="OWNER-A")) == 1

    def test_broken_records_skipped(self, tmp_path):
        """Invalid records are skipped when listing."""
        path = tmp_path / "t.json"
        path.write_text(json.dumps({"t1": RECORD, "bad": {"id": "bad", "user_id": "x", "area": 1, "path": []}}))
        assert [t.territory_id for t in JsonTerritoryStore(path).territories()] == ["t1"]

    def test_corrupt_file_backed_up(self, tmp_path):
        """A corrupt catalog is backed up and the store starts empty."""
        path = tmp_path / "t.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonTerritoryStore(path)
        assert store.territories() == []
        assert (tmp_path / "t.json.broken").exists()

    def test_seed_index(self, tmp_path):
        """The catalog can fill a collision index."""
        path = tmp_path / "t.json"
        path.write_text(json.dumps({"t1": RECORD}))
        index = CollisionIndex()
        assert JsonTerritoryStore(path).seed_index(index) == 1
        assert "t1" in index
