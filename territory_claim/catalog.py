"""Territory catalog records, WKT rendering and a local JSON claim store.

Record format (one territory):

    {"id": "...", "user_id": "...", "name": null, "path": [{"lat": 31.2, "lon": 121.4}, ...],
     "area": 412.5, "point_count": 12, "started_at": 1735689600000}
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Mapping, Sequence

from territory_claim.collision import CollisionIndex
from territory_claim.models import ClaimSubmission, FinalizedTerritory, GeoPoint

logger = logging.getLogger(__name__)


def _path_from_record(raw: Any) -> list[GeoPoint]:
    points: list[GeoPoint] = []
    if not isinstance(raw, list):
        return points
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        try:
            points.append(GeoPoint(latitude=float(item["lat"]), longitude=float(item["lon"])))
        except (KeyError, TypeError, ValueError):
            # 单个坐标损坏，跳过
            continue
    return points


def territory_from_record(record: Mapping[str, Any]) -> FinalizedTerritory:
    """Build a territory from a catalog record.

    Malformed path entries are skipped.

    Raises:
        ValueError: If a required field is missing or fewer than 3 valid vertices remain.
    """

    try:
        territory_id = str(record["id"])
        owner_id = str(record["user_id"])
        area = float(record["area"])
    except KeyError as exc:
        raise ValueError(f"领地记录缺少字段：{exc}") from exc
    except (TypeError, ValueError) as exc:
        raise ValueError(f"领地记录字段无效：{exc}") from exc

    polygon = _path_from_record(record.get("path"))
    if len(polygon) < 3:
        raise ValueError(f"领地 {territory_id} 有效顶点不足 3 个（{len(polygon)}）")

    name = record.get("name")
    return FinalizedTerritory(
        territory_id=territory_id,
        owner_id=owner_id,
        polygon=tuple(polygon),
        area_sq_m=area,
        name=str(name) if name else None,
    )


def path_to_record(polygon: Sequence[GeoPoint]) -> list[dict[str, float]]:
    return [{"lat": p.latitude, "lon": p.longitude} for p in polygon]


def territory_to_record(territory: FinalizedTerritory, started_at_ms: int | None = None) -> dict[str, Any]:
    return {
        "id": territory.territory_id,
        "user_id": territory.owner_id,
        "name": territory.name,
        "path": path_to_record(territory.polygon),
        "area": territory.area_sq_m,
        "point_count": len(territory.polygon),
        "started_at": started_at_ms,
    }


def to_wkt(polygon: Sequence[GeoPoint]) -> str:
    """Render an EWKT polygon, "SRID=4326;POLYGON((lon lat, ...))".

    WKT puts longitude first and requires a closed ring, so the first vertex is
    repeated at the end unless it is already there.
    """

    coords = list(polygon)
    if coords and coords[0] != coords[-1]:
        coords.append(coords[0])
    body = ", ".join(f"{p.longitude} {p.latitude}" for p in coords)
    return f"SRID=4326;POLYGON(({body}))"


class JsonTerritoryStore:
    """A small JSON territory catalog persisted on disk (id -> record).

    Implements the claim-store collaborator (`save`). Updates go to a write-ahead
    journal first, so a crash between `save()` and `flush()` loses nothing.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        # Example: territories.json -> territories.journal.jsonl
        self._journal_path = self._path.with_name(f"{self._path.stem}.journal.jsonl")
        self._data: dict[str, dict[str, Any]] = {}
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load catalog from disk (no-op if file not exists)."""

        with self._lock:
            self._load_locked()

    def _load_locked(self) -> None:
        if self._loaded:
            return
        self._data = {}
        if self._path.exists():
            text = self._path.read_text(encoding="utf-8").strip()
            if text:
                try:
                    self._data = json.loads(text)
                except json.JSONDecodeError:
                    # Catalog file corrupted: keep a backup and start fresh
                    backup = self._path.with_suffix(self._path.suffix + ".broken")
                    backup.write_text(text, encoding="utf-8")
                    logger.warning("领地文件损坏，已备份到 %s", backup)
                    self._data = {}
        self._replay_journal()
        self._loaded = True

    def save(self, submission: ClaimSubmission) -> str:
        """Store an accepted claim and return its new id."""

        territory_id = uuid.uuid4().hex
        record = {
            "id": territory_id,
            "user_id": submission.owner_id,
            "name": None,
            "path": path_to_record(submission.polygon),
            "area": submission.area_sq_m,
            "point_count": submission.point_count,
            "started_at": submission.started_at_ms,
        }
        with self._lock:
            self._load_locked()
            self._data[territory_id] = record
            self._append_journal(territory_id, record)
        logger.info("领地已保存：%s（%.0f m²）", territory_id, submission.area_sq_m)
        return territory_id

    def rename(self, territory_id: str, name: str) -> bool:
        with self._lock:
            self._load_locked()
            record = self._data.get(territory_id)
            if record is None:
                return False
            record = {**record, "name": name}
            self._data[territory_id] = record
            self._append_journal(territory_id, record)
        return True

    def remove(self, territory_id: str) -> bool:
        with self._lock:
            self._load_locked()
            if territory_id not in self._data:
                return False
            del self._data[territory_id]
            self._append_journal(territory_id, None)
        return True

    def records(self) -> list[dict[str, Any]]:
        with self._lock:
            self._load_locked()
            return [dict(r) for r in self._data.values()]

    def territories(self, owner_id: str | None = None) -> list[FinalizedTerritory]:
        """All valid territories (optionally for one owner); broken records are skipped."""

        out: list[FinalizedTerritory] = []
        for record in self.records():
            try:
                territory = territory_from_record(record)
            except ValueError as exc:
                logger.warning("跳过无效领地记录：%s", exc)
                continue
            if owner_id is not None and territory.owner_id.lower() != owner_id.lower():
                continue
            out.append(territory)
        return out

    def seed_index(self, index: CollisionIndex) -> int:
        """Replace the index contents with every valid territory in the catalog."""

        territories = self.territories()
        index.replace_all(territories)
        logger.info("已从 %s 载入 %d 块领地", self._path, len(territories))
        return len(territories)

    def flush(self) -> None:
        """Persist the catalog to disk (atomic-ish) and clear the journal."""

        with self._lock:
            self._load_locked()
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self._path)
            self._clear_journal()

    def _append_journal(self, key: str, value: dict[str, Any] | None) -> None:
        """Append one update (None = deletion) to the journal."""

        self._journal_path.parent.mkdir(parents=True, exist_ok=True)
        with self._journal_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps({"k": key, "v": value}, ensure_ascii=False) + "\n")

    def _replay_journal(self) -> None:
        """Replay journal entries into memory (best-effort)."""

        if not self._journal_path.exists():
            return
        try:
            with self._journal_path.open("r", encoding="utf-8") as f:
                for line in f:
                    s = line.strip()
                    if not s:
                        continue
                    try:
                        rec = json.loads(s)
                    except json.JSONDecodeError:
                        # ignore broken tail lines
                        continue
                    k = rec.get("k")
                    v = rec.get("v")
                    if not isinstance(k, str):
                        continue
                    if v is None:
                        self._data.pop(k, None)
                    elif isinstance(v, dict):
                        self._data[k] = v
        except OSError:
            logger.warning("无法读取日志文件 %s", self._journal_path)

    def _clear_journal(self) -> None:
        try:
            if self._journal_path.exists():
                self._journal_path.unlink()
        except OSError:
            logger.warning("无法删除日志文件 %s", self._journal_path)
