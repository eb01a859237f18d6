"""Command-line interface for territory_claim.

Run:
    python -m territory_claim inspect --csv walk.csv
    python -m territory_claim replay --csv walk.csv --owner <uuid> --store territories.json --save
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from territory_claim.catalog import JsonTerritoryStore, to_wkt
from territory_claim.collision import CollisionIndex
from territory_claim.csv_io import load_fixes
from territory_claim.events import ClaimEventLog
from territory_claim.filtering import FilterParams
from territory_claim.inspect import inspect_fixes
from territory_claim.models import DEFAULT_TZ, Fix, ValidationThresholds
from territory_claim.replay import replay
from territory_claim.timeutils import epoch_ms_from_text, format_epoch_ms
from territory_claim.tracker import ClaimTracker

DEFAULT_OWNER = "00000000-0000-0000-0000-000000000000"


def _filter_range(fixes: list[Fix], args: argparse.Namespace) -> list[Fix]:
    if args.range_start is None and args.range_end is None:
        return fixes
    start_ms = epoch_ms_from_text(args.range_start, args.tz) if args.range_start else None
    end_ms = epoch_ms_from_text(args.range_end, args.tz) if args.range_end else None
    if start_ms is not None:
        fixes = [f for f in fixes if f.timestamp_ms >= start_ms]
    if end_ms is not None:
        fixes = [f for f in fixes if f.timestamp_ms <= end_ms]
    return fixes


def _thresholds_from_args(args: argparse.Namespace) -> ValidationThresholds:
    return ValidationThresholds(
        min_points=args.min_points,
        min_total_distance_m=args.min_distance_m,
        min_area_sq_m=args.min_area_sq_m,
        closure_distance_m=args.closure_distance_m,
        speed_warn_kmh=args.speed_warn_kmh,
        speed_abort_kmh=args.speed_abort_kmh,
        min_sample_spacing_m=args.min_spacing_m,
        max_jump_m=args.max_jump_m,
    )


def _cmd_inspect(args: argparse.Namespace) -> int:
    fixes, summary = load_fixes(args.csv)
    fixes = _filter_range(fixes, args)
    res = inspect_fixes(fixes, accuracy_ceiling_m=args.accuracy_ceiling)

    print("### CSV字段")
    print(", ".join(summary.fieldnames))
    print()

    print("### 行数")
    print(f"total_rows={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")
    print()

    if res.min_time_ms is not None and res.max_time_ms is not None:
        print("### 时间范围（本地时区）")
        print(f"start={format_epoch_ms(res.min_time_ms, args.tz)}, end={format_epoch_ms(res.max_time_ms, args.tz)}")
        print()

    if res.cadence is not None:
        print("### 采样间隔（秒）")
        print(
            f"count={res.cadence.count}, min={res.cadence.min_s:.3f}, median={res.cadence.median_s:.3f}, "
            f"p95={res.cadence.p95_s:.3f}, max={res.cadence.max_s:.3f}"
        )
        print()

    if res.bbox is not None:
        print("### 经纬度范围（粗略）")
        print(f"lat=[{res.bbox.min_lat}, {res.bbox.max_lat}], lon=[{res.bbox.min_lon}, {res.bbox.max_lon}]")
        print(f"原始轨迹长度≈{res.raw_length_m:.0f} m")
        print()

    print("### 定位质量")
    print(
        f"精度未知={res.unknown_accuracy}，精度超过 {args.accuracy_ceiling:g}m={res.above_ceiling}，"
        f"速度未知={res.unknown_speed}，超速警告={res.over_warn_speed}，超速中止={res.over_abort_speed}，"
        f"重复时间戳={res.duplicate_timestamps}"
    )
    print()

    if args.json:
        payload = asdict(res) | {
            "rows_total": summary.rows_total,
            "rows_parsed": summary.rows_parsed,
            "rows_skipped": summary.rows_skipped,
            "fieldnames": list(summary.fieldnames),
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _cmd_replay(args: argparse.Namespace) -> int:
    if args.save and not args.store:
        print("--save 需要同时指定 --store", file=sys.stderr)
        return 2
    try:
        thresholds = _thresholds_from_args(args)
        filter_params = FilterParams(accuracy_ceiling_m=args.accuracy_ceiling, window=args.filter_window)
    except ValueError as exc:
        print(f"参数错误：{exc}", file=sys.stderr)
        return 2

    fixes, _ = load_fixes(args.csv)
    fixes = _filter_range(fixes, args)

    index = CollisionIndex()
    store: JsonTerritoryStore | None = None
    if args.store:
        store = JsonTerritoryStore(args.store)
        store.seed_index(index)

    event_log = ClaimEventLog()
    tracker = ClaimTracker(
        index,
        args.owner,
        filter_params=filter_params,
        collaborator_timeout_s=args.timeout_seconds,
    )
    tracker.add_listener(event_log)
    try:
        res = replay(tracker, fixes, thresholds)

        print("### 回放")
        print(f"fixes={res.fixes}/{len(fixes)}, path_points={res.appended}, attempts={res.attempts}")
        print(f"丢弃：{res.discards or '无'}")
        print(f"最终状态：{res.state.value}")
        if res.result is not None:
            reason = res.result.reason.value if res.result.reason is not None else "-"
            print(f"结果：{'通过' if res.result.accepted else '未通过'}（{reason}）{res.result.detail}")
        print()

        if args.show_advisories and res.advisories:
            print("### 提示")
            for a in res.advisories:
                print(f"[{format_epoch_ms(a.timestamp_ms, args.tz)}] [{a.level.upper()}] {a.message}")
            print()

        code = 0 if res.accepted else 1
        if args.save and store is not None:
            if res.accepted:
                territory = tracker.commit(store)
                if territory is None:
                    print("领地保存失败", file=sys.stderr)
                    code = 1
                else:
                    store.flush()
                    print(f"已保存领地：{territory.territory_id}（{territory.formatted_area}）-> {store.path}")
            else:
                print("圈地未通过，不保存")

        if args.log_out:
            out = Path(args.log_out)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(event_log.export_text(args.tz), encoding="utf-8")
            print(f"已导出日志：{out}")
        return code
    finally:
        tracker.close()


def _cmd_territories(args: argparse.Namespace) -> int:
    store = JsonTerritoryStore(args.store)
    territories = store.territories(owner_id=args.owner)
    print(f"领地数={len(territories)}（{store.path}）")
    for t in territories:
        print(f"{t.territory_id}  owner={t.owner_id}  {t.display_name}  {t.formatted_area}  points={len(t.polygon)}")
        if args.wkt:
            print(f"  {to_wkt(t.polygon)}")
    return 0


def _add_threshold_args(p: argparse.ArgumentParser) -> None:
    d = ValidationThresholds()
    p.add_argument("--min-points", type=int, default=d.min_points, help="闭环所需最少路径点数")
    p.add_argument("--min-distance-m", type=float, default=d.min_total_distance_m, help="最短行走距离（米）")
    p.add_argument("--min-area-sq-m", type=float, default=d.min_area_sq_m, help="最小领地面积（平方米）")
    p.add_argument("--closure-distance-m", type=float, default=d.closure_distance_m, help="回到起点的闭环距离（米）")
    p.add_argument("--speed-warn-kmh", type=float, default=d.speed_warn_kmh, help="超速警告阈值（km/h）")
    p.add_argument("--speed-abort-kmh", type=float, default=d.speed_abort_kmh, help="超速中止阈值（km/h）")
    p.add_argument("--min-spacing-m", type=float, default=d.min_sample_spacing_m, help="相邻路径点最小间距（米）")
    p.add_argument("--max-jump-m", type=float, default=d.max_jump_m, help="超过该距离的跳变视为GPS漂移（米）")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="territory_claim")
    p.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ins = sub.add_parser("inspect", help="分析轨迹CSV的时间范围/采样间隔/定位质量")
    p_ins.add_argument("--csv", type=str, default="walk.csv", help="输入CSV路径")
    p_ins.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA），默认 Asia/Shanghai")
    p_ins.add_argument("--accuracy-ceiling", type=float, default=10.0, help="可接受的最大定位精度（米）")
    p_ins.add_argument("--range-start", type=str, default=None, help="仅分析该时间之后的数据")
    p_ins.add_argument("--range-end", type=str, default=None, help="仅分析该时间之前的数据")
    p_ins.add_argument("--json", action="store_true", help="额外输出JSON（便于后处理）")
    p_ins.set_defaults(func=_cmd_inspect)

    p_rep = sub.add_parser("replay", help="用轨迹CSV回放一次圈地会话")
    p_rep.add_argument("--csv", type=str, default="walk.csv", help="输入CSV路径")
    p_rep.add_argument("--owner", type=str, default=DEFAULT_OWNER, help="圈地用户ID（UUID）")
    p_rep.add_argument("--store", type=str, default=None, help="领地JSON文件（载入已有领地用于碰撞检测）")
    p_rep.add_argument("--save", action="store_true", help="通过后把新领地写入 --store")
    p_rep.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA）")
    p_rep.add_argument("--range-start", type=str, default=None, help="仅回放该时间之后的数据（例如 2025-01-01 08:00:00）")
    p_rep.add_argument("--range-end", type=str, default=None, help="仅回放该时间之前的数据")
    p_rep.add_argument("--accuracy-ceiling", type=float, default=10.0, help="可接受的最大定位精度（米）")
    p_rep.add_argument("--filter-window", type=int, default=5, help="平滑窗口大小（1 表示不平滑）")
    p_rep.add_argument("--timeout-seconds", type=float, default=3.0, help="碰撞检测/保存的最长等待（秒）")
    p_rep.add_argument("--show-advisories", action="store_true", help="打印回放过程中的全部提示")
    p_rep.add_argument("--log-out", type=str, default=None, help="导出圈地日志文本")
    _add_threshold_args(p_rep)
    p_rep.set_defaults(func=_cmd_replay)

    p_ter = sub.add_parser("territories", help="列出领地JSON文件中的领地")
    p_ter.add_argument("--store", type=str, default="territories.json", help="领地JSON文件")
    p_ter.add_argument("--owner", type=str, default=None, help="只列出该用户的领地")
    p_ter.add_argument("--wkt", action="store_true", help="同时输出 WKT 多边形")
    p_ter.set_defaults(func=_cmd_territories)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
