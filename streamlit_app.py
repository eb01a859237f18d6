from __future__ import annotations

from pathlib import Path

import streamlit as st

from territory_claim.catalog import JsonTerritoryStore
from territory_claim.collision import CollisionIndex
from territory_claim.csv_io import load_fixes
from territory_claim.events import ClaimEventLog
from territory_claim.filtering import FilterParams
from territory_claim.inspect import inspect_fixes
from territory_claim.models import DEFAULT_TZ, Fix, ValidationThresholds
from territory_claim.replay import ReplaySummary, replay
from territory_claim.timeutils import format_epoch_ms
from territory_claim.tracker import ClaimTracker

DEFAULT_OWNER = "00000000-0000-0000-0000-000000000000"


@st.cache_data(show_spinner=False)
def _load_fixes(csv_path: str, mtime: float) -> list[Fix]:
    _ = mtime  # part of cache key so updated files reload automatically
    fixes, _ = load_fixes(csv_path)
    return fixes


def _run_replay(
    fixes: list[Fix],
    owner_id: str,
    store_path: str,
    thresholds: ValidationThresholds,
    filter_params: FilterParams,
) -> tuple[ReplaySummary, ClaimEventLog]:
    index = CollisionIndex()
    if store_path and Path(store_path).exists():
        JsonTerritoryStore(store_path).seed_index(index)
    event_log = ClaimEventLog()
    tracker = ClaimTracker(index, owner_id, filter_params=filter_params)
    tracker.add_listener(event_log)
    try:
        return replay(tracker, fixes, thresholds), event_log
    finally:
        tracker.close()


def main() -> None:
    st.set_page_config(page_title="圈地回放", layout="wide")
    st.title("圈地回放：用轨迹CSV检验一次闭环圈地")

    d = ValidationThresholds()
    with st.sidebar:
        st.subheader("数据")
        tz_name = st.text_input("时区（IANA）", value=DEFAULT_TZ)
        walk_csv = st.text_input("轨迹CSV路径", value="sample_data/walk.csv")
        store_path = st.text_input("已有领地 JSON（可留空）", value="territories.json")
        owner_id = st.text_input("用户ID", value=DEFAULT_OWNER)

        st.subheader("校验阈值")
        min_points = st.number_input("最少路径点数", value=d.min_points, min_value=3, step=1)
        min_distance = st.number_input("最短行走距离（米）", value=d.min_total_distance_m, step=10.0)
        min_area = st.number_input("最小面积（平方米）", value=d.min_area_sq_m, step=50.0)
        closure = st.number_input("闭环距离（米）", value=d.closure_distance_m, step=5.0)

        with st.expander("高级参数（通常不用改）", expanded=False):
            warn_kmh = st.number_input("超速警告（km/h）", value=d.speed_warn_kmh, step=1.0)
            abort_kmh = st.number_input("超速中止（km/h）", value=d.speed_abort_kmh, step=1.0)
            spacing = st.number_input("最小点间距（米）", value=d.min_sample_spacing_m, step=1.0)
            max_jump = st.number_input("GPS跳点阈值（米）", value=d.max_jump_m, step=10.0)
            ceiling = st.number_input("定位精度上限（米）", value=10.0, step=1.0)
            window = st.number_input("平滑窗口", value=5, min_value=1, step=1)

    p = Path(walk_csv)
    if not p.exists():
        st.error(f"找不到文件：{walk_csv!r}。可以先运行 scripts/generate_sample_walk_csv.py 生成示例数据。")
        return

    try:
        thresholds = ValidationThresholds(
            min_points=int(min_points),
            min_total_distance_m=float(min_distance),
            min_area_sq_m=float(min_area),
            closure_distance_m=float(closure),
            speed_warn_kmh=float(warn_kmh),
            speed_abort_kmh=float(abort_kmh),
            min_sample_spacing_m=float(spacing),
            max_jump_m=float(max_jump),
        )
        filter_params = FilterParams(accuracy_ceiling_m=float(ceiling), window=int(window))
    except ValueError as exc:
        st.error(str(exc))
        return

    try:
        fixes = _load_fixes(walk_csv, p.stat().st_mtime)
    except Exception as exc:
        st.exception(exc)
        return

    quality = inspect_fixes(
        fixes,
        accuracy_ceiling_m=filter_params.accuracy_ceiling_m,
        warn_kmh=thresholds.speed_warn_kmh,
        abort_kmh=thresholds.speed_abort_kmh,
    )
    summary, event_log = _run_replay(fixes, owner_id, store_path, thresholds, filter_params)

    st.subheader("结果")
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("最终状态", summary.state.value)
    c2.metric("路径点 / 定位", f"{summary.appended} / {summary.fixes}")
    c3.metric("闭环尝试", str(summary.attempts))
    area = summary.result.area_sq_m if summary.result is not None and summary.result.accepted else 0.0
    c4.metric("面积（m²）", f"{area:.0f}")
    if summary.result is not None:
        if summary.result.accepted:
            st.success(summary.result.detail)
        else:
            st.error(f"{summary.result.reason.value if summary.result.reason else ''}：{summary.result.detail}")
    else:
        st.info("轨迹没有回到起点，未触发闭环校验。")

    st.subheader("定位质量")
    q1, q2, q3, q4 = st.columns(4)
    q1.metric("精度超限", str(quality.above_ceiling + quality.unknown_accuracy))
    q2.metric("超速警告", str(quality.over_warn_speed))
    q3.metric("超速中止", str(quality.over_abort_speed))
    q4.metric("采样间隔中位数（秒）", f"{quality.cadence.median_s:.1f}" if quality.cadence else "-")
    with st.expander("丢弃统计", expanded=False):
        st.dataframe([{"reason": k, "count": v} for k, v in summary.discards.items()], use_container_width=True)

    st.subheader("提示日志")
    log_rows = [
        {
            "time": format_epoch_ms(e.timestamp_ms, tz_name),
            "level": e.level,
            "kind": e.kind,
            "message": e.message,
        }
        for e in event_log.entries
    ]
    st.dataframe(log_rows, use_container_width=True, height=360)
    st.download_button("导出日志", event_log.export_text(tz_name), file_name="claim_log.txt")

    with st.expander("路径点", expanded=False):
        st.dataframe(
            [{"lat": pt.latitude, "lon": pt.longitude} for pt in summary.path],
            use_container_width=True,
            height=360,
        )

    st.caption("说明：该界面把轨迹CSV按顺序送入一次圈地会话，结果只在本地展示，不会写入领地文件。")


if __name__ == "__main__":
    main()
