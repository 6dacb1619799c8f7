# gantt_cpm/cpm/analytics_engine.py

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import numpy as np
import pandas as pd

from gantt_cpm.cpm.calendar_engine import last_work_day, work_days_between
from gantt_cpm.cpm.float_paths import driving_links
from gantt_cpm.cpm.network import ROLLUP_TYPES
from gantt_cpm.cpm.solver import SolvedNetwork
from gantt_cpm.errors import InvalidCalendar


SCHEDULE_COLUMNS = [
    "TaskID",
    "Name",
    "Type",
    "OutlineLevel",
    "Duration",
    "PercentComplete",
    "PlannedPct",
    "ES",
    "EF",
    "Finish",
    "LS",
    "LF",
    "TotalFloat",
    "FreeFloat",
    "IsCritical",
    "IsSplit",
    "RemainingDuration",
    "BL_Start",
    "BL_Finish",
    "BL_Duration",
    "StartVariance",
    "FinishVariance",
    "FloatPath",
    "DrivingPredecessor",
    "RelationshipFloat",
]


def schedule_frame(solved: SolvedNetwork, float_paths: Optional[Mapping[str, int]] = None) -> pd.DataFrame:
    """
    One row per activity, outline order.

    ES/EF/LS/LF are the solver's boundaries; 'Finish' is the last day of
    work for display. Baseline columns come from the network's active
    baseline; variances are work days (positive = later than baseline).
    DrivingPredecessor is set only when the nearest link has no float.
    """
    net = solved.network
    links = driving_links(solved)
    idx = net.active_baseline_index
    rows = []
    for a in net:
        d = solved.dates[a.id]
        bl = a.baseline(idx)
        pred_id, rf = links.get(a.id, (None, np.nan))
        try:
            cal = net.calendar_for(a)
        except InvalidCalendar:
            cal = None

        finish = None
        if cal is not None and d.ef is not None and d.es is not None:
            finish = d.es if d.ef == d.es else last_work_day(cal, d.ef)

        start_var = finish_var = np.nan
        if cal is not None and bl is not None:
            if bl.start is not None and d.es is not None:
                start_var = work_days_between(cal, bl.start, d.es)
            if bl.finish is not None and d.ef is not None:
                finish_var = work_days_between(cal, bl.finish, d.ef)

        rows.append({
            "TaskID": a.id,
            "Name": a.name,
            "Type": a.type.value,
            "OutlineLevel": a.outline_level,
            "Duration": d.duration if d.duration is not None else a.duration,
            "PercentComplete": d.percent_complete if d.percent_complete is not None else a.percent_complete,
            "PlannedPct": d.planned_percent,
            "ES": d.es,
            "EF": d.ef,
            "Finish": finish,
            "LS": d.ls,
            "LF": d.lf,
            "TotalFloat": d.total_float,
            "FreeFloat": d.free_float,
            "IsCritical": bool(d.critical),
            "IsSplit": bool(d.is_split),
            "RemainingDuration": d.remaining_duration,
            "BL_Start": bl.start if bl else None,
            "BL_Finish": bl.finish if bl else None,
            "BL_Duration": bl.duration if bl else np.nan,
            "StartVariance": start_var,
            "FinishVariance": finish_var,
            "FloatPath": (float_paths or {}).get(a.id, np.nan),
            "DrivingPredecessor": pred_id if rf == 0 else None,
            "RelationshipFloat": rf,
        })

    df = pd.DataFrame(rows, columns=SCHEDULE_COLUMNS)
    df["IsLeaf"] = ~df["Type"].isin([t.value for t in ROLLUP_TYPES])
    return df


def ensure_analytics_fields(df: pd.DataFrame) -> pd.DataFrame:
    """
    Derived fields on top of schedule_frame output.

    Adds / ensures:
      - ScheduleVariance    (PercentComplete - PlannedPct)
      - DurationCreep       (Duration - BL_Duration)
      - HasDurationCreep    (bool)
      - Remaining           (remaining work days)
      - CriticalityWeight   (1.0 critical, 0.6 for float <= 1 day, else 0.1)
      - SlippageExposure    (Remaining * CriticalityWeight)
    """

    df = df.copy()

    for col in ["PercentComplete", "PlannedPct", "Duration", "BL_Duration", "TotalFloat"]:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")

    # ------------------------------------------------------------------
    # 1. ScheduleVariance
    # ------------------------------------------------------------------
    if "ScheduleVariance" not in df.columns:
        if "PlannedPct" in df.columns:
            df["ScheduleVariance"] = df["PercentComplete"].fillna(0) - df["PlannedPct"].fillna(0)
        else:
            df["ScheduleVariance"] = 0.0

    # ------------------------------------------------------------------
    # 2. Duration Creep
    # ------------------------------------------------------------------
    if "BL_Duration" in df.columns:
        creep = df["Duration"] - df["BL_Duration"]
        df["DurationCreep"] = creep.fillna(0.0)
    else:
        df["DurationCreep"] = 0.0
    df["HasDurationCreep"] = df["DurationCreep"] > 0

    # ------------------------------------------------------------------
    # 3. Remaining
    # ------------------------------------------------------------------
    if "Remaining" not in df.columns:
        if "RemainingDuration" in df.columns:
            rem = pd.to_numeric(df["RemainingDuration"], errors="coerce")
        else:
            rem = pd.Series(np.nan, index=df.index)
        pct = df["PercentComplete"].fillna(0) / 100.0
        fallback = (1 - pct).clip(lower=0) * df["Duration"].fillna(0)
        df["Remaining"] = rem.fillna(fallback)

    # ------------------------------------------------------------------
    # 4. CriticalityWeight
    # ------------------------------------------------------------------
    def _crit_weight(fl):
        if pd.isna(fl):
            return 0.1
        if fl <= 0:
            return 1.0
        if fl <= 1:
            return 0.6
        return 0.1

    df["CriticalityWeight"] = df["TotalFloat"].map(_crit_weight)

    # ------------------------------------------------------------------
    # 5. SlippageExposure
    # ------------------------------------------------------------------
    df["SlippageExposure"] = df["Remaining"].fillna(0) * df["CriticalityWeight"]

    return df


def compute_kpis(df: pd.DataFrame) -> Dict[str, Any]:
    """
    High-level schedule KPIs over leaf activities.

    Returns a dict with:
      - total_tasks
      - leaf_tasks
      - critical_tasks
      - behind_tasks
      - avg_percent_complete
      - total_remaining
      - total_slippage_exposure
    """

    out: Dict[str, Any] = {}

    out["total_tasks"] = int(len(df))

    leaves = df[df["IsLeaf"]] if "IsLeaf" in df.columns else df
    out["leaf_tasks"] = int(len(leaves))

    if "IsCritical" in leaves.columns:
        out["critical_tasks"] = int(leaves["IsCritical"].sum())
    else:
        out["critical_tasks"] = 0

    if "ScheduleVariance" in leaves.columns:
        out["behind_tasks"] = int((leaves["ScheduleVariance"] < 0).sum())
    else:
        out["behind_tasks"] = 0

    if len(leaves):
        out["avg_percent_complete"] = float(leaves["PercentComplete"].fillna(0).mean())
    else:
        out["avg_percent_complete"] = 0.0

    if "Remaining" in leaves.columns:
        out["total_remaining"] = float(leaves["Remaining"].fillna(0).sum())
    else:
        out["total_remaining"] = 0.0

    if "SlippageExposure" in leaves.columns:
        out["total_slippage_exposure"] = float(leaves["SlippageExposure"].fillna(0).sum())
    else:
        out["total_slippage_exposure"] = 0.0

    return out


def add_float_bucket(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add a 'FloatBucket' column grouping total float into friendly buckets.
    """

    df = df.copy()

    if "TotalFloat" not in df.columns:
        df["FloatBucket"] = "Unknown"
        return df

    f = pd.to_numeric(df["TotalFloat"], errors="coerce")

    bins = [-1e9, -0.01, 0.01, 1, 5, 10, 999999999]
    labels = [
        "Negative float",
        "Critical (0)",
        "≤ 1 day",
        "1–5 days",
        "5–10 days",
        "> 10 days",
    ]
    df["FloatBucket"] = pd.cut(f, bins=bins, labels=labels, include_lowest=True).astype(str)
    df.loc[f.isna(), "FloatBucket"] = "Unknown"

    return df


# ------------------------------------------------------------------
# What-if comparison
# ------------------------------------------------------------------

def compare_schedules(master: SolvedNetwork, scenario: SolvedNetwork) -> pd.DataFrame:
    """
    Activities whose dates, float or criticality differ between two solves
    (e.g. a network and an edited copy). Deltas are calendar days.
    """
    rows = []
    for aid in scenario.order:
        if aid not in master.dates:
            continue
        m, s = master.dates[aid], scenario.dates[aid]
        d_start = (s.es - m.es).days if m.es and s.es else 0
        d_finish = (s.ef - m.ef).days if m.ef and s.ef else 0
        if d_start or d_finish or m.critical != s.critical or m.total_float != s.total_float:
            rows.append({
                "TaskID": aid,
                "Name": scenario.network.get(aid).name,
                "MasterES": m.es,
                "MasterEF": m.ef,
                "ScenarioES": s.es,
                "ScenarioEF": s.ef,
                "DeltaStart": d_start,
                "DeltaFinish": d_finish,
                "MasterCritical": m.critical,
                "ScenarioCritical": s.critical,
                "MasterTF": m.total_float,
                "ScenarioTF": s.total_float,
            })
    return pd.DataFrame(rows)


def scenario_impact_summary(master: SolvedNetwork, scenario: SolvedNetwork) -> Dict[str, Any]:
    """
    Returns a dict with:
      - project_end_delta (calendar days)
      - new_critical / removed_critical (id lists)
      - avg_float_change
      - activities_affected
    """
    common = [i for i in scenario.order if i in master.dates]
    new_crit = [i for i in common if scenario.dates[i].critical and not master.dates[i].critical]
    removed = [i for i in common if master.dates[i].critical and not scenario.dates[i].critical]
    tf_diffs = [
        scenario.dates[i].total_float - master.dates[i].total_float
        for i in common
        if scenario.dates[i].total_float is not None and master.dates[i].total_float is not None
    ]
    return {
        "project_end_delta": (scenario.project_finish - master.project_finish).days,
        "new_critical": new_crit,
        "removed_critical": removed,
        "avg_float_change": float(np.mean(tf_diffs)) if tf_diffs else 0.0,
        "activities_affected": int(len(compare_schedules(master, scenario))),
    }
