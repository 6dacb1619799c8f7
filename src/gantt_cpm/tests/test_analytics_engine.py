from datetime import date

import pandas as pd

from gantt_cpm.cpm.analytics_engine import (
    SCHEDULE_COLUMNS,
    add_float_bucket,
    compare_schedules,
    compute_kpis,
    ensure_analytics_fields,
    scenario_impact_summary,
    schedule_frame,
)
from gantt_cpm.cpm.float_paths import partition_float_paths
from gantt_cpm.cpm.solver import solve
from gantt_cpm.tests.conftest import build_network


def test_schedule_frame_columns_and_finish(chain_network):
    solved = solve(chain_network)
    df = schedule_frame(solved)

    assert list(df.columns) == SCHEDULE_COLUMNS + ["IsLeaf"]
    row = df.set_index("TaskID").loc["A"]
    assert row["ES"] == date(2026, 1, 5)
    assert row["EF"] == date(2026, 1, 8)
    assert row["Finish"] == date(2026, 1, 7)
    assert bool(row["IsCritical"])
    assert df["IsLeaf"].all()


def test_schedule_frame_float_paths(paths_network):
    solved = solve(paths_network)
    df = schedule_frame(solved, partition_float_paths(solved)).set_index("TaskID")

    assert df.loc["B", "FloatPath"] == 1
    assert df.loc["E", "FloatPath"] == 2


def test_schedule_frame_driving_links(paths_network):
    df = schedule_frame(solve(paths_network)).set_index("TaskID")

    assert df.loc["B", "DrivingPredecessor"] == "A"
    assert df.loc["B", "RelationshipFloat"] == 0
    assert df.loc["D", "DrivingPredecessor"] == "C"
    assert pd.isna(df.loc["A", "DrivingPredecessor"])
    assert pd.isna(df.loc["A", "RelationshipFloat"])


def test_baseline_variance(chain_network):
    solve(chain_network)
    chain_network.save_baseline()
    chain_network.set_duration("A", 5)
    solved = solve(chain_network)

    df = ensure_analytics_fields(schedule_frame(solved)).set_index("TaskID")
    assert df.loc["A", "FinishVariance"] == 2
    assert df.loc["B", "StartVariance"] == 2
    assert df.loc["A", "DurationCreep"] == 2
    assert bool(df.loc["A", "HasDurationCreep"])
    assert not df.loc["B", "HasDurationCreep"]


def test_kpis(chain_network):
    solved = solve(chain_network)
    kpis = compute_kpis(ensure_analytics_fields(schedule_frame(solved)))

    assert kpis["total_tasks"] == 2
    assert kpis["leaf_tasks"] == 2
    assert kpis["critical_tasks"] == 2
    assert kpis["behind_tasks"] == 0
    assert kpis["total_remaining"] == 8.0
    assert kpis["total_slippage_exposure"] == 8.0


def test_summary_rows_are_not_leaves():
    net = build_network([
        {"id": "S", "type": "summary"},
        {"id": "A", "duration": 2, "outline_level": 1},
    ])
    df = schedule_frame(solve(net)).set_index("TaskID")

    assert not df.loc["S", "IsLeaf"]
    assert compute_kpis(df.reset_index())["leaf_tasks"] == 1


def test_float_buckets(paths_network):
    df = add_float_bucket(schedule_frame(solve(paths_network))).set_index("TaskID")

    assert df.loc["A", "FloatBucket"] == "Critical (0)"
    assert df.loc["E", "FloatBucket"] == "1–5 days"
    assert add_float_bucket(pd.DataFrame({"x": [1]}))["FloatBucket"].iloc[0] == "Unknown"


def test_scenario_comparison(chain_network):
    master = solve(chain_network)
    twin = chain_network.copy()
    twin.set_duration("A", 5)
    scenario = solve(twin)

    diff = compare_schedules(master, scenario)
    assert list(diff["TaskID"]) == ["A", "B"]
    assert list(diff["DeltaFinish"]) == [4, 4]

    summary = scenario_impact_summary(master, scenario)
    assert summary["project_end_delta"] == 4
    assert summary["new_critical"] == [] and summary["removed_critical"] == []
    assert summary["avg_float_change"] == 0.0
    assert summary["activities_affected"] == 2
