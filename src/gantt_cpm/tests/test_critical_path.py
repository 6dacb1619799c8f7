from datetime import date

import pytest

from gantt_cpm.cpm.calendar_engine import BUILTIN_CALENDARS, Calendar, add_work_days, last_work_day
from gantt_cpm.cpm.network import (
    ActivityProgress,
    DateConstraint,
    NetworkState,
    PredecessorLink,
    RelationType,
    format_predecessors,
    parse_predecessor_text,
)
from gantt_cpm.cpm.solver import (
    SolvedNetwork,
    SolveError,
    SolveErrorKind,
    UnresolvedPredecessor,
    solve,
)
from gantt_cpm.errors import CycleDetected
from gantt_cpm.tests.conftest import MONDAY, build_network

CAL5 = BUILTIN_CALENDARS["5d"]


def d(day, month=1):
    return date(2026, month, day)


# ----------------------------------------------------------------
# 1. PARSING TESTS
# ----------------------------------------------------------------
def test_parse_predecessor_text():
    # Standard FS
    assert parse_predecessor_text("10") == [PredecessorLink("10")]
    assert parse_predecessor_text("10FS") == [PredecessorLink("10", RelationType.FS, 0)]

    # Lags (positive / negative)
    assert parse_predecessor_text("10FS+2d") == [PredecessorLink("10", RelationType.FS, 2)]
    assert parse_predecessor_text("10FS - 3 d") == [PredecessorLink("10", RelationType.FS, -3)]

    # Types (SS, FF, SF)
    assert parse_predecessor_text("20SS+5") == [PredecessorLink("20", RelationType.SS, 5)]
    assert parse_predecessor_text("30FF") == [PredecessorLink("30", RelationType.FF, 0)]
    assert parse_predecessor_text("A10 SF-1") == [PredecessorLink("A10", RelationType.SF, -1)]

    # Multiple dependencies
    res = parse_predecessor_text("10FS, 20SS+2; B")
    assert PredecessorLink("10") in res
    assert PredecessorLink("20", RelationType.SS, 2) in res
    assert PredecessorLink("B") in res


def test_parse_predecessor_text_empty_and_invalid():
    assert parse_predecessor_text(None) == []
    assert parse_predecessor_text("  ") == []
    with pytest.raises(ValueError, match="Invalid predecessor format"):
        parse_predecessor_text("A +")


def test_format_predecessors_round_trip():
    text = "A; B SS+2; C FF-1"
    assert format_predecessors(parse_predecessor_text(text)) == text


# ----------------------------------------------------------------
# 2. CORE CPM LOGIC TESTS
# ----------------------------------------------------------------

def run_cpm_on_data(data, status_date=None, **kwargs):
    """Helper to build a network from row dicts and solve it"""
    net = build_network(data, **kwargs)
    solved = solve(net, status_date)
    assert isinstance(solved, SolvedNetwork)
    return net, solved


def test_simple_fs_chain():
    """
    A (3 days) -> B (5 days), Monday start, 5-day calendar.
    Expected:
      A: ES Mon 5, last work day Wed 7
      B: ES Thu 8, last work day Wed 14
      Both critical with zero float.
    """
    data = [
        {"id": "A", "duration": 3},
        {"id": "B", "duration": 5, "preds": "A"},
    ]
    net, solved = run_cpm_on_data(data)
    a, b = solved["A"], solved["B"]

    assert a.es == d(5) and last_work_day(CAL5, a.ef) == d(7)
    assert b.es == d(8) and last_work_day(CAL5, b.ef) == d(14)
    assert a.total_float == 0 and b.total_float == 0
    assert solved.critical_ids == ["A", "B"]
    assert solved.project_finish == d(15)
    assert solved.project_duration == 8


def test_ss_dependency_with_lag():
    """
    A (10), B (5) depends on A SS+2.
    Expected:
      B ES = A ES + 2 work days = Wed 7
      B total float = 3 (project ends with A)
    """
    data = [
        {"id": "A", "duration": 10},
        {"id": "B", "duration": 5, "preds": "A SS+2"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["A"].ef == d(19)
    assert solved["B"].es == d(7)
    assert solved["B"].ef == d(14)
    assert solved["B"].total_float == 3
    assert solved["A"].total_float == 0


def test_ff_dependency():
    """
    A (10), B (2) depends on A FF.
    Expected:
      B finishes with A, so B starts 2 work days before A's finish.
    """
    data = [
        {"id": "A", "duration": 10},
        {"id": "B", "duration": 2, "preds": "A FF"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["B"].ef == solved["A"].ef == d(19)
    assert solved["B"].es == d(15)
    assert solved["B"].critical


def test_sf_dependency_with_lag():
    """B (2) SF+3 from A: B must finish 3 work days after A starts."""
    data = [
        {"id": "A", "duration": 5},
        {"id": "B", "duration": 2, "preds": "A SF+3"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["B"].ef == add_work_days(CAL5, solved["A"].es, 3)
    assert solved["B"].es == d(6)


def test_negative_lag_overlaps():
    data = [
        {"id": "A", "duration": 5},
        {"id": "B", "duration": 3, "preds": "A-2"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["A"].ef == d(12)
    assert solved["B"].es == d(8)


def test_convergence_and_free_float():
    """
    A (5) -> C
    B (10) -> C (2)
    Expected:
      C ES = max(A EF, B EF) = Mon 19
      A has 5 days of total and free float; B is critical.
    """
    data = [
        {"id": "A", "duration": 5},
        {"id": "B", "duration": 10},
        {"id": "C", "duration": 2, "preds": "A; B"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["C"].es == d(19)
    assert solved["A"].total_float == 5
    assert solved["A"].free_float == 5
    assert solved["B"].total_float == 0 and solved["B"].free_float == 0
    assert set(solved.critical_ids) == {"B", "C"}
    assert [p for p, _ in solved.predecessors_of("C")] == ["A", "B"]
    assert [s for s, _ in solved.successors_of("A")] == ["C"]


def test_lag_on_successor_calendar():
    """Lag counts in the successor's calendar: a 7-day successor may start on a weekend."""
    data = [
        {"id": "A", "duration": 3},
        {"id": "B", "duration": 2, "preds": "A+1", "calendar_id": "7d"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["B"].es == d(9)
    assert solved["B"].ef == d(11)


def test_milestone_has_equal_start_and_finish():
    data = [
        {"id": "A", "duration": 3},
        {"id": "B", "duration": 5, "preds": "A"},
        {"id": "M", "type": "milestone", "duration": 4, "preds": "B"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["M"].es == solved["M"].ef == d(15)
    assert solved["M"].duration == 0
    assert solved["M"].critical


# ----------------------------------------------------------------
# 3. CONSTRAINTS AND ACTUALS
# ----------------------------------------------------------------
def test_snet_constraint_delays_start():
    data = [
        {"id": "A", "duration": 2, "constraint": DateConstraint("SNET", d(14))},
        {"id": "B", "duration": 2, "constraint": DateConstraint("SNET", d(10))},  # Saturday
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["A"].es == d(14)
    assert solved["B"].es == d(12)


def test_mso_constraint_overrides_logic():
    data = [
        {"id": "A", "duration": 5},
        {"id": "B", "duration": 2, "preds": "A", "constraint": DateConstraint("MSO", d(6))},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["B"].es == d(6)
    assert solved["B"].ef == d(8)


def test_actual_dates_pin_finished_work():
    data = [
        {"id": "A", "duration": 3, "percent_complete": 100,
         "progress": ActivityProgress(actual_start=d(6), actual_finish=d(7))},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["A"].es == d(6)
    assert solved["A"].ef == d(8)


def test_actual_finish_on_friday_rolls_past_weekend():
    data = [
        {"id": "A", "duration": 3, "percent_complete": 100,
         "progress": ActivityProgress(actual_start=d(7), actual_finish=d(9))},
        {"id": "B", "duration": 2, "preds": "A"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["A"].ef == d(12)
    assert solved["B"].es == d(12)


def test_completed_milestone_keeps_zero_width():
    data = [
        {"id": "M", "type": "milestone", "percent_complete": 100,
         "progress": ActivityProgress(actual_start=d(7), actual_finish=d(7))},
        {"id": "B", "duration": 2, "preds": "M"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved["M"].es == solved["M"].ef == d(7)
    assert solved["B"].es == d(7)


def test_project_finish_allows_negative_float():
    """A deadline earlier than the natural finish drives float below zero."""
    data = [
        {"id": "A", "duration": 3},
        {"id": "B", "duration": 5, "preds": "A"},
    ]
    _, solved = run_cpm_on_data(data, project_finish=d(13))

    assert solved["B"].lf == d(13)
    assert solved["B"].total_float == -2
    assert solved["A"].total_float == -2
    assert solved["A"].critical and solved["B"].critical


# ----------------------------------------------------------------
# 4. STATUS DATE
# ----------------------------------------------------------------
def test_in_progress_work_is_split_at_status_date():
    """
    A (10 days) 40% complete, status Friday 9.
    Expected:
      4 days done Mon 5..Thu 8, remaining 6 days from Mon 12,
      last remaining work day Mon 19.
      B (FS A) starts after the remaining segment.
    """
    data = [
        {"id": "A", "duration": 10, "percent_complete": 40},
        {"id": "B", "duration": 3, "preds": "A"},
    ]
    _, solved = run_cpm_on_data(data, status_date=d(9))
    a = solved["A"]

    assert a.es == d(5)
    assert a.done_finish == d(9)
    assert a.remaining_start == d(12)
    assert a.remaining_duration == 6
    assert last_work_day(CAL5, a.ef) == d(19)
    assert a.ef == a.remaining_finish == d(20)
    assert a.is_split
    assert solved["B"].es == d(20)
    assert 0 < a.planned_percent < 100


def test_remaining_duration_override():
    data = [
        {"id": "A", "duration": 10, "percent_complete": 40,
         "progress": ActivityProgress(remaining_duration=3)},
    ]
    _, solved = run_cpm_on_data(data, status_date=d(9))

    assert solved["A"].remaining_start == d(12)
    assert solved["A"].ef == d(15)


def test_suspended_work_resumes_on_resume_date():
    data = [
        {"id": "A", "duration": 10, "percent_complete": 30,
         "progress": ActivityProgress(suspend_date=d(9), resume_date=d(14))},
    ]
    _, solved = run_cpm_on_data(data, status_date=d(12))
    a = solved["A"]

    assert a.done_finish == d(9)
    assert a.remaining_start == d(14)
    assert a.remaining_duration == 6
    assert a.ef == d(22)
    assert a.is_split


def test_unstarted_work_moves_past_status_date():
    data = [
        {"id": "A", "duration": 1, "percent_complete": 100,
         "progress": ActivityProgress(actual_start=d(5), actual_finish=d(6))},
        {"id": "B", "duration": 3, "preds": "A"},
        {"id": "C", "duration": 3},
    ]
    _, solved = run_cpm_on_data(data, status_date=d(9))

    assert solved["A"].ef == d(7)
    assert solved["B"].es == d(12)
    assert solved["C"].es == d(12)


def test_status_date_is_taken_from_argument_only(chain_network):
    chain_network.status_date = d(9)
    solved = solve(chain_network)

    assert solved.status_date is None
    assert solved["A"].es == MONDAY
    assert solved["A"].planned_percent is None


# ----------------------------------------------------------------
# 5. GRAPH PROBLEMS
# ----------------------------------------------------------------
def test_cycle_returns_error_and_keeps_dates(chain_network):
    solved = solve(chain_network)
    before = {a.id: a.dates for a in chain_network}

    # close the loop behind the network's back
    chain_network.get("A").predecessors.append(PredecessorLink("B"))
    result = solve(chain_network)

    assert isinstance(result, SolveError)
    assert result.kind == SolveErrorKind.CYCLE_DETECTED
    assert set(result.activity_ids) == {"A", "B"}
    assert "Graph is not acyclic" in result.message
    assert {a.id: a.dates for a in chain_network} == before
    assert before["B"] is solved["B"]


def test_cycle_rejected_on_edit(chain_network):
    with pytest.raises(CycleDetected, match="Graph is not acyclic"):
        chain_network.add_predecessor("A", "B")


def test_dangling_predecessor_is_reported_and_skipped():
    data = [
        {"id": "A", "duration": 3},
        {"id": "B", "duration": 2, "preds": "A; ZZZ"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved.unresolved == (UnresolvedPredecessor("B", "ZZZ"),)
    assert "ZZZ" in solved.unresolved[0].message
    assert solved["B"].es == d(8)


def test_invalid_calendar_leaves_dates_unset():
    dead = Calendar("dead", work_days=(False,) * 7)
    data = [
        {"id": "X", "duration": 2, "calendar_id": "dead"},
        {"id": "Y", "duration": 2, "preds": "X"},
        {"id": "Z", "duration": 2, "calendar_id": "missing"},
    ]
    _, solved = run_cpm_on_data(data, calendars=[dead])

    assert not solved["X"].available
    assert not solved["Z"].available
    assert {i.activity_id for i in solved.calendar_issues} == {"X", "Z"}
    assert solved["Y"].es == MONDAY
    assert solved["Y"].total_float == 0


# ----------------------------------------------------------------
# 6. SUMMARIES
# ----------------------------------------------------------------
def test_summary_and_project_rollup():
    data = [
        {"id": "P", "type": "project"},
        {"id": "S", "type": "summary", "outline_level": 0},
        {"id": "A", "duration": 3, "outline_level": 1, "percent_complete": 50, "work_hours": 30},
        {"id": "B", "duration": 5, "outline_level": 1, "preds": "A", "work_hours": 10},
        {"id": "C", "duration": 2, "outline_level": 0},
    ]
    _, solved = run_cpm_on_data(data)
    s, p = solved["S"], solved["P"]

    assert s.es == d(5) and s.ef == d(15)
    assert s.duration == 8
    assert s.percent_complete == 37.5
    assert s.work_hours == 40
    assert s.total_float == 0 and s.critical
    assert p.es == d(5) and p.ef == d(15)
    assert solved["C"].total_float == 6
    assert "S" not in solved.order


def test_links_to_summary_rows_are_ignored():
    data = [
        {"id": "S", "type": "summary"},
        {"id": "A", "duration": 3, "outline_level": 1},
        {"id": "B", "duration": 2, "preds": "S"},
    ]
    _, solved = run_cpm_on_data(data)

    assert solved.unresolved == ()
    assert solved["B"].es == MONDAY


# ----------------------------------------------------------------
# 7. PASS PROPERTIES
# ----------------------------------------------------------------
MIXED = [
    {"id": "A", "duration": 4},
    {"id": "B", "duration": 6, "preds": "A SS+1"},
    {"id": "C", "duration": 2, "preds": "A-1"},
    {"id": "D", "duration": 3, "preds": "B FF+2; C"},
    {"id": "E", "duration": 5, "preds": "C SF+4"},
    {"id": "F", "duration": 1, "preds": "D; E+3"},
    {"id": "G", "duration": 7},
]


def test_solve_is_idempotent():
    net = build_network(MIXED)
    first = solve(net)
    second = solve(net)

    assert dict(first.dates) == dict(second.dates)
    assert first.order == second.order


def test_pass_invariants_hold():
    net = build_network(MIXED)
    solved = solve(net)

    floats = [solved[i].total_float for i in solved.order]
    assert min(floats) == 0
    assert all(tf >= 0 for tf in floats)

    for aid in solved.order:
        x = solved[aid]
        assert add_work_days(CAL5, x.es, x.duration) == x.ef
        assert x.es <= x.ls and x.ef <= x.lf
        assert 0 <= x.free_float <= x.total_float

    for pid, sid, link in solved.edges:
        if link.relation == RelationType.FS:
            assert solved[sid].es >= add_work_days(CAL5, solved[pid].ef, link.lag)


def test_commit_false_leaves_network_untouched(chain_network):
    solved = solve(chain_network, commit=False)

    assert not solved.committed
    assert solved["B"].es == d(8)
    assert all(a.dates is None for a in chain_network)
    assert chain_network.state == NetworkState.DIRTY


def test_commit_writes_dates_and_state(chain_network):
    solved = solve(chain_network)

    assert chain_network.state == NetworkState.SOLVED
    assert chain_network.get("B").dates is solved["B"]


def test_duration_overrides_do_not_touch_network(chain_network):
    solved = solve(chain_network, durations={"A": 5}, commit=False)

    assert solved.durations["A"] == 5
    assert solved["B"].es == d(12)
    assert chain_network.get("A").duration == 3
