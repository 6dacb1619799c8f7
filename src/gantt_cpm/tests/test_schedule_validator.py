from datetime import date

from gantt_cpm.cpm.network import ActivityProgress, DateConstraint, ResourceAssignment
from gantt_cpm.cpm.solver import solve
from gantt_cpm.tests.conftest import build_network
from gantt_cpm.validation.schedule_validator import ISSUE_COLUMNS, issues_frame, validate_network


def issue_types(issues, task_id):
    return {i["IssueType"] for i in issues if i["TaskID"] == task_id}


# ----------------------------------------------------------------
# 1. STRUCTURE
# ----------------------------------------------------------------
def test_structural_issues():
    net = build_network([
        {"id": "A", "duration": 3},
        {"id": "B", "duration": 2, "preds": "A; ZZ"},
        {"id": "C", "duration": 2, "preds": "A", "calendar_id": "nope"},
        {"id": "D", "duration": 2, "preds": "A", "resources": [ResourceAssignment("R9", 8)]},
        {"id": "E", "duration": 2, "preds": "A",
         "progress": ActivityProgress(actual_start=date(2026, 1, 9), actual_finish=date(2026, 1, 6))},
    ])
    issues = validate_network(net)

    assert "MissingPredecessorTask" in issue_types(issues, "B")
    assert "UnknownCalendar" in issue_types(issues, "C")
    assert "UnknownResource" in issue_types(issues, "D")
    assert "InvalidDateOrder" in issue_types(issues, "E")


def test_link_touching_summary():
    net = build_network([
        {"id": "S", "type": "summary"},
        {"id": "A", "duration": 2, "outline_level": 1},
        {"id": "B", "duration": 2, "preds": "S"},
    ])
    assert "LinkToSummary" in issue_types(validate_network(net), "B")


# ----------------------------------------------------------------
# 2. SCHEDULE QUALITY
# ----------------------------------------------------------------
def test_open_ends(chain_network):
    issues = validate_network(chain_network)

    assert issue_types(issues, "A") == {"NoPredecessor"}
    assert issue_types(issues, "B") == {"OpenEnd"}


def test_logic_checks():
    net = build_network([
        {"id": "A", "duration": 3},
        {"id": "B", "duration": 25, "preds": "A"},
        {"id": "C", "duration": 2, "preds": "A-2"},
        {"id": "D", "duration": 2, "preds": "A+20"},
        {"id": "F", "duration": 2, "preds": "A SS"},
        {"id": "G", "duration": 2, "preds": "A", "constraint": DateConstraint("MSO", date(2026, 1, 12))},
        {"id": "Z", "type": "milestone", "preds": "B; C; D; F; G"},
    ])
    issues = validate_network(net)

    assert "LongDuration" in issue_types(issues, "B")
    assert "NegativeLag" in issue_types(issues, "C")
    assert "LongLag" in issue_types(issues, "D")
    assert "NonFSRelation" in issue_types(issues, "F")
    assert "MandatoryConstraint" in issue_types(issues, "G")
    # milestones are not checked for open ends
    assert issue_types(issues, "Z") == set()


def test_large_float_needs_solve():
    net = build_network([
        {"id": "A", "duration": 30},
        {"id": "K", "duration": 1},
    ])
    assert "LargeFloat" not in issue_types(validate_network(net), "K")

    solved = solve(net)
    assert "LargeFloat" in issue_types(validate_network(net, solved), "K")
    assert "LargeFloat" not in issue_types(validate_network(net, solved), "A")


def test_progress_checks():
    net = build_network([
        {"id": "A", "duration": 3},
        {"id": "H", "duration": 3, "preds": "A", "percent_complete": 50},
        {"id": "L", "duration": 3, "preds": "A", "percent_complete": 100,
         "progress": ActivityProgress(actual_start=date(2026, 2, 2), actual_finish=date(2026, 2, 4))},
    ])
    solved = solve(net)
    issues = validate_network(net, solved, status_date=date(2026, 1, 20))

    assert {"BrokenLogic", "NoActualStart"} <= issue_types(issues, "H")
    assert "ProgressAfterStatusDate" in issue_types(issues, "L")
    # solved without a status date, so unstarted A sits before it
    assert "InvalidDates" in issue_types(issues, "A")


def test_status_date_defaults_to_solve():
    net = build_network([{"id": "A", "duration": 3}, {"id": "B", "duration": 1, "preds": "A"}])
    solved = solve(net, date(2026, 1, 9))
    issues = validate_network(net, solved)

    # the solve already moved unstarted work past the status date
    assert "InvalidDates" not in issue_types(issues, "A")


def test_issues_frame():
    net = build_network([{"id": "A", "duration": 3}])
    df = issues_frame(validate_network(net))

    assert list(df.columns) == ISSUE_COLUMNS
    assert set(df["IssueType"]) == {"OpenEnd", "NoPredecessor"}
    assert issues_frame([]).empty
