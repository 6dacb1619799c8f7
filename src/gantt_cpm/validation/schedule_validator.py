import logging
from datetime import date
from typing import List, Optional

import pandas as pd

from gantt_cpm.config.settings import settings
from gantt_cpm.cpm.calendar_engine import next_work_day
from gantt_cpm.cpm.network import ActivityType, ConstraintType, Network, ROLLUP_TYPES, RelationType
from gantt_cpm.cpm.solver import SolvedNetwork
from gantt_cpm.errors import InvalidCalendar

logger = logging.getLogger(__name__)

ISSUE_COLUMNS = ["TaskID", "Name", "Severity", "IssueType", "Description", "SuggestedFix"]


# ------------------------------------------------------------------
# Helper: make a consistent issue dictionary
# ------------------------------------------------------------------
def make_issue(task_id, name, severity, issue_type, description, suggestion):
    return {
        "TaskID": task_id,
        "Name": name,
        "Severity": severity,
        "IssueType": issue_type,
        "Description": description,
        "SuggestedFix": suggestion,
    }


def issues_frame(issues) -> pd.DataFrame:
    return pd.DataFrame(issues, columns=ISSUE_COLUMNS)


# ------------------------------------------------------------------
# STRUCTURE
# ------------------------------------------------------------------
def _structural_issues(network: Network) -> List[dict]:
    issues = []

    for a in network:
        if a.duration < 0:
            issues.append(make_issue(
                a.id, a.name, "critical", "NegativeDuration",
                f"Duration is negative ({a.duration}).",
                "Duration must be positive.",
            ))

        if not 0 <= a.percent_complete <= 100:
            issues.append(make_issue(
                a.id, a.name, "error", "PercentOutOfRange",
                f"Percent complete is {a.percent_complete}.",
                "Use a value between 0 and 100.",
            ))

        if a.type == ActivityType.MILESTONE and a.duration != 0:
            issues.append(make_issue(
                a.id, a.name, "error", "MilestoneWithDuration",
                f"Milestone has duration {a.duration}.",
                "Set the duration to 0 or change the type to task.",
            ))

        # Calendar
        cal_id = a.calendar_id or network.default_calendar_id
        cal = network.calendars.get(cal_id)
        if cal is None:
            issues.append(make_issue(
                a.id, a.name, "critical", "UnknownCalendar",
                f"Calendar '{cal_id}' does not exist.",
                "Assign an existing calendar or add the missing one.",
            ))
        else:
            try:
                next_work_day(cal, network.project_start)
            except InvalidCalendar:
                issues.append(make_issue(
                    a.id, a.name, "critical", "CalendarWithoutWorkDays",
                    f"Calendar '{cal_id}' has no work days.",
                    "Enable at least one weekday or remove the blocking exceptions.",
                ))

        # Links
        for link in a.predecessors:
            pid = link.predecessor_id
            if pid == a.id:
                issues.append(make_issue(
                    a.id, a.name, "critical", "SelfLink",
                    "Activity depends on itself.",
                    "Remove the self-reference.",
                ))
            elif pid not in network:
                issues.append(make_issue(
                    a.id, a.name, "error", "MissingPredecessorTask",
                    f"Task depends on missing activity {pid}.",
                    "Fix dependency: remove or correct the missing id.",
                ))
            elif network.get(pid).type in ROLLUP_TYPES or a.type in ROLLUP_TYPES:
                issues.append(make_issue(
                    a.id, a.name, "warning", "LinkToSummary",
                    f"Link {pid} -> {a.id} touches a summary row and is ignored.",
                    "Link the underlying activities instead.",
                ))

        # Resources
        for r in a.resources:
            if r.resource_id not in network.resources:
                issues.append(make_issue(
                    a.id, a.name, "error", "UnknownResource",
                    f"Resource '{r.resource_id}' is not in the resource sheet.",
                    "Add the resource or remove the assignment.",
                ))

        # Actual dates
        p = a.progress
        if p.actual_start and p.actual_finish and p.actual_finish < p.actual_start:
            issues.append(make_issue(
                a.id, a.name, "critical", "InvalidDateOrder",
                "Actual finish is before actual start.",
                "Correct the actual dates.",
            ))

    return issues


# ------------------------------------------------------------------
# SCHEDULE CHECKS
# ------------------------------------------------------------------
def _checker_issues(network: Network, solved: Optional[SolvedNetwork], status_date: Optional[date]) -> List[dict]:
    issues = []
    has_successor = {link.predecessor_id for a in network for link in a.predecessors}

    for a in network:
        if a.type != ActivityType.TASK:
            continue
        pct = a.percent_complete
        d = solved.dates.get(a.id) if solved is not None else None

        if pct < 100 and a.id not in has_successor:
            issues.append(make_issue(
                a.id, a.name, "warning", "OpenEnd",
                "Unfinished activity has no successor.",
                "Link it to a successor or to the finish milestone.",
            ))

        if pct < 100 and not a.predecessors:
            issues.append(make_issue(
                a.id, a.name, "warning", "NoPredecessor",
                "Unfinished activity has no predecessor.",
                "Link it to a predecessor or to the start milestone.",
            ))

        if any(link.relation != RelationType.FS for link in a.predecessors):
            issues.append(make_issue(
                a.id, a.name, "info", "NonFSRelation",
                "Activity has SS, FF or SF links.",
                "Prefer finish-to-start logic where possible.",
            ))

        if any(link.lag < 0 for link in a.predecessors):
            issues.append(make_issue(
                a.id, a.name, "warning", "NegativeLag",
                "Activity has a negative lag.",
                "Replace leads with explicit activities.",
            ))

        if any(link.lag >= settings.LONG_LAG_DAYS for link in a.predecessors):
            issues.append(make_issue(
                a.id, a.name, "warning", "LongLag",
                f"Lag of {settings.LONG_LAG_DAYS} days or more.",
                "Model the waiting time as an activity.",
            ))

        if a.duration > settings.LONG_DURATION_DAYS:
            issues.append(make_issue(
                a.id, a.name, "warning", "LongDuration",
                f"Duration {a.duration} exceeds {settings.LONG_DURATION_DAYS} days.",
                "Break the activity down.",
            ))

        if d is not None and d.total_float is not None and d.total_float > settings.LARGE_FLOAT_DAYS:
            issues.append(make_issue(
                a.id, a.name, "info", "LargeFloat",
                f"Total float of {d.total_float} days.",
                "Check for missing successors.",
            ))

        if a.constraint.kind == ConstraintType.MSO:
            issues.append(make_issue(
                a.id, a.name, "warning", "MandatoryConstraint",
                "Must-start-on constraint overrides logic.",
                "Use a start-no-earlier-than constraint instead.",
            ))

        if status_date is not None:
            if d is not None and d.es is not None:
                if pct == 0 and d.es <= status_date:
                    issues.append(make_issue(
                        a.id, a.name, "error", "InvalidDates",
                        "Unstarted activity is scheduled on or before the status date.",
                        "Update progress or reschedule the activity.",
                    ))
                if 0 < pct < 100 and d.ef is not None and d.ef <= status_date:
                    issues.append(make_issue(
                        a.id, a.name, "error", "InvalidDates",
                        "In-progress activity finishes on or before the status date.",
                        "Update the remaining duration.",
                    ))
            if pct > 0 and a.progress.actual_start and a.progress.actual_start > status_date:
                issues.append(make_issue(
                    a.id, a.name, "error", "ProgressAfterStatusDate",
                    "Actual start is after the status date.",
                    "Move the status date or correct the actual start.",
                ))

        if pct > 0 and a.progress.actual_start is None:
            issues.append(make_issue(
                a.id, a.name, "warning", "NoActualStart",
                "Activity has progress but no actual start.",
                "Record the actual start date.",
            ))

        # Broken logic: progress that the links do not allow yet
        for link in a.predecessors:
            if link.predecessor_id not in network:
                continue
            p_pct = network.get(link.predecessor_id).percent_complete
            broken = {
                RelationType.FS: pct > 0 and p_pct < 100,
                RelationType.SS: pct > 0 and p_pct == 0,
                RelationType.FF: pct >= 100 and p_pct < 100,
                RelationType.SF: pct >= 100 and p_pct == 0,
            }[link.relation]
            if broken:
                issues.append(make_issue(
                    a.id, a.name, "warning", "BrokenLogic",
                    f"Progress violates the {link.relation.value} link from {link.predecessor_id}.",
                    "Update the predecessor's progress or revise the link.",
                ))
                break

    return issues


# ------------------------------------------------------------------
# MAIN VALIDATION ENGINE
# ------------------------------------------------------------------
def validate_network(network: Network, solved: Optional[SolvedNetwork] = None,
                     status_date: Optional[date] = None) -> List[dict]:
    """
    Structural problems plus schedule-quality checks.

    Float and date checks need a solved network; the status date defaults
    to the one the solve used.
    """
    if status_date is None and solved is not None:
        status_date = solved.status_date

    issues = _structural_issues(network)
    issues.extend(_checker_issues(network, solved, status_date))

    logger.info("Validation found %d issue(s) in %d activities", len(issues), len(network))
    return issues
