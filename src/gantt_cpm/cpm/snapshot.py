# gantt_cpm/cpm/snapshot.py

"""
Plain JSON-serializable snapshots of a network.

Only authored data is written; computed dates are rebuilt by solving the
re-hydrated network. Dates are ISO-8601 strings with no time component.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date, datetime
from typing import Any, Dict, Optional

from gantt_cpm.cpm.calendar_engine import BUILTIN_CALENDARS, Calendar
from gantt_cpm.cpm.network import (
    Activity,
    ActivityProgress,
    Baseline,
    DateConstraint,
    Network,
    PredecessorLink,
    Resource,
    ResourceAssignment,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _d(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_d(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


# -----------------------------
# Encode
# -----------------------------

def _calendar_to_dict(cal: Calendar) -> Dict[str, Any]:
    return {
        "id": cal.id,
        "name": cal.name,
        "work_days": list(cal.work_days),
        "hours_per_day": cal.hours_per_day,
        "exceptions": sorted(_d(x) for x in cal.exceptions),
    }


def _baseline_to_dict(bl: Optional[Baseline]) -> Optional[Dict[str, Any]]:
    if bl is None:
        return None
    return {
        "start": _d(bl.start),
        "finish": _d(bl.finish),
        "duration": bl.duration,
        "calendar_id": bl.calendar_id,
        "percent_complete": bl.percent_complete,
        "work_hours": bl.work_hours,
        "status_date": _d(bl.status_date),
        "saved_at": bl.saved_at.isoformat() if bl.saved_at else None,
        "name": bl.name,
        "description": bl.description,
    }


def _activity_to_dict(a: Activity) -> Dict[str, Any]:
    return {
        "id": a.id,
        "name": a.name,
        "type": a.type.value,
        "duration": a.duration,
        "percent_complete": a.percent_complete,
        "calendar_id": a.calendar_id,
        "outline_level": a.outline_level,
        "predecessors": [
            {"id": p.predecessor_id, "type": p.relation.value, "lag": p.lag} for p in a.predecessors
        ],
        "resources": [asdict(r) for r in a.resources],
        "work_hours": a.work_hours,
        "progress": {k: _d(v) if isinstance(v, date) else v for k, v in asdict(a.progress).items()},
        "constraint": {"kind": a.constraint.kind.value, "date": _d(a.constraint.date)},
        "baselines": [_baseline_to_dict(b) for b in a.baselines],
        "notes": a.notes,
    }


def to_snapshot(network: Network) -> Dict[str, Any]:
    """Authored state of a network as plain dicts, lists and strings."""
    return {
        "version": SNAPSHOT_VERSION,
        "name": network.name,
        "project_start": _d(network.project_start),
        "project_finish": _d(network.project_finish),
        "status_date": _d(network.status_date),
        "default_calendar_id": network.default_calendar_id,
        "active_baseline_index": network.active_baseline_index,
        "calendars": [
            _calendar_to_dict(c) for cid, c in network.calendars.items()
            if BUILTIN_CALENDARS.get(cid) != c
        ],
        "resources": [
            {**asdict(r), "type": r.type.value} for r in network.resources.values()
        ],
        "activities": [_activity_to_dict(a) for a in network],
    }


# -----------------------------
# Decode
# -----------------------------

def _calendar_from_dict(d: Dict[str, Any]) -> Calendar:
    return Calendar(
        id=d["id"],
        name=d.get("name", ""),
        work_days=tuple(d["work_days"]),
        hours_per_day=d.get("hours_per_day", 8.0),
        exceptions=frozenset(_parse_d(x) for x in d.get("exceptions", [])),
    )


def _baseline_from_dict(d: Optional[Dict[str, Any]]) -> Optional[Baseline]:
    if d is None:
        return None
    return Baseline(
        start=_parse_d(d.get("start")),
        finish=_parse_d(d.get("finish")),
        duration=d.get("duration", 0),
        calendar_id=d.get("calendar_id"),
        percent_complete=d.get("percent_complete", 0.0),
        work_hours=d.get("work_hours", 0.0),
        status_date=_parse_d(d.get("status_date")),
        saved_at=datetime.fromisoformat(d["saved_at"]) if d.get("saved_at") else None,
        name=d.get("name", ""),
        description=d.get("description", ""),
    )


def _activity_from_dict(d: Dict[str, Any]) -> Activity:
    progress = d.get("progress") or {}
    constraint = d.get("constraint") or {}
    return Activity(
        id=d["id"],
        name=d.get("name", ""),
        type=d.get("type", "task"),
        duration=d.get("duration", 0),
        percent_complete=d.get("percent_complete", 0.0),
        calendar_id=d.get("calendar_id"),
        outline_level=d.get("outline_level", 0),
        predecessors=[
            PredecessorLink(p["id"], p.get("type", "FS"), p.get("lag", 0)) for p in d.get("predecessors", [])
        ],
        resources=[ResourceAssignment(**r) for r in d.get("resources", [])],
        work_hours=d.get("work_hours", 0.0),
        progress=ActivityProgress(
            actual_start=_parse_d(progress.get("actual_start")),
            actual_finish=_parse_d(progress.get("actual_finish")),
            suspend_date=_parse_d(progress.get("suspend_date")),
            resume_date=_parse_d(progress.get("resume_date")),
            remaining_duration=progress.get("remaining_duration"),
        ),
        constraint=DateConstraint(constraint.get("kind", ""), _parse_d(constraint.get("date"))),
        baselines=[_baseline_from_dict(b) for b in d.get("baselines", [])],
        notes=d.get("notes", ""),
    )


def from_snapshot(data: Dict[str, Any]) -> Network:
    """
    Rebuild a DIRTY network from to_snapshot() output.

    Links are restored as stored, dangling ids included; the solver
    reports those. Raises ValueError on an unsupported version or a
    duplicate id, CycleDetected on looping links.
    """
    version = data.get("version", SNAPSHOT_VERSION)
    if version > SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version}")

    network = Network(
        project_start=_parse_d(data["project_start"]),
        name=data.get("name", ""),
        default_calendar_id=data.get("default_calendar_id"),
        calendars=[_calendar_from_dict(c) for c in data.get("calendars", [])],
        resources=[Resource(**r) for r in data.get("resources", [])],
        project_finish=_parse_d(data.get("project_finish")),
        status_date=_parse_d(data.get("status_date")),
    )
    network.active_baseline_index = data.get("active_baseline_index", 0)

    for item in data.get("activities", []):
        network.add_activity(_activity_from_dict(item))

    logger.debug("Loaded snapshot '%s' with %d activities", network.name, len(network))
    return network
