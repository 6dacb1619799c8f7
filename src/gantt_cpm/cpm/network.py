# gantt_cpm/cpm/network.py

from __future__ import annotations

import copy
import logging
import re
from collections import defaultdict, deque
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from gantt_cpm.config.settings import settings
from gantt_cpm.cpm.calendar_engine import BUILTIN_CALENDARS, Calendar
from gantt_cpm.errors import CycleDetected, InvalidCalendar, UnknownActivity

logger = logging.getLogger(__name__)


class RelationType(str, Enum):
    FS = "FS"
    SS = "SS"
    FF = "FF"
    SF = "SF"


class ActivityType(str, Enum):
    TASK = "task"
    SUMMARY = "summary"
    MILESTONE = "milestone"
    PROJECT = "project"  # synthetic root row spanning the whole schedule


SCHEDULED_TYPES = (ActivityType.TASK, ActivityType.MILESTONE)
ROLLUP_TYPES = (ActivityType.SUMMARY, ActivityType.PROJECT)


class ConstraintType(str, Enum):
    NONE = ""
    SNET = "SNET"  # start no earlier than
    MSO = "MSO"    # must start on


class ResourceType(str, Enum):
    WORK = "work"
    MATERIAL = "material"
    COST = "cost"


class NetworkState(str, Enum):
    DIRTY = "dirty"
    FORWARD_PASS_DONE = "forward_pass_done"
    BACKWARD_PASS_DONE = "backward_pass_done"
    SOLVED = "solved"


# ---------------------------------------------------------
# AUTHORED RECORDS
# ---------------------------------------------------------

@dataclass(frozen=True)
class PredecessorLink:
    predecessor_id: str
    relation: RelationType = RelationType.FS
    lag: int = 0  # signed work days, successor calendar

    def __post_init__(self):
        object.__setattr__(self, "relation", RelationType(self.relation))
        object.__setattr__(self, "lag", int(round(self.lag)))


@dataclass(frozen=True)
class ResourceAssignment:
    resource_id: str
    work_hours: float
    units: str = "100%"


@dataclass(frozen=True)
class ActivityProgress:
    """Manual progress overrides for started, suspended or finished work."""
    actual_start: Optional[date] = None
    actual_finish: Optional[date] = None
    suspend_date: Optional[date] = None
    resume_date: Optional[date] = None
    remaining_duration: Optional[int] = None


@dataclass(frozen=True)
class DateConstraint:
    kind: ConstraintType = ConstraintType.NONE
    date: Optional[date] = None

    def __post_init__(self):
        object.__setattr__(self, "kind", ConstraintType(self.kind))


@dataclass(frozen=True)
class Baseline:
    start: Optional[date]
    finish: Optional[date]
    duration: int
    calendar_id: Optional[str] = None
    percent_complete: float = 0.0
    work_hours: float = 0.0
    status_date: Optional[date] = None
    saved_at: Optional[datetime] = None
    name: str = ""
    description: str = ""


@dataclass
class Resource:
    id: str
    name: str = ""
    type: ResourceType = ResourceType.WORK
    calendar_id: Optional[str] = None
    max_units: str = "100%"
    standard_rate: float = 0.0

    def __post_init__(self):
        self.type = ResourceType(self.type)


@dataclass
class ScheduleDates:
    """
    Solver-owned computed fields. Finish dates are exclusive
    boundaries (the first work-day boundary after the last day of work).
    """
    es: Optional[date] = None
    ef: Optional[date] = None
    ls: Optional[date] = None
    lf: Optional[date] = None
    total_float: Optional[int] = None
    free_float: Optional[int] = None
    critical: bool = False
    duration: Optional[int] = None
    remaining_duration: Optional[int] = None
    done_finish: Optional[date] = None
    remaining_start: Optional[date] = None
    remaining_finish: Optional[date] = None
    is_split: bool = False
    percent_complete: Optional[float] = None
    planned_percent: Optional[float] = None
    work_hours: Optional[float] = None

    @property
    def available(self) -> bool:
        return self.es is not None and self.ef is not None


@dataclass
class Activity:
    id: str
    name: str = ""
    type: ActivityType = ActivityType.TASK
    duration: int = 0
    percent_complete: float = 0.0
    calendar_id: Optional[str] = None
    outline_level: int = 0
    predecessors: List[PredecessorLink] = field(default_factory=list)
    resources: List[ResourceAssignment] = field(default_factory=list)
    work_hours: float = 0.0  # used when no resource is assigned
    progress: ActivityProgress = field(default_factory=ActivityProgress)
    constraint: DateConstraint = field(default_factory=DateConstraint)
    baselines: List[Optional[Baseline]] = field(default_factory=list)
    notes: str = ""
    dates: Optional[ScheduleDates] = field(default=None, compare=False)

    def __post_init__(self):
        self.type = ActivityType(self.type)
        if self.duration < 0:
            raise ValueError(f"{self.id}: duration must be positive, got {self.duration}")
        if not 0.0 <= self.percent_complete <= 100.0:
            raise ValueError(f"{self.id}: percent complete must be within 0–100")
        if self.type == ActivityType.MILESTONE:
            self.duration = 0
        self.duration = int(round(self.duration))
        self.predecessors = list(self.predecessors)
        self.resources = list(self.resources)
        if self.type in ROLLUP_TYPES:
            self.check_rollup_fields()

    def check_rollup_fields(self):
        """Summary and project rows take their dates and work from their children."""
        authored = {
            "predecessors": bool(self.predecessors),
            "resources": bool(self.resources),
            "work hours": self.work_hours > 0,
            "progress overrides": self.progress != ActivityProgress(),
            "date constraints": self.constraint.kind != ConstraintType.NONE,
        }
        bad = [name for name, present in authored.items() if present]
        if bad:
            raise ValueError(f"{self.id}: summary rows cannot carry {', '.join(bad)}")

    @property
    def is_scheduled(self) -> bool:
        return self.type in SCHEDULED_TYPES

    @property
    def total_work(self) -> float:
        if self.resources:
            return float(sum(r.work_hours for r in self.resources))
        return float(self.work_hours)

    def work_for(self, resource_id: Optional[str]) -> float:
        if resource_id is None:
            return self.total_work
        return float(sum(r.work_hours for r in self.resources if r.resource_id == resource_id))

    def baseline(self, index: int) -> Optional[Baseline]:
        if 0 <= index < len(self.baselines):
            return self.baselines[index]
        return None


# ---------------------------------------------------------
# PREDECESSOR TEXT
# ---------------------------------------------------------

_PRED_PATTERN = re.compile(
    r"""
    ^\s*
    (?P<pred>[^\s;,]+?)
    \s*
    (?P<type>FS|SS|FF|SF)?    # optional type
    \s*
    (?P<lag>[+-]\s*\d+)?      # optional +N or -N
    \s*[dD]?                  # optional 'd'
    \s*$
    """,
    re.VERBOSE,
)


def parse_predecessor_text(cell) -> List[PredecessorLink]:
    """
    Parse a predecessor cell like:
      "A10"
      "A10 FS+3d"
      "12SS-2"
      "7FF+1d; 9 SS"
    into PredecessorLink records. Missing type means FS, missing lag 0.
    """
    if cell is None:
        return []

    text = str(cell).strip()
    if not text:
        return []

    links = []
    for raw in re.split(r"[;,]", text):
        s = raw.strip()
        if not s:
            continue
        m = _PRED_PATTERN.match(s)
        if not m:
            raise ValueError(f"Invalid predecessor format: '{s}'")

        lag_str = m.group("lag")
        lag = int(lag_str.replace(" ", "")) if lag_str else 0
        links.append(PredecessorLink(m.group("pred"), RelationType(m.group("type") or "FS"), lag))

    return links


def format_predecessors(links) -> str:
    """Inverse of parse_predecessor_text: 'A; B SS+2; C FF-1'."""
    parts = []
    for link in links:
        s = link.predecessor_id
        if link.relation != RelationType.FS:
            s += " " + link.relation.value
        if link.lag > 0:
            s += f"+{link.lag}"
        elif link.lag < 0:
            s += str(link.lag)
        parts.append(s)
    return "; ".join(parts)


# ---------------------------------------------------------
# NETWORK
# ---------------------------------------------------------

class Network:
    """
    Ordered activity table plus calendars and resources.

    Row order is the outline order: a summary owns every following row
    with a deeper outline level. Mutations only touch authored fields and
    flip the network back to DIRTY; computed fields are written by the
    solver alone.
    """

    def __init__(
        self,
        project_start: date,
        name: str = "",
        default_calendar_id: Optional[str] = None,
        calendars=None,
        resources=None,
        project_finish: Optional[date] = None,
        status_date: Optional[date] = None,
    ):
        self.name = name
        self.project_start = project_start
        self.project_finish = project_finish
        self.status_date = status_date
        self.default_calendar_id = default_calendar_id or settings.DEFAULT_CALENDAR
        self.calendars: Dict[str, Calendar] = dict(BUILTIN_CALENDARS)
        for cal in calendars or []:
            self.calendars[cal.id] = cal
        self.resources: Dict[str, Resource] = {r.id: r for r in resources or []}
        self.active_baseline_index = 0
        self.state = NetworkState.DIRTY
        self._activities: Dict[str, Activity] = {}

    # ---- container protocol ----

    def __len__(self) -> int:
        return len(self._activities)

    def __iter__(self) -> Iterator[Activity]:
        return iter(list(self._activities.values()))

    def __contains__(self, activity_id) -> bool:
        return activity_id in self._activities

    @property
    def activities(self) -> List[Activity]:
        return list(self._activities.values())

    def get(self, activity_id: str) -> Activity:
        try:
            return self._activities[activity_id]
        except KeyError:
            raise UnknownActivity(activity_id) from None

    def _scheduled(self, activity_id: str) -> Activity:
        a = self.get(activity_id)
        if not a.is_scheduled:
            raise ValueError(f"{activity_id}: summary rows take progress, constraints and resources from their children")
        return a

    def _touch(self):
        self.state = NetworkState.DIRTY

    # ---- calendars / resources ----

    def calendar_for(self, activity: Activity) -> Calendar:
        cal_id = activity.calendar_id or self.default_calendar_id
        try:
            return self.calendars[cal_id]
        except KeyError:
            raise InvalidCalendar(cal_id, f"Unknown calendar '{cal_id}' on {activity.id}") from None

    @property
    def default_calendar(self) -> Calendar:
        try:
            return self.calendars[self.default_calendar_id]
        except KeyError:
            raise InvalidCalendar(self.default_calendar_id, f"Unknown default calendar '{self.default_calendar_id}'") from None

    def add_calendar(self, calendar: Calendar):
        self.calendars[calendar.id] = calendar
        self._touch()

    def add_resource(self, resource: Resource):
        self.resources[resource.id] = resource

    # ---- structure ----

    def add_activity(self, activity: Activity, index: Optional[int] = None) -> Activity:
        if activity.id in self._activities:
            raise ValueError(f"Duplicate activity id: {activity.id!r}")
        for link in activity.predecessors:
            if link.predecessor_id == activity.id:
                raise CycleDetected([activity.id])
            path = self._path(activity.id, link.predecessor_id)
            if path:
                raise CycleDetected(path)

        activity.dates = None
        items = list(self._activities.items())
        if index is None:
            items.append((activity.id, activity))
        else:
            items.insert(index, (activity.id, activity))
        self._activities = dict(items)
        self._touch()
        return activity

    def remove_activity(self, activity_id: str) -> Activity:
        """Delete an activity and strip it from every successor's links."""
        removed = self.get(activity_id)
        del self._activities[activity_id]
        for a in self._activities.values():
            if any(p.predecessor_id == activity_id for p in a.predecessors):
                a.predecessors = [p for p in a.predecessors if p.predecessor_id != activity_id]
        self._touch()
        return removed

    def successors_map(self) -> Dict[str, List[Tuple[str, PredecessorLink]]]:
        """pred_id -> [(succ_id, link), ...], dangling ids included."""
        succ = defaultdict(list)
        for a in self._activities.values():
            for link in a.predecessors:
                succ[link.predecessor_id].append((a.id, link))
        return succ

    def _path(self, start: str, target: str) -> Optional[List[str]]:
        """Successor path start -> ... -> target, or None when unreachable."""
        succ = self.successors_map()
        parent = {start: None}
        queue = deque([start])
        while queue:
            cur = queue.popleft()
            if cur == target:
                path = []
                while cur is not None:
                    path.append(cur)
                    cur = parent[cur]
                return list(reversed(path))
            for nxt, _ in succ.get(cur, []):
                if nxt not in parent:
                    parent[nxt] = cur
                    queue.append(nxt)
        return None

    def would_create_cycle(self, successor_id: str, predecessor_id: str) -> bool:
        return successor_id == predecessor_id or self._path(successor_id, predecessor_id) is not None

    # ---- hierarchy ----

    def descendants(self, activity_id: str) -> List[Activity]:
        """Rows owned by a summary (outline order); every row for the project row."""
        parent = self.get(activity_id)
        rows = self.activities
        idx = rows.index(parent)
        if parent.type == ActivityType.PROJECT:
            return [a for a in rows if a.id != parent.id]
        out = []
        for a in rows[idx + 1:]:
            if a.outline_level <= parent.outline_level:
                break
            out.append(a)
        return out

    def children(self, activity_id: str) -> List[Activity]:
        parent = self.get(activity_id)
        if parent.type == ActivityType.PROJECT:
            top = min((a.outline_level for a in self.descendants(activity_id)), default=0)
            return [a for a in self.descendants(activity_id) if a.outline_level == top]
        return [a for a in self.descendants(activity_id) if a.outline_level == parent.outline_level + 1]

    def trace(self, activity_id: str, direction: str = "both") -> set:
        """Logic chain through predecessors ('bwd'), successors ('fwd') or both."""
        if direction not in ("fwd", "bwd", "both"):
            raise ValueError(f"Unknown trace direction: {direction}")
        self.get(activity_id)
        result = {activity_id}
        succ = self.successors_map()

        if direction in ("bwd", "both"):
            queue = deque([activity_id])
            while queue:
                cur = self._activities.get(queue.popleft())
                if cur is None:
                    continue
                for link in cur.predecessors:
                    pid = link.predecessor_id
                    if pid in self._activities and pid not in result:
                        result.add(pid)
                        queue.append(pid)

        if direction in ("fwd", "both"):
            seen = {activity_id}
            queue = deque([activity_id])
            while queue:
                for sid, _ in succ.get(queue.popleft(), []):
                    if sid not in seen:
                        seen.add(sid)
                        result.add(sid)
                        queue.append(sid)

        return result

    # ---- mutations ----

    def set_duration(self, activity_id: str, duration: int):
        a = self.get(activity_id)
        if a.type in ROLLUP_TYPES:
            raise ValueError(f"{activity_id}: summary durations are derived from their children")
        if a.type == ActivityType.MILESTONE and duration != 0:
            raise ValueError(f"{activity_id}: milestones have zero duration")
        if duration < 0:
            raise ValueError(f"{activity_id}: duration must be positive")
        a.duration = int(round(duration))
        self._touch()

    def set_percent_complete(self, activity_id: str, pct: float):
        if not 0.0 <= pct <= 100.0:
            raise ValueError(f"{activity_id}: percent complete must be within 0–100")
        self.get(activity_id).percent_complete = float(pct)
        self._touch()

    def set_calendar(self, activity_id: str, calendar_id: Optional[str]):
        if calendar_id is not None and calendar_id not in self.calendars:
            raise InvalidCalendar(calendar_id, f"Unknown calendar '{calendar_id}'")
        self.get(activity_id).calendar_id = calendar_id
        self._touch()

    def set_outline_level(self, activity_id: str, level: int):
        if level < 0:
            raise ValueError("Outline level must be >= 0")
        self.get(activity_id).outline_level = level
        self._touch()

    def set_progress(self, activity_id: str, **changes):
        a = self._scheduled(activity_id)
        a.progress = replace(a.progress, **changes)
        self._touch()

    def set_constraint(self, activity_id: str, kind, constraint_date: Optional[date] = None):
        a = self._scheduled(activity_id)
        a.constraint = DateConstraint(kind, constraint_date)
        self._touch()

    def _check_link(self, successor: Activity, link: PredecessorLink):
        pred = self.get(link.predecessor_id)
        if pred.type in ROLLUP_TYPES or successor.type in ROLLUP_TYPES:
            raise ValueError("Summary rows cannot take part in precedence links")
        if self.would_create_cycle(successor.id, pred.id):
            raise CycleDetected(self._path(successor.id, pred.id) or [successor.id])

    def add_predecessor(self, successor_id: str, predecessor_id: str, relation="FS", lag: int = 0) -> PredecessorLink:
        succ = self.get(successor_id)
        if any(p.predecessor_id == predecessor_id for p in succ.predecessors):
            raise ValueError(f"{successor_id} already depends on {predecessor_id}")
        link = PredecessorLink(predecessor_id, RelationType(relation), lag)
        self._check_link(succ, link)
        succ.predecessors.append(link)
        self._touch()
        return link

    def update_predecessor(self, successor_id: str, predecessor_id: str, relation=None, lag: Optional[int] = None):
        succ = self.get(successor_id)
        for i, p in enumerate(succ.predecessors):
            if p.predecessor_id == predecessor_id:
                succ.predecessors[i] = PredecessorLink(
                    predecessor_id,
                    RelationType(relation) if relation is not None else p.relation,
                    p.lag if lag is None else lag,
                )
                self._touch()
                return succ.predecessors[i]
        raise ValueError(f"{successor_id} does not depend on {predecessor_id}")

    def remove_predecessor(self, successor_id: str, predecessor_id: str) -> PredecessorLink:
        succ = self.get(successor_id)
        for i, p in enumerate(succ.predecessors):
            if p.predecessor_id == predecessor_id:
                del succ.predecessors[i]
                self._touch()
                return p
        raise ValueError(f"{successor_id} does not depend on {predecessor_id}")

    def set_predecessors_text(self, successor_id: str, text: str) -> List[PredecessorLink]:
        """Replace all links of an activity from grid text; atomic on failure."""
        succ = self.get(successor_id)
        links = parse_predecessor_text(text)
        previous = succ.predecessors
        succ.predecessors = []
        try:
            for link in links:
                self._check_link(succ, link)
                succ.predecessors.append(link)
        except Exception:
            succ.predecessors = previous
            raise
        self._touch()
        return list(succ.predecessors)

    def assign_resource(self, activity_id: str, resource_id: str, work_hours: float, units: str = "100%"):
        if resource_id not in self.resources:
            raise KeyError(f"Unknown resource id: {resource_id!r}")
        if work_hours < 0:
            raise ValueError("Work hours must be positive")
        a = self._scheduled(activity_id)
        a.resources = [r for r in a.resources if r.resource_id != resource_id]
        a.resources.append(ResourceAssignment(resource_id, float(work_hours), units))
        self._touch()

    def unassign_resource(self, activity_id: str, resource_id: str):
        a = self.get(activity_id)
        a.resources = [r for r in a.resources if r.resource_id != resource_id]
        self._touch()

    # ---- baselines ----

    def save_baseline(self, index: Optional[int] = None, name: str = "", description: str = "",
                      saved_at: Optional[datetime] = None):
        """
        Snapshot the current solved dates into a baseline slot and make it
        the active one. Needs a solved network.
        """
        if self.state != NetworkState.SOLVED:
            raise ValueError("Solve the network before saving a baseline")
        idx = self.active_baseline_index if index is None else index
        if not 0 <= idx < settings.MAX_BASELINES:
            raise ValueError(f"Baseline index must be within 0–{settings.MAX_BASELINES - 1}")

        saved_at = saved_at or datetime.now()
        for a in self._activities.values():
            d = a.dates or ScheduleDates()
            while len(a.baselines) <= idx:
                a.baselines.append(None)
            a.baselines[idx] = Baseline(
                start=d.es,
                finish=d.ef,
                duration=d.duration if d.duration is not None else a.duration,
                calendar_id=a.calendar_id,
                percent_complete=a.percent_complete,
                work_hours=a.total_work,
                status_date=self.status_date,
                saved_at=saved_at,
                name=name or f"Baseline {idx}",
                description=description,
            )
        self.active_baseline_index = idx
        logger.info("Saved baseline %d (%s) for %d activities", idx, name or f"Baseline {idx}", len(self))

    def copy(self) -> "Network":
        """Independent deep copy (what-if scenarios, simulation)."""
        return copy.deepcopy(self)
