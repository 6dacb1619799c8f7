# gantt_cpm/cpm/solver.py

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from gantt_cpm.cpm.calendar_engine import (
    ONE_DAY,
    Calendar,
    add_work_days,
    next_work_day,
    work_days_between,
)
from gantt_cpm.cpm.network import (
    ActivityType,
    ConstraintType,
    Network,
    NetworkState,
    PredecessorLink,
    RelationType,
    ROLLUP_TYPES,
    SCHEDULED_TYPES,
    ScheduleDates,
)
from gantt_cpm.errors import InvalidCalendar

logger = logging.getLogger(__name__)


# -----------------------------
# Result records
# -----------------------------

@dataclass(frozen=True)
class UnresolvedPredecessor:
    activity_id: str
    predecessor_id: str

    @property
    def message(self) -> str:
        return f"{self.activity_id}: predecessor '{self.predecessor_id}' does not exist"


@dataclass(frozen=True)
class CalendarIssue:
    activity_id: str
    calendar_id: str
    message: str


class SolveErrorKind(str, Enum):
    CYCLE_DETECTED = "CycleDetected"
    INVALID_CALENDAR = "InvalidCalendar"


@dataclass(frozen=True)
class SolveError:
    kind: SolveErrorKind
    activity_ids: Tuple[str, ...]
    message: str = ""


@dataclass(frozen=True)
class SolvedNetwork:
    """Read-only view of one solve pass."""
    network: Network
    dates: Mapping[str, ScheduleDates]
    order: Tuple[str, ...]
    project_start: date
    project_finish: date
    status_date: Optional[date] = None
    durations: Mapping[str, int] = field(default_factory=dict)
    edges: Tuple[Tuple[str, str, PredecessorLink], ...] = ()
    unresolved: Tuple[UnresolvedPredecessor, ...] = ()
    calendar_issues: Tuple[CalendarIssue, ...] = ()
    committed: bool = True

    def __getitem__(self, activity_id: str) -> ScheduleDates:
        return self.dates[activity_id]

    @property
    def critical_ids(self) -> List[str]:
        return [i for i in self.order if self.dates[i].critical]

    @property
    def project_duration(self) -> int:
        """Work days from project start to the latest finish (default calendar)."""
        return work_days_between(self.network.default_calendar, self.project_start, self.project_finish)

    def predecessors_of(self, activity_id: str) -> List[Tuple[str, PredecessorLink]]:
        return [(p, link) for p, s, link in self.edges if s == activity_id]

    def successors_of(self, activity_id: str) -> List[Tuple[str, PredecessorLink]]:
        return [(s, link) for p, s, link in self.edges if p == activity_id]


SolveResult = Union[SolvedNetwork, SolveError]


# -----------------------------
# Relationship arithmetic
# -----------------------------

def start_bound(link: PredecessorLink, pred: ScheduleDates, succ_calendar: Calendar, succ_duration: int) -> date:
    """Earliest successor start the link allows (forward pass)."""
    lag = link.lag
    if link.relation == RelationType.FS:
        return add_work_days(succ_calendar, pred.ef, lag)
    if link.relation == RelationType.SS:
        return add_work_days(succ_calendar, pred.es, lag)
    if link.relation == RelationType.FF:
        return add_work_days(succ_calendar, add_work_days(succ_calendar, pred.ef, lag), -succ_duration)
    # SF
    return add_work_days(succ_calendar, add_work_days(succ_calendar, pred.es, lag), -succ_duration)


def finish_bound(link: PredecessorLink, succ: ScheduleDates, succ_calendar: Calendar,
                 pred_calendar: Calendar, pred_span: int) -> date:
    """Latest predecessor finish the link allows (backward pass)."""
    lag = link.lag
    if link.relation == RelationType.FS:
        return add_work_days(succ_calendar, succ.ls, -lag)
    if link.relation == RelationType.SS:
        return add_work_days(pred_calendar, add_work_days(succ_calendar, succ.ls, -lag), pred_span)
    if link.relation == RelationType.FF:
        return add_work_days(succ_calendar, succ.lf, -lag)
    # SF
    return add_work_days(pred_calendar, add_work_days(succ_calendar, succ.lf, -lag), pred_span)


def relationship_float(link: PredecessorLink, pred: ScheduleDates, succ: ScheduleDates,
                       succ_calendar: Calendar) -> int:
    """
    Slack on one link in successor-calendar work days, clamped at 0.
    Zero means the link is driving.
    """
    if link.relation in (RelationType.FS, RelationType.FF):
        implied = add_work_days(succ_calendar, pred.ef, link.lag)
    else:
        implied = add_work_days(succ_calendar, pred.es, link.lag)
    target = succ.es if link.relation in (RelationType.FS, RelationType.SS) else succ.ef
    return max(0, work_days_between(succ_calendar, implied, target))


def free_float(solved: SolvedNetwork, activity_id: str) -> Optional[int]:
    return solved.dates[activity_id].free_float


def planned_percent(activity, calendar: Calendar, dates: ScheduleDates, as_of: date,
                    baseline_index: int = 0) -> float:
    """
    Percent of the activity that should be done by the end of ``as_of``,
    measured in work days over the baseline span (current dates when no
    baseline is saved).

    A baseline saved with progress and a status date pins that percent at
    its status date: time before it scales 0..pct, time after it pct..100.
    """
    bl = activity.baseline(baseline_index)
    start = bl.start if bl is not None and bl.start else dates.es
    end = bl.finish if bl is not None and bl.finish else dates.ef
    if start is None or end is None:
        return 0.0

    target = as_of + ONE_DAY
    if target <= start:
        return 0.0
    if target >= end:
        return 100.0

    def ratio(a: date, b: date) -> float:
        total = work_days_between(calendar, a, b)
        if total == 0:
            return 1.0
        return work_days_between(calendar, a, min(target, b)) / total

    if bl is not None and bl.percent_complete > 0 and bl.status_date is not None:
        split = bl.status_date + ONE_DAY
        if target <= split:
            return ratio(start, split) * bl.percent_complete
        return bl.percent_complete + ratio(split, end) * (100 - bl.percent_complete)
    return ratio(start, end) * 100


# ---------------------------------------------------------
# SOLVE PASS
# ---------------------------------------------------------

class _SolvePass:
    """
    One forward/backward pass over a private copy of the dates.
    Nothing is written to the network until result(commit=True).
    """

    def __init__(self, network: Network, status_date: Optional[date], durations: Optional[Mapping[str, int]]):
        self.network = network
        self.status_date = status_date
        self.duration_overrides = dict(durations or {})
        self.state = NetworkState.DIRTY

        self.dates: Dict[str, ScheduleDates] = {}
        self.calendars: Dict[str, Calendar] = {}
        self.durations: Dict[str, int] = {}
        self.preds: Dict[str, List[Tuple[str, PredecessorLink]]] = {}
        self.succs: Dict[str, List[Tuple[str, PredecessorLink]]] = {}
        self.edges: List[Tuple[str, str, PredecessorLink]] = []
        self.order: List[str] = []
        self.unresolved: List[UnresolvedPredecessor] = []
        self.calendar_issues: List[CalendarIssue] = []
        self.project_finish = network.project_start

    # ---- graph ----

    def build_graph(self):
        scheduled = [a for a in self.network if a.type in SCHEDULED_TYPES]
        for a in scheduled:
            self.preds[a.id] = []
            self.succs[a.id] = []
            if a.type == ActivityType.MILESTONE:
                self.durations[a.id] = 0
            else:
                self.durations[a.id] = max(0, int(round(self.duration_overrides.get(a.id, a.duration))))

        for a in scheduled:
            for link in a.predecessors:
                pid = link.predecessor_id
                if pid not in self.network:
                    self.unresolved.append(UnresolvedPredecessor(a.id, pid))
                    logger.warning("%s: predecessor '%s' does not exist; link skipped", a.id, pid)
                    continue
                if pid not in self.preds:
                    logger.debug("%s: link from non-scheduled row '%s' skipped", a.id, pid)
                    continue
                self.preds[a.id].append((pid, link))
                self.succs[pid].append((a.id, link))
                self.edges.append((pid, a.id, link))

    def topological_order(self) -> List[str]:
        """Kahn's algorithm, ties broken by id. Shorter than the graph when a cycle remains."""
        indeg = {i: len(p) for i, p in self.preds.items()}
        heap = [i for i, d in indeg.items() if d == 0]
        heapq.heapify(heap)
        order = []
        while heap:
            n = heapq.heappop(heap)
            order.append(n)
            for s, _ in self.succs[n]:
                indeg[s] -= 1
                if indeg[s] == 0:
                    heapq.heappush(heap, s)
        return order

    def cycle_members(self) -> List[str]:
        """Walk predecessors among the unsorted nodes until one repeats."""
        order = set(self.order)
        remaining = sorted(i for i in self.preds if i not in order)
        cur = remaining[0]
        seen: List[str] = []
        while cur not in seen:
            seen.append(cur)
            cur = min(p for p, _ in self.preds[cur] if p not in order)
        cycle = seen[seen.index(cur):]
        return list(reversed(cycle))

    def _calendar(self, activity) -> Calendar:
        cal = self.network.calendar_for(activity)
        self.calendars[activity.id] = cal
        return cal

    def _invalid(self, activity, exc: InvalidCalendar):
        self.dates[activity.id] = ScheduleDates()
        self.calendar_issues.append(CalendarIssue(activity.id, exc.calendar_id, str(exc)))
        logger.warning("%s: %s; dates left unset", activity.id, exc)

    # ---- forward ----

    def forward(self):
        for aid in self.order:
            a = self.network.get(aid)
            try:
                self.dates[aid] = self._forward_one(a)
            except InvalidCalendar as exc:
                self._invalid(a, exc)
        self.state = NetworkState.FORWARD_PASS_DONE

    def _forward_one(self, a) -> ScheduleDates:
        cal = self._calendar(a)
        dur = self.durations[a.id]
        prog = a.progress
        pct = a.percent_complete
        started = pct > 0 and prog.actual_start is not None

        es = self.network.project_start
        if started:
            es = prog.actual_start
        elif a.constraint.kind == ConstraintType.MSO and a.constraint.date is not None:
            es = a.constraint.date
        else:
            if a.constraint.kind == ConstraintType.SNET and a.constraint.date is not None:
                es = max(es, a.constraint.date)
            for pid, link in self.preds[a.id]:
                pd = self.dates.get(pid)
                if pd is None or not pd.available:
                    continue
                es = max(es, start_bound(link, pd, cal, dur))
            # unstarted work cannot be scheduled before the status date
            if self.status_date is not None and pct == 0 and prog.suspend_date is None:
                es = max(es, self.status_date + ONE_DAY)
            if dur > 0:
                es = next_work_day(cal, es)

        ef = add_work_days(cal, es, dur)
        if pct >= 100 and prog.actual_finish is not None:
            # EF is the exclusive boundary: the next work day after the finish
            if a.type == ActivityType.MILESTONE:
                es = ef = prog.actual_finish
            else:
                ef = next_work_day(cal, prog.actual_finish + ONE_DAY)

        dates = ScheduleDates(
            es=es,
            ef=ef,
            duration=dur,
            remaining_duration=int(round(dur * (100 - pct) / 100)),
            percent_complete=pct,
            work_hours=a.total_work,
        )
        if a.type == ActivityType.TASK and pct < 100 and self.status_date is not None:
            if 0 < pct or prog.suspend_date is not None:
                self._split(a, cal, dur, dates)
        return dates

    def _split(self, a, cal: Calendar, dur: int, dates: ScheduleDates):
        """
        Cut in-progress (or suspended) work at the status date into a done
        segment and a remaining segment; EF becomes the remaining finish.
        """
        prog = a.progress
        boundary = self.status_date + ONE_DAY

        if prog.suspend_date is not None:
            done_finish = max(dates.es, prog.suspend_date)
            done = min(dur, work_days_between(cal, dates.es, done_finish))
            remaining = prog.remaining_duration if prog.remaining_duration is not None else dur - done
            rem_start = max(prog.resume_date or boundary, done_finish)
        else:
            done = int(round(dur * a.percent_complete / 100))
            remaining = prog.remaining_duration if prog.remaining_duration is not None else dur - done
            done_finish = add_work_days(cal, dates.es, done)
            rem_start = max(boundary, done_finish)

        remaining = max(0, int(remaining))
        if remaining > 0:
            rem_start = next_work_day(cal, rem_start)
        rem_finish = add_work_days(cal, rem_start, remaining)

        dates.done_finish = done_finish
        dates.remaining_start = rem_start
        dates.remaining_finish = rem_finish
        dates.remaining_duration = remaining
        dates.is_split = rem_start > done_finish
        dates.ef = rem_finish

    # ---- backward ----

    def backward(self):
        valid = [d.ef for d in self.dates.values() if d.available]
        self.project_finish = max(valid) if valid else self.network.project_start
        anchor = self.network.project_finish or self.project_finish

        for aid in reversed(self.order):
            d = self.dates[aid]
            if not d.available:
                continue
            a = self.network.get(aid)
            cal = self.calendars[aid]
            try:
                span = work_days_between(cal, d.es, d.ef)
                lf = anchor
                for sid, link in self.succs[aid]:
                    sd = self.dates[sid]
                    if not sd.available:
                        continue
                    lf = min(lf, finish_bound(link, sd, self.calendars[sid], cal, span))
                d.lf = lf
                d.ls = add_work_days(cal, lf, -span)
            except InvalidCalendar as exc:
                self._invalid(a, exc)
        self.state = NetworkState.BACKWARD_PASS_DONE

    def floats(self):
        clamp = self.network.project_finish is None
        for aid in self.order:
            d = self.dates[aid]
            if not d.available or d.ls is None:
                continue
            tf = work_days_between(self.calendars[aid], d.es, d.ls)
            if clamp:
                tf = max(0, tf)
            d.total_float = tf
            d.critical = tf <= 0

        for aid in self.order:
            d = self.dates[aid]
            if d.total_float is None:
                continue
            slacks = [
                relationship_float(link, d, self.dates[sid], self.calendars[sid])
                for sid, link in self.succs[aid]
                if self.dates[sid].available
            ]
            ff = min(slacks) if slacks else d.total_float
            d.free_float = max(0, min(ff, d.total_float))

    def planned(self):
        if self.status_date is None:
            return
        idx = self.network.active_baseline_index
        for aid in self.order:
            d = self.dates[aid]
            if d.available:
                d.planned_percent = planned_percent(
                    self.network.get(aid), self.calendars[aid], d, self.status_date, idx,
                )

    # ---- summaries ----

    def rollup(self):
        for a in self.network:
            if a.type not in ROLLUP_TYPES:
                continue
            leaves = [
                self.dates[c.id] for c in self.network.descendants(a.id)
                if c.type in SCHEDULED_TYPES and self.dates.get(c.id) is not None and self.dates[c.id].available
            ]
            if not leaves:
                self.dates[a.id] = ScheduleDates()
                continue
            try:
                cal = self._calendar(a)
            except InvalidCalendar as exc:
                self._invalid(a, exc)
                continue

            d = ScheduleDates(
                es=min(x.es for x in leaves),
                ef=max(x.ef for x in leaves),
            )
            with_late = [x for x in leaves if x.ls is not None]
            if with_late:
                d.ls = min(x.ls for x in with_late)
                d.lf = max(x.lf for x in with_late)
            floats = [x.total_float for x in leaves if x.total_float is not None]
            if floats:
                d.total_float = min(floats)
                d.critical = d.total_float <= 0
            d.duration = work_days_between(cal, d.es, d.ef)
            d.work_hours = sum(x.work_hours or 0.0 for x in leaves)
            d.percent_complete = _weighted_percent(leaves, "percent_complete")
            if self.status_date is not None:
                d.planned_percent = _weighted_percent(leaves, "planned_percent")
            self.dates[a.id] = d

    # ---- commit ----

    def result(self, commit: bool) -> SolvedNetwork:
        for a in self.network:
            self.dates.setdefault(a.id, ScheduleDates())
        if commit:
            for a in self.network:
                a.dates = self.dates[a.id]
            self.network.state = NetworkState.SOLVED
        self.state = NetworkState.SOLVED
        return SolvedNetwork(
            network=self.network,
            dates=MappingProxyType(self.dates),
            order=tuple(self.order),
            project_start=self.network.project_start,
            project_finish=self.project_finish,
            status_date=self.status_date,
            durations=MappingProxyType(self.durations),
            edges=tuple(self.edges),
            unresolved=tuple(self.unresolved),
            calendar_issues=tuple(self.calendar_issues),
            committed=commit,
        )


def _weighted_percent(leaves: List[ScheduleDates], attr: str) -> float:
    """Work-hour weighted average of a percent field; duration weights when no work is set."""
    weights = [x.work_hours or 0.0 for x in leaves]
    if sum(weights) <= 0:
        weights = [max(1, x.duration or 0) for x in leaves]
    total = sum(weights)
    return round(sum(w * (getattr(x, attr) or 0.0) for w, x in zip(weights, leaves)) / total, 2)


# ---------------------------------------------------------
# PUBLIC API
# ---------------------------------------------------------

def solve(
    network: Network,
    status_date: Optional[date] = None,
    *,
    durations: Optional[Mapping[str, int]] = None,
    commit: bool = True,
) -> SolveResult:
    """
    Run the full CPM pass over a network.

    Steps:
      1. Resolve links (dangling ids -> UnresolvedPredecessor, skipped).
      2. Topological order (Kahn, ties by id); a cycle returns SolveError
         and leaves the network untouched.
      3. Forward pass, splitting in-progress work at status_date.
      4. Backward pass from the latest EF or network.project_finish.
      5. Total / free float, critical flags, summary rollups.
      6. Commit every activity's dates at once (unless commit=False).

    durations overrides authored durations by id, without touching the
    network (used by the Monte Carlo inner loop together with commit=False).

    Returns:
      SolvedNetwork on success, SolveError on a cycle.
    """
    sp = _SolvePass(network, status_date, durations)
    sp.build_graph()

    sp.order = order = sp.topological_order()
    if len(order) != len(sp.preds):
        ids = tuple(sp.cycle_members())
        logger.warning("Solve aborted: cycle through %s", ", ".join(ids))
        return SolveError(
            SolveErrorKind.CYCLE_DETECTED,
            ids,
            "Graph is not acyclic; cycle through: " + ", ".join(ids),
        )

    sp.forward()
    sp.backward()
    sp.floats()
    sp.planned()
    sp.rollup()
    result = sp.result(commit)

    logger.debug(
        "Solved %d activities: finish %s, %d critical, %d unresolved links",
        len(order), result.project_finish, len(result.critical_ids), len(result.unresolved),
    )
    return result

