# gantt_cpm/cpm/usage_engine.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from itertools import accumulate
from typing import Dict, List, Optional

import pandas as pd

from gantt_cpm.cpm.calendar_engine import ONE_DAY, Calendar, iter_work_days
from gantt_cpm.cpm.network import ROLLUP_TYPES, Activity, Network
from gantt_cpm.errors import InvalidCalendar

logger = logging.getLogger(__name__)


class UsageMetric(str, Enum):
    PLANNED = "planned"
    PLANNED_CUMULATIVE = "planned_cumulative"
    ACTUAL = "actual"
    ACTUAL_CUMULATIVE = "actual_cumulative"
    REMAINING = "remaining"
    REMAINING_CUMULATIVE = "remaining_cumulative"
    FORECAST = "forecast"
    FORECAST_CUMULATIVE = "forecast_cumulative"

    @property
    def cumulative(self) -> bool:
        return self.value.endswith("_cumulative")

    @property
    def base(self) -> "UsageMetric":
        return UsageMetric(self.value.replace("_cumulative", ""))


class Interval(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


# weeks run Monday..Sunday
PERIOD_FREQ = {Interval.DAY: "D", Interval.WEEK: "W-SUN", Interval.MONTH: "M"}


@dataclass(frozen=True)
class UsageBucket:
    bucket_start: date
    bucket_end: date  # last day inside the bucket
    hours: float


# -----------------------------
# Segment distribution
# -----------------------------

def _work_days(calendar: Calendar, start: date, end: date) -> List[date]:
    """Work days in [start, end); the start date alone when the span is empty."""
    days = list(iter_work_days(calendar, start, end))
    return days or [start]


def _spread(out: Dict[date, float], calendar: Calendar, start: date, end: date, hours: float):
    if hours <= 0:
        return
    days = _work_days(calendar, start, end)
    daily = hours / len(days)
    for d in days:
        out[d] = out.get(d, 0.0) + daily


def _planned(activity, calendar, work, **_) -> Dict[date, float]:
    d = activity.dates
    out: Dict[date, float] = {}
    _spread(out, calendar, d.es, d.ef, work)
    return out


def _actual(activity, calendar, work, status_date=None, **_) -> Dict[date, float]:
    d = activity.dates
    pct = min(100.0, max(0.0, activity.percent_complete))
    out: Dict[date, float] = {}
    if pct <= 0:
        return out
    if d.done_finish is not None:
        end = d.done_finish
    elif pct >= 100 or status_date is None:
        end = d.ef
    else:
        end = min(d.ef, max(d.es, status_date + ONE_DAY))
    _spread(out, calendar, d.es, end, work * pct / 100)
    return out


def _remaining(activity, calendar, work, status_date=None, **_) -> Dict[date, float]:
    d = activity.dates
    pct = min(100.0, max(0.0, activity.percent_complete))
    out: Dict[date, float] = {}
    remaining = work * (1 - pct / 100)
    if remaining <= 0:
        return out
    if d.remaining_start is not None and d.remaining_finish is not None:
        start, end = d.remaining_start, d.remaining_finish
    elif status_date is None:
        start, end = d.es, d.ef
    else:
        start, end = max(status_date + ONE_DAY, d.es), d.ef
    if end <= start:
        return out
    _spread(out, calendar, start, end, remaining)
    return out


def _forecast(activity, calendar, work, baseline_index=0, **_) -> Dict[date, float]:
    """
    Baseline ("previsto") distribution. When the baseline was saved with
    progress and a status date, the recorded percent is spread before the
    baseline status date and the rest after it.
    """
    bl = activity.baseline(baseline_index)
    start = bl.start if bl and bl.start else activity.dates.es
    end = bl.finish if bl and bl.finish else activity.dates.ef
    out: Dict[date, float] = {}
    if start is None or end is None:
        return out

    if bl is not None and bl.percent_complete > 0 and bl.status_date is not None:
        split = min(bl.status_date + ONE_DAY, end)
        _spread(out, calendar, start, split, work * bl.percent_complete / 100)
        _spread(out, calendar, split, end, work * (100 - bl.percent_complete) / 100)
    else:
        _spread(out, calendar, start, end, work)
    return out


_DISTRIBUTORS = {
    UsageMetric.PLANNED: _planned,
    UsageMetric.ACTUAL: _actual,
    UsageMetric.REMAINING: _remaining,
    UsageMetric.FORECAST: _forecast,
}


def daily_values(
    activity: Activity,
    metric,
    calendar: Calendar,
    resource_id: Optional[str] = None,
    status_date: Optional[date] = None,
    baseline_index: int = 0,
) -> Dict[date, float]:
    """
    Hours per calendar day for one activity and metric, keyed by date in
    ascending order.

    Non-cumulative metrics spread the activity's work evenly over the work
    days of their segment (planned: ES..EF, actual: done segment,
    remaining: remaining segment, forecast: active baseline). Cumulative
    metrics are running sums of the matching base metric.

    resource_id restricts the work to that resource's assignment.
    Summaries and activities without solved dates return {}.
    """
    metric = UsageMetric(metric)
    if activity.type in ROLLUP_TYPES or activity.dates is None or not activity.dates.available:
        return {}
    work = activity.work_for(resource_id)
    if work <= 0:
        return {}

    base = _DISTRIBUTORS[metric.base](
        activity, calendar, work, status_date=status_date, baseline_index=baseline_index,
    )
    keys = sorted(base)
    if not metric.cumulative:
        return {k: base[k] for k in keys}
    return dict(zip(keys, accumulate(base[k] for k in keys)))


# -----------------------------
# Bucketing
# -----------------------------

def bucket_series(values: Dict[date, float], interval, cumulative: bool = False) -> pd.Series:
    """
    Roll daily values into day/week/month periods over the full covered range.
    Sums for flow metrics; last value (carried forward) for cumulative ones.
    """
    interval = Interval(interval)
    if not values:
        return pd.Series(dtype=float)

    s = pd.Series(
        list(values.values()),
        index=pd.DatetimeIndex(pd.to_datetime(list(values.keys()))),
        dtype=float,
    ).sort_index()
    freq = PERIOD_FREQ[interval]
    grouped = s.groupby(s.index.to_period(freq))
    grouped = grouped.last() if cumulative else grouped.sum()

    full = pd.period_range(grouped.index.min(), grouped.index.max(), freq=freq)
    grouped = grouped.reindex(full)
    return grouped.ffill() if cumulative else grouped.fillna(0.0)


def _to_buckets(series: pd.Series) -> List[UsageBucket]:
    return [
        UsageBucket(p.start_time.date(), p.end_time.date(), float(v))
        for p, v in series.items()
    ]


def usage_series(
    activity: Activity,
    metric,
    interval,
    calendar: Calendar,
    resource_id: Optional[str] = None,
    status_date: Optional[date] = None,
    baseline_index: int = 0,
) -> List[UsageBucket]:
    """Ordered {bucket_start, bucket_end, hours} for one activity."""
    metric = UsageMetric(metric)
    values = daily_values(activity, metric, calendar, resource_id, status_date, baseline_index)
    return _to_buckets(bucket_series(values, interval, metric.cumulative))


def _network_daily(network: Network, metric: UsageMetric, resource_id, status_date) -> Dict[str, Dict[date, float]]:
    """Non-cumulative daily values per activity id."""
    out = {}
    for a in network:
        if a.type in ROLLUP_TYPES:
            continue
        try:
            cal = network.calendar_for(a)
        except InvalidCalendar as exc:
            logger.warning("%s: %s; excluded from usage", a.id, exc)
            continue
        values = daily_values(a, metric.base, cal, resource_id, status_date, network.active_baseline_index)
        if values:
            out[a.id] = values
    return out


def resource_usage(
    network: Network,
    resource_id: Optional[str],
    metric,
    interval,
    status_date: Optional[date] = None,
) -> List[UsageBucket]:
    """One resource's hours summed across every activity (None = all work)."""
    metric = UsageMetric(metric)
    total: Dict[date, float] = {}
    for values in _network_daily(network, metric, resource_id, status_date).values():
        for d, v in values.items():
            total[d] = total.get(d, 0.0) + v
    keys = sorted(total)
    if metric.cumulative:
        total = dict(zip(keys, accumulate(total[k] for k in keys)))
    else:
        total = {k: total[k] for k in keys}
    return _to_buckets(bucket_series(total, interval, metric.cumulative))


def usage_frame(
    network: Network,
    metric,
    interval,
    by: str = "resource",
    status_date: Optional[date] = None,
) -> pd.DataFrame:
    """
    Pivot of hours: one row per resource (by='resource') or per activity
    (by='activity'), one column per bucket start.
    """
    metric = UsageMetric(metric)
    if by not in ("resource", "activity"):
        raise ValueError(f"Unknown grouping: {by}")

    records = []
    if by == "activity":
        for aid, values in _network_daily(network, metric, None, status_date).items():
            records.extend({"row": aid, "date": d, "hours": v} for d, v in values.items())
    else:
        for rid in network.resources:
            for values in _network_daily(network, metric, rid, status_date).values():
                records.extend({"row": rid, "date": d, "hours": v} for d, v in values.items())

    if not records:
        return pd.DataFrame()

    df = pd.DataFrame(records)
    freq = PERIOD_FREQ[Interval(interval)]
    df["bucket"] = pd.to_datetime(df["date"]).dt.to_period(freq)
    full = pd.period_range(df["bucket"].min(), df["bucket"].max(), freq=freq)

    pivot = df.pivot_table(index="row", columns="bucket", values="hours", aggfunc="sum", fill_value=0.0)
    pivot = pivot.reindex(columns=full, fill_value=0.0)
    if metric.cumulative:
        pivot = pivot.cumsum(axis=1)
    pivot.columns = [p.start_time.date() for p in pivot.columns]
    pivot.index.name = by
    return pivot
