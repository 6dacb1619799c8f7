"""CPM scheduling engine: calendars, network solve, float paths, usage and risk."""

from gantt_cpm.cpm.calendar_engine import (
    Calendar,
    add_work_days,
    builtin_calendar,
    is_work_day,
    next_work_day,
    work_days_between,
)
from gantt_cpm.cpm.float_paths import FloatMode, partition_float_paths
from gantt_cpm.cpm.network import (
    Activity,
    ActivityType,
    Network,
    NetworkState,
    PredecessorLink,
    RelationType,
    Resource,
    ResourceAssignment,
)
from gantt_cpm.cpm.risk_engine import (
    DurationDistribution,
    RiskEvent,
    SimulationParams,
    SimulationResult,
    SimulationRun,
    run_simulation,
)
from gantt_cpm.cpm.snapshot import from_snapshot, to_snapshot
from gantt_cpm.cpm.solver import SolvedNetwork, SolveError, UnresolvedPredecessor, solve
from gantt_cpm.cpm.usage_engine import UsageMetric, daily_values, usage_series
from gantt_cpm.errors import (
    CycleDetected,
    InvalidCalendar,
    InvalidDistribution,
    ScheduleError,
    SimulationCancelled,
    UnknownActivity,
)

__version__ = "0.1.0"
