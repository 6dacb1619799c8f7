# gantt_cpm/cpm/risk_engine.py

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import stats

from gantt_cpm.config.settings import settings
from gantt_cpm.cpm.calendar_engine import work_days_between
from gantt_cpm.cpm.network import ActivityType, Network
from gantt_cpm.cpm.solver import SolveError, SolveErrorKind, SolvedNetwork, solve
from gantt_cpm.errors import InvalidCalendar, InvalidDistribution, ScheduleError, SimulationCancelled

logger = logging.getLogger(__name__)


class DistributionType(str, Enum):
    TRIANGULAR = "triangular"
    BETA_PERT = "betaPERT"
    UNIFORM = "uniform"
    NONE = "none"


class ImpactType(str, Enum):
    ADD_DAYS = "addDays"
    MULTIPLY = "multiply"


# -----------------------------
# Inputs
# -----------------------------

@dataclass(frozen=True)
class DurationDistribution:
    type: DistributionType = DistributionType.NONE
    min: Optional[float] = None
    most_likely: Optional[float] = None
    max: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "type", DistributionType(self.type))

    def validate(self, activity_id: str):
        """Raise InvalidDistribution on a malformed min / most likely / max ordering."""
        if self.type == DistributionType.NONE:
            return
        if self.type == DistributionType.UNIFORM:
            if self.min is None or self.max is None:
                raise InvalidDistribution(activity_id, "uniform needs min and max")
            if self.min > self.max:
                raise InvalidDistribution(activity_id, f"min {self.min} > max {self.max}")
            return
        if self.min is None or self.most_likely is None or self.max is None:
            raise InvalidDistribution(activity_id, f"{self.type.value} needs min, most likely and max")
        if not self.min <= self.most_likely <= self.max:
            raise InvalidDistribution(
                activity_id,
                f"expected min <= most likely <= max, got {self.min}/{self.most_likely}/{self.max}",
            )
        if self.min < 0:
            raise InvalidDistribution(activity_id, "durations must be positive")


@dataclass(frozen=True)
class RiskEvent:
    id: str
    name: str
    probability: float  # 0-100
    affected_activity_ids: Tuple[str, ...]
    impact_type: ImpactType = ImpactType.ADD_DAYS
    impact_value: float = 0.0
    mitigated: bool = False
    mitigated_probability: Optional[float] = None
    mitigated_impact_value: Optional[float] = None
    category: str = ""
    owner: str = ""
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, "impact_type", ImpactType(self.impact_type))
        object.__setattr__(self, "affected_activity_ids", tuple(self.affected_activity_ids))

    def effective(self, use_mitigated: bool) -> Tuple[float, float]:
        """(probability, impact) in force for a run."""
        if use_mitigated and self.mitigated:
            prob = self.probability if self.mitigated_probability is None else self.mitigated_probability
            impact = self.impact_value if self.mitigated_impact_value is None else self.mitigated_impact_value
            return prob, impact
        return self.probability, self.impact_value


@dataclass(frozen=True)
class SimulationParams:
    iterations: int = settings.SIM_ITERATIONS
    seed: Optional[int] = None
    use_mitigated: bool = False
    confidence_levels: Tuple[int, ...] = tuple(settings.CONFIDENCE_LEVELS)

    def __post_init__(self):
        if self.iterations < 1:
            raise ValueError("iterations must be >= 1")
        object.__setattr__(self, "confidence_levels", tuple(self.confidence_levels))


# -----------------------------
# Outputs
# -----------------------------

@dataclass(frozen=True)
class HistogramBin:
    bin_start: float
    bin_end: float
    count: int
    cum_pct: float


@dataclass(frozen=True)
class IterationResult:
    finish_date: date
    project_duration: int
    critical_ids: frozenset
    sampled_durations: Mapping[str, int]


@dataclass(frozen=True)
class SimulationResult:
    """
    All-or-nothing record of a finished run. id, name and run_at are
    bookkeeping and do not take part in equality.
    """
    params: SimulationParams
    completed_iterations: int
    duration_percentiles: Dict[int, float]
    date_percentiles: Dict[int, date]
    deterministic_duration: int
    deterministic_finish: date
    mean_duration: float
    std_dev_duration: float
    criticality_index: Dict[str, float]
    sensitivity_index: Dict[str, float]
    histogram: Tuple[HistogramBin, ...]
    distributions_snapshot: Dict[str, DurationDistribution] = field(default_factory=dict)
    risk_events_snapshot: Tuple[RiskEvent, ...] = ()
    id: str = field(default="", compare=False)
    name: str = field(default="", compare=False)
    run_at: Optional[datetime] = field(default=None, compare=False)


# -----------------------------
# Sampling
# -----------------------------

def sample_duration(dist: DurationDistribution, rng: np.random.Generator) -> Optional[float]:
    """
    One draw from a duration distribution; None for 'none'.

    triangular: inverse transform of one uniform draw.
    betaPERT:   Beta(1 + 4(c-a)/(b-a), 1 + 4(b-c)/(b-a)) scaled to [a, b].
    uniform:    a + u (b - a).
    """
    if dist.type == DistributionType.NONE:
        return None

    if dist.type == DistributionType.UNIFORM:
        a, b = dist.min, dist.max
        return a + rng.random() * (b - a)

    a, c, b = dist.min, dist.most_likely, dist.max
    if b <= a:
        return c

    if dist.type == DistributionType.TRIANGULAR:
        u = rng.random()
        fc = (c - a) / (b - a)
        if u < fc:
            return a + math.sqrt(u * (b - a) * (c - a))
        return b - math.sqrt((1 - u) * (b - a) * (b - c))

    # betaPERT, lambda = 4
    alpha = 1 + 4 * (c - a) / (b - a)
    beta = 1 + 4 * (b - c) / (b - a)
    return a + rng.beta(alpha, beta) * (b - a)


def _apply_impact(duration: int, impact_type: ImpactType, value: float) -> int:
    if impact_type == ImpactType.ADD_DAYS:
        return duration + max(0, round(value))
    return max(1, round(duration * max(0.1, value)))


# -----------------------------
# Statistics
# -----------------------------

def percentile_table(values: Sequence[float], levels: Sequence[int]) -> Dict[int, float]:
    """Linear-interpolated percentiles keyed by level."""
    arr = np.asarray(values, dtype=float)
    return {int(p): float(np.percentile(arr, p)) for p in levels}


def date_percentile_table(dates: Sequence[date], levels: Sequence[int]) -> Dict[int, date]:
    ordinals = np.asarray([d.toordinal() for d in dates], dtype=float)
    return {int(p): date.fromordinal(int(math.ceil(np.percentile(ordinals, p)))) for p in levels}


def build_histogram(values: Sequence[float], bins: Optional[int] = None) -> Tuple[HistogramBin, ...]:
    """Fixed bin count over [min, max]; a single [min, min + 1] bin when all values match."""
    if len(values) == 0:
        return ()
    arr = np.asarray(values, dtype=float)
    lo, hi = float(arr.min()), float(arr.max())
    if lo == hi:
        return (HistogramBin(lo, hi + 1, len(arr), 100.0),)

    counts, edges = np.histogram(arr, bins=bins or settings.HISTOGRAM_BINS, range=(lo, hi))
    cum = np.cumsum(counts) / len(arr) * 100
    return tuple(
        HistogramBin(round(float(edges[i]), 1), round(float(edges[i + 1]), 1), int(counts[i]), round(float(cum[i]), 1))
        for i in range(len(counts))
    )


def sensitivity_table(iterations: Sequence[IterationResult]) -> Dict[str, float]:
    """
    Spearman rank correlation between each activity's sampled duration and
    the project duration. Activities whose samples never vary are skipped.
    """
    if len(iterations) < 3:
        return {}
    project = np.asarray([it.project_duration for it in iterations], dtype=float)
    if np.all(project == project[0]):
        return {}

    ids = sorted({i for it in iterations for i in it.sampled_durations})
    out = {}
    for aid in ids:
        x = np.asarray([it.sampled_durations.get(aid, 0) for it in iterations], dtype=float)
        if np.all(x == x[0]):
            continue
        rho, _ = stats.spearmanr(x, project)
        if not np.isnan(rho):
            out[aid] = round(float(rho), 3)
    return out


# ---------------------------------------------------------
# CHUNKED RUN
# ---------------------------------------------------------

class SimulationRun:
    """
    A Monte Carlo run executed in chunks.

    Each step() processes up to chunk_size iterations, then reports
    progress; should_cancel is polled at every chunk boundary. The network
    is copied up front so the caller may keep editing its own copy.
    """

    def __init__(
        self,
        network: Network,
        distributions: Mapping[str, DurationDistribution],
        risk_events: Sequence[RiskEvent] = (),
        params: Optional[SimulationParams] = None,
        progress: Optional[Callable[[int], None]] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
        chunk_size: Optional[int] = None,
    ):
        self.network = network.copy()
        self.params = params or SimulationParams()
        self.progress = progress
        self.should_cancel = should_cancel
        self.chunk_size = chunk_size or settings.SIM_CHUNK_SIZE
        self.risk_events = tuple(risk_events)
        self.distributions_snapshot = dict(distributions)

        self.seed = self.params.seed
        if self.seed is None:
            self.seed = int(np.random.SeedSequence().entropy % (2 ** 63))
        self.rng = np.random.default_rng(self.seed)

        self.iterations: List[IterationResult] = []
        self.attempted = 0
        self.cancelled = False

        self.error: Optional[SolveError] = None
        det = solve(self.network, commit=False)
        if isinstance(det, SolveError):
            self.error = det
            return
        self.deterministic: SolvedNetwork = det
        self.base_durations = dict(det.durations)
        try:
            self.calendar = self.network.default_calendar
        except InvalidCalendar as exc:
            logger.warning("Simulation aborted: %s", exc)
            self.error = SolveError(SolveErrorKind.INVALID_CALENDAR, (), str(exc))
            return
        self.distributions = self._usable_distributions(distributions)
        self.tracked = sorted(
            set(self.distributions)
            | {i for ev in self.risk_events for i in ev.affected_activity_ids if self._variable(i)}
        )

    def _variable(self, activity_id: str) -> bool:
        """Completed work, milestones and summary rows never vary."""
        if activity_id not in self.base_durations:
            return False
        a = self.network.get(activity_id)
        return a.type == ActivityType.TASK and a.percent_complete < 100

    def _usable_distributions(self, distributions) -> Dict[str, DurationDistribution]:
        usable = {}
        for aid in sorted(distributions):
            dist = distributions[aid]
            if dist.type == DistributionType.NONE or not self._variable(aid):
                continue
            try:
                dist.validate(aid)
            except InvalidDistribution as exc:
                logger.warning("%s; using the deterministic duration", exc)
                continue
            usable[aid] = dist
        return usable

    @property
    def finished(self) -> bool:
        return self.error is not None or self.attempted >= self.params.iterations

    # ---- one iteration ----

    def _sample(self) -> Dict[str, int]:
        durations = dict(self.base_durations)
        for aid, dist in self.distributions.items():
            x = sample_duration(dist, self.rng)
            if x is not None:
                durations[aid] = max(1, round(x))

        for ev in self.risk_events:
            prob, impact = ev.effective(self.params.use_mitigated)
            if self.rng.random() * 100 >= prob:
                continue
            for aid in ev.affected_activity_ids:
                if self._variable(aid):
                    durations[aid] = _apply_impact(durations[aid], ev.impact_type, impact)
        return durations

    def _iterate(self) -> Optional[IterationResult]:
        for attempt in range(settings.SIM_MAX_RETRIES + 1):
            try:
                durations = self._sample()
                solved = solve(self.network, durations=durations, commit=False)
                if isinstance(solved, SolveError):
                    raise ScheduleError(solved.message)
                return IterationResult(
                    finish_date=solved.project_finish,
                    project_duration=work_days_between(self.calendar, solved.project_start, solved.project_finish),
                    critical_ids=frozenset(solved.critical_ids),
                    sampled_durations={aid: durations[aid] for aid in self.tracked},
                )
            except (ScheduleError, ValueError, ArithmeticError) as exc:
                logger.warning("Iteration %d attempt %d failed: %s", self.attempted + 1, attempt + 1, exc)
        logger.warning("Iteration %d skipped after %d attempts", self.attempted + 1, settings.SIM_MAX_RETRIES + 1)
        return None

    # ---- chunking ----

    def step(self) -> bool:
        """Run one chunk. Returns True while iterations remain."""
        if self.finished:
            return False
        if self.should_cancel is not None and self.should_cancel():
            self.cancelled = True
            self.iterations = []
            logger.info("Simulation cancelled after %d iterations", self.attempted)
            raise SimulationCancelled(f"Cancelled after {self.attempted} iterations")

        stop = min(self.params.iterations, self.attempted + self.chunk_size)
        while self.attempted < stop:
            it = self._iterate()
            self.attempted += 1
            if it is not None:
                self.iterations.append(it)

        if self.progress is not None:
            self.progress(round(100 * self.attempted / self.params.iterations))
        return not self.finished

    def result(self, name: str = "") -> SimulationResult:
        if self.error is not None:
            raise ScheduleError(self.error.message)
        if not self.finished:
            raise RuntimeError("Simulation still has iterations to run")
        if not self.iterations:
            raise ScheduleError("Every iteration failed; no result")

        durations = [it.project_duration for it in self.iterations]
        finishes = [it.finish_date for it in self.iterations]
        n = len(self.iterations)
        levels = self.params.confidence_levels

        crit_counts = {aid: 0 for aid in self.deterministic.order}
        for it in self.iterations:
            for aid in it.critical_ids:
                crit_counts[aid] = crit_counts.get(aid, 0) + 1

        run_at = datetime.now()
        result = SimulationResult(
            params=replace(self.params, seed=self.seed),
            completed_iterations=n,
            duration_percentiles=percentile_table(durations, levels),
            date_percentiles=date_percentile_table(finishes, levels),
            deterministic_duration=self.deterministic.project_duration,
            deterministic_finish=self.deterministic.project_finish,
            mean_duration=float(np.mean(durations)),
            std_dev_duration=float(np.std(durations)),
            criticality_index={aid: c / n for aid, c in crit_counts.items()},
            sensitivity_index=sensitivity_table(self.iterations),
            histogram=build_histogram(durations),
            distributions_snapshot=dict(self.distributions_snapshot),
            risk_events_snapshot=self.risk_events,
            id=f"run_{uuid.uuid4().hex[:8]}",
            name=name or f"Simulation {run_at:%Y-%m-%d %H:%M}",
            run_at=run_at,
        )
        logger.info(
            "Simulation %s: %d/%d iterations, P50 %.1f days, mean %.1f",
            result.id, n, self.params.iterations,
            result.duration_percentiles.get(50, float(np.median(durations))), result.mean_duration,
        )
        return result


def run_simulation(
    network: Network,
    distributions: Mapping[str, DurationDistribution],
    risk_events: Sequence[RiskEvent] = (),
    params: Optional[SimulationParams] = None,
    progress: Optional[Callable[[int], None]] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> Union[SimulationResult, SolveError]:
    """
    Monte Carlo over perturbed durations.

    Per iteration, in a fixed order on one seeded stream:
      1. draw a duration for each activity with a distribution (by id),
      2. roll each risk event once (listed order) and apply its impact to
         the affected activities, compounding,
      3. re-solve without the status-date split and record project
         duration, finish date and critical set.

    Returns:
      SimulationResult, or SolveError when the network has a cycle or
      its default calendar is unknown.
      Raises SimulationCancelled when should_cancel fires.
    """
    run = SimulationRun(network, distributions, risk_events, params, progress, should_cancel)
    if run.error is not None:
        return run.error
    while run.step():
        pass
    return run.result()


# -----------------------------
# Run history
# -----------------------------

class SimulationHistory:
    """Stored runs, most recent first, with one active run."""

    def __init__(self, runs: Sequence[SimulationResult] = ()):
        self.runs: List[SimulationResult] = list(runs)
        self.active_run_id: Optional[str] = self.runs[0].id if self.runs else None

    def __len__(self) -> int:
        return len(self.runs)

    def add(self, result: SimulationResult, activate: bool = True) -> SimulationResult:
        self.runs.insert(0, result)
        if activate or self.active_run_id is None:
            self.active_run_id = result.id
        return result

    def _index(self, run_id: str) -> int:
        for i, r in enumerate(self.runs):
            if r.id == run_id:
                return i
        raise KeyError(run_id)

    def get(self, run_id: str) -> SimulationResult:
        return self.runs[self._index(run_id)]

    @property
    def active(self) -> Optional[SimulationResult]:
        if self.active_run_id is None:
            return None
        return self.get(self.active_run_id)

    def activate(self, run_id: str):
        self.get(run_id)
        self.active_run_id = run_id

    def rename(self, run_id: str, name: str) -> SimulationResult:
        idx = self._index(run_id)
        self.runs[idx] = replace(self.runs[idx], name=name)
        return self.runs[idx]

    def remove(self, run_id: str):
        del self.runs[self._index(run_id)]
        if self.active_run_id == run_id:
            self.active_run_id = self.runs[0].id if self.runs else None
