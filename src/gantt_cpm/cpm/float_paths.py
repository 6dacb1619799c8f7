# gantt_cpm/cpm/float_paths.py

"""
Multiple float paths.

Numbers chains of driving relationships by criticality: path 1 ends at the
project end activity, each later path starts from the lowest-float activity
not yet assigned. A link is driving when its relationship float is 0.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Dict, List, Optional, Tuple

from gantt_cpm.config.settings import settings
from gantt_cpm.cpm.solver import SolvedNetwork, relationship_float

logger = logging.getLogger(__name__)


class FloatMode(str, Enum):
    TOTAL_FLOAT = "totalFloat"
    FREE_FLOAT = "freeFloat"


def _float_of(solved: SolvedNetwork, activity_id: str, mode: FloatMode) -> float:
    d = solved.dates[activity_id]
    value = d.free_float if mode == FloatMode.FREE_FLOAT else d.total_float
    if value is None:
        value = d.total_float
    return float("inf") if value is None else value


def driving_candidates(solved: SolvedNetwork, activity_id: str) -> List[tuple]:
    """
    (rf, predecessor_id) for every scheduled predecessor of an activity,
    most driving first: lowest RF, then longest duration, then lowest id.
    """
    succ_dates = solved.dates[activity_id]
    if not succ_dates.available:
        return []
    succ_cal = solved.network.calendar_for(solved.network.get(activity_id))
    out = []
    for pid, link in solved.predecessors_of(activity_id):
        pd = solved.dates[pid]
        if not pd.available:
            continue
        rf = relationship_float(link, pd, succ_dates, succ_cal)
        out.append((rf, -(solved.durations.get(pid, 0)), pid))
    out.sort()
    return [(rf, pid) for rf, _, pid in out]


def driving_predecessor(solved: SolvedNetwork, activity_id: str) -> Optional[str]:
    """The single most driving predecessor (RF == 0), or None."""
    for rf, pid in driving_candidates(solved, activity_id):
        if rf == 0:
            return pid
    return None


def driving_links(solved: SolvedNetwork) -> Dict[str, Tuple[str, int]]:
    """
    activity_id -> (nearest predecessor, relationship float) for every
    scheduled activity with a scheduled predecessor. The link drives the
    activity when the float is 0.
    """
    links = {}
    for aid in solved.order:
        candidates = driving_candidates(solved, aid)
        if candidates:
            rf, pid = candidates[0]
            links[aid] = (pid, rf)
    return links


def partition_float_paths(
    solved: SolvedNetwork,
    mode=FloatMode.TOTAL_FLOAT,
    end_activity_id: Optional[str] = None,
    max_paths: Optional[int] = None,
) -> Dict[str, int]:
    """
    Partition scheduled activities into disjoint float paths.

    Steps:
      1. Seed path 1 with the end activity (default: every activity that
         finishes on the latest EF).
      2. Grow the path backward through all driving predecessors that are
         still unassigned (tie-break order: longer duration, lower id).
      3. Seed the next path with the unassigned activity of lowest float
         (TF or FF by mode), ties to the latest EF then lowest id.
      4. Stop when everything is assigned or max_paths is reached.

    Read-only over the solved network.

    Returns:
      dict activity_id -> path number (1-based); activities left over after
      the cap are absent.
    """
    mode = FloatMode(mode)
    max_paths = settings.MAX_FLOAT_PATHS if max_paths is None else max_paths

    pool = [i for i in solved.order if solved.dates[i].available]
    if not pool or max_paths <= 0:
        return {}

    if end_activity_id is not None:
        if end_activity_id not in solved.dates or not solved.dates[end_activity_id].available:
            raise ValueError(f"End activity {end_activity_id!r} is not a scheduled activity")
        seeds = [end_activity_id]
    else:
        latest = max(solved.dates[i].ef for i in pool)
        seeds = sorted(i for i in pool if solved.dates[i].ef == latest)

    paths: Dict[str, int] = {}
    path_no = 1
    while seeds and path_no <= max_paths:
        queue = deque()
        for s in seeds:
            paths[s] = path_no
            queue.append(s)
        while queue:
            cur = queue.popleft()
            for rf, pid in driving_candidates(solved, cur):
                if rf == 0 and pid not in paths:
                    paths[pid] = path_no
                    queue.append(pid)

        path_no += 1
        rest = [i for i in pool if i not in paths]
        if not rest:
            break
        rest.sort(key=lambda i: (_float_of(solved, i, mode), -solved.dates[i].ef.toordinal(), i))
        seeds = [rest[0]]

    logger.debug("Partitioned %d of %d activities into %d float paths",
                 len(paths), len(pool), max(paths.values()))
    return paths
