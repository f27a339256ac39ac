from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from techroute.timeparse import to_minutes

from .capabilities import OverrideBook, check_capability
from .config import OptimizerConfig
from .drive_time import DriveTimes, job_key, start_key
from .geo import same_zone
from .models import AssignmentPlan, CapabilityViolation, Job, Technician, UnassignedReason

log = logging.getLogger(__name__)


@dataclass
class PairCheck:
    feasible: bool
    capable: bool
    overridden: bool = False
    zone_match: bool = True
    reason: Optional[UnassignedReason] = None
    violation: Optional[CapabilityViolation] = None


def working_day(tech: Technician, cfg: OptimizerConfig) -> Tuple[int, int]:
    start = to_minutes(tech.shift_start or cfg.day_start)
    end = to_minutes(tech.shift_end or cfg.day_end)
    return start, end


def start_bounds(job: Job, tech: Technician, cfg: OptimizerConfig) -> Tuple[float, float]:
    """Earliest and latest service start for this job on this tech's day."""
    day_start, day_end = working_day(tech, cfg)
    lo = max(job.window_start_min, day_start)
    hi = min(job.window_end_min, day_end - job.duration_min)
    return lo, hi


def check_pair(
    tech: Technician,
    job: Job,
    overrides: Optional[OverrideBook] = None,
    config: Optional[OptimizerConfig] = None,
) -> PairCheck:
    """
    Hard filter for one (tech, job) pair. Checks run in a fixed order so the
    reported reason is the first one that fails:
    availability, capability, working-day window, zone (strict mode only).
    """
    cfg = config or OptimizerConfig()
    if not tech.available:
        return PairCheck(False, capable=False, reason=UnassignedReason.NO_AVAILABLE_TECHNICIAN)

    violation = check_capability(tech, job)
    overridden = violation is not None and overrides is not None and overrides.is_approved(tech.id, job.id)
    if violation is not None and not overridden:
        return PairCheck(False, capable=False, reason=UnassignedReason.NO_CAPABLE_TECHNICIAN, violation=violation)

    lo, hi = start_bounds(job, tech, cfg)
    if lo > hi or job.duration_min > cfg.max_daily_hours * 60:
        return PairCheck(False, capable=True, overridden=overridden, reason=UnassignedReason.TIME_CONFLICT)

    zone_match = same_zone(tech.zone, job.zone)
    if cfg.strict_zones and not zone_match:
        return PairCheck(False, capable=True, overridden=overridden, zone_match=False,
                         reason=UnassignedReason.NO_ZONE_MATCH)

    return PairCheck(True, capable=True, overridden=overridden, zone_match=zone_match)


@dataclass
class FeasibilityMatrix:
    tech_ids: List[str]
    job_ids: List[str]
    feasible: np.ndarray
    checks: Dict[Tuple[str, str], PairCheck] = field(default_factory=dict)

    def row(self, tech_id: str) -> np.ndarray:
        return self.feasible[self.tech_ids.index(tech_id)]

    def column(self, job_id: str) -> np.ndarray:
        return self.feasible[:, self.job_ids.index(job_id)]

    def check(self, tech_id: str, job_id: str) -> PairCheck:
        return self.checks[(tech_id, job_id)]


def build_feasibility_matrix(
    techs: Sequence[Technician],
    jobs: Sequence[Job],
    overrides: Optional[OverrideBook] = None,
    config: Optional[OptimizerConfig] = None,
) -> FeasibilityMatrix:
    cfg = config or OptimizerConfig()
    ordered = sorted(techs, key=lambda t: t.id)
    M = np.zeros((len(ordered), len(jobs)), dtype=bool)
    checks: Dict[Tuple[str, str], PairCheck] = {}
    for i, t in enumerate(ordered):
        for j, job in enumerate(jobs):
            pc = check_pair(t, job, overrides, cfg)
            checks[(t.id, job.id)] = pc
            M[i, j] = pc.feasible
    log.debug("feasibility: %d techs x %d jobs, %d feasible pairs", len(ordered), len(jobs), int(M.sum()))
    return FeasibilityMatrix([t.id for t in ordered], [j.id for j in jobs], M, checks)


def unassignable_reason(checks: Sequence[PairCheck]) -> UnassignedReason:
    """
    Pick the most telling reason when no tech can take a job.
    The furthest stage any tech reached wins: a job that only failed on time
    for some capable tech is a time conflict, not a capability problem.
    """
    if not checks:
        return UnassignedReason.NO_AVAILABLE_TECHNICIAN
    reasons = {c.reason for c in checks}
    for r in (
        UnassignedReason.TIME_CONFLICT,
        UnassignedReason.NO_ZONE_MATCH,
        UnassignedReason.NO_CAPABLE_TECHNICIAN,
        UnassignedReason.NO_AVAILABLE_TECHNICIAN,
    ):
        if r in reasons:
            return r
    return UnassignedReason.TIME_CONFLICT


# -----------------------------
# Tentative per-tech timeline
# -----------------------------

@dataclass
class Placed:
    job: Job
    start: float

    @property
    def end(self) -> float:
        return self.start + self.job.duration_min


@dataclass
class Slot:
    start: float
    position: int
    added_drive: float


class TechSchedule:
    """
    A tech's tentative day while the assignment engine is filling it.
    Placements are kept sorted by start; every gap must hold the drive time
    from the previous stop and on to the next one.
    """

    def __init__(self, tech: Technician, drive_times: DriveTimes, config: Optional[OptimizerConfig] = None):
        self.tech = tech
        self.dt = drive_times
        self.cfg = config or OptimizerConfig()
        self.day_start, self.day_end = working_day(tech, self.cfg)
        self.items: List[Placed] = []

    def _travel(self, a: str, b: str) -> float:
        return self.dt.minutes(a, b)

    def _key(self, pos: int) -> str:
        return start_key(self.tech.id) if pos < 0 else job_key(self.items[pos].job.id)

    @property
    def job_ids(self) -> List[str]:
        return [p.job.id for p in self.items]

    @property
    def service_minutes(self) -> float:
        return sum(p.job.duration_min for p in self.items)

    @property
    def drive_minutes(self) -> float:
        total, prev = 0.0, start_key(self.tech.id)
        for p in self.items:
            cur = job_key(p.job.id)
            total += self._travel(prev, cur)
            prev = cur
        return total

    @property
    def load_hours(self) -> float:
        return self.service_minutes / 60.0

    def find_slot(self, job: Job, not_before: Optional[float] = None) -> Optional[Slot]:
        """Earliest feasible start for `job`, scanning the gaps in time order."""
        lo, hi = job.window_start_min, job.window_end_min
        hi = min(hi, self.day_end - job.duration_min)
        key = job_key(job.id)
        capacity = self.cfg.max_daily_hours * 60.0
        base_load = self.service_minutes + self.drive_minutes + job.duration_min

        for pos in range(len(self.items) + 1):
            prev_key = self._key(pos - 1)
            prev_end = self.day_start if pos == 0 else self.items[pos - 1].end
            earliest = max(prev_end + self._travel(prev_key, key), lo, self.day_start)
            if not_before is not None:
                earliest = max(earliest, not_before)
            latest = hi
            if pos < len(self.items):
                nxt = self.items[pos]
                nxt_key = job_key(nxt.job.id)
                latest = min(latest, nxt.start - job.duration_min - self._travel(key, nxt_key))
                added = self._travel(prev_key, key) + self._travel(key, nxt_key) - self._travel(prev_key, nxt_key)
            else:
                added = self._travel(prev_key, key)
            if earliest > latest:
                continue
            if base_load + added > capacity:
                continue
            return Slot(start=earliest, position=pos, added_drive=added)
        return None

    def earliest_start(self, job: Job, not_before: Optional[float] = None) -> Optional[float]:
        slot = self.find_slot(job, not_before)
        return None if slot is None else slot.start

    def insertion_cost(self, job: Job, not_before: Optional[float] = None) -> Optional[float]:
        slot = self.find_slot(job, not_before)
        return None if slot is None else slot.added_drive

    def place(self, job: Job, start: float) -> None:
        self.items.append(Placed(job, float(start)))
        self.items.sort(key=lambda p: (p.start, p.job.id))

    def remove(self, job_id: str) -> None:
        self.items = [p for p in self.items if p.job.id != job_id]


def schedule_from_plan(
    tech: Technician,
    plan: AssignmentPlan,
    jobs_by_id: Mapping[str, Job],
    drive_times: DriveTimes,
    config: Optional[OptimizerConfig] = None,
) -> TechSchedule:
    """
    Rebuild a tech's tentative day from a plan. Entries without a start
    (manual placements) sit at their pinned start or their window start.
    """
    sched = TechSchedule(tech, drive_times, config)
    starts = {e.job_id: e.start_min for e in plan.entries if e.tech_id == tech.id}
    for jid in plan.routes.get(tech.id, []):
        job = jobs_by_id.get(jid)
        if job is None:
            continue
        start = starts.get(jid)
        if start is None:
            start = plan.pinned_starts.get(jid, float(job.window_start_min))
        sched.place(job, start)
    return sched
