from __future__ import annotations

import logging
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .capabilities import OverrideBook, capability_label, required_capability
from .config import OptimizerConfig
from .drive_time import DriveTimes
from .feasibility import PairCheck, Slot, TechSchedule, check_pair, unassignable_reason
from .models import (
    AssignmentEntry,
    AssignmentPlan,
    CapabilityOverride,
    CapabilityViolation,
    Job,
    JobStatus,
    Technician,
    UnassignedJob,
    UnassignedReason,
)

log = logging.getLogger(__name__)

# bound on the ping-pong search for a start both partners can make
MAX_COMMON_START_ROUNDS = 50


def flexibility_key(job: Job):
    """Least flexible first: narrow windows relative to duration, then two-tech jobs."""
    window = job.window_end_min - job.window_start_min
    return (window / job.duration_min, 0 if job.requires_two_techs else 1, job.window_start_min, job.id)


def common_start(a: TechSchedule, b: TechSchedule, job: Job) -> Optional[float]:
    t = None
    for _ in range(MAX_COMMON_START_ROUNDS):
        sa = a.earliest_start(job, t)
        if sa is None:
            return None
        sb = b.earliest_start(job, sa)
        if sb is None:
            return None
        if sb == sa:
            return sa
        t = sb
    return None


def placement_cost(cfg: OptimizerConfig, sched: TechSchedule, check: PairCheck, slot: Slot) -> float:
    """Zone penalty + weighted added drive + weighted load already on the tech."""
    c = 0.0 if check.zone_match else cfg.zone_mismatch_penalty
    c += cfg.drive_time_weight * slot.added_drive
    c += cfg.load_balance_weight * sched.load_hours
    return c


class _Engine:
    def __init__(self, techs, drive_times: DriveTimes, cfg: OptimizerConfig, book: OverrideBook):
        self.techs: List[Technician] = sorted(techs, key=lambda t: t.id)
        self.cfg = cfg
        self.book = book
        self.schedules: Dict[str, TechSchedule] = {
            t.id: TechSchedule(t, drive_times, cfg) for t in self.techs
        }
        self.entries: List[AssignmentEntry] = []
        self.unassigned: List[UnassignedJob] = []
        self.violations: List[CapabilityViolation] = []
        self.overrides_used: List[CapabilityOverride] = []
        self.pinned: Dict[str, float] = {}

    # -------- cost --------

    def cost(self, sched: TechSchedule, check: PairCheck, slot: Slot) -> float:
        return placement_cost(self.cfg, sched, check, slot)

    # -------- bookkeeping --------

    def _commit(self, tech_id: str, job: Job, start: float, check: Optional[PairCheck],
                paired_with: Optional[str] = None, prior: bool = False) -> None:
        self.schedules[tech_id].place(job, start)
        overridden = bool(check and check.overridden)
        self.entries.append(AssignmentEntry(
            tech_id=tech_id, job_id=job.id, start_min=start,
            overridden=overridden, paired_with=paired_with, prior=prior,
        ))
        if overridden:
            o = self.book.get(tech_id, job.id)
            cap = required_capability(job.job_type)
            self.overrides_used.append(o.model_copy(update={
                "job_type": job.job_type,
                "required_capability": o.required_capability or cap,
            }))
            log.info("capability override used: %s on %s (%s) approved by %s",
                     tech_id, job.id, capability_label(cap), o.approved_by or "unknown")

    def _fail(self, job: Job, reason: UnassignedReason, checks: Dict[str, PairCheck], detail: str = "") -> None:
        blocked = [c.violation for c in checks.values() if c.violation is not None]
        if reason == UnassignedReason.NO_CAPABLE_TECHNICIAN or (
            reason == UnassignedReason.NO_TECHNICIAN_PAIR and blocked
        ):
            self.violations.extend(blocked)
        self.unassigned.append(UnassignedJob(job_id=job.id, reason=reason, detail=detail))
        log.debug("unassigned %s: %s", job.id, reason.value)

    # -------- prior load --------

    def seed_prior(self, job: Job, tech_ids: List[str]) -> bool:
        """
        Keep an existing assignment as fixed load. Returns False (the job is
        optimized like any other) when the tech count does not match the job
        or a tech fails the same hard filter the optimizer applies.
        """
        need = 2 if job.requires_two_techs else 1
        if len(tech_ids) != need or len(set(tech_ids)) != need:
            log.warning("prior assignment %s -> %s needs %d technician(s); re-optimizing",
                        job.id, tech_ids, need)
            return False
        scheds = [self.schedules.get(tid) for tid in tech_ids]
        if any(s is None for s in scheds):
            return False
        checks = [check_pair(s.tech, job, self.book, self.cfg) for s in scheds]
        failed = [(s.tech.id, c) for s, c in zip(scheds, checks) if not c.feasible]
        if failed:
            for tid, c in failed:
                log.warning("prior assignment %s -> %s rejected (%s); re-optimizing",
                            job.id, tid, c.reason.value if c.reason else "infeasible")
            return False

        if need == 2:
            start = common_start(scheds[0], scheds[1], job)
            if start is None:
                log.warning("prior pair %s -> %s share no free start; kept at window start", job.id, tech_ids)
                start = float(job.window_start_min)
            self.pinned[job.id] = start
            for i, (s, c) in enumerate(zip(scheds, checks)):
                self._commit(s.tech.id, job, start, c, paired_with=scheds[1 - i].tech.id, prior=True)
            return True
        s, c = scheds[0], checks[0]
        start = s.earliest_start(job)
        if start is None:
            log.warning("prior assignment %s -> %s does not fit the tentative day; kept as-is", job.id, s.tech.id)
            start = float(job.window_start_min)
        self._commit(s.tech.id, job, start, c, prior=True)
        return True

    # -------- optimization --------

    def assign_single(self, job: Job) -> None:
        checks = {t.id: check_pair(t, job, self.book, self.cfg) for t in self.techs}
        best: Optional[Tuple[float, str, Slot]] = None
        any_feasible = False
        for t in self.techs:
            pc = checks[t.id]
            if not pc.feasible:
                continue
            any_feasible = True
            sched = self.schedules[t.id]
            slot = sched.find_slot(job)
            if slot is None:
                continue
            cand = (self.cost(sched, pc, slot), t.id, slot)
            if best is None or cand[:2] < best[:2]:
                best = cand
        if best is None:
            reason = UnassignedReason.TIME_CONFLICT if any_feasible else unassignable_reason(list(checks.values()))
            self._fail(job, reason, checks)
            return
        _, tech_id, slot = best
        self._commit(tech_id, job, slot.start, checks[tech_id])

    def assign_pair(self, job: Job) -> None:
        checks = {t.id: check_pair(t, job, self.book, self.cfg) for t in self.techs}
        feasible = [t for t in self.techs if checks[t.id].feasible]
        if not feasible:
            self._fail(job, unassignable_reason(list(checks.values())), checks)
            return

        best = None
        for a, b in combinations(feasible, 2):
            sa, sb = self.schedules[a.id], self.schedules[b.id]
            start = common_start(sa, sb, job)
            if start is None:
                continue
            slot_a, slot_b = sa.find_slot(job, start), sb.find_slot(job, start)
            cost = self.cost(sa, checks[a.id], slot_a) + self.cost(sb, checks[b.id], slot_b)
            if a.is_demo_tech != b.is_demo_tech:
                cost -= self.cfg.demo_pair_bonus
            cand = (cost, a.id, b.id, start)
            if best is None or cand[:3] < best[:3]:
                best = cand

        if best is None:
            detail = "only one technician can take this job" if len(feasible) == 1 else \
                "no two technicians share a free start time"
            self._fail(job, UnassignedReason.NO_TECHNICIAN_PAIR, checks, detail)
            return

        _, a_id, b_id, start = best
        self.pinned[job.id] = start
        self._commit(a_id, job, start, checks[a_id], paired_with=b_id)
        self._commit(b_id, job, start, checks[b_id], paired_with=a_id)

    def plan(self) -> AssignmentPlan:
        routes = {tid: s.job_ids for tid, s in self.schedules.items()}
        return AssignmentPlan(
            routes=routes,
            entries=sorted(self.entries, key=lambda e: (e.tech_id, e.start_min or 0.0, e.job_id)),
            unassigned=self.unassigned,
            capability_violations=self.violations,
            capability_overrides=self.overrides_used,
            pinned_starts=self.pinned,
        )


def prior_assignments(jobs: Iterable[Job]) -> Dict[str, List[str]]:
    return {
        j.id: list(j.assigned_tech)
        for j in jobs
        if j.status == JobStatus.ASSIGNED and j.assigned_tech
    }


def assign_jobs(
    jobs: Sequence[Job],
    techs: Sequence[Technician],
    drive_times: DriveTimes,
    config: Optional[OptimizerConfig] = None,
    overrides: Iterable[CapabilityOverride] = (),
    prior: Optional[Dict[str, List[str]]] = None,
) -> AssignmentPlan:
    """
    Greedy least-flexible-first assignment.

    Jobs already assigned (status 'assigned' with assigned_tech, or listed in
    `prior`) are seeded as fixed load. Every other job goes to the cheapest
    feasible tech, or to the cheapest pair for two-tech jobs; jobs nobody can
    take are reported with a reason. Identical inputs give identical plans.
    """
    cfg = config or OptimizerConfig()
    book = overrides if isinstance(overrides, OverrideBook) else OverrideBook(overrides)
    engine = _Engine(techs, drive_times, cfg, book)

    fixed = prior_assignments(jobs)
    if prior:
        fixed.update(prior)

    pool: List[Job] = []
    for job in sorted(jobs, key=lambda j: (j.window_start_min, j.id)):
        tech_ids = fixed.get(job.id)
        if tech_ids and engine.seed_prior(job, tech_ids):
            continue
        pool.append(job)

    for job in sorted(pool, key=flexibility_key):
        if job.requires_two_techs:
            engine.assign_pair(job)
        else:
            engine.assign_single(job)

    plan = engine.plan()
    log.info("assignment: %d jobs -> %d entries, %d unassigned, %d capability violations",
             len(jobs), len(plan.entries), len(plan.unassigned), len(plan.capability_violations))
    return plan
