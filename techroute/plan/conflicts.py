from __future__ import annotations

import logging
from itertools import combinations
from typing import Dict, List, Mapping, Optional, Sequence

from .capabilities import check_capability
from .config import OptimizerConfig
from .models import AssignmentPlan, Conflict, ConflictType, Job, Route, Severity, Technician

log = logging.getLogger(__name__)

SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.HIGH: 1, Severity.MEDIUM: 2, Severity.LOW: 3}


def _name(techs_by_id: Mapping[str, Technician], tech_id: str) -> str:
    t = techs_by_id.get(tech_id)
    return t.name if t is not None else tech_id


def _plan_checks(plan, jobs_by_id, techs_by_id, cfg) -> List[Conflict]:
    out: List[Conflict] = []
    approved = {(o.tech_id, o.job_id) for o in plan.capability_overrides}
    approved |= {(e.tech_id, e.job_id) for e in plan.entries if e.overridden}

    for tid in sorted(plan.routes):
        ids = [j for j in plan.routes[tid] if j in jobs_by_id]
        name = _name(techs_by_id, tid)
        tech = techs_by_id.get(tid)

        if tech is not None and not tech.available and ids:
            out.append(Conflict(
                id=f"off-with-jobs-{tid}", type=ConflictType.OFF_WITH_JOBS, severity=Severity.CRITICAL,
                tech_id=tid, message=f"{name}: Off today but has {len(ids)} jobs assigned",
            ))

        hours = sum(jobs_by_id[j].duration for j in ids)
        if hours > cfg.max_daily_hours:
            out.append(Conflict(
                id=f"overtime-{tid}", type=ConflictType.OVERTIME, severity=Severity.HIGH, tech_id=tid,
                message=f"{name}: {hours:.1f} hrs scheduled (over {cfg.max_daily_hours:g} hr limit)",
            ))

        if tech is None:
            continue
        for jid in ids:
            v = check_capability(tech, jobs_by_id[jid])
            if v is not None and (tid, jid) not in approved:
                out.append(Conflict(
                    id=f"capability-{tid}-{jid}", type=ConflictType.CAPABILITY, severity=Severity.HIGH,
                    tech_id=tid, job_id=jid, message=v.message,
                ))

    holders: Dict[str, List[str]] = {}
    for tid in sorted(plan.routes):
        for jid in plan.routes[tid]:
            holders.setdefault(jid, []).append(tid)

    for jid in sorted(holders):
        job = jobs_by_id.get(jid)
        if job is None:
            continue
        techs = holders[jid]
        need = 2 if job.requires_two_techs else 1
        label = job.customer_name or jid
        if len(techs) > need or len(set(techs)) < len(techs):
            names = " and ".join(_name(techs_by_id, t) for t in techs)
            out.append(Conflict(
                id=f"duplicate-{jid}", type=ConflictType.DUPLICATE_ASSIGNMENT, severity=Severity.CRITICAL,
                job_id=jid, message=f'Job "{label}" assigned to {names}',
            ))
        elif len(techs) < need:
            tid = techs[0]
            out.append(Conflict(
                id=f"missing-second-tech-{jid}", type=ConflictType.MISSING_SECOND_TECH,
                severity=Severity.MEDIUM, tech_id=tid, job_id=jid,
                message=f'{_name(techs_by_id, tid)}: Job "{label}" needs two technicians but has one',
            ))
    return out


def _route_checks(routes, jobs_by_id, techs_by_id) -> List[Conflict]:
    out: List[Conflict] = []
    pair_starts: Dict[str, Dict[str, str]] = {}

    for route in sorted(routes, key=lambda r: r.tech_id):
        tid = route.tech_id
        name = _name(techs_by_id, tid)
        for s in route.stops:
            job = jobs_by_id.get(s.job_id)
            if job is None:
                continue
            label = job.customer_name or job.id
            if s.start_min < job.window_start_min:
                out.append(Conflict(
                    id=f"early-{job.id}-{tid}", type=ConflictType.TIMEFRAME_EARLY, severity=Severity.MEDIUM,
                    tech_id=tid, job_id=job.id,
                    message=f'Job "{label}": Starts at {s.start_time}, window opens at {job.timeframe_start}',
                ))
            elif s.start_min > job.window_end_min:
                out.append(Conflict(
                    id=f"late-{job.id}-{tid}", type=ConflictType.TIMEFRAME_LATE, severity=Severity.HIGH,
                    tech_id=tid, job_id=job.id,
                    message=f'Job "{label}": Starts at {s.start_time}, window closes at {job.timeframe_end}',
                ))
            if job.requires_two_techs:
                pair_starts.setdefault(job.id, {})[tid] = s.start_time

        for a, b in combinations(route.stops, 2):
            if a.start_min < b.end_min and b.start_min < a.end_min:
                out.append(Conflict(
                    id=f"overlap-{a.job_id}-{b.job_id}", type=ConflictType.OVERLAP, severity=Severity.CRITICAL,
                    tech_id=tid,
                    message=(f"{name}: Job {a.job_id} ({a.start_time}-{a.end_time}) overlaps with "
                             f"{b.job_id} ({b.start_time}-{b.end_time})"),
                ))

    for jid in sorted(pair_starts):
        starts = pair_starts[jid]
        if len(set(starts.values())) > 1:
            detail = ", ".join(f"{_name(techs_by_id, t)} {hhmm}" for t, hhmm in sorted(starts.items()))
            out.append(Conflict(
                id=f"pair-out-of-sync-{jid}", type=ConflictType.PAIR_OUT_OF_SYNC, severity=Severity.HIGH,
                job_id=jid, message=f"Two-tech job {jid} starts at different times ({detail})",
            ))
    return out


def detect_conflicts(
    plan: AssignmentPlan,
    routes: Sequence[Route],
    jobs_by_id: Mapping[str, Job],
    techs_by_id: Mapping[str, Technician],
    config: Optional[OptimizerConfig] = None,
) -> List[Conflict]:
    """
    Everything a dispatcher should look at before sending the day out,
    most severe first. Plan-level checks always run; timing checks need
    sequenced routes.
    """
    cfg = config or OptimizerConfig()
    found = _plan_checks(plan, jobs_by_id, techs_by_id, cfg) + _route_checks(routes or (), jobs_by_id, techs_by_id)
    found.sort(key=lambda c: (SEVERITY_ORDER[c.severity], c.tech_id or "", c.job_id or "", c.id))
    if found:
        log.info("conflicts: %d found (%d critical)", len(found),
                 sum(1 for c in found if c.severity == Severity.CRITICAL))
    return found
