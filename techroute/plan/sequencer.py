from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from techroute.timeparse import minutes_to_hhmm

from .config import OptimizerConfig
from .drive_time import DriveTimes, job_key, start_key
from .errors import PreconditionError
from .feasibility import working_day
from .models import (
    AssignmentPlan,
    ErrorKind,
    Job,
    Route,
    RouteException,
    RouteSummary,
    ScheduledStop,
    Technician,
)

log = logging.getLogger(__name__)

# nearest-neighbour score = travel + WAIT_WEIGHT * idle minutes before the window opens
WAIT_WEIGHT = 0.5
_EPS = 1e-9


@dataclass
class _Sim:
    order: List[str]
    stops: List[ScheduledStop] = field(default_factory=list)
    dropped: List[Tuple[str, str]] = field(default_factory=list)
    drive: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.dropped


class _Walker:
    """Replays an order from the tech's start point and day start."""

    def __init__(self, tech: Technician, jobs: Mapping[str, Job], dt: DriveTimes,
                 pinned: Mapping[str, float], cfg: OptimizerConfig):
        self.tech = tech
        self.jobs = jobs
        self.dt = dt
        self.pinned = pinned
        self.day_start, _ = working_day(tech, cfg)

    def step(self, t: float, prev: str, job_id: str):
        """(stop, None) when the job can be served next, else (None, reason)."""
        job = self.jobs[job_id]
        travel = self.dt.minutes(prev, job_key(job_id))
        arrival = t + travel
        if job_id in self.pinned:
            pin = self.pinned[job_id]
            if arrival > pin + _EPS:
                return None, f"cannot reach the paired start time {minutes_to_hhmm(pin)}"
            start = pin
        else:
            start = max(arrival, float(job.window_start_min))
            if start > job.window_end_min + _EPS:
                return None, f"arrives {minutes_to_hhmm(arrival)}, after the window closes at {job.timeframe_end}"
        end = start + job.duration_min
        stop = ScheduledStop(
            job_id=job_id,
            arrival_min=arrival,
            start_min=start,
            end_min=end,
            travel_minutes=travel,
            wait_minutes=start - arrival,
            arrival_time=minutes_to_hhmm(arrival),
            start_time=minutes_to_hhmm(start),
            end_time=minutes_to_hhmm(end),
        )
        return stop, None

    def simulate(self, order: Sequence[str], strict: bool = False) -> Optional[_Sim]:
        """
        Lenient mode skips jobs that cannot be served; strict mode returns None
        as soon as one job breaks its window.
        """
        sim = _Sim(order=list(order))
        t, prev = float(self.day_start), start_key(self.tech.id)
        for jid in order:
            stop, reason = self.step(t, prev, jid)
            if stop is None:
                if strict:
                    return None
                sim.dropped.append((jid, reason))
                continue
            sim.stops.append(stop)
            sim.drive += stop.travel_minutes
            t, prev = stop.end_min, job_key(jid)
        sim.order = [s.job_id for s in sim.stops]
        return sim

    def nearest_neighbour(self, job_ids: Sequence[str]) -> _Sim:
        remaining = sorted(job_ids)
        order: List[str] = []
        t, prev = float(self.day_start), start_key(self.tech.id)
        while remaining:
            best = None
            for jid in remaining:
                stop, _ = self.step(t, prev, jid)
                if stop is None:
                    continue
                score = stop.travel_minutes + WAIT_WEIGHT * stop.wait_minutes
                cand = (score, self.jobs[jid].window_end_min, jid, stop)
                if best is None or cand[:3] < best[:3]:
                    best = cand
            if best is None:
                break
            stop = best[3]
            order.append(stop.job_id)
            remaining.remove(stop.job_id)
            t, prev = stop.end_min, job_key(stop.job_id)
        # anything left could not be reached in time from the greedy path
        return self.simulate(order + remaining)


def _rank(sim: _Sim) -> Tuple[int, float]:
    return (-len(sim.stops), sim.drive)


def two_opt(walker: _Walker, sim: _Sim, max_iterations: int) -> _Sim:
    """Segment reversals on the scheduled order; a reorder that breaks any window is rejected."""
    best = sim
    n = len(best.order)
    for _ in range(max_iterations):
        improved = False
        for i in range(n - 1):
            for k in range(i + 1, n):
                order = best.order[:i] + best.order[i:k + 1][::-1] + best.order[k + 1:]
                cand = walker.simulate(order, strict=True)
                if cand is not None and cand.drive < best.drive - _EPS:
                    best = cand
                    improved = True
        if not improved:
            break
    return best


def reinsert(walker: _Walker, sim: _Sim, job_ids: Sequence[str]) -> Tuple[_Sim, List[str]]:
    """Cheapest feasible insertion for each leftover job; returns the jobs that still do not fit."""
    left: List[str] = []
    jobs = walker.jobs
    for jid in sorted(job_ids, key=lambda j: (jobs[j].window_start_min, j)):
        best = None
        for pos in range(len(sim.order) + 1):
            cand = walker.simulate(sim.order[:pos] + [jid] + sim.order[pos:], strict=True)
            if cand is not None and (best is None or cand.drive < best.drive - _EPS):
                best = cand
        if best is None:
            left.append(jid)
        else:
            sim = best
    return sim, left


def route_summary(stops: Sequence[ScheduledStop], jobs: Mapping[str, Job]) -> RouteSummary:
    if not stops:
        return RouteSummary()
    service = sum(jobs[s.job_id].duration_min for s in stops)
    drive = sum(s.travel_minutes for s in stops)
    zones: List[str] = []
    for s in stops:
        z = jobs[s.job_id].zone
        if z not in zones:
            zones.append(z)
    efficiency = service / (service + drive) if (service + drive) > 0 else 0.0
    return RouteSummary(
        total_jobs=len(stops),
        total_hours=round(service / 60.0, 1),
        total_drive_minutes=round(drive),
        zones=zones,
        efficiency_pct=int(round(efficiency * 100)),
    )


def sequence_route(
    tech: Technician,
    job_ids: Sequence[str],
    plan: AssignmentPlan,
    jobs_by_id: Mapping[str, Job],
    drive_times: DriveTimes,
    config: Optional[OptimizerConfig] = None,
) -> Route:
    """
    Order one technician's jobs for the day.

    Three seeds are tried (nearest neighbour, window-start order and the
    assignment's tentative order); the best one is polished with bounded 2-opt
    and leftovers are retried by cheapest insertion. Jobs that still do not fit
    are returned as exceptions, so stops + exceptions always covers job_ids.
    """
    cfg = config or OptimizerConfig()
    assigned = plan.routes.get(tech.id, [])
    if len(set(job_ids)) != len(job_ids):
        raise PreconditionError(f"duplicate job ids in route for technician {tech.id}")
    stray = [j for j in job_ids if j not in assigned]
    if stray:
        raise PreconditionError(f"jobs {stray} are not assigned to technician {tech.id}")
    unknown = [j for j in job_ids if j not in jobs_by_id]
    if unknown:
        raise PreconditionError(f"unknown job ids {unknown}")

    if not job_ids:
        return Route(tech_id=tech.id)

    pinned = {j: plan.pinned_starts[j] for j in job_ids if j in plan.pinned_starts}
    walker = _Walker(tech, jobs_by_id, drive_times, pinned, cfg)

    by_window = sorted(job_ids, key=lambda j: (jobs_by_id[j].window_start_min, jobs_by_id[j].window_end_min, j))
    tentative = [j for j in assigned if j in set(job_ids)]
    seeds = [
        walker.nearest_neighbour(job_ids),
        walker.simulate(by_window),
        walker.simulate(tentative),
    ]
    best_i = min(range(len(seeds)), key=lambda i: (_rank(seeds[i]), i))
    best = two_opt(walker, seeds[best_i], cfg.two_opt_max_iterations)

    placed = set(best.order)
    best, left = reinsert(walker, best, [j for j in job_ids if j not in placed])

    reasons = {}
    for seed in seeds:
        for jid, why in seed.dropped:
            reasons.setdefault(jid, why)
    exceptions = [
        RouteException(job_id=j, tech_id=tech.id, kind=ErrorKind.TIME_WINDOW_CONFLICT,
                       reason=reasons.get(j, "could not be sequenced within its time window"))
        for j in left
    ]

    stops = best.stops
    service = sum(jobs_by_id[s.job_id].duration_min for s in stops)
    route = Route(
        tech_id=tech.id,
        stops=stops,
        exceptions=exceptions,
        total_drive_minutes=round(best.drive, 2),
        total_service_minutes=service,
        finish_time=stops[-1].end_time if stops else None,
        summary=route_summary(stops, jobs_by_id),
    )
    log.debug("sequenced %s: %d stops, %d exceptions, %.1f drive min (seed %d)",
              tech.id, len(stops), len(exceptions), best.drive, best_i)
    return route
