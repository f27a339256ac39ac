"""
End-to-end daily optimization.

Validator -> Storm Mode view -> drive times -> assignment -> per-tech route
sequencing (in parallel) -> exceptions report. The whole run is a function of
its inputs; nothing is cached between calls.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, Iterable, List, Optional, Sequence
import logging
import time

from .assignment import assign_jobs
from .config import OptimizerConfig, load_mapbox_token
from .drive_time import DriveTimes, MapboxDriveTimes, build_drive_times, stops_for
from .models import (
    AssignmentPlan,
    CapabilityOverride,
    ErrorKind,
    ExceptionsReport,
    Job,
    OptimizationResult,
    Route,
    RouteException,
    RunMetadata,
    Technician,
    UnassignedJob,
    UnassignedReason,
)
from .sequencer import sequence_route
from .storm_mode import apply_storm_filter, parse_storm_filter
from .validation import roster_from_storm_data, validate_jobs, validate_staff

log = logging.getLogger(__name__)


def _loose(records: Iterable[Any]) -> List[Dict[str, Any]]:
    return [r.model_dump(mode="json") if hasattr(r, "model_dump") else dict(r) for r in records or ()]


def default_provider(config: OptimizerConfig):
    """
    Mapbox when a token is configured; without one it reports itself as degraded.
    The caller owns the returned provider and closes it (it is a context manager).
    """
    return MapboxDriveTimes(load_mapbox_token(), config.mapbox_base_url, config.mapbox_timeout_s)


def sequence_all(
    tech_ids: Sequence[str],
    route_ids: Dict[str, List[str]],
    plan: AssignmentPlan,
    techs_by_id: Dict[str, Technician],
    jobs_by_id: Dict[str, Job],
    drive_times: DriveTimes,
    config: OptimizerConfig,
) -> Dict[str, Route]:
    """Sequence several techs concurrently; the result is keyed, so completion order does not matter."""
    out: Dict[str, Route] = {}
    if not tech_ids:
        return out
    with ThreadPoolExecutor(max_workers=config.sequencing_workers) as executor:
        futures = {
            executor.submit(
                sequence_route,
                tech=techs_by_id[tid],
                job_ids=route_ids[tid],
                plan=plan,
                jobs_by_id=jobs_by_id,
                drive_times=drive_times,
                config=config,
            ): tid
            for tid in tech_ids
        }
        for future in as_completed(futures):
            out[futures[future]] = future.result()
    return out


def _sequence_with_pairs(
    plan: AssignmentPlan,
    techs_by_id: Dict[str, Technician],
    jobs_by_id: Dict[str, Job],
    drive_times: DriveTimes,
    config: OptimizerConfig,
) -> Dict[str, Route]:
    """
    Two-tech jobs live on two routes. When either partner cannot serve the
    job it comes off both, and the partner's day is sequenced again without it.
    """
    route_ids = {tid: list(ids) for tid, ids in plan.routes.items() if tid in techs_by_id}
    routes = sequence_all(sorted(route_ids), route_ids, plan, techs_by_id, jobs_by_id, drive_times, config)

    dropped: set = set()
    while True:
        newly = {
            e.job_id for r in routes.values() for e in r.exceptions
            if jobs_by_id[e.job_id].requires_two_techs
        } - dropped
        if not newly:
            break
        dropped |= newly
        redo = set()
        for jid in newly:
            for tid in plan.techs_for(jid):
                if tid in route_ids and jid in route_ids[tid] and jid in routes[tid].job_ids:
                    route_ids[tid].remove(jid)
                    redo.add(tid)
        routes.update(sequence_all(sorted(redo), route_ids, plan, techs_by_id, jobs_by_id, drive_times, config))

    for jid in sorted(dropped):
        for tid in plan.techs_for(jid):
            if tid not in routes:
                continue
            if any(e.job_id == jid for e in routes[tid].exceptions):
                continue
            routes[tid].exceptions.append(RouteException(
                job_id=jid, tech_id=tid, kind=ErrorKind.TIME_WINDOW_CONFLICT,
                reason="paired technician could not make the shared start",
            ))
    return routes


def optimize_day(
    jobs: Iterable[Any],
    staff: Iterable[Any] = (),
    *,
    storm_data: Optional[Dict[str, Any]] = None,
    storm_filter: Optional[str] = None,
    overrides: Iterable[CapabilityOverride] = (),
    config: Optional[OptimizerConfig] = None,
    provider=None,
) -> OptimizationResult:
    t0 = time.perf_counter()
    cfg = config or OptimizerConfig()

    # 1) validate
    raw_jobs = _loose(jobs)
    batch = validate_jobs(raw_jobs)
    roster = roster_from_storm_data(storm_data, _loose(staff)) if storm_data else _loose(staff)
    staff_res = validate_staff(roster)

    # 2) storm mode view
    sf = parse_storm_filter(storm_filter)
    view = apply_storm_filter(batch.valid_jobs, staff_res.valid_staff, sf)

    # 3) drive times
    stops = stops_for(view.jobs, view.staff)
    if provider is None:
        with default_provider(cfg) as owned:
            dt = build_drive_times(stops, owned, cfg)
    else:
        dt = build_drive_times(stops, provider, cfg)

    # 4) assignment
    plan = assign_jobs(view.jobs, view.staff, dt, cfg, list(overrides or ()))

    # 5) sequencing
    techs_by_id = {t.id: t for t in view.staff}
    jobs_by_id = {j.id: j for j in view.jobs}
    routes = _sequence_with_pairs(plan, techs_by_id, jobs_by_id, dt, cfg)
    ordered = [routes[tid] for tid in sorted(routes)]

    # 6) report
    window_violations = [e for r in ordered for e in r.exceptions]
    unassigned = list(plan.unassigned)
    for jid in sorted({e.job_id for e in window_violations}):
        unassigned.append(UnassignedJob(
            job_id=jid, reason=UnassignedReason.SEQUENCING_CONFLICT, kind=ErrorKind.TIME_WINDOW_CONFLICT,
            detail="; ".join(e.reason for e in window_violations if e.job_id == jid),
        ))

    assignment = {r.tech_id: r.job_ids for r in ordered}
    assigned_ids = {jid for ids in assignment.values() for jid in ids}
    exceptions = ExceptionsReport(
        unassigned_jobs=unassigned,
        capability_overrides=plan.capability_overrides,
        capability_violations=plan.capability_violations,
        time_window_violations=window_violations,
        invalid_jobs=batch.invalid_jobs,
        invalid_staff=staff_res.invalid_staff,
        safety_warnings=batch.warnings,
    )
    meta = RunMetadata(
        drive_time_source=dt.source,
        degraded=dt.degraded,
        warnings=dt.warnings,
        storm_filter=sf.value if sf else None,
        excluded_job_ids=view.excluded_job_ids,
        excluded_staff_ids=view.excluded_staff_ids,
        counts={
            "jobs_in": batch.stats.total,
            "jobs_valid": batch.stats.valid,
            "jobs_invalid": batch.stats.invalid,
            "jobs_considered": len(view.jobs),
            "staff_considered": len(view.staff),
            "jobs_assigned": len(assigned_ids),
            "jobs_unassigned": len(unassigned),
        },
        duration_ms=round((time.perf_counter() - t0) * 1000.0, 1),
    )
    log.info(
        "optimize_day: %d jobs in, %d assigned, %d unassigned, %d invalid, source=%s degraded=%s (%.0f ms)",
        batch.stats.total, len(assigned_ids), len(unassigned), batch.stats.invalid,
        dt.source, dt.degraded, meta.duration_ms,
    )
    return OptimizationResult(assignment=assignment, routes=ordered, plan=plan,
                              exceptions=exceptions, metadata=meta)
