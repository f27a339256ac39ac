from __future__ import annotations

import logging
from typing import Iterable, List, Mapping, Optional, Sequence

from techroute.timeparse import minutes_to_hhmm

from .assignment import placement_cost
from .capabilities import OverrideBook
from .config import OptimizerConfig
from .drive_time import DriveTimes
from .feasibility import check_pair, schedule_from_plan
from .models import AssignmentPlan, CapabilityOverride, Job, JobType, Technician, TechRecommendation

log = logging.getLogger(__name__)

_DEMO_TYPES = {JobType.DEMO, JobType.DEMO_PREP}


def _drive_reason(minutes: float):
    n = int(round(minutes))
    if minutes <= 15:
        return 15, f"Very close ({n} min added drive)"
    if minutes <= 25:
        return 5, f"{n} min added drive"
    if minutes <= 40:
        return -5, f"{n} min added drive"
    return -15, f"Far away ({n} min added drive)"


def score_tech(
    tech: Technician,
    job: Job,
    plan: AssignmentPlan,
    jobs_by_id: Mapping[str, Job],
    drive_times: DriveTimes,
    config: Optional[OptimizerConfig] = None,
    overrides: Optional[OverrideBook] = None,
) -> Optional[TechRecommendation]:
    """
    0-100 fit of one tech for one job, with the reasons behind the number.
    None when the tech cannot take the job at all (off, not capable, outside
    the working day, or out of zone in strict mode).
    """
    cfg = config or OptimizerConfig()
    pc = check_pair(tech, job, overrides, cfg)
    if not pc.feasible:
        return None

    sched = schedule_from_plan(tech, plan, jobs_by_id, drive_times, cfg)
    sched.remove(job.id)
    current = sched.load_hours
    after = current + job.duration
    cap = cfg.max_daily_hours

    score = 100
    reasons: List[str] = []
    if after > cap:
        score -= 50
        reasons.append(f"Would exceed capacity ({after:.1f}/{cap:g} hrs)")
    elif after > cap - 1:
        score -= 20
        reasons.append(f"Near capacity ({current:.1f}/{cap:g} hrs)")
    elif current < 4:
        score += 10
        reasons.append(f"Good capacity ({current:.1f}/{cap:g} hrs)")

    if job.zone and tech.zone:
        if pc.zone_match:
            score += 20
            reasons.append(f"Same zone ({tech.zone})")
        else:
            score -= 15
            reasons.append(f"Different zone (tech in {tech.zone}, job in {job.zone})")

    slot = sched.find_slot(job)
    if slot is None:
        score -= 40
        reasons.append("No free time in the job window")
    else:
        delta, why = _drive_reason(slot.added_drive)
        score += delta
        reasons.append(why)

    if job.job_type in _DEMO_TYPES and tech.is_demo_tech:
        score += 15
        reasons.append("Specialty match (Demo Tech)")
    if job.requires_two_techs and not tech.is_demo_tech:
        score += 5
        reasons.append("Can lead 2-person job")
    if pc.overridden:
        reasons.append("Capability override approved")

    return TechRecommendation(
        tech_id=tech.id,
        tech_name=tech.name,
        score=max(0, min(100, score)),
        reasons=reasons,
        start_time=minutes_to_hhmm(slot.start) if slot else None,
        added_drive_minutes=round(slot.added_drive, 1) if slot else None,
        current_hours=round(current, 2),
        hours_after=round(after, 2),
        cost=round(placement_cost(cfg, sched, pc, slot), 2) if slot else None,
        overridden=pc.overridden,
    )


def recommend_techs(
    job: Job,
    techs: Sequence[Technician],
    plan: AssignmentPlan,
    jobs_by_id: Mapping[str, Job],
    drive_times: DriveTimes,
    config: Optional[OptimizerConfig] = None,
    overrides: Iterable[CapabilityOverride] = (),
    limit: int = 5,
) -> List[TechRecommendation]:
    """Best techs for a job against the current plan, highest score first."""
    book = overrides if isinstance(overrides, OverrideBook) else OverrideBook(overrides)
    scored = []
    for t in sorted(techs, key=lambda t: t.id):
        rec = score_tech(t, job, plan, jobs_by_id, drive_times, config, book)
        if rec is not None and rec.score > 0:
            scored.append(rec)
    scored.sort(key=lambda r: (-r.score, r.cost if r.cost is not None else float("inf"), r.tech_id))
    log.debug("recommendations for %s: %d of %d techs qualify", job.id, len(scored), len(techs))
    return scored[:limit]
