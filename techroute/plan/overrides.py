from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

from .assignment import common_start
from .capabilities import check_capability, record_override
from .config import OptimizerConfig
from .conflicts import detect_conflicts
from .drive_time import DriveTimes, build_drive_times, stops_for
from .errors import PreconditionError
from .feasibility import schedule_from_plan
from .models import (
    AssignmentEntry,
    AssignmentPlan,
    CapabilityOverride,
    CapabilityViolation,
    Job,
    OverrideAction,
    OverrideCommand,
    OverrideOutcome,
    Technician,
    UnassignedJob,
    UnassignedReason,
)

log = logging.getLogger(__name__)


def _is_assigned(plan: AssignmentPlan, job_id: str) -> bool:
    return any(job_id in ids for ids in plan.routes.values())


def _detach(plan: AssignmentPlan, job_id: str) -> None:
    """Drop every trace of the job from a plan copy."""
    plan.routes = {tid: [j for j in ids if j != job_id] for tid, ids in plan.routes.items()}
    plan.entries = [e for e in plan.entries if e.job_id != job_id]
    plan.unassigned = [u for u in plan.unassigned if u.job_id != job_id]
    plan.capability_violations = [v for v in plan.capability_violations if v.job_id != job_id]
    plan.pinned_starts.pop(job_id, None)


@dataclass
class _Board:
    """What a command is checked against: the day's jobs, staff and travel times."""
    jobs_by_id: Mapping[str, Job]
    techs_by_id: Mapping[str, Technician]
    drive_times: Optional[DriveTimes]
    cfg: OptimizerConfig

    def times(self) -> DriveTimes:
        if self.drive_times is None:
            stops = stops_for(list(self.jobs_by_id.values()), list(self.techs_by_id.values()))
            self.drive_times = build_drive_times(stops, None, self.cfg)
        return self.drive_times


def _resolve_techs(cmd: OverrideCommand, job: Job, techs_by_id: Mapping[str, Technician]) -> List[Technician]:
    ids = list(cmd.tech_ids)
    need = 2 if job.requires_two_techs else 1
    if len(ids) != need or len(set(ids)) != need:
        raise PreconditionError(
            f"job {job.id} needs exactly {need} distinct technician(s), got {ids}"
        )
    unknown = [t for t in ids if t not in techs_by_id]
    if unknown:
        raise PreconditionError(f"unknown technician ids {unknown}")
    return [techs_by_id[t] for t in ids]


def _place(plan: AssignmentPlan, cmd: OverrideCommand, job: Job, board: _Board) -> OverrideOutcome:
    techs = _resolve_techs(cmd, job, board.techs_by_id)

    off = [t.name for t in techs if not t.available]
    if off:
        return OverrideOutcome(applied=False, plan=plan,
                               message=f"{', '.join(off)} not available today")

    approved: Dict[str, CapabilityOverride] = {
        o.tech_id: o for o in plan.capability_overrides if o.job_id == job.id
    }
    if cmd.override is not None and cmd.override.job_id == job.id:
        approved[cmd.override.tech_id] = cmd.override

    blocked: List[CapabilityViolation] = []
    used: List[CapabilityOverride] = []
    for t in techs:
        v = check_capability(t, job)
        if v is None:
            continue
        o = approved.get(t.id)
        if o is None:
            blocked.append(v)
        else:
            used.append(record_override(v, o.approved_by, o.reason, o.approved_at))
    if blocked:
        return OverrideOutcome(
            applied=False, plan=plan, violations=blocked,
            message="; ".join(v.message for v in blocked),
        )

    new = plan.model_copy(deep=True)
    _detach(new, job.id)

    start = None
    if job.requires_two_techs:
        a, b = (schedule_from_plan(t, new, board.jobs_by_id, board.times(), board.cfg) for t in techs)
        start = common_start(a, b, job)
        if start is None:
            return OverrideOutcome(
                applied=False, plan=plan,
                message=f"{techs[0].name} and {techs[1].name} have no common free start for {job.id}",
            )
        new.pinned_starts[job.id] = start

    overridden = {o.tech_id for o in used}
    for t in techs:
        partner = next((o.id for o in techs if o.id != t.id), None)
        new.routes.setdefault(t.id, []).append(job.id)
        new.entries.append(AssignmentEntry(
            tech_id=t.id, job_id=job.id, start_min=start, overridden=t.id in overridden, paired_with=partner,
        ))
    new.capability_overrides = [
        o for o in new.capability_overrides if o.job_id != job.id
    ] + used
    for o in used:
        log.info("override recorded for review: %s -> %s by %s", o.tech_id, o.job_id, o.approved_by or "unknown")
    touched = {t.id for t in techs}
    conflicts = [
        c for c in detect_conflicts(new, (), board.jobs_by_id, board.techs_by_id, board.cfg)
        if c.job_id == job.id or c.tech_id in touched
    ]
    return OverrideOutcome(applied=True, plan=new, conflicts=conflicts,
                           message=f"{job.id} -> {', '.join(t.id for t in techs)}")


def _assign(plan, cmd, job, board) -> OverrideOutcome:
    if _is_assigned(plan, job.id):
        raise PreconditionError(f"job {job.id} is already assigned; use reassign")
    return _place(plan, cmd, job, board)


def _reassign(plan, cmd, job, board) -> OverrideOutcome:
    if not _is_assigned(plan, job.id):
        raise PreconditionError(f"job {job.id} is not assigned; use assign")
    return _place(plan, cmd, job, board)


def _unassign(plan, cmd, job, board) -> OverrideOutcome:
    if cmd.tech_ids:
        raise PreconditionError("unassign takes no technician ids")
    if not _is_assigned(plan, job.id):
        raise PreconditionError(f"job {job.id} is not assigned")
    new = plan.model_copy(deep=True)
    _detach(new, job.id)
    new.capability_overrides = [o for o in new.capability_overrides if o.job_id != job.id]
    new.unassigned.append(UnassignedJob(job_id=job.id, reason=UnassignedReason.OPERATOR_UNASSIGNED))
    return OverrideOutcome(applied=True, plan=new, message=f"{job.id} unassigned")


_HANDLERS: Dict[OverrideAction, Callable[..., OverrideOutcome]] = {
    OverrideAction.ASSIGN: _assign,
    OverrideAction.UNASSIGN: _unassign,
    OverrideAction.REASSIGN: _reassign,
}


def apply_override(
    plan: AssignmentPlan,
    command: OverrideCommand,
    jobs_by_id: Mapping[str, Job],
    techs_by_id: Mapping[str, Technician],
    drive_times: Optional[DriveTimes] = None,
    config: Optional[OptimizerConfig] = None,
) -> OverrideOutcome:
    """
    Apply one operator command to one job, all or nothing. The input plan is
    never mutated; refusals come back with applied=False and the reason.

    Two-tech jobs are pinned to the earliest start both techs can make; the
    heuristic travel times are used when no drive_times are given.
    """
    job = jobs_by_id.get(command.job_id)
    if job is None:
        raise PreconditionError(f"unknown job id {command.job_id}")
    board = _Board(jobs_by_id, techs_by_id, drive_times, config or OptimizerConfig())
    outcome = _HANDLERS[command.action](plan, command, job, board)
    log.info("override %s %s: applied=%s %s", command.action.value, job.id, outcome.applied, outcome.message)
    return outcome
