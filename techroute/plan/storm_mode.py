from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .models import CapabilityState, Job, JobType, StaffType, Technician

log = logging.getLogger(__name__)


class StormFilter(str, Enum):
    ALL = "all"
    SUB_CREWS_AND_DEMOS = "subCrewsAndDemos"
    CHECK_SERVICES = "checkServices"
    INSTALLS = "installs"
    PULLS = "pulls"
    REGULAR_ONLY = "regularOnly"


STORM_FILTER_LABELS = {
    StormFilter.ALL: "All Jobs & Staff",
    StormFilter.SUB_CREWS_AND_DEMOS: "Sub Crews + Demos",
    StormFilter.CHECK_SERVICES: "Checks & Services",
    StormFilter.INSTALLS: "Installs",
    StormFilter.PULLS: "Pulls",
    StormFilter.REGULAR_ONLY: "Regular Techs Only",
}

_JOB_TYPES = {
    StormFilter.SUB_CREWS_AND_DEMOS: {JobType.DEMO, JobType.DEMO_PREP},
    StormFilter.CHECK_SERVICES: {JobType.CHECK, JobType.SERVICE, JobType.FS_VISIT},
    StormFilter.INSTALLS: {JobType.INSTALL},
    StormFilter.PULLS: {JobType.PULL},
}

_LEADERS = {StaffType.PROJECT_MANAGER, StaffType.EHQ_LEADER}


@dataclass
class StormView:
    jobs: List[Job]
    staff: List[Technician]
    filter: Optional[StormFilter] = None
    excluded_job_ids: List[str] = field(default_factory=list)
    excluded_staff_ids: List[str] = field(default_factory=list)


def parse_storm_filter(value) -> Optional[StormFilter]:
    """None / '' means Storm Mode is off. Unknown names raise ValueError."""
    if value is None or value == "":
        return None
    if isinstance(value, StormFilter):
        return value
    for f in StormFilter:
        if f.value.lower() == str(value).strip().lower():
            return f
    raise ValueError(f"Unknown storm filter '{value}'")


def _granted(tech: Technician, capability: str) -> bool:
    # explicit tags only: the storm view never trusts an untagged role
    return tech.capabilities.state(capability) == CapabilityState.GRANTED


def staff_matches(tech: Technician, storm_filter: StormFilter) -> bool:
    t = tech.type
    if storm_filter == StormFilter.ALL:
        return True
    if storm_filter == StormFilter.REGULAR_ONLY:
        return t == StaffType.REGULAR_TECH
    if storm_filter == StormFilter.SUB_CREWS_AND_DEMOS:
        if t == StaffType.SUB_CONTRACTOR:
            return True
        return t in _LEADERS and _granted(tech, "install")
    if storm_filter == StormFilter.CHECK_SERVICES:
        if t in (StaffType.REGULAR_TECH, StaffType.EHQ_CS_STAFF):
            return True
        return t in _LEADERS and _granted(tech, "cs")
    if storm_filter in (StormFilter.INSTALLS, StormFilter.PULLS):
        if t == StaffType.REGULAR_TECH:
            return True
        cap = "install" if storm_filter == StormFilter.INSTALLS else "pull"
        return t in (_LEADERS | {StaffType.EHQ_CS_STAFF}) and _granted(tech, cap)
    return False


def filter_jobs(jobs: Sequence[Job], storm_filter: Optional[StormFilter]) -> List[Job]:
    allowed = _JOB_TYPES.get(storm_filter) if storm_filter else None
    if allowed is None:
        return list(jobs)
    return [j for j in jobs if j.job_type in allowed]


def filter_staff(staff: Sequence[Technician], storm_filter: Optional[StormFilter]) -> List[Technician]:
    if storm_filter is None:
        return list(staff)
    return [t for t in staff if staff_matches(t, storm_filter)]


def apply_storm_filter(
    jobs: Sequence[Job],
    staff: Sequence[Technician],
    storm_filter: Optional[StormFilter],
) -> StormView:
    """Pure view: the input lists are never mutated."""
    kept_jobs = filter_jobs(jobs, storm_filter)
    kept_staff = filter_staff(staff, storm_filter)
    kept_job_ids = {j.id for j in kept_jobs}
    kept_staff_ids = {t.id for t in kept_staff}
    view = StormView(
        jobs=kept_jobs,
        staff=kept_staff,
        filter=storm_filter,
        excluded_job_ids=[j.id for j in jobs if j.id not in kept_job_ids],
        excluded_staff_ids=[t.id for t in staff if t.id not in kept_staff_ids],
    )
    if storm_filter is not None:
        log.info("storm filter %s: %d/%d jobs, %d/%d staff", storm_filter.value,
                 len(kept_jobs), len(jobs), len(kept_staff), len(staff))
    return view


def describe_filters() -> List[dict]:
    return [{"value": f.value, "label": STORM_FILTER_LABELS[f]} for f in StormFilter]
