from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from .models import (
    CapabilityOverride,
    CapabilityState,
    CapabilityViolation,
    Job,
    JobType,
    StaffType,
    Technician,
)

JOB_TYPE_CAPABILITY = {
    JobType.INSTALL: "install",
    JobType.DEMO: "install",
    JobType.DEMO_PREP: "install",
    JobType.CHECK: "cs",
    JobType.SERVICE: "cs",
    JobType.FS_VISIT: "cs",
    JobType.PULL: "pull",
}

CAPABILITY_LABELS = {
    "install": "Install",
    "cs": "Check / Service",
    "pull": "Pull",
    "sub": "Sub Support",
}

STAFF_TYPE_LABELS = {
    StaffType.REGULAR_TECH: "Tech",
    StaffType.PROJECT_MANAGER: "PM",
    StaffType.EHQ_LEADER: "EHQ Leader",
    StaffType.EHQ_CS_STAFF: "EHQ CS Staff",
    StaffType.SUB_CONTRACTOR: "Sub Contractor",
}


def required_capability(job_type) -> Optional[str]:
    """None means the job type needs no specific capability."""
    jt = job_type if isinstance(job_type, JobType) else JobType.parse(job_type)
    return JOB_TYPE_CAPABILITY.get(jt)


def capability_label(capability: Optional[str]) -> str:
    if not capability:
        return "None"
    return CAPABILITY_LABELS.get(capability, capability)


def has_capability(tech: Technician, job_type) -> bool:
    cap = required_capability(job_type)
    if cap is None:
        return True
    state = tech.capabilities.state(cap)
    if state == CapabilityState.GRANTED:
        return True
    if state == CapabilityState.DENIED:
        return False
    # unspecified: regular techs are trusted, storm roles must be tagged explicitly
    return tech.type == StaffType.REGULAR_TECH


def check_capability(tech: Technician, job: Job) -> Optional[CapabilityViolation]:
    if has_capability(tech, job.job_type):
        return None
    cap = required_capability(job.job_type) or ""
    label = capability_label(cap)
    job_label = job.job_type.value.replace("-", " ").capitalize()
    return CapabilityViolation(
        tech_id=tech.id,
        tech_name=tech.name,
        staff_type=tech.type,
        job_id=job.id,
        job_type=job.job_type,
        required_capability=cap,
        required_label=label,
        message=(
            f"{tech.name} ({STAFF_TYPE_LABELS.get(tech.type, tech.type.value)}) "
            f"is not authorized for {job_label} jobs (requires {label})"
        ),
    )


def record_override(
    violation: CapabilityViolation,
    approved_by: Optional[str] = None,
    reason: str = "",
    approved_at: Optional[str] = None,
) -> CapabilityOverride:
    return CapabilityOverride(
        tech_id=violation.tech_id,
        job_id=violation.job_id,
        job_type=violation.job_type,
        required_capability=violation.required_capability,
        approved_by=approved_by,
        reason=reason,
        approved_at=approved_at or datetime.now(timezone.utc).isoformat(timespec="seconds"),
        logged_for_review=True,
    )


class OverrideBook:
    """Lookup of operator-approved (tech, job) capability overrides."""

    def __init__(self, overrides: Iterable[CapabilityOverride] = ()):
        self._by_pair = {}
        for o in overrides or ():
            self._by_pair[(o.tech_id, o.job_id)] = o

    def get(self, tech_id: str, job_id: str) -> Optional[CapabilityOverride]:
        return self._by_pair.get((tech_id, job_id))

    def is_approved(self, tech_id: str, job_id: str) -> bool:
        return (tech_id, job_id) in self._by_pair

    def __len__(self) -> int:
        return len(self._by_pair)
