from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from techroute.timeparse import normalize_time, to_minutes

from .capabilities import STAFF_TYPE_LABELS
from .models import (
    BatchValidation,
    ErrorKind,
    InvalidRecord,
    Issue,
    Job,
    JobValidation,
    SafetyReport,
    SafetyWarning,
    StaffType,
    StaffValidation,
    Technician,
    ValidationStats,
)

log = logging.getLogger(__name__)

# (snake_case name, camelCase alias) for every job field we read from raw dicts
_JOB_KEYS = {
    "id": "id",
    "customer_name": "customerName",
    "address": "address",
    "zone": "zone",
    "job_type": "jobType",
    "timeframe_start": "timeframeStart",
    "timeframe_end": "timeframeEnd",
    "duration": "duration",
    "requires_two_techs": "requiresTwoTechs",
    "status": "status",
    "assigned_tech": "assignedTech",
    "description": "description",
    "phone": "phone",
    "lat": "lat",
    "lon": "lon",
}

_SQL_PATTERNS = [
    re.compile(r"DROP\s+TABLE", re.IGNORECASE),
    re.compile(r"DELETE\s+FROM", re.IGNORECASE),
    re.compile(r"INSERT\s+INTO", re.IGNORECASE),
    re.compile(r"--"),
    re.compile(r";\s*--"),
]
_SCRIPT_PATTERN = re.compile(r"<script|javascript:|onerror=", re.IGNORECASE)

MAX_NAME_LENGTH = 200
MAX_ADDRESS_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 5000

STORM_CATEGORIES = {
    "projectManagers": StaffType.PROJECT_MANAGER,
    "ehqLeaders": StaffType.EHQ_LEADER,
    "ehqCSStaff": StaffType.EHQ_CS_STAFF,
    "subContractors": StaffType.SUB_CONTRACTOR,
}


def _get(raw: Dict[str, Any], key: str, default: Any = None) -> Any:
    if key in raw:
        return raw[key]
    alias = _JOB_KEYS.get(key)
    if alias and alias in raw:
        return raw[alias]
    return default


def _text(v) -> str:
    return "" if v is None else str(v).strip()


def _blank(v) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def _as_bool(v) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "y")
    return bool(v)


def _coord(v) -> Optional[float]:
    if _blank(v):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


# -----------------------------
# Jobs
# -----------------------------

def sanitize_job(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a loose job record into snake_case keys.
    Invalid times and durations are left as-is so validate_job can report them.
    """
    start_raw = _text(_get(raw, "timeframe_start"))
    end_raw = _text(_get(raw, "timeframe_end"))

    duration = _get(raw, "duration")
    if _blank(duration):
        duration = 1.0
    else:
        try:
            duration = float(duration)
        except (TypeError, ValueError):
            pass

    out: Dict[str, Any] = {
        "id": _text(_get(raw, "id")),
        "customer_name": _text(_get(raw, "customer_name")),
        "address": _text(_get(raw, "address")),
        "zone": _text(_get(raw, "zone")),
        "job_type": _text(_get(raw, "job_type")) or "Other",
        "timeframe_start": normalize_time(start_raw) or start_raw,
        "timeframe_end": normalize_time(end_raw) or end_raw,
        "duration": duration,
        "requires_two_techs": _as_bool(_get(raw, "requires_two_techs", False)),
        "status": _text(_get(raw, "status")).lower() or "unassigned",
        "assigned_tech": _get(raw, "assigned_tech") or None,
        "description": _text(_get(raw, "description")),
        "phone": _text(_get(raw, "phone")),
        "lat": _coord(_get(raw, "lat")),
        "lon": _coord(_get(raw, "lon")),
    }
    return out


def _time_errors(label: str, value: str) -> List[Issue]:
    field = f"timeframe_{label}"
    if not value:
        return [Issue(kind=ErrorKind.VALIDATION, field=field,
                      message=f"{label.capitalize()} time is required")]
    if normalize_time(value) is None:
        return [Issue(kind=ErrorKind.VALIDATION, field=field,
                      message=f'Invalid {label} time format: "{value}" (expected HH:MM)')]
    return []


def validate_job(raw: Dict[str, Any]) -> JobValidation:
    """Validate one loose job record; every problem is reported, not just the first."""
    errors: List[Issue] = []

    zone = _get(raw, "zone")
    if zone is not None and not isinstance(zone, str):
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="zone",
                            message=f"Invalid zone type: {type(zone).__name__} (expected string)"))

    rec = sanitize_job(raw)

    if not rec["id"]:
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="id", message="Job ID is required"))
    if not rec["customer_name"]:
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="customer_name",
                            message="Customer name is required"))
    if not rec["address"]:
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="address", message="Address is required"))

    start_errs = _time_errors("start", rec["timeframe_start"])
    end_errs = _time_errors("end", rec["timeframe_end"])
    errors.extend(start_errs)
    errors.extend(end_errs)
    if not start_errs and not end_errs:
        if to_minutes(rec["timeframe_start"]) >= to_minutes(rec["timeframe_end"]):
            errors.append(Issue(
                kind=ErrorKind.TIME_WINDOW_CONFLICT,
                field="timeframe_start",
                message=(f"Start time ({rec['timeframe_start']}) must be before "
                         f"end time ({rec['timeframe_end']})"),
            ))

    duration = rec["duration"]
    if not isinstance(duration, float):
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="duration",
                            message=f'Invalid duration: "{duration}" (must be a number)'))
    elif duration <= 0:
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="duration",
                            message=f"Duration must be positive (got {duration:g})"))
    elif duration > 24:
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="duration",
                            message=f"Duration seems unrealistic: {duration:g} hours"))

    if errors:
        return JobValidation(is_valid=False, errors=errors)

    try:
        job = Job(**rec)
    except ValidationError as e:
        for err in e.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()))
            errors.append(Issue(kind=ErrorKind.VALIDATION, field=loc or None, message=err.get("msg", "")))
        return JobValidation(is_valid=False, errors=errors)

    return JobValidation(is_valid=True, job=job)


def check_job_safety(raw: Dict[str, Any]) -> SafetyReport:
    warnings: List[str] = []
    fields = {
        "customer_name": _text(_get(raw, "customer_name")),
        "address": _text(_get(raw, "address")),
        "description": _text(_get(raw, "description")),
    }
    for name, value in fields.items():
        if not value:
            continue
        if any(p.search(value) for p in _SQL_PATTERNS):
            warnings.append(f"Potential SQL injection in {name}")
        if _SCRIPT_PATTERN.search(value):
            warnings.append(f"Potential script injection in {name}")

    if len(fields["customer_name"]) > MAX_NAME_LENGTH:
        warnings.append("Customer name is unusually long")
    if len(fields["address"]) > MAX_ADDRESS_LENGTH:
        warnings.append("Address is unusually long")
    if len(fields["description"]) > MAX_DESCRIPTION_LENGTH:
        warnings.append("Description is unusually long")

    return SafetyReport(is_safe=not warnings, warnings=warnings)


def validate_jobs(raws: Iterable[Dict[str, Any]]) -> BatchValidation:
    valid: List[Job] = []
    invalid: List[InvalidRecord] = []
    warnings: List[SafetyWarning] = []
    seen = set()
    total = 0

    for index, raw in enumerate(raws):
        total += 1
        raw = dict(raw or {})
        rec_id = _text(_get(raw, "id")) or f"row_{index + 1}"

        safety = check_job_safety(raw)
        if not safety.is_safe:
            warnings.append(SafetyWarning(index=index, id=rec_id, warnings=safety.warnings))

        result = validate_job(raw)
        errors = list(result.errors)
        if result.is_valid and result.job.id in seen:
            errors.append(Issue(kind=ErrorKind.VALIDATION, field="id",
                                message=f"Duplicate job ID: {result.job.id}"))

        if errors:
            invalid.append(InvalidRecord(index=index, id=rec_id, errors=errors, record=raw))
            continue
        seen.add(result.job.id)
        valid.append(result.job)

    rate = round(len(valid) / total * 100.0, 1) if total else 0.0
    log.debug("validated %d jobs: %d valid, %d invalid, %d flagged",
              total, len(valid), len(invalid), len(warnings))
    return BatchValidation(
        valid_jobs=valid,
        invalid_jobs=invalid,
        warnings=warnings,
        stats=ValidationStats(total=total, valid=len(valid), invalid=len(invalid), success_rate=rate),
    )


def format_validation_errors(invalid_jobs: List[InvalidRecord], limit: int = 5) -> str:
    if not invalid_jobs:
        return ""
    lines = [f"Found {len(invalid_jobs)} invalid job(s):", ""]
    for rec in invalid_jobs[:limit]:
        lines.append(f"{rec.id}:")
        lines.extend(f"   - {e.message}" for e in rec.errors)
        lines.append("")
    if len(invalid_jobs) > limit:
        lines.append(f"... and {len(invalid_jobs) - limit} more errors")
    return "\n".join(lines).rstrip() + "\n"


# -----------------------------
# Staff
# -----------------------------

def _staff_type(v) -> Optional[StaffType]:
    if isinstance(v, StaffType):
        return v
    if _blank(v):
        return StaffType.REGULAR_TECH
    for t in StaffType:
        if t.value.lower() == str(v).strip().lower():
            return t
    return None


def validate_technician(raw: Dict[str, Any]) -> StaffValidation:
    raw = dict(raw or {})
    errors: List[Issue] = []
    tech_id = _text(raw.get("id"))
    name = _text(raw.get("name"))
    if not tech_id:
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="id", message="Technician ID is required"))
    if not name:
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="name", message="Technician name is required"))
    st = _staff_type(raw.get("type"))
    if st is None:
        known = ", ".join(t.value for t in StaffType)
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="type",
                            message=f"Unknown staff type '{raw.get('type')}' (expected one of {known})"))

    if not errors:
        data = dict(raw, id=tech_id, name=name, type=st)
        if "zone" in data:
            data["zone"] = _text(data["zone"])
        try:
            return StaffValidation(valid_staff=[Technician(**data)])
        except ValidationError as e:
            for err in e.errors():
                loc = ".".join(str(p) for p in err.get("loc", ()))
                errors.append(Issue(kind=ErrorKind.VALIDATION, field=loc or None, message=err.get("msg", "")))

    return StaffValidation(invalid_staff=[
        InvalidRecord(index=0, id=tech_id or "row_1", errors=errors, record=raw)
    ])


def validate_staff(raws: Iterable[Dict[str, Any]]) -> StaffValidation:
    valid: List[Technician] = []
    invalid: List[InvalidRecord] = []
    seen = set()
    for index, raw in enumerate(raws):
        if isinstance(raw, Technician):
            raw = raw.model_dump(mode="json")
        res = validate_technician(raw)
        for rec in res.invalid_staff:
            invalid.append(rec.model_copy(update={
                "index": index,
                "id": rec.id if rec.id != "row_1" else f"row_{index + 1}",
            }))
        for tech in res.valid_staff:
            if tech.id in seen:
                invalid.append(InvalidRecord(
                    index=index, id=tech.id, record=dict(raw),
                    errors=[Issue(kind=ErrorKind.VALIDATION, field="id",
                                  message=f"Duplicate technician ID: {tech.id}")],
                ))
                continue
            seen.add(tech.id)
            valid.append(tech)
    return StaffValidation(valid_staff=valid, invalid_staff=invalid)


def roster_from_storm_data(
    storm_data: Optional[Dict[str, Any]],
    regular_techs: Iterable[Dict[str, Any]] = (),
) -> List[Dict[str, Any]]:
    """
    Flatten the Storm Mode staffing document into one roster of loose records.
    Each category entry is typed from the list it sits in; the record's own
    'type' is ignored so a PM listed under subContractors cannot smuggle a role.
    """
    roster: List[Dict[str, Any]] = []
    for t in regular_techs or ():
        rec = t.model_dump(mode="json") if isinstance(t, Technician) else dict(t)
        rec.setdefault("type", StaffType.REGULAR_TECH.value)
        roster.append(rec)

    for key, staff_type in STORM_CATEGORIES.items():
        for member in (storm_data or {}).get(key) or []:
            rec = dict(member)
            rec["type"] = staff_type.value
            if "zone" not in rec and rec.get("office"):
                rec["zone"] = rec["office"]
            roster.append(rec)
            log.debug("storm roster: %s as %s", rec.get("id"), STAFF_TYPE_LABELS[staff_type])
    return roster
