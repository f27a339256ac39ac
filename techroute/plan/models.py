from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from techroute.timeparse import normalize_time, to_minutes


class _Wire(BaseModel):
    """camelCase on the wire (UI vocabulary), snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------
# Enumerations
# -----------------------------

class JobType(str, Enum):
    INSTALL = "install"
    DEMO = "demo"
    DEMO_PREP = "demo-prep"
    CHECK = "check"
    SERVICE = "service"
    PULL = "pull"
    FS_VISIT = "fs-visit"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: Any) -> "JobType":
        key = str(raw or "").strip().lower().replace("_", "-").replace(" ", "-")
        for member in cls:
            if member.value == key:
                return member
        return cls.OTHER


class JobStatus(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"


class StaffType(str, Enum):
    REGULAR_TECH = "regularTech"
    PROJECT_MANAGER = "projectManager"
    EHQ_LEADER = "ehqLeader"
    EHQ_CS_STAFF = "ehqCSStaff"
    SUB_CONTRACTOR = "subContractor"


STORM_ROLES = {
    StaffType.PROJECT_MANAGER,
    StaffType.EHQ_LEADER,
    StaffType.EHQ_CS_STAFF,
    StaffType.SUB_CONTRACTOR,
}


class CapabilityState(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNSPECIFIED = "unspecified"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CAPABILITY_VIOLATION = "capability_violation"
    FEASIBILITY = "feasibility"
    TIME_WINDOW_CONFLICT = "time_window_conflict"
    EXTERNAL_SERVICE_DEGRADATION = "external_service_degradation"


class UnassignedReason(str, Enum):
    NO_AVAILABLE_TECHNICIAN = "no available technician"
    NO_CAPABLE_TECHNICIAN = "no capable technician"
    NO_ZONE_MATCH = "no zone match"
    TIME_CONFLICT = "time conflict"
    NO_TECHNICIAN_PAIR = "no compatible technician pair"
    SEQUENCING_CONFLICT = "could not be sequenced within its window"
    OPERATOR_UNASSIGNED = "unassigned by operator"


# -----------------------------
# Core records
# -----------------------------

class Issue(_Wire):
    kind: ErrorKind
    message: str
    field: Optional[str] = None


class Capabilities(_Wire):
    install: CapabilityState = CapabilityState.UNSPECIFIED
    cs: CapabilityState = CapabilityState.UNSPECIFIED
    pull: CapabilityState = CapabilityState.UNSPECIFIED
    sub: CapabilityState = CapabilityState.UNSPECIFIED

    @field_validator("install", "cs", "pull", "sub", mode="before")
    @classmethod
    def _coerce_state(cls, v):
        if v is None:
            return CapabilityState.UNSPECIFIED
        if isinstance(v, bool):
            return CapabilityState.GRANTED if v else CapabilityState.DENIED
        if isinstance(v, str) and v.strip().lower() in ("true", "yes", "1"):
            return CapabilityState.GRANTED
        if isinstance(v, str) and v.strip().lower() in ("false", "no", "0"):
            return CapabilityState.DENIED
        return v

    def state(self, capability: str) -> CapabilityState:
        return getattr(self, capability, CapabilityState.UNSPECIFIED)


class Job(_Wire):
    id: str
    customer_name: str
    address: str
    zone: str = ""
    job_type: JobType = JobType.OTHER
    timeframe_start: str
    timeframe_end: str
    duration: float = Field(1.0, gt=0, le=24, description="hours")
    requires_two_techs: bool = False
    status: JobStatus = JobStatus.UNASSIGNED
    assigned_tech: Optional[List[str]] = None
    description: str = ""
    phone: str = ""
    lat: Optional[float] = None
    lon: Optional[float] = None

    @field_validator("job_type", mode="before")
    @classmethod
    def _parse_job_type(cls, v):
        return v if isinstance(v, JobType) else JobType.parse(v)

    @field_validator("timeframe_start", "timeframe_end", mode="before")
    @classmethod
    def _normalize_time(cls, v):
        norm = normalize_time(v)
        if norm is None:
            raise ValueError(f"invalid time '{v}' (expected HH:MM)")
        return norm

    @field_validator("assigned_tech", mode="before")
    @classmethod
    def _tech_list(cls, v):
        if v is None or v == "" or v == []:
            return None
        if isinstance(v, str):
            return [v]
        return [str(x) for x in v]

    @model_validator(mode="after")
    def _window_order(self):
        if to_minutes(self.timeframe_start) >= to_minutes(self.timeframe_end):
            raise ValueError(
                f"timeframe_start ({self.timeframe_start}) must be before timeframe_end ({self.timeframe_end})"
            )
        return self

    @property
    def window_start_min(self) -> int:
        return to_minutes(self.timeframe_start)

    @property
    def window_end_min(self) -> int:
        return to_minutes(self.timeframe_end)

    @property
    def duration_min(self) -> float:
        return float(self.duration) * 60.0


class Technician(_Wire):
    id: str
    name: str
    zone: str = ""
    type: StaffType = StaffType.REGULAR_TECH
    capabilities: Capabilities = Field(default_factory=Capabilities)
    available: bool = True
    is_demo_tech: bool = False
    office: Optional[str] = None
    shift_start: Optional[str] = None
    shift_end: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    start_address: Optional[str] = None

    @field_validator("shift_start", "shift_end", mode="before")
    @classmethod
    def _normalize_shift(cls, v):
        if v is None or v == "":
            return None
        norm = normalize_time(v)
        if norm is None:
            raise ValueError(f"invalid shift time '{v}' (expected HH:MM)")
        return norm

    @field_validator("capabilities", mode="before")
    @classmethod
    def _none_caps(cls, v):
        return {} if v is None else v


# -----------------------------
# Capability audit
# -----------------------------

class CapabilityViolation(_Wire):
    tech_id: str
    tech_name: str
    staff_type: StaffType
    job_id: str
    job_type: JobType
    required_capability: str
    required_label: str
    message: str
    kind: ErrorKind = ErrorKind.CAPABILITY_VIOLATION


class CapabilityOverride(_Wire):
    tech_id: str
    job_id: str
    job_type: Optional[JobType] = None
    required_capability: Optional[str] = None
    approved_by: Optional[str] = None
    reason: str = ""
    approved_at: Optional[str] = None
    logged_for_review: bool = True


# -----------------------------
# Assignment / routes
# -----------------------------

class AssignmentEntry(_Wire):
    tech_id: str
    job_id: str
    start_min: Optional[float] = None
    overridden: bool = False
    paired_with: Optional[str] = None
    prior: bool = False


class UnassignedJob(_Wire):
    job_id: str
    reason: UnassignedReason
    kind: ErrorKind = ErrorKind.FEASIBILITY
    detail: str = ""


class AssignmentPlan(_Wire):
    routes: Dict[str, List[str]] = {}
    entries: List[AssignmentEntry] = []
    unassigned: List[UnassignedJob] = []
    capability_violations: List[CapabilityViolation] = []
    capability_overrides: List[CapabilityOverride] = []
    pinned_starts: Dict[str, float] = {}

    def techs_for(self, job_id: str) -> List[str]:
        return [e.tech_id for e in self.entries if e.job_id == job_id]


class ScheduledStop(_Wire):
    job_id: str
    arrival_min: float
    start_min: float
    end_min: float
    travel_minutes: float
    wait_minutes: float
    arrival_time: str
    start_time: str
    end_time: str


class RouteException(_Wire):
    job_id: str
    tech_id: str
    kind: ErrorKind = ErrorKind.TIME_WINDOW_CONFLICT
    reason: str


class RouteSummary(_Wire):
    total_jobs: int = 0
    total_hours: float = 0.0
    total_drive_minutes: float = 0.0
    zones: List[str] = []
    efficiency_pct: int = 0


class Route(_Wire):
    tech_id: str
    stops: List[ScheduledStop] = []
    exceptions: List[RouteException] = []
    total_drive_minutes: float = 0.0
    total_service_minutes: float = 0.0
    finish_time: Optional[str] = None
    summary: RouteSummary = Field(default_factory=RouteSummary)

    @property
    def feasible(self) -> bool:
        return not self.exceptions

    @property
    def job_ids(self) -> List[str]:
        return [s.job_id for s in self.stops]


# -----------------------------
# Validation results
# -----------------------------

class JobValidation(_Wire):
    is_valid: bool
    errors: List[Issue] = []
    job: Optional[Job] = None


class InvalidRecord(_Wire):
    index: int
    id: str
    errors: List[Issue]
    record: Dict[str, Any] = {}


class SafetyReport(_Wire):
    is_safe: bool
    warnings: List[str] = []


class SafetyWarning(_Wire):
    index: int
    id: str
    warnings: List[str]


class ValidationStats(_Wire):
    total: int = 0
    valid: int = 0
    invalid: int = 0
    success_rate: float = 0.0


class BatchValidation(_Wire):
    valid_jobs: List[Job] = []
    invalid_jobs: List[InvalidRecord] = []
    warnings: List[SafetyWarning] = []
    stats: ValidationStats = Field(default_factory=ValidationStats)


class StaffValidation(_Wire):
    valid_staff: List[Technician] = []
    invalid_staff: List[InvalidRecord] = []


# -----------------------------
# Optimizer output
# -----------------------------

class ExceptionsReport(_Wire):
    unassigned_jobs: List[UnassignedJob] = []
    capability_overrides: List[CapabilityOverride] = []
    capability_violations: List[CapabilityViolation] = []
    time_window_violations: List[RouteException] = []
    invalid_jobs: List[InvalidRecord] = []
    invalid_staff: List[InvalidRecord] = []
    safety_warnings: List[SafetyWarning] = []


class RunMetadata(_Wire):
    drive_time_source: str = "heuristic"
    degraded: bool = False
    warnings: List[Issue] = []
    storm_filter: Optional[str] = None
    excluded_job_ids: List[str] = []
    excluded_staff_ids: List[str] = []
    counts: Dict[str, int] = {}
    duration_ms: float = 0.0


class OptimizationResult(_Wire):
    assignment: Dict[str, List[str]]
    routes: List[Route]
    plan: AssignmentPlan
    exceptions: ExceptionsReport
    metadata: RunMetadata


# -----------------------------
# Dispatcher review: conflicts and recommendations
# -----------------------------

class ConflictType(str, Enum):
    OFF_WITH_JOBS = "off-with-jobs"
    OVERTIME = "overtime"
    CAPABILITY = "capability"
    TIMEFRAME_EARLY = "timeframe-early"
    TIMEFRAME_LATE = "timeframe-late"
    OVERLAP = "overlap"
    MISSING_SECOND_TECH = "missing-second-tech"
    PAIR_OUT_OF_SYNC = "pair-out-of-sync"
    DUPLICATE_ASSIGNMENT = "duplicate-assignment"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Conflict(_Wire):
    id: str
    type: ConflictType
    severity: Severity
    message: str
    tech_id: Optional[str] = None
    job_id: Optional[str] = None


class TechRecommendation(_Wire):
    tech_id: str
    tech_name: str
    score: int
    reasons: List[str] = []
    start_time: Optional[str] = None
    added_drive_minutes: Optional[float] = None
    current_hours: float = 0.0
    hours_after: float = 0.0
    cost: Optional[float] = None
    overridden: bool = False


# -----------------------------
# API request models
# -----------------------------

class ValidateRequest(_Wire):
    jobs: List[Dict[str, Any]]


class ImportRequest(_Wire):
    rows: List[Dict[str, Any]]
    default_start: str = "08:00"
    default_end: str = "17:00"


class ManualTimeframeRequest(_Wire):
    record: Dict[str, Any]
    timeframe_start: str
    timeframe_end: str


class CapabilityCheckRequest(_Wire):
    staff: Technician
    job_type: str
    job_id: str = ""


class OptimizeRequest(_Wire):
    jobs: List[Dict[str, Any]]
    staff: List[Dict[str, Any]] = []
    storm_data: Optional[Dict[str, Any]] = None
    storm_filter: Optional[str] = None
    overrides: List[CapabilityOverride] = []


class SequenceRequest(_Wire):
    tech: Technician
    job_ids: List[str]
    jobs: List[Job]
    plan: AssignmentPlan


class OverrideAction(str, Enum):
    ASSIGN = "assign"
    UNASSIGN = "unassign"
    REASSIGN = "reassign"


class OverrideCommand(_Wire):
    action: OverrideAction
    job_id: str
    tech_ids: List[str] = []
    override: Optional[CapabilityOverride] = None


class OverrideOutcome(_Wire):
    applied: bool
    plan: AssignmentPlan
    violations: List[CapabilityViolation] = []
    conflicts: List[Conflict] = []
    message: str = ""


class OverrideRequest(_Wire):
    plan: AssignmentPlan
    jobs: List[Job]
    staff: List[Technician]
    command: OverrideCommand


class ConflictsRequest(_Wire):
    plan: AssignmentPlan
    jobs: List[Job]
    staff: List[Technician]
    routes: List[Route] = []


class RecommendRequest(_Wire):
    job_id: str
    plan: AssignmentPlan
    jobs: List[Job]
    staff: List[Technician]
    overrides: List[CapabilityOverride] = []
    limit: int = Field(5, ge=1)


class ImportResult(_Wire):
    records: List[Dict[str, Any]] = []
    needs_manual_timeframe: List[Dict[str, Any]] = []
    validation: BatchValidation = Field(default_factory=BatchValidation)


class ManualTimeframeResult(_Wire):
    is_valid: bool
    errors: List[Issue] = []
    record: Dict[str, Any] = {}
