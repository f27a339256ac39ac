from __future__ import annotations
from typing import Any, Dict, List, Optional, Callable
import io
import logging

from fastapi import APIRouter, File, HTTPException, UploadFile

from .models import (
    BatchValidation,
    CapabilityCheckRequest,
    Conflict,
    ConflictsRequest,
    ImportRequest,
    ImportResult,
    Job,
    ManualTimeframeRequest,
    ManualTimeframeResult,
    OptimizationResult,
    OptimizeRequest,
    OverrideOutcome,
    OverrideRequest,
    RecommendRequest,
    Route,
    SequenceRequest,
    TechRecommendation,
    ValidateRequest,
)
from .config import OptimizerConfig
from .capabilities import capability_label, check_capability, required_capability
from .conflicts import detect_conflicts
from .drive_time import build_drive_times, stops_for
from .errors import PreconditionError
from .optimizer import default_provider, optimize_day
from .overrides import apply_override
from .recommendations import recommend_techs
from .sequencer import sequence_route
from .storm_mode import describe_filters, parse_storm_filter
from .validation import validate_jobs
from techroute.job_import import apply_manual_timeframe, jobs_from_import_rows, read_import_csv

log = logging.getLogger(__name__)


def create_router(
    get_config: Callable[[], OptimizerConfig],
    get_provider: Optional[Callable[[OptimizerConfig], Any]] = None,
) -> APIRouter:
    """
    Factory that returns the /plan router. Uses callables so the backend can
    swap config (after /admin/reload or a settings change) without rebuilding routes.
    """
    router = APIRouter(prefix="/plan", tags=["Plan"])

    # ------------------- Shared Helpers -------------------

    def precondition(e: PreconditionError) -> HTTPException:
        log.info("rejected request: %s", e)
        return HTTPException(status_code=400, detail=str(e))

    def drive_times_for(jobs, staff, cfg: OptimizerConfig):
        stops = stops_for(jobs, staff)
        if get_provider is not None:
            return build_drive_times(stops, get_provider(cfg), cfg)
        with default_provider(cfg) as provider:
            return build_drive_times(stops, provider, cfg)

    # ------------------- Endpoints -------------------

    @router.post("/validate", response_model=BatchValidation)
    def plan_validate(req: ValidateRequest):
        return validate_jobs(req.jobs)

    @router.post("/import", response_model=ImportResult)
    def plan_import(req: ImportRequest):
        return jobs_from_import_rows(req.rows, default_window=(req.default_start, req.default_end))

    @router.post("/import_csv", response_model=ImportResult)
    async def plan_import_csv(file: UploadFile = File(..., description="Daily export CSV")):
        if not (file.filename or "").lower().endswith(".csv"):
            raise HTTPException(status_code=400, detail="Please upload a .csv file.")
        try:
            raw = await file.read()
            rows = read_import_csv(io.BytesIO(raw))
        except Exception as e:
            raise HTTPException(status_code=400, detail=f"Failed to parse CSV: {e}")
        return jobs_from_import_rows(rows)

    @router.post("/import/manual_timeframe", response_model=ManualTimeframeResult)
    def plan_manual_timeframe(req: ManualTimeframeRequest):
        return apply_manual_timeframe(req.record, req.timeframe_start, req.timeframe_end)

    @router.post("/capability_check")
    def plan_capability_check(req: CapabilityCheckRequest):
        cap = required_capability(req.job_type)
        sample = Job(
            id=req.job_id or "capability-check", customer_name="-", address="-",
            job_type=req.job_type, timeframe_start="08:00", timeframe_end="17:00",
        )
        violation = check_capability(req.staff, sample)
        return {
            "capable": violation is None,
            "requiredCapability": cap,
            "requiredLabel": capability_label(cap),
            "violation": violation.model_dump(by_alias=True, mode="json") if violation else None,
        }

    @router.get("/storm_filters")
    def plan_storm_filters() -> List[Dict[str, str]]:
        return describe_filters()

    @router.post("/optimize", response_model=OptimizationResult)
    def plan_optimize(req: OptimizeRequest):
        cfg = get_config()
        try:
            parse_storm_filter(req.storm_filter)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        try:
            return optimize_day(
                req.jobs,
                req.staff,
                storm_data=req.storm_data,
                storm_filter=req.storm_filter,
                overrides=req.overrides,
                config=cfg,
                provider=get_provider(cfg) if get_provider is not None else None,
            )
        except PreconditionError as e:
            raise precondition(e)

    @router.post("/sequence", response_model=Route)
    def plan_sequence(req: SequenceRequest):
        cfg = get_config()
        jobs_by_id = {j.id: j for j in req.jobs}
        dt = drive_times_for(req.jobs, [req.tech], cfg)
        try:
            return sequence_route(req.tech, req.job_ids, req.plan, jobs_by_id, dt, cfg)
        except PreconditionError as e:
            raise precondition(e)

    @router.post("/override", response_model=OverrideOutcome)
    def plan_override(req: OverrideRequest):
        cfg = get_config()
        dt = drive_times_for(req.jobs, req.staff, cfg)
        try:
            return apply_override(
                req.plan,
                req.command,
                {j.id: j for j in req.jobs},
                {t.id: t for t in req.staff},
                drive_times=dt,
                config=cfg,
            )
        except PreconditionError as e:
            raise precondition(e)

    @router.post("/conflicts", response_model=List[Conflict])
    def plan_conflicts(req: ConflictsRequest):
        return detect_conflicts(
            req.plan,
            req.routes,
            {j.id: j for j in req.jobs},
            {t.id: t for t in req.staff},
            get_config(),
        )

    @router.post("/recommend", response_model=List[TechRecommendation])
    def plan_recommend(req: RecommendRequest):
        cfg = get_config()
        jobs_by_id = {j.id: j for j in req.jobs}
        job = jobs_by_id.get(req.job_id)
        if job is None:
            raise precondition(PreconditionError(f"unknown job id {req.job_id}"))
        dt = drive_times_for(req.jobs, req.staff, cfg)
        return recommend_techs(job, req.staff, req.plan, jobs_by_id, dt, cfg, req.overrides, req.limit)

    return router
