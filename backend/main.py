#!/usr/bin/env python3

"""
Backend for the daily dispatch optimizer.

Run locally:
  uvicorn backend.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations
import os
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from backend.settings_routes import router as settings_router
from techroute.plan.config import OptimizerConfig, load_mapbox_token, load_optimizer_config, private_data_dir
from techroute.plan.router import create_router as create_plan_router
from techroute.runtime import configure_logging

log = configure_logging("backend")


# --------------------------------------------------------------------------------------------------
# Global Constants & Environment
# --------------------------------------------------------------------------------------------------
DEBUG_API = os.getenv("DEBUG_API", "1") == "1"
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*")
ALLOW_ORIGINS = [o.strip() for o in CORS_ALLOW_ORIGINS.split(",") if o.strip()] or ["*"]

CONFIG: Optional[OptimizerConfig] = None


def current_config() -> OptimizerConfig:
    global CONFIG
    if CONFIG is None:
        CONFIG = load_optimizer_config()
    return CONFIG


# --------------------------------------------------------------------------------------------------
# Admin Router (reload)
# --------------------------------------------------------------------------------------------------
def admin_router() -> APIRouter:
    router = APIRouter(prefix="/admin", tags=["Admin"])

    @router.post("/reload")
    def admin_reload():
        """Re-read env + global_settings.json"""
        global CONFIG
        try:
            CONFIG = load_optimizer_config()
            return {
                "status": "ok",
                "reloaded": {
                    "optimizer": CONFIG.model_dump(),
                    "mapbox_token_configured": load_mapbox_token() is not None,
                },
            }
        except Exception as e:
            log.exception("reload failed")
            return {
                "status": "error",
                "error": str(e),
                "traceback": traceback.format_exc(),
            }

    return router

# --------------------------------------------------------------------------------------------------
# Public Endpoints
# --------------------------------------------------------------------------------------------------
def register_routes(app: FastAPI):
    @app.get("/health")
    def health() -> Dict[str, Any]:
        token = load_mapbox_token() is not None
        return {
            "status": "ok",
            "private_data_dir": str(private_data_dir()),
            "drive_times": "mapbox" if token else "heuristic",
            "mapbox_token_configured": token,
        }

    @app.get("/config")
    def config():
        return {
            "optimizer": current_config().model_dump(),
            "cors_allow_origins": ALLOW_ORIGINS,
            "private_data_dir": str(private_data_dir()),
        }

# --------------------------------------------------------------------------------------------------
# FastAPI App (with lifespan)
# --------------------------------------------------------------------------------------------------
def create_app() -> FastAPI:
    async def lifespan(app: FastAPI):
        global CONFIG
        try:
            CONFIG = load_optimizer_config()
            log.info("[startup] optimizer config loaded from %s", private_data_dir())
        except Exception as e:
            log.warning("[startup] optimizer config invalid, using defaults: %s", e)
            CONFIG = OptimizerConfig()
        if load_mapbox_token() is None:
            log.warning("[startup] no Mapbox token configured; drive times will be estimated")
        yield

    app = FastAPI(title="Field Dispatch Optimizer", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        log.exception("unhandled error on %s", request.url.path)
        payload = {"error": str(exc)}
        if DEBUG_API:
            payload["traceback"] = traceback.format_exc()
        return JSONResponse(status_code=500, content=payload)

    app.include_router(settings_router)
    app.include_router(admin_router())
    app.include_router(create_plan_router(current_config))

    register_routes(app)
    return app

app = create_app()


# --------------------------------------------------------------------------------------------------
# Entrypoint
# --------------------------------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("backend.main:app", host="0.0.0.0", port=port, reload=False)
