# backend/settings_routes.py
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ValidationError

from techroute.plan.config import SETTINGS_FILENAME, OptimizerConfig, private_data_dir

router = APIRouter(tags=["settings"])

# ---- Paths & helpers ---------------------------------------------------------

def global_settings_path() -> Path:
    return private_data_dir() / SETTINGS_FILENAME

def default_global_settings() -> Dict[str, Any]:
    # Safe defaults (edit later in Settings UI)
    return {"optimizer": OptimizerConfig().model_dump()}

def load_json(path: Path, default: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if path.exists():
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to read {path.name}: {e}")
    return default or {}

def save_json(path: Path, payload: Dict[str, Any]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to write {path.name}: {e}")

def mask_token(token: str) -> str:
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"

# ---- global settings ---------------------------------------------------------

@router.get("/settings")
def get_settings():
    cfg = load_json(global_settings_path(), default_global_settings())
    token = cfg.pop("mapbox_token", None)
    cfg["mapbox_token_configured"] = bool(token) or bool(os.getenv("MAPBOX_ACCESS_TOKEN", "").strip())
    return cfg

@router.post("/settings")
def post_settings(payload: Dict[str, Any]):
    if "optimizer" not in payload:
        raise HTTPException(status_code=400, detail="Missing key: optimizer")
    try:
        optimizer = OptimizerConfig(**(payload["optimizer"] or {}))
    except (TypeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid optimizer settings: {e}")
    current = load_json(global_settings_path(), {})
    current["optimizer"] = optimizer.model_dump()
    save_json(global_settings_path(), current)
    return {"status": "ok", "message": f"{SETTINGS_FILENAME} updated"}

# ---- Mapbox token (one field in the settings UI) -----------------------------

class MapboxTokenIn(BaseModel):
    token: str

@router.get("/settings/mapbox_token")
def get_mapbox_token():
    env_token = os.getenv("MAPBOX_ACCESS_TOKEN", "").strip()
    if env_token:
        return {"configured": True, "source": "env", "masked": mask_token(env_token)}
    token = str(load_json(global_settings_path(), {}).get("mapbox_token") or "").strip()
    if token:
        return {"configured": True, "source": "settings", "masked": mask_token(token)}
    return {"configured": False, "source": None, "masked": None}

@router.post("/settings/mapbox_token")
def post_mapbox_token(payload: MapboxTokenIn):
    token = payload.token.strip()
    if not token:
        raise HTTPException(status_code=400, detail="Token must not be empty.")
    current = load_json(global_settings_path(), {})
    current["mapbox_token"] = token
    save_json(global_settings_path(), current)
    return {"status": "ok", "masked": mask_token(token)}

@router.delete("/settings/mapbox_token")
def delete_mapbox_token():
    current = load_json(global_settings_path(), {})
    removed = current.pop("mapbox_token", None) is not None
    save_json(global_settings_path(), current)
    return {"status": "ok", "removed": removed}
