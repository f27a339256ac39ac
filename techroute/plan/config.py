from __future__ import annotations
import os, json
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from techroute.runtime import env_path

def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name, str(default)).strip().lower()
    return v in ("1", "true", "yes", "y", "on")

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return float(default)

def _env_int(name: str, default: int) -> int:
    try:
        return int(float(os.getenv(name, str(default))))
    except Exception:
        return int(default)

# Travel defaults (minutes) used when no drive-time service is configured
SAME_ZONE_MINUTES = _env_float("SAME_ZONE_MINUTES", 20.0)
CROSS_ZONE_MINUTES = _env_float("CROSS_ZONE_MINUTES", 30.0)
MAPBOX_BASE_URL = os.getenv("MAPBOX_BASE_URL", "https://api.mapbox.com").rstrip("/")
MAX_MAPBOX_COORDS_PER_REQUEST = 25

SETTINGS_FILENAME = "global_settings.json"


class OptimizerConfig(BaseModel):
    """Cost weights and engine limits. All tunable; nothing here is derived from data."""

    zone_mismatch_penalty: float = Field(30.0, ge=0, description="minutes-equivalent per cross-zone job")
    drive_time_weight: float = Field(1.0, ge=0)
    load_balance_weight: float = Field(15.0, ge=0, description="per assigned hour already on the tech")
    demo_pair_bonus: float = Field(10.0, ge=0)
    strict_zones: bool = False

    two_opt_max_iterations: int = Field(50, ge=0)
    sequencing_workers: int = Field(4, ge=1)

    day_start: str = "08:15"
    day_end: str = "20:00"
    max_daily_hours: float = Field(8.5, gt=0)

    same_zone_minutes: float = SAME_ZONE_MINUTES
    cross_zone_minutes: float = CROSS_ZONE_MINUTES
    zone_step_minutes: float = 10.0
    max_zone_minutes: float = 90.0
    road_factor: float = 1.25
    average_mph: float = 35.0
    overhead_minutes: float = 10.0

    mapbox_base_url: str = MAPBOX_BASE_URL
    mapbox_timeout_s: float = 10.0


def _env_name(*names: str) -> Optional[str]:
    """First of the given env vars that is set and non-empty."""
    for n in names:
        if os.getenv(n) not in (None, ""):
            return n
    return None

def _env_float_any(names, default: float) -> float:
    name = _env_name(*names)
    return _env_float(name, default) if name else float(default)


def optimizer_config_from_env() -> Dict[str, Any]:
    def pick(*names, default=None):
        name = _env_name(*names)
        return os.getenv(name) if name else default

    out: Dict[str, Any] = {
        "zone_mismatch_penalty": _env_float_any(("ZONE_MISMATCH_PENALTY", "ZONE_PENALTY"), 30.0),
        "drive_time_weight": _env_float("DRIVE_TIME_WEIGHT", 1.0),
        "load_balance_weight": _env_float_any(("LOAD_BALANCE_WEIGHT", "LOAD_WEIGHT"), 15.0),
        "demo_pair_bonus": _env_float("DEMO_PAIR_BONUS", 10.0),
        "strict_zones": _env_bool("STRICT_ZONES", False),
        "two_opt_max_iterations": _env_int("TWO_OPT_MAX_ITERATIONS", 50),
        "sequencing_workers": _env_int("SEQUENCING_WORKERS", 4),
        "max_daily_hours": _env_float("MAX_DAILY_HOURS", 8.5),
    }
    day_start = pick("DAY_START", "SHIFT_START_TIME")
    if day_start:
        out["day_start"] = day_start
    day_end = pick("DAY_END")
    if day_end:
        out["day_end"] = day_end
    return out

def private_data_dir() -> Path:
    return env_path("PRIVATE_DATA_DIR", "./data/private")

def _load_json(path: Path, default: Any) -> Any:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        pass
    return default

def load_settings() -> Dict[str, Any]:
    return _load_json(private_data_dir() / SETTINGS_FILENAME, {})

def load_optimizer_config(overrides: Optional[Dict[str, Any]] = None) -> OptimizerConfig:
    """env defaults < global_settings.json 'optimizer' block < explicit overrides"""
    merged = optimizer_config_from_env()
    file_cfg = load_settings().get("optimizer") or {}
    if isinstance(file_cfg, dict):
        merged.update(file_cfg)
    if overrides:
        merged.update(overrides)
    return OptimizerConfig(**merged)

def load_mapbox_token() -> Optional[str]:
    token = os.getenv("MAPBOX_ACCESS_TOKEN", "").strip()
    if token:
        return token
    token = str(load_settings().get("mapbox_token") or "").strip()
    return token or None
