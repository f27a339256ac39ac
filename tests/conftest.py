# tests/conftest.py
from pathlib import Path
from importlib import reload

import pytest
from fastapi.testclient import TestClient

from techroute.plan.config import OptimizerConfig
from techroute.plan.drive_time import HeuristicDriveTimes, build_drive_times, stops_for
from techroute.plan.models import Job, Technician

_CONFIG_ENV = (
    "MAPBOX_ACCESS_TOKEN",
    "ZONE_MISMATCH_PENALTY",
    "ZONE_PENALTY",
    "DRIVE_TIME_WEIGHT",
    "LOAD_BALANCE_WEIGHT",
    "LOAD_WEIGHT",
    "DEMO_PAIR_BONUS",
    "STRICT_ZONES",
    "TWO_OPT_MAX_ITERATIONS",
    "SEQUENCING_WORKERS",
    "MAX_DAILY_HOURS",
    "DAY_START",
    "SHIFT_START_TIME",
    "DAY_END",
)


@pytest.fixture(autouse=True)
def _env_test_data(monkeypatch, tmp_path: Path):
    """
    Point PRIVATE_DATA_DIR at an empty temp dir and clear every optimizer
    env var, so no developer token or local settings leak into a test.
    """
    data_root = tmp_path / "data"
    data_root.mkdir(parents=True, exist_ok=True)
    for name in _CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PRIVATE_DATA_DIR", str(data_root))
    monkeypatch.setenv("DEBUG_API", "1")
    yield data_root


@pytest.fixture
def cfg():
    return OptimizerConfig()


@pytest.fixture
def make_job():
    """Loose camelCase job record, as the UI / import sends it."""
    def _make(job_id, zone="Zone 1", job_type="install", start="08:00", end="17:00", duration=1, **extra):
        rec = {
            "id": job_id,
            "customerName": f"Customer {job_id}",
            "address": f"{job_id} Main St, Houston, TX",
            "zone": zone,
            "jobType": job_type,
            "timeframeStart": start,
            "timeframeEnd": end,
            "duration": duration,
        }
        rec.update(extra)
        return rec
    return _make


@pytest.fixture
def make_tech():
    def _make(tech_id, zone="Zone 1", type="regularTech", **extra):
        rec = {"id": tech_id, "name": f"Tech {tech_id}", "zone": zone, "type": type}
        rec.update(extra)
        return rec
    return _make


@pytest.fixture
def jobs_of(make_job):
    def _jobs(*records):
        return [r if isinstance(r, Job) else Job(**r) for r in records]
    return _jobs


@pytest.fixture
def techs_of():
    def _techs(*records):
        return [r if isinstance(r, Technician) else Technician(**r) for r in records]
    return _techs


@pytest.fixture
def heuristic_times(cfg):
    """Drive-time matrix for the given models using only the zone/haversine heuristic."""
    def _build(jobs, techs, config=None):
        c = config or cfg
        return build_drive_times(stops_for(jobs, techs), HeuristicDriveTimes(c), c)
    return _build


@pytest.fixture
def app(_env_test_data):
    # Import AFTER env vars so the app's config is read from the temp dir
    import backend.main as main
    main = reload(main)
    return main.app


@pytest.fixture
def client(app):
    c = TestClient(app)
    r = c.post("/admin/reload")
    assert r.status_code == 200, f"/admin/reload failed: {r.status_code} {r.text}"
    return c
