from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import numpy as np
import requests

from .config import MAX_MAPBOX_COORDS_PER_REQUEST, OptimizerConfig
from .geo import centroid, road_minutes, zone_minutes
from .models import ErrorKind, Issue, Job, Technician

log = logging.getLogger(__name__)

TOKEN_MISSING_MESSAGE = "Mapbox API token is required. Please configure it in settings."

# sources + destinations share one request's coordinate limit
_BLOCK = MAX_MAPBOX_COORDS_PER_REQUEST // 2


def job_key(job_id: str) -> str:
    return f"job:{job_id}"

def start_key(tech_id: str) -> str:
    return f"start:{tech_id}"


@dataclass(frozen=True)
class Stop:
    key: str
    zone: str = ""
    address: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def coords(self) -> Optional[Tuple[float, float]]:
        if self.lat is None or self.lon is None:
            return None
        return (float(self.lat), float(self.lon))


@dataclass
class DriveTimes:
    """Minutes between stops. Row = from, column = to."""
    matrix: np.ndarray
    index: Dict[str, int]
    source: str = "heuristic"
    degraded: bool = False
    warnings: List[Issue] = field(default_factory=list)

    def minutes(self, a: str, b: str) -> float:
        if a == b:
            return 0.0
        return float(self.matrix[self.index[a], self.index[b]])

    def job_to_job(self, a_id: str, b_id: str) -> float:
        return self.minutes(job_key(a_id), job_key(b_id))

    def from_start(self, tech_id: str, job_id: str) -> float:
        return self.minutes(start_key(tech_id), job_key(job_id))


class DriveTimeUnavailable(Exception):
    """Raised by a provider when it cannot produce any times at all."""


# -----------------------------
# Stops
# -----------------------------

def stops_for(jobs: Sequence[Job], techs: Sequence[Technician]) -> List[Stop]:
    """
    One stop per job plus one start point per technician.
    A tech with no coordinates or start address starts from the centroid of
    the jobs in their zone; failing that only the zone is known.
    """
    stops = [Stop(job_key(j.id), j.zone, j.address, j.lat, j.lon) for j in jobs]

    by_zone: Dict[str, List[Tuple[float, float]]] = {}
    for j in jobs:
        if j.lat is not None and j.lon is not None:
            by_zone.setdefault(j.zone, []).append((j.lat, j.lon))

    for t in techs:
        lat, lon = t.lat, t.lon
        if (lat is None or lon is None) and not t.start_address:
            c = centroid(by_zone.get(t.zone, []))
            if c is not None:
                lat, lon = c
        stops.append(Stop(start_key(t.id), t.zone, t.start_address, lat, lon))
    return stops


# -----------------------------
# Providers
# -----------------------------

class HeuristicDriveTimes:
    name = "heuristic"

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.cfg = config or OptimizerConfig()

    def between(self, a: Stop, b: Stop) -> float:
        if a.key == b.key:
            return 0.0
        ca, cb = a.coords, b.coords
        if ca is not None and cb is not None:
            return road_minutes(ca, cb, self.cfg.road_factor, self.cfg.average_mph, self.cfg.overhead_minutes)
        return zone_minutes(
            a.zone, b.zone,
            self.cfg.same_zone_minutes, self.cfg.cross_zone_minutes,
            self.cfg.zone_step_minutes, self.cfg.max_zone_minutes,
        )

    def matrix(self, stops: Sequence[Stop]) -> np.ndarray:
        n = len(stops)
        M = np.zeros((n, n), dtype=float)
        for i, a in enumerate(stops):
            for j, b in enumerate(stops):
                if i != j:
                    M[i, j] = self.between(a, b)
        return M


class MapboxDriveTimes:
    """Mapbox geocoding + Matrix API. Every failure is reported, never raised past build_drive_times."""

    name = "mapbox"

    def __init__(
        self,
        token: Optional[str],
        base_url: str = "https://api.mapbox.com",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.token = (token or "").strip() or None
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self._owns_session = session is None
        self.session = session or requests.Session()
        self._geocode_cache: Dict[str, Optional[Tuple[float, float]]] = {}

    def close(self) -> None:
        """Close the HTTP session if this provider opened it."""
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> "MapboxDriveTimes":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def geocode(self, address: str) -> Optional[Tuple[float, float]]:
        """(lat, lon) of the best match, None when nothing matched."""
        if address in self._geocode_cache:
            return self._geocode_cache[address]
        url = f"{self.base_url}/geocoding/v5/mapbox.places/{quote(address, safe='')}.json"
        resp = self.session.get(url, params={"access_token": self.token, "limit": 1}, timeout=self.timeout)
        resp.raise_for_status()
        features = resp.json().get("features") or []
        coords = None
        if features:
            lng, lat = features[0]["center"][:2]
            coords = (float(lat), float(lng))
        self._geocode_cache[address] = coords
        return coords

    def matrix_block(self, sources: List[Tuple[float, float]], destinations: List[Tuple[float, float]]):
        """Durations in seconds, sources x destinations; unreachable cells are None."""
        pts = list(sources) + list(destinations)
        coord_str = ";".join(f"{lon},{lat}" for lat, lon in pts)
        url = f"{self.base_url}/directions-matrix/v1/mapbox/driving/{coord_str}"
        params = {
            "sources": ";".join(str(i) for i in range(len(sources))),
            "destinations": ";".join(str(i + len(sources)) for i in range(len(destinations))),
            "access_token": self.token,
        }
        resp = self.session.get(url, params=params, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        if data.get("code") not in (None, "Ok"):
            raise DriveTimeUnavailable(f"Matrix API returned {data.get('code')}: {data.get('message', '')}")
        return data.get("durations") or []

    def locate(self, stops: Sequence[Stop], warnings: List[Issue]) -> List[Stop]:
        """Geocode stops that carry an address but no coordinates."""
        out = []
        for s in stops:
            if s.coords is None and s.address:
                try:
                    c = self.geocode(s.address)
                except (requests.RequestException, ValueError, KeyError) as e:
                    warnings.append(_degraded(f"Geocoding failed for {s.key}: {e.__class__.__name__}"))
                    out.append(s)
                    continue
                if c is None:
                    warnings.append(_degraded(f"Address not found for {s.key}; using estimated travel times"))
                else:
                    s = replace(s, lat=c[0], lon=c[1])
            out.append(s)
        return out

    def fill(self, stops: Sequence[Stop], M: np.ndarray, warnings: List[Issue]) -> int:
        """Overwrite cells of M with Mapbox minutes. Returns the number of cells filled."""
        located = [i for i, s in enumerate(stops) if s.coords is not None]
        filled = 0
        for a in range(0, len(located), _BLOCK):
            src = located[a:a + _BLOCK]
            for b in range(0, len(located), _BLOCK):
                dst = located[b:b + _BLOCK]
                try:
                    durations = self.matrix_block([stops[i].coords for i in src], [stops[j].coords for j in dst])
                except (requests.RequestException, DriveTimeUnavailable, ValueError) as e:
                    warnings.append(_degraded(f"Matrix request failed ({e.__class__.__name__}); "
                                              f"using estimated travel times for {len(src)}x{len(dst)} pairs"))
                    continue
                for r, i in enumerate(src):
                    row = durations[r] if r < len(durations) else None
                    for c, j in enumerate(dst):
                        if i == j:
                            continue
                        sec = row[c] if row is not None and c < len(row) else None
                        if sec is None:
                            continue
                        M[i, j] = float(sec) / 60.0
                        filled += 1
        return filled


def _degraded(message: str) -> Issue:
    return Issue(kind=ErrorKind.EXTERNAL_SERVICE_DEGRADATION, message=message, field="drive_time")


def build_drive_times(
    stops: Sequence[Stop],
    provider=None,
    config: Optional[OptimizerConfig] = None,
) -> DriveTimes:
    """
    Drive-time matrix for the given stops. Never raises on provider failure:
    anything Mapbox cannot answer falls back to the heuristic and the result is
    marked degraded.
    """
    cfg = config or OptimizerConfig()
    heuristic = HeuristicDriveTimes(cfg)
    index = {s.key: i for i, s in enumerate(stops)}
    warnings: List[Issue] = []

    if provider is None or isinstance(provider, HeuristicDriveTimes):
        return DriveTimes(heuristic.matrix(stops), index, source="heuristic")

    if isinstance(provider, MapboxDriveTimes) and provider.token is None:
        log.warning("drive times: %s", TOKEN_MISSING_MESSAGE)
        return DriveTimes(heuristic.matrix(stops), index, source="heuristic", degraded=True,
                          warnings=[_degraded(TOKEN_MISSING_MESSAGE)])

    stops = provider.locate(stops, warnings)
    M = heuristic.matrix(stops)
    filled = provider.fill(stops, M, warnings)

    n = len(stops)
    missing = n * (n - 1) - filled
    if missing > 0 and not warnings:
        warnings.append(_degraded(f"{missing} travel times estimated (no coordinates or no route)"))
    degraded = missing > 0
    if n > 1 and filled == 0:
        source = "heuristic"
    elif degraded:
        source = f"{provider.name}+heuristic"
    else:
        source = provider.name

    for w in warnings:
        log.warning("drive times degraded: %s", w.message)
    log.info("drive times: %d stops, %d cells from %s, degraded=%s", n, filled, provider.name, degraded)
    return DriveTimes(M, index, source=source, degraded=degraded, warnings=warnings)
