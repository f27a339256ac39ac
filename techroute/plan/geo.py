from __future__ import annotations
from typing import Optional, Tuple
from math import radians, sin, cos, asin, sqrt
import re

import numpy as np

_ZONE_NUMBER = re.compile(r"(\d+)")

def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    R = 3958.7613  # miles
    dphi = radians(lat2 - lat1)
    dlmb = radians(lon2 - lon1)
    phi1 = radians(lat1); phi2 = radians(lat2)
    a = sin(dphi/2)**2 + cos(phi1)*cos(phi2)*sin(dlmb/2)**2
    return 2 * R * asin(sqrt(a))

def road_minutes(
    a: Tuple[float, float],
    b: Tuple[float, float],
    road_factor: float = 1.25,
    average_mph: float = 35.0,
    overhead_minutes: float = 10.0,
) -> float:
    """
    Straight-line distance scaled to road miles, driven at a flat average speed,
    plus a fixed per-journey overhead (parking, walk-in).
    """
    if a == b:
        return 0.0
    miles = haversine_miles(a[0], a[1], b[0], b[1]) * road_factor
    return (miles / average_mph) * 60.0 + overhead_minutes

def zone_number(zone: Optional[str]) -> Optional[int]:
    """'Zone 3' -> 3, '3' -> 3, 'North' -> None"""
    if not zone:
        return None
    m = _ZONE_NUMBER.search(str(zone))
    return int(m.group(1)) if m else None

def same_zone(z1: Optional[str], z2: Optional[str]) -> bool:
    if not z1 or not z2:
        return False
    n1, n2 = zone_number(z1), zone_number(z2)
    if n1 is not None and n2 is not None:
        return n1 == n2
    return str(z1).strip().lower() == str(z2).strip().lower()

def zone_minutes(
    z1: Optional[str],
    z2: Optional[str],
    same_zone_minutes: float = 20.0,
    cross_zone_minutes: float = 30.0,
    step_minutes: float = 10.0,
    max_minutes: float = 90.0,
) -> float:
    """Travel estimate when only zones are known. Numbered zones are treated as adjacent bands."""
    if same_zone(z1, z2):
        return same_zone_minutes
    n1, n2 = zone_number(z1), zone_number(z2)
    if n1 is None or n2 is None:
        return cross_zone_minutes
    steps = abs(n1 - n2) - 1
    return min(max_minutes, cross_zone_minutes + step_minutes * max(steps, 0))

def centroid(points) -> Optional[Tuple[float, float]]:
    pts = [(p[0], p[1]) for p in points if p is not None and p[0] is not None and p[1] is not None]
    if not pts:
        return None
    arr = np.asarray(pts, dtype=float)
    lat, lon = arr.mean(axis=0)
    return float(lat), float(lon)
