"""
Great-circle geometry between the receiver and transmitter sites.

================================================================================
GREAT CIRCLE DISTANCE
================================================================================
Haversine formula on a spherical Earth:

    a = sin²(Δφ/2) + cos(φ₁) × cos(φ₂) × sin²(Δλ/2)
    c = 2 × arcsin(√a)
    d = R × c

    φ = latitude (radians), λ = longitude (radians), R = 6371 km

================================================================================
INITIAL BEARING
================================================================================
    θ = atan2(sin Δλ × cos φ₂, cos φ₁ × sin φ₂ − sin φ₁ × cos φ₂ × cos Δλ)

Normalised to [0, 360) degrees clockwise from true north.

================================================================================
MAIDENHEAD GRID CONVERSION
================================================================================
The receiver may be configured as a grid square instead of lat/lon:

    Characters │ Resolution   │ Example
    ───────────┼──────────────┼─────────
    4 (square) │ 2° × 1°      │ KO85
    6 (subsq)  │ 5' × 2.5'    │ KO85us
"""

import math
from typing import Tuple

import numpy as np

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great circle distance between two points.

    Args:
        lat1, lon1: First point (decimal degrees)
        lat2, lon2: Second point (decimal degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    # Rounding can push a a hair above 1 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return EARTH_RADIUS_KM * c


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial bearing from the first point towards the second.

    Returns:
        Azimuth in degrees, 0 <= azimuth < 360
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lon = math.radians(lon2 - lon1)

    y = math.sin(delta_lon) * math.cos(lat2_rad)
    x = (math.cos(lat1_rad) * math.sin(lat2_rad) -
         math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(delta_lon))

    bearing = math.degrees(math.atan2(y, x)) % 360.0
    # -0.0 % 360 and tiny negatives can land exactly on 360.0
    return 0.0 if bearing >= 360.0 else bearing


def haversine_km_many(lat: float, lon: float, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """Vectorised haversine from one point to many (used to prefilter sites)."""
    lat_rad = np.radians(lat)
    lats_rad = np.radians(lats)
    delta_lat = lats_rad - lat_rad
    delta_lon = np.radians(lons - lon)

    a = (np.sin(delta_lat / 2) ** 2 +
         np.cos(lat_rad) * np.cos(lats_rad) * np.sin(delta_lon / 2) ** 2)
    c = 2 * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))

    return EARTH_RADIUS_KM * c


def grid_to_latlon(grid: str) -> Tuple[float, float]:
    """
    Convert Maidenhead grid square to latitude/longitude (centre of square).

    Supports 4-character (e.g., "KO85") or 6-character (e.g., "KO85us") grids.

    Raises:
        ValueError: grid shorter than 4 characters or malformed
    """
    grid = grid.strip().upper()

    if len(grid) < 4:
        raise ValueError(f"Grid square too short: {grid}")
    if not (grid[0:2].isalpha() and grid[2:4].isdigit()):
        raise ValueError(f"Malformed grid square: {grid}")

    # Field: 20° longitude x 10° latitude
    lon = (ord(grid[0]) - ord('A')) * 20 - 180
    lat = (ord(grid[1]) - ord('A')) * 10 - 90

    # Square: 2° longitude x 1° latitude
    lon += int(grid[2]) * 2
    lat += int(grid[3]) * 1

    if len(grid) >= 6:
        lon += (ord(grid[4]) - ord('A')) * (2 / 24)
        lat += (ord(grid[5]) - ord('A')) * (1 / 24)
        lon += 1 / 24
        lat += 1 / 48
    else:
        lon += 1
        lat += 0.5

    return lat, lon
