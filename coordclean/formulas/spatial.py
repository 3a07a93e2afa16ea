"""
Spatial constants and great-circle distance functions.

All functions are pure (no I/O, no side effects) and accept scalars or
numpy arrays in decimal degrees.
"""

import numpy as np

# Mean Earth radius for Haversine distance calculation.
# Standard geodetic value (IUGG).
EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_M = EARTH_RADIUS_KM * 1000.0

# Length of one degree of arc along a great circle, in metres.
METRES_PER_DEGREE = np.pi * EARTH_RADIUS_M / 180.0


def haversine_m(lon1, lat1, lon2, lat2):
    """Great-circle distance between points (WGS84 degrees, in metres).

    Broadcasts like numpy, so one point can be compared against an array.
    """
    lon1, lat1, lon2, lat2 = map(np.radians, (lon1, lat1, lon2, lat2))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = (np.sin(dlat / 2) ** 2 +
         np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2)
    a = np.clip(a, 0.0, 1.0)
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def metres_to_degrees(metres):
    """Convert a great-circle distance to degrees of arc."""
    return metres / METRES_PER_DEGREE


def to_unit_vectors(lons, lats):
    """Project lon/lat degrees onto the unit sphere as (n, 3) xyz."""
    lon_r = np.radians(np.asarray(lons, dtype=float))
    lat_r = np.radians(np.asarray(lats, dtype=float))
    cos_lat = np.cos(lat_r)
    return np.column_stack([
        cos_lat * np.cos(lon_r),
        cos_lat * np.sin(lon_r),
        np.sin(lat_r),
    ])


def chord_to_metres(chord):
    """Convert a unit-sphere chord length to great-circle metres."""
    chord = np.clip(np.asarray(chord, dtype=float), 0.0, 2.0)
    return EARTH_RADIUS_M * 2 * np.arcsin(chord / 2)


def unit_vector_to_lonlat(xyz):
    """Inverse of to_unit_vectors for a single (3,) vector."""
    x, y, z = xyz / np.linalg.norm(xyz)
    return float(np.degrees(np.arctan2(y, x))), float(np.degrees(np.arcsin(z)))
