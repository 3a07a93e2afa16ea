"""
Pure computational functions used across the coordinate cleaning core.

config.py retains runtime parameters and thresholds; this package holds
the distance and statistics math.
"""

from coordclean.formulas.spatial import (
    EARTH_RADIUS_KM,
    EARTH_RADIUS_M,
    METRES_PER_DEGREE,
    chord_to_metres,
    haversine_m,
    metres_to_degrees,
    to_unit_vectors,
    unit_vector_to_lonlat,
)
from coordclean.formulas.decimals import (
    acf_peaks,
    autocorrelation,
    binned_counts,
    decimal_fraction,
    decimal_histogram,
)

__all__ = [
    # spatial
    "EARTH_RADIUS_KM",
    "EARTH_RADIUS_M",
    "METRES_PER_DEGREE",
    "chord_to_metres",
    "haversine_m",
    "metres_to_degrees",
    "to_unit_vectors",
    "unit_vector_to_lonlat",
    # decimals
    "acf_peaks",
    "autocorrelation",
    "binned_counts",
    "decimal_fraction",
    "decimal_histogram",
]
