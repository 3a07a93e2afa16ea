"""
Shared fixtures for coordinate cleaning tests.

Provides a synthetic gazetteer built from shapely boxes and points, plus
occurrence tables with known problems, so each test module can verify
cleaning logic against inputs whose expected flags are known exactly.
"""

import tempfile

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point, box

from coordclean.gazetteer import gazetteer_from_frames
from coordclean.logging_config import reset_logging
from coordclean.records import OccurrenceRecord


# ---------------------------------------------------------------------------
# Synthetic reference geometry
# ---------------------------------------------------------------------------
# Two adjacent square "countries" well away from (0, 0) and the GBIF HQ:
#   AA (west): lon 10-20, lat 40-50
#   BB (east): lon 20-30, lat 40-50
# Everything outside the two squares is sea.
AA_BOX = (10.0, 40.0, 20.0, 50.0)
BB_BOX = (20.0, 40.0, 30.0, 50.0)

AA_CENTROID = (15.0, 45.0)
AA_PROVINCE_CENTROID = (12.0, 42.0)
BB_CENTROID = (25.0, 45.0)
AA_CAPITAL = (17.0, 47.0)
BB_CAPITAL = (27.0, 47.0)
INSTITUTION = (13.0, 48.0)
CITY_BOX = (25.5, 41.0, 26.5, 42.0)

# A point inside AA that is none of the above.
CLEAN_AA = (11.5, 46.5)


@pytest.fixture(autouse=True)
def _isolated_logging():
    """Drop handlers between tests so per-run log files do not leak."""
    yield
    reset_logging()


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after test."""
    with tempfile.TemporaryDirectory(prefix="coordclean_test_") as d:
        yield d


@pytest.fixture
def countries_gdf():
    """Two rectangular countries with ISO alpha-2 and alpha-3 codes."""
    return gpd.GeoDataFrame(
        {"iso_a2": ["AA", "BB"], "iso_a3": ["AAA", "BBB"],
         "geometry": [box(*AA_BOX), box(*BB_BOX)]},
        crs="EPSG:4326",
    )


@pytest.fixture
def centroids_gdf():
    return gpd.GeoDataFrame(
        {"iso_a2": ["AA", "AA", "BB"],
         "type": ["country", "provinces", "country"],
         "geometry": [Point(*AA_CENTROID), Point(*AA_PROVINCE_CENTROID),
                      Point(*BB_CENTROID)]},
        crs="EPSG:4326",
    )


@pytest.fixture
def capitals_gdf():
    return gpd.GeoDataFrame(
        {"name": ["Acity", "Bcity"],
         "geometry": [Point(*AA_CAPITAL), Point(*BB_CAPITAL)]},
        crs="EPSG:4326",
    )


@pytest.fixture
def institutions_gdf():
    return gpd.GeoDataFrame(
        {"name": ["Museum of AA"], "geometry": [Point(*INSTITUTION)]},
        crs="EPSG:4326",
    )


@pytest.fixture
def cities_gdf():
    return gpd.GeoDataFrame(
        {"name": ["Bcity sprawl"], "geometry": [box(*CITY_BOX)]},
        crs="EPSG:4326",
    )


@pytest.fixture
def gazetteer(countries_gdf, centroids_gdf, capitals_gdf, institutions_gdf,
              cities_gdf):
    """Full synthetic gazetteer: land derived from countries, plus GBIF HQ."""
    return gazetteer_from_frames(
        countries=countries_gdf,
        centroids=centroids_gdf,
        capitals=capitals_gdf,
        institutions=institutions_gdf,
        cities=cities_gdf,
    )


def make_record(record_id, lon, lat, species="Aus bus", country_code="AA",
                dataset_id="ds1"):
    return OccurrenceRecord(record_id=record_id, species=species,
                            longitude=lon, latitude=lat,
                            country_code=country_code, dataset_id=dataset_id)


@pytest.fixture
def record_factory():
    """Callable building OccurrenceRecords with sensible defaults."""
    return make_record


@pytest.fixture
def occurrence_df():
    """Occurrence table with one record per known problem.

    id  problem
    1   none (clean AA record)
    2   equal coordinates (25, 25), also at sea
    3   zero coordinates
    4   at sea
    5   declared BB, located in AA
    6   AA country centroid
    7   AA capital
    8   institution
    9   GBIF headquarters (also at sea)
    10  duplicate of 1
    11  latitude out of range (invalid)
    12  missing longitude (invalid)
    """
    rows = [
        (1, *CLEAN_AA, "AA"),
        (2, 25.0, 25.0, "BB"),
        (3, 0.0, 0.0, "AA"),
        (4, 5.0, 45.0, "AA"),
        (5, 11.0, 41.0, "BB"),
        (6, *AA_CENTROID, "AA"),
        (7, *AA_CAPITAL, "AA"),
        (8, *INSTITUTION, "AA"),
        (9, 12.58, 55.67, "DK"),
        (10, *CLEAN_AA, "AA"),
        (11, 15.0, 95.0, "AA"),
        (12, np.nan, 45.0, "AA"),
    ]
    return pd.DataFrame(
        [{"record_id": rid, "species": "Aus bus", "longitude": lon,
          "latitude": lat, "country_code": cc, "dataset_id": "ds1"}
         for rid, lon, lat, cc in rows]
    )


@pytest.fixture
def rng():
    return np.random.default_rng(42)
