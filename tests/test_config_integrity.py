"""
Tests for configuration integrity.

Verifies that:
1. Every test name has a tolerance or needs none
2. Tolerances and statistical thresholds are in sensible ranges
3. Gazetteer layer definitions cover every layer a test reads
4. Darwin Core mapping targets are record fields
"""

import dataclasses

from coordclean import config
from coordclean.records import OccurrenceRecord


class TestTestDefinitions:

    def test_default_tests_subset_of_record_tests(self):
        assert set(config.DEFAULT_TESTS) <= set(config.RECORD_TESTS)

    def test_no_duplicate_test_names(self):
        assert len(config.RECORD_TESTS) == len(set(config.RECORD_TESTS))

    def test_tolerances_for_known_tests_only(self):
        assert set(config.DEFAULT_TOLERANCES) <= set(config.RECORD_TESTS)

    def test_tolerances_non_negative(self):
        for name, value in config.DEFAULT_TOLERANCES.items():
            assert value >= 0, f"{name} tolerance is negative"

    def test_zero_radius_in_degrees(self):
        assert 0 < config.ZERO_TOLERANCE_DEG < 5

    def test_modes_valid(self):
        assert config.EQUAL_TEST_MODE in ("identical", "absolute")
        assert config.CENTROID_DETAIL in ("country", "provinces", "both")


class TestGazetteerDefinitions:

    def test_test_layers_defined(self):
        for test, layer in config.TEST_LAYERS.items():
            assert test in config.RECORD_TESTS
            assert layer == "gbif" or layer in config.GAZETTEER_LAYERS

    def test_layer_kinds(self):
        for name, spec in config.GAZETTEER_LAYERS.items():
            assert spec["kind"] in ("point", "polygon"), name
            assert isinstance(spec["code_columns"], tuple), name

    def test_gbif_headquarters_in_copenhagen(self):
        hq = config.GBIF_HEADQUARTERS
        assert 12 < hq["lon"] < 13
        assert 55 < hq["lat"] < 56


class TestStatisticalThresholds:

    def test_outlier_parameters(self):
        assert config.OUTLIER_METHOD in ("distance", "quantile")
        assert config.OUTLIER_MIN_RECORDS >= 2
        assert config.OUTLIER_K_NEIGHBOURS >= 1
        assert 0 < config.OUTLIER_QUANTILE < 1

    def test_ddmm_parameters(self):
        assert 0 < config.DDMM_CUTOFF < 1
        assert 0 < config.DDMM_ALPHA < 0.5
        assert config.DDMM_MIN_RECORDS > 0

    def test_raster_window_ordered(self):
        assert config.RASTER_RESOLUTION_DEG < config.RASTER_REG_DIST_MIN_DEG
        assert config.RASTER_REG_DIST_MIN_DEG < config.RASTER_REG_DIST_MAX_DEG
        max_lag_deg = config.RASTER_MAX_LAG * config.RASTER_RESOLUTION_DEG
        assert config.RASTER_MIN_PEAKS * config.RASTER_REG_DIST_MAX_DEG <= max_lag_deg
        assert config.RASTER_T1 > 0


class TestTabularInterface:

    def test_dwc_targets_are_record_fields(self):
        fields = {f.name for f in dataclasses.fields(OccurrenceRecord)}
        assert set(config.DWC_COLUMNS.values()) <= fields

    def test_dataset_column_is_record_field(self):
        assert config.DATASET_COLUMN in config.DWC_COLUMNS.values()
        assert config.SPECIES_COLUMN in config.DWC_COLUMNS.values()

    def test_output_files_distinct(self):
        names = list(config.OUTPUT_FILES.values())
        assert len(names) == len(set(names))
