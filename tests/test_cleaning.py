"""
Tests for coordclean/cleaning.py: the one-call clean_coordinates() flow.
"""

import pandas as pd
import pytest

from coordclean.cleaning import ALL_TESTS, clean_coordinates
from coordclean.errors import GazetteerLoadFailure
from coordclean.gazetteer import gazetteer_from_frames
from coordclean.pipeline_types import StepStatus
from coordclean.records import RecordStatus


def _steps_by_name(steps):
    return {s.step_name: s for s in steps}


class TestCleanCoordinates:

    def test_full_run(self, gazetteer, occurrence_df):
        table, steps = clean_coordinates(occurrence_df, gazetteer)
        assert list(table.index) == list(range(1, 13))
        assert "outliers" in table.columns
        assert "urban" not in table.columns
        assert [s.step_name for s in steps] == [
            "load_records", "validate_records", "detect_outliers"]
        assert all(s.status == StepStatus.SUCCESS.value for s in steps)

    def test_known_problems_fail(self, gazetteer, occurrence_df):
        table, _ = clean_coordinates(occurrence_df, gazetteer)
        for rid in range(2, 13):
            assert not table.loc[rid, "passed"], rid
        assert table.loc[3, "zeros"]
        assert table.loc[10, "duplicates"]

    def test_invalid_records_reported(self, gazetteer, occurrence_df):
        table, _ = clean_coordinates(occurrence_df, gazetteer)
        assert table.loc[11, "status"] == RecordStatus.INVALID.value
        assert table.loc[12, "status"] == RecordStatus.INVALID.value
        assert pd.isna(table.loc[11, "outliers"])

    def test_outliers_only(self, gazetteer, occurrence_df):
        table, steps = clean_coordinates(occurrence_df, gazetteer,
                                         tests=["outliers"])
        by_name = _steps_by_name(steps)
        assert by_name["validate_records"].status == StepStatus.SKIPPED.value
        assert "zeros" not in table.columns
        assert "outliers" in table.columns
        assert table.loc[12, "status"] == RecordStatus.INVALID.value

    def test_record_tests_only(self, gazetteer, occurrence_df):
        table, steps = clean_coordinates(occurrence_df, gazetteer,
                                         tests=["zeros", "equal"])
        assert _steps_by_name(steps)["detect_outliers"].status == \
            StepStatus.SKIPPED.value
        assert "outliers" not in table.columns
        assert table.loc[1, "passed"]
        # Sea and country problems are not tested here.
        assert table.loc[4, "passed"]
        assert not table.loc[2, "passed"]

    def test_insufficient_species_not_flagged(self, gazetteer, occurrence_df):
        df = occurrence_df.copy()
        df.loc[df["record_id"] == 1, "species"] = "Rare species"
        table, _ = clean_coordinates(df, gazetteer, tests=["outliers"])
        assert table.loc[1, "outlier_status"] == \
            RecordStatus.INSUFFICIENT_DATA.value
        assert pd.isna(table.loc[1, "outliers"])
        assert table.loc[1, "passed"]

    def test_species_column_override(self, gazetteer, occurrence_df):
        df = occurrence_df.rename(columns={"species": "taxon"})
        df["species"] = "ignored"
        table, steps = clean_coordinates(df, gazetteer, tests=["outliers"],
                                         species_column="taxon")
        assert table is not None
        assert _steps_by_name(steps)["load_records"].ok

    def test_quantile_method(self, gazetteer, occurrence_df):
        table, steps = clean_coordinates(occurrence_df, gazetteer,
                                         tests=["outliers"],
                                         outlier_method="quantile")
        step = _steps_by_name(steps)["detect_outliers"]
        assert step.input_summary["method"] == "quantile"
        assert table["outliers"].dtype == "boolean"

    def test_darwin_core_columns(self, gazetteer, occurrence_df):
        df = occurrence_df.rename(columns={
            "record_id": "gbifID", "longitude": "decimalLongitude",
            "latitude": "decimalLatitude", "country_code": "countryCode"})
        table, _ = clean_coordinates(df, gazetteer, tests=["zeros"])
        assert table.loc[3, "zeros"]


class TestCleanCoordinatesErrors:

    def test_duplicate_ids_fail_load(self, gazetteer, occurrence_df):
        df = pd.concat([occurrence_df, occurrence_df.head(1)], ignore_index=True)
        table, steps = clean_coordinates(df, gazetteer)
        assert table is None
        assert len(steps) == 1
        assert steps[0].status == StepStatus.ERROR.value
        assert "duplicated record ids" in steps[0].error
        assert steps[0].warnings

    def test_unknown_test(self, gazetteer, occurrence_df):
        with pytest.raises(ValueError, match="unknown tests"):
            clean_coordinates(occurrence_df, gazetteer, tests=["volcanoes"])

    def test_missing_layer_for_requested_test(self, countries_gdf, occurrence_df):
        gaz = gazetteer_from_frames(countries=countries_gdf)
        with pytest.raises(GazetteerLoadFailure, match="cities"):
            clean_coordinates(occurrence_df, gaz, tests=["urban"])

    def test_all_tests_vocabulary(self):
        assert ALL_TESTS[-1] == "outliers"
        assert len(ALL_TESTS) == len(set(ALL_TESTS))
