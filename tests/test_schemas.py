"""
Tests for coordclean/schemas.py validation gates.
"""

import pandas as pd
import pytest

from coordclean.records import records_from_frame
from coordclean.schemas import (
    CleanOccurrenceSchema,
    FlagTableSchema,
    OccurrenceSchema,
    VerdictSchema,
    validate_schema,
)
from coordclean.validator import RecordValidator


class TestOccurrenceSchemas:

    def test_bad_coordinates_pass_lenient_schema(self, occurrence_df):
        assert validate_schema(occurrence_df, OccurrenceSchema, "load") == []

    def test_duplicate_ids_reported(self, occurrence_df):
        df = pd.concat([occurrence_df, occurrence_df.head(1)], ignore_index=True)
        warnings = validate_schema(df, OccurrenceSchema, "load")
        assert warnings
        assert all(w.startswith("[load]") for w in warnings)

    def test_clean_schema_rejects_out_of_range(self, occurrence_df):
        warnings = validate_schema(occurrence_df, CleanOccurrenceSchema, "load")
        assert any("latitude" in w for w in warnings)

    def test_strict_raises(self, occurrence_df):
        with pytest.raises(ValueError, match="Schema validation failed"):
            validate_schema(occurrence_df, CleanOccurrenceSchema, "load",
                            strict=True)

    def test_none_frame(self):
        assert validate_schema(None, OccurrenceSchema, "load") == [
            "[load] DataFrame is None"]
        with pytest.raises(ValueError):
            validate_schema(None, OccurrenceSchema, "load", strict=True)


class TestOutputSchemas:

    def test_flag_table_conforms(self, gazetteer, occurrence_df):
        table = RecordValidator(gazetteer).validate_batch(
            records_from_frame(occurrence_df))
        assert validate_schema(table, FlagTableSchema, "flags") == []

    def test_unknown_status_rejected(self):
        table = pd.DataFrame({"passed": [True], "status": ["maybe"]})
        assert validate_schema(table, FlagTableSchema, "flags")

    def test_verdict_schema(self):
        verdicts = pd.DataFrame({
            "partition": ["a", "b"], "test": ["ddmm", "round"],
            "status": ["ok", "insufficient_data"], "flagged": [True, None],
        })
        assert validate_schema(verdicts, VerdictSchema, "verdicts") == []
        verdicts.loc[0, "test"] = "benford"
        assert validate_schema(verdicts, VerdictSchema, "verdicts")
