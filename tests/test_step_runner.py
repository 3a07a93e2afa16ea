"""
Tests for coordclean/step_runner.py and coordclean/pipeline_types.py.

Every cleaning stage goes through run_step(). If it lets an exception
escape or records the wrong status, a failed run looks clean in
run_result.json.
"""

import pandas as pd
import pytest

from coordclean.errors import GazetteerLoadFailure, InsufficientData
from coordclean.pipeline_types import CleaningRunResult, StepResult, StepStatus
from coordclean.step_runner import run_step, skipped_step


class TestRunStepSuccess:

    def test_value_and_status(self):
        step, value = run_step("count_species", lambda: {"Aus bus": 3})
        assert isinstance(step, StepResult)
        assert step.status == StepStatus.SUCCESS.value
        assert step.step_name == "count_species"
        assert step.error is None
        assert step.completed_at is not None
        assert value == {"Aus bus": 3}

    def test_elapsed_time_recorded(self):
        step, _ = run_step("noop", lambda: None)
        assert step.timing_seconds is not None
        assert step.timing_seconds >= 0

    def test_positional_and_keyword_arguments(self):
        def scale(lon, lat, factor=1.0):
            return lon * factor, lat * factor

        _, value = run_step("scale", scale, 10.0, 20.0, factor=0.5)
        assert value == (5.0, 10.0)

    def test_summaries(self):
        step, _ = run_step(
            "load", lambda: pd.DataFrame({"record_id": [1, 2]}),
            input_summary={"path": "occ.csv"},
            output_summary_fn=lambda df: {"n_rows": len(df)},
        )
        assert step.input_summary == {"path": "occ.csv"}
        assert step.output_summary == {"n_rows": 2}

    def test_no_summary_for_none(self):
        seen = []
        step, value = run_step(
            "returns_none", lambda: None,
            output_summary_fn=lambda v: seen.append(v) or {},
        )
        assert value is None
        assert seen == []
        assert step.ok


class TestRunStepErrors:
    """Errors are captured into the StepResult, never raised."""

    @pytest.mark.parametrize("exc", [
        GazetteerLoadFailure("bad polygon"),
        InsufficientData("too few", n=3),
        ValueError("bad value"),
        pd.errors.EmptyDataError("empty"),
    ])
    def test_expected_errors_captured(self, exc):
        def failing():
            raise exc

        result, data = run_step("failing", failing, input_summary={"n": 1})
        assert result.status == StepStatus.ERROR.value
        assert not result.ok
        assert type(exc).__name__ in result.error
        assert result.input_summary == {"n": 1}
        assert data is None

    def test_unexpected_error_captured(self):
        def failing():
            raise RuntimeError("surprise")

        result, data = run_step("failing", failing)
        assert result.status == "error"
        assert "RuntimeError" in result.error
        assert data is None


class TestStepTypes:

    def test_skipped_step_is_ok(self):
        result = skipped_step("detect_dataset_bias", "--skip-bias")
        assert result.status == StepStatus.SKIPPED.value
        assert result.ok
        assert result.output_summary == {"reason": "--skip-bias"}

    def test_step_result_round_trip(self):
        original, _ = run_step("s", lambda: [1], output_summary_fn=lambda x: {"n": 1})
        restored = StepResult.from_dict(original.to_dict())
        assert restored == original

    def test_run_result_tracks_failures(self):
        ok, _ = run_step("ok", lambda: 1)
        bad, _ = run_step("bad", lambda: 1 / 0)
        run = CleaningRunResult(step_results=[ok, bad], n_records=10)
        assert not run.all_ok
        assert [s.step_name for s in run.failed_steps] == ["bad"]

        restored = CleaningRunResult.from_dict(run.to_dict())
        assert restored.n_records == 10
        assert [s.step_name for s in restored.step_results] == ["ok", "bad"]
        assert restored.to_dict()["all_ok"] is False
