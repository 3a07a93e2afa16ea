"""
One-call cleaning of an occurrence table.

Runs the record validator and the per-species outlier detector as
separate pipeline steps and merges both into one flag table, in the
shape of CoordinateCleaner's clean_coordinates() output.
"""

import pandas as pd

from coordclean import config
from coordclean.errors import InvalidRecord
from coordclean.logging_config import get_pipeline_logger
from coordclean.outliers import OUTLIER_FLAG, detect_species_outliers
from coordclean.pipeline_types import StepStatus
from coordclean.records import FlagVector, RecordStatus, normalize_columns, records_from_frame
from coordclean.schemas import OccurrenceSchema, validate_schema
from coordclean.step_runner import run_step, skipped_step
from coordclean.validator import RecordValidator, flag_table, summarize_flags

log = get_pipeline_logger(__name__)

ALL_TESTS = config.RECORD_TESTS + (OUTLIER_FLAG,)


def _load_records(df, species_column):
    df = normalize_columns(df)
    if species_column and species_column != config.SPECIES_COLUMN:
        df = df.drop(columns=[config.SPECIES_COLUMN], errors="ignore").rename(
            columns={species_column: config.SPECIES_COLUMN})
    if df["record_id"].duplicated().any():
        raise ValueError(
            f"{int(df['record_id'].duplicated().sum())} duplicated record ids")
    return records_from_frame(df)


def _bare_table(records):
    """Flag table with validity status only, for runs without record checks."""
    vectors = []
    for rec in records:
        try:
            rec.validated()
            vectors.append(FlagVector(record_id=rec.record_id))
        except InvalidRecord as exc:
            vectors.append(FlagVector(record_id=rec.record_id,
                                      status=RecordStatus.INVALID.value,
                                      reason=exc.reason))
    return flag_table(vectors, [])


def _merge_outliers(table, outliers):
    by_id = outliers.set_index("record_id")
    table = table.copy()
    table[OUTLIER_FLAG] = by_id[OUTLIER_FLAG].reindex(table.index).astype("boolean")
    table["outlier_status"] = by_id["status"].reindex(table.index)
    return table


def _recompute_passed(table, tests):
    flagged = pd.Series(False, index=table.index)
    for name in tests:
        if name in table.columns:
            flagged |= table[name].fillna(False).astype(bool)
    table["passed"] = (table["status"] == RecordStatus.OK.value) & ~flagged
    return table


def clean_coordinates(df, gazetteer, tests=None, tolerances=None,
                      outlier_method=None, species_column=None,
                      max_workers=None, outlier_options=None):
    """Flag problematic records of an occurrence table.

    Parameters
    ----------
    df : pd.DataFrame
        Occurrence table with internal or Darwin Core column names.
    gazetteer : Gazetteer
    tests : sequence of str, optional
        Record checks plus optionally "outliers". Default:
        config.DEFAULT_TESTS (layers permitting) plus "outliers".
    tolerances : dict, optional
        Per-check tolerance overrides.
    outlier_method : str, optional
        "distance" or "quantile". Default: config.OUTLIER_METHOD.
    species_column : str, optional
        Column grouping records for outlier detection.
        Default: config.SPECIES_COLUMN.
    max_workers : int, optional
        Validator worker threads.
    outlier_options : dict, optional
        Further keyword arguments for detect_outliers().

    Returns
    -------
    tuple[pd.DataFrame | None, list[StepResult]]
        Flag table indexed by record_id (None when loading or validation
        failed) and the StepResult of every stage.
    """
    if tests is None:
        record_tests, run_outliers = None, True
    else:
        tests = list(dict.fromkeys(tests))
        unknown = [t for t in tests if t not in ALL_TESTS]
        if unknown:
            raise ValueError(f"unknown tests {unknown}; available: {list(ALL_TESTS)}")
        run_outliers = OUTLIER_FLAG in tests
        record_tests = [t for t in tests if t != OUTLIER_FLAG]

    steps = []
    step, records = run_step(
        "load_records", _load_records, df, species_column,
        input_summary={"n_rows": len(df)},
        output_summary_fn=lambda recs: {"n_records": len(recs)},
    )
    step.warnings = validate_schema(normalize_columns(df), OccurrenceSchema,
                                    "load_records")
    steps.append(step)
    if records is None:
        return None, steps

    if record_tests == []:
        table = _bare_table(records)
        steps.append(skipped_step("validate_records", "no record checks requested"))
    else:
        validator = RecordValidator(gazetteer, tests=record_tests,
                                    tolerances=tolerances)
        step, table = run_step(
            "validate_records", validator.validate_batch, records,
            max_workers=max_workers,
            input_summary={"n_records": len(records),
                           "tests": list(validator.tests)},
            output_summary_fn=summarize_flags,
        )
        steps.append(step)
        if table is None:
            return None, steps
        record_tests = list(validator.tests)

    enabled = list(record_tests)
    if run_outliers:
        options = dict(outlier_options or {})
        options["method"] = outlier_method or config.OUTLIER_METHOD
        step, outliers = run_step(
            "detect_outliers", detect_species_outliers, records,
            input_summary={"n_records": len(records),
                           "method": options["method"]},
            output_summary_fn=lambda out: {
                "n_flagged": int(out[OUTLIER_FLAG].fillna(False).sum()),
                "n_insufficient": int(
                    (out["status"] == RecordStatus.INSUFFICIENT_DATA.value).sum()),
            },
            **options,
        )
        steps.append(step)
        if outliers is not None:
            table = _merge_outliers(table, outliers)
            enabled.append(OUTLIER_FLAG)
    else:
        steps.append(skipped_step("detect_outliers", "not requested"))

    table = _recompute_passed(table, enabled)
    summary = summarize_flags(table, enabled)
    failed = [s.step_name for s in steps if s.status == StepStatus.ERROR.value]
    log.info("Cleaned %d records: %d passed, %d flagged, %d invalid",
             summary["n_records"], summary["n_passed"], summary["n_flagged"],
             summary["n_invalid"], extra={"flag_summary": summary})
    if failed:
        log.warning("Steps failed during cleaning: %s", failed)
    return table, steps
