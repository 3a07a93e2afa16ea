"""
Record validator: runs a configurable battery of checks per record.

Each record's flag vector depends only on the record, the shared
read-only gazetteer and the batch duplicate scan, so batches are split
across worker threads and merged back in record-id order.

Usage:
    validator = RecordValidator(gazetteer, tests=["zeros", "capitals"])
    table = validator.validate_batch(records)
"""

import os
from concurrent.futures import ThreadPoolExecutor, as_completed

import pandas as pd

from coordclean import config
from coordclean.checks import (
    CheckContext,
    find_duplicate_ids,
    get_check,
    id_sort_key,
)
from coordclean.errors import GazetteerLoadFailure, InvalidRecord
from coordclean.logging_config import get_pipeline_logger
from coordclean.records import FlagVector, RecordStatus

log = get_pipeline_logger(__name__)

# Smaller batches are validated sequentially.
_MIN_PARALLEL_BATCH = 200


def _resolve_tolerances(tests, tolerances):
    resolved = {}
    overrides = tolerances or {}
    for name in tests:
        value = overrides.get(name, config.DEFAULT_TOLERANCES.get(name, 0))
        if value is None or value < 0:
            raise ValueError(f"tolerance for '{name}' must be >= 0, got {value!r}")
        resolved[name] = value
    return resolved


class RecordValidator:
    """Applies independent plausibility checks to occurrence records.

    Parameters
    ----------
    gazetteer : Gazetteer
        Shared, read-only reference data.
    tests : sequence of str, optional
        Checks to run. Default: config.DEFAULT_TESTS minus checks whose
        gazetteer layer is not loaded.
    tolerances : dict, optional
        Per-check tolerance overrides. Default: config.DEFAULT_TOLERANCES.
    equal_mode : str, optional
        "identical" or "absolute". Default: config.EQUAL_TEST_MODE.
    centroid_detail : str, optional
        "country", "provinces" or "both". Default: config.CENTROID_DETAIL.
    duplicate_precision : int, optional
        Decimals for near-exact duplicate matching.
        Default: config.DUPLICATE_PRECISION (exact).

    Raises
    ------
    GazetteerLoadFailure
        When an explicitly requested check needs a layer that is missing.
    ValueError
        On an unknown check name or an invalid option.
    """

    def __init__(self, gazetteer, tests=None, tolerances=None,
                 equal_mode=None, centroid_detail=None,
                 duplicate_precision=None):
        self.gazetteer = gazetteer

        if tests is None:
            tests = [t for t in config.DEFAULT_TESTS
                     if get_check(t).layer is None or get_check(t).layer in gazetteer]
            skipped = [t for t in config.DEFAULT_TESTS if t not in tests]
            if skipped:
                log.warning("No gazetteer layer for default checks %s; skipping",
                            skipped)
        self.tests = self._check_tests(tests)
        self.tolerances = _resolve_tolerances(self.tests, tolerances)

        equal_mode = equal_mode or config.EQUAL_TEST_MODE
        if equal_mode not in ("identical", "absolute"):
            raise ValueError(f"equal_mode must be 'identical' or 'absolute', "
                             f"got {equal_mode!r}")
        centroid_detail = centroid_detail or config.CENTROID_DETAIL
        if centroid_detail not in ("country", "provinces", "both"):
            raise ValueError(f"centroid_detail must be 'country', 'provinces' "
                             f"or 'both', got {centroid_detail!r}")
        self.context = CheckContext(equal_mode=equal_mode,
                                    centroid_detail=centroid_detail)
        self.duplicate_precision = (duplicate_precision
                                    if duplicate_precision is not None
                                    else config.DUPLICATE_PRECISION)

    def _check_tests(self, tests):
        tests = list(dict.fromkeys(tests))
        if not tests:
            raise ValueError("at least one check must be enabled")
        for name in tests:
            spec = get_check(name)
            if spec.layer is not None and spec.layer not in self.gazetteer:
                raise GazetteerLoadFailure(
                    f"check '{name}' needs the '{spec.layer}' gazetteer layer, "
                    f"which is not loaded")
        return tuple(tests)

    def validate(self, record, enabled_tests=None, tolerances=None,
                 context=None):
        """Run the enabled checks against one record.

        Parameters
        ----------
        record : OccurrenceRecord
        enabled_tests : sequence of str, optional
            Default: the validator's configured checks.
        tolerances : dict, optional
            Per-check overrides on top of the validator's tolerances.
        context : CheckContext, optional
            Batch context; validate_batch() supplies the duplicate scan.

        Returns
        -------
        FlagVector
            True per check means flagged.

        Raises
        ------
        InvalidRecord
            On a missing/out-of-range coordinate, or a missing country code
            when the countries check is enabled.
        """
        tests = self.tests if enabled_tests is None else self._check_tests(enabled_tests)
        tol = _resolve_tolerances(tests, {**self.tolerances, **(tolerances or {})})
        ctx = context or self.context

        record.validated()
        if "countries" in tests:
            record.require_country_code()

        flags = {}
        for name in tests:
            spec = get_check(name)
            flags[name] = bool(spec.fn(
                record, self.gazetteer, tol.get(name, 0), ctx))
        return FlagVector(record_id=record.record_id, flags=flags)

    def _validate_or_report(self, record, context):
        try:
            return self.validate(record, context=context)
        except InvalidRecord as exc:
            log.debug("Invalid record %r: %s", exc.record_id, exc.reason)
            return FlagVector(
                record_id=record.record_id,
                flags={name: None for name in self.tests},
                status=RecordStatus.INVALID.value,
                reason=exc.reason,
            )

    def _batch_context(self, records):
        if "duplicates" not in self.tests:
            return self.context
        valid = []
        for rec in records:
            try:
                valid.append(rec.validated())
            except InvalidRecord:
                continue
        dupes = find_duplicate_ids(valid, self.duplicate_precision)
        return CheckContext(
            equal_mode=self.context.equal_mode,
            centroid_detail=self.context.centroid_detail,
            duplicate_ids=dupes,
        )

    def validate_batch(self, records, max_workers=None):
        """Validate a batch of records into an id-ordered flag table.

        Invalid records are reported with status "invalid" and never abort
        the batch.

        Parameters
        ----------
        records : sequence of OccurrenceRecord
        max_workers : int, optional
            Worker threads. Default: config.MAX_WORKERS, else CPU count - 1.

        Returns
        -------
        pd.DataFrame
            Flag table indexed by record_id (see flag_table()).
        """
        records = list(records)
        context = self._batch_context(records)

        if max_workers is None:
            max_workers = config.MAX_WORKERS
        if max_workers is None:
            max_workers = max(1, (os.cpu_count() or 2) - 1)

        vectors = []
        if max_workers == 1 or len(records) < _MIN_PARALLEL_BATCH:
            for rec in records:
                vectors.append(self._validate_or_report(rec, context))
        else:
            chunk = -(-len(records) // (max_workers * 4))
            chunks = [records[i:i + chunk] for i in range(0, len(records), chunk)]
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = {
                    executor.submit(
                        lambda part: [self._validate_or_report(r, context)
                                      for r in part], part): i
                    for i, part in enumerate(chunks)
                }
                for future in as_completed(futures):
                    vectors.extend(future.result())

        log.debug("Validated %d records with %d workers", len(records), max_workers)
        return flag_table(vectors, self.tests)


def flag_table(vectors, tests):
    """Merge FlagVectors into a DataFrame ordered by record id.

    Columns: one nullable boolean per check (True = flagged), ``passed``
    (AND over checks of not flagged), ``status`` and ``reason``.
    """
    vectors = sorted(vectors, key=lambda v: id_sort_key(v.record_id))
    rows = [v.to_dict() for v in vectors]
    columns = ["record_id", *tests, "passed", "status", "reason"]
    df = pd.DataFrame(rows, columns=columns)
    for name in tests:
        df[name] = df[name].astype("boolean")
    df["passed"] = df["passed"].astype(bool)
    df = df.set_index("record_id")
    if df.index.has_duplicates:
        log.warning("Flag table has %d duplicated record ids",
                    int(df.index.duplicated().sum()))
    return df


def summarize_flags(table, tests=None):
    """Per-check flag counts plus overall pass/invalid totals."""
    if tests is None:
        tests = [c for c in table.columns
                 if c not in ("passed", "status", "reason")]
    summary = {name: int(table[name].fillna(False).sum()) for name in tests}
    summary["n_records"] = int(len(table))
    summary["n_passed"] = int(table["passed"].sum())
    summary["n_invalid"] = int((table["status"] == RecordStatus.INVALID.value).sum())
    summary["n_flagged"] = summary["n_records"] - summary["n_passed"] - summary["n_invalid"]
    return summary
