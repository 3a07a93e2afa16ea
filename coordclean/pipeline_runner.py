#!/usr/bin/env python3
"""
Command-line runner for a complete cleaning run.

Loads an occurrence table and a gazetteer directory, flags records,
tests every dataset partition for conversion and rasterization bias and
writes the results with full run provenance:

    {output_dir}/flags.csv            one row per record
    {output_dir}/bias_verdicts.csv    one row per (partition, test)
    {output_dir}/run_result.json      CleaningRunResult
    {output_dir}/cleaning.jsonl       structured run log

Usage:
    coordclean --occurrences gbif_download.csv --gazetteer-dir refs/ \
        --output-dir out/

    # Selected tests only, no dataset-level bias tests
    coordclean --occurrences occ.tsv --gazetteer-dir refs/ --output-dir out/ \
        --tests zeros,capitals,outliers --skip-bias
"""

import argparse
import json
import os
import sys
import time

import pandas as pd

from coordclean import config
from coordclean.bias import BIAS_TESTS, detect_dataset_bias
from coordclean.cleaning import ALL_TESTS, clean_coordinates
from coordclean.gazetteer import gazetteer_from_frames, load_gazetteer
from coordclean.logging_config import get_pipeline_logger, set_run_id, setup_logging
from coordclean.outliers import OUTLIER_METHODS
from coordclean.pipeline_types import CleaningRunResult
from coordclean.records import normalize_columns
from coordclean.schemas import FlagTableSchema, VerdictSchema, validate_schema
from coordclean.step_runner import run_step, skipped_step
from coordclean.validator import summarize_flags

log = get_pipeline_logger(__name__)


def read_occurrences(path):
    """Read a comma- or tab-separated occurrence table (GBIF downloads are TSV)."""
    with open(path, encoding="utf-8") as f:
        header = f.readline()
    sep = "\t" if "\t" in header else ","
    return pd.read_csv(path, sep=sep, low_memory=False)


def write_flags(table, output_dir):
    path = os.path.join(output_dir, config.OUTPUT_FILES["flags"])
    table.reset_index().to_csv(path, index=False)
    log.info("Flag table saved: %s", path)
    return path


def write_verdicts(verdicts, output_dir):
    path = os.path.join(output_dir, config.OUTPUT_FILES["verdicts"])
    out = verdicts.copy()
    out["diagnostics"] = out["diagnostics"].apply(
        lambda d: json.dumps(d, default=str))
    out.to_csv(path, index=False)
    log.info("Bias verdicts saved: %s", path)
    return path


def save_run_result(run_result, output_dir):
    """Save CleaningRunResult as JSON for provenance."""
    path = os.path.join(output_dir, config.OUTPUT_FILES["run_result"])
    with open(path, "w") as f:
        json.dump(run_result.to_dict(), f, indent=2, default=str)
    log.info("Run result saved: %s", path)
    return path


def _parse_tests(value):
    if value is None:
        return None
    tests = [t.strip() for t in value.split(",") if t.strip()]
    unknown = [t for t in tests if t not in ALL_TESTS]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"unknown tests {unknown}; choose from {', '.join(ALL_TESTS)}")
    return tests


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Flag problematic coordinates in species occurrence records"
    )
    parser.add_argument(
        "--occurrences",
        required=True,
        help="Occurrence table (CSV or GBIF tab-separated download)",
    )
    parser.add_argument(
        "--gazetteer-dir",
        default=None,
        help="Directory with countries/centroids/capitals/... layer files",
    )
    parser.add_argument(
        "--output-dir",
        required=True,
        help="Output directory",
    )
    parser.add_argument(
        "--tests",
        type=_parse_tests,
        default=None,
        help="Comma-separated tests; default: all with a loaded layer, "
             "plus outliers",
    )
    parser.add_argument(
        "--outlier-method",
        choices=OUTLIER_METHODS,
        default=config.OUTLIER_METHOD,
        help="Spatial outlier method",
    )
    parser.add_argument(
        "--species-column",
        default=None,
        help=f"Column grouping records by species (default: {config.SPECIES_COLUMN})",
    )
    parser.add_argument(
        "--dataset-column",
        default=config.DATASET_COLUMN,
        help="Column partitioning records into datasets for the bias tests",
    )
    parser.add_argument(
        "--skip-bias",
        action="store_true",
        help="Do not run the dataset-level bias tests",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=config.MAX_WORKERS,
        help="Validator worker threads (default: CPU count - 1)",
    )
    return parser.parse_args(argv)


def run_cleaning(args):
    """Run every stage for parsed arguments.

    Returns
    -------
    CleaningRunResult
    """
    run_result = CleaningRunResult(run_dir=args.output_dir,
                                   source=args.occurrences)
    start_time = time.time()

    step, df = run_step(
        "load_occurrences", read_occurrences, args.occurrences,
        input_summary={"path": args.occurrences},
        output_summary_fn=lambda d: {"n_rows": len(d), "n_columns": d.shape[1]},
    )
    run_result.step_results.append(step)
    if df is None:
        log.error("Run aborted at load_occurrences: %s", step.error)
        run_result.total_time_seconds = time.time() - start_time
        return run_result
    run_result.n_records = len(df)

    if args.gazetteer_dir:
        step, gazetteer = run_step(
            "load_gazetteer", load_gazetteer, args.gazetteer_dir,
            input_summary={"directory": args.gazetteer_dir},
            output_summary_fn=lambda g: g.summary(),
        )
    else:
        step, gazetteer = run_step(
            "load_gazetteer", gazetteer_from_frames,
            output_summary_fn=lambda g: g.summary(),
        )
    run_result.step_results.append(step)
    if gazetteer is None:
        log.error("Run aborted at load_gazetteer: %s", step.error)
        run_result.total_time_seconds = time.time() - start_time
        return run_result

    step, cleaned = run_step(
        "clean_coordinates", clean_coordinates, df, gazetteer,
        tests=args.tests,
        outlier_method=args.outlier_method,
        species_column=args.species_column,
        max_workers=args.workers,
    )
    if cleaned is None:
        run_result.step_results.append(step)
        run_result.total_time_seconds = time.time() - start_time
        return run_result
    table, clean_steps = cleaned
    run_result.step_results.extend(clean_steps)

    if table is not None:
        tests = [c for c in table.columns if c in ALL_TESTS]
        run_result.tests = tests
        run_result.flag_summary = summarize_flags(table, tests)
        for msg in validate_schema(table, FlagTableSchema, "flags"):
            log.warning(msg)
        run_result.output_files.append(write_flags(table, args.output_dir))

    normalized = normalize_columns(df)
    if args.skip_bias:
        run_result.step_results.append(skipped_step("detect_dataset_bias",
                                                    "--skip-bias"))
    elif args.dataset_column not in normalized.columns:
        run_result.step_results.append(skipped_step(
            "detect_dataset_bias", f"no '{args.dataset_column}' column"))
    else:
        step, verdicts = run_step(
            "detect_dataset_bias", detect_dataset_bias, normalized,
            dataset_column=args.dataset_column, tests=BIAS_TESTS,
            input_summary={"dataset_column": args.dataset_column},
            output_summary_fn=lambda v: {
                "n_verdicts": len(v),
                "n_flagged": int(v["flagged"].fillna(False).astype(bool).sum()),
                "status_counts": v["status"].value_counts().to_dict(),
            },
        )
        run_result.step_results.append(step)
        if verdicts is not None:
            for msg in validate_schema(verdicts, VerdictSchema, "bias_verdicts"):
                log.warning(msg)
            run_result.output_files.append(
                write_verdicts(verdicts, args.output_dir))

    run_result.total_time_seconds = time.time() - start_time
    return run_result


def main(argv=None):
    args = parse_args(argv)

    run_id = set_run_id()
    os.makedirs(args.output_dir, exist_ok=True)
    setup_logging(run_dir=args.output_dir)
    log.info("Cleaning run %s: %s", run_id, args.occurrences)

    run_result = run_cleaning(args)
    run_result.output_files.append(
        os.path.join(args.output_dir, config.OUTPUT_FILES["run_result"]))
    save_run_result(run_result, args.output_dir)

    log.info("Run complete in %.1fs", run_result.total_time_seconds)
    if run_result.failed_steps:
        log.warning("Failed steps: %s",
                    [s.step_name for s in run_result.failed_steps])
        return 1
    if run_result.flag_summary:
        log.info("Flag summary: %s", run_result.flag_summary,
                 extra={"flag_summary": run_result.flag_summary})
    log.info("All steps succeeded.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
