"""
Dataset-level bias detection: conversion and rasterization artifacts.

Both tests answer "does this source carry a systematic encoding or
collection artifact?" and so operate on a whole dataset partition (for
example one contributing collection), never on a single record.

METHODOLOGY:
1. **Conversion bias (cd_ddmm):** degrees-minutes values misread as
   decimal degrees have decimals in [0, 0.60) on both axes. Under correct
   decimal encoding the joint share of records in that 0.6 x 0.6 cell is
   0.36; a partition is flagged when the observed share exceeds it by more
   than `diff_threshold` (relative excess) and a one-sided binomial test
   rejects the uniform null at `alpha`.
2. **Rasterization bias (cd_round):** coordinates snapped to a grid show
   regular peaks in the autocorrelation of binned coordinate counts. A
   partition is flagged only when BOTH axes are periodic at the same lag;
   single-axis periodicity is expected from administrative boundaries.

Citation: Zizka, A. et al. (2020). No one-size-fits-all solution to
clean GBIF. PeerJ, 8, e9916.
"""

import numpy as np
import pandas as pd
from scipy import stats as scipy_stats

from coordclean import config
from coordclean.errors import InsufficientData, InvalidRecord
from coordclean.formulas.decimals import (
    acf_peaks,
    autocorrelation,
    binned_counts,
    decimal_fraction,
    decimal_histogram,
)
from coordclean.logging_config import get_pipeline_logger
from coordclean.records import (
    BiasVerdict,
    VerdictStatus,
    normalize_columns,
    records_from_frame,
)

log = get_pipeline_logger(__name__)

BIAS_TESTS = ("ddmm", "round")


def _partition_coordinates(partition):
    """Valid (lons, lats) arrays of a partition plus the invalid count."""
    if isinstance(partition, pd.DataFrame):
        records = records_from_frame(partition)
    else:
        records = list(partition)
    lons, lats, n_invalid = [], [], 0
    for rec in records:
        try:
            rec.validated()
        except InvalidRecord:
            n_invalid += 1
            continue
        lons.append(rec.longitude)
        lats.append(rec.latitude)
    return np.asarray(lons, dtype=float), np.asarray(lats, dtype=float), n_invalid


# ── Conversion bias ───────────────────────────────────────────────────


def conversion_statistics(lons, lats, cutoff=None, min_records=None,
                          min_span=None, bins=None):
    """Decimal-distribution statistics for the conversion-bias test.

    Records whose coordinates are both whole degrees carry no decimal
    information and are excluded.

    Raises
    ------
    InsufficientData
        When fewer than min_records remain or the partition spans fewer
        than min_span degrees on both axes.
    """
    if cutoff is None:
        cutoff = config.DDMM_CUTOFF
    if min_records is None:
        min_records = config.DDMM_MIN_RECORDS
    if min_span is None:
        min_span = config.DDMM_MIN_SPAN_DEG
    if bins is None:
        bins = config.DDMM_HISTOGRAM_BINS

    lon_frac = decimal_fraction(lons)
    lat_frac = decimal_fraction(lats)
    informative = ~((lon_frac == 0) & (lat_frac == 0))
    n_integer = int((~informative).sum())
    lons, lats = lons[informative], lats[informative]
    lon_frac, lat_frac = lon_frac[informative], lat_frac[informative]

    n = len(lons)
    if n < min_records:
        raise InsufficientData(f"need {min_records} records with decimals", n=n)
    span = max(np.ptp(lons), np.ptp(lats))
    if span < min_span:
        raise InsufficientData(
            f"partition spans {span:.2f} degrees, need {min_span}", n=n)

    below = (lon_frac < cutoff) & (lat_frac < cutoff)
    k = int(below.sum())
    expected = cutoff ** 2
    proportion = k / n
    p_value = scipy_stats.binomtest(k, n, expected, alternative="greater").pvalue

    return {
        "n": n,
        "n_whole_degree_excluded": n_integer,
        "span_deg": round(float(span), 4),
        "proportion_below_cutoff": proportion,
        "expected_proportion": expected,
        "deviation": (proportion - expected) / expected,
        "p_value": float(p_value),
        "lon_share_below_cutoff": float((lon_frac < cutoff).mean()),
        "lat_share_below_cutoff": float((lat_frac < cutoff).mean()),
        "lon_ks_uniform": float(scipy_stats.kstest(lon_frac, "uniform").statistic),
        "lat_ks_uniform": float(scipy_stats.kstest(lat_frac, "uniform").statistic),
        "decimal_histogram": decimal_histogram(lon_frac, lat_frac, bins).tolist(),
    }


def detect_conversion_bias(partition, partition_id=None, cutoff=None,
                           diff_threshold=None, alpha=None,
                           min_records=None, min_span=None):
    """Test one dataset partition for degree-minute conversion errors.

    Parameters
    ----------
    partition : pd.DataFrame or sequence of OccurrenceRecord
        All records of one dataset.
    partition_id : optional
        Label stored in the verdict.
    cutoff : float, optional
        Decimal cutoff. Default: config.DDMM_CUTOFF (0.6).
    diff_threshold : float, optional
        Relative excess over the uniform share that flags the partition.
        Default: config.DDMM_DIFF_THRESHOLD.
    alpha : float, optional
        Significance level of the binomial test. Default: config.DDMM_ALPHA.
    min_records, min_span : optional
        Data sufficiency limits. Default: config.DDMM_MIN_RECORDS,
        config.DDMM_MIN_SPAN_DEG.

    Returns
    -------
    BiasVerdict
        test="ddmm"; status "ok" or "insufficient_data".
    """
    if diff_threshold is None:
        diff_threshold = config.DDMM_DIFF_THRESHOLD
    if alpha is None:
        alpha = config.DDMM_ALPHA

    lons, lats, n_invalid = _partition_coordinates(partition)
    verdict = BiasVerdict(partition=partition_id, test="ddmm")
    try:
        diag = conversion_statistics(lons, lats, cutoff=cutoff,
                                     min_records=min_records, min_span=min_span)
    except InsufficientData as exc:
        verdict.status = VerdictStatus.INSUFFICIENT_DATA.value
        verdict.diagnostics = {"n": exc.n, "n_invalid": n_invalid,
                               "reason": exc.reason}
        return verdict

    diag["n_invalid"] = n_invalid
    diag["diff_threshold"] = diff_threshold
    diag["alpha"] = alpha
    verdict.flagged = bool(diag["deviation"] > diff_threshold
                           and diag["p_value"] < alpha)
    verdict.diagnostics = diag
    return verdict


# ── Rasterization bias ────────────────────────────────────────────────


def _multiples_hit(peaks, lag, n_lags):
    """Consecutive multiples of *lag*, from lag itself, with a peak within 1 bin.

    Counting stops at the first miss, so a lag that only shares a common
    multiple with the true grid spacing scores 0.
    """
    peak_set = set(int(p) for p in peaks)
    hits = 0
    for m in range(1, n_lags // lag + 1):
        target = m * lag
        if not peak_set & {target - 1, target, target + 1}:
            break
        hits += 1
    return hits


def axis_periodicity(values, resolution=None, max_lag=None, t1=None,
                     noise_z=None, min_peaks=None, period=None,
                     reg_dist_min=None, reg_dist_max=None):
    """Detect regular autocorrelation peaks along one coordinate axis.

    Returns a dict with keys: periodic (bool), lag (bins or None),
    period_deg, peaks (list of lags), n_bins, acf (list).
    """
    if resolution is None:
        resolution = config.RASTER_RESOLUTION_DEG
    if max_lag is None:
        max_lag = config.RASTER_MAX_LAG
    if t1 is None:
        t1 = config.RASTER_T1
    if noise_z is None:
        noise_z = config.RASTER_NOISE_Z
    if min_peaks is None:
        min_peaks = config.RASTER_MIN_PEAKS
    if reg_dist_min is None:
        reg_dist_min = config.RASTER_REG_DIST_MIN_DEG
    if reg_dist_max is None:
        reg_dist_max = config.RASTER_REG_DIST_MAX_DEG

    counts = binned_counts(values, resolution)
    acf_values = autocorrelation(counts, max_lag)
    n_lags = len(acf_values)
    peaks = acf_peaks(acf_values, t1, noise_z, len(counts)) if n_lags else np.array([], dtype=int)

    if period is not None:
        candidates = [max(1, int(round(period / resolution)))]
    else:
        lo = int(np.ceil(reg_dist_min / resolution - 1e-9))
        hi = int(np.floor(reg_dist_max / resolution + 1e-9))
        candidates = [int(p) for p in peaks if lo <= p <= hi]

    lag = None
    for cand in candidates:
        if _multiples_hit(peaks, cand, n_lags) >= min_peaks:
            lag = cand
            break

    return {
        "periodic": lag is not None,
        "lag": lag,
        "period_deg": None if lag is None else round(lag * resolution, 6),
        "peaks": [int(p) for p in peaks],
        "n_bins": int(len(counts)),
        "acf": [None if not np.isfinite(v) else round(float(v), 4)
                for v in acf_values],
    }


def detect_rasterization_bias(partition, partition_id=None, resolution=None,
                              t1=None, period=None, max_lag=None,
                              min_peaks=None, min_records=None,
                              reg_dist_min=None, reg_dist_max=None):
    """Test one dataset partition for grid-snapped coordinates.

    Parameters
    ----------
    partition : pd.DataFrame or sequence of OccurrenceRecord
    partition_id : optional
        Label stored in the verdict.
    resolution : float, optional
        Bin width in degrees. Default: config.RASTER_RESOLUTION_DEG.
    t1 : float, optional
        IQR multiplier for ACF peak detection. Default: config.RASTER_T1 (7).
    period : float, optional
        Grid spacing in degrees to test for. Default: config.RASTER_PERIOD_DEG;
        None detects the period per axis and requires both to agree.
    max_lag, min_peaks, reg_dist_min, reg_dist_max : optional
        See config.RASTER_*.
    min_records : int, optional
        Default: config.RASTER_MIN_RECORDS.

    Returns
    -------
    BiasVerdict
        test="round"; flagged only when longitude AND latitude are
        periodic at the same lag.
    """
    if min_records is None:
        min_records = config.RASTER_MIN_RECORDS
    if period is None:
        period = config.RASTER_PERIOD_DEG
    if resolution is None:
        resolution = config.RASTER_RESOLUTION_DEG

    lons, lats, n_invalid = _partition_coordinates(partition)
    verdict = BiasVerdict(partition=partition_id, test="round")
    if len(lons) < min_records:
        verdict.status = VerdictStatus.INSUFFICIENT_DATA.value
        verdict.diagnostics = {
            "n": len(lons), "n_invalid": n_invalid,
            "reason": f"need {min_records} records",
        }
        return verdict

    opts = dict(resolution=resolution, max_lag=max_lag, t1=t1,
                min_peaks=min_peaks, period=period,
                reg_dist_min=reg_dist_min, reg_dist_max=reg_dist_max)
    lon_axis = axis_periodicity(lons, **opts)
    lat_axis = axis_periodicity(lats, **opts)

    same_lag = (lon_axis["periodic"] and lat_axis["periodic"]
                and abs(lon_axis["lag"] - lat_axis["lag"]) <= 1)
    verdict.flagged = bool(same_lag)
    verdict.diagnostics = {
        "n": len(lons),
        "n_invalid": n_invalid,
        "resolution_deg": resolution,
        "t1": config.RASTER_T1 if t1 is None else t1,
        "longitude": lon_axis,
        "latitude": lat_axis,
    }
    return verdict


# ── Partition driver ──────────────────────────────────────────────────


_DETECTORS = {
    "ddmm": detect_conversion_bias,
    "round": detect_rasterization_bias,
}


def detect_dataset_bias(df, dataset_column=None, tests=BIAS_TESTS,
                        ddmm_options=None, round_options=None):
    """Run the bias detectors on every dataset partition of a table.

    A failing partition yields a verdict with status "error" for that
    partition only; the remaining partitions are still evaluated.

    Parameters
    ----------
    df : pd.DataFrame
        Occurrence table (internal or Darwin Core column names).
    dataset_column : str, optional
        Partition key. Default: config.DATASET_COLUMN.
    tests : sequence of str
        Subset of ("ddmm", "round").
    ddmm_options, round_options : dict, optional
        Keyword overrides for the respective detector.

    Returns
    -------
    pd.DataFrame
        One row per (partition, test): partition, test, status, flagged,
        diagnostics, error.
    """
    if dataset_column is None:
        dataset_column = config.DATASET_COLUMN
    unknown = set(tests) - set(_DETECTORS)
    if unknown:
        raise ValueError(f"unknown bias tests {sorted(unknown)}; "
                         f"available: {list(_DETECTORS)}")

    df = normalize_columns(df)
    if dataset_column not in df.columns:
        raise KeyError(f"occurrence table has no '{dataset_column}' column")
    options = {"ddmm": ddmm_options or {}, "round": round_options or {}}

    verdicts = []
    for key, part in df.groupby(dataset_column, dropna=False, sort=True):
        partition_id = None if pd.isna(key) else key
        for test in tests:
            try:
                verdict = _DETECTORS[test](part, partition_id=partition_id,
                                           **options[test])
            except Exception as exc:
                log.error("Bias test %s failed for partition %r: %s",
                          test, partition_id, exc, exc_info=True,
                          extra={"partition": partition_id})
                verdict = BiasVerdict(partition=partition_id, test=test,
                                      status=VerdictStatus.ERROR.value,
                                      error=f"{type(exc).__name__}: {exc}")
            verdicts.append(verdict)

    table = pd.DataFrame(
        [v.to_dict() for v in verdicts],
        columns=["partition", "test", "status", "flagged", "diagnostics", "error"],
    )
    n_flagged = int(table["flagged"].fillna(False).astype(bool).sum()) if len(table) else 0
    log.info("Bias detection: %d partitions, %d verdicts, %d flagged",
             df[dataset_column].nunique(dropna=False), len(table), n_flagged)
    return table
