"""
Spatial outlier detection within one species' record set.

METHODOLOGY:
Two interchangeable methods, both on great-circle distances:

- distance: mean distance of each record to its k nearest conspecific
  records. A record is flagged when that value exceeds the set mean by
  more than `threshold` standard deviations.
- quantile: distance of each record to the species' robust centroid
  (normalised component-wise median of unit vectors). A record is
  flagged when it exceeds the `threshold` quantile plus
  `iqr_multiplier` x IQR of all distances (cc_outl "quantile").

Citation: Zizka, A. et al. (2019). CoordinateCleaner. Methods Ecol.
Evol., 10(5), 744-751, cc_outl().

Both methods need the complete species set in memory; species with too
few unique locations are reported as insufficient data, never as passed.
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

from coordclean import config
from coordclean.checks import id_sort_key
from coordclean.errors import InsufficientData, InvalidRecord
from coordclean.formulas.spatial import (
    chord_to_metres,
    haversine_m,
    to_unit_vectors,
    unit_vector_to_lonlat,
)
from coordclean.logging_config import get_pipeline_logger
from coordclean.records import (
    FlagVector,
    RecordStatus,
    records_from_frame,
)

log = get_pipeline_logger(__name__)

OUTLIER_METHODS = ("distance", "quantile")
OUTLIER_FLAG = "outliers"

# Distances within a micrometre of the cutoff are ties, not outliers.
_TIE_M = 1e-6


@dataclass
class OutlierResult:
    """Outcome of outlier detection for one species."""

    species: object
    method: str
    status: str = RecordStatus.OK.value
    vectors: list = field(default_factory=list)
    statistic_m: dict = field(default_factory=dict)
    cutoff_m: Optional[float] = None
    n_records: int = 0
    reason: Optional[str] = None

    @property
    def flags(self):
        """record_id → True (outlier) / False / None (not evaluated)."""
        return {v.record_id: v.flags.get(OUTLIER_FLAG) for v in self.vectors}

    @property
    def outlier_ids(self):
        return [rid for rid, flag in self.flags.items() if flag]


def _mean_knn_distance_m(xyz, k):
    """Mean great-circle distance from each point to its k nearest others."""
    tree = cKDTree(xyz)
    # The nearest hit of each query is the point itself (distance 0).
    chord, _ = tree.query(xyz, k=k + 1)
    return chord_to_metres(chord[:, 1:]).mean(axis=1)


def _centroid_distance_m(lons, lats, xyz):
    centre = np.median(xyz, axis=0)
    if np.linalg.norm(centre) < 1e-12:
        centre = xyz.mean(axis=0)
    c_lon, c_lat = unit_vector_to_lonlat(centre)
    return haversine_m(lons, lats, c_lon, c_lat)


def detect_outliers(records, method=None, threshold=None, k=None,
                    min_records=None, iqr_multiplier=None):
    """Flag spatial outliers in the records of one species.

    Parameters
    ----------
    records : sequence of OccurrenceRecord
        All records of a single species.
    method : str, optional
        "distance" or "quantile". Default: config.OUTLIER_METHOD.
    threshold : float, optional
        distance: SDs above the mean (default config.OUTLIER_SD_THRESHOLD).
        quantile: quantile level in (0, 1) (default config.OUTLIER_QUANTILE).
    k : int, optional
        Neighbours for the distance method. Default: config.OUTLIER_K_NEIGHBOURS.
    min_records : int, optional
        Minimum unique locations. Default: config.OUTLIER_MIN_RECORDS.
    iqr_multiplier : float, optional
        quantile method IQR multiplier. Default: config.OUTLIER_IQR_MULTIPLIER.

    Returns
    -------
    OutlierResult
        Status "ok" or "insufficient_data"; invalid records carry
        status "invalid" in their own FlagVector.
    """
    method = method or config.OUTLIER_METHOD
    if method not in OUTLIER_METHODS:
        raise ValueError(f"method must be one of {OUTLIER_METHODS}, got {method!r}")
    if threshold is None:
        threshold = (config.OUTLIER_SD_THRESHOLD if method == "distance"
                     else config.OUTLIER_QUANTILE)
    if method == "quantile" and not 0 < threshold < 1:
        raise ValueError(f"quantile threshold must be in (0, 1), got {threshold}")
    if k is None:
        k = config.OUTLIER_K_NEIGHBOURS
    if min_records is None:
        min_records = config.OUTLIER_MIN_RECORDS
    if iqr_multiplier is None:
        iqr_multiplier = config.OUTLIER_IQR_MULTIPLIER

    records = sorted(records, key=lambda r: id_sort_key(r.record_id))
    species = {r.species for r in records}
    if len(species) > 1:
        raise ValueError(f"detect_outliers expects one species, got {len(species)}")
    result = OutlierResult(species=next(iter(species), None), method=method)

    valid, invalid = [], []
    for rec in records:
        try:
            valid.append(rec.validated())
        except InvalidRecord as exc:
            invalid.append(FlagVector(
                record_id=rec.record_id, flags={OUTLIER_FLAG: None},
                status=RecordStatus.INVALID.value, reason=exc.reason))
    result.n_records = len(valid)

    try:
        n_unique = len({(r.longitude, r.latitude) for r in valid})
        if n_unique < max(min_records, 2):
            raise InsufficientData(
                f"{n_unique} unique locations, need {min_records}", n=n_unique)

        lons = np.array([r.longitude for r in valid], dtype=float)
        lats = np.array([r.latitude for r in valid], dtype=float)
        xyz = to_unit_vectors(lons, lats)

        if method == "distance":
            values = _mean_knn_distance_m(xyz, min(k, len(valid) - 1))
            cutoff = values.mean() + threshold * values.std()
        else:
            values = _centroid_distance_m(lons, lats, xyz)
            q1, q3 = np.percentile(values, [25, 75])
            cutoff = np.quantile(values, threshold) + iqr_multiplier * (q3 - q1)
    except InsufficientData as exc:
        log.debug("Outlier test skipped for %r: %s", result.species, exc)
        result.status = RecordStatus.INSUFFICIENT_DATA.value
        result.reason = str(exc)
        result.vectors = [
            FlagVector(record_id=r.record_id, flags={OUTLIER_FLAG: None},
                       status=RecordStatus.INSUFFICIENT_DATA.value,
                       reason=exc.reason)
            for r in valid
        ] + invalid
        return result

    result.cutoff_m = float(cutoff)
    result.vectors = [
        FlagVector(record_id=r.record_id,
                   flags={OUTLIER_FLAG: bool(v - cutoff > _TIE_M)})
        for r, v in zip(valid, values)
    ] + invalid
    result.statistic_m = {r.record_id: float(v) for r, v in zip(valid, values)}

    n_flagged = len(result.outlier_ids)
    if n_flagged:
        log.debug("%r: %d/%d outliers (%s, cutoff %.0f m)",
                  result.species, n_flagged, len(valid), method, cutoff)
    return result


def detect_species_outliers(data, species_column=None, **kwargs):
    """Run detect_outliers() for every species in a table or record list.

    Parameters
    ----------
    data : pd.DataFrame or sequence of OccurrenceRecord
    species_column : str, optional
        Grouping column for DataFrames. Default: config.SPECIES_COLUMN.
    **kwargs
        Forwarded to detect_outliers().

    Returns
    -------
    pd.DataFrame
        Columns: record_id, species, outliers (nullable bool), status,
        reason; ordered by record id.
    """
    if isinstance(data, pd.DataFrame):
        df = data
        if species_column and species_column != config.SPECIES_COLUMN:
            df = df.drop(columns=[config.SPECIES_COLUMN], errors="ignore").rename(
                columns={species_column: config.SPECIES_COLUMN})
        records = records_from_frame(df)
    else:
        records = list(data)

    by_species = {}
    for rec in records:
        by_species.setdefault(rec.species, []).append(rec)

    rows = []
    statuses = {}
    for species, recs in by_species.items():
        result = detect_outliers(recs, **kwargs)
        statuses[result.status] = statuses.get(result.status, 0) + 1
        for v in result.vectors:
            rows.append({
                "record_id": v.record_id,
                "species": species,
                OUTLIER_FLAG: v.flags.get(OUTLIER_FLAG),
                "status": v.status,
                "reason": v.reason,
            })

    log.info("Outlier detection over %d species: %s", len(by_species), statuses)
    out = pd.DataFrame(
        rows, columns=["record_id", "species", OUTLIER_FLAG, "status", "reason"])
    out[OUTLIER_FLAG] = out[OUTLIER_FLAG].astype("boolean")
    order = sorted(range(len(out)), key=lambda i: id_sort_key(out["record_id"].iat[i]))
    return out.iloc[order].reset_index(drop=True)
