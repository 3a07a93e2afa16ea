"""
Typed records flowing through the cleaning core.

OccurrenceRecord is the immutable input tuple; FlagVector is the
per-record result owned by the caller; BiasVerdict is the per-partition
result of the dataset bias detectors.
"""

import math
import numbers
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import pandas as pd

from coordclean import config
from coordclean.errors import InvalidRecord

_COUNTRY_CODE = re.compile(r"^[A-Za-z]{2,3}$")


class RecordStatus(str, Enum):
    """Outcome of evaluating one record or one species set."""
    OK = "ok"
    INVALID = "invalid"
    INSUFFICIENT_DATA = "insufficient_data"


class VerdictStatus(str, Enum):
    """Outcome of a dataset bias test for one partition."""
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"
    ERROR = "error"


def _is_missing(value):
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


@dataclass(frozen=True)
class OccurrenceRecord:
    """A single species-location-time observation."""

    record_id: object
    species: Optional[str]
    longitude: float
    latitude: float
    country_code: Optional[str] = None
    dataset_id: Optional[str] = None
    basis_of_record: Optional[str] = None
    coordinate_uncertainty: Optional[float] = None
    year: Optional[int] = None
    individual_count: Optional[int] = None

    def validated(self):
        """Return self if both coordinates are present and in range.

        Raises
        ------
        InvalidRecord
            On a missing, non-numeric, non-finite or out-of-range value.
        """
        for name, bounds in (("longitude", config.LONGITUDE_RANGE),
                             ("latitude", config.LATITUDE_RANGE)):
            value = getattr(self, name)
            if _is_missing(value):
                raise InvalidRecord(self.record_id, f"missing {name}")
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise InvalidRecord(
                    self.record_id, f"non-numeric {name}: {value!r}")
            if not math.isfinite(value):
                raise InvalidRecord(self.record_id, f"non-finite {name}")
            lo, hi = bounds
            if not lo <= value <= hi:
                raise InvalidRecord(
                    self.record_id,
                    f"{name} {value} outside [{lo:g}, {hi:g}]")
        return self

    def require_country_code(self):
        """Return the upper-cased country code or raise InvalidRecord."""
        code = self.country_code
        if _is_missing(code) or not isinstance(code, str):
            raise InvalidRecord(self.record_id, "missing country code")
        if not _COUNTRY_CODE.match(code.strip()):
            raise InvalidRecord(
                self.record_id, f"malformed country code {code!r}")
        return code.strip().upper()


@dataclass
class FlagVector:
    """Per-record mapping from test name to flag.

    A flag value of True means the record was flagged (suspicious) by
    that test. None marks a test that could not be evaluated.
    """

    record_id: object
    flags: dict = field(default_factory=dict)
    status: str = RecordStatus.OK.value
    reason: Optional[str] = None

    @property
    def passed(self):
        """AND over all evaluated tests of "not flagged"."""
        if self.status != RecordStatus.OK.value:
            return False
        return not any(bool(v) for v in self.flags.values())

    @property
    def flagged_tests(self):
        return [name for name, v in self.flags.items() if v]

    def to_dict(self):
        row = {"record_id": self.record_id}
        row.update(self.flags)
        row["passed"] = self.passed
        row["status"] = self.status
        row["reason"] = self.reason
        return row


@dataclass
class BiasVerdict:
    """Aggregate verdict of one bias test over one dataset partition."""

    partition: object
    test: str
    status: str = VerdictStatus.OK.value
    flagged: Optional[bool] = None
    diagnostics: dict = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self):
        return self.status == VerdictStatus.OK.value

    def to_dict(self):
        return {
            "partition": self.partition,
            "test": self.test,
            "status": self.status,
            "flagged": self.flagged,
            "diagnostics": self.diagnostics,
            "error": self.error,
        }


def _clean_value(value):
    return None if _is_missing(value) else value


def _as_float(value):
    """Numeric coordinates become floats; anything else passes through."""
    if _is_missing(value):
        return None
    if isinstance(value, bool):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return value


def normalize_columns(df, columns=None):
    """Rename Darwin Core columns to the internal record field names.

    Parameters
    ----------
    df : pd.DataFrame
        Tabular record source, e.g. a GBIF download.
    columns : dict, optional
        Source → field mapping. Default: config.DWC_COLUMNS. Columns that
        already use the internal names are left as they are.
    """
    if columns is None:
        columns = config.DWC_COLUMNS
    rename = {src: dst for src, dst in columns.items()
              if src in df.columns and dst not in df.columns}
    out = df.rename(columns=rename)
    if "record_id" not in out.columns:
        out = out.reset_index(drop=False).rename(
            columns={out.index.name or "index": "record_id"})
    return out


def records_from_frame(df, columns=None):
    """Convert a tabular record source into OccurrenceRecords.

    Rows with bad coordinates are converted as-is; validation is the
    validator's job so that bad rows are reported, not dropped.
    """
    df = normalize_columns(df, columns)
    for required in ("longitude", "latitude"):
        if required not in df.columns:
            raise KeyError(f"occurrence table has no '{required}' column")

    records = []
    for row in df.to_dict(orient="records"):
        records.append(OccurrenceRecord(
            record_id=row["record_id"],
            species=_clean_value(row.get("species")),
            longitude=_as_float(row.get("longitude")),
            latitude=_as_float(row.get("latitude")),
            country_code=_clean_value(row.get("country_code")),
            dataset_id=_clean_value(row.get("dataset_id")),
            basis_of_record=_clean_value(row.get("basis_of_record")),
            coordinate_uncertainty=_clean_value(
                row.get("coordinate_uncertainty")),
            year=_clean_value(row.get("year")),
            individual_count=_clean_value(row.get("individual_count")),
        ))
    return records
