"""
Registry of record-level plausibility checks.

Every check implements the same contract::

    check(record, gazetteer, tolerance, context) -> bool

and returns True when the record is flagged. Checks are registered by
name with the gazetteer layer they read, so the validator can verify its
configuration up front and evaluate any subset of checks independently.
All checks are pure functions of their arguments.
"""

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional

from coordclean import config


@dataclass(frozen=True)
class CheckSpec:
    """A registered record check."""

    name: str
    fn: Callable
    layer: Optional[str] = None
    description: str = ""


@dataclass(frozen=True)
class CheckContext:
    """Batch-level inputs shared by all checks of one validation run.

    duplicate_ids holds the ids flagged by the batch duplicate scan; it is
    empty when a single record is validated on its own.
    """

    equal_mode: str = config.EQUAL_TEST_MODE
    centroid_detail: str = config.CENTROID_DETAIL
    duplicate_ids: frozenset = field(default_factory=frozenset)


_REGISTRY = {}


def register_check(name, layer=None, description=""):
    """Decorator adding a check function to the registry under *name*."""
    def decorator(fn):
        if name in _REGISTRY:
            raise ValueError(f"check '{name}' is already registered")
        _REGISTRY[name] = CheckSpec(name, fn, layer, description)
        return fn
    return decorator


def get_check(name):
    try:
        return _REGISTRY[name]
    except KeyError:
        raise ValueError(
            f"unknown check '{name}'; available: {sorted(_REGISTRY)}") from None


def available_checks():
    return tuple(_REGISTRY)


# ── Checks without reference data ───────────────────────────────────────


@register_check("equal", description="longitude equals latitude")
def equal_coordinates(record, gazetteer, tolerance, context):
    if context.equal_mode == "absolute":
        return abs(record.longitude) == abs(record.latitude)
    return record.longitude == record.latitude


@register_check("zeros", description="within tolerance degrees of (0, 0)")
def zero_coordinates(record, gazetteer, tolerance, context):
    if tolerance <= 0:
        return record.longitude == 0 and record.latitude == 0
    return math.hypot(record.longitude, record.latitude) <= tolerance


@register_check("duplicates",
                description="same species and coordinates as another record")
def duplicated_record(record, gazetteer, tolerance, context):
    return record.record_id in context.duplicate_ids


# ── Gazetteer checks ───────────────────────────────────────────────────


@register_check("seas", layer="land", description="outside the land mask")
def sea_coordinates(record, gazetteer, tolerance, context):
    return not gazetteer["land"].contains(
        record.longitude, record.latitude, tolerance)


@register_check("countries", layer="countries",
                description="enclosing country differs from the declared one")
def country_mismatch(record, gazetteer, tolerance, context):
    declared = record.require_country_code()
    layer = gazetteer["countries"]
    column = _country_code_column(layer, declared)
    if column is None:
        return True
    found = layer.lookup_all(record.longitude, record.latitude,
                             tolerance, column=column)
    return declared not in {str(c).upper() for c in found if c is not None}


_ISO_ALPHA = re.compile(r"[A-Za-z]{2,3}")


def _country_code_column(layer, declared):
    """Layer column whose ISO codes have the length of *declared*.

    The width of a column is the most common length of its alphabetic
    codes; placeholders such as Natural Earth's "-99" are ignored.
    """
    for col in layer.code_columns:
        widths = Counter(len(code) for code in map(str, layer.codes(col))
                         if _ISO_ALPHA.fullmatch(code))
        if widths and widths.most_common(1)[0][0] == len(declared):
            return col
    return None


@register_check("centroids", layer="centroids",
                description="near a country or province centroid")
def centroid_coordinates(record, gazetteer, tolerance, context):
    layer = gazetteer["centroids"]
    found = layer.lookup_all(record.longitude, record.latitude, tolerance)
    if context.centroid_detail == "both":
        return len(found) > 0
    return context.centroid_detail in found


@register_check("capitals", layer="capitals",
                description="near a national capital")
def capital_coordinates(record, gazetteer, tolerance, context):
    return gazetteer["capitals"].contains(
        record.longitude, record.latitude, tolerance)


@register_check("institutions", layer="institutions",
                description="near a biodiversity institution")
def institution_coordinates(record, gazetteer, tolerance, context):
    return gazetteer["institutions"].contains(
        record.longitude, record.latitude, tolerance)


@register_check("gbif", layer="gbif",
                description="near the GBIF headquarters")
def gbif_headquarters(record, gazetteer, tolerance, context):
    return gazetteer["gbif"].contains(
        record.longitude, record.latitude, tolerance)


@register_check("urban", layer="cities",
                description="inside a city footprint")
def urban_coordinates(record, gazetteer, tolerance, context):
    return gazetteer["cities"].contains(
        record.longitude, record.latitude, tolerance)


# ── Batch helpers ─────────────────────────────────────────────────────


def id_sort_key(record_id):
    """Total order over mixed-type record ids (ints before strings)."""
    return (type(record_id).__name__, record_id)


def find_duplicate_ids(records, precision=None):
    """Ids of records that repeat the species and coordinates of another.

    The record with the smallest id in each group is kept; the rest are
    flagged, so the outcome does not depend on input order.

    Parameters
    ----------
    records : iterable of OccurrenceRecord
        Records with valid coordinates.
    precision : int, optional
        Decimal places used to match near-exact duplicates. None = exact.
    """
    groups = {}
    for rec in records:
        # Records without a species are never duplicates.
        if rec.species is None:
            continue
        lon, lat = rec.longitude, rec.latitude
        if precision is not None:
            lon, lat = round(lon, precision), round(lat, precision)
        # -0.0 and 0.0 are the same coordinate.
        key = (rec.species, lon + 0.0, lat + 0.0)
        groups.setdefault(key, []).append(rec.record_id)

    flagged = set()
    for ids in groups.values():
        if len(ids) > 1:
            flagged.update(sorted(ids, key=id_sort_key)[1:])
    return frozenset(flagged)
