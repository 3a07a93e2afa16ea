"""
Pandera DataFrame schemas for the cleaning pipeline's validation gates.

Checks both structure and value ranges of the tables the pipeline reads
and writes: the occurrence input, the merged flag table and the bias
verdict table.

Usage:
    from coordclean.schemas import OccurrenceSchema
    OccurrenceSchema.validate(df)  # raises pa.errors.SchemaError on failure
"""

import pandera as pa
from pandera import Check, Column, DataFrameSchema

from coordclean import config
from coordclean.records import RecordStatus, VerdictStatus


# ── Occurrence input ────────────────────────────────────────────────────

# Coordinates are nullable and unchecked for type: bad rows must reach
# the validator so they are reported as invalid, not rejected wholesale.
OccurrenceSchema = DataFrameSchema(
    columns={
        "record_id": Column(nullable=False, unique=True),
        "longitude": Column(nullable=True),
        "latitude": Column(nullable=True),
    },
    strict=False,
    coerce=False,
    name="OccurrenceSchema",
)

# Strict variant for sources that claim to be clean already.
CleanOccurrenceSchema = DataFrameSchema(
    columns={
        "record_id": Column(nullable=False, unique=True),
        "longitude": Column(float, Check.in_range(*config.LONGITUDE_RANGE),
                            nullable=False),
        "latitude": Column(float, Check.in_range(*config.LATITUDE_RANGE),
                           nullable=False),
    },
    strict=False,
    coerce=True,
    name="CleanOccurrenceSchema",
)


# ── Flag table ──────────────────────────────────────────────────────────

FlagTableSchema = DataFrameSchema(
    columns={
        "passed": Column(bool, nullable=False),
        "status": Column(str, Check.isin([s.value for s in RecordStatus]),
                         nullable=False),
    },
    strict=False,
    coerce=False,
    name="FlagTableSchema",
)


# ── Bias verdicts ───────────────────────────────────────────────────────

VerdictSchema = DataFrameSchema(
    columns={
        "test": Column(str, Check.isin(["ddmm", "round"]), nullable=False),
        "status": Column(str, Check.isin([s.value for s in VerdictStatus]),
                         nullable=False),
        "flagged": Column(nullable=True),
    },
    strict=False,
    coerce=False,
    name="VerdictSchema",
)


# ── Gate ────────────────────────────────────────────────────────────────

def _failure_messages(step_name, failure_cases):
    return [
        f"[{step_name}] {row.column}: failed {row.check} "
        f"(value={row.failure_case!r}, index={row.index})"
        for row in failure_cases.itertuples()
    ]


def validate_schema(df, schema, step_name, strict=False):
    """Check *df* against *schema* and report every failure at once.

    Returns a list of messages prefixed with ``[step_name]``; empty when
    the table conforms. With strict=True any failure raises ValueError
    instead.
    """
    if df is None:
        messages = [f"[{step_name}] DataFrame is None"]
    else:
        try:
            schema.validate(df, lazy=True)
            return []
        except pa.errors.SchemaErrors as exc:
            messages = _failure_messages(step_name, exc.failure_cases)
            if strict:
                raise ValueError(
                    f"[{step_name}] Schema validation failed: "
                    f"{len(messages)} failure(s) against {schema.name}"
                ) from exc
            return messages

    if strict:
        raise ValueError(messages[0])
    return messages
