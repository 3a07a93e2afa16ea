"""Coordinate cleaning for species occurrence records."""

from coordclean.bias import (
    detect_conversion_bias,
    detect_dataset_bias,
    detect_rasterization_bias,
)
from coordclean.cleaning import clean_coordinates
from coordclean.errors import (
    CoordCleanError,
    GazetteerLoadFailure,
    InsufficientData,
    InvalidRecord,
)
from coordclean.gazetteer import Gazetteer, GazetteerLayer, gazetteer_from_frames, load_gazetteer
from coordclean.outliers import detect_outliers, detect_species_outliers
from coordclean.records import BiasVerdict, FlagVector, OccurrenceRecord, records_from_frame
from coordclean.validator import RecordValidator, flag_table, summarize_flags

__version__ = "0.1.0"
