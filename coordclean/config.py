"""
Centralized configuration for the coordinate cleaning core.

All test tolerances, statistical thresholds, column names and reference
locations are defined here with inline citations justifying each choice.
Functions accept explicit overrides and fall back to these values.
"""

# ─── RECORD VALIDATION TESTS ─────────────────────────────────────────────
# Test names follow the CoordinateCleaner "tests" vocabulary so that flag
# tables are directly comparable with clean_coordinates() output.
# Citation: Zizka, A. et al. (2019). CoordinateCleaner: Standardized
#           cleaning of occurrence records from biological collection
#           databases. Methods Ecol. Evol., 10(5), 744-751.
RECORD_TESTS = (
    "equal",
    "zeros",
    "seas",
    "countries",
    "centroids",
    "capitals",
    "institutions",
    "gbif",
    "urban",
    "duplicates",
)

# Default battery used when the caller does not choose tests.
# "urban" is opt-in: city footprints flag many legitimate records.
DEFAULT_TESTS = (
    "equal",
    "zeros",
    "seas",
    "countries",
    "centroids",
    "capitals",
    "institutions",
    "gbif",
    "duplicates",
)

# ─── TOLERANCES ──────────────────────────────────────────────────────────
# Buffer radii around reference geometries. Metres unless stated.
# Following Zizka et al. (2019) defaults:
#   centroids_rad = 1000 m, capitals_rad = 10000 m, inst_rad = 100 m,
#   gbif buffer = 1000 m, zeros buffer = 0.5 degrees.
# A tolerance of 0 disables buffering (exact match only).
CENTROID_TOLERANCE_M = 1000
CAPITAL_TOLERANCE_M = 10000
INSTITUTION_TOLERANCE_M = 100
GBIF_TOLERANCE_M = 1000
SEA_TOLERANCE_M = 0
COUNTRY_TOLERANCE_M = 0
URBAN_TOLERANCE_M = 0
ZERO_TOLERANCE_DEG = 0.5  # degrees, Euclidean in lon/lat space

DEFAULT_TOLERANCES = {
    "zeros": ZERO_TOLERANCE_DEG,
    "seas": SEA_TOLERANCE_M,
    "countries": COUNTRY_TOLERANCE_M,
    "centroids": CENTROID_TOLERANCE_M,
    "capitals": CAPITAL_TOLERANCE_M,
    "institutions": INSTITUTION_TOLERANCE_M,
    "gbif": GBIF_TOLERANCE_M,
    "urban": URBAN_TOLERANCE_M,
}

# "identical" flags lon == lat; "absolute" flags |lon| == |lat|.
EQUAL_TEST_MODE = "identical"

# Which centroids to test against: "country", "provinces" or "both".
CENTROID_DETAIL = "both"

# Decimal places used to match near-exact duplicates; None = exact.
DUPLICATE_PRECISION = None

# ─── COORDINATE RANGES ───────────────────────────────────────────────────
LONGITUDE_RANGE = (-180.0, 180.0)
LATITUDE_RANGE = (-90.0, 90.0)

# ─── REFERENCE LOCATIONS ────────────────────────────────────────────────
# GBIF Secretariat, Universitetsparken 15, Copenhagen. Records geo-
# referenced to the GBIF headquarters are a known artifact of defaulted
# country-level coordinates in the GBIF backbone.
GBIF_HEADQUARTERS = {"lon": 12.58, "lat": 55.67}

# Gazetteer categories and the file stems load_gazetteer() looks for.
GAZETTEER_LAYERS = {
    "land": {"kind": "polygon", "code_columns": ()},
    # GBIF countryCode is ISO 3166 alpha-2; alpha-3 accepted when present.
    "countries": {"kind": "polygon", "code_columns": ("iso_a2", "iso_a3")},
    # type is "country" or "provinces", as in the CoordinateCleaner
    # countryref table.
    "centroids": {"kind": "point", "code_columns": ("type",)},
    "capitals": {"kind": "point", "code_columns": ()},
    "institutions": {"kind": "point", "code_columns": ()},
    "cities": {"kind": "polygon", "code_columns": ()},
}
GAZETTEER_FILE_EXTENSIONS = (".geojson", ".gpkg", ".shp")
GAZETTEER_CRS = "EPSG:4326"

# Layer each record test reads from. Tests absent here need no gazetteer.
TEST_LAYERS = {
    "seas": "land",
    "countries": "countries",
    "centroids": "centroids",
    "capitals": "capitals",
    "institutions": "institutions",
    "gbif": "gbif",
    "urban": "cities",
}

# ─── SPATIAL OUTLIER DETECTION ───────────────────────────────────────────
# Following Zizka et al. (2019), cc_outl(): species with fewer than
# min_occs = 7 records are not tested, as distance statistics are
# unstable for very small samples.
OUTLIER_METHOD = "distance"
OUTLIER_MIN_RECORDS = 7
OUTLIER_K_NEIGHBOURS = 5
OUTLIER_SD_THRESHOLD = 2.0       # distance method: SDs above the mean
OUTLIER_QUANTILE = 0.75          # quantile method: base quantile
OUTLIER_IQR_MULTIPLIER = 5.0     # quantile method: cc_outl mltpl default

# ─── CONVERSION (DDMM) BIAS ─────────────────────────────────────────────
# Following Zizka et al. (2020), cd_ddmm(): coordinates converted from
# degrees-minutes by dropping the separator carry decimals < 0.60 on
# both axes, so the lower-left 0.6 x 0.6 cell of the decimal matrix is
# over-populated relative to its uniform share of 0.36.
# Citation: Zizka, A. et al. (2020). No one-size-fits-all solution to
#           clean GBIF. PeerJ, 8, e9916.
DDMM_CUTOFF = 0.6
DDMM_DIFF_THRESHOLD = 1.0        # relative excess over the uniform share
DDMM_ALPHA = 0.01                # one-sided binomial test
DDMM_MIN_RECORDS = 30
DDMM_MIN_SPAN_DEG = 2.0
DDMM_HISTOGRAM_BINS = 10

# ─── RASTERIZATION BIAS ─────────────────────────────────────────────────
# Following Zizka et al. (2020), cd_round(): regular peaks in the
# autocorrelation of binned coordinates indicate grid-based sampling.
# T1 = 7 is the demonstrated IQR outlier multiplier; lower values raise
# the detection rate. Peaks must recur at least reg_out_thresh = 2 times
# at a spacing between reg_dist_min and reg_dist_max degrees.
RASTER_RESOLUTION_DEG = 0.01
RASTER_T1 = 7
RASTER_MAX_LAG = 500             # bins; 5 degrees at 0.01 resolution
RASTER_MIN_PEAKS = 2
RASTER_REG_DIST_MIN_DEG = 0.1
RASTER_REG_DIST_MAX_DEG = 2.0
RASTER_PERIOD_DEG = None         # None = detect the period per axis
RASTER_NOISE_Z = 1.96            # white-noise bound for ACF peaks
RASTER_MIN_RECORDS = 30

# ─── TABULAR INTERFACE ──────────────────────────────────────────────────
# Darwin Core column names as delivered by GBIF downloads, mapped to the
# internal record fields.
DWC_COLUMNS = {
    "gbifID": "record_id",
    "species": "species",
    "decimalLongitude": "longitude",
    "decimalLatitude": "latitude",
    "countryCode": "country_code",
    "datasetKey": "dataset_id",
    "basisOfRecord": "basis_of_record",
    "coordinateUncertaintyInMeters": "coordinate_uncertainty",
    "year": "year",
    "individualCount": "individual_count",
}
DATASET_COLUMN = "dataset_id"
SPECIES_COLUMN = "species"

# ─── EXECUTION ──────────────────────────────────────────────────────────
# Record validation is embarrassingly parallel; None = cpu_count - 1.
MAX_WORKERS = None

OUTPUT_FILES = {
    "flags": "flags.csv",
    "verdicts": "bias_verdicts.csv",
    "run_result": "run_result.json",
}
