"""
Gazetteer index: read-only spatial lookups against reference geometries.

Each GazetteerLayer wraps one category of reference data (land mask,
country borders, centroids, capitals, institutions, city footprints)
behind an STRtree so that thousands of records can be checked against
it without a linear scan. Layers are validated once at construction and
never mutated afterwards, so a Gazetteer can be shared across worker
threads.

Usage:
    gaz = load_gazetteer("data/gazetteer")
    gaz["capitals"].contains(12.57, 55.68, tolerance_m=10000)
"""

import os
from types import MappingProxyType

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from shapely.geometry import Point

from coordclean import config
from coordclean.errors import GazetteerLoadFailure
from coordclean.formulas.spatial import haversine_m, metres_to_degrees
from coordclean.logging_config import get_pipeline_logger

log = get_pipeline_logger(__name__)

_KIND_GEOM_TYPES = {
    "polygon": {"Polygon", "MultiPolygon"},
    "point": {"Point"},
}


class GazetteerLayer:
    """One category of reference geometry with point-query support.

    Parameters
    ----------
    name : str
        Category name, e.g. "capitals".
    kind : str
        "polygon" or "point".
    gdf : gpd.GeoDataFrame
        Reference geometries. Must carry a CRS; reprojected to EPSG:4326.
    code_columns : str or sequence of str, optional
        Attribute column(s) returned by lookup(). The first one is the
        default (e.g. ISO alpha-2 code, with alpha-3 as an alternative).

    Raises
    ------
    GazetteerLoadFailure
        On missing CRS, empty layer, null/empty/invalid geometry, wrong
        geometry type, or a missing code column.
    """

    def __init__(self, name, kind, gdf, code_columns=None):
        if kind not in _KIND_GEOM_TYPES:
            raise GazetteerLoadFailure(f"{name}: unknown layer kind {kind!r}")
        if not isinstance(gdf, gpd.GeoDataFrame):
            raise GazetteerLoadFailure(f"{name}: expected a GeoDataFrame")
        if gdf.crs is None:
            raise GazetteerLoadFailure(f"{name}: reference geometry has no CRS")
        if len(gdf) == 0:
            raise GazetteerLoadFailure(f"{name}: layer is empty")

        if code_columns is None:
            code_columns = ()
        elif isinstance(code_columns, str):
            code_columns = (code_columns,)
        for col in code_columns:
            if col not in gdf.columns:
                raise GazetteerLoadFailure(
                    f"{name}: missing attribute column '{col}'")

        geoms = gdf.geometry
        if geoms.isna().any() or geoms.is_empty.any():
            raise GazetteerLoadFailure(f"{name}: null or empty geometries")

        bad_types = set(geoms.geom_type) - _KIND_GEOM_TYPES[kind]
        if bad_types:
            raise GazetteerLoadFailure(
                f"{name}: {kind} layer contains {sorted(bad_types)}")

        invalid = ~geoms.is_valid.to_numpy()
        if invalid.any():
            first = int(np.flatnonzero(invalid)[0])
            reason = shapely.is_valid_reason(geoms.iloc[first])
            raise GazetteerLoadFailure(
                f"{name}: {int(invalid.sum())} invalid geometries "
                f"(first at row {first}: {reason})")

        gdf = gdf.to_crs(config.GAZETTEER_CRS).reset_index(drop=True)

        self.name = name
        self.kind = kind
        self.code_columns = tuple(code_columns)
        self._geoms = np.asarray(gdf.geometry.values, dtype=object)
        self._codes = MappingProxyType({
            col: tuple(None if pd.isna(v) else v for v in gdf[col].tolist())
            for col in self.code_columns
        })
        self._tree = shapely.STRtree(self._geoms)
        if kind == "point":
            self._lons = shapely.get_x(self._geoms)
            self._lats = shapely.get_y(self._geoms)
        else:
            shapely.prepare(self._geoms)
            self._lons = self._lats = None

    def __len__(self):
        return len(self._geoms)

    def __repr__(self):
        return f"GazetteerLayer({self.name!r}, kind={self.kind!r}, n={len(self)})"

    def codes(self, column=None):
        """All codes of *column* (default: the first code column)."""
        return self._code_column(column)

    def _code_column(self, column):
        if not self.code_columns:
            raise GazetteerLoadFailure(
                f"{self.name}: layer has no code column to look up")
        column = column or self.code_columns[0]
        if column not in self._codes:
            raise GazetteerLoadFailure(
                f"{self.name}: layer has no '{column}' code column")
        return self._codes[column]

    def _hits(self, lon, lat, tolerance_m):
        """Sorted index positions of features within tolerance of the point."""
        pt = Point(lon, lat)
        if tolerance_m <= 0:
            idx = self._tree.query(pt)
        else:
            # One degree of longitude shrinks with cos(lat); widen the
            # search box so the exact check below sees every match.
            deg = metres_to_degrees(tolerance_m)
            cos_lat = max(np.cos(np.radians(lat)), 1e-6)
            idx = self._tree.query(shapely.box(
                lon - deg / cos_lat, lat - deg, lon + deg / cos_lat, lat + deg))
        idx = np.sort(idx)
        if len(idx) == 0:
            return idx

        if self.kind == "point":
            if tolerance_m <= 0:
                hit = (self._lons[idx] == lon) & (self._lats[idx] == lat)
            else:
                hit = haversine_m(lon, lat, self._lons[idx],
                                  self._lats[idx]) <= tolerance_m
        elif tolerance_m <= 0:
            hit = shapely.covers(self._geoms[idx], pt)
        else:
            hit = shapely.dwithin(self._geoms[idx], pt,
                                  metres_to_degrees(tolerance_m))
        return idx[np.asarray(hit, dtype=bool)]

    def contains(self, lon, lat, tolerance_m=0):
        """Whether (lon, lat) lies within the layer buffered by tolerance_m.

        Point layers compare great-circle distance; tolerance 0 means exact
        coincidence. Polygon layers test coverage, or distance in degrees of
        arc when a tolerance is given.
        """
        return len(self._hits(lon, lat, tolerance_m)) > 0

    def contains_many(self, lons, lats, tolerance_m=0):
        """contains() for arrays of coordinates, as one bulk tree query.

        Returns a boolean array aligned with *lons*.
        """
        lons = np.asarray(lons, dtype=float)
        lats = np.asarray(lats, dtype=float)
        out = np.zeros(len(lons), dtype=bool)
        if len(lons) == 0:
            return out
        pts = shapely.points(lons, lats)

        if self.kind == "polygon":
            if tolerance_m <= 0:
                src, _ = self._tree.query(pts, predicate="covered_by")
            else:
                src, _ = self._tree.query(pts, predicate="dwithin",
                                          distance=metres_to_degrees(tolerance_m))
        elif tolerance_m <= 0:
            # Two points intersect only when they coincide.
            src, _ = self._tree.query(pts, predicate="intersects")
        else:
            deg = metres_to_degrees(tolerance_m)
            half_width = deg / np.maximum(np.cos(np.radians(lats)), 1e-6)
            boxes = shapely.box(lons - half_width, lats - deg,
                                lons + half_width, lats + deg)
            src, tgt = self._tree.query(boxes)
            near = haversine_m(lons[src], lats[src],
                               self._lons[tgt], self._lats[tgt]) <= tolerance_m
            src = src[near]
        out[src] = True
        return out

    def lookup(self, lon, lat, column=None):
        """Code of the first feature covering (lon, lat), or None."""
        codes = self._code_column(column)
        idx = self._hits(lon, lat, 0)
        return codes[idx[0]] if len(idx) else None

    def lookup_all(self, lon, lat, tolerance_m=0, column=None):
        """Codes of every feature within tolerance_m of (lon, lat)."""
        codes = self._code_column(column)
        return [codes[i] for i in self._hits(lon, lat, tolerance_m)]

    def nearest_distance_m(self, lon, lat):
        """Great-circle distance to the nearest feature of a point layer."""
        if self.kind != "point":
            raise ValueError(f"{self.name}: nearest distance needs a point layer")
        return float(np.min(haversine_m(lon, lat, self._lons, self._lats)))


class Gazetteer:
    """Immutable collection of GazetteerLayers keyed by category.

    Passed explicitly into validators and detectors; there is no module
    level gazetteer state.
    """

    def __init__(self, layers):
        for key, layer in layers.items():
            if not isinstance(layer, GazetteerLayer):
                raise GazetteerLoadFailure(
                    f"{key}: expected a GazetteerLayer, got {type(layer).__name__}")
        self._layers = MappingProxyType(dict(layers))

    def __getitem__(self, category):
        try:
            return self._layers[category]
        except KeyError:
            raise GazetteerLoadFailure(
                f"gazetteer has no '{category}' layer") from None

    def __contains__(self, category):
        return category in self._layers

    def __iter__(self):
        return iter(self._layers)

    def __len__(self):
        return len(self._layers)

    def __repr__(self):
        inner = ", ".join(f"{k}={len(v)}" for k, v in self._layers.items())
        return f"Gazetteer({inner})"

    @property
    def categories(self):
        return tuple(self._layers)

    def summary(self):
        """Feature count per category, for logging."""
        return {k: len(v) for k, v in self._layers.items()}


def points_layer(name, points, code_columns=None, crs=config.GAZETTEER_CRS):
    """Build a point layer from a DataFrame or records with lon/lat columns."""
    df = pd.DataFrame(points)
    for col in ("lon", "lat"):
        if col not in df.columns:
            raise GazetteerLoadFailure(f"{name}: point table has no '{col}' column")
    if df[["lon", "lat"]].isna().any().any():
        raise GazetteerLoadFailure(f"{name}: point table has missing coordinates")
    gdf = gpd.GeoDataFrame(
        df, geometry=gpd.points_from_xy(df["lon"], df["lat"]), crs=crs)
    return GazetteerLayer(name, "point", gdf, code_columns=code_columns)


def gbif_headquarters_layer():
    """Point layer holding the GBIF Secretariat location."""
    hq = config.GBIF_HEADQUARTERS
    return points_layer("gbif", [{"lon": hq["lon"], "lat": hq["lat"],
                                  "name": "GBIF Secretariat"}])


def gazetteer_from_frames(include_gbif=True, **frames):
    """Build a Gazetteer from in-memory GeoDataFrames.

    Keyword names are categories (see config.GAZETTEER_LAYERS); values are
    GeoDataFrames. A land layer is derived from the countries layer when
    only countries are given.

    Raises
    ------
    GazetteerLoadFailure
        On any malformed layer; no partial gazetteer is returned.
    """
    layers = {}
    for category, gdf in frames.items():
        if gdf is None:
            continue
        spec = config.GAZETTEER_LAYERS.get(category)
        if spec is None:
            raise GazetteerLoadFailure(f"unknown gazetteer category '{category}'")
        if not isinstance(gdf, gpd.GeoDataFrame):
            raise GazetteerLoadFailure(f"{category}: expected a GeoDataFrame")
        present = [c for c in spec["code_columns"] if c in gdf.columns]
        if spec["code_columns"] and not present:
            raise GazetteerLoadFailure(
                f"{category}: needs one of the attribute columns "
                f"{list(spec['code_columns'])}")
        layers[category] = GazetteerLayer(
            category, spec["kind"], gdf, code_columns=present)

    if "land" not in layers and "countries" in layers:
        countries = frames["countries"]
        land = gpd.GeoDataFrame(
            geometry=[countries.geometry.union_all()], crs=countries.crs)
        layers["land"] = GazetteerLayer("land", "polygon", land)

    if include_gbif and "gbif" not in layers:
        layers["gbif"] = gbif_headquarters_layer()

    return Gazetteer(layers)


def _find_layer_file(directory, category):
    for ext in config.GAZETTEER_FILE_EXTENSIONS:
        path = os.path.join(directory, category + ext)
        if os.path.isfile(path):
            return path
    return None


def load_gazetteer(directory, layers=None, include_gbif=True):
    """Load reference geometries from *directory* into a Gazetteer.

    Looks for ``<category>.geojson`` (or .gpkg/.shp) for each requested
    category.

    Parameters
    ----------
    directory : str
        Folder holding the reference files.
    layers : iterable of str, optional
        Categories to load. Default: every file present for the categories
        in config.GAZETTEER_LAYERS. Requested categories must exist.
    include_gbif : bool
        Add the GBIF headquarters layer from config.

    Raises
    ------
    GazetteerLoadFailure
        On a missing requested file, an unreadable file, or malformed
        geometry.
    """
    if not os.path.isdir(directory):
        raise GazetteerLoadFailure(f"gazetteer directory not found: {directory}")

    requested = list(layers) if layers is not None else None
    frames = {}
    for category in (requested or config.GAZETTEER_LAYERS):
        if category == "gbif":
            continue
        path = _find_layer_file(directory, category)
        if path is None:
            if requested is not None:
                raise GazetteerLoadFailure(
                    f"no reference file for '{category}' in {directory}")
            continue
        try:
            frame = gpd.read_file(path)
        except Exception as exc:
            raise GazetteerLoadFailure(f"{category}: cannot read {path}: {exc}") from exc
        # Natural Earth ships upper-case attribute names (ISO_A2, ...).
        frames[category] = frame.rename(columns={
            c: c.lower() for c in frame.columns if c != frame.geometry.name})
        log.debug("Read %s (%d features)", path, len(frames[category]))

    gaz = gazetteer_from_frames(include_gbif=include_gbif, **frames)
    log.info("Loaded gazetteer from %s: %s", directory, gaz.summary())
    return gaz
