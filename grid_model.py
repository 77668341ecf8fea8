"""Spatial, temporal and altitude binning of the gridded density data.

Latitude rows are counted southward from the north origin and longitude
columns eastward from the west origin, ``bins_per_degree`` cells per degree.
Altitude bins are built from the job's AGL and MSL limits: the AGL bins, one
transition bin from the top AGL edge to the first MSL edge, and the MSL bins.
Because AGL bins follow the terrain, every per-cell altitude question is
answered through :meth:`GridSpec.layer_bounds_msl`.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from functools import cached_property
from typing import Dict, List, Tuple

import numpy as np
from density_errors import ConfigurationError, RangeError

# ---------------------------- Constants ----------------------------

FT_PER_M = 3.28084
M_PER_NM = 1852.0
NM_PER_FT = 0.000164578834
S_PER_HR = 3600.0

# WGS84 ellipsoid
WGS84_A_M = 6378137.0
WGS84_F = 1.0 / 298.257223563

ALTITUDE_RULE_AGL_FIRST = "agl_first"
ALTITUDE_RULE_MSL_FIRST = "msl_first"
ALTITUDE_RULES = (ALTITUDE_RULE_AGL_FIRST, ALTITUDE_RULE_MSL_FIRST)

JOB_SCALAR_KEYS = (
    "BINS_PER_DEGREE",
    "NORTH_LAT",
    "WEST_LON",
    "GRID_X_NUM",
    "GRID_Y_NUM",
    "GRID_T_NUM",
)
JOB_LIST_KEYS = ("AGL_LIMS", "MSL_LIMS")

_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


def _zone_area_m2_per_rad(lat_deg: np.ndarray) -> np.ndarray:
    """Ellipsoid surface area between the equator and ``lat_deg`` per radian of longitude."""

    e2 = WGS84_F * (2.0 - WGS84_F)
    e = math.sqrt(e2)
    b = WGS84_A_M * (1.0 - WGS84_F)
    s = np.sin(np.radians(lat_deg))
    return b**2 * (s / (2.0 * (1.0 - e2 * s**2)) + np.arctanh(e * s) / (2.0 * e))


def _check_increasing(name: str, values: Tuple[float, ...]) -> None:
    if len(values) == 0:
        raise ConfigurationError(f"{name} must contain at least one altitude limit")
    if len(values) > 1 and np.any(np.diff(values) <= 0):
        raise ConfigurationError(f"{name} must be strictly increasing, got {list(values)}")


@dataclass(frozen=True)
class GridSpec:
    """Immutable description of the density grid built from job metadata."""

    bins_per_degree: float
    north_lat: float
    west_lon: float
    x_num: int
    y_num: int
    t_num: int
    agl_lims: Tuple[float, ...]
    msl_lims: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "agl_lims", tuple(float(v) for v in self.agl_lims))
        object.__setattr__(self, "msl_lims", tuple(float(v) for v in self.msl_lims))

        if not self.bins_per_degree > 0:
            raise ConfigurationError("BINS_PER_DEGREE must be positive")
        for name in ("x_num", "y_num", "t_num"):
            value = getattr(self, name)
            if int(value) != value or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
            object.__setattr__(self, name, int(value))
        if not -90.0 < self.north_lat <= 90.0:
            raise ConfigurationError(f"NORTH_LAT {self.north_lat} is not a latitude")

        _check_increasing("AGL_LIMS", self.agl_lims)
        _check_increasing("MSL_LIMS", self.msl_lims)

    # ------------------------ Job metadata ------------------------

    @classmethod
    def from_job_text(cls, text: str) -> "GridSpec":
        """Parse ``NAME VALUE`` job metadata, e.g. ``AGL_LIMS [0 500 1200]``."""

        values: Dict[str, List[float]] = {}
        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith(("#", "%")):
                continue
            parts = line.split(None, 1)
            if len(parts) != 2:
                raise ConfigurationError(f"Job metadata line {lineno} has no value: {raw!r}")
            name, value = parts
            numbers = _NUMBER_RE.findall(value)
            if not numbers:
                raise ConfigurationError(f"Job metadata line {lineno} has no numeric value: {raw!r}")
            values[name.upper()] = [float(n) for n in numbers]

        missing = [key for key in JOB_SCALAR_KEYS + JOB_LIST_KEYS if key not in values]
        if missing:
            raise ConfigurationError(f"Job metadata is missing {', '.join(missing)}")
        for key in JOB_SCALAR_KEYS:
            if len(values[key]) != 1:
                raise ConfigurationError(f"Job metadata {key} must be a single value")

        return cls(
            bins_per_degree=values["BINS_PER_DEGREE"][0],
            north_lat=values["NORTH_LAT"][0],
            west_lon=values["WEST_LON"][0],
            x_num=values["GRID_X_NUM"][0],
            y_num=values["GRID_Y_NUM"][0],
            t_num=values["GRID_T_NUM"][0],
            agl_lims=tuple(values["AGL_LIMS"]),
            msl_lims=tuple(values["MSL_LIMS"]),
        )

    # ------------------------ Derived geometry ------------------------

    @property
    def h_num(self) -> int:
        return len(self.agl_lims) + len(self.msl_lims) - 1

    @property
    def south_lat(self) -> float:
        return self.north_lat - self.y_num / self.bins_per_degree

    @property
    def east_lon(self) -> float:
        return self.west_lon + self.x_num / self.bins_per_degree

    @cached_property
    def lat_cutpoints(self) -> np.ndarray:
        """Row boundaries, descending from the north origin (``y_num + 1`` values)."""
        return _readonly(self.north_lat - np.arange(self.y_num + 1) / self.bins_per_degree)

    @cached_property
    def lon_cutpoints(self) -> np.ndarray:
        """Column boundaries, ascending from the west origin (``x_num + 1`` values)."""
        return _readonly(self.west_lon + np.arange(self.x_num + 1) / self.bins_per_degree)

    @cached_property
    def lat_midpoints(self) -> np.ndarray:
        cut = self.lat_cutpoints
        return _readonly(0.5 * (cut[:-1] + cut[1:]))

    @cached_property
    def lon_midpoints(self) -> np.ndarray:
        cut = self.lon_cutpoints
        return _readonly(0.5 * (cut[:-1] + cut[1:]))

    @cached_property
    def altitude_edges_ft(self) -> np.ndarray:
        return _readonly(np.asarray(self.agl_lims + self.msl_lims, dtype=float))

    @cached_property
    def altitude_bin_midpoints_ft(self) -> np.ndarray:
        """Nominal bin centres in each bin's own reference frame."""
        edges = self.altitude_edges_ft
        return _readonly(0.5 * (edges[:-1] + edges[1:]))

    @cached_property
    def row_area_nm2(self) -> np.ndarray:
        """Cell area on the WGS84 ellipsoid for each row [NM^2].

        Cells are bounded by meridians and parallels, so the area of a row is
        the difference of the zone areas at its bounding latitudes.
        """

        width_rad = math.radians(1.0 / self.bins_per_degree)
        zone = _zone_area_m2_per_rad(self.lat_cutpoints)
        areas = (zone[:-1] - zone[1:]) * width_rad / M_PER_NM**2
        return _readonly(np.abs(areas))

    # ------------------------ Horizontal lookups ------------------------

    def row_for_lat(self, lat: float) -> int:
        if not self.south_lat <= lat <= self.north_lat:
            raise RangeError("latitude", lat, self.south_lat, self.north_lat)
        row = int(math.floor((self.north_lat - lat) * self.bins_per_degree))
        return min(row, self.y_num - 1)

    def col_for_lon(self, lon: float) -> int:
        if not self.west_lon <= lon <= self.east_lon:
            raise RangeError("longitude", lon, self.west_lon, self.east_lon)
        col = int(math.floor((lon - self.west_lon) * self.bins_per_degree))
        return min(col, self.x_num - 1)

    def cell_index_for_latlon(self, lat: float, lon: float) -> Tuple[int, int]:
        return self.row_for_lat(lat), self.col_for_lon(lon)

    def cell_indices(
        self, lats: np.ndarray, lons: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Vectorised lookup returning (rows, cols, inside); outside entries are -1."""

        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        inside = (
            (lats >= self.south_lat)
            & (lats <= self.north_lat)
            & (lons >= self.west_lon)
            & (lons <= self.east_lon)
        )
        rows = np.floor((self.north_lat - lats) * self.bins_per_degree)
        cols = np.floor((lons - self.west_lon) * self.bins_per_degree)
        rows = np.where(inside, np.clip(rows, 0, self.y_num - 1), -1).astype(int)
        cols = np.where(inside, np.clip(cols, 0, self.x_num - 1), -1).astype(int)
        return rows, cols, inside

    def cell_bounds(self, row: int, col: int) -> Tuple[float, float, float, float]:
        """Return (lat_min, lat_max, lon_min, lon_max) of a cell."""

        if not 0 <= row < self.y_num:
            raise RangeError("row", row, 0, self.y_num - 1)
        if not 0 <= col < self.x_num:
            raise RangeError("column", col, 0, self.x_num - 1)
        lat_cut, lon_cut = self.lat_cutpoints, self.lon_cutpoints
        return (
            float(lat_cut[row + 1]),
            float(lat_cut[row]),
            float(lon_cut[col]),
            float(lon_cut[col + 1]),
        )

    def rows_overlapping(self, lat_min: float, lat_max: float) -> np.ndarray:
        """Rows whose extent overlaps [lat_min, lat_max] with positive width."""

        if lat_max < self.south_lat or lat_min > self.north_lat:
            return np.empty(0, dtype=int)
        if lat_min == lat_max:
            return np.array([self.row_for_lat(lat_min)])
        cut = self.lat_cutpoints
        return np.nonzero((cut[1:] < lat_max) & (cut[:-1] > lat_min))[0]

    def cols_overlapping(self, lon_min: float, lon_max: float) -> np.ndarray:
        """Columns whose extent overlaps [lon_min, lon_max] with positive width."""

        if lon_max < self.west_lon or lon_min > self.east_lon:
            return np.empty(0, dtype=int)
        if lon_min == lon_max:
            return np.array([self.col_for_lon(lon_min)])
        cut = self.lon_cutpoints
        return np.nonzero((cut[:-1] < lon_max) & (cut[1:] > lon_min))[0]

    # ------------------------ Altitude lookups ------------------------

    def layer_bounds_msl(
        self, terrain_ft, rule: str = ALTITUDE_RULE_AGL_FIRST
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return (lower, upper) MSL bounds [ft] of every altitude bin.

        ``terrain_ft`` may be a scalar or an array; the bin axis is appended
        last. With ``agl_first`` the AGL layer keeps its full thickness and the
        MSL bins are truncated below by its top. With ``msl_first`` the MSL
        bins keep their thickness and the AGL bins are truncated at the first
        MSL edge. Truncated bins can have zero thickness.
        """

        if rule not in ALTITUDE_RULES:
            raise ConfigurationError(f"Unknown altitude rule {rule!r}; expected one of {ALTITUDE_RULES}")

        terrain = np.asarray(terrain_ft, dtype=float)[..., None]
        agl = np.asarray(self.agl_lims, dtype=float)
        msl = np.asarray(self.msl_lims, dtype=float)
        agl_edges = terrain + agl
        agl_top = agl_edges[..., -1:]

        if rule == ALTITUDE_RULE_AGL_FIRST:
            trans_lower = agl_top
            trans_upper = np.maximum(msl[0], agl_top)
            msl_edges = np.maximum(msl, agl_top)
        else:
            agl_edges = np.minimum(agl_edges, msl[0])
            trans_lower = agl_edges[..., -1:]
            trans_upper = np.full_like(trans_lower, msl[0])
            msl_edges = np.broadcast_to(msl, terrain.shape[:-1] + msl.shape)

        lower = np.concatenate([agl_edges[..., :-1], trans_lower, msl_edges[..., :-1]], axis=-1)
        upper = np.concatenate([agl_edges[..., 1:], trans_upper, msl_edges[..., 1:]], axis=-1)
        return lower, upper

    def layer_thickness_ft(self, terrain_ft, rule: str = ALTITUDE_RULE_AGL_FIRST) -> np.ndarray:
        lower, upper = self.layer_bounds_msl(terrain_ft, rule)
        return np.maximum(upper - lower, 0.0)

    def altitude_bin(
        self,
        altitude_ft: float,
        terrain_ft: float = 0.0,
        rule: str = ALTITUDE_RULE_AGL_FIRST,
    ) -> int:
        """Resolve an MSL altitude to its bin index over the given terrain."""

        lower, upper = self.layer_bounds_msl(terrain_ft, rule)
        floor_ft, ceiling_ft = float(lower[0]), float(upper[-1])
        if not floor_ft <= altitude_ft <= ceiling_ft:
            raise RangeError("altitude", altitude_ft, floor_ft, ceiling_ft)
        inside = np.nonzero((lower <= altitude_ft) & (altitude_ft < upper))[0]
        if inside.size == 0:
            return self.h_num - 1
        return int(inside[0])
