"""Immutable configuration value objects for density and collision-rate runs."""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple, Union

import numpy as np
from loguru import logger

from density_errors import (
    ArgumentError,
    ConfigurationError,
    RangeError,
    TrackAltitudeWarning,
)
from density_table import CATEGORIES, CATEGORY_1200, DAYS, MONTHS
from grid_model import ALTITUDE_RULE_AGL_FIRST, ALTITUDE_RULES, NM_PER_FT, S_PER_HR, GridSpec

# ---------------------------- Defaults ----------------------------

# Collision cylinder: RQ-4A with King Air
DEFAULT_MAC_R_FT = 83.2
DEFAULT_MAC_H_FT = 14.4

DEFAULT_NONCOOP_FACTOR = 0.23
DEFAULT_NO_COVERAGE_THRESHOLD = 0.2
DEFAULT_CIALPHA = 0.05
# 6 minutes roughly corresponds to the time for GA aircraft to traverse 10 NM
DEFAULT_CI_IND_OBS_PER_HR = 10.0

MAX_OWNSPEED_KTS = 1200.0
MIN_PLAUSIBLE_ALTITUDE_FT = -2000.0


def _int_tuple(name: str, values: Iterable[object], lo: int, hi: Optional[int] = None) -> Tuple[int, ...]:
    out = []
    for value in values:
        if isinstance(value, bool) or int(value) != value:
            raise ConfigurationError(f"{name} values must be integers, got {value!r}")
        value = int(value)
        if value < lo or (hi is not None and value > hi):
            bound = f"[{lo}, {hi}]" if hi is not None else f">= {lo}"
            raise ConfigurationError(f"{name} value {value} must be {bound}")
        out.append(value)
    if not out:
        raise ConfigurationError(f"{name} must select at least one value")
    return tuple(sorted(set(out)))


@dataclass(frozen=True)
class AreaBounds:
    """Geographic evaluation window [deg]."""

    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    def __post_init__(self) -> None:
        for name in ("lat_min", "lat_max", "lon_min", "lon_max"):
            value = float(getattr(self, name))
            if not np.isfinite(value):
                raise ConfigurationError(f"Area {name} must be finite")
            object.__setattr__(self, name, value)
        if self.lat_min > self.lat_max or self.lon_min > self.lon_max:
            raise ConfigurationError("Area limits must be ordered (min, then max)")

    @classmethod
    def from_limits(cls, latitude_limit: Tuple[float, float], longitude_limit: Tuple[float, float]) -> "AreaBounds":
        if len(latitude_limit) != 2 or len(longitude_limit) != 2:
            raise ConfigurationError("LatitudeLimit and LongitudeLimit must each hold two values")
        return cls(latitude_limit[0], latitude_limit[1], longitude_limit[0], longitude_limit[1])


@dataclass(frozen=True, eq=False)
class Track:
    """Time-ordered own-aircraft samples."""

    time_s: np.ndarray
    latitude_deg: np.ndarray
    longitude_deg: np.ndarray
    altitude_msl_ft: np.ndarray
    speed_kts: np.ndarray

    def __post_init__(self) -> None:
        names = ("time_s", "latitude_deg", "longitude_deg", "altitude_msl_ft", "speed_kts")
        arrays = []
        for name in names:
            arr = np.array(getattr(self, name), dtype=float).reshape(-1)
            if not np.all(np.isfinite(arr)):
                raise ConfigurationError(f"Track {name} contains non-finite values")
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)
            arrays.append(arr)

        if len({arr.size for arr in arrays}) != 1:
            raise ConfigurationError("Track fields must all have the same number of samples")
        if self.time_s.size < 2:
            raise ArgumentError("Track needs at least two samples to define an interval")
        if np.any(np.diff(self.time_s) <= 0):
            raise ConfigurationError("Track time must be monotonically increasing")
        if np.any(self.speed_kts < 0):
            raise ConfigurationError("Track speed must be non-negative")
        if np.any(self.altitude_msl_ft < MIN_PLAUSIBLE_ALTITUDE_FT):
            message = f"Track altitude detected less than {MIN_PLAUSIBLE_ALTITUDE_FT:g} ft MSL: verify that this is correct"
            logger.warning(message)
            warnings.warn(message, TrackAltitudeWarning, stacklevel=3)

    @property
    def size(self) -> int:
        return int(self.time_s.size)

    @property
    def duration_hr(self) -> float:
        return float(self.time_s[-1] - self.time_s[0]) / S_PER_HR


@dataclass(frozen=True)
class CollisionGeometry:
    """Conflict cylinder: sum of half wing spans and sum of half heights [ft]."""

    mac_r_ft: float = DEFAULT_MAC_R_FT
    mac_h_ft: float = DEFAULT_MAC_H_FT

    def __post_init__(self) -> None:
        for name in ("mac_r_ft", "mac_h_ft"):
            value = float(getattr(self, name))
            if not (np.isfinite(value) and value > 0):
                raise ConfigurationError(f"{name} must be a positive number")
            object.__setattr__(self, name, value)

    @property
    def cross_section_nm2(self) -> float:
        """Swept cross-section 2 * macR * macH [NM^2]."""
        return 2.0 * (self.mac_r_ft * NM_PER_FT) * (self.mac_h_ft * NM_PER_FT)


OwnSpeed = Union[None, float, Tuple[float, ...]]


@dataclass(frozen=True)
class DensityConfig:
    """Filters, options and geometry for one evaluation.

    ``track`` selects track mode; otherwise the ``area`` (or the whole grid
    when ``area`` is None) is evaluated. ``None`` for ``timeofday`` and
    ``height`` selects every bin of the grid.
    """

    area: Optional[AreaBounds] = None
    track: Optional[Track] = None
    timeofday: Optional[Tuple[int, ...]] = None
    monthofyear: Tuple[int, ...] = MONTHS
    dayofweek: Tuple[int, ...] = DAYS
    ac_category: Tuple[int, ...] = CATEGORIES
    height: Optional[Tuple[int, ...]] = None
    process_noncoop: bool = False
    noncoop_factor: float = DEFAULT_NONCOOP_FACTOR
    ownspeed: OwnSpeed = None
    geometry: CollisionGeometry = field(default_factory=CollisionGeometry)
    correct_coverage: bool = True
    no_coverage_threshold: float = DEFAULT_NO_COVERAGE_THRESHOLD
    compute_ub: bool = True
    compute_max: bool = True
    compute_std: bool = False
    cialpha: float = DEFAULT_CIALPHA
    ci_ind_obs_per_hr: float = DEFAULT_CI_IND_OBS_PER_HR
    airspace_classes: Optional[Tuple[str, ...]] = None
    airspace_threshold: float = 0.0
    altitude_rule: str = ALTITUDE_RULE_AGL_FIRST

    def __post_init__(self) -> None:
        if self.area is not None and self.track is not None:
            raise ConfigurationError("area and track are mutually exclusive; set only one")
        if self.area is not None and not isinstance(self.area, AreaBounds):
            raise ConfigurationError("area must be an AreaBounds")
        if self.track is not None and not isinstance(self.track, Track):
            raise ConfigurationError("track must be a Track")

        if self.timeofday is not None:
            object.__setattr__(self, "timeofday", _int_tuple("timeofday", self.timeofday, 0))
        object.__setattr__(self, "monthofyear", _int_tuple("monthofyear", self.monthofyear, MONTHS[0], MONTHS[-1]))
        object.__setattr__(self, "dayofweek", _int_tuple("dayofweek", self.dayofweek, DAYS[0], DAYS[-1]))
        object.__setattr__(self, "ac_category", _int_tuple("ac_category", self.ac_category, CATEGORIES[0], CATEGORIES[-1]))
        if self.height is not None:
            object.__setattr__(self, "height", _int_tuple("height", self.height, 0))

        if self.process_noncoop and CATEGORY_1200 not in self.ac_category:
            raise ConfigurationError("Must process 1200-code with noncooperatives (ac_category must include 1)")
        if not self.noncoop_factor >= 0:
            raise ConfigurationError("noncoop_factor must be non-negative")

        if self.ownspeed is not None:
            speeds = np.atleast_1d(np.asarray(self.ownspeed, dtype=float))
            if speeds.ndim != 1 or speeds.size == 0:
                raise ConfigurationError("ownspeed must be a scalar or a one-dimensional sequence")
            if np.any(~np.isfinite(speeds)) or np.any(speeds <= 0) or np.any(speeds > MAX_OWNSPEED_KTS):
                raise ConfigurationError(f"ownspeed must lie in (0, {MAX_OWNSPEED_KTS:g}] kts")
            object.__setattr__(self, "ownspeed", tuple(float(v) for v in speeds))

        if not isinstance(self.geometry, CollisionGeometry):
            raise ConfigurationError("geometry must be a CollisionGeometry")
        if not 0.0 <= self.no_coverage_threshold <= 1.0:
            raise ConfigurationError("no_coverage_threshold must lie in [0, 1]")
        if not 0.0 < self.cialpha < 1.0:
            raise ConfigurationError("cialpha must lie in (0, 1)")
        if not self.ci_ind_obs_per_hr > 0:
            raise ConfigurationError("ci_ind_obs_per_hr must be positive")
        if self.airspace_classes is not None:
            classes = tuple(str(c) for c in self.airspace_classes)
            if not classes:
                raise ConfigurationError("airspace_classes must name at least one class")
            object.__setattr__(self, "airspace_classes", classes)
        if not 0.0 <= self.airspace_threshold < 1.0:
            raise ConfigurationError("airspace_threshold must lie in [0, 1)")
        if self.altitude_rule not in ALTITUDE_RULES:
            raise ConfigurationError(f"altitude_rule must be one of {ALTITUDE_RULES}")

    @property
    def process_track(self) -> bool:
        return self.track is not None

    def with_changes(self, **changes) -> "DensityConfig":
        """Return a re-validated copy with ``changes`` applied.

        Setting ``track`` clears ``area`` and vice versa unless both are given.
        """

        if "track" in changes and "area" not in changes and changes["track"] is not None:
            changes["area"] = None
        if "area" in changes and "track" not in changes and changes["area"] is not None:
            changes["track"] = None
        return dataclasses.replace(self, **changes)

    def validate_against(self, grid: GridSpec) -> None:
        """Checks that depend on the loaded grid."""

        if self.timeofday is not None and max(self.timeofday) > grid.t_num - 1:
            raise ConfigurationError(f"timeofday must be at most {grid.t_num - 1}")
        if self.height is not None and max(self.height) > grid.h_num - 1:
            raise ConfigurationError(f"height must be at most {grid.h_num - 1}")
        if self.ownspeed is not None and len(self.ownspeed) not in (1, grid.h_num):
            raise ConfigurationError(
                f"ownspeed must be a scalar or hold one value per altitude bin ({grid.h_num})"
            )
        if self.area is not None:
            for value in (self.area.lat_min, self.area.lat_max):
                if not grid.south_lat <= value <= grid.north_lat:
                    raise RangeError("latitude limit", value, grid.south_lat, grid.north_lat)
            for value in (self.area.lon_min, self.area.lon_max):
                if not grid.west_lon <= value <= grid.east_lon:
                    raise RangeError("longitude limit", value, grid.west_lon, grid.east_lon)
