"""Density, occupancy and optional statistics over the validity mask.

Counts and hours are always summed before dividing, so aggregated densities
are exposure weighted rather than averages of per-cell densities. Optional
statistics are computed through injected strategies (:class:`Capabilities`)
that are negotiated against the configuration before a run.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import pandas as pd
from loguru import logger
from scipy import stats

from density_config import DensityConfig
from density_errors import CapabilityUnavailableWarning, DroppedCountWarning
from density_table import CATEGORIES, CATEGORY_1200, HOURS_KEYS, DensityTable
from grid_model import NM_PER_FT
from validity_filter import ValidityMask

Quantile = Callable[[float, np.ndarray], np.ndarray]
GroupedMax = Callable[[np.ndarray, np.ndarray, int], np.ndarray]


# ------------------------ Capability strategies ------------------------


def numpy_grouped_max(keys: np.ndarray, values: np.ndarray, size: int) -> np.ndarray:
    """Portable grouped maximum of non-negative values."""

    out = np.zeros(size, dtype=float)
    np.maximum.at(out, np.asarray(keys, dtype=int), np.asarray(values, dtype=float))
    return out


def pandas_grouped_max(keys: np.ndarray, values: np.ndarray, size: int) -> np.ndarray:
    """Grouped maximum of non-negative values using a pandas groupby reduction."""

    out = np.zeros(size, dtype=float)
    if len(keys):
        grouped = pd.Series(np.asarray(values, dtype=float)).groupby(np.asarray(keys, dtype=int)).max()
        out[grouped.index.to_numpy()] = grouped.to_numpy()
    return out


@dataclass(frozen=True)
class Capabilities:
    """Numeric strategies for the optional statistics.

    ``ci_quantile`` is a chi-square percent point function ``(q, df)``;
    without it the confidence bound cannot be computed. ``grouped_max`` is an
    accelerated grouped maximum; without it :func:`numpy_grouped_max` is used.
    """

    ci_quantile: Optional[Quantile] = None
    grouped_max: Optional[GroupedMax] = None


def default_capabilities() -> Capabilities:
    return Capabilities(ci_quantile=stats.chi2.ppf, grouped_max=pandas_grouped_max)


MISSING_QUANTILE_MESSAGE = (
    "An inverse CDF is required to compute the upper bound of the confidence "
    "interval. Not setting compute_ub to true."
)


def announce_capabilities(capabilities: Capabilities) -> None:
    """Report missing strategies once, when a dataset is set up with them."""

    if capabilities.ci_quantile is None:
        logger.warning(MISSING_QUANTILE_MESSAGE)
        warnings.warn(MISSING_QUANTILE_MESSAGE, CapabilityUnavailableWarning, stacklevel=3)
    if capabilities.grouped_max is None:
        logger.info("No accelerated grouped maximum available; using the portable reduction")


def negotiate_capabilities(
    config: DensityConfig, capabilities: Capabilities, announced: bool = False
) -> DensityConfig:
    """Disable toggles whose numeric dependency is missing, warning instead of failing.

    With ``announced`` the missing strategies were already reported by
    :func:`announce_capabilities` and the downgrade is only logged at debug.
    """

    if config.compute_ub and capabilities.ci_quantile is None:
        if announced:
            logger.debug("compute_ub disabled: no inverse CDF available")
        else:
            logger.warning(MISSING_QUANTILE_MESSAGE)
            warnings.warn(MISSING_QUANTILE_MESSAGE, CapabilityUnavailableWarning, stacklevel=2)
        config = config.with_changes(compute_ub=False)
    return config


# ------------------------ Closed-form helpers ------------------------


def category_weights(config: DensityConfig) -> np.ndarray:
    """Per-category multipliers; 1200-code traffic carries the noncooperative share."""

    weights = np.ones(len(CATEGORIES), dtype=float)
    if config.process_noncoop:
        weights[CATEGORY_1200] += config.noncoop_factor
    return weights


def poisson_upper_bound(
    count: np.ndarray,
    hours: np.ndarray,
    cialpha: float,
    ind_obs_per_hr: float,
    quantile: Quantile,
) -> np.ndarray:
    """Upper confidence bound on mean occupancy [AC] from AC-hours and hours.

    ``count * ind_obs_per_hr`` independent observations over
    ``hours * ind_obs_per_hr`` intervals; exact (Garwood) Poisson bound.
    """

    count, hours = np.broadcast_arrays(np.asarray(count, dtype=float), np.asarray(hours, dtype=float))
    k = count * ind_obs_per_hr
    n = hours * ind_obs_per_hr
    observed = n > 0
    upper_events = np.asarray(quantile(1.0 - cialpha / 2.0, 2.0 * k + 2.0), dtype=float) / 2.0
    return np.where(observed, upper_events / np.where(observed, n, 1.0), 0.0)


# ------------------------ Results ------------------------


@dataclass(frozen=True)
class DensityAggregate:
    """Summed counts [AC hr], exposure [NM^3 hr] and observed hours."""

    count: float = 0.0
    exposure: float = 0.0
    hours: float = 0.0

    def __add__(self, other: "DensityAggregate") -> "DensityAggregate":
        return DensityAggregate(
            self.count + other.count,
            self.exposure + other.exposure,
            self.hours + other.hours,
        )

    @property
    def density(self) -> float:
        return self.count / self.exposure if self.exposure > 0 else 0.0

    @property
    def mean_volume(self) -> float:
        return self.exposure / self.hours if self.hours > 0 else 0.0


@dataclass(frozen=True, eq=False)
class CellDensity:
    """Per-cell, per-altitude-bin density for the selected window.

    Arrays are shaped (rows, cols, altitude bins); the ``*_by_category``
    arrays carry a leading category axis. Density-like outputs are NaN
    outside the validity mask and zero for valid cells with no exposure.
    ``usable`` marks the valid bins with positive exposure; only these
    contribute counts to aggregates.
    """

    valid: np.ndarray
    usable: np.ndarray
    hours: np.ndarray
    volume_nm3: np.ndarray
    lower_ft: np.ndarray
    upper_ft: np.ndarray
    coverage_factor: np.ndarray
    category_weight: np.ndarray
    count_by_category: np.ndarray
    density_by_category: np.ndarray
    count: np.ndarray
    density: np.ndarray
    density_ub: Optional[np.ndarray] = None
    density_std: Optional[np.ndarray] = None
    max_count: Optional[np.ndarray] = None
    max_density: Optional[np.ndarray] = None

    @property
    def exposure(self) -> np.ndarray:
        return self.hours[:, :, None] * self.volume_nm3

    def aggregate(self, alt_idx: Optional[int] = None) -> DensityAggregate:
        valid = self.valid if alt_idx is None else self.valid[:, :, alt_idx]
        usable = self.usable if alt_idx is None else self.usable[:, :, alt_idx]
        count = self.count if alt_idx is None else self.count[:, :, alt_idx]
        exposure = self.exposure if alt_idx is None else self.exposure[:, :, alt_idx]
        hours = np.broadcast_to(self.hours[:, :, None], self.valid.shape)
        hours = hours if alt_idx is None else hours[:, :, alt_idx]
        return DensityAggregate(
            float(count[usable].sum()),
            float(exposure[valid].sum()),
            float(hours[valid].sum()),
        )


# ------------------------ Engine ------------------------


def _hour_bin_occupancy(
    mask: ValidityMask, coverage_factor: np.ndarray, weights: np.ndarray
) -> pd.DataFrame:
    """Occupancy per (cell, altitude bin, hour bin), summed over categories."""

    keys = list(HOURS_KEYS)
    hours = mask.hours_records.loc[mask.hours_records["hours"] > 0, keys + ["hours"]]
    merged = mask.counts.merge(hours, on=keys, how="inner")
    if merged.empty:
        return pd.DataFrame(columns=["row", "col", "alt_idx", "occupancy", "peak"])

    factor = coverage_factor[merged["row"].to_numpy(), merged["col"].to_numpy()]
    scale = weights[merged["category"].to_numpy()] * factor
    merged["occupancy"] = merged["count"].to_numpy(dtype=float) * scale / merged["hours"].to_numpy(dtype=float)
    if "maxcount" in merged.columns:
        merged["peak"] = merged["maxcount"].to_numpy(dtype=float) * scale
    else:
        merged["peak"] = merged["occupancy"]
    return merged.groupby(["row", "col", "alt_idx"] + keys[2:], as_index=False)[["occupancy", "peak"]].sum()


def _occupancy_std(mask: ValidityMask, occupancy: pd.DataFrame) -> np.ndarray:
    """Sample standard deviation of occupancy over observed hour bins (ddof=1)."""

    nr, nc, nh = mask.shape
    observed = mask.hours_records.loc[mask.hours_records["hours"] > 0]
    n_bins = np.zeros((nr, nc), dtype=float)
    np.add.at(n_bins, (observed["row"].to_numpy(), observed["col"].to_numpy()), 1.0)

    sum_x = np.zeros((nr, nc, nh), dtype=float)
    sum_x2 = np.zeros((nr, nc, nh), dtype=float)
    if not occupancy.empty:
        idx = (
            occupancy["row"].to_numpy(dtype=int),
            occupancy["col"].to_numpy(dtype=int),
            occupancy["alt_idx"].to_numpy(dtype=int),
        )
        x = occupancy["occupancy"].to_numpy(dtype=float)
        np.add.at(sum_x, idx, x)
        np.add.at(sum_x2, idx, x * x)

    n = n_bins[:, :, None]
    enough = n > 1
    safe_n = np.where(enough, n, 2.0)
    var = (sum_x2 - sum_x**2 / safe_n) / (safe_n - 1.0)
    return np.where(enough, np.sqrt(np.maximum(var, 0.0)), 0.0)


def _occupancy_max(mask: ValidityMask, occupancy: pd.DataFrame, grouped_max: GroupedMax) -> np.ndarray:
    nr, nc, nh = mask.shape
    if occupancy.empty:
        return np.zeros((nr, nc, nh), dtype=float)
    flat = np.ravel_multi_index(
        (
            occupancy["row"].to_numpy(dtype=int),
            occupancy["col"].to_numpy(dtype=int),
            occupancy["alt_idx"].to_numpy(dtype=int),
        ),
        (nr, nc, nh),
    )
    return grouped_max(flat, occupancy["peak"].to_numpy(dtype=float), nr * nc * nh).reshape(nr, nc, nh)


def compute_density(
    mask: ValidityMask,
    table: DensityTable,
    config: DensityConfig,
    capabilities: Capabilities,
) -> CellDensity:
    grid = table.grid
    nr, nc, nh = mask.shape
    window = np.ix_(mask.rows, mask.cols)

    coverage = table.coverage[window]
    if config.correct_coverage:
        positive = coverage > 0
        coverage_factor = np.where(positive, 1.0 / np.where(positive, coverage, 1.0), 1.0)
    else:
        coverage_factor = np.ones((nr, nc), dtype=float)

    lower, upper = grid.layer_bounds_msl(table.terrain_ft[window], config.altitude_rule)
    thickness = np.maximum(upper - lower, 0.0)
    volume = grid.row_area_nm2[mask.rows][:, None, None] * thickness * NM_PER_FT
    exposure = mask.hours[:, :, None] * volume

    raw = np.zeros((len(CATEGORIES), nr, nc, nh), dtype=float)
    counts = mask.counts
    if not counts.empty:
        np.add.at(
            raw,
            (
                counts["category"].to_numpy(dtype=int),
                counts["row"].to_numpy(dtype=int),
                counts["col"].to_numpy(dtype=int),
                counts["alt_idx"].to_numpy(dtype=int),
            ),
            counts["count"].to_numpy(dtype=float),
        )
    count_by_category = raw * coverage_factor[None, :, :, None]

    valid = mask.valid
    usable = valid & (exposure > 0)
    safe_exposure = np.where(usable, exposure, 1.0)
    density_by_category = np.where(usable[None], count_by_category / safe_exposure[None], 0.0)

    weights = category_weights(config)
    count = np.tensordot(weights, count_by_category, axes=1)

    dropped = float(count[valid & ~usable].sum())
    if dropped > 0:
        message = (
            f"{dropped:g} AC-hours fall in altitude bins of zero thickness or cells without "
            f"observed hours (altitude rule {config.altitude_rule!r}); they are left out of the density"
        )
        logger.warning(message)
        warnings.warn(message, DroppedCountWarning, stacklevel=2)
    density = np.where(valid, np.tensordot(weights, density_by_category, axes=1), np.nan)

    density_ub = density_std = max_count = max_density = None
    if config.compute_ub and capabilities.ci_quantile is not None:
        hours = np.broadcast_to(mask.hours[:, :, None], count.shape)
        upper_occupancy = poisson_upper_bound(
            count, hours, config.cialpha, config.ci_ind_obs_per_hr, capabilities.ci_quantile
        )
        density_ub = np.where(
            valid,
            np.where(volume > 0, upper_occupancy / np.where(volume > 0, volume, 1.0), 0.0),
            np.nan,
        )

    if config.compute_std or config.compute_max:
        occupancy = _hour_bin_occupancy(mask, coverage_factor, weights)
        safe_volume = np.where(volume > 0, volume, 1.0)
        if config.compute_std:
            std = _occupancy_std(mask, occupancy)
            density_std = np.where(valid, np.where(volume > 0, std / safe_volume, 0.0), np.nan)
        if config.compute_max:
            reducer = capabilities.grouped_max or numpy_grouped_max
            max_count = np.where(usable, _occupancy_max(mask, occupancy, reducer), 0.0)
            max_density = np.where(valid, np.where(volume > 0, max_count / safe_volume, 0.0), np.nan)

    logger.debug(
        "Density computed for {} valid cell-altitude bins ({} with exposure)",
        int(valid.sum()),
        int(usable.sum()),
    )
    return CellDensity(
        valid=valid,
        usable=usable,
        hours=mask.hours,
        volume_nm3=volume,
        lower_ft=lower,
        upper_ft=upper,
        coverage_factor=coverage_factor,
        category_weight=weights,
        count_by_category=count_by_category,
        density_by_category=density_by_category,
        count=count,
        density=density,
        density_ub=density_ub,
        density_std=density_std,
        max_count=max_count,
        max_density=max_density,
    )
