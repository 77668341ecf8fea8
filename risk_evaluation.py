"""Area and track evaluation of the expected midair-collision rate.

Both evaluators turn density [AC/NM^3] into an encounter rate [AC/hr] by
sweeping the conflict cylinder's cross-section ``2 * macR * macH`` through the
traffic field at the relative speed [kts]. :func:`evaluate` is the single
entry point; it holds no state between calls, so one loaded
:class:`TrafficDataset` can serve any number of concurrent configurations.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import pandas as pd
from loguru import logger

from density_config import DensityConfig
from density_errors import DataAbsenceWarning
from density_stats import (
    Capabilities,
    CellDensity,
    DensityAggregate,
    announce_capabilities,
    compute_density,
    default_capabilities,
    negotiate_capabilities,
    poisson_upper_bound,
)
from density_table import CATEGORIES, DensityTable
from encounter_model import EncounterModels
from grid_model import S_PER_HR, GridSpec
from validity_filter import ValidityMask, compute_validity_mask

MODE_AREA = "area"
MODE_TRACK = "track"


@dataclass(frozen=True, eq=False)
class TrafficDataset:
    """Read-only data loaded once and shared by every evaluation.

    ``capabilities`` default to :func:`default_capabilities`; missing
    strategies are reported once here rather than on every run.
    """

    table: DensityTable
    encounters: EncounterModels
    capabilities: Optional[Capabilities] = None

    def __post_init__(self) -> None:
        if self.capabilities is None:
            object.__setattr__(self, "capabilities", default_capabilities())
        announce_capabilities(self.capabilities)

    @property
    def grid(self) -> GridSpec:
        return self.table.grid


@dataclass(frozen=True, eq=False)
class DensityResult:
    """Outputs of one evaluation.

    Area mode: ``density``/``count``/``cell_rate`` are (rows, cols, altitude
    bins) arrays over the selected window and ``summarize`` has one row per
    selected altitude bin. Track mode: ``density`` and ``rel_speed`` hold one
    value per track sample, ``count`` is the expected number of encounters
    along the track and ``summarize`` has one row per sample. ``rate`` is
    always the scalar hourly rate [AC/hr].
    """

    mode: str
    config: DensityConfig
    density: np.ndarray
    rate: float
    count: Union[np.ndarray, float]
    summarize: pd.DataFrame
    airspace_class: pd.Series
    rel_speed: np.ndarray
    mask: ValidityMask
    cells: CellDensity
    lat_midpoints: np.ndarray
    lon_midpoints: np.ndarray
    cell_rate: Optional[np.ndarray] = None


def evaluate(
    config: DensityConfig,
    dataset: TrafficDataset,
    capabilities: Optional[Capabilities] = None,
) -> DensityResult:
    """Validate, filter, compute density and evaluate the configured mode.

    ``capabilities`` override the dataset's strategies for this run only.
    """

    announced = capabilities is None
    capabilities = dataset.capabilities if announced else capabilities
    config.validate_against(dataset.grid)
    config = negotiate_capabilities(config, capabilities, announced=announced)

    mode = MODE_TRACK if config.process_track else MODE_AREA
    logger.info("Evaluating traffic density in {} mode", mode)

    mask = compute_validity_mask(config, dataset.table)
    cells = compute_density(mask, dataset.table, config, capabilities)
    if config.process_track:
        result = run_track(config, dataset, mask, cells)
    else:
        result = run_area(config, dataset, mask, cells, capabilities)

    logger.info("Collision rate {:.4e} AC/hr ({} mode)", result.rate, mode)
    return result


# ------------------------ Shared helpers ------------------------


def _selected_category_weights(config: DensityConfig) -> np.ndarray:
    return np.array([1.0 if c in config.ac_category else 0.0 for c in CATEGORIES])


def _configured_own_speed(config: DensityConfig, alt_idx: int) -> Optional[float]:
    if config.ownspeed is None:
        return None
    if len(config.ownspeed) == 1:
        return config.ownspeed[0]
    return config.ownspeed[alt_idx]


def _warn_data_absence(message: str) -> None:
    logger.warning(message)
    warnings.warn(message, DataAbsenceWarning, stacklevel=3)


def _bin_centres_ft(cells: CellDensity, fallback: np.ndarray) -> np.ndarray:
    """Mean terrain-resolved MSL centre of each altitude bin over the valid cells."""

    open_bins = cells.valid & (cells.upper_ft > cells.lower_ft)
    centres = np.where(open_bins, 0.5 * (cells.lower_ft + cells.upper_ft), 0.0).sum(axis=(0, 1))
    n = open_bins.sum(axis=(0, 1))
    return np.where(n > 0, centres / np.maximum(n, 1), fallback)


def _airspace_mix(table: DensityTable, rows: np.ndarray, cols: np.ndarray, weights: np.ndarray) -> pd.Series:
    """Weighted mean airspace-class fraction over the given cells."""

    classes = list(table.airspace_classes)
    total = float(np.sum(weights))
    if not classes or total <= 0:
        return pd.Series(np.zeros(len(classes)), index=classes, dtype=float)
    fractions = table.airspace[rows, cols]
    return pd.Series(weights @ fractions / total, index=classes, dtype=float)


# ------------------------ Area mode ------------------------


def run_area(
    config: DensityConfig,
    dataset: TrafficDataset,
    mask: ValidityMask,
    cells: CellDensity,
    capabilities: Optional[Capabilities] = None,
) -> DensityResult:
    grid = dataset.grid
    encounters = dataset.encounters
    cross_section = config.geometry.cross_section_nm2
    bin_altitudes = _bin_centres_ft(cells, grid.altitude_bin_midpoints_ft)
    edges = grid.altitude_edges_ft

    weighted = cells.count_by_category * cells.category_weight[:, None, None, None]
    category_totals = np.where(cells.usable[None], weighted, 0.0).sum(axis=(1, 2))
    selected = _selected_category_weights(config)

    own_speed = np.zeros(grid.h_num)
    rel_speed = np.zeros(grid.h_num)
    for h in range(grid.h_num):
        weights = category_totals[:, h] if category_totals[:, h].sum() > 0 else selected
        configured = _configured_own_speed(config, h)
        own_speed[h] = (
            configured
            if configured is not None
            else encounters.blended_average_speed(bin_altitudes[h], weights)
        )
        rel_speed[h] = encounters.blended_relative_speed(own_speed[h], bin_altitudes[h], weights)

    cell_rate = cells.density * rel_speed[None, None, :] * cross_section

    records = []
    total_rate_count = 0.0
    total = DensityAggregate()
    for h in np.nonzero(mask.alt_valid)[0]:
        agg = cells.aggregate(int(h))
        total = total + agg
        total_rate_count += agg.count * rel_speed[h]
        layer_valid = cells.valid[:, :, h]
        record = {
            "alt_idx": int(h),
            "alt_lower_ft": float(edges[h]),
            "alt_upper_ft": float(edges[h + 1]),
            "cells": int(layer_valid.sum()),
            "count": agg.count,
            "hours": agg.hours,
            "exposure": agg.exposure,
            "density": agg.density,
            "own_speed_kts": float(own_speed[h]),
            "rel_speed_kts": float(rel_speed[h]),
            "rate": agg.density * rel_speed[h] * cross_section,
        }
        if cells.density_ub is not None and capabilities is not None and capabilities.ci_quantile is not None:
            upper = poisson_upper_bound(
                agg.count,
                agg.hours,
                config.cialpha,
                config.ci_ind_obs_per_hr,
                capabilities.ci_quantile,
            )
            density_ub = float(upper) / agg.mean_volume if agg.mean_volume > 0 else 0.0
            record["density_ub"] = density_ub
            record["rate_ub"] = density_ub * rel_speed[h] * cross_section
        if cells.density_std is not None:
            std = cells.density_std[:, :, h][layer_valid]
            record["density_std"] = float(np.sqrt(np.mean(std**2))) if std.size else 0.0
        if cells.max_count is not None:
            peak = cells.max_count[:, :, h][layer_valid]
            peak_density = cells.max_density[:, :, h][layer_valid]
            record["max_count"] = float(peak.max()) if peak.size else 0.0
            record["max_density"] = float(peak_density.max()) if peak_density.size else 0.0
        records.append(record)

    summarize = pd.DataFrame.from_records(records)
    if total.exposure > 0:
        rate = total_rate_count / total.exposure * cross_section
        if total.count == 0:
            logger.info("No traffic observed in the selected area and filters; collision rate is zero")
    else:
        rate = 0.0
        _warn_data_absence("No observed hours match the selected area and filters; collision rate is zero")

    cell_weights = np.where(mask.cell_valid, grid.row_area_nm2[mask.rows][:, None], 0.0)
    rr, cc = np.meshgrid(mask.rows, mask.cols, indexing="ij")
    airspace_class = _airspace_mix(dataset.table, rr.ravel(), cc.ravel(), cell_weights.ravel())

    return DensityResult(
        mode=MODE_AREA,
        config=config,
        density=cells.density,
        rate=float(rate),
        count=cells.count,
        summarize=summarize,
        airspace_class=airspace_class,
        rel_speed=rel_speed,
        mask=mask,
        cells=cells,
        lat_midpoints=grid.lat_midpoints[mask.rows],
        lon_midpoints=grid.lon_midpoints[mask.cols],
        cell_rate=cell_rate,
    )


# ------------------------ Track mode ------------------------


def run_track(
    config: DensityConfig,
    dataset: TrafficDataset,
    mask: ValidityMask,
    cells: CellDensity,
) -> DensityResult:
    grid = dataset.grid
    encounters = dataset.encounters
    track = config.track
    cross_section = config.geometry.cross_section_nm2
    selected = _selected_category_weights(config)

    rows, cols, inside = grid.cell_indices(track.latitude_deg, track.longitude_deg)
    n = track.size
    density = np.zeros(n)
    rel_speed = np.zeros(n)
    alt_bin = np.full(n, -1, dtype=int)
    has_data = np.zeros(n, dtype=bool)

    for i in np.nonzero(inside)[0]:
        r = rows[i] - mask.rows[0]
        c = cols[i] - mask.cols[0]
        if not mask.cell_valid[r, c]:
            continue
        lower, upper = cells.lower_ft[r, c], cells.upper_ft[r, c]
        layers = np.nonzero(upper > lower)[0]
        if layers.size == 0:
            continue
        centres = 0.5 * (lower[layers] + upper[layers])
        altitude = track.altitude_msl_ft[i]

        # np.interp clamps to the end values outside the centres
        density[i] = float(np.interp(altitude, centres, cells.density[r, c, layers]))
        nearest = int(layers[np.argmin(np.abs(centres - altitude))])
        alt_bin[i] = nearest

        weights = cells.count_by_category[:, r, c, nearest] * cells.category_weight
        if weights.sum() <= 0:
            weights = selected
        configured = _configured_own_speed(config, nearest)
        own_speed = configured if configured is not None else float(track.speed_kts[i])
        rel_speed[i] = encounters.blended_relative_speed(own_speed, altitude, weights)
        has_data[i] = True

    rate_instant = density * rel_speed * cross_section
    dt_hr = np.diff(track.time_s) / S_PER_HR
    encounters_per_interval = 0.5 * (rate_instant[:-1] + rate_instant[1:]) * dt_hr
    cumulative = np.concatenate([[0.0], np.cumsum(encounters_per_interval)])
    expected = float(cumulative[-1])
    rate = expected / track.duration_hr

    if not has_data.any():
        _warn_data_absence("Track lies entirely outside the loaded grid coverage; collision rate is zero")

    summarize = pd.DataFrame(
        {
            "time_s": track.time_s,
            "latitude_deg": track.latitude_deg,
            "longitude_deg": track.longitude_deg,
            "altitude_msl_ft": track.altitude_msl_ft,
            "speed_kts": track.speed_kts,
            "lat_idx": rows,
            "lon_idx": cols,
            "alt_idx": alt_bin,
            "density": density,
            "rel_speed_kts": rel_speed,
            "rate": rate_instant,
            "cumulative_encounters": cumulative,
        }
    )

    time_weights = np.zeros(n)
    time_weights[:-1] += 0.5 * dt_hr
    time_weights[1:] += 0.5 * dt_hr
    airspace_class = _airspace_mix(
        dataset.table, rows[inside], cols[inside], time_weights[inside]
    )

    return DensityResult(
        mode=MODE_TRACK,
        config=config,
        density=density,
        rate=float(rate),
        count=expected,
        summarize=summarize,
        airspace_class=airspace_class,
        rel_speed=rel_speed,
        mask=mask,
        cells=cells,
        lat_midpoints=grid.lat_midpoints[mask.rows],
        lon_midpoints=grid.lon_midpoints[mask.cols],
    )
