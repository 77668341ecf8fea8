"""Selection of the grid cells and hour bins that take part in a run.

The mask is a pure function of the configuration and the static density
table. A cell below the coverage threshold is excluded entirely; a cell with
no observed hours stays selected and later contributes zero density, which
keeps "no traffic observed" apart from "not surveilled".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
from loguru import logger

from density_config import AreaBounds, DensityConfig
from density_errors import ConfigurationError
from density_table import DensityTable


@dataclass(frozen=True, eq=False)
class ValidityMask:
    """Selected window of the grid and its reduced observations.

    ``rows``/``cols`` index the grid window; ``cell_valid`` and ``hours`` are
    shaped (len(rows), len(cols)); ``alt_valid`` has one entry per altitude
    bin. ``counts`` and ``hours_records`` are the filtered table records with
    window-local ``row``/``col`` columns added.
    """

    rows: np.ndarray
    cols: np.ndarray
    cell_valid: np.ndarray
    alt_valid: np.ndarray
    hours: np.ndarray
    counts: pd.DataFrame
    hours_records: pd.DataFrame

    @property
    def shape(self):
        return (self.rows.size, self.cols.size, self.alt_valid.size)

    @property
    def valid(self) -> np.ndarray:
        """Boolean (rows, cols, altitude bins) selection."""
        return self.cell_valid[:, :, None] & self.alt_valid[None, None, :]

    @property
    def is_empty(self) -> bool:
        return not self.valid.any()


def selection_window(config: DensityConfig, table: DensityTable) -> Tuple[np.ndarray, np.ndarray]:
    """Grid rows and columns to evaluate.

    Area mode selects the cells overlapping the area (the whole grid when no
    area is set); track mode selects the bounding box of the cells the track
    samples fall in. A track entirely outside the grid selects nothing.
    """

    grid = table.grid
    if config.track is not None:
        track = config.track
        rows, cols, inside = grid.cell_indices(track.latitude_deg, track.longitude_deg)
        if not inside.any():
            return np.empty(0, dtype=int), np.empty(0, dtype=int)
        rows, cols = rows[inside], cols[inside]
        return np.arange(rows.min(), rows.max() + 1), np.arange(cols.min(), cols.max() + 1)

    bounds = config.area
    if bounds is None:
        bounds = AreaBounds(grid.south_lat, grid.north_lat, grid.west_lon, grid.east_lon)
    return grid.rows_overlapping(bounds.lat_min, bounds.lat_max), grid.cols_overlapping(bounds.lon_min, bounds.lon_max)


def _window_records(df: pd.DataFrame, rows: np.ndarray, cols: np.ndarray) -> pd.DataFrame:
    if rows.size == 0 or cols.size == 0:
        return df.iloc[0:0].assign(row=pd.Series(dtype=int), col=pd.Series(dtype=int))
    keep = df["lat_idx"].between(rows[0], rows[-1]) & df["lon_idx"].between(cols[0], cols[-1])
    out = df.loc[keep].copy()
    out["row"] = out["lat_idx"] - rows[0]
    out["col"] = out["lon_idx"] - cols[0]
    return out


def compute_validity_mask(config: DensityConfig, table: DensityTable) -> ValidityMask:
    grid = table.grid
    rows, cols = selection_window(config, table)
    window = np.ix_(rows, cols)

    # Coverage
    if config.no_coverage_threshold > 0:
        cell_valid = table.coverage[window] >= config.no_coverage_threshold
    else:
        cell_valid = np.ones((rows.size, cols.size), dtype=bool)

    # Airspace class
    if config.airspace_classes is not None:
        unknown = [c for c in config.airspace_classes if c not in table.airspace_classes]
        if unknown:
            raise ConfigurationError(
                f"Unknown airspace classes {unknown}; loaded classes are {list(table.airspace_classes)}"
            )
        idx = [table.airspace_classes.index(c) for c in config.airspace_classes]
        fraction = table.airspace[window][:, :, idx].sum(axis=-1)
        cell_valid &= fraction > config.airspace_threshold

    # Altitude bins; the track altitude selects bins in track mode
    alt_valid = np.ones(grid.h_num, dtype=bool)
    if config.height is not None and not config.process_track:
        alt_valid[:] = False
        alt_valid[list(config.height)] = True

    timeofday = config.timeofday if config.timeofday is not None else tuple(range(grid.t_num))

    hours_records = _window_records(table.hours, rows, cols)
    hours_records = hours_records.loc[
        hours_records["time_idx"].isin(timeofday)
        & hours_records["day"].isin(config.dayofweek)
        & hours_records["month"].isin(config.monthofyear)
    ]
    hours = np.zeros((rows.size, cols.size), dtype=float)
    np.add.at(
        hours,
        (hours_records["row"].to_numpy(), hours_records["col"].to_numpy()),
        hours_records["hours"].to_numpy(dtype=float),
    )

    counts = _window_records(table.counts, rows, cols)
    counts = counts.loc[
        counts["time_idx"].isin(timeofday)
        & counts["day"].isin(config.dayofweek)
        & counts["month"].isin(config.monthofyear)
        & counts["category"].isin(config.ac_category)
    ]
    if not counts.empty:
        local_rows = counts["row"].to_numpy()
        local_cols = counts["col"].to_numpy()
        keep = cell_valid[local_rows, local_cols] & alt_valid[counts["alt_idx"].to_numpy()]
        counts = counts.loc[keep]

    logger.debug(
        "Validity mask: {}x{} cells ({} valid), {} count records, {:.1f} observed hours",
        rows.size,
        cols.size,
        int(cell_valid.sum()),
        len(counts),
        float(hours.sum()),
    )
    return ValidityMask(
        rows=rows,
        cols=cols,
        cell_valid=cell_valid,
        alt_valid=alt_valid,
        hours=hours,
        counts=counts.reset_index(drop=True),
        hours_records=hours_records.reset_index(drop=True),
    )
