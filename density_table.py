"""In-memory density table aligned to a :class:`GridSpec`.

The loader collaborator hands over already-parsed data: binned observation
counts keyed by (row, col, altitude bin, time bin, day, month, category),
observed hours keyed by (row, col, time bin, day, month), and per-cell side
tables for surveillance coverage, airspace class and terrain elevation.
Nothing here mutates after construction.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from density_errors import ConfigurationError
from grid_model import FT_PER_M, GridSpec

COUNT_KEYS = ("lat_idx", "lon_idx", "alt_idx", "time_idx", "day", "month", "category")
HOURS_KEYS = ("lat_idx", "lon_idx", "time_idx", "day", "month")

CATEGORY_DISCRETE = 0
CATEGORY_1200 = 1
CATEGORIES = (CATEGORY_DISCRETE, CATEGORY_1200)

DAYS = tuple(range(1, 8))
MONTHS = tuple(range(1, 13))


def _require_columns(df: pd.DataFrame, columns: Sequence[str], label: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ConfigurationError(f"{label} table is missing columns: {', '.join(missing)}")


def _check_key_range(df: pd.DataFrame, column: str, lo: int, hi: int, label: str) -> None:
    if df.empty:
        return
    values = df[column].to_numpy()
    if np.any(values < lo) or np.any(values > hi):
        raise ConfigurationError(f"{label} column {column!r} must lie in [{lo}, {hi}]")


def _grid_array(arr, shape: Tuple[int, ...], label: str) -> np.ndarray:
    out = np.array(arr, dtype=float)
    if out.shape != shape:
        raise ConfigurationError(f"{label} must have shape {shape}, got {out.shape}")
    if not np.all(np.isfinite(out)):
        raise ConfigurationError(f"{label} contains non-finite values")
    out.setflags(write=False)
    return out


class DensityTable:
    """Observation counts, observed hours and per-cell side tables."""

    def __init__(
        self,
        grid: GridSpec,
        counts: pd.DataFrame,
        hours: pd.DataFrame,
        coverage: np.ndarray,
        airspace: Optional[np.ndarray] = None,
        airspace_classes: Sequence[str] = (),
        terrain_m: Optional[np.ndarray] = None,
    ):
        self.grid = grid
        cells = (grid.y_num, grid.x_num)

        _require_columns(counts, COUNT_KEYS + ("count",), "Count")
        _require_columns(hours, HOURS_KEYS + ("hours",), "Hours")

        count_cols = list(COUNT_KEYS) + ["count"] + (["maxcount"] if "maxcount" in counts.columns else [])
        self.counts = counts.loc[:, count_cols].reset_index(drop=True).copy()
        self.hours = hours.loc[:, list(HOURS_KEYS) + ["hours"]].reset_index(drop=True).copy()
        self.counts[list(COUNT_KEYS)] = self.counts[list(COUNT_KEYS)].astype(int)
        self.hours[list(HOURS_KEYS)] = self.hours[list(HOURS_KEYS)].astype(int)

        for df, label in ((self.counts, "Count"), (self.hours, "Hours")):
            _check_key_range(df, "lat_idx", 0, grid.y_num - 1, label)
            _check_key_range(df, "lon_idx", 0, grid.x_num - 1, label)
            _check_key_range(df, "time_idx", 0, grid.t_num - 1, label)
            _check_key_range(df, "day", DAYS[0], DAYS[-1], label)
            _check_key_range(df, "month", MONTHS[0], MONTHS[-1], label)
        _check_key_range(self.counts, "alt_idx", 0, grid.h_num - 1, "Count")
        _check_key_range(self.counts, "category", CATEGORIES[0], CATEGORIES[-1], "Count")

        if (self.counts["count"] < 0).any():
            raise ConfigurationError("Observation counts must be non-negative")
        if (self.hours["hours"] < 0).any():
            raise ConfigurationError("Observed hours must be non-negative")
        if self.hours.duplicated(list(HOURS_KEYS)).any():
            raise ConfigurationError("Observed hours must be unique per (cell, time, day, month)")

        self.coverage = _grid_array(coverage, cells, "Coverage fraction")
        if np.any(self.coverage < 0.0) or np.any(self.coverage > 1.0):
            raise ConfigurationError("Coverage fraction must lie in [0, 1]")

        self.airspace_classes = tuple(str(c) for c in airspace_classes)
        if airspace is None:
            if self.airspace_classes:
                raise ConfigurationError("Airspace class labels given without airspace fractions")
            airspace = np.zeros(cells + (0,))
        self.airspace = _grid_array(airspace, cells + (len(self.airspace_classes),), "Airspace class fraction")

        if terrain_m is None:
            terrain_m = np.zeros(cells)
        self.terrain_m = _grid_array(terrain_m, cells, "Terrain elevation")
        self.terrain_ft = self.terrain_m * FT_PER_M
        self.terrain_ft.setflags(write=False)

        logger.debug(
            "Density table loaded: {} count records, {} hour records on a {}x{}x{} grid",
            len(self.counts),
            len(self.hours),
            grid.y_num,
            grid.x_num,
            grid.h_num,
        )

    @classmethod
    def from_records(
        cls,
        grid: GridSpec,
        records: pd.DataFrame,
        coverage: np.ndarray,
        airspace: Optional[np.ndarray] = None,
        airspace_classes: Sequence[str] = (),
        terrain_m: Optional[np.ndarray] = None,
    ) -> "DensityTable":
        """Build from single-table records keyed by ``COUNT_KEYS`` with count and hours.

        Observed hours repeat across altitude bins and categories of the same
        cell and time bin, so they are collapsed to one value per hours key.
        """

        _require_columns(records, COUNT_KEYS + ("count", "hours"), "Record")
        hours = records.groupby(list(HOURS_KEYS), as_index=False)["hours"].max()
        counts = records.drop(columns=["hours"])
        return cls(grid, counts, hours, coverage, airspace, airspace_classes, terrain_m)

    def summary(self) -> pd.DataFrame:
        """Roll-up of loaded counts per altitude bin and category."""

        if self.counts.empty:
            return pd.DataFrame(columns=["alt_idx", "category", "count", "records"])
        summary = (
            self.counts.groupby(["alt_idx", "category"])["count"]
            .agg(count="sum", records="size")
            .reset_index()
        )
        summary.attrs["total_hours"] = float(self.hours["hours"].sum())
        return summary
