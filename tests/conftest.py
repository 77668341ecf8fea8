import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from density_config import Track
from density_table import COUNT_KEYS, DensityTable
from encounter_model import EncounterModel, EncounterModels
from grid_model import GridSpec
from risk_evaluation import TrafficDataset

# Rows 0..1 (north to south) x cols 0..2 (west to east)
COVERAGE = np.array([[1.0, 0.5, 0.1], [1.0, 0.0, 0.8]])
AIRSPACE_CLASSES = ("B", "C")
HOURS_BY_TIME = {0: 10.0, 1: 30.0}

COUNT_RECORDS = [
    # lat_idx, lon_idx, alt_idx, time_idx, day, month, category, count
    (0, 0, 2, 0, 1, 1, 0, 4.0),
    (0, 0, 2, 1, 1, 1, 1, 6.0),
    (0, 1, 3, 0, 1, 1, 0, 2.0),
    (1, 0, 2, 1, 1, 1, 0, 8.0),
]

CORRELATED_TEXT = """\
# correlated speed model
# altitude_boundaries_ft
0 20000
# speed_boundaries_kts
100 300
# speed_counts
1
"""

UNCORRELATED_TEXT = """\
# altitude_boundaries_ft
0 20000
# speed_boundaries_kts
80 120
# speed_counts
5
"""


def make_grid() -> GridSpec:
    return GridSpec(
        bins_per_degree=1,
        north_lat=42.0,
        west_lon=-72.0,
        x_num=3,
        y_num=2,
        t_num=8,
        agl_lims=(0, 500, 1200),
        msl_lims=(3000, 5000, 10000),
    )


def make_hours(grid: GridSpec, hours_by_time=HOURS_BY_TIME) -> pd.DataFrame:
    records = []
    for row in range(grid.y_num):
        for col in range(grid.x_num):
            for time_idx, hours in hours_by_time.items():
                records.append(
                    {"lat_idx": row, "lon_idx": col, "time_idx": time_idx, "day": 1, "month": 1, "hours": hours}
                )
    return pd.DataFrame(records)


def make_counts(records=COUNT_RECORDS) -> pd.DataFrame:
    return pd.DataFrame(list(records), columns=list(COUNT_KEYS) + ["count"])


def make_airspace() -> np.ndarray:
    airspace = np.zeros((2, 3, len(AIRSPACE_CLASSES)))
    airspace[0, 0, 0] = 0.5
    airspace[0, 1, 1] = 0.2
    return airspace


def make_table(grid=None, counts=None, hours=None, coverage=COVERAGE, terrain_m=None) -> DensityTable:
    grid = grid or make_grid()
    return DensityTable(
        grid,
        make_counts() if counts is None else counts,
        make_hours(grid) if hours is None else hours,
        coverage,
        airspace=make_airspace(),
        airspace_classes=AIRSPACE_CLASSES,
        terrain_m=terrain_m,
    )


def make_encounters() -> EncounterModels:
    return EncounterModels(
        correlated=EncounterModel.from_text(CORRELATED_TEXT, "correlated"),
        uncorrelated=EncounterModel.from_text(UNCORRELATED_TEXT, "uncorrelated"),
    )


def make_small_grid(x_num=1) -> GridSpec:
    """Single-row grid with bins [0, 1000) AGL, [1000, 2000) transition and [2000, 4000) MSL."""

    return GridSpec(
        bins_per_degree=1,
        north_lat=42.0,
        west_lon=-72.0,
        x_num=x_num,
        y_num=1,
        t_num=1,
        agl_lims=(0, 1000),
        msl_lims=(2000, 4000),
    )


def make_uniform_dataset(encounters=None):
    """One-cell grid whose three altitude bins share the same density.

    Counts are proportional to bin thickness.
    """

    grid = make_small_grid()
    counts = make_counts(
        [
            (0, 0, 0, 0, 1, 1, 0, 10.0),
            (0, 0, 1, 0, 1, 1, 0, 10.0),
            (0, 0, 2, 0, 1, 1, 0, 20.0),
        ]
    )
    hours = make_hours(grid, {0: 10.0})
    table = DensityTable(grid, counts, hours, np.ones((1, 1)))
    return TrafficDataset(table, encounters or make_encounters())


def make_track(time_s, latitude_deg, longitude_deg, altitude_msl_ft, speed_kts) -> Track:
    return Track(
        time_s=time_s,
        latitude_deg=latitude_deg,
        longitude_deg=longitude_deg,
        altitude_msl_ft=altitude_msl_ft,
        speed_kts=speed_kts,
    )


@pytest.fixture
def grid():
    return make_grid()


@pytest.fixture
def table(grid):
    return make_table(grid)


@pytest.fixture
def encounters():
    return make_encounters()


@pytest.fixture
def dataset(table, encounters):
    return TrafficDataset(table, encounters)
