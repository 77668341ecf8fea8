import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from conftest import make_track
from density_config import AreaBounds, DensityConfig
from density_errors import ConfigurationError
from validity_filter import compute_validity_mask, selection_window


def test_whole_grid_selected_without_area(table):
    mask = compute_validity_mask(DensityConfig(), table)
    assert mask.rows.tolist() == [0, 1]
    assert mask.cols.tolist() == [0, 1, 2]
    assert mask.shape == (2, 3, 5)


def test_coverage_threshold_excludes_poorly_surveilled_cells(table):
    mask = compute_validity_mask(DensityConfig(), table)
    assert mask.cell_valid.tolist() == [[True, True, False], [True, False, True]]
    # Counts inside excluded cells never reach the density engine
    assert set(zip(mask.counts["lat_idx"], mask.counts["lon_idx"])) == {(0, 0), (0, 1), (1, 0)}


def test_zero_threshold_admits_every_cell(table):
    mask = compute_validity_mask(DensityConfig(no_coverage_threshold=0.0), table)
    assert mask.cell_valid.all()


def test_area_selects_overlapping_cells(table):
    config = DensityConfig(area=AreaBounds(40.5, 41.5, -71.0, -69.5))
    mask = compute_validity_mask(config, table)
    assert mask.rows.tolist() == [0, 1]
    assert mask.cols.tolist() == [1, 2]
    assert mask.counts["col"].tolist() == [0]
    assert mask.counts["lon_idx"].tolist() == [1]


def test_hours_follow_time_day_and_month_filters(table):
    mask = compute_validity_mask(DensityConfig(), table)
    assert np.allclose(mask.hours, 40.0)

    mask = compute_validity_mask(DensityConfig(timeofday=[1]), table)
    assert np.allclose(mask.hours, 30.0)
    assert mask.counts["time_idx"].unique().tolist() == [1]

    mask = compute_validity_mask(DensityConfig(monthofyear=[6]), table)
    assert np.allclose(mask.hours, 0.0)
    assert mask.counts.empty


def test_category_filter_reduces_counts_but_not_hours(table):
    mask = compute_validity_mask(DensityConfig(ac_category=[1]), table)
    assert mask.counts["category"].tolist() == [1]
    assert np.allclose(mask.hours, 40.0)


def test_height_filter_applies_in_area_mode(table):
    mask = compute_validity_mask(DensityConfig(height=[3]), table)
    assert mask.alt_valid.tolist() == [False, False, False, True, False]
    assert mask.counts["alt_idx"].tolist() == [3]


def test_height_filter_is_ignored_for_tracks(table):
    track = make_track([0, 60], [41.5, 41.5], [-71.5, -71.5], [2000, 2000], [100, 100])
    mask = compute_validity_mask(DensityConfig(track=track, height=[3]), table)
    assert mask.alt_valid.all()


def test_airspace_filter_keeps_cells_above_threshold(table):
    mask = compute_validity_mask(DensityConfig(airspace_classes=["B"]), table)
    assert mask.cell_valid.tolist() == [[True, False, False], [False, False, False]]

    mask = compute_validity_mask(DensityConfig(airspace_classes=["B", "C"], airspace_threshold=0.3), table)
    assert mask.cell_valid.tolist() == [[True, False, False], [False, False, False]]


def test_unknown_airspace_class_is_rejected(table):
    with pytest.raises(ConfigurationError, match="Unknown airspace"):
        compute_validity_mask(DensityConfig(airspace_classes=["E"]), table)


def test_track_window_covers_sample_cells(table):
    track = make_track([0, 60, 120], [41.5, 40.5, 10.0], [-71.5, -70.5, 10.0], [2000] * 3, [100] * 3)
    rows, cols = selection_window(DensityConfig(track=track), table)
    assert rows.tolist() == [0, 1]
    assert cols.tolist() == [0, 1]


def test_track_outside_grid_selects_nothing(table):
    track = make_track([0, 60], [10.0, 10.5], [10.0, 10.5], [2000, 2000], [100, 100])
    mask = compute_validity_mask(DensityConfig(track=track), table)
    assert mask.rows.size == 0
    assert mask.is_empty
    assert mask.counts.empty
