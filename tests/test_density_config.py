import sys
from dataclasses import FrozenInstanceError
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from conftest import make_track
from density_config import (
    AreaBounds,
    CollisionGeometry,
    DensityConfig,
    DEFAULT_MAC_H_FT,
    DEFAULT_MAC_R_FT,
)
from density_errors import ArgumentError, ConfigurationError, RangeError, TrackAltitudeWarning
from grid_model import NM_PER_FT


def _track():
    return make_track([0, 60, 120], [41.5, 41.5, 41.5], [-71.5, -71.2, -70.9], [2000, 2000, 2000], [100, 100, 100])


def test_defaults():
    config = DensityConfig()
    assert config.monthofyear == tuple(range(1, 13))
    assert config.dayofweek == tuple(range(1, 8))
    assert config.ac_category == (0, 1)
    assert config.compute_ub and config.compute_max and not config.compute_std
    assert config.no_coverage_threshold == 0.2
    assert not config.process_track


def test_filters_are_normalised_to_sorted_tuples():
    config = DensityConfig(timeofday=[3, 1, 3], monthofyear=[12, 1], ac_category=[1])
    assert config.timeofday == (1, 3)
    assert config.monthofyear == (1, 12)
    assert config.ac_category == (1,)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"monthofyear": [13]},
        {"dayofweek": [0]},
        {"ac_category": [2]},
        {"ac_category": []},
        {"timeofday": [1.5]},
        {"cialpha": 0.0},
        {"no_coverage_threshold": 1.2},
        {"airspace_threshold": 1.0},
        {"ownspeed": 0.0},
        {"ownspeed": 1500.0},
        {"altitude_rule": "terrain_first"},
    ],
)
def test_invalid_options_raise_configuration_error(kwargs):
    with pytest.raises(ConfigurationError):
        DensityConfig(**kwargs)


def test_noncoop_requires_1200_code_category():
    with pytest.raises(ConfigurationError, match="1200-code"):
        DensityConfig(process_noncoop=True, ac_category=[0])
    assert DensityConfig(process_noncoop=True).process_noncoop


def test_area_and_track_are_mutually_exclusive():
    with pytest.raises(ConfigurationError):
        DensityConfig(area=AreaBounds(40, 41, -72, -71), track=_track())


def test_with_changes_switches_between_area_and_track():
    config = DensityConfig(area=AreaBounds(40, 41, -72, -71))
    tracked = config.with_changes(track=_track())
    assert tracked.process_track
    assert tracked.area is None
    # The source configuration is untouched
    assert config.area is not None

    back = tracked.with_changes(area=AreaBounds(40, 42, -72, -70))
    assert back.track is None
    assert not back.process_track


def test_config_is_immutable():
    config = DensityConfig()
    with pytest.raises(FrozenInstanceError):
        config.compute_ub = False


def test_ownspeed_scalar_or_sequence():
    assert DensityConfig(ownspeed=120).ownspeed == (120.0,)
    assert DensityConfig(ownspeed=[100, 110, 120, 130, 140]).ownspeed == (100.0, 110.0, 120.0, 130.0, 140.0)


def test_validate_against_grid(grid):
    DensityConfig(timeofday=[7], height=[4], ownspeed=[100] * 5).validate_against(grid)

    with pytest.raises(ConfigurationError, match="timeofday"):
        DensityConfig(timeofday=[8]).validate_against(grid)
    with pytest.raises(ConfigurationError, match="height"):
        DensityConfig(height=[5]).validate_against(grid)
    with pytest.raises(ConfigurationError, match="ownspeed"):
        DensityConfig(ownspeed=[100, 120]).validate_against(grid)


def test_area_outside_grid_raises_range_error(grid):
    with pytest.raises(RangeError, match="39"):
        DensityConfig(area=AreaBounds(39.0, 41.0, -72.0, -71.0)).validate_against(grid)
    with pytest.raises(RangeError, match="longitude"):
        DensityConfig(area=AreaBounds(40.0, 41.0, -72.0, -60.0)).validate_against(grid)


def test_area_bounds_must_be_ordered():
    with pytest.raises(ConfigurationError):
        AreaBounds(41.0, 40.0, -72.0, -71.0)
    with pytest.raises(ConfigurationError):
        AreaBounds.from_limits((40.0,), (-72.0, -71.0))
    assert AreaBounds.from_limits((40, 41), (-72, -71)) == AreaBounds(40.0, 41.0, -72.0, -71.0)


def test_track_time_must_increase():
    with pytest.raises(ConfigurationError, match="monotonically increasing"):
        make_track([0, 5, 3], [41.5] * 3, [-71.5] * 3, [2000] * 3, [100] * 3)


def test_single_sample_track_is_an_argument_error():
    with pytest.raises(ArgumentError):
        make_track([0], [41.5], [-71.5], [2000], [100])


def test_track_fields_must_have_equal_length():
    with pytest.raises(ConfigurationError):
        make_track([0, 5], [41.5, 41.5], [-71.5], [2000, 2000], [100, 100])


def test_track_rejects_negative_speed():
    with pytest.raises(ConfigurationError):
        make_track([0, 5], [41.5, 41.5], [-71.5, -71.5], [2000, 2000], [100, -1])


def test_track_warns_on_implausible_altitude():
    with pytest.warns(TrackAltitudeWarning):
        track = make_track([0, 5], [41.5, 41.5], [-71.5, -71.5], [-2500, 2000], [100, 100])
    assert track.size == 2


def test_track_arrays_are_read_only():
    track = _track()
    assert not track.time_s.flags.writeable
    assert np.isclose(track.duration_hr, 120.0 / 3600.0)


def test_collision_cross_section():
    geometry = CollisionGeometry()
    expected = 2.0 * DEFAULT_MAC_R_FT * NM_PER_FT * DEFAULT_MAC_H_FT * NM_PER_FT
    assert np.isclose(geometry.cross_section_nm2, expected)
    with pytest.raises(ConfigurationError):
        CollisionGeometry(mac_r_ft=0.0)
