import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from density_errors import ConfigurationError
from encounter_model import EncounterModel

LAYERED_TEXT = """\
# layered intruder speeds
# altitude_boundaries_ft
0 3000 10000
# speed_boundaries_kts
50 150 250
# speed_counts
3 1
0 4
"""


def _layered():
    return EncounterModel.from_text(LAYERED_TEXT, "layered")


def test_from_text_parses_sections():
    model = _layered()
    assert np.allclose(model.altitude_edges_ft, [0, 3000, 10000])
    assert np.allclose(model.speed_midpoints_kts, [100, 200])
    assert model.speed_counts.shape == (2, 2)


def test_average_speed_per_layer():
    model = _layered()
    assert np.isclose(model.average_speed(1000), 0.75 * 100 + 0.25 * 200)
    assert np.isclose(model.average_speed(5000), 200)


def test_altitude_outside_model_uses_nearest_layer():
    model = _layered()
    assert model.layer_for_altitude(-500) == 0
    assert model.layer_for_altitude(50000) == 1
    assert model.layer_for_altitude(3000) == 1


def test_relative_speed_limits():
    model = _layered()
    # A stationary own aircraft closes at the intruder's speed
    assert np.isclose(model.relative_speed(0.0, 5000), 200.0)
    # Equal speeds with a uniform relative heading average 4v/pi
    assert np.isclose(model.relative_speed(200.0, 5000), 4.0 * 200.0 / np.pi, rtol=1e-4)


def test_relative_speed_at_least_speed_difference():
    model = _layered()
    assert model.relative_speed(600.0, 5000) >= 400.0


def test_blended_relative_speed_weights_categories(encounters):
    correlated = encounters.relative_speed(150.0, 2000.0, 0)
    uncorrelated = encounters.relative_speed(150.0, 2000.0, 1)
    blended = encounters.blended_relative_speed(150.0, 2000.0, [3.0, 1.0])
    assert np.isclose(blended, 0.75 * correlated + 0.25 * uncorrelated)
    # Without observations both categories count equally
    even = encounters.blended_relative_speed(150.0, 2000.0, [0.0, 0.0])
    assert np.isclose(even, 0.5 * (correlated + uncorrelated))


def test_blended_average_speed(encounters):
    assert np.isclose(encounters.blended_average_speed(2000.0, [1.0, 0.0]), 200.0)
    assert np.isclose(encounters.blended_average_speed(2000.0, [1.0, 1.0]), 150.0)


def test_unknown_category_is_rejected(encounters):
    with pytest.raises(ConfigurationError):
        encounters.model_for_category(2)
    with pytest.raises(ConfigurationError):
        encounters.blended_relative_speed(100.0, 2000.0, [1.0])


def test_missing_section_is_rejected():
    text = LAYERED_TEXT.split("# speed_counts")[0]
    with pytest.raises(ConfigurationError, match="speed_counts"):
        EncounterModel.from_text(text)


def test_ragged_counts_are_rejected():
    text = LAYERED_TEXT.replace("0 4", "0 4 1")
    with pytest.raises(ConfigurationError):
        EncounterModel.from_text(text)


def test_layer_without_observations_is_rejected():
    text = LAYERED_TEXT.replace("0 4", "0 0")
    with pytest.raises(ConfigurationError, match="without observations"):
        EncounterModel.from_text(text)


def test_data_outside_a_section_is_rejected():
    with pytest.raises(ConfigurationError, match="outside a known section"):
        EncounterModel.from_text("1 2 3\n" + LAYERED_TEXT)
