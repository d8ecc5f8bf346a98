"""Tests for config.py"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import DEFAULT_TIME_CONTROLS, AnalysisConfig, ExplorerFilter


def test_defaults():
    config = AnalysisConfig()
    assert config.epsilon == 0.0005
    assert config.tau_low <= config.tau_high
    assert config.filter.time_controls == DEFAULT_TIME_CONTROLS
    assert config.player_side is None


def test_player_side():
    assert AnalysisConfig(player_color="white").player_side == "w"
    assert AnalysisConfig(player_color="black").player_side == "b"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"epsilon": -0.1},
        {"tau_high": 1.5},
        {"tau_low": 0.2, "tau_high": 0.1},
        {"min_games": -1},
        {"max_concurrency": 0},
        {"max_requests": -5},
        {"player_color": "green"},
    ],
)
def test_invalid_values_are_rejected(kwargs):
    with pytest.raises(ValueError):
        AnalysisConfig(**kwargs)


def test_rating_range_must_be_ordered():
    with pytest.raises(ValueError):
        ExplorerFilter(rating_min=2000, rating_max=1500)


def test_config_is_immutable_and_hashable():
    config = AnalysisConfig()
    with pytest.raises(AttributeError):
        config.epsilon = 0.1
    assert hash(ExplorerFilter()) == hash(ExplorerFilter())
