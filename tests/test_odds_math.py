"""Tests for core.odds_math: conversions and proportional de-vig."""

import random

import pytest

from edge_engine.core.errors import InvalidOddsError
from edge_engine.core.odds_math import (
    american_to_decimal,
    decimal_to_american,
    implied_probability,
    overround,
    probability_to_decimal,
    remove_vig_proportional,
    vig_percentage,
)


# ---------------------------------------------------------------------------
# american_to_decimal / decimal_to_american
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("american, expected", [
    (-110, 1.909091),
    (150,  2.5),
    (100,  2.0),
    (-100, 2.0),
    (-250, 1.4),
    (-110.0, 1.909091),   # feeds sometimes serialise ints as floats
])
def test_american_to_decimal(american, expected):
    assert american_to_decimal(american) == pytest.approx(expected, abs=1e-6)


@pytest.mark.parametrize("american", [0, 50, -99, 99.9])
def test_american_below_magnitude_floor_rejected(american):
    with pytest.raises(InvalidOddsError):
        american_to_decimal(american)


def test_invalid_odds_is_a_value_error():
    with pytest.raises(ValueError):
        american_to_decimal(0)


@pytest.mark.parametrize("decimal_odds, expected", [
    (2.5,      150),
    (1.909091, -110),
    (2.0,      100),
    (1.5,      -200),
    (11.0,     1000),
])
def test_decimal_to_american(decimal_odds, expected):
    assert decimal_to_american(decimal_odds) == expected


@pytest.mark.parametrize("decimal_odds", [1.0, 0.5, -2.0])
def test_decimal_to_american_rejects_no_profit(decimal_odds):
    with pytest.raises(InvalidOddsError):
        decimal_to_american(decimal_odds)


def test_american_decimal_round_trip():
    rng = random.Random(7)
    for _ in range(500):
        american = rng.choice([-1, 1]) * rng.randint(100, 2000)
        back = decimal_to_american(american_to_decimal(american))
        # -100 and +100 are the same price
        if abs(american) == 100:
            assert abs(back) == 100
        else:
            assert back == pytest.approx(american, abs=1)


# ---------------------------------------------------------------------------
# Probabilities
# ---------------------------------------------------------------------------

def test_implied_probability():
    assert implied_probability(2.0) == pytest.approx(0.5)
    assert implied_probability(american_to_decimal(-110)) == pytest.approx(0.5238095, abs=1e-6)


def test_implied_probability_rejects_decimal_at_one():
    with pytest.raises(InvalidOddsError):
        implied_probability(1.0)


@pytest.mark.parametrize("probability", [0.0, 1.0, -0.1, 1.5])
def test_probability_to_decimal_bounds(probability):
    with pytest.raises(InvalidOddsError):
        probability_to_decimal(probability)


def test_probability_to_decimal():
    assert probability_to_decimal(0.4) == pytest.approx(2.5)


# ---------------------------------------------------------------------------
# De-vig
# ---------------------------------------------------------------------------

def test_standard_two_way_vig():
    p = implied_probability(american_to_decimal(-110))
    total = overround({"A": p, "B": p})
    assert total == pytest.approx(1.047619, abs=1e-6)
    assert vig_percentage(total) == pytest.approx(4.545, abs=1e-3)


def test_remove_vig_proportional_normalises():
    fair = remove_vig_proportional({"A": 0.55, "B": 0.50, "Draw": 0.10})
    assert sum(fair.values()) == pytest.approx(1.0, abs=1e-12)
    assert fair["A"] == pytest.approx(0.55 / 1.15)


def test_overround_of_empty_market_rejected():
    with pytest.raises(ValueError):
        overround({})


def test_vig_percentage_rejects_non_positive_total():
    with pytest.raises(ValueError):
        vig_percentage(0.0)
