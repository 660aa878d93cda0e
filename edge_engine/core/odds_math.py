"""Odds arithmetic shared by the pricing, edge and settlement code.

Pure functions only.  Two groups live here:

1. **Odds conversion**: American, decimal and implied probability.
2. **Proportional de-vig**: multi-outcome normalisation of raw implied
   probabilities so that the market sums to exactly one.

Design decisions
----------------
* American odds are accepted as ``int`` or ``float`` because provider feeds
  occasionally serialise integers as ``-110.0``.  Any magnitude below 100
  (including zero) is rejected: such a value is not a representable American
  price and always indicates a data error upstream.
* Conversions are never rounded internally.  Rounding only happens in
  :func:`decimal_to_american`, whose output is for display and persistence.
  Downstream edge detection compares ratios of decimal odds, so any early
  rounding would manufacture or hide a few tenths of a percent of edge.
* De-vig is proportional (divide by the overround) rather than Shin, because
  consensus markets here can carry three or more outcomes (soccer draws) and
  the averaged book prices already dampen favourite-longshot effects.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

from typing import Final, Mapping

from edge_engine.core.errors import InvalidOddsError

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: American-odds magnitude floor.  Providers never return |odds| < 100;
#: values below this indicate a data error.
_MIN_ODDS_MAGNITUDE: Final[int] = 100

#: Even-money pivot between positive and negative American notation.
_EVEN_MONEY_DECIMAL: Final[float] = 2.0


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def american_to_decimal(american: int | float) -> float:
    """Convert American odds to decimal (European) format.

    Decimal odds represent the total payout per unit staked, **including**
    the return of the stake itself.  Examples::

        american_to_decimal(-110) → 1.9091   (risk 110 to win 100)
        american_to_decimal(+150) → 2.5000   (risk 100 to win 150)

    Raises:
        InvalidOddsError: If ``|american| < 100`` (zero included).
    """
    if abs(american) < _MIN_ODDS_MAGNITUDE:
        raise InvalidOddsError(
            f"Invalid American odds {american!r}: magnitude must be ≥ 100. "
            "Check upstream odds parsing for data errors."
        )
    if american > 0:
        return american / 100.0 + 1.0
    # Negative: risk |american| to win 100
    return 100.0 / abs(american) + 1.0


def decimal_to_american(decimal_odds: float) -> int:
    """Convert decimal odds to the nearest American integer.

    Inverse of :func:`american_to_decimal`.  Values ≥ 2.0 come back positive
    (underdog), values below 2.0 negative (favourite).  Even money is
    reported as ``+100``.

    Raises:
        InvalidOddsError: If ``decimal_odds <= 1.0`` (no profit possible).
    """
    if decimal_odds <= 1.0:
        raise InvalidOddsError(
            f"Decimal odds {decimal_odds!r} must be > 1.0 (probability < 1)."
        )
    if decimal_odds >= _EVEN_MONEY_DECIMAL:
        return round((decimal_odds - 1.0) * 100)
    return round(-100.0 / (decimal_odds - 1.0))


def implied_probability(decimal_odds: float) -> float:
    """Raw implied probability of a decimal price (vig-inclusive)."""
    if decimal_odds <= 1.0:
        raise InvalidOddsError(
            f"Decimal odds {decimal_odds!r} must be > 1.0 to imply a probability."
        )
    return 1.0 / decimal_odds


def probability_to_decimal(probability: float) -> float:
    """Fair decimal odds for a probability in ``(0, 1)``."""
    if not (0.0 < probability < 1.0):
        raise InvalidOddsError(
            f"Probability {probability!r} must lie strictly between 0 and 1."
        )
    return 1.0 / probability


# ---------------------------------------------------------------------------
# Proportional de-vig
# ---------------------------------------------------------------------------


def overround(probabilities: Mapping[str, float]) -> float:
    """Sum of raw implied probabilities across every outcome of a market.

    A value above 1.0 is the bookmaker margin; below 1.0 signals an
    arbitrage (or stale data).
    """
    if not probabilities:
        raise ValueError("Cannot compute the overround of an empty market.")
    return sum(probabilities.values())


def vig_percentage(total_implied: float) -> float:
    """Share of the overround that is margin, in percent.

    ``(T − 1) / T × 100``.  For example two sides at −110 give T = 1.0476 and a
    vig estimate of ≈ 4.55%.
    """
    if total_implied <= 0.0:
        raise ValueError(f"total_implied must be > 0, got {total_implied!r}.")
    return (total_implied - 1.0) / total_implied * 100.0


def remove_vig_proportional(probabilities: Mapping[str, float]) -> dict[str, float]:
    """Normalise raw implied probabilities so they sum to exactly one.

    Args:
        probabilities: Mapping of outcome name → raw implied probability.

    Returns:
        New mapping with every value divided by the market overround.

    Examples::

        remove_vig_proportional({"A": 0.5238, "B": 0.5238})
            → {"A": 0.5, "B": 0.5}
    """
    total = overround(probabilities)
    if total <= 0.0:
        raise ValueError(f"Market overround must be > 0, got {total!r}.")
    return {name: p / total for name, p in probabilities.items()}
