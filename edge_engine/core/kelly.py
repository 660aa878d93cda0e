"""Kelly criterion stake sizing for singles and parlays.

Pure arithmetic.  Services size bets through these helpers only.

Every published opportunity carries a suggested stake expressed as a
fraction of bankroll.  The fair probability produced by the fair-odds
estimator is the ``win_prob`` input and the best available price is the
``decimal_odds`` input.

Design decisions
----------------
* **Quarter Kelly** is the default.  Market-consensus fair odds are a noisy
  estimate of the true probability (the consensus itself carries error of a
  similar size to the edges we detect), so overbetting is asymmetrically
  punished.  Quarter Kelly keeps drawdowns tolerable when the edge estimate
  is off by half.
* A hard cap of 5% of bankroll applies regardless of edge.  Edges large
  enough to hit the cap are usually stale quotes rather than real value.
"""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Default fractional Kelly divisor (quarter Kelly).
DEFAULT_KELLY_DIVISOR: Final[float] = 4.0

#: Ceiling on the fractional output, whatever the edge.
MAX_KELLY_FRACTION: Final[float] = 0.05

#: Below this the recommendation rounds to zero (too small to execute).
MIN_KELLY_FRACTION: Final[float] = 1e-4


# ---------------------------------------------------------------------------
# Standard Kelly
# ---------------------------------------------------------------------------


def kelly_fraction(
    win_prob: float,
    decimal_odds: float,
    *,
    fractional_divisor: float = DEFAULT_KELLY_DIVISOR,
    max_fraction: float = MAX_KELLY_FRACTION,
) -> float:
    """Compute fractional Kelly bet size for a simple win/loss outcome.

    The closed-form Kelly solution for profit ``b = decimal_odds − 1`` is::

        f*  =  (p · b − q) / b

    and the fractional recommendation is ``f* / fractional_divisor``,
    clipped to ``[0, max_fraction]``.

    Args:
        win_prob: Fair (no-vig) probability of winning, in ``(0, 1)``.
        decimal_odds: Decimal odds actually available.
        fractional_divisor: Divisor applied to full Kelly.  Default 4×.
        max_fraction: Hard cap on the output fraction.

    Returns:
        Fraction of bankroll in ``[0, max_fraction]``.  Zero when the bet
        has no positive expectation.

    Raises:
        ValueError: If ``win_prob`` is not in ``(0, 1)``,
            ``decimal_odds <= 1.0`` or ``fractional_divisor <= 0``.

    Examples::

        kelly_fraction(0.55, 1.909)          →  0.0139  (quarter Kelly at -110)
        kelly_fraction(0.45, 1.909)          →  0.0     (negative EV)
        kelly_fraction(0.70, 2.500)          →  0.05    (capped)
    """
    if not (0.0 < win_prob < 1.0):
        raise ValueError(
            f"win_prob must be in (0, 1), got {win_prob!r}. "
            "Check upstream probability clipping."
        )
    if decimal_odds <= 1.0:
        raise ValueError(
            f"decimal_odds must be > 1.0 (no profit possible), got {decimal_odds!r}."
        )
    if fractional_divisor <= 0.0:
        raise ValueError(
            f"fractional_divisor must be > 0, got {fractional_divisor!r}."
        )

    profit_per_unit = decimal_odds - 1.0
    loss_prob = 1.0 - win_prob

    full_kelly = (win_prob * profit_per_unit - loss_prob) / profit_per_unit

    if full_kelly <= 0.0:
        return 0.0

    fractional = full_kelly / fractional_divisor
    if fractional < MIN_KELLY_FRACTION:
        return 0.0
    return min(fractional, max_fraction)


# ---------------------------------------------------------------------------
# Unit conversion
# ---------------------------------------------------------------------------


def kelly_to_units(kelly_fraction_val: float) -> float:
    """Convert a Kelly fraction to units (1 unit = 1% of bankroll).

    Examples::

        kelly_to_units(0.025) → 2.5
    """
    return kelly_fraction_val * 100.0
