"""
Edge and expected-value arithmetic for single selections and parlays.

All figures are percentages unless a name says otherwise.  Parlay edge is
compounded through the product of ``(1 + edge)`` factors; summing leg edges
understates it (4% and 5% legs give 9.2%, not 9%).
"""

from __future__ import annotations

from functools import reduce
from operator import mul
from typing import Iterable, Sequence

from edge_engine.core.odds_math import decimal_to_american


def edge_percentage(best_decimal_odds: float, fair_decimal_odds: float) -> float:
    """``(best / fair − 1) × 100``.  Positive means better-than-fair odds."""
    if fair_decimal_odds <= 1.0:
        raise ValueError(f"fair_decimal_odds must be > 1.0, got {fair_decimal_odds!r}")
    return (best_decimal_odds / fair_decimal_odds - 1.0) * 100.0


def parlay_edge(leg_edges: Iterable[float]) -> float:
    """Combined parlay EV from leg edges: ``(Π(1 + e/100) − 1) × 100``."""
    factors = [1.0 + e / 100.0 for e in leg_edges]
    if not factors:
        raise ValueError("A parlay needs at least one leg")
    return (reduce(mul, factors, 1.0) - 1.0) * 100.0


def parlay_decimal_odds(leg_decimal_odds: Sequence[float]) -> float:
    """Product of leg decimal odds."""
    if not leg_decimal_odds:
        raise ValueError("A parlay needs at least one leg")
    return reduce(mul, leg_decimal_odds, 1.0)


def parlay_american_odds(leg_decimal_odds: Sequence[float]) -> int:
    return decimal_to_american(parlay_decimal_odds(leg_decimal_odds))
