"""Immutable value objects that flow from the odds feed into the services.

:class:`OddsQuote` and :class:`MarketSnapshot` are built once per cycle by
``edge_engine.services.odds`` after boundary validation and are never
mutated.  :class:`FairOddsResult` is the output contract of the fair-odds
estimator.

Design choices
--------------
* All classes are frozen and slotted so they can be cached by the per-cycle
  fair-odds cache and shared across the fetch worker threads safely.
* A snapshot holds the quotes of **one line** of one market.  Spread and
  total markets with several lines on offer are split into one snapshot per
  line by the parser, so every selection inside a snapshot is a
  complementary outcome of the same proposition.
* Selection names carry their line (``"Lakers -5.5"``, ``"Over 220.5"``)
  so that a selection string is unique across the lines of a game, and the
  structured ``side`` / ``point`` fields travel alongside so settlement
  never has to re-parse the text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final, Optional

from edge_engine.core.odds_math import american_to_decimal

# ---------------------------------------------------------------------------
# Market vocabulary
# ---------------------------------------------------------------------------

MARKET_H2H: Final[str] = "h2h"
MARKET_SPREAD: Final[str] = "spread"
MARKET_TOTAL: Final[str] = "total"

#: Provider market key → engine market type.
PROVIDER_MARKETS: Final[dict[str, str]] = {
    "h2h": MARKET_H2H,
    "spreads": MARKET_SPREAD,
    "totals": MARKET_TOTAL,
}

SIDE_HOME: Final[str] = "home"
SIDE_AWAY: Final[str] = "away"
SIDE_DRAW: Final[str] = "draw"
SIDE_OVER: Final[str] = "over"
SIDE_UNDER: Final[str] = "under"

METHOD_ANCHOR: Final[str] = "anchor"
METHOD_CONSENSUS: Final[str] = "consensus"

_KEY_STRIP = re.compile(r"[^\w.\-]")


def format_line(point: float, *, signed: bool) -> str:
    """Render a line the way books print it (``-5.5``, ``+3``, ``220.5``)."""
    return f"{point:+g}" if signed else f"{point:g}"


def selection_label(market_type: str, outcome_name: str, point: Optional[float]) -> str:
    """Human-readable selection including its line.

    Examples::

        selection_label("h2h", "Lakers", None)       → "Lakers"
        selection_label("spread", "Lakers", -5.5)    → "Lakers -5.5"
        selection_label("total", "Over", 220.5)      → "Over 220.5"
    """
    if point is None or market_type == MARKET_H2H:
        return outcome_name
    signed = market_type == MARKET_SPREAD
    return f"{outcome_name} {format_line(point, signed=signed)}"


def normalize_selection_key(selection: str) -> str:
    """Stable dedupe key: lower-case, spaces to underscores, punctuation dropped."""
    return _KEY_STRIP.sub("", selection.strip().lower().replace(" ", "_"))


def resolve_side(
    market_type: str, outcome_name: str, home_team: str, away_team: str
) -> Optional[str]:
    """Map a provider outcome name to a structured side, or None if unknown."""
    name = outcome_name.strip().lower()
    if market_type == MARKET_TOTAL:
        if name in (SIDE_OVER, SIDE_UNDER):
            return name
        return None
    if name == home_team.strip().lower():
        return SIDE_HOME
    if name == away_team.strip().lower():
        return SIDE_AWAY
    if market_type == MARKET_H2H and name in ("draw", "tie"):
        return SIDE_DRAW
    return None


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OddsQuote:
    """One book's price on one selection."""

    book_id: str
    selection_name: str
    american_price: int
    side: Optional[str] = None
    point: Optional[float] = None

    @property
    def decimal_price(self) -> float:
        return american_to_decimal(self.american_price)


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    """All quotes for one line of one market of one game.

    ``commence_time`` is a naive UTC datetime.  ``line`` is the home-team
    spread for spread markets, the total for total markets and ``None`` for
    moneylines.
    """

    game_id: str
    sport: str
    home_team: str
    away_team: str
    commence_time: datetime
    market_type: str
    quotes: tuple[OddsQuote, ...] = field(default_factory=tuple)
    line: Optional[float] = None

    def books(self) -> set[str]:
        """Distinct books quoting this market."""
        return {q.book_id for q in self.quotes}

    def selections(self) -> list[str]:
        """Selection names in first-seen order (deterministic iteration)."""
        seen: dict[str, None] = {}
        for q in self.quotes:
            seen.setdefault(q.selection_name, None)
        return list(seen)

    def quotes_for(self, selection: str) -> list[OddsQuote]:
        return [q for q in self.quotes if q.selection_name == selection]

    def best_quote(self, selection: str) -> Optional[OddsQuote]:
        """Highest decimal price for ``selection``; earliest quote wins ties."""
        best: Optional[OddsQuote] = None
        for q in self.quotes_for(selection):
            if best is None or q.decimal_price > best.decimal_price:
                best = q
        return best

    def teams(self) -> tuple[str, str]:
        return self.home_team, self.away_team


@dataclass(frozen=True, slots=True)
class FairOddsResult:
    """De-vigged fair price for one selection.

    Attributes:
        fair_decimal_odds: ``1 / implied_probability``.
        fair_american_odds: Rounded American equivalent, for display.
        implied_probability: Fair win probability, strictly inside (0, 1).
        method: ``"anchor"`` or ``"consensus"``.
        confidence: 0–1 trust in the estimate (0.95 anchor, 0.75 consensus).
        vig_percentage_estimate: Market margin seen by the consensus method.
    """

    fair_decimal_odds: float
    fair_american_odds: int
    implied_probability: float
    method: str
    confidence: float
    vig_percentage_estimate: Optional[float] = None

    def __post_init__(self) -> None:
        if not (0.0 < self.implied_probability < 1.0):
            raise ValueError(
                f"implied_probability must be in (0, 1), got {self.implied_probability!r}"
            )
