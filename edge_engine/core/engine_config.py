"""Engine configuration: every policy knob in one place.

This module is the **registry** for thresholds and heuristics that are
business policy rather than mathematics: the anchor-book vig correction,
per-bet-type minimum edges, the arbitrage profit cap, the settlement grace
period.  Nowhere else in the codebase should these numbers be hard-coded.

Architecture
------------
:class:`EngineConfig` is a frozen dataclass.  :meth:`EngineConfig.default`
returns the production values; :meth:`EngineConfig.from_env` layers
``EDGE_*`` environment overrides on top (``.env`` files are honoured via
python-dotenv).  Services receive the config by injection.

Typical usage::

    from edge_engine.core.engine_config import EngineConfig

    cfg = EngineConfig.from_env()

    # Override a single knob for an experiment:
    strict = cfg.with_overrides(single_min_edge=3.0)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Final, Mapping, Optional

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Sport registry
# ---------------------------------------------------------------------------

#: Short sport codes used in DB records → provider sport keys.
SPORT_KEYS: Final[Mapping[str, str]] = {
    "NFL": "americanfootball_nfl",
    "NCAAF": "americanfootball_ncaaf",
    "NBA": "basketball_nba",
    "NCAAB": "basketball_ncaab",
    "MLB": "baseball_mlb",
    "NHL": "icehockey_nhl",
}


def sport_key_for(sport: str) -> str:
    """Return the provider sport key for a short code (``"NBA"`` → ``basketball_nba``)."""
    try:
        return SPORT_KEYS[sport.upper()]
    except KeyError:
        raise ValueError(
            f"Unknown sport {sport!r}; expected one of {sorted(SPORT_KEYS)}"
        ) from None


@dataclass(frozen=True)
class EngineConfig:
    """Immutable bundle of engine policy parameters.

    Attributes:
        anchor_books: Lower-case book names treated as the sharp anchor.  A
            quote whose book id contains one of these names is preferred
            over the consensus method.
        anchor_vig: Vig assumed to be baked into anchor prices.  Half of it
            is removed: ``p_fair = p_implied × (1 − vig/2)``.
        anchor_confidence / consensus_confidence: Confidence attached to
            fair odds produced by each method.

        min_books: Distinct books that must quote a market before it is mined.
        min_confidence: Opportunities below this confidence are dropped.
        min_lead_minutes: Games starting sooner than this are not mined.
        max_edge_percentage: Edges above this are treated as stale quotes.

        single_min_edge / parlay_min_edge: Per-bet-type edge thresholds (%).
        parlay_sizes: Leg counts of the parlays built each day.
        exclusive_parlays: When True, parlays also may not share teams with
            each other (the single is always exclusive).

        unit_stake: Assumed stake per recommended bet for P&L and ROI.
        arbitrage_max_profit: Profit (%) above which an arbitrage is
            treated as a data-quality failure.
        arbitrage_total_stake: Total stake used for reported stake splits.

        settlement_grace_hours: A leg is gradable this long after kick-off.
        score_days_from: Day window requested from the results provider.
        closing_window_minutes: Closing lines are captured for games starting
            within this many minutes.

        fetch_timeout_seconds: Timeout applied to every provider request.
        max_fetch_workers: Worker-pool bound for concurrent sport fetches.
        sports: Short sport codes fetched on each publish cycle.
        markets: Provider market keys requested.
        regions: Provider region filter.
        publish_timezone: Calendar used to decide the recommendation date.

        kelly_divisor / kelly_max_fraction: Fractional Kelly parameters.
    """

    # Fair odds
    anchor_books: frozenset[str] = frozenset({"pinnacle"})
    anchor_vig: float = 0.025
    anchor_confidence: float = 0.95
    consensus_confidence: float = 0.75

    # Mining gates
    min_books: int = 3
    min_confidence: float = 0.70
    min_lead_minutes: int = 120
    max_edge_percentage: float = 25.0

    # Selection
    single_min_edge: float = 2.0
    parlay_min_edge: float = 3.5
    parlay_sizes: tuple[int, ...] = (2, 4)
    exclusive_parlays: bool = False

    # Money
    unit_stake: float = 100.0
    arbitrage_max_profit: float = 50.0
    arbitrage_total_stake: float = 100.0

    # Settlement
    settlement_grace_hours: float = 4.0
    score_days_from: int = 3
    closing_window_minutes: int = 30

    # Providers
    fetch_timeout_seconds: float = 15.0
    max_fetch_workers: int = 4
    sports: tuple[str, ...] = ("NFL", "NBA", "NCAAB", "NCAAF", "MLB", "NHL")
    markets: tuple[str, ...] = ("h2h", "spreads", "totals")
    regions: str = "us"
    publish_timezone: str = "America/Chicago"

    # Sizing
    kelly_divisor: float = 4.0
    kelly_max_fraction: float = 0.05

    def __post_init__(self) -> None:
        if not (0.0 <= self.anchor_vig < 1.0):
            raise ValueError(f"anchor_vig must be in [0, 1), got {self.anchor_vig!r}")
        if self.min_books < 1:
            raise ValueError(f"min_books must be ≥ 1, got {self.min_books!r}")
        if any(size < 2 for size in self.parlay_sizes):
            raise ValueError(
                f"parlay_sizes must all be ≥ 2, got {self.parlay_sizes!r}"
            )
        if self.unit_stake <= 0:
            raise ValueError(f"unit_stake must be > 0, got {self.unit_stake!r}")
        if self.arbitrage_max_profit <= 0:
            raise ValueError(
                f"arbitrage_max_profit must be > 0, got {self.arbitrage_max_profit!r}"
            )
        if self.fetch_timeout_seconds <= 0:
            raise ValueError(
                f"fetch_timeout_seconds must be > 0, got {self.fetch_timeout_seconds!r}"
            )
        if self.max_fetch_workers < 1:
            raise ValueError(
                f"max_fetch_workers must be ≥ 1, got {self.max_fetch_workers!r}"
            )
        for sport in self.sports:
            sport_key_for(sport)

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def default(cls) -> EngineConfig:
        """Return the production defaults."""
        return cls()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
        """Build a config from ``EDGE_*`` environment variables.

        Unset variables keep their default.  ``environ`` exists for tests;
        when omitted the process environment (after loading ``.env``) is used.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        overrides: dict = {}

        def _float(name: str, attr: str) -> None:
            raw = environ.get(name)
            if raw not in (None, ""):
                overrides[attr] = float(raw)

        def _int(name: str, attr: str) -> None:
            raw = environ.get(name)
            if raw not in (None, ""):
                overrides[attr] = int(raw)

        def _csv(name: str) -> Optional[tuple[str, ...]]:
            raw = environ.get(name)
            if not raw:
                return None
            return tuple(part.strip() for part in raw.split(",") if part.strip())

        _float("EDGE_ANCHOR_VIG", "anchor_vig")
        _float("EDGE_SINGLE_MIN_EDGE", "single_min_edge")
        _float("EDGE_PARLAY_MIN_EDGE", "parlay_min_edge")
        _float("EDGE_MAX_EDGE", "max_edge_percentage")
        _float("EDGE_UNIT_STAKE", "unit_stake")
        _float("EDGE_ARB_MAX_PROFIT", "arbitrage_max_profit")
        _float("EDGE_SETTLEMENT_GRACE_HOURS", "settlement_grace_hours")
        _float("EDGE_FETCH_TIMEOUT", "fetch_timeout_seconds")
        _int("EDGE_MIN_BOOKS", "min_books")
        _int("EDGE_MIN_LEAD_MINUTES", "min_lead_minutes")
        _int("EDGE_FETCH_WORKERS", "max_fetch_workers")

        anchors = _csv("EDGE_ANCHOR_BOOKS")
        if anchors:
            overrides["anchor_books"] = frozenset(a.lower() for a in anchors)
        sports = _csv("EDGE_SPORTS")
        if sports:
            overrides["sports"] = tuple(s.upper() for s in sports)
        sizes = _csv("EDGE_PARLAY_SIZES")
        if sizes:
            overrides["parlay_sizes"] = tuple(int(s) for s in sizes)

        tz = environ.get("EDGE_PUBLISH_TZ")
        if tz:
            overrides["publish_timezone"] = tz

        return cls(**overrides)

    # ------------------------------------------------------------------ #
    #  Convenience accessors                                               #
    # ------------------------------------------------------------------ #

    def with_overrides(self, **changes) -> EngineConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def is_anchor_book(self, book_id: str) -> bool:
        """True if ``book_id`` names one of the configured anchor books."""
        lowered = book_id.lower()
        return any(anchor in lowered for anchor in self.anchor_books)
