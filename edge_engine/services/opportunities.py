"""
Opportunity mining: fair odds and edge for every selection of a batch.

The miner walks every snapshot (game × market × line) of a publish cycle:

1. **Data-quality gates**: a market needs at least ``min_books`` distinct
   books and two or more selections; the game must start at least
   ``min_lead_minutes`` after the evaluation time.  Failing a gate skips the
   market and increments a reason counter; it is never an error.
2. **Pricing**: fair odds from :class:`FairOddsEstimator` (memoised in a
   cache that lives for this one call), best price across books, edge.
3. **Filtering**: positive edge only; confidence at or above
   ``min_confidence``; edges above ``max_edge_percentage`` are dropped as
   stale quotes.
4. **De-duplication**: one opportunity per (game, market, selection key),
   keeping the highest edge.
5. **Ranking**: edge descending.  Ties keep batch order, so the ranking is
   deterministic for a given batch.  The daily selector relies on this order.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from edge_engine.core.engine_config import EngineConfig
from edge_engine.core.errors import InvalidOddsError, SelectionNotFoundError
from edge_engine.core.kelly import kelly_fraction
from edge_engine.core.market import (
    FairOddsResult,
    MarketSnapshot,
    normalize_selection_key,
)
from edge_engine.services.edge import edge_percentage
from edge_engine.services.fair_odds import FairOddsCache, FairOddsEstimator

logger = logging.getLogger(__name__)


def starts_after_lead(snapshot: MarketSnapshot, now: datetime, lead_minutes: int) -> bool:
    """True if the game starts more than ``lead_minutes`` after ``now``."""
    return snapshot.commence_time > now + timedelta(minutes=lead_minutes)


@dataclass(frozen=True)
class Opportunity:
    """A priced selection with positive edge.  Immutable once mined."""

    game_id: str
    sport: str
    home_team: str
    away_team: str
    commence_time: datetime
    market_type: str
    selection_key: str
    selection_name: str
    selection_side: Optional[str]
    line: Optional[float]
    best_book: str
    best_american_odds: int
    best_decimal_odds: float
    fair_odds: FairOddsResult
    edge_percentage: float
    confidence: float
    kelly_fraction: float = 0.0
    books_quoted: int = 0

    @property
    def teams(self) -> Tuple[str, str]:
        return self.home_team, self.away_team

    @property
    def dedupe_key(self) -> Tuple[str, str, str]:
        return self.game_id, self.market_type, self.selection_key


class OpportunityMiner:
    """Converts a batch of snapshots into a ranked opportunity list."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig.default()
        self.skipped: Counter = Counter()

    def mine(
        self,
        snapshots: Iterable[MarketSnapshot],
        now: Optional[datetime] = None,
    ) -> List[Opportunity]:
        now = now or datetime.utcnow()
        estimator = FairOddsEstimator(self.config, cache=FairOddsCache())
        self.skipped = Counter()

        best_by_key: Dict[Tuple[str, str, str], Opportunity] = {}

        for snapshot in snapshots:
            if not starts_after_lead(snapshot, now, self.config.min_lead_minutes):
                self.skipped["starts_too_soon"] += 1
                continue
            books = snapshot.books()
            if len(books) < self.config.min_books:
                self.skipped["insufficient_books"] += 1
                logger.debug(
                    "Skipping %s/%s: %d book(s) < %d",
                    snapshot.game_id, snapshot.market_type,
                    len(books), self.config.min_books,
                )
                continue
            if len(snapshot.selections()) < 2:
                self.skipped["single_sided_market"] += 1
                continue

            for selection in snapshot.selections():
                opp = self._price(estimator, snapshot, selection, len(books))
                if opp is None:
                    continue
                current = best_by_key.get(opp.dedupe_key)
                if current is None or opp.edge_percentage > current.edge_percentage:
                    best_by_key[opp.dedupe_key] = opp

        ranked = sorted(
            best_by_key.values(), key=lambda o: o.edge_percentage, reverse=True
        )
        logger.info(
            "Mined %d opportunities (fair-odds cache %d entries, skipped=%s)",
            len(ranked), len(estimator.cache), dict(self.skipped),
        )
        return ranked

    def _price(
        self,
        estimator: FairOddsEstimator,
        snapshot: MarketSnapshot,
        selection: str,
        books_quoted: int,
    ) -> Optional[Opportunity]:
        try:
            fair = estimator.estimate(snapshot, selection)
        except (SelectionNotFoundError, InvalidOddsError) as exc:
            self.skipped["unpriceable"] += 1
            logger.debug("Cannot price %s: %s", selection, exc)
            return None

        if fair.confidence < self.config.min_confidence:
            self.skipped["low_confidence"] += 1
            return None

        best = snapshot.best_quote(selection)
        best_decimal = best.decimal_price
        edge = edge_percentage(best_decimal, fair.fair_decimal_odds)
        if edge <= 0.0:
            return None
        if edge > self.config.max_edge_percentage:
            self.skipped["edge_above_cap"] += 1
            logger.info(
                "Dropping %.1f%% edge on %s %s at %s: above %.0f%% cap",
                edge, snapshot.game_id, selection, best.book_id,
                self.config.max_edge_percentage,
            )
            return None

        return Opportunity(
            game_id=snapshot.game_id,
            sport=snapshot.sport,
            home_team=snapshot.home_team,
            away_team=snapshot.away_team,
            commence_time=snapshot.commence_time,
            market_type=snapshot.market_type,
            selection_key=normalize_selection_key(selection),
            selection_name=selection,
            selection_side=best.side,
            line=best.point,
            best_book=best.book_id,
            best_american_odds=best.american_price,
            best_decimal_odds=best_decimal,
            fair_odds=fair,
            edge_percentage=edge,
            confidence=fair.confidence,
            kelly_fraction=kelly_fraction(
                fair.implied_probability,
                best_decimal,
                fractional_divisor=self.config.kelly_divisor,
                max_fraction=self.config.kelly_max_fraction,
            ),
            books_quoted=books_quoted,
        )
