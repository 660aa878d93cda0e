"""
Fair-odds estimation: turn a multi-book market snapshot into a vig-free price.

Two methods, tried in order:

1. **Anchor**: if a configured sharp book (Pinnacle by default) quotes the
   selection, its price is trusted as the market's best information.  Half
   of an assumed vig is removed: ``p_fair = p_implied × (1 − vig/2)``.
2. **Consensus**: otherwise every selection's implied probability is
   averaged across all books quoting it, and the averages are normalised
   by their sum so the market adds up to exactly one.

Lookups are memoised per cycle in :class:`FairOddsCache`, keyed by
``(game_id, market_type, selection)``.  The cache is created by the caller
for one mining pass and discarded afterwards; it is never module-global.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from edge_engine.core.engine_config import EngineConfig
from edge_engine.core.errors import SelectionNotFoundError
from edge_engine.core.market import (
    METHOD_ANCHOR,
    METHOD_CONSENSUS,
    FairOddsResult,
    MarketSnapshot,
)
from edge_engine.core.odds_math import (
    decimal_to_american,
    implied_probability,
    overround,
    probability_to_decimal,
    remove_vig_proportional,
    vig_percentage,
)

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str]


class FairOddsCache:
    """Per-cycle memo of fair-odds results."""

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, FairOddsResult] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey) -> Optional[FairOddsResult]:
        result = self._entries.get(key)
        if result is None:
            self.misses += 1
        else:
            self.hits += 1
        return result

    def put(self, key: CacheKey, result: FairOddsResult) -> None:
        self._entries[key] = result

    def __len__(self) -> int:
        return len(self._entries)


def consensus_probabilities(snapshot: MarketSnapshot) -> Tuple[Dict[str, float], float]:
    """Average implied probability per selection, then normalise.

    Returns:
        ``(fair_probabilities, total_implied)`` where the probabilities sum
        to one and ``total_implied`` is the pre-normalisation overround.
    """
    averaged: Dict[str, float] = {}
    for selection in snapshot.selections():
        quotes = snapshot.quotes_for(selection)
        averaged[selection] = sum(
            implied_probability(q.decimal_price) for q in quotes
        ) / len(quotes)

    total = overround(averaged)
    return remove_vig_proportional(averaged), total


class FairOddsEstimator:
    """Produces :class:`FairOddsResult` objects for selections of a snapshot."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        cache: Optional[FairOddsCache] = None,
    ) -> None:
        self.config = config or EngineConfig.default()
        self.cache = cache

    def estimate(self, snapshot: MarketSnapshot, selection: str) -> FairOddsResult:
        """Fair odds for ``selection`` in ``snapshot``.

        Raises:
            SelectionNotFoundError: No book quotes ``selection``.
        """
        key = (snapshot.game_id, snapshot.market_type, selection)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        if not snapshot.quotes_for(selection):
            raise SelectionNotFoundError(
                snapshot.game_id, snapshot.market_type, selection
            )

        result = self._anchor(snapshot, selection)
        if result is None:
            result = self._consensus(snapshot, selection)

        if self.cache is not None:
            self.cache.put(key, result)
        return result

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    def _anchor(self, snapshot: MarketSnapshot, selection: str) -> Optional[FairOddsResult]:
        anchor_quote = next(
            (
                q
                for q in snapshot.quotes_for(selection)
                if self.config.is_anchor_book(q.book_id)
            ),
            None,
        )
        if anchor_quote is None:
            return None

        p_implied = implied_probability(anchor_quote.decimal_price)
        p_fair = p_implied * (1.0 - self.config.anchor_vig / 2.0)
        fair_decimal = probability_to_decimal(p_fair)

        logger.debug(
            "Anchor fair odds %s/%s %s via %s: p=%.4f",
            snapshot.game_id, snapshot.market_type, selection,
            anchor_quote.book_id, p_fair,
        )
        return FairOddsResult(
            fair_decimal_odds=fair_decimal,
            fair_american_odds=decimal_to_american(fair_decimal),
            implied_probability=p_fair,
            method=METHOD_ANCHOR,
            confidence=self.config.anchor_confidence,
        )

    def _consensus(self, snapshot: MarketSnapshot, selection: str) -> FairOddsResult:
        fair_probs, total_implied = consensus_probabilities(snapshot)
        p_fair = fair_probs[selection]
        fair_decimal = probability_to_decimal(p_fair)

        return FairOddsResult(
            fair_decimal_odds=fair_decimal,
            fair_american_odds=decimal_to_american(fair_decimal),
            implied_probability=p_fair,
            method=METHOD_CONSENSUS,
            confidence=self.config.consensus_confidence,
            vig_percentage_estimate=vig_percentage(total_implied),
        )
