"""
Arbitrage detection over market snapshots.

For every outcome of a market the single best price across books is taken.
When the implied probabilities of those best prices sum below one, staking
each outcome in proportion to its implied probability returns the same
amount whatever happens:

    total    = Σ 1/d_i
    stake_i  = S × (1/d_i) / total
    payout_i = stake_i × d_i = S / total          (identical for every i)
    profit%  = (1/total − 1) × 100

Profits above ``EngineConfig.arbitrage_max_profit`` (50% by default) are not
reported: a gap that wide means one of the quotes is stale or mis-keyed.

Spread and total snapshots are already split per line by the odds parser, so
the outcomes combined here are always complementary.  Whole-number lines can
push on both sides; such sets are flagged ``push_exposed`` because a push
refunds one leg while the other loses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from edge_engine.core.engine_config import EngineConfig
from edge_engine.core.market import (
    MARKET_H2H,
    MarketSnapshot,
    OddsQuote,
    normalize_selection_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArbitrageLeg:
    selection_key: str
    selection_name: str
    book: str
    american_odds: int
    decimal_odds: float


@dataclass(frozen=True)
class StakeAllocation:
    selection_name: str
    book: str
    stake_amount: float
    payout: float


@dataclass(frozen=True)
class ArbitrageSet:
    """A guaranteed-profit combination found in one market."""

    game_id: str
    sport: str
    home_team: str
    away_team: str
    market_type: str
    line: Optional[float]
    legs: tuple[ArbitrageLeg, ...]
    total_implied_probability: float
    profit_percentage: float
    stake_split: tuple[StakeAllocation, ...]
    total_stake: float
    guaranteed_profit: float
    push_exposed: bool = False

    def summary(self) -> dict:
        return {
            "game_id": self.game_id,
            "matchup": f"{self.away_team} @ {self.home_team}",
            "market_type": self.market_type,
            "line": self.line,
            "profit_percentage": round(self.profit_percentage, 3),
            "guaranteed_profit": round(self.guaranteed_profit, 2),
            "push_exposed": self.push_exposed,
            "legs": [
                {
                    "selection": leg.selection_name,
                    "book": leg.book,
                    "american_odds": leg.american_odds,
                    "stake": round(alloc.stake_amount, 2),
                }
                for leg, alloc in zip(self.legs, self.stake_split)
            ],
        }


class ArbitrageDetector:
    """Finds arbitrage sets in snapshots."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig.default()

    def detect(
        self, snapshot: MarketSnapshot, total_stake: Optional[float] = None
    ) -> Optional[ArbitrageSet]:
        """Return the arbitrage set for ``snapshot`` or ``None``.

        ``None`` covers every non-arbitrage case: fewer than two outcomes,
        all best prices at the same book, no price gap, or a profit outside
        ``(0, arbitrage_max_profit]``.
        """
        stake = self.config.arbitrage_total_stake if total_stake is None else total_stake
        if stake <= 0:
            raise ValueError(f"total_stake must be > 0, got {stake!r}")

        best: List[OddsQuote] = []
        for selection in snapshot.selections():
            quote = snapshot.best_quote(selection)
            if quote is not None:
                best.append(quote)

        if len(best) < 2 or len({q.book_id for q in best}) < 2:
            return None

        total_implied = sum(1.0 / q.decimal_price for q in best)
        if total_implied >= 1.0:
            return None

        profit_pct = (1.0 / total_implied - 1.0) * 100.0
        if profit_pct <= 0.0:
            return None
        if profit_pct > self.config.arbitrage_max_profit:
            logger.warning(
                "Discarding %.1f%% arbitrage on %s/%s: exceeds %.0f%% cap, "
                "likely stale quote",
                profit_pct, snapshot.game_id, snapshot.market_type,
                self.config.arbitrage_max_profit,
            )
            return None

        legs = []
        split = []
        for q in best:
            decimal = q.decimal_price
            stake_i = stake * (1.0 / decimal) / total_implied
            legs.append(
                ArbitrageLeg(
                    selection_key=normalize_selection_key(q.selection_name),
                    selection_name=q.selection_name,
                    book=q.book_id,
                    american_odds=q.american_price,
                    decimal_odds=decimal,
                )
            )
            split.append(
                StakeAllocation(
                    selection_name=q.selection_name,
                    book=q.book_id,
                    stake_amount=stake_i,
                    payout=stake_i * decimal,
                )
            )

        guaranteed = min(a.payout for a in split) - stake
        push_exposed = (
            snapshot.market_type != MARKET_H2H
            and snapshot.line is not None
            and float(snapshot.line).is_integer()
        )

        logger.info(
            "Arbitrage %s/%s line=%s: %.2f%% across %s",
            snapshot.game_id, snapshot.market_type, snapshot.line, profit_pct,
            ", ".join(q.book_id for q in best),
        )
        return ArbitrageSet(
            game_id=snapshot.game_id,
            sport=snapshot.sport,
            home_team=snapshot.home_team,
            away_team=snapshot.away_team,
            market_type=snapshot.market_type,
            line=snapshot.line,
            legs=tuple(legs),
            total_implied_probability=total_implied,
            profit_percentage=profit_pct,
            stake_split=tuple(split),
            total_stake=stake,
            guaranteed_profit=guaranteed,
            push_exposed=push_exposed,
        )

    def scan(
        self, snapshots: Iterable[MarketSnapshot], total_stake: Optional[float] = None
    ) -> List[ArbitrageSet]:
        """Detect across a batch; most profitable first."""
        found = []
        for snapshot in snapshots:
            arb = self.detect(snapshot, total_stake)
            if arb is not None:
                found.append(arb)
        found.sort(key=lambda a: a.profit_percentage, reverse=True)
        return found
