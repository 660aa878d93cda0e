"""
Daily recommendation selector.

Builds the day's card from the ranked opportunity list:

* one **single**: the highest-edge opportunity at or above
  ``single_min_edge`` (2.0%);
* one **N-leg parlay** per size in ``parlay_sizes`` (2 and 4), a greedy
  walk down the ranking accepting legs at or above ``parlay_min_edge``
  (3.5%) whose game and teams are not yet in the parlay.

Team exclusivity is day-wide for the single: a team in the single never
appears in a parlay.  Within a parlay no game or team repeats.  Parlays may
share teams with each other unless ``exclusive_parlays`` is set.

Selection and validation are separate passes.  :meth:`DailySelector.validate`
re-checks every threshold and exclusivity rule on the finished card and
raises :class:`RecommendationValidationError` on any violation; the publish
cycle treats that as fatal and writes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import reduce
from operator import mul
from typing import Dict, Iterable, List, Optional, Sequence, Set

from edge_engine.core.engine_config import EngineConfig
from edge_engine.core.errors import RecommendationValidationError
from edge_engine.core.kelly import kelly_fraction, kelly_to_units
from edge_engine.services.edge import (
    parlay_american_odds,
    parlay_decimal_odds,
    parlay_edge,
)
from edge_engine.services.opportunities import Opportunity

logger = logging.getLogger(__name__)

BET_TYPE_SINGLE = "single"

NO_EDGES_REASON = (
    "No qualifying edges found across all sports. "
    "Minimum thresholds: {single:.1f}% for singles, {parlay:.1f}% for parlays."
)
NO_COMBINATION_REASON = (
    "No bets met the minimum edge requirements after applying "
    "one-leg-per-team constraints."
)


def parlay_type(size: int) -> str:
    return f"parlay{size}"


def _team_key(team: str) -> str:
    return team.strip().lower()


def _teams_of(opp: Opportunity) -> Set[str]:
    return {_team_key(opp.home_team), _team_key(opp.away_team)}


@dataclass(frozen=True)
class RecommendedBet:
    """A single or parlay on the daily card.  Legs are held by value."""

    bet_type: str
    legs: tuple[Opportunity, ...]
    combined_decimal_odds: float
    combined_american_odds: int
    edge_percentage: float
    confidence: float
    recommended_units: float = 0.0

    def teams(self) -> Set[str]:
        teams: Set[str] = set()
        for leg in self.legs:
            teams |= _teams_of(leg)
        return teams


@dataclass(frozen=True)
class DailyPicks:
    """The selector's output for one publish date."""

    single: Optional[RecommendedBet] = None
    parlays: tuple[RecommendedBet, ...] = field(default_factory=tuple)
    no_bet_reason: Optional[str] = None

    @property
    def bets(self) -> List[RecommendedBet]:
        bets = [self.single] if self.single is not None else []
        return bets + list(self.parlays)

    @property
    def is_no_bet(self) -> bool:
        return not self.bets


def build_single(opp: Opportunity, config: EngineConfig) -> RecommendedBet:
    return RecommendedBet(
        bet_type=BET_TYPE_SINGLE,
        legs=(opp,),
        combined_decimal_odds=opp.best_decimal_odds,
        combined_american_odds=opp.best_american_odds,
        edge_percentage=opp.edge_percentage,
        confidence=opp.confidence,
        recommended_units=round(kelly_to_units(opp.kelly_fraction), 2),
    )


def build_parlay(legs: Sequence[Opportunity], config: EngineConfig) -> RecommendedBet:
    """Combine legs: product odds, compounded edge, weakest-link confidence."""
    decimals = [leg.best_decimal_odds for leg in legs]
    combined = parlay_decimal_odds(decimals)
    joint_prob = reduce(mul, (leg.fair_odds.implied_probability for leg in legs), 1.0)
    sizing = kelly_fraction(
        joint_prob,
        combined,
        fractional_divisor=config.kelly_divisor,
        max_fraction=config.kelly_max_fraction,
    )
    return RecommendedBet(
        bet_type=parlay_type(len(legs)),
        legs=tuple(legs),
        combined_decimal_odds=combined,
        combined_american_odds=parlay_american_odds(decimals),
        edge_percentage=parlay_edge(leg.edge_percentage for leg in legs),
        confidence=min(leg.confidence for leg in legs),
        recommended_units=round(kelly_to_units(sizing), 2),
    )


class DailySelector:
    """Greedy single/parlay selection under team-exclusivity constraints."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig.default()

    def select(self, opportunities: Sequence[Opportunity]) -> DailyPicks:
        """Build the card from opportunities ranked by edge (descending)."""
        cfg = self.config
        single = next(
            (o for o in opportunities if o.edge_percentage >= cfg.single_min_edge),
            None,
        )
        single_bet = build_single(single, cfg) if single is not None else None

        day_excluded: Set[str] = set(single_bet.teams()) if single_bet else set()
        parlays = []
        for size in cfg.parlay_sizes:
            legs = self._greedy_parlay(opportunities, size, day_excluded)
            if legs is None:
                logger.info("No %d-leg parlay: fewer than %d qualifying legs", size, size)
                continue
            parlay = build_parlay(legs, cfg)
            parlays.append(parlay)
            if cfg.exclusive_parlays:
                day_excluded = day_excluded | parlay.teams()

        if single_bet is None and not parlays:
            if any(o.edge_percentage >= min(cfg.single_min_edge, cfg.parlay_min_edge)
                   for o in opportunities):
                reason = NO_COMBINATION_REASON
            else:
                reason = NO_EDGES_REASON.format(
                    single=cfg.single_min_edge, parlay=cfg.parlay_min_edge
                )
            logger.info("No-bet day: %s", reason)
            return DailyPicks(no_bet_reason=reason)

        logger.info(
            "Selected card: single=%s parlays=%s",
            single_bet.legs[0].selection_name if single_bet else None,
            [p.bet_type for p in parlays],
        )
        return DailyPicks(single=single_bet, parlays=tuple(parlays))

    def _greedy_parlay(
        self,
        opportunities: Iterable[Opportunity],
        size: int,
        excluded_teams: Set[str],
    ) -> Optional[List[Opportunity]]:
        legs: List[Opportunity] = []
        games: Set[str] = set()
        teams: Set[str] = set()
        for opp in opportunities:
            if opp.edge_percentage < self.config.parlay_min_edge:
                continue
            opp_teams = _teams_of(opp)
            if opp.game_id in games or opp_teams & (teams | excluded_teams):
                continue
            legs.append(opp)
            games.add(opp.game_id)
            teams |= opp_teams
            if len(legs) == size:
                return legs
        return None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, picks: DailyPicks) -> None:
        """Re-check every publish invariant.

        Raises:
            RecommendationValidationError: listing every violation found.
        """
        cfg = self.config
        violations: List[str] = []

        if picks.is_no_bet:
            if not picks.no_bet_reason:
                violations.append("no-bet card is missing a reason")
            if violations:
                raise RecommendationValidationError(violations)
            return

        if picks.single is not None:
            single = picks.single
            if len(single.legs) != 1:
                violations.append(f"single has {len(single.legs)} legs")
            for leg in single.legs:
                if leg.edge_percentage < cfg.single_min_edge:
                    violations.append(
                        f"single {leg.selection_name!r} edge "
                        f"{leg.edge_percentage:.2f}% < {cfg.single_min_edge}%"
                    )

        single_teams = picks.single.teams() if picks.single else set()
        seen_parlay_teams: Dict[str, str] = {}
        for parlay in picks.parlays:
            if parlay.bet_type != parlay_type(len(parlay.legs)):
                violations.append(
                    f"{parlay.bet_type} carries {len(parlay.legs)} legs"
                )
            games: Set[str] = set()
            teams: Set[str] = set()
            for leg in parlay.legs:
                if leg.edge_percentage < cfg.parlay_min_edge:
                    violations.append(
                        f"{parlay.bet_type} leg {leg.selection_name!r} edge "
                        f"{leg.edge_percentage:.2f}% < {cfg.parlay_min_edge}%"
                    )
                if leg.game_id in games:
                    violations.append(
                        f"{parlay.bet_type} repeats game {leg.game_id}"
                    )
                games.add(leg.game_id)
                leg_teams = _teams_of(leg)
                for team in sorted(leg_teams & teams):
                    violations.append(f"{parlay.bet_type} repeats team {team!r}")
                teams |= leg_teams
            for team in sorted(teams & single_teams):
                violations.append(
                    f"team {team!r} appears in both the single and {parlay.bet_type}"
                )
            if cfg.exclusive_parlays:
                for team in sorted(teams):
                    other = seen_parlay_teams.get(team)
                    if other is not None:
                        violations.append(
                            f"team {team!r} appears in both {other} and {parlay.bet_type}"
                        )
                for team in teams:
                    seen_parlay_teams.setdefault(team, parlay.bet_type)

        if violations:
            raise RecommendationValidationError(violations)
