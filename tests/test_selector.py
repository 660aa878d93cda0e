"""Tests for DailySelector: thresholds, team exclusivity, validation."""

import random

import pytest

from edge_engine.core.engine_config import EngineConfig
from edge_engine.core.errors import RecommendationValidationError
from edge_engine.services.selector import (
    BET_TYPE_SINGLE,
    NO_COMBINATION_REASON,
    NO_EDGES_REASON,
    DailyPicks,
    DailySelector,
    build_parlay,
    build_single,
)

DEFAULT = EngineConfig.default()


@pytest.fixture
def slate(make_opportunity):
    """Five games on distinct teams, ranked by edge."""
    return [
        make_opportunity("g1", "Lakers", "Celtics", 6.0),
        make_opportunity("g2", "Knicks", "Nets", 5.0),
        make_opportunity("g3", "Bulls", "Heat", 4.5),
        make_opportunity("g4", "Suns", "Jazz", 4.0),
        make_opportunity("g5", "Kings", "Magic", 3.8),
    ]


def _games(bet):
    return [leg.game_id for leg in bet.legs]


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

class TestSelect:

    def test_full_card(self, slate):
        picks = DailySelector().select(slate)

        assert picks.single.bet_type == BET_TYPE_SINGLE
        assert _games(picks.single) == ["g1"]
        assert [p.bet_type for p in picks.parlays] == ["parlay2", "parlay4"]
        assert _games(picks.parlays[0]) == ["g2", "g3"]
        assert _games(picks.parlays[1]) == ["g2", "g3", "g4", "g5"]
        assert picks.no_bet_reason is None
        DailySelector().validate(picks)

    def test_parlay_combines_legs(self, slate):
        parlay2 = DailySelector().select(slate).parlays[0]
        # 5% and 4.5% legs at even money
        assert parlay2.combined_decimal_odds == pytest.approx(4.0)
        assert parlay2.combined_american_odds == 300
        assert parlay2.edge_percentage == pytest.approx((1.05 * 1.045 - 1) * 100)
        assert parlay2.confidence == 0.75

    def test_single_teams_excluded_from_parlays(self, make_opportunity):
        opps = [
            make_opportunity("g1", "Lakers", "Celtics", 6.0),
            make_opportunity("g2", "Lakers", "Nets", 5.0),
            make_opportunity("g3", "Bulls", "Heat", 4.5),
            make_opportunity("g4", "Suns", "Jazz", 4.0),
        ]
        picks = DailySelector().select(opps)
        assert _games(picks.parlays[0]) == ["g3", "g4"]
        assert not picks.single.teams() & picks.parlays[0].teams()

    def test_parlay_never_repeats_a_game(self, make_opportunity):
        opps = [
            make_opportunity("g1", "Lakers", "Celtics", 6.0),
            make_opportunity("g2", "Knicks", "Nets", 5.0),
            make_opportunity("g2", "Knicks", "Nets", 4.8, market_type="total", selection="Over 220.5"),
            make_opportunity("g3", "Bulls", "Heat", 4.5),
        ]
        parlay2 = DailySelector().select(opps).parlays[0]
        assert _games(parlay2) == ["g2", "g3"]

    def test_parlay_legs_below_threshold_ignored(self, make_opportunity):
        opps = [
            make_opportunity("g1", "Lakers", "Celtics", 6.0),
            make_opportunity("g2", "Knicks", "Nets", 5.0),
            make_opportunity("g3", "Bulls", "Heat", 3.0),
        ]
        picks = DailySelector().select(opps)
        assert picks.single is not None
        assert picks.parlays == ()

    def test_exclusive_parlays(self, slate):
        picks = DailySelector(EngineConfig(exclusive_parlays=True)).select(slate)
        # g2/g3 go to the 2-leg parlay, leaving only two games for the 4-leg one
        assert [p.bet_type for p in picks.parlays] == ["parlay2"]

    def test_no_edges_gives_no_bet(self, make_opportunity):
        opps = [make_opportunity("g1", "Lakers", "Celtics", 1.5)]
        picks = DailySelector().select(opps)
        assert picks.is_no_bet
        assert picks.bets == []
        assert picks.no_bet_reason == NO_EDGES_REASON.format(single=2.0, parlay=3.5)
        assert "2.0%" in picks.no_bet_reason
        DailySelector().validate(picks)

    def test_empty_slate_gives_no_bet(self):
        picks = DailySelector().select([])
        assert picks.is_no_bet
        assert picks.no_bet_reason

    def test_edges_without_valid_combination(self, make_opportunity):
        cfg = EngineConfig(single_min_edge=10.0)
        picks = DailySelector(cfg).select([make_opportunity("g1", "Lakers", "Celtics", 5.0)])
        assert picks.is_no_bet
        assert picks.no_bet_reason == NO_COMBINATION_REASON

    def test_selection_is_deterministic(self, slate):
        selector = DailySelector()
        first = selector.select(slate)
        second = selector.select(list(slate))
        assert [(b.bet_type, _games(b)) for b in first.bets] == [
            (b.bet_type, _games(b)) for b in second.bets
        ]

    def test_random_slates_respect_team_exclusivity(self, make_opportunity):
        rng = random.Random(4)
        teams = [f"Team{i}" for i in range(14)]
        selector = DailySelector()
        for trial in range(200):
            opps = []
            for g in range(rng.randint(0, 12)):
                home, away = rng.sample(teams, 2)
                opps.append(make_opportunity(f"t{trial}g{g}", home, away, rng.uniform(0.5, 12.0)))
            opps.sort(key=lambda o: o.edge_percentage, reverse=True)

            picks = selector.select(opps)
            selector.validate(picks)
            single_teams = picks.single.teams() if picks.single else set()
            for parlay in picks.parlays:
                seen = []
                for leg in parlay.legs:
                    seen.extend(t.lower() for t in leg.teams)
                assert len(seen) == len(set(seen))
                assert not single_teams & parlay.teams()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidate:

    def test_validate_rejects_low_edge_single(self, make_opportunity):
        picks = DailyPicks(single=build_single(make_opportunity("g1", "Lakers", "Celtics", 1.0), DEFAULT))
        with pytest.raises(RecommendationValidationError) as exc_info:
            DailySelector().validate(picks)
        assert "single" in exc_info.value.violations[0]

    def test_validate_rejects_repeated_team_in_parlay(self, make_opportunity):
        parlay = build_parlay([
            make_opportunity("g1", "Lakers", "Celtics", 5.0),
            make_opportunity("g2", "Lakers", "Nets", 5.0),
        ], DEFAULT)
        with pytest.raises(RecommendationValidationError) as exc_info:
            DailySelector().validate(DailyPicks(parlays=(parlay,)))
        assert any("repeats team 'lakers'" in v for v in exc_info.value.violations)

    def test_validate_rejects_single_parlay_overlap(self, make_opportunity):
        single = build_single(make_opportunity("g1", "Lakers", "Celtics", 6.0), DEFAULT)
        parlay = build_parlay([
            make_opportunity("g2", "Celtics", "Nets", 5.0),
            make_opportunity("g3", "Bulls", "Heat", 5.0),
        ], DEFAULT)
        with pytest.raises(RecommendationValidationError) as exc_info:
            DailySelector().validate(DailyPicks(single=single, parlays=(parlay,)))
        assert any("both the single" in v for v in exc_info.value.violations)

    def test_validate_rejects_low_edge_parlay_leg(self, make_opportunity):
        parlay = build_parlay([
            make_opportunity("g1", "Lakers", "Celtics", 5.0),
            make_opportunity("g2", "Knicks", "Nets", 2.5),
        ], DEFAULT)
        with pytest.raises(RecommendationValidationError):
            DailySelector().validate(DailyPicks(parlays=(parlay,)))

    def test_validate_rejects_no_bet_without_reason(self):
        with pytest.raises(RecommendationValidationError):
            DailySelector().validate(DailyPicks())
