"""Shared fixtures: an in-memory database and builders for market data."""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from edge_engine.core.kelly import kelly_fraction
from edge_engine.core.market import (
    MARKET_H2H,
    MARKET_SPREAD,
    METHOD_CONSENSUS,
    FairOddsResult,
    MarketSnapshot,
    OddsQuote,
    SIDE_AWAY,
    normalize_selection_key,
    resolve_side,
)
from edge_engine.core.odds_math import american_to_decimal, decimal_to_american
from edge_engine.models import (
    RECO_STATUS_PUBLISHED,
    Base,
    BetLeg,
    DailyRecommendation,
    RecommendedBetRecord,
)
from edge_engine.services.opportunities import Opportunity

# Fixed evaluation time (naive UTC) shared by the cycle tests.
NOW = datetime(2026, 3, 1, 15, 0)
TOMORROW = NOW + timedelta(days=1)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def add_bet(db):
    """Persist a bet (and its card, created on first use per date)."""

    def _add(reco_date: date, bet_type: str = "single", legs=None, **fields):
        reco = (
            db.query(DailyRecommendation)
            .filter(DailyRecommendation.reco_date == reco_date)
            .first()
        )
        if reco is None:
            reco = DailyRecommendation(
                reco_date=reco_date,
                status=RECO_STATUS_PUBLISHED,
                published_at=datetime.combine(reco_date, datetime.min.time()),
            )
            db.add(reco)

        leg_rows = []
        for index, overrides in enumerate(legs or [{}]):
            values = {
                "game_id": f"g{index + 1}",
                "sport": "NBA",
                "home_team": "Lakers",
                "away_team": "Celtics",
                "commence_time": datetime(2026, 3, 1, 0, 0),
                "market_type": "spread",
                "selection": "Lakers -5.5",
                "selection_side": "home",
                "selection_line": -5.5,
                "best_book": "DraftKings",
                "best_odds": -110,
                "edge_percentage": 4.0,
                "confidence": 0.75,
            }
            values.update(overrides)
            values.setdefault("selection_key", normalize_selection_key(values["selection"]))
            values.setdefault("decimal_odds", american_to_decimal(values["best_odds"]))
            leg_rows.append(BetLeg(leg_index=index, **values))

        combined = 1.0
        for leg in leg_rows:
            combined *= leg.decimal_odds
        bet_values = {
            "bet_type": bet_type,
            "combined_decimal_odds": combined,
            "combined_american_odds": decimal_to_american(combined),
            "edge_percentage": 4.0,
            "confidence": 0.75,
            "recommended_units": 1.0,
            "unit_stake": 100.0,
        }
        bet_values.update(fields)
        bet = RecommendedBetRecord(legs=leg_rows, **bet_values)
        reco.bets.append(bet)
        db.commit()
        db.refresh(bet)
        return bet

    return _add


# ---------------------------------------------------------------------------
# Market data builders
# ---------------------------------------------------------------------------

def _snapshot(
    prices,
    game_id="g1",
    market_type=MARKET_H2H,
    home="Lakers",
    away="Celtics",
    commence_time=TOMORROW,
    sport="NBA",
    line=None,
):
    """``prices`` maps book → {selection: american price}."""
    quotes = []
    for book, selections in prices.items():
        for selection, price in selections.items():
            side = resolve_side(market_type, selection.split(" ")[0], home, away)
            point = line
            if market_type == MARKET_SPREAD and side == SIDE_AWAY and line is not None:
                point = -line
            quotes.append(
                OddsQuote(
                    book_id=book,
                    selection_name=selection,
                    american_price=price,
                    side=side,
                    point=point,
                )
            )
    return MarketSnapshot(
        game_id=game_id,
        sport=sport,
        home_team=home,
        away_team=away,
        commence_time=commence_time,
        market_type=market_type,
        quotes=tuple(quotes),
        line=line,
    )


@pytest.fixture
def make_snapshot():
    return _snapshot


def _opportunity(
    game_id,
    home,
    away,
    edge,
    american=100,
    confidence=0.75,
    market_type=MARKET_H2H,
    selection=None,
):
    """An opportunity at ``american`` whose fair price yields ``edge`` percent."""
    best_decimal = american_to_decimal(american)
    fair_decimal = best_decimal / (1.0 + edge / 100.0)
    fair = FairOddsResult(
        fair_decimal_odds=fair_decimal,
        fair_american_odds=decimal_to_american(fair_decimal),
        implied_probability=1.0 / fair_decimal,
        method=METHOD_CONSENSUS,
        confidence=confidence,
    )
    selection = selection or home
    return Opportunity(
        game_id=game_id,
        sport="NBA",
        home_team=home,
        away_team=away,
        commence_time=TOMORROW,
        market_type=market_type,
        selection_key=normalize_selection_key(selection),
        selection_name=selection,
        selection_side="home",
        line=None,
        best_book="DraftKings",
        best_american_odds=american,
        best_decimal_odds=best_decimal,
        fair_odds=fair,
        edge_percentage=edge,
        confidence=confidence,
        kelly_fraction=kelly_fraction(1.0 / fair_decimal, best_decimal),
        books_quoted=3,
    )


@pytest.fixture
def make_opportunity():
    return _opportunity


# ---------------------------------------------------------------------------
# Raw provider payloads
# ---------------------------------------------------------------------------

def _raw_game(
    bookmakers,
    game_id="g1",
    home="Lakers",
    away="Celtics",
    commence="2026-03-02T00:10:00Z",
):
    """``bookmakers`` maps title → {market key: [(name, price, point), ...]}."""
    books = []
    for title, markets in bookmakers.items():
        books.append({
            "key": title.lower(),
            "title": title,
            "markets": [
                {
                    "key": key,
                    "outcomes": [
                        {"name": name, "price": price, **({"point": point} if point is not None else {})}
                        for name, price, point in outcomes
                    ],
                }
                for key, outcomes in markets.items()
            ],
        })
    return {
        "id": game_id,
        "sport_key": "basketball_nba",
        "home_team": home,
        "away_team": away,
        "commence_time": commence,
        "bookmakers": books,
    }


@pytest.fixture
def raw_game():
    return _raw_game


@pytest.fixture
def value_game(raw_game):
    """Three books on a moneyline; BetMGM's Lakers +130 is ~8.4% over fair."""
    return raw_game({
        "DraftKings": {"h2h": [("Lakers", -110, None), ("Celtics", -110, None)]},
        "FanDuel": {"h2h": [("Lakers", -110, None), ("Celtics", -110, None)]},
        "BetMGM": {"h2h": [("Lakers", 130, None), ("Celtics", -160, None)]},
    })


@pytest.fixture
def flat_game(raw_game):
    """Every book at -110 both ways: no edge anywhere."""
    return raw_game({
        book: {"h2h": [("Lakers", -110, None), ("Celtics", -110, None)]}
        for book in ("DraftKings", "FanDuel", "BetMGM")
    })
