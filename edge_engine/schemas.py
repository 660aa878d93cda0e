"""
Pydantic schemas for provider payloads and the engine API.

Provider payloads (odds feed, scores feed) are validated here at the
boundary.  A record that fails validation is skipped by the caller with a
logged reason; nothing optional or malformed travels further into the
pipeline.  Response models mirror the ORM rows so endpoints never return
raw ORM objects.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ---------------------------------------------------------------------------
# Odds feed
# ---------------------------------------------------------------------------

class ProviderOutcome(BaseModel):
    """One priced outcome: ``{"name": "Lakers", "price": -110, "point": -5.5}``."""

    name: str = Field(..., min_length=1)
    price: float
    point: Optional[float] = None

    @field_validator("price")
    @classmethod
    def validate_american_odds(cls, v: float) -> float:
        if abs(v) < 100:
            raise ValueError(
                f"price={v} is not valid American odds. Must be >= +100 or <= -100."
            )
        return v


class ProviderMarket(BaseModel):
    key: str = Field(..., min_length=1)
    outcomes: List[ProviderOutcome] = Field(..., min_length=1)


class ProviderBookmaker(BaseModel):
    """Markets stay raw so one malformed market does not drop the book."""

    key: Optional[str] = None
    title: str = Field(..., min_length=1)
    markets: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def book_id(self) -> str:
        return self.title


class ProviderGame(BaseModel):
    """One event from the odds feed.  Bookmakers are validated one by one."""

    id: str = Field(..., min_length=1)
    sport_key: Optional[str] = None
    home_team: str = Field(..., min_length=1)
    away_team: str = Field(..., min_length=1)
    commence_time: datetime
    bookmakers: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("commence_time")
    @classmethod
    def normalise_commence_time(cls, v: datetime) -> datetime:
        return _to_naive_utc(v)


# ---------------------------------------------------------------------------
# Scores feed
# ---------------------------------------------------------------------------

class ProviderScore(BaseModel):
    name: str
    score: float


class ProviderScoreGame(BaseModel):
    id: str = Field(..., min_length=1)
    home_team: str
    away_team: str
    commence_time: datetime
    completed: bool = False
    scores: Optional[List[ProviderScore]] = None

    @field_validator("commence_time")
    @classmethod
    def normalise_commence_time(cls, v: datetime) -> datetime:
        return _to_naive_utc(v)


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------

class PublishResponse(BaseModel):
    status: str = Field(..., description='"published", "existing", "aborted" or "unavailable"')
    reco_date: date
    recommendation_id: Optional[int] = None
    no_bet_reason: Optional[str] = None
    bets_published: int = 0
    opportunities_considered: int = 0
    arbitrage_count: int = 0
    errors: List[str] = Field(default_factory=list)


class BetLegOut(BaseModel):
    id: int
    game_id: str
    sport: str
    home_team: str
    away_team: str
    commence_time: datetime
    market_type: str
    selection: str
    best_book: str
    best_odds: int
    decimal_odds: float
    fair_odds: Optional[int] = None
    edge_percentage: float
    result: Optional[str] = None
    closing_odds: Optional[int] = None
    clv_percentage: Optional[float] = None
    settled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RecommendedBetOut(BaseModel):
    id: int
    bet_type: str
    combined_american_odds: int
    combined_decimal_odds: float
    edge_percentage: float
    confidence: float
    recommended_units: Optional[float] = None
    status: str
    result: Optional[str] = None
    net_pnl: Optional[float] = None
    legs: List[BetLegOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DailyRecommendationOut(BaseModel):
    id: int
    reco_date: date
    status: str
    no_bet_reason: Optional[str] = None
    published_at: Optional[datetime] = None
    bets: List[RecommendedBetOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DailyKPIOut(BaseModel):
    kpi_date: date
    pnl_by_type: Dict[str, float] = Field(default_factory=dict)
    total_daily_pnl: float = 0.0
    total_bets_placed: int = 0
    total_bets_won: int = 0
    total_bets_lost: int = 0
    total_bets_pushed: int = 0
    total_bets_voided: int = 0
    cumulative_pnl: float = 0.0
    roi_percentage: Optional[float] = None
    hit_rate_percentage: Optional[float] = None
    clv_beat_percentage: Optional[float] = None

    model_config = {"from_attributes": True}
