"""
Database models for the betting-edge engine
SQLAlchemy ORM (SQLite by default, PostgreSQL in production)
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Boolean,
    JSON,
    Text,
    ForeignKey,
    Date,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime
import logging
import os
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env before reading DATABASE_URL
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./edge_engine.db")

# Scheduler jobs run on worker threads; SQLite needs cross-thread access.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Bet / leg result values
RESULT_WIN = "win"
RESULT_LOSS = "loss"
RESULT_PUSH = "push"
RESULT_VOID = "void"

BET_STATUS_ACTIVE = "active"
BET_STATUS_SETTLED = "settled"

RECO_STATUS_PUBLISHED = "published"


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class DailyRecommendation(Base):
    """One published card per calendar date (possibly a no-bet card)"""

    __tablename__ = "daily_recommendations"

    id = Column(Integer, primary_key=True, index=True)
    reco_date = Column(Date, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default=RECO_STATUS_PUBLISHED)
    no_bet_reason = Column(Text)  # Set only for no-bet days

    # Cycle metadata
    opportunities_considered = Column(Integer, default=0)
    sports_fetched = Column(JSON)  # {"NBA": 42, "NFL": 0, ...} snapshots per sport
    arbitrage_summary = Column(JSON)  # Ephemeral arbitrage sets seen this cycle

    published_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)

    bets = relationship(
        "RecommendedBetRecord",
        back_populates="recommendation",
        order_by="RecommendedBetRecord.id",
        cascade="all, delete-orphan",
    )

    @property
    def is_no_bet(self) -> bool:
        return self.no_bet_reason is not None


class RecommendedBetRecord(Base):
    """A single or parlay on a published card"""

    __tablename__ = "recommended_bets"

    id = Column(Integer, primary_key=True, index=True)
    recommendation_id = Column(
        Integer, ForeignKey("daily_recommendations.id"), nullable=False, index=True
    )
    bet_type = Column(String, nullable=False, index=True)  # "single", "parlay2", "parlay4"

    combined_american_odds = Column(Integer, nullable=False)
    combined_decimal_odds = Column(Float, nullable=False)
    edge_percentage = Column(Float, nullable=False)
    confidence = Column(Float, nullable=False)
    recommended_units = Column(Float)
    unit_stake = Column(Float, nullable=False)

    # Settlement
    status = Column(String, nullable=False, default=BET_STATUS_ACTIVE, index=True)
    result = Column(String)  # win | loss | push | void, null while active
    payout_decimal = Column(Float)  # Effective odds after pushes drop out
    net_pnl = Column(Float)
    settled_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)

    recommendation = relationship("DailyRecommendation", back_populates="bets")
    legs = relationship(
        "BetLeg",
        back_populates="bet",
        order_by="BetLeg.leg_index",
        cascade="all, delete-orphan",
    )


class BetLeg(Base):
    """One selection of a recommended bet, graded exactly once"""

    __tablename__ = "bet_legs"

    id = Column(Integer, primary_key=True, index=True)
    bet_id = Column(Integer, ForeignKey("recommended_bets.id"), nullable=False, index=True)
    leg_index = Column(Integer, nullable=False, default=0)

    # Game
    game_id = Column(String, nullable=False, index=True)  # Provider event id
    sport = Column(String, nullable=False)
    home_team = Column(String, nullable=False)
    away_team = Column(String, nullable=False)
    commence_time = Column(DateTime, nullable=False, index=True)  # UTC

    # Selection: text for display, structured fields for grading
    market_type = Column(String, nullable=False)  # "h2h", "spread", "total"
    selection = Column(String, nullable=False)  # "Lakers -5.5" or "Over 220.5"
    selection_key = Column(String, nullable=False)
    selection_side = Column(String)  # "home" | "away" | "draw" | "over" | "under"
    selection_line = Column(Float)  # Spread for the selected side, or the total

    # Pricing at publish time
    best_book = Column(String, nullable=False)
    best_odds = Column(Integer, nullable=False)  # American
    decimal_odds = Column(Float, nullable=False)
    fair_odds = Column(Integer)  # American
    fair_probability = Column(Float)
    fair_method = Column(String)  # "anchor" | "consensus"
    edge_percentage = Column(Float, nullable=False)
    confidence = Column(Float)

    # Settlement (written once)
    result = Column(String, index=True)  # null until settled
    result_reason = Column(Text)
    home_score = Column(Float)
    away_score = Column(Float)
    closing_odds = Column(Integer)
    clv_percentage = Column(Float)
    settled_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)

    bet = relationship("RecommendedBetRecord", back_populates="legs")
    settlements = relationship("SettlementRecord", back_populates="leg")


class SettlementRecord(Base):
    """Audit trail: one row per leg settlement"""

    __tablename__ = "settlement_records"

    id = Column(Integer, primary_key=True, index=True)
    leg_id = Column(Integer, ForeignKey("bet_legs.id"), nullable=False, index=True)
    result = Column(String, nullable=False)
    home_score = Column(Float)
    away_score = Column(Float)
    narrative = Column(Text, nullable=False)
    closing_odds = Column(Integer)
    clv_percentage = Column(Float)
    settled_at = Column(DateTime, default=datetime.utcnow, index=True)

    leg = relationship("BetLeg", back_populates="settlements")


class ClosingLine(Base):
    """Latest pre-game price for a selection, captured for CLV"""

    __tablename__ = "closing_lines"
    __table_args__ = (
        UniqueConstraint("game_id", "market_type", "selection", name="uq_closing_selection"),
    )

    id = Column(Integer, primary_key=True, index=True)
    game_id = Column(String, nullable=False, index=True)
    market_type = Column(String, nullable=False)
    selection = Column(String, nullable=False)
    book = Column(String)
    american_odds = Column(Integer, nullable=False)
    commence_time = Column(DateTime)
    captured_at = Column(DateTime, default=datetime.utcnow, index=True)


class DailyKPI(Base):
    """Performance roll-up per recommendation date, recomputed on every grade run"""

    __tablename__ = "daily_kpis"

    id = Column(Integer, primary_key=True, index=True)
    kpi_date = Column(Date, nullable=False, unique=True, index=True)

    pnl_by_type = Column(JSON)  # {"single": 90.9, "parlay2": -100.0, ...}
    total_daily_pnl = Column(Float, default=0.0)

    total_bets_placed = Column(Integer, default=0)
    total_bets_won = Column(Integer, default=0)
    total_bets_lost = Column(Integer, default=0)
    total_bets_pushed = Column(Integer, default=0)
    total_bets_voided = Column(Integer, default=0)

    cumulative_pnl = Column(Float, default=0.0)
    roi_percentage = Column(Float)
    hit_rate_percentage = Column(Float)
    clv_beat_percentage = Column(Float)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DataFetch(Base):
    """Track provider fetches for monitoring feed health"""

    __tablename__ = "data_fetches"

    id = Column(Integer, primary_key=True, index=True)
    fetch_time = Column(DateTime, default=datetime.utcnow, index=True)
    data_source = Column(String, nullable=False, index=True)  # "odds_api", "scores_api"
    sport = Column(String, index=True)
    success = Column(Boolean, nullable=False)
    records_fetched = Column(Integer)
    error_message = Column(Text)
    response_time_ms = Column(Integer)


# Create all tables
def init_db(bind=None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
