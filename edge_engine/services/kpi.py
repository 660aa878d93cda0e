"""
Daily KPI aggregation.

One ``DailyKPI`` row per recommendation date, always recomputed from the
settled bets and legs (never incremented), so running it twice on the same
data yields the same row.

Per-date figures:
  pnl_by_type       net P&L of that date's settled bets, by bet type
Running figures (all dates up to and including the KPI date):
  cumulative_pnl    Σ net P&L
  roi_percentage    cumulative_pnl / (bets × unit_stake) × 100
  hit_rate          won / (won + lost) × 100   (pushes and voids excluded)
  clv_beat          legs with CLV > 0 / legs with a CLV × 100

All public functions receive a SQLAlchemy Session so they can be called
from FastAPI endpoints or background jobs without importing web-layer code.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from edge_engine.models import (
    BET_STATUS_SETTLED,
    RESULT_LOSS,
    RESULT_PUSH,
    RESULT_VOID,
    RESULT_WIN,
    BetLeg,
    DailyKPI,
    DailyRecommendation,
    RecommendedBetRecord,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _safe_pct(numerator: float, denominator: float) -> Optional[float]:
    return round(numerator / denominator * 100.0, 4) if denominator > 0 else None


def _settled_bets_through(db: Session, kpi_date: date) -> List[RecommendedBetRecord]:
    return (
        db.query(RecommendedBetRecord)
        .join(DailyRecommendation, RecommendedBetRecord.recommendation_id == DailyRecommendation.id)
        .filter(
            RecommendedBetRecord.status == BET_STATUS_SETTLED,
            DailyRecommendation.reco_date <= kpi_date,
        )
        .order_by(RecommendedBetRecord.id)
        .all()
    )


def _clv_values_through(db: Session, kpi_date: date) -> List[float]:
    rows = (
        db.query(BetLeg.clv_percentage)
        .join(RecommendedBetRecord, BetLeg.bet_id == RecommendedBetRecord.id)
        .join(DailyRecommendation, RecommendedBetRecord.recommendation_id == DailyRecommendation.id)
        .filter(
            BetLeg.result.isnot(None),
            BetLeg.clv_percentage.isnot(None),
            DailyRecommendation.reco_date <= kpi_date,
        )
        .all()
    )
    return [value for (value,) in rows]


# ---------------------------------------------------------------------------
# compute / upsert
# ---------------------------------------------------------------------------

def compute_daily_kpis(db: Session, kpi_date: date, unit_stake: float = 100.0) -> Dict:
    """Compute the KPI figures for ``kpi_date`` without writing anything."""
    bets = _settled_bets_through(db, kpi_date)

    pnl_by_type: Dict[str, float] = defaultdict(float)
    tallies = {RESULT_WIN: 0, RESULT_LOSS: 0, RESULT_PUSH: 0, RESULT_VOID: 0}
    cumulative = 0.0
    for bet in bets:
        pnl = bet.net_pnl or 0.0
        cumulative += pnl
        if bet.result in tallies:
            tallies[bet.result] += 1
        if bet.recommendation.reco_date == kpi_date:
            pnl_by_type[bet.bet_type] += pnl

    total = len(bets)
    won, lost = tallies[RESULT_WIN], tallies[RESULT_LOSS]
    clv_values = _clv_values_through(db, kpi_date)

    return {
        "kpi_date": kpi_date,
        "pnl_by_type": {k: round(v, 2) for k, v in sorted(pnl_by_type.items())},
        "total_daily_pnl": round(sum(pnl_by_type.values()), 2),
        "total_bets_placed": total,
        "total_bets_won": won,
        "total_bets_lost": lost,
        "total_bets_pushed": tallies[RESULT_PUSH],
        "total_bets_voided": tallies[RESULT_VOID],
        "cumulative_pnl": round(cumulative, 2),
        "roi_percentage": _safe_pct(cumulative, total * unit_stake),
        "hit_rate_percentage": _safe_pct(won, won + lost),
        "clv_beat_percentage": _safe_pct(
            sum(1 for v in clv_values if v > 0), len(clv_values)
        ),
    }


def _apply(row: DailyKPI, figures: Dict) -> None:
    for key, value in figures.items():
        setattr(row, key, value)
    row.updated_at = datetime.utcnow()


def recompute_daily_kpis(db: Session, kpi_date: date, unit_stake: float = 100.0) -> DailyKPI:
    """Recompute and upsert the ``DailyKPI`` row for ``kpi_date``."""
    figures = compute_daily_kpis(db, kpi_date, unit_stake)

    row = db.query(DailyKPI).filter(DailyKPI.kpi_date == kpi_date).first()
    if row is None:
        row = DailyKPI(kpi_date=kpi_date)
        db.add(row)
    _apply(row, figures)
    try:
        db.commit()
    except IntegrityError:
        # Another scheduler inserted the same date first; update theirs.
        db.rollback()
        row = db.query(DailyKPI).filter(DailyKPI.kpi_date == kpi_date).one()
        _apply(row, figures)
        db.commit()

    logger.info(
        "KPIs %s: %d bets, P&L $%.2f cumulative, ROI %s%%, hit rate %s%%",
        kpi_date.isoformat(), figures["total_bets_placed"], figures["cumulative_pnl"],
        figures["roi_percentage"], figures["hit_rate_percentage"],
    )
    return row


def kpi_timeline(db: Session, days: int = 30, today: Optional[date] = None) -> List[DailyKPI]:
    """KPI rows for the last ``days`` days, oldest first."""
    today = today or datetime.utcnow().date()
    start = today - timedelta(days=days)
    return (
        db.query(DailyKPI)
        .filter(DailyKPI.kpi_date >= start, DailyKPI.kpi_date <= today)
        .order_by(DailyKPI.kpi_date.asc())
        .all()
    )
