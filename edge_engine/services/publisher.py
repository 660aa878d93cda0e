"""
Daily publish cycle.

    fetch odds (concurrent, per sport)
      → mine opportunities → select card → validate card
      → persist recommendation, bets and legs in one transaction

The cycle is idempotent per recommendation date: if a card is already
published for the date, nothing is fetched and the existing id is returned.

Nothing is written when validation fails or every sport's feed is
unavailable; the next trigger simply tries again.  A day with no qualifying
edges is a successful publish of a no-bet card.
"""

import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from edge_engine.core.engine_config import EngineConfig
from edge_engine.core.errors import RecommendationValidationError
from edge_engine.models import (
    RECO_STATUS_PUBLISHED,
    BetLeg,
    DailyRecommendation,
    RecommendedBetRecord,
)
from edge_engine.services.arbitrage import ArbitrageDetector
from edge_engine.services.odds import (
    ODDS_PROVIDER,
    OddsAPIClient,
    fetch_market_batch,
    record_fetches,
)
from edge_engine.services.opportunities import OpportunityMiner, starts_after_lead
from edge_engine.services.selector import DailyPicks, DailySelector, RecommendedBet

logger = logging.getLogger(__name__)

STATUS_PUBLISHED = "published"
STATUS_EXISTING = "existing"
STATUS_ABORTED = "aborted"
STATUS_UNAVAILABLE = "unavailable"


def publish_date_for(now: datetime, tz_name: str) -> date:
    """Calendar date of naive-UTC ``now`` in the publishing timezone."""
    return now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name)).date()


def find_published(db: Session, reco_date: date) -> Optional[DailyRecommendation]:
    return (
        db.query(DailyRecommendation)
        .filter(
            DailyRecommendation.reco_date == reco_date,
            DailyRecommendation.status == RECO_STATUS_PUBLISHED,
        )
        .first()
    )


def _leg_rows(bet: RecommendedBet) -> List[BetLeg]:
    return [
        BetLeg(
            leg_index=index,
            game_id=opp.game_id,
            sport=opp.sport,
            home_team=opp.home_team,
            away_team=opp.away_team,
            commence_time=opp.commence_time,
            market_type=opp.market_type,
            selection=opp.selection_name,
            selection_key=opp.selection_key,
            selection_side=opp.selection_side,
            selection_line=opp.line,
            best_book=opp.best_book,
            best_odds=opp.best_american_odds,
            decimal_odds=opp.best_decimal_odds,
            fair_odds=opp.fair_odds.fair_american_odds,
            fair_probability=opp.fair_odds.implied_probability,
            fair_method=opp.fair_odds.method,
            edge_percentage=round(opp.edge_percentage, 4),
            confidence=opp.confidence,
        )
        for index, opp in enumerate(bet.legs)
    ]


def build_recommendation(
    picks: DailyPicks, reco_date: date, config: EngineConfig, now: datetime
) -> DailyRecommendation:
    """ORM graph for a validated card (not yet added to a session)."""
    reco = DailyRecommendation(
        reco_date=reco_date,
        status=RECO_STATUS_PUBLISHED,
        no_bet_reason=picks.no_bet_reason if picks.is_no_bet else None,
        published_at=now,
    )
    for bet in picks.bets:
        reco.bets.append(
            RecommendedBetRecord(
                bet_type=bet.bet_type,
                combined_american_odds=bet.combined_american_odds,
                combined_decimal_odds=bet.combined_decimal_odds,
                edge_percentage=round(bet.edge_percentage, 4),
                confidence=bet.confidence,
                recommended_units=bet.recommended_units,
                unit_stake=config.unit_stake,
                legs=_leg_rows(bet),
            )
        )
    return reco


def run_publish_cycle(
    db: Session,
    client: OddsAPIClient,
    config: Optional[EngineConfig] = None,
    now: Optional[datetime] = None,
    selector: Optional[DailySelector] = None,
) -> Dict:
    """Publish the card for today's date (in ``config.publish_timezone``)."""
    config = config or EngineConfig.default()
    now = now or datetime.utcnow()
    selector = selector or DailySelector(config)
    reco_date = publish_date_for(now, config.publish_timezone)

    existing = find_published(db, reco_date)
    if existing is not None:
        logger.info("Card for %s already published (id=%d)", reco_date, existing.id)
        return _summary(STATUS_EXISTING, reco_date, existing)

    batch = fetch_market_batch(client, config)
    errors = [f"Odds unavailable for {s}: {e}" for s, e in batch.errors.items()]
    if not batch.counts and batch.errors:
        logger.error("Every odds feed unavailable for %s; nothing published", reco_date)
        return _summary(STATUS_UNAVAILABLE, reco_date, errors=errors)

    miner = OpportunityMiner(config)
    opportunities = miner.mine(batch.snapshots, now=now)
    # Same start window as the miner
    open_markets = [
        s for s in batch.snapshots
        if starts_after_lead(s, now, config.min_lead_minutes)
    ]
    arbitrage = ArbitrageDetector(config).scan(open_markets)

    picks = selector.select(opportunities)
    try:
        selector.validate(picks)
    except RecommendationValidationError as exc:
        logger.error("Publish for %s aborted: %s", reco_date, exc)
        return _summary(
            STATUS_ABORTED, reco_date,
            opportunities=len(opportunities), arbitrage=len(arbitrage),
            errors=errors + exc.violations,
        )

    reco = build_recommendation(picks, reco_date, config, now)
    reco.opportunities_considered = len(opportunities)
    reco.sports_fetched = dict(batch.counts)
    reco.arbitrage_summary = [arb.summary() for arb in arbitrage]

    try:
        db.add(reco)
        record_fetches(db, ODDS_PROVIDER, batch)
        db.commit()
    except IntegrityError:
        # A concurrent trigger published this date first.
        db.rollback()
        existing = find_published(db, reco_date)
        if existing is None:
            raise
        logger.info("Card for %s published concurrently (id=%d)", reco_date, existing.id)
        return _summary(STATUS_EXISTING, reco_date, existing)

    db.refresh(reco)
    logger.info(
        "Published card %d for %s: %d bet(s)%s",
        reco.id, reco_date, len(reco.bets),
        f"; no-bet: {reco.no_bet_reason}" if reco.is_no_bet else "",
    )
    return _summary(
        STATUS_PUBLISHED, reco_date, reco,
        opportunities=len(opportunities), arbitrage=len(arbitrage), errors=errors,
    )


def _summary(
    status: str,
    reco_date: date,
    reco: Optional[DailyRecommendation] = None,
    *,
    opportunities: int = 0,
    arbitrage: int = 0,
    errors: Optional[List[str]] = None,
) -> Dict:
    return {
        "status": status,
        "reco_date": reco_date,
        "recommendation_id": reco.id if reco is not None else None,
        "no_bet_reason": reco.no_bet_reason if reco is not None else None,
        "bets_published": len(reco.bets) if reco is not None else 0,
        "opportunities_considered": (
            opportunities if reco is None else (reco.opportunities_considered or 0)
        ),
        "arbitrage_count": arbitrage,
        "errors": errors or [],
    }
