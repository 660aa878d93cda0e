"""
Automated settlement of published bets.

Scheduled jobs:
  run_grade_cycle()        - hourly overnight: fetch scores, settle legs and bets,
                             recompute KPIs for the affected dates
  capture_closing_lines()  - every 30 min: store closing prices for CLV

Grading rules (pure functions, no DB):
  h2h     win if the selected team outscores its opponent, loss otherwise
  total   combined score vs line; equal is a push
  spread  team score + line vs opponent score; equal is a push

Legs carry structured ``selection_side`` / ``selection_line`` fields written
at publish time.  Text parsing of the selection string is only a fallback
for rows written without them; an unparseable selection grades ``void``
with the reason recorded, it is never guessed.

A leg is written once: the UPDATE only matches rows whose ``result`` is
still NULL, so two overlapping grade runs cannot settle the same leg twice.
Bets are settled from what the database holds, not from what the current
run touched, so a run that dies between the two steps is caught up by the
next one.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import reduce
from operator import mul
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from edge_engine.core.engine_config import EngineConfig
from edge_engine.core.market import (
    MARKET_H2H,
    MARKET_SPREAD,
    MARKET_TOTAL,
    SIDE_AWAY,
    SIDE_DRAW,
    SIDE_HOME,
    SIDE_OVER,
    format_line,
)
from edge_engine.models import (
    BET_STATUS_ACTIVE,
    BET_STATUS_SETTLED,
    RESULT_LOSS,
    RESULT_PUSH,
    RESULT_VOID,
    RESULT_WIN,
    BetLeg,
    ClosingLine,
    DailyRecommendation,
    RecommendedBetRecord,
    SettlementRecord,
)
from edge_engine.services.clv import calculate_clv
from edge_engine.services.kpi import recompute_daily_kpis
from edge_engine.services.odds import (
    ODDS_PROVIDER,
    SCORES_PROVIDER,
    GameResult,
    OddsAPIClient,
    fetch_market_batch,
    fetch_results_batch,
    record_fetches,
)

logger = logging.getLogger(__name__)

_LINE_EPSILON = 1e-9

_TOTAL_RE = re.compile(r"^(over|under)\s+([+-]?\d+(?:\.\d+)?)$", re.IGNORECASE)
_SPREAD_RE = re.compile(r"^(.+?)\s+([+-]?\d+(?:\.\d+)?)$")


# ---------------------------------------------------------------------------
# Selection descriptors (pure, no DB)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SelectionDescriptor:
    """Structured form of a selection: what side, at what line."""

    market_type: str
    side: str
    line: Optional[float] = None


def _team_side(team: str, home_team: str, away_team: str) -> Optional[str]:
    name = team.strip().lower()
    if name == home_team.strip().lower():
        return SIDE_HOME
    if name == away_team.strip().lower():
        return SIDE_AWAY
    return None


def parse_selection(
    selection: str, market_type: str, home_team: str, away_team: str
) -> Optional[SelectionDescriptor]:
    """
    Parse 'Over 220.5'   → total, over, 220.5.
    Parse 'Lakers -5.5'  → spread, side of Lakers, -5.5.
    Parse 'Lakers'       → h2h, side of Lakers.

    Returns None when the text does not fit the market's grammar or the
    team matches neither side of the game exactly.
    """
    text = selection.strip()

    if market_type == MARKET_TOTAL:
        match = _TOTAL_RE.match(text)
        if not match:
            return None
        return SelectionDescriptor(MARKET_TOTAL, match.group(1).lower(), float(match.group(2)))

    if market_type == MARKET_SPREAD:
        match = _SPREAD_RE.match(text)
        if not match:
            return None
        side = _team_side(match.group(1), home_team, away_team)
        if side is None:
            return None
        return SelectionDescriptor(MARKET_SPREAD, side, float(match.group(2)))

    if market_type == MARKET_H2H:
        side = _team_side(text, home_team, away_team)
        if side is None and text.lower() in ("draw", "tie"):
            side = SIDE_DRAW
        if side is None:
            return None
        return SelectionDescriptor(MARKET_H2H, side)

    return None


def descriptor_for_leg(leg: BetLeg) -> Optional[SelectionDescriptor]:
    """Structured fields when present, otherwise a parse of the selection text."""
    if leg.selection_side:
        needs_line = leg.market_type in (MARKET_SPREAD, MARKET_TOTAL)
        if needs_line and leg.selection_line is None:
            return None
        return SelectionDescriptor(leg.market_type, leg.selection_side, leg.selection_line)
    return parse_selection(leg.selection, leg.market_type, leg.home_team, leg.away_team)


# ---------------------------------------------------------------------------
# Leg grading
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LegGrade:
    result: str
    narrative: str


def _cmp(value: float, target: float) -> int:
    if abs(value - target) < _LINE_EPSILON:
        return 0
    return 1 if value > target else -1


def grade_selection(
    descriptor: SelectionDescriptor,
    home_team: str,
    away_team: str,
    home_score: float,
    away_score: float,
) -> LegGrade:
    """Grade a structured selection against a final score."""
    score_line = f"{away_team} {away_score:g} @ {home_team} {home_score:g}"

    if descriptor.market_type == MARKET_TOTAL:
        combined = home_score + away_score
        cmp = _cmp(combined, descriptor.line)
        if cmp == 0:
            result = RESULT_PUSH
        elif (cmp > 0) == (descriptor.side == SIDE_OVER):
            result = RESULT_WIN
        else:
            result = RESULT_LOSS
        return LegGrade(
            result,
            f"{descriptor.side.title()} {format_line(descriptor.line, signed=False)}: "
            f"combined {combined:g} ({score_line}) → {result}",
        )

    if descriptor.side == SIDE_DRAW:
        result = RESULT_WIN if _cmp(home_score, away_score) == 0 else RESULT_LOSS
        return LegGrade(result, f"Draw: {score_line} → {result}")

    if descriptor.side == SIDE_HOME:
        team, team_score, opp_score = home_team, home_score, away_score
    else:
        team, team_score, opp_score = away_team, away_score, home_score

    if descriptor.market_type == MARKET_SPREAD:
        adjusted = team_score + descriptor.line
        cmp = _cmp(adjusted, opp_score)
        result = {1: RESULT_WIN, 0: RESULT_PUSH, -1: RESULT_LOSS}[cmp]
        return LegGrade(
            result,
            f"{team} {format_line(descriptor.line, signed=True)}: "
            f"{team_score:g} {format_line(descriptor.line, signed=True)} = {adjusted:g} "
            f"vs {opp_score:g} ({score_line}) → {result}",
        )

    result = RESULT_WIN if team_score > opp_score else RESULT_LOSS
    return LegGrade(result, f"{team} moneyline: {score_line} → {result}")


def determine_leg_result(leg: BetLeg, game: GameResult) -> LegGrade:
    """Grade a persisted leg; void with a reason if its selection cannot be read."""
    descriptor = descriptor_for_leg(leg)
    if descriptor is None:
        reason = (
            f"Unparseable selection {leg.selection!r} for {leg.market_type} "
            f"market ({leg.away_team} @ {leg.home_team}); voided"
        )
        logger.warning("Leg %s: %s", leg.id, reason)
        return LegGrade(RESULT_VOID, reason)
    return grade_selection(
        descriptor, leg.home_team, leg.away_team, game.home_score, game.away_score
    )


# ---------------------------------------------------------------------------
# Composite bet settlement
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BetOutcome:
    result: str
    payout_decimal: float   # Effective odds paid; 1.0 = stake back, 0.0 = lost
    net_pnl: float


def settle_bet(legs: Sequence[Tuple[str, float]], stake: float) -> BetOutcome:
    """
    Combine settled leg results into a bet result.

    ``legs`` is a sequence of ``(result, decimal_odds)``.

      any loss            → loss (stake lost)
      any void, no loss   → void (stake returned)
      all push            → push (stake returned)
      otherwise           → win, paid at the product of the winning legs'
                            odds (pushed legs drop out of the parlay)
    """
    results = [r for r, _ in legs]
    if not results or any(r is None for r in results):
        raise ValueError("Cannot settle a bet with unsettled legs")
    if RESULT_LOSS in results:
        return BetOutcome(RESULT_LOSS, 0.0, -stake)
    if RESULT_VOID in results:
        return BetOutcome(RESULT_VOID, 1.0, 0.0)
    winning = [odds for r, odds in legs if r == RESULT_WIN]
    if not winning:
        return BetOutcome(RESULT_PUSH, 1.0, 0.0)
    payout = reduce(mul, winning, 1.0)
    return BetOutcome(RESULT_WIN, payout, stake * (payout - 1.0))


def settle_composite_bets(db: Session, bet_ids: Iterable[int], now: datetime) -> List[RecommendedBetRecord]:
    """Settle every active bet in ``bet_ids`` whose legs are all settled."""
    settled: List[RecommendedBetRecord] = []
    for bet_id in sorted(set(bet_ids)):
        bet = db.get(RecommendedBetRecord, bet_id)
        if bet is None or bet.status != BET_STATUS_ACTIVE:
            continue
        if any(leg.result is None for leg in bet.legs):
            continue

        outcome = settle_bet([(leg.result, leg.decimal_odds) for leg in bet.legs], bet.unit_stake)
        updated = (
            db.query(RecommendedBetRecord)
            .filter(
                RecommendedBetRecord.id == bet.id,
                RecommendedBetRecord.status == BET_STATUS_ACTIVE,
            )
            .update(
                {
                    "status": BET_STATUS_SETTLED,
                    "result": outcome.result,
                    "payout_decimal": outcome.payout_decimal,
                    "net_pnl": round(outcome.net_pnl, 2),
                    "settled_at": now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        if updated == 1:
            db.refresh(bet)
            settled.append(bet)
            logger.info(
                "%s bet %d settled %s | P&L $%.2f",
                bet.bet_type, bet.id, outcome.result.upper(), outcome.net_pnl,
            )
    return settled


# ---------------------------------------------------------------------------
# Result lookup
# ---------------------------------------------------------------------------

def _index_results(results: Iterable[GameResult]) -> Tuple[Dict[str, GameResult], Dict[Tuple[str, str], List[GameResult]]]:
    by_id: Dict[str, GameResult] = {}
    by_teams: Dict[Tuple[str, str], List[GameResult]] = {}
    for r in results:
        by_id[r.game_id] = r
        by_teams.setdefault((r.home_team.lower(), r.away_team.lower()), []).append(r)
    return by_id, by_teams


def find_game_result(
    leg: BetLeg,
    by_id: Dict[str, GameResult],
    by_teams: Dict[Tuple[str, str], List[GameResult]],
) -> Optional[GameResult]:
    """Match by provider id, falling back to teams + start within 12 hours."""
    found = by_id.get(leg.game_id)
    if found is not None:
        return found
    for candidate in by_teams.get((leg.home_team.lower(), leg.away_team.lower()), []):
        if abs(candidate.commence_time - leg.commence_time) <= timedelta(hours=12):
            return candidate
    return None


def closing_odds_for(db: Session, leg: BetLeg) -> Optional[int]:
    line = (
        db.query(ClosingLine)
        .filter(
            ClosingLine.game_id == leg.game_id,
            ClosingLine.market_type == leg.market_type,
            ClosingLine.selection == leg.selection,
        )
        .first()
    )
    return line.american_odds if line else None


def settleable_bet_ids(db: Session) -> List[int]:
    """Active bets whose legs are all settled, whichever run settled them."""
    rows = (
        db.query(RecommendedBetRecord.id)
        .filter(
            RecommendedBetRecord.status == BET_STATUS_ACTIVE,
            RecommendedBetRecord.legs.any(),
            ~RecommendedBetRecord.legs.any(BetLeg.result.is_(None)),
        )
        .order_by(RecommendedBetRecord.id)
        .all()
    )
    return [bet_id for (bet_id,) in rows]


# ---------------------------------------------------------------------------
# Job 1: run_grade_cycle
# ---------------------------------------------------------------------------

def run_grade_cycle(
    db: Session,
    client: OddsAPIClient,
    config: Optional[EngineConfig] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Settle every eligible unsettled leg, then every bet whose legs are done,
    then the KPIs of the affected dates.

    A leg is eligible once its game started ``settlement_grace_hours`` ago.
    Games without a final score are left for the next run.  Legs that
    started before the scores feed's ``score_days_from`` window can no
    longer be graded and are voided with the reason recorded.

    Bets are picked up from the database rather than from this run's legs,
    so a bet left active by an interrupted run is settled by the next one.
    """
    config = config or EngineConfig.default()
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=config.settlement_grace_hours)
    window_start = now - timedelta(days=config.score_days_from)
    logger.info("Starting grade cycle (legs commenced before %s)", cutoff.isoformat())

    counts = {
        "settled": 0, "pushes": 0, "voided": 0, "expired": 0,
        "not_ready": 0, "already_settled": 0,
    }
    errors: List[str] = []
    settled_bets: List[RecommendedBetRecord] = []
    kpi_dates: List = []

    def record(leg: BetLeg, grade: LegGrade, game: Optional[GameResult] = None) -> None:
        try:
            if _settle_leg(db, leg, grade, now, game):
                counts["settled"] += 1
                if grade.result == RESULT_PUSH:
                    counts["pushes"] += 1
                elif grade.result == RESULT_VOID:
                    counts["voided"] += 1
            else:
                counts["already_settled"] += 1
        except Exception as exc:
            db.rollback()
            errors.append(f"Leg {leg.id} ({leg.selection}): {exc}")
            logger.error("Error settling leg %d: %s", leg.id, exc)

    try:
        eligible = (
            db.query(BetLeg)
            .filter(BetLeg.result.is_(None), BetLeg.commence_time <= cutoff)
            .order_by(BetLeg.commence_time, BetLeg.id)
            .all()
        )
        expired = [leg for leg in eligible if leg.commence_time < window_start]
        pending = [leg for leg in eligible if leg.commence_time >= window_start]

        for leg in expired:
            counts["expired"] += 1
            reason = (
                f"No final score for {leg.away_team} @ {leg.home_team} "
                f"({leg.commence_time.isoformat()}) within the "
                f"{config.score_days_from}-day results window; voided"
            )
            logger.warning("Leg %d: %s", leg.id, reason)
            record(leg, LegGrade(RESULT_VOID, reason))

        if pending:
            sports = sorted({leg.sport for leg in pending})
            batch = fetch_results_batch(client, sports, config)
            record_fetches(db, SCORES_PROVIDER, batch)
            db.commit()
            for sport, error in batch.errors.items():
                errors.append(f"Scores unavailable for {sport}: {error}")

            results = [r for sport_results in batch.results.values() for r in sport_results]
            by_id, by_teams = _index_results(results)

            for leg in pending:
                game = find_game_result(leg, by_id, by_teams)
                if game is None or not game.is_final:
                    counts["not_ready"] += 1
                    continue
                record(leg, determine_leg_result(leg, game), game)
        elif not expired:
            logger.info("No eligible unsettled legs")

        settled_bets = settle_composite_bets(db, settleable_bet_ids(db), now)

        if settled_bets:
            # Cumulative figures of later dates depend on earlier ones.
            earliest = min(bet.recommendation.reco_date for bet in settled_bets)
            kpi_dates = [
                reco_date for (reco_date,) in (
                    db.query(DailyRecommendation.reco_date)
                    .filter(DailyRecommendation.reco_date >= earliest)
                    .order_by(DailyRecommendation.reco_date)
                    .all()
                )
            ]
        for kpi_date in kpi_dates:
            recompute_daily_kpis(db, kpi_date, unit_stake=config.unit_stake)

    except Exception as exc:
        logger.error("Fatal error in grade cycle: %s", exc, exc_info=True)
        db.rollback()
        errors.append(f"Fatal: {exc}")

    summary = _job_summary(counts, len(settled_bets), kpi_dates, errors, now)
    logger.info("Grade cycle done: %s", summary)
    return summary


def _settle_leg(
    db: Session,
    leg: BetLeg,
    grade: LegGrade,
    now: datetime,
    game: Optional[GameResult] = None,
) -> bool:
    """Write ``grade`` to ``leg`` unless another run got there first."""
    home_score = game.home_score if game else None
    away_score = game.away_score if game else None
    closing = closing_odds_for(db, leg)
    clv = calculate_clv(leg.best_odds, closing)
    clv_pct = round(clv.clv_percentage, 4) if clv else None

    updated = (
        db.query(BetLeg)
        .filter(BetLeg.id == leg.id, BetLeg.result.is_(None))
        .update(
            {
                "result": grade.result,
                "result_reason": grade.narrative,
                "home_score": home_score,
                "away_score": away_score,
                "closing_odds": closing,
                "clv_percentage": clv_pct,
                "settled_at": now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        logger.info("Leg %d already settled by another run", leg.id)
        return False

    db.add(SettlementRecord(
        leg_id=leg.id,
        result=grade.result,
        home_score=home_score,
        away_score=away_score,
        narrative=grade.narrative,
        closing_odds=closing,
        clv_percentage=clv_pct,
        settled_at=now,
    ))
    db.commit()
    db.refresh(leg)
    logger.info(
        "%s: leg %d (%s)%s",
        grade.result.upper(), leg.id, leg.selection,
        f" | CLV {clv.clv_percentage:+.2f}% ({clv.grade()})" if clv else "",
    )
    return True


# ---------------------------------------------------------------------------
# Job 2: capture_closing_lines
# ---------------------------------------------------------------------------

def capture_closing_lines(
    db: Session,
    client: OddsAPIClient,
    config: Optional[EngineConfig] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    For unsettled legs starting within ``closing_window_minutes``, store the
    current price of their selection as the closing line.

    The anchor book's price is used when it quotes the selection, otherwise
    the best price across books.  Re-running overwrites the stored price, so
    the last capture before kick-off wins.
    """
    config = config or EngineConfig.default()
    now = now or datetime.utcnow()
    window_end = now + timedelta(minutes=config.closing_window_minutes)
    errors: List[str] = []
    captured = 0
    unmatched = 0

    try:
        upcoming = (
            db.query(BetLeg)
            .filter(
                BetLeg.result.is_(None),
                BetLeg.commence_time >= now,
                BetLeg.commence_time <= window_end,
            )
            .all()
        )
        if not upcoming:
            logger.info("No legs in closing-line window")
            return _closing_summary(0, 0, errors, now)

        sports = sorted({leg.sport for leg in upcoming})
        batch = fetch_market_batch(client, config, sports)
        record_fetches(db, ODDS_PROVIDER, batch)
        for sport, error in batch.errors.items():
            errors.append(f"Odds unavailable for {sport}: {error}")

        snapshots = {}
        for snap in batch.snapshots:
            for selection in snap.selections():
                snapshots[(snap.game_id, snap.market_type, selection)] = snap

        for leg in upcoming:
            snap = snapshots.get((leg.game_id, leg.market_type, leg.selection))
            if snap is None:
                # Typically the market moved off the published line
                unmatched += 1
                logger.debug(
                    "No closing quote for leg %d: %s %r not offered for %s",
                    leg.id, leg.market_type, leg.selection, leg.game_id,
                )
                continue
            quotes = snap.quotes_for(leg.selection)
            quote = next(
                (q for q in quotes if config.is_anchor_book(q.book_id)), None
            ) or snap.best_quote(leg.selection)

            line = (
                db.query(ClosingLine)
                .filter(
                    ClosingLine.game_id == leg.game_id,
                    ClosingLine.market_type == leg.market_type,
                    ClosingLine.selection == leg.selection,
                )
                .first()
            )
            if line is None:
                line = ClosingLine(
                    game_id=leg.game_id,
                    market_type=leg.market_type,
                    selection=leg.selection,
                )
                db.add(line)
            line.book = quote.book_id
            line.american_odds = quote.american_price
            line.commence_time = leg.commence_time
            line.captured_at = now
            captured += 1
        db.commit()

    except Exception as exc:
        logger.error("Fatal error in capture_closing_lines: %s", exc, exc_info=True)
        db.rollback()
        errors.append(f"Fatal: {exc}")

    summary = _closing_summary(captured, unmatched, errors, now)
    logger.info("capture_closing_lines done: %s", summary)
    return summary


def _job_summary(counts: Dict, bets_settled: int, kpi_dates, errors: List[str], now: datetime) -> Dict:
    return {
        "legs_settled": counts["settled"],
        "pushes": counts["pushes"],
        "voided": counts["voided"],
        "expired": counts["expired"],
        "not_ready": counts["not_ready"],
        "already_settled": counts["already_settled"],
        "bets_settled": bets_settled,
        "kpi_dates": [d.isoformat() for d in kpi_dates],
        "errors": errors,
        "timestamp": now.isoformat(),
    }


def _closing_summary(captured: int, unmatched: int, errors: List[str], now: datetime) -> Dict:
    return {
        "lines_captured": captured,
        "legs_unmatched": unmatched,
        "errors": errors,
        "timestamp": now.isoformat(),
    }
