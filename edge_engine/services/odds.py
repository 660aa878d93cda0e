"""
The Odds API integration: odds and final scores for every configured sport.
https://the-odds-api.com/

Ingestion rules
---------------
* Every request carries an explicit timeout.  A timeout, HTTP error or
  undecodable body raises :class:`ProviderUnavailableError`; the batch
  helpers log it, skip that sport, and carry on.  The next scheduled cycle
  is the retry.
* Payloads are validated with the pydantic models in ``edge_engine.schemas``
  one record at a time.  A malformed game, bookmaker, market or outcome is
  skipped with a debug log; it never fails the batch.
* Spread and total markets are split into one :class:`MarketSnapshot` per
  line.  The spread line is keyed from the home team's perspective, so
  ``Lakers -5.5`` (home) and ``Celtics +5.5`` (away) land in the same
  snapshot while ``Lakers -6`` starts another.
* Sport fetches run concurrently in a bounded thread pool.  Results are
  merged back in configured sport order so the mined batch is deterministic
  regardless of completion order.
"""

import logging
import os
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import requests
from pydantic import ValidationError

from edge_engine.core.engine_config import EngineConfig, sport_key_for
from edge_engine.core.errors import ProviderUnavailableError
from edge_engine.core.market import (
    MARKET_H2H,
    MARKET_SPREAD,
    PROVIDER_MARKETS,
    SIDE_AWAY,
    SIDE_HOME,
    MarketSnapshot,
    OddsQuote,
    resolve_side,
    selection_label,
)
from edge_engine.models import DataFetch
from edge_engine.schemas import (
    ProviderBookmaker,
    ProviderGame,
    ProviderMarket,
    ProviderScoreGame,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://api.the-odds-api.com/v4"

ODDS_PROVIDER = "odds_api"
SCORES_PROVIDER = "scores_api"

_UNKEYED = object()


class OddsAPIClient:
    """Client for The Odds API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or os.getenv("THE_ODDS_API_KEY")
        if not self.api_key:
            raise ValueError("THE_ODDS_API_KEY not set in environment")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str, params: Dict, provider: str, sport_key: str) -> List[Dict]:
        url = f"{BASE_URL}{path}"
        params = {"apiKey": self.api_key, **params}
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error("%s error for %s: %s", provider, sport_key, e)
            raise ProviderUnavailableError(provider, sport_key, str(e)) from e
        except ValueError as e:
            logger.error("%s returned undecodable body for %s: %s", provider, sport_key, e)
            raise ProviderUnavailableError(provider, sport_key, "invalid JSON") from e

        if not isinstance(data, list):
            raise ProviderUnavailableError(
                provider, sport_key, f"expected a list, got {type(data).__name__}"
            )

        remaining = response.headers.get("x-requests-remaining")
        used = response.headers.get("x-requests-used")
        logger.info(
            "%s: %d records for %s. Quota: %s used, %s remaining",
            provider, len(data), sport_key, used, remaining,
        )
        return data

    def get_sport_odds(
        self,
        sport_key: str,
        markets: Sequence[str] = ("h2h", "spreads", "totals"),
        regions: str = "us",
        odds_format: str = "american",
    ) -> List[Dict]:
        """Fetch current odds for one sport.  Raises ProviderUnavailableError."""
        return self._get(
            f"/sports/{sport_key}/odds",
            {
                "regions": regions,
                "markets": ",".join(markets),
                "oddsFormat": odds_format,
                "dateFormat": "iso",
            },
            ODDS_PROVIDER,
            sport_key,
        )

    def get_scores(self, sport_key: str, days_from: int = 3) -> List[Dict]:
        """Fetch recent and completed scores for one sport."""
        return self._get(
            f"/sports/{sport_key}/scores",
            {"daysFrom": days_from, "dateFormat": "iso"},
            SCORES_PROVIDER,
            sport_key,
        )


# ---------------------------------------------------------------------------
# Odds parsing
# ---------------------------------------------------------------------------


def _line_key(market_type: str, side: Optional[str], point: Optional[float]):
    """Group key for a quote: None for moneylines, the line otherwise."""
    if market_type == MARKET_H2H:
        return None
    if point is None:
        return _UNKEYED
    if market_type == MARKET_SPREAD:
        if side == SIDE_HOME:
            return float(point)
        if side == SIDE_AWAY:
            return -float(point)
        return _UNKEYED
    return float(point)


def parse_game_snapshots(game: Dict, sport: str) -> List[MarketSnapshot]:
    """Turn one raw odds-feed event into per-line market snapshots.

    Returns an empty list (and logs why) if the event header is malformed.
    """
    try:
        header = ProviderGame.model_validate(game)
    except ValidationError as e:
        logger.debug("Skipping malformed event %s: %s", game.get("id"), e)
        return []

    groups: "OrderedDict[Tuple[str, object], List[OddsQuote]]" = OrderedDict()

    for raw_book in header.bookmakers:
        try:
            book = ProviderBookmaker.model_validate(raw_book)
        except ValidationError as e:
            logger.debug("Skipping malformed bookmaker in %s: %s", header.id, e)
            continue

        for raw_market in book.markets:
            try:
                market = ProviderMarket.model_validate(raw_market)
            except ValidationError as e:
                logger.debug(
                    "Skipping malformed %s market from %s in %s: %s",
                    raw_market.get("key"), book.title, header.id, e,
                )
                continue

            market_type = PROVIDER_MARKETS.get(market.key)
            if market_type is None:
                continue

            for outcome in market.outcomes:
                side = resolve_side(
                    market_type, outcome.name, header.home_team, header.away_team
                )
                key = _line_key(market_type, side, outcome.point)
                if key is _UNKEYED:
                    logger.debug(
                        "Skipping %s outcome %r from %s: no usable line",
                        market_type, outcome.name, book.title,
                    )
                    continue
                point = outcome.point if market_type != MARKET_H2H else None
                groups.setdefault((market_type, key), []).append(
                    OddsQuote(
                        book_id=book.book_id,
                        selection_name=selection_label(market_type, outcome.name, point),
                        american_price=int(round(outcome.price)),
                        side=side,
                        point=point,
                    )
                )

    return [
        MarketSnapshot(
            game_id=header.id,
            sport=sport,
            home_team=header.home_team,
            away_team=header.away_team,
            commence_time=header.commence_time,
            market_type=market_type,
            quotes=tuple(quotes),
            line=line,
        )
        for (market_type, line), quotes in groups.items()
    ]


# ---------------------------------------------------------------------------
# Score parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GameResult:
    """Final (or in-progress) score of one event."""

    game_id: str
    home_team: str
    away_team: str
    commence_time: datetime
    completed: bool
    home_score: Optional[float] = None
    away_score: Optional[float] = None

    @property
    def is_final(self) -> bool:
        return (
            self.completed
            and self.home_score is not None
            and self.away_score is not None
        )


def parse_game_result(raw: Dict) -> Optional[GameResult]:
    """Validate one scores-feed record; None if malformed."""
    try:
        game = ProviderScoreGame.model_validate(raw)
    except ValidationError as e:
        logger.debug("Skipping malformed score record %s: %s", raw.get("id"), e)
        return None

    scores = {s.name.strip().lower(): s.score for s in (game.scores or [])}
    return GameResult(
        game_id=game.id,
        home_team=game.home_team,
        away_team=game.away_team,
        commence_time=game.commence_time,
        completed=game.completed,
        home_score=scores.get(game.home_team.strip().lower()),
        away_score=scores.get(game.away_team.strip().lower()),
    )


# ---------------------------------------------------------------------------
# Concurrent batch fetch
# ---------------------------------------------------------------------------


@dataclass
class FetchBatch:
    """Merged output of one concurrent fetch across sports."""

    snapshots: List[MarketSnapshot] = field(default_factory=list)
    results: Dict[str, List[GameResult]] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    timings_ms: Dict[str, int] = field(default_factory=dict)


def _timed(fn, *args, **kwargs):
    started = time.monotonic()
    data = fn(*args, **kwargs)
    return data, int((time.monotonic() - started) * 1000)


def _fetch_concurrently(
    sports: Iterable[str], fetch, max_workers: int
) -> Tuple[Dict[str, List[Dict]], Dict[str, str], Dict[str, int]]:
    raw: Dict[str, List[Dict]] = {}
    errors: Dict[str, str] = {}
    timings: Dict[str, int] = {}
    sports = list(sports)
    if not sports:
        return raw, errors, timings

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {pool.submit(_timed, fetch, sport): sport for sport in sports}
        for future in as_completed(futures):
            sport = futures[future]
            try:
                raw[sport], timings[sport] = future.result()
            except ProviderUnavailableError as e:
                errors[sport] = e.reason
                logger.warning("Skipping %s this cycle: %s", sport, e)
            except Exception as e:
                errors[sport] = str(e)
                logger.exception("Unexpected fetch failure for %s", sport)
    return raw, errors, timings


def fetch_market_batch(
    client: OddsAPIClient,
    config: Optional[EngineConfig] = None,
    sports: Optional[Sequence[str]] = None,
) -> FetchBatch:
    """Fetch odds for every sport concurrently and merge into one batch."""
    config = config or EngineConfig.default()
    sports = list(sports or config.sports)

    def fetch(sport: str) -> List[Dict]:
        return client.get_sport_odds(
            sport_key_for(sport), markets=config.markets, regions=config.regions
        )

    raw, errors, timings = _fetch_concurrently(sports, fetch, config.max_fetch_workers)

    batch = FetchBatch(errors=errors, timings_ms=timings)
    for sport in sports:
        if sport not in raw:
            continue
        sport_snapshots: List[MarketSnapshot] = []
        for game in raw[sport]:
            if isinstance(game, dict):
                sport_snapshots.extend(parse_game_snapshots(game, sport))
        batch.counts[sport] = len(sport_snapshots)
        batch.snapshots.extend(sport_snapshots)

    logger.info(
        "Fetched %d snapshots across %d sport(s); %d sport(s) unavailable",
        len(batch.snapshots), len(batch.counts), len(batch.errors),
    )
    return batch


def fetch_results_batch(
    client: OddsAPIClient,
    sports: Sequence[str],
    config: Optional[EngineConfig] = None,
) -> FetchBatch:
    """Fetch scores for the given sports concurrently."""
    config = config or EngineConfig.default()

    def fetch(sport: str) -> List[Dict]:
        return client.get_scores(sport_key_for(sport), days_from=config.score_days_from)

    raw, errors, timings = _fetch_concurrently(sports, fetch, config.max_fetch_workers)

    batch = FetchBatch(errors=errors, timings_ms=timings)
    for sport in sports:
        if sport not in raw:
            continue
        results = [
            r for r in (parse_game_result(g) for g in raw[sport] if isinstance(g, dict))
            if r is not None
        ]
        batch.results[sport] = results
        batch.counts[sport] = len(results)
    return batch


def record_fetches(db, source: str, batch: FetchBatch) -> None:
    """Add a ``DataFetch`` health row per sport of ``batch`` (caller commits)."""
    for sport, count in batch.counts.items():
        db.add(DataFetch(
            data_source=source, sport=sport, success=True,
            records_fetched=count, response_time_ms=batch.timings_ms.get(sport),
        ))
    for sport, error in batch.errors.items():
        db.add(DataFetch(
            data_source=source, sport=sport, success=False,
            records_fetched=0, error_message=error[:500],
        ))
