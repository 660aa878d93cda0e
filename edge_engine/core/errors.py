"""Exception taxonomy for the edge engine.

Three failure families exist and each is handled at a different layer:

* **Data-quality** problems (bad odds, missing selection) raise the
  ``ValueError``/``LookupError`` flavoured classes below.  Services catch them
  per record, log a reason and skip the record.
* **Invariant violations** in a recommendation raise
  :class:`RecommendationValidationError`.  The publish cycle aborts before
  any write.
* **Upstream unavailability** raises :class:`ProviderUnavailableError`.  The
  affected sport is skipped and retried on the next scheduled cycle.
"""

from __future__ import annotations

from typing import Sequence


class EdgeEngineError(Exception):
    """Base class for every error raised by the engine."""


class InvalidOddsError(EdgeEngineError, ValueError):
    """An odds value cannot be represented (American 0, decimal ≤ 1, ...)."""


class SelectionNotFoundError(EdgeEngineError, LookupError):
    """No book in the market quotes the requested selection."""

    def __init__(self, game_id: str, market_type: str, selection: str) -> None:
        self.game_id = game_id
        self.market_type = market_type
        self.selection = selection
        super().__init__(
            f"Selection {selection!r} not quoted in {market_type} market "
            f"for game {game_id!r}"
        )


class RecommendationValidationError(EdgeEngineError):
    """A selected recommendation breaks a publish invariant."""

    def __init__(self, violations: Sequence[str]) -> None:
        self.violations = list(violations)
        super().__init__(
            f"{len(self.violations)} recommendation violation(s): "
            + "; ".join(self.violations)
        )


class ProviderUnavailableError(EdgeEngineError):
    """An odds or score fetch failed or timed out."""

    def __init__(self, provider: str, sport_key: str, reason: str) -> None:
        self.provider = provider
        self.sport_key = sport_key
        self.reason = reason
        super().__init__(f"{provider} unavailable for {sport_key}: {reason}")
