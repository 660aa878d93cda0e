"""
Closing Line Value (CLV) calculation service.

CLV is the primary edge-validation metric in sports betting.
Positive CLV means we obtained better odds than where the market
ultimately settled (the closing line), which is correlated with
long-term profitability independent of win/loss outcomes.

    clv% = (opening_decimal / closing_decimal − 1) × 100

A leg taken at +150 (2.50) that closes at +120 (2.20) has CLV of +13.6%.
"""

from dataclasses import dataclass
from typing import Optional

from edge_engine.core.odds_math import american_to_decimal


@dataclass(frozen=True)
class CLVResult:
    """CLV of one leg against its closing price."""

    opening_american: int
    closing_american: int
    opening_decimal: float
    closing_decimal: float
    clv_percentage: float

    @property
    def beat_closing(self) -> bool:
        return self.clv_percentage > 0.0

    def grade(self) -> str:
        """Human-readable CLV grade for display."""
        if self.clv_percentage > 5.0:
            return "EXCELLENT"
        elif self.clv_percentage > 2.0:
            return "GOOD"
        elif self.clv_percentage > 0.0:
            return "POSITIVE"
        elif self.clv_percentage < -5.0:
            return "POOR"
        elif self.clv_percentage < 0.0:
            return "NEGATIVE"
        return "NEUTRAL"


def clv_percentage(opening_decimal: float, closing_decimal: float) -> float:
    if closing_decimal <= 1.0:
        raise ValueError(f"closing_decimal must be > 1.0, got {closing_decimal!r}")
    return (opening_decimal / closing_decimal - 1.0) * 100.0


def calculate_clv(
    opening_american: int, closing_american: Optional[int]
) -> Optional[CLVResult]:
    """CLV from American prices; ``None`` when no closing price was captured.

    Raises:
        InvalidOddsError: If either price is not a valid American value.
    """
    if closing_american is None:
        return None
    opening_dec = american_to_decimal(opening_american)
    closing_dec = american_to_decimal(closing_american)
    return CLVResult(
        opening_american=int(opening_american),
        closing_american=int(closing_american),
        opening_decimal=opening_dec,
        closing_decimal=closing_dec,
        clv_percentage=clv_percentage(opening_dec, closing_dec),
    )
