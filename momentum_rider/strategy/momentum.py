"""Momentum scoring from price history.

Momentum is the percent return from the price N calendar months ago to the
current price, for each horizon (3/6/9/12 months by default). Horizon prices
come from the latest sample on or before the horizon date, which suits weekly
history where exact dates rarely line up.
"""

from datetime import datetime
from typing import Dict, Optional, Sequence

import pandas as pd

from momentum_rider.strategy.base import MomentumRecord, build_momentum_record
from momentum_rider.utils.exceptions import DataUnavailableError
from momentum_rider.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_HORIZONS = (3, 6, 9, 12)


def period_label(months: int) -> str:
    return f"{months}month"


def _close_series(prices: pd.Series | pd.DataFrame) -> pd.Series:
    """Extract a sorted close series from a Series or an OHLCV DataFrame."""
    if isinstance(prices, pd.DataFrame):
        if "close" not in prices.columns:
            raise DataUnavailableError("price history has no 'close' column")
        prices = prices["close"]

    series = prices.dropna()
    if not isinstance(series.index, pd.DatetimeIndex):
        series.index = pd.to_datetime(series.index)
    return series.sort_index()


def find_price_on_or_before(
    prices: pd.Series | pd.DataFrame,
    target_date: datetime | pd.Timestamp,
) -> Optional[float]:
    """Price of the latest sample dated on or before target_date.

    Falls back to the earliest sample when history starts after the target.

    Returns:
        Price, or None when the history is empty
    """
    series = _close_series(prices)
    if series.empty:
        return None

    target = pd.Timestamp(target_date)
    if series.index.tz is not None and target.tzinfo is None:
        target = target.tz_localize(series.index.tz)
    elif series.index.tz is None and target.tzinfo is not None:
        target = target.tz_localize(None)

    eligible = series.loc[:target]
    if eligible.empty:
        return float(series.iloc[0])
    return float(eligible.iloc[-1])


def calculate_return(historical: Optional[float], current: float) -> float:
    """Percent return from historical to current, rounded to 2 decimals.

    Returns 0 when the historical price is missing or zero.

    Example:
        >>> calculate_return(100.0, 112.345)
        12.35
    """
    if not historical:
        return 0.0
    return round((current - historical) / historical * 100, 2)


class MomentumScorer:
    """Compute momentum records from price history.

    Example:
        >>> scorer = MomentumScorer()
        >>> record = scorer.score("VTI", weekly_closes, current_price=265.0)
        >>> record.periods["6month"]
        8.2
    """

    def __init__(self, horizons: Sequence[int] = DEFAULT_HORIZONS):
        if not horizons or any(h <= 0 for h in horizons):
            raise ValueError(f"horizons must be positive month counts, got {horizons}")
        self.horizons = tuple(int(h) for h in horizons)

    @property
    def labels(self) -> tuple:
        return tuple(period_label(h) for h in self.horizons)

    def historical_prices(
        self,
        prices: pd.Series | pd.DataFrame,
        as_of: Optional[datetime] = None,
    ) -> Dict[str, Optional[float]]:
        """Price used for each horizon.

        Args:
            prices: Close series or OHLCV DataFrame
            as_of: Reference date (defaults to now)

        Returns:
            Dict mapping horizon label to price (None when history is empty)
        """
        reference = pd.Timestamp(as_of or datetime.now())
        return {
            period_label(h): find_price_on_or_before(prices, reference - pd.DateOffset(months=h))
            for h in self.horizons
        }

    def score(
        self,
        ticker: str,
        prices: Optional[pd.Series | pd.DataFrame],
        current_price: Optional[float],
        as_of: Optional[datetime] = None,
    ) -> MomentumRecord:
        """Score one ticker; failures come back as error-flagged records.

        Args:
            ticker: Ticker symbol
            prices: Close series or OHLCV DataFrame
            current_price: Latest price
            as_of: Reference date (defaults to now)

        Returns:
            MomentumRecord (never raises for missing or bad data)
        """
        try:
            if prices is None or _close_series(prices).empty:
                raise DataUnavailableError("no historical data available")
            if current_price is None or current_price <= 0:
                raise DataUnavailableError(f"invalid current price: {current_price}")

            horizon_prices = self.historical_prices(prices, as_of)
        except DataUnavailableError as e:
            logger.warning("Momentum unavailable for %s: %s", ticker, e)
            return MomentumRecord.failed(ticker, str(e), self.labels)

        returns = {
            label: calculate_return(price, current_price)
            for label, price in horizon_prices.items()
        }
        record = build_momentum_record(ticker, returns, price=current_price)

        logger.debug(
            "Momentum for %s: average=%.2f absolute=%s",
            ticker, record.average, record.absolute_momentum,
        )
        return record
