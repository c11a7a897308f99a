"""Trend indicator utilities built on pandas rolling windows.

Used by the fixed-weight strategy's trend filter: an instrument is in an
uptrend when its latest close is above the simple moving average of its
month-end closes.
"""

from dataclasses import dataclass

import pandas as pd

from momentum_rider.utils.exceptions import DataUnavailableError
from momentum_rider.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TrendSignal:
    """Price position relative to its moving average.

    Attributes:
        signal: "bullish" when price > SMA, else "bearish"
        sma: Moving average value
        current_price: Latest close
        price_vs_sma: Percent distance of price above (or below) the SMA
        strength: |price_vs_sma| / 10 capped at 1.0
        period: Number of samples in the average
    """

    signal: str
    sma: float
    current_price: float
    price_vs_sma: float
    strength: float
    period: int

    @property
    def is_bullish(self) -> bool:
        return self.signal == "bullish"


def sma(data: pd.Series, period: int) -> pd.Series:
    """Calculate Simple Moving Average.

    Args:
        data: Price series (typically 'close')
        period: Number of periods for moving average

    Returns:
        Series containing SMA values (NaN until the window fills)

    Example:
        >>> close_prices = data['close']
        >>> sma_10 = sma(close_prices, period=10)
    """
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")
    return data.rolling(window=period, min_periods=period).mean().rename(f"sma_{period}")


def monthly_closes(data: pd.Series) -> pd.Series:
    """Resample a daily or weekly close series to month-end closes."""
    series = data.dropna().sort_index()
    if not isinstance(series.index, pd.DatetimeIndex):
        series.index = pd.to_datetime(series.index)
    return series.resample("ME").last().dropna()


def trend_signal(data: pd.Series, period: int = 10) -> TrendSignal:
    """Compare the latest close with the SMA of the last `period` samples.

    Args:
        data: Close series already at the desired sampling (e.g. monthly)
        period: Number of samples in the average

    Raises:
        DataUnavailableError: If fewer than `period` samples are available

    Example:
        >>> signal = trend_signal(monthly_closes(daily['close']), period=10)
        >>> signal.is_bullish
        True
    """
    series = data.dropna()
    if len(series) < period:
        raise DataUnavailableError(
            f"insufficient data for {period}-period SMA: {len(series)} samples"
        )

    average = float(sma(series, period).iloc[-1])
    current = float(series.iloc[-1])
    price_vs_sma = (current - average) / average * 100 if average else 0.0

    return TrendSignal(
        signal="bullish" if current > average else "bearish",
        sma=round(average, 2),
        current_price=round(current, 2),
        price_vs_sma=round(price_vs_sma, 2),
        strength=round(min(abs(price_vs_sma) / 10, 1.0), 2),
        period=period,
    )
