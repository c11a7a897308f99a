"""Unit tests for trend indicators."""

import numpy as np
import pandas as pd
import pytest

from momentum_rider.strategy.indicators import monthly_closes, sma, trend_signal
from momentum_rider.utils.exceptions import DataUnavailableError


@pytest.fixture
def daily_rising() -> pd.Series:
    """Eighteen months of steadily rising business-day closes."""
    dates = pd.date_range("2024-01-01", "2025-06-30", freq="B")
    return pd.Series(np.linspace(100.0, 200.0, len(dates)), index=dates)


class TestSMA:
    """Test cases for SMA calculation."""

    def test_sma_values(self) -> None:
        """Test SMA over a short series."""
        result = sma(pd.Series([1.0, 2.0, 3.0, 4.0, 5.0]), period=3)

        assert result.isna().sum() == 2
        assert result.iloc[2:].tolist() == [2.0, 3.0, 4.0]
        assert result.name == "sma_3"

    def test_sma_invalid_period(self) -> None:
        """Test non-positive periods are rejected."""
        with pytest.raises(ValueError, match="period must be positive"):
            sma(pd.Series([1.0]), period=0)


class TestMonthlyCloses:
    """Test cases for month-end resampling."""

    def test_month_end_values(self, daily_rising: pd.Series) -> None:
        """Test one close per month, taken from the last trading day."""
        monthly = monthly_closes(daily_rising)

        assert len(monthly) == 18
        assert monthly.iloc[-1] == pytest.approx(200.0)
        assert monthly.iloc[0] == daily_rising.loc["2024-01"].iloc[-1]

    def test_string_index_and_gaps(self) -> None:
        """Test string dates are parsed and NaNs dropped."""
        data = pd.Series(
            [10.0, np.nan, 12.0, 13.0],
            index=["2025-01-30", "2025-01-31", "2025-02-27", "2025-02-28"],
        )
        monthly = monthly_closes(data)

        assert monthly.tolist() == [10.0, 13.0]


class TestTrendSignal:
    """Test cases for trend signals."""

    def test_bullish(self) -> None:
        """Test price above its SMA is bullish."""
        signal = trend_signal(pd.Series([float(v) for v in range(1, 13)]), period=10)

        assert signal.is_bullish
        assert signal.sma == 7.5
        assert signal.current_price == 12.0
        assert signal.price_vs_sma == 60.0
        assert signal.strength == 1.0
        assert signal.period == 10

    def test_bearish(self) -> None:
        """Test price below its SMA is bearish."""
        signal = trend_signal(pd.Series([float(v) for v in range(12, 0, -1)]), period=10)

        assert signal.signal == "bearish"
        assert not signal.is_bullish
        assert signal.price_vs_sma < 0

    def test_price_equal_to_sma_is_bearish(self) -> None:
        """Test a flat series is not an uptrend."""
        signal = trend_signal(pd.Series([5.0] * 10), period=10)
        assert signal.signal == "bearish"

    def test_insufficient_data(self) -> None:
        """Test fewer samples than the period raise DataUnavailableError."""
        with pytest.raises(DataUnavailableError, match="insufficient data"):
            trend_signal(pd.Series([1.0, 2.0, 3.0]), period=10)

    def test_monthly_pipeline(self, daily_rising: pd.Series) -> None:
        """Test the monthly SMA filter on a rising daily series."""
        assert trend_signal(monthly_closes(daily_rising), period=10).is_bullish
