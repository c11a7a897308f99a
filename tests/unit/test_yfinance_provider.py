"""Unit tests for YFinanceProvider."""

import threading
from datetime import datetime
from unittest.mock import MagicMock, PropertyMock, patch

import numpy as np
import pandas as pd
import pytest

from momentum_rider.data.providers.yfinance_provider import YFinanceProvider
from momentum_rider.utils.exceptions import DataProviderError, DataUnavailableError


def mock_instrument(last_price=None, history=None) -> MagicMock:
    instrument = MagicMock()
    instrument.fast_info.last_price = last_price
    instrument.history.return_value = history if history is not None else pd.DataFrame()
    return instrument


class TestYFinanceProvider:
    """Test cases for YFinanceProvider."""

    @pytest.fixture
    def provider(self) -> YFinanceProvider:
        """Create YFinanceProvider instance."""
        return YFinanceProvider()

    @pytest.fixture
    def sample_yfinance_data(self) -> pd.DataFrame:
        """Create sample weekly data in yfinance format (capitalized columns)."""
        dates = pd.date_range(start="2024-01-05", periods=5, freq="W-FRI")
        return pd.DataFrame(
            {
                "Open": [150.0, 151.0, 152.0, 153.0, 154.0],
                "High": [155.0, 156.0, 157.0, 158.0, 159.0],
                "Low": [148.0, 149.0, 150.0, 151.0, 152.0],
                "Close": [152.0, 153.0, 154.0, 155.0, 156.0],
                "Volume": [1000000.0, 1100000.0, np.nan, 1300000.0, 1400000.0],
                "Dividends": [0, 0, 0, 0, 0],  # yfinance includes this
                "Stock Splits": [0, 0, 0, 0, 0],  # yfinance includes this
            },
            index=dates,
        )

    def test_get_price_history_success(
        self, provider: YFinanceProvider, sample_yfinance_data: pd.DataFrame
    ) -> None:
        """Test successful data fetching and standardization."""
        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value = mock_instrument(history=sample_yfinance_data)

            result = provider.get_price_history(
                "VTI", datetime(2024, 1, 1), datetime(2024, 2, 5)
            )

        assert len(result) == 5
        assert list(result.columns) == ["open", "high", "low", "close", "volume"]
        assert result.index.name == "date"
        assert result["volume"].dtype == int
        assert result["volume"].iloc[2] == 0

    def test_weekly_interval_by_default(
        self, provider: YFinanceProvider, sample_yfinance_data: pd.DataFrame
    ) -> None:
        """Test the requested range and interval reach yfinance."""
        start, end = datetime(2024, 1, 1), datetime(2024, 2, 5)

        with patch("yfinance.Ticker") as mock_ticker:
            instrument = mock_instrument(history=sample_yfinance_data)
            mock_ticker.return_value = instrument

            provider.get_price_history("VTI", start, end)
            provider.get_price_history("VTI", start, end, interval="1d")

        mock_ticker.assert_called_with("VTI")
        assert instrument.history.call_args_list[0].kwargs == {
            "start": start, "end": end, "interval": "1wk"
        }
        assert instrument.history.call_args_list[1].kwargs["interval"] == "1d"

    def test_nan_closes_dropped(
        self, provider: YFinanceProvider, sample_yfinance_data: pd.DataFrame
    ) -> None:
        """Test bars without a close are removed."""
        sample_yfinance_data.loc[sample_yfinance_data.index[1], "Close"] = np.nan

        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value = mock_instrument(history=sample_yfinance_data)
            result = provider.get_price_history("VTI", datetime(2024, 1, 1), datetime(2024, 2, 5))

        assert len(result) == 4
        assert not result["close"].isna().any()

    def test_empty_history(self, provider: YFinanceProvider) -> None:
        """Test empty data raises DataUnavailableError."""
        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value = mock_instrument(history=pd.DataFrame())

            with pytest.raises(DataUnavailableError, match="No data returned for"):
                provider.get_price_history("NOPE", datetime(2024, 1, 1), datetime(2024, 2, 5))

    def test_missing_columns(self, provider: YFinanceProvider) -> None:
        """Test frames without OHLCV columns are rejected."""
        partial = pd.DataFrame(
            {"Close": [1.0, 2.0]}, index=pd.date_range("2024-01-05", periods=2, freq="W-FRI")
        )

        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value = mock_instrument(history=partial)

            with pytest.raises(DataUnavailableError, match="Missing required columns"):
                provider.get_price_history("VTI", datetime(2024, 1, 1), datetime(2024, 2, 5))

    def test_history_api_error(self, provider: YFinanceProvider) -> None:
        """Test upstream failures are wrapped in DataProviderError."""
        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value.history.side_effect = Exception("API Error")

            with pytest.raises(DataProviderError, match="Failed to fetch data for VTI"):
                provider.get_price_history("VTI", datetime(2024, 1, 1), datetime(2024, 2, 5))

    def test_history_aborted(self, provider: YFinanceProvider) -> None:
        """Test a set abort signal prevents the upstream call."""
        abort = threading.Event()
        abort.set()

        with patch("yfinance.Ticker") as mock_ticker:
            with pytest.raises(DataProviderError, match="aborted"):
                provider.get_price_history(
                    "VTI", datetime(2024, 1, 1), datetime(2024, 2, 5), abort=abort
                )

        mock_ticker.assert_not_called()


class TestCurrentPrice:
    """Test cases for current price lookup."""

    @pytest.fixture
    def provider(self) -> YFinanceProvider:
        return YFinanceProvider()

    @pytest.fixture
    def recent_closes(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"Close": [101.0, 102.5, np.nan]},
            index=pd.date_range("2025-06-25", periods=3, freq="D"),
        )

    def test_fast_info_price(self, provider: YFinanceProvider) -> None:
        """Test the fast-info price is used when valid."""
        with patch("yfinance.Ticker") as mock_ticker:
            instrument = mock_instrument(last_price=265.25)
            mock_ticker.return_value = instrument

            assert provider.get_current_price("VTI") == 265.25

        instrument.history.assert_not_called()

    @pytest.mark.parametrize("last_price", [None, float("nan"), 0.0])
    def test_falls_back_to_recent_close(
        self, provider: YFinanceProvider, recent_closes: pd.DataFrame, last_price
    ) -> None:
        """Test unusable fast-info prices fall back to the latest daily close."""
        with patch("yfinance.Ticker") as mock_ticker:
            instrument = mock_instrument(last_price=last_price, history=recent_closes)
            mock_ticker.return_value = instrument

            assert provider.get_current_price("VTI") == 102.5

        instrument.history.assert_called_once_with(period="5d")

    def test_fast_info_error_falls_back(
        self, provider: YFinanceProvider, recent_closes: pd.DataFrame
    ) -> None:
        """Test a fast-info exception is logged and the close is used."""
        with patch("yfinance.Ticker") as mock_ticker:
            instrument = MagicMock()
            instrument.history.return_value = recent_closes
            type(instrument.fast_info).last_price = PropertyMock(side_effect=KeyError("lastPrice"))
            mock_ticker.return_value = instrument

            assert provider.get_current_price("VTI") == 102.5

    def test_no_price_data(self, provider: YFinanceProvider) -> None:
        """Test no quote and no recent bars raise DataUnavailableError."""
        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value = mock_instrument(history=pd.DataFrame())

            with pytest.raises(DataUnavailableError, match="No price data returned"):
                provider.get_current_price("NOPE")

    def test_fallback_api_error(self, provider: YFinanceProvider) -> None:
        """Test a failing history call raises DataProviderError."""
        with patch("yfinance.Ticker") as mock_ticker:
            instrument = mock_instrument()
            instrument.history.side_effect = Exception("rate limited")
            mock_ticker.return_value = instrument

            with pytest.raises(DataProviderError, match="Failed to fetch current price"):
                provider.get_current_price("VTI")

    def test_aborted(self, provider: YFinanceProvider) -> None:
        """Test a set abort signal raises before any fetch."""
        abort = threading.Event()
        abort.set()

        with patch("yfinance.Ticker") as mock_ticker:
            with pytest.raises(DataProviderError, match="aborted"):
                provider.get_current_price("VTI", abort)

        mock_ticker.assert_not_called()
