"""Abstract base class for price providers.

This module defines the PriceProvider interface that all concrete price
sources must implement. Both operations honor an optional abort signal so a
caller can stop a batch of upstream fetches.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import pandas as pd

from momentum_rider.utils.exceptions import DataProviderError


def check_abort(abort: Optional[threading.Event], ticker: str) -> None:
    """Raise DataProviderError if the abort signal is set."""
    if abort is not None and abort.is_set():
        raise DataProviderError(f"fetch aborted for {ticker}")


class PriceProvider(ABC):
    """Abstract interface for price and quote providers.

    Example:
        >>> class StaticProvider(PriceProvider):
        ...     def get_current_price(self, ticker, abort=None):
        ...         return 100.0
        ...     def get_price_history(self, ticker, start_date, end_date,
        ...                           interval="1wk", abort=None):
        ...         return pd.DataFrame({"close": [99.0, 100.0]}, index=...)
    """

    @abstractmethod
    def get_current_price(
        self,
        ticker: str,
        abort: Optional[threading.Event] = None,
    ) -> float:
        """Fetch the latest price for a ticker.

        Args:
            ticker: Ticker symbol (e.g., "VTI")
            abort: Optional signal; when set the fetch is abandoned

        Returns:
            Latest price (> 0)

        Raises:
            DataProviderError: If fetching fails or is aborted
            DataUnavailableError: If no valid price exists
        """
        pass

    @abstractmethod
    def get_price_history(
        self,
        ticker: str,
        start_date: datetime,
        end_date: datetime,
        interval: str = "1wk",
        abort: Optional[threading.Event] = None,
    ) -> pd.DataFrame:
        """Fetch historical OHLCV bars.

        Args:
            ticker: Ticker symbol
            start_date: Start date (inclusive)
            end_date: End date (inclusive)
            interval: Bar size ("1d", "1wk", "1mo")
            abort: Optional signal; when set the fetch is abandoned

        Returns:
            DataFrame with columns open, high, low, close, volume and a
            DatetimeIndex named "date"

        Raises:
            DataProviderError: If fetching fails or is aborted
            DataUnavailableError: If no data is returned
        """
        pass
