"""YFinance price provider implementation.

This module implements the PriceProvider interface using the yfinance library
to fetch quotes and weekly history from Yahoo Finance.
"""

import threading
from datetime import datetime
from typing import Optional

import pandas as pd
import yfinance as yf

from momentum_rider.data.base import PriceProvider, check_abort
from momentum_rider.utils.exceptions import DataProviderError, DataUnavailableError
from momentum_rider.utils.logging import get_logger

logger = get_logger(__name__)

REQUIRED_COLUMNS = ["open", "high", "low", "close", "volume"]


class YFinanceProvider(PriceProvider):
    """Yahoo Finance price provider.

    Current prices come from the ticker's fast info, falling back to the
    last daily close when fast info has no usable price.

    Example:
        >>> provider = YFinanceProvider()
        >>> provider.get_current_price("VTI")
        268.41
        >>> weekly = provider.get_price_history(
        ...     "VTI", datetime(2023, 1, 1), datetime(2025, 1, 1)
        ... )
    """

    def get_current_price(
        self,
        ticker: str,
        abort: Optional[threading.Event] = None,
    ) -> float:
        check_abort(abort, ticker)

        try:
            instrument = yf.Ticker(ticker)
            price = instrument.fast_info.last_price
        except Exception as e:
            logger.warning("Fast info unavailable for %s: %s", ticker, e)
            instrument, price = None, None

        if price is None or pd.isna(price) or price <= 0:
            check_abort(abort, ticker)
            try:
                instrument = instrument or yf.Ticker(ticker)
                recent = instrument.history(period="5d")
            except Exception as e:
                error_msg = f"Failed to fetch current price for {ticker}: {e}"
                logger.error(error_msg)
                raise DataProviderError(error_msg) from e

            closes = recent["Close"].dropna() if recent is not None and not recent.empty else []
            if len(closes) == 0:
                raise DataUnavailableError(f"No price data returned for {ticker}")
            price = closes.iloc[-1]

        price = float(price)
        if price <= 0:
            raise DataUnavailableError(f"Invalid current price for {ticker}: {price}")

        logger.debug("Current price for %s: %.2f", ticker, price)
        return price

    def get_price_history(
        self,
        ticker: str,
        start_date: datetime,
        end_date: datetime,
        interval: str = "1wk",
        abort: Optional[threading.Event] = None,
    ) -> pd.DataFrame:
        """Fetch historical OHLCV bars from Yahoo Finance.

        Raises:
            DataProviderError: If data fetching fails or is aborted
            DataUnavailableError: If returned data is empty or invalid
        """
        check_abort(abort, ticker)
        logger.info(
            "Fetching %s history for %s from %s to %s", interval, ticker, start_date, end_date
        )

        try:
            df = yf.Ticker(ticker).history(start=start_date, end=end_date, interval=interval)
        except Exception as e:
            error_msg = f"Failed to fetch data for {ticker}: {e}"
            logger.error(error_msg)
            raise DataProviderError(error_msg) from e

        if df is None or df.empty:
            error_msg = f"No data returned for {ticker} from {start_date} to {end_date}"
            logger.error(error_msg)
            raise DataUnavailableError(error_msg)

        # yfinance returns capitalized names
        df = df.rename(
            columns={
                "Open": "open",
                "High": "high",
                "Low": "low",
                "Close": "close",
                "Volume": "volume",
            }
        )

        missing_columns = [col for col in REQUIRED_COLUMNS if col not in df.columns]
        if missing_columns:
            error_msg = (
                f"Missing required columns for {ticker}: {missing_columns}. "
                f"Available columns: {list(df.columns)}"
            )
            logger.error(error_msg)
            raise DataUnavailableError(error_msg)

        df = df[REQUIRED_COLUMNS].copy()
        df.index.name = "date"
        df["volume"] = df["volume"].fillna(0).astype(int)
        df = df.dropna(subset=["close"])

        logger.info("Fetched %d bars for %s", len(df), ticker)
        return df
