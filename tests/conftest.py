"""Shared fixtures for unit tests."""

import threading
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd
import pytest

from momentum_rider.data.base import PriceProvider, check_abort
from momentum_rider.portfolio.base import Holding, OptimizationRequest, TargetAllocation
from momentum_rider.utils.exceptions import DataUnavailableError

AS_OF = datetime(2025, 6, 30)


def weekly_closes(
    start_price: float,
    end_price: float,
    end: datetime = AS_OF,
    weeks: int = 110,
) -> pd.Series:
    """Linear weekly close series ending at `end`."""
    dates = pd.date_range(end=end, periods=weeks, freq="W-FRI")
    step = (end_price - start_price) / (weeks - 1)
    return pd.Series(
        [start_price + step * i for i in range(weeks)], index=dates, name="close"
    )


def bars_from_closes(closes: pd.Series) -> pd.DataFrame:
    """OHLCV frame in the provider's output shape."""
    df = pd.DataFrame(
        {
            "open": closes.values,
            "high": closes.values * 1.01,
            "low": closes.values * 0.99,
            "close": closes.values,
            "volume": [1000] * len(closes),
        },
        index=closes.index,
    )
    df.index.name = "date"
    return df


class StaticProvider(PriceProvider):
    """In-memory provider for tests; records every call."""

    def __init__(
        self,
        history: Optional[Dict[str, pd.Series]] = None,
        prices: Optional[Dict[str, float]] = None,
    ):
        self.history = history or {}
        self.prices = prices or {}
        self.calls: List[tuple] = []

    def get_current_price(
        self,
        ticker: str,
        abort: Optional[threading.Event] = None,
    ) -> float:
        self.calls.append(("price", ticker))
        check_abort(abort, ticker)
        if ticker not in self.prices:
            raise DataUnavailableError(f"No price data returned for {ticker}")
        return self.prices[ticker]

    def get_price_history(
        self,
        ticker: str,
        start_date: datetime,
        end_date: datetime,
        interval: str = "1wk",
        abort: Optional[threading.Event] = None,
    ) -> pd.DataFrame:
        self.calls.append(("history", ticker, interval))
        check_abort(abort, ticker)
        if ticker not in self.history:
            raise DataUnavailableError(f"No data returned for {ticker}")
        return bars_from_closes(self.history[ticker])


@pytest.fixture
def two_asset_request() -> OptimizationRequest:
    """60/40 request with $1000 cash (bands too tight for an exact solve)."""
    return OptimizationRequest(
        target_allocations=[
            TargetAllocation("VTI", 60.0, price=250.0),
            TargetAllocation("TLT", 40.0, price=95.0),
        ],
        available_cash=1000.0,
    )


@pytest.fixture
def four_asset_request() -> OptimizationRequest:
    """Four targets with one held target and one holding to liquidate."""
    return OptimizationRequest(
        target_allocations=[
            TargetAllocation("VTI", 40.0, price=250.0),
            TargetAllocation("TLT", 30.0, price=95.0),
            TargetAllocation("PDBC", 20.0, price=13.5),
            TargetAllocation("GLDM", 10.0, price=50.0),
        ],
        available_cash=4000.0,
        current_holdings=[
            Holding("VTI", 4, 250.0),
            Holding("ARKK", 10, 50.0),
        ],
    )


@pytest.fixture
def static_provider() -> StaticProvider:
    """Provider with rising VTI and GLDM, falling TLT."""
    return StaticProvider(
        history={
            "VTI": weekly_closes(200.0, 260.0),
            "GLDM": weekly_closes(40.0, 55.0),
            "TLT": weekly_closes(110.0, 90.0),
        },
        prices={"VTI": 265.0, "GLDM": 56.0, "TLT": 89.0, "SGOV": 100.5},
    )


@pytest.fixture
def make_closes():
    """Factory for linear weekly close series."""
    return weekly_closes


@pytest.fixture
def make_provider():
    """Factory for StaticProvider instances."""
    return StaticProvider
