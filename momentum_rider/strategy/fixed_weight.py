"""Fixed Weight Strategy with SMA trend filter.

Each instrument has a static target weight. When the trend filter is on, an
instrument whose latest close is at or below the simple moving average of its
month-end closes has its weight rerouted to a cash-equivalent ticker.

The default preset is an All-Weather style portfolio.
"""

from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd

from momentum_rider.portfolio.base import TargetAllocation
from momentum_rider.strategy.base import AllocationStrategy, MomentumRecord
from momentum_rider.strategy.indicators import monthly_closes, trend_signal
from momentum_rider.utils.exceptions import DataUnavailableError, InvalidInputError
from momentum_rider.utils.logging import get_logger

logger = get_logger(__name__)

ALL_WEATHER_WEIGHTS: Dict[str, float] = {
    "VTI": 10.0,  # US stocks
    "VEA": 10.0,  # Developed markets ex US
    "VWO": 5.0,  # Emerging markets
    "IEF": 40.0,  # 7-10 year Treasuries
    "TIP": 7.5,  # US TIPS
    "IGIL.L": 7.5,  # International inflation-linked bonds
    "PDBC": 10.0,  # Commodities
    "GLDM": 10.0,  # Gold
}

WEIGHT_EPSILON = 0.01


class FixedWeightStrategy(AllocationStrategy):
    """Static weights with optional trend filter and cash fallback.

    Parameters:
        - weights (dict): Ticker -> percentage, must sum to 100 (default: All-Weather)
        - cash_ticker (str): Destination of filtered weight (default: "SGOV")
        - trend_filter (bool): Apply the SMA filter (default: True)
        - sma_period (int): SMA length in months (default: 10)
        - price_history (dict): Ticker -> close Series (daily or weekly)
        - allowed_deviation (float): Band attached to every target (default: 5)

    Example:
        >>> strategy = FixedWeightStrategy({'price_history': closes_by_ticker})
        >>> targets = strategy.target_allocation(list(ALL_WEATHER_WEIGHTS))
    """

    def validate_params(self) -> None:
        self.params.setdefault("weights", dict(ALL_WEATHER_WEIGHTS))
        self.params.setdefault("cash_ticker", "SGOV")
        self.params.setdefault("trend_filter", True)
        self.params.setdefault("sma_period", 10)
        self.params.setdefault("price_history", {})

        weights = self.params["weights"]
        if not weights:
            raise InvalidInputError("'weights' must not be empty")
        if any(w < 0 for w in weights.values()):
            raise InvalidInputError("'weights' must be non-negative")
        total = sum(weights.values())
        if abs(total - 100.0) > WEIGHT_EPSILON:
            raise InvalidInputError(f"'weights' must sum to 100, got {total:.4f}")

        if self.params["sma_period"] < 1:
            raise InvalidInputError("'sma_period' must be positive")
        if not self.params["cash_ticker"]:
            raise InvalidInputError("'cash_ticker' must be set")

    def is_uptrend(self, ticker: str) -> Optional[bool]:
        """Trend filter verdict for one ticker; None when it cannot be evaluated."""
        history: Mapping[str, pd.Series] = self.params["price_history"]
        prices = history.get(ticker)
        if prices is None:
            return None

        if isinstance(prices, pd.DataFrame):
            prices = prices["close"]

        try:
            signal = trend_signal(monthly_closes(prices), self.params["sma_period"])
        except DataUnavailableError as e:
            logger.warning("Trend filter skipped for %s: %s", ticker, e)
            return None

        logger.debug(
            "Trend for %s: %s (price %.2f vs SMA %.2f)",
            ticker, signal.signal, signal.current_price, signal.sma,
        )
        return signal.is_bullish

    def target_allocation(
        self,
        tickers: Sequence[str],
        momentum_records: Optional[Sequence[MomentumRecord]] = None,
    ) -> List[TargetAllocation]:
        """Compute targets; `tickers` is accepted for interface symmetry.

        Every weighted instrument is included regardless of `tickers`, since
        the weights define the universe.
        """
        cash = self.params["cash_ticker"]
        weights: Dict[str, float] = {}
        rerouted = []

        for ticker, weight in self.params["weights"].items():
            if (
                self.params["trend_filter"]
                and ticker != cash
                and self.is_uptrend(ticker) is False
            ):
                weights[cash] = weights.get(cash, 0.0) + weight
                rerouted.append(ticker)
            else:
                weights[ticker] = weights.get(ticker, 0.0) + weight

        if rerouted:
            logger.info(
                "Trend filter moved %s to %s (%.1f%%)",
                ", ".join(rerouted), cash, weights.get(cash, 0.0),
            )

        return self.merge_targets(weights)
