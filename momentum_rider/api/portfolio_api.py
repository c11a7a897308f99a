"""User-friendly Portfolio API for strategy-driven rebalancing.

This module provides a simple, high-level interface that runs the whole
pipeline: momentum scoring, strategy targets, price lookup and budget
optimization.
"""

import copy
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from momentum_rider.data.base import PriceProvider
from momentum_rider.data.cache import InMemoryCache, ReadThroughCache
from momentum_rider.data.momentum_service import MomentumService
from momentum_rider.portfolio.base import (
    Holding,
    OptimizationRequest,
    OptimizationResult,
    TargetAllocation,
)
from momentum_rider.portfolio.optimizer import PortfolioOptimizer
from momentum_rider.strategy import create_strategy
from momentum_rider.strategy.base import AllocationStrategy, MomentumRecord
from momentum_rider.strategy.fixed_weight import FixedWeightStrategy
from momentum_rider.strategy.momentum import MomentumScorer
from momentum_rider.strategy.momentum_ranked import MomentumRankedStrategy
from momentum_rider.utils.config import DEFAULT_SETTINGS, Config
from momentum_rider.utils.exceptions import DataError, DataUnavailableError
from momentum_rider.utils.logging import get_logger

logger = get_logger(__name__)


class PortfolioAPI:
    """High-level API for momentum and rebalancing workflows.

    Example:
        >>> from momentum_rider.api.portfolio_api import PortfolioAPI
        >>>
        >>> api = PortfolioAPI()
        >>> result = api.rebalance(
        ...     strategy="momentum",
        ...     tickers=["VTI", "VEA", "VWO", "TLT", "BND", "GLDM"],
        ...     available_cash=10000.0,
        ...     params={"top_n": 3},
        ... )
        >>> for order in result.orders():
        ...     print(order.ticker, order.shares_to_trade)
    """

    def __init__(
        self,
        provider: Optional[PriceProvider] = None,
        optimizer: Optional[PortfolioOptimizer] = None,
        momentum_service: Optional[MomentumService] = None,
        settings: Optional[Config] = None,
    ):
        """Initialize PortfolioAPI.

        Args:
            provider: PriceProvider (defaults to YFinanceProvider)
            optimizer: PortfolioOptimizer (defaults to one built from settings)
            momentum_service: MomentumService (defaults to a cached service
                              over the provider)
            settings: Loaded settings (defaults to built-in defaults)
        """
        settings = settings or Config(copy.deepcopy(DEFAULT_SETTINGS))

        if provider is None:
            from momentum_rider.data.providers.yfinance_provider import YFinanceProvider

            provider = YFinanceProvider()
        self.provider = provider

        self.optimizer = optimizer or PortfolioOptimizer.from_settings(settings)

        if momentum_service is None:
            momentum = settings.section("momentum")
            ttl = float(momentum.get("cache_ttl", 3600))
            momentum_service = MomentumService(
                provider,
                cache=ReadThroughCache(InMemoryCache(), default_ttl=ttl),
                scorer=MomentumScorer(momentum.get("horizons", (3, 6, 9, 12))),
                inter_call_delay=float(momentum.get("inter_call_delay", 0.2)),
                ttl=ttl,
                history_years=int(momentum.get("history_years", 2)),
            )
        self.momentum_service = momentum_service

        logger.debug(
            "PortfolioAPI initialized with %s", type(self.provider).__name__
        )

    def get_momentum(
        self,
        tickers: Sequence[str],
        abort: Optional[threading.Event] = None,
    ) -> List[MomentumRecord]:
        """Momentum records for tickers (error-flagged where unavailable)."""
        return self.momentum_service.calculate_batch(tickers, abort=abort)

    def get_target_allocation(
        self,
        strategy: AllocationStrategy | str,
        tickers: Sequence[str],
        params: Optional[Dict] = None,
        momentum_records: Optional[Sequence[MomentumRecord]] = None,
        abort: Optional[threading.Event] = None,
    ) -> List[TargetAllocation]:
        """Target allocations for a strategy instance or registered name.

        Momentum records are fetched when the strategy needs them and none
        were supplied.
        """
        if isinstance(strategy, str):
            strategy = create_strategy(strategy, params)

        if momentum_records is None:
            momentum_records = self._momentum_for(strategy, tickers, abort)
        self._attach_price_history(strategy, abort)

        return strategy.target_allocation(tickers, momentum_records)

    def get_prices(
        self,
        tickers: Sequence[str],
        known: Optional[Mapping[str, float]] = None,
        abort: Optional[threading.Event] = None,
    ) -> Dict[str, float]:
        """Current prices for tickers, reusing already known prices.

        Raises:
            DataUnavailableError: If any price cannot be fetched
        """
        prices = {t: float(p) for t, p in (known or {}).items() if p}
        missing = []

        for ticker in tickers:
            if ticker in prices:
                continue
            try:
                prices[ticker] = self.provider.get_current_price(ticker, abort)
            except DataError as e:
                logger.warning("Price unavailable for %s: %s", ticker, e)
                missing.append(ticker)

        if missing:
            raise DataUnavailableError(f"No current price for: {', '.join(missing)}")
        return {t: prices[t] for t in tickers}

    def rebalance(
        self,
        strategy: AllocationStrategy | str,
        tickers: Sequence[str],
        available_cash: float,
        current_holdings: Optional[List[Holding]] = None,
        params: Optional[Dict] = None,
        optimization_strategy: Optional[str] = None,
        abort: Optional[threading.Event] = None,
    ) -> OptimizationResult:
        """Run strategy, price lookup and optimization end to end.

        Args:
            strategy: Strategy instance or registered name
            tickers: Candidate universe
            available_cash: Cash to deploy
            current_holdings: Current positions (with current prices)
            params: Strategy params when `strategy` is a name
            optimization_strategy: Promotion strategy for the fallback cascade
            abort: Optional signal to stop upstream fetches

        Returns:
            OptimizationResult

        Raises:
            InvalidInputError: If strategy params or the request are invalid
            DataUnavailableError: If a target instrument has no price
        """
        if isinstance(strategy, str):
            strategy = create_strategy(strategy, params)
        records = self._momentum_for(strategy, tickers, abort)
        self._attach_price_history(strategy, abort)

        targets = strategy.target_allocation(tickers, records)
        known = {r.ticker: r.price for r in records if r.ok and r.price}
        prices = self.get_prices([t.ticker for t in targets], known=known, abort=abort)

        request = OptimizationRequest(
            target_allocations=[replace(t, price=prices[t.ticker]) for t in targets],
            available_cash=available_cash,
            current_holdings=list(current_holdings or []),
            optimization_strategy=optimization_strategy,
            momentum={r.ticker: r.average for r in records if r.ok},
        )

        logger.info(
            "Rebalancing %d targets with %.2f cash and %d holdings",
            len(targets), available_cash, len(request.current_holdings),
        )
        return self.optimizer.optimize(request)

    def optimize(self, payload: Mapping[str, Any]) -> Dict:
        """Optimize a camelCase request dict (see PortfolioOptimizer.optimize_dict)."""
        return self.optimizer.optimize_dict(payload)

    def _momentum_for(
        self,
        strategy: AllocationStrategy,
        tickers: Sequence[str],
        abort: Optional[threading.Event],
    ) -> List[MomentumRecord]:
        """Fetch momentum only for strategies that rank by it."""
        if not isinstance(strategy, MomentumRankedStrategy):
            return []

        universe = list(tickers)
        satellite = strategy.params.get("satellite_ticker")
        if satellite and satellite not in universe:
            universe.append(satellite)
        return self.get_momentum(universe, abort)

    def _attach_price_history(
        self,
        strategy: AllocationStrategy,
        abort: Optional[threading.Event],
    ) -> None:
        """Fetch daily closes for a trend-filtered fixed-weight strategy.

        Tickers whose history cannot be fetched are left out, so the filter
        keeps their static weight.
        """
        if not isinstance(strategy, FixedWeightStrategy):
            return
        if not strategy.params["trend_filter"] or strategy.params["price_history"]:
            return

        end = datetime.now()
        # Two extra months so the last SMA window is complete
        start = pd.Timestamp(end) - pd.DateOffset(months=strategy.params["sma_period"] + 2)
        history = {}
        for ticker in strategy.params["weights"]:
            try:
                bars = self.provider.get_price_history(
                    ticker, start.to_pydatetime(), end, interval="1d", abort=abort
                )
            except DataError as e:
                logger.warning("Trend history unavailable for %s: %s", ticker, e)
                continue
            history[ticker] = bars["close"]

        strategy.params["price_history"] = history
