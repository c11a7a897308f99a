"""Momentum calculation service.

Fetches weekly history and the current price from a PriceProvider, scores
them with a MomentumScorer and caches successful records. Batch requests run
sequentially with a small delay between tickers to respect upstream rate
limits; one ticker's failure never stops the batch.
"""

import threading
import time
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pandas as pd

from momentum_rider.data.base import PriceProvider, check_abort
from momentum_rider.data.cache import ReadThroughCache
from momentum_rider.strategy.base import MomentumRecord
from momentum_rider.strategy.momentum import MomentumScorer
from momentum_rider.utils.exceptions import DataError
from momentum_rider.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)


class MomentumService:
    """Momentum records for tickers, with caching and batch fan-out.

    Example:
        >>> service = MomentumService(
        ...     YFinanceProvider(),
        ...     cache=ReadThroughCache(InMemoryCache(), default_ttl=3600),
        ... )
        >>> records = service.calculate_batch(["VTI", "VEA", "TLT"])
        >>> [r.ticker for r in records if r.absolute_momentum]
        ['VTI', 'VEA']
    """

    def __init__(
        self,
        provider: PriceProvider,
        cache: Optional[ReadThroughCache] = None,
        scorer: Optional[MomentumScorer] = None,
        inter_call_delay: float = 0.2,
        ttl: float = 3600,
        history_years: int = 2,
    ):
        if inter_call_delay < 0:
            raise ValueError(f"inter_call_delay must be >= 0, got {inter_call_delay}")
        if history_years < 1:
            raise ValueError(f"history_years must be >= 1, got {history_years}")

        self.provider = provider
        self.cache = cache
        self.scorer = scorer or MomentumScorer()
        self.inter_call_delay = inter_call_delay
        self.ttl = ttl
        self.history_years = history_years

    def cache_key(self, ticker: str) -> str:
        horizons = "-".join(str(h) for h in self.scorer.horizons)
        return f"momentum:{ticker}:{horizons}"

    def calculate(
        self,
        ticker: str,
        abort: Optional[threading.Event] = None,
        as_of: Optional[datetime] = None,
    ) -> MomentumRecord:
        """Momentum for one ticker; failures come back as error records.

        Only successful records are cached, and only for the current date
        (as_of=None).
        """
        if self.cache is None or as_of is not None:
            return self._compute(ticker, abort, as_of)

        return self.cache.get_or_compute(
            self.cache_key(ticker),
            lambda: self._compute(ticker, abort, None),
            ttl=self.ttl,
            should_cache=lambda record: record.ok,
        )

    def calculate_batch(
        self,
        tickers: Sequence[str],
        abort: Optional[threading.Event] = None,
    ) -> List[MomentumRecord]:
        """Momentum for several tickers, in input order.

        Args:
            tickers: Ticker symbols
            abort: Optional signal; once set, remaining tickers become
                   error records without any upstream fetch

        Returns:
            One record per ticker (error-flagged where calculation failed)
        """
        records = []

        for i, ticker in enumerate(tickers):
            if abort is not None and abort.is_set():
                records.append(MomentumRecord.failed(ticker, "aborted", self.scorer.labels))
                continue

            try:
                records.append(self.calculate(ticker, abort))
            except Exception as e:
                logger.error("Unexpected momentum failure for %s: %s", ticker, e)
                records.append(
                    MomentumRecord.failed(
                        ticker, f"Failed to calculate momentum for {ticker}: {e}",
                        self.scorer.labels,
                    )
                )

            if i < len(tickers) - 1 and self.inter_call_delay > 0:
                self._pause(abort)

        failed = [r.ticker for r in records if not r.ok]
        log_with_context(
            logger, "info", "Batch momentum complete",
            tickers=len(records), failed=len(failed),
        )
        return records

    def detailed_prices(
        self,
        ticker: str,
        abort: Optional[threading.Event] = None,
    ) -> Dict:
        """Current price and the historical price used for each horizon.

        Raises:
            DataError: If prices cannot be fetched
        """
        end = datetime.now()
        history, current = self._fetch(ticker, end, abort)
        return {
            "ticker": ticker,
            "currentPrice": current,
            "historicalPrices": self.scorer.historical_prices(history, end),
        }

    def _compute(
        self,
        ticker: str,
        abort: Optional[threading.Event],
        as_of: Optional[datetime],
    ) -> MomentumRecord:
        end = as_of or datetime.now()
        try:
            history, current = self._fetch(ticker, end, abort)
        except DataError as e:
            logger.warning("Momentum data unavailable for %s: %s", ticker, e)
            return MomentumRecord.failed(
                ticker, f"Failed to calculate momentum for {ticker}: {e}", self.scorer.labels
            )

        return self.scorer.score(ticker, history, current, as_of=end)

    def _fetch(
        self,
        ticker: str,
        end: datetime,
        abort: Optional[threading.Event],
    ):
        start = pd.Timestamp(end) - pd.DateOffset(years=self.history_years)
        history = self.provider.get_price_history(
            ticker, start.to_pydatetime(), end, interval="1wk", abort=abort
        )

        try:
            current = self.provider.get_current_price(ticker, abort)
        except DataError as e:
            check_abort(abort, ticker)
            if history is None or history.empty:
                raise
            current = float(history["close"].iloc[-1])
            logger.warning(
                "Current price unavailable for %s, using latest close %.2f: %s",
                ticker, current, e,
            )

        return history, current

    def _pause(self, abort: Optional[threading.Event]) -> None:
        if abort is not None:
            abort.wait(self.inter_call_delay)
        else:
            time.sleep(self.inter_call_delay)
