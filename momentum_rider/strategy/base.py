"""Abstract base class for allocation strategies.

This module defines the contract for turning a ticker universe (and, for
momentum-driven strategies, momentum records) into normalized target
allocations. Strategies know nothing about prices, budgets or share counts;
the portfolio layer turns their targets into orders.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from momentum_rider.portfolio.base import DEFAULT_ALLOWED_DEVIATION, TargetAllocation
from momentum_rider.utils.exceptions import InvalidInputError

DEFAULT_PERIODS = ("3month", "6month", "9month", "12month")


@dataclass(frozen=True)
class MomentumRecord:
    """Momentum of one ticker across the lookback horizons.

    Records are immutable; a failed calculation yields a zeroed record with
    ``error`` set instead of raising, so batch processing keeps going.

    Attributes:
        ticker: Ticker symbol
        periods: Percent return per horizon label (e.g. "3month")
        average: Arithmetic mean of the period returns
        absolute_momentum: True when every period return is positive
        price: Current price used for the returns
        error: Failure description, None on success
    """

    ticker: str
    periods: Dict[str, float] = field(default_factory=dict)
    average: float = 0.0
    absolute_momentum: bool = False
    price: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(
        cls,
        ticker: str,
        error: str,
        periods: Sequence[str] = DEFAULT_PERIODS,
    ) -> "MomentumRecord":
        return cls(
            ticker=ticker,
            periods={label: 0.0 for label in periods},
            average=0.0,
            absolute_momentum=False,
            error=error,
        )

    def to_dict(self) -> Dict:
        data = {
            "ticker": self.ticker,
            "periods": dict(self.periods),
            "average": self.average,
            "absoluteMomentum": self.absolute_momentum,
        }
        if self.price is not None:
            data["price"] = self.price
        if self.error is not None:
            data["error"] = self.error
        return data


def build_momentum_record(
    ticker: str,
    returns: Mapping[str, float],
    price: Optional[float] = None,
) -> MomentumRecord:
    """Build a record from per-period returns.

    Example:
        >>> record = build_momentum_record(
        ...     "VTI", {"3month": 5, "6month": 10, "9month": 15, "12month": 20}
        ... )
        >>> record.average, record.absolute_momentum
        (12.5, True)
    """
    if not returns:
        raise InvalidInputError(f"no period returns supplied for {ticker}")

    values = [float(v) for v in returns.values()]
    return MomentumRecord(
        ticker=ticker,
        periods={label: float(v) for label, v in returns.items()},
        average=sum(values) / len(values),
        absolute_momentum=all(v > 0 for v in values),
        price=price,
    )


class AllocationStrategy(ABC):
    """Abstract base class for all allocation strategies.

    Each strategy outputs target percentages that sum to 100, with unique
    tickers in a deterministic order.

    Example:
        >>> class SingleAsset(AllocationStrategy):
        ...     def validate_params(self):
        ...         if "ticker" not in self.params:
        ...             raise InvalidInputError("'ticker' parameter required")
        ...     def target_allocation(self, tickers, momentum_records=None):
        ...         return [self.make_target(self.params["ticker"], 100.0)]
    """

    def __init__(self, params: Optional[Dict] = None):
        """Initialize strategy with parameters.

        Args:
            params: Strategy-specific parameters (e.g., {'top_n': 3})
        """
        self.params = dict(params or {})
        self.validate_params()

    @property
    def allowed_deviation(self) -> float:
        return float(self.params.get("allowed_deviation", DEFAULT_ALLOWED_DEVIATION))

    @abstractmethod
    def validate_params(self) -> None:
        """Validate that parameters are present and valid.

        Raises:
            InvalidInputError: If parameters are missing or invalid
        """
        pass

    @abstractmethod
    def target_allocation(
        self,
        tickers: Sequence[str],
        momentum_records: Optional[Sequence[MomentumRecord]] = None,
    ) -> List[TargetAllocation]:
        """Compute target allocations.

        Args:
            tickers: Universe of candidate tickers
            momentum_records: Momentum per ticker (momentum strategies only)

        Returns:
            List of TargetAllocation summing to 100
        """
        pass

    def make_target(self, ticker: str, percentage: float) -> TargetAllocation:
        return TargetAllocation(
            ticker=ticker,
            target_percentage=percentage,
            allowed_deviation=self.allowed_deviation,
        )

    def merge_targets(self, weights: Mapping[str, float]) -> List[TargetAllocation]:
        """Turn a weight map into targets, dropping zero weights.

        Keeps insertion order; weights for the same ticker must already be
        summed by the caller.
        """
        return [self.make_target(t, w) for t, w in weights.items() if w > 0]
