"""Custom percentage strategy.

The caller supplies a ticker -> percentage map directly; it is validated to
sum to 100 within an epsilon.
"""

from typing import List, Optional, Sequence

from momentum_rider.portfolio.base import TargetAllocation
from momentum_rider.strategy.base import AllocationStrategy, MomentumRecord
from momentum_rider.utils.exceptions import InvalidInputError


class CustomStrategy(AllocationStrategy):
    """User-defined percentages.

    Parameters:
        - allocations (dict): Ticker -> percentage (required)
        - epsilon (float): Allowed slack on the 100% total (default: 0.01)
        - allowed_deviation (float): Band attached to every target (default: 5)

    Example:
        >>> CustomStrategy({'allocations': {'VTI': 60, 'BND': 40}}).target_allocation([])
        [TargetAllocation(ticker='VTI', target_percentage=60.0, ...), ...]
    """

    def validate_params(self) -> None:
        if "allocations" not in self.params:
            raise InvalidInputError("'allocations' parameter required")

        allocations = self.params["allocations"]
        epsilon = float(self.params.get("epsilon", 0.01))
        if not allocations:
            raise InvalidInputError("'allocations' must not be empty")

        for ticker, pct in allocations.items():
            if not 0 <= pct <= 100:
                raise InvalidInputError(f"percentage for {ticker} must be in [0, 100], got {pct}")

        total = sum(allocations.values())
        if abs(total - 100.0) > epsilon:
            raise InvalidInputError(
                f"allocations must sum to 100 (+/- {epsilon}), got {total:.4f}"
            )

    def target_allocation(
        self,
        tickers: Sequence[str],
        momentum_records: Optional[Sequence[MomentumRecord]] = None,
    ) -> List[TargetAllocation]:
        return self.merge_targets(
            {t: float(p) for t, p in self.params["allocations"].items()}
        )
