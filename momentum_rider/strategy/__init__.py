"""Strategy Layer.

This layer turns a ticker universe (plus momentum, for momentum-driven
strategies) into target allocations that sum to 100%.

Components:
- MomentumScorer: Multi-horizon momentum from price history
- MomentumRankedStrategy: Top-N absolute momentum with cash fallback
- FixedWeightStrategy: Static weights with SMA trend filter
- CustomStrategy: User-supplied percentages
"""

from typing import Dict, Optional, Type

from momentum_rider.strategy.base import (
    AllocationStrategy,
    MomentumRecord,
    build_momentum_record,
)
from momentum_rider.strategy.custom import CustomStrategy
from momentum_rider.strategy.fixed_weight import ALL_WEATHER_WEIGHTS, FixedWeightStrategy
from momentum_rider.strategy.momentum import MomentumScorer
from momentum_rider.strategy.momentum_ranked import MomentumRankedStrategy
from momentum_rider.utils.exceptions import InvalidInputError

STRATEGIES: Dict[str, Type[AllocationStrategy]] = {
    "momentum": MomentumRankedStrategy,
    "allweather": FixedWeightStrategy,
    "fixed": FixedWeightStrategy,
    "custom": CustomStrategy,
    "percentage": CustomStrategy,
}


def create_strategy(name: str, params: Optional[Dict] = None) -> AllocationStrategy:
    """Instantiate a strategy by name.

    Raises:
        InvalidInputError: If the name is unknown or params are invalid
    """
    try:
        strategy_cls = STRATEGIES[name.lower()]
    except KeyError:
        raise InvalidInputError(
            f"Unknown strategy '{name}'. Available: {', '.join(sorted(STRATEGIES))}"
        ) from None
    return strategy_cls(params)


__all__ = [
    "AllocationStrategy",
    "MomentumRecord",
    "build_momentum_record",
    "MomentumScorer",
    "MomentumRankedStrategy",
    "FixedWeightStrategy",
    "CustomStrategy",
    "ALL_WEATHER_WEIGHTS",
    "STRATEGIES",
    "create_strategy",
]
