"""Heuristic fallback cascade for share allocation.

Used when the integer program is infeasible, times out or faults. Every
strategy starts from a floor allocation (whole shares of each instrument's
buy difference) and spends the leftover cash by promoting instruments one
share at a time.

Algorithm:
1. Build floor orders: floor((target value - current value) / price)
2. Floor-scaling guard: if the floors alone overspend the budget, scale every
   floor count by budget / floor cost and re-floor
3. Primary promotion strategy spends the leftover
4. Optional fallback strategy spends whatever the primary left

Monotonicity: final shares are never below floor shares and leftover never
grows. Greedy loops are bounded by floor(leftover / cheapest price) + 1
rounds, which is enough to exhaust any leftover.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Type

from momentum_rider.portfolio.base import OptimizationRequest
from momentum_rider.utils.exceptions import InvalidInputError
from momentum_rider.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class BuyOrder:
    """Floor allocation for one target instrument.

    Attributes:
        ticker: Ticker symbol
        price: Price per share
        exact_shares: Fractional shares needed to reach target
        floor_shares: Whole shares before promotion
        target_value: Dollar target for the instrument
        current_value: Dollar value already held
    """

    ticker: str
    price: float
    exact_shares: float
    floor_shares: int
    target_value: float = 0.0
    current_value: float = 0.0

    @property
    def remainder(self) -> float:
        return self.exact_shares - self.floor_shares

    @property
    def floor_cost(self) -> float:
        return self.floor_shares * self.price


def build_floor_orders(request: OptimizationRequest) -> List[BuyOrder]:
    """Compute the floor allocation for every target instrument."""
    orders = []
    for target in request.target_allocations:
        price = float(target.price)
        target_value = request.target_value(target)
        current_value = request.current_value(target.ticker)
        exact = max(0.0, target_value - current_value) / price
        orders.append(
            BuyOrder(
                ticker=target.ticker,
                price=price,
                exact_shares=exact,
                floor_shares=math.floor(exact),
                target_value=target_value,
                current_value=current_value,
            )
        )
    return orders


def total_cost(orders: List[BuyOrder], shares: Optional[Mapping[str, int]] = None) -> float:
    """Dollar cost of floor shares, or of an explicit share map."""
    if shares is None:
        return sum(o.floor_cost for o in orders)
    return sum(shares.get(o.ticker, 0) * o.price for o in orders)


def apply_floor_scaling(
    orders: List[BuyOrder],
    available_budget: float,
) -> Tuple[List[BuyOrder], float, float]:
    """Scale floor shares down when they already exceed the budget.

    Args:
        orders: Floor orders
        available_budget: Cash that may be spent

    Returns:
        Tuple of (orders, leftover, scale_factor). Leftover is always >= 0;
        scale_factor is 1.0 when no scaling was needed.
    """
    cost = total_cost(orders)
    if cost <= available_budget:
        return orders, available_budget - cost, 1.0

    scale = available_budget / cost
    scaled = [
        replace(
            o,
            floor_shares=math.floor(o.floor_shares * scale),
            exact_shares=o.exact_shares * scale,
        )
        for o in orders
    ]
    scaled_cost = total_cost(scaled)

    log_with_context(
        logger, "warning", "Floor allocation exceeded budget, scaled down",
        floor_cost=round(cost, 2), budget=round(available_budget, 2),
        scale_factor=round(scale, 4), scaled_cost=round(scaled_cost, 2),
    )
    return scaled, max(0.0, available_budget - scaled_cost), scale


class PromotionStrategy(ABC):
    """Contract for leftover-spending strategies.

    Subclasses receive floor orders plus leftover cash and return final
    share counts per ticker. They must never return fewer shares than the
    floor and never spend more than the leftover.
    """

    name: str = ""
    description: str = ""
    requires_momentum: bool = False

    def __init__(self, momentum: Optional[Mapping[str, float]] = None):
        self.momentum = dict(momentum or {})

    @abstractmethod
    def calculate_promotions(
        self,
        orders: List[BuyOrder],
        leftover_budget: float,
    ) -> Dict[str, int]:
        """Return final share counts (floor + promotions) per ticker."""
        pass


class GreedyPromotion(PromotionStrategy):
    """Repeatedly promote the first affordable instrument in priority order."""

    @abstractmethod
    def prioritize(self, orders: List[BuyOrder]) -> List[BuyOrder]:
        """Order instruments from most to least preferred for promotion."""
        pass

    def calculate_promotions(
        self,
        orders: List[BuyOrder],
        leftover_budget: float,
    ) -> Dict[str, int]:
        shares = {o.ticker: o.floor_shares for o in orders}
        if not orders or leftover_budget <= 0:
            return shares

        ranked = self.prioritize(orders)
        remaining = leftover_budget
        max_rounds = math.floor(leftover_budget / min(o.price for o in orders)) + 1

        for _ in range(max_rounds):
            chosen = next((o for o in ranked if o.price <= remaining), None)
            if chosen is None:
                break
            shares[chosen.ticker] += 1
            remaining -= chosen.price

        return shares


_REGISTRY: Dict[str, Type[PromotionStrategy]] = {}

STRATEGY_ALIASES = {
    "minimize-leftover": "remainder-first",
    "maximize-shares": "multi-share",
}

DEFAULT_FALLBACK = "price-efficient"


def register_promotion_strategy(
    name: str,
) -> Callable[[Type[PromotionStrategy]], Type[PromotionStrategy]]:
    """Class decorator adding a strategy to the cascade registry.

    Example:
        >>> @register_promotion_strategy("largest-first")
        ... class LargestFirst(GreedyPromotion):
        ...     def prioritize(self, orders):
        ...         return sorted(orders, key=lambda o: (-o.price, o.ticker))
    """

    def decorator(cls: Type[PromotionStrategy]) -> Type[PromotionStrategy]:
        cls.name = name
        _REGISTRY[name] = cls
        return cls

    return decorator


def available_strategies() -> List[str]:
    return sorted(_REGISTRY)


def resolve_strategy_name(name: Optional[str], default: str = "multi-share") -> str:
    """Map aliases to registered names; unknown names are rejected."""
    resolved = STRATEGY_ALIASES.get(name, name) if name else default
    if resolved not in _REGISTRY:
        raise InvalidInputError(
            f"Unknown optimization strategy '{name}'. "
            f"Available: {', '.join(available_strategies())}"
        )
    return resolved


def create_promotion_strategy(
    name: Optional[str],
    momentum: Optional[Mapping[str, float]] = None,
) -> PromotionStrategy:
    """Instantiate a registered strategy.

    Momentum-aware strategies degrade to price-efficient when no momentum
    context is available.
    """
    resolved = resolve_strategy_name(name)
    cls = _REGISTRY[resolved]

    if cls.requires_momentum and not momentum:
        logger.info(
            "No momentum context for %s promotion, using %s", resolved, DEFAULT_FALLBACK
        )
        cls = _REGISTRY[DEFAULT_FALLBACK]

    return cls(momentum=momentum)


@register_promotion_strategy("remainder-first")
class RemainderFirstPromotion(PromotionStrategy):
    """Promote at most one share per instrument, largest fractional remainder first."""

    description = "Prioritize instruments closest to their next whole share"

    def calculate_promotions(
        self,
        orders: List[BuyOrder],
        leftover_budget: float,
    ) -> Dict[str, int]:
        shares = {o.ticker: o.floor_shares for o in orders}
        remaining = leftover_budget

        for order in sorted(orders, key=lambda o: (-o.remainder, o.ticker)):
            if order.price <= remaining:
                shares[order.ticker] += 1
                remaining -= order.price

        return shares


@register_promotion_strategy("multi-share")
class MultiSharePromotion(GreedyPromotion):
    """Maximize shares bought by always promoting the cheapest affordable instrument."""

    description = "Maximize total shares purchased, minimize leftover budget"

    def prioritize(self, orders: List[BuyOrder]) -> List[BuyOrder]:
        return sorted(orders, key=lambda o: (o.price, o.ticker))


@register_promotion_strategy("momentum-weighted")
class MomentumWeightedPromotion(GreedyPromotion):
    """Prefer instruments with the most momentum per dollar of share price."""

    description = "Prioritize instruments with highest momentum per dollar"
    requires_momentum = True

    def prioritize(self, orders: List[BuyOrder]) -> List[BuyOrder]:
        return sorted(
            orders,
            key=lambda o: (-self.momentum.get(o.ticker, 0.0) / o.price, o.ticker),
        )


@register_promotion_strategy("price-efficient")
class PriceEfficientPromotion(GreedyPromotion):
    """Prefer cheaper instruments; ties go to the larger fractional remainder."""

    description = "Prioritize cheaper instruments for more share promotions"

    def prioritize(self, orders: List[BuyOrder]) -> List[BuyOrder]:
        return sorted(orders, key=lambda o: (o.price, -o.remainder, o.ticker))


@register_promotion_strategy("hybrid")
class HybridPromotion(GreedyPromotion):
    """Blend normalized momentum rank with normalized price efficiency.

    score = momentum_weight * rank_score + price_weight * (cheapest / price)
    where rank_score is 1.0 for the strongest momentum and 0.0 for the weakest.
    """

    description = "Balance momentum and price efficiency"
    requires_momentum = True

    momentum_weight = 0.7
    price_weight = 0.3

    def prioritize(self, orders: List[BuyOrder]) -> List[BuyOrder]:
        by_momentum = sorted(
            orders, key=lambda o: (-self.momentum.get(o.ticker, 0.0), o.ticker)
        )
        span = max(len(orders) - 1, 1)
        rank_score = {
            o.ticker: 1.0 - i / span if len(orders) > 1 else 1.0
            for i, o in enumerate(by_momentum)
        }
        cheapest = min(o.price for o in orders)

        def score(order: BuyOrder) -> float:
            return (
                self.momentum_weight * rank_score[order.ticker]
                + self.price_weight * cheapest / order.price
            )

        return sorted(orders, key=lambda o: (-score(o), o.ticker))


@dataclass
class CascadeResult:
    """Outcome of the heuristic cascade.

    Attributes:
        shares_to_buy: Final purchase per ticker (floor + promotions)
        floor_shares: Floor purchase per ticker after the scaling guard
        leftover: Unspent budget
        promotions: Total shares added above the floors
        strategy_used: Primary strategy name actually executed
        fallback_applied: Whether the fallback strategy ran
        scale_factor: Floor-scaling factor (1.0 when not applied)
    """

    shares_to_buy: Dict[str, int]
    floor_shares: Dict[str, int]
    leftover: float
    promotions: int
    strategy_used: str
    fallback_applied: bool = False
    scale_factor: float = 1.0


class HeuristicCascade:
    """Run the floor guard, a primary strategy and an optional fallback.

    Example:
        >>> cascade = HeuristicCascade(primary="remainder-first")
        >>> result = cascade.run(build_floor_orders(request), request.available_budget)
        >>> result.shares_to_buy
        {'VTI': 2, 'TLT': 3, ...}
    """

    def __init__(
        self,
        primary: Optional[str] = None,
        fallback: Optional[str] = DEFAULT_FALLBACK,
        enable_fallback: bool = True,
        momentum: Optional[Mapping[str, float]] = None,
    ):
        self.primary = resolve_strategy_name(primary)
        self.fallback = resolve_strategy_name(fallback) if fallback else None
        self.enable_fallback = enable_fallback
        self.momentum = dict(momentum or {})

    def run(self, orders: List[BuyOrder], available_budget: float) -> CascadeResult:
        orders, leftover, scale = apply_floor_scaling(orders, available_budget)
        floors = {o.ticker: o.floor_shares for o in orders}

        primary = create_promotion_strategy(self.primary, self.momentum)
        if not orders or leftover <= 0:
            return CascadeResult(
                shares_to_buy=dict(floors),
                floor_shares=floors,
                leftover=leftover,
                promotions=0,
                strategy_used=primary.name,
                scale_factor=scale,
            )

        shares = primary.calculate_promotions(orders, leftover)
        leftover = available_budget - total_cost(orders, shares)

        fallback_applied = False
        if self.enable_fallback and self.fallback and leftover > 0:
            fallback = create_promotion_strategy(self.fallback, self.momentum)
            promoted = [
                replace(o, floor_shares=shares[o.ticker], exact_shares=float(shares[o.ticker]))
                for o in orders
            ]
            extended = fallback.calculate_promotions(promoted, leftover)
            fallback_applied = extended != shares
            shares = extended
            leftover = available_budget - total_cost(orders, shares)

        promotions = sum(shares[t] - floors[t] for t in floors)
        log_with_context(
            logger, "info", "Heuristic cascade complete",
            strategy=primary.name, fallback=fallback_applied,
            promotions=promotions, leftover=round(leftover, 2),
        )

        return CascadeResult(
            shares_to_buy=shares,
            floor_shares=floors,
            leftover=max(0.0, leftover),
            promotions=promotions,
            strategy_used=primary.name,
            fallback_applied=fallback_applied,
            scale_factor=scale,
        )
