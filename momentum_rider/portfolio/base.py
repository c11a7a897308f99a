"""Core data model for budget allocation.

This module defines the request and result types shared by the solver, the
heuristic cascade and the tolerance refiner, plus the helpers that turn a
set of share purchases into per-instrument allocation lines and metrics.

Budget terms used throughout the portfolio layer:
- available budget: cash plus proceeds of fully liquidating every holding
  that is not in the target set. Purchases can never exceed it.
- portfolio value: available budget plus the current value of held target
  instruments. Target and actual percentages are measured against it.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional

from momentum_rider.utils.exceptions import InvalidInputError

DEFAULT_ALLOWED_DEVIATION = 5.0


class SolverStatus(Enum):
    """Categorical optimization outcome."""

    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    TIMEOUT = "timeout"
    ERROR = "error"
    HEURISTIC = "heuristic"


@dataclass(frozen=True)
class Instrument:
    """A tradeable instrument.

    Attributes:
        ticker: Unique ticker symbol
        price: Current price per share
        category: Free-form asset class tag (e.g. "equity", "bond")
    """

    ticker: str
    price: float
    category: str = ""

    def __post_init__(self):
        if not self.ticker:
            raise InvalidInputError("ticker must be a non-empty string")
        if self.price <= 0:
            raise InvalidInputError(f"price for {self.ticker} must be positive, got {self.price}")


@dataclass
class Holding:
    """A current position.

    Attributes:
        ticker: Ticker symbol
        shares: Shares held (non-negative integer)
        price: Current price per share
        average_cost: Average cost basis, for reporting only
    """

    ticker: str
    shares: int
    price: float
    average_cost: Optional[float] = None

    def __post_init__(self):
        if not self.ticker:
            raise InvalidInputError("holding ticker must be a non-empty string")
        if isinstance(self.shares, bool) or int(self.shares) != self.shares or self.shares < 0:
            raise InvalidInputError(
                f"shares for {self.ticker} must be a non-negative integer, got {self.shares}"
            )
        self.shares = int(self.shares)
        if self.price <= 0:
            raise InvalidInputError(
                f"price for holding {self.ticker} must be positive, got {self.price}"
            )

    @property
    def value(self) -> float:
        return self.shares * self.price


@dataclass
class TargetAllocation:
    """Desired share of portfolio value for one instrument.

    Attributes:
        ticker: Ticker symbol
        target_percentage: Target weight in percent (0-100)
        allowed_deviation: Permitted slack around the target in percentage points
        price: Current price per share (required by the optimizer)
    """

    ticker: str
    target_percentage: float
    allowed_deviation: float = DEFAULT_ALLOWED_DEVIATION
    price: Optional[float] = None

    def __post_init__(self):
        if not self.ticker:
            raise InvalidInputError("target ticker must be a non-empty string")
        if not 0 <= self.target_percentage <= 100:
            raise InvalidInputError(
                f"target_percentage for {self.ticker} must be in [0, 100], "
                f"got {self.target_percentage}"
            )
        if self.allowed_deviation < 0:
            raise InvalidInputError(
                f"allowed_deviation for {self.ticker} must be >= 0, "
                f"got {self.allowed_deviation}"
            )
        if self.price is not None and self.price <= 0:
            raise InvalidInputError(
                f"price for {self.ticker} must be positive, got {self.price}"
            )


@dataclass
class Order:
    """A share order to execute.

    Attributes:
        ticker: Ticker symbol
        shares_to_trade: Signed share count (positive = buy, negative = sell)
        price: Price per share used for the estimate
        trade_value: Absolute dollar value of the order
        reason: Why this order was generated
        timestamp: When the order was generated
    """

    ticker: str
    shares_to_trade: int
    price: float
    trade_value: float
    reason: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.shares_to_trade == 0:
            raise InvalidInputError(f"order for {self.ticker} must trade a non-zero share count")
        if self.trade_value < 0:
            raise InvalidInputError(
                f"trade_value must be non-negative, got {self.trade_value}"
            )

    @property
    def is_buy(self) -> bool:
        return self.shares_to_trade > 0


@dataclass
class AllocationLine:
    """Per-instrument outcome of an optimization."""

    ticker: str
    current_shares: int
    shares_to_buy: int
    final_shares: int
    price: float
    cost_of_purchase: float
    final_value: float
    target_percentage: float
    actual_percentage: float
    deviation: float
    allowed_deviation: float
    tolerance_compliant: bool = True


@dataclass
class HoldingToSell:
    """A non-target holding that is fully liquidated."""

    ticker: str
    shares: int
    price: float
    total_value: float


@dataclass
class OptimizationMetrics:
    """Aggregate budget figures for a result.

    Attributes:
        total_budget_used: Dollars spent on purchases
        unused_budget: Available budget left over
        unused_percentage: unused_budget as percent of available budget
        optimization_time: Wall time in milliseconds
        available_budget: Cash plus liquidation proceeds
        portfolio_value: Available budget plus held target value
    """

    total_budget_used: float
    unused_budget: float
    unused_percentage: float
    optimization_time: float = 0.0
    available_budget: float = 0.0
    portfolio_value: float = 0.0

    @property
    def utilization_rate(self) -> float:
        return 100.0 - self.unused_percentage


@dataclass
class ToleranceMetrics:
    """Deviation band compliance for a result."""

    tolerance_band: float
    compliance_rate: float
    compliant_allocations: int
    total_allocations: int
    relaxation_factor: float = 1.0
    refinement_iterations: int = 0
    quality_score: float = 0.0


@dataclass
class OptimizationRequest:
    """Input to the optimizer.

    Attributes:
        target_allocations: Target weights with prices
        available_cash: Cash to deploy on top of liquidation proceeds
        current_holdings: Current positions
        optimization_strategy: Promotion strategy name for the heuristic cascade
        momentum: Optional momentum score per ticker (used by momentum-aware
                  promotion strategies)
    """

    target_allocations: List[TargetAllocation]
    available_cash: float
    current_holdings: List[Holding] = field(default_factory=list)
    optimization_strategy: Optional[str] = None
    momentum: Dict[str, float] = field(default_factory=dict)

    @property
    def target_tickers(self) -> List[str]:
        return [t.ticker for t in self.target_allocations]

    @property
    def prices(self) -> Dict[str, float]:
        return {t.ticker: float(t.price) for t in self.target_allocations}

    def current_shares(self, ticker: str) -> int:
        for holding in self.current_holdings:
            if holding.ticker == ticker:
                return holding.shares
        return 0

    def current_value(self, ticker: str) -> float:
        """Value of the held shares of a target instrument at its target price."""
        return self.current_shares(ticker) * self.prices[ticker]

    @property
    def liquidations(self) -> List[Holding]:
        targets = set(self.target_tickers)
        return [h for h in self.current_holdings if h.ticker not in targets]

    @property
    def liquidation_value(self) -> float:
        return sum(h.value for h in self.liquidations)

    @property
    def available_budget(self) -> float:
        return self.available_cash + self.liquidation_value

    @property
    def portfolio_value(self) -> float:
        held_targets = sum(self.current_value(t) for t in self.target_tickers)
        return self.available_budget + held_targets

    def target_value(self, allocation: TargetAllocation) -> float:
        return self.portfolio_value * allocation.target_percentage / 100.0

    def validate(self, percentage_epsilon: float = 0.01) -> None:
        """Reject malformed requests before they reach the solver.

        Raises:
            InvalidInputError: With a message naming the offending field
        """
        if not self.target_allocations:
            raise InvalidInputError("target_allocations must not be empty")

        seen = set()
        for target in self.target_allocations:
            if target.ticker in seen:
                raise InvalidInputError(f"duplicate target ticker: {target.ticker}")
            seen.add(target.ticker)
            if target.price is None:
                raise InvalidInputError(f"target {target.ticker} is missing a price")

        holding_tickers = [h.ticker for h in self.current_holdings]
        if len(holding_tickers) != len(set(holding_tickers)):
            raise InvalidInputError("current_holdings contains duplicate tickers")

        if self.available_cash < 0:
            raise InvalidInputError(
                f"available_cash must be non-negative, got {self.available_cash}"
            )

        total = sum(t.target_percentage for t in self.target_allocations)
        if abs(total - 100.0) > percentage_epsilon:
            raise InvalidInputError(
                f"target percentages must sum to 100 (+/- {percentage_epsilon}), got {total:.4f}"
            )

        if self.available_budget <= 0:
            raise InvalidInputError(
                "available budget (cash plus liquidation proceeds) must be positive, "
                f"got {self.available_budget}"
            )


@dataclass
class OptimizationResult:
    """Outcome of an optimization request with provenance and diagnostics."""

    solver_status: SolverStatus
    allocations: List[AllocationLine]
    holdings_to_sell: List[HoldingToSell]
    metrics: OptimizationMetrics
    tolerance: Optional[ToleranceMetrics] = None
    fallback_used: bool = False
    fallback_reason: str = ""
    strategy_used: str = "solver"
    promotions: int = 0
    price_ratio_opportunities: List[Dict] = field(default_factory=list)
    recommendations: List[Dict[str, str]] = field(default_factory=list)

    @property
    def shares_to_buy(self) -> Dict[str, int]:
        return {a.ticker: a.shares_to_buy for a in self.allocations}

    def orders(self) -> List[Order]:
        """Convert the result into executable orders, sells first then buys."""
        sells = [
            Order(
                ticker=h.ticker,
                shares_to_trade=-h.shares,
                price=h.price,
                trade_value=h.total_value,
                reason="Liquidate holding outside target set",
            )
            for h in self.holdings_to_sell
            if h.shares > 0
        ]
        buys = [
            Order(
                ticker=a.ticker,
                shares_to_trade=a.shares_to_buy,
                price=a.price,
                trade_value=a.cost_of_purchase,
                reason=f"Move toward {a.target_percentage:.1f}% target",
            )
            for a in self.allocations
            if a.shares_to_buy > 0
        ]
        return sells + buys

    def to_dict(self) -> Dict:
        """Render the external response shape (camelCase keys)."""
        tolerance = self.tolerance or ToleranceMetrics(
            tolerance_band=DEFAULT_ALLOWED_DEVIATION,
            compliance_rate=0.0,
            compliant_allocations=0,
            total_allocations=len(self.allocations),
        )
        return {
            "solverStatus": self.solver_status.value,
            "allocations": [
                {
                    "ticker": a.ticker,
                    "currentShares": a.current_shares,
                    "sharesToBuy": a.shares_to_buy,
                    "finalShares": a.final_shares,
                    "costOfPurchase": round(a.cost_of_purchase, 2),
                    "finalValue": round(a.final_value, 2),
                    "targetPercentage": a.target_percentage,
                    "actualPercentage": round(a.actual_percentage, 4),
                    "deviation": round(a.deviation, 4),
                    "allowedDeviation": a.allowed_deviation,
                    "toleranceCompliant": a.tolerance_compliant,
                }
                for a in self.allocations
            ],
            "holdingsToSell": [
                {
                    "ticker": h.ticker,
                    "shares": h.shares,
                    "price": h.price,
                    "totalValue": round(h.total_value, 2),
                }
                for h in self.holdings_to_sell
            ],
            "optimizationMetrics": {
                "totalBudgetUsed": round(self.metrics.total_budget_used, 2),
                "unusedBudget": round(self.metrics.unused_budget, 2),
                "unusedPercentage": round(self.metrics.unused_percentage, 4),
                "optimizationTime": self.metrics.optimization_time,
                "availableBudget": round(self.metrics.available_budget, 2),
                "portfolioValue": round(self.metrics.portfolio_value, 2),
                "utilizationRate": round(self.metrics.utilization_rate, 4),
            },
            "toleranceMetrics": {
                "toleranceBand": tolerance.tolerance_band,
                "complianceRate": round(tolerance.compliance_rate, 2),
                "compliantAllocations": tolerance.compliant_allocations,
                "totalAllocations": tolerance.total_allocations,
                "relaxationFactor": tolerance.relaxation_factor,
                "refinementIterations": tolerance.refinement_iterations,
                "qualityScore": round(tolerance.quality_score, 2),
            },
            "fallbackUsed": self.fallback_used,
            "fallbackReason": self.fallback_reason,
            "strategyUsed": self.strategy_used,
            "promotions": self.promotions,
            "priceRatioOpportunities": list(self.price_ratio_opportunities),
            "recommendations": list(self.recommendations),
            "orders": [
                {
                    "ticker": o.ticker,
                    "sharesToTrade": o.shares_to_trade,
                    "price": o.price,
                    "tradeValue": round(o.trade_value, 2),
                }
                for o in self.orders()
            ],
        }


def build_allocation_lines(
    request: OptimizationRequest,
    shares_to_buy: Mapping[str, int],
    deviations: Optional[Mapping[str, float]] = None,
) -> List[AllocationLine]:
    """Build one allocation line per target instrument.

    Instruments missing from ``shares_to_buy`` get zero purchases, so every
    target always appears in the result.

    Args:
        request: The optimization request
        shares_to_buy: Shares purchased per ticker
        deviations: Effective deviation band per ticker (defaults to the
                    request's allowed deviations)
    """
    portfolio_value = request.portfolio_value
    lines = []

    for target in request.target_allocations:
        price = float(target.price)
        current = request.current_shares(target.ticker)
        buy = int(shares_to_buy.get(target.ticker, 0))
        final = current + buy
        final_value = final * price
        actual_pct = final_value / portfolio_value * 100 if portfolio_value > 0 else 0.0
        band = (
            deviations.get(target.ticker, target.allowed_deviation)
            if deviations
            else target.allowed_deviation
        )

        lines.append(
            AllocationLine(
                ticker=target.ticker,
                current_shares=current,
                shares_to_buy=buy,
                final_shares=final,
                price=price,
                cost_of_purchase=buy * price,
                final_value=final_value,
                target_percentage=target.target_percentage,
                actual_percentage=actual_pct,
                deviation=actual_pct - target.target_percentage,
                allowed_deviation=band,
            )
        )

    return lines


def build_holdings_to_sell(request: OptimizationRequest) -> List[HoldingToSell]:
    """List every non-target holding as a full liquidation."""
    return [
        HoldingToSell(
            ticker=h.ticker,
            shares=h.shares,
            price=h.price,
            total_value=h.value,
        )
        for h in request.liquidations
    ]


def build_metrics(
    request: OptimizationRequest,
    lines: List[AllocationLine],
    optimization_time: float = 0.0,
) -> OptimizationMetrics:
    """Aggregate spend and leftover for a set of allocation lines."""
    budget = request.available_budget
    used = sum(line.cost_of_purchase for line in lines)
    unused = budget - used

    return OptimizationMetrics(
        total_budget_used=used,
        unused_budget=unused,
        unused_percentage=unused / budget * 100 if budget > 0 else 0.0,
        optimization_time=optimization_time,
        available_budget=budget,
        portfolio_value=request.portfolio_value,
    )


def metrics_as_dict(metrics: OptimizationMetrics) -> Dict[str, float]:
    """Plain-dict view of metrics, for logging."""
    data = asdict(metrics)
    data["utilization_rate"] = metrics.utilization_rate
    return data
