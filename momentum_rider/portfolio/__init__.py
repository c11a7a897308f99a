"""Portfolio Optimization Layer.

This layer turns target percentages, prices, holdings and cash into whole
share purchases that never exceed the available budget.

Components:
- BudgetAllocationSolver: Integer program with a bounded time budget
- HeuristicCascade: Floor allocation plus pluggable promotion strategies
- ToleranceRefiner: Relaxed-band refinement and compliance metrics
- PortfolioOptimizer: Facade running solver, fallback and refinement
"""

from momentum_rider.portfolio.base import (
    Holding,
    Instrument,
    OptimizationRequest,
    OptimizationResult,
    Order,
    SolverStatus,
    TargetAllocation,
)
from momentum_rider.portfolio.heuristics import (
    HeuristicCascade,
    PromotionStrategy,
    register_promotion_strategy,
)
from momentum_rider.portfolio.optimizer import PortfolioOptimizer, parse_request
from momentum_rider.portfolio.solver import BudgetAllocationSolver
from momentum_rider.portfolio.tolerance import ToleranceRefiner

__all__ = [
    "Instrument",
    "Holding",
    "TargetAllocation",
    "Order",
    "SolverStatus",
    "OptimizationRequest",
    "OptimizationResult",
    "BudgetAllocationSolver",
    "HeuristicCascade",
    "PromotionStrategy",
    "register_promotion_strategy",
    "ToleranceRefiner",
    "PortfolioOptimizer",
    "parse_request",
]
