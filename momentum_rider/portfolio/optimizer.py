"""Portfolio optimizer: solver first, heuristic cascade on failure, then refinement.

The optimizer never surfaces solver failures to the caller. Infeasible,
timed-out and faulted solves fall through to the heuristic cascade, and the
result records provenance in ``solver_status`` and ``fallback_used``.
"""

from typing import Any, Dict, Mapping, Optional

from momentum_rider.portfolio.base import (
    DEFAULT_ALLOWED_DEVIATION,
    Holding,
    OptimizationRequest,
    OptimizationResult,
    SolverStatus,
    TargetAllocation,
    build_allocation_lines,
    build_holdings_to_sell,
    build_metrics,
    metrics_as_dict,
)
from momentum_rider.portfolio.heuristics import (
    HeuristicCascade,
    build_floor_orders,
    resolve_strategy_name,
)
from momentum_rider.portfolio.solver import BudgetAllocationSolver, SolverOutcome
from momentum_rider.portfolio.tolerance import ToleranceRefiner, generate_recommendations
from momentum_rider.utils.config import DEFAULT_SETTINGS, Config
from momentum_rider.utils.exceptions import InvalidInputError
from momentum_rider.utils.logging import get_logger, log_duration, log_with_context

logger = get_logger(__name__)


class PortfolioOptimizer:
    """Turn target allocations, prices, holdings and cash into share purchases.

    Configuration is a nested dict with ``optimizer``, ``solver`` and
    ``tolerance`` sections (same layout as config/default.yaml); missing
    sections fall back to the built-in defaults.

    Example:
        >>> optimizer = PortfolioOptimizer()
        >>> request = OptimizationRequest(
        ...     target_allocations=[
        ...         TargetAllocation("VTI", 60.0, price=250.0),
        ...         TargetAllocation("TLT", 40.0, price=95.0),
        ...     ],
        ...     available_cash=1000.0,
        ... )
        >>> result = optimizer.optimize(request)
        >>> result.solver_status, result.fallback_used
        (<SolverStatus.INFEASIBLE: 'infeasible'>, True)
    """

    def __init__(self, config: Optional[Dict] = None):
        """Initialize optimizer.

        Args:
            config: Nested configuration dict

        Raises:
            ValueError: If any section holds invalid values
        """
        config = config or {}
        optimizer = {**DEFAULT_SETTINGS["optimizer"], **(config.get("optimizer") or {})}
        solver = {**DEFAULT_SETTINGS["solver"], **(config.get("solver") or {})}
        tolerance = {**DEFAULT_SETTINGS["tolerance"], **(config.get("tolerance") or {})}

        self.default_strategy = optimizer["default_strategy"]
        self.fallback_strategy = optimizer["fallback_strategy"]
        self.enable_fallback = bool(optimizer["enable_fallback"])
        self.percentage_epsilon = float(optimizer["percentage_epsilon"])
        self.solver_enabled = bool(solver.pop("enabled"))

        self._validate_config()

        self.solver = BudgetAllocationSolver(solver)
        self.refiner = ToleranceRefiner(tolerance)

    @classmethod
    def from_settings(cls, settings: Config) -> "PortfolioOptimizer":
        """Build an optimizer from loaded settings (see ``load_settings``)."""
        return cls(
            {
                "optimizer": settings.section("optimizer"),
                "solver": settings.section("solver"),
                "tolerance": settings.section("tolerance"),
            }
        )

    def _validate_config(self) -> None:
        resolve_strategy_name(self.default_strategy)
        if self.fallback_strategy:
            resolve_strategy_name(self.fallback_strategy)
        if self.percentage_epsilon <= 0:
            raise ValueError(
                f"percentage_epsilon must be > 0, got {self.percentage_epsilon}"
            )

    def optimize(self, request: OptimizationRequest) -> OptimizationResult:
        """Optimize a request.

        Args:
            request: Target allocations with prices, holdings and cash

        Returns:
            OptimizationResult with one allocation line per target and one
            liquidation per non-target holding

        Raises:
            InvalidInputError: If the request is malformed (before any solving)
        """
        request.validate(self.percentage_epsilon)
        strategy_name = resolve_strategy_name(
            request.optimization_strategy, self.default_strategy
        )

        with log_duration(
            logger, "Portfolio optimization", level="info",
            targets=len(request.target_allocations),
        ) as timing:
            if self.solver_enabled:
                outcome = self.solver.solve(request)
            else:
                outcome = SolverOutcome(
                    status=SolverStatus.HEURISTIC, message="solver disabled"
                )

            fallback_used = not outcome.is_optimal
            fallback_reason = ""
            promotions = 0
            strategy_used = "solver"

            if outcome.is_optimal:
                shares = outcome.shares
            else:
                fallback_reason = outcome.status.value
                if outcome.message:
                    fallback_reason = f"{fallback_reason}: {outcome.message}"
                cascade = HeuristicCascade(
                    primary=strategy_name,
                    fallback=self.fallback_strategy,
                    enable_fallback=self.enable_fallback,
                    momentum=request.momentum,
                )
                heuristic = cascade.run(build_floor_orders(request), request.available_budget)
                shares = heuristic.shares_to_buy
                promotions = heuristic.promotions
                strategy_used = heuristic.strategy_used
                log_with_context(
                    logger, "warning", "Solver fallback engaged",
                    status=outcome.status.value, strategy=strategy_used,
                )

            # A timed-out solver is not retried on relaxed bands
            resolver = (
                self.solver
                if self.solver_enabled and outcome.status != SolverStatus.TIMEOUT
                else None
            )
            # An optimal solve must stay inside the requested bands
            refinement = self.refiner.refine(
                request, shares, solver=resolver, relax=not outcome.is_optimal
            )

        lines = build_allocation_lines(request, refinement.shares_to_buy)
        metrics = build_metrics(request, lines, optimization_time=timing["elapsed_ms"])
        tolerance = self.refiner.evaluate(
            lines, refinement, utilization_rate=metrics.utilization_rate
        )

        result = OptimizationResult(
            solver_status=outcome.status,
            allocations=lines,
            holdings_to_sell=build_holdings_to_sell(request),
            metrics=metrics,
            tolerance=tolerance,
            fallback_used=fallback_used,
            fallback_reason=fallback_reason,
            strategy_used=strategy_used,
            promotions=promotions,
            price_ratio_opportunities=[o.to_dict() for o in refinement.opportunities],
            recommendations=generate_recommendations(metrics, tolerance),
        )

        logger.debug("Optimization metrics: %s", metrics_as_dict(metrics))
        return result

    def optimize_dict(self, payload: Mapping[str, Any]) -> Dict:
        """Optimize a camelCase request dict and return the response dict.

        Example:
            >>> optimizer.optimize_dict({
            ...     "currentHoldings": [{"ticker": "VTI", "shares": 2, "price": 250.0}],
            ...     "targetAllocations": [
            ...         {"ticker": "VTI", "targetPercentage": 100, "price": 250.0},
            ...     ],
            ...     "availableCash": 500.0,
            ... })["solverStatus"]
            'optimal'
        """
        return self.optimize(parse_request(payload)).to_dict()


def parse_request(payload: Mapping[str, Any]) -> OptimizationRequest:
    """Build an OptimizationRequest from the camelCase request shape.

    Raises:
        InvalidInputError: If required fields are missing or mistyped
    """
    try:
        targets = [
            TargetAllocation(
                ticker=item["ticker"],
                target_percentage=float(item["targetPercentage"]),
                allowed_deviation=float(
                    item.get("allowedDeviation", DEFAULT_ALLOWED_DEVIATION)
                ),
                price=float(item["price"]) if item.get("price") is not None else None,
            )
            for item in payload.get("targetAllocations", [])
        ]
        holdings = [
            Holding(
                ticker=item["ticker"],
                shares=item["shares"],
                price=float(item["price"]),
                average_cost=item.get("averageCost"),
            )
            for item in payload.get("currentHoldings", [])
        ]
        cash = float(payload.get("availableCash", 0.0))
    except InvalidInputError:
        raise
    except KeyError as e:
        raise InvalidInputError(f"request is missing required field {e}") from e
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"request has a malformed field: {e}") from e

    return OptimizationRequest(
        target_allocations=targets,
        available_cash=cash,
        current_holdings=holdings,
        optimization_strategy=payload.get("optimizationStrategy"),
        momentum={k: float(v) for k, v in (payload.get("momentum") or {}).items()},
    )
