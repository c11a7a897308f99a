"""Integer program for exact budget allocation.

The solver turns target percentages, prices, holdings and cash into whole
share purchases. It is formulated as a mixed integer linear program and
solved with SciPy's HiGHS interface (``scipy.optimize.milp``).

Formulation (B = available budget, V = portfolio value):
    variables   x_i >= 0 integer shares to buy per target instrument
                d_i >= 0 absolute deviation from target (only when the
                fairness objective is weighted)
    minimize    -w_budget * sum(p_i x_i) / B + w_fair * sum(d_i) / B
    subject to  sum(p_i x_i) <= B
                (t_i - dev_i) V <= cv_i + p_i x_i <= (t_i + dev_i) V
                d_i >= |cv_i + p_i x_i - t_i V|

Every outcome is normalized to a SolverStatus so the fallback dispatch never
depends on SciPy's status codes or exception types.
"""

import concurrent.futures
import time
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, milp

from momentum_rider.portfolio.base import OptimizationRequest, SolverStatus
from momentum_rider.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)

# scipy.optimize.milp status codes
_MILP_OPTIMAL = 0
_MILP_LIMIT_REACHED = 1
_MILP_INFEASIBLE = 2

_BOUND_EPS = 1e-9
_BUDGET_EPS = 1e-6


@dataclass
class SolverOutcome:
    """Normalized solver result.

    Attributes:
        status: OPTIMAL, INFEASIBLE, TIMEOUT or ERROR
        shares: Shares to buy per ticker (empty unless OPTIMAL)
        message: Human-readable detail for non-optimal outcomes
        elapsed_ms: Wall time spent in the solver
        objective: Objective value reported by the solver
    """

    status: SolverStatus
    shares: Dict[str, int] = field(default_factory=dict)
    message: str = ""
    elapsed_ms: float = 0.0
    objective: Optional[float] = None

    @property
    def is_optimal(self) -> bool:
        return self.status == SolverStatus.OPTIMAL


class BudgetAllocationSolver:
    """Bounded-time MILP solver for share allocation.

    Configuration Parameters:
        time_limit: Seconds the solver may run (default 0.5)
        budget_weight: Weight of budget utilization in the objective (default 1.0)
        fairness_weight: Weight of aggregate target deviation (default 0.0)
        timeout_grace: Extra seconds the outer wait allows beyond time_limit

    Example:
        >>> solver = BudgetAllocationSolver({"time_limit": 0.25})
        >>> outcome = solver.solve(request)
        >>> if outcome.is_optimal:
        ...     print(outcome.shares)
    """

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}

        self.time_limit = float(config.get("time_limit", 0.5))
        self.budget_weight = float(config.get("budget_weight", 1.0))
        self.fairness_weight = float(config.get("fairness_weight", 0.0))
        self.timeout_grace = float(config.get("timeout_grace", 0.25))

        self._validate_config()

    def _validate_config(self) -> None:
        if self.time_limit <= 0:
            raise ValueError(f"time_limit must be > 0, got {self.time_limit}")
        if self.budget_weight < 0 or self.fairness_weight < 0:
            raise ValueError("objective weights must be non-negative")
        if self.budget_weight == 0 and self.fairness_weight == 0:
            raise ValueError("at least one objective weight must be positive")
        if self.timeout_grace < 0:
            raise ValueError(f"timeout_grace must be >= 0, got {self.timeout_grace}")

    def solve(
        self,
        request: OptimizationRequest,
        deviations: Optional[Mapping[str, float]] = None,
    ) -> SolverOutcome:
        """Solve the allocation problem for a validated request.

        Args:
            request: Validated optimization request
            deviations: Per-ticker deviation bands overriding the request's
                        allowed deviations (used by refinement rounds)

        Returns:
            SolverOutcome; never raises for solver-side failures
        """
        tickers = request.target_tickers
        prices = np.array([request.prices[t] for t in tickers], dtype=float)
        current = np.array([request.current_value(t) for t in tickers], dtype=float)
        targets = np.array(
            [a.target_percentage for a in request.target_allocations], dtype=float
        )
        bands = np.array(
            [
                (deviations or {}).get(a.ticker, a.allowed_deviation)
                for a in request.target_allocations
            ],
            dtype=float,
        )
        budget = request.available_budget
        value = request.portfolio_value

        low_value = np.maximum(0.0, (targets - bands) / 100.0 * value)
        high_value = (targets + bands) / 100.0 * value

        over = [t for t, hv, cv in zip(tickers, high_value, current) if cv > hv + _BUDGET_EPS]
        if over:
            return SolverOutcome(
                status=SolverStatus.INFEASIBLE,
                message=f"current holdings already exceed the upper band for {', '.join(over)}",
            )

        lower = np.maximum(0.0, (low_value - current) / prices - _BOUND_EPS)
        upper = (high_value - current) / prices + _BOUND_EPS
        if np.any(np.floor(upper) < np.ceil(lower)):
            return SolverOutcome(
                status=SolverStatus.INFEASIBLE,
                message="a deviation band contains no whole share count",
            )

        c, constraints, integrality, bounds = self._build_model(
            prices, current, targets, lower, upper, budget, value
        )

        log_with_context(
            logger, "debug", "Solving allocation program",
            instruments=len(tickers), budget=round(budget, 2),
            fairness=self.fairness_weight > 0,
        )

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        start = _now_ms()
        try:
            future = executor.submit(
                milp,
                c,
                constraints=constraints,
                integrality=integrality,
                bounds=bounds,
                options={"time_limit": self.time_limit, "disp": False},
            )
            result = future.result(timeout=self.time_limit + self.timeout_grace)
        except concurrent.futures.TimeoutError:
            return self._outcome(
                SolverStatus.TIMEOUT, start,
                message=f"solver exceeded {self.time_limit:.3f}s time budget",
            )
        except Exception as e:
            logger.warning("Solver raised %s: %s", type(e).__name__, e)
            return self._outcome(SolverStatus.ERROR, start, message=str(e))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return self._interpret(result, tickers, prices, current, low_value, high_value, budget, start)

    def _build_model(self, prices, current, targets, lower, upper, budget, value):
        n = len(prices)
        target_value = targets / 100.0 * value
        use_fairness = self.fairness_weight > 0

        if not use_fairness:
            c = -self.budget_weight * prices / budget
            constraints = [LinearConstraint(prices.reshape(1, -1), -np.inf, budget)]
            return c, constraints, np.ones(n), Bounds(lower, upper)

        c = np.concatenate(
            [
                -self.budget_weight * prices / budget,
                np.full(n, self.fairness_weight / budget),
            ]
        )
        budget_row = np.concatenate([prices, np.zeros(n)]).reshape(1, -1)

        price_diag = np.diag(prices)
        identity = np.eye(n)
        # p_i x_i - d_i <= t_i - cv_i  and  -p_i x_i - d_i <= cv_i - t_i
        above = np.hstack([price_diag, -identity])
        below = np.hstack([-price_diag, -identity])

        constraints = [
            LinearConstraint(budget_row, -np.inf, budget),
            LinearConstraint(above, -np.inf, target_value - current),
            LinearConstraint(below, -np.inf, current - target_value),
        ]
        integrality = np.concatenate([np.ones(n), np.zeros(n)])
        bounds = Bounds(
            np.concatenate([lower, np.zeros(n)]),
            np.concatenate([upper, np.full(n, np.inf)]),
        )
        return c, constraints, integrality, bounds

    def _interpret(self, result, tickers, prices, current, low_value, high_value, budget, start):
        if result.status == _MILP_LIMIT_REACHED:
            return self._outcome(SolverStatus.TIMEOUT, start, message=result.message)
        if result.status == _MILP_INFEASIBLE:
            return self._outcome(SolverStatus.INFEASIBLE, start, message=result.message)
        if result.status != _MILP_OPTIMAL or result.x is None:
            return self._outcome(SolverStatus.ERROR, start, message=result.message)

        shares = np.round(result.x[: len(tickers)]).astype(int)
        spent = float(np.dot(prices, shares))
        final_value = current + prices * shares

        if np.any(shares < 0) or spent > budget + _BUDGET_EPS:
            return self._outcome(
                SolverStatus.ERROR, start,
                message=f"rounded solution spends {spent:.2f} of {budget:.2f}",
            )
        if np.any(final_value < low_value - _BUDGET_EPS) or np.any(
            final_value > high_value + _BUDGET_EPS
        ):
            return self._outcome(
                SolverStatus.ERROR, start,
                message="rounded solution leaves a deviation band",
            )

        outcome = self._outcome(
            SolverStatus.OPTIMAL,
            start,
            shares={t: int(s) for t, s in zip(tickers, shares)},
            objective=float(result.fun),
        )
        log_with_context(
            logger, "info", "Solver found optimal allocation",
            spent=round(spent, 2), budget=round(budget, 2), elapsed_ms=outcome.elapsed_ms,
        )
        return outcome

    def _outcome(self, status: SolverStatus, start: float, **kwargs) -> SolverOutcome:
        outcome = SolverOutcome(status=status, elapsed_ms=round(_now_ms() - start, 3), **kwargs)
        if status != SolverStatus.OPTIMAL:
            log_with_context(
                logger, "info", "Solver did not reach an optimal allocation",
                status=status.value, detail=outcome.message,
            )
        return outcome


def _now_ms() -> float:
    return time.perf_counter() * 1000
