"""Tolerance compliance and iterative refinement of allocations.

After the solver or the heuristic cascade produces share counts, the refiner
tries to deploy leftover cash that exceeds a relative threshold:

1. Relax every deviation band by a factor that grows with the leftover
2. Re-solve the integer program against the relaxed bands (when allowed)
3. Greedily promote cheap instruments that still fit their relaxed band
4. Swap one share of an expensive instrument for several shares of a cheaper
   one when their prices form a near-integer ratio and the swap spends more

Rounds stop when the unused percentage improves by less than the
convergence epsilon or the iteration cap is reached. Refinement only ever
accepts candidates that spend more without exceeding the available budget.
"""

import itertools
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from momentum_rider.portfolio.base import (
    AllocationLine,
    OptimizationMetrics,
    OptimizationRequest,
    ToleranceMetrics,
)
from momentum_rider.portfolio.solver import BudgetAllocationSolver
from momentum_rider.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)

UTILIZATION_WEIGHT = 0.6
COMPLIANCE_WEIGHT = 0.4

HIGH_UNUSED_PERCENTAGE = 10.0
LOW_COMPLIANCE_RATE = 80.0


@dataclass(frozen=True)
class PriceRatioOpportunity:
    """Two instruments whose prices are close to an integer multiple.

    Attributes:
        expensive: Ticker of the higher-priced instrument
        cheap: Ticker of the lower-priced instrument
        ratio: Exact price ratio (expensive / cheap)
        multiple: Nearest integer to the ratio
        closeness: Distance between ratio and multiple
    """

    expensive: str
    cheap: str
    ratio: float
    multiple: int
    closeness: float

    @property
    def description(self) -> str:
        return f"{self.multiple}x {self.cheap} ~ 1x {self.expensive}"

    def to_dict(self) -> Dict:
        return {
            "expensive": self.expensive,
            "cheap": self.cheap,
            "ratio": round(self.ratio, 4),
            "multiple": self.multiple,
            "description": self.description,
        }


def analyze_price_ratios(
    prices: Mapping[str, float],
    closeness: float = 0.1,
    min_multiple: float = 2.0,
) -> List[PriceRatioOpportunity]:
    """Find instrument pairs whose price ratio is close to an integer.

    Args:
        prices: Price per ticker
        closeness: Maximum distance from the nearest integer
        min_multiple: Ratios must exceed this to count

    Returns:
        Opportunities sorted by closeness, then tickers

    Example:
        >>> analyze_price_ratios({"VTI": 250.0, "PDBC": 13.5, "IBIT": 50.0})
        [PriceRatioOpportunity(expensive='VTI', cheap='IBIT', ratio=5.0, ...)]
    """
    opportunities = []
    for a, b in itertools.combinations(sorted(prices), 2):
        expensive, cheap = (a, b) if prices[a] >= prices[b] else (b, a)
        ratio = prices[expensive] / prices[cheap]
        multiple = round(ratio)
        distance = abs(ratio - multiple)
        if ratio > min_multiple and distance < closeness:
            opportunities.append(
                PriceRatioOpportunity(
                    expensive=expensive,
                    cheap=cheap,
                    ratio=ratio,
                    multiple=int(multiple),
                    closeness=distance,
                )
            )

    return sorted(opportunities, key=lambda o: (o.closeness, o.expensive, o.cheap))


def relaxation_factor(
    unused_percentage: float,
    threshold_percentage: float,
    max_factor: float,
) -> float:
    """Band multiplier proportional to leftover, capped at max_factor."""
    if threshold_percentage <= 0 or unused_percentage <= threshold_percentage:
        return 1.0
    return min(max_factor, 1.0 + unused_percentage / threshold_percentage)


def generate_recommendations(
    metrics: OptimizationMetrics,
    tolerance: Optional[ToleranceMetrics],
) -> List[Dict[str, str]]:
    """Suggest follow-ups for high leftover cash or weak band compliance."""
    recommendations = []

    if metrics.unused_percentage > HIGH_UNUSED_PERCENTAGE:
        recommendations.append(
            {
                "type": "budget_utilization",
                "priority": "high",
                "message": (
                    f"High unused cash ({metrics.unused_percentage:.1f}%). Consider "
                    "widening deviation bands or adding more target instruments."
                ),
            }
        )

    if tolerance is not None and tolerance.compliance_rate < LOW_COMPLIANCE_RATE:
        recommendations.append(
            {
                "type": "tolerance_compliance",
                "priority": "medium",
                "message": (
                    f"Low tolerance compliance ({tolerance.compliance_rate:.1f}%). "
                    "Review allocation targets."
                ),
            }
        )

    return recommendations


@dataclass
class RefinementResult:
    """Share counts after refinement plus how they were reached.

    Attributes:
        shares_to_buy: Final purchase per ticker
        deviations: Effective deviation band per ticker (relaxed when a
                    relaxed round was accepted)
        iterations: Refinement rounds executed
        relaxation_factor: Largest band multiplier behind accepted changes
        opportunities: Near-integer price ratios considered for swaps
    """

    shares_to_buy: Dict[str, int]
    deviations: Dict[str, float]
    iterations: int = 0
    relaxation_factor: float = 1.0
    opportunities: List[PriceRatioOpportunity] = field(default_factory=list)


class ToleranceRefiner:
    """Deploy leftover cash through relaxed bands and price-ratio swaps.

    Configuration Parameters:
        band: Tolerance band in percentage points for compliance (default 5.0)
        leftover_threshold: Unused percentage that triggers refinement (default 2.0)
        max_iterations: Refinement round cap (default 10)
        convergence_epsilon: Minimum unused-percentage improvement per round (default 0.01)
        max_relaxation: Upper bound on the band multiplier (default 3.0)

    Example:
        >>> refiner = ToleranceRefiner({"band": 5.0})
        >>> refined = refiner.refine(request, {"VTI": 2, "TLT": 3})
        >>> lines = build_allocation_lines(request, refined.shares_to_buy, refined.deviations)
        >>> metrics = refiner.evaluate(lines, refined)
    """

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}

        self.tolerance_band = float(config.get("band", 5.0))
        self.leftover_threshold = float(config.get("leftover_threshold", 2.0))
        self.max_iterations = int(config.get("max_iterations", 10))
        self.convergence_epsilon = float(config.get("convergence_epsilon", 0.01))
        self.max_relaxation = float(config.get("max_relaxation", 3.0))

        self._validate_config()

    def _validate_config(self) -> None:
        if self.tolerance_band < 0:
            raise ValueError(f"band must be >= 0, got {self.tolerance_band}")
        if self.leftover_threshold < 0:
            raise ValueError(
                f"leftover_threshold must be >= 0, got {self.leftover_threshold}"
            )
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {self.max_iterations}")
        if self.convergence_epsilon <= 0:
            raise ValueError(
                f"convergence_epsilon must be > 0, got {self.convergence_epsilon}"
            )
        if self.max_relaxation < 1:
            raise ValueError(f"max_relaxation must be >= 1, got {self.max_relaxation}")

    def refine(
        self,
        request: OptimizationRequest,
        shares_to_buy: Mapping[str, int],
        solver: Optional[BudgetAllocationSolver] = None,
        relax: bool = True,
    ) -> RefinementResult:
        """Run refinement rounds over an initial allocation.

        Args:
            request: Validated optimization request
            shares_to_buy: Initial purchase per ticker
            solver: Solver for relaxed re-solves (None skips re-solving)
            relax: Whether bands may be widened; when False every round
                   keeps the request's own bands and never re-solves

        Returns:
            RefinementResult; spend never decreases and never exceeds budget
        """
        base_bands = {a.ticker: a.allowed_deviation for a in request.target_allocations}
        shares = {t: int(shares_to_buy.get(t, 0)) for t in request.target_tickers}
        opportunities = analyze_price_ratios(request.prices)
        budget = request.available_budget

        applied_factor = 1.0
        iterations = 0
        unused = _unused_percentage(request, shares)

        while iterations < self.max_iterations and unused > self.leftover_threshold:
            iterations += 1
            factor = 1.0
            if relax:
                factor = relaxation_factor(unused, self.leftover_threshold, self.max_relaxation)
            bands = {t: band * factor for t, band in base_bands.items()}

            candidate = dict(shares)
            if solver is not None and relax:
                outcome = solver.solve(request, deviations=bands)
                if outcome.is_optimal and _spent(request, outcome.shares) > _spent(request, candidate):
                    candidate = dict(outcome.shares)

            candidate = self._promote_within_bands(request, candidate, bands)
            candidate = self._apply_ratio_swaps(request, candidate, bands, opportunities)

            new_unused = _unused_percentage(request, candidate)
            improvement = unused - new_unused

            log_with_context(
                logger, "debug", "Refinement round",
                iteration=iterations, factor=round(factor, 3),
                unused_before=round(unused, 4), unused_after=round(new_unused, 4),
            )

            if improvement > 0 and _spent(request, candidate) <= budget:
                shares = candidate
                unused = new_unused
                applied_factor = max(applied_factor, factor)

            if improvement < self.convergence_epsilon:
                break

        if iterations:
            log_with_context(
                logger, "info", "Refinement finished",
                iterations=iterations, unused_percentage=round(unused, 4),
                relaxation_factor=round(applied_factor, 3),
            )

        return RefinementResult(
            shares_to_buy=shares,
            deviations={t: band * applied_factor for t, band in base_bands.items()},
            iterations=iterations,
            relaxation_factor=applied_factor,
            opportunities=opportunities,
        )

    def evaluate(
        self,
        lines: List[AllocationLine],
        refinement: Optional[RefinementResult] = None,
        utilization_rate: Optional[float] = None,
    ) -> ToleranceMetrics:
        """Mark compliant lines and compute tolerance metrics.

        A line is compliant when |actual - target| is within the tolerance
        band. Lines are updated in place.
        """
        for line in lines:
            line.tolerance_compliant = abs(line.deviation) <= self.tolerance_band + 1e-9

        total = len(lines)
        compliant = sum(1 for line in lines if line.tolerance_compliant)
        compliance_rate = compliant / total * 100 if total else 0.0

        quality = 0.0
        if utilization_rate is not None:
            quality = UTILIZATION_WEIGHT * utilization_rate + COMPLIANCE_WEIGHT * compliance_rate

        return ToleranceMetrics(
            tolerance_band=self.tolerance_band,
            compliance_rate=compliance_rate,
            compliant_allocations=compliant,
            total_allocations=total,
            relaxation_factor=refinement.relaxation_factor if refinement else 1.0,
            refinement_iterations=refinement.iterations if refinement else 0,
            quality_score=quality,
        )

    def _promote_within_bands(
        self,
        request: OptimizationRequest,
        shares: Dict[str, int],
        bands: Mapping[str, float],
    ) -> Dict[str, int]:
        """Add shares cheapest-first while they fit the budget and upper band."""
        prices = request.prices
        value = request.portfolio_value
        leftover = request.available_budget - _spent(request, shares)
        ranked = sorted(request.target_allocations, key=lambda a: (prices[a.ticker], a.ticker))
        max_rounds = math.floor(max(leftover, 0.0) / min(prices.values())) + 1

        for _ in range(max_rounds):
            promoted = False
            for target in ranked:
                ticker = target.ticker
                price = prices[ticker]
                upper = (target.target_percentage + bands[ticker]) / 100.0 * value
                final_value = request.current_value(ticker) + (shares[ticker] + 1) * price
                if price <= leftover and final_value <= upper + 1e-9:
                    shares[ticker] += 1
                    leftover -= price
                    promoted = True
                    break
            if not promoted:
                break

        return shares

    def _apply_ratio_swaps(
        self,
        request: OptimizationRequest,
        shares: Dict[str, int],
        bands: Mapping[str, float],
        opportunities: List[PriceRatioOpportunity],
    ) -> Dict[str, int]:
        """Trade one expensive share for cheaper shares when that spends more."""
        prices = request.prices
        value = request.portfolio_value
        targets = {a.ticker: a for a in request.target_allocations}

        for opp in opportunities:
            if shares[opp.expensive] <= 0:
                continue

            leftover = request.available_budget - _spent(request, shares)
            freed = leftover + prices[opp.expensive]
            added = math.floor(freed / prices[opp.cheap])
            gain = added * prices[opp.cheap] - prices[opp.expensive]
            if added <= 0 or gain <= 0:
                continue

            exp_target = targets[opp.expensive]
            cheap_target = targets[opp.cheap]
            exp_final = request.current_value(opp.expensive) + (shares[opp.expensive] - 1) * prices[opp.expensive]
            cheap_final = request.current_value(opp.cheap) + (shares[opp.cheap] + added) * prices[opp.cheap]
            exp_lower = (exp_target.target_percentage - bands[opp.expensive]) / 100.0 * value
            cheap_upper = (cheap_target.target_percentage + bands[opp.cheap]) / 100.0 * value

            if exp_final >= exp_lower - 1e-9 and cheap_final <= cheap_upper + 1e-9:
                shares[opp.expensive] -= 1
                shares[opp.cheap] += added
                logger.debug("Applied ratio swap %s (+%d shares)", opp.description, added)

        return shares


def _spent(request: OptimizationRequest, shares: Mapping[str, int]) -> float:
    prices = request.prices
    return sum(prices[t] * n for t, n in shares.items())


def _unused_percentage(request: OptimizationRequest, shares: Mapping[str, int]) -> float:
    budget = request.available_budget
    return (budget - _spent(request, shares)) / budget * 100 if budget > 0 else 0.0
