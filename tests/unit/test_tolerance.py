"""Unit tests for tolerance refinement and compliance metrics."""

from unittest.mock import MagicMock

import pytest

from momentum_rider.portfolio.base import (
    OptimizationMetrics,
    OptimizationRequest,
    SolverStatus,
    TargetAllocation,
    ToleranceMetrics,
    build_allocation_lines,
)
from momentum_rider.portfolio.solver import BudgetAllocationSolver, SolverOutcome
from momentum_rider.portfolio.tolerance import (
    ToleranceRefiner,
    analyze_price_ratios,
    generate_recommendations,
    relaxation_factor,
)


def make_request(cash: float, price_a: float, price_b: float) -> OptimizationRequest:
    return OptimizationRequest(
        target_allocations=[
            TargetAllocation("AAA", 50.0, price=price_a),
            TargetAllocation("BBB", 50.0, price=price_b),
        ],
        available_cash=cash,
    )


class TestPriceRatios:
    """Test cases for near-integer price ratio detection."""

    def test_exact_multiple(self) -> None:
        """Test a 5x price ratio is reported once, expensive first."""
        opportunities = analyze_price_ratios({"VTI": 250.0, "PDBC": 13.5, "IBIT": 50.0})

        assert len(opportunities) == 1
        opp = opportunities[0]
        assert (opp.expensive, opp.cheap, opp.multiple) == ("VTI", "IBIT", 5)
        assert opp.description == "5x IBIT ~ 1x VTI"
        assert opp.to_dict()["ratio"] == 5.0

    def test_ratio_must_exceed_two(self) -> None:
        """Test a ratio of exactly two is not an opportunity."""
        assert analyze_price_ratios({"A": 20.0, "B": 10.0}) == []

    def test_closeness_threshold(self) -> None:
        """Test ratios further than 0.1 from an integer are ignored."""
        assert len(analyze_price_ratios({"A": 30.5, "B": 10.0})) == 1
        assert analyze_price_ratios({"A": 31.5, "B": 10.0}) == []

    def test_sorted_by_closeness(self) -> None:
        """Test closer ratios come first."""
        opportunities = analyze_price_ratios({"A": 30.5, "B": 10.0, "C": 40.0})
        assert [(o.expensive, o.cheap) for o in opportunities] == [("C", "B"), ("A", "B")]


class TestRelaxationAndRecommendations:
    """Test cases for band relaxation and recommendations."""

    @pytest.mark.parametrize(
        "unused, expected",
        [(1.0, 1.0), (2.0, 1.0), (3.0, 2.5), (10.0, 3.0)],
    )
    def test_relaxation_factor(self, unused: float, expected: float) -> None:
        """Test the factor grows with leftover and is capped."""
        assert relaxation_factor(unused, 2.0, 3.0) == pytest.approx(expected)

    def test_relaxation_zero_threshold(self) -> None:
        """Test a zero threshold never relaxes."""
        assert relaxation_factor(50.0, 0.0, 3.0) == 1.0

    def test_recommendations(self) -> None:
        """Test high leftover and low compliance both produce recommendations."""
        metrics = OptimizationMetrics(850.0, 150.0, 15.0)
        tolerance = ToleranceMetrics(5.0, 50.0, 1, 2)

        recommendations = generate_recommendations(metrics, tolerance)

        assert [r["type"] for r in recommendations] == [
            "budget_utilization",
            "tolerance_compliance",
        ]
        assert recommendations[0]["priority"] == "high"
        assert recommendations[1]["priority"] == "medium"

    def test_no_recommendations_when_healthy(self) -> None:
        """Test a well-utilized, compliant result gets none."""
        metrics = OptimizationMetrics(990.0, 10.0, 1.0)
        tolerance = ToleranceMetrics(5.0, 100.0, 2, 2)
        assert generate_recommendations(metrics, tolerance) == []


class TestToleranceRefinerConfig:
    """Test cases for refiner configuration."""

    def test_default_config(self) -> None:
        """Test refiner defaults."""
        refiner = ToleranceRefiner()

        assert refiner.tolerance_band == 5.0
        assert refiner.leftover_threshold == 2.0
        assert refiner.max_iterations == 10
        assert refiner.max_relaxation == 3.0

    def test_invalid_band(self) -> None:
        """Test config validation for negative band."""
        with pytest.raises(ValueError, match="band must be >= 0"):
            ToleranceRefiner({"band": -1})

    def test_invalid_max_relaxation(self) -> None:
        """Test config validation for max_relaxation below one."""
        with pytest.raises(ValueError, match="max_relaxation must be >= 1"):
            ToleranceRefiner({"max_relaxation": 0.5})

    def test_invalid_convergence_epsilon(self) -> None:
        """Test config validation for non-positive epsilon."""
        with pytest.raises(ValueError, match="convergence_epsilon must be > 0"):
            ToleranceRefiner({"convergence_epsilon": 0})


class TestRefine:
    """Test cases for refinement rounds."""

    def test_below_threshold_is_untouched(self) -> None:
        """Test small leftovers skip refinement entirely."""
        request = make_request(1000.0, 100.0, 50.0)
        result = ToleranceRefiner().refine(request, {"AAA": 5, "BBB": 10})

        assert result.iterations == 0
        assert result.shares_to_buy == {"AAA": 5, "BBB": 10}
        assert result.relaxation_factor == 1.0
        assert result.deviations == {"AAA": 5.0, "BBB": 5.0}

    def test_promotion_respects_upper_band(self) -> None:
        """Test cheap promotions stop at the upper band, then move on."""
        request = make_request(1000.0, 100.0, 30.0)
        refiner = ToleranceRefiner({"max_relaxation": 1.0})

        result = refiner.refine(request, {"AAA": 3, "BBB": 10})

        assert result.shares_to_buy == {"AAA": 4, "BBB": 18}
        assert result.relaxation_factor == 1.0
        assert result.iterations == 2

    def test_ratio_swap_spends_leftover(self) -> None:
        """Test one expensive share is traded for four cheap ones."""
        request = make_request(994.0, 100.0, 33.0)
        refiner = ToleranceRefiner()

        result = refiner.refine(request, {"AAA": 5, "BBB": 14})

        assert result.shares_to_buy == {"AAA": 4, "BBB": 18}
        assert result.iterations == 1
        expected_factor = 1 + (32.0 / 994.0 * 100) / 2.0
        assert result.relaxation_factor == pytest.approx(expected_factor)
        assert result.deviations["AAA"] == pytest.approx(5.0 * expected_factor)
        assert [(o.expensive, o.cheap) for o in result.opportunities] == [("AAA", "BBB")]

    def test_relaxed_resolve_uses_wider_bands(self, two_asset_request) -> None:
        """Test the solver is re-run with relaxed deviations."""
        solver = MagicMock(spec=BudgetAllocationSolver)
        solver.solve.return_value = SolverOutcome(
            status=SolverStatus.OPTIMAL, shares={"VTI": 2, "TLT": 5}
        )

        result = ToleranceRefiner().refine(two_asset_request, {"VTI": 2, "TLT": 4}, solver=solver)

        first_call = solver.solve.call_args_list[0]
        assert first_call.kwargs["deviations"] == {"VTI": 15.0, "TLT": 15.0}
        assert result.shares_to_buy == {"VTI": 2, "TLT": 5}
        assert result.relaxation_factor == 3.0

    def test_without_relaxation_bands_hold(self) -> None:
        """Test relax=False keeps the requested bands and skips re-solving."""
        request = make_request(994.0, 100.0, 33.0)
        solver = MagicMock(spec=BudgetAllocationSolver)

        result = ToleranceRefiner().refine(
            request, {"AAA": 5, "BBB": 14}, solver=solver, relax=False
        )

        solver.solve.assert_not_called()
        assert result.shares_to_buy == {"AAA": 5, "BBB": 14}
        assert result.relaxation_factor == 1.0
        assert result.deviations == {"AAA": 5.0, "BBB": 5.0}

    def test_spend_never_decreases(self, two_asset_request) -> None:
        """Test a solver proposing less spend is ignored."""
        solver = MagicMock(spec=BudgetAllocationSolver)
        solver.solve.return_value = SolverOutcome(
            status=SolverStatus.OPTIMAL, shares={"VTI": 1, "TLT": 1}
        )

        result = ToleranceRefiner().refine(two_asset_request, {"VTI": 2, "TLT": 5}, solver=solver)

        assert result.shares_to_buy == {"VTI": 2, "TLT": 5}

    def test_max_iterations_zero(self, two_asset_request) -> None:
        """Test an iteration cap of zero disables refinement."""
        result = ToleranceRefiner({"max_iterations": 0}).refine(
            two_asset_request, {"VTI": 0, "TLT": 0}
        )
        assert result.iterations == 0
        assert result.shares_to_buy == {"VTI": 0, "TLT": 0}


class TestEvaluate:
    """Test cases for compliance evaluation."""

    def test_compliance_uses_configured_band(self) -> None:
        """Test relaxed allocations are judged against the configured band."""
        request = make_request(994.0, 100.0, 33.0)
        refiner = ToleranceRefiner()
        refined = refiner.refine(request, {"AAA": 5, "BBB": 14})
        lines = build_allocation_lines(request, refined.shares_to_buy, refined.deviations)

        metrics = refiner.evaluate(lines, refined, utilization_rate=100.0)

        assert [line.tolerance_compliant for line in lines] == [False, False]
        assert metrics.compliance_rate == 0.0
        assert metrics.quality_score == pytest.approx(60.0)
        assert metrics.relaxation_factor == refined.relaxation_factor
        assert metrics.refinement_iterations == 1

    def test_all_compliant(self) -> None:
        """Test on-target lines are compliant with full quality."""
        request = make_request(1000.0, 100.0, 50.0)
        lines = build_allocation_lines(request, {"AAA": 5, "BBB": 10})

        metrics = ToleranceRefiner().evaluate(lines, utilization_rate=100.0)

        assert metrics.compliant_allocations == 2
        assert metrics.total_allocations == 2
        assert metrics.compliance_rate == 100.0
        assert metrics.quality_score == pytest.approx(100.0)
