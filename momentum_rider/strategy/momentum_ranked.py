"""Momentum Ranked Strategy.

Selects the top N instruments with absolute momentum (every lookback return
positive) ranked by average return. Each of the N slots gets an equal share
of the core sleeve; unfilled slots are routed to a cash-equivalent ticker so
the allocation always sums to 100.

An optional satellite sleeve (e.g. a bitcoin fund) is reserved outside the
ranking: it is held only when the satellite itself has absolute momentum,
otherwise its share goes to cash as well.
"""

from typing import Dict, List, Optional, Sequence

from momentum_rider.portfolio.base import TargetAllocation
from momentum_rider.strategy.base import AllocationStrategy, MomentumRecord
from momentum_rider.utils.exceptions import InvalidInputError
from momentum_rider.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)

WEIGHTING_MODES = ("equal", "momentum")


def rank_by_momentum(records: Sequence[MomentumRecord]) -> List[MomentumRecord]:
    """Sort by average descending; equal averages sort by ticker ascending."""
    return sorted(records, key=lambda r: (-r.average, r.ticker))


class MomentumRankedStrategy(AllocationStrategy):
    """Top-N absolute momentum strategy with cash fallback.

    Parameters:
        - top_n (int): Number of core slots (default: 3)
        - cash_ticker (str): Destination of unfilled slots (default: "SGOV")
        - weighting (str): "equal" or "momentum" (proportional to average
          return among selected instruments) (default: "equal")
        - allowed_deviation (float): Band attached to every target (default: 5)
        - satellite_ticker (str): Optional separately reserved instrument
        - satellite_percentage (float): Satellite share in percent (default: 0)
        - satellite_deviation (float): Band for the satellite (default: 2)

    Example:
        >>> strategy = MomentumRankedStrategy({'top_n': 3, 'cash_ticker': 'SGOV'})
        >>> targets = strategy.target_allocation(universe, momentum_records)
        >>> [(t.ticker, round(t.target_percentage, 2)) for t in targets]
        [('VTI', 33.33), ('GLDM', 33.33), ('SGOV', 33.33)]
    """

    def validate_params(self) -> None:
        """Validate parameters.

        Raises:
            InvalidInputError: If parameters are invalid
        """
        self.params.setdefault("top_n", 3)
        self.params.setdefault("cash_ticker", "SGOV")
        self.params.setdefault("weighting", "equal")
        self.params.setdefault("satellite_percentage", 0.0)
        self.params.setdefault("satellite_deviation", 2.0)

        top_n = self.params["top_n"]
        if not isinstance(top_n, int) or top_n < 1:
            raise InvalidInputError(f"'top_n' must be a positive integer, got {top_n}")
        if not self.params["cash_ticker"]:
            raise InvalidInputError("'cash_ticker' must be set")
        if self.params["weighting"] not in WEIGHTING_MODES:
            raise InvalidInputError(
                f"'weighting' must be one of {WEIGHTING_MODES}, got {self.params['weighting']}"
            )

        satellite_pct = float(self.params["satellite_percentage"])
        if not 0 <= satellite_pct < 100:
            raise InvalidInputError(
                f"'satellite_percentage' must be in [0, 100), got {satellite_pct}"
            )
        if satellite_pct > 0 and not self.params.get("satellite_ticker"):
            raise InvalidInputError("'satellite_ticker' required when satellite_percentage > 0")

        logger.debug(
            "Momentum ranked params validated: top_n=%d, cash=%s, weighting=%s",
            top_n, self.params["cash_ticker"], self.params["weighting"],
        )

    def select(
        self,
        tickers: Sequence[str],
        momentum_records: Sequence[MomentumRecord],
    ) -> List[MomentumRecord]:
        """Ranked core selection (at most top_n records)."""
        universe = set(tickers)
        satellite = self.params.get("satellite_ticker")
        eligible = [
            r
            for r in momentum_records
            if r.ticker in universe
            and r.ticker != satellite
            and r.ok
            and r.absolute_momentum
        ]
        return rank_by_momentum(eligible)[: self.params["top_n"]]

    def target_allocation(
        self,
        tickers: Sequence[str],
        momentum_records: Optional[Sequence[MomentumRecord]] = None,
    ) -> List[TargetAllocation]:
        records = list(momentum_records or [])
        top_n = self.params["top_n"]
        cash = self.params["cash_ticker"]
        satellite = self.params.get("satellite_ticker")
        satellite_pct = float(self.params["satellite_percentage"])

        satellite_record = next((r for r in records if r.ticker == satellite), None)
        include_satellite = (
            satellite_pct > 0
            and satellite_record is not None
            and satellite_record.ok
            and satellite_record.absolute_momentum
        )

        core = 100.0 - satellite_pct
        slot = core / top_n
        selected = self.select(tickers, records)

        weights: Dict[str, float] = {}
        if self.params["weighting"] == "momentum" and selected:
            filled = slot * len(selected)
            total_average = sum(r.average for r in selected)
            for record in selected:
                weights[record.ticker] = filled * record.average / total_average
        else:
            for record in selected:
                weights[record.ticker] = slot

        if include_satellite:
            weights[satellite] = weights.get(satellite, 0.0) + satellite_pct

        cash_share = slot * (top_n - len(selected))
        if not include_satellite:
            cash_share += satellite_pct
        if cash_share > 0:
            weights[cash] = weights.get(cash, 0.0) + cash_share

        log_with_context(
            logger, "info", "Momentum allocation computed",
            selected=[r.ticker for r in selected], satellite=include_satellite,
            cash_percentage=round(cash_share, 2),
        )

        targets = self.merge_targets(weights)
        if include_satellite:
            targets = [
                TargetAllocation(
                    ticker=t.ticker,
                    target_percentage=t.target_percentage,
                    allowed_deviation=float(self.params["satellite_deviation"]),
                )
                if t.ticker == satellite
                else t
                for t in targets
            ]
        return targets
