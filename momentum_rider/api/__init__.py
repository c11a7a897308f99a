"""User-friendly APIs for Momentum Rider.

Components:
- PortfolioAPI: Momentum, strategy targets and budget optimization
"""

from momentum_rider.api.portfolio_api import PortfolioAPI

__all__ = [
    "PortfolioAPI",
]
