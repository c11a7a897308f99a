"""Data Providers - Price sources.

This module provides price provider implementations for fetching current
quotes and historical bars.
"""

from momentum_rider.data.providers.yfinance_provider import YFinanceProvider

__all__ = [
    "YFinanceProvider",
]
