"""Data Layer.

Price providers, the momentum cache and the momentum calculation service.
"""

from momentum_rider.data.base import PriceProvider
from momentum_rider.data.cache import CacheBackend, InMemoryCache, ReadThroughCache
from momentum_rider.data.momentum_service import MomentumService

__all__ = [
    "PriceProvider",
    "CacheBackend",
    "InMemoryCache",
    "ReadThroughCache",
    "MomentumService",
]
