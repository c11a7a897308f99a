"""Momentum Rider: turn an allocation strategy into budget-respecting share orders."""

__version__ = "0.1.0"
