"""Custom exceptions for Momentum Rider.

This module defines the exception hierarchy for the application.
"""


class MomentumRiderError(Exception):
    """Base exception for all Momentum Rider errors.

    All custom exceptions in the application should inherit from this class.
    """

    pass


class ConfigurationError(MomentumRiderError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing required configuration keys
        - Invalid configuration values
        - Configuration file not found
    """

    pass


class DataError(MomentumRiderError):
    """Base exception for data layer errors.

    Parent class for all data-related exceptions.
    """

    pass


class DataProviderError(DataError):
    """Raised when the price provider fails to fetch data.

    Examples:
        - API rate limit exceeded
        - Network connection failed
        - Fetch aborted by the caller
    """

    pass


class DataUnavailableError(DataError):
    """Raised when price data needed for a calculation is missing.

    Momentum scoring never lets this escape: it is converted into an
    error-flagged MomentumRecord so batch callers keep going.

    Examples:
        - No historical prices for a ticker
        - Current price is zero or negative
    """

    pass


class CacheUnavailableError(DataError):
    """Raised when the cache backend cannot be reached.

    Callers degrade to direct computation when they see this.
    """

    pass


class OptimizationError(MomentumRiderError):
    """Base exception for optimization layer errors.

    Parent class for all allocation and solver exceptions.
    """

    pass


class InvalidInputError(OptimizationError, ValueError):
    """Raised when an optimization request or strategy input is malformed.

    Also a ValueError, so field validation in the data model reads naturally.

    Examples:
        - Percentages not summing to ~100
        - Negative or zero budget
        - Non-positive prices or negative share counts
    """

    pass


class SolverError(OptimizationError):
    """Raised when the integer program solver faults.

    Never surfaced to optimizer callers: the heuristic cascade takes over.
    """

    pass


class SolverInfeasibleError(SolverError):
    """Raised when no integer solution satisfies all deviation bands."""

    pass


class SolverTimeoutError(SolverError):
    """Raised when the solver exceeds its time budget."""

    pass
