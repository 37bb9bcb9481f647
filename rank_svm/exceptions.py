"""
Custom exceptions for the linear ranking SVM.

All custom exceptions inherit from RankSVMException so callers can catch a
single base type.
"""


class RankSVMException(Exception):
    """Base exception for all ranking SVM errors."""


class ConfigurationError(RankSVMException):
    """Invalid configuration."""


class ValidationError(RankSVMException):
    """Input validation failed."""


class RankingProblemError(ValidationError):
    """Training data contains no (relevant, nonrelevant) pair."""


class DimensionMismatchError(ValidationError):
    """Feature vector dimensionality disagrees with previously seen vectors."""

    def __init__(self, expected: int, actual: int, where: str = ""):
        self.expected = expected
        self.actual = actual
        self.where = where
        message = f"Expected dimension {expected}, got {actual}"
        if where:
            message = f"{message} ({where})"
        super().__init__(message)


class OptimizationError(RankSVMException):
    """Optimizer produced an unusable iterate."""
