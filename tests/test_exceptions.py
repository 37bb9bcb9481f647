"""
Tests for custom exceptions module

Tests cover:
- Exception hierarchy
- Error messages
- Exception attributes
"""

import pytest

from rank_svm.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    OptimizationError,
    RankingProblemError,
    RankSVMException,
    ValidationError,
)


class TestExceptionHierarchy:
    """Test exception inheritance structure"""

    @pytest.mark.parametrize(
        "exc_type", [ConfigurationError, ValidationError, OptimizationError]
    )
    def test_top_level_errors(self, exc_type):
        """Top-level errors inherit from the base"""
        exc = exc_type("failed")
        assert isinstance(exc, RankSVMException)
        assert str(exc) == "failed"

    def test_ranking_problem_is_validation_error(self):
        """Missing pairs are a validation failure"""
        assert issubclass(RankingProblemError, ValidationError)

    def test_dimension_mismatch_is_validation_error(self):
        """Dimension mismatch is a validation failure"""
        assert issubclass(DimensionMismatchError, ValidationError)


class TestDimensionMismatchError:
    """Test DimensionMismatchError attributes"""

    def test_attributes(self):
        """Expected and actual dimensions are kept"""
        exc = DimensionMismatchError(3, 5, "query 2")
        assert exc.expected == 3
        assert exc.actual == 5
        assert "query 2" in str(exc)

    def test_message_without_location(self):
        """Location is optional"""
        assert str(DimensionMismatchError(2, 1)) == "Expected dimension 2, got 1"

    def test_catch_as_base(self):
        """Callers can catch the base type"""
        with pytest.raises(RankSVMException):
            raise DimensionMismatchError(1, 2)
