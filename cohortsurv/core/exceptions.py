"""
Exception hierarchy for cohortsurv.

All exceptions inherit from CohortSurvError to allow catching any
library-specific error. Domain-specific exceptions inherit from the
appropriate base class here.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class CohortSurvError(Exception):
    """Base exception for all cohortsurv errors."""
    pass


class ValidationError(CohortSurvError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.
    """
    pass


@dataclass(frozen=True)
class RejectedRow:
    """One subject row refused at ingestion.

    Attributes:
        index: 0-based data-row index in the input (header excluded)
        column: Column whose value was refused
        value: The raw offending value
        reason: Human-readable reason
    """
    index: int
    column: str
    value: Any
    reason: str

    def __str__(self) -> str:
        return f"row {self.index}: {self.column}={self.value!r} ({self.reason})"


class MalformedRecordError(ValidationError):
    """
    Subject rows have missing or invalid time / status values.

    Attributes:
        rejected: Every refused row, in input order
    """

    def __init__(self, message: str, rejected: tuple[RejectedRow, ...] = ()):
        super().__init__(message)
        self.rejected = tuple(rejected)


class UnknownCovariateLevelError(ValidationError):
    """
    A categorical value was not part of the encoding it is checked against.

    Raised at prediction time when a what-if grid carries a level that was
    never seen when the model was fit, and when data contain a value outside
    explicitly declared levels.

    Attributes:
        covariate: Covariate name
        levels: Known levels, reference first
        unknown: The offending values
    """

    def __init__(
        self,
        message: str,
        covariate: str,
        levels: tuple[Any, ...] = (),
        unknown: tuple[Any, ...] = (),
    ):
        super().__init__(message)
        self.covariate = covariate
        self.levels = tuple(levels)
        self.unknown = tuple(unknown)


class NumericalError(CohortSurvError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class SingularMatrixError(NumericalError):
    """
    Matrix is singular or nearly singular.

    Attributes:
        matrix_name: Name/description of the problematic matrix
        condition_number: Estimated condition number, if available
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        condition_number: float | None = None,
    ):
        super().__init__(message)
        self.matrix_name = matrix_name
        self.condition_number = condition_number


class InsufficientEventsError(NumericalError):
    """
    No events were observed where at least one is required.

    The log-rank statistic and the Cox partial likelihood are both
    undefined without events.

    Attributes:
        n_events: Number of events observed
        n_observations: Number of subjects
    """

    def __init__(self, message: str, n_events: int = 0, n_observations: int = 0):
        super().__init__(message)
        self.n_events = n_events
        self.n_observations = n_observations


class ConvergenceError(CohortSurvError):
    """
    Iterative algorithm failed to converge.

    Attributes:
        iterations: Number of iterations completed
        final_change: Final parameter or objective change
        reason: Why convergence failed (e.g., 'max_iterations', 'singular')
        threshold: The convergence threshold that was not met
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        final_change: float | None = None,
        reason: str | None = None,
        threshold: float | None = None,
    ):
        super().__init__(message)
        self.iterations = iterations
        self.final_change = final_change
        self.reason = reason
        self.threshold = threshold


class FitDidNotConvergeError(ConvergenceError):
    """
    Cox Newton-Raphson did not reach its tolerance.

    Never returned as a partial result: the last iterate is attached here
    so callers can inspect it.

    Attributes:
        coefficients: Last coefficient iterate
        loglik: Partial log-likelihood at the last iterate
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        coefficients: Any = None,
        loglik: float | None = None,
        final_change: float | None = None,
        reason: str | None = None,
        threshold: float | None = None,
    ):
        super().__init__(
            message,
            iterations=iterations,
            final_change=final_change,
            reason=reason,
            threshold=threshold,
        )
        self.coefficients = coefficients
        self.loglik = loglik
