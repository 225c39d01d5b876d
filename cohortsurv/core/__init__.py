"""
Core infrastructure for cohortsurv.

Shared abstractions used by the data and survival sub-packages.

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing and convergence tolerances
"""

from cohortsurv.core.result import Result
from cohortsurv.core.exceptions import (
    CohortSurvError,
    ValidationError,
    DimensionError,
    MalformedRecordError,
    RejectedRow,
    UnknownCovariateLevelError,
    NumericalError,
    SingularMatrixError,
    InsufficientEventsError,
    ConvergenceError,
    FitDidNotConvergeError,
)

__all__ = [
    # Result
    "Result",
    # Exceptions
    "CohortSurvError",
    "ValidationError",
    "DimensionError",
    "MalformedRecordError",
    "RejectedRow",
    "UnknownCovariateLevelError",
    "NumericalError",
    "SingularMatrixError",
    "InsufficientEventsError",
    "ConvergenceError",
    "FitDidNotConvergeError",
]
