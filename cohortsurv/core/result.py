"""
Generic result container for all cohortsurv computations.

The Result class is the standardized envelope every survival payload is
carried in. It enables shared tooling for timing, warnings, and
reproducibility while each estimator defines its own parameter structure.

Design decisions:
    - Generic over parameter payload P for type safety
    - info dict for flexible metadata (method, ties, iterations)
    - timing is optional (don't burden unit tests)
    - provenance records library versions so a rerun can be matched
    - Immutable (frozen=True) for reproducibility
"""

import platform
from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

P = TypeVar('P')  # Parameter payload type


def _default_provenance() -> dict[str, str]:
    """Versions of the interpreter and numerical stack in use."""
    import numpy
    import scipy

    from cohortsurv import __version__

    return {
        'cohortsurv_version': __version__,
        'numpy_version': numpy.__version__,
        'scipy_version': scipy.__version__,
        'python_version': platform.python_version(),
    }


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for survival computations.

    Type Parameters:
        P: The estimator-specific parameter payload type

    Attributes:
        params: Estimator parameters (curve, test statistic, coefficients)
        info: Structured metadata (method, convergence, diagnostics)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the routine that produced this result
        warnings: Non-fatal issues encountered during computation
        provenance: Library versions at computation time

    Examples:
        >>> Result(
        ...     params=KMParams(...),
        ...     info={'method': 'Kaplan-Meier'},
        ...     timing={'total_seconds': 0.01},
        ...     backend_name='cpu_km'
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)
    provenance: dict[str, str] = field(default_factory=_default_provenance)

    def has_warning(self, substring: str) -> bool:
        """Check if any warning contains the given substring."""
        return any(substring in w for w in self.warnings)
