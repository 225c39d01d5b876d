"""
Convergence settings for iterative fitters.

Newton-Raphson defaults for the Cox partial likelihood match R's
coxph.control (eps=1e-9, iter.max=20). Callers override ``tol`` and
``max_iter`` per call; the tier only supplies defaults.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ConvergenceTier:
    """Stopping rule for an iterative fitter."""
    tol: float
    max_iter: int
    max_step: float
    name: str
    description: str


COX_NEWTON_RAPHSON = ConvergenceTier(
    tol=1e-9,
    max_iter=20,
    max_step=5.0,
    name='cox_newton_raphson',
    description='Cox partial likelihood Newton-Raphson, R coxph.control defaults',
)
