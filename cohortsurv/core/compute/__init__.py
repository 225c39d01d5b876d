"""
Compute infrastructure: timing and convergence settings.
"""

from cohortsurv.core.compute.timing import Timer
from cohortsurv.core.compute.tolerances import ConvergenceTier, COX_NEWTON_RAPHSON

__all__ = [
    "Timer",
    "ConvergenceTier",
    "COX_NEWTON_RAPHSON",
]
