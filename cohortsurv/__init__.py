"""
cohortsurv: survival analysis of genetic cohorts.

Kaplan-Meier curves, log-rank tests and Cox proportional-hazards models
for comparing a mutation cohort against controls in clinical-trial and
mouse-model data, with results matching R's survival package.

Submodules:
    data: Subject-table ingestion, cohort labeling, covariate encoding
    survival: Kaplan-Meier, log-rank, Cox PH, predicted curves
    analysis: End-to-end cohort comparison
"""

__version__ = "0.1.0"

from cohortsurv import data
from cohortsurv import survival
from cohortsurv.analysis import CohortComparison, compare_cohorts

__all__ = [
    "__version__",
    "data",
    "survival",
    "CohortComparison",
    "compare_cohorts",
]
