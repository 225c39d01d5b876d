"""
Survival analysis.

Public API:
    kaplan_meier(...) -> KMSolution
    kaplan_meier_by_group(...) -> GroupedKMSolution
    survdiff(...) -> LogRankSolution
    coxph(...) -> CoxSolution
    coxph_frame(...) -> CoxSolution
    expand_grid(...) -> pd.DataFrame
"""

from cohortsurv.survival.design import SurvivalDesign
from cohortsurv.survival.solvers import (
    coxph,
    coxph_frame,
    kaplan_meier,
    kaplan_meier_by_group,
    survdiff,
)
from cohortsurv.survival.solution import (
    CoxSolution,
    GroupedKMSolution,
    KMSolution,
    LogRankSolution,
)
from cohortsurv.survival._common import BaselineHazard, HazardRatio
from cohortsurv.survival._predict import PredictedCurves, expand_grid

__all__ = [
    "SurvivalDesign",
    "coxph",
    "coxph_frame",
    "kaplan_meier",
    "kaplan_meier_by_group",
    "survdiff",
    "CoxSolution",
    "GroupedKMSolution",
    "KMSolution",
    "LogRankSolution",
    "BaselineHazard",
    "HazardRatio",
    "PredictedCurves",
    "expand_grid",
]
