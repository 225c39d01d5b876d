"""
Parameter payloads for survival analysis results.

Each dataclass is a frozen payload carried inside a Result[P] envelope.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from numpy.typing import NDArray

from cohortsurv.data.encoding import DesignEncoding


@dataclass(frozen=True)
class KMParams:
    """Kaplan-Meier survival curve parameters.

    Matches the output of R's survival::survfit() at event times.
    """

    time: NDArray                # (m,) distinct event times
    survival: NDArray            # (m,) S(t) at each event time
    n_risk: NDArray              # (m,) number at risk just before each time
    n_events: NDArray            # (m,) events at each time
    n_censored: NDArray          # (m,) censored in [t_j, t_{j+1})
    se: NDArray                  # (m,) Greenwood standard error
    ci_lower: NDArray            # (m,) lower CI for S(t)
    ci_upper: NDArray            # (m,) upper CI for S(t)
    conf_level: float            # confidence level (e.g. 0.95)
    conf_type: str               # CI type: "log" (default), "plain", "log-log"
    n_observations: int          # total n
    n_events_total: int          # total events
    observed_time: NDArray       # (n,) every subject's time, sorted


@dataclass(frozen=True)
class LogRankParams:
    """Log-rank test parameters.

    Matches the output of R's survival::survdiff().
    """

    statistic: float             # chi-squared statistic
    df: int                      # degrees of freedom (n_groups - 1)
    p_value: float
    n_groups: int
    observed: NDArray            # (n_groups,) observed events per group
    expected: NDArray            # (n_groups,) expected events per group
    variance: NDArray            # (n_groups, n_groups) var-cov of O - E
    n_per_group: NDArray         # (n_groups,) subjects per group
    rho: float                   # weight parameter (0=log-rank, 1=Peto-Peto)
    group_labels: tuple[Any, ...]


@dataclass(frozen=True)
class BaselineHazard:
    """Breslow baseline hazard at distinct event times (x = 0)."""

    time: NDArray                # (m,) distinct event times
    hazard: NDArray              # (m,) hazard increment at each time
    cumulative_hazard: NDArray   # (m,) H0(t)
    survival: NDArray            # (m,) S0(t) = exp(-H0(t))


@dataclass(frozen=True)
class HazardRatio:
    """One row of a hazard-ratio (forest-plot) table."""

    covariate: str
    hazard_ratio: float
    ci_lower: float
    ci_upper: float
    p_value: float


@dataclass(frozen=True)
class CoxParams:
    """Cox proportional hazards model parameters.

    Matches the output of R's survival::coxph().
    """

    names: tuple[str, ...]       # (p,) design-matrix column names
    coefficients: NDArray        # (p,) log hazard ratios
    covariance: NDArray          # (p, p) inverse observed information
    hazard_ratios: NDArray       # (p,) exp(coef)
    standard_errors: NDArray     # (p,) sqrt(diag(covariance))
    z_statistics: NDArray        # (p,) coef / se
    p_values: NDArray            # (p,) Wald chi-square, 1 df
    ci_lower: NDArray            # (p,) exp(coef - z * se)
    ci_upper: NDArray            # (p,) exp(coef + z * se)
    conf_level: float
    loglik: tuple[float, float]  # (null log-lik, model log-lik)
    wald_test: float             # beta' I beta
    score_test: float            # U(0)' I(0)^-1 U(0)
    concordance: float           # Harrell's C-statistic
    n_events: int
    n_observations: int
    n_iter: int                  # Newton-Raphson iterations
    converged: bool
    final_change: float          # max |delta beta| at the last iteration
    ties: str                    # "efron" or "breslow"
    baseline: BaselineHazard
    encoding: DesignEncoding | None
