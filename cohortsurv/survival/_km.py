"""
Kaplan-Meier product-limit estimator.

Matches R's survival::survfit(Surv(time, event) ~ 1):
- Product-limit survival estimate: S(t) = ∏(1 - d_j / n_j)
- Greenwood variance: Var(S(t)) = S(t)^2 * Σ(d_j / (n_j * (n_j - d_j)))
- Confidence intervals via log, plain, or log-log transformation

Tied event times form a single step. A subject censored at t_j is still
at risk at t_j (events precede censoring at ties) and leaves afterwards.

References:
    Kaplan, E. L., & Meier, P. (1958). Nonparametric estimation from
        incomplete observations. JASA, 53(282), 457-481.
    R Core Team. survival::survfit.formula
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from cohortsurv.survival._common import KMParams


def _count_at(sorted_values: NDArray, points: NDArray) -> NDArray:
    """Number of entries of ``sorted_values`` equal to each point."""
    return (
        np.searchsorted(sorted_values, points, side="right")
        - np.searchsorted(sorted_values, points, side="left")
    ).astype(np.float64)


def risk_set_sizes(sorted_time: NDArray, points: NDArray) -> NDArray:
    """Subjects with time >= t for each t (at risk just before t)."""
    return (
        len(sorted_time) - np.searchsorted(sorted_time, points, side="left")
    ).astype(np.float64)


def kaplan_meier_fit(
    time: NDArray,
    event: NDArray,
    conf_level: float,
    conf_type: str,
) -> KMParams:
    """Compute Kaplan-Meier survival curve.

    Parameters
    ----------
    time : NDArray
        (n,) time to event or censoring.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    conf_level : float
        Confidence level for CI (e.g. 0.95).
    conf_type : str
        CI type: "log" (default, matches R), "plain", "log-log".

    Returns
    -------
    KMParams
        Empty step arrays when there are no events (S(t) = 1 everywhere).
    """
    n_total = len(time)
    sorted_time = np.sort(time)
    event_sorted = np.sort(time[event == 1])
    censor_sorted = np.sort(time[event == 0])

    event_times = np.unique(event_sorted)

    if len(event_times) == 0:
        empty = np.array([], dtype=np.float64)
        return KMParams(
            time=empty,
            survival=empty,
            n_risk=empty,
            n_events=empty,
            n_censored=empty,
            se=empty,
            ci_lower=empty,
            ci_upper=empty,
            conf_level=conf_level,
            conf_type=conf_type,
            n_observations=n_total,
            n_events_total=0,
            observed_time=sorted_time,
        )

    n_risk = risk_set_sizes(sorted_time, event_times)
    n_events = _count_at(event_sorted, event_times)

    # Censored from this event time up to (not including) the next one
    next_times = np.append(event_times[1:], np.inf)
    n_censored = (
        np.searchsorted(censor_sorted, next_times, side="left")
        - np.searchsorted(censor_sorted, event_times, side="left")
    ).astype(np.float64)

    survival = np.cumprod(1.0 - n_events / n_risk)

    # Greenwood; the term is dropped where every subject at risk fails
    # (S = 0 from there on, so the variance is 0 either way)
    denom = n_risk * (n_risk - n_events)
    denom = np.where(denom > 0, denom, np.inf)
    greenwood_sum = np.cumsum(n_events / denom)
    se = np.sqrt(survival ** 2 * greenwood_sum)

    z = stats.norm.ppf((1.0 + conf_level) / 2.0)
    ci_lower, ci_upper = _compute_ci(survival, se, z, conf_type)

    return KMParams(
        time=event_times,
        survival=survival,
        n_risk=n_risk,
        n_events=n_events,
        n_censored=n_censored,
        se=se,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        conf_level=conf_level,
        conf_type=conf_type,
        n_observations=n_total,
        n_events_total=int(np.sum(event)),
        observed_time=sorted_time,
    )


def _compute_ci(
    survival: NDArray,
    se: NDArray,
    z: float,
    conf_type: str,
) -> tuple[NDArray, NDArray]:
    """Compute CI for survival function.

    Returns
    -------
    (ci_lower, ci_upper) clipped to [0, 1]
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        if conf_type == "plain":
            ci_lower = survival - z * se
            ci_upper = survival + z * se

        elif conf_type == "log":
            # se of log(S) = se(S) / S
            se_log = se / survival
            ci_lower = survival * np.exp(-z * se_log)
            ci_upper = survival * np.exp(z * se_log)

        elif conf_type == "log-log":
            # se of log(-log(S)) = se(S) / (S * |log(S)|)
            log_s = np.log(survival)
            se_loglog = se / (survival * np.abs(log_s))
            ci_lower = survival ** np.exp(z * se_loglog)
            ci_upper = survival ** np.exp(-z * se_loglog)
        else:
            raise ValueError(
                f"Unknown conf_type '{conf_type}'. "
                f"Choose from 'log', 'plain', 'log-log'."
            )

    ci_lower = np.clip(ci_lower, 0.0, 1.0)
    ci_upper = np.clip(ci_upper, 0.0, 1.0)

    # S = 0 (log scales undefined) collapses to the point estimate
    ci_lower = np.where(np.isnan(ci_lower), survival, ci_lower)
    ci_upper = np.where(np.isnan(ci_upper), survival, ci_upper)

    return ci_lower, ci_upper


def step_lookup(
    step_times: NDArray,
    step_values: NDArray,
    t,
    before: float,
) -> NDArray:
    """Evaluate a right-continuous step function at ``t``.

    ``before`` is returned for t earlier than the first step.
    """
    t = np.asarray(t, dtype=np.float64)
    idx = np.searchsorted(step_times, t, side="right") - 1
    safe = np.clip(idx, 0, max(len(step_values) - 1, 0))
    if len(step_values) == 0:
        return np.full(t.shape, before, dtype=np.float64)
    return np.where(idx < 0, before, step_values[safe])


def quantile_time(
    step_times: NDArray,
    curve: NDArray,
    p: float = 0.5,
) -> float | None:
    """Smallest time at which the curve drops to ``1 - p`` or below.

    R convention: when the curve sits exactly at the threshold over an
    interval, the midpoint to the next step is reported. None when the
    curve never reaches it ("not reached").
    """
    threshold = 1.0 - p
    hit = np.flatnonzero(curve <= threshold + 1e-12)
    if len(hit) == 0:
        return None
    j = hit[0]
    if abs(curve[j] - threshold) < 1e-12 and j + 1 < len(step_times):
        return float((step_times[j] + step_times[j + 1]) / 2.0)
    return float(step_times[j])
