"""
Log-rank test (G-rho family) for comparing survival curves across groups.

Matches R's survival::survdiff(Surv(time, event) ~ group, rho=0):
- Standard log-rank test (rho=0): Mantel-Haenszel
- G-rho family (rho>0): Fleming-Harrington weighted variant.
  rho=1 gives the Peto & Peto modification of the Gehan-Wilcoxon test.

Algorithm:
    At each distinct event time t_j of the pooled sample:
       n_kj = number at risk in group k, d_kj = events in group k
       N_j, D_j = pooled totals
       E_kj = n_kj * D_j / N_j
       w_j = S_hat(t_j-)^rho (pooled KM just before t_j)
    O_k - E_k = Σ_j w_j (d_kj - E_kj)
    V_kl = Σ_j w_j^2 D_j (N_j - D_j) / (N_j^2 (N_j - 1))
                * n_kj (δ_kl N_j - n_lj)
    chi2 = (O - E)' V^- (O - E) over all but one of the groups with
    E_k > 0, df = #{k : E_k > 0} - 1

References:
    Harrington, D. P. & Fleming, T. R. (1982). A class of rank test
        procedures for censored survival data. Biometrika, 69(3), 553-566.
    R Core Team. survival::survdiff
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from cohortsurv.core.exceptions import InsufficientEventsError
from cohortsurv.survival._common import LogRankParams
from cohortsurv.survival._km import _count_at, risk_set_sizes


def logrank_test(
    time: NDArray,
    event: NDArray,
    group_codes: NDArray,
    group_labels: tuple,
    rho: float = 0.0,
) -> LogRankParams:
    """Compute log-rank test (G-rho family).

    Parameters
    ----------
    time : NDArray
        (n,) time to event or censoring.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    group_codes : NDArray
        (n,) group index 0..k-1.
    group_labels : tuple
        (k,) labels in index order.
    rho : float
        G-rho weight parameter.

    Returns
    -------
    LogRankParams

    Raises
    ------
    InsufficientEventsError
        If no events were observed in any group.
    """
    n_groups = len(group_labels)

    if n_groups < 2:
        raise ValueError(
            f"Need at least 2 groups for log-rank test, got {n_groups}"
        )

    n_per_group = np.bincount(group_codes, minlength=n_groups).astype(np.float64)
    event_times = np.unique(time[event == 1])

    if len(event_times) == 0:
        raise InsufficientEventsError(
            "log-rank test needs at least one event; all subjects are censored",
            n_events=0,
            n_observations=len(time),
        )

    m = len(event_times)
    n_kg = np.zeros((m, n_groups), dtype=np.float64)
    d_kg = np.zeros((m, n_groups), dtype=np.float64)

    for k in range(n_groups):
        in_k = group_codes == k
        n_kg[:, k] = risk_set_sizes(np.sort(time[in_k]), event_times)
        d_kg[:, k] = _count_at(np.sort(time[in_k & (event == 1)]), event_times)

    D = d_kg.sum(axis=1)
    N = n_kg.sum(axis=1)

    if rho == 0.0:
        weights = np.ones(m, dtype=np.float64)
    else:
        pooled = np.cumprod(1.0 - D / N)
        s_before = np.concatenate(([1.0], pooled[:-1]))
        weights = s_before ** rho

    observed = (weights[:, np.newaxis] * d_kg).sum(axis=0)
    expected = (weights[:, np.newaxis] * n_kg * (D / N)[:, np.newaxis]).sum(axis=0)

    with np.errstate(divide='ignore', invalid='ignore'):
        factor = np.where(
            N > 1,
            weights ** 2 * D * (N - D) / (N ** 2 * (N - 1)),
            0.0,
        )
    variance = (
        np.diag((factor * N) @ n_kg)
        - (n_kg * factor[:, np.newaxis]).T @ n_kg
    )

    # Groups with no one at risk at any event time carry no information
    # (R keeps expected > 0 only). Σ(O_k - E_k) = 0 over the kept groups,
    # so the last of them is redundant.
    kept = np.flatnonzero(expected > 0)
    df = len(kept) - 1
    if df < 1:
        statistic = 0.0
        p_value = 1.0
    else:
        idx = kept[:df]
        oe = (observed - expected)[idx]
        statistic = float(oe @ np.linalg.pinv(variance[np.ix_(idx, idx)]) @ oe)
        p_value = float(stats.chi2.sf(statistic, df))

    return LogRankParams(
        statistic=statistic,
        df=df,
        p_value=p_value,
        n_groups=n_groups,
        observed=observed,
        expected=expected,
        variance=variance,
        n_per_group=n_per_group,
        rho=rho,
        group_labels=tuple(group_labels),
    )
