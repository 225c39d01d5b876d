"""
Cox Proportional Hazards model via Newton-Raphson.

Implements Efron's and Breslow's methods for tied event times,
matching R's survival::coxph().

Algorithm:
    Initialize β = 0
    For iteration 1..max_iter:
        Compute: partial log-likelihood L(β), score U(β), information I(β)
        β_new = β + I(β)^{-1} @ U(β)   (step capped, halved while L decreases)
        Converged when max|β_new - β| < tol
                    or |L_new - L| / (|L| + 0.1) < tol
    Iteration cap reached or singular I(β) -> FitDidNotConvergeError

Efron's partial likelihood (R default):
    L(β) = Σ_j [ Σ_{i ∈ D_j} x_i @ β
            - Σ_{s=0}^{d_j-1} log(Σ_{l ∈ R_j} exp(x_l @ β)
                - (s/d_j) * Σ_{i ∈ D_j} exp(x_i @ β)) ]

    where D_j = set of events at time t_j, d_j = |D_j|,
          R_j = risk set at time t_j (time >= t_j).

Risk-set sums are reverse cumulative sums over subjects sorted by time,
so each Newton step is O(n p^2).

References:
    Cox, D. R. (1972). Regression models and life-tables. JRSS-B, 34(2), 187-220.
    Efron, B. (1977). The efficiency of Cox's likelihood function for
        censored data. JASA, 72(359), 557-565.
    Breslow, N. (1972). Discussion of Professor Cox's paper. JRSS-B, 34, 216-217.
    R Core Team. survival::coxph, coxph.fit
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from cohortsurv.core.exceptions import (
    FitDidNotConvergeError,
    InsufficientEventsError,
    SingularMatrixError,
)
from cohortsurv.core.compute.timing import Timer
from cohortsurv.data.encoding import DesignEncoding
from cohortsurv.survival._common import BaselineHazard, CoxParams


_MAX_HALVINGS = 10


@dataclass(frozen=True)
class _RiskSets:
    """Time-sorted data and the index structure of its risk sets."""

    X: NDArray               # (n, p) sorted by time
    event_times: NDArray     # (m,) distinct event times
    start: NDArray           # (m,) first sorted row with time >= t_j
    d: NDArray               # (m,) events at t_j
    event_rows: NDArray      # (E,) sorted-row index of each event
    event_slot: NDArray      # (E,) j of each event
    tie_rank: NDArray        # (E,) 0..d_j-1 within its tie group


def _risk_sets(time: NDArray, event: NDArray, X: NDArray) -> _RiskSets:
    order = np.argsort(time, kind="stable")
    t = time[order]
    e = event[order]

    event_rows = np.flatnonzero(e == 1)
    event_times = np.unique(t[event_rows])
    event_slot = np.searchsorted(event_times, t[event_rows])
    first_in_group = np.searchsorted(event_slot, event_slot, side="left")

    return _RiskSets(
        X=X[order],
        event_times=event_times,
        start=np.searchsorted(t, event_times, side="left"),
        d=np.bincount(event_slot, minlength=len(event_times)),
        event_rows=event_rows,
        event_slot=event_slot,
        tie_rank=np.arange(len(event_rows)) - first_in_group,
    )


def _reverse_cumsum(a: NDArray) -> NDArray:
    return np.cumsum(a[::-1], axis=0)[::-1]


def _derivatives(
    beta: NDArray,
    rs: _RiskSets,
    ties: str,
) -> tuple[float, NDArray, NDArray]:
    """Partial log-likelihood, score vector and observed information.

    Returns
    -------
    (loglik, score, info_matrix)
        info_matrix is the negative Hessian.
    """
    X = rs.X
    m = len(rs.event_times)
    p = X.shape[1]

    eta = X @ beta
    # Shift cancels between numerator and denominators
    eta_c = eta - np.max(eta)
    w = np.exp(eta_c)

    wX = w[:, np.newaxis] * X
    wXX = wX[:, :, np.newaxis] * X[:, np.newaxis, :]

    S0 = _reverse_cumsum(w)[rs.start]
    S1 = _reverse_cumsum(wX)[rs.start]
    S2 = _reverse_cumsum(wXX)[rs.start]

    slot = rs.event_slot
    Xe = X[rs.event_rows]

    if ties == "efron":
        we = w[rs.event_rows]
        A0 = np.bincount(slot, weights=we, minlength=m)
        A1 = np.zeros((m, p))
        np.add.at(A1, slot, wX[rs.event_rows])
        A2 = np.zeros((m, p, p))
        np.add.at(A2, slot, wXX[rs.event_rows])

        frac = rs.tie_rank / rs.d[slot]
        denom = S0[slot] - frac * A0[slot]
        num1 = S1[slot] - frac[:, np.newaxis] * A1[slot]
        num2 = S2[slot] - frac[:, np.newaxis, np.newaxis] * A2[slot]
    else:
        denom = S0[slot]
        num1 = S1[slot]
        num2 = S2[slot]

    mean = num1 / denom[:, np.newaxis]

    loglik = float(np.sum(eta_c[rs.event_rows]) - np.sum(np.log(denom)))
    score = Xe.sum(axis=0) - mean.sum(axis=0)
    info = (num2 / denom[:, np.newaxis, np.newaxis]).sum(axis=0) - mean.T @ mean

    return loglik, score, info


def _newton_raphson(
    rs: _RiskSets,
    ties: str,
    tol: float,
    max_iter: int,
    max_step: float,
) -> tuple[NDArray, float, NDArray, int, float]:
    """Maximize the partial likelihood from β = 0.

    Returns
    -------
    (beta, loglik, info, n_iter, final_change)
    """
    p = rs.X.shape[1]
    beta = np.zeros(p, dtype=np.float64)
    loglik, score, info = _derivatives(beta, rs, ties)
    change = np.inf

    for iteration in range(1, max_iter + 1):
        try:
            step = np.linalg.solve(info, score)
        except np.linalg.LinAlgError:
            raise FitDidNotConvergeError(
                f"Information matrix is singular at iteration {iteration}",
                iterations=iteration - 1,
                coefficients=beta,
                loglik=loglik,
                final_change=change,
                reason="singular_information",
                threshold=tol,
            ) from None

        largest = np.max(np.abs(step)) if p > 0 else 0.0
        if largest > max_step:
            step = step * (max_step / largest)

        beta_new = beta + step
        loglik_new, score_new, info_new = _derivatives(beta_new, rs, ties)

        halvings = 0
        while (not np.isfinite(loglik_new) or loglik_new < loglik) and halvings < _MAX_HALVINGS:
            step = step / 2.0
            beta_new = beta + step
            loglik_new, score_new, info_new = _derivatives(beta_new, rs, ties)
            halvings += 1

        change = float(np.max(np.abs(beta_new - beta))) if p > 0 else 0.0
        relative = abs(loglik_new - loglik) / (abs(loglik) + 0.1)

        if not np.isfinite(loglik_new) or loglik_new < loglik:
            # rounding noise at the maximum; keep the previous iterate
            if np.isfinite(loglik_new) and relative < tol:
                return beta, loglik, info, iteration, change
            raise FitDidNotConvergeError(
                f"Step halving failed to increase the log-likelihood "
                f"at iteration {iteration}",
                iterations=iteration - 1,
                coefficients=beta,
                loglik=loglik,
                final_change=change,
                reason="step_halving",
                threshold=tol,
            )

        beta, loglik, score, info = beta_new, loglik_new, score_new, info_new

        if change < tol or relative < tol:
            return beta, loglik, info, iteration, change

    raise FitDidNotConvergeError(
        f"Newton-Raphson did not converge in {max_iter} iterations "
        f"(max |Δβ| = {change:.3g}, tol = {tol:g})",
        iterations=max_iter,
        coefficients=beta,
        loglik=loglik,
        final_change=change,
        reason="max_iterations",
        threshold=tol,
    )


def breslow_baseline(
    time: NDArray,
    event: NDArray,
    X: NDArray,
    beta: NDArray,
) -> BaselineHazard:
    """Breslow baseline hazard for a subject with x = 0.

    h0(t_j) = d_j / Σ_{i ∈ R_j} exp(x_i @ β), on uncentered covariates so
    that S(t | x = 0) is exactly the baseline survival.
    """
    rs = _risk_sets(time, event, X)
    w = np.exp(rs.X @ beta)
    hazard = rs.d / _reverse_cumsum(w)[rs.start]
    cumulative = np.cumsum(hazard)
    return BaselineHazard(
        time=rs.event_times,
        hazard=hazard,
        cumulative_hazard=cumulative,
        survival=np.exp(-cumulative),
    )


def _concordance(
    eta: NDArray,
    time: NDArray,
    event: NDArray,
) -> float:
    """Harrell's concordance statistic (C-statistic).

    C = P(risk_i > risk_j | T_i < T_j, event_i = 1), tied risks count 1/2.
    """
    concordant = 0
    discordant = 0
    tied_risk = 0

    for i in np.flatnonzero(event == 1):
        later = eta[time > time[i]]
        concordant += int(np.count_nonzero(eta[i] > later))
        discordant += int(np.count_nonzero(eta[i] < later))
        tied_risk += int(np.count_nonzero(eta[i] == later))

    total = concordant + discordant + tied_risk
    if total == 0:
        return 0.5

    return (concordant + 0.5 * tied_risk) / total


def cox_fit(
    time: NDArray,
    event: NDArray,
    X: NDArray,
    names: tuple[str, ...],
    ties: str = "efron",
    tol: float = 1e-9,
    max_iter: int = 20,
    max_step: float = 5.0,
    conf_level: float = 0.95,
    encoding: DesignEncoding | None = None,
    timer: Timer | None = None,
) -> CoxParams:
    """Fit Cox proportional hazards model.

    Parameters
    ----------
    time : NDArray
        (n,) time to event or censoring.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    X : NDArray
        (n, p) covariate matrix (NO intercept).
    names : tuple of str
        (p,) column names.
    ties : str
        "efron" (default) or "breslow".
    tol : float
        Convergence tolerance.
    max_iter : int
        Maximum Newton-Raphson iterations.
    max_step : float
        Largest absolute coefficient change per iteration.
    conf_level : float
        Confidence level of the hazard-ratio intervals.
    encoding : DesignEncoding or None
        Encoding that produced X, kept for prediction.

    Returns
    -------
    CoxParams

    Raises
    ------
    InsufficientEventsError
        No events observed.
    FitDidNotConvergeError
        Iteration cap reached or singular information matrix.
    """
    timer = timer or Timer()
    n, p = X.shape
    n_events_total = int(np.sum(event))

    if n_events_total == 0:
        raise InsufficientEventsError(
            "Cox model needs at least one event; all subjects are censored",
            n_events=0,
            n_observations=n,
        )

    # Centering leaves β unchanged and keeps exp(x @ β) well scaled
    rs = _risk_sets(time, event, X - X.mean(axis=0))

    with timer.section('newton_raphson'):
        null_loglik, score0, info0 = _derivatives(np.zeros(p), rs, ties)
        beta, model_loglik, info, n_iter, change = _newton_raphson(
            rs, ties, tol=tol, max_iter=max_iter, max_step=max_step,
        )

    try:
        covariance = np.linalg.inv(info)
    except np.linalg.LinAlgError:
        raise SingularMatrixError(
            "Observed information matrix is singular at the solution",
            matrix_name="information",
            condition_number=float(np.linalg.cond(info)),
        ) from None

    se = np.sqrt(np.maximum(np.diag(covariance), 0.0))

    with np.errstate(divide='ignore', invalid='ignore'):
        z = np.where(se > 0, beta / se, 0.0)
    p_values = stats.chi2.sf(z ** 2, 1)

    z_crit = stats.norm.ppf((1.0 + conf_level) / 2.0)
    with np.errstate(over='ignore'):
        hazard_ratios = np.exp(beta)
        ci_lower = np.exp(beta - z_crit * se)
        ci_upper = np.exp(beta + z_crit * se)

    wald = float(beta @ info @ beta)
    try:
        score_stat = float(score0 @ np.linalg.solve(info0, score0))
    except np.linalg.LinAlgError:
        score_stat = float('nan')

    with timer.section('baseline_hazard'):
        baseline = breslow_baseline(time, event, X, beta)

    return CoxParams(
        names=tuple(names),
        coefficients=beta,
        covariance=covariance,
        hazard_ratios=hazard_ratios,
        standard_errors=se,
        z_statistics=z,
        p_values=p_values,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        conf_level=conf_level,
        loglik=(null_loglik, model_loglik),
        wald_test=wald,
        score_test=score_stat,
        concordance=_concordance(X @ beta, time, event),
        n_events=n_events_total,
        n_observations=n,
        n_iter=n_iter,
        converged=True,
        final_change=change,
        ties=ties,
        baseline=baseline,
        encoding=encoding,
    )
