"""
Public API for survival analysis.

    kaplan_meier(time, event) → KMSolution
    kaplan_meier_by_group(time, event, group) → GroupedKMSolution
    survdiff(time, event, group) → LogRankSolution
    coxph(time, event, X) → CoxSolution
    coxph_frame(table, covariates) → CoxSolution

Each function validates inputs, creates a SurvivalDesign, runs the
estimator, and wraps the Result in a Solution.
"""

from __future__ import annotations

from typing import Any, Literal, Mapping, Sequence

import numpy as np
import pandas as pd

from cohortsurv.core.compute.timing import Timer
from cohortsurv.core.compute.tolerances import COX_NEWTON_RAPHSON
from cohortsurv.core.exceptions import ValidationError
from cohortsurv.core.result import Result
from cohortsurv.core.validation import (
    check_column_rank,
    check_no_zero_variance_columns,
)
from cohortsurv.data.encoding import DesignEncoding
from cohortsurv.data.loader import EVENT_COLUMN, TIME_COLUMN, SubjectTable
from cohortsurv.survival.design import SurvivalDesign
from cohortsurv.survival._km import kaplan_meier_fit
from cohortsurv.survival._logrank import logrank_test
from cohortsurv.survival._cox import cox_fit
from cohortsurv.survival.solution import (
    CoxSolution,
    GroupedKMSolution,
    KMSolution,
    LogRankSolution,
)


_CONF_TYPES = ("log", "plain", "log-log")


def _check_conf(conf_level: float, conf_type: str | None = None) -> None:
    if conf_level <= 0 or conf_level >= 1:
        raise ValueError(
            f"conf_level must be in (0, 1), got {conf_level}"
        )
    if conf_type is not None and conf_type not in _CONF_TYPES:
        raise ValueError(
            f"conf_type must be 'log', 'plain', or 'log-log', "
            f"got '{conf_type}'"
        )


def _km_solution(design: SurvivalDesign, conf_level: float, conf_type: str) -> KMSolution:
    timer = Timer()
    timer.start()

    params = kaplan_meier_fit(
        design.time, design.event,
        conf_level=conf_level,
        conf_type=conf_type,
    )

    timer.stop()

    warnings_list = []
    if params.n_events_total == 0:
        warnings_list.append("No events: survival is 1 and the median is not reached")

    result = Result(
        params=params,
        info={"method": "Kaplan-Meier", "conf_type": conf_type},
        timing=timer.result(),
        backend_name="cpu_km",
        warnings=tuple(warnings_list),
    )

    return KMSolution(_result=result)


def kaplan_meier(
    time,
    event,
    *,
    conf_level: float = 0.95,
    conf_type: Literal["log", "plain", "log-log"] = "log",
) -> KMSolution:
    """Kaplan-Meier survival curve estimation.

    Matches R's survival::survfit(Surv(time, event) ~ 1).

    Parameters
    ----------
    time : array-like
        Time to event or censoring.
    event : array-like
        Event indicator (1=event, 0=censored).
    conf_level : float
        Confidence level for CI (default 0.95).
    conf_type : str
        CI transformation: "log" (R default), "plain", "log-log".

    Returns
    -------
    KMSolution
    """
    _check_conf(conf_level, conf_type)
    design = SurvivalDesign.for_survival(time, event)
    return _km_solution(design, conf_level, conf_type)


def kaplan_meier_by_group(
    time,
    event,
    group,
    *,
    levels: Sequence[Any] | None = None,
    conf_level: float = 0.95,
    conf_type: Literal["log", "plain", "log-log"] = "log",
) -> GroupedKMSolution:
    """One Kaplan-Meier curve per group.

    Matches R's survfit(Surv(time, event) ~ group). Each group is
    estimated independently.

    Parameters
    ----------
    group : array-like
        Group label per subject.
    levels : sequence or None
        Group order (R's factor levels); defaults to sorted labels.

    Returns
    -------
    GroupedKMSolution
    """
    _check_conf(conf_level, conf_type)
    design = SurvivalDesign.for_survival(time, event, group=group, levels=levels)

    curves = {
        label: _km_solution(design.subset(design.group_codes == k), conf_level, conf_type)
        for k, label in enumerate(design.group_labels)
    }
    return GroupedKMSolution(curves)


def survdiff(
    time,
    event,
    group,
    *,
    rho: float = 0.0,
    levels: Sequence[Any] | None = None,
) -> LogRankSolution:
    """Log-rank test (and G-rho family).

    Matches R's survival::survdiff().

    Parameters
    ----------
    time : array-like
        Time to event or censoring.
    event : array-like
        Event indicator (1=event, 0=censored).
    group : array-like
        Group labels (e.g. mutant vs non-mutant).
    rho : float
        G-rho weight parameter. rho=0 (default) gives the standard
        log-rank test. rho=1 gives Peto & Peto / Gehan-Wilcoxon.
    levels : sequence or None
        Group order for the reported tables.

    Returns
    -------
    LogRankSolution

    Raises
    ------
    InsufficientEventsError
        If every subject is censored.
    """
    if rho < 0:
        raise ValueError(f"rho must be non-negative, got {rho}")

    design = SurvivalDesign.for_survival(time, event, group=group, levels=levels)

    timer = Timer()
    timer.start()

    params = logrank_test(
        design.time, design.event,
        design.group_codes, design.group_labels,
        rho=rho,
    )

    timer.stop()

    result = Result(
        params=params,
        info={"method": "Log-rank test", "rho": rho},
        timing=timer.result(),
        backend_name="cpu_logrank",
        warnings=(),
    )

    return LogRankSolution(_result=result)


def coxph(
    time,
    event,
    X,
    *,
    names: Sequence[str] | None = None,
    ties: Literal["efron", "breslow"] = "efron",
    tol: float = COX_NEWTON_RAPHSON.tol,
    max_iter: int = COX_NEWTON_RAPHSON.max_iter,
    conf_level: float = 0.95,
    encoding: DesignEncoding | None = None,
) -> CoxSolution:
    """Cox proportional hazards model.

    Matches R's survival::coxph(). Categorical covariates must already
    be dummy-coded against their reference level (see coxph_frame).

    Parameters
    ----------
    time : array-like
        Time to event or censoring.
    event : array-like
        Event indicator (1=event, 0=censored).
    X : array-like
        Covariate matrix (n, p). No intercept column; the Cox model has none.
    names : sequence of str or None
        Column names; default x0, x1, ...
    ties : str
        Method for handling tied event times: "efron" (default) or "breslow".
    tol : float
        Convergence tolerance for Newton-Raphson.
    max_iter : int
        Maximum Newton-Raphson iterations.
    conf_level : float
        Confidence level of the hazard-ratio intervals.
    encoding : DesignEncoding or None
        Encoding that produced X, used to encode prediction grids.

    Returns
    -------
    CoxSolution

    Raises
    ------
    InsufficientEventsError
        If every subject is censored.
    FitDidNotConvergeError
        If Newton-Raphson fails to converge within max_iter.
    """
    design = SurvivalDesign.for_survival(time, event, X)

    if design.X is None or design.p == 0:
        raise ValidationError("X (covariates) is required for coxph()")

    if ties not in ("efron", "breslow"):
        raise ValueError(
            f"ties must be 'efron' or 'breslow', got '{ties}'"
        )

    if max_iter < 1:
        raise ValueError(f"max_iter must be >= 1, got {max_iter}")

    _check_conf(conf_level)

    if names is None:
        names = tuple(f"x{i}" for i in range(design.p))
    names = tuple(str(n) for n in names)
    if len(names) != design.p:
        raise ValidationError(
            f"names has {len(names)} entries, X has {design.p} columns"
        )

    check_no_zero_variance_columns(design.X, "X")
    check_column_rank(design.X, "X")

    timer = Timer()
    timer.start()

    params = cox_fit(
        design.time, design.event, design.X,
        names=names,
        ties=ties,
        tol=tol,
        max_iter=max_iter,
        max_step=COX_NEWTON_RAPHSON.max_step,
        conf_level=conf_level,
        encoding=encoding,
        timer=timer,
    )

    timer.stop()

    warnings_list = []
    large = [n for n, b in zip(params.names, params.coefficients) if abs(b) > 10]
    if large:
        warnings_list.append(
            f"Coefficient(s) {large} may be infinite (monotone likelihood)"
        )

    result = Result(
        params=params,
        info={
            "method": "Cox PH",
            "ties": ties,
            "n_iter": params.n_iter,
        },
        timing=timer.result(),
        backend_name="cpu_cox",
        warnings=tuple(warnings_list),
    )

    return CoxSolution(_result=result)


def coxph_frame(
    data: SubjectTable | pd.DataFrame,
    covariates: Sequence[str],
    *,
    levels: Mapping[str, Sequence[Any]] | None = None,
    time: str = TIME_COLUMN,
    event: str = EVENT_COLUMN,
    ties: Literal["efron", "breslow"] = "efron",
    tol: float = COX_NEWTON_RAPHSON.tol,
    max_iter: int = COX_NEWTON_RAPHSON.max_iter,
    conf_level: float = 0.95,
) -> CoxSolution:
    """Cox model on named columns of a table.

    Equivalent of R's coxph(Surv(time, event) ~ a + b, data=...).
    Categorical columns are dummy-coded; ``levels`` fixes a factor's
    level order, the first level being the reference.

    Parameters
    ----------
    data : SubjectTable or pd.DataFrame
        Subjects with time, event and covariate columns.
    covariates : sequence of str
        Model terms, in order.
    levels : mapping or None
        Per-covariate level order, e.g. {"group": ["Isotype", "ICB"]}.

    Returns
    -------
    CoxSolution
        With the DesignEncoding attached for prediction.
    """
    frame = data.frame if isinstance(data, SubjectTable) else data

    if len(covariates) == 0:
        raise ValidationError("coxph_frame needs at least one covariate")

    for col in (time, event):
        if col not in frame.columns:
            raise ValidationError(
                f"column '{col}' not found. Available: {list(frame.columns)}"
            )

    encoding = DesignEncoding.from_frame(frame, list(covariates), levels=levels)
    X = encoding.encode(frame)

    return coxph(
        frame[time].to_numpy(dtype=np.float64),
        frame[event].to_numpy(dtype=np.float64),
        X,
        names=encoding.column_names,
        ties=ties,
        tol=tol,
        max_iter=max_iter,
        conf_level=conf_level,
        encoding=encoding,
    )
