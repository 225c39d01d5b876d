"""
Solution wrappers for survival analysis results.

Each Solution wraps a Result[Params] and exposes user-friendly properties
with R-style summary() methods.
"""

from __future__ import annotations

from typing import Any, Iterator

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from cohortsurv.core.result import Result
from cohortsurv.survival._common import (
    BaselineHazard,
    CoxParams,
    HazardRatio,
    KMParams,
    LogRankParams,
)
from cohortsurv.survival._km import quantile_time, step_lookup
from cohortsurv.survival._predict import PredictedCurves, predict_curves


def _fmt_time(value: float | None) -> str:
    return f"{value:.4g}" if value is not None else "not reached"


class KMSolution:
    """Kaplan-Meier survival curve solution.

    Properties mirror R's survfit() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[KMParams]) -> None:
        self._result = _result

    # -- Properties delegating to KMParams --

    @property
    def time(self) -> NDArray:
        """Distinct event times."""
        return self._result.params.time

    @property
    def survival(self) -> NDArray:
        """S(t) at each event time."""
        return self._result.params.survival

    @property
    def n_risk(self) -> NDArray:
        """Number at risk just before each event time."""
        return self._result.params.n_risk

    @property
    def n_events(self) -> NDArray:
        """Number of events at each event time."""
        return self._result.params.n_events

    @property
    def n_censored(self) -> NDArray:
        """Number censored from each event time up to the next."""
        return self._result.params.n_censored

    @property
    def se(self) -> NDArray:
        """Greenwood standard error of S(t)."""
        return self._result.params.se

    @property
    def ci_lower(self) -> NDArray:
        return self._result.params.ci_lower

    @property
    def ci_upper(self) -> NDArray:
        return self._result.params.ci_upper

    @property
    def conf_level(self) -> float:
        return self._result.params.conf_level

    @property
    def conf_type(self) -> str:
        return self._result.params.conf_type

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_events_total(self) -> int:
        return self._result.params.n_events_total

    @property
    def median_survival(self) -> float | None:
        """Median survival time; None when S(t) never reaches 0.5."""
        return quantile_time(self.time, self.survival, 0.5)

    @property
    def median_ci(self) -> tuple[float | None, float | None]:
        """Confidence limits of the median (None where not reached)."""
        return (
            quantile_time(self.time, self.ci_lower, 0.5),
            quantile_time(self.time, self.ci_upper, 0.5),
        )

    def survival_at(self, t) -> NDArray:
        """Evaluate the step function S(t); 1.0 before the first event."""
        return step_lookup(self.time, self.survival, t, before=1.0)

    def risk_table(self, times) -> NDArray:
        """Number of subjects at risk (time >= t) at each requested time."""
        observed = self._result.params.observed_time
        times = np.asarray(times, dtype=np.float64)
        return len(observed) - np.searchsorted(observed, times, side="left")

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def summary(self) -> str:
        """R-style summary of Kaplan-Meier fit."""
        lines = []
        lines.append("Call: kaplan_meier()")
        lines.append("")
        lines.append(
            f"  n={self.n_observations}, "
            f"events={self.n_events_total}"
        )
        lines.append("")

        lower, upper = self.median_ci
        lines.append(
            f"  median survival = {_fmt_time(self.median_survival)} "
            f"({int(self.conf_level * 100)}% CI {_fmt_time(lower)}, {_fmt_time(upper)})"
        )
        lines.append("")

        if len(self.time) == 0:
            lines.append("  no events: S(t) = 1 over the observed follow-up")
            return "\n".join(lines)

        ci_pct = int(self.conf_level * 100)
        lines.append(
            f"  {'time':>8s}  {'n.risk':>8s}  {'n.event':>8s}  "
            f"{'survival':>10s}  {'se':>10s}  "
            f"{f'lower {ci_pct}%':>10s}  {f'upper {ci_pct}%':>10s}"
        )

        m = len(self.time)
        show = min(m, 20)
        for i in range(show):
            lines.append(
                f"  {self.time[i]:8.4g}  {self.n_risk[i]:8.0f}  "
                f"{self.n_events[i]:8.0f}  "
                f"{self.survival[i]:10.6f}  {self.se[i]:10.6f}  "
                f"{self.ci_lower[i]:10.6f}  {self.ci_upper[i]:10.6f}"
            )
        if m > 20:
            lines.append(f"  ... ({m - 20} more rows)")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"KMSolution(n={self.n_observations}, "
            f"events={self.n_events_total}, "
            f"median={self.median_survival})"
        )


class GroupedKMSolution:
    """One Kaplan-Meier curve per group, in analysis level order."""

    __slots__ = ('_curves',)

    def __init__(self, curves: dict[Any, KMSolution]) -> None:
        self._curves = dict(curves)

    @property
    def levels(self) -> tuple[Any, ...]:
        return tuple(self._curves)

    def __getitem__(self, level: Any) -> KMSolution:
        try:
            return self._curves[level]
        except KeyError:
            raise KeyError(
                f"no group {level!r}. Available: {list(self._curves)}"
            ) from None

    def __iter__(self) -> Iterator[Any]:
        return iter(self._curves)

    def __len__(self) -> int:
        return len(self._curves)

    def items(self):
        return self._curves.items()

    def medians(self) -> dict[Any, float | None]:
        return {level: km.median_survival for level, km in self._curves.items()}

    def risk_table(self, times) -> dict[Any, NDArray]:
        """Numbers at risk per group at common times."""
        return {level: km.risk_table(times) for level, km in self._curves.items()}

    def summary(self) -> str:
        blocks = []
        for level, km in self._curves.items():
            blocks.append(f"group={level}")
            blocks.append(km.summary())
            blocks.append("")
        return "\n".join(blocks).rstrip()

    def __repr__(self) -> str:
        return f"GroupedKMSolution(levels={list(self._curves)})"


class LogRankSolution:
    """Log-rank test solution.

    Properties mirror R's survdiff() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[LogRankParams]) -> None:
        self._result = _result

    @property
    def statistic(self) -> float:
        return self._result.params.statistic

    @property
    def df(self) -> int:
        return self._result.params.df

    @property
    def p_value(self) -> float:
        return self._result.params.p_value

    @property
    def n_groups(self) -> int:
        return self._result.params.n_groups

    @property
    def observed(self) -> NDArray:
        return self._result.params.observed

    @property
    def expected(self) -> NDArray:
        return self._result.params.expected

    @property
    def variance(self) -> NDArray:
        return self._result.params.variance

    @property
    def n_per_group(self) -> NDArray:
        return self._result.params.n_per_group

    @property
    def rho(self) -> float:
        return self._result.params.rho

    @property
    def group_labels(self) -> tuple[Any, ...]:
        return self._result.params.group_labels

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    def summary(self) -> str:
        """R-style summary of log-rank test."""
        lines = []
        lines.append("Call: survdiff()")
        lines.append("")

        lines.append(
            f"  {'':>12s}  {'N':>6s}  {'Observed':>10s}  {'Expected':>10s}  "
            f"{'(O-E)^2/E':>10s}  {'(O-E)^2/V':>10s}"
        )
        for i in range(self.n_groups):
            diff2 = (self.observed[i] - self.expected[i]) ** 2
            oe = diff2 / self.expected[i] if self.expected[i] > 0 else 0.0
            ov = diff2 / self.variance[i, i] if self.variance[i, i] > 0 else 0.0
            label = str(self.group_labels[i])
            lines.append(
                f"  {label:>12s}  {self.n_per_group[i]:6.0f}  "
                f"{self.observed[i]:10.1f}  {self.expected[i]:10.1f}  "
                f"{oe:10.3f}  {ov:10.3f}"
            )

        lines.append("")
        lines.append(
            f"  Chisq= {self.statistic:.4f} on {self.df} degrees of freedom, "
            f"p= {self.p_value:.4g}"
        )

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"LogRankSolution(chisq={self.statistic:.4f}, "
            f"df={self.df}, p={self.p_value:.4g})"
        )


class CoxSolution:
    """Cox proportional hazards solution.

    Properties mirror R's coxph() output. Only successful fits exist as
    solutions: non-convergence raises FitDidNotConvergeError instead.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[CoxParams]) -> None:
        self._result = _result

    @property
    def names(self) -> tuple[str, ...]:
        return self._result.params.names

    @property
    def coefficients(self) -> NDArray:
        return self._result.params.coefficients

    @property
    def covariance(self) -> NDArray:
        return self._result.params.covariance

    @property
    def hazard_ratios(self) -> NDArray:
        return self._result.params.hazard_ratios

    @property
    def standard_errors(self) -> NDArray:
        return self._result.params.standard_errors

    @property
    def z_statistics(self) -> NDArray:
        return self._result.params.z_statistics

    @property
    def p_values(self) -> NDArray:
        return self._result.params.p_values

    @property
    def confidence_intervals(self) -> NDArray:
        """(p, 2) hazard-ratio confidence limits."""
        params = self._result.params
        return np.column_stack([params.ci_lower, params.ci_upper])

    @property
    def conf_level(self) -> float:
        return self._result.params.conf_level

    @property
    def loglik(self) -> tuple[float, float]:
        return self._result.params.loglik

    @property
    def lr_test(self) -> tuple[float, int, float]:
        """Likelihood-ratio test: (statistic, df, p-value)."""
        stat = 2.0 * (self.loglik[1] - self.loglik[0])
        df = len(self.coefficients)
        return stat, df, float(stats.chi2.sf(stat, df))

    @property
    def wald_test(self) -> tuple[float, int, float]:
        stat = self._result.params.wald_test
        df = len(self.coefficients)
        return stat, df, float(stats.chi2.sf(stat, df))

    @property
    def score_test(self) -> tuple[float, int, float]:
        stat = self._result.params.score_test
        df = len(self.coefficients)
        return stat, df, float(stats.chi2.sf(stat, df))

    @property
    def concordance(self) -> float:
        return self._result.params.concordance

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_iter(self) -> int:
        return self._result.params.n_iter

    @property
    def converged(self) -> bool:
        return self._result.params.converged

    @property
    def ties(self) -> str:
        return self._result.params.ties

    @property
    def encoding(self):
        """DesignEncoding used at fit time (None for a raw matrix fit)."""
        return self._result.params.encoding

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def hazard_ratio_table(self) -> tuple[HazardRatio, ...]:
        """One HazardRatio record per design column (forest-plot input)."""
        params = self._result.params
        return tuple(
            HazardRatio(
                covariate=params.names[i],
                hazard_ratio=float(params.hazard_ratios[i]),
                ci_lower=float(params.ci_lower[i]),
                ci_upper=float(params.ci_upper[i]),
                p_value=float(params.p_values[i]),
            )
            for i in range(len(params.names))
        )

    def baseline_survival(self) -> BaselineHazard:
        """Breslow baseline hazard and survival of the reference subject."""
        return self._result.params.baseline

    def predict_survival(self, grid) -> PredictedCurves:
        """Survival curves for each row of a covariate grid.

        Parameters
        ----------
        grid : pd.DataFrame or array-like
            Raw covariate values (one row per what-if profile) encoded
            with the fit-time encoding, or an encoded (k, p) matrix.

        Raises
        ------
        UnknownCovariateLevelError
            If a factor level in the grid was not seen at fit time.
        """
        return predict_curves(self._result.params, grid)

    def summary(self) -> str:
        """R-style summary of Cox PH fit."""
        lines = []
        lines.append("Call: coxph()")
        lines.append("")
        lines.append(
            f"  n= {self.n_observations}, "
            f"number of events= {self.n_events}"
        )
        lines.append("")

        width = max([10] + [len(name) for name in self.names])
        lines.append(
            f"  {'':>{width}s}  {'coef':>10s}  {'exp(coef)':>10s}  "
            f"{'se(coef)':>10s}  {'z':>10s}  {'Pr(>|z|)':>12s}"
        )
        for i, name in enumerate(self.names):
            lines.append(
                f"  {name:>{width}s}  {self.coefficients[i]:10.6f}  "
                f"{self.hazard_ratios[i]:10.6f}  "
                f"{self.standard_errors[i]:10.6f}  "
                f"{self.z_statistics[i]:10.4f}  "
                f"{self.p_values[i]:12.4g}"
            )

        ci_pct = int(self.conf_level * 100)
        lines.append("")
        lines.append(
            f"  {'':>{width}s}  {'exp(coef)':>10s}  {'exp(-coef)':>10s}  "
            f"{f'lower .{ci_pct}':>10s}  {f'upper .{ci_pct}':>10s}"
        )
        ci = self.confidence_intervals
        for i, name in enumerate(self.names):
            lines.append(
                f"  {name:>{width}s}  {self.hazard_ratios[i]:10.4f}  "
                f"{1.0 / self.hazard_ratios[i]:10.4f}  "
                f"{ci[i, 0]:10.4f}  {ci[i, 1]:10.4f}"
            )

        lines.append("")
        lines.append(f"  Concordance= {self.concordance:.4f}")
        for label, (stat, df, p) in (
            ("Likelihood ratio test", self.lr_test),
            ("Wald test", self.wald_test),
            ("Score (logrank) test", self.score_test),
        ):
            lines.append(f"  {label}= {stat:.4f} on {df} df, p={p:.4g}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CoxSolution(n={self.n_observations}, "
            f"events={self.n_events}, "
            f"concordance={self.concordance:.4f})"
        )
