"""
Tests for coxph() matching R survival::coxph().

R reference code:
    library(survival)
    coxph(Surv(time, event) ~ x1 + x2, data=...)
"""

import warnings

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose
from scipy import stats

from cohortsurv.core.exceptions import (
    DimensionError,
    FitDidNotConvergeError,
    InsufficientEventsError,
    UnknownCovariateLevelError,
    ValidationError,
)
from cohortsurv.data import read_subjects
from cohortsurv.survival import (
    CoxSolution,
    HazardRatio,
    coxph,
    coxph_frame,
    survdiff,
)


# ── Fixtures ─────────────────────────────────────────────────────────

# Two-covariate example
# R:
#   time <- c(3, 5, 7, 11, 13, 15, 2, 4, 6, 8,
#             10, 12, 14, 16, 18, 20, 1, 9, 17, 19)
#   event <- c(1, 1, 0, 1, 1, 0, 1, 0, 1, 1,
#              0, 1, 1, 0, 1, 1, 1, 1, 0, 1)
#   x1 <- c(0.5, 1.2, -0.3, 0.8, -0.5, 1.0, -1.2, 0.3, 0.7, -0.8,
#           1.5, -0.2, 0.4, -1.0, 0.9, -0.6, 1.1, -0.4, 0.2, -0.1)
#   x2 <- c(1, 0, 1, 0, 1, 1, 0, 1, 0, 1,
#           0, 1, 0, 1, 1, 0, 0, 1, 0, 1)
#   coxph(Surv(time, event) ~ x1 + x2)
TWO_COV_TIME = np.array([3, 5, 7, 11, 13, 15, 2, 4, 6, 8,
                          10, 12, 14, 16, 18, 20, 1, 9, 17, 19],
                         dtype=np.float64)
TWO_COV_EVENT = np.array([1, 1, 0, 1, 1, 0, 1, 0, 1, 1,
                           0, 1, 1, 0, 1, 1, 1, 1, 0, 1],
                          dtype=np.float64)
TWO_COV_X = np.column_stack([
    [0.5, 1.2, -0.3, 0.8, -0.5, 1.0, -1.2, 0.3, 0.7, -0.8,
     1.5, -0.2, 0.4, -1.0, 0.9, -0.6, 1.1, -0.4, 0.2, -0.1],
    [1, 0, 1, 0, 1, 1, 0, 1, 0, 1,
     0, 1, 0, 1, 1, 0, 0, 1, 0, 1],
]).astype(np.float64)

# Two arms without tied event times (the 6 and 10 ties are event vs censoring)
ARM_TIME = np.array([6, 7, 10, 15, 16, 22, 23, 6, 9, 10, 11, 17, 19, 20],
                    dtype=np.float64)
ARM_EVENT = np.array([1, 1, 1, 1, 0, 1, 1, 0, 1, 0, 1, 1, 1, 1],
                     dtype=np.float64)
ARM_X = np.array([0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1], dtype=np.float64)

# Tied event times
# R:
#   time <- c(1, 1, 2, 2, 3, 3, 4, 4)
#   event <- c(1, 1, 1, 1, 0, 1, 0, 1)
#   x <- c(0, 1, 0, 1, 0, 1, 0, 1)
TIED_TIME = np.array([1, 1, 2, 2, 3, 3, 4, 4], dtype=np.float64)
TIED_EVENT = np.array([1, 1, 1, 1, 0, 1, 0, 1], dtype=np.float64)
TIED_X = np.array([[0], [1], [0], [1], [0], [1], [0], [1]], dtype=np.float64)


class TestCoxPHBasic:
    """Basic Cox PH model fitting."""

    def test_two_covariates(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)

        assert isinstance(result, CoxSolution)
        assert result.converged is True
        assert result.n_observations == 20
        assert result.n_events == 14
        assert result.ties == "efron"
        assert result.names == ("x0", "x1")
        assert len(result.coefficients) == 2
        assert result.covariance.shape == (2, 2)

    def test_shifting_covariates_leaves_fit_unchanged(self):
        """Adding a constant to a column cancels from every risk set."""
        base = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        shifted = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X + [100.0, -3.0])

        assert_allclose(shifted.coefficients, base.coefficients, rtol=1e-8)
        assert_allclose(shifted.standard_errors, base.standard_errors, rtol=1e-8)
        assert shifted.loglik[1] == pytest.approx(base.loglik[1], rel=1e-10)

    def test_recovers_hazard_ratio(self, synthetic_cohort):
        """Exponential arms with true HR 2."""
        time, event, x = synthetic_cohort
        result = coxph(time, event, x, names=["arm"])

        assert result.names == ("arm",)
        assert 1.4 < result.hazard_ratios[0] < 2.9
        assert result.p_values[0] < 1e-3
        assert result.concordance > 0.5

    def test_hazard_ratios_consistent(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        assert_allclose(result.hazard_ratios, np.exp(result.coefficients), rtol=1e-12)

    def test_z_and_p_values_consistent(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        expected_z = result.coefficients / result.standard_errors
        assert_allclose(result.z_statistics, expected_z, rtol=1e-10)
        assert_allclose(result.p_values, stats.chi2.sf(expected_z ** 2, 1), rtol=1e-10)

    def test_standard_errors_from_covariance(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        assert_allclose(result.standard_errors, np.sqrt(np.diag(result.covariance)))
        assert_allclose(result.covariance, result.covariance.T, atol=1e-12)

    def test_loglik_model_ge_null(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        assert result.loglik[1] >= result.loglik[0] - 1e-10

        stat, df, p = result.lr_test
        assert stat == pytest.approx(2 * (result.loglik[1] - result.loglik[0]))
        assert df == 2
        assert 0 <= p <= 1

    def test_strong_signal_positive_coefficient(self, rng):
        n = 100
        x = rng.standard_normal((n, 1))
        time = rng.exponential(np.exp(-x.ravel()))
        event = np.ones(n)

        result = coxph(time, event, x)
        assert result.coefficients[0] > 0
        assert result.concordance > 0.6

    def test_list_inputs(self):
        result = coxph([1, 2, 3, 4, 5], [1, 1, 0, 1, 1], [[1], [3], [2], [5], [4]])
        assert result.n_observations == 5

    def test_1d_covariate(self):
        result = coxph(ARM_TIME, ARM_EVENT, ARM_X)
        assert len(result.coefficients) == 1


class TestCoxPHTests:
    """Global tests: likelihood ratio, Wald and score."""

    def test_score_equals_logrank_without_ties(self):
        """With one binary covariate and no tied events, the score test is
        the log-rank test.

        R:
            coxph(Surv(time, event) ~ x)$score
            survdiff(Surv(time, event) ~ x)$chisq
        """
        cox = coxph(ARM_TIME, ARM_EVENT, ARM_X)
        logrank = survdiff(ARM_TIME, ARM_EVENT, ARM_X)

        assert cox.score_test[0] == pytest.approx(logrank.statistic, rel=1e-10)
        assert cox.score_test[2] == pytest.approx(logrank.p_value, rel=1e-8)

    def test_wald_single_covariate_is_z_squared(self):
        result = coxph(ARM_TIME, ARM_EVENT, ARM_X)
        stat, df, _ = result.wald_test
        assert df == 1
        assert stat == pytest.approx(result.z_statistics[0] ** 2, rel=1e-8)


class TestCoxPHConfidenceIntervals:

    def test_ci_formula(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        z = stats.norm.ppf(0.975)
        ci = result.confidence_intervals

        assert ci.shape == (2, 2)
        assert_allclose(ci[:, 0], np.exp(result.coefficients - z * result.standard_errors))
        assert_allclose(ci[:, 1], np.exp(result.coefficients + z * result.standard_errors))

    def test_ci_brackets_hazard_ratio(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        ci = result.confidence_intervals
        assert np.all(ci[:, 0] < result.hazard_ratios)
        assert np.all(result.hazard_ratios < ci[:, 1])

    def test_conf_level_90_narrower(self):
        r95 = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        r90 = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X, conf_level=0.90)
        w95 = r95.confidence_intervals[:, 1] - r95.confidence_intervals[:, 0]
        w90 = r90.confidence_intervals[:, 1] - r90.confidence_intervals[:, 0]
        assert np.all(w90 < w95)

    def test_hazard_ratio_table(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X, names=["x1", "x2"])
        table = result.hazard_ratio_table()

        assert len(table) == 2
        assert all(isinstance(row, HazardRatio) for row in table)
        assert [row.covariate for row in table] == ["x1", "x2"]
        assert table[1].hazard_ratio == pytest.approx(result.hazard_ratios[1])
        assert table[0].ci_lower == pytest.approx(result.confidence_intervals[0, 0])
        assert table[0].p_value == pytest.approx(result.p_values[0])


class TestCoxPHTies:
    """Tied event time handling."""

    def test_no_ties_efron_equals_breslow(self):
        efron = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X, ties="efron")
        breslow = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X, ties="breslow")
        assert_allclose(efron.coefficients, breslow.coefficients, rtol=1e-8)
        assert efron.loglik[1] == pytest.approx(breslow.loglik[1], rel=1e-10)

    def test_tied_fit_reference_values(self):
        """Closed form for the tied example.

        Every risk set holds equal numbers at x=0 and x=1, so both the
        Breslow and the Efron denominators are multiples of (1 + e^b):

            loglik(b) = 4b - 6 log(1 + e^b) + const

        giving b = log 2, information 6 * 2/9 = 4/3 and se = sqrt(3/4).
        Constants: Breslow -log(8^2 6^2 4 2), Efron -log(8 7 6 5 4 2).

        R:
            coxph(Surv(time, event) ~ x, ties="efron")    # coef 0.693, se 0.866
            coxph(Surv(time, event) ~ x, ties="breslow")  # coef 0.693, se 0.866
        """
        efron = coxph(TIED_TIME, TIED_EVENT, TIED_X, ties="efron")
        breslow = coxph(TIED_TIME, TIED_EVENT, TIED_X, ties="breslow")

        for fit in (efron, breslow):
            assert fit.coefficients[0] == pytest.approx(np.log(2.0), abs=1e-6)
            assert fit.standard_errors[0] == pytest.approx(np.sqrt(0.75), rel=1e-5)
            assert fit.hazard_ratios[0] == pytest.approx(2.0, rel=1e-5)
            assert fit.score_test[0] == pytest.approx(2.0 / 3.0, rel=1e-10)
            assert fit.lr_test[0] == pytest.approx(
                2 * (4 * np.log(2) - 6 * np.log(3) + 6 * np.log(2)), rel=1e-6
            )

        assert efron.ties == "efron"
        assert breslow.ties == "breslow"
        assert efron.loglik[1] == pytest.approx(
            -np.log(8 * 7 * 6 * 5 * 4 * 2) + 4 * np.log(2) - 6 * np.log(1.5), rel=1e-9
        )
        assert breslow.loglik[1] == pytest.approx(
            -(2 * np.log(8) + 2 * np.log(6) + np.log(4) + np.log(2))
            + 4 * np.log(2) - 6 * np.log(1.5),
            rel=1e-9,
        )

    def test_efron_loglik_at_zero(self):
        """Efron null log-likelihood by hand.

        t=1: 8 at risk, 2 events -> log 8 + log(8 - 1)
        t=2: 6 at risk, 2 events -> log 6 + log(6 - 1)
        t=3: 4 at risk, 1 event  -> log 4
        t=4: 2 at risk, 1 event  -> log 2
        """
        result = coxph(TIED_TIME, TIED_EVENT, TIED_X, ties="efron")
        expected = -np.log(8 * 7 * 6 * 5 * 4 * 2)
        assert result.loglik[0] == pytest.approx(expected, rel=1e-12)

    def test_breslow_loglik_at_zero(self):
        result = coxph(TIED_TIME, TIED_EVENT, TIED_X, ties="breslow")
        expected = -(2 * np.log(8) + 2 * np.log(6) + np.log(4) + np.log(2))
        assert result.loglik[0] == pytest.approx(expected, rel=1e-12)


def _efron_loglik(beta, time, event, X):
    """Efron partial log-likelihood, one risk set at a time."""
    eta = X @ beta
    risk = np.exp(eta)
    loglik = 0.0
    for t in np.unique(time[event == 1]):
        dead = (time == t) & (event == 1)
        d = int(dead.sum())
        at_risk = risk[time >= t].sum()
        tied = risk[dead].sum()
        loglik += eta[dead].sum()
        loglik -= sum(np.log(at_risk - (l / d) * tied) for l in range(d))
    return loglik


def _numeric_hessian(f, x, h=1e-4):
    p = len(x)
    H = np.empty((p, p))
    for i in range(p):
        for j in range(p):
            ei = np.eye(p)[i] * h
            ej = np.eye(p)[j] * h
            H[i, j] = (f(x + ei + ej) - f(x + ei - ej)
                       - f(x - ei + ej) + f(x - ei - ej)) / (4 * h * h)
    return H


class TestCoxPHReference:
    """Two-covariate fit checked against a direct risk-set-by-risk-set
    evaluation of the partial likelihood."""

    def _loglik(self, beta):
        return _efron_loglik(beta, TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)

    def test_loglik_matches_direct_evaluation(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        assert result.loglik[0] == pytest.approx(self._loglik(np.zeros(2)), rel=1e-10)
        assert result.loglik[1] == pytest.approx(
            self._loglik(result.coefficients), rel=1e-10
        )

    def test_coefficients_maximize_loglik(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        beta = result.coefficients
        h = 1e-5
        gradient = np.array([
            (self._loglik(beta + h * e) - self._loglik(beta - h * e)) / (2 * h)
            for e in np.eye(2)
        ])
        assert_allclose(gradient, 0.0, atol=1e-5)

    def test_covariance_is_inverse_information(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        info = -_numeric_hessian(self._loglik, result.coefficients)
        assert_allclose(result.covariance, np.linalg.inv(info), rtol=1e-4)


class TestCoxPHConvergence:
    """Non-convergence raises; there is no partial result."""

    def test_failed_step_halving_raises(self, monkeypatch):
        from cohortsurv.survival import _cox

        derivatives = _cox._derivatives

        def worse_away_from_zero(beta, rs, ties):
            loglik, score, info = derivatives(beta, rs, ties)
            if np.any(beta != 0):
                loglik -= 1000.0
            return loglik, score, info

        monkeypatch.setattr(_cox, "_derivatives", worse_away_from_zero)
        with pytest.raises(FitDidNotConvergeError) as excinfo:
            coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)

        err = excinfo.value
        assert err.reason == "step_halving"
        assert err.iterations == 0
        assert_allclose(err.coefficients, [0.0, 0.0])

    def test_separated_fit_without_overflow_warning(self):
        """Every x=1 subject fails before every x=0 subject."""
        time = np.arange(1.0, 9.0)
        event = np.ones(8)
        x = np.array([1, 1, 1, 1, 0, 0, 0, 0], dtype=np.float64)

        with warnings.catch_warnings():
            warnings.simplefilter("error", RuntimeWarning)
            result = coxph(time, event, x, max_iter=100)

        assert result.coefficients[0] > 10
        assert result.confidence_intervals[0, 1] >= result.hazard_ratios[0]

    def test_iteration_cap_raises(self):
        with pytest.raises(FitDidNotConvergeError) as excinfo:
            coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X, max_iter=1)

        err = excinfo.value
        assert err.iterations == 1
        assert err.reason == "max_iterations"
        assert err.coefficients.shape == (2,)
        assert np.isfinite(err.loglik)

    def test_n_iter_reported(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        assert 1 <= result.n_iter <= 20

    def test_invalid_max_iter(self):
        with pytest.raises(ValueError, match="max_iter"):
            coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X, max_iter=0)


class TestCoxPHBaseline:
    """Breslow baseline hazard."""

    def test_baseline_at_event_times(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        base = result.baseline_survival()

        assert_allclose(base.time, np.unique(TWO_COV_TIME[TWO_COV_EVENT == 1]))
        assert_allclose(base.cumulative_hazard, np.cumsum(base.hazard))
        assert_allclose(base.survival, np.exp(-base.cumulative_hazard))
        assert np.all(np.diff(base.survival) <= 0)

    def test_breslow_formula(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        base = result.baseline_survival()
        risk = np.exp(TWO_COV_X @ result.coefficients)

        for j, t in enumerate(base.time):
            d = np.sum((TWO_COV_TIME == t) & (TWO_COV_EVENT == 1))
            at_risk = risk[TWO_COV_TIME >= t].sum()
            assert base.hazard[j] == pytest.approx(d / at_risk, rel=1e-10)


class TestCoxPHValidation:
    """Input validation."""

    def test_no_covariates(self):
        with pytest.raises(ValidationError, match="X"):
            coxph([1, 2, 3], [1, 1, 1], None)

    def test_invalid_ties(self):
        with pytest.raises(ValueError, match="ties"):
            coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X, ties="exact")

    def test_negative_time_rejected(self):
        with pytest.raises(ValidationError, match="non-negative"):
            coxph([-1, 2, 3], [1, 1, 1], [[1], [2], [3]])

    def test_invalid_event_values(self):
        with pytest.raises(ValidationError, match="0 and 1"):
            coxph([1, 2, 3], [0, 1, 2], [[1], [2], [3]])

    def test_x_row_mismatch(self):
        with pytest.raises(DimensionError, match="Inconsistent lengths"):
            coxph([1, 2, 3], [1, 1, 1], [[1, 2], [3, 4]])

    def test_constant_column(self):
        with pytest.raises(ValidationError, match="zero variance"):
            coxph([1, 2, 3, 4], [1, 1, 1, 1], [[1, 0], [1, 1], [1, 0], [1, 1]])

    def test_collinear_columns(self):
        X = np.column_stack([TWO_COV_X[:, 0], 2 * TWO_COV_X[:, 0]])
        with pytest.raises(ValidationError, match="rank-deficient"):
            coxph(TWO_COV_TIME, TWO_COV_EVENT, X)

    def test_names_length(self):
        with pytest.raises(ValidationError, match="names"):
            coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X, names=["only_one"])

    def test_all_censored(self):
        with pytest.raises(InsufficientEventsError) as excinfo:
            coxph([1, 2, 3, 4, 5], np.zeros(5), [[1], [2], [3], [4], [5]])
        assert excinfo.value.n_observations == 5


class TestCoxPHSolution:
    """CoxSolution properties and methods."""

    def test_repr(self):
        r = repr(coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X))
        assert "CoxSolution" in r
        assert "events=" in r
        assert "concordance=" in r

    def test_summary(self):
        s = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X).summary()

        assert "Call: coxph()" in s
        assert "number of events" in s
        assert "exp(coef)" in s
        assert "se(coef)" in s
        assert "Pr(>|z|)" in s
        assert "Concordance=" in s
        assert "Likelihood ratio test=" in s

    def test_backend_and_timing(self):
        result = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)
        assert result.backend_name == "cpu_cox"
        assert "total_seconds" in result.timing
        assert "newton_raphson" in result.timing
        assert "baseline_hazard" in result.timing


class TestCoxPHFrame:
    """coxph_frame(): named, dummy-coded covariates."""

    @pytest.fixture
    def frame(self):
        return pd.DataFrame({
            "time": TWO_COV_TIME,
            "event": TWO_COV_EVENT,
            "dose": TWO_COV_X[:, 0],
            "arm": np.where(TWO_COV_X[:, 1] == 1, "ICB", "Isotype"),
        })

    def test_matches_matrix_fit(self, frame):
        by_frame = coxph_frame(frame, ["dose", "arm"], levels={"arm": ["Isotype", "ICB"]})
        by_matrix = coxph(TWO_COV_TIME, TWO_COV_EVENT, TWO_COV_X)

        assert by_frame.names == ("dose", "arm[ICB]")
        assert_allclose(by_frame.coefficients, by_matrix.coefficients, rtol=1e-8)

    def test_reference_level_flips_sign(self, frame):
        a = coxph_frame(frame, ["arm"], levels={"arm": ["Isotype", "ICB"]})
        b = coxph_frame(frame, ["arm"], levels={"arm": ["ICB", "Isotype"]})

        assert b.names == ("arm[Isotype]",)
        assert b.coefficients[0] == pytest.approx(-a.coefficients[0], rel=1e-8)

    def test_default_levels_sorted(self, frame):
        result = coxph_frame(frame, ["arm"])
        assert result.names == ("arm[Isotype]",)
        assert result.encoding.term("arm").reference == "ICB"

    def test_unknown_declared_level(self, frame):
        with pytest.raises(UnknownCovariateLevelError):
            coxph_frame(frame, ["arm"], levels={"arm": ["Isotype", "aPD1"]})

    def test_missing_column(self, frame):
        with pytest.raises(ValidationError, match="not found"):
            coxph_frame(frame, ["weight"])

    def test_missing_covariate_value(self, frame):
        frame.loc[3, "dose"] = np.nan
        with pytest.raises(ValidationError, match="missing"):
            coxph_frame(frame, ["dose"])

    def test_from_subject_table(self, mouse_tsv):
        table = read_subjects(mouse_tsv, status_col="censor", id_col="Mouse ID")
        result = coxph_frame(table, ["group", "weight_g"],
                             levels={"group": ["Isotype", "ICB"]})

        assert result.names == ("group[ICB]", "weight_g")
        assert result.n_observations == 12
        assert result.n_events == 8
        # ICB mice survive longer
        assert result.hazard_ratios[0] < 1
