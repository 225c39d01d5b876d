"""
End-to-end cohort comparison.

Runs the usual sequence on a labeled subject table:

    1. Kaplan-Meier curve per group
    2. log-rank test across groups
    3. Cox model on the group factor (plus optional covariates)

using one level order throughout, so the first level is both the first
curve and the Cox reference.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Sequence

from cohortsurv.core.exceptions import ValidationError
from cohortsurv.data.loader import SubjectTable
from cohortsurv.survival.solvers import (
    coxph_frame,
    kaplan_meier_by_group,
    survdiff,
)
from cohortsurv.survival.solution import (
    CoxSolution,
    GroupedKMSolution,
    LogRankSolution,
)


@dataclass(frozen=True)
class CohortComparison:
    """Curves, log-rank test and Cox model for one grouping."""

    group: str
    levels: tuple[Any, ...]
    curves: GroupedKMSolution
    logrank: LogRankSolution
    cox: CoxSolution

    @property
    def p_value(self) -> float:
        """Log-rank p-value."""
        return self.logrank.p_value

    def summary(self) -> str:
        return "\n\n".join([
            f"Grouping: {self.group} (levels: {', '.join(map(str, self.levels))})",
            self.curves.summary(),
            self.logrank.summary(),
            self.cox.summary(),
        ])


def compare_cohorts(
    table: SubjectTable,
    group: str,
    *,
    levels: Sequence[Any] | None = None,
    covariates: Sequence[str] = (),
    conf_level: float = 0.95,
    conf_type: Literal["log", "plain", "log-log"] = "log",
    ties: Literal["efron", "breslow"] = "efron",
    rho: float = 0.0,
) -> CohortComparison:
    """Compare survival between the groups of ``table[group]``.

    Parameters
    ----------
    table : SubjectTable
        Validated subjects.
    group : str
        Grouping column (e.g. the output column of label_cohort).
    levels : sequence or None
        Group order; the first level is the Cox reference.
    covariates : sequence of str
        Extra Cox terms adjusted for alongside the group.

    Returns
    -------
    CohortComparison
    """
    if group in covariates:
        raise ValidationError(f"'{group}' is the grouping column; drop it from covariates")

    labels = table.column(group).to_numpy()

    curves = kaplan_meier_by_group(
        table.time, table.event, labels,
        levels=levels,
        conf_level=conf_level,
        conf_type=conf_type,
    )
    ordered = curves.levels

    logrank = survdiff(table.time, table.event, labels, rho=rho, levels=ordered)

    cox = coxph_frame(
        table,
        [group, *covariates],
        levels={group: ordered},
        ties=ties,
        conf_level=conf_level,
    )

    return CohortComparison(
        group=group,
        levels=ordered,
        curves=curves,
        logrank=logrank,
        cox=cox,
    )
