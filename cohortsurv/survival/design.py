"""
SurvivalDesign: immutable container for time-to-event data.

Wraps time, event indicator, optional covariates, and optional group
labels. Validates inputs at construction time; all downstream code
trusts clean data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
from numpy.typing import NDArray

from cohortsurv.core.exceptions import ValidationError
from cohortsurv.core.validation import (
    check_2d,
    check_array,
    check_consistent_length,
    check_finite,
)
from cohortsurv.data.encoding import FactorEncoding


@dataclass(frozen=True)
class SurvivalDesign:
    """Immutable survival data container.

    Parameters
    ----------
    time : NDArray
        Time to event or censoring. Non-negative and finite.
    event : NDArray
        Event indicator: 1 = event observed, 0 = censored.
    X : NDArray or None
        Covariate matrix (n, p). None for KM / log-rank.
    group_codes : NDArray or None
        Integer group index per subject (0-based, in ``group_labels`` order).
    group_labels : tuple
        Group labels in analysis order.
    """

    time: NDArray
    event: NDArray
    X: NDArray | None
    group_codes: NDArray | None
    group_labels: tuple[Any, ...]

    @classmethod
    def for_survival(
        cls,
        time,
        event,
        X=None,
        *,
        group=None,
        levels: Sequence[Any] | None = None,
    ) -> SurvivalDesign:
        """Create and validate survival data.

        Parameters
        ----------
        time : array-like
            Time to event or censoring.
        event : array-like
            Event indicator (0/1 or False/True).
        X : array-like or None
            Optional covariate matrix.
        group : array-like or None
            Optional group labels.
        levels : sequence or None
            Group order. Defaults to the sorted distinct labels; every
            observed label must be listed and every listed level observed.

        Returns
        -------
        SurvivalDesign

        Raises
        ------
        ValidationError
            If inputs are invalid.
        """
        time = check_array(time, "time").ravel()
        event = check_array(event, "event").ravel()

        n = len(time)

        if n == 0:
            raise ValidationError("time must have at least one observation")

        check_consistent_length(time, event, names=("time", "event"))
        check_finite(time, "time")
        check_finite(event, "event")

        if np.any(time < 0):
            raise ValidationError(
                f"time must be non-negative, got minimum {time.min()}"
            )

        unique_events = np.unique(event)
        if not np.all(np.isin(unique_events, [0.0, 1.0])):
            raise ValidationError(
                f"event must contain only 0 and 1, "
                f"got unique values: {unique_events}"
            )

        X_arr = None
        if X is not None:
            X_arr = check_array(X, "X")
            if X_arr.ndim == 1:
                X_arr = X_arr.reshape(-1, 1)
            check_2d(X_arr, "X")
            check_consistent_length(time, X_arr, names=("time", "X"))
            check_finite(X_arr, "X")

        codes = None
        labels: tuple[Any, ...] = ()
        if group is not None:
            group_arr = np.asarray(group, dtype=object).ravel()
            check_consistent_length(time, group_arr, names=("time", "group"))
            encoding = FactorEncoding.from_values("group", group_arr, levels=levels)
            codes = encoding.codes(group_arr)
            counts = np.bincount(codes, minlength=len(encoding.levels))
            empty = [lvl for lvl, c in zip(encoding.levels, counts) if c == 0]
            if empty:
                raise ValidationError(f"group level(s) {empty} have no subjects")
            labels = encoding.levels

        return cls(
            time=time,
            event=event,
            X=X_arr,
            group_codes=codes,
            group_labels=labels,
        )

    @property
    def n(self) -> int:
        """Number of observations."""
        return len(self.time)

    @property
    def p(self) -> int | None:
        """Number of covariates (None if no covariates)."""
        return self.X.shape[1] if self.X is not None else None

    @property
    def n_events(self) -> int:
        """Number of observed events."""
        return int(np.sum(self.event))

    @property
    def n_groups(self) -> int:
        return len(self.group_labels)

    def subset(self, mask: NDArray) -> SurvivalDesign:
        """Rows selected by a boolean mask (group information dropped)."""
        return SurvivalDesign(
            time=self.time[mask],
            event=self.event[mask],
            X=self.X[mask] if self.X is not None else None,
            group_codes=None,
            group_labels=(),
        )
