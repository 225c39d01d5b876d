"""
Predicted survival curves from a fitted Cox model.

    S(t | x) = S0(t) ^ exp(x @ β)

with S0 the Breslow baseline survival of the reference subject (x = 0,
every factor at its reference level). A what-if grid row that equals
the reference reproduces S0 exactly.
"""

from __future__ import annotations

import itertools
from typing import Any, Hashable, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from cohortsurv.core.exceptions import DimensionError, ValidationError
from cohortsurv.core.validation import check_array, check_finite
from cohortsurv.survival._common import BaselineHazard, CoxParams
from cohortsurv.survival._km import step_lookup


def expand_grid(**values: Sequence[Any]) -> pd.DataFrame:
    """Cartesian product of covariate values.

    Columns follow keyword order; rows vary the last keyword fastest,
    so the row order is deterministic.

    >>> expand_grid(group=["Isotype", "ICB"], age=[50, 70])
         group  age
    0  Isotype   50
    1  Isotype   70
    2      ICB   50
    3      ICB   70
    """
    if not values:
        raise ValidationError("expand_grid needs at least one covariate")
    names = list(values)
    rows = list(itertools.product(*(list(values[k]) for k in names)))
    return pd.DataFrame(rows, columns=names)


class PredictedCurves:
    """Survival curves for each row of a covariate grid.

    Column k of ``survival`` belongs to ``labels[k]``, the k-th index
    label of the grid, so curves can be matched back to grid rows.
    """

    __slots__ = ('_time', '_survival', '_linear_predictor', '_labels', '_grid')

    def __init__(
        self,
        time: NDArray,
        survival: NDArray,
        linear_predictor: NDArray,
        labels: tuple[Hashable, ...],
        grid: pd.DataFrame | None,
    ) -> None:
        self._time = time
        self._survival = survival
        self._linear_predictor = linear_predictor
        self._labels = labels
        self._grid = grid

    @property
    def time(self) -> NDArray:
        """Distinct training event times."""
        return self._time

    @property
    def survival(self) -> NDArray:
        """(m, k) survival, one column per grid row."""
        return self._survival

    @property
    def linear_predictor(self) -> NDArray:
        """(k,) x @ β for each grid row."""
        return self._linear_predictor

    @property
    def hazard_ratio(self) -> NDArray:
        """(k,) exp(x @ β): hazard relative to the reference subject."""
        return np.exp(self._linear_predictor)

    @property
    def labels(self) -> tuple[Hashable, ...]:
        return self._labels

    @property
    def grid(self) -> pd.DataFrame | None:
        """The covariate grid as given (None for a bare design matrix)."""
        return self._grid

    def __len__(self) -> int:
        return len(self._labels)

    def _column(self, label: Hashable) -> int:
        try:
            return self._labels.index(label)
        except ValueError:
            raise KeyError(
                f"no curve labelled {label!r}. Available: {list(self._labels)}"
            ) from None

    def curve(self, label: Hashable) -> NDArray:
        """Survival at ``time`` for one grid row."""
        return self._survival[:, self._column(label)]

    def survival_at(self, t) -> NDArray:
        """(len(t), k) survival of every curve at arbitrary times."""
        t = np.atleast_1d(np.asarray(t, dtype=np.float64))
        return np.column_stack([
            step_lookup(self._time, self._survival[:, k], t, before=1.0)
            for k in range(len(self._labels))
        ])

    def to_frame(self) -> pd.DataFrame:
        """Long table (label, time, survival) ready for plotting."""
        m, k = self._survival.shape
        return pd.DataFrame({
            'label': np.repeat(np.array(self._labels, dtype=object), m),
            'time': np.tile(self._time, k),
            'survival': self._survival.T.ravel(),
        })

    def __repr__(self) -> str:
        return (
            f"PredictedCurves(curves={len(self._labels)}, "
            f"times={len(self._time)})"
        )


def predict_curves(params: CoxParams, grid) -> PredictedCurves:
    """Expand a fitted Cox model over a covariate grid.

    Parameters
    ----------
    params : CoxParams
        Fitted model.
    grid : pd.DataFrame or array-like
        DataFrame of raw covariate values (encoded with the model's
        fit-time encoding) or an already-encoded (k, p) matrix.

    Returns
    -------
    PredictedCurves
    """
    p = len(params.coefficients)

    if isinstance(grid, pd.DataFrame):
        if not grid.index.is_unique:
            duplicated = list(grid.index[grid.index.duplicated()].unique())
            raise ValidationError(
                f"grid index labels must be unique; repeated: {duplicated}"
            )
        if params.encoding is not None:
            X_new = params.encoding.encode(grid)
        else:
            missing = [c for c in params.names if c not in grid.columns]
            if missing:
                raise ValidationError(
                    f"grid is missing column(s) {missing}; "
                    f"model columns are {list(params.names)}"
                )
            X_new = check_array(grid[list(params.names)].to_numpy(), "grid")
        labels = tuple(grid.index)
        frame = grid.copy()
    else:
        X_new = check_array(grid, "grid")
        if X_new.ndim == 1:
            X_new = X_new.reshape(1, -1)
        labels = tuple(range(X_new.shape[0]))
        frame = None

    if X_new.ndim != 2 or X_new.shape[1] != p:
        raise DimensionError(
            f"grid must encode to {p} column(s) {list(params.names)}, "
            f"got shape {X_new.shape}"
        )
    check_finite(X_new, "grid")

    lp = X_new @ params.coefficients
    baseline: BaselineHazard = params.baseline
    survival = baseline.survival[:, np.newaxis] ** np.exp(lp)[np.newaxis, :]

    return PredictedCurves(
        time=baseline.time,
        survival=survival,
        linear_predictor=lp,
        labels=labels,
        grid=frame,
    )
