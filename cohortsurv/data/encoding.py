"""
Covariate encoding tables.

A categorical covariate is encoded as treatment dummies against an
explicit reference level, the first entry of ``levels`` (R's
``factor(x, levels=c("Isotype", "ICB"))`` makes "Isotype" the reference).
The encoding is an immutable value built once at fit time and reused
unchanged at prediction time, so a what-if grid is always encoded
exactly like the training data. Levels never seen at fit time raise
UnknownCovariateLevelError instead of being coerced.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from cohortsurv.core.exceptions import (
    UnknownCovariateLevelError,
    ValidationError,
)


def _sorted_levels(values) -> list:
    try:
        return sorted(values)
    except TypeError:
        return sorted(values, key=str)


@dataclass(frozen=True)
class FactorEncoding:
    """Treatment (dummy) coding of one categorical covariate.

    Parameters
    ----------
    name : str
        Covariate name.
    levels : tuple
        All levels, reference first.
    """

    name: str
    levels: tuple[Any, ...]

    def __post_init__(self) -> None:
        if len(self.levels) == 0:
            raise ValidationError(f"{self.name}: a factor needs at least one level")
        if len(set(self.levels)) != len(self.levels):
            raise ValidationError(f"{self.name}: duplicate levels {self.levels}")

    @classmethod
    def from_values(
        cls,
        name: str,
        values,
        *,
        levels: Sequence[Any] | None = None,
        reference: Any = None,
    ) -> FactorEncoding:
        """Build the encoding of observed ``values``.

        Explicit ``levels`` fix the order (first = reference) and every
        observed value must belong to them. Otherwise the sorted distinct
        values are used, with ``reference`` moved to the front if given.
        """
        observed = pd.unique(pd.Series(np.asarray(values, dtype=object).ravel()).dropna())

        if levels is not None:
            levels = tuple(levels)
            unknown = tuple(v for v in observed if v not in set(levels))
            if unknown:
                raise UnknownCovariateLevelError(
                    f"{name}: values {list(unknown)} are not among the declared "
                    f"levels {list(levels)}",
                    covariate=name,
                    levels=levels,
                    unknown=unknown,
                )
            return cls(name=name, levels=levels)

        ordered = _sorted_levels(observed)
        if reference is not None:
            if reference not in ordered:
                raise UnknownCovariateLevelError(
                    f"{name}: reference level {reference!r} not observed; "
                    f"levels are {ordered}",
                    covariate=name,
                    levels=tuple(ordered),
                    unknown=(reference,),
                )
            ordered.remove(reference)
            ordered.insert(0, reference)
        return cls(name=name, levels=tuple(ordered))

    @property
    def reference(self) -> Any:
        return self.levels[0]

    @property
    def columns(self) -> tuple[str, ...]:
        """Design-matrix column names, one per non-reference level."""
        return tuple(f"{self.name}[{level}]" for level in self.levels[1:])

    def codes(self, values) -> NDArray:
        """Integer level index of each value (0 = reference)."""
        values = np.asarray(values, dtype=object).ravel()
        index = {level: k for k, level in enumerate(self.levels)}
        unknown = tuple(dict.fromkeys(v for v in values if v not in index))
        if unknown:
            raise UnknownCovariateLevelError(
                f"{self.name}: unknown level(s) {list(unknown)}; "
                f"known levels are {list(self.levels)}",
                covariate=self.name,
                levels=self.levels,
                unknown=unknown,
            )
        return np.fromiter((index[v] for v in values), dtype=np.intp, count=len(values))

    def encode(self, values) -> NDArray:
        """(n, k - 1) dummy matrix."""
        codes = self.codes(values)
        k = len(self.levels)
        return (codes[:, np.newaxis] == np.arange(1, k)[np.newaxis, :]).astype(np.float64)


@dataclass(frozen=True)
class NumericEncoding:
    """Numeric covariate used as-is (one column)."""

    name: str

    @property
    def columns(self) -> tuple[str, ...]:
        return (self.name,)

    def encode(self, values) -> NDArray:
        try:
            arr = np.asarray(values, dtype=np.float64).reshape(-1, 1)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{self.name}: non-numeric values: {e}") from e
        if not np.all(np.isfinite(arr)):
            raise ValidationError(
                f"{self.name}: contains {int(np.sum(~np.isfinite(arr)))} "
                f"missing or non-finite value(s)"
            )
        return arr


@dataclass(frozen=True)
class DesignEncoding:
    """Ordered encoding of all covariates of a model."""

    terms: tuple[FactorEncoding | NumericEncoding, ...]

    @property
    def names(self) -> tuple[str, ...]:
        """Covariate (term) names."""
        return tuple(t.name for t in self.terms)

    @property
    def column_names(self) -> tuple[str, ...]:
        """Design-matrix column names."""
        return tuple(c for t in self.terms for c in t.columns)

    def term(self, name: str) -> FactorEncoding | NumericEncoding:
        for t in self.terms:
            if t.name == name:
                return t
        raise KeyError(f"no term '{name}'. Available: {self.names}")

    def encode(self, frame: pd.DataFrame) -> NDArray:
        """Encode ``frame`` into an (n, p) design matrix."""
        missing = [name for name in self.names if name not in frame.columns]
        if missing:
            raise ValidationError(
                f"covariate column(s) {missing} not found. "
                f"Available: {list(frame.columns)}"
            )

        blocks = []
        for t in self.terms:
            values = frame[t.name]
            if values.isna().any():
                raise ValidationError(
                    f"{t.name}: {int(values.isna().sum())} missing value(s)"
                )
            blocks.append(t.encode(values.to_numpy()))

        if not blocks:
            return np.empty((len(frame), 0), dtype=np.float64)
        return np.hstack(blocks)

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        covariates: Sequence[str],
        *,
        levels: Mapping[str, Sequence[Any]] | None = None,
    ) -> DesignEncoding:
        """Infer an encoding from column dtypes.

        Columns listed in ``levels``, and object / string / category /
        bool columns, become factors; everything else is numeric. A
        pandas categorical keeps its category order (unobserved
        categories are dropped).
        """
        levels = dict(levels or {})
        unknown_keys = set(levels).difference(covariates)
        if unknown_keys:
            raise ValidationError(
                f"levels given for {sorted(unknown_keys)}, which are not covariates"
            )

        terms: list[FactorEncoding | NumericEncoding] = []
        for name in covariates:
            if name not in frame.columns:
                raise ValidationError(
                    f"covariate column '{name}' not found. "
                    f"Available: {list(frame.columns)}"
                )
            column = frame[name]
            if name in levels:
                terms.append(FactorEncoding.from_values(name, column, levels=levels[name]))
            elif isinstance(column.dtype, pd.CategoricalDtype):
                present = set(column.dropna())
                ordered = [c for c in column.cat.categories if c in present]
                terms.append(FactorEncoding(name=name, levels=tuple(ordered)))
            elif pd.api.types.is_bool_dtype(column) or not pd.api.types.is_numeric_dtype(column):
                terms.append(FactorEncoding.from_values(name, column))
            else:
                terms.append(NumericEncoding(name=name))

        return cls(terms=tuple(terms))
