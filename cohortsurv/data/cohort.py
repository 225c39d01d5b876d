"""
Cohort labeling by identifier membership.

Derives a two-level categorical column (e.g. "mutant" / "non-mutant")
from whether each subject's key appears in an external identifier set.
The labeled table is a new SubjectTable; the input is never modified.
"""

from __future__ import annotations

import warnings
from typing import Iterable

import numpy as np

from cohortsurv.core.exceptions import ValidationError
from cohortsurv.data.loader import SubjectTable, normalize_column_name


def label_cohort(
    table: SubjectTable,
    identifiers: Iterable,
    *,
    column: str = "cohort",
    key: str | None = None,
    member_label: str = "mutant",
    default_label: str = "non-mutant",
) -> SubjectTable:
    """Partition subjects by membership of their key in ``identifiers``.

    Every row starts at ``default_label``; rows whose key is in the set
    get ``member_label``. Keys are compared as whitespace-stripped
    strings, so numeric sample IDs match identifiers read as text.

    Parameters
    ----------
    table : SubjectTable
        Validated subject records.
    identifiers : iterable
        Keys marking the member subpopulation.
    column : str
        Name of the derived column.
    key : str or None
        Key column. Defaults to ``table.id_col``.
    member_label, default_label : str
        Labels for members and everyone else.

    Returns
    -------
    SubjectTable
        New table with ``column`` added.
    """
    if member_label == default_label:
        raise ValidationError(
            f"member_label and default_label must differ, both are '{member_label}'"
        )

    key = normalize_column_name(key) if key is not None else table.id_col
    if key is None:
        raise ValidationError(
            "no key column: pass key= or read the table with id_col="
        )

    ids = {str(i).strip() for i in identifiers}
    keys = table.column(key).astype(str).str.strip()
    is_member = keys.isin(ids).to_numpy()

    unmatched = ids.difference(keys)
    if unmatched:
        warnings.warn(
            f"{len(unmatched)} of {len(ids)} identifier(s) matched no subject "
            f"in column '{key}'",
            UserWarning,
            stacklevel=2,
        )

    labels = np.where(is_member, member_label, default_label)
    return table.with_column(normalize_column_name(column), labels)
