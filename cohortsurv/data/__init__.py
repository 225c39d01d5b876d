"""
Data ingestion and preparation.

Public API:
    read_subjects(path, ...) -> SubjectTable
    subjects_from_frame(df, ...) -> SubjectTable
    read_identifiers(path, ...) -> frozenset[str]
    label_cohort(table, identifiers, ...) -> SubjectTable
    DesignEncoding / FactorEncoding / NumericEncoding
"""

from cohortsurv.data.loader import (
    EventStatus,
    SubjectTable,
    normalize_column_name,
    normalize_columns,
    parse_status,
    read_identifiers,
    read_subjects,
    subjects_from_frame,
)
from cohortsurv.data.cohort import label_cohort
from cohortsurv.data.encoding import (
    DesignEncoding,
    FactorEncoding,
    NumericEncoding,
)

__all__ = [
    "EventStatus",
    "SubjectTable",
    "normalize_column_name",
    "normalize_columns",
    "parse_status",
    "read_identifiers",
    "read_subjects",
    "subjects_from_frame",
    "label_cohort",
    "DesignEncoding",
    "FactorEncoding",
    "NumericEncoding",
]
