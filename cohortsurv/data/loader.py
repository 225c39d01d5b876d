"""
Subject-table ingestion.

Reads a delimited clinical / mouse-model table into a SubjectTable with
normalized column names, a float ``time`` column and an integer 0/1
``event`` column. Every row is checked at this boundary so downstream
estimators can trust the data:

    - missing, non-numeric, non-finite or negative time -> rejected
    - missing or unrecognized status -> rejected

Rejected rows are never imputed. They are either dropped and reported
(``on_invalid="drop"``) or raised together as a MalformedRecordError
(``on_invalid="raise"``).

Usage:
    table = read_subjects("sgArid1a_B16F10_isotype_vs_ICB.txt",
                          time_col="time", status_col="censor")
    table.time, table.event
"""

from __future__ import annotations

import enum
import io
import re
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Iterable, Literal

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from cohortsurv.core.exceptions import (
    MalformedRecordError,
    RejectedRow,
    ValidationError,
)


TIME_COLUMN = "time"
EVENT_COLUMN = "event"

_NON_ALNUM = re.compile(r"[^0-9a-zA-Z]+")


class EventStatus(enum.IntEnum):
    """Explicit event / censoring status of a subject."""
    CENSORED = 0
    EVENT = 1


_EVENT_WORDS = frozenset({
    "1", "true", "t", "yes", "y", "event", "dead", "deceased", "died",
    "death", "progressed", "progression", "recurred", "relapsed",
})

_CENSORED_WORDS = frozenset({
    "0", "false", "f", "no", "n", "censored", "censor", "alive", "living",
    "not progressed", "disease free", "diseasefree", "censored/alive",
})


def parse_status(value: Any) -> EventStatus:
    """Map a raw status cell to an EventStatus.

    Accepts booleans, the numbers 0 and 1, common clinical words, and the
    cBioPortal ``"<code>:<label>"`` convention (e.g. ``"1:DECEASED"``,
    ``"0:LIVING"``), where the code before the colon decides.

    Raises
    ------
    ValueError
        If the value does not name a status unambiguously.
    """
    if isinstance(value, EventStatus):
        return value

    if isinstance(value, (bool, np.bool_)):
        return EventStatus(int(value))

    if isinstance(value, (int, float, np.integer, np.floating)):
        if value == 0 or value == 1:
            return EventStatus(int(value))
        raise ValueError(f"numeric status must be 0 or 1, got {value!r}")

    if isinstance(value, str):
        text = value.strip().lower()

        if ":" in text:
            code = text.partition(":")[0].strip()
            if code in ("0", "1"):
                return EventStatus(int(code))
            raise ValueError(
                f"status code before ':' must be 0 or 1, got {value!r}"
            )

        if text in _EVENT_WORDS:
            return EventStatus.EVENT
        if text in _CENSORED_WORDS:
            return EventStatus.CENSORED

        try:
            number = float(text)
        except ValueError:
            pass
        else:
            if number == 0 or number == 1:
                return EventStatus(int(number))

    raise ValueError(f"unrecognized event status {value!r}")


def normalize_column_name(name: Any) -> str:
    """Normalize a header cell to lower snake_case.

    ``"OS (months)"`` -> ``"os_months"``, ``"5yr.status"`` -> ``"x_5yr_status"``.
    """
    text = _NON_ALNUM.sub("_", str(name).strip()).strip("_").lower()
    if not text:
        return "unnamed"
    if text[0].isdigit():
        return f"x_{text}"
    return text


def normalize_columns(columns: Iterable[Any]) -> list[str]:
    """Normalize every header cell, de-duplicating with _2, _3 suffixes."""
    seen: dict[str, int] = {}
    out = []
    for col in columns:
        name = normalize_column_name(col)
        if name in seen:
            seen[name] += 1
            candidate = f"{name}_{seen[name]}"
            while candidate in seen:
                seen[name] += 1
                candidate = f"{name}_{seen[name]}"
            name = candidate
        seen.setdefault(name, 1)
        out.append(name)
    return out


@dataclass(frozen=True, eq=False)
class SubjectTable:
    """Validated subject records.

    One row per subject. ``time`` (float, >= 0) and ``event`` (0/1) are
    always present; all other columns are covariates carried through
    unchanged except for their normalized names. The frame index holds
    the 0-based row position in the source.

    Treat as immutable: derive new tables with ``with_column``.
    """

    frame: pd.DataFrame
    id_col: str | None = None
    rejected: tuple[RejectedRow, ...] = ()
    source: str | None = None

    @property
    def n(self) -> int:
        """Number of subjects."""
        return len(self.frame)

    @property
    def columns(self) -> list[str]:
        return list(self.frame.columns)

    @property
    def time(self) -> NDArray:
        return self.frame[TIME_COLUMN].to_numpy(dtype=np.float64)

    @property
    def event(self) -> NDArray:
        return self.frame[EVENT_COLUMN].to_numpy(dtype=np.float64)

    @property
    def n_events(self) -> int:
        return int(self.frame[EVENT_COLUMN].sum())

    def column(self, name: str) -> pd.Series:
        """Return one column, with a helpful error if it is missing."""
        if name not in self.frame.columns:
            raise ValidationError(
                f"SubjectTable has no column '{name}'. "
                f"Available: {self.columns}"
            )
        return self.frame[name]

    def with_column(self, name: str, values) -> SubjectTable:
        """Return a new table with ``name`` added or replaced."""
        return SubjectTable(
            frame=self.frame.assign(**{name: values}),
            id_col=self.id_col,
            rejected=self.rejected,
            source=self.source,
        )

    def __repr__(self) -> str:
        return (
            f"SubjectTable(n={self.n}, events={self.n_events}, "
            f"rejected={len(self.rejected)}, columns={self.columns})"
        )


def _check_time(index: int, column: str, raw: Any) -> tuple[float | None, RejectedRow | None]:
    if pd.isna(raw) or (isinstance(raw, str) and not raw.strip()):
        return None, RejectedRow(index, column, raw, "missing time")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None, RejectedRow(index, column, raw, "non-numeric time")
    if not np.isfinite(value):
        return None, RejectedRow(index, column, raw, "non-finite time")
    if value < 0:
        return None, RejectedRow(index, column, raw, "negative time")
    return value, None


def _check_status(index: int, column: str, raw: Any) -> tuple[int | None, RejectedRow | None]:
    if pd.isna(raw) or (isinstance(raw, str) and not raw.strip()):
        return None, RejectedRow(index, column, raw, "missing status")
    try:
        return int(parse_status(raw)), None
    except ValueError as e:
        return None, RejectedRow(index, column, raw, str(e))


def subjects_from_frame(
    frame: pd.DataFrame,
    *,
    time_col: str = TIME_COLUMN,
    status_col: str = "status",
    id_col: str | None = None,
    on_invalid: Literal["drop", "raise"] = "drop",
    source: str | None = None,
) -> SubjectTable:
    """Validate an in-memory table of subject records.

    Parameters
    ----------
    frame : pd.DataFrame
        Raw table, one row per subject. Not modified.
    time_col, status_col : str
        Columns holding observation time and event status. Matched after
        normalization, so ``"OS (months)"`` and ``"os_months"`` both work.
    id_col : str or None
        Primary-key column (needed for cohort labeling).
    on_invalid : str
        "drop" removes and reports rejected rows; "raise" raises
        MalformedRecordError listing all of them.
    source : str or None
        Description of where the data came from.

    Returns
    -------
    SubjectTable
    """
    if on_invalid not in ("drop", "raise"):
        raise ValueError(
            f"on_invalid must be 'drop' or 'raise', got '{on_invalid}'"
        )

    frame = frame.copy()
    frame.columns = normalize_columns(frame.columns)
    frame.index = pd.RangeIndex(len(frame), name="row")

    time_col = normalize_column_name(time_col)
    status_col = normalize_column_name(status_col)
    id_col = normalize_column_name(id_col) if id_col is not None else None

    for role, col in (("time", time_col), ("status", status_col), ("id", id_col)):
        if col is not None and col not in frame.columns:
            raise ValidationError(
                f"{role} column '{col}' not found. "
                f"Available: {list(frame.columns)}"
            )

    times = np.full(len(frame), np.nan)
    events = np.zeros(len(frame), dtype=np.int64)
    rejected: list[RejectedRow] = []

    for i, (raw_time, raw_status) in enumerate(
        zip(frame[time_col].tolist(), frame[status_col].tolist())
    ):
        t, bad_time = _check_time(i, time_col, raw_time)
        e, bad_status = _check_status(i, status_col, raw_status)
        if bad_time is not None:
            rejected.append(bad_time)
        if bad_status is not None:
            rejected.append(bad_status)
        if bad_time is None and bad_status is None:
            times[i] = t
            events[i] = e

    if rejected and on_invalid == "raise":
        listing = "; ".join(str(r) for r in rejected[:10])
        more = f" (and {len(rejected) - 10} more)" if len(rejected) > 10 else ""
        raise MalformedRecordError(
            f"{len(rejected)} invalid time/status value(s): {listing}{more}",
            rejected=tuple(rejected),
        )

    bad_rows = sorted({r.index for r in rejected})
    keep = np.ones(len(frame), dtype=bool)
    keep[bad_rows] = False

    if bad_rows:
        warnings.warn(
            f"Dropped {len(bad_rows)} row(s) with invalid time/status: "
            f"{bad_rows[:10]}{' ...' if len(bad_rows) > 10 else ''}",
            UserWarning,
            stacklevel=2,
        )

    clean = frame.loc[keep].assign(
        **{TIME_COLUMN: times[keep], EVENT_COLUMN: events[keep]}
    )

    return SubjectTable(
        frame=clean,
        id_col=id_col,
        rejected=tuple(rejected),
        source=source,
    )


def _text_columns(header: Iterable[Any], id_col: str | None) -> dict[str, type]:
    """Raw headers whose normalized name is the key column, mapped to str."""
    if id_col is None:
        return {}
    target = normalize_column_name(id_col)
    return {
        raw: str
        for raw, norm in zip(header, normalize_columns(header))
        if norm == target
    }


def read_subjects(
    source: str | Path | IO[str],
    *,
    time_col: str = TIME_COLUMN,
    status_col: str = "status",
    id_col: str | None = None,
    sep: str = "\t",
    on_invalid: Literal["drop", "raise"] = "drop",
) -> SubjectTable:
    """Read a delimited subject file (tab-separated by default).

    The header row defines column names; they are normalized with
    ``normalize_column_name`` before use. The key column is read as text,
    so sample IDs such as ``007`` keep their leading zeros. See
    ``subjects_from_frame`` for the validation rules.
    """
    if isinstance(source, (str, Path)):
        name = str(source)
        header = pd.read_csv(source, sep=sep, nrows=0).columns
        frame = pd.read_csv(source, sep=sep, dtype=_text_columns(header, id_col))
    else:
        name = None
        buffer = io.StringIO(source.read())
        header = pd.read_csv(buffer, sep=sep, nrows=0).columns
        buffer.seek(0)
        frame = pd.read_csv(buffer, sep=sep, dtype=_text_columns(header, id_col))
    return subjects_from_frame(
        frame,
        time_col=time_col,
        status_col=status_col,
        id_col=id_col,
        on_invalid=on_invalid,
        source=name,
    )


def read_identifiers(
    source: str | Path | IO[str],
    *,
    key_col: str | None = None,
    sep: str = "\t",
) -> frozenset[str]:
    """Read the primary-key column of an auxiliary identifier file.

    Parameters
    ----------
    source : path or buffer
        Delimited table, e.g. a list of samples carrying a mutation.
    key_col : str or None
        Key column (normalized before lookup). Defaults to the first column.

    Returns
    -------
    frozenset[str]
        Whitespace-stripped identifiers; blank cells are skipped.
    """
    frame = pd.read_csv(source, sep=sep, dtype=str)
    frame.columns = normalize_columns(frame.columns)

    if frame.shape[1] == 0:
        raise ValidationError("identifier file has no columns")

    key = normalize_column_name(key_col) if key_col is not None else frame.columns[0]
    if key not in frame.columns:
        raise ValidationError(
            f"key column '{key}' not found. Available: {list(frame.columns)}"
        )

    values = frame[key].dropna().str.strip()
    return frozenset(v for v in values if v)
