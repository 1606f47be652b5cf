"""Normalized views of a subset of time series.

    raw:       abundance as stored
    by_column: abundance / total abundance of the sample across all sequences (sequencing depth)
    by_row:    abundance / total abundance of the sequence across all samples
    double:    by_column, then divided by its own row total

Zero column totals make by_column and double divide by zero; those elements are reported as 0.
by_row is not guarded: a sequence that is never observed yields a row of NaN.
"""
from dataclasses import dataclass

import numpy as np

from tsexplore.utils import replace_nonfinite


@dataclass(frozen=True)
class NormalizationResult:
    raw: np.ndarray
    by_column: np.ndarray
    by_row: np.ndarray
    double: np.ndarray

    def __len__(self) -> int:
        return self.raw.shape[0]

    def __getitem__(self, mode: str) -> np.ndarray:
        if mode not in MODES:
            raise KeyError(f"Unknown normalization mode: {mode}, expected one of: {', '.join(MODES)}")
        return getattr(self, mode)


def as_row_matrix(rows, n_samples: int) -> np.ndarray:
    """Return rows as a 2d float array with n_samples columns.

    A single time series (1d) becomes one row, an empty selection becomes shape (0, n_samples).
    """
    rows = np.array(rows, dtype=np.float64)
    if rows.ndim == 1:
        if rows.size == 0:
            return np.zeros((0, n_samples))
        rows = rows[np.newaxis, :]
    elif rows.ndim == 2 and rows.shape[0] == 0:
        return np.zeros((0, n_samples))
    if rows.ndim != 2 or rows.shape[1] != n_samples:
        raise ValueError(f"rows must have {n_samples} columns, not: {rows.shape}")
    return rows


def by_row(rows: np.ndarray) -> np.ndarray:
    """
        abundance / row_sum
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        return rows / rows.sum(axis=1)[:, np.newaxis]


def by_column(rows: np.ndarray, column_totals: np.ndarray) -> np.ndarray:
    """
        abundance / column_total, where column totals are taken over the whole database
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        out = rows / np.asarray(column_totals, dtype=np.float64)[np.newaxis, :]
    return replace_nonfinite(out)


def double(rows: np.ndarray, column_totals: np.ndarray) -> np.ndarray:
    """
        by_column / row_sum(by_column)
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        out = by_row(by_column(rows, column_totals))
    return replace_nonfinite(out)


MODES = {
    "raw": None,
    "by_column": by_column,
    "by_row": by_row,
    "double": double,
}


def normalize_rows(rows, column_totals) -> NormalizationResult:
    """
    Compute every normalized view of a subset of the abundance matrix.

    Args:
        rows: 2d array (subset x samples), or a single 1d time series
        column_totals: per sample totals of the full abundance matrix

    Returns:
        NormalizationResult
    """
    column_totals = np.asarray(column_totals, dtype=np.float64)
    raw = as_row_matrix(rows, column_totals.shape[0])
    if raw.shape[0] == 0:
        result = NormalizationResult(raw=raw, by_column=raw.copy(), by_row=raw.copy(), double=raw.copy())
    else:
        result = NormalizationResult(
            raw=raw,
            by_column=by_column(raw, column_totals),
            by_row=by_row(raw),
            double=double(raw, column_totals),
        )
    for view in (result.raw, result.by_column, result.by_row, result.double):
        view.flags.writeable = False
    return result
