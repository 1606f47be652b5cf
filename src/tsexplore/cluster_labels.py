"""Selecting and counting the epsilon-indexed cluster labels of a time-series database.

Row i of the cluster matrix holds the cluster label of every sequence when clustered at
epsilon(i) = param_min + i * param_step. Rows are read one at a time, never the whole matrix.
"""
import functools
from os import PathLike
from pathlib import Path
from typing import List, Optional, Union

import h5py
import numpy as np

from tsexplore import NOISE_LABEL
from tsexplore.timeseries_database import CLUSTERS_DATASET, INDEX_DTYPE, DatabaseFormatError, EpsilonSweep
from tsexplore.utils import ProgressCallback, make_pool, report_progress

EPSILON_TOLERANCE = 1e-6
"""allowed distance from the epsilon grid, as a fraction of param_step"""


class InvalidEpsilonError(ValueError):
    """The requested epsilon is outside the swept range or not on the param_step grid."""


def epsilon_to_row(sweep: EpsilonSweep, epsilon: float) -> int:
    """Find the row of the cluster matrix that was computed at epsilon.

    Args:
        sweep: the epsilon range of the database
        epsilon: the requested clustering parameter

    Returns:
        int: row index in [0, n_params)

    Raises:
        InvalidEpsilonError: If epsilon is out of range or not a multiple of param_step away from param_min
    """
    epsilon = float(epsilon)
    if not np.isfinite(epsilon):
        raise InvalidEpsilonError(f"epsilon must be a finite number, not: {epsilon}")
    slack = EPSILON_TOLERANCE * sweep.param_step
    if epsilon < sweep.param_min - slack or epsilon > sweep.param_max + slack:
        raise InvalidEpsilonError(f"epsilon {epsilon} is outside of the clustered range [{sweep.param_min}, {sweep.param_max}]")

    offset = (epsilon - sweep.param_min) / sweep.param_step
    row = int(round(offset))
    if abs(offset - row) > EPSILON_TOLERANCE:
        raise InvalidEpsilonError(f"epsilon {epsilon} is not on the clustered grid {sweep.param_min} + k * {sweep.param_step}, nearest is {sweep.epsilon(row)}")
    if row < 0 or row >= sweep.n_params:
        raise InvalidEpsilonError(f"epsilon {epsilon} maps to row {row}, but only {sweep.n_params} rows were clustered")
    return row


def _read_row(f: h5py.File, row: int) -> np.ndarray:
    if CLUSTERS_DATASET not in f:
        raise DatabaseFormatError(f"Required dataset '{CLUSTERS_DATASET}' not found in {f.filename}")
    dataset = f[CLUSTERS_DATASET]
    if not 0 <= row < dataset.shape[0]:
        raise IndexError(f"cluster row {row} out of range for '{CLUSTERS_DATASET}' with {dataset.shape[0]} rows")
    return np.asarray(dataset[row, :], dtype=INDEX_DTYPE)


def read_cluster_labels(path: Union[PathLike, str], row: int) -> np.ndarray:
    """Read one row (every sequence) of the cluster matrix.

    Returns:
        np.ndarray: read-only int array with one label per sequence
    """
    with h5py.File(Path(path), 'r') as f:
        labels = _read_row(f, row)
    labels.flags.writeable = False
    return labels


def count_clusters(labels, include_noise=True) -> int:
    """Number of distinct labels. The noise label is counted as a cluster unless include_noise is False."""
    distinct = np.unique(labels)
    if not include_noise:
        distinct = distinct[distinct != NOISE_LABEL]
    return int(distinct.shape[0])


def _count_row_worker(path, include_noise, row):
    with h5py.File(path, 'r') as f:
        return count_clusters(_read_row(f, row), include_noise)


def sweep_cluster_counts(path: Union[PathLike, str], n_params: int, cpu: int = 1, progress: Optional[ProgressCallback] = None, include_noise=True) -> List[int]:
    """Count the clusters found at every epsilon.

    Args:
        path: HDF5 database file
        n_params: number of rows of the cluster matrix
        cpu: number of worker processes to read rows with
        progress: optional progress(fraction, detail) callback
        include_noise: count the noise label as a cluster

    Returns:
        List[int]: the number of clusters at epsilon(i), for i in [0, n_params)
    """
    path = str(Path(path))
    counts = list()
    if n_params == 0:
        return counts

    if cpu > 1:
        with make_pool(cpu) as pool:
            # imap keeps epsilon order
            for count in pool.imap(functools.partial(_count_row_worker, path, include_noise), range(n_params)):
                counts.append(count)
                report_progress(progress, len(counts) / n_params, "Counting clusters")
    else:
        with h5py.File(path, 'r') as f:
            for row in range(n_params):
                counts.append(count_clusters(_read_row(f, row), include_noise))
                report_progress(progress, (row + 1) / n_params, "Counting clusters")
    return counts
