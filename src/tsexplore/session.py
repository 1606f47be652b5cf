"""
Session: one loaded time-series database and the questions asked of it.

A Session owns the dense abundance matrix, its column totals, the per-sequence metadata, the
sample times, the epsilon sweep parameters and the currently selected cluster labels. All of
them refer to sequences by the same position. Results are memoized per epsilon row (and row
filter), and the whole state, caches included, is replaced in one step on reload.

Usage:
    session = load_database("db.h5")
    labels = session.select_epsilon(0.5)
    views = session.normalize_subset(ClusterFilter.time_cluster(session.default_cluster()))
    counts = session.sweep_cluster_counts()
    diversity = session.diversity_by_level()
"""
import threading
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from tsexplore import DEFAULT_CHUNK_SIZE, NOISE_LABEL
from tsexplore.cluster_labels import epsilon_to_row, read_cluster_labels, sweep_cluster_counts
from tsexplore.diversity import diversity_by_level, diversity_table, taxonomy_token_table
from tsexplore.normalize import NormalizationResult, normalize_rows
from tsexplore.timeseries_database import (PHYLO_CLUSTER_COL, SEQUENCE_ID_COL, TAXONOMY_COL, DatabaseDims,
                                           EpsilonSweep, check_alignment, load_metadata, load_timeseries)
from tsexplore.utils import ProgressCallback, report_progress, scaled_progress

TIME_CLUSTER = "time"
PHYLO_CLUSTER = "phylo"
CLUSTER_KINDS = (TIME_CLUSTER, PHYLO_CLUSTER)


@dataclass(slots=True)
class SessionConfig:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    cpu: int = 1
    cache: bool = True

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, not: {self.chunk_size}")
        if self.cpu < 1:
            raise ValueError(f"cpu must be at least 1, not: {self.cpu}")


@dataclass(frozen=True)
class ClusterFilter:
    """Selects the sequences of one cluster.

    kind "time": the cluster at the currently selected epsilon
    kind "phylo": the stable phylogenetic (OTU) cluster
    """
    kind: str
    label: int

    def __post_init__(self) -> None:
        if self.kind not in CLUSTER_KINDS:
            raise ValueError(f"kind must be one of {CLUSTER_KINDS}, not: {self.kind}")
        object.__setattr__(self, "label", int(self.label))

    @classmethod
    def time_cluster(cls, label) -> "ClusterFilter":
        return cls(TIME_CLUSTER, label)

    @classmethod
    def phylo_cluster(cls, label) -> "ClusterFilter":
        return cls(PHYLO_CLUSTER, label)


@dataclass(frozen=True)
class _LoadedDatabase:
    path: Path
    timeseries: np.ndarray
    column_totals: np.ndarray
    dims: DatabaseDims
    sequences: pd.DataFrame
    taxonomy_tokens: pd.DataFrame
    time_axis: np.ndarray
    sweep: EpsilonSweep


def _read_database(path: Path, config: SessionConfig, progress: Optional[ProgressCallback]) -> _LoadedDatabase:
    timeseries, column_totals, dims = load_timeseries(path, config.chunk_size, scaled_progress(progress, 0.0, 0.5))
    report_progress(progress, 0.5, "Reading sequence metadata")
    sequences, time_axis, sweep = load_metadata(path)
    check_alignment(dims, sequences, time_axis)
    report_progress(progress, 0.75, "Splitting taxonomy")
    taxonomy_tokens = taxonomy_token_table(sequences[TAXONOMY_COL])
    report_progress(progress, 1.0, "Database loaded")
    return _LoadedDatabase(path=path, timeseries=timeseries, column_totals=column_totals, dims=dims,
                           sequences=sequences, taxonomy_tokens=taxonomy_tokens, time_axis=time_axis, sweep=sweep)


class Session():
    """A loaded time-series database.

    Use load_database() or Session.load() to create one.

    Attributes:
        config: SessionConfig used for loading, sweeping and caching
    """

    def __init__(self, database: _LoadedDatabase, config: SessionConfig):
        self.config = config
        self._lock = threading.RLock()
        self._database = database
        self._current_row = None
        self._current_labels = None
        self._cache = dict()

    @classmethod
    def load(cls, path: Union[PathLike, str], config: Optional[SessionConfig] = None, progress: Optional[ProgressCallback] = None) -> "Session":
        config = config if config is not None else SessionConfig()
        return cls(_read_database(Path(path), config, progress), config)

    def reload(self, path: Optional[Union[PathLike, str]] = None, progress: Optional[ProgressCallback] = None):
        """Load a database (by default the same file again) and replace all state with it.

        If loading fails, the exception propagates and the session keeps its previous state.
        The selected epsilon and all cached results are discarded.
        """
        path = Path(path) if path is not None else self._database.path
        database = _read_database(path, self.config, progress)
        with self._lock:
            self._database = database
            self._current_row = None
            self._current_labels = None
            self._cache = dict()

    def __repr__(self) -> str:
        dims = self._database.dims
        return (f"{self.__class__.__name__}(path='{self._database.path}', sequences={dims.n_sequences}, "
                f"samples={dims.n_samples}, params={dims.n_params})")

    @property
    def path(self) -> Path:
        return self._database.path

    @property
    def timeseries(self) -> np.ndarray:
        """read-only sequences x samples abundance matrix"""
        return self._database.timeseries

    @property
    def column_totals(self) -> np.ndarray:
        return self._database.column_totals

    @property
    def dims(self) -> DatabaseDims:
        return self._database.dims

    @property
    def sequences(self) -> pd.DataFrame:
        """sequence_id, taxonomy, phylo_cluster of each sequence, in matrix row order"""
        return self._database.sequences

    @property
    def taxonomy_tokens(self) -> pd.DataFrame:
        return self._database.taxonomy_tokens

    @property
    def time_axis(self) -> np.ndarray:
        return self._database.time_axis

    @property
    def sweep(self) -> EpsilonSweep:
        return self._database.sweep

    @property
    def current_epsilon(self) -> Optional[float]:
        with self._lock:
            if self._current_row is None:
                return None
            return self._database.sweep.epsilon(self._current_row)

    @property
    def current_clusters(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._current_labels

    def _cached(self, key, compute: Callable):
        if not self.config.cache:
            return compute()
        if key not in self._cache:
            self._cache[key] = compute()
        return self._cache[key]

    def _labels_at_row(self, row: int) -> np.ndarray:
        return self._cached(("labels", row), lambda: read_cluster_labels(self._database.path, row))

    def _row_for(self, epsilon: Optional[float]) -> int:
        if epsilon is not None:
            return epsilon_to_row(self._database.sweep, epsilon)
        if self._current_row is None:
            raise ValueError("No epsilon selected. Call select_epsilon() first or pass an epsilon.")
        return self._current_row

    def select_epsilon(self, epsilon: float) -> np.ndarray:
        """Make the clustering at epsilon the current one.

        Returns:
            np.ndarray: read-only cluster label of each sequence

        Raises:
            InvalidEpsilonError: If epsilon is not one of the clustered values. The current selection is unchanged.
        """
        with self._lock:
            row = epsilon_to_row(self._database.sweep, epsilon)
            labels = self._labels_at_row(row)
            self._current_row, self._current_labels = row, labels
            return labels

    def cluster_labels(self, epsilon: Optional[float] = None) -> np.ndarray:
        """Cluster labels at epsilon (default: the current epsilon), without changing the selection."""
        with self._lock:
            return self._labels_at_row(self._row_for(epsilon))

    def _labels_for_kind(self, kind: str) -> np.ndarray:
        if kind == TIME_CLUSTER:
            if self._current_labels is None:
                raise ValueError("No epsilon selected. Call select_epsilon() before selecting time clusters.")
            return self._current_labels
        elif kind == PHYLO_CLUSTER:
            return self._database.sequences[PHYLO_CLUSTER_COL].to_numpy()
        else:
            raise ValueError(f"kind must be one of {CLUSTER_KINDS}, not: {kind}")

    def select_rows(self, row_filter) -> np.ndarray:
        """Row indices selected by a ClusterFilter, a boolean mask or an array of row indices."""
        with self._lock:
            n_sequences = self._database.dims.n_sequences
            if isinstance(row_filter, ClusterFilter):
                return np.flatnonzero(self._labels_for_kind(row_filter.kind) == row_filter.label)

            rows = np.asarray(row_filter)
            if rows.dtype == bool:
                if rows.shape != (n_sequences,):
                    raise ValueError(f"boolean row filter must have one entry per sequence, not: {rows.shape} vs. {n_sequences}")
                return np.flatnonzero(rows)
            rows = rows.astype(np.int64).reshape(-1)
            if rows.size and (rows.min() < 0 or rows.max() >= n_sequences):
                raise IndexError(f"row indices must lie in [0, {n_sequences})")
            return rows

    def normalize_subset(self, row_filter) -> NormalizationResult:
        """Raw and normalized time series of the selected rows.

        Args:
            row_filter: ClusterFilter (memoized unless it selects nothing), boolean mask or row indices

        Returns:
            NormalizationResult: raw, by_column, by_row and double views, one row per selected sequence
        """
        with self._lock:
            rows = self.select_rows(row_filter)

            def compute():
                return normalize_rows(self._database.timeseries[rows, :], self._database.column_totals)

            if isinstance(row_filter, ClusterFilter) and rows.size > 0:
                row = self._current_row if row_filter.kind == TIME_CLUSTER else None
                return self._cached(("normalize", row, row_filter), compute)
            return compute()

    def sweep_cluster_counts(self, progress: Optional[ProgressCallback] = None, include_noise=True) -> List[int]:
        """Number of clusters at every epsilon, in epsilon order. The noise label counts as a cluster unless include_noise is False."""
        with self._lock:
            counts = self._cached(("sweep", include_noise), lambda: sweep_cluster_counts(
                self._database.path, self._database.sweep.n_params, cpu=self.config.cpu, progress=progress, include_noise=include_noise))
            report_progress(progress, 1.0, "Counting clusters")
            return list(counts)

    def diversity_by_level(self, epsilon: Optional[float] = None) -> Dict[str, List[float]]:
        """Simpson index of every non-noise cluster at epsilon (default: the current epsilon), by taxonomic level."""
        with self._lock:
            row = self._row_for(epsilon)
            return self._cached(("diversity", row), lambda: diversity_by_level(self._labels_at_row(row), self._database.taxonomy_tokens))

    def diversity_table(self, epsilon: Optional[float] = None) -> pd.DataFrame:
        return diversity_table(self.diversity_by_level(epsilon))

    def clusters_by_abundance(self, kind: str = TIME_CLUSTER) -> List[int]:
        """Cluster labels ordered by the total abundance of their sequences, most abundant first."""
        with self._lock:
            labels = self._labels_for_kind(kind)
            abundance = pd.Series(self._database.timeseries.sum(axis=1)).groupby(labels).sum()
            return [int(x) for x in abundance.sort_values(ascending=False, kind="stable").index]

    def default_cluster(self, kind: str = TIME_CLUSTER) -> Optional[int]:
        """The most abundant cluster. For time clusters, noise is passed over when there is any other cluster."""
        names = self.clusters_by_abundance(kind)
        if not names:
            return None
        if kind == TIME_CLUSTER and len(names) > 1 and names[0] == NOISE_LABEL:
            return names[1]
        return names[0]

    def cluster_table(self, label) -> pd.DataFrame:
        """Abundance, taxonomy and phylogenetic cluster of the sequences in a time cluster at the current epsilon."""
        with self._lock:
            rows = self.select_rows(ClusterFilter.time_cluster(label))
            sequences = self._database.sequences.iloc[rows]
            return pd.DataFrame({
                "SequenceID": sequences[SEQUENCE_ID_COL].to_numpy(),
                "Abundance": self._database.timeseries[rows, :].sum(axis=1),
                "TaxonomicID": sequences[TAXONOMY_COL].to_numpy(),
                "PhyloClusterNumber": sequences[PHYLO_CLUSTER_COL].to_numpy(),
            })

    def phylo_cluster_table(self, label) -> pd.DataFrame:
        """Abundance, time cluster at the current epsilon and taxonomy of the sequences in a phylogenetic cluster."""
        with self._lock:
            rows = self.select_rows(ClusterFilter.phylo_cluster(label))
            sequences = self._database.sequences.iloc[rows]
            return pd.DataFrame({
                "Abundance": self._database.timeseries[rows, :].sum(axis=1),
                "TimeClustNumber": self._labels_for_kind(TIME_CLUSTER)[rows],
                "TaxonomicID": sequences[TAXONOMY_COL].to_numpy(),
                "SequenceID": sequences[SEQUENCE_ID_COL].to_numpy(),
            })

    def timeseries_table(self, label) -> pd.DataFrame:
        """cluster_table() followed by the raw time series, one column per sample headed by its collection time."""
        with self._lock:
            rows = self.select_rows(ClusterFilter.time_cluster(label))
            series = pd.DataFrame(self._database.timeseries[rows, :], columns=list(self._database.time_axis))
            return pd.concat([self.cluster_table(label), series], axis=1)


def load_database(path: Union[PathLike, str], config: Optional[SessionConfig] = None, progress: Optional[ProgressCallback] = None) -> Session:
    """Load a time-series database into a new Session.

    Raises:
        FileNotFoundError: If the file does not exist
        DatabaseFormatError: If a dataset is missing or the stored extents are inconsistent
    """
    return Session.load(path, config, progress)
