"""
Time-series database: reading and writing clustered sequence time series stored in HDF5.

A time-series database holds, for S sequences and N samples:
    - an abundance time series per sequence, stored as a CSR sparse matrix (sequences x samples)
    - a taxonomy string, a stable phylogenetic (OTU) cluster label and an identifier per sequence
    - a collection time per sample
    - a P x S matrix of cluster labels, one row per value of the clustering parameter epsilon,
      with the parameter range stored as attributes of that matrix

Layout:
    samples/time                 float[N]
    samples/names                str[N] (optional)
    genes/sequenceids            str[S]
    genes/taxonomy               str[S]
    genes/sequenceclusters       int[S]
    genes/clusters               int[P, S], attrs: param_min, param_max, param_step
    timeseries/data              float[nnz]
    timeseries/indices           int[nnz]   (zero-based column of each value)
    timeseries/indptr            int[S + 1] (zero-based offset of each row into data/indices)

The sparse arrays can be much larger than memory-friendly single reads, so data and indices are
read in fixed-size chunks into preallocated buffers and then expanded to a dense matrix.

Usage:
    timeseries, column_totals, dims = load_timeseries("db.h5")
    sequences, time_axis, sweep = load_metadata("db.h5")
"""
import warnings
warnings.filterwarnings("ignore", module='numpy')
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import h5py
import numpy as np
import pandas as pd
import scipy.sparse

from tsexplore import DEFAULT_CHUNK_SIZE
from tsexplore.utils import ProgressCallback, decode_strings, report_progress, scaled_progress

UTF8_h5py_encoding = h5py.string_dtype(encoding='utf-8')

SAMPLE_TIME_DATASET = "samples/time"
"""float array, collection time of each sample"""
SAMPLE_NAMES_DATASET = "samples/names"
"""(optional) string array, name of each sample"""
SEQUENCE_IDS_DATASET = "genes/sequenceids"
"""string array, identifier of each sequence"""
TAXONOMY_DATASET = "genes/taxonomy"
"""string array, ';' delimited taxonomy of each sequence"""
SEQUENCE_CLUSTERS_DATASET = "genes/sequenceclusters"
"""int array, stable (epsilon independent) cluster of each sequence"""
CLUSTERS_DATASET = "genes/clusters"
"""2d int array, row i holds the cluster of each sequence at epsilon(i)"""
DATA_DATASET = "timeseries/data"
"""values for CSR sparse"""
INDICES_DATASET = "timeseries/indices"
"""column index for CSR sparse"""
INDPTR_DATASET = "timeseries/indptr"
"""row offsets for CSR sparse"""

PARAM_MIN_ATTR = "param_min"
PARAM_MAX_ATTR = "param_max"
PARAM_STEP_ATTR = "param_step"

SEQUENCE_ID_COL = "sequence_id"
TAXONOMY_COL = "taxonomy"
PHYLO_CLUSTER_COL = "phylo_cluster"

INDEX_DTYPE = np.int64
VALUE_DTYPE = np.float64


class DatabaseFormatError(ValueError):
    """The file is missing a dataset or attribute, or the stored extents are inconsistent."""


class ShortReadError(DatabaseFormatError):
    """A chunked read returned fewer elements than requested."""


@dataclass(frozen=True)
class DatabaseDims:
    n_sequences: int
    n_samples: int
    n_params: int
    nnz: int


@dataclass(frozen=True)
class EpsilonSweep:
    """Range of the clustering parameter. Row i of the cluster matrix was computed at epsilon(i)."""
    param_min: float
    param_max: float
    param_step: float
    n_params: int

    def epsilon(self, row: int) -> float:
        return self.param_min + row * self.param_step

    def values(self) -> np.ndarray:
        return self.param_min + np.arange(self.n_params) * self.param_step


def _require(f: h5py.File, name: str):
    if name not in f:
        raise DatabaseFormatError(f"Required dataset '{name}' not found in {f.filename}")
    return f[name]


def _extent(dataset, name: str) -> int:
    if len(dataset.shape) != 1:
        raise DatabaseFormatError(f"'{name}' must be 1-dimensional, not: {dataset.shape}")
    return dataset.shape[0]


def _scalar_attr(dataset, name: str, dataset_name: str) -> float:
    if name not in dataset.attrs:
        raise DatabaseFormatError(f"Required attribute '{name}' not found on '{dataset_name}'")
    # R writes scalar attributes as length-1 arrays
    value = np.asarray(dataset.attrs[name]).reshape(-1)
    if value.shape[0] != 1:
        raise DatabaseFormatError(f"Attribute '{name}' on '{dataset_name}' must be a single value, not: {value.shape[0]} values")
    return float(value[0])


def read_dims(f: h5py.File) -> DatabaseDims:
    """Read the dimensions of a database from dataset shapes, without reading any bulk data.

    Args:
        f: Open HDF5 file handle

    Returns:
        DatabaseDims

    Raises:
        DatabaseFormatError: If a dataset is missing or the extents disagree
    """
    n_sequences = _extent(_require(f, SEQUENCE_IDS_DATASET), SEQUENCE_IDS_DATASET)
    if SAMPLE_NAMES_DATASET in f:
        n_samples = _extent(f[SAMPLE_NAMES_DATASET], SAMPLE_NAMES_DATASET)
    else:
        n_samples = _extent(_require(f, SAMPLE_TIME_DATASET), SAMPLE_TIME_DATASET)

    clusters = _require(f, CLUSTERS_DATASET)
    if len(clusters.shape) != 2:
        raise DatabaseFormatError(f"'{CLUSTERS_DATASET}' must be 2-dimensional, not: {clusters.shape}")
    if clusters.shape[1] != n_sequences:
        raise DatabaseFormatError(f"'{CLUSTERS_DATASET}' dim 1 must match the number of sequences, not: {clusters.shape[1]} vs. {n_sequences}")

    indptr = _require(f, INDPTR_DATASET)
    if _extent(indptr, INDPTR_DATASET) != n_sequences + 1:
        raise DatabaseFormatError(f"'{INDPTR_DATASET}' length must be the number of sequences + 1, not: {indptr.shape[0]} vs. {n_sequences + 1}")
    nnz = int(indptr[n_sequences])

    return DatabaseDims(n_sequences=n_sequences, n_samples=n_samples, n_params=clusters.shape[0], nnz=nnz)


def iter_chunks(length: int, chunk_size: int):
    """Yield disjoint (start, stop) ranges covering [0, length), the last one holding the remainder."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1, not: {chunk_size}")
    for start in range(0, length, chunk_size):
        yield start, min(start + chunk_size, length)


def read_chunked(dataset, length: int, chunk_size: int = DEFAULT_CHUNK_SIZE, dtype=VALUE_DTYPE, name: str = "", progress: Optional[ProgressCallback] = None) -> np.ndarray:
    """Read the first `length` elements of a 1d dataset, `chunk_size` elements at a time.

    Args:
        dataset: h5py dataset, or anything else that supports slicing
        length: number of elements to read, the output buffer is allocated with exactly this size
        chunk_size: maximum number of elements per read
        dtype: dtype of the output buffer
        name: name of the dataset, for error messages
        progress: optional callback, called after every chunk

    Returns:
        np.ndarray of shape (length,)

    Raises:
        ShortReadError: If a read returns fewer elements than requested
    """
    out = np.empty(length, dtype=dtype)
    for start, stop in iter_chunks(length, chunk_size):
        chunk = np.asarray(dataset[start:stop])
        if chunk.shape[0] != stop - start:
            raise ShortReadError(f"Short read from '{name}': requested elements {start}:{stop}, got {chunk.shape[0]}")
        out[start:stop] = chunk
        report_progress(progress, stop / length, name)
    return out


def decode_csr(data, indices, indptr, shape: Tuple[int, int]) -> np.ndarray:
    """Expand a CSR encoded matrix into a dense array.

    Row r holds the values data[indptr[r]:indptr[r+1]] at the columns indices[indptr[r]:indptr[r+1]].
    All indices are zero-based.

    Args:
        data: values
        indices: column index of each value
        indptr: offset of each row into data and indices, length n_rows + 1
        shape: (n_rows, n_cols)

    Returns:
        np.ndarray: dense float array of the given shape

    Raises:
        DatabaseFormatError: If the arrays are inconsistent with each other or with the shape
    """
    n_rows, n_cols = shape
    data = np.asarray(data, dtype=VALUE_DTYPE)
    indices = np.asarray(indices, dtype=INDEX_DTYPE)
    indptr = np.asarray(indptr, dtype=INDEX_DTYPE)

    if indptr.shape != (n_rows + 1,):
        raise DatabaseFormatError(f"'{INDPTR_DATASET}' length must be n_rows + 1, not: {indptr.shape} vs. {n_rows + 1}")
    if indptr[0] != 0 or np.any(np.diff(indptr) < 0):
        raise DatabaseFormatError(f"'{INDPTR_DATASET}' must start at 0 and be non-decreasing")
    nnz = indptr[-1]
    if data.shape != (nnz,):
        raise DatabaseFormatError(f"'{DATA_DATASET}' length must match the last entry of '{INDPTR_DATASET}', not: {data.shape[0]} vs. {nnz}")
    if indices.shape != (nnz,):
        raise DatabaseFormatError(f"'{INDICES_DATASET}' length must match the last entry of '{INDPTR_DATASET}', not: {indices.shape[0]} vs. {nnz}")
    if nnz > 0 and (indices.min() < 0 or indices.max() >= n_cols):
        raise DatabaseFormatError(f"'{INDICES_DATASET}' values must lie in [0, {n_cols}), found: [{indices.min()}, {indices.max()}]")

    return scipy.sparse.csr_array((data, indices, indptr), shape=(n_rows, n_cols)).toarray()


def load_timeseries(path: Union[PathLike, str], chunk_size: int = DEFAULT_CHUNK_SIZE, progress: Optional[ProgressCallback] = None) -> Tuple[np.ndarray, np.ndarray, DatabaseDims]:
    """Load the abundance matrix of a database.

    Args:
        path: HDF5 database file
        chunk_size: number of sparse elements to read at a time
        progress: optional progress(fraction, detail) callback

    Returns:
        (timeseries, column_totals, dims): the dense read-only sequences x samples matrix,
        its column sums, and the database dimensions.

    Raises:
        FileNotFoundError: If the file does not exist
        DatabaseFormatError: If a dataset is missing or the extents are inconsistent
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Time-series database not found: {path}")
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1, not: {chunk_size}")

    with h5py.File(path, 'r') as f:
        dims = read_dims(f)
        report_progress(progress, 0.1, "Reading dimensions")
        indptr = np.asarray(f[INDPTR_DATASET][:], dtype=INDEX_DTYPE)

        data_dataset = _require(f, DATA_DATASET)
        indices_dataset = _require(f, INDICES_DATASET)
        for name, dataset in ((DATA_DATASET, data_dataset), (INDICES_DATASET, indices_dataset)):
            if _extent(dataset, name) != dims.nnz:
                raise DatabaseFormatError(f"'{name}' length must match the last entry of '{INDPTR_DATASET}', not: {dataset.shape[0]} vs. {dims.nnz}")

        report_progress(progress, 0.25, "Reading sparse time series")
        data = read_chunked(data_dataset, dims.nnz, chunk_size, VALUE_DTYPE, DATA_DATASET, scaled_progress(progress, 0.25, 0.6))
        indices = read_chunked(indices_dataset, dims.nnz, chunk_size, INDEX_DTYPE, INDICES_DATASET, scaled_progress(progress, 0.6, 0.9))

    timeseries = decode_csr(data, indices, indptr, (dims.n_sequences, dims.n_samples))
    del data, indices
    column_totals = timeseries.sum(axis=0)
    timeseries.flags.writeable = False
    column_totals.flags.writeable = False
    report_progress(progress, 1.0, "Time series loaded")
    return timeseries, column_totals, dims


def make_sequence_table(sequence_ids: Sequence[str], taxonomy: Sequence[str], phylo_clusters: Sequence[int]) -> pd.DataFrame:
    """Bundle the per-sequence metadata into one table indexed by sequence position.

    Raises:
        DatabaseFormatError: If the inputs differ in length
    """
    if not (len(sequence_ids) == len(taxonomy) == len(phylo_clusters)):
        raise DatabaseFormatError(f"'{SEQUENCE_IDS_DATASET}', '{TAXONOMY_DATASET}' and '{SEQUENCE_CLUSTERS_DATASET}' must have the same length, not: {len(sequence_ids)}, {len(taxonomy)}, {len(phylo_clusters)}")
    return pd.DataFrame({
        SEQUENCE_ID_COL: pd.Series(list(sequence_ids), dtype=object),
        TAXONOMY_COL: pd.Series(list(taxonomy), dtype=object),
        PHYLO_CLUSTER_COL: np.asarray(phylo_clusters, dtype=INDEX_DTYPE),
    })


def _read_labels(dataset) -> np.ndarray:
    values = dataset[:]
    if values.dtype.kind in "SOU":
        return np.array([int(x) for x in decode_strings(values)], dtype=INDEX_DTYPE)
    return values.astype(INDEX_DTYPE)


def load_metadata(path: Union[PathLike, str]) -> Tuple[pd.DataFrame, np.ndarray, EpsilonSweep]:
    """Load per-sequence metadata, sample times and the epsilon sweep parameters.

    Args:
        path: HDF5 database file

    Returns:
        (sequences, time_axis, sweep): table with columns sequence_id, taxonomy, phylo_cluster;
        collection time of each sample; the epsilon range of the cluster matrix.

    Raises:
        FileNotFoundError: If the file does not exist
        DatabaseFormatError: If a dataset or attribute is missing
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Time-series database not found: {path}")

    with h5py.File(path, 'r') as f:
        taxonomy = decode_strings(_require(f, TAXONOMY_DATASET)[:])
        phylo_clusters = _read_labels(_require(f, SEQUENCE_CLUSTERS_DATASET))
        sequence_ids = decode_strings(_require(f, SEQUENCE_IDS_DATASET)[:])
        time_axis = np.asarray(_require(f, SAMPLE_TIME_DATASET)[:], dtype=VALUE_DTYPE)

        clusters = _require(f, CLUSTERS_DATASET)
        param_min = _scalar_attr(clusters, PARAM_MIN_ATTR, CLUSTERS_DATASET)
        param_max = _scalar_attr(clusters, PARAM_MAX_ATTR, CLUSTERS_DATASET)
        param_step = _scalar_attr(clusters, PARAM_STEP_ATTR, CLUSTERS_DATASET)
        n_params = clusters.shape[0]

    if not param_step > 0:
        raise DatabaseFormatError(f"Attribute '{PARAM_STEP_ATTR}' on '{CLUSTERS_DATASET}' must be positive, not: {param_step}")
    sweep = EpsilonSweep(param_min=param_min, param_max=param_max, param_step=param_step, n_params=n_params)
    if n_params > 0 and not np.isclose(sweep.epsilon(n_params - 1), param_max):
        warnings.warn(f"'{PARAM_MAX_ATTR}' ({param_max}) does not match the last epsilon of the {n_params} rows of '{CLUSTERS_DATASET}' ({sweep.epsilon(n_params - 1)}).")

    sequences = make_sequence_table(sequence_ids, taxonomy, phylo_clusters)
    time_axis.flags.writeable = False
    return sequences, time_axis, sweep


def check_alignment(dims: DatabaseDims, sequences: pd.DataFrame, time_axis: np.ndarray):
    """Check that the metadata lines up with the rows and columns of the abundance matrix.

    Raises:
        DatabaseFormatError: If the sizes disagree
    """
    if len(sequences) != dims.n_sequences:
        raise DatabaseFormatError(f"'{TAXONOMY_DATASET}' and '{SEQUENCE_CLUSTERS_DATASET}' length must match the number of sequences, not: {len(sequences)} vs. {dims.n_sequences}")
    if time_axis.shape != (dims.n_samples,):
        raise DatabaseFormatError(f"'{SAMPLE_TIME_DATASET}' length must match the number of samples, not: {time_axis.shape} vs. {dims.n_samples}")


def write_database(file_name: Union[PathLike, str], timeseries, sequence_ids: List[str], taxonomy: List[str], phylo_clusters, time_axis, clusters, param_min: float, param_step: float, param_max: Optional[float] = None, sample_names: Optional[List[str]] = None):
    """Writes a time-series database to an hdf5 file.

    Args:
        file_name: path to the target file to write the data to
        timeseries: 2d array or scipy sparse matrix, sequences x samples
        sequence_ids: identifier of each sequence
        taxonomy: taxonomy string of each sequence
        phylo_clusters: stable cluster label of each sequence
        time_axis: collection time of each sample
        clusters: 2d int array, n_params x sequences
        param_min: epsilon of the first row of clusters
        param_step: epsilon increment between rows of clusters
        param_max: epsilon of the last row of clusters, computed if not supplied
        sample_names: optional name of each sample
    """
    matrix = scipy.sparse.csr_array(timeseries)
    matrix.sort_indices()
    clusters = np.asarray(clusters, dtype=INDEX_DTYPE)
    time_axis = np.asarray(time_axis, dtype=VALUE_DTYPE)

    if len(matrix.shape) != 2:
        raise ValueError(f"timeseries must be 2-dimensional, not: {matrix.shape}")
    n_sequences, n_samples = matrix.shape
    if len(sequence_ids) != n_sequences:
        raise ValueError(f"sequence_ids size must match timeseries dim 0, not: {len(sequence_ids)} vs. {n_sequences}")
    if time_axis.shape != (n_samples,):
        raise ValueError(f"time_axis size must match timeseries dim 1, not: {time_axis.shape} vs. {n_samples}")
    if clusters.ndim != 2 or clusters.shape[1] != n_sequences:
        raise ValueError(f"clusters must be 2-dimensional with one column per sequence, not: {clusters.shape}")
    if sample_names is not None and len(sample_names) != n_samples:
        raise ValueError(f"sample_names size must match timeseries dim 1, not: {len(sample_names)} vs. {n_samples}")
    if param_max is None:
        param_max = param_min + (clusters.shape[0] - 1) * param_step

    with h5py.File(file_name, 'w') as f:
        f.create_dataset(SAMPLE_TIME_DATASET, data=time_axis)
        if sample_names is not None:
            f.create_dataset(SAMPLE_NAMES_DATASET, data=list(sample_names), dtype=UTF8_h5py_encoding)

        f.create_dataset(SEQUENCE_IDS_DATASET, data=list(sequence_ids), dtype=UTF8_h5py_encoding)
        f.create_dataset(TAXONOMY_DATASET, data=list(taxonomy), dtype=UTF8_h5py_encoding)
        f.create_dataset(SEQUENCE_CLUSTERS_DATASET, data=np.asarray(phylo_clusters, dtype=INDEX_DTYPE))

        cluster_dataset = f.create_dataset(CLUSTERS_DATASET, data=clusters)
        cluster_dataset.attrs[PARAM_MIN_ATTR] = param_min
        cluster_dataset.attrs[PARAM_MAX_ATTR] = param_max
        cluster_dataset.attrs[PARAM_STEP_ATTR] = param_step

        f.create_dataset(DATA_DATASET, data=matrix.data.astype(VALUE_DTYPE))
        f.create_dataset(INDICES_DATASET, data=matrix.indices.astype(INDEX_DTYPE))
        f.create_dataset(INDPTR_DATASET, data=matrix.indptr.astype(INDEX_DTYPE))
