from pathlib import Path

import h5py
import numpy as np
import scipy.sparse

from tsexplore.timeseries_database import write_database

# 4 sequences x 3 samples
# dense rows: [1,0,0], [0,0,2], [0,3,0], [0,0,0], column totals: [1,3,2]
SCENARIO_DATA = [1, 2, 3]
SCENARIO_INDICES = [0, 2, 1]
SCENARIO_INDPTR = [0, 1, 2, 3, 3]
SCENARIO_DENSE = np.array([
    [1, 0, 0],
    [0, 0, 2],
    [0, 3, 0],
    [0, 0, 0],
], dtype=float)

SCENARIO_IDS = ["seqA", "seqB", "seqC", "seqD"]
SCENARIO_TAXONOMY = [
    "k__Bacteria;p__Firmicutes;c__Bacilli;o__Lactobacillales;f__Streptococcaceae;g__Streptococcus;s__",
    "k__Bacteria;p__Firmicutes;c__Clostridia;o__Clostridiales;f__;g__;s__",
    "k__Bacteria;p__Proteobacteria;c__Gammaproteobacteria;o__;f__;g__;s__",
    "k__Bacteria;p__;c__;o__;f__;g__;s__",
]
SCENARIO_PHYLO = [5, 7, 7, -1]
SCENARIO_TIME = [0.0, 1.5, 3.0]
SCENARIO_PARAM_MIN = 0.1
SCENARIO_PARAM_STEP = 0.05
# one row per epsilon: 0.1, 0.15, 0.2
SCENARIO_CLUSTERS = [
    [0, 0, 1, -1],
    [0, 0, 0, -1],
    [2, -1, -1, 2],
]


def write_scenario_database(file_name):
    timeseries = scipy.sparse.csr_array((SCENARIO_DATA, SCENARIO_INDICES, SCENARIO_INDPTR), shape=(4, 3))
    write_database(file_name, timeseries, SCENARIO_IDS, SCENARIO_TAXONOMY, SCENARIO_PHYLO, SCENARIO_TIME,
                   SCENARIO_CLUSTERS, SCENARIO_PARAM_MIN, SCENARIO_PARAM_STEP)
    return Path(file_name)


def random_timeseries(n_sequences=50, n_samples=20, density=0.3, seed=7):
    rng = np.random.default_rng(seed)
    values = rng.integers(1, 100, size=(n_sequences, n_samples)).astype(float)
    return values * (rng.random((n_sequences, n_samples)) < density)


def write_random_database(file_name, timeseries, n_params=6, seed=7):
    rng = np.random.default_rng(seed)
    n_sequences, n_samples = timeseries.shape
    ids = [f"seq{i}" for i in range(n_sequences)]
    taxonomy = [f"k__Bacteria;p__P{i % 3};c__C{i % 5};o__;f__;g__;s__" for i in range(n_sequences)]
    phylo = rng.integers(-1, 5, size=n_sequences)
    clusters = rng.integers(-1, 8, size=(n_params, n_sequences))
    write_database(file_name, timeseries, ids, taxonomy, phylo, np.arange(n_samples) * 2.0,
                   clusters, 1.0, 0.5, sample_names=[f"sample{i}" for i in range(n_samples)])
    return Path(file_name)


def replace_dataset(file_name, name, data):
    """Overwrite one dataset of an existing database, e.g. to corrupt it."""
    with h5py.File(file_name, "a") as f:
        attrs = dict(f[name].attrs) if name in f else {}
        if name in f:
            del f[name]
        dataset = f.create_dataset(name, data=data)
        for key, value in attrs.items():
            dataset.attrs[key] = value


def delete_dataset(file_name, name):
    with h5py.File(file_name, "a") as f:
        del f[name]
