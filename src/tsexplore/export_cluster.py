"""Exports the sequences of one cluster from a time-series database.

Select either a time-series cluster (--eps and --cluster) or a phylogenetic cluster (--eps and --otu).
If --cluster is not supplied, the most abundant non-noise time-series cluster at --eps is exported.

The csv output has one row per sequence, with its identifier, total abundance, taxonomy and the other kind of cluster label.
--timeseries appends the raw time series of each sequence (time-series clusters only), with the sample times as column names.
--normalized writes one of the normalized views of the time series to a separate tsv file:
    raw:       abundance as stored
    by_column: abundance divided by the total abundance of each sample (sequencing depth), 0 where a sample is empty
    by_row:    abundance divided by the total abundance of the sequence
    double:    by_column, then divided by its row total
"""
from jsonargparse import ArgumentParser, ActionConfigFile
import sys

import pandas as pd

from tsexplore import __version__, RawAndDefaultsFormatter
from tsexplore.normalize import MODES
from tsexplore.session import ClusterFilter, PHYLO_CLUSTER, SessionConfig, load_database
from tsexplore.timeseries_database import SEQUENCE_ID_COL
from tsexplore.utils import get_file_type


def write_normalized(session, row_filter, mode, file_name):
    rows = session.select_rows(row_filter)
    view = session.normalize_subset(row_filter)[mode]
    table = pd.DataFrame(view, index=session.sequences[SEQUENCE_ID_COL].iloc[rows].to_numpy(), columns=list(session.time_axis))
    table.to_csv(file_name, sep="\t", index_label="SequenceID")


def export_cluster(session, row_filter, out_handle, timeseries=False, normalized=None, mode="by_column"):
    if row_filter.kind == PHYLO_CLUSTER:
        table = session.phylo_cluster_table(row_filter.label)
    elif timeseries:
        table = session.timeseries_table(row_filter.label)
    else:
        table = session.cluster_table(row_filter.label)

    print(f"{row_filter.kind} cluster {row_filter.label}: {len(table)} sequences", file=sys.stderr)
    table.to_csv(out_handle, index=False)

    if normalized is not None:
        write_normalized(session, row_filter, mode, normalized)


def main(argv):
    parser = ArgumentParser(f"\nversion: {__version__}\n\n" + __doc__, formatter_class=RawAndDefaultsFormatter)

    parser.add_argument("-i", "--input", default=None, required=True, type=str, help="time-series database hdf5 file.")

    parser.add_argument("--eps", default=None, required=True, type=float,
                        help="clustering parameter. Must be one of the values the database was clustered at.")

    parser.add_argument("--cluster", default=None, required=False, type=int,
                        help="time-series cluster to export. Default: the most abundant cluster other than noise.")

    parser.add_argument("--otu", default=None, required=False, type=int,
                        help="export this phylogenetic cluster instead of a time-series cluster.")

    parser.add_argument("-o", "--output", default=None, required=False, type=str,
                        help="csv file to write the cluster table to. If not supplied, writes to stdout.")

    parser.add_argument("--timeseries", action="store_true", default=False,
                        help="append the raw time series to the cluster table.")

    parser.add_argument("--normalized", default=None, required=False, type=str,
                        help="write a normalized view of the time series to this tsv file.")

    parser.add_argument("--mode", default="by_column", required=False, type=str, choices=list(MODES.keys()),
                        help="which normalized view to write with --normalized.")

    parser.add_argument("--chunk_size", default=10000, type=int, required=False,
                        help="number of sparse values to read from the database at a time.")

    parser.add_argument('--config', action=ActionConfigFile)

    params = parser.parse_args(argv)

    if get_file_type(params.input) != "hdf5":
        raise ValueError("Please supply an hdf5 database, with an extension such as .h5, .hdf5, or .hdf.")
    if params.cluster is not None and params.otu is not None:
        parser.error("--cluster and --otu are mutually exclusive.")
    if params.otu is not None and params.timeseries:
        parser.error("--timeseries is only available for time-series clusters.")

    session = load_database(params.input, SessionConfig(chunk_size=params.chunk_size))
    session.select_epsilon(params.eps)

    if params.otu is not None:
        row_filter = ClusterFilter.phylo_cluster(params.otu)
    else:
        cluster = params.cluster if params.cluster is not None else session.default_cluster()
        if cluster is None:
            raise ValueError("The database contains no sequences to export.")
        row_filter = ClusterFilter.time_cluster(cluster)

    out = sys.stdout
    if params.output is not None:
        out = open(params.output, "w")

    ### Run
    export_cluster(session, row_filter, out, params.timeseries, params.normalized, params.mode)

    if params.output is not None:
        out.close()

def _entrypoint():
    main(sys.argv[1:])

if __name__ == '__main__':
    main(sys.argv[1:])
