"""Counts the number of time-series clusters found at every clustering parameter (epsilon) of a time-series database.

Writes a tsv file with the columns: epsilon, n_clusters.
By default the noise label (-1) is counted as a cluster.
"""
from jsonargparse import ArgumentParser, ActionConfigFile
import sys

from tsexplore import __version__, RawAndDefaultsFormatter
from tsexplore.session import SessionConfig, load_database
from tsexplore.utils import TqdmProgress, get_file_type


def cluster_sweep(session, out_handle, include_noise=True, progress=None):
    counts = session.sweep_cluster_counts(progress=progress, include_noise=include_noise)
    print("epsilon\tn_clusters", file=out_handle)
    for epsilon, count in zip(session.sweep.values(), counts):
        print(f"{epsilon:.15g}\t{count}", file=out_handle)


def main(argv):
    parser = ArgumentParser(f"\nversion: {__version__}\n\n" + __doc__, formatter_class=RawAndDefaultsFormatter)

    parser.add_argument("-i", "--input", default=None, required=True, type=str, help="time-series database hdf5 file.")

    parser.add_argument("-o", "--output", default=None, required=False, type=str,
                        help="tsv file to write output to. If not supplied, writes to stdout.")

    parser.add_argument("--cpu", default=1, type=int, required=False,
                        help="number of processes to read cluster rows with.")

    parser.add_argument("--exclude_noise", action="store_true", default=False,
                        help="do not count the noise label (-1) as a cluster.")

    parser.add_argument("--chunk_size", default=10000, type=int, required=False,
                        help="number of sparse values to read from the database at a time.")

    parser.add_argument("--progress", action="store_true", default=False,
                        help="show progress bars on stderr.")

    parser.add_argument('--config', action=ActionConfigFile)

    params = parser.parse_args(argv)

    if get_file_type(params.input) != "hdf5":
        raise ValueError("Please supply an hdf5 database, with an extension such as .h5, .hdf5, or .hdf.")

    config = SessionConfig(chunk_size=params.chunk_size, cpu=params.cpu)

    if params.progress:
        with TqdmProgress("Loading database") as progress:
            session = load_database(params.input, config, progress)
    else:
        session = load_database(params.input, config)

    out = sys.stdout
    if params.output is not None:
        out = open(params.output, "w")

    ### Run
    if params.progress:
        with TqdmProgress("Counting clusters") as progress:
            cluster_sweep(session, out, not params.exclude_noise, progress)
    else:
        cluster_sweep(session, out, not params.exclude_noise)

    if params.output is not None:
        out.close()

def _entrypoint():
    main(sys.argv[1:])

if __name__ == '__main__':
    main(sys.argv[1:])
