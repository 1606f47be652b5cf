"""Reports the taxonomic consistency of the time-series clusters at one clustering parameter (epsilon).

For each taxonomic level from Phylum to Species, the Simpson index of the taxa in each cluster (noise excluded).
Writes a long format tsv file with the columns: values, level, suitable for box plots by level.
Sequences unclassified at a level are ignored at that level, and clusters with no classified sequences at a level are omitted from it.
"""
from jsonargparse import ArgumentParser, ActionConfigFile
import sys

from tsexplore import __version__, RawAndDefaultsFormatter
from tsexplore.session import SessionConfig, load_database
from tsexplore.utils import get_file_type


def taxonomic_consistency(session, epsilon, out_handle):
    table = session.diversity_table(epsilon)
    table.to_csv(out_handle, sep="\t", index=False)
    for level, values in session.diversity_by_level(epsilon).items():
        if len(values) == 0:
            print(f"No classified clusters at level {level}", file=sys.stderr)


def main(argv):
    parser = ArgumentParser(f"\nversion: {__version__}\n\n" + __doc__, formatter_class=RawAndDefaultsFormatter)

    parser.add_argument("-i", "--input", default=None, required=True, type=str, help="time-series database hdf5 file.")

    parser.add_argument("--eps", default=None, required=True, type=float,
                        help="clustering parameter to report. Must be one of the values the database was clustered at.")

    parser.add_argument("-o", "--output", default=None, required=False, type=str,
                        help="tsv file to write output to. If not supplied, writes to stdout.")

    parser.add_argument("--chunk_size", default=10000, type=int, required=False,
                        help="number of sparse values to read from the database at a time.")

    parser.add_argument('--config', action=ActionConfigFile)

    params = parser.parse_args(argv)

    if get_file_type(params.input) != "hdf5":
        raise ValueError("Please supply an hdf5 database, with an extension such as .h5, .hdf5, or .hdf.")

    session = load_database(params.input, SessionConfig(chunk_size=params.chunk_size))

    out = sys.stdout
    if params.output is not None:
        out = open(params.output, "w")

    ### Run
    taxonomic_consistency(session, params.eps, out)

    if params.output is not None:
        out.close()

def _entrypoint():
    main(sys.argv[1:])

if __name__ == '__main__':
    main(sys.argv[1:])
