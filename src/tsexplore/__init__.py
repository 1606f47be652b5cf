import argparse

__version__ = "0.1.0"

NOISE_LABEL = -1
"""cluster label of sequences that were not assigned to any cluster"""

TAXONOMY_LEVELS = ("Kingdom", "Phylum", "Class", "Order", "Family", "Genus", "Species")
TAXONOMY_SHORT_CODES = ("k__", "p__", "c__", "o__", "f__", "g__", "s__")
TAXONOMY_DELIMITER = ";"

DEFAULT_CHUNK_SIZE = 10000

class RawAndDefaultsFormatter(argparse.ArgumentDefaultsHelpFormatter, argparse.RawDescriptionHelpFormatter):
    pass
