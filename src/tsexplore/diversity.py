"""Taxonomic consistency of time-series clusters.

For every taxonomic level below Kingdom and every cluster other than noise, the Simpson index
(sum of squared proportions) of the taxa found in the cluster at that level. A cluster whose
sequences are all from the same taxon scores 1, lower values mean more taxonomic diversity.

Sequences that are unclassified at a level (the bare rank code, e.g. "g__", or a missing rank)
do not count towards that level. Clusters with no classified sequences at a level are left out
of that level entirely.
"""
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from tsexplore import NOISE_LABEL, TAXONOMY_DELIMITER, TAXONOMY_LEVELS, TAXONOMY_SHORT_CODES

DIVERSITY_LEVELS = range(2, len(TAXONOMY_LEVELS) + 1)
"""levels are numbered from 1 (Kingdom) to 7 (Species)"""


def simpson_index(counts) -> Optional[float]:
    """
        sum(p_i ** 2), where p_i = counts_i / sum(counts)

        returns None if there are no counts.
    """
    counts = np.asarray(counts, dtype=np.float64)
    total = counts.sum()
    if counts.size == 0 or total == 0:
        return None
    proportions = counts / total
    return float(np.sum(proportions ** 2))


def taxonomy_token_table(taxonomy: Sequence[str]) -> pd.DataFrame:
    """Split every taxonomy string once into one column per level.

    Args:
        taxonomy: ';' delimited taxonomy strings, one per sequence

    Returns:
        pd.DataFrame: one row per sequence (same order), columns Kingdom..Species.
            Unclassified and missing ranks are None.
    """
    n_levels = len(TAXONOMY_LEVELS)
    rows = list()
    for taxon in taxonomy:
        parts = [part.strip() for part in str(taxon).split(TAXONOMY_DELIMITER)][:n_levels]
        parts += [""] * (n_levels - len(parts))
        rows.append([None if part in ("", short_code) else part for part, short_code in zip(parts, TAXONOMY_SHORT_CODES)])
    return pd.DataFrame(rows, columns=list(TAXONOMY_LEVELS), dtype=object)


def _level_name(level: int) -> str:
    if level not in DIVERSITY_LEVELS:
        raise ValueError(f"taxonomic level must be between {DIVERSITY_LEVELS.start} and {DIVERSITY_LEVELS.stop - 1}, not: {level}")
    return TAXONOMY_LEVELS[level - 1]


def simpson_by_cluster(level: int, cluster_labels, tokens: pd.DataFrame) -> List[float]:
    """Simpson index of each non-noise cluster at one taxonomic level.

    Args:
        level: taxonomic level, 2 (Phylum) to 7 (Species)
        cluster_labels: cluster of each sequence
        tokens: output of taxonomy_token_table, aligned with cluster_labels

    Returns:
        List[float]: one value per cluster that has classified sequences at this level, in ascending cluster order
    """
    level_name = _level_name(level)
    cluster_labels = np.asarray(cluster_labels)
    if cluster_labels.shape[0] != len(tokens):
        raise ValueError(f"cluster_labels size must match the number of taxonomy rows, not: {cluster_labels.shape[0]} vs. {len(tokens)}")

    frame = pd.DataFrame({"cluster": cluster_labels, "taxon": tokens[level_name].to_numpy()})
    frame = frame[(frame["cluster"] != NOISE_LABEL) & frame["taxon"].notna()]

    out = list()
    for _, group in frame.groupby("cluster", sort=True):
        index = simpson_index(group["taxon"].value_counts().to_numpy())
        if index is not None:
            out.append(index)
    return out


def diversity_by_level(cluster_labels, tokens: pd.DataFrame, levels: Iterable[int] = DIVERSITY_LEVELS) -> Dict[str, List[float]]:
    """Simpson indices of the clusters, grouped by taxonomic level name, in level order."""
    out = OrderedDict()
    for level in levels:
        out[_level_name(level)] = simpson_by_cluster(level, cluster_labels, tokens)
    return out


def diversity_table(diversity: Dict[str, List[float]]) -> pd.DataFrame:
    """Long format table (values, level) of the output of diversity_by_level, one row per index."""
    rows = [(value, level_name) for level_name, values in diversity.items() for value in values]
    table = pd.DataFrame(rows, columns=["values", "level"])
    table["level"] = pd.Categorical(table["level"], categories=list(diversity.keys()), ordered=True)
    return table
