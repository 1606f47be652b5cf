import numpy as np
import pandas as pd
import pytest

from helpers import SCENARIO_CLUSTERS, SCENARIO_TAXONOMY
from tsexplore import TAXONOMY_LEVELS
from tsexplore.diversity import (diversity_by_level, diversity_table, simpson_by_cluster, simpson_index,
                                 taxonomy_token_table)


@pytest.mark.parametrize("counts,expected",
[
    ([1, 1], 0.5),
    ([3], 1.0),
    ([2, 1, 1], 0.375),
    ([5, 5, 5, 5], 0.25),
])
def test_simpson_index(counts, expected):
    assert simpson_index(counts) == pytest.approx(expected)


def test_simpson_index_empty():
    assert simpson_index([]) is None
    assert simpson_index([0, 0]) is None


def test_taxonomy_token_table():
    tokens = taxonomy_token_table(SCENARIO_TAXONOMY)
    assert list(tokens.columns) == list(TAXONOMY_LEVELS)
    assert len(tokens) == 4
    assert list(tokens["Kingdom"]) == ["k__Bacteria"] * 4
    assert list(tokens["Phylum"]) == ["p__Firmicutes", "p__Firmicutes", "p__Proteobacteria", None]
    assert list(tokens["Order"]) == ["o__Lactobacillales", "o__Clostridiales", None, None]
    assert list(tokens["Species"]) == [None, None, None, None]


def test_taxonomy_token_table_short_and_padded():
    tokens = taxonomy_token_table(["k__Bacteria; p__Firmicutes ;c__Bacilli", "k__Archaea", ""])
    assert list(tokens.iloc[0]) == ["k__Bacteria", "p__Firmicutes", "c__Bacilli", None, None, None, None]
    assert list(tokens.iloc[1]) == ["k__Archaea", None, None, None, None, None, None]
    assert list(tokens.iloc[2]) == [None] * 7


def test_taxonomy_token_table_empty():
    tokens = taxonomy_token_table([])
    assert len(tokens) == 0
    assert list(tokens.columns) == list(TAXONOMY_LEVELS)


def test_simpson_by_cluster_scenario():
    tokens = taxonomy_token_table(SCENARIO_TAXONOMY)
    labels = np.array(SCENARIO_CLUSTERS[0])
    assert simpson_by_cluster(2, labels, tokens) == pytest.approx([1.0, 1.0])
    assert simpson_by_cluster(3, labels, tokens) == pytest.approx([0.5, 1.0])
    assert simpson_by_cluster(4, labels, tokens) == pytest.approx([0.5])
    assert simpson_by_cluster(7, labels, tokens) == []


def test_simpson_by_cluster_excludes_noise():
    tokens = taxonomy_token_table(["k__B;p__X", "k__B;p__Y", "k__B;p__X", "k__B;p__X"])
    labels = np.array([-1, -1, 3, 3])
    assert simpson_by_cluster(2, labels, tokens) == pytest.approx([1.0])


def test_simpson_by_cluster_ascending_cluster_order():
    tokens = taxonomy_token_table(["k__B;p__X", "k__B;p__X", "k__B;p__Y", "k__B;p__X"])
    labels = np.array([9, 2, 9, 2])
    # cluster 2 is pure, cluster 9 is mixed
    assert simpson_by_cluster(2, labels, tokens) == pytest.approx([1.0, 0.5])


@pytest.mark.parametrize("level", [0, 1, 8])
def test_simpson_by_cluster_invalid_level(level):
    tokens = taxonomy_token_table(SCENARIO_TAXONOMY)
    with pytest.raises(ValueError):
        simpson_by_cluster(level, np.array(SCENARIO_CLUSTERS[0]), tokens)


def test_simpson_by_cluster_misaligned():
    tokens = taxonomy_token_table(SCENARIO_TAXONOMY)
    with pytest.raises(ValueError):
        simpson_by_cluster(2, np.array([0, 0, 1]), tokens)


def test_diversity_by_level_scenario():
    tokens = taxonomy_token_table(SCENARIO_TAXONOMY)
    diversity = diversity_by_level(np.array(SCENARIO_CLUSTERS[0]), tokens)

    assert list(diversity.keys()) == ["Phylum", "Class", "Order", "Family", "Genus", "Species"]
    assert diversity["Phylum"] == pytest.approx([1.0, 1.0])
    assert diversity["Class"] == pytest.approx([0.5, 1.0])
    assert diversity["Order"] == pytest.approx([0.5])
    assert diversity["Family"] == pytest.approx([1.0])
    assert diversity["Genus"] == pytest.approx([1.0])
    assert diversity["Species"] == []


def test_diversity_by_level_unclassified_member():
    # cluster 2 holds seqA and seqD, seqD is unclassified below Kingdom
    tokens = taxonomy_token_table(SCENARIO_TAXONOMY)
    diversity = diversity_by_level(np.array(SCENARIO_CLUSTERS[2]), tokens, levels=[2])
    assert list(diversity.keys()) == ["Phylum"]
    assert diversity["Phylum"] == pytest.approx([1.0])


def test_diversity_values_in_unit_interval():
    rng = np.random.default_rng(11)
    taxonomy = [f"k__B;p__P{rng.integers(3)};c__C{rng.integers(6)};o__;f__F{rng.integers(10)}" for _ in range(200)]
    labels = rng.integers(-1, 12, size=200)
    diversity = diversity_by_level(labels, taxonomy_token_table(taxonomy))
    for values in diversity.values():
        assert all(0 < value <= 1 for value in values)
    assert diversity["Order"] == []


def test_diversity_table():
    table = diversity_table({"Phylum": [1.0, 1.0], "Class": [0.5], "Order": []})
    assert list(table.columns) == ["values", "level"]
    assert list(table["values"]) == [1.0, 1.0, 0.5]
    assert list(table["level"]) == ["Phylum", "Phylum", "Class"]
    assert isinstance(table["level"].dtype, pd.CategoricalDtype)
    assert list(table["level"].cat.categories) == ["Phylum", "Class", "Order"]
