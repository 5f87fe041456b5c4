"""
Unit tests for core pipeline orchestration.

Tests cover:
- Single-gene analysis from sequences to the final k-means partition
- Seed assignment across genes
- Per-gene failure isolation
- Serial and multiprocessing runs giving identical results
"""

import unittest

import numpy as np

from geneclust import core
from geneclust.config import get_default_config
from geneclust.distance import InsufficientOverlapError
from geneclust.optimal_k import DegenerateInputError
from geneclust.sequences import SequenceSet

BASE = "ACGTTGCA" * 5

# Eight transversions separate the two groups
DIVERGED = {3: "A", 7: "T", 13: "C", 17: "G", 23: "C", 27: "G", 33: "A", 37: "T"}


def _mutate(seq, changes):
    chars = list(seq)
    for pos, base in changes.items():
        chars[pos] = base
    return "".join(chars)


def two_group_sequences(name="NOTCH3"):
    """Two groups of three sequences, a few transitions apart within each group."""
    other = _mutate(BASE, DIVERGED)
    return SequenceSet.from_mapping(name, {
        "Orcinus orca": BASE,
        "Orcinus orca_b": _mutate(BASE, {0: "G"}),
        "Tursiops truncatus": _mutate(BASE, {10: "A"}),
        "Kogia sima": other,
        "Kogia breviceps": _mutate(other, {20: "C"}),
        "Physeter catodon": _mutate(other, {30: "T"}),
    })


def _analysis_config():
    return get_default_config().update(hierarchical__threshold=0.1, kmeans__k_max=4)


class TestAnalyzeGene(unittest.TestCase):
    """Test the single-gene workflow."""

    def test_two_groups(self):
        result = core.analyze_gene(two_group_sequences(), _analysis_config())

        self.assertEqual(result.gene, "NOTCH3")
        self.assertEqual(result.seed, 123)
        self.assertEqual(result.matrix.model, "TN93")
        self.assertEqual(len(result.matrix), 6)

        flat = result.flat_clustering
        self.assertEqual(flat.n_clusters, 2)
        np.testing.assert_array_equal(flat.cluster_ids, [1, 1, 1, 2, 2, 2])

        self.assertEqual(result.selection.best_k, 2)
        ids = result.partition.cluster_ids
        self.assertEqual(len(set(ids[:3])), 1)
        self.assertEqual(len(set(ids[3:])), 1)
        self.assertNotEqual(ids[0], ids[3])

    def test_final_partition_uses_selection_seed(self):
        result = core.analyze_gene(two_group_sequences(), _analysis_config(), seed=99)
        self.assertEqual(result.seed, 99)
        self.assertEqual(result.partition.seed, 99)
        self.assertIs(result.partition, result.selection.best_partition)

    def test_summary_row(self):
        result = core.analyze_gene(two_group_sequences(), _analysis_config())
        row = result.summary()
        self.assertEqual(row['gene'], "NOTCH3")
        self.assertEqual(row['n_sequences'], 6)
        self.assertEqual(row['n_hierarchical_clusters'], 2)
        self.assertEqual(row['best_k'], 2)
        self.assertEqual(row['status'], 'ok')

    def test_length_and_distance_qc(self):
        seq_set = two_group_sequences()
        with self.assertLogs("geneclust.core", level="INFO") as logs:
            result = core.analyze_gene(seq_set, _analysis_config())

        row = result.summary()
        self.assertEqual(row['min_length'], 40)
        self.assertEqual(row['median_length'], 40.0)
        self.assertEqual(row['max_length'], 40)
        self.assertEqual(row['max_distance'], float(result.matrix.values.max()))
        self.assertGreater(row['mean_distance'], 0.0)
        self.assertLess(row['mean_distance'], row['max_distance'])

        output = "\n".join(logs.output)
        self.assertIn("Unambiguous lengths: min 40", output)
        self.assertIn("15 pairwise distances", output)

    def test_add_failures_keeps_input_order(self):
        run = core.run_analysis([two_group_sequences("BRCA1")], _analysis_config())
        run.add_failures({"NOTCH3": "AlignmentLengthError: bad"}, gene_order=["NOTCH3", "BRCA1"])
        self.assertEqual(run.genes, ["NOTCH3", "BRCA1"])
        self.assertFalse(run.success)
        self.assertEqual(list(run.results), ["BRCA1"])

    def test_too_few_sequences_raises(self):
        seq_set = SequenceSet.from_mapping("BRCA1", {"a": BASE, "b": _mutate(BASE, {0: "G"})})
        with self.assertRaises(DegenerateInputError):
            core.analyze_gene(seq_set, _analysis_config())


class TestRunAnalysis(unittest.TestCase):
    """Test multi-gene runs."""

    def test_seeds_follow_input_order(self):
        run = core.run_analysis(
            [two_group_sequences("NOTCH3"), two_group_sequences("BRCA1")], _analysis_config()
        )
        self.assertTrue(run.success)
        self.assertEqual(run.genes, ["NOTCH3", "BRCA1"])
        self.assertEqual(list(run.results), ["NOTCH3", "BRCA1"])
        self.assertEqual(run.results["NOTCH3"].seed, 123)
        self.assertEqual(run.results["BRCA1"].seed, 124)

    def test_explicit_seeds(self):
        cfg = _analysis_config().update(kmeans__seeds={"BRCA1": 7})
        run = core.run_analysis([two_group_sequences("NOTCH3"), two_group_sequences("BRCA1")], cfg)
        self.assertEqual(run.results["NOTCH3"].seed, 123)
        self.assertEqual(run.results["BRCA1"].seed, 7)

    def test_failing_gene_is_isolated(self):
        small = SequenceSet.from_mapping("BRCA1", {"a": BASE, "b": _mutate(BASE, {0: "G"})})
        no_overlap = SequenceSet.from_mapping("MC1R", {
            "a": "ACGT----", "b": "----ACGT", "c": "ACGTACGT",
        })
        run = core.run_analysis([two_group_sequences("NOTCH3"), small, no_overlap], _analysis_config())

        self.assertFalse(run.success)
        self.assertEqual(list(run.results), ["NOTCH3"])
        self.assertIn("DegenerateInputError", run.errors["BRCA1"])
        self.assertIn(InsufficientOverlapError.__name__, run.errors["MC1R"])

    def test_duplicate_gene_names(self):
        with self.assertRaises(ValueError):
            core.run_analysis([two_group_sequences("X"), two_group_sequences("X")], _analysis_config())

    def test_parallel_matches_serial(self):
        genes = [two_group_sequences("NOTCH3"), two_group_sequences("BRCA1")]
        serial = core.run_analysis(genes, _analysis_config())
        parallel = core.run_analysis(genes, _analysis_config().update(n_threads=2))

        self.assertEqual(list(parallel.results), list(serial.results))
        for gene in serial.results:
            a, b = serial.results[gene], parallel.results[gene]
            self.assertEqual(a.seed, b.seed)
            self.assertEqual(a.selection.scores, b.selection.scores)
            np.testing.assert_array_equal(a.partition.cluster_ids, b.partition.cluster_ids)
            np.testing.assert_array_equal(a.matrix.values, b.matrix.values)


if __name__ == '__main__':
    unittest.main()
