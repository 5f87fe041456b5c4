"""
Unit tests for writing analysis outputs.

Tests cover:
- Per-gene artifact files and their contents
- The cross-gene summary table, including failed genes
- Reloading a written distance matrix
"""

import unittest
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
from Bio import Phylo

from geneclust import core, reports
from geneclust.distance import DistanceMatrix
from geneclust.sequences import SequenceSet

from test_core import two_group_sequences, _analysis_config


class TestGeneOutputs(unittest.TestCase):
    """Test the files written for one gene."""

    @classmethod
    def setUpClass(cls):
        cls.result = core.analyze_gene(two_group_sequences("NOTCH3"), _analysis_config())

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.output = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_all_files_written(self):
        files = reports.write_gene_outputs(self.result, self.output)
        gene_dir = self.output / "NOTCH3"
        expected = [
            "NOTCH3_distance_matrix.csv",
            "NOTCH3_hierarchical_clusters.tsv",
            "NOTCH3_kmeans_clusters.tsv",
            "NOTCH3_kmeans_centroids.tsv",
            "NOTCH3_silhouette_scores.tsv",
            "NOTCH3_dendrogram.nwk",
        ]
        for name in expected:
            self.assertTrue((gene_dir / name).exists(), msg=name)
        self.assertEqual(len(files), len(expected))

    def test_cluster_tables(self):
        files = reports.write_gene_outputs(self.result, self.output)
        hier = pd.read_csv(files['hierarchical_clusters'], sep='\t')
        self.assertEqual(list(hier.columns), ["label", "cluster_id"])
        self.assertEqual(hier["label"].tolist(), list(self.result.matrix.labels))
        self.assertEqual(hier["cluster_id"].tolist(), [1, 1, 1, 2, 2, 2])

        km = pd.read_csv(files['kmeans_clusters'], sep='\t')
        self.assertEqual(km["cluster_id"].nunique(), 2)

        scores = pd.read_csv(files['silhouette_scores'], sep='\t')
        self.assertEqual(scores["k"].tolist(), [2, 3, 4])
        self.assertEqual(int(scores.loc[scores["selected"], "k"].iloc[0]), 2)

    def test_distance_matrix_round_trip(self):
        files = reports.write_gene_outputs(self.result, self.output)
        loaded = reports.read_distance_matrix(files['distance_matrix'], name="NOTCH3")
        self.assertEqual(loaded.labels, self.result.matrix.labels)
        np.testing.assert_allclose(loaded.values, self.result.matrix.values)

    def test_newick_file(self):
        files = reports.write_gene_outputs(self.result, self.output)
        tree = Phylo.read(str(files['dendrogram']), "newick")
        names = sorted(t.name for t in tree.get_terminals())
        self.assertEqual(names, sorted(self.result.matrix.labels))


class TestAnalysisOutputs(unittest.TestCase):
    """Test the run-level outputs."""

    def test_summary_includes_failed_genes(self):
        small = SequenceSet.from_mapping("BRCA1", {"a": "ACGTACGT", "b": "ACGTACGA"})
        cfg = _analysis_config()
        run = core.run_analysis([two_group_sequences("NOTCH3"), small], cfg)

        with tempfile.TemporaryDirectory() as tmpdir:
            summary_path = reports.write_analysis_outputs(run, cfg, tmpdir)
            summary = pd.read_csv(summary_path, sep='\t')
            self.assertTrue((Path(tmpdir) / "analysis_parameters.json").exists())
            self.assertTrue((Path(tmpdir) / "NOTCH3" / "NOTCH3_distance_matrix.csv").exists())
            self.assertFalse((Path(tmpdir) / "BRCA1").exists())

        self.assertEqual(list(summary.columns), reports.SUMMARY_COLUMNS)
        self.assertEqual(summary["gene"].tolist(), ["NOTCH3", "BRCA1"])
        self.assertEqual(summary["status"].tolist(), ["ok", "failed"])
        self.assertEqual(summary.loc[0, "best_k"], 2)
        self.assertIn("DegenerateInputError", summary.loc[1, "error"])


class TestReadDistanceMatrix(unittest.TestCase):
    """Test loading matrices from CSV."""

    def test_label_order_preserved(self):
        matrix = DistanceMatrix(("z", "a", "m"), [[0, 0.1, 0.2], [0.1, 0, 0.3], [0.2, 0.3, 0]])
        with tempfile.TemporaryDirectory() as tmpdir:
            path = matrix.to_csv(Path(tmpdir) / "m.csv")
            loaded = reports.read_distance_matrix(path)
        self.assertEqual(loaded.labels, ("z", "a", "m"))
        self.assertEqual(loaded.name, "m")
        np.testing.assert_array_equal(loaded.values, matrix.values)

    def test_missing_value_like_labels(self):
        matrix = DistanceMatrix(("NA", "nan", "None"), [[0, 0.1, 0.2], [0.1, 0, 0.3], [0.2, 0.3, 0]])
        with tempfile.TemporaryDirectory() as tmpdir:
            path = matrix.to_csv(Path(tmpdir) / "m.csv")
            loaded = reports.read_distance_matrix(path)
        self.assertEqual(loaded.labels, ("NA", "nan", "None"))
        np.testing.assert_array_equal(loaded.values, matrix.values)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            reports.read_distance_matrix("/nonexistent/matrix.csv")


if __name__ == '__main__':
    unittest.main()
