"""
Unit tests for configuration management.

Tests cover:
- Default values
- Validation of invalid parameters
- Nested updates with double-underscore keys
- YAML/JSON round trips and environment overrides
"""

import unittest
from unittest.mock import patch
import tempfile
from pathlib import Path

from geneclust import config
from geneclust.config import (
    DistanceConfig, HierarchicalConfig, KMeansConfig, PipelineConfig,
)


class TestDefaults(unittest.TestCase):
    """Test default configuration values."""

    def test_default_values(self):
        cfg = config.get_default_config()
        self.assertEqual(cfg.distance.model, "TN93")
        self.assertEqual(cfg.distance.min_comparable_sites, 1)
        self.assertTrue(cfg.distance.deduplicate_labels)
        self.assertEqual(cfg.hierarchical.method, "average")
        self.assertEqual(cfg.hierarchical.threshold, 0.03)
        self.assertEqual(cfg.kmeans.k_min, 2)
        self.assertEqual(cfg.kmeans.k_max, 10)
        self.assertEqual(cfg.kmeans.max_iter, 100)
        self.assertEqual(cfg.kmeans.base_seed, 123)
        self.assertEqual(cfg.n_threads, 1)
        self.assertEqual(cfg.output_dir, Path("results"))

    def test_seed_for(self):
        kmeans = KMeansConfig(seeds={"BRCA1": 7})
        self.assertEqual(kmeans.seed_for("NOTCH3", 0), 123)
        self.assertEqual(kmeans.seed_for("OTHER", 1), 124)
        self.assertEqual(kmeans.seed_for("BRCA1", 1), 7)


class TestValidation(unittest.TestCase):
    """Test __post_init__ validation."""

    def test_model_normalized(self):
        self.assertEqual(DistanceConfig(model="k80").model, "K80")

    def test_invalid_model(self):
        with self.assertRaises(ValueError):
            DistanceConfig(model="GTR")

    def test_invalid_min_sites(self):
        with self.assertRaises(ValueError):
            DistanceConfig(min_comparable_sites=0)

    def test_linkage_aliases(self):
        self.assertEqual(HierarchicalConfig(method="UPGMA").method, "average")
        self.assertEqual(HierarchicalConfig(method="WPGMA").method, "weighted")

    def test_invalid_linkage(self):
        with self.assertRaises(ValueError):
            HierarchicalConfig(method="ward")

    def test_negative_threshold(self):
        with self.assertRaises(ValueError):
            HierarchicalConfig(threshold=-0.1)

    def test_invalid_k_range(self):
        with self.assertRaises(ValueError):
            KMeansConfig(k_min=1)
        with self.assertRaises(ValueError):
            KMeansConfig(k_min=5, k_max=4)
        with self.assertRaises(ValueError):
            KMeansConfig(max_iter=0)

    def test_invalid_pipeline_values(self):
        with self.assertRaises(ValueError):
            PipelineConfig(log_level="LOUD")
        with self.assertRaises(ValueError):
            PipelineConfig(n_threads=0)

    def test_output_dir_converted_to_path(self):
        self.assertIsInstance(PipelineConfig(output_dir="out").output_dir, Path)


class TestUpdate(unittest.TestCase):
    """Test creating modified configurations."""

    def test_nested_update(self):
        cfg = config.get_default_config()
        updated = cfg.update(
            n_threads=4,
            distance__model="raw",
            hierarchical__threshold=0.02,
            kmeans__seeds={"NOTCH3": 123, "BRCA1": 124},
        )
        self.assertEqual(updated.n_threads, 4)
        self.assertEqual(updated.distance.model, "raw")
        self.assertEqual(updated.hierarchical.threshold, 0.02)
        self.assertEqual(updated.kmeans.seed_for("BRCA1", 0), 124)
        # Original is unchanged
        self.assertEqual(cfg.hierarchical.threshold, 0.03)

    def test_update_validates(self):
        with self.assertRaises(ValueError):
            config.get_default_config().update(kmeans__k_max=1)


class TestSerialization(unittest.TestCase):
    """Test saving and loading configuration files."""

    def test_yaml_round_trip(self):
        cfg = config.get_default_config().update(
            distance__model="K80",
            hierarchical__method="complete",
            kmeans__seeds={"NOTCH3": 5},
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            cfg.to_yaml(path)
            loaded = config.load_config_from_file(path)
        self.assertEqual(loaded.distance.model, "K80")
        self.assertEqual(loaded.hierarchical.method, "complete")
        self.assertEqual(loaded.kmeans.seeds, {"NOTCH3": 5})
        self.assertEqual(loaded.output_dir, Path("results"))

    def test_json_round_trip(self):
        cfg = config.get_default_config().update(n_threads=3, kmeans__k_max=6)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            cfg.to_json(path)
            loaded = config.load_config_from_file(path)
        self.assertEqual(loaded.n_threads, 3)
        self.assertEqual(loaded.kmeans.k_max, 6)

    def test_partial_yaml(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yml"
            path.write_text("hierarchical:\n  threshold: 0.05\n")
            loaded = config.load_config_from_file(path)
        self.assertEqual(loaded.hierarchical.threshold, 0.05)
        self.assertEqual(loaded.distance.model, "TN93")

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            config.load_config_from_file("/nonexistent/config.yaml")

    def test_unsupported_format(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.toml"
            path.write_text("")
            with self.assertRaises(ValueError):
                config.load_config_from_file(path)


class TestEnvironment(unittest.TestCase):
    """Test environment variable overrides."""

    def test_env_overrides(self):
        env = {
            "GENECLUST_HIERARCHICAL__THRESHOLD": "0.02",
            "GENECLUST_N_THREADS": "2",
            "GENECLUST_DISTANCE__DEDUPLICATE_LABELS": "false",
            "UNRELATED": "1",
        }
        with patch.dict('os.environ', env, clear=True):
            overrides = config.load_config_from_env()
        self.assertEqual(overrides, {
            "hierarchical__threshold": 0.02,
            "n_threads": 2,
            "distance__deduplicate_labels": False,
        })
        cfg = config.get_default_config().update(**overrides)
        self.assertEqual(cfg.hierarchical.threshold, 0.02)
        self.assertFalse(cfg.distance.deduplicate_labels)

    def test_unknown_variables_ignored(self):
        env = {
            "GENECLUST_HOME": "/opt/geneclust",
            "GENECLUST_KMEANS__FOO": "3",
            "GENECLUST_KMEANS__K_MAX": "5",
        }
        with patch.dict('os.environ', env, clear=True):
            with self.assertLogs("geneclust.config", level="WARNING") as logs:
                overrides = config.load_config_from_env()
        self.assertEqual(overrides, {"kmeans__k_max": 5})
        self.assertEqual(len(logs.output), 2)
        self.assertIn("GENECLUST_HOME", logs.output[0] + logs.output[1])

        cfg = config.get_default_config().update(**overrides)
        self.assertEqual(cfg.kmeans.k_max, 5)


class TestValidateConfig(unittest.TestCase):
    """Test configuration warnings."""

    def test_defaults_have_no_warnings(self):
        with patch('os.cpu_count', return_value=8):
            self.assertEqual(config.validate_config(config.get_default_config()), [])

    def test_unusual_values_warn(self):
        cfg = config.get_default_config().update(
            hierarchical__threshold=0.5,
            distance__model="raw",
            kmeans__max_iter=5,
        )
        with patch('os.cpu_count', return_value=8):
            warnings = config.validate_config(cfg)
        self.assertEqual(len(warnings), 3)


if __name__ == '__main__':
    unittest.main()
