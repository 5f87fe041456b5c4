"""
Configuration Management for geneclust

This module provides the configuration system using frozen dataclasses. It
supports:

1. Default parameter values matching the reference cetacean NOTCH3/BRCA1
   analysis (TN93 distances, UPGMA at 0.03, seeds 123/124)
2. Loading configuration from YAML/JSON files
3. Environment variable overrides
4. Validation in ``__post_init__``

Configuration Structure:
- DistanceConfig: Substitution model and pairwise-deletion parameters
- HierarchicalConfig: Linkage method and cut threshold
- KMeansConfig: Candidate k range, iteration bound, and seeds
- PipelineConfig: Master configuration combining all components

Example Usage:
    >>> from geneclust.config import get_default_config, load_config_from_file
    >>> config = get_default_config()
    >>> config.hierarchical.threshold
    0.03
    >>> custom = config.update(
    ...     distance__model="K80",
    ...     kmeans__k_max=6,
    ... )
"""

from dataclasses import dataclass, field, fields, asdict, replace
from pathlib import Path
from typing import Dict, List, Any, Set, Union
import os
import json
import logging

import yaml

from .distance import DistanceError, normalize_model_name
from .hierarchical import ClusteringError, normalize_linkage_method

logger = logging.getLogger(__name__)


# ============================================================================
# Distance Configuration
# ============================================================================

@dataclass(frozen=True)
class DistanceConfig:
    """
    Configuration for pairwise distance computation.

    Attributes
    ----------
    model : str
        Substitution model (default: "TN93").
        Options: "raw", "JC69", "K80", "F81", "TN93"

    min_comparable_sites : int
        Minimum number of columns where both sequences of a pair carry an
        unambiguous base (default: 1). Pairs below this raise
        InsufficientOverlapError.

    deduplicate_labels : bool
        Sanitize labels and suffix duplicates before building the matrix
        (default: True). When False, duplicate labels are an error.

    Notes
    -----
    Pairwise deletion is always used; there is no global-deletion option.
    """
    model: str = "TN93"
    min_comparable_sites: int = 1
    deduplicate_labels: bool = True

    def __post_init__(self):
        """Validate configuration parameters."""
        try:
            object.__setattr__(self, 'model', normalize_model_name(self.model))
        except DistanceError as e:
            raise ValueError(str(e)) from e
        if self.min_comparable_sites < 1:
            raise ValueError("min_comparable_sites must be at least 1")


# ============================================================================
# Hierarchical Clustering Configuration
# ============================================================================

@dataclass(frozen=True)
class HierarchicalConfig:
    """
    Configuration for hierarchical clustering.

    Attributes
    ----------
    method : str
        Linkage method (default: "average", i.e. UPGMA).
        Options: "average"/"UPGMA", "single", "complete", "weighted"/"WPGMA"

    threshold : float
        Height at which the dendrogram is cut (default: 0.03), in the units
        of the distance matrix.
    """
    method: str = "average"
    threshold: float = 0.03

    def __post_init__(self):
        """Validate configuration parameters."""
        try:
            object.__setattr__(self, 'method', normalize_linkage_method(self.method))
        except ClusteringError as e:
            raise ValueError(str(e)) from e
        if self.threshold < 0:
            raise ValueError("threshold must be non-negative")


# ============================================================================
# K-Means / K Selection Configuration
# ============================================================================

@dataclass(frozen=True)
class KMeansConfig:
    """
    Configuration for silhouette-based k selection and k-means partitioning.

    Attributes
    ----------
    k_min : int
        Smallest candidate number of clusters (default: 2)

    k_max : int
        Largest candidate number of clusters (default: 10); capped at n - 1
        for each gene

    max_iter : int
        Maximum Lloyd iterations per k-means run (default: 100)

    base_seed : int
        Seed for the first gene (default: 123). The i-th gene without an
        explicit seed uses ``base_seed + i``.

    seeds : Dict[str, int]
        Explicit per-gene seeds, e.g. ``{"NOTCH3": 123, "BRCA1": 124}``

    n_jobs : int
        Worker processes for scoring candidate k values of one gene
        (default: 1). Ignored when genes themselves run in parallel.
    """
    k_min: int = 2
    k_max: int = 10
    max_iter: int = 100
    base_seed: int = 123
    seeds: Dict[str, int] = field(default_factory=dict)
    n_jobs: int = 1

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.k_min < 2:
            raise ValueError("k_min must be at least 2")
        if self.k_max < self.k_min:
            raise ValueError("k_max must be >= k_min")
        if self.max_iter < 1:
            raise ValueError("max_iter must be at least 1")
        if self.n_jobs < 1:
            raise ValueError("n_jobs must be at least 1")

    def seed_for(self, gene: str, index: int) -> int:
        """Seed for a gene: explicit if configured, else ``base_seed + index``."""
        return int(self.seeds.get(gene, self.base_seed + index))


# ============================================================================
# Master Pipeline Configuration
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Master configuration for the complete geneclust pipeline.

    Attributes
    ----------
    distance : DistanceConfig
        Distance computation configuration

    hierarchical : HierarchicalConfig
        Hierarchical clustering configuration

    kmeans : KMeansConfig
        K selection and k-means configuration

    log_level : str
        Logging level (default: "INFO")

    n_threads : int
        Worker processes across genes (default: 1)

    output_dir : Path
        Base output directory (default: "results")
    """
    distance: DistanceConfig = field(default_factory=DistanceConfig)
    hierarchical: HierarchicalConfig = field(default_factory=HierarchicalConfig)
    kmeans: KMeansConfig = field(default_factory=KMeansConfig)
    log_level: str = "INFO"
    n_threads: int = 1
    output_dir: Path = field(default_factory=lambda: Path("results"))

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.output_dir, str):
            object.__setattr__(self, 'output_dir', Path(self.output_dir))

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")

        if self.n_threads < 1:
            raise ValueError("n_threads must be at least 1")

    def update(self, **kwargs) -> 'PipelineConfig':
        """
        Create a new configuration with updated values.

        Supports nested updates using double underscore notation:
        config.update(hierarchical__threshold=0.02)

        Examples
        --------
        >>> config = get_default_config()
        >>> new_config = config.update(
        ...     n_threads=4,
        ...     distance__model="K80",
        ...     kmeans__seeds={"NOTCH3": 123, "BRCA1": 124},
        ... )
        """
        top_level = {}
        nested = {}

        for key, value in kwargs.items():
            if '__' in key:
                component, param = key.split('__', 1)
                nested.setdefault(component, {})[param] = value
            else:
                top_level[key] = value

        for component, updates in nested.items():
            current = getattr(self, component)
            top_level[component] = replace(current, **updates)

        return replace(self, **top_level)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a nested dictionary."""
        return asdict(self)

    def to_yaml(self, output_path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        config_dict = _convert_paths_to_strings(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {path}")

    def to_json(self, output_path: Union[str, Path]) -> None:
        """Save configuration to a JSON file."""
        config_dict = _convert_paths_to_strings(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(config_dict, f, indent=2)

        logger.info(f"Configuration saved to {path}")


# ============================================================================
# Helper Functions
# ============================================================================

def get_default_config() -> PipelineConfig:
    """Get default pipeline configuration."""
    return PipelineConfig()


def load_config_from_file(config_path: Union[str, Path]) -> PipelineConfig:
    """
    Load configuration from YAML or JSON file.

    Automatically detects file format based on extension.

    Raises
    ------
    FileNotFoundError
        If configuration file doesn't exist
    ValueError
        If file format is not supported
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()

    if suffix in ['.yaml', '.yml']:
        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}
    elif suffix == '.json':
        with open(path, 'r') as f:
            config_dict = json.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {suffix}")

    logger.info(f"Loaded configuration from {path}")
    return _dict_to_config(config_dict)


def _dict_to_config(config_dict: Dict[str, Any]) -> PipelineConfig:
    """Convert a nested dictionary to a PipelineConfig object."""
    config_dict = dict(config_dict)
    nested_configs = {}

    if 'distance' in config_dict:
        nested_configs['distance'] = DistanceConfig(**config_dict.pop('distance'))

    if 'hierarchical' in config_dict:
        nested_configs['hierarchical'] = HierarchicalConfig(**config_dict.pop('hierarchical'))

    if 'kmeans' in config_dict:
        nested_configs['kmeans'] = KMeansConfig(**config_dict.pop('kmeans'))

    if config_dict.get('output_dir') is not None:
        config_dict['output_dir'] = Path(config_dict['output_dir'])

    return PipelineConfig(**nested_configs, **config_dict)


def _convert_paths_to_strings(obj: Any) -> Any:
    """Recursively convert Path objects to strings for serialization."""
    if isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: _convert_paths_to_strings(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_convert_paths_to_strings(item) for item in obj]
    elif isinstance(obj, tuple):
        return tuple(_convert_paths_to_strings(item) for item in obj)
    else:
        return obj


def load_config_from_env() -> Dict[str, Any]:
    """
    Load configuration overrides from environment variables.

    Environment variables should be prefixed with GENECLUST_ and use double
    underscores for nesting:

    GENECLUST_HIERARCHICAL__THRESHOLD=0.02
    GENECLUST_N_THREADS=4

    Variables that do not name a configuration field (e.g. GENECLUST_HOME)
    are skipped with a warning.

    Returns
    -------
    Dict[str, Any]
        Overrides suitable for ``PipelineConfig.update(**overrides)``
    """
    prefix = "GENECLUST_"
    known = _config_keys()
    overrides = {}

    for key, value in os.environ.items():
        if key.startswith(prefix):
            config_key = key[len(prefix):].lower()
            if config_key not in known:
                logger.warning(f"Ignoring unknown configuration variable {key}")
                continue
            overrides[config_key] = _parse_env_value(value)

    if overrides:
        logger.debug(f"Loaded {len(overrides)} configuration overrides from environment")

    return overrides


def _config_keys() -> Set[str]:
    """Every key accepted by ``PipelineConfig.update``."""
    components = {
        'distance': DistanceConfig,
        'hierarchical': HierarchicalConfig,
        'kmeans': KMeansConfig,
    }
    keys = set()
    for f in fields(PipelineConfig):
        if f.name in components:
            keys.update(f"{f.name}__{sub.name}" for sub in fields(components[f.name]))
        else:
            keys.add(f.name)
    return keys


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if value.lower() in ['true', 'yes']:
        return True
    if value.lower() in ['false', 'no']:
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def validate_config(config: PipelineConfig) -> List[str]:
    """
    Validate configuration and return list of warnings.

    Checks for unusual but allowed parameter values.
    """
    warnings = []

    if config.hierarchical.threshold > 0.1:
        warnings.append(
            f"Clustering threshold ({config.hierarchical.threshold}) is quite high. "
            "This may merge distinct lineages into one cluster."
        )

    if config.hierarchical.threshold < 0.001:
        warnings.append(
            f"Clustering threshold ({config.hierarchical.threshold}) is very low. "
            "Nearly every sequence may form its own cluster."
        )

    if config.distance.model == "raw":
        warnings.append(
            "Raw p-distances are not corrected for multiple substitutions; "
            "consider TN93 or K80 for divergent sequences."
        )

    if config.kmeans.max_iter < 10:
        warnings.append(
            f"max_iter ({config.kmeans.max_iter}) is low; k-means may stop before converging."
        )

    cpu_count = os.cpu_count() or 1
    if config.n_threads > cpu_count:
        warnings.append(
            f"Thread count ({config.n_threads}) exceeds available CPUs ({cpu_count})"
        )

    return warnings
