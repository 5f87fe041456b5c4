"""
geneclust: Distance-Based Clustering of Gene Alignments

geneclust is a Python package for analyzing genetic sequence similarity
within a taxonomic group. For each gene alignment it computes pairwise
genetic distances under a nucleotide substitution model, clusters the
sequences hierarchically at a distance threshold, and partitions them with
k-means using the number of clusters that maximizes the average silhouette
width.

Core functionality includes:
- Pairwise distances (raw, JC69, K80, F81, TN93) with pairwise deletion
- UPGMA/WPGMA/single/complete linkage dendrograms and threshold cuts
- Seeded, reproducible k-means over distance-matrix rows
- Silhouette-based selection of the number of clusters
- Multi-gene runs with per-gene failure isolation

Developed for the comparison of NOTCH3 and BRCA1 sequence structure across
cetacean species.
"""

__version__ = "0.1.0"

# Import main modules for easy access
from . import sequences
from . import distance
from . import hierarchical
from . import kmeans
from . import optimal_k
from . import core
from . import utils

__all__ = [
    "sequences",
    "distance",
    "hierarchical",
    "kmeans",
    "optimal_k",
    "core",
    "utils",
]
