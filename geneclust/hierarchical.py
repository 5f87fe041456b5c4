"""
Hierarchical Agglomerative Clustering

This module builds a dendrogram from a DistanceMatrix and cuts it into flat
clusters at a distance threshold.

The clustering workflow:
1. Start with every sequence as a singleton cluster
2. Merge the two clusters with the minimum inter-cluster distance
3. Recompute the merged cluster's distance to every other cluster under the
   chosen linkage method
4. Repeat until a single cluster remains
5. Cut the resulting tree: every subtree whose merge height is <= threshold
   becomes one cluster

Key Concepts:
- Linkage methods:
    average  (UPGMA)  mean of all member-to-member distances
    single            minimum member-to-member distance
    complete          maximum member-to-member distance
    weighted (WPGMA)  mean of the two merged children's distances
  Average, single and complete distances are recomputed from the original
  matrix entries after every merge, not updated incrementally.

- Determinism: ties between equally close pairs go to the pair whose lowest
  leaf indices are lexicographically smallest. No randomness is involved, so
  the same matrix always yields the same merge order and heights.

- Node numbering follows scipy.cluster.hierarchy: leaves are 0..n-1 and the
  s-th merge creates node n+s, so ``Dendrogram.to_linkage_matrix()`` can be
  passed directly to scipy's dendrogram plotting and tree utilities.

- Default threshold: 0.03 under UPGMA, the setting used for cetacean
  NOTCH3/BRCA1 clustering. Heights are in matrix distance units.

Example Usage:
    >>> from geneclust.hierarchical import build_dendrogram, cut_dendrogram
    >>> tree = build_dendrogram(matrix, method="UPGMA")
    >>> clusters = cut_dendrogram(tree, threshold=0.03)
    >>> clusters.n_clusters
    4
"""

from dataclasses import dataclass
from io import StringIO
from typing import Dict, List, Tuple
from collections import Counter
import logging

import numpy as np
import pandas as pd
from Bio import Phylo
from Bio.Phylo.BaseTree import Clade, Tree
from scipy.cluster.hierarchy import to_tree

from .distance import DistanceMatrix

logger = logging.getLogger(__name__)

LINKAGE_METHODS = ["average", "single", "complete", "weighted"]

_LINKAGE_ALIASES = {
    "upgma": "average",
    "wpgma": "weighted",
}


class ClusteringError(Exception):
    """Error during hierarchical clustering."""
    pass


def normalize_linkage_method(method: str) -> str:
    """
    Return the canonical linkage method name.

    Accepts "average", "single", "complete", "weighted" and the aliases
    "UPGMA" and "WPGMA" (case-insensitive).

    Raises
    ------
    ClusteringError
        If the method is not supported
    """
    key = str(method).lower()
    key = _LINKAGE_ALIASES.get(key, key)
    if key not in LINKAGE_METHODS:
        raise ClusteringError(
            f"Invalid linkage method: {method}. "
            f"Must be one of {LINKAGE_METHODS + ['UPGMA', 'WPGMA']}"
        )
    return key


@dataclass(frozen=True)
class MergeStep:
    """One agglomeration: nodes ``left`` and ``right`` joined at ``height``."""
    left: int
    right: int
    height: float
    size: int


@dataclass(frozen=True)
class Dendrogram:
    """
    Binary merge tree over the labels of a distance matrix.

    Attributes
    ----------
    labels : Tuple[str, ...]
        Leaf labels; leaf ``i`` is ``labels[i]``
    merges : Tuple[MergeStep, ...]
        Merges in the order they happened (n - 1 of them)
    method : str
        Linkage method used
    name : str
        Gene name
    """
    labels: Tuple[str, ...]
    merges: Tuple[MergeStep, ...]
    method: str
    name: str = ""

    @property
    def n_leaves(self) -> int:
        return len(self.labels)

    @property
    def heights(self) -> List[float]:
        return [step.height for step in self.merges]

    def to_linkage_matrix(self) -> np.ndarray:
        """Return the merges in SciPy linkage ``Z`` format, shape (n-1, 4)."""
        if not self.merges:
            return np.zeros((0, 4), dtype=float)
        return np.array(
            [[step.left, step.right, step.height, step.size] for step in self.merges],
            dtype=float,
        )

    def leaf_order(self) -> List[str]:
        """Leaf labels in left-to-right dendrogram order."""
        if self.n_leaves == 1:
            return list(self.labels)
        root = to_tree(self.to_linkage_matrix())
        return [self.labels[i] for i in root.pre_order()]

    def to_newick(self) -> str:
        """
        Newick string of the tree.

        Branch lengths are the difference between parent and child merge
        heights (leaves sit at height 0).
        """
        n = self.n_leaves
        clades: Dict[int, Clade] = {i: Clade(name=label) for i, label in enumerate(self.labels)}
        heights: Dict[int, float] = {i: 0.0 for i in range(n)}

        for step_index, step in enumerate(self.merges):
            node = n + step_index
            children = []
            for child in (step.left, step.right):
                clade = clades.pop(child)
                clade.branch_length = max(step.height - heights[child], 0.0)
                children.append(clade)
            clades[node] = Clade(clades=children)
            heights[node] = step.height

        root = clades[n + len(self.merges) - 1] if self.merges else clades[0]
        handle = StringIO()
        Phylo.write(Tree(root=root, rooted=True), handle, "newick")
        return handle.getvalue().strip()


@dataclass(frozen=True, eq=False)
class FlatClustering:
    """
    Flat partition obtained by cutting a dendrogram.

    Attributes
    ----------
    labels : Tuple[str, ...]
        Labels in matrix order
    cluster_ids : np.ndarray
        Cluster id per label (1-indexed, contiguous)
    threshold : float
        Height the tree was cut at
    """
    labels: Tuple[str, ...]
    cluster_ids: np.ndarray
    threshold: float

    @property
    def n_clusters(self) -> int:
        return int(self.cluster_ids.max()) if len(self.cluster_ids) else 0

    @property
    def assignments(self) -> Dict[str, int]:
        return {label: int(cid) for label, cid in zip(self.labels, self.cluster_ids)}

    def clusters(self) -> Dict[int, List[str]]:
        """Cluster id -> member labels."""
        groups: Dict[int, List[str]] = {}
        for label, cid in zip(self.labels, self.cluster_ids):
            groups.setdefault(int(cid), []).append(label)
        return dict(sorted(groups.items()))

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({'label': list(self.labels), 'cluster_id': self.cluster_ids.astype(int)})


def _linkage_distance(values: np.ndarray, members_a: List[int], members_b: List[int], method: str) -> float:
    block = values[np.ix_(members_a, members_b)]
    if method == "average":
        return float(block.mean())
    if method == "single":
        return float(block.min())
    return float(block.max())


def build_dendrogram(matrix: DistanceMatrix, method: str = "average") -> Dendrogram:
    """
    Agglomerative clustering of a distance matrix.

    Parameters
    ----------
    matrix : DistanceMatrix
        Pairwise distances
    method : str, optional
        Linkage method: "average"/"UPGMA" (default), "single", "complete",
        "weighted"/"WPGMA"

    Returns
    -------
    Dendrogram
        Merge tree with n-1 merges

    Raises
    ------
    ClusteringError
        If the method is invalid or the matrix is empty

    Notes
    -----
    Active clusters are kept in the slot of their lowest leaf index, so the
    row-major first minimum of the active distance table is also the
    tie-break winner.
    """
    method = normalize_linkage_method(method)
    n = len(matrix)
    if n == 0:
        raise ClusteringError("Distance matrix is empty")

    logger.info(f"[{matrix.name}] Building {method} linkage dendrogram for {n} sequences")

    values = matrix.values
    active_dist = np.array(values, dtype=float)
    np.fill_diagonal(active_dist, np.inf)

    members: Dict[int, List[int]] = {i: [i] for i in range(n)}
    node_of_slot: Dict[int, int] = {i: i for i in range(n)}
    merges: List[MergeStep] = []

    for step in range(n - 1):
        d_min = active_dist.min()
        candidates = np.argwhere(active_dist == d_min)
        a, b = next((int(i), int(j)) for i, j in candidates if i < j)

        merged = members[a] + members.pop(b)
        members[a] = merged
        merges.append(MergeStep(node_of_slot[a], node_of_slot.pop(b), float(d_min), len(merged)))
        node_of_slot[a] = n + step

        others = [k for k in members if k != a]
        if method == "weighted":
            new_row = (active_dist[a, others] + active_dist[b, others]) / 2.0
        else:
            new_row = np.array([_linkage_distance(values, merged, members[k], method) for k in others])

        active_dist[b, :] = np.inf
        active_dist[:, b] = np.inf
        active_dist[a, others] = new_row
        active_dist[others, a] = new_row

        logger.debug(f"[{matrix.name}] Merge {step + 1}/{n - 1}: height={d_min:.6f}, size={len(merged)}")

    return Dendrogram(matrix.labels, tuple(merges), method, name=matrix.name)


def cut_dendrogram(tree: Dendrogram, threshold: float) -> FlatClustering:
    """
    Cut a dendrogram into flat clusters at a distance threshold.

    Descends from the root; a subtree whose merge height is <= ``threshold``
    becomes one cluster. Cluster ids start at 1 and are numbered in the
    order clusters are reached by a left-first descent.

    Parameters
    ----------
    tree : Dendrogram
        Tree from :func:`build_dendrogram`
    threshold : float
        Maximum merge height inside a cluster

    Returns
    -------
    FlatClustering

    Raises
    ------
    ClusteringError
        If threshold is negative
    """
    if threshold < 0:
        raise ClusteringError(f"Invalid threshold: {threshold}. Must be non-negative")

    n = tree.n_leaves
    cluster_ids = np.zeros(n, dtype=int)

    if n == 1:
        cluster_ids[0] = 1
    else:
        next_id = 1
        stack = [to_tree(tree.to_linkage_matrix())]
        while stack:
            node = stack.pop()
            if node.is_leaf() or node.dist <= threshold:
                cluster_ids[node.pre_order()] = next_id
                next_id += 1
            else:
                stack.append(node.get_right())
                stack.append(node.get_left())

    clustering = FlatClustering(tree.labels, cluster_ids, float(threshold))

    logger.info(f"[{tree.name}] Cut at {threshold}: {clustering.n_clusters} clusters formed")
    logger.debug(f"[{tree.name}] Cluster size distribution: {dict(Counter(cluster_ids.tolist()))}")

    return clustering
