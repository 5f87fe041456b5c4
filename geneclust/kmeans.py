"""
Seeded K-Means Partitioning Over Distance-Matrix Rows

This module partitions the sequences of a DistanceMatrix into a fixed number
of clusters with Lloyd's k-means algorithm.

Key Concepts:
- Coordinate space: each sequence is represented by its row of the distance
  matrix (its distances to every sequence, itself included). Centroids and
  Euclidean assignment distances live in that n-dimensional space. This
  treats distance rows as Euclidean coordinates rather than computing a
  proper embedding, and the silhouette scan in ``optimal_k`` scores the same
  space.

- Reproducibility: initial centroids are k distinct rows drawn with
  ``numpy.random.default_rng(seed)``. The seed is always passed explicitly;
  the global numpy random state is never touched. Same matrix, same k, same
  seed gives the same partition.

- Empty clusters: if an assignment step leaves a centroid without members,
  the point farthest from its own centroid (taken from a cluster with more
  than one member) is moved into the empty cluster before centroids are
  recomputed. This recovery is internal; callers always receive k non-empty
  clusters.

Example Usage:
    >>> from geneclust.kmeans import cluster_kmeans
    >>> partition = cluster_kmeans(matrix, k=3, seed=123)
    >>> partition.sizes
    [12, 7, 4]
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist

from .distance import DistanceMatrix

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITER = 100


class EmptyClusterError(Exception):
    """A centroid was left with no assigned points."""

    def __init__(self, cluster_index: int):
        self.cluster_index = cluster_index
        super().__init__(f"Cluster {cluster_index + 1} has no assigned points")


@dataclass(frozen=True, eq=False)
class CentroidPartition:
    """
    Result of a k-means run.

    Attributes
    ----------
    labels : Tuple[str, ...]
        Labels in matrix order
    cluster_ids : np.ndarray
        Cluster id per label, 1..k
    centroids : np.ndarray
        (k, n) centroid coordinates; row j-1 belongs to cluster j
    within_ss : np.ndarray
        Within-cluster sum of squared distances to centroid, per cluster
    total_ss : float
        Total sum of squared distances of all points to the grand mean
    seed : Optional[int]
        Seed used for initialization (None when centroids were supplied)
    n_iter : int
        Lloyd iterations performed
    converged : bool
        Whether assignments stopped changing before ``max_iter``
    """
    labels: Tuple[str, ...]
    cluster_ids: np.ndarray
    centroids: np.ndarray
    within_ss: np.ndarray
    total_ss: float
    seed: Optional[int]
    n_iter: int
    converged: bool

    @property
    def k(self) -> int:
        return int(self.centroids.shape[0])

    @property
    def sizes(self) -> List[int]:
        return [int(np.count_nonzero(self.cluster_ids == j)) for j in range(1, self.k + 1)]

    @property
    def total_within_ss(self) -> float:
        return float(self.within_ss.sum())

    @property
    def between_ss(self) -> float:
        return float(self.total_ss - self.total_within_ss)

    @property
    def between_total_ratio(self) -> float:
        """between_SS / total_SS; 0 when all points coincide."""
        if self.total_ss == 0:
            return 0.0
        return self.between_ss / self.total_ss

    @property
    def assignments(self) -> Dict[str, int]:
        return {label: int(cid) for label, cid in zip(self.labels, self.cluster_ids)}

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({'label': list(self.labels), 'cluster_id': self.cluster_ids.astype(int)})

    def centroids_dataframe(self) -> pd.DataFrame:
        """Centroid coordinates, one row per cluster, one column per label."""
        df = pd.DataFrame(self.centroids, columns=list(self.labels))
        df.insert(0, 'cluster_id', np.arange(1, self.k + 1))
        df.insert(1, 'size', self.sizes)
        df.insert(2, 'within_ss', self.within_ss)
        return df


def _assign(coordinates: np.ndarray, centroids: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Nearest centroid per point (ties go to the lowest index) and the distance to it."""
    distances = cdist(coordinates, centroids, metric='euclidean')
    nearest = np.argmin(distances, axis=1)
    return nearest, distances[np.arange(len(coordinates)), nearest]


def _update_centroids(coordinates: np.ndarray, assignment: np.ndarray, k: int) -> np.ndarray:
    """
    Mean of the points assigned to each cluster.

    Raises
    ------
    EmptyClusterError
        For the first cluster with no points
    """
    centroids = np.empty((k, coordinates.shape[1]), dtype=float)
    for j in range(k):
        members = assignment == j
        if not members.any():
            raise EmptyClusterError(j)
        centroids[j] = coordinates[members].mean(axis=0)
    return centroids


def _reseed_empty_cluster(
    coordinates: np.ndarray,
    assignment: np.ndarray,
    centroids: np.ndarray,
    empty: int,
) -> np.ndarray:
    """Move the point farthest from its centroid into the empty cluster."""
    sizes = np.bincount(assignment, minlength=len(centroids))
    donors = np.flatnonzero(sizes[assignment] > 1)

    own_distance = np.linalg.norm(coordinates[donors] - centroids[assignment[donors]], axis=1)
    farthest = int(donors[np.argmax(own_distance)])

    logger.debug(
        f"Re-seeding empty cluster {empty + 1} with point {farthest} "
        f"(distance {own_distance.max():.4f} from cluster {assignment[farthest] + 1})"
    )

    updated = assignment.copy()
    updated[farthest] = empty
    return updated


def _centroids_with_recovery(
    coordinates: np.ndarray,
    assignment: np.ndarray,
    centroids: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    k = len(centroids)
    while True:
        try:
            return assignment, _update_centroids(coordinates, assignment, k)
        except EmptyClusterError as e:
            assignment = _reseed_empty_cluster(coordinates, assignment, centroids, e.cluster_index)


def run_lloyd(
    coordinates: np.ndarray,
    initial_centroids: np.ndarray,
    max_iter: int = DEFAULT_MAX_ITER,
) -> Tuple[np.ndarray, np.ndarray, int, bool]:
    """
    Lloyd iterations from the given initial centroids.

    Parameters
    ----------
    coordinates : np.ndarray
        (n, d) point coordinates
    initial_centroids : np.ndarray
        (k, d) starting centroids, k <= n
    max_iter : int
        Maximum number of assignment/update rounds

    Returns
    -------
    Tuple[np.ndarray, np.ndarray, int, bool]
        (0-based assignment, centroids, iterations, converged). Every
        cluster in the returned assignment is non-empty.
    """
    coordinates = np.asarray(coordinates, dtype=float)
    centroids = np.array(initial_centroids, dtype=float)
    k = len(centroids)

    if k < 1 or k > len(coordinates):
        raise ValueError(f"Number of centroids ({k}) must be between 1 and the number of points ({len(coordinates)})")
    if max_iter < 1:
        raise ValueError("max_iter must be at least 1")

    assignment, _ = _assign(coordinates, centroids)
    assignment, centroids = _centroids_with_recovery(coordinates, assignment, centroids)

    converged = False
    n_iter = 1
    while n_iter < max_iter:
        new_assignment, _ = _assign(coordinates, centroids)
        new_assignment, new_centroids = _centroids_with_recovery(coordinates, new_assignment, centroids)
        n_iter += 1
        if np.array_equal(new_assignment, assignment):
            converged = True
            break
        assignment, centroids = new_assignment, new_centroids

    if not converged:
        logger.warning(f"k-means did not converge in {max_iter} iterations")

    return assignment, centroids, n_iter, converged


def initial_centroid_indices(n_points: int, k: int, seed: int) -> np.ndarray:
    """Indices of k distinct points drawn with a generator seeded by ``seed``."""
    rng = np.random.default_rng(seed)
    return np.sort(rng.choice(n_points, size=k, replace=False))


def cluster_kmeans(
    matrix: DistanceMatrix,
    k: int,
    seed: int,
    max_iter: int = DEFAULT_MAX_ITER,
) -> CentroidPartition:
    """
    Partition the rows of a distance matrix into ``k`` clusters.

    Parameters
    ----------
    matrix : DistanceMatrix
        Pairwise distances; row i is the coordinate vector of sequence i
    k : int
        Number of clusters (1 <= k <= n)
    seed : int
        Seed for centroid initialization
    max_iter : int, optional
        Maximum Lloyd iterations (default: 100)

    Returns
    -------
    CentroidPartition
        Cluster ids 1..k, centroids, and within-cluster sums of squares

    Raises
    ------
    ValueError
        If k is outside [1, n]
    """
    n = len(matrix)
    if not 1 <= k <= n:
        raise ValueError(f"k must be between 1 and the number of sequences ({n}), got {k}")

    coordinates = np.array(matrix.values, dtype=float)
    start = initial_centroid_indices(n, k, seed)
    logger.debug(f"[{matrix.name}] k={k}, seed={seed}: initial centroids at rows {start.tolist()}")

    assignment, centroids, n_iter, converged = run_lloyd(coordinates, coordinates[start], max_iter=max_iter)

    within_ss = np.array([
        float(np.sum((coordinates[assignment == j] - centroids[j]) ** 2)) for j in range(k)
    ])
    total_ss = float(np.sum((coordinates - coordinates.mean(axis=0)) ** 2))

    partition = CentroidPartition(
        labels=matrix.labels,
        cluster_ids=assignment + 1,
        centroids=centroids,
        within_ss=within_ss,
        total_ss=total_ss,
        seed=seed,
        n_iter=n_iter,
        converged=converged,
    )

    logger.debug(
        f"[{matrix.name}] k-means k={k}: sizes={partition.sizes}, "
        f"between/total SS={partition.between_total_ratio:.3f}, iterations={n_iter}"
    )

    return partition
