"""
Pairwise Genetic Distances Under Nucleotide Substitution Models

This module converts a SequenceSet into a symmetric pairwise distance matrix.

Distance workflow:
1. Deduplicate and sanitize labels (or reject duplicates when disabled)
2. Estimate base frequencies once from every valid base in the alignment
3. For each unordered pair, keep only the columns where BOTH sequences have
   an unambiguous base (A, C, G, T) -- pairwise deletion
4. Count transitions (A<->G purine, C<->T pyrimidine) and transversions over
   those columns and apply the substitution model
5. Mirror the upper triangle; the diagonal is exactly 0

Key Concepts:
- Pairwise deletion: a gap or ambiguity code only removes that column from
  the pairs that involve the sequence carrying it. Distances for different
  pairs are therefore computed over different column sets. This maximizes
  usable sites per pair and is intentional.

- Supported models:
    raw   p-distance (proportion of differing sites)
    JC69  Jukes-Cantor 1969
    K80   Kimura 2-parameter (transition/transversion rates)
    F81   Felsenstein 1981 (unequal base frequencies)
    TN93  Tamura-Nei 1993 (two transition classes, unequal base frequencies)
  TN93 is the default.

- A pair that cannot be estimated raises InsufficientOverlapError (too few
  comparable sites) or SaturatedDistanceError (the model's log argument is
  not positive). A matrix never contains NaN.

Example Usage:
    >>> from geneclust.distance import compute_distance_matrix
    >>> matrix = compute_distance_matrix(seq_set, model="TN93")
    >>> matrix.distance("Orcinus_orca", "Kogia_sima")
    0.0123
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
import logging
import math

import numpy as np
import pandas as pd
from scipy.spatial.distance import squareform

from .sequences import (
    SequenceSet, DuplicateLabelError, make_unique_labels, find_duplicate_labels,
)
from .utils import ProgressTracker

logger = logging.getLogger(__name__)

_A, _C, _G, _T = (ord(base) for base in "ACGT")


class DistanceError(Exception):
    """Base exception for distance computation errors."""
    pass


class InsufficientOverlapError(DistanceError):
    """A sequence pair shares too few comparable sites for distance estimation."""

    def __init__(
        self,
        label_a: str,
        label_b: str,
        n_sites: int,
        gene: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.label_a = label_a
        self.label_b = label_b
        self.n_sites = n_sites
        self.gene = gene
        where = f"[{gene}] " if gene else ""
        if reason is None:
            reason = f"only {n_sites} comparable (non-gap, unambiguous) sites"
        super().__init__(f"{where}Cannot estimate distance between '{label_a}' and '{label_b}': {reason}")


class SaturatedDistanceError(InsufficientOverlapError):
    """A pair is too divergent for the substitution model to be fit."""
    pass


# ============================================================================
# Distance Matrix
# ============================================================================

@dataclass(frozen=True, eq=False)
class DistanceMatrix:
    """
    Square, symmetric, zero-diagonal distance matrix with ordered labels.

    Attributes
    ----------
    labels : Tuple[str, ...]
        One unique label per row/column, in matrix order
    values : np.ndarray
        (n, n) float array, read-only
    name : str
        Gene name the matrix was computed for
    model : str
        Substitution model name (or "external" for loaded matrices)
    n_sites : np.ndarray, optional
        (n, n) comparable-site counts used for each pair
    """
    labels: Tuple[str, ...]
    values: np.ndarray
    name: str = ""
    model: str = "external"
    n_sites: Optional[np.ndarray] = None

    def __post_init__(self):
        labels = tuple(self.labels)
        values = np.array(self.values, dtype=float)

        if values.ndim != 2 or values.shape[0] != values.shape[1]:
            raise DistanceError(f"Distance matrix must be square, got shape {values.shape}")
        if values.shape[0] != len(labels):
            raise DistanceError(
                f"Matrix has {values.shape[0]} rows but {len(labels)} labels were given"
            )
        duplicates = find_duplicate_labels(labels)
        if duplicates:
            raise DuplicateLabelError(duplicates, gene=self.name or None)
        if not np.all(np.isfinite(values)):
            raise DistanceError("Distance matrix contains NaN or infinite values")
        if np.any(values < 0):
            raise DistanceError("Distance matrix contains negative distances")
        if not np.array_equal(values, values.T):
            raise DistanceError("Distance matrix is not symmetric")
        if np.any(np.diag(values) != 0):
            raise DistanceError("Distance matrix diagonal must be zero")

        values.setflags(write=False)
        object.__setattr__(self, 'labels', labels)
        object.__setattr__(self, 'values', values)

        if self.n_sites is not None:
            n_sites = np.array(self.n_sites, dtype=int)
            n_sites.setflags(write=False)
            object.__setattr__(self, 'n_sites', n_sites)

    def __len__(self) -> int:
        return len(self.labels)

    def __getitem__(self, index: Tuple[int, int]) -> float:
        i, j = index
        return float(self.values[i, j])

    def index_of(self, label: str) -> int:
        return self.labels.index(label)

    def distance(self, label_a: str, label_b: str) -> float:
        """Distance between two labelled sequences."""
        return float(self.values[self.index_of(label_a), self.index_of(label_b)])

    def condensed(self) -> np.ndarray:
        """Condensed (upper-triangle) form, as used by scipy.cluster.hierarchy."""
        return squareform(self.values, checks=False)

    def to_dataframe(self) -> pd.DataFrame:
        """Labelled square DataFrame; row and column order match ``labels``."""
        return pd.DataFrame(np.array(self.values), index=list(self.labels), columns=list(self.labels))

    def to_csv(self, output_path: Union[str, Path]) -> Path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_dataframe().to_csv(path, index_label="label")
        return path

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, name: str = "", model: str = "external") -> 'DistanceMatrix':
        """
        Build a matrix from a labelled square DataFrame.

        Raises
        ------
        DistanceError
            If row and column labels differ in content or order
        """
        rows = [str(label) for label in df.index]
        cols = [str(label) for label in df.columns]
        if rows != cols:
            raise DistanceError("Row and column labels of the distance table must match in order")
        return cls(tuple(rows), df.to_numpy(dtype=float), name=name, model=model)


# ============================================================================
# Substitution Models
# ============================================================================

def _log_term(value: float) -> float:
    if value <= 0:
        raise ValueError("saturated")
    return math.log(value)


def _raw_distance(p1: float, p2: float, q: float, freqs: np.ndarray) -> float:
    return p1 + p2 + q


def _jc69_distance(p1: float, p2: float, q: float, freqs: np.ndarray) -> float:
    p = p1 + p2 + q
    return -0.75 * _log_term(1.0 - 4.0 * p / 3.0)


def _k80_distance(p1: float, p2: float, q: float, freqs: np.ndarray) -> float:
    p = p1 + p2
    return -0.5 * _log_term(1.0 - 2.0 * p - q) - 0.25 * _log_term(1.0 - 2.0 * q)


def _f81_distance(p1: float, p2: float, q: float, freqs: np.ndarray) -> float:
    e = 1.0 - float(np.sum(freqs ** 2))
    p = p1 + p2 + q
    if p == 0:
        return 0.0
    return -e * _log_term(1.0 - p / e)


def _tn93_distance(p1: float, p2: float, q: float, freqs: np.ndarray) -> float:
    g_a, g_c, g_g, g_t = (float(f) for f in freqs)
    g_r = g_a + g_g
    g_y = g_c + g_t

    k1 = 2.0 * g_a * g_g / g_r
    k2 = 2.0 * g_c * g_t / g_y
    k3 = 2.0 * (g_r * g_y - g_a * g_g * g_y / g_r - g_c * g_t * g_r / g_y)

    # A transition class with no observed changes contributes nothing,
    # even when one of its bases is absent from the alignment
    r1 = p1 / k1 if p1 else 0.0
    r2 = p2 / k2 if p2 else 0.0

    w1 = 1.0 - r1 - q / (2.0 * g_r)
    w2 = 1.0 - r2 - q / (2.0 * g_y)
    w3 = 1.0 - q / (2.0 * g_r * g_y)

    return -k1 * _log_term(w1) - k2 * _log_term(w2) - k3 * _log_term(w3)


SUBSTITUTION_MODELS = {
    "raw": _raw_distance,
    "JC69": _jc69_distance,
    "K80": _k80_distance,
    "F81": _f81_distance,
    "TN93": _tn93_distance,
}

_FREQUENCY_MODELS = {"F81", "TN93"}


def normalize_model_name(model: str) -> str:
    """
    Return the canonical spelling of a substitution model name.

    Raises
    ------
    DistanceError
        If the model is not supported
    """
    lookup = {name.upper(): name for name in SUBSTITUTION_MODELS}
    canonical = lookup.get(str(model).upper())
    if canonical is None:
        raise DistanceError(
            f"Invalid substitution model: {model}. "
            f"Must be one of {list(SUBSTITUTION_MODELS)}"
        )
    return canonical


# ============================================================================
# Counting
# ============================================================================

def base_frequencies(codes: np.ndarray) -> np.ndarray:
    """
    Frequencies of A, C, G, T over every unambiguous base of an alignment.

    Parameters
    ----------
    codes : np.ndarray
        (n, L) array of ASCII codes, as from ``SequenceSet.to_array()``

    Returns
    -------
    np.ndarray
        Array of 4 frequencies in A, C, G, T order (zeros if no valid base)
    """
    counts = np.array([np.count_nonzero(codes == b) for b in (_A, _C, _G, _T)], dtype=float)
    total = counts.sum()
    if total == 0:
        return counts
    return counts / total


def count_pair_differences(seq_a: np.ndarray, seq_b: np.ndarray) -> Tuple[int, int, int, int]:
    """
    Count comparable sites and substitution classes for one aligned pair.

    Only columns where both sequences carry A, C, G or T are compared.

    Returns
    -------
    Tuple[int, int, int, int]
        (n_sites, purine transitions A<->G, pyrimidine transitions C<->T,
        transversions)
    """
    valid_a = np.isin(seq_a, (_A, _C, _G, _T))
    valid_b = np.isin(seq_b, (_A, _C, _G, _T))
    comparable = valid_a & valid_b

    a = seq_a[comparable]
    b = seq_b[comparable]
    differs = a != b

    purine_a = (a == _A) | (a == _G)
    purine_b = (b == _A) | (b == _G)

    transition = differs & (purine_a == purine_b)
    purine_transitions = int(np.count_nonzero(transition & purine_a))
    pyrimidine_transitions = int(np.count_nonzero(transition & ~purine_a))
    transversions = int(np.count_nonzero(differs & (purine_a != purine_b)))

    return int(comparable.sum()), purine_transitions, pyrimidine_transitions, transversions


def pairwise_distance(
    seq_a: np.ndarray,
    seq_b: np.ndarray,
    model: str = "TN93",
    freqs: Optional[np.ndarray] = None,
    min_sites: int = 1,
    labels: Tuple[str, str] = ("seq_a", "seq_b"),
    gene: Optional[str] = None,
) -> Tuple[float, int]:
    """
    Distance between two aligned sequences under pairwise deletion.

    Parameters
    ----------
    seq_a, seq_b : np.ndarray
        ASCII-code arrays of equal length
    model : str
        Substitution model name
    freqs : np.ndarray, optional
        A/C/G/T base frequencies for F81/TN93 (default: estimated from the pair)
    min_sites : int
        Minimum number of comparable sites
    labels : Tuple[str, str]
        Labels used in error messages
    gene : str, optional
        Gene name used in error messages

    Returns
    -------
    Tuple[float, int]
        (distance, number of comparable sites)

    Raises
    ------
    InsufficientOverlapError
        If fewer than ``min_sites`` columns are comparable
    SaturatedDistanceError
        If the model cannot be fit for this pair
    """
    model = normalize_model_name(model)
    n_sites, p1_count, p2_count, q_count = count_pair_differences(seq_a, seq_b)

    if n_sites < max(min_sites, 1):
        raise InsufficientOverlapError(labels[0], labels[1], n_sites, gene=gene)

    if freqs is None:
        freqs = base_frequencies(np.vstack([seq_a, seq_b]))

    if model in _FREQUENCY_MODELS:
        g_r = freqs[0] + freqs[2]
        g_y = freqs[1] + freqs[3]
        if model == "TN93" and (g_r == 0 or g_y == 0):
            raise SaturatedDistanceError(
                labels[0], labels[1], n_sites, gene=gene,
                reason="base composition lacks purines or pyrimidines; TN93 cannot be fit",
            )

    p1 = p1_count / n_sites
    p2 = p2_count / n_sites
    q = q_count / n_sites

    try:
        distance = SUBSTITUTION_MODELS[model](p1, p2, q, freqs)
    except (ValueError, ZeroDivisionError) as e:
        raise SaturatedDistanceError(
            labels[0], labels[1], n_sites, gene=gene,
            reason=f"sequences too divergent for {model} (p-distance {p1 + p2 + q:.3f})",
        ) from e

    return max(0.0, float(distance)), n_sites


# ============================================================================
# Matrix Construction
# ============================================================================

def compute_distance_matrix(
    sequences: SequenceSet,
    model: str = "TN93",
    min_sites: int = 1,
    deduplicate: bool = True,
) -> DistanceMatrix:
    """
    Compute the pairwise distance matrix of a SequenceSet.

    Parameters
    ----------
    sequences : SequenceSet
        Aligned sequences for one gene
    model : str, optional
        Substitution model: "raw", "JC69", "K80", "F81" or "TN93" (default)
    min_sites : int, optional
        Minimum comparable sites per pair (default: 1)
    deduplicate : bool, optional
        Sanitize and suffix duplicate labels (default: True). When False,
        duplicate labels raise DuplicateLabelError.

    Returns
    -------
    DistanceMatrix
        Symmetric, zero-diagonal matrix in SequenceSet order

    Raises
    ------
    InsufficientOverlapError
        If any pair shares fewer than ``min_sites`` comparable columns
    SaturatedDistanceError
        If any pair is too divergent for the model
    DuplicateLabelError
        If ``deduplicate`` is False and labels repeat
    """
    model = normalize_model_name(model)
    gene = sequences.name

    if deduplicate:
        labels = make_unique_labels(sequences.labels)
    else:
        labels = list(sequences.labels)
        duplicates = find_duplicate_labels(labels)
        if duplicates:
            raise DuplicateLabelError(duplicates, gene=gene)

    codes = sequences.to_array()
    n_seqs = len(labels)
    freqs = base_frequencies(codes)

    logger.info(f"[{gene}] Calculating {model} distances for {n_seqs} sequences (pairwise deletion)")
    logger.debug(f"[{gene}] Base frequencies A/C/G/T: {np.round(freqs, 4).tolist()}")

    values = np.zeros((n_seqs, n_seqs), dtype=float)
    n_sites = np.zeros((n_seqs, n_seqs), dtype=int)
    for i in range(n_seqs):
        n_sites[i, i] = int(np.count_nonzero(np.isin(codes[i], (_A, _C, _G, _T))))

    tracker = ProgressTracker(total=n_seqs * (n_seqs - 1) // 2, description=f"[{gene}] Pairwise distances")

    for i in range(n_seqs):
        for j in range(i + 1, n_seqs):
            distance, sites = pairwise_distance(
                codes[i], codes[j],
                model=model,
                freqs=freqs,
                min_sites=min_sites,
                labels=(labels[i], labels[j]),
                gene=gene,
            )
            values[i, j] = values[j, i] = distance
            n_sites[i, j] = n_sites[j, i] = sites
            tracker.update()

    tracker.finish()

    if n_seqs > 1:
        upper = values[np.triu_indices(n_seqs, k=1)]
        logger.info(
            f"[{gene}] Distance calculation complete: "
            f"min={upper.min():.4f}, mean={upper.mean():.4f}, max={upper.max():.4f}"
        )

    return DistanceMatrix(tuple(labels), values, name=gene, model=model, n_sites=n_sites)


def distance_summary(matrix: DistanceMatrix) -> Dict[str, float]:
    """Summary statistics of the off-diagonal distances."""
    n = len(matrix)
    if n < 2:
        return {'n_pairs': 0, 'min': 0.0, 'mean': 0.0, 'median': 0.0, 'max': 0.0}
    upper = matrix.values[np.triu_indices(n, k=1)]
    return {
        'n_pairs': int(upper.size),
        'min': float(upper.min()),
        'mean': float(upper.mean()),
        'median': float(np.median(upper)),
        'max': float(upper.max()),
    }
