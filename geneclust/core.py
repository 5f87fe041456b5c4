"""
Core Pipeline Orchestration for geneclust

This module runs the complete clustering analysis for one or more genes. Each
gene goes through the same workflow:

1. Pairwise distances under the configured substitution model
2. Hierarchical dendrogram and flat cut at the distance threshold
3. Silhouette scan over candidate k values with seeded k-means
4. Final k-means partition at the selected k

The hierarchical branch and the k-means branch share only the read-only
distance matrix, so their results never influence each other.

Genes are independent. With ``n_threads > 1`` they are analyzed in a
multiprocessing pool; a gene that fails with one of the package's domain
errors is logged and recorded in ``AnalysisRun.errors`` while the remaining
genes continue.

Example Usage:
    >>> from geneclust.core import run_analysis
    >>> from geneclust.sequences import load_alignment
    >>> run = run_analysis([
    ...     load_alignment("NOTCH3_aligned.fasta", name="NOTCH3"),
    ...     load_alignment("BRCA1_aligned.fasta", name="BRCA1"),
    ... ])
    >>> run.results["NOTCH3"].selection.best_k
    3
    >>> run.errors
    {}
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import multiprocessing as mp
import time

from .config import PipelineConfig, get_default_config
from .distance import DistanceError, DistanceMatrix, compute_distance_matrix, distance_summary
from .hierarchical import (
    ClusteringError, Dendrogram, FlatClustering, build_dendrogram, cut_dendrogram,
)
from .kmeans import CentroidPartition
from .optimal_k import KSelectionError, KSelectionResult, select_optimal_k
from .sequences import SequenceSet, SequenceSetError
from .utils import format_elapsed_time

logger = logging.getLogger(__name__)

# Errors that fail a single gene without stopping the run
GENE_ERRORS = (SequenceSetError, DistanceError, ClusteringError, KSelectionError)


@dataclass(frozen=True, eq=False)
class GeneAnalysisResult:
    """
    Every artifact of one gene's analysis.

    Attributes
    ----------
    gene : str
        Gene name
    matrix : DistanceMatrix
        Pairwise distances
    dendrogram : Dendrogram
        Hierarchical merge tree
    flat_clustering : FlatClustering
        Dendrogram cut at the configured threshold
    selection : KSelectionResult
        Silhouette curve and the partition for every candidate k
    partition : CentroidPartition
        Final k-means partition at the selected k
    seed : int
        Seed used for every k-means run of this gene
    length_summary : Dict[str, float]
        Unambiguous sequence lengths (see ``SequenceSet.length_summary``)
    """
    gene: str
    matrix: DistanceMatrix
    dendrogram: Dendrogram
    flat_clustering: FlatClustering
    selection: KSelectionResult
    partition: CentroidPartition
    seed: int
    length_summary: Dict[str, float] = field(default_factory=dict)

    def summary(self) -> Dict[str, object]:
        """One summary row for cross-gene reporting."""
        distances = distance_summary(self.matrix)
        return {
            'gene': self.gene,
            'n_sequences': len(self.matrix),
            'min_length': self.length_summary.get('min'),
            'median_length': self.length_summary.get('median'),
            'max_length': self.length_summary.get('max'),
            'mean_distance': distances['mean'],
            'max_distance': distances['max'],
            'model': self.matrix.model,
            'linkage': self.dendrogram.method,
            'threshold': self.flat_clustering.threshold,
            'n_hierarchical_clusters': self.flat_clustering.n_clusters,
            'best_k': self.selection.best_k,
            'best_silhouette': self.selection.best_score,
            'between_total_ss': self.partition.between_total_ratio,
            'seed': self.seed,
            'status': 'ok',
            'error': '',
        }


@dataclass
class AnalysisRun:
    """Results keyed by gene in input order, plus gene -> message for failures."""
    results: Dict[str, GeneAnalysisResult] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    genes: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def add_failures(self, errors: Dict[str, str], gene_order: Sequence[str]) -> None:
        """
        Record genes that failed before analysis (e.g. while loading).

        ``gene_order`` becomes the reporting order and must list every gene
        of the run.
        """
        self.errors.update(errors)
        self.genes = list(gene_order)
        for gene, message in errors.items():
            logger.warning(f"  ✗ {gene}: {message}")


def analyze_gene(
    sequences: SequenceSet,
    cfg: Optional[PipelineConfig] = None,
    seed: Optional[int] = None,
) -> GeneAnalysisResult:
    """
    Run distance, hierarchical, and k-means analysis for one gene.

    Parameters
    ----------
    sequences : SequenceSet
        Aligned sequences for the gene
    cfg : PipelineConfig, optional
        Pipeline configuration (default: ``get_default_config()``)
    seed : int, optional
        k-means seed (default: ``cfg.kmeans.seed_for(gene, 0)``)

    Returns
    -------
    GeneAnalysisResult

    Raises
    ------
    DistanceError, ClusteringError, KSelectionError, SequenceSetError
        Propagated from the analysis steps
    """
    cfg = cfg or get_default_config()
    gene = sequences.name
    if seed is None:
        seed = cfg.kmeans.seed_for(gene, 0)

    start = time.time()
    logger.info(f"[{gene}] Analyzing {len(sequences)} sequences (seed={seed})")

    lengths = sequences.length_summary()
    logger.info(
        f"[{gene}] Unambiguous lengths: min {lengths['min']}, median {lengths['median']:g}, "
        f"mean {lengths['mean']:.1f}, max {lengths['max']} (alignment length {sequences.alignment_length})"
    )

    matrix = compute_distance_matrix(
        sequences,
        model=cfg.distance.model,
        min_sites=cfg.distance.min_comparable_sites,
        deduplicate=cfg.distance.deduplicate_labels,
    )
    distances = distance_summary(matrix)
    logger.info(
        f"[{gene}] {distances['n_pairs']} pairwise distances: min {distances['min']:.4f}, "
        f"mean {distances['mean']:.4f}, max {distances['max']:.4f}"
    )

    dendrogram = build_dendrogram(matrix, method=cfg.hierarchical.method)
    flat = cut_dendrogram(dendrogram, cfg.hierarchical.threshold)

    selection = select_optimal_k(
        matrix,
        k_min=cfg.kmeans.k_min,
        k_max=cfg.kmeans.k_max,
        seed=seed,
        max_iter=cfg.kmeans.max_iter,
        n_jobs=cfg.kmeans.n_jobs,
    )
    # Same matrix, k and seed: the scan's partition is the final partition
    partition = selection.best_partition

    logger.info(
        f"[{gene}] Done in {format_elapsed_time(time.time() - start)}: "
        f"{flat.n_clusters} hierarchical clusters, k-means k={partition.k} "
        f"(sizes {partition.sizes}, between/total SS {partition.between_total_ratio:.1%})"
    )

    return GeneAnalysisResult(
        gene=gene,
        matrix=matrix,
        dendrogram=dendrogram,
        flat_clustering=flat,
        selection=selection,
        partition=partition,
        seed=seed,
        length_summary=lengths,
    )


def _analyze_gene_worker(
    args: Tuple[SequenceSet, PipelineConfig, int]
) -> Tuple[str, Optional[GeneAnalysisResult], Optional[str]]:
    """Analyze one gene and capture domain errors as a message."""
    sequences, cfg, seed = args
    try:
        return sequences.name, analyze_gene(sequences, cfg, seed), None
    except GENE_ERRORS as e:
        logger.error(f"[{sequences.name}] Analysis failed: {e}")
        return sequences.name, None, f"{type(e).__name__}: {e}"


def run_analysis(
    gene_sets: Sequence[SequenceSet],
    cfg: Optional[PipelineConfig] = None,
) -> AnalysisRun:
    """
    Analyze several genes independently.

    Parameters
    ----------
    gene_sets : Sequence[SequenceSet]
        One SequenceSet per gene, in reporting order
    cfg : PipelineConfig, optional
        Pipeline configuration (default: ``get_default_config()``)

    Returns
    -------
    AnalysisRun
        Successful results keyed by gene in input order, and an error
        message for every gene that failed

    Raises
    ------
    ValueError
        If two gene sets share a name
    """
    cfg = cfg or get_default_config()

    names = [s.name for s in gene_sets]
    repeated = sorted({n for n in names if names.count(n) > 1})
    if repeated:
        raise ValueError(f"Gene names must be unique, repeated: {repeated}")

    tasks = [(s, cfg, cfg.kmeans.seed_for(s.name, i)) for i, s in enumerate(gene_sets)]

    logger.info("=" * 80)
    logger.info(f"Analyzing {len(tasks)} genes: {', '.join(names)}")
    logger.info("=" * 80)

    start = time.time()
    if cfg.n_threads > 1 and len(tasks) > 1:
        # Pool workers cannot start their own pools
        worker_cfg = cfg.update(kmeans__n_jobs=1)
        tasks = [(s, worker_cfg, seed) for s, _, seed in tasks]
        logger.info(f"Using {min(cfg.n_threads, len(tasks))} worker processes")
        with mp.Pool(processes=min(cfg.n_threads, len(tasks))) as pool:
            outcomes = pool.map(_analyze_gene_worker, tasks)
    else:
        outcomes = [_analyze_gene_worker(task) for task in tasks]

    run = AnalysisRun(genes=names)
    for gene, result, error in outcomes:
        if error is None:
            run.results[gene] = result
        else:
            run.errors[gene] = error

    logger.info(
        f"Analysis finished in {format_elapsed_time(time.time() - start)}: "
        f"{len(run.results)} succeeded, {len(run.errors)} failed"
    )
    for gene, message in run.errors.items():
        logger.warning(f"  ✗ {gene}: {message}")

    return run
