"""
Analysis Output Files

This module writes the artifacts of an analysis run to disk. Each gene gets
its own subdirectory with a labelled distance matrix, both cluster
assignments, the k-means centroids, the silhouette curve, and the dendrogram
in Newick format. A cross-gene summary table records every gene, including
those that failed.
"""

import logging
from pathlib import Path
from typing import Dict, Union

import pandas as pd

from .config import PipelineConfig
from .core import AnalysisRun, GeneAnalysisResult
from .distance import DistanceMatrix
from .utils import create_output_directory, sanitize_filename

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    'gene', 'n_sequences', 'min_length', 'median_length', 'max_length',
    'mean_distance', 'max_distance', 'model', 'linkage', 'threshold',
    'n_hierarchical_clusters', 'best_k', 'best_silhouette',
    'between_total_ss', 'seed', 'status', 'error',
]


def write_gene_outputs(result: GeneAnalysisResult, output_dir: Union[str, Path]) -> Dict[str, Path]:
    """
    Write every artifact of one gene into ``<output_dir>/<gene>/``.

    Parameters
    ----------
    result : GeneAnalysisResult
        Analysis result for the gene
    output_dir : Union[str, Path]
        Base output directory

    Returns
    -------
    Dict[str, Path]
        Artifact name -> written path
    """
    gene = sanitize_filename(result.gene) or "gene"
    gene_dir = create_output_directory(Path(output_dir) / gene)

    files = {
        'distance_matrix': gene_dir / f"{gene}_distance_matrix.csv",
        'hierarchical_clusters': gene_dir / f"{gene}_hierarchical_clusters.tsv",
        'kmeans_clusters': gene_dir / f"{gene}_kmeans_clusters.tsv",
        'kmeans_centroids': gene_dir / f"{gene}_kmeans_centroids.tsv",
        'silhouette_scores': gene_dir / f"{gene}_silhouette_scores.tsv",
        'dendrogram': gene_dir / f"{gene}_dendrogram.nwk",
    }

    result.matrix.to_csv(files['distance_matrix'])
    result.flat_clustering.to_dataframe().to_csv(files['hierarchical_clusters'], sep='\t', index=False)
    result.partition.to_dataframe().to_csv(files['kmeans_clusters'], sep='\t', index=False)
    result.partition.centroids_dataframe().to_csv(files['kmeans_centroids'], sep='\t', index=False)
    result.selection.to_dataframe().to_csv(files['silhouette_scores'], sep='\t', index=False)

    with open(files['dendrogram'], 'w') as f:
        f.write(result.dendrogram.to_newick() + "\n")

    logger.info(f"[{result.gene}] Wrote {len(files)} output files to {gene_dir}")
    return files


def summary_dataframe(run: AnalysisRun, cfg: PipelineConfig) -> pd.DataFrame:
    """One row per gene in input order; failed genes carry status and error only."""
    rows = []
    for gene in run.genes:
        if gene in run.results:
            rows.append(run.results[gene].summary())
        else:
            rows.append({
                'gene': gene,
                'model': cfg.distance.model,
                'linkage': cfg.hierarchical.method,
                'threshold': cfg.hierarchical.threshold,
                'status': 'failed',
                'error': run.errors.get(gene, ''),
            })
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)


def write_analysis_outputs(
    run: AnalysisRun,
    cfg: PipelineConfig,
    output_dir: Union[str, Path],
) -> Path:
    """
    Write per-gene artifacts, the run parameters, and ``analysis_summary.tsv``.

    Returns
    -------
    Path
        Path to the summary table
    """
    out = create_output_directory(output_dir)

    for result in run.results.values():
        write_gene_outputs(result, out)

    cfg.to_json(out / "analysis_parameters.json")

    summary_path = out / "analysis_summary.tsv"
    summary_dataframe(run, cfg).to_csv(summary_path, sep='\t', index=False)
    logger.info(f"Wrote analysis summary to {summary_path}")

    return summary_path


def read_distance_matrix(path: Union[str, Path], name: str = "", model: str = "external") -> DistanceMatrix:
    """
    Load a labelled distance matrix CSV written by ``DistanceMatrix.to_csv``.

    The first column holds the row labels; label order is preserved.

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Distance matrix file not found: {path}")

    # Labels such as "NA" are sequence names, not missing values
    df = pd.read_csv(path, index_col=0, keep_default_na=False)
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    return DistanceMatrix.from_dataframe(df, name=name or path.stem, model=model)
