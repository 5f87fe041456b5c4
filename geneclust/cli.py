#!/usr/bin/env python3
"""
geneclust Command-Line Interface

Cluster aligned gene sequences by genetic distance: hierarchical clustering
at a distance threshold and k-means with the number of clusters chosen by
average silhouette width.
"""

import argparse
import sys
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from Bio import SeqIO

from . import __version__
from . import utils, config, sequences, alignment, core, reports

logger = logging.getLogger(__name__)


def read_raw_sequences(fasta_path: Path, label_by_species: bool = False) -> Dict[str, str]:
    """
    Read unaligned FASTA records into a label -> sequence mapping.

    Repeated labels are suffixed so that no record is lost.
    """
    records = list(SeqIO.parse(str(fasta_path), "fasta"))
    if label_by_species:
        labels = [sequences.species_label_from_record(rec) for rec in records]
    else:
        labels = [rec.id for rec in records]
    unique = sequences.make_unique_labels(labels)
    return {label: str(rec.seq) for label, rec in zip(unique, records)}


def load_gene_sets(
    paths: List[Path],
    gene_names: List[str],
    align: bool = False,
    label_by_species: bool = False,
    work_dir: Optional[Path] = None,
) -> Tuple[List[sequences.SequenceSet], Dict[str, str]]:
    """
    Load (and optionally align) one SequenceSet per input file.

    A file that cannot be read or aligned fails only its own gene.

    Returns
    -------
    Tuple[List[SequenceSet], Dict[str, str]]
        Loaded sets in input order, and gene -> error message for failures
    """
    gene_sets = []
    errors = {}
    for path, gene in zip(paths, gene_names):
        try:
            if align:
                logger.info(f"[{gene}] Aligning raw sequences from {path} with MAFFT")
                raw = read_raw_sequences(path, label_by_species=label_by_species)
                gene_sets.append(alignment.align_sequences(raw, gene, work_dir=work_dir))
            else:
                gene_sets.append(
                    sequences.load_alignment(path, name=gene, label_by_species=label_by_species)
                )
        except (sequences.SequenceSetError, alignment.AlignmentError) as e:
            logger.error(f"[{gene}] Could not load {path}: {e}")
            errors[gene] = f"{type(e).__name__}: {e}"
    return gene_sets, errors


def build_config(args: argparse.Namespace, output_dir: Path) -> config.PipelineConfig:
    """Combine config file, environment overrides, and command-line options."""
    if args.config:
        cfg = config.load_config_from_file(args.config)
    else:
        cfg = config.get_default_config()

    env_overrides = config.load_config_from_env()
    if env_overrides:
        cfg = cfg.update(**env_overrides)

    overrides = {
        'distance__model': args.model,
        'hierarchical__method': args.linkage,
        'hierarchical__threshold': args.threshold,
        'kmeans__k_min': args.k_min,
        'kmeans__k_max': args.k_max,
        'kmeans__base_seed': args.seed,
        'kmeans__max_iter': args.max_iter,
        'n_threads': args.threads,
        'log_level': args.log_level,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    return cfg.update(output_dir=output_dir, **overrides)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description='geneclust: distance-based hierarchical and k-means clustering of gene alignments',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Cluster two aligned genes (gene names inferred from filenames)
  geneclust NOTCH3_aligned.fasta BRCA1_aligned.fasta

  # Name the genes and choose the output directory
  geneclust a.fasta b.fasta --gene NOTCH3 --gene BRCA1 --output results/cetaceans

  # Align raw sequences with MAFFT first, labelling by species
  geneclust NOTCH3_fetch.fasta --align --label-by-species

  # Kimura 2-parameter distances, tighter hierarchical threshold
  geneclust NOTCH3_aligned.fasta --model K80 --threshold 0.02

Notes:
  - Seeds default to 123 for the first gene, 124 for the second, and so on
  - --align requires MAFFT in PATH
        """
    )

    parser.add_argument(
        'alignments',
        type=Path,
        nargs='+',
        help='Aligned FASTA file(s), one per gene'
    )

    parser.add_argument(
        '-g', '--gene',
        action='append',
        default=None,
        help='Gene name for the corresponding input (repeatable; default: inferred from filename)'
    )

    parser.add_argument(
        '--output', '--output-dir',
        type=Path,
        default=None,
        help='Output directory (default: results)'
    )

    parser.add_argument(
        '--model',
        type=str,
        default=None,
        help='Substitution model: raw, JC69, K80, F81, TN93 (default: TN93)'
    )

    parser.add_argument(
        '--linkage',
        type=str,
        default=None,
        help='Linkage method: average/UPGMA, single, complete, weighted/WPGMA (default: average)'
    )

    parser.add_argument(
        '--threshold',
        type=float,
        default=None,
        help='Distance threshold for cutting the dendrogram (default: 0.03)'
    )

    parser.add_argument(
        '--k-min',
        type=int,
        default=None,
        help='Smallest number of k-means clusters to evaluate (default: 2)'
    )

    parser.add_argument(
        '--k-max',
        type=int,
        default=None,
        help='Largest number of k-means clusters to evaluate (default: 10)'
    )

    parser.add_argument(
        '--seed',
        type=int,
        default=None,
        help='Seed for the first gene; later genes use seed+1, seed+2, ... (default: 123)'
    )

    parser.add_argument(
        '--max-iter',
        type=int,
        default=None,
        help='Maximum k-means iterations (default: 100)'
    )

    parser.add_argument(
        '--threads',
        type=int,
        default=None,
        help='Number of worker processes across genes (default: 1)'
    )

    parser.add_argument(
        '--align',
        action='store_true',
        help='Treat inputs as unaligned FASTA and align them with MAFFT first'
    )

    parser.add_argument(
        '--label-by-species',
        action='store_true',
        help='Label sequences by the species name in the FASTA description'
    )

    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='YAML or JSON configuration file'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Logging verbosity (default: INFO)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'geneclust {__version__}'
    )

    args = parser.parse_args(argv)

    # Validate inputs
    missing = [p for p in args.alignments if not p.exists()]
    if missing:
        for path in missing:
            print(f"Error: Input file not found: {path}", file=sys.stderr)
        return 1

    if args.gene is not None and len(args.gene) != len(args.alignments):
        print(
            f"Error: {len(args.gene)} --gene names given for {len(args.alignments)} input files",
            file=sys.stderr,
        )
        return 1

    gene_names = args.gene or [utils.extract_gene_name(p) for p in args.alignments]
    if len(set(gene_names)) != len(gene_names):
        print(f"Error: Gene names must be unique: {gene_names}", file=sys.stderr)
        return 1

    output_dir = (args.output or Path("results")).resolve()
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        cfg = build_config(args, output_dir)
    except (ValueError, TypeError, FileNotFoundError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    # Seeds follow input positions even when a gene fails to load
    cfg = cfg.update(kmeans__seeds={
        gene: cfg.kmeans.seed_for(gene, i) for i, gene in enumerate(gene_names)
    })

    log_file = output_dir / "geneclust.log"
    utils.setup_logging(log_level=cfg.log_level, log_file=str(log_file))

    for warning in config.validate_config(cfg):
        logger.warning(warning)

    # Print banner
    print("=" * 80)
    print("geneclust")
    print("=" * 80)
    print(f"Genes: {', '.join(gene_names)}")
    print(f"Output: {output_dir}")
    print()
    print("Parameters:")
    print(f"  Distance model: {cfg.distance.model} (pairwise deletion)")
    print(f"  Linkage: {cfg.hierarchical.method}, threshold {cfg.hierarchical.threshold}")
    print(f"  k range: {cfg.kmeans.k_min}-{cfg.kmeans.k_max}, max iterations {cfg.kmeans.max_iter}")
    print(f"  Seeds: {', '.join(f'{g}={cfg.kmeans.seed_for(g, i)}' for i, g in enumerate(gene_names))}")
    print(f"  Threads: {cfg.n_threads}")
    print("=" * 80)
    print()

    try:
        gene_sets, load_errors = load_gene_sets(
            args.alignments,
            gene_names,
            align=args.align,
            label_by_species=args.label_by_species,
            work_dir=output_dir / "intermediate" if args.align else None,
        )

        run = core.run_analysis(gene_sets, cfg)
        run.add_failures(load_errors, gene_order=gene_names)
        summary_path = reports.write_analysis_outputs(run, cfg, output_dir)

        print(f"Summary: {summary_path}")
        for gene in run.genes:
            if gene in run.results:
                result = run.results[gene]
                print(
                    f"  ✓ {gene}: {result.flat_clustering.n_clusters} hierarchical clusters, "
                    f"best k={result.selection.best_k} "
                    f"(silhouette {result.selection.best_score:.3f})"
                )
            else:
                print(f"  ✗ {gene}: {run.errors[gene]}")

        return 0 if run.success else 1

    except KeyboardInterrupt:
        print("\n\nAnalysis interrupted by user", file=sys.stderr)
        return 130
    except (
        sequences.SequenceSetError, alignment.AlignmentError, FileNotFoundError, ValueError,
    ) as e:
        logger.error(f"Analysis failed with error: {e}", exc_info=True)
        print(f"\nError: Analysis failed. Check log file: {log_file}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
