"""
Multiple Sequence Alignment With MAFFT

This module wraps the external MAFFT aligner so that raw (unaligned)
sequences can be turned into a SequenceSet. Alignment itself is treated as a
black box: the only guarantee relied upon downstream is that every returned
sequence has the same length, with gap characters inserted as needed.

Records are written under temporary ids (``seq0``, ``seq1``, ...) so that
labels with spaces or duplicates survive the round trip through MAFFT; the
original labels and input order are restored afterwards.

Dependencies:
- MAFFT v7+ in PATH
- Biopython for FASTA reading/writing

Example Usage:
    >>> from geneclust.alignment import align_sequences
    >>> seq_set = align_sequences(
    ...     {"Orcinus orca": "ACGTTGCA...", "Kogia sima": "ACGTGCA..."},
    ...     name="NOTCH3",
    ... )
"""

from typing import List, Mapping, Optional
from pathlib import Path
import logging
import subprocess
import shutil
import tempfile

from Bio import AlignIO, SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .sequences import AlignedSequence, SequenceSet

logger = logging.getLogger(__name__)


class AlignmentError(Exception):
    """Error during sequence alignment."""
    pass


def check_mafft() -> bool:
    """Return True if MAFFT is available in PATH."""
    return shutil.which('mafft') is not None


def run_mafft_alignment(
    input_fasta: str,
    output_fasta: str,
    mafft_options: Optional[List[str]] = None
) -> None:
    """
    Perform multiple sequence alignment using MAFFT.

    Parameters
    ----------
    input_fasta : str
        Path to input FASTA file with unaligned sequences
    output_fasta : str
        Path to output aligned FASTA file
    mafft_options : List[str], optional
        Additional MAFFT command line options (default: ["--auto"])

    Raises
    ------
    AlignmentError
        If MAFFT is not found or alignment fails
    """
    if not check_mafft():
        raise AlignmentError(
            "MAFFT not found in PATH. Please install MAFFT:\n"
            "  - macOS: brew install mafft\n"
            "  - Ubuntu/Debian: sudo apt-get install mafft\n"
            "  - conda: conda install -c bioconda mafft"
        )

    if mafft_options is None:
        mafft_options = ["--auto"]

    cmd = ["mafft"] + mafft_options + [input_fasta]

    logger.info(f"Running MAFFT alignment: {' '.join(cmd)}")

    try:
        with open(output_fasta, 'w') as out_handle:
            subprocess.run(
                cmd,
                stdout=out_handle,
                stderr=subprocess.PIPE,
                text=True,
                check=True
            )
        logger.info(f"MAFFT alignment completed: {output_fasta}")

    except subprocess.CalledProcessError as e:
        error_msg = f"MAFFT alignment failed:\n{e.stderr}"
        logger.error(error_msg)
        raise AlignmentError(error_msg) from e
    except OSError as e:
        error_msg = f"Failed to write alignment output: {e}"
        logger.error(error_msg)
        raise AlignmentError(error_msg) from e


def align_sequences(
    raw_sequences: Mapping[str, str],
    name: str,
    mafft_options: Optional[List[str]] = None,
    work_dir: Optional[Path] = None,
) -> SequenceSet:
    """
    Align raw sequences with MAFFT and return them as a SequenceSet.

    Parameters
    ----------
    raw_sequences : Mapping[str, str]
        Label -> unaligned nucleotide sequence, in the desired output order
    name : str
        Gene name for the resulting set
    mafft_options : List[str], optional
        MAFFT options (default: ["--auto"])
    work_dir : Path, optional
        Directory for the intermediate FASTA files (default: a temporary
        directory removed afterwards)

    Returns
    -------
    SequenceSet
        Equal-length aligned sequences in input order

    Raises
    ------
    AlignmentError
        If fewer than two sequences are given, MAFFT fails, or its output
        does not contain every input sequence
    """
    labels = list(raw_sequences.keys())
    if len(labels) < 2:
        raise AlignmentError(f"[{name}] Need at least 2 sequences to align, got {len(labels)}")

    records = [
        SeqRecord(Seq(str(seq).replace(' ', '').upper()), id=f"seq{i}", description="")
        for i, seq in enumerate(raw_sequences.values())
    ]

    with tempfile.TemporaryDirectory() as tmp:
        base = Path(work_dir) if work_dir is not None else Path(tmp)
        base.mkdir(parents=True, exist_ok=True)
        input_fasta = base / f"{name}_unaligned.fasta"
        aligned_fasta = base / f"{name}_aligned.fasta"

        SeqIO.write(records, str(input_fasta), "fasta")
        run_mafft_alignment(str(input_fasta), str(aligned_fasta), mafft_options=mafft_options)

        try:
            aligned = {rec.id: str(rec.seq) for rec in AlignIO.read(str(aligned_fasta), "fasta")}
        except ValueError as e:
            raise AlignmentError(f"[{name}] Could not read MAFFT output: {e}") from e

    missing = [rec.id for rec in records if rec.id not in aligned]
    if missing:
        raise AlignmentError(f"[{name}] MAFFT output is missing {len(missing)} sequences")

    seq_set = SequenceSet(
        name,
        tuple(AlignedSequence(label, aligned[f"seq{i}"]) for i, label in enumerate(labels)),
    )
    logger.info(f"[{name}] Aligned {len(seq_set)} sequences (length {seq_set.alignment_length})")
    return seq_set
