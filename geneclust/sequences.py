"""
Aligned Sequence Sets

This module holds the data model consumed by the distance computation: an
ordered, immutable set of equal-length aligned nucleotide sequences for one
gene, plus the label handling that must happen before a distance matrix is
built.

Key Concepts:
- Insertion order is significant: it fixes the row/column order of every
  downstream matrix and the order of every label list.
- Labels must be unique. Duplicate identifiers (e.g. several records of the
  same species) are disambiguated by appending a numeric suffix, never merged.
- Labels are made identifier-safe with the same sanitizing rules used for
  output filenames.

Species labels follow the GenBank FASTA title convention used when sequences
are fetched by gene name: ``"<accession> <Genus> <species> ..."`` or
``"<accession> PREDICTED: <Genus> <species> ..."``.

Example Usage:
    >>> from geneclust.sequences import SequenceSet
    >>> seqs = SequenceSet.from_mapping("NOTCH3", {
    ...     "Orcinus orca": "ACGT-ACGT",
    ...     "Tursiops truncatus": "ACGTTACGT",
    ... })
    >>> seqs.labels
    ('Orcinus orca', 'Tursiops truncatus')
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union, Callable
from collections import Counter
import logging

import numpy as np
from Bio import AlignIO
from Bio.SeqRecord import SeqRecord

from .utils import sanitize_filename

logger = logging.getLogger(__name__)

VALID_BASES = "ACGT"
GAP_CHARS = "-."


class SequenceSetError(Exception):
    """Base exception for sequence set errors."""
    pass


class AlignmentLengthError(SequenceSetError):
    """Sequences in a set do not share a single aligned length."""
    pass


class DuplicateLabelError(SequenceSetError):
    """Duplicate labels reached a step that requires unique labels."""

    def __init__(self, duplicates: Sequence[str], gene: Optional[str] = None):
        self.duplicates = list(duplicates)
        self.gene = gene
        where = f" in gene '{gene}'" if gene else ""
        super().__init__(
            f"Duplicate sequence labels{where}: {', '.join(self.duplicates)}"
        )


@dataclass(frozen=True)
class AlignedSequence:
    """One aligned nucleotide sequence and its label."""
    label: str
    sequence: str

    def __post_init__(self):
        object.__setattr__(self, 'sequence', self.sequence.upper())

    def __len__(self) -> int:
        return len(self.sequence)

    @property
    def ungapped_length(self) -> int:
        """Number of unambiguous A/C/G/T positions."""
        return sum(1 for base in self.sequence if base in VALID_BASES)


@dataclass(frozen=True)
class SequenceSet:
    """
    Ordered collection of equal-length aligned sequences for one gene.

    Attributes
    ----------
    name : str
        Gene (or dataset) name, used in log and error messages
    sequences : Tuple[AlignedSequence, ...]
        Sequences in insertion order

    Raises
    ------
    AlignmentLengthError
        If the set is empty or sequences differ in length
    """
    name: str
    sequences: Tuple[AlignedSequence, ...]

    def __post_init__(self):
        object.__setattr__(self, 'sequences', tuple(self.sequences))

        if not self.sequences:
            raise AlignmentLengthError(f"Sequence set '{self.name}' is empty")

        lengths = {len(seq) for seq in self.sequences}
        if len(lengths) > 1:
            raise AlignmentLengthError(
                f"All sequences in '{self.name}' must have the same aligned length, "
                f"found lengths {sorted(lengths)}"
            )

    def __len__(self) -> int:
        return len(self.sequences)

    def __iter__(self):
        return iter(self.sequences)

    def __getitem__(self, index: int) -> AlignedSequence:
        return self.sequences[index]

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(seq.label for seq in self.sequences)

    @property
    def alignment_length(self) -> int:
        return len(self.sequences[0])

    def to_array(self) -> np.ndarray:
        """Return the alignment as an (n, L) array of ASCII byte codes."""
        return np.vstack(
            [np.frombuffer(seq.sequence.encode('ascii'), dtype=np.uint8) for seq in self.sequences]
        )

    def length_summary(self) -> Dict[str, float]:
        """Summary of unambiguous (non-gap, non-N) lengths across the set."""
        lengths = np.array([seq.ungapped_length for seq in self.sequences])
        return {
            'n': int(len(lengths)),
            'min': int(lengths.min()),
            'median': float(np.median(lengths)),
            'mean': float(lengths.mean()),
            'max': int(lengths.max()),
        }

    @classmethod
    def from_mapping(cls, name: str, sequences: Mapping[str, str]) -> 'SequenceSet':
        """Build a set from a label -> aligned sequence mapping, keeping its order."""
        return cls(name, tuple(AlignedSequence(label, seq) for label, seq in sequences.items()))

    @classmethod
    def from_records(
        cls,
        name: str,
        records: Iterable[SeqRecord],
        label_func: Optional[Callable[[SeqRecord], str]] = None,
    ) -> 'SequenceSet':
        """
        Build a set from aligned Biopython records.

        Parameters
        ----------
        name : str
            Gene name
        records : Iterable[SeqRecord]
            Aligned records (e.g. from ``Bio.AlignIO.read``)
        label_func : callable, optional
            Maps a record to its label (default: ``record.id``). Use
            :func:`species_label_from_record` to label by species name.
        """
        if label_func is None:
            label_func = lambda rec: rec.id  # noqa: E731
        return cls(
            name,
            tuple(AlignedSequence(label_func(rec), str(rec.seq)) for rec in records),
        )


def species_label_from_description(description: str) -> str:
    """
    Extract a ``"Genus species"`` label from a GenBank FASTA title.

    Takes the two words following the accession, skipping a ``PREDICTED:``
    marker. Falls back to the whole (stripped) description when fewer words
    are available.

    Examples
    --------
    >>> species_label_from_description("XM_004263.2 PREDICTED: Orcinus orca notch 3")
    'Orcinus orca'
    >>> species_label_from_description("AB123456.1 Physeter catodon BRCA1 gene")
    'Physeter catodon'
    """
    words = description.strip().lstrip('>').split()
    words = words[1:]
    if words and words[0].rstrip(':').upper() == "PREDICTED":
        words = words[1:]
    if len(words) >= 2:
        return f"{words[0]} {words[1]}"
    return description.strip()


def species_label_from_record(record: SeqRecord) -> str:
    """Label a record by the species named in its description."""
    return species_label_from_description(record.description or record.id)


def make_unique_labels(labels: Sequence[str]) -> List[str]:
    """
    Make labels identifier-safe and unique, preserving order.

    Labels are sanitized (spaces and punctuation become underscores). The
    first occurrence of a label keeps its name; later occurrences get a
    numeric suffix ``_1``, ``_2``, ... skipping any suffix that would collide
    with another label.

    Examples
    --------
    >>> make_unique_labels(["Orcinus orca", "Orcinus orca", "Kogia sima"])
    ['Orcinus_orca', 'Orcinus_orca_1', 'Kogia_sima']
    """
    cleaned = [sanitize_filename(label) or "seq" for label in labels]
    taken = set(cleaned)
    seen = set()
    counters: Dict[str, int] = {}
    unique = []

    for label in cleaned:
        if label not in seen:
            seen.add(label)
            unique.append(label)
            continue

        suffix = counters.get(label, 0)
        while True:
            suffix += 1
            candidate = f"{label}_{suffix}"
            if candidate not in taken:
                break
        counters[label] = suffix
        taken.add(candidate)
        seen.add(candidate)
        unique.append(candidate)

    renamed = sum(1 for a, b in zip(labels, unique) if a != b)
    if renamed:
        logger.debug(f"Relabelled {renamed} sequence labels for uniqueness/safety")

    return unique


def find_duplicate_labels(labels: Sequence[str]) -> List[str]:
    """Return labels occurring more than once, in first-seen order."""
    counts = Counter(labels)
    return [label for label in dict.fromkeys(labels) if counts[label] > 1]


def load_alignment(
    alignment_path: Union[str, Path],
    name: Optional[str] = None,
    fmt: str = "fasta",
    label_by_species: bool = False,
) -> SequenceSet:
    """
    Read an aligned file into a SequenceSet.

    Parameters
    ----------
    alignment_path : Union[str, Path]
        Path to the alignment
    name : str, optional
        Gene name (default: file stem)
    fmt : str
        Any format understood by ``Bio.AlignIO`` (default: "fasta")
    label_by_species : bool
        Label sequences by the species parsed from the record description
        instead of the record id

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    AlignmentLengthError
        If the records are not all the same length
    """
    path = Path(alignment_path)
    if not path.exists():
        raise FileNotFoundError(f"Alignment file not found: {path}")

    if name is None:
        name = path.stem

    try:
        alignment = AlignIO.read(str(path), fmt)
    except ValueError as e:
        raise AlignmentLengthError(f"Could not read alignment {path}: {e}") from e

    label_func = species_label_from_record if label_by_species else None
    seq_set = SequenceSet.from_records(name, alignment, label_func=label_func)
    logger.info(
        f"Loaded {len(seq_set)} aligned sequences for {name} "
        f"(alignment length {seq_set.alignment_length})"
    )
    return seq_set
