"""
Unit tests for the sequence data model.

Tests cover:
- AlignedSequence normalization
- SequenceSet validation (empty sets, unequal lengths)
- Label deduplication and species label extraction
- Loading alignments from FASTA files
"""

import unittest
import tempfile
from pathlib import Path

import numpy as np
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from geneclust import sequences
from geneclust.sequences import (
    AlignedSequence, SequenceSet, AlignmentLengthError, DuplicateLabelError,
)


class TestAlignedSequence(unittest.TestCase):
    """Test single aligned sequences."""

    def test_sequence_is_uppercased(self):
        seq = AlignedSequence("a", "acgt-n")
        self.assertEqual(seq.sequence, "ACGT-N")
        self.assertEqual(len(seq), 6)

    def test_ungapped_length_counts_unambiguous_bases(self):
        seq = AlignedSequence("a", "AC-GTNN")
        self.assertEqual(seq.ungapped_length, 4)


class TestSequenceSet(unittest.TestCase):
    """Test SequenceSet construction and validation."""

    def test_from_mapping_preserves_order(self):
        seq_set = SequenceSet.from_mapping("NOTCH3", {"b": "ACGT", "a": "ACGA", "c": "ACG-"})
        self.assertEqual(seq_set.labels, ("b", "a", "c"))
        self.assertEqual(seq_set.alignment_length, 4)
        self.assertEqual(len(seq_set), 3)
        self.assertEqual(seq_set[1].sequence, "ACGA")

    def test_unequal_lengths_rejected(self):
        with self.assertRaises(AlignmentLengthError):
            SequenceSet.from_mapping("BRCA1", {"a": "ACGT", "b": "ACG"})

    def test_empty_set_rejected(self):
        with self.assertRaises(AlignmentLengthError):
            SequenceSet("empty", ())

    def test_alignment_length_error_is_sequence_set_error(self):
        self.assertTrue(issubclass(AlignmentLengthError, sequences.SequenceSetError))
        self.assertTrue(issubclass(DuplicateLabelError, sequences.SequenceSetError))

    def test_to_array_gives_ascii_codes(self):
        seq_set = SequenceSet.from_mapping("g", {"a": "AC", "b": "G-"})
        codes = seq_set.to_array()
        self.assertEqual(codes.shape, (2, 2))
        np.testing.assert_array_equal(codes[0], [ord("A"), ord("C")])
        np.testing.assert_array_equal(codes[1], [ord("G"), ord("-")])

    def test_sequence_set_is_immutable(self):
        seq_set = SequenceSet.from_mapping("g", {"a": "AC"})
        with self.assertRaises(Exception):
            seq_set.name = "other"

    def test_from_records_with_species_labels(self):
        records = [
            SeqRecord(Seq("ACGT"), id="XM_1.1", description="XM_1.1 PREDICTED: Orcinus orca notch 3"),
            SeqRecord(Seq("ACGA"), id="AB2.1", description="AB2.1 Kogia sima BRCA1 gene"),
        ]
        seq_set = SequenceSet.from_records(
            "NOTCH3", records, label_func=sequences.species_label_from_record
        )
        self.assertEqual(seq_set.labels, ("Orcinus orca", "Kogia sima"))

    def test_length_summary(self):
        seq_set = SequenceSet.from_mapping("g", {"a": "ACGT", "b": "AC--"})
        summary = seq_set.length_summary()
        self.assertEqual(summary['n'], 2)
        self.assertEqual(summary['min'], 2)
        self.assertEqual(summary['max'], 4)


class TestLabels(unittest.TestCase):
    """Test label extraction and deduplication."""

    def test_species_label_skips_predicted(self):
        label = sequences.species_label_from_description(
            "XM_004263.2 PREDICTED: Orcinus orca neurogenic locus notch 3"
        )
        self.assertEqual(label, "Orcinus orca")

    def test_species_label_plain(self):
        label = sequences.species_label_from_description("AB123456.1 Physeter catodon BRCA1 gene")
        self.assertEqual(label, "Physeter catodon")

    def test_species_label_fallback(self):
        self.assertEqual(sequences.species_label_from_description("onlyid"), "onlyid")

    def test_make_unique_labels(self):
        labels = sequences.make_unique_labels(["Orcinus orca", "Orcinus orca", "Kogia sima"])
        self.assertEqual(labels, ["Orcinus_orca", "Orcinus_orca_1", "Kogia_sima"])

    def test_make_unique_labels_avoids_existing_suffix(self):
        labels = sequences.make_unique_labels(["a", "a", "a_1"])
        self.assertEqual(labels, ["a", "a_2", "a_1"])
        self.assertEqual(len(set(labels)), 3)

    def test_find_duplicate_labels(self):
        self.assertEqual(sequences.find_duplicate_labels(["x", "y", "x", "z", "y"]), ["x", "y"])
        self.assertEqual(sequences.find_duplicate_labels(["x", "y"]), [])


class TestLoadAlignment(unittest.TestCase):
    """Test reading alignments from disk."""

    def test_load_alignment(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "NOTCH3.fasta"
            path.write_text(">s1 Orcinus orca\nACGT-A\n>s2 Kogia sima\nACGTTA\n")

            seq_set = sequences.load_alignment(path)
            self.assertEqual(seq_set.name, "NOTCH3")
            self.assertEqual(seq_set.labels, ("s1", "s2"))

            by_species = sequences.load_alignment(path, name="N3", label_by_species=True)
            self.assertEqual(by_species.name, "N3")
            self.assertEqual(by_species.labels, ("Orcinus orca", "Kogia sima"))

    def test_load_alignment_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            sequences.load_alignment("/nonexistent/alignment.fasta")

    def test_load_alignment_unequal_lengths(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bad.fasta"
            path.write_text(">s1\nACGT\n>s2\nACG\n")
            with self.assertRaises(AlignmentLengthError):
                sequences.load_alignment(path)


if __name__ == '__main__':
    unittest.main()
