"""Nucleotide helpers and CDS to protein mapping."""

import logging
from typing import List, Optional, Tuple

from Bio.Seq import reverse_complement

from .features import SequenceFeature, SequenceFeatures
from .mapping import CoordinateMap, range_length
from .models import Sequence
from .ontology import CDS

logger = logging.getLogger(__name__)

CODON_LENGTH = 3
NUCLEOTIDES = set("ACGTUN")
GAPS = set("-. ")


def is_nucleotide_sequence(text: str, allow_gaps: bool = True) -> bool:
    """True if ``text`` is non-empty and holds only nucleotide codes (and gaps if allowed)."""
    if not text:
        return False
    allowed = NUCLEOTIDES | GAPS if allow_gaps else NUCLEOTIDES
    return all(c.upper() in allowed for c in text)


def reverse_complement_allele(allele: str) -> str:
    """Reverse complement a nucleotide allele; descriptive tokens such as
    ``HGMD_MUTATION`` are returned unchanged."""
    if not is_nucleotide_sequence(allele, allow_gaps=True):
        return allele
    return reverse_complement(allele)


def complement_alleles(alleles: str) -> str:
    """Reverse complement each comma-separated allele, keeping their order."""
    return ",".join(reverse_complement_allele(a) for a in alleles.split(","))


def reverse_complement_feature_alleles(feature: SequenceFeature):
    """Complement a variant's ``alleles`` attribute in place and mirror it into the description."""
    alleles = feature.get_value("alleles")
    if alleles is None:
        return
    complemented = complement_alleles(alleles)
    feature.set_value("alleles", complemented)
    feature.description = complemented


def find_cds_positions(sequence: Sequence) -> List[Tuple[int, int]]:
    """
    Ranges of the CDS features on a sequence, in ascending order.

    A non-zero phase on the first CDS (5' incomplete) moves its start to the
    next whole codon.
    """
    features = sequence.features.get_features_by_ontology(CDS)
    result: List[Tuple[int, int]] = []
    for feature in SequenceFeatures.sort_features(features, True):
        begin, end = feature.begin, feature.end
        if not result and feature.phase:
            try:
                phase = int(feature.phase)
            except ValueError:
                phase = 0
            begin += phase
            if begin > end:
                logger.error(f"Start phase extends beyond start CDS in {sequence.name}")
        result.append((begin, end))
    return sorted(result)


def remove_end_positions(count: int, ranges: List[Tuple[int, int]]):
    """Drop ``count`` positions from the 3' end of ascending ranges, in place."""
    while count > 0 and ranges:
        begin, end = ranges[-1]
        length = range_length((begin, end))
        if length > count:
            ranges[-1] = (begin, end - count)
            return
        count -= length
        ranges.pop()


def map_cds_to_protein(dna: Sequence, protein: Sequence,
                       cds_ranges: Optional[List[Tuple[int, int]]] = None) -> Optional[CoordinateMap]:
    """
    Build the 3:1 map from a dna sequence's coding positions to its protein.

    Args:
        dna: Sequence carrying CDS features
        protein: Translated product
        cds_ranges: Coding ranges to use instead of the CDS features

    Returns:
        The mapping, or None if the codon count does not match the protein
        length (allowing for a trailing stop codon and a leading ``X``)
    """
    ranges = list(cds_ranges) if cds_ranges is not None else find_cds_positions(dna)
    if not ranges:
        return None
    mapped_length = sum(range_length(r) for r in ranges)

    remainder = mapped_length % CODON_LENGTH
    if remainder:
        mapped_length -= remainder
        remove_end_positions(remainder, ranges)

    protein_length = len(protein.sequence)
    protein_start = protein.start
    protein_end = protein.end

    # an incomplete first codon may translate to X; leave it unmapped
    if protein.sequence.startswith("X"):
        protein_start += 1
        protein_length -= 1

    codons = mapped_length // CODON_LENGTH
    if codons == protein_length + 1:
        codons -= 1
        remove_end_positions(CODON_LENGTH, ranges)

    if codons != protein_length or protein_length <= 0 or not ranges:
        logger.debug(f"{dna.name}: {codons} codons do not match {protein.name} length {protein_length}")
        return None
    return CoordinateMap(ranges, [(protein_start, protein_end)], CODON_LENGTH, 1)
