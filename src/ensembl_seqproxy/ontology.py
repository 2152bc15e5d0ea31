"""
Minimal Sequence Ontology hierarchy for feature-type ``is_a`` checks.

CDS is kept out from under exon even though coding exons are exons. cDNA
identification collects every feature that is_a exon, and CDS ranges among
them would splice the coding span into the cDNA a second time.
"""

from typing import Dict, Iterable, List, Optional, Set

GENE = "gene"
TRANSCRIPT = "transcript"
NMD_TRANSCRIPT_VARIANT = "NMD_transcript_variant"
EXON = "exon"
CDS = "CDS"
SEQUENCE_VARIANT = "sequence_variant"

# child -> direct parents
DEFAULT_TERMS: Dict[str, List[str]] = {
    "ncRNA_gene": [GENE],
    "protein_coding_gene": [GENE],

    "primary_transcript": [TRANSCRIPT],
    "mature_transcript": [TRANSCRIPT],
    "processed_transcript": [TRANSCRIPT],
    "aberrant_processed_transcript": [TRANSCRIPT],
    "pseudogenic_transcript": [TRANSCRIPT],
    "mRNA": ["mature_transcript"],
    "ncRNA": ["mature_transcript"],
    "lnc_RNA": ["ncRNA"],
    "lincRNA": ["lnc_RNA"],
    "miRNA": ["ncRNA"],
    "snRNA": ["ncRNA"],
    "snoRNA": ["ncRNA"],
    "rRNA": ["ncRNA"],
    "tRNA": ["ncRNA"],
    "scRNA": ["ncRNA"],

    "coding_exon": [EXON],
    "noncoding_exon": [EXON],
    "CDS_predicted": [CDS],

    "five_prime_UTR": ["UTR"],
    "three_prime_UTR": ["UTR"],

    "sequence_alteration": [SEQUENCE_VARIANT],
    "substitution": ["sequence_alteration"],
    "SNV": ["substitution"],
    "SNP": ["SNV"],
    "MNV": ["substitution"],
    "insertion": ["sequence_alteration"],
    "deletion": ["sequence_alteration"],
    "indel": ["sequence_alteration"],
    "feature_variant": [SEQUENCE_VARIANT],
    "transcript_variant": ["feature_variant"],
    NMD_TRANSCRIPT_VARIANT: ["transcript_variant"],
    "missense_variant": [SEQUENCE_VARIANT],
    "synonymous_variant": [SEQUENCE_VARIANT],
    "stop_gained": [SEQUENCE_VARIANT],
    "frameshift_variant": [SEQUENCE_VARIANT],
}


class SequenceOntologyLite:
    """
    Transitive ``is_a`` over a small, fixed term hierarchy.

    Unknown terms are only ``is_a`` themselves. Pass a different ``terms``
    table (child -> parents) to extend or replace the hierarchy.
    """

    def __init__(self, terms: Optional[Dict[str, Iterable[str]]] = None):
        self._parents: Dict[str, List[str]] = {
            child: list(parents) for child, parents in (terms or DEFAULT_TERMS).items()
        }
        self._ancestors: Dict[str, Set[str]] = {}

    def ancestors(self, term: str) -> Set[str]:
        """All terms that ``term`` is_a, including itself."""
        cached = self._ancestors.get(term)
        if cached is not None:
            return cached
        found = {term}
        pending = list(self._parents.get(term, ()))
        while pending:
            parent = pending.pop()
            if parent not in found:
                found.add(parent)
                pending.extend(self._parents.get(parent, ()))
        self._ancestors[term] = found
        return found

    def is_a(self, child: Optional[str], parent: str) -> bool:
        if child is None:
            return False
        return parent in self.ancestors(child)

    def terms(self) -> List[str]:
        known = set(self._parents)
        for parents in self._parents.values():
            known.update(parents)
        return sorted(known)


DEFAULT_ONTOLOGY = SequenceOntologyLite()
