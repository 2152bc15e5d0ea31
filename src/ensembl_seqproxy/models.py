"""Data models for fetched sequences, cross-references and chromosome loci."""

import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .features import SequenceFeature, SequenceFeatures
from .mapping import CoordinateMap

# lower-case source name -> canonical name
CANONICAL_SOURCES = {
    "uniprotkb/swiss-prot": "UNIPROT",
    "uniprotkb/trembl": "UNIPROT",
    "uniprot/sptrembl": "UNIPROT",
    "uniprot/swissprot": "UNIPROT",
    "uniprot": "UNIPROT",
    "pdb": "PDB",
    "ensembl": "ENSEMBL",
    "ensembl-tr": "ENSEMBL",
    "ensembl-gn": "ENSEMBL",
}

UNIPROT = "UNIPROT"
ENSEMBL = "ENSEMBL"


def canonical_source_name(source: Optional[str]) -> Optional[str]:
    """Map database name variants onto one canonical name, case-insensitively."""
    if source is None:
        return None
    return CANONICAL_SOURCES.get(source.lower(), source)


@dataclass
class GeneLoci:
    """Where a sequence sits on a chromosome of a given assembly."""

    species_id: str
    assembly_id: str
    chromosome_id: str
    mapping: CoordinateMap

    def chromosome_positions(self, begin: int, end: int) -> Optional[List[Tuple[int, int]]]:
        """Chromosome ranges for a local sub-range."""
        return self.mapping.locate_range(begin, end)


@dataclass(eq=False)
class Mapping:
    """A cross-reference target together with the coordinate map onto it."""

    to: Optional['Sequence']
    map: CoordinateMap


@dataclass
class DBRefEntry:
    """Link to an equivalent accession in another database."""

    source: str
    version: Optional[str]
    accession: str
    mapping: Optional[Mapping] = field(default=None, compare=False)

    def __post_init__(self):
        self.source = canonical_source_name(self.source)

    @property
    def key(self) -> Tuple[str, str]:
        return self.source, self.accession

    def __str__(self) -> str:
        return f"{self.source}:{self.accession}"


@dataclass(eq=False)
class Sequence:
    """A fetched residue string with its features, cross-references and loci."""

    name: str
    sequence: str
    start: int = 1
    end: Optional[int] = None
    description: Optional[str] = None
    features: SequenceFeatures = field(default_factory=SequenceFeatures)
    dbrefs: List[DBRefEntry] = field(default_factory=list)
    gene_loci: Optional[GeneLoci] = None
    dataset_id: Optional[str] = None

    def __post_init__(self):
        if self.end is None:
            residues = len(self.sequence.replace("-", "").replace(".", ""))
            self.end = self.start + residues - 1

    def __len__(self) -> int:
        return len(self.sequence)

    def add_sequence_feature(self, feature: SequenceFeature) -> bool:
        return self.features.add(feature)

    def get_sequence_features(self) -> List[SequenceFeature]:
        return self.features.get_all()

    def add_dbref(self, ref: DBRefEntry) -> bool:
        """
        Attach a cross-reference unless one with the same source and
        accession is already present.

        Returns:
            True if the reference was added
        """
        for existing in self.dbrefs:
            if existing.key == ref.key:
                if existing.mapping is None and ref.mapping is not None:
                    existing.mapping = ref.mapping
                return False
        self.dbrefs.append(ref)
        return True

    def get_dbrefs(self, source: Optional[str] = None) -> List[DBRefEntry]:
        if source is None:
            return list(self.dbrefs)
        wanted = canonical_source_name(source)
        return [ref for ref in self.dbrefs if ref.source == wanted]

    def clear_dbrefs(self):
        self.dbrefs = []

    def set_gene_loci(self, species_id: str, assembly_id: str, chromosome_id: str,
                      mapping: CoordinateMap) -> bool:
        """Record chromosome loci once; later calls leave the first value in place."""
        if self.gene_loci is not None:
            return False
        self.gene_loci = GeneLoci(species_id, assembly_id, chromosome_id, mapping)
        return True

    def create_dataset_sequence(self) -> str:
        """Give this sequence a stable dataset identity, reusing an existing one."""
        if self.dataset_id is None:
            self.dataset_id = uuid.uuid4().hex
        return self.dataset_id

    def __repr__(self) -> str:
        return f"Sequence({self.name!r}, {self.start}-{self.end}, {len(self.sequence)} residues)"
