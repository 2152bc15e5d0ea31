"""Output formatting for fetched sequences."""

import csv
import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, TextIO

from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .gene import AnnotatedGene
from .mapping import CoordinateMap
from .models import GeneLoci, Sequence


class OutputFormatter:
    """Writes sequences as FASTA, JSON or a tab-separated feature table."""

    # Feature table columns
    FEATURE_COLUMNS = [
        "Sequence",
        "Type",
        "Begin",
        "End",
        "Strand",
        "Phase",
        "Source",
        "ID",
        "Parent",
        "Description",
    ]

    def __init__(self, data_version: Optional[str] = None):
        """
        Initialize the formatter.

        Args:
            data_version: Ensembl release recorded in JSON metadata
        """
        self.data_version = data_version

    @staticmethod
    def to_seq_record(sequence: Sequence, residues: Optional[str] = None) -> SeqRecord:
        """Convert a sequence to a Biopython record; ``residues`` overrides its letters."""
        loci = sequence.gene_loci
        description = sequence.description or ""
        if loci is not None:
            description = f"{description} {format_loci(loci)}".strip()
        return SeqRecord(Seq(residues if residues is not None else sequence.sequence),
                         id=sequence.name, name=sequence.name, description=description)

    def write_fasta(self, sequences: Iterable[Sequence], handle: TextIO) -> int:
        """
        Write sequences as FASTA.

        Returns:
            Number of records written
        """
        return SeqIO.write([self.to_seq_record(s) for s in sequences], handle, "fasta")

    def write_gene_fasta(self, genes: Iterable[AnnotatedGene], handle: TextIO, aligned: bool = False) -> int:
        """
        Write each gene followed by its transcripts.

        Args:
            genes: Genes built by the orchestrator
            handle: Output stream
            aligned: Write transcripts as gene-length rows with ``-`` for introns
        """
        records: List[SeqRecord] = []
        for annotated in genes:
            records.append(self.to_seq_record(annotated.gene))
            for transcript in annotated.transcripts:
                row = annotated.aligned_rows.get(transcript.name) if aligned else None
                records.append(self.to_seq_record(transcript, row))
        return SeqIO.write(records, handle, "fasta")

    @staticmethod
    def sequence_to_dict(sequence: Sequence) -> Dict[str, Any]:
        """Serialisable view of a sequence with its features, references and loci."""
        return {
            'name': sequence.name,
            'description': sequence.description,
            'start': sequence.start,
            'end': sequence.end,
            'sequence': sequence.sequence,
            'features': [
                {
                    'type': f.type,
                    'begin': f.begin,
                    'end': f.end,
                    'strand': f.strand,
                    'phase': f.phase,
                    'source': f.group,
                    'description': f.description,
                    'attributes': dict(f.attributes),
                }
                for f in sequence.get_sequence_features()
            ],
            'dbrefs': [
                {
                    'source': ref.source,
                    'version': ref.version,
                    'accession': ref.accession,
                    'map': mapping_to_dict(ref.mapping.map) if ref.mapping and ref.mapping.map else None,
                }
                for ref in sequence.get_dbrefs()
            ],
            'gene_loci': loci_to_dict(sequence.gene_loci),
        }

    def gene_to_dict(self, annotated: AnnotatedGene) -> Dict[str, Any]:
        result = self.sequence_to_dict(annotated.gene)
        result['transcripts'] = []
        for transcript in annotated.transcripts:
            entry = self.sequence_to_dict(transcript)
            mapping = annotated.transcript_mappings.get(transcript.name)
            entry['gene_mapping'] = mapping_to_dict(mapping) if mapping else None
            result['transcripts'].append(entry)
        return result

    def write_json(self, sequences: Iterable[Sequence], handle: TextIO,
                   dropped: Optional[Dict[str, str]] = None) -> None:
        """Write sequences as a JSON document with generation metadata."""
        results = [self.sequence_to_dict(s) for s in sequences]
        self._dump(results, handle, dropped)

    def write_genes_json(self, genes: Iterable[AnnotatedGene], handle: TextIO,
                         dropped: Optional[Dict[str, str]] = None) -> None:
        results = [self.gene_to_dict(g) for g in genes]
        self._dump(results, handle, dropped)

    def _dump(self, results: List[Dict[str, Any]], handle: TextIO, dropped: Optional[Dict[str, str]]) -> None:
        output = {
            'metadata': {
                'generated': datetime.now().isoformat(),
                'data_version': self.data_version,
                'total_entries': len(results),
            },
            'results': results,
            'dropped': dropped or {},
        }
        json.dump(output, handle, indent=2, ensure_ascii=False)
        handle.write("\n")

    def write_feature_table(self, sequences: Iterable[Sequence], handle: TextIO) -> int:
        """
        Write one TSV row per feature.

        Returns:
            Number of feature rows written
        """
        writer = csv.DictWriter(handle, fieldnames=self.FEATURE_COLUMNS, delimiter='\t')
        writer.writeheader()
        rows = 0
        for sequence in sequences:
            for feature in sequence.get_sequence_features():
                writer.writerow({
                    'Sequence': sequence.name,
                    'Type': feature.type,
                    'Begin': feature.begin,
                    'End': feature.end,
                    'Strand': feature.strand or '',
                    'Phase': feature.phase or '',
                    'Source': feature.group or '',
                    'ID': feature.feature_id or '',
                    'Parent': feature.parent or '',
                    'Description': feature.description or '',
                })
                rows += 1
        return rows


def mapping_to_dict(mapping: CoordinateMap) -> Dict[str, Any]:
    return {
        'from_ranges': [list(r) for r in mapping.from_ranges],
        'to_ranges': [list(r) for r in mapping.to_ranges],
        'from_ratio': mapping.from_ratio,
        'to_ratio': mapping.to_ratio,
    }


def loci_to_dict(loci: Optional[GeneLoci]) -> Optional[Dict[str, Any]]:
    if loci is None:
        return None
    return {
        'species': loci.species_id,
        'assembly': loci.assembly_id,
        'chromosome': loci.chromosome_id,
        'mapping': mapping_to_dict(loci.mapping),
    }


def format_loci(loci: GeneLoci) -> str:
    """Loci as ``ASSEMBLY:CHR:start-end[,start-end...]``."""
    ranges = ",".join(f"{start}-{end}" for start, end in loci.mapping.to_ranges)
    return f"{loci.assembly_id}:{loci.chromosome_id}:{ranges}"
