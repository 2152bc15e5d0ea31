"""Fetch a gene with all of its transcripts, mapped onto gene and chromosome.

For each gene the orchestrator fetches the genomic gene sequence with its
transcript, exon, CDS and variant features, then builds one spliced
transcript per transcript feature, transfers features onto it with the cDNA
rules, maps it to the chromosome through the gene's loci and attaches its
protein product.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import unquote

from .error_handler import InvalidMapping, SeqProxyError, ServiceUnavailable, Unmappable
from .features import SequenceFeature, SequenceFeatures
from .logging_config import ProgressLogger
from .lookup import LookupClient
from .mapping import CoordinateMap
from .models import Sequence
from .ontology import CDS, EXON, NMD_TRANSCRIPT_VARIANT, TRANSCRIPT
from .rest_client import Deadline, ResilientRestClient
from .seq_proxy import CDNA, GENE, SeqProxy, find_features, is_transcript, split_query
from .xrefs import XrefClient

logger = logging.getLogger(__name__)

GAP = "-"
CHROMOSOME = "chromosome"


@dataclass
class AnnotatedGene:
    """A gene sequence with the transcripts built from it."""
    gene: Sequence
    transcripts: List[Sequence] = field(default_factory=list)
    transcript_mappings: Dict[str, CoordinateMap] = field(default_factory=dict)
    aligned_rows: Dict[str, str] = field(default_factory=dict)

    def transcript(self, name: str) -> Optional[Sequence]:
        for transcript in self.transcripts:
            if transcript.name.lower() == name.lower():
                return transcript
        return None


@dataclass
class GeneFetchResult:
    """Genes fetched for a query and the identifiers that were dropped, with reasons."""
    genes: List[AnnotatedGene] = field(default_factory=list)
    dropped: Dict[str, str] = field(default_factory=dict)


class GeneOrchestrator:
    """Resolves gene queries and assembles genes with their transcripts."""

    def __init__(self,
                 client: ResilientRestClient,
                 domain: Optional[str] = None,
                 gene_proxy: Optional[SeqProxy] = None,
                 cdna_proxy: Optional[SeqProxy] = None,
                 lookup: Optional[LookupClient] = None,
                 xrefs: Optional[XrefClient] = None):
        self.client = client
        self.domain = domain or client.domain
        self.gene_proxy = gene_proxy or SeqProxy(client, GENE, domain=self.domain)
        self.cdna_proxy = cdna_proxy or SeqProxy(client, CDNA, domain=self.domain)
        self.lookup = lookup or LookupClient(client, self.domain)
        self.xrefs = xrefs or XrefClient(client, self.domain)

    @property
    def species(self) -> List[str]:
        return self.client.config.fetch.species

    def resolve(self, query: Union[str, Iterable[str]],
                deadline: Optional[Deadline] = None) -> List[str]:
        """
        Gene ids for a whitespace-separated list of gene, transcript or
        protein ids or gene symbols, without duplicates, in first-seen order.
        """
        gene_ids, _ = self.resolve_with_diagnostics(query, deadline)
        return gene_ids

    def resolve_with_diagnostics(self, query: Union[str, Iterable[str]],
                                 deadline: Optional[Deadline] = None) -> Tuple[List[str], Dict[str, str]]:
        """Like :meth:`resolve`, also returning unresolved tokens with a reason."""
        gene_ids: List[str] = []
        dropped: Dict[str, str] = {}
        for token in split_query(query):
            gene_id = self.lookup.get_gene_id(token, deadline=deadline)
            if gene_id is not None:
                candidates = [gene_id]
            else:
                # not an Ensembl id; try it as a symbol in each model organism
                candidates = []
                for species in self.species:
                    candidates.extend(self.xrefs.get_gene_ids_for_symbol(species, token, deadline))
            if not candidates:
                dropped[token] = "no gene found for identifier or symbol"
            for candidate in candidates:
                if candidate not in gene_ids:
                    gene_ids.append(candidate)
        return gene_ids, dropped

    def fetch_genes(self, query: Union[str, Iterable[str]],
                    deadline: Optional[Deadline] = None) -> GeneFetchResult:
        """
        Resolve ``query`` and fetch every gene with its transcripts.

        Identifiers that cannot be resolved or fetched are reported in
        ``GeneFetchResult.dropped`` rather than failing the run.

        Raises:
            ServiceUnavailable: if the REST domain is down
        """
        self.client.ensure_available(self.domain)
        result = GeneFetchResult()
        gene_ids, result.dropped = self.resolve_with_diagnostics(query, deadline)

        progress = ProgressLogger(logger, len(gene_ids), "Fetching genes")
        for gene_id in gene_ids:
            if deadline is not None and deadline.expired():
                result.dropped[gene_id] = "deadline expired"
                progress.update(False, gene_id)
                continue
            annotated = self.fetch_gene_and_transcripts(gene_id, deadline)
            if annotated is None:
                result.dropped[gene_id] = "gene sequence could not be fetched"
            else:
                result.genes.append(annotated)
            progress.update(annotated is not None, gene_id)
        progress.complete()
        return result

    def fetch_gene_and_transcripts(self, gene_id: str,
                                   deadline: Optional[Deadline] = None) -> Optional[AnnotatedGene]:
        """
        Fetch one gene and build its transcripts.

        Returns:
            The annotated gene, or None if the gene sequence was not returned

        Raises:
            ServiceUnavailable: if the REST domain is down
        """
        batch = self.gene_proxy.fetch([gene_id], deadline)
        if not batch.sequences:
            return None
        if len(batch.sequences) != 1:
            logger.warning(f"{len(batch.sequences)} sequences returned for {gene_id}; transcripts not built")
            return AnnotatedGene(gene=batch.sequences[0])

        gene = batch.sequences[0]
        # take the id with the case Ensembl uses
        gene_id = gene.name
        self.find_gene_loci(gene, gene_id, deadline)

        annotated = AnnotatedGene(gene=gene)
        for transcript_feature in self.get_transcript_features(gene_id, gene):
            built = self.make_transcript(transcript_feature, gene, deadline)
            if built is None:
                continue
            transcript, mapping, row = built
            annotated.transcripts.append(transcript)
            annotated.transcript_mappings[transcript.name] = mapping
            annotated.aligned_rows[transcript.name] = row

        self.clear_gene_features(gene)
        return annotated

    def find_gene_loci(self, gene: Sequence, gene_id: str, deadline: Optional[Deadline] = None) -> bool:
        """Set chromosome loci from a lookup, falling back to the sequence description."""
        loci = self.lookup.get_gene_loci(gene_id, deadline)
        if loci is not None:
            gene.set_gene_loci(loci.species_id, loci.assembly_id, loci.chromosome_id, loci.mapping)
            return True
        return self.parse_chromosome_locations(gene)

    @staticmethod
    def parse_chromosome_locations(gene: Sequence) -> bool:
        """
        Set loci from a description of the form
        ``chromosome:GRCh38:17:45051610:45109016:1``.

        Returns:
            True if loci were parsed and set
        """
        description = gene.description
        if not description:
            return False
        tokens = description.split(":")
        if len(tokens) != 6 or not tokens[0].startswith(CHROMOSOME):
            return False

        assembly, chromosome = tokens[1], tokens[2]
        try:
            chromosome_start = int(tokens[3])
            chromosome_end = int(tokens[4])
        except ValueError:
            logger.error(f"Bad integers in description {description}")
            return False
        forward = tokens[5] == "1"
        to_range = (chromosome_start, chromosome_end) if forward else (chromosome_end, chromosome_start)
        try:
            mapping = CoordinateMap([(gene.start, gene.end)], [to_range])
        except InvalidMapping as e:
            logger.error(f"Gene {gene.name} does not match its chromosome location {description}: {e}")
            return False
        # species is not part of the description
        return gene.set_gene_loci("", assembly, chromosome, mapping)

    @staticmethod
    def get_transcript_features(gene_id: str, gene: Sequence) -> List[SequenceFeature]:
        """Transcript (and NMD_transcript_variant) features whose Parent is the gene."""
        wanted = gene_id.lower()
        return [f for f in gene.features.get_all()
                if is_transcript(f.type) and (f.parent or "").lower() == wanted]

    def make_transcript(self, transcript_feature: SequenceFeature, gene: Sequence,
                        deadline: Optional[Deadline] = None) -> Optional[Tuple[Sequence, CoordinateMap, str]]:
        """
        Splice a transcript out of the gene sequence.

        Exon features with the transcript as Parent give the splice ranges,
        or CDS features if there are no exons.

        Returns:
            ``(transcript, gene-to-transcript mapping, gene-length aligned row)``,
            or None if the feature has no id or no splices
        """
        accession = transcript_feature.feature_id
        if accession is None:
            return None

        splices = find_features(gene, EXON, accession)
        if not splices:
            splices = find_features(gene, CDS, accession)
        splices = SequenceFeatures.sort_features(splices, True)
        if not splices:
            logger.warning(f"No exon or CDS features for transcript {accession}")
            return None

        row = [GAP] * len(gene.sequence)
        offset = gene.start
        mapped_from: List[Tuple[int, int]] = []
        transcript_length = 0
        for splice in splices:
            start = splice.begin - offset
            end = splice.end - offset
            row[start:end + 1] = gene.sequence[start:end + 1]
            transcript_length += end - start + 1
            mapped_from.append((splice.begin, splice.end))
        aligned_row = "".join(row[:len(gene.sequence)])

        bases = aligned_row.replace(GAP, "")
        transcript = Sequence(accession, bases, 1, transcript_length)
        description = transcript_feature.description or transcript_feature.get_value("description")
        if description is not None:
            transcript.description = unquote(description)
        transcript.create_dataset_sequence()

        try:
            mapping = CoordinateMap(mapped_from, [(1, transcript_length)])
        except InvalidMapping as e:
            logger.error(f"Could not map transcript {accession} onto {gene.name}: {e}")
            return None

        self.cdna_proxy.transfer_mapped_features(gene.get_sequence_features(), transcript, mapping, accession)
        self.map_transcript_to_chromosome(transcript, gene, mapping)

        try:
            self.cdna_proxy.get_cross_references(transcript, deadline)
            self.cdna_proxy.add_protein_product(transcript, deadline)
        except ServiceUnavailable:
            raise
        except SeqProxyError as e:
            self.client.error_handler.handle_error(e, operation="make_transcript", item_id=accession)

        return transcript, mapping, aligned_row

    @staticmethod
    def map_transcript_to_chromosome(transcript: Sequence, gene: Sequence, mapping: CoordinateMap) -> bool:
        """
        Give the transcript chromosome loci by composing its transcript to
        gene mapping with the gene's loci.

        Returns:
            True if loci were set
        """
        loci = gene.gene_loci
        if loci is None:
            return False

        try:
            chromosome_map = mapping.invert().compose(loci.mapping)
        except (InvalidMapping, Unmappable) as e:
            logger.warning(f"Could not map {transcript.name} to chromosome: {e}")
            return False
        return transcript.set_gene_loci(loci.species_id, loci.assembly_id, loci.chromosome_id, chromosome_map)

    @staticmethod
    def clear_gene_features(gene: Sequence):
        """Remove transcript, exon and CDS features once transcripts are built."""
        for feature in gene.features.get_features_by_ontology(NMD_TRANSCRIPT_VARIANT, TRANSCRIPT, EXON, CDS):
            gene.features.delete(feature)
