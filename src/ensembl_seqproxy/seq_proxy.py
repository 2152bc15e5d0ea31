"""Fetch Ensembl sequences in one coordinate system and re-anchor their features.

A :class:`SeqProxy` is configured by a :class:`SeqTypeConfig` naming the
Ensembl sequence type to request, the overlap feature types to fetch, and two
predicates:

* ``identify`` selects the genomic features whose ranges make up the
  requested sequence (exons for cDNA, CDS for CDS, the transcript for
  genomic), and so define the genomic-to-sequence mapping;
* ``retain`` decides which fetched features are copied onto the sequence.

The built-in variants are :data:`GENOMIC`, :data:`CDNA`, :data:`CDS_TYPE`,
:data:`PROTEIN` and :data:`GENE`.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence as SequenceType, Tuple, Union

from .config import Config
from .error_handler import (ErrorHandler, FetchError, InvalidMapping, MixedStrand,
                            SeqProxyError, ServiceUnavailable, Unmappable)
from .feature_fetcher import CDS_FEATURE, EXON, GENE as GENE_FEATURE, TRANSCRIPT, VARIATION, FeatureFetcher
from .features import SequenceFeature, SequenceFeatures
from .mapping import CoordinateMap
from .models import ENSEMBL, UNIPROT, DBRefEntry, Mapping, Sequence
from .ontology import (CDS, DEFAULT_ONTOLOGY, EXON as EXON_TERM, GENE as GENE_TERM,
                       NMD_TRANSCRIPT_VARIANT, SEQUENCE_VARIANT, TRANSCRIPT as TRANSCRIPT_TERM,
                       SequenceOntologyLite)
from .parallel_processor import ParallelProcessor, ProcessingResult
from .rest_client import Deadline, ResilientRestClient, make_url
from .sequence_utils import map_cds_to_protein, reverse_complement_feature_alleles
from .xrefs import XrefClient

logger = logging.getLogger(__name__)

OBJECT_TYPE_TRANSCRIPT = "Transcript"
OBJECT_TYPE_GENE = "Gene"

RetainPredicate = Callable[[SequenceFeature, str, SequenceOntologyLite], bool]
IdentifySelector = Callable[[Sequence, str, SequenceOntologyLite], List[SequenceFeature]]


def is_transcript(feature_type: str, ontology: SequenceOntologyLite = DEFAULT_ONTOLOGY) -> bool:
    """
    True for ``transcript`` or a sub-type, and for ``NMD_transcript_variant``,
    which Ensembl reports alongside transcripts although the ontology files
    it under sequence_variant.
    """
    return feature_type == NMD_TRANSCRIPT_VARIANT or ontology.is_a(feature_type, TRANSCRIPT_TERM)


def feature_may_belong(feature: SequenceFeature, identifier: str) -> bool:
    """False only if the feature names a Parent other than ``identifier``."""
    parent = feature.parent
    return parent is None or parent.lower() == identifier.lower()


def find_features(sequence: Sequence, term: str, parent_id: str) -> List[SequenceFeature]:
    """Features of ``term`` (or a sub-type) whose Parent is ``parent_id``, ignoring case."""
    return sequence.features.get_features_by_parent(parent_id, term)


def _features_with_id(sequence: Sequence, accession: str,
                      matches_type: Callable[[str], bool]) -> List[SequenceFeature]:
    wanted = accession.lower()
    return [f for f in sequence.features.get_all()
            if matches_type(f.type) and (f.feature_id or "").lower() == wanted]


def _genomic_identify(sequence: Sequence, accession: str, ontology: SequenceOntologyLite) -> List[SequenceFeature]:
    return _features_with_id(sequence, accession, lambda t: is_transcript(t, ontology))


def _cdna_identify(sequence: Sequence, accession: str, ontology: SequenceOntologyLite) -> List[SequenceFeature]:
    return sequence.features.get_features_by_parent(accession, EXON_TERM)


def _cds_identify(sequence: Sequence, accession: str, ontology: SequenceOntologyLite) -> List[SequenceFeature]:
    return sequence.features.get_features_by_parent(accession, CDS)


def _gene_identify(sequence: Sequence, accession: str, ontology: SequenceOntologyLite) -> List[SequenceFeature]:
    return _features_with_id(sequence, accession, lambda t: ontology.is_a(t, GENE_TERM))


def _no_features(sequence: Sequence, accession: str, ontology: SequenceOntologyLite) -> List[SequenceFeature]:
    return []


def _retain_non_transcript(feature: SequenceFeature, accession: str, ontology: SequenceOntologyLite) -> bool:
    return not is_transcript(feature.type, ontology) and feature_may_belong(feature, accession)


def _retain_non_cds(feature: SequenceFeature, accession: str, ontology: SequenceOntologyLite) -> bool:
    return not ontology.is_a(feature.type, CDS) and feature_may_belong(feature, accession)


def _retain_for_gene(feature: SequenceFeature, accession: str, ontology: SequenceOntologyLite) -> bool:
    if ontology.is_a(feature.type, GENE_TERM):
        return False
    if is_transcript(feature.type, ontology):
        return (feature.parent or "").lower() == accession.lower()
    return True


def _retain_nothing(feature: SequenceFeature, accession: str, ontology: SequenceOntologyLite) -> bool:
    return False


@dataclass(frozen=True)
class SeqTypeConfig:
    """Everything that distinguishes one sequence type from another."""
    name: str
    source_type: str
    object_type: Optional[str]
    feature_types: Tuple[str, ...]
    retain: RetainPredicate
    identify: IdentifySelector
    accession_pattern: str
    db_name: str
    add_protein_product: bool
    description: str = ""


TRANSCRIPT_ACCESSION = r"(ENS([A-Z]{3}|)[TG][0-9]{11}$)|(CCDS[0-9.]{3,}$)"

GENOMIC = SeqTypeConfig(
    name="genomic",
    source_type="genomic",
    object_type=None,
    feature_types=(TRANSCRIPT, EXON, CDS_FEATURE, VARIATION),
    retain=_retain_non_transcript,
    identify=_genomic_identify,
    accession_pattern=TRANSCRIPT_ACCESSION,
    db_name="ENSEMBL (Genomic)",
    add_protein_product=True,
    description="Ensembl genomic sequence with variant features",
)

CDNA = SeqTypeConfig(
    name="cdna",
    source_type="cdna",
    object_type=OBJECT_TYPE_TRANSCRIPT,
    feature_types=(EXON, CDS_FEATURE, VARIATION),
    retain=_retain_non_transcript,
    identify=_cdna_identify,
    accession_pattern=TRANSCRIPT_ACCESSION,
    db_name="ENSEMBL",
    add_protein_product=True,
    description="Ensembl cdna sequence with variant features",
)

CDS_TYPE = SeqTypeConfig(
    name="cds",
    source_type="cds",
    object_type=OBJECT_TYPE_TRANSCRIPT,
    feature_types=(CDS_FEATURE, VARIATION),
    retain=_retain_non_cds,
    identify=_cds_identify,
    accession_pattern=r"(ENS([A-Z]{3}|)[GTEP][0-9]{11}$)|(CCDS[0-9.]{3,}$)",
    db_name="ENSEMBL (CDS)",
    add_protein_product=True,
    description="Ensembl cds sequence with variant features",
)

PROTEIN = SeqTypeConfig(
    name="protein",
    source_type="protein",
    object_type=None,
    feature_types=(),
    retain=_retain_nothing,
    identify=_no_features,
    accession_pattern=r"(ENS([A-Z]{3}|)P[0-9]{11}$)|(CCDS[0-9.]{3,}$)",
    db_name="ENSEMBL",
    add_protein_product=False,
    description="Ensembl protein sequence",
)

GENE = SeqTypeConfig(
    name="gene",
    source_type="genomic",
    object_type=OBJECT_TYPE_GENE,
    feature_types=(GENE_FEATURE, TRANSCRIPT, EXON, CDS_FEATURE, VARIATION),
    retain=_retain_for_gene,
    identify=_gene_identify,
    accession_pattern=r".*",
    db_name="ENSEMBL",
    add_protein_product=False,
    description="Ensembl gene with transcripts and variant features",
)

SEQ_TYPES: Dict[str, SeqTypeConfig] = {
    config.name: config for config in (GENOMIC, CDNA, CDS_TYPE, PROTEIN, GENE)
}


@dataclass
class SequenceBatch:
    """Sequences returned for one query, plus the ids that fell short and why."""
    sequences: List[Sequence] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    warnings: Dict[str, str] = field(default_factory=dict)

    def find(self, name: str) -> Optional[Sequence]:
        """Sequence with ``name``, ignoring case."""
        wanted = name.lower()
        for sequence in self.sequences:
            if sequence.name.lower() == wanted:
                return sequence
        return None

    def __len__(self) -> int:
        return len(self.sequences)


def split_query(query: Union[str, Iterable[str]]) -> List[str]:
    """Accession ids from a whitespace-separated string or an iterable."""
    if isinstance(query, str):
        return query.split()
    return [q for q in query if q]


def _raise_service_unavailable(results: Iterable[ProcessingResult]):
    """A domain going down mid-run ends the run instead of becoming a per-accession warning."""
    for result in results:
        if isinstance(result.error, ServiceUnavailable):
            raise result.error


class SeqProxy:
    """Fetches one kind of Ensembl sequence with mapped features and cross-references."""

    def __init__(self,
                 client: ResilientRestClient,
                 seq_type: SeqTypeConfig = CDNA,
                 config: Optional[Config] = None,
                 ontology: Optional[SequenceOntologyLite] = None,
                 domain: Optional[str] = None,
                 feature_fetcher: Optional[FeatureFetcher] = None,
                 xref_client: Optional[XrefClient] = None,
                 error_handler: Optional[ErrorHandler] = None):
        """
        Args:
            client: Shared REST client
            seq_type: Variant configuration
            config: Configuration; defaults to the client's
            ontology: Term hierarchy for ``is_a`` checks
            domain: REST domain; defaults to the client's primary domain
            feature_fetcher: Overlap client
            xref_client: Cross-reference client
            error_handler: Receives per-accession failures; defaults to the client's
        """
        self.client = client
        self.seq_type = seq_type
        self.config = config or client.config
        self.ontology = ontology or DEFAULT_ONTOLOGY
        self.domain = domain or client.domain
        self.feature_fetcher = feature_fetcher or FeatureFetcher(client, self.domain)
        self.xref_client = xref_client or XrefClient(client, self.domain)
        self.error_handler = error_handler or client.error_handler
        self.db_source = ENSEMBL
        self._accession_regex = re.compile(seq_type.accession_pattern)

    @property
    def name(self) -> str:
        return self.seq_type.name

    @property
    def description(self) -> str:
        return self.seq_type.description

    def is_valid_reference(self, accession: str) -> bool:
        return bool(self._accession_regex.fullmatch(accession or ""))

    def data_version(self) -> str:
        return self.client.data_version(self.domain) or "0"

    def _sibling(self, seq_type: SeqTypeConfig) -> 'SeqProxy':
        return SeqProxy(self.client, seq_type, self.config, self.ontology, self.domain,
                        self.feature_fetcher, self.xref_client, self.error_handler)

    def fetch(self, accession_ids: Union[str, Iterable[str]],
              deadline: Optional[Deadline] = None) -> SequenceBatch:
        """
        Fetch sequences, transfer their features and attach cross-references.

        Ids are requested in chunks of ``max_batch_size``. A chunk that fails
        stops the remaining chunks; sequences gathered so far are kept and
        the unfetched ids are listed in ``SequenceBatch.errors``.

        Args:
            accession_ids: Whitespace-separated string or iterable of ids
            deadline: Optional budget; work not started when it expires is skipped

        Returns:
            The fetched sequences and per-id diagnostics

        Raises:
            ServiceUnavailable: if the REST domain is down
        """
        ids = split_query(accession_ids)
        batch = SequenceBatch()
        if not ids:
            return batch

        self.client.ensure_available(self.domain)

        chunk_size = max(1, self.config.fetch.max_batch_size)
        for offset in range(0, len(ids), chunk_size):
            chunk = ids[offset:offset + chunk_size]
            if deadline is not None and deadline.expired():
                for acc in ids[offset:]:
                    batch.errors.setdefault(acc, "deadline expired before fetch")
                break
            try:
                batch.sequences.extend(self.fetch_sequences(chunk, deadline))
            except ServiceUnavailable:
                raise
            except SeqProxyError as e:
                logger.error(f"Aborting {self.name} retrieval after {offset // chunk_size} chunks: {e}")
                self.error_handler.handle_error(e, operation=f"fetch {self.name}", item_id=chunk[0])
                for acc in ids[offset:]:
                    batch.errors.setdefault(acc, str(e))
                break

        if len(batch.sequences) < len(ids) - len(batch.errors):
            # a protein fetched by transcript id comes back under its own name
            for acc in ids:
                if acc not in batch.errors and batch.find(acc) is None:
                    batch.errors[acc] = "no sequence returned"

        if not batch.sequences:
            return batch

        stop = deadline.expired if deadline is not None else None
        processor = ParallelProcessor(self.config.fetch.max_workers, should_stop=stop)

        results, _ = processor.process_batch(
            ids, lambda acc: self.add_features_and_product(acc, batch, deadline))
        _raise_service_unavailable(results)
        for result in results:
            if result.error is not None:
                batch.warnings[result.item] = f"features not transferred: {result.error}"
            elif result.skipped:
                batch.warnings[result.item] = "deadline expired before feature transfer"

        results, _ = processor.process_batch(
            batch.sequences, lambda seq: self.get_cross_references(seq, deadline))
        _raise_service_unavailable(results)
        for result in results:
            if result.error is not None:
                batch.warnings[result.item.name] = f"cross-references incomplete: {result.error}"

        return batch

    def get_url(self, ids: SequenceType[str]) -> str:
        """A single id goes in the path; several go in the POST body."""
        path = f"sequence/id/{ids[0]}" if len(ids) == 1 else "sequence/id"
        params = {"type": self.seq_type.source_type,
                  "Accept": "application/json",
                  "content-type": "application/json"}
        if self.seq_type.object_type:
            params["object_type"] = self.seq_type.object_type
        return make_url(self.domain, path, params)

    def fetch_sequences(self, ids: List[str], deadline: Optional[Deadline] = None) -> List[Sequence]:
        """
        Fetch one chunk of sequences.

        Returns:
            Parsed sequences; empty if the request itself failed

        Raises:
            FetchError: if the service answered but no sequence could be parsed
        """
        sequences = self.parse_sequence_json(ids, deadline)
        if sequences is None:
            return []
        if not sequences:
            raise FetchError(f"No data returned for {ids}", ids)

        if len(sequences) != len(ids):
            logger.info(f"Only retrieved {len(sequences)} sequences for {len(ids)} query strings")

        for sequence in sequences:
            if sequence.description is None:
                sequence.description = self.seq_type.db_name
            name = sequence.name
            if name in ids or name.replace("ENSP", "ENST") in ids:
                sequence.add_dbref(DBRefEntry(self.db_source, self.data_version(), name))
        return sequences

    def parse_sequence_json(self, ids: List[str], deadline: Optional[Deadline] = None) -> Optional[List[Sequence]]:
        """
        Request and parse sequences.

        Returns:
            None if the request failed, otherwise the sequences that parsed
        """
        data = self.client.fetch_json(self.get_url(ids), ids=ids, deadline=deadline)
        if data is None:
            return None

        result = []
        for obj in data if isinstance(data, list) else [data]:
            if not isinstance(obj, dict) or obj.get("id") is None or obj.get("seq") is None:
                logger.warning(f"Error processing JSON response for {ids}: unexpected item {obj!r:.80}")
                continue
            desc = obj.get("desc")
            result.append(Sequence(str(obj["id"]), str(obj["seq"]),
                                   description=str(desc) if desc is not None else None))
        return result

    def add_features_and_product(self, accession: str, batch: SequenceBatch,
                                 deadline: Optional[Deadline] = None) -> bool:
        """
        Transfer overlap features onto the sequence fetched for ``accession``
        and, if configured, attach its mapped protein product.

        Returns:
            True if features were transferred
        """
        query = batch.find(accession)
        if query is None or not self.seq_type.feature_types:
            return False

        genomic = self.feature_fetcher.fetch_features(accession, self.seq_type.feature_types, deadline)
        if genomic is None:
            return False

        try:
            transferred = self.transfer_features(accession, genomic, query)
        except (MixedStrand, InvalidMapping, Unmappable) as e:
            self.error_handler.handle_error(e, operation="transfer_features", item_id=accession)
            batch.warnings[accession] = str(e)
            return False

        if transferred and self.seq_type.add_protein_product:
            self.add_protein_product(query, deadline)
        return transferred

    def genomic_ranges_from_features(self, source: Sequence, accession: str,
                                     start: int) -> Optional[CoordinateMap]:
        """
        Map the identifying features' genomic ranges onto ``start..``.

        Reverse-strand ranges are recorded as ``(end, begin)`` and ordered
        descending so the map runs 5' to 3' along the target.

        Returns:
            The mapping, or None if no identifying feature was found

        Raises:
            MixedStrand: if the identifying features lie on both strands
        """
        features = self.seq_type.identify(source, accession, self.ontology)
        if not features:
            return None

        regions: List[Tuple[int, int]] = []
        mapped_length = 0
        direction = None
        for feature in features:
            strand = -1 if feature.strand == "-" else 1
            if direction is not None and strand != direction:
                logger.error(f"Forward and reverse strand features for {accession}")
                raise MixedStrand(accession)
            direction = strand
            if strand < 0:
                regions.insert(0, (feature.end, feature.begin))
            else:
                regions.append((feature.begin, feature.end))
            mapped_length += feature.end - feature.begin + 1

        # Ensembl sorts within source (havana, ensembl_havana) so sort again
        regions.sort(reverse=direction < 0)
        return CoordinateMap(regions, [(start, start + mapped_length - 1)])

    def transfer_features(self, accession: str, source: Optional[Sequence],
                          target: Optional[Sequence]) -> bool:
        """
        Transfer retained features from the genomic placeholder to ``target``.

        Returns:
            True if any feature was retained
        """
        if source is None or target is None:
            return False
        mapping = self.genomic_ranges_from_features(source, accession, target.start)
        if mapping is None:
            logger.info(f"Failed to identify target sequence for {accession} from genomic features")
            return False
        return self.transfer_mapped_features(source.get_sequence_features(), target, mapping, accession)

    def transfer_mapped_features(self, features: List[SequenceFeature], target: Sequence,
                                 mapping: CoordinateMap, parent_id: str) -> bool:
        """Transfer features through an explicit mapping, in traversal order."""
        forward = mapping.is_forward()
        transferred = False
        for feature in SequenceFeatures.sort_features(features, forward):
            if self.seq_type.retain(feature, parent_id, self.ontology):
                self.transfer_feature(feature, target, mapping, forward)
                transferred = True
        return transferred

    def transfer_feature(self, feature: SequenceFeature, target: Sequence,
                         mapping: CoordinateMap, forward: bool) -> Optional[SequenceFeature]:
        """
        Copy one feature onto ``target`` at its mapped position.

        The copy spans the lowest to highest mapped position, so a feature
        overlapping an exon edge is clipped to the exon. On a reverse-strand
        mapping variant alleles are complemented.

        Returns:
            The copy, or None if the feature does not overlap the mapping
        """
        mapped = mapping.locate_range(feature.begin, feature.end)
        if mapped is None:
            return None

        positions = [p for r in mapped for p in r]
        group = self.db_source if feature.group == "." else feature.group
        copy = feature.copy(begin=min(positions), end=max(positions), group=group)
        if not forward and self.ontology.is_a(feature.type, SEQUENCE_VARIANT):
            reverse_complement_feature_alleles(copy)
        target.add_sequence_feature(copy)
        return copy

    def add_protein_product(self, query: Sequence, deadline: Optional[Deadline] = None) -> Optional[Sequence]:
        """
        Fetch the translation of ``query`` and cross-reference it with a 3:1 mapping.

        UniProt references on the protein are mirrored onto ``query`` with
        the same mapping. If ``query`` already holds more than one reference
        to an accession, the first is updated and a warning logged.

        Returns:
            The protein, or None if it could not be fetched or mapped
        """
        accession = query.name
        try:
            proteins = self._sibling(PROTEIN).fetch([accession], deadline)
        except ServiceUnavailable:
            raise
        except SeqProxyError as e:
            self.error_handler.handle_error(e, operation="add_protein_product", item_id=accession)
            return None
        if not proteins.sequences:
            logger.info(f"No protein product found for {accession}")
            return None
        protein = proteins.sequences[0]

        protein.create_dataset_sequence()
        query.create_dataset_sequence()

        cds_ranges = None
        if self.seq_type.source_type == "cds" and not query.features.get_features_by_ontology(CDS):
            # the sequence is its own coding region
            cds_ranges = [(query.start, query.end)]
        mapping = map_cds_to_protein(query, protein, cds_ranges)
        if mapping is None:
            logger.warning(f"Could not map {accession} to its protein product {protein.name}")
            return None

        version = self.data_version()
        query.add_dbref(DBRefEntry(self.db_source, version, protein.name, Mapping(protein, mapping)))

        local_uniprot = query.get_dbrefs(UNIPROT)
        for uniprot in protein.get_dbrefs(UNIPROT):
            matches = [ref for ref in local_uniprot if ref.accession == uniprot.accession]
            if matches:
                ref = matches[0]
                if len(matches) > 1:
                    logger.warning(f"Multiple {uniprot.accession} references on {accession}, keeping the first")
            else:
                ref = DBRefEntry(UNIPROT, version, uniprot.accession)
            ref.version = version
            ref.mapping = Mapping(protein, mapping)
            if not matches:
                query.add_dbref(ref)
        return protein

    def get_cross_references(self, sequence: Sequence, deadline: Optional[Deadline] = None):
        """Attach Ensembl xrefs and a reference to the sequence itself."""
        for ref in self.xref_client.get_cross_references(sequence.name, deadline):
            sequence.add_dbref(ref)
        sequence.add_dbref(DBRefEntry(self.db_source, self.data_version(), sequence.name))
