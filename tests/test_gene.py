"""Tests for gene resolution and transcript assembly."""

import pytest

from conftest import FakeResponse
from ensembl_seqproxy.error_handler import ServiceUnavailable
from ensembl_seqproxy.features import SequenceFeature
from ensembl_seqproxy.gene import AnnotatedGene, GeneOrchestrator
from ensembl_seqproxy.mapping import CoordinateMap
from ensembl_seqproxy.models import Sequence
from ensembl_seqproxy.ontology import CDS, EXON, SEQUENCE_VARIANT

GENE_ID = "ENSG00000000001"
TRANSCRIPT_ID = "ENST00000000001"
PROTEIN_ID = "ENSP00000000001"
CDS_ONLY_ID = "ENST00000000006"

GENE_SEQ = "".join("ACGT"[(i * 7 + i // 13) % 4] for i in range(3000))
PROTEIN_SEQ = "M" + "A" * 35


def overlap(feature_type, begin, end, parent=None, feature_id=None, **extra):
    obj = {"feature_type": feature_type, "start": begin, "end": end, "strand": 1, "source": "ensembl_havana"}
    if parent:
        obj["Parent"] = parent
    if feature_id:
        obj["id"] = feature_id
    obj.update(extra)
    return obj


@pytest.fixture
def gene_routes():
    """A 3000 bp plus-strand gene at chromosome 7:1001-4000 with two transcripts."""
    return {
        f'lookup/id/{GENE_ID}': {
            "object_type": "Gene", "id": GENE_ID, "species": "homo_sapiens",
            "assembly_name": "GRCh38", "seq_region_name": "7",
            "start": 1001, "end": 4000, "strand": 1,
        },
        f'lookup/id/{TRANSCRIPT_ID}': {"object_type": "Transcript", "id": TRANSCRIPT_ID, "Parent": GENE_ID},
        f'lookup/id/{PROTEIN_ID}': {"object_type": "Translation", "id": PROTEIN_ID, "Parent": TRANSCRIPT_ID},
        f'sequence/id/{GENE_ID}': lambda call: (
            {"id": GENE_ID, "seq": GENE_SEQ, "desc": "chromosome:GRCh38:7:1001:4000:1"}
            if call.params.get('type') == ['genomic'] else FakeResponse(400, {})
        ),
        f'sequence/id/{TRANSCRIPT_ID}': lambda call: (
            {"id": PROTEIN_ID, "seq": PROTEIN_SEQ}
            if call.params.get('type') == ['protein'] else FakeResponse(400, {})
        ),
        f'overlap/id/{GENE_ID}': [
            overlap("gene", 1001, 4000, feature_id=GENE_ID),
            overlap("transcript", 1100, 1600, parent=GENE_ID, feature_id=TRANSCRIPT_ID,
                    external_name="BRAF-201%3B1"),
            overlap("exon", 1100, 1200, parent=TRANSCRIPT_ID, feature_id="ENSE00000000001"),
            overlap("exon", 1500, 1600, parent=TRANSCRIPT_ID, feature_id="ENSE00000000002"),
            overlap("cds", 1150, 1559, parent=TRANSCRIPT_ID, feature_id=PROTEIN_ID, phase=0),
            overlap("transcript", 1300, 1399, parent=GENE_ID, feature_id=CDS_ONLY_ID),
            overlap("cds", 1300, 1399, parent=CDS_ONLY_ID, feature_id="ENSP00000000006", phase=0),
            overlap("variation", 1180, 1180, feature_id="rs1", alleles=["A", "G"]),
        ],
        f'xrefs/id/{TRANSCRIPT_ID}': [{"dbname": "Uniprot/SWISSPROT", "primary_id": "P99999"}],
        'xrefs/id/': [],
        'xrefs/symbol/human/BRAF': [{"id": GENE_ID, "type": "gene"}],
        'xrefs/symbol/': [],
    }


def gene_feature(feature_type, begin, end, parent=None, feature_id=None):
    f = SequenceFeature(type=feature_type, description=None, begin=begin, end=end, strand="+")
    if parent:
        f.set_value("Parent", parent)
    if feature_id:
        f.set_value("id", feature_id)
    return f


class TestResolve:
    """Query tokens to gene ids."""

    def test_ids_and_symbols_resolve_to_one_gene(self, make_client, gene_routes):
        orchestrator = GeneOrchestrator(make_client(gene_routes))
        query = f"{GENE_ID} {TRANSCRIPT_ID} {PROTEIN_ID} BRAF"
        assert orchestrator.resolve(query) == [GENE_ID]

    def test_translation_resolves_through_transcript(self, make_client, gene_routes):
        client = make_client(gene_routes)
        orchestrator = GeneOrchestrator(client)
        assert orchestrator.resolve(PROTEIN_ID) == [GENE_ID]

        transcript_lookup = client.session.calls_to(f'lookup/id/{TRANSCRIPT_ID}')[-1]
        assert transcript_lookup.params['object_type'] == ['Transcript']

    def test_symbol_searched_in_each_species(self, make_client, gene_routes):
        client = make_client(gene_routes, fetch__species=["human", "mouse"])
        GeneOrchestrator(client).resolve("BRAF")

        paths = [c.path for c in client.session.calls_to('xrefs/symbol/')]
        assert paths == ["xrefs/symbol/human/BRAF", "xrefs/symbol/mouse/BRAF"]

    def test_unresolved_tokens_are_reported(self, make_client, gene_routes):
        orchestrator = GeneOrchestrator(make_client(gene_routes))
        gene_ids, dropped = orchestrator.resolve_with_diagnostics(f"NOSUCHGENE {GENE_ID}")

        assert gene_ids == [GENE_ID]
        assert list(dropped) == ["NOSUCHGENE"]


class TestFetchGene:
    """Building transcripts from a gene."""

    def test_transcript_spliced_from_gene(self, make_client, gene_routes):
        result = GeneOrchestrator(make_client(gene_routes)).fetch_genes(GENE_ID)

        assert result.dropped == {}
        assert len(result.genes) == 1
        annotated = result.genes[0]
        assert annotated.gene.name == GENE_ID
        assert len(annotated.gene.sequence) == 3000

        transcript = annotated.transcript(TRANSCRIPT_ID)
        assert len(transcript.sequence) == 202
        assert transcript.sequence == GENE_SEQ[99:200] + GENE_SEQ[499:600]
        assert transcript.start == 1
        assert transcript.end == 202
        assert transcript.description == "BRAF-201;1"

        mapping = annotated.transcript_mappings[TRANSCRIPT_ID]
        assert mapping.from_ranges == [(100, 200), (500, 600)]
        assert mapping.to_ranges == [(1, 202)]

    def test_aligned_row(self, make_client, gene_routes):
        annotated = GeneOrchestrator(make_client(gene_routes)).fetch_genes(GENE_ID).genes[0]
        row = annotated.aligned_rows[TRANSCRIPT_ID]

        assert len(row) == 3000
        assert row[99:200] == GENE_SEQ[99:200]
        assert row[499:600] == GENE_SEQ[499:600]
        assert set(row[:99]) == {"-"}
        assert set(row[200:499]) == {"-"}
        assert row.replace("-", "") == annotated.transcript(TRANSCRIPT_ID).sequence

    def test_features_transferred_to_transcript(self, make_client, gene_routes):
        annotated = GeneOrchestrator(make_client(gene_routes)).fetch_genes(GENE_ID).genes[0]
        transcript = annotated.transcript(TRANSCRIPT_ID)

        exons = sorted((f.begin, f.end) for f in transcript.features.get_features_by_ontology(EXON))
        assert exons == [(1, 101), (102, 202)]
        cds = [(f.begin, f.end) for f in transcript.features.get_features_by_ontology(CDS)]
        assert cds == [(51, 161)]
        variants = transcript.features.get_features_by_ontology(SEQUENCE_VARIANT)
        assert [(v.begin, v.get_value("alleles")) for v in variants] == [(81, "A,G")]

    def test_transcript_chromosome_loci(self, make_client, gene_routes):
        annotated = GeneOrchestrator(make_client(gene_routes)).fetch_genes(GENE_ID).genes[0]

        gene_loci = annotated.gene.gene_loci
        assert gene_loci.assembly_id == "GRCh38"
        assert gene_loci.mapping.to_ranges == [(1001, 4000)]

        loci = annotated.transcript(TRANSCRIPT_ID).gene_loci
        assert loci.species_id == "homo_sapiens"
        assert loci.chromosome_id == "7"
        assert loci.mapping.from_ranges == [(1, 202)]
        assert loci.mapping.to_ranges == [(1100, 1200), (1500, 1600)]

    def test_protein_product_and_xrefs(self, make_client, gene_routes):
        annotated = GeneOrchestrator(make_client(gene_routes)).fetch_genes(GENE_ID).genes[0]
        transcript = annotated.transcript(TRANSCRIPT_ID)

        ensembl = {ref.accession: ref for ref in transcript.get_dbrefs("ENSEMBL")}
        assert TRANSCRIPT_ID in ensembl
        product = ensembl[PROTEIN_ID].mapping
        assert product.to.sequence == PROTEIN_SEQ
        assert product.map.from_ranges == [(51, 158)]
        assert product.map.to_ranges == [(1, 36)]

        uniprot = transcript.get_dbrefs("UNIPROT")
        assert [ref.accession for ref in uniprot] == ["P99999"]

    def test_cds_used_when_no_exons(self, make_client, gene_routes):
        annotated = GeneOrchestrator(make_client(gene_routes)).fetch_genes(GENE_ID).genes[0]

        assert [t.name for t in annotated.transcripts] == [TRANSCRIPT_ID, CDS_ONLY_ID]
        cds_only = annotated.transcript(CDS_ONLY_ID)
        assert cds_only.sequence == GENE_SEQ[299:399]
        assert annotated.transcript_mappings[CDS_ONLY_ID].from_ranges == [(300, 399)]
        assert cds_only.gene_loci.mapping.to_ranges == [(1300, 1399)]

    def test_gene_keeps_only_variants(self, make_client, gene_routes):
        annotated = GeneOrchestrator(make_client(gene_routes)).fetch_genes(GENE_ID).genes[0]
        types = {f.type for f in annotated.gene.get_sequence_features()}
        assert types == {SEQUENCE_VARIANT}

    def test_unknown_gene_is_dropped(self, make_client, gene_routes):
        result = GeneOrchestrator(make_client(gene_routes)).fetch_genes(f"NOSUCHGENE {GENE_ID}")

        assert [g.gene.name for g in result.genes] == [GENE_ID]
        assert "NOSUCHGENE" in result.dropped

    def test_gene_sequence_missing(self, make_client, gene_routes):
        gene_routes[f'sequence/id/{GENE_ID}'] = FakeResponse(500, {})
        result = GeneOrchestrator(make_client(gene_routes)).fetch_genes(GENE_ID)

        assert result.genes == []
        assert result.dropped == {GENE_ID: "gene sequence could not be fetched"}

    def test_service_unavailable(self, make_client, gene_routes):
        gene_routes['info/ping'] = FakeResponse(503, {})
        with pytest.raises(ServiceUnavailable):
            GeneOrchestrator(make_client(gene_routes)).fetch_genes(GENE_ID)


class TestGeneLoci:
    """Chromosome loci from lookups or the sequence description."""

    def test_description_fallback(self, make_client, gene_routes):
        del gene_routes[f'lookup/id/{GENE_ID}']
        orchestrator = GeneOrchestrator(make_client(gene_routes))
        gene = Sequence(GENE_ID, GENE_SEQ, description="chromosome:GRCh38:7:1001:4000:1")

        assert orchestrator.find_gene_loci(gene, GENE_ID)
        assert gene.gene_loci.species_id == ""
        assert gene.gene_loci.mapping.to_ranges == [(1001, 4000)]

    def test_parse_forward(self):
        gene = Sequence("G", "A" * 100, description="chromosome:GRCh38:17:1001:1100:1")
        assert GeneOrchestrator.parse_chromosome_locations(gene)
        assert gene.gene_loci.chromosome_id == "17"
        assert gene.gene_loci.mapping.to_ranges == [(1001, 1100)]

    def test_parse_reverse(self):
        gene = Sequence("G", "A" * 100, description="chromosome:GRCh38:17:1001:1100:-1")
        assert GeneOrchestrator.parse_chromosome_locations(gene)
        assert gene.gene_loci.mapping.to_ranges == [(1100, 1001)]

    @pytest.mark.parametrize("description", [
        None,
        "scaffold:GRCh38:17:1001:1100:1",
        "chromosome:GRCh38:17:1001:1100",
        "chromosome:GRCh38:17:start:1100:1",
        "chromosome:GRCh38:17:1001:1200:1",
    ])
    def test_parse_rejects(self, description):
        gene = Sequence("G", "A" * 100, description=description)
        assert not GeneOrchestrator.parse_chromosome_locations(gene)
        assert gene.gene_loci is None

    def test_no_chromosome_loci_without_gene_loci(self):
        transcript = Sequence("T", "ACGT")
        gene = Sequence("G", "ACGTACGT")
        mapping = CoordinateMap([(1, 4)], [(1, 4)])
        assert not GeneOrchestrator.map_transcript_to_chromosome(transcript, gene, mapping)


class TestTranscriptFeatures:
    """Selecting and clearing transcript features on a gene."""

    def test_transcripts_and_nmd_variants_of_the_gene(self):
        gene = Sequence(GENE_ID, "A" * 100)
        gene.add_sequence_feature(gene_feature("transcript", 1, 50, parent=GENE_ID, feature_id="T1"))
        gene.add_sequence_feature(gene_feature("NMD_transcript_variant", 1, 60, parent=GENE_ID.lower(),
                                               feature_id="T2"))
        gene.add_sequence_feature(gene_feature("mRNA", 1, 70, parent="ENSG99", feature_id="T3"))
        gene.add_sequence_feature(gene_feature(EXON, 1, 10, parent="T1"))

        found = GeneOrchestrator.get_transcript_features(GENE_ID, gene)
        assert [f.feature_id for f in found] == ["T1", "T2"]

    def test_clear_gene_features(self):
        gene = Sequence(GENE_ID, "A" * 100)
        gene.add_sequence_feature(gene_feature("transcript", 1, 50, parent=GENE_ID))
        gene.add_sequence_feature(gene_feature(EXON, 1, 10, parent="T1"))
        gene.add_sequence_feature(gene_feature(CDS, 5, 10, parent="T1"))
        gene.add_sequence_feature(gene_feature(SEQUENCE_VARIANT, 7, 7))

        GeneOrchestrator.clear_gene_features(gene)
        assert [f.type for f in gene.get_sequence_features()] == [SEQUENCE_VARIANT]

    def test_transcript_without_id_is_skipped(self, make_client):
        orchestrator = GeneOrchestrator(make_client())
        gene = Sequence(GENE_ID, "A" * 100)
        assert orchestrator.make_transcript(gene_feature("transcript", 1, 50, parent=GENE_ID), gene) is None

    def test_annotated_gene_lookup(self):
        annotated = AnnotatedGene(gene=Sequence("G", "A"), transcripts=[Sequence("ENST1", "A")])
        assert annotated.transcript("enst1").name == "ENST1"
        assert annotated.transcript("ENST2") is None


REVERSE_GENE_ID = "ENSG00000000002"
REVERSE_TRANSCRIPT_ID = "ENST00000000002"


@pytest.fixture
def reverse_gene_routes():
    """A 20 bp minus-strand gene at chromosome 3:1001-1020 with one two-exon transcript."""
    return {
        f'lookup/id/{REVERSE_GENE_ID}': {
            "object_type": "Gene", "id": REVERSE_GENE_ID, "species": "homo_sapiens",
            "assembly_name": "GRCh38", "seq_region_name": "3",
            "start": 1001, "end": 1020, "strand": -1,
        },
        f'sequence/id/{REVERSE_GENE_ID}': {"id": REVERSE_GENE_ID, "seq": "AAAAACCCCCGGGGGTTTTT",
                                           "desc": "chromosome:GRCh38:3:1001:1020:-1"},
        f'overlap/id/{REVERSE_GENE_ID}': [
            overlap("gene", 1001, 1020, feature_id=REVERSE_GENE_ID, strand=-1),
            overlap("transcript", 1001, 1020, parent=REVERSE_GENE_ID, feature_id=REVERSE_TRANSCRIPT_ID,
                    strand=-1),
            overlap("exon", 1016, 1020, parent=REVERSE_TRANSCRIPT_ID, feature_id="ENSE00000000021", strand=-1),
            overlap("exon", 1001, 1005, parent=REVERSE_TRANSCRIPT_ID, feature_id="ENSE00000000022", strand=-1),
            overlap("variation", 1003, 1003, feature_id="rs2", alleles=["A", "G"]),
        ],
        'xrefs/id/': [],
    }


class TestReverseStrandGene:
    """A gene read 5' to 3' off the minus strand."""

    def test_features_in_gene_coordinates(self, make_client, reverse_gene_routes):
        annotated = GeneOrchestrator(make_client(reverse_gene_routes)).fetch_genes(REVERSE_GENE_ID).genes[0]

        [variant] = annotated.gene.features.get_features_by_ontology(SEQUENCE_VARIANT)
        assert (variant.begin, variant.end) == (18, 18)
        assert variant.get_value("alleles") == "T,C"

    def test_exons_spliced_in_gene_order(self, make_client, reverse_gene_routes):
        annotated = GeneOrchestrator(make_client(reverse_gene_routes)).fetch_genes(REVERSE_GENE_ID).genes[0]
        transcript = annotated.transcript(REVERSE_TRANSCRIPT_ID)

        assert transcript.sequence == "AAAAATTTTT"
        assert annotated.transcript_mappings[REVERSE_TRANSCRIPT_ID].from_ranges == [(1, 5), (16, 20)]
        assert annotated.aligned_rows[REVERSE_TRANSCRIPT_ID] == "AAAAA----------TTTTT"

        exons = sorted((f.begin, f.end) for f in transcript.features.get_features_by_ontology(EXON))
        assert exons == [(1, 5), (6, 10)]
        [variant] = transcript.features.get_features_by_ontology(SEQUENCE_VARIANT)
        assert (variant.begin, variant.get_value("alleles")) == (8, "T,C")

    def test_transcript_loci_run_backwards(self, make_client, reverse_gene_routes):
        annotated = GeneOrchestrator(make_client(reverse_gene_routes)).fetch_genes(REVERSE_GENE_ID).genes[0]

        assert annotated.gene.gene_loci.mapping.to_ranges == [(1020, 1001)]
        loci = annotated.transcript(REVERSE_TRANSCRIPT_ID).gene_loci
        assert loci.chromosome_id == "3"
        assert loci.mapping.from_ranges == [(1, 10)]
        assert loci.mapping.to_ranges == [(1020, 1016), (1005, 1001)]
        assert loci.mapping.locate(1) == (1020, 1020)
        assert loci.mapping.locate(6) == (1005, 1005)


class TestDomainLost:
    """The REST domain going down part way through a gene."""

    def test_outage_after_gene_fetch_aborts_the_run(self, make_client, gene_routes, clock):
        client = make_client(gene_routes)
        xrefs = gene_routes[f'xrefs/id/{TRANSCRIPT_ID}']

        def xrefs_then_outage(call):
            client.session.routes['info/ping'] = FakeResponse(503, {})
            clock.advance(client.config.rest.availability_retest_seconds + 1)
            return xrefs

        client.session.routes[f'xrefs/id/{TRANSCRIPT_ID}'] = xrefs_then_outage

        with pytest.raises(ServiceUnavailable):
            GeneOrchestrator(client).fetch_genes(GENE_ID)
        assert len(client.session.calls_to('info/ping')) == 2
