"""Tests for the lookup, xrefs, overlap, info and map endpoint clients."""

import pytest

from conftest import FakeResponse
from ensembl_seqproxy.assembly_map import AssemblyMapClient
from ensembl_seqproxy.feature_fetcher import FeatureFetcher, first_not_empty, parse_feature
from ensembl_seqproxy.info import InfoClient
from ensembl_seqproxy.lookup import LookupClient
from ensembl_seqproxy.ontology import CDS, SEQUENCE_VARIANT
from ensembl_seqproxy.xrefs import XrefClient

GENOMES = "https://genomes.example.org"


class TestLookup:
    """lookup/id."""

    def test_gene_loci_forward(self, make_client):
        client = make_client({'lookup/id/ENSG1': {
            "object_type": "Gene", "species": "homo_sapiens", "assembly_name": "GRCh38",
            "seq_region_name": "7", "start": 1001, "end": 4000, "strand": 1}})

        loci = LookupClient(client).get_gene_loci('ENSG1')
        assert (loci.species_id, loci.assembly_id, loci.chromosome_id) == ("homo_sapiens", "GRCh38", "7")
        assert loci.mapping.from_ranges == [(1, 3000)]
        assert loci.mapping.to_ranges == [(1001, 4000)]
        assert client.session.calls[-1].params['object_type'] == ['Gene']

    def test_gene_loci_reverse(self):
        loci = LookupClient.parse_gene_loci({
            "assembly_name": "GRCh38", "seq_region_name": "17",
            "start": 43044295, "end": 43125483, "strand": -1})
        assert loci.mapping.to_ranges == [(43125483, 43044295)]
        assert loci.species_id == ""

    @pytest.mark.parametrize("data", [
        None,
        {},
        {"assembly_name": "GRCh38", "seq_region_name": "17", "start": 1, "strand": 1},
        {"assembly_name": "GRCh38", "seq_region_name": "17", "start": "x", "end": 5, "strand": 1},
    ])
    def test_gene_loci_incomplete(self, data):
        assert LookupClient.parse_gene_loci(data) is None

    def test_species(self, make_client):
        client = make_client({'lookup/id/ENST1': {"object_type": "Transcript", "species": "mus_musculus"}})
        lookup = LookupClient(client)
        assert lookup.get_species('ENST1') == "mus_musculus"
        assert lookup.get_species('ENST2') is None

    def test_unknown_object_type(self, make_client):
        client = make_client({'lookup/id/ENSE1': {"object_type": "Exon", "Parent": "ENST1"}})
        assert LookupClient(client).get_gene_id('ENSE1') is None

    def test_unexpected_shape(self, make_client):
        client = make_client({'lookup/id/ENSG1': ["not", "a", "dict"]})
        assert LookupClient(client).get_result('ENSG1') is None


class TestXrefs:
    """xrefs/id and xrefs/symbol."""

    def test_cross_references(self, make_client):
        client = make_client({'xrefs/id/ENST1': [
            {"dbname": "Uniprot/SWISSPROT", "primary_id": "P15056", "version": 3},
            {"dbname": "GO", "primary_id": "GO:0005515"},
            {"dbname": "HGNC", "primary_id": "HGNC:1097"},
            {"primary_id": "no-dbname"},
            "garbage",
        ]})

        refs = XrefClient(client).get_cross_references('ENST1')
        assert [str(r) for r in refs] == ["UNIPROT:P15056", "HGNC:HGNC:1097"]
        assert [r.version for r in refs] == ["3", "0"]
        assert client.session.calls[-1].params['all_levels'] == ['1']

    def test_cross_references_failure(self, make_client):
        client = make_client({'xrefs/id/ENST1': FakeResponse(500, {})})
        assert XrefClient(client).get_cross_references('ENST1') == []

    def test_symbol_keeps_genes_only(self, make_client):
        client = make_client({'xrefs/symbol/human/BRAF': [
            {"id": "ENSG00000157764", "type": "gene"},
            {"id": "LRG_299", "type": "gene"},
            {"id": "ENST00000288602", "type": "transcript"},
            {"type": "gene"},
        ]})

        ids = XrefClient(client).get_gene_ids_for_symbol('human', 'BRAF')
        assert ids == ["ENSG00000157764", "LRG_299"]
        assert client.session.calls[-1].params['object_type'] == ['gene']


class TestFeatureFetcher:
    """overlap/id parsing."""

    def test_parse_variation(self):
        feature = parse_feature({
            "feature_type": "variation", "start": 140753336, "end": 140753336, "strand": 1,
            "source": "dbSNP", "id": "rs113488022", "alleles": ["A", "T", "C"],
            "clinical_significance": ["pathogenic", "likely pathogenic"],
            "consequence_type": "missense_variant",
        })

        assert feature.type == SEQUENCE_VARIANT
        assert feature.description == "A,T,C"
        assert feature.get_value("alleles") == "A,T,C"
        assert feature.get_value("clinical_significance") == "pathogenic,likely pathogenic"
        assert feature.get_value("consequence_type") == "missense_variant"
        assert feature.feature_id == "rs113488022"
        assert feature.strand == "+"

    def test_parse_cds(self):
        feature = parse_feature({
            "feature_type": "cds", "start": 200, "end": 100, "strand": -1, "source": "ensembl",
            "phase": 2, "id": "ENSP1", "Parent": "ENST1",
        })

        assert feature.type == CDS
        assert (feature.begin, feature.end) == (100, 200)
        assert feature.strand == "-"
        assert feature.phase == "2"
        assert feature.parent == "ENST1"
        assert feature.description == "ENSP1"

    def test_parse_missing_field(self):
        with pytest.raises(KeyError):
            parse_feature({"feature_type": "exon", "start": 1, "strand": 1, "source": "ensembl"})

    def test_first_not_empty(self):
        assert first_not_empty({"alleles": [], "external_name": "BRAF-201", "id": "ENST1"},
                               "alleles", "external_name", "id") == "BRAF-201"
        assert first_not_empty({"alleles": None}, "alleles") is None

    def test_fetch_features(self, make_client):
        client = make_client({'overlap/id/ENST1': [
            {"feature_type": "exon", "start": 10, "end": 20, "strand": 1, "source": "ensembl",
             "Parent": "ENST1"},
            {"feature_type": "exon", "start": 30},
        ]})

        dummy = FeatureFetcher(client).fetch_features('ENST1', ("exon", "cds"))
        assert [(f.begin, f.end) for f in dummy.get_sequence_features()] == [(10, 20)]
        assert client.session.calls[-1].params['feature'] == ['exon', 'cds']

    def test_fetch_features_failure(self, make_client):
        client = make_client({'overlap/id/ENST1': {"error": "not a list"}})
        fetcher = FeatureFetcher(client)
        assert fetcher.fetch_features('ENST1') is None
        assert fetcher.fetch_features('ENST2') is None


class TestInfo:
    """info/divisions."""

    def test_divisions(self, make_client):
        client = make_client({'info/divisions': ["EnsemblVertebrates", "EnsemblPlants", "EnsemblFungi"]},
                             rest__genomes_domain=GENOMES)
        info = InfoClient(client)

        assert info.get_domain("EnsemblVertebrates") == client.domain
        assert info.get_domain("ensembl") == client.domain
        assert info.get_domain("EnsemblPlants") == GENOMES
        assert info.get_domain("EnsemblBacteria") is None
        assert info.division_names() == ["ENSEMBL", "ENSEMBLFUNGI", "ENSEMBLPLANTS", "ENSEMBLVERTEBRATES"]
        assert len(client.session.calls_to('info/divisions')) == 1
        assert client.session.calls_to('info/divisions')[0].url.startswith(GENOMES)

    def test_failed_listing_is_retried(self, make_client):
        client = make_client({'info/divisions': FakeResponse(503, {})})
        info = InfoClient(client)

        assert info.get_domain("EnsemblVertebrates") == client.domain
        assert info.get_domain("EnsemblPlants") is None
        assert len(client.session.calls_to('info/divisions')) == 2


def id_mapping(original, mapped, strand=1, chromosome="7", assembly="GRCh38"):
    return {
        "original": {"start": original[0], "end": original[1]},
        "mapped": {"assembly_name": assembly, "seq_region_name": chromosome,
                   "start": mapped[0], "end": mapped[1], "strand": strand},
    }


class TestAssemblyMap:
    """map/{species}/... and map/{cds|cdna}/..."""

    @pytest.fixture
    def routes(self):
        return {
            'info/divisions': ["EnsemblVertebrates"],
            'lookup/id/ENST1': {"object_type": "Transcript", "species": "homo_sapiens"},
        }

    def test_assembly_map_url(self, make_client):
        client = make_client()
        url = AssemblyMapClient(client).get_assembly_map_url("human", "7", "GRCh37", "GRCh38", 200, 100)
        assert "/map/human/GRCh37/7:100..200:-1/GRCh38?" in url

    def test_assembly_mapping(self, make_client):
        client = make_client({'map/human/GRCh37/': {"mappings": [
            {"original": {"start": 140453136}, "mapped": {"start": 140753336, "end": 140753436, "strand": 1}}]}})

        result = AssemblyMapClient(client).get_assembly_mapping("human", "7", "GRCh37", "GRCh38",
                                                                (140453136, 140453236))
        assert result == (140753336, 140753436)

    def test_assembly_mapping_reverse_and_malformed(self, make_client):
        client = make_client({'map/human/GRCh37/': {"mappings": [
            {"mapped": {"start": 100, "end": 200, "strand": -1}}]}})
        maps = AssemblyMapClient(client)
        assert maps.get_assembly_mapping("human", "7", "GRCh37", "GRCh38", (1, 101)) == (200, 100)

        client.session.routes['map/human/GRCh37/'] = {"mappings": [{"original": {}}]}
        assert maps.get_assembly_mapping("human", "7", "GRCh37", "GRCh38", (1, 101)) is None

    def test_cdna_mapping(self, make_client, routes):
        routes['map/cdna/ENST1/1..202'] = {"mappings": [
            id_mapping((1, 101), (1100, 1200)),
            id_mapping((102, 202), (1500, 1600)),
        ]}
        client = make_client(routes)

        loci = AssemblyMapClient(client).get_cdna_mapping("EnsemblVertebrates", "ENST1", 1, 202)
        assert (loci.species_id, loci.assembly_id, loci.chromosome_id) == ("homo_sapiens", "GRCh38", "7")
        assert loci.mapping.from_ranges == [(1, 202)]
        assert loci.mapping.to_ranges == [(1100, 1200), (1500, 1600)]
        assert client.session.calls_to('map/cdna')[0].params['include_original_region'] == ['1']

    def test_cds_mapping_reverse_strand(self, make_client, routes):
        routes['map/cds/ENST1/1..30'] = {"mappings": [id_mapping((1, 30), (5001, 5030), strand=-1)]}
        loci = AssemblyMapClient(make_client(routes)).get_cds_mapping("EnsemblVertebrates", "ENST1", 1, 30)
        assert loci.mapping.to_ranges == [(5030, 5001)]

    def test_several_chromosomes_rejected(self, make_client, routes):
        routes['map/cdna/ENST1/1..20'] = {"mappings": [
            id_mapping((1, 10), (1, 10), chromosome="7"),
            id_mapping((11, 20), (1, 10), chromosome="X"),
        ]}
        client = make_client(routes)
        assert AssemblyMapClient(client).get_cdna_mapping("EnsemblVertebrates", "ENST1", 1, 20) is None

    def test_several_assemblies_rejected(self, make_client, routes):
        routes['map/cdna/ENST1/1..20'] = {"mappings": [
            id_mapping((1, 10), (1, 10)),
            id_mapping((11, 20), (11, 20), assembly="GRCh37"),
        ]}
        client = make_client(routes)
        assert AssemblyMapClient(client).get_cdna_mapping("EnsemblVertebrates", "ENST1", 1, 20) is None

    def test_unknown_division(self, make_client, routes):
        client = make_client(routes)
        assert AssemblyMapClient(client).get_cdna_mapping("EnsemblBacteria", "ENST1", 1, 20) is None
        assert client.session.calls_to('map/') == []

    def test_no_mappings(self, make_client, routes):
        routes['map/cdna/ENST1/1..20'] = {"mappings": []}
        assert AssemblyMapClient(make_client(routes)).get_cdna_mapping("ENSEMBL", "ENST1", 1, 20) is None
