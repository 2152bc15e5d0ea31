"""Resolve Ensembl ids to genes, species and chromosome loci via ``lookup/id``."""

import logging
from typing import Any, Dict, Optional

from .error_handler import InvalidMapping
from .mapping import CoordinateMap
from .models import GeneLoci
from .rest_client import Deadline, ResilientRestClient, make_url

logger = logging.getLogger(__name__)

OBJECT_TYPE_GENE = "Gene"
OBJECT_TYPE_TRANSCRIPT = "Transcript"
OBJECT_TYPE_TRANSLATION = "Translation"


class LookupClient:
    """Client for the lookup endpoint."""

    def __init__(self, client: ResilientRestClient, domain: Optional[str] = None):
        self.client = client
        self.domain = domain or client.domain

    def get_url(self, identifier: str, object_type: Optional[str] = None) -> str:
        params = {"content-type": "application/json"}
        if object_type:
            params["object_type"] = object_type
        return make_url(self.domain, f"lookup/id/{identifier}", params)

    def get_result(self, identifier: str, object_type: Optional[str] = None,
                   deadline: Optional[Deadline] = None) -> Optional[Dict[str, Any]]:
        data = self.client.fetch_json(self.get_url(identifier, object_type),
                                      ids=[identifier], deadline=deadline)
        if data is not None and not isinstance(data, dict):
            logger.warning(f"Unexpected lookup response for {identifier}")
            return None
        return data

    def get_gene_id(self, identifier: str, object_type: Optional[str] = None,
                    deadline: Optional[Deadline] = None) -> Optional[str]:
        """
        Gene id for a gene, transcript or translation id.

        Transcripts resolve to their Parent gene; translations resolve through
        their Parent transcript.
        """
        return self.parse_gene_id(self.get_result(identifier, object_type, deadline), deadline)

    def parse_gene_id(self, data: Optional[Dict[str, Any]],
                      deadline: Optional[Deadline] = None) -> Optional[str]:
        if not data:
            return None
        object_type = str(data.get("object_type", ""))
        if object_type.lower() == OBJECT_TYPE_GENE.lower():
            return data.get("id")
        if object_type.lower() == OBJECT_TYPE_TRANSCRIPT.lower():
            return data.get("Parent")
        if object_type.lower() == OBJECT_TYPE_TRANSLATION.lower():
            transcript_id = data.get("Parent")
            if transcript_id:
                return self.get_gene_id(transcript_id, OBJECT_TYPE_TRANSCRIPT, deadline)
        return None

    def get_species(self, identifier: str, deadline: Optional[Deadline] = None) -> Optional[str]:
        data = self.get_result(identifier, deadline=deadline)
        if data and data.get("species") is not None:
            return str(data["species"])
        return None

    def get_gene_loci(self, gene_id: str, deadline: Optional[Deadline] = None) -> Optional[GeneLoci]:
        return self.parse_gene_loci(self.get_result(gene_id, OBJECT_TYPE_GENE, deadline))

    @staticmethod
    def parse_gene_loci(data: Optional[Dict[str, Any]]) -> Optional[GeneLoci]:
        """
        Build loci mapping gene positions ``1..length`` onto the chromosome.

        Reverse-strand genes map onto ``(end, start)``.
        """
        if not data:
            return None
        try:
            species = data.get("species") or ""
            assembly = str(data["assembly_name"])
            chromosome = str(data["seq_region_name"])
            start = int(data["start"])
            end = int(data["end"])
            reverse = str(data["strand"]) == "-1"
            mapping = CoordinateMap([(1, end - start + 1)],
                                    [(end, start) if reverse else (start, end)])
        except (KeyError, TypeError, ValueError, InvalidMapping) as e:
            logger.error(f"Error looking up gene loci: {e}")
            return None
        return GeneLoci(str(species), assembly, chromosome, mapping)
