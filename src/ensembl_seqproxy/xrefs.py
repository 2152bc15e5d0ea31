"""Cross-reference and gene symbol lookups via the ``xrefs`` endpoints."""

import logging
from typing import List, Optional

from .models import DBRefEntry
from .rest_client import Deadline, ResilientRestClient, make_url

logger = logging.getLogger(__name__)

# GO terms attach to genes in bulk and are not sequence equivalents
EXCLUDED_SOURCES = {"GO"}


class XrefClient:
    """Client for ``xrefs/id`` and ``xrefs/symbol``."""

    def __init__(self, client: ResilientRestClient, domain: Optional[str] = None):
        self.client = client
        self.domain = domain or client.domain

    def get_cross_references(self, identifier: str,
                             deadline: Optional[Deadline] = None) -> List[DBRefEntry]:
        """
        Cross-references of an Ensembl id.

        Returns:
            Canonicalised references, excluding GO; empty on failure
        """
        url = make_url(self.domain, f"xrefs/id/{identifier}",
                       {"content-type": "application/json", "all_levels": "1"})
        data = self.client.fetch_json(url, ids=[identifier], deadline=deadline)
        if not isinstance(data, list):
            return []

        refs = []
        for obj in data:
            try:
                source = str(obj["dbname"])
                accession = str(obj["primary_id"])
            except (KeyError, TypeError):
                continue
            if source in EXCLUDED_SOURCES:
                continue
            version = obj.get("version")
            refs.append(DBRefEntry(source, str(version) if version is not None else "0", accession))
        return refs

    def get_gene_ids_for_symbol(self, species: str, symbol: str,
                                deadline: Optional[Deadline] = None) -> List[str]:
        """Gene ids that carry ``symbol`` in ``species``."""
        url = make_url(self.domain, f"xrefs/symbol/{species}/{symbol}",
                       {"content-type": "application/json", "object_type": "gene"})
        data = self.client.fetch_json(url, ids=[symbol], deadline=deadline)
        if not isinstance(data, list):
            return []
        return [obj["id"] for obj in data
                if isinstance(obj, dict) and obj.get("id") and str(obj.get("type", "gene")).lower() == "gene"]
