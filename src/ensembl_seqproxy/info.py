"""Ensembl division discovery via ``info/divisions``."""

import logging
import threading
from typing import Dict, List, Optional

from .rest_client import ResilientRestClient, make_url

logger = logging.getLogger(__name__)

VERTEBRATES = "EnsemblVertebrates"
ENSEMBL = "ENSEMBL"


class InfoClient:
    """Maps an Ensembl division name onto the REST domain that serves it."""

    def __init__(self, client: ResilientRestClient):
        self.client = client
        self._divisions: Optional[Dict[str, str]] = None
        self._lock = threading.Lock()

    def get_divisions(self) -> Dict[str, str]:
        """Division name (upper case) to domain, fetched once per instance."""
        with self._lock:
            if self._divisions is not None:
                return dict(self._divisions)

            divisions = {ENSEMBL: self.client.domain, VERTEBRATES.upper(): self.client.domain}
            url = make_url(self.client.genomes_domain, "info/divisions",
                           {"content-type": "application/json"})
            data = self.client.fetch_json(url)
            if not isinstance(data, list):
                # not cached, so the next call tries again
                logger.warning("Could not list Ensembl divisions")
                return divisions

            for name in data:
                name = str(name)
                domain = self.client.domain if name == VERTEBRATES else self.client.genomes_domain
                divisions.setdefault(name.upper(), domain)
            self._divisions = divisions
            return dict(divisions)

    def get_domain(self, division: str) -> Optional[str]:
        return self.get_divisions().get(division.upper())

    def division_names(self) -> List[str]:
        return sorted(self.get_divisions())
