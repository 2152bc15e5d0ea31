"""Assembly-to-assembly and transcript-to-chromosome mapping via the ``map`` endpoints."""

import logging
from typing import List, Optional, Tuple

from .error_handler import InvalidMapping
from .info import InfoClient
from .lookup import LookupClient
from .mapping import CoordinateMap
from .models import GeneLoci
from .rest_client import ResilientRestClient, make_url

logger = logging.getLogger(__name__)

CDS = "cds"
CDNA = "cdna"


class AssemblyMapClient:
    """Client for ``map/{species}/...`` and ``map/{cds|cdna}/...``."""

    def __init__(self, client: ResilientRestClient, info: Optional[InfoClient] = None):
        self.client = client
        self.info = info or InfoClient(client)

    def get_assembly_map_url(self, species: str, chromosome: str, from_assembly: str,
                             to_assembly: str, start: int, end: int) -> str:
        forward = start <= end
        low, high = (start, end) if forward else (end, start)
        strand = "1" if forward else "-1"
        return make_url(self.client.domain,
                        f"map/{species}/{from_assembly}/{chromosome}:{low}..{high}:{strand}/{to_assembly}",
                        {"content-type": "application/json"})

    def get_assembly_mapping(self, species: str, chromosome: str, from_assembly: str,
                             to_assembly: str, query_range: Tuple[int, int]) -> Optional[Tuple[int, int]]:
        """
        Position of a chromosome region in another assembly.

        Returns:
            ``(start, end)`` in the target assembly, ``(end, start)`` if it
            maps to the reverse strand, or None if unmapped
        """
        url = self.get_assembly_map_url(species, chromosome, from_assembly, to_assembly,
                                        query_range[0], query_range[1])
        data = self.client.fetch_json(url)
        if not isinstance(data, dict):
            return None

        result = None
        try:
            for entry in data.get("mappings", []):
                mapped = entry["mapped"]
                start, end = int(mapped["start"]), int(mapped["end"])
                result = (start, end) if str(mapped["strand"]) == "1" else (end, start)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unexpected assembly mapping from {url}: {e}")
            return None
        return result

    def get_cds_mapping(self, division: str, accession: str, start: int, end: int) -> Optional[GeneLoci]:
        return self.get_id_mapping(division, accession, start, end, CDS)

    def get_cdna_mapping(self, division: str, accession: str, start: int, end: int) -> Optional[GeneLoci]:
        return self.get_id_mapping(division, accession, start, end, CDNA)

    def get_id_mapping(self, division: str, accession: str, start: int, end: int,
                       cds_or_cdna: str) -> Optional[GeneLoci]:
        """
        Chromosome loci of a region of a transcript's cDNA or CDS.

        Returns:
            Loci mapping the requested region onto the chromosome, or None if
            the division is unknown or the region spans several assemblies or
            chromosomes
        """
        domain = self.info.get_domain(division)
        if domain is None:
            logger.warning(f"Unknown Ensembl division {division}")
            return None

        url = make_url(domain, f"map/{cds_or_cdna}/{accession}/{start}..{end}",
                       {"include_original_region": "1", "content-type": "application/json"})
        data = self.client.fetch_json(url)
        if not isinstance(data, dict):
            return None

        assembly = chromosome = None
        from_start, from_end = None, None
        regions: List[Tuple[int, int]] = []
        try:
            for entry in data.get("mappings", []):
                original = entry["original"]
                mapped = entry["mapped"]
                original_start, original_end = int(original["start"]), int(original["end"])
                from_start = original_start if from_start is None else min(from_start, original_start)
                from_end = original_end if from_end is None else max(from_end, original_end)

                if assembly is not None and assembly != mapped["assembly_name"]:
                    logger.error(f"{accession} maps to several assemblies, can't resolve")
                    return None
                assembly = mapped["assembly_name"]
                if chromosome is not None and chromosome != str(mapped["seq_region_name"]):
                    logger.error(f"{accession} maps to several chromosomes, can't resolve")
                    return None
                chromosome = str(mapped["seq_region_name"])

                mapped_start, mapped_end = int(mapped["start"]), int(mapped["end"])
                if str(mapped["strand"]) == "-1":
                    regions.append((mapped_end, mapped_start))
                else:
                    regions.append((mapped_start, mapped_end))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unexpected id mapping from {url}: {e}")
            return None

        if not regions:
            return None

        species = LookupClient(self.client, domain).get_species(accession)
        try:
            mapping = CoordinateMap([(from_start, from_end)], regions)
        except InvalidMapping as e:
            logger.warning(f"Inconsistent id mapping for {accession}: {e}")
            return None
        return GeneLoci(species or "", assembly, chromosome, mapping)
