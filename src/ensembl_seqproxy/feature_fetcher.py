"""Fetch positional features from the Ensembl ``overlap/id`` endpoint."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .features import SequenceFeature
from .models import Sequence
from .ontology import CDS, SEQUENCE_VARIANT
from .rest_client import Deadline, ResilientRestClient, make_url

logger = logging.getLogger(__name__)

# feature types understood by overlap/id
GENE = "gene"
TRANSCRIPT = "transcript"
EXON = "exon"
CDS_FEATURE = "cds"
VARIATION = "variation"

DEFAULT_FEATURE_TYPES = (CDS_FEATURE, EXON, VARIATION)


def _as_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def first_not_empty(obj: Dict[str, Any], *keys: str) -> Optional[str]:
    """Text of the first key whose value is present and non-empty."""
    for key in keys:
        value = obj.get(key)
        if value is not None:
            text = _as_text(value)
            if text:
                return text
    return None


def parse_feature(obj: Dict[str, Any]) -> SequenceFeature:
    """
    Convert one overlap JSON object to a feature.

    Raises:
        KeyError, TypeError, ValueError: if a mandatory field is missing or malformed
    """
    feature_type = obj["feature_type"]
    if feature_type == VARIATION:
        feature_type = SEQUENCE_VARIANT
    elif feature_type.lower() == CDS.lower():
        feature_type = CDS

    feature = SequenceFeature(
        type=feature_type,
        description=first_not_empty(obj, "alleles", "external_name", "id"),
        begin=int(obj["start"]),
        end=int(obj["end"]),
        group=str(obj["source"]),
        strand="+" if str(obj["strand"]) == "1" else "-",
    )
    if obj.get("phase") is not None:
        feature.phase = str(obj["phase"])
    for key in ("id", "Parent", "consequence_type"):
        if obj.get(key) is not None:
            feature.set_value(key, str(obj[key]))
    feature.set_value("alleles", _as_text(obj.get("alleles") or []))
    feature.set_value("clinical_significance", _as_text(obj.get("clinical_significance") or []))
    return feature


class FeatureFetcher:
    """Client for the overlap endpoint."""

    def __init__(self, client: ResilientRestClient, domain: Optional[str] = None):
        self.client = client
        self.domain = domain or client.domain

    def get_url(self, accession: str, feature_types: Iterable[str]) -> str:
        params: List = [("content-type", "application/json"), ("object_type", "gene")]
        params.extend(("feature", t) for t in feature_types)
        return make_url(self.domain, f"overlap/id/{accession}", params)

    def fetch_features(self,
                       accession: str,
                       feature_types: Iterable[str] = DEFAULT_FEATURE_TYPES,
                       deadline: Optional[Deadline] = None) -> Optional[Sequence]:
        """
        Fetch features overlapping an accession's locus.

        Args:
            accession: Gene, transcript or protein id
            feature_types: Overlap feature types to request
            deadline: Optional request budget

        Returns:
            A placeholder sequence carrying the features in genomic
            coordinates, or None if the request failed
        """
        url = self.get_url(accession, feature_types)
        data = self.client.fetch_json(url, ids=[accession], deadline=deadline)
        if data is None:
            return None
        if not isinstance(data, list):
            logger.warning(f"Unexpected overlap response for {accession}: {type(data).__name__}")
            return None

        dummy = Sequence("Dummy", "", start=1, end=0)
        skipped = 0
        for obj in data:
            try:
                dummy.add_sequence_feature(parse_feature(obj))
            except (KeyError, TypeError, ValueError, AttributeError):
                skipped += 1
        if skipped:
            logger.debug(f"Skipped {skipped} malformed features for {accession}")
        return dummy
