"""Positional sequence features and a per-sequence feature store."""

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional

from .ontology import DEFAULT_ONTOLOGY, SequenceOntologyLite


@dataclass
class SequenceFeature:
    """A typed annotation spanning ``begin..end`` (1-based, inclusive, begin <= end)."""

    type: str
    description: Optional[str]
    begin: int
    end: int
    score: Optional[float] = None
    group: Optional[str] = None
    strand: Optional[str] = None
    phase: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.begin > self.end:
            self.begin, self.end = self.end, self.begin

    def get_value(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def set_value(self, key: str, value: Any):
        self.attributes[key] = value

    @property
    def parent(self) -> Optional[str]:
        return self.attributes.get("Parent")

    @property
    def feature_id(self) -> Optional[str]:
        return self.attributes.get("id")

    @property
    def length(self) -> int:
        return self.end - self.begin + 1

    def copy(self, **changes) -> 'SequenceFeature':
        """Copy with an independent attribute dict, optionally overriding fields."""
        changes.setdefault("attributes", copy.deepcopy(self.attributes))
        return replace(self, **changes)


class SequenceFeatures:
    """Container of features attached to one sequence."""

    def __init__(self, ontology: Optional[SequenceOntologyLite] = None):
        self.ontology = ontology or DEFAULT_ONTOLOGY
        self._features: List[SequenceFeature] = []

    def add(self, feature: SequenceFeature) -> bool:
        """Add a feature unless an equal one is already stored."""
        if feature in self._features:
            return False
        self._features.append(feature)
        return True

    def delete(self, feature: SequenceFeature) -> bool:
        for i, existing in enumerate(self._features):
            if existing is feature:
                del self._features[i]
                return True
        return False

    def get_all(self) -> List[SequenceFeature]:
        return list(self._features)

    def get_positional_features(self, *types: str) -> List[SequenceFeature]:
        """Features of exactly the given types, or all features if none given."""
        if not types:
            return self.get_all()
        return [f for f in self._features if f.type in types]

    def get_features_by_ontology(self, *terms: str) -> List[SequenceFeature]:
        """Features whose type is_a any of ``terms``."""
        return [f for f in self._features
                if any(self.ontology.is_a(f.type, term) for term in terms)]

    def get_features_by_parent(self, parent_id: str, *terms: str) -> List[SequenceFeature]:
        """Features of the given ontology terms whose Parent matches, ignoring case."""
        wanted = parent_id.lower()
        candidates = self.get_features_by_ontology(*terms) if terms else self._features
        return [f for f in candidates if (f.parent or "").lower() == wanted]

    @staticmethod
    def sort_features(features: List[SequenceFeature], forward: bool) -> List[SequenceFeature]:
        """
        Sort into traversal order.

        Forward: ascending begin. Reverse: descending end. The sort is stable
        so features sharing a coordinate keep their arrival order.
        """
        if forward:
            return sorted(features, key=lambda f: f.begin)
        return sorted(features, key=lambda f: -f.end)

    def __len__(self) -> int:
        return len(self._features)

    def __iter__(self) -> Iterator[SequenceFeature]:
        return iter(list(self._features))
