"""Relationship model representing a directed edge between entities."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any


class RelationshipType(str, Enum):
    """Cardinality classes derived from diagram connector symbols."""

    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    ONE_TO_ONE = "one-to-one"
    MANY_TO_MANY = "many-to-many"
    RELATED = "related"

    @classmethod
    def from_connector(cls, connector: str) -> "RelationshipType":
        """
        Classify a connector by substring, in fixed priority order.

        The symbol sets overlap, so the order of CONNECTOR_RULES matters.

        Examples:
            >>> RelationshipType.from_connector("||--o{")
            <RelationshipType.ONE_TO_MANY: 'one-to-many'>
            >>> RelationshipType.from_connector("}|--o{")
            <RelationshipType.MANY_TO_MANY: 'many-to-many'>
        """
        for symbol, rel_type in CONNECTOR_RULES:
            if symbol in connector:
                return rel_type
        return cls.RELATED


CONNECTOR_RULES = (
    ("||--o{", RelationshipType.ONE_TO_MANY),
    ("}|--||", RelationshipType.MANY_TO_ONE),
    ("||--||", RelationshipType.ONE_TO_ONE),
    ("}|--o{", RelationshipType.MANY_TO_MANY),
)


@dataclass
class Relationship:
    """
    A directed relationship declared in the model.

    Attributes:
        source: Entity on the left of the connector
        target: Entity on the right of the connector
        type: Cardinality class
        label: Quoted label from the diagram, if present
        signature: Derived fingerprint
    """

    source: str
    target: str
    type: RelationshipType
    label: Optional[str] = None
    signature: Optional[str] = None

    @property
    def name(self) -> str:
        """Label, or the lowercased target when unlabeled."""
        return self.label or self.target.lower()

    @property
    def key(self) -> str:
        """Identity of the relationship within the model."""
        return f"{self.source}-{self.target}-{self.label or 'default'}"

    def involves(self, entity_name: str) -> bool:
        return entity_name in (self.source, self.target)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.key,
            "from": self.source,
            "to": self.target,
            "name": self.name,
            "type": self.type.value,
            "signature": self.signature,
        }

    def __repr__(self) -> str:
        return f"Relationship({self.source} -{self.type.value}-> {self.target}, name={self.name})"
