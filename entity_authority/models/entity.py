"""Entity and Field models parsed from the authoritative ER diagram."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, Set


class FieldType(str, Enum):
    """Normalized field types."""

    INTEGER = "integer"
    STRING = "string"
    BOOLEAN = "boolean"
    DECIMAL = "decimal"
    DATETIME = "datetime"
    DATE = "date"
    JSON = "json"

    @classmethod
    def from_diagram_type(cls, diagram_type: str) -> "FieldType":
        """
        Map a diagram type token to a normalized FieldType.

        Lookup is case-insensitive. Unrecognized types fall back to STRING.

        Examples:
            >>> FieldType.from_diagram_type("jsonb")
            <FieldType.JSON: 'json'>
            >>> FieldType.from_diagram_type("uuid")
            <FieldType.STRING: 'string'>
        """
        return DIAGRAM_TYPE_MAP.get(diagram_type.lower(), cls.STRING)


DIAGRAM_TYPE_MAP: Dict[str, FieldType] = {
    "int": FieldType.INTEGER,
    "string": FieldType.STRING,
    "bool": FieldType.BOOLEAN,
    "decimal": FieldType.DECIMAL,
    "datetime": FieldType.DATETIME,
    "date": FieldType.DATE,
    "jsonb": FieldType.JSON,
    "timestamp": FieldType.DATETIME,
}

PRIMARY_KEY = "PK"
FOREIGN_KEY = "FK"


@dataclass
class Field:
    """
    A single attribute declared inside an entity block.

    Attributes:
        name: Field name as declared
        type: Normalized field type
        constraint: "PK", "FK", or None
        description: Free text from the quoted suffix
        signature: Derived fingerprint (set once by the signature engine)
    """

    name: str
    type: FieldType = FieldType.STRING
    constraint: Optional[str] = None
    description: str = ""
    signature: Optional[str] = None

    @property
    def is_primary_key(self) -> bool:
        return self.constraint == PRIMARY_KEY

    @property
    def is_foreign_key(self) -> bool:
        return self.constraint == FOREIGN_KEY

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "type": self.type.value,
            "constraint": self.constraint,
            "description": self.description,
            "is_primary_key": self.is_primary_key,
            "is_foreign_key": self.is_foreign_key,
            "signature": self.signature,
        }

    def __repr__(self) -> str:
        return f"Field(name={self.name}, type={self.type.value}, constraint={self.constraint})"


@dataclass
class Entity:
    """
    A domain object type declared in the authoritative model.

    Attributes:
        name: Uppercase identifier, unique within the model
        fields: Field name -> Field, in declaration order
        primary_key: Name of the PK field, if any
        foreign_keys: Names of FK fields
        parents: Entities owning this one in a one-to-many
        children: Entities owned by this one
        related: Entities linked by any other relationship type
        signature: Derived fingerprint (set once when the block closes)
    """

    name: str
    fields: Dict[str, Field] = field(default_factory=dict)
    primary_key: Optional[str] = None
    foreign_keys: Set[str] = field(default_factory=set)
    parents: Set[str] = field(default_factory=set)
    children: Set[str] = field(default_factory=set)
    related: Set[str] = field(default_factory=set)
    signature: Optional[str] = None

    def add_field(self, new_field: Field):
        """
        Insert or replace a field, keeping key membership in sync.

        A redeclared field name replaces the earlier declaration, including
        its PK/FK role.

        Args:
            new_field: Parsed field
        """
        previous = self.fields.get(new_field.name)
        if previous is not None:
            self.foreign_keys.discard(previous.name)
            if self.primary_key == previous.name:
                self.primary_key = None

        self.fields[new_field.name] = new_field

        if new_field.is_primary_key:
            self.primary_key = new_field.name
        elif new_field.is_foreign_key:
            self.foreign_keys.add(new_field.name)

    @property
    def relationships(self) -> Dict[str, list]:
        """Parent/child/related entity names as sorted lists."""
        return {
            "parents": sorted(self.parents),
            "children": sorted(self.children),
            "related": sorted(self.related),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "fields": {name: f.to_dict() for name, f in self.fields.items()},
            "primary_key": self.primary_key,
            "foreign_keys": sorted(self.foreign_keys),
            "relationships": self.relationships,
            "signature": self.signature,
        }

    def __repr__(self) -> str:
        return f"Entity(name={self.name}, fields={len(self.fields)}, pk={self.primary_key})"
