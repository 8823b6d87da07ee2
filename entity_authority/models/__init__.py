"""Data models for the authoritative entity model."""

from .entity import Entity, Field, FieldType
from .relationship import Relationship, RelationshipType
from .provenance import (
    ProvenanceRecord,
    ValidationResult,
    FabricationReport,
    EntityCertificate,
)
from .signatures import (
    SignatureEngine,
    canonical_json,
    hash_payload,
    generate_content_checksum,
)

__all__ = [
    "Entity",
    "Field",
    "FieldType",
    "Relationship",
    "RelationshipType",
    "ProvenanceRecord",
    "ValidationResult",
    "FabricationReport",
    "EntityCertificate",
    "SignatureEngine",
    "canonical_json",
    "hash_payload",
    "generate_content_checksum",
]
