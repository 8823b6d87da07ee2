"""Provenance records, validation results and entity certificates."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from entity_authority.errors import ValidationFailure


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class ProvenanceRecord:
    """
    Provenance of one entity, as recorded when the model was loaded.

    Derived from an Entity but independent of it: the record keeps its own
    copy of the signature so that the store can cross-check it against the
    signature table.

    Attributes:
        name: Entity name
        source: Identifier of the authoritative source file
        field_count: Number of distinct fields declared
        primary_key: Primary key field name, if any
        foreign_keys: Sorted foreign key field names
        signature: Entity signature at load time
        verified: Whether the entity came from the parsed source
        created_at: Record creation time
    """

    name: str
    source: str
    field_count: int
    primary_key: Optional[str] = None
    foreign_keys: List[str] = field(default_factory=list)
    signature: Optional[str] = None
    verified: bool = True
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "source": self.source,
            "field_count": self.field_count,
            "primary_key": self.primary_key,
            "foreign_keys": list(self.foreign_keys),
            "signature": self.signature,
            "verified": self.verified,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class ValidationResult:
    """
    Outcome of validating an entity, field or relationship claim.

    Attributes:
        entity: Entity name that was checked
        valid: True when the claim is backed by the source model
        reason: Human-readable failure reason
        code: Structured failure code
        signature: Signature of the validated item (valid results only)
        provenance: Provenance metadata (valid entity results only)
        field: Field name, for field validations
        relationship: Relationship key, for relationship validations
        validated_at: Validation time
    """

    entity: Optional[str]
    valid: bool = False
    reason: Optional[str] = None
    code: Optional[ValidationFailure] = None
    signature: Optional[str] = None
    provenance: Optional[Dict[str, Any]] = None
    field: Optional[str] = None
    relationship: Optional[str] = None
    validated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.validated_at is None:
            self.validated_at = utcnow()

    @classmethod
    def failure(cls, entity: Optional[str], code: ValidationFailure, reason: str, **kwargs) -> "ValidationResult":
        return cls(entity=entity, valid=False, code=code, reason=reason, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation, omitting unused keys."""
        result: Dict[str, Any] = {"entity": self.entity, "valid": self.valid}
        if self.field is not None:
            result["field"] = self.field
        if self.relationship is not None:
            result["relationship"] = self.relationship
        if self.valid:
            result["signature"] = self.signature
            if self.provenance is not None:
                result["provenance"] = dict(self.provenance)
        else:
            result["reason"] = self.reason
            result["code"] = self.code.value if self.code else None
        result["validated_at"] = self.validated_at.isoformat()
        return result


@dataclass
class FabricationReport:
    """Partition of claimed entity names into valid and fabricated."""

    valid: List[Dict[str, Any]] = field(default_factory=list)
    fabricated: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def valid_names(self) -> List[str]:
        return [item["entity"] for item in self.valid]

    @property
    def fabricated_names(self) -> List[str]:
        return [item["entity"] for item in self.fabricated]

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total": len(self.valid) + len(self.fabricated),
            "valid_count": len(self.valid),
            "fabricated_count": len(self.fabricated),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "valid": [dict(item) for item in self.valid],
            "fabricated": [dict(item) for item in self.fabricated],
            "summary": self.summary,
        }


@dataclass
class EntityCertificate:
    """
    Time-bounded, tamper-evident attestation that an entity was validated.

    The certificate hash covers every other attribute, so any edit to the
    body is detectable without consulting the entity signature.

    Attributes:
        entity: Certified entity name
        issued_by: Issuer identity
        issued_at: Issue time
        valid_until: End of the validity window
        signature: Entity signature at issue time
        provenance: Provenance metadata at issue time
        algorithm: Hash algorithm used for certificate_hash
        certificate_hash: Hash over body()
    """

    entity: str
    issued_by: str
    issued_at: datetime
    valid_until: datetime
    signature: str
    provenance: Dict[str, Any]
    algorithm: str
    certificate_hash: Optional[str] = None

    def body(self) -> Dict[str, Any]:
        """Hashed portion of the certificate (everything except the hash)."""
        return {
            "entity": self.entity,
            "issued_by": self.issued_by,
            "issued_at": self.issued_at.isoformat(),
            "valid_until": self.valid_until.isoformat(),
            "signature": self.signature,
            "provenance": self.provenance,
            "algorithm": self.algorithm,
        }

    def is_current(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.issued_at <= now < self.valid_until

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityCertificate":
        """
        Rebuild a certificate from its dictionary form.

        Args:
            data: Output of to_dict()

        Returns:
            EntityCertificate instance

        Raises:
            ValueError: If a timestamp is malformed or has no UTC offset
        """
        issued_at = datetime.fromisoformat(data["issued_at"])
        valid_until = datetime.fromisoformat(data["valid_until"])
        if issued_at.tzinfo is None or valid_until.tzinfo is None:
            raise ValueError("Certificate timestamps must carry a UTC offset")

        return cls(
            entity=data["entity"],
            issued_by=data["issued_by"],
            issued_at=issued_at,
            valid_until=valid_until,
            signature=data["signature"],
            provenance=dict(data["provenance"]),
            algorithm=data["algorithm"],
            certificate_hash=data.get("certificate_hash"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = self.body()
        result["certificate_hash"] = self.certificate_hash
        return result

    def __repr__(self) -> str:
        digest = self.certificate_hash[:8] if self.certificate_hash else None
        return f"EntityCertificate(entity={self.entity}, hash={digest}..., valid_until={self.valid_until.isoformat()})"
