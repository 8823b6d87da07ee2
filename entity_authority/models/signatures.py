"""Deterministic, per-load salted signatures for model objects."""

import hashlib
import json
import secrets
import time
from typing import Any, Dict, Optional

from entity_authority.constants import (
    DEFAULT_HASH_ALGORITHM,
    DEFAULT_SALT_LENGTH,
    DEFAULT_SOURCE_ID,
    FORMAT_VERSION,
)
from entity_authority.errors import SaltAlreadyDerivedError, SaltNotDerivedError
from entity_authority.models.entity import Entity, Field
from entity_authority.models.relationship import Relationship


def canonical_json(payload: Any) -> str:
    """
    Serialize a payload to canonical JSON for hashing.

    Keys are sorted and separators carry no whitespace, so equal payloads
    always serialize to identical strings.

    Args:
        payload: JSON-compatible value

    Returns:
        Canonical JSON string

    Example:
        >>> canonical_json({"b": 1, "a": [2, 3]})
        '{"a":[2,3],"b":1}'
    """
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_payload(payload: Any, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """
    Hash a JSON-compatible payload via its canonical JSON form.

    Args:
        payload: JSON-compatible value
        algorithm: hashlib algorithm name

    Returns:
        Hex digest
    """
    digest = hashlib.new(algorithm)
    digest.update(canonical_json(payload).encode("utf-8"))
    return digest.hexdigest()


def generate_content_checksum(content: str) -> str:
    """
    Generate a SHA256 checksum of model source text (for change detection).

    Args:
        content: Source file text

    Returns:
        SHA256 hash as hex string
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class SignatureEngine:
    """
    Derives fingerprints for entities, fields and relationships.

    One engine serves exactly one load. The master salt is derived once via
    derive_master_salt() and mixed into every signature, so signatures from
    two loads of the same file never compare equal.
    """

    def __init__(
        self,
        source_id: str = DEFAULT_SOURCE_ID,
        algorithm: str = DEFAULT_HASH_ALGORITHM,
        salt_length: int = DEFAULT_SALT_LENGTH,
        format_version: str = FORMAT_VERSION,
    ):
        """
        Initialize the signature engine.

        Args:
            source_id: Identifier of the authoritative source
            algorithm: hashlib algorithm name (e.g. "sha256")
            salt_length: Number of random bytes mixed into the master salt
            format_version: Version tag mixed into the master salt

        Raises:
            ValueError: If the algorithm is unknown or salt_length < 1
        """
        if algorithm not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        if salt_length < 1:
            raise ValueError(f"salt_length must be positive, got {salt_length}")

        self.source_id = source_id
        self.algorithm = algorithm
        self.salt_length = salt_length
        self.format_version = format_version
        self._salt: Optional[str] = None

    @property
    def salt(self) -> Optional[str]:
        return self._salt

    def hash_payload(self, payload: Any) -> str:
        """Hash a JSON-compatible payload with the configured algorithm."""
        return hash_payload(payload, self.algorithm)

    def derive_master_salt(self, content_checksum: str) -> str:
        """
        Derive the salt shared by every signature of this load.

        Hashes the source id, content checksum, load timestamp and format
        version together with fresh random bytes.

        Args:
            content_checksum: Checksum of the source text

        Returns:
            Hex-encoded salt

        Raises:
            SaltAlreadyDerivedError: If this engine already holds a salt
        """
        if self._salt is not None:
            raise SaltAlreadyDerivedError("Master salt already derived for this load")

        salt_data = {
            "source": self.source_id,
            "checksum": content_checksum,
            "timestamp": time.time_ns(),
            "version": self.format_version,
        }
        digest = hashlib.new(self.algorithm)
        digest.update(canonical_json(salt_data).encode("utf-8"))
        digest.update(secrets.token_bytes(self.salt_length))

        self._salt = digest.hexdigest()
        return self._salt

    def _require_salt(self) -> str:
        if self._salt is None:
            raise SaltNotDerivedError("derive_master_salt() must be called before signing")
        return self._salt

    def entity_payload(self, entity: Entity) -> Dict[str, Any]:
        # Field names are sorted so declaration order does not matter
        return {
            "name": entity.name,
            "fields": sorted(entity.fields.keys()),
            "primary_key": entity.primary_key,
            "foreign_keys": sorted(entity.foreign_keys),
            "source": self.source_id,
            "salt": self._require_salt(),
        }

    def entity_signature(self, entity: Entity) -> str:
        """Signature over name, sorted field names, keys, source and salt."""
        return self.hash_payload(self.entity_payload(entity))

    def field_signature(self, entity_name: str, field: Field) -> str:
        """Signature over a field's identity, type and key role."""
        return self.hash_payload({
            "entity": entity_name,
            "field": field.name,
            "type": field.type.value,
            "constraint": field.constraint,
            "is_primary_key": field.is_primary_key,
            "is_foreign_key": field.is_foreign_key,
            "source": self.source_id,
            "salt": self._require_salt(),
        })

    def relationship_signature(self, relationship: Relationship) -> str:
        """Signature over a relationship's endpoints, name and type."""
        return self.hash_payload({
            "from": relationship.source,
            "to": relationship.target,
            "name": relationship.name,
            "type": relationship.type.value,
            "source": self.source_id,
            "salt": self._require_salt(),
        })

    def __repr__(self) -> str:
        salt = f"{self._salt[:16]}..." if self._salt else None
        return f"SignatureEngine(source={self.source_id}, algorithm={self.algorithm}, salt={salt})"
