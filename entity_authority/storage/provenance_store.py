"""Provenance storage backend using an in-memory DuckDB database."""

import json
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Dict, Any, Optional, Iterable, Union

import duckdb
from tqdm import tqdm

from entity_authority.constants import (
    CERTIFICATE_ISSUER,
    CERTIFICATE_VALIDITY,
    DEFAULT_MAX_REJECTED,
    METADATA_KEY,
)
from entity_authority.errors import NotInitializedError, ValidationFailure
from entity_authority.models import (
    EntityCertificate,
    FabricationReport,
    ProvenanceRecord,
    SignatureEngine,
    ValidationResult,
    hash_payload,
)
from entity_authority.models.provenance import utcnow
from entity_authority.parsing import ParsedModel

logger = logging.getLogger(__name__)


class ProvenanceStore:
    """
    Authoritative record of which entities, fields and relationships exist.

    Holds one provenance record per entity plus a metadata record for the
    load, and separate signature tables for entities, fields and
    relationships. Validation cross-checks the signature kept on each record
    against the entity signature table, so a signature re-derived without
    updating its record is reported as a mismatch.

    Validation failures are returned as ValidationResult objects, never
    raised, so that batch checks can run to completion.
    """

    def __init__(self, max_rejected: int = DEFAULT_MAX_REJECTED):
        """
        Initialize DuckDB connection and create schema.

        Args:
            max_rejected: Capacity of the rejected-entities log
        """
        self.conn = duckdb.connect(":memory:")
        self._lock = threading.RLock()
        self._engine: Optional[SignatureEngine] = None
        self._metadata: Optional[Dict[str, Any]] = None
        self.max_rejected = max_rejected
        self._reset_stats()
        self._create_schema()

    def _create_schema(self):
        """Create database schema with all tables and indices."""

        # One row per entity
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS provenance_records (
                name VARCHAR PRIMARY KEY,
                source VARCHAR NOT NULL,
                field_count INTEGER NOT NULL,
                primary_key VARCHAR,
                foreign_keys_json VARCHAR NOT NULL,
                signature VARCHAR,
                verified BOOLEAN NOT NULL,
                created_at VARCHAR NOT NULL
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS entity_signatures (
                entity VARCHAR PRIMARY KEY,
                signature VARCHAR NOT NULL,
                algorithm VARCHAR NOT NULL
            )
        """)

        # Keyed by "ENTITY.field"
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS field_signatures (
                field_key VARCHAR PRIMARY KEY,
                entity VARCHAR NOT NULL,
                field_name VARCHAR NOT NULL,
                signature VARCHAR NOT NULL
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS relationship_signatures (
                relationship_key VARCHAR PRIMARY KEY,
                source VARCHAR NOT NULL,
                target VARCHAR NOT NULL,
                signature VARCHAR NOT NULL
            )
        """)

        indices = [
            "CREATE INDEX IF NOT EXISTS idx_field_sig_entity ON field_signatures(entity)",
            "CREATE INDEX IF NOT EXISTS idx_rel_sig_source ON relationship_signatures(source)",
            "CREATE INDEX IF NOT EXISTS idx_rel_sig_target ON relationship_signatures(target)",
        ]

        for idx_sql in indices:
            self.conn.execute(idx_sql)

        logger.debug("Provenance schema created")

    def _reset_stats(self):
        self._stats = {
            "total_validations": 0,
            "successful_validations": 0,
            "failed_validations": 0,
        }
        self._rejected = deque(maxlen=self.max_rejected)

    @property
    def is_built(self) -> bool:
        return self._engine is not None

    # ============================================================================
    # Build
    # ============================================================================

    def build(
        self,
        model: ParsedModel,
        engine: SignatureEngine,
        checksum: str,
        loaded_at: Optional[datetime] = None,
        show_progress: bool = False
    ):
        """
        Populate the store from a parsed model.

        Rebuilding replaces every record and resets the statistics.

        Args:
            model: Parsed entity/relationship graph
            engine: Signature engine holding this load's salt
            checksum: Checksum of the source text
            loaded_at: Load time (default: now)
            show_progress: Show a progress bar while signing entities
        """
        loaded_at = loaded_at or utcnow()

        with self._lock:
            for table in (
                "provenance_records",
                "entity_signatures",
                "field_signatures",
                "relationship_signatures",
            ):
                self.conn.execute(f"DELETE FROM {table}")
            self._reset_stats()

            metadata = {
                "key": METADATA_KEY,
                "checksum": checksum,
                "loaded_at": loaded_at.isoformat(),
                "source": engine.source_id,
                "entity_count": model.entity_count,
                "relationship_count": model.relationship_count,
                "master_salt": f"{engine.salt[:16]}..." if engine.salt else None,
            }
            self._metadata = metadata

            for name, entity in tqdm(
                model.entities.items(),
                desc="Signing entities",
                total=model.entity_count,
                disable=not show_progress
            ):
                record = ProvenanceRecord(
                    name=name,
                    source=engine.source_id,
                    field_count=len(entity.fields),
                    primary_key=entity.primary_key,
                    foreign_keys=sorted(entity.foreign_keys),
                )
                self._insert_record(record)

                signature = engine.entity_signature(entity)
                self.conn.execute(
                    "INSERT INTO entity_signatures (entity, signature, algorithm) VALUES (?, ?, ?)",
                    [name, signature, engine.algorithm]
                )
                self.conn.execute(
                    "UPDATE provenance_records SET signature = ? WHERE name = ?",
                    [signature, name]
                )

                for field_name, entity_field in entity.fields.items():
                    self.conn.execute("""
                        INSERT INTO field_signatures (field_key, entity, field_name, signature)
                        VALUES (?, ?, ?, ?)
                    """, [
                        f"{name}.{field_name}",
                        name,
                        field_name,
                        engine.field_signature(name, entity_field)
                    ])

            for key, relationship in model.relationships.items():
                self.conn.execute("""
                    INSERT INTO relationship_signatures (relationship_key, source, target, signature)
                    VALUES (?, ?, ?, ?)
                """, [
                    key,
                    relationship.source,
                    relationship.target,
                    engine.relationship_signature(relationship)
                ])

            self._engine = engine

        logger.info(
            f"Provenance store built: {model.entity_count} entity records, "
            f"{model.relationship_count} relationship signatures"
        )

    def _insert_record(self, record: ProvenanceRecord):
        self.conn.execute("""
            INSERT INTO provenance_records
            (name, source, field_count, primary_key, foreign_keys_json, signature, verified, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            record.name,
            record.source,
            record.field_count,
            record.primary_key,
            json.dumps(record.foreign_keys),
            record.signature,
            record.verified,
            record.created_at.isoformat()
        ])

    def _require_built(self):
        if not self.is_built:
            raise NotInitializedError("Provenance store has not been built. Call build() first.")

    # ============================================================================
    # Lookups
    # ============================================================================

    def get_record(self, name: str) -> Optional[ProvenanceRecord]:
        """Get the provenance record for an entity."""
        with self._lock:
            result = self.conn.execute("""
                SELECT name, source, field_count, primary_key, foreign_keys_json,
                       signature, verified, created_at
                FROM provenance_records
                WHERE name = ?
            """, [name]).fetchone()

        if not result:
            return None

        return ProvenanceRecord(
            name=result[0],
            source=result[1],
            field_count=result[2],
            primary_key=result[3],
            foreign_keys=json.loads(result[4]),
            signature=result[5],
            verified=result[6],
            created_at=datetime.fromisoformat(result[7])
        )

    def get_entity_signature(self, name: str) -> Optional[str]:
        return self._fetch_signature(
            "SELECT signature FROM entity_signatures WHERE entity = ?", name
        )

    def get_field_signature(self, entity_name: str, field_name: str) -> Optional[str]:
        return self._fetch_signature(
            "SELECT signature FROM field_signatures WHERE field_key = ?",
            f"{entity_name}.{field_name}"
        )

    def get_relationship_signature(self, key: str) -> Optional[str]:
        return self._fetch_signature(
            "SELECT signature FROM relationship_signatures WHERE relationship_key = ?", key
        )

    def _fetch_signature(self, query: str, key: str) -> Optional[str]:
        with self._lock:
            result = self.conn.execute(query, [key]).fetchone()
        return result[0] if result else None

    # ============================================================================
    # Validation
    # ============================================================================

    def validate_entity(self, name: str) -> ValidationResult:
        """
        Validate that an entity name is backed by the source model.

        Failure codes, in the order they are checked: NOT_FOUND,
        SIGNATURE_MISSING, SIGNATURE_MISMATCH. Every call is counted; every
        failure is appended to the rejected-entities log.

        Args:
            name: Claimed entity name

        Returns:
            ValidationResult
        """
        self._require_built()

        with self._lock:
            result = self._check_entity(name)
            self._stats["total_validations"] += 1
            if result.valid:
                self._stats["successful_validations"] += 1
            else:
                self._stats["failed_validations"] += 1
                self._rejected.append({
                    "entity": name,
                    "reason": result.reason,
                    "code": result.code.value,
                    "timestamp": result.validated_at.isoformat(),
                })

        return result

    def _check_entity(self, name: str) -> ValidationResult:
        source = self._engine.source_id

        record = self.get_record(name)
        if record is None:
            return ValidationResult.failure(
                name,
                ValidationFailure.NOT_FOUND,
                f"Entity '{name}' not found in {source}"
            )

        signature = self.get_entity_signature(name)
        if signature is None:
            return ValidationResult.failure(
                name,
                ValidationFailure.SIGNATURE_MISSING,
                f"No signature found for entity '{name}'"
            )

        if signature != record.signature:
            logger.error(f"Signature mismatch for entity '{name}'")
            return ValidationResult.failure(
                name,
                ValidationFailure.SIGNATURE_MISMATCH,
                f"Signature mismatch for entity '{name}'"
            )

        return ValidationResult(
            entity=name,
            valid=True,
            signature=signature,
            provenance={
                "source": record.source,
                "verified": record.verified,
                "field_count": record.field_count,
                "primary_key": record.primary_key,
                "foreign_keys": list(record.foreign_keys),
                "created_at": record.created_at.isoformat(),
            }
        )

    def validate_entity_field(self, entity_name: str, field_name: str) -> ValidationResult:
        """Validate that a field is declared on a valid entity (PARENT_INVALID or FIELD_NOT_FOUND)."""
        entity_result = self.validate_entity(entity_name)
        if not entity_result.valid:
            return ValidationResult.failure(
                entity_name,
                ValidationFailure.PARENT_INVALID,
                f"Parent entity invalid: {entity_result.reason}",
                field=field_name
            )

        signature = self.get_field_signature(entity_name, field_name)
        if signature is None:
            return ValidationResult.failure(
                entity_name,
                ValidationFailure.FIELD_NOT_FOUND,
                f"Field '{field_name}' not found in entity '{entity_name}'",
                field=field_name
            )

        return ValidationResult(
            entity=entity_name,
            valid=True,
            signature=signature,
            field=field_name
        )

    def validate_relationship(self, key: str) -> ValidationResult:
        """Validate that a relationship key ("FROM-TO-label") is declared in the model."""
        self._require_built()

        with self._lock:
            result = self.conn.execute("""
                SELECT source, signature FROM relationship_signatures
                WHERE relationship_key = ?
            """, [key]).fetchone()

        if not result:
            return ValidationResult.failure(
                None,
                ValidationFailure.RELATIONSHIP_NOT_FOUND,
                f"Relationship '{key}' not found in {self._engine.source_id}",
                relationship=key
            )

        return ValidationResult(
            entity=result[0],
            valid=True,
            signature=result[1],
            relationship=key
        )

    def detect_fabricated_entities(self, names: Iterable[str]) -> FabricationReport:
        """
        Partition claimed entity names into valid and fabricated.

        Every name is validated; a failure never aborts the batch.

        Args:
            names: Claimed entity names

        Returns:
            FabricationReport
        """
        report = FabricationReport()

        for name in names:
            result = self.validate_entity(name)
            if result.valid:
                report.valid.append({"entity": name, "signature": result.signature})
            else:
                report.fabricated.append({"entity": name, "reason": result.reason})

        if report.fabricated:
            logger.warning(
                f"Detected {len(report.fabricated)} fabricated entities: {report.fabricated_names}"
            )

        return report

    # ============================================================================
    # Certificates
    # ============================================================================

    def generate_entity_certificate(self, name: str) -> Optional[EntityCertificate]:
        """Issue a 24-hour certificate for a valid entity, or None if it does not validate."""
        result = self.validate_entity(name)
        if not result.valid:
            return None

        issued_at = utcnow()
        certificate = EntityCertificate(
            entity=name,
            issued_by=CERTIFICATE_ISSUER,
            issued_at=issued_at,
            valid_until=issued_at + CERTIFICATE_VALIDITY,
            signature=result.signature,
            provenance=result.provenance,
            algorithm=self._engine.algorithm,
        )
        certificate.certificate_hash = self._engine.hash_payload(certificate.body())
        return certificate

    def verify_certificate(
        self,
        certificate: Union[EntityCertificate, Dict[str, Any], None],
        now: Optional[datetime] = None
    ) -> bool:
        """
        Check a certificate's hash, validity window and entity signature.

        Anything that is not a well-formed certificate verifies as False.

        Args:
            certificate: Certificate or its dictionary form
            now: Reference time (default: now)

        Returns:
            True if the certificate is intact, current, and matches this load
        """
        self._require_built()

        try:
            if isinstance(certificate, dict):
                certificate = EntityCertificate.from_dict(certificate)
            if not isinstance(certificate, EntityCertificate) or not certificate.certificate_hash:
                return False
            if hash_payload(certificate.body(), certificate.algorithm) != certificate.certificate_hash:
                return False
            if not certificate.is_current(now):
                return False
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed certificate: {e}")
            return False

        return self.get_entity_signature(certificate.entity) == certificate.signature

    # ============================================================================
    # Statistics
    # ============================================================================

    def get_validation_stats(self) -> Dict[str, Any]:
        """Get running validation counters, rejected entities and success rate (percent)."""
        with self._lock:
            stats: Dict[str, Any] = dict(self._stats)
            stats["rejected_entities"] = list(self._rejected)

        total = stats["total_validations"]
        stats["success_rate"] = (stats["successful_validations"] / total) * 100 if total > 0 else 0.0
        return stats

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the store contents."""
        with self._lock:
            counts = self.conn.execute("""
                SELECT
                    (SELECT COUNT(*) FROM provenance_records),
                    (SELECT COUNT(*) FROM entity_signatures),
                    (SELECT COUNT(*) FROM field_signatures),
                    (SELECT COUNT(*) FROM relationship_signatures)
            """).fetchone()
            metadata = dict(self._metadata) if self._metadata else None

        return {
            "is_built": self.is_built,
            "total_entries": counts[0],
            "entity_signatures": counts[1],
            "field_signatures": counts[2],
            "relationship_signatures": counts[3],
            "master_salt": f"{self._engine.salt[:16]}..." if self.is_built else None,
            "metadata": metadata,
        }

    # ============================================================================
    # Utility methods
    # ============================================================================

    def close(self):
        """Close the database connection."""
        self.conn.close()
        logger.debug("ProvenanceStore connection closed")

    def __del__(self):
        """Cleanup: close connection."""
        try:
            self.close()
        except Exception:
            pass
