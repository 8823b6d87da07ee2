"""Authority gateway - the public API over the authoritative entity model."""

import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from entity_authority.constants import (
    DEFAULT_HASH_ALGORITHM,
    DEFAULT_MAX_REJECTED,
    DEFAULT_SALT_LENGTH,
)
from entity_authority.errors import (
    GatewayStateError,
    NotInitializedError,
    ParseIncompleteError,
    SourceUnavailableError,
)
from entity_authority.models import SignatureEngine, generate_content_checksum
from entity_authority.models.provenance import utcnow
from entity_authority.parsing import DiagramParser, ParsedModel
from entity_authority.storage import ProvenanceStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class GatewayState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class AuditEvent:
    """
    Best-effort observability event.

    Attributes:
        event: "access", "initialized" or "initialization_failed"
        operation: Gateway method name (access events)
        params: Call parameters or lifecycle details
        caller: "module:function:line" of the calling frame
        timestamp: Event time
    """

    event: str
    operation: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    caller: Optional[str] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "event": self.event,
            "operation": self.operation,
            "params": self.params,
            "caller": self.caller,
            "timestamp": self.timestamp.isoformat(),
        }


AuditObserver = Callable[[AuditEvent], None]


class AuthorityGateway:
    """
    Single entry point to the authoritative entity model.

    Loads the source file once, owns the parsed graph and the provenance
    store, and answers read and validation queries over them:

    1. Entity, field and relationship lookups
    2. Entity, field and relationship provenance validation
    3. Batch fabrication detection
    4. Entity certificates

    Every query requires a successful initialize(). A gateway loads at most
    once; construct a new instance to reload or to retry after a failure.
    """

    def __init__(
        self,
        source_path: str,
        source_id: Optional[str] = None,
        algorithm: str = DEFAULT_HASH_ALGORITHM,
        salt_length: int = DEFAULT_SALT_LENGTH,
        enable_audit_logging: bool = True,
        audit_observer: Optional[AuditObserver] = None,
        max_rejected: int = DEFAULT_MAX_REJECTED,
        show_progress: bool = False
    ):
        """
        Configure the gateway. No I/O happens until initialize().

        Args:
            source_path: Path to the erDiagram model file
            source_id: Provenance source identifier (default: file name)
            algorithm: Hash algorithm for all signatures
            salt_length: Random bytes mixed into the master salt
            enable_audit_logging: Emit an access event for each read
            audit_observer: Callable receiving AuditEvents
            max_rejected: Capacity of the rejected-entities log
            show_progress: Show a progress bar while building the store
        """
        self.source_path = Path(source_path)
        self.source_id = source_id or self.source_path.name
        self.algorithm = algorithm
        self.salt_length = salt_length
        self.enable_audit_logging = enable_audit_logging
        self.audit_observer = audit_observer
        self.max_rejected = max_rejected
        self.show_progress = show_progress

        self._state = GatewayState.UNINITIALIZED
        self._init_lock = threading.Lock()
        self._model: Optional[ParsedModel] = None
        self._store: Optional[ProvenanceStore] = None
        self._checksum: Optional[str] = None
        self._loaded_at: Optional[datetime] = None

        logger.debug(f"AuthorityGateway configured (source={self.source_path})")

    @property
    def state(self) -> GatewayState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is GatewayState.READY

    # ============================================================================
    # Initialization
    # ============================================================================

    def initialize(self) -> bool:
        """
        Load, parse and sign the source model.

        Returns:
            True once the gateway is READY

        Raises:
            GatewayStateError: If already initialized, failed, or a load is
                in progress on another thread
            SourceUnavailableError: If the source cannot be read
            ParseIncompleteError: If the source declares no entities
        """
        if not self._init_lock.acquire(blocking=False):
            raise GatewayStateError("Gateway initialization already in progress")

        try:
            if self._state is not GatewayState.UNINITIALIZED:
                raise GatewayStateError(
                    f"Gateway cannot be initialized from state '{self._state.value}'; "
                    f"create a new gateway to reload"
                )
            self._state = GatewayState.INITIALIZING

            try:
                model, store, checksum = self._load()
            except Exception as e:
                self._state = GatewayState.FAILED
                logger.error(f"Gateway initialization failed: {e}")
                self._notify(AuditEvent(
                    event="initialization_failed",
                    params={"source": str(self.source_path), "error": str(e)},
                ))
                raise

            self._model = model
            self._store = store
            self._checksum = checksum
            self._loaded_at = utcnow()
            self._state = GatewayState.READY
        finally:
            self._init_lock.release()

        logger.info(
            f"Gateway ready: {model.entity_count} entities, "
            f"{model.relationship_count} relationships (checksum {checksum[:12]}...)"
        )
        self._notify(AuditEvent(
            event="initialized",
            params={
                "entity_count": model.entity_count,
                "relationship_count": model.relationship_count,
                "checksum": checksum,
            },
        ))
        return True

    def _load(self):
        """Run the load sequence without touching gateway state."""
        self._validate_source_file()
        content = self._read_source()
        checksum = generate_content_checksum(content)

        engine = SignatureEngine(
            source_id=self.source_id,
            algorithm=self.algorithm,
            salt_length=self.salt_length,
        )
        engine.derive_master_salt(checksum)

        model = DiagramParser(signature_engine=engine).parse(content)
        if model.entity_count == 0:
            raise ParseIncompleteError(f"No entities found in {self.source_path}")

        store = ProvenanceStore(max_rejected=self.max_rejected)
        try:
            store.build(model, engine, checksum, show_progress=self.show_progress)
        except Exception:
            store.close()
            raise

        return model, store, checksum

    def _validate_source_file(self):
        path = self.source_path
        if not path.exists():
            raise SourceUnavailableError(f"Model source not found: {path}")
        if not path.is_file():
            raise SourceUnavailableError(f"Model source is not a file: {path}")
        if not os.access(path, os.R_OK):
            raise SourceUnavailableError(f"Model source is not readable: {path}")

    def _read_source(self) -> str:
        try:
            return self.source_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceUnavailableError(f"Cannot read model source {self.source_path}: {e}") from e

    def _require_ready(self, operation: str, **params):
        if self._state is not GatewayState.READY:
            raise NotInitializedError(
                f"Gateway not initialized (state '{self._state.value}'). "
                f"Call initialize() before {operation}()."
            )
        if self.enable_audit_logging:
            self._notify(AuditEvent(
                event="access",
                operation=operation,
                params=params,
                caller=_caller_context(),
            ))

    def _notify(self, event: AuditEvent):
        logger.debug(f"Audit {event.event}: {event.operation or ''} {event.params}")
        if self.audit_observer is None:
            return
        try:
            self.audit_observer(event)
        except Exception as e:
            logger.warning(f"Audit observer failed on '{event.event}' event: {e}")

    # ============================================================================
    # Read API
    # ============================================================================

    def get_entity(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Get an entity definition with provenance.

        Args:
            name: Entity name

        Returns:
            Entity dict, or None if the entity is not in the model
        """
        self._require_ready("get_entity", entity=name)

        entity = self._model.entities.get(name)
        if entity is None:
            return None

        result = entity.to_dict()
        result["provenance"] = {
            "source": self.source_id,
            "verified": True,
            "timestamp": self._loaded_at.isoformat(),
        }
        return result

    def get_all_entity_names(self) -> List[str]:
        """Get all entity names in declaration order."""
        self._require_ready("get_all_entity_names")
        return list(self._model.entities.keys())

    def get_entity_field(self, entity_name: str, field_name: str) -> Optional[Dict[str, Any]]:
        """Get a field definition with provenance, or None if the entity or field does not exist."""
        self._require_ready("get_entity_field", entity=entity_name, field=field_name)

        entity = self._model.entities.get(entity_name)
        if entity is None:
            return None
        entity_field = entity.fields.get(field_name)
        if entity_field is None:
            return None

        result = entity_field.to_dict()
        result["provenance"] = {
            "source": self.source_id,
            "verified": True,
            "entity_signature": entity.signature,
        }
        return result

    def get_entity_relationships(self, entity_name: str) -> Optional[List[Dict[str, Any]]]:
        """Get every relationship with the entity at either end, or None for an unknown entity."""
        self._require_ready("get_entity_relationships", entity=entity_name)

        if entity_name not in self._model.entities:
            return None

        relationships = []
        for relationship in self._model.relationships.values():
            if relationship.involves(entity_name):
                result = relationship.to_dict()
                result["provenance"] = {
                    "source": self.source_id,
                    "verified": True,
                    "signature": relationship.signature,
                }
                relationships.append(result)
        return relationships

    # ============================================================================
    # Validation API
    # ============================================================================

    def validate_entity_provenance(self, name: str) -> Dict[str, Any]:
        """
        Validate that an entity comes from the authoritative model.

        Returns:
            Dict with valid, and signature/provenance or reason/code
        """
        self._require_ready("validate_entity_provenance", entity=name)
        return self._store.validate_entity(name).to_dict()

    def validate_entity_field(self, entity_name: str, field_name: str) -> Dict[str, Any]:
        """Validate that a field is declared on an authoritative entity."""
        self._require_ready("validate_entity_field", entity=entity_name, field=field_name)
        return self._store.validate_entity_field(entity_name, field_name).to_dict()

    def validate_relationship(self, key: str) -> Dict[str, Any]:
        """Validate a relationship key ("FROM-TO-label")."""
        self._require_ready("validate_relationship", relationship=key)
        return self._store.validate_relationship(key).to_dict()

    def detect_fabricated_entities(self, names: Iterable[str]) -> Dict[str, Any]:
        """
        Split claimed entity names into valid and fabricated.

        Callers must not treat any name in "fabricated" as model data. A bare
        string is checked as a single name.
        """
        if isinstance(names, str):
            names = [names]
        names = list(names)
        self._require_ready("detect_fabricated_entities", entity_count=len(names))
        return self._store.detect_fabricated_entities(names).to_dict()

    def generate_entity_certificate(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Issue a certificate for a valid entity.

        Returns:
            Certificate dict, or None if the entity does not validate
        """
        self._require_ready("generate_entity_certificate", entity=name)
        certificate = self._store.generate_entity_certificate(name)
        return certificate.to_dict() if certificate else None

    def verify_certificate(self, certificate: Optional[Dict[str, Any]]) -> bool:
        """Check a certificate issued by this gateway. Malformed input verifies as False."""
        entity = certificate.get("entity") if isinstance(certificate, dict) else None
        self._require_ready("verify_certificate", entity=entity)
        return self._store.verify_certificate(certificate)

    def get_validation_stats(self) -> Dict[str, Any]:
        self._require_ready("get_validation_stats")
        return self._store.get_validation_stats()

    def get_provenance_summary(self) -> Dict[str, Any]:
        self._require_ready("get_provenance_summary")
        return self._store.get_summary()

    def get_health_status(self) -> Dict[str, Any]:
        """
        Get gateway health information.

        Returns:
            Dict with initialized, state, counts, checksum, loaded_at and
            uptime in seconds
        """
        self._require_ready("get_health_status")
        return {
            "initialized": True,
            "state": self._state.value,
            "entity_count": self._model.entity_count,
            "relationship_count": self._model.relationship_count,
            "checksum": self._checksum,
            "loaded_at": self._loaded_at.isoformat(),
            "uptime": (utcnow() - self._loaded_at).total_seconds(),
        }

    # ============================================================================
    # Utility methods
    # ============================================================================

    def close(self):
        """Release the provenance store. Every read API fails afterwards."""
        if self._store is not None:
            self._store.close()
        self._store = None
        self._model = None
        self._state = GatewayState.CLOSED
        logger.debug("AuthorityGateway closed")


def _caller_context() -> str:
    """Describe the frame that called into the gateway."""
    # 0: this function, 1: _require_ready, 2: public method, 3: caller
    try:
        frame = sys._getframe(3)
    except ValueError:
        return "unknown"
    return f"{frame.f_globals.get('__name__', '?')}:{frame.f_code.co_name}:{frame.f_lineno}"
