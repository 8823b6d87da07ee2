"""Entity model authority and provenance validation."""

from .gateway import AuthorityGateway, AuditEvent, GatewayState
from .errors import (
    EntityAuthorityError,
    SourceUnavailableError,
    ParseIncompleteError,
    NotInitializedError,
    GatewayStateError,
    SignatureEngineError,
    SaltNotDerivedError,
    SaltAlreadyDerivedError,
    ValidationFailure,
)

__version__ = "0.1.0"

__all__ = [
    "AuthorityGateway",
    "AuditEvent",
    "GatewayState",
    "EntityAuthorityError",
    "SourceUnavailableError",
    "ParseIncompleteError",
    "NotInitializedError",
    "GatewayStateError",
    "SignatureEngineError",
    "SaltNotDerivedError",
    "SaltAlreadyDerivedError",
    "ValidationFailure",
]
