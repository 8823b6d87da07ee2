"""Exception types and structured validation failure codes."""

from enum import Enum


class EntityAuthorityError(Exception):
    """Base class for all entity authority errors."""


class SourceUnavailableError(EntityAuthorityError):
    """The model source file is missing, not a regular file, or unreadable."""


class ParseIncompleteError(EntityAuthorityError):
    """Parsing the model source produced no entities."""


class NotInitializedError(EntityAuthorityError):
    """A read operation was called before the gateway reached READY."""


class GatewayStateError(EntityAuthorityError):
    """initialize() was called on a gateway that is not UNINITIALIZED."""


class SignatureEngineError(EntityAuthorityError):
    """Base class for signature engine misuse."""


class SaltNotDerivedError(SignatureEngineError):
    """A signature was requested before the master salt was derived."""


class SaltAlreadyDerivedError(SignatureEngineError):
    """The master salt may only be derived once per engine."""


class ValidationFailure(str, Enum):
    """
    Reasons a provenance validation can fail.

    These are returned inside validation results, never raised.
    """

    NOT_FOUND = "not_found"
    FIELD_NOT_FOUND = "field_not_found"
    PARENT_INVALID = "parent_invalid"
    SIGNATURE_MISSING = "signature_missing"
    SIGNATURE_MISMATCH = "signature_mismatch"
    RELATIONSHIP_NOT_FOUND = "relationship_not_found"
