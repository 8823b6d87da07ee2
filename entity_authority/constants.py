"""Shared constants for the entity model authority."""

from datetime import timedelta

# Identifier recorded as the provenance source when none is configured
DEFAULT_SOURCE_ID = "BUSM-master.mmd"

# Version mixed into the master salt
FORMAT_VERSION = "1.0.0"

DEFAULT_HASH_ALGORITHM = "sha256"
DEFAULT_SALT_LENGTH = 32

CERTIFICATE_ISSUER = "Entity Model Authority Gateway"
CERTIFICATE_VALIDITY = timedelta(hours=24)

# Reserved provenance key for the load metadata record
METADATA_KEY = "__MODEL_METADATA__"

DEFAULT_MAX_REJECTED = 1000
