"""Provenance storage module."""

from .provenance_store import ProvenanceStore

__all__ = [
    "ProvenanceStore",
]
