"""ER diagram parsing module."""

from .diagram_parser import DiagramParser, ParsedModel, ParserState

__all__ = [
    "DiagramParser",
    "ParsedModel",
    "ParserState",
]
