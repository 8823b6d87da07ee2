"""Line-oriented parser for the constrained Mermaid erDiagram notation."""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple

from entity_authority.models import (
    Entity,
    Field,
    FieldType,
    Relationship,
    RelationshipType,
    SignatureEngine,
)

logger = logging.getLogger(__name__)


class ParserState(Enum):
    OUTSIDE = "outside"
    INSIDE_ENTITY = "inside_entity"


@dataclass
class ParsedModel:
    """
    Graph produced by one parse.

    Attributes:
        entities: Entity name -> Entity, in declaration order
        relationships: Relationship key -> Relationship, in declaration order
        skipped_lines: (line number, text) of lines no matcher accepted
    """

    entities: Dict[str, Entity] = field(default_factory=dict)
    relationships: Dict[str, Relationship] = field(default_factory=dict)
    skipped_lines: List[Tuple[int, str]] = field(default_factory=list)

    @property
    def entity_count(self) -> int:
        return len(self.entities)

    @property
    def relationship_count(self) -> int:
        return len(self.relationships)


@dataclass
class _ParseContext:
    model: ParsedModel
    state: ParserState = ParserState.OUTSIDE
    current: Optional[Entity] = None


class DiagramParser:
    """
    Parser turning erDiagram text into an entity/relationship graph.

    Each content line goes through three matchers in a fixed order (entity
    block, field, relationship). The first matcher that accepts a line
    consumes it; lines no matcher accepts are recorded and skipped, never
    raised. Only one entity block can be open at a time.
    """

    DECLARATION = "erDiagram"
    DIRECTION_PREFIX = "direction"
    COMMENT_PREFIX = "%%"

    # Tokens that mark a line as a relationship rather than a block opener
    CONNECTOR_TOKENS = ("||--", "}|--")

    DEFAULT_PATTERNS: Dict[str, str] = {
        # ACCOUNT {
        "entity_open": r"^([A-Z_]+)\s*\{",

        # int AccountID PK "Primary identifier"
        "field": r'^(\w+)\s+(\w+)(?:\s+(PK|FK)\b)?(?:\s+"([^"]*)")?',

        # ACCOUNT ||--o{ CONTACT : "has"
        "relationship": (
            r'^([A-Z_]+)\s*((?:\|\||\}\|)--[|o{}]+)\s*([A-Z_]+)'
            r'(?:\s*:\s*(?:"([^"]*)"|(\S.*)))?'
        ),
    }

    def __init__(self, signature_engine: Optional[SignatureEngine] = None):
        """
        Initialize the diagram parser.

        Args:
            signature_engine: Engine with a derived salt. When given, fields
                and relationships are signed as they are parsed and entities
                when their block closes.
        """
        self.signature_engine = signature_engine
        self.patterns: Dict[str, Pattern] = {
            name: re.compile(pattern)
            for name, pattern in self.DEFAULT_PATTERNS.items()
        }

    def parse(self, content: str) -> ParsedModel:
        """
        Parse the full text of a model file.

        Args:
            content: erDiagram source text

        Returns:
            ParsedModel with entities and relationships
        """
        ctx = _ParseContext(model=ParsedModel())

        for line_number, raw_line in enumerate(content.splitlines(), start=1):
            line = raw_line.strip()
            if not line or self._is_directive(line):
                continue

            consumed = (
                self._match_entity_block(ctx, line)
                or self._match_field(ctx, line)
                or self._match_relationship(ctx, line)
            )
            if not consumed:
                ctx.model.skipped_lines.append((line_number, line))

        if ctx.state is ParserState.INSIDE_ENTITY:
            logger.warning(f"Entity block '{ctx.current.name}' was not closed before end of input")
            self._close_entity(ctx)

        if ctx.model.skipped_lines:
            logger.debug(f"Skipped {len(ctx.model.skipped_lines)} unrecognized lines")

        logger.info(
            f"Parsed {ctx.model.entity_count} entities and "
            f"{ctx.model.relationship_count} relationships"
        )
        return ctx.model

    def _is_directive(self, line: str) -> bool:
        return (
            line == self.DECLARATION
            or line.startswith(self.DIRECTION_PREFIX)
            or line.startswith(self.COMMENT_PREFIX)
        )

    # ============================================================================
    # Matchers (each returns True when it consumed the line)
    # ============================================================================

    def _match_entity_block(self, ctx: _ParseContext, line: str) -> bool:
        if line == "}":
            if ctx.state is ParserState.INSIDE_ENTITY:
                self._close_entity(ctx)
                return True
            return False

        if "{" not in line or any(token in line for token in ("||", "}|")):
            return False

        match = self.patterns["entity_open"].match(line)
        if not match:
            return False

        if ctx.state is ParserState.INSIDE_ENTITY:
            logger.warning(
                f"Entity '{match.group(1)}' opened while '{ctx.current.name}' "
                f"was still open; closing '{ctx.current.name}'"
            )
            self._close_entity(ctx)

        entity = Entity(name=match.group(1))
        ctx.model.entities[entity.name] = entity
        ctx.current = entity
        ctx.state = ParserState.INSIDE_ENTITY
        return True

    def _match_field(self, ctx: _ParseContext, line: str) -> bool:
        if ctx.state is not ParserState.INSIDE_ENTITY:
            return False

        match = self.patterns["field"].match(line)
        if not match:
            return False

        type_token, field_name, constraint, description = match.groups()
        new_field = Field(
            name=field_name,
            type=FieldType.from_diagram_type(type_token),
            constraint=constraint,
            description=description or "",
        )
        if self.signature_engine is not None:
            new_field.signature = self.signature_engine.field_signature(ctx.current.name, new_field)

        ctx.current.add_field(new_field)
        return True

    def _match_relationship(self, ctx: _ParseContext, line: str) -> bool:
        if not any(token in line for token in self.CONNECTOR_TOKENS):
            return False

        match = self.patterns["relationship"].match(line)
        if not match:
            return False

        source, connector, target, quoted_label, bare_label = match.groups()
        label = quoted_label if quoted_label is not None else bare_label
        relationship = Relationship(
            source=source,
            target=target,
            type=RelationshipType.from_connector(connector),
            label=label.strip() if label else None,
        )
        if self.signature_engine is not None:
            relationship.signature = self.signature_engine.relationship_signature(relationship)

        ctx.model.relationships[relationship.key] = relationship
        self._link_endpoints(ctx.model.entities, relationship)
        return True

    # ============================================================================
    # Graph updates
    # ============================================================================

    def _close_entity(self, ctx: _ParseContext):
        entity = ctx.current
        if self.signature_engine is not None:
            entity.signature = self.signature_engine.entity_signature(entity)
        ctx.current = None
        ctx.state = ParserState.OUTSIDE

    @staticmethod
    def _link_endpoints(entities: Dict[str, Entity], relationship: Relationship):
        source = entities.get(relationship.source)
        target = entities.get(relationship.target)
        if source is None or target is None:
            return

        if relationship.type is RelationshipType.ONE_TO_MANY:
            source.children.add(target.name)
            target.parents.add(source.name)
        else:
            source.related.add(target.name)
            target.related.add(source.name)
