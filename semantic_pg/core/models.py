"""
Data model for schema retrieval, SQL synthesis and execution outcomes.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class SemanticSQLError(Exception):
    """Base class for errors raised at external-service boundaries."""


class EmbeddingError(SemanticSQLError):
    """The embedding service was unavailable or returned an error."""


class GenerationError(SemanticSQLError):
    """The completion service was unavailable or returned an error."""


class EntityKind(Enum):
    """Kinds of schema entities used as retrieval units."""
    TABLE = "table"
    COLUMN = "column"


@dataclass
class SchemaEntity:
    """
    A table or column descriptor with its embedding.

    Attributes:
        kind: Table or column
        table_name: Owning table name (the table itself for table entities)
        column_name: Column name, columns only
        data_type: Declared data type, columns only
        description: Free-text description
        is_primary_key: Whether the column is part of the primary key
        is_foreign_key: Whether the column references another table
        foreign_table: Referenced table for foreign keys
        foreign_column: Referenced column for foreign keys
        embedding: Stored embedding vector, if populated
        id: Row id in the metadata catalog
    """
    kind: EntityKind
    table_name: str
    column_name: Optional[str] = None
    data_type: Optional[str] = None
    description: str = ""
    is_primary_key: bool = False
    is_foreign_key: bool = False
    foreign_table: Optional[str] = None
    foreign_column: Optional[str] = None
    embedding: Optional[List[float]] = field(default=None, repr=False)
    id: Optional[Any] = None

    def __post_init__(self):
        if not self.table_name:
            raise ValueError("Schema entity requires a table name")
        if self.kind == EntityKind.COLUMN and not self.column_name:
            raise ValueError(f"Column entity for {self.table_name} requires a column name")
        if (self.foreign_table is None) != (self.foreign_column is None):
            raise ValueError(
                f"Foreign key on {self.qualified_name} must carry both target table and column"
            )
        if self.foreign_table is not None:
            self.is_foreign_key = True
        self.description = self.description or ""

    @property
    def qualified_name(self) -> str:
        """Dotted name, e.g. ``orders.customer_id``."""
        if self.column_name:
            return f"{self.table_name}.{self.column_name}"
        return self.table_name

    @property
    def foreign_reference(self) -> Optional[str]:
        """Dotted target of a foreign key, if any."""
        if self.foreign_table is None:
            return None
        return f"{self.foreign_table}.{self.foreign_column}"

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data = {
            'kind': self.kind.value,
            'table_name': self.table_name,
            'column_name': self.column_name,
            'data_type': self.data_type,
            'description': self.description,
            'is_primary_key': self.is_primary_key,
            'is_foreign_key': self.is_foreign_key,
            'foreign_table': self.foreign_table,
            'foreign_column': self.foreign_column,
        }
        if include_embedding:
            data['embedding'] = list(self.embedding) if self.embedding is not None else None
        return data


@dataclass
class RankedEntity:
    """A schema entity paired with its transient similarity score."""
    entity: SchemaEntity
    score: float
    rank: int

    def to_dict(self) -> Dict[str, Any]:
        data = self.entity.to_dict()
        data['similarity'] = round(float(self.score), 6)
        data['rank'] = self.rank
        return data


@dataclass
class RetrievalResult:
    """
    Ordered ranking output, descending by score, at most ``k`` entries.
    """
    kind: EntityKind
    entities: List[RankedEntity] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entities)

    def __iter__(self):
        return iter(self.entities)

    def __bool__(self) -> bool:
        return bool(self.entities)

    @property
    def scores(self) -> List[float]:
        return [ranked.score for ranked in self.entities]

    def to_list(self) -> List[Dict[str, Any]]:
        return [ranked.to_dict() for ranked in self.entities]

    @classmethod
    def empty(cls, kind: EntityKind) -> 'RetrievalResult':
        return cls(kind=kind, entities=[])


class SchemaCatalog:
    """
    Read-only set of table and column descriptors for one request.

    Columns whose table is not present in the catalog are dropped so that
    every column resolves to a known table.
    """

    def __init__(self, tables: List[SchemaEntity], columns: List[SchemaEntity]):
        self.tables: List[SchemaEntity] = []
        self._tables_by_name: Dict[str, SchemaEntity] = {}
        for table in tables:
            if table.kind != EntityKind.TABLE:
                raise ValueError(f"Expected table entity, got {table.kind.value}: {table.qualified_name}")
            if table.table_name in self._tables_by_name:
                logger.warning(f"Duplicate table descriptor ignored: {table.table_name}")
                continue
            self._tables_by_name[table.table_name] = table
            self.tables.append(table)

        self.columns: List[SchemaEntity] = []
        for column in columns:
            if column.kind != EntityKind.COLUMN:
                raise ValueError(f"Expected column entity, got {column.kind.value}: {column.qualified_name}")
            if column.table_name not in self._tables_by_name:
                logger.warning(f"Dropping column {column.qualified_name}: table not in catalog")
                continue
            self.columns.append(column)

    def get_table(self, table_name: str) -> Optional[SchemaEntity]:
        return self._tables_by_name.get(table_name)

    def columns_for(self, table_name: str) -> List[SchemaEntity]:
        return [c for c in self.columns if c.table_name == table_name]

    def entities(self, kind: EntityKind) -> List[SchemaEntity]:
        return self.tables if kind == EntityKind.TABLE else self.columns

    def __len__(self) -> int:
        return len(self.tables) + len(self.columns)


@dataclass
class ColumnContext:
    """Column entry as presented to the synthesizer."""
    name: str
    data_type: Optional[str]
    description: str
    is_primary_key: bool = False
    is_foreign_key: bool = False
    foreign_table: Optional[str] = None
    foreign_column: Optional[str] = None
    score: Optional[float] = None

    def annotations(self) -> List[str]:
        notes = []
        if self.is_primary_key:
            notes.append("PRIMARY KEY")
        if self.is_foreign_key and self.foreign_table:
            notes.append(f"FOREIGN KEY -> {self.foreign_table}.{self.foreign_column}")
        return notes


@dataclass
class TableContext:
    """A relevant table grouped with its relevant columns."""
    name: str
    description: str
    columns: List[ColumnContext] = field(default_factory=list)

    def relationships(self) -> List[Tuple[str, str]]:
        """(source, target) pairs for the foreign keys in this group."""
        return [
            (f"{self.name}.{c.name}", f"{c.foreign_table}.{c.foreign_column}")
            for c in self.columns
            if c.is_foreign_key and c.foreign_table
        ]


@dataclass
class SchemaContext:
    """Bounded, ranking-ordered schema context for SQL synthesis."""
    tables: List[TableContext] = field(default_factory=list)
    truncated: bool = False

    def __bool__(self) -> bool:
        return any(table.columns for table in self.tables)

    @property
    def table_names(self) -> List[str]:
        return [table.name for table in self.tables]

    def render(self) -> str:
        """
        Serialize the context as prompt text.

        Returns:
            One block per table, columns indented beneath it, followed by
            the foreign-key relationships found in the context.
        """
        blocks = []
        relationships = []
        for table in self.tables:
            header = f"Table: {table.name}"
            if table.description:
                header += f"\nDescription: {table.description}"
            lines = [header, "Columns:"]
            for column in table.columns:
                line = f"  - {column.name}"
                if column.data_type:
                    line += f" ({column.data_type})"
                notes = column.annotations()
                if notes:
                    line += f" [{', '.join(notes)}]"
                if column.description:
                    line += f": {column.description}"
                lines.append(line)
            blocks.append("\n".join(lines))
            relationships.extend(table.relationships())

        text = "\n\n".join(blocks)
        if relationships:
            rel_lines = [f"  - {source} -> {target}" for source, target in relationships]
            text += "\n\nRelationships:\n" + "\n".join(rel_lines)
        return text


@dataclass(frozen=True)
class SynthesisRequest:
    """Immutable input to the language-model call."""
    user_query: str
    context: SchemaContext
    schema_text: str


@dataclass
class SQLCandidate:
    """SQL text extracted from a completion, not yet validated."""
    sql: str
    raw_response: str = ""
    model: Optional[str] = None
    usage: Optional[Dict[str, int]] = None


@dataclass
class SafetyVerdict:
    """Result of the safety gate: approved statement or rejection reason."""
    approved: bool
    statement: str
    reason: Optional[str] = None

    @classmethod
    def approve(cls, statement: str) -> 'SafetyVerdict':
        return cls(approved=True, statement=statement)

    @classmethod
    def reject(cls, statement: str, reason: str) -> 'SafetyVerdict':
        return cls(approved=False, statement=statement, reason=reason)


@dataclass
class QueryRows:
    """Rows returned by a successful execution."""
    rows: List[Dict[str, Any]]
    columns: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


# Execution outcomes. Exactly one is produced per request.

@dataclass
class Success:
    statement: str
    rows: List[Dict[str, Any]]
    columns: List[str] = field(default_factory=list)
    status: str = field(default="success", init=False)

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class GenerationFailure:
    reason: str
    status: str = field(default="generation_failure", init=False)


@dataclass
class SafetyRejection:
    statement: str
    reason: str
    status: str = field(default="safety_rejection", init=False)


@dataclass
class ExecutionFailure:
    statement: str
    reason: str
    status: str = field(default="execution_failure", init=False)


@dataclass
class NoRelevantSchema:
    reason: str = "Could not determine which data to query."
    embedding_failed: bool = False
    status: str = field(default="no_relevant_schema", init=False)


ExecutionOutcome = Union[Success, GenerationFailure, SafetyRejection, ExecutionFailure, NoRelevantSchema]
