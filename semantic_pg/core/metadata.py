"""
Schema metadata store: table and column descriptors with their embeddings.
"""

import json
import math
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from psycopg2 import sql

from .database import DatabaseService
from .models import EntityKind, RankedEntity, RetrievalResult, SchemaCatalog, SchemaEntity

logger = logging.getLogger(__name__)


def embedding_text(entity: SchemaEntity) -> str:
    """
    Build the text that is embedded for a schema entity.

    Args:
        entity: Table or column descriptor

    Returns:
        Text such as ``Table: orders, Column: total, Description: ...``
    """
    if entity.kind == EntityKind.COLUMN:
        return f"Table: {entity.table_name}, Column: {entity.column_name}, Description: {entity.description}"
    return f"Table: {entity.table_name}, Description: {entity.description}"


def format_vector(vector: Sequence[float]) -> str:
    """Format a vector as a pgvector text literal."""
    return json.dumps([float(v) for v in vector])


class MetadataStore(ABC):
    """Abstract read/write access to schema descriptors."""

    @abstractmethod
    def load_catalog(self) -> SchemaCatalog:
        """Return every table and column descriptor with its embedding."""
        pass

    @abstractmethod
    def search_similar(self, kind: EntityKind, vector: Sequence[float], k: int) -> RetrievalResult:
        """Rank stored embeddings of one kind by cosine distance to ``vector``."""
        pass

    @abstractmethod
    def missing_embeddings(self, kind: EntityKind, limit: Optional[int] = None) -> List[SchemaEntity]:
        """Descriptors of one kind that have no embedding yet."""
        pass

    @abstractmethod
    def update_embedding(self, kind: EntityKind, entity_id: Any, vector: Sequence[float]):
        """Store the embedding for one descriptor."""
        pass


class PostgresMetadataStore(MetadataStore):
    """
    Metadata store backed by the ``table_metadata`` and ``column_metadata``
    tables (see ``semantic_pg/sql/metadata_schema.sql``).
    """

    TABLE_FIELDS = ["id", "table_name", "description", "embedding"]
    COLUMN_FIELDS = [
        "id", "table_name", "column_name", "data_type", "description",
        "is_primary_key", "is_foreign_key", "foreign_table", "foreign_column", "embedding"
    ]

    def __init__(
        self,
        db_service: DatabaseService,
        table_metadata_table: str = "table_metadata",
        column_metadata_table: str = "column_metadata"
    ):
        """
        Args:
            db_service: Database service instance
            table_metadata_table: Name of the table descriptor table
            column_metadata_table: Name of the column descriptor table
        """
        self.db = db_service
        self._tables = {
            EntityKind.TABLE: table_metadata_table,
            EntityKind.COLUMN: column_metadata_table,
        }

    @classmethod
    def from_config(cls, db_service: DatabaseService, config) -> 'PostgresMetadataStore':
        return cls(
            db_service,
            config.metadata.table_metadata_table,
            config.metadata.column_metadata_table
        )

    def _fields(self, kind: EntityKind) -> List[str]:
        return self.TABLE_FIELDS if kind == EntityKind.TABLE else self.COLUMN_FIELDS

    def _select(self, kind: EntityKind, with_embedding: bool = True) -> sql.Composed:
        fields = [f for f in self._fields(kind) if with_embedding or f != "embedding"]
        return sql.SQL("SELECT {fields} FROM {table}").format(
            fields=sql.SQL(", ").join(sql.Identifier(f) for f in fields),
            table=sql.Identifier(self._tables[kind])
        )

    @staticmethod
    def _row_to_entity(kind: EntityKind, row: Dict[str, Any]) -> SchemaEntity:
        embedding = row.get("embedding")
        if embedding is not None:
            embedding = [float(v) for v in embedding]
        foreign_table = row.get("foreign_table")
        foreign_column = row.get("foreign_column")
        if (foreign_table is None) != (foreign_column is None):
            logger.warning(
                f"Ignoring half-specified foreign key on {row.get('table_name')}.{row.get('column_name')}"
            )
            foreign_table = foreign_column = None
        return SchemaEntity(
            kind=kind,
            table_name=row["table_name"],
            column_name=row.get("column_name"),
            data_type=row.get("data_type"),
            description=row.get("description") or "",
            is_primary_key=bool(row.get("is_primary_key")),
            is_foreign_key=bool(row.get("is_foreign_key")) and foreign_table is not None,
            foreign_table=foreign_table,
            foreign_column=foreign_column,
            embedding=embedding,
            id=row.get("id")
        )

    def load_catalog(self) -> SchemaCatalog:
        tables = self.db.execute_query(
            self._select(EntityKind.TABLE) + sql.SQL(" ORDER BY id"), dict_cursor=True
        ) or []
        columns = self.db.execute_query(
            self._select(EntityKind.COLUMN) + sql.SQL(" ORDER BY id"), dict_cursor=True
        ) or []
        catalog = SchemaCatalog(
            [self._row_to_entity(EntityKind.TABLE, row) for row in tables],
            [self._row_to_entity(EntityKind.COLUMN, row) for row in columns]
        )
        logger.debug(f"Loaded catalog with {len(catalog.tables)} tables and {len(catalog.columns)} columns")
        return catalog

    def search_similar(self, kind: EntityKind, vector: Sequence[float], k: int) -> RetrievalResult:
        if k <= 0:
            return RetrievalResult.empty(kind)
        literal = format_vector(vector)
        fields = [f for f in self._fields(kind) if f != "embedding"]
        query = sql.SQL(
            "SELECT {fields}, 1 - (embedding <=> %s::vector) AS similarity"
            " FROM {table} WHERE embedding IS NOT NULL"
            " ORDER BY embedding <=> %s::vector, id"
            " LIMIT %s"
        ).format(
            fields=sql.SQL(", ").join(sql.Identifier(f) for f in fields),
            table=sql.Identifier(self._tables[kind])
        )
        rows = self.db.execute_query(query, (literal, literal, k), dict_cursor=True) or []

        ranked = []
        for row in rows:
            score = row["similarity"]
            if score is None or math.isnan(score):
                continue
            ranked.append(RankedEntity(
                entity=self._row_to_entity(kind, row),
                score=float(score),
                rank=len(ranked) + 1
            ))
        return RetrievalResult(kind=kind, entities=ranked)

    def missing_embeddings(self, kind: EntityKind, limit: Optional[int] = None) -> List[SchemaEntity]:
        query = self._select(kind, with_embedding=False) + sql.SQL(" WHERE embedding IS NULL ORDER BY id")
        params = None
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            params = (limit,)
        rows = self.db.execute_query(query, params, dict_cursor=True) or []
        return [self._row_to_entity(kind, row) for row in rows]

    def update_embedding(self, kind: EntityKind, entity_id: Any, vector: Sequence[float]):
        query = sql.SQL("UPDATE {table} SET embedding = %s::vector WHERE id = %s").format(
            table=sql.Identifier(self._tables[kind])
        )
        self.db.execute_query(query, (format_vector(vector), entity_id), fetch=False)
