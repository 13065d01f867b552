"""
Shared pytest fixtures: in-process stand-ins for the embedding service, the
completion service, the metadata store and PostgreSQL.
"""

import re
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
import pytest

from semantic_pg.core.context import SchemaContextAssembler
from semantic_pg.core.embeddings import EmbeddingService
from semantic_pg.core.executor import QueryExecutor
from semantic_pg.core.generation import CompletionResponse, CompletionService, SQLSynthesizer
from semantic_pg.core.metadata import MetadataStore
from semantic_pg.core.models import (
    EmbeddingError,
    EntityKind,
    GenerationError,
    RetrievalResult,
    SchemaCatalog,
    SchemaEntity,
)
from semantic_pg.core.pipeline import SemanticQueryPipeline
from semantic_pg.core.ranking import RankingService
from semantic_pg.core.retrieval import SchemaRetriever
from semantic_pg.core.safety import SQLSafetyGate


# Keyword -> direction in a 4-dimensional embedding space
KEYWORD_AXES = {
    "customer": [1.0, 0.0, 0.0, 0.0],
    "product": [0.0, 1.0, 0.0, 0.0],
    "price": [0.0, 0.9, 0.0, 0.1],
    "order": [0.0, 0.0, 1.0, 0.0],
}
DEFAULT_VECTOR = [0.0, 0.0, 0.0, 1.0]


class FakeEmbedder(EmbeddingService):
    """Deterministic keyword embedder; optionally simulates an outage."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    def generate_embeddings(self, texts, batch_size=None):
        if self.fail:
            raise EmbeddingError("embedding service unavailable")
        vectors = []
        for text in texts:
            self.calls.append(text)
            vector = [0.0, 0.0, 0.0, 0.0]
            lowered = text.lower()
            for keyword, axis in KEYWORD_AXES.items():
                if keyword in lowered:
                    vector = [a + b for a, b in zip(vector, axis)]
            vectors.append(vector if any(vector) else list(DEFAULT_VECTOR))
        return vectors

    def get_dimensions(self) -> int:
        return 4


class FakeCompletionService(CompletionService):
    """Returns a canned completion and records every prompt."""

    def __init__(self, response: str = "SELECT 1", error: Optional[str] = None):
        self.response = response
        self.error = error
        self.prompts: List[Dict[str, Any]] = []

    def complete(self, prompt, system_prompt=None, temperature=0.0, max_tokens=500):
        self.prompts.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.error:
            raise GenerationError(self.error)
        return CompletionResponse(content=self.response, model="fake-model")


class InMemoryMetadataStore(MetadataStore):
    """Metadata store over a list of entities."""

    def __init__(self, tables: List[SchemaEntity], columns: List[SchemaEntity], fail: bool = False):
        self.tables = tables
        self.columns = columns
        self.fail = fail
        self.updates: List[Any] = []

    def load_catalog(self) -> SchemaCatalog:
        if self.fail:
            raise psycopg2.OperationalError("could not connect to server")
        return SchemaCatalog(self.tables, self.columns)

    def search_similar(self, kind, vector, k) -> RetrievalResult:
        entities = self.tables if kind == EntityKind.TABLE else self.columns
        return RankingService().rank(vector, entities, k, kind=kind)

    def missing_embeddings(self, kind, limit=None):
        entities = self.tables if kind == EntityKind.TABLE else self.columns
        missing = [e for e in entities if e.embedding is None]
        return missing[:limit] if limit is not None else missing

    def update_embedding(self, kind, entity_id, vector):
        entities = self.tables if kind == EntityKind.TABLE else self.columns
        for entity in entities:
            if entity.id == entity_id:
                entity.embedding = list(vector)
        self.updates.append((kind, entity_id))


def _normalize(statement: str) -> str:
    return re.sub(r"\s+", " ", statement).strip().rstrip(";").strip().lower()


class FakeCursor:
    """
    Cursor answering statements from a table of canned results.

    A canned result is either a list of dicts or a ``(columns, tuples)`` pair,
    the latter allowing repeated column names.
    """

    def __init__(self, database: 'FakeDatabase', dict_cursor: bool = False):
        self.database = database
        self.dict_cursor = dict_cursor
        self.description = None
        self._rows: List[Any] = []

    def execute(self, query, params=None):
        self.database.executed.append((query, params))
        if query.upper().startswith("SET "):
            self.description = None
            self._rows = []
            return
        key = _normalize(query)
        if key not in self.database.results:
            raise psycopg2.ProgrammingError(f"relation referenced by '{query}' does not exist")
        result = self.database.results[key]
        if isinstance(result, tuple):
            columns, rows = result
            rows = [tuple(row) for row in rows]
        else:
            columns = list(result[0].keys()) if result else ["?column?"]
            rows = [tuple(row[name] for name in columns) for row in result]
        self._rows = [dict(zip(columns, row)) for row in rows] if self.dict_cursor else rows
        self.description = [(name, None, None, None, None, None, None) for name in columns]

    def fetchall(self):
        return list(self._rows)

    def close(self):
        pass


class FakeDatabase:
    """Stand-in for DatabaseService with seeded query results."""

    def __init__(self, results: Optional[Dict[str, Any]] = None):
        self.results = {_normalize(sql): rows for sql, rows in (results or {}).items()}
        self.executed: List[Any] = []

    @contextmanager
    def get_connection(self):
        yield self

    @contextmanager
    def get_cursor(self, dict_cursor: bool = False):
        yield FakeCursor(self, dict_cursor)

    @property
    def statements(self) -> List[str]:
        return [query for query, _ in self.executed if not query.upper().startswith("SET ")]


CUSTOMER_ROWS = [
    {"id": 1, "name": "Alice Johnson", "email": "alice@example.com"},
    {"id": 2, "name": "Bob Smith", "email": "bob@example.com"},
    {"id": 3, "name": "Carol White", "email": "carol@example.com"},
]

EXPENSIVE_PRODUCT_ROWS = [
    {"product_name": "Laptop", "price": 1299.99},
    {"product_name": "Headphones", "price": 249.99},
]

SEEDED_RESULTS = {
    "SELECT * FROM customers LIMIT 100": CUSTOMER_ROWS,
    "SELECT product_name FROM products WHERE price > 100": EXPENSIVE_PRODUCT_ROWS,
}


def build_schema():
    """Tables and columns of a small shop schema with embeddings."""
    tables = [
        SchemaEntity(EntityKind.TABLE, "customers", id=1, embedding=[1.0, 0.0, 0.0, 0.0],
                     description="Contains customer personal information such as names and emails"),
        SchemaEntity(EntityKind.TABLE, "products", id=2, embedding=[0.0, 1.0, 0.0, 0.0],
                     description="Catalog of products with prices"),
        SchemaEntity(EntityKind.TABLE, "orders", id=3, embedding=[0.0, 0.0, 1.0, 0.0],
                     description="Customer orders"),
    ]
    columns = [
        SchemaEntity(EntityKind.COLUMN, "customers", "name", "text", "Full customer name",
                     id=11, embedding=[1.0, 0.0, 0.0, 0.0]),
        SchemaEntity(EntityKind.COLUMN, "customers", "email", "text", "Customer email address",
                     id=12, embedding=[0.95, 0.0, 0.0, 0.05]),
        SchemaEntity(EntityKind.COLUMN, "customers", "id", "integer", "Customer identifier",
                     is_primary_key=True, id=13, embedding=[0.9, 0.0, 0.0, 0.1]),
        SchemaEntity(EntityKind.COLUMN, "products", "product_name", "text", "Name of the product",
                     id=21, embedding=[0.0, 1.0, 0.0, 0.0]),
        SchemaEntity(EntityKind.COLUMN, "products", "price", "numeric", "Unit price in USD",
                     id=22, embedding=[0.0, 0.9, 0.0, 0.1]),
        SchemaEntity(EntityKind.COLUMN, "orders", "customer_id", "integer", "Customer who placed the order",
                     foreign_table="customers", foreign_column="id", id=31, embedding=[0.3, 0.0, 0.9, 0.0]),
        SchemaEntity(EntityKind.COLUMN, "orders", "total", "numeric", "Order total",
                     id=32, embedding=[0.0, 0.0, 1.0, 0.1]),
    ]
    return tables, columns


@pytest.fixture
def schema():
    return build_schema()


@pytest.fixture
def catalog(schema):
    tables, columns = schema
    return SchemaCatalog(tables, columns)


@pytest.fixture
def metadata_store(schema):
    tables, columns = schema
    return InMemoryMetadataStore(tables, columns)


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_completion():
    return FakeCompletionService("```sql\nSELECT * FROM customers LIMIT 100;\n```")


@pytest.fixture
def fake_db():
    return FakeDatabase(SEEDED_RESULTS)


@pytest.fixture
def make_pipeline(metadata_store, fake_db):
    """Factory building a pipeline around the fakes; keyword overrides swap parts."""

    def factory(
        embedder=None,
        completion=None,
        store=None,
        database=None,
        table_top_k=5,
        column_top_k=3,
        embed_on_direct_sql=True,
        use_native_vector_search=False,
        max_context_tokens=None,
        token_counter=None
    ):
        retriever = SchemaRetriever(
            embedder or FakeEmbedder(),
            store or metadata_store,
            table_top_k=table_top_k,
            column_top_k=column_top_k,
            use_native_vector_search=use_native_vector_search
        )
        return SemanticQueryPipeline(
            retriever=retriever,
            assembler=SchemaContextAssembler(
                max_context_tokens=max_context_tokens,
                token_counter=token_counter or (lambda text: len(text.split()))
            ),
            synthesizer=SQLSynthesizer(completion or FakeCompletionService("SELECT * FROM customers LIMIT 100")),
            safety_gate=SQLSafetyGate(),
            executor=QueryExecutor(database or fake_db),
            embed_on_direct_sql=embed_on_direct_sql
        )

    return factory
