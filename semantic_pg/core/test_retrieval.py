#!/usr/bin/env python3
"""
Unit tests for schema retrieval.
"""

from semantic_pg.core.models import EntityKind
from semantic_pg.core.retrieval import SchemaRetriever

from conftest import FakeEmbedder, InMemoryMetadataStore


class TestEmbed:
    """Tests for query embedding"""

    def test_embeds_question(self, fake_embedder, metadata_store):
        retriever = SchemaRetriever(fake_embedder, metadata_store)
        assert retriever.embed("show me all customers") == [1.0, 0.0, 0.0, 0.0]

    def test_failure_gives_none(self, metadata_store):
        retriever = SchemaRetriever(FakeEmbedder(fail=True), metadata_store)
        assert retriever.embed("show me all customers") is None


class TestRank:
    """Tests for table and column ranking"""

    def test_rank_both_parallel(self, fake_embedder, metadata_store, catalog):
        retriever = SchemaRetriever(fake_embedder, metadata_store, table_top_k=2, column_top_k=3)
        tables, columns = retriever.rank_both([1.0, 0.0, 0.0, 0.0], catalog)

        assert tables.kind == EntityKind.TABLE
        assert [r.entity.table_name for r in tables][0] == "customers"
        assert len(tables) == 2
        assert [r.entity.qualified_name for r in columns] == [
            "customers.name", "customers.email", "customers.id"
        ]

    def test_sequential_matches_parallel(self, fake_embedder, metadata_store, catalog):
        vector = [0.2, 0.7, 0.4, 0.1]
        parallel = SchemaRetriever(fake_embedder, metadata_store).rank_both(vector, catalog)
        sequential = SchemaRetriever(fake_embedder, metadata_store, parallel_ranking=False).rank_both(vector, catalog)

        for a, b in zip(parallel, sequential):
            assert [r.entity.qualified_name for r in a] == [r.entity.qualified_name for r in b]

    def test_native_search(self, fake_embedder, metadata_store):
        retriever = SchemaRetriever(fake_embedder, metadata_store, use_native_vector_search=True)
        columns = retriever.rank(EntityKind.COLUMN, [0.0, 1.0, 0.0, 0.0], None, k=2)

        assert [r.entity.qualified_name for r in columns] == ["products.product_name", "products.price"]

    def test_missing_vector(self, fake_embedder, metadata_store, catalog):
        tables, columns = SchemaRetriever(fake_embedder, metadata_store).rank_both(None, catalog)
        assert not tables
        assert not columns

    def test_missing_catalog(self, fake_embedder, metadata_store):
        result = SchemaRetriever(fake_embedder, metadata_store).rank(EntityKind.COLUMN, [1.0, 0.0, 0.0, 0.0], None)
        assert not result

    def test_ranking_error_gives_empty_result(self, fake_embedder, metadata_store, catalog):
        retriever = SchemaRetriever(fake_embedder, metadata_store)
        result = retriever.rank(EntityKind.COLUMN, [1.0, 0.0], catalog)
        assert not result
        assert result.kind == EntityKind.COLUMN


class TestCatalog:
    """Tests for catalog loading"""

    def test_store_failure_gives_none(self, fake_embedder, schema):
        tables, columns = schema
        retriever = SchemaRetriever(fake_embedder, InMemoryMetadataStore(tables, columns, fail=True))
        assert retriever.load_catalog() is None


class TestFindSimilar:
    """Tests for description lookups"""

    def test_finds_tables(self, fake_embedder, metadata_store):
        result = SchemaRetriever(fake_embedder, metadata_store).find_similar(
            "where are orders stored", EntityKind.TABLE, k=1
        )
        assert [r.entity.table_name for r in result] == ["orders"]

    def test_default_k(self, fake_embedder, metadata_store):
        result = SchemaRetriever(fake_embedder, metadata_store, column_top_k=4).find_similar(
            "customer details", EntityKind.COLUMN
        )
        assert len(result) == 4

    def test_embedding_failure(self, metadata_store):
        result = SchemaRetriever(FakeEmbedder(fail=True), metadata_store).find_similar(
            "customer details", EntityKind.COLUMN
        )
        assert not result
