#!/usr/bin/env python3
"""
Unit tests for the OpenAI embedder.
"""

from types import SimpleNamespace

import pytest

from semantic_pg.core.embeddings import OpenAIEmbedder
from semantic_pg.core.models import EmbeddingError


class FakeEmbeddingsAPI:
    def __init__(self, dimensions=3, failures=0, error="boom"):
        self.dimensions = dimensions
        self.failures = failures
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.failures:
            self.failures -= 1
            raise RuntimeError(self.error)
        return SimpleNamespace(data=[
            SimpleNamespace(embedding=[float(len(text))] * self.dimensions) for text in kwargs["input"]
        ])


def embedder_with(api, **kwargs):
    kwargs.setdefault("dimensions", 3)
    kwargs.setdefault("retry_delay", 0)
    return OpenAIEmbedder(client=SimpleNamespace(embeddings=api), **kwargs)


class TestEmbedQuery:
    """Tests for single-query embedding"""

    def test_requests_dimensions(self):
        api = FakeEmbeddingsAPI()
        vector = embedder_with(api).embed_query("  customers  ")

        assert vector == [9.0, 9.0, 9.0]
        assert api.calls[0] == {"model": "text-embedding-3-small", "input": ["customers"], "dimensions": 3}

    def test_older_models_omit_dimensions(self):
        api = FakeEmbeddingsAPI()
        embedder_with(api, model="text-embedding-ada-002").embed_query("x")
        assert "dimensions" not in api.calls[0]

    def test_single_attempt(self):
        api = FakeEmbeddingsAPI(failures=1)
        with pytest.raises(EmbeddingError):
            embedder_with(api, max_retries=3).embed_query("customers")
        assert len(api.calls) == 1

    def test_empty_text(self):
        with pytest.raises(EmbeddingError):
            embedder_with(FakeEmbeddingsAPI()).embed_query("   ")

    def test_wrong_shape(self):
        with pytest.raises(EmbeddingError):
            embedder_with(FakeEmbeddingsAPI(dimensions=2)).embed_query("customers")


class TestGenerateEmbeddings:
    """Tests for batch embedding"""

    def test_batches_and_keeps_alignment(self):
        api = FakeEmbeddingsAPI()
        vectors = embedder_with(api, batch_size=2).generate_embeddings(["ab", "", "abcd"])

        assert vectors == [[2.0] * 3, [0.0] * 3, [4.0] * 3]
        assert [call["input"] for call in api.calls] == [["ab"], ["abcd"]]

    def test_retries_then_succeeds(self):
        api = FakeEmbeddingsAPI(failures=2, error="429 rate_limit")
        vectors = embedder_with(api, max_retries=3).generate_embeddings(["abc"])

        assert vectors == [[3.0] * 3]
        assert len(api.calls) == 3

    def test_gives_up(self):
        api = FakeEmbeddingsAPI(failures=5)
        with pytest.raises(EmbeddingError):
            embedder_with(api, max_retries=2).generate_embeddings(["abc"])
        assert len(api.calls) == 2

    def test_empty_input(self):
        assert embedder_with(FakeEmbeddingsAPI()).generate_embeddings([]) == []
