"""
Schema retrieval: query embedding plus table and column ranking.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from .embeddings import EmbeddingService
from .metadata import MetadataStore
from .models import EmbeddingError, EntityKind, RetrievalResult, SchemaCatalog
from .ranking import RankingService

logger = logging.getLogger(__name__)


class SchemaRetriever:
    """
    Finds the schema entities most similar to a natural-language text.

    Every external call is wrapped: an embedding failure yields ``None`` and a
    ranking failure yields an empty result, so callers only ever see
    "nothing relevant" rather than an exception.
    """

    def __init__(
        self,
        embedder: EmbeddingService,
        store: MetadataStore,
        ranker: Optional[RankingService] = None,
        table_top_k: int = 5,
        column_top_k: int = 10,
        use_native_vector_search: bool = False,
        parallel_ranking: bool = True
    ):
        """
        Args:
            embedder: Embedding service for query encoding
            store: Schema metadata store
            ranker: In-memory ranker (used unless native search is enabled)
            table_top_k: Default number of tables to return
            column_top_k: Default number of columns to return
            use_native_vector_search: Rank with the store's pgvector query
            parallel_ranking: Rank tables and columns concurrently
        """
        self.embedder = embedder
        self.store = store
        self.ranker = ranker or RankingService()
        self.table_top_k = table_top_k
        self.column_top_k = column_top_k
        self.use_native_vector_search = use_native_vector_search
        self.parallel_ranking = parallel_ranking

    @classmethod
    def from_config(cls, embedder: EmbeddingService, store: MetadataStore, config) -> 'SchemaRetriever':
        return cls(
            embedder,
            store,
            table_top_k=config.retrieval.table_top_k,
            column_top_k=config.retrieval.column_top_k,
            use_native_vector_search=config.retrieval.use_native_vector_search,
            parallel_ranking=config.retrieval.parallel_ranking
        )

    def top_k_for(self, kind: EntityKind) -> int:
        return self.table_top_k if kind == EntityKind.TABLE else self.column_top_k

    def embed(self, text: str) -> Optional[List[float]]:
        """Embed ``text``; None when the embedding service fails."""
        try:
            return self.embedder.embed_query(text)
        except EmbeddingError as e:
            logger.warning(f"Embedding failed, continuing without schema ranking: {e}")
            return None

    def load_catalog(self) -> Optional[SchemaCatalog]:
        """Load the metadata catalog; None when the store is unavailable."""
        try:
            return self.store.load_catalog()
        except Exception as e:
            logger.error(f"Failed to load schema metadata: {e}")
            return None

    def rank(
        self,
        kind: EntityKind,
        vector: Optional[Sequence[float]],
        catalog: Optional[SchemaCatalog],
        k: Optional[int] = None
    ) -> RetrievalResult:
        """
        Rank one kind of entity against ``vector``.

        Args:
            kind: Tables or columns
            vector: Query embedding, or None if embedding failed
            catalog: Catalog to rank in memory (unused with native search)
            k: Result size override

        Returns:
            RetrievalResult, empty on any failure
        """
        k = self.top_k_for(kind) if k is None else k
        if vector is None:
            return RetrievalResult.empty(kind)
        try:
            if self.use_native_vector_search:
                return self.store.search_similar(kind, vector, k)
            if catalog is None:
                return RetrievalResult.empty(kind)
            return self.ranker.rank(vector, catalog.entities(kind), k, kind=kind)
        except Exception as e:
            logger.error(f"Ranking {kind.value}s failed: {e}")
            return RetrievalResult.empty(kind)

    def rank_tables(self, vector, catalog, k: Optional[int] = None) -> RetrievalResult:
        return self.rank(EntityKind.TABLE, vector, catalog, k)

    def rank_columns(self, vector, catalog, k: Optional[int] = None) -> RetrievalResult:
        return self.rank(EntityKind.COLUMN, vector, catalog, k)

    def rank_both(
        self,
        vector: Optional[Sequence[float]],
        catalog: Optional[SchemaCatalog]
    ) -> Tuple[RetrievalResult, RetrievalResult]:
        """
        Rank tables and columns, concurrently when enabled.

        Returns:
            (tables, columns)
        """
        if vector is None:
            return RetrievalResult.empty(EntityKind.TABLE), RetrievalResult.empty(EntityKind.COLUMN)

        if not self.parallel_ranking:
            return (
                self.rank_tables(vector, catalog),
                self.rank_columns(vector, catalog)
            )

        with ThreadPoolExecutor(max_workers=2) as executor:
            tables = executor.submit(self.rank_tables, vector, catalog)
            columns = executor.submit(self.rank_columns, vector, catalog)
            return tables.result(), columns.result()

    def find_similar(self, description: str, kind: EntityKind, k: Optional[int] = None) -> RetrievalResult:
        """
        Find entities of ``kind`` similar to a free-text description.

        Args:
            description: Natural-language description
            kind: Tables or columns
            k: Number of results (defaults to the configured top-k)

        Returns:
            RetrievalResult, empty if embedding or ranking failed
        """
        vector = self.embed(description)
        if vector is None:
            return RetrievalResult.empty(kind)
        catalog = None if self.use_native_vector_search else self.load_catalog()
        return self.rank(kind, vector, catalog, k)
