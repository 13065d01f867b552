"""
Ranking service for cosine-similarity retrieval of schema entities.

Similarity follows pgvector's convention, ``1 - (a <=> b)``, so an
in-memory ranking orders candidates the same way the ``<=>`` operator does.
"""

import logging
from typing import Iterable, List, Optional, Sequence

import numpy as np

from .models import EntityKind, RankedEntity, RetrievalResult, SchemaEntity

logger = logging.getLogger(__name__)


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine distance as computed by pgvector's ``<=>`` operator.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Distance in [0, 2], or NaN if either vector has zero norm
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"different vector dimensions {a.shape[0]} and {b.shape[0]}")
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return float('nan')
    similarity = float(np.dot(a, b) / norm)
    # Keep within [-1, 1] against floating point drift
    similarity = max(-1.0, min(1.0, similarity))
    return 1.0 - similarity


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """``1 - cosine_distance(a, b)``."""
    return 1.0 - cosine_distance(a, b)


class RankingService:
    """
    Ranks schema entities by cosine similarity to a query vector.

    Ordering is descending by similarity with a stable tie-break on the
    candidates' input order. Candidates without an embedding, or with a
    zero-norm embedding, are not ranked.
    """

    def rank(
        self,
        query_vector: Optional[Sequence[float]],
        candidates: Iterable[SchemaEntity],
        k: int,
        kind: Optional[EntityKind] = None
    ) -> RetrievalResult:
        """
        Return the top-k candidates by cosine similarity.

        Args:
            query_vector: Query embedding; None means the embedding failed
            candidates: Entities with stored embeddings
            k: Maximum number of results
            kind: Kind recorded on the result (inferred from candidates if omitted)

        Returns:
            RetrievalResult of length ``min(k, |rankable candidates|)``
        """
        candidates = list(candidates)
        if kind is None:
            kind = candidates[0].kind if candidates else EntityKind.COLUMN

        if query_vector is None or k <= 0 or not candidates:
            return RetrievalResult.empty(kind)

        query = np.asarray(query_vector, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            logger.warning("Query vector has zero norm, nothing to rank")
            return RetrievalResult.empty(kind)

        rankable: List[SchemaEntity] = []
        vectors = []
        for entity in candidates:
            if entity.embedding is None:
                continue
            vector = np.asarray(entity.embedding, dtype=np.float64)
            if vector.shape != query.shape:
                raise ValueError(
                    f"different vector dimensions {query.shape[0]} and {vector.shape[0]} "
                    f"for {entity.qualified_name}"
                )
            if np.linalg.norm(vector) == 0:
                continue
            rankable.append(entity)
            vectors.append(vector)

        if not rankable:
            return RetrievalResult.empty(kind)

        matrix = np.vstack(vectors)
        scores = matrix @ query / (np.linalg.norm(matrix, axis=1) * query_norm)
        scores = np.clip(scores, -1.0, 1.0)

        order = np.argsort(-scores, kind='stable')[:k]
        ranked = [
            RankedEntity(entity=rankable[index], score=float(scores[index]), rank=position)
            for position, index in enumerate(order, 1)
        ]
        return RetrievalResult(kind=kind, entities=ranked)
