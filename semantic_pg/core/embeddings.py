"""
Embedding service for turning queries and schema descriptions into vectors.
"""

import time
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from .models import EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingService(ABC):
    """
    Abstract base class for embedding generation services.
    """

    @abstractmethod
    def generate_embeddings(
        self,
        texts: List[str],
        batch_size: Optional[int] = None
    ) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of text strings to embed
            batch_size: Optional batch size override

        Returns:
            List of dense vectors, one per input text
        """
        pass

    @abstractmethod
    def get_dimensions(self) -> int:
        """
        Get the dimensionality of embeddings.

        Returns:
            Number of dimensions
        """
        pass

    def embed_query(self, text: str) -> List[float]:
        """
        Embed a single query text.

        Makes one attempt; failures are raised as EmbeddingError so the
        caller can degrade instead of retrying.

        Args:
            text: Query text

        Returns:
            Embedding vector of ``get_dimensions()`` floats
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        try:
            vectors = self.generate_embeddings([text.strip()])
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(str(e)) from e

        if not vectors:
            raise EmbeddingError("Embedding service returned no vectors")
        vector = list(vectors[0])
        if len(vector) != self.get_dimensions():
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {self.get_dimensions()}"
            )
        return vector


class OpenAIEmbedder(EmbeddingService):
    """
    OpenAI embedding service for generating dense embeddings.

    Features:
    - Batch processing with configurable size
    - Exponential backoff on rate limits for batch jobs
    - Single-attempt query embedding
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        batch_size: int = 50,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        client=None
    ):
        """
        Initialize OpenAI embedder.

        Args:
            model: OpenAI embedding model name
            dimensions: Embedding dimensions
            batch_size: Default batch size for processing
            max_retries: Maximum retry attempts for batch API calls
            retry_delay: Base delay between retries
            client: Optional pre-built OpenAI client
        """
        if client is None:
            from openai import OpenAI
            client = OpenAI()
        self.client = client

        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        logger.info(f"Initialized OpenAI embedder with model: {model}")

    @classmethod
    def from_config(cls, config, client=None) -> 'OpenAIEmbedder':
        return cls(
            model=config.embedding.openai_model,
            dimensions=config.embedding.openai_dimensions,
            batch_size=config.embedding.batch_size,
            max_retries=config.embedding.max_retries,
            retry_delay=config.embedding.retry_delay,
            client=client
        )

    def _create(self, texts: List[str]) -> List[List[float]]:
        kwargs = {"model": self.model, "input": texts}
        # Only the text-embedding-3 family accepts a dimensions override
        if self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions
        response = self.client.embeddings.create(**kwargs)
        return [data.embedding for data in response.data]

    def embed_query(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        try:
            vectors = self._create([text.strip()])
        except Exception as e:
            logger.error(f"Error generating query embedding: {e}")
            raise EmbeddingError(str(e)) from e
        if not vectors or len(vectors[0]) != self.dimensions:
            raise EmbeddingError(f"Unexpected embedding shape from {self.model}")
        return list(vectors[0])

    def generate_embeddings(
        self,
        texts: List[str],
        batch_size: Optional[int] = None
    ) -> List[List[float]]:
        """
        Generate OpenAI embeddings for texts.

        Empty texts get a zero vector so the output stays aligned with the input.

        Args:
            texts: List of texts to embed
            batch_size: Optional batch size override

        Returns:
            List of embedding vectors
        """
        if not texts:
            return []

        batch_size = batch_size or self.batch_size
        all_embeddings = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]
            all_embeddings.extend(self._generate_batch_with_retry(batch))
            logger.debug(f"Processed batch {i//batch_size + 1}/{(len(texts)-1)//batch_size + 1}")

        return all_embeddings

    def _generate_batch_with_retry(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch with retry logic.

        Args:
            texts: Batch of texts to embed

        Returns:
            List of embedding vectors for the batch
        """
        valid = [(i, str(t).strip()) for i, t in enumerate(texts) if t and str(t).strip()]
        result = [[0.0] * self.dimensions for _ in texts]
        if not valid:
            return result

        for attempt in range(self.max_retries):
            try:
                embeddings = self._create([text for _, text in valid])
                for (index, _), embedding in zip(valid, embeddings):
                    result[index] = embedding
                return result
            except Exception as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"Failed to generate embeddings after {self.max_retries} attempts: {e}")
                    raise EmbeddingError(str(e)) from e
                if "rate_limit" in str(e).lower() or "429" in str(e):
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Rate limit hit, retrying in {delay}s (attempt {attempt + 1}/{self.max_retries})")
                else:
                    delay = self.retry_delay
                    logger.warning(f"Error generating embeddings (attempt {attempt + 1}/{self.max_retries}): {e}")
                time.sleep(delay)

        return result

    def get_dimensions(self) -> int:
        return self.dimensions
