"""
Core service layer for semantic-pg.

This module provides the services that turn a natural-language question
into executed SQL: configuration, database access, embeddings, schema
retrieval and ranking, context assembly, SQL synthesis, the safety gate,
execution and the orchestrating pipeline.
"""

from .config import ConfigService
from .database import DatabaseService
from .embeddings import EmbeddingService, OpenAIEmbedder
from .metadata import MetadataStore, PostgresMetadataStore
from .ranking import RankingService
from .retrieval import SchemaRetriever
from .context import SchemaContextAssembler
from .generation import CompletionService, OpenAICompletionService, SQLSynthesizer
from .safety import SQLSafetyGate
from .executor import QueryExecutor
from .pipeline import QueryResponse, SemanticQueryPipeline

__all__ = [
    'ConfigService',
    'DatabaseService',
    'EmbeddingService',
    'OpenAIEmbedder',
    'MetadataStore',
    'PostgresMetadataStore',
    'RankingService',
    'SchemaRetriever',
    'SchemaContextAssembler',
    'CompletionService',
    'OpenAICompletionService',
    'SQLSynthesizer',
    'SQLSafetyGate',
    'QueryExecutor',
    'QueryResponse',
    'SemanticQueryPipeline'
]

__version__ = '0.1.0'
