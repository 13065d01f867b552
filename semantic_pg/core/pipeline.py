"""
End-to-end pipeline: natural-language question to executed SQL.

States::

    START -> EMBED_QUERY -> RANK (tables || columns) -> ASSEMBLE_CONTEXT
          -> SYNTHESIZE -> VALIDATE -> EXECUTE -> DONE

A direct SQL statement skips ASSEMBLE_CONTEXT and SYNTHESIZE but still
passes through VALIDATE. Every path ends in exactly one outcome.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import ConfigService
from .context import SchemaContextAssembler
from .database import DatabaseService
from .embeddings import OpenAIEmbedder
from .executor import QueryExecutor
from .generation import OpenAICompletionService, SQLSynthesizer
from .metadata import PostgresMetadataStore
from .models import (
    EntityKind,
    ExecutionFailure,
    ExecutionOutcome,
    GenerationError,
    GenerationFailure,
    NoRelevantSchema,
    RetrievalResult,
    SafetyRejection,
    Success,
)
from .retrieval import SchemaRetriever
from .safety import SQLSafetyGate
from .timing import TimingBreakdown, timed

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    START = "start"
    EMBED_QUERY = "embed_query"
    RANK = "rank"
    ASSEMBLE_CONTEXT = "assemble_context"
    SYNTHESIZE = "synthesize"
    VALIDATE = "validate"
    EXECUTE = "execute"
    DONE = "done"


@dataclass
class QueryResponse:
    """Outcome of one request plus the retrieval metadata used to reach it."""
    question: str
    outcome: ExecutionOutcome
    similar_tables: RetrievalResult
    similar_columns: RetrievalResult
    executed_query: Optional[str] = None
    context_truncated: bool = False
    states: List[PipelineState] = field(default_factory=list)
    timing: TimingBreakdown = field(default_factory=TimingBreakdown)

    @property
    def status(self) -> str:
        return self.outcome.status

    def to_dict(self) -> Dict[str, Any]:
        """Serialize as the response envelope returned to callers."""
        outcome = self.outcome
        results: List[Dict[str, Any]] = []
        columns: List[str] = []
        error = None
        if isinstance(outcome, Success):
            results, columns = outcome.rows, outcome.columns
        else:
            error = outcome.reason
        return {
            'status': outcome.status,
            'results': results,
            'columns': columns,
            'row_count': len(results),
            'executed_query': self.executed_query,
            'context_truncated': self.context_truncated,
            'error': error,
            'similar_tables': self.similar_tables.to_list(),
            'similar_columns': self.similar_columns.to_list(),
            'timing': self.timing.to_dict(),
        }


class SemanticQueryPipeline:
    """
    Composes retrieval, context assembly, synthesis, the safety gate and
    execution. All collaborators are injected; nothing is shared between
    requests.
    """

    def __init__(
        self,
        retriever: SchemaRetriever,
        assembler: SchemaContextAssembler,
        synthesizer: SQLSynthesizer,
        safety_gate: SQLSafetyGate,
        executor: QueryExecutor,
        embed_on_direct_sql: bool = True
    ):
        """
        Args:
            retriever: Embeds the question and ranks schema entities
            assembler: Builds the schema context
            synthesizer: Generates SQL from question and context
            safety_gate: Rejects anything but a single read-only statement
            executor: Runs approved statements
            embed_on_direct_sql: Still embed and rank when a direct statement
                is supplied, to return similarity metadata with the result
        """
        self.retriever = retriever
        self.assembler = assembler
        self.synthesizer = synthesizer
        self.safety_gate = safety_gate
        self.executor = executor
        self.embed_on_direct_sql = embed_on_direct_sql

    @classmethod
    def from_config(cls, config: ConfigService, db_service: DatabaseService) -> 'SemanticQueryPipeline':
        """Wire the pipeline against OpenAI and PostgreSQL."""
        embedder = OpenAIEmbedder.from_config(config)
        store = PostgresMetadataStore.from_config(db_service, config)
        return cls(
            retriever=SchemaRetriever.from_config(embedder, store, config),
            assembler=SchemaContextAssembler(max_context_tokens=config.generation.max_context_tokens),
            synthesizer=SQLSynthesizer.from_config(OpenAICompletionService(config.generation.model), config),
            safety_gate=SQLSafetyGate(),
            executor=QueryExecutor.from_config(db_service, config),
            embed_on_direct_sql=config.retrieval.embed_on_direct_sql
        )

    @staticmethod
    def _enter(states: List[PipelineState], state: PipelineState):
        states.append(state)
        logger.debug(f"Pipeline state -> {state.value}")

    def answer(self, question: str, sql_statement: Optional[str] = None) -> QueryResponse:
        """
        Answer a natural-language question, optionally with a direct SQL override.

        Args:
            question: Natural-language question
            sql_statement: Optional statement to execute instead of a synthesized one

        Returns:
            QueryResponse carrying exactly one outcome
        """
        start_time = time.perf_counter()
        states: List[PipelineState] = []
        timing = TimingBreakdown()
        direct = sql_statement.strip() if sql_statement and sql_statement.strip() else None

        tables = RetrievalResult.empty(EntityKind.TABLE)
        columns = RetrievalResult.empty(EntityKind.COLUMN)
        vector = None
        catalog = None
        context = None

        def finish(outcome: ExecutionOutcome, executed: Optional[str] = None) -> QueryResponse:
            self._enter(states, PipelineState.DONE)
            timing.total_time_ms = (time.perf_counter() - start_time) * 1000.0
            logger.info(f"Pipeline finished with status {outcome.status} in {timing.total_time_ms:.1f}ms")
            return QueryResponse(
                question=question,
                outcome=outcome,
                similar_tables=tables,
                similar_columns=columns,
                executed_query=executed,
                context_truncated=context is not None and context.truncated,
                states=states,
                timing=timing
            )

        self._enter(states, PipelineState.START)

        if direct is None or self.embed_on_direct_sql:
            self._enter(states, PipelineState.EMBED_QUERY)
            with timed(timing, 'embed_time_ms'):
                vector = self.retriever.embed(question)

            if vector is not None:
                self._enter(states, PipelineState.RANK)
                with timed(timing, 'retrieval_time_ms'):
                    catalog = self.retriever.load_catalog()
                    if catalog is not None:
                        tables, columns = self.retriever.rank_both(vector, catalog)

        if direct is not None:
            statement = direct
        else:
            if vector is None:
                return finish(NoRelevantSchema(
                    reason="Could not embed the question; no schema ranking was possible.",
                    embedding_failed=True
                ))
            if not columns:
                return finish(NoRelevantSchema())

            self._enter(states, PipelineState.ASSEMBLE_CONTEXT)
            context = self.assembler.assemble(tables, columns, catalog)
            if not context:
                return finish(NoRelevantSchema())
            if context.truncated:
                logger.info(f"Schema context trimmed to {len(context.tables)} table(s) for the token budget")

            self._enter(states, PipelineState.SYNTHESIZE)
            try:
                with timed(timing, 'generation_time_ms'):
                    candidate = self.synthesizer.synthesize(question, context)
            except GenerationError as e:
                logger.error(f"SQL generation failed: {e}")
                return finish(GenerationFailure(reason=str(e)))
            statement = candidate.sql

        self._enter(states, PipelineState.VALIDATE)
        verdict = self.safety_gate.validate(statement)
        if not verdict.approved:
            return finish(SafetyRejection(statement=statement, reason=verdict.reason))

        self._enter(states, PipelineState.EXECUTE)
        with timed(timing, 'execution_time_ms'):
            result = self.executor.execute(verdict.statement)
        if isinstance(result, ExecutionFailure):
            return finish(result, executed=verdict.statement)
        return finish(
            Success(statement=verdict.statement, rows=result.rows, columns=result.columns),
            executed=verdict.statement
        )

    def find_similar(self, description: str, kind: EntityKind, k: Optional[int] = None) -> RetrievalResult:
        """
        Find tables or columns similar to a description.

        Args:
            description: Natural-language description
            kind: Tables or columns
            k: Number of results (defaults to the configured top-k)

        Returns:
            RetrievalResult, empty when nothing relevant was found
        """
        return self.retriever.find_similar(description, kind, k)
