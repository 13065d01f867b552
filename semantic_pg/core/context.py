"""
Schema context assembly: groups ranked columns under their tables and
serializes the result within a token budget.
"""

import logging
from typing import Callable, Dict, Optional

from .models import (
    ColumnContext,
    RetrievalResult,
    SchemaCatalog,
    SchemaContext,
    TableContext,
)

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], int]

# Rough length-based estimate used when the tokenizer is unavailable
CHARS_PER_TOKEN = 4


def tiktoken_counter(encoding_name: str = "cl100k_base") -> TokenCounter:
    """
    Build a token counter backed by tiktoken.

    The encoding is loaded on first use.
    """
    encoding = None

    def count(text: str) -> int:
        nonlocal encoding
        if encoding is None:
            import tiktoken
            encoding = tiktoken.get_encoding(encoding_name)
        return len(encoding.encode(text))

    return count


class SchemaContextAssembler:
    """
    Builds the schema context handed to the SQL synthesizer.

    Tables appear in the order their first column appears in the column
    ranking. A table reached only through its columns is still included.
    """

    def __init__(
        self,
        max_context_tokens: Optional[int] = None,
        token_counter: Optional[TokenCounter] = None
    ):
        """
        Args:
            max_context_tokens: Budget for the rendered context; None disables it
            token_counter: Function counting tokens in a string (tiktoken by default)
        """
        self.max_context_tokens = max_context_tokens
        self.token_counter = token_counter or tiktoken_counter()

    def assemble(
        self,
        ranked_tables: RetrievalResult,
        ranked_columns: RetrievalResult,
        catalog: SchemaCatalog
    ) -> SchemaContext:
        """
        Group ranked columns by table and attach table descriptions.

        Args:
            ranked_tables: Table ranking
            ranked_columns: Column ranking
            catalog: Full schema metadata for this request

        Returns:
            SchemaContext, trimmed to the token budget if one is set
        """
        ranked_table_names = {ranked.entity.table_name for ranked in ranked_tables}
        groups: Dict[str, TableContext] = {}
        seen = set()

        for ranked in ranked_columns:
            column = ranked.entity
            if column.qualified_name in seen:
                continue
            seen.add(column.qualified_name)

            table = catalog.get_table(column.table_name)
            if table is None:
                logger.warning(f"Skipping column {column.qualified_name}: table not in catalog")
                continue

            group = groups.get(column.table_name)
            if group is None:
                description = table.description if column.table_name in ranked_table_names else ""
                group = TableContext(name=column.table_name, description=description or "")
                groups[column.table_name] = group

            group.columns.append(ColumnContext(
                name=column.column_name,
                data_type=column.data_type,
                description=column.description,
                is_primary_key=column.is_primary_key,
                is_foreign_key=column.is_foreign_key,
                foreign_table=column.foreign_table,
                foreign_column=column.foreign_column,
                score=ranked.score
            ))

        context = SchemaContext(tables=list(groups.values()))
        return self._fit_to_budget(context)

    def _count(self, text: str) -> int:
        try:
            return self.token_counter(text)
        except Exception as e:
            estimate = len(text) // CHARS_PER_TOKEN + 1
            logger.warning(f"Token counter failed, estimating {estimate} tokens from length: {e}")
            return estimate

    def _fit_to_budget(self, context: SchemaContext) -> SchemaContext:
        """Drop lowest-ranked tables, then trailing columns, until the context fits."""
        if self.max_context_tokens is None or not context.tables:
            return context

        total = self._count(context.render())
        if total <= self.max_context_tokens:
            return context

        logger.warning(
            f"Schema context too long ({total} tokens), trimming to {self.max_context_tokens} tokens"
        )
        context.truncated = True
        while len(context.tables) > 1 and self._count(context.render()) > self.max_context_tokens:
            dropped = context.tables.pop()
            logger.debug(f"Dropped table {dropped.name} from schema context")

        last = context.tables[-1]
        while len(last.columns) > 1 and self._count(context.render()) > self.max_context_tokens:
            last.columns.pop()

        return context
