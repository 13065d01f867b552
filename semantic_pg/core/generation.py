"""
SQL synthesis: prompt construction, completion call and SQL extraction.
"""

import re
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import GenerationError, SchemaContext, SQLCandidate, SynthesisRequest
from .safety import LexicalError, statement_end

logger = logging.getLogger(__name__)


SQL_SYSTEM_PROMPT = (
    "You are an expert PostgreSQL analyst. Translate the user's question into "
    "exactly one read-only SQL statement that runs against the schema provided. "
    "Respond with the raw SQL only: no explanation, no markdown, no comments."
)

SQL_USER_TEMPLATE = """Question: {query}

Relevant schema:
{schema}

Instructions:
1. Generate only the SQL query, no explanations
2. Use only the tables and columns listed above
3. Use the listed relationships for JOIN conditions
4. Return a single SELECT (or WITH ... SELECT) statement
5. Include a LIMIT of at most {row_limit} rows unless the question asks for an aggregate

SQL Query:"""

# Leading keywords that mark the start of a statement in a completion
_STATEMENT_START = re.compile(
    r"^\s*(SELECT|WITH|VALUES|TABLE|EXPLAIN|SHOW|INSERT|UPDATE|DELETE|MERGE|DROP|ALTER|"
    r"CREATE|TRUNCATE|GRANT|REVOKE|COPY|CALL|DO|SET)\b",
    re.IGNORECASE
)
_FENCE = re.compile(r"```(?:[A-Za-z0-9_-]*[ \t]*\n)?(.*?)```", re.DOTALL)
_LABEL = re.compile(r"^\s*(?:sql(?:\s+query)?|query)\s*:\s*", re.IGNORECASE)
_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")
# First words that continue a statement after a blank line
_CONTINUATION = re.compile(
    r"^\s*(?:[(),]|(?:SELECT|FROM|WHERE|JOIN|LEFT|RIGHT|INNER|OUTER|FULL|CROSS|LATERAL|ON|AND|OR|NOT|"
    r"GROUP|ORDER|HAVING|LIMIT|OFFSET|FETCH|UNION|INTERSECT|EXCEPT|WINDOW|VALUES|AS|CASE|WHEN|THEN|ELSE|END)\b)",
    re.IGNORECASE
)


@dataclass
class CompletionResponse:
    """Container for a completion response."""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None


class CompletionService(ABC):
    """Abstract text-completion backend."""

    @abstractmethod
    def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 500
    ) -> CompletionResponse:
        """
        Complete ``prompt``.

        Raises:
            GenerationError: if the backend is unavailable or errors
        """
        pass


class OpenAICompletionService(CompletionService):
    """
    Completion service using OpenAI chat models.
    """

    def __init__(self, model: str = "gpt-4o-mini", client=None):
        """
        Args:
            model: Chat model name
            client: Optional pre-built OpenAI client
        """
        if client is None:
            from openai import OpenAI
            client = OpenAI()
        self.client = client
        self.model = model
        logger.info(f"Initialized completion service with model: {model}")

    def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 500
    ) -> CompletionResponse:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            # GPT-5 models take max_completion_tokens and only the default temperature
            if self.model.startswith("gpt-5"):
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_completion_tokens=max_tokens
                )
            else:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens
                )
        except Exception as e:
            logger.error(f"Generation failed: {e}")
            raise GenerationError(str(e)) from e

        content = response.choices[0].message.content or ""
        usage = None
        if getattr(response, "usage", None) is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens
            }
        return CompletionResponse(content=content, model=self.model, usage=usage)


def extract_sql(raw: str) -> str:
    """
    Pull a SQL statement out of a completion.

    Strips surrounding whitespace, markdown code fences, a leading
    ``SQL:`` label and any conversational lead-in before the first line
    that starts a statement. The SQL itself is not inspected.

    Args:
        raw: Completion text

    Returns:
        SQL text, or an empty string if nothing was found
    """
    text = (raw or "").strip()
    if not text:
        return ""

    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    text = _LABEL.sub("", text, count=1).strip()

    if not _STATEMENT_START.match(text):
        lines = text.splitlines()
        for index, line in enumerate(lines):
            if _STATEMENT_START.match(_LABEL.sub("", line, count=1)):
                lines[index] = _LABEL.sub("", line, count=1)
                text = "\n".join(lines[index:]).strip()
                break

    text = text.strip().strip("`").strip()
    return _drop_trailing_prose(text)


def _drop_trailing_prose(text: str) -> str:
    """Cut at the first top-level semicolon, or before a trailing prose paragraph."""
    try:
        end = statement_end(text)
    except LexicalError:
        return text
    if end is not None:
        return text[:end + 1]

    paragraphs = _PARAGRAPH_BREAK.split(text)
    kept = [paragraphs[0]]
    for paragraph in paragraphs[1:]:
        if not _CONTINUATION.match(paragraph):
            break
        kept.append(paragraph)
    return "\n\n".join(kept).strip()


class SQLSynthesizer:
    """
    Turns a question and a schema context into a candidate SQL statement.
    """

    def __init__(
        self,
        completion_service: CompletionService,
        temperature: float = 0.0,
        max_tokens: int = 500,
        row_limit: int = 100,
        system_prompt: str = SQL_SYSTEM_PROMPT
    ):
        """
        Args:
            completion_service: Backend used for completions
            temperature: Sampling temperature (0 for reproducible output)
            max_tokens: Maximum completion tokens
            row_limit: Row bound the model is instructed to apply
            system_prompt: Fixed system instruction
        """
        self.completion_service = completion_service
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.row_limit = row_limit
        self.system_prompt = system_prompt

    @classmethod
    def from_config(cls, completion_service: CompletionService, config) -> 'SQLSynthesizer':
        return cls(
            completion_service,
            temperature=config.generation.temperature,
            max_tokens=config.generation.max_tokens,
            row_limit=config.generation.default_row_limit
        )

    def build_request(self, user_query: str, schema_context: SchemaContext) -> SynthesisRequest:
        return SynthesisRequest(
            user_query=user_query,
            context=schema_context,
            schema_text=schema_context.render()
        )

    def build_prompt(self, request: SynthesisRequest) -> str:
        return SQL_USER_TEMPLATE.format(
            query=request.user_query.strip(),
            schema=request.schema_text,
            row_limit=self.row_limit
        )

    def synthesize(self, user_query: str, schema_context: SchemaContext) -> SQLCandidate:
        """
        Generate a SQL candidate for ``user_query``.

        Args:
            user_query: Natural-language question
            schema_context: Assembled schema context

        Returns:
            SQLCandidate with the extracted statement

        Raises:
            GenerationError: on backend failure or when no SQL was returned
        """
        request = self.build_request(user_query, schema_context)
        prompt = self.build_prompt(request)

        try:
            response = self.completion_service.complete(
                prompt,
                system_prompt=self.system_prompt,
                temperature=self.temperature,
                max_tokens=self.max_tokens
            )
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(str(e)) from e

        sql_text = extract_sql(response.content)
        if not sql_text:
            raise GenerationError("Completion did not contain a SQL statement")

        logger.debug(f"Synthesized SQL: {sql_text}")
        return SQLCandidate(
            sql=sql_text,
            raw_response=response.content,
            model=response.model,
            usage=response.usage
        )
