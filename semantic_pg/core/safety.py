"""
SQL safety gate: admits a single read-only statement, rejects everything else.

The gate is conservative. A lexical pass (aware of comments, string
literals, quoted identifiers and dollar quoting) checks the statement
count, leading keyword, forbidden keywords and blocked functions; a
sqlglot parse then confirms the statement tree is read-only. Anything
the gate cannot classify is rejected.
"""

import re
import logging
from typing import Iterator, Optional, Set, Tuple, Union

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from .models import SafetyVerdict, SQLCandidate

logger = logging.getLogger(__name__)

ALLOWED_LEADING_KEYWORDS: Set[str] = {"SELECT", "WITH", "VALUES"}

FORBIDDEN_KEYWORDS: Set[str] = {
    "DELETE",
    "DROP",
    "UPDATE",
    "INSERT",
    "ALTER",
    "TRUNCATE",
    "GRANT",
    "REVOKE",
    "CREATE",
    "MERGE",
    "INTO",
}

BLOCKED_FUNCTIONS: Set[str] = {
    "pg_sleep",
    "pg_sleep_for",
    "pg_sleep_until",
    "pg_terminate_backend",
    "pg_cancel_backend",
    "pg_reload_conf",
    "pg_read_file",
    "pg_read_binary_file",
    "pg_ls_dir",
    "pg_stat_file",
    "pg_advisory_lock",
    "pg_advisory_xact_lock",
    "lo_import",
    "lo_export",
    "dblink",
    "dblink_exec",
    "set_config",
    "setval",
    "nextval",
    "query_to_xml",
}

_READ_ONLY_ROOTS = (exp.Select, exp.Union, exp.Intersect, exp.Except, exp.Values, exp.Subquery)

# Node types that write data or change the schema; looked up by name so the
# list works across sqlglot releases.
_WRITE_NODE_NAMES = (
    "Insert", "Update", "Delete", "Merge", "Drop", "Create", "Alter", "AlterTable",
    "TruncateTable", "Grant", "Revoke", "Command", "Copy", "Into",
)
_WRITE_NODES = tuple(getattr(exp, name) for name in _WRITE_NODE_NAMES if hasattr(exp, name))

_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")
_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")
_FUNCTION_CALL = re.compile(
    r"\b(" + "|".join(sorted(BLOCKED_FUNCTIONS)) + r")\s*\(", re.IGNORECASE
)


class LexicalError(ValueError):
    """Raised when the statement cannot be scanned (e.g. unterminated literal)."""


def _segments(statement: str) -> Iterator[Tuple[str, int, int]]:
    """
    Split ``statement`` into ``(kind, start, end)`` spans.

    Kinds are ``code``, ``comment``, ``literal`` and ``identifier``.

    Raises:
        LexicalError: on an unterminated comment, literal or identifier
    """
    i = 0
    n = len(statement)
    code_start = 0

    while i < n:
        ch = statement[i]
        nxt = statement[i + 1] if i + 1 < n else ""
        start = i

        if ch == "-" and nxt == "-":
            end = statement.find("\n", i)
            i = n if end == -1 else end
            kind = "comment"
        elif ch == "/" and nxt == "*":
            depth, i = 1, i + 2
            while i < n and depth:
                if statement.startswith("/*", i):
                    depth, i = depth + 1, i + 2
                elif statement.startswith("*/", i):
                    depth, i = depth - 1, i + 2
                else:
                    i += 1
            if depth:
                raise LexicalError("Unterminated block comment")
            kind = "comment"
        elif ch == "'":
            escaped = i > 0 and statement[i - 1] in "eE" and (i < 2 or not statement[i - 2].isalnum())
            i += 1
            while True:
                if i >= n:
                    raise LexicalError("Unterminated string literal")
                if escaped and statement[i] == "\\":
                    i += 2
                    continue
                if statement[i] == "'":
                    if i + 1 < n and statement[i + 1] == "'":
                        i += 2
                        continue
                    i += 1
                    break
                i += 1
            kind = "literal"
        elif ch == '"':
            i += 1
            while True:
                if i >= n:
                    raise LexicalError("Unterminated quoted identifier")
                if statement[i] == '"':
                    if i + 1 < n and statement[i + 1] == '"':
                        i += 2
                        continue
                    i += 1
                    break
                i += 1
            kind = "identifier"
        elif ch == "$" and (match := _DOLLAR_TAG.match(statement, i)) and not (i > 0 and _WORD.match(statement[i - 1])):
            tag = match.group(0)
            end = statement.find(tag, match.end())
            if end == -1:
                raise LexicalError("Unterminated dollar-quoted string")
            i = end + len(tag)
            kind = "literal"
        else:
            i += 1
            continue

        if code_start < start:
            yield "code", code_start, start
        yield kind, start, i
        code_start = i

    if code_start < n:
        yield "code", code_start, n


_MASKS = {"comment": " ", "literal": " _literal_ ", "identifier": " _identifier_ "}


def scan(statement: str) -> str:
    """
    Mask comments and literals in ``statement``.

    Args:
        statement: SQL text

    Returns:
        The text with comments replaced by spaces and literals replaced
        by placeholders

    Raises:
        LexicalError: on an unterminated comment, literal or identifier
    """
    return "".join(
        statement[start:end] if kind == "code" else _MASKS[kind]
        for kind, start, end in _segments(statement)
    )


def statement_end(statement: str) -> Optional[int]:
    """
    Offset of the first semicolon outside comments and literals.

    Raises:
        LexicalError: on an unterminated comment, literal or identifier
    """
    for kind, start, end in _segments(statement):
        if kind == "code":
            index = statement.find(";", start, end)
            if index != -1:
                return index
    return None


class SQLSafetyGate:
    """
    Pre-execution check restricting SQL to one read-only statement.
    """

    def __init__(
        self,
        allowed_keywords: Optional[Set[str]] = None,
        forbidden_keywords: Optional[Set[str]] = None,
        dialect: str = "postgres",
        parse_check: bool = True
    ):
        """
        Args:
            allowed_keywords: Leading keywords that may start a statement
            forbidden_keywords: Keywords rejected anywhere in the statement
            dialect: sqlglot dialect used for the parse check
            parse_check: Whether to confirm the verdict with a sqlglot parse
        """
        self.allowed_keywords = {k.upper() for k in (allowed_keywords or ALLOWED_LEADING_KEYWORDS)}
        self.forbidden_keywords = {k.upper() for k in (forbidden_keywords or FORBIDDEN_KEYWORDS)}
        self.dialect = dialect
        self.parse_check = parse_check

    def validate(self, candidate: Union[str, SQLCandidate]) -> SafetyVerdict:
        """
        Approve or reject a candidate statement.

        Args:
            candidate: SQL text or SQLCandidate

        Returns:
            SafetyVerdict; rejections carry a reason for the caller
        """
        statement = candidate.sql if isinstance(candidate, SQLCandidate) else (candidate or "")
        statement = statement.strip()

        verdict = self._lexical_check(statement)
        if verdict is None and self.parse_check:
            verdict = self._parse_check(statement)
        if verdict is None:
            verdict = SafetyVerdict.approve(statement)

        if verdict.approved:
            logger.debug("Statement approved by safety gate")
        else:
            logger.warning(f"Statement rejected by safety gate: {verdict.reason}")
        return verdict

    def _lexical_check(self, statement: str) -> Optional[SafetyVerdict]:
        if not statement:
            return SafetyVerdict.reject(statement, "Empty statement")

        try:
            code = scan(statement)
        except LexicalError as e:
            return SafetyVerdict.reject(statement, str(e))

        segments = [segment for segment in code.split(";") if segment.strip()]
        if not segments:
            return SafetyVerdict.reject(statement, "Statement contains only comments")
        if len(segments) > 1:
            return SafetyVerdict.reject(statement, "Multiple statements are not allowed")

        words = [word.upper() for word in _WORD.findall(code)]
        leading = words[0] if words else ""
        if leading not in self.allowed_keywords:
            return SafetyVerdict.reject(
                statement,
                f"Only read-only statements are allowed (got {leading or 'no keyword'})"
            )

        forbidden = sorted({word for word in words if word in self.forbidden_keywords})
        if forbidden:
            return SafetyVerdict.reject(
                statement, f"Statement contains forbidden keyword(s): {', '.join(forbidden)}"
            )

        blocked = _FUNCTION_CALL.search(code)
        if blocked:
            return SafetyVerdict.reject(statement, f"Function {blocked.group(1).lower()} is not allowed")

        return None

    def _parse_check(self, statement: str) -> Optional[SafetyVerdict]:
        try:
            trees = [tree for tree in sqlglot.parse(statement.rstrip().rstrip(";"), read=self.dialect) if tree is not None]
        except SqlglotError as e:
            return SafetyVerdict.reject(statement, f"Statement could not be parsed: {e}")

        if len(trees) != 1:
            return SafetyVerdict.reject(statement, "Multiple statements are not allowed")

        tree = trees[0]
        if not isinstance(tree, _READ_ONLY_ROOTS):
            return SafetyVerdict.reject(statement, f"Statement type {tree.key.upper()} is not allowed")

        for node in tree.walk():
            node = node[0] if isinstance(node, tuple) else node
            if isinstance(node, _WRITE_NODES):
                return SafetyVerdict.reject(statement, f"Statement contains a {node.key.upper()} operation")

        return None
