"""Read-only statement validation, naming repair and entity scoping.

This is a best-effort textual layer, not a SQL parser. String literals are
masked before any structural rewrite so quoted text is never mistaken for
SQL, while validation deliberately runs on the raw text.
"""

from __future__ import annotations

import re

from hotel_router.config import SandboxConfig
from hotel_router.errors import QueryRejectedError
from hotel_router.types import ErrorCode

_LITERAL_PATTERN = re.compile(r"'(?:[^']|'')*'")
_CLAUSE_PATTERN = re.compile(
    r"(WHERE|GROUP\s+BY|ORDER\s+BY|LIMIT|OFFSET|HAVING|WINDOW|FETCH|UNION|INTERSECT|EXCEPT)\b",
    flags=re.IGNORECASE,
)
_NOT_AN_ALIAS = {
    "where", "join", "left", "right", "inner", "outer", "full", "cross", "natural",
    "on", "using", "group", "order", "limit", "offset", "having", "window", "fetch",
    "union", "intersect", "except", "for", "as",
}
_MAX_REPAIR_PASSES = 5


def mask_literals(sql: str) -> str:
    """Blank out string literal bodies, keeping every character position."""
    return _LITERAL_PATTERN.sub(lambda m: "'" + "~" * (len(m.group(0)) - 2) + "'", sql)


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _splice(prefix: str, middle: str, suffix: str) -> str:
    result = prefix.rstrip() + " " + middle
    if suffix.strip():
        result += suffix if suffix[0].isspace() or suffix[0] == ")" else " " + suffix
    return result


class SafeQueryBuilder:
    """Turns a raw statement into a validated, repaired and scoped one.

    `build` is a fixed point: building an already built statement returns it
    unchanged.
    """

    def __init__(self, config: SandboxConfig | None = None) -> None:
        self.config = config or SandboxConfig()
        cfg = self.config
        self._allowed = [
            re.compile(re.escape(prefix) + r"\b", flags=re.IGNORECASE)
            for prefix in cfg.allowed_prefixes
        ]
        self._forbidden = [
            (keyword.upper(), re.compile(r"\b" + re.escape(keyword) + r"\b", flags=re.IGNORECASE))
            for keyword in cfg.forbidden_keywords
        ]
        self._repairs = [
            (re.compile(r"(?<![\w.])" + re.escape(wrong) + r"(?!\w)", flags=re.IGNORECASE), right)
            for wrong, right in cfg.naming_repairs
        ]
        table = re.escape(cfg.entity_table)
        column = re.escape(cfg.entity_column)
        self._table_pattern = re.compile(
            r"\b" + table + r"\b(?:\s+(?:AS\s+)?(?P<alias>[A-Za-z_]\w*))?",
            flags=re.IGNORECASE,
        )
        self._filter_pattern = re.compile(
            r"(?:LOWER\s*\(\s*)?(?:(?P<qual>[A-Za-z_]\w*)\.)?"
            + column
            + r"\b(?:\s*\))?\s*(?:=|I?LIKE)\s*(?:LOWER\s*\(\s*)?'[^']*'(?:\s*\))?",
            flags=re.IGNORECASE,
        )

    def build(self, query: str, entity_scope: str | None = None) -> str:
        statement = self.validate(query)
        statement = self.repair(statement)
        return self.apply_scope(statement, entity_scope)

    def validate(self, query: object) -> str:
        """Return the normalized statement or raise `QueryRejectedError`."""
        if not isinstance(query, str) or not query.strip():
            raise QueryRejectedError(
                f"Query is required and must be a non-empty string. Received: {type(query).__name__}",
                ErrorCode.INVALID_INPUT,
            )
        statement = query.strip().rstrip(";").strip()

        if not any(pattern.match(statement) for pattern in self._allowed):
            allowed = ", ".join(self.config.allowed_prefixes)
            raise QueryRejectedError(
                f"Only {allowed} statements are allowed",
                ErrorCode.FORBIDDEN_OPERATION,
            )
        if ";" in mask_literals(statement):
            raise QueryRejectedError(
                "Multiple statements are not allowed",
                ErrorCode.FORBIDDEN_OPERATION,
            )
        for keyword, pattern in self._forbidden:
            if pattern.search(statement):
                raise QueryRejectedError(
                    f"Forbidden operation: {keyword} is not allowed",
                    ErrorCode.FORBIDDEN_KEYWORD,
                )
        return statement

    def repair(self, statement: str) -> str:
        """Rewrite known wrong table/column names until the text is stable."""
        current = statement
        for _ in range(_MAX_REPAIR_PASSES):
            repaired = self._repair_once(current)
            if repaired == current:
                break
            current = repaired
        return current

    def _repair_once(self, statement: str) -> str:
        parts: list[str] = []
        last = 0
        for match in _LITERAL_PATTERN.finditer(statement):
            parts.append(self._repair_segment(statement[last : match.start()]))
            parts.append(match.group(0))
            last = match.end()
        parts.append(self._repair_segment(statement[last:]))
        return "".join(parts)

    def _repair_segment(self, segment: str) -> str:
        for pattern, replacement in self._repairs:
            segment = pattern.sub(lambda _m, value=replacement: value, segment)
        return segment

    def scope_filter(self, entity_scope: str, qualifier: str | None = None) -> str:
        literal = entity_scope.lower().replace("%", "").replace("\\", "").replace("'", "''")
        column = f"{qualifier}.{self.config.entity_column}" if qualifier else self.config.entity_column
        return f"{column} ILIKE '%{literal}%'"

    def apply_scope(self, statement: str, entity_scope: str | None) -> str:
        """Force the entity filter onto statements reading the fact table.

        An existing filter on the entity column is replaced, since the
        resolved scope is authoritative over any literal in the raw intent.
        Otherwise the filter is added to (or becomes) the WHERE clause of the
        query level that reads the table.
        """
        if not entity_scope or not entity_scope.strip():
            return statement
        masked = mask_literals(statement)
        table_match = self._table_pattern.search(masked)
        if table_match is None:
            return statement

        existing = list(self._filter_pattern.finditer(masked))
        if existing:
            result = statement
            for match in reversed(existing):
                replacement = self.scope_filter(entity_scope, match.group("qual"))
                result = result[: match.start()] + replacement + result[match.end() :]
            return result

        alias = table_match.group("alias")
        if alias and alias.lower() in _NOT_AN_ALIAS:
            alias = None
        qualifier = alias
        if qualifier is None and re.search(r"\bJOIN\b", masked, flags=re.IGNORECASE):
            qualifier = self.config.entity_table
        scope_clause = self.scope_filter(entity_scope, qualifier)

        table_end = table_match.start() + len(self.config.entity_table)
        where_pos, end_pos = self._scan_level(masked, table_end)
        if where_pos is not None:
            body = statement[where_pos + len("WHERE") : end_pos].strip()
            return _splice(
                statement[:where_pos],
                f"WHERE {scope_clause} AND ({body})",
                statement[end_pos:],
            )
        return _splice(statement[:end_pos], f"WHERE {scope_clause}", statement[end_pos:])

    @staticmethod
    def _scan_level(masked: str, start: int) -> tuple[int | None, int]:
        """Find the WHERE keyword and the clause end at the table's nesting level."""
        depth = 0
        where_pos: int | None = None
        for index in range(start, len(masked)):
            ch = masked[index]
            if ch == "(":
                depth += 1
                continue
            if ch == ")":
                if depth == 0:
                    return where_pos, index
                depth -= 1
                continue
            if depth or (index > 0 and _is_word_char(masked[index - 1])):
                continue
            match = _CLAUSE_PATTERN.match(masked, index)
            if match is None:
                continue
            if match.group(1).upper() == "WHERE":
                if where_pos is None:
                    where_pos = index
                continue
            return where_pos, index
        return where_pos, len(masked)
