"""
Targeted SQL text utilities.

This is deliberately not a SQL parser. A small tokenizer splits SQL into
comments, string literals, quoted identifiers, casts, parameter placeholders
and bare words, which is enough to:
- find parameter placeholders without mistaking `::type` casts for them
- quote or re-case identifiers outside of literals and comments
- extract table names after FROM / JOIN
"""

from __future__ import annotations

import re
from typing import Callable, NamedTuple, Optional


# =============================================================================
# Tokenizer
# =============================================================================

_TOKEN_PATTERN = re.compile(
    r"""
      (?P<comment>--[^\n]*|/\*.*?\*/)
    | (?P<string>'(?:[^']|'')*')
    | (?P<cast>::)
    | :"(?P<colon_quoted>[A-Za-z_]\w*)"
    | :(?P<colon>[A-Za-z_]\w*)
    | @(?P<at>[A-Za-z_]\w*)
    | \$\{(?P<brace>[A-Za-z_]\w*)\}
    | \$(?P<number>\d+)
    | (?P<positional>\?)
    | (?P<quoted>"(?:[^"]|"")*")
    | (?P<word>[A-Za-z_]\w*)
    | (?P<space>\s+)
    | (?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_NAMED_GROUPS = ("colon_quoted", "colon", "at", "brace")


class Token(NamedTuple):
    """
    A lexical token.

    kind is one of: comment, string, cast, named, numbered, positional,
    quoted, word, space, other. For parameter tokens `name` holds the
    parameter name (named) or the 1-based index as text (numbered).
    """
    kind: str
    text: str
    name: Optional[str] = None

    @property
    def is_parameter(self) -> bool:
        return self.kind in ("named", "numbered", "positional")


def tokenize(sql: str) -> list[Token]:
    """Split SQL text into tokens; concatenating token texts gives back the input."""
    tokens: list[Token] = []
    for match in _TOKEN_PATTERN.finditer(sql):
        group = match.lastgroup
        text = match.group(0)
        if group in _NAMED_GROUPS:
            tokens.append(Token("named", text, match.group(group)))
        elif group == "number":
            tokens.append(Token("numbered", text, match.group("number")))
        else:
            tokens.append(Token(group, text))
    return tokens


def render(tokens: list[Token]) -> str:
    return "".join(token.text for token in tokens)


def replace_tokens(sql: str, replacer: Callable[[Token], Optional[str]]) -> str:
    """
    Rebuild SQL, replacing tokens for which `replacer` returns a string.

    Returning None keeps the token unchanged.
    """
    parts: list[str] = []
    for token in tokenize(sql):
        replacement = replacer(token)
        parts.append(token.text if replacement is None else replacement)
    return "".join(parts)


# =============================================================================
# Parameters
# =============================================================================


def find_parameters(sql: str) -> list[Token]:
    """All parameter placeholder tokens, in order of appearance."""
    return [t for t in tokenize(sql) if t.is_parameter]


def parameter_names(sql: str, positional_name: str = "userId") -> list[str]:
    """
    Declared parameter names for a SQL text.

    Named placeholders (:name, :"name", @name, ${name}) contribute their
    names. Positional placeholders (?, $N) carry no name; they contribute
    `positional_name` once, unless a named placeholder already did.
    """
    names: list[str] = []
    has_positional = False
    for token in find_parameters(sql):
        if token.kind == "named":
            if token.name not in names:
                names.append(token.name)
        else:
            has_positional = True
    if has_positional and not names:
        names.append(positional_name)
    return names


# =============================================================================
# Comments, whitespace and table names
# =============================================================================

_LINE_COMMENT = re.compile(r"--.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")
_TABLE_AFTER_KEYWORD = re.compile(
    r"\b(?:FROM|JOIN)\s+([\"`']?)([A-Za-z0-9_]+)\1",
    re.IGNORECASE,
)


def strip_comments(sql: str) -> str:
    sql = _LINE_COMMENT.sub("", sql)
    return _BLOCK_COMMENT.sub("", sql)


def normalize_whitespace(sql: str) -> str:
    return _WHITESPACE.sub(" ", sql).strip()


def extract_table_names(sql: str) -> list[str]:
    """
    Table names referenced after FROM or JOIN (optionally quoted), deduplicated.

    Subquery tables are included. Schema-qualified names yield the schema
    part only; the catalog never holds those.
    """
    normalized = normalize_whitespace(strip_comments(sql))
    tables: list[str] = []
    for match in _TABLE_AFTER_KEYWORD.finditer(normalized):
        name = match.group(2)
        if name not in tables:
            tables.append(name)
    return tables


def references_table(sql: str, table_name: str) -> bool:
    """True if the table appears after FROM or JOIN (case-insensitive)."""
    wanted = table_name.lower()
    return any(name.lower() == wanted for name in extract_table_names(sql))


_CTE_NAME = re.compile(
    r"(?:\bWITH(?:\s+RECURSIVE)?|,)\s*\"?([A-Za-z0-9_]+)\"?\s+AS\s*\(",
    re.IGNORECASE,
)


def cte_names(sql: str) -> list[str]:
    """Names bound by WITH ... AS (...) clauses."""
    normalized = normalize_whitespace(strip_comments(sql))
    return [match.group(1) for match in _CTE_NAME.finditer(normalized)]


def mentions_identifier(sql: str, identifier: str) -> bool:
    """
    True if the identifier appears as a bare word, quoted identifier or
    named parameter (case-insensitive), ignoring literals and comments.
    """
    wanted = identifier.lower()
    for token in tokenize(sql):
        if token.kind == "word" and token.text.lower() == wanted:
            return True
        if token.kind == "quoted" and token.text[1:-1].lower() == wanted:
            return True
        if token.kind == "named" and token.name.lower() == wanted:
            return True
    return False


# =============================================================================
# Identifier normalization
# =============================================================================


def quote_identifiers(sql: str, identifiers: list[str] | tuple[str, ...]) -> str:
    """
    Double-quote bare occurrences of case-sensitive identifiers.

    `SELECT userId FROM t GROUP BY userId` -> `SELECT "userId" FROM t GROUP BY "userId"`.
    Matching is exact; literals, comments, quoted identifiers and parameter
    placeholders such as :userId are left alone.
    """
    wanted = set(identifiers)
    if not wanted:
        return sql

    def replacer(token: Token) -> Optional[str]:
        if token.kind == "word" and token.text in wanted:
            return f'"{token.text}"'
        return None

    return replace_tokens(sql, replacer)


def fix_identifier_case(sql: str, known: dict[str, str]) -> str:
    """
    Re-case quoted identifiers to the catalog's spelling.

    `known` maps lowercased names to their exact casing; `"createdat"`
    becomes `"createdAt"` when the catalog spells it that way.
    """
    if not known:
        return sql

    def replacer(token: Token) -> Optional[str]:
        if token.kind != "quoted":
            return None
        inner = token.text[1:-1]
        exact = known.get(inner.lower())
        if exact and exact != inner:
            return f'"{exact}"'
        return None

    return replace_tokens(sql, replacer)
