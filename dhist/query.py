#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#
"""
Search query language.

A query is a whitespace separated list of expressions, AND-ed together:

    git commit              command contains "git" and "commit"
    "git commit"            command contains "git commit"
    dir:/src host:laptop    directory contains "/src", hostname contains "laptop"
    dir:"My Documents"      quoted values keep their whitespace
    make OR ninja           either group may match
    NOT dir:/tmp            negate the next expression

Field names are `command`/`cmd`, `dir`/`directory` and `host`/`hostname`.
An unknown `name:` prefix is part of the term, so `scp a:b` still searches
commands. The keywords `OR` and `NOT` are only recognized in upper case and
unquoted.
"""

import logging
from dataclasses import dataclass
from typing import NamedTuple

from dhist.errors import QueryParseError

logger = logging.getLogger(__name__)

COMMAND = 'command'
DIRECTORY = 'directory'
HOST = 'host'

FIELD_ALIASES = {
    'command': COMMAND,
    'cmd': COMMAND,
    'dir': DIRECTORY,
    'directory': DIRECTORY,
    'host': HOST,
    'hostname': HOST,
}

# HistoryEntry attribute and database column for each field
FIELD_ATTRIBUTES = {
    COMMAND: 'command',
    DIRECTORY: 'directory',
    HOST: 'hostname',
}
FIELD_COLUMNS = {
    COMMAND: 'command',
    DIRECTORY: 'executing_dir',
    HOST: 'executing_host',
}

KEYWORD_OR = 'OR'
KEYWORD_NOT = 'NOT'


@dataclass(frozen=True)
class Condition:
    field: str
    term: str
    negated: bool = False


@dataclass(frozen=True)
class BooleanQuery:
    """OR of AND-groups of conditions. No groups matches everything."""
    groups: tuple = ()

    def is_empty(self):
        return not self.groups


@dataclass(frozen=True)
class SqlFilter:
    """WHERE clause fragment plus its positional parameters"""
    clause: str
    params: tuple = ()


class _Token(NamedTuple):
    segments: tuple  # (text, quoted) pairs
    position: int

    @property
    def keyword(self):
        if len(self.segments) == 1:
            text, quoted = self.segments[0]
            if not quoted and text in (KEYWORD_OR, KEYWORD_NOT):
                return text
        return None

    def field_and_value(self):
        first, quoted = self.segments[0]
        if not quoted and ':' in first:
            name, rest = first.split(':', 1)
            field = FIELD_ALIASES.get(name.lower())
            if field:
                return field, rest + ''.join(text for text, _ in self.segments[1:])
        return COMMAND, ''.join(text for text, _ in self.segments)


def _tokenize(raw):
    """Split raw text into tokens, keeping quoted spans intact"""
    tokens = []
    i = 0
    n = len(raw)
    while i < n:
        if raw[i].isspace():
            i += 1
            continue

        start = i
        segments = []
        bare = []
        while i < n and not raw[i].isspace():
            if raw[i] == '"':
                end = raw.find('"', i + 1)
                if end == -1:
                    raise QueryParseError(f"unterminated quote at position {i}", position=i)
                if bare:
                    segments.append((''.join(bare), False))
                    bare = []
                segments.append((raw[i + 1:end], True))
                i = end + 1
            else:
                bare.append(raw[i])
                i += 1
        if bare:
            segments.append((''.join(bare), False))
        tokens.append(_Token(tuple(segments), start))
    return tokens


def parse_query(raw):
    """Parse raw search text into a BooleanQuery.

    Raises QueryParseError on lexical failure. Empty OR groups are dropped
    and a NOT with nothing after it is searched for as the word itself,
    since the text is usually half typed.
    """
    groups = []
    current = []
    negate_next = False

    for token in _tokenize(raw):
        keyword = token.keyword
        if keyword == KEYWORD_OR:
            if current:
                groups.append(tuple(current))
            current = []
            negate_next = False
            continue
        if keyword == KEYWORD_NOT:
            negate_next = True
            continue

        field, value = token.field_and_value()
        term = value.strip()
        if term:
            current.append(Condition(field, term, negate_next))
        negate_next = False

    if negate_next:
        current.append(Condition(COMMAND, KEYWORD_NOT))
    if current:
        groups.append(tuple(current))
    return BooleanQuery(tuple(groups))


def fallback_query(raw):
    """Treat the whole raw text as one command substring term"""
    term = raw.strip()
    if not term:
        return BooleanQuery()
    return BooleanQuery(((Condition(COMMAND, term),),))


def parse_or_fallback(raw):
    try:
        return parse_query(raw)
    except QueryParseError as e:
        logger.debug(f"Query {raw!r} not parsed ({e}), using literal match")
        return fallback_query(raw)


def contains_folded(value, term):
    """Case-insensitive substring test shared by Python and SQL evaluation"""
    if value is None or term is None:
        return False
    return term.casefold() in value.casefold()


def condition_matches(condition, entry):
    value = getattr(entry, FIELD_ATTRIBUTES[condition.field])
    return contains_folded(value, condition.term) != condition.negated


def compile_query(query):
    """Compile a BooleanQuery into a predicate over history entries"""
    if query.is_empty():
        return lambda entry: True

    compiled = tuple(
        tuple((FIELD_ATTRIBUTES[c.field], c.term.casefold(), c.negated) for c in group)
        for group in query.groups
    )

    def predicate(entry):
        for group in compiled:
            for attribute, folded_term, negated in group:
                value = (getattr(entry, attribute) or "").casefold()
                if (folded_term in value) == negated:
                    break
            else:
                return True
        return False

    return predicate


def to_sql(query):
    """Express a BooleanQuery as a WHERE clause using the dh_contains() SQL function"""
    if query.is_empty():
        return SqlFilter("1")

    group_clauses = []
    params = []
    for group in query.groups:
        parts = []
        for condition in group:
            expr = f"dh_contains({FIELD_COLUMNS[condition.field]}, ?)"
            if condition.negated:
                expr = f"NOT {expr}"
            parts.append(expr)
            params.append(condition.term)
        group_clauses.append("(" + " AND ".join(parts) + ")")
    return SqlFilter(" OR ".join(group_clauses), tuple(params))
