"""
Clause nodes collected by a Query and their SQL rendering.

Every node renders to a fragment plus the bindings for the ``?`` placeholders
it contains, in the order they appear in the fragment. Nodes keep identifiers
unquoted; they are quoted while rendering, with the identifier preparer of the
dialect the statement is sent to.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Literal, Sequence, TypeAlias

from sqlalchemy.engine.default import DefaultDialect
from sqlalchemy.sql.compiler import IdentifierPreparer

from lucid_db.exceptions import (
    ContractError,
    InvalidIdentifierError,
    InvalidOperatorError,
)
from lucid_db.values import SQLValue

Boolean: TypeAlias = Literal["AND", "OR"]
Compiled: TypeAlias = tuple[str, list[SQLValue]]

IDENTIFIER = r"[A-Za-z_][A-Za-z0-9_]*"

_TABLE_RE = re.compile(rf"^({IDENTIFIER})(?:\s+[Aa][Ss]\s+({IDENTIFIER}))?$")
_COLUMN_RE = re.compile(rf"^{IDENTIFIER}(?:\.{IDENTIFIER})?$")
_SELECT_RE = re.compile(
    rf"^(\*|{IDENTIFIER}(?:\.(?:{IDENTIFIER}|\*))?)(?:\s+[Aa][Ss]\s+({IDENTIFIER}))?$"
)

OPERATORS = {
    "=": "=",
    "!=": "!=",
    "<>": "<>",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
    "like": "LIKE",
    "not like": "NOT LIKE",
}

DIRECTIONS = {"asc": "ASC", "desc": "DESC"}

# Used when a query is rendered without a connection.
DEFAULT_PREPARER: IdentifierPreparer = DefaultDialect().identifier_preparer


def check_table(name: str) -> str:
    """Validate a table reference (``orders`` or ``orders AS o``)."""
    match = _TABLE_RE.match(name.strip()) if isinstance(name, str) else None
    if match is None:
        raise InvalidIdentifierError(f"Invalid table name: {name!r}")
    table, alias = match.groups()
    return f"{table} AS {alias}" if alias else table


def check_column(name: str) -> str:
    """Validate a column reference (``total`` or ``orders.total``)."""
    if not isinstance(name, str) or not _COLUMN_RE.match(name):
        raise InvalidIdentifierError(f"Invalid column name: {name!r}")
    return name


def check_select(expression: str) -> str:
    """Validate a select-list entry (``*``, ``orders.*``, ``total AS amount``)."""
    match = _SELECT_RE.match(expression.strip()) if isinstance(expression, str) else None
    if match is None:
        raise InvalidIdentifierError(f"Invalid select column: {expression!r}")
    column, alias = match.groups()
    return f"{column} AS {alias}" if alias else column


def check_operator(operator: str) -> str:
    normalized = OPERATORS.get(str(operator).strip().lower())
    if normalized is None:
        raise InvalidOperatorError(f"Unsupported operator: {operator!r}")
    return normalized


def check_direction(direction: str) -> str:
    normalized = DIRECTIONS.get(str(direction).strip().lower())
    if normalized is None:
        raise InvalidOperatorError(f"Unsupported sort direction: {direction!r}")
    return normalized


def check_raw(sql: str, bindings: Sequence[SQLValue]) -> None:
    if sql.count("?") != len(bindings):
        msg = (
            f"Raw expression {sql!r} has {sql.count('?')} placeholder(s) "
            f"but {len(bindings)} binding(s) were given"
        )
        raise ContractError(msg)


def result_key(expression: str) -> str:
    """Name under which a select-list entry shows up in result rows."""
    if " AS " in expression:
        return expression.rsplit(" AS ", 1)[1]
    return expression.rsplit(".", 1)[-1]


def placeholders(count: int) -> str:
    return ", ".join("?" * count)


def quote_name(preparer: IdentifierPreparer, name: str) -> str:
    """
    Quote a validated reference such as ``order``, ``orders.group`` or ``orders.*``.

    Only the parts the dialect needs quoted (reserved words, mixed case) are
    quoted, so ``orders.total`` renders unchanged.
    """
    return ".".join(
        part if part == "*" else preparer.quote(part) for part in name.split(".")
    )


def quote_aliased(preparer: IdentifierPreparer, expression: str) -> str:
    """Quote a validated ``name`` or ``name AS alias`` entry."""
    name, _, alias = expression.partition(" AS ")
    sql = quote_name(preparer, name)
    return f"{sql} AS {preparer.quote(alias)}" if alias else sql


class Predicate:
    """A node of a WHERE or HAVING clause."""

    __slots__ = ()
    boolean: Boolean

    def compile(self, preparer: IdentifierPreparer) -> Compiled:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class Comparison(Predicate):
    column: str
    operator: str
    value: SQLValue
    boolean: Boolean = "AND"

    def compile(self, preparer: IdentifierPreparer) -> Compiled:
        column = quote_name(preparer, self.column)
        return f"{column} {self.operator} ?", [self.value]


@dataclass(frozen=True, slots=True)
class InList(Predicate):
    column: str
    values: tuple[SQLValue, ...]
    negate: bool = False
    boolean: Boolean = "AND"

    def compile(self, preparer: IdentifierPreparer) -> Compiled:
        # "IN ()" is a syntax error in most dialects.
        if not self.values:
            return ("1 = 1" if self.negate else "0 = 1"), []
        keyword = "NOT IN" if self.negate else "IN"
        column = quote_name(preparer, self.column)
        return (
            f"{column} {keyword} ({placeholders(len(self.values))})",
            list(self.values),
        )


@dataclass(frozen=True, slots=True)
class NullCheck(Predicate):
    column: str
    negate: bool = False
    boolean: Boolean = "AND"

    def compile(self, preparer: IdentifierPreparer) -> Compiled:
        column = quote_name(preparer, self.column)
        return f"{column} IS {'NOT NULL' if self.negate else 'NULL'}", []


@dataclass(frozen=True, slots=True)
class Between(Predicate):
    column: str
    low: SQLValue
    high: SQLValue
    negate: bool = False
    boolean: Boolean = "AND"

    def compile(self, preparer: IdentifierPreparer) -> Compiled:
        keyword = "NOT BETWEEN" if self.negate else "BETWEEN"
        column = quote_name(preparer, self.column)
        return f"{column} {keyword} ? AND ?", [self.low, self.high]


@dataclass(frozen=True, slots=True)
class ColumnComparison(Predicate):
    first: str
    operator: str
    second: str
    boolean: Boolean = "AND"

    def compile(self, preparer: IdentifierPreparer) -> Compiled:
        first = quote_name(preparer, self.first)
        second = quote_name(preparer, self.second)
        return f"{first} {self.operator} {second}", []


@dataclass(frozen=True, slots=True)
class Group(Predicate):
    predicates: tuple[Predicate, ...]
    boolean: Boolean = "AND"

    def compile(self, preparer: IdentifierPreparer) -> Compiled:
        sql, bindings = compile_predicates(self.predicates, preparer)
        return f"({sql})", bindings


@dataclass(frozen=True, slots=True)
class RawPredicate(Predicate):
    sql: str
    bindings: tuple[SQLValue, ...] = ()
    boolean: Boolean = "AND"

    def compile(self, preparer: IdentifierPreparer) -> Compiled:
        return f"({self.sql})", list(self.bindings)


@dataclass(frozen=True, slots=True)
class RawExpression:
    """A verbatim select-list entry, e.g. ``count(*) AS total``."""

    sql: str
    bindings: tuple[SQLValue, ...] = ()


@dataclass(frozen=True, slots=True)
class Join:
    kind: Literal["INNER", "LEFT", "RIGHT"]
    table: str
    first: str
    operator: str
    second: str

    def compile(self, preparer: IdentifierPreparer) -> str:
        return (
            f"{self.kind} JOIN {quote_aliased(preparer, self.table)} ON "
            f"{quote_name(preparer, self.first)} {self.operator} "
            f"{quote_name(preparer, self.second)}"
        )


@dataclass(frozen=True, slots=True)
class Order:
    column: str
    direction: str = "ASC"

    def compile(self, preparer: IdentifierPreparer) -> str:
        return f"{quote_name(preparer, self.column)} {self.direction}"


def compile_predicates(
    predicates: Iterable[Predicate], preparer: IdentifierPreparer
) -> Compiled:
    """
    Join predicates with their connectors.

    The connector of the first predicate is dropped, so a chain always
    starts with a bare condition.
    """
    parts: list[str] = []
    bindings: list[SQLValue] = []
    for index, predicate in enumerate(predicates):
        sql, values = predicate.compile(preparer)
        parts.append(sql if index == 0 else f"{predicate.boolean} {sql}")
        bindings.extend(values)
    return " ".join(parts), bindings
