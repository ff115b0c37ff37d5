"""
Filter conditions shared by all storage backends.

A filter is a field -> value mapping with a parallel field -> operator
mapping (default "="). Conditions render to SQL fragments for SQL backends
and evaluate directly against row dicts for the in-memory backend, so both
agree on semantics.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache
from typing import Any

from crudkit.errors import QueryError

# Valid SQL identifier pattern (alphanumeric and underscore, not starting with digit)
_VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_sql_identifier(name: str, context: str = "identifier") -> str:
    """
    Validate that a string is a safe SQL identifier.

    Raises:
        QueryError: If the name is empty or contains invalid characters
    """
    if not name:
        raise QueryError(f"SQL {context} cannot be empty")
    if not _VALID_IDENTIFIER_PATTERN.match(name):
        raise QueryError(
            f"Invalid SQL {context} '{name}': must contain only letters, digits, "
            "and underscores, and cannot start with a digit"
        )
    return name


def quote_identifier(name: str, context: str = "identifier") -> str:
    """Validate and double-quote an identifier."""
    return f'"{validate_sql_identifier(name, context)}"'


class Operator(StrEnum):
    """Supported comparison operators."""

    EQ = "="
    NE = "!="
    NE_ALT = "<>"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    IN = "IN"
    NOT_IN = "NOT IN"

    @classmethod
    def parse(cls, raw: str | None) -> Operator:
        if raw is None:
            return cls.EQ
        normalized = " ".join(str(raw).split()).upper()
        try:
            return cls(normalized)
        except ValueError:
            raise QueryError(f"Unsupported filter operator '{raw}'") from None


_NEGATED = (Operator.NE, Operator.NE_ALT)
_ORDERING: dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.LT: lambda a, b: a < b,
    Operator.LE: lambda a, b: a <= b,
    Operator.GT: lambda a, b: a > b,
    Operator.GE: lambda a, b: a >= b,
}


@lru_cache(maxsize=256)
def _like_regex(pattern: str) -> re.Pattern[str]:
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class FilterCondition:
    """A single field/operator/value condition."""

    field: str
    operator: Operator
    value: Any

    @classmethod
    def build(
        cls,
        filter: Mapping[str, Any] | None,
        operators: Mapping[str, str] | None = None,
    ) -> list[FilterCondition]:
        """
        Combine a filter and its operator map into conditions.

        Examples:
            build({"status": "active"}) -> [status = 'active']
            build({"price": 10}, {"price": ">="}) -> [price >= 10]
        """
        operators = operators or {}
        return [
            cls(field=validate_sql_identifier(name, "field name"),
                operator=Operator.parse(operators.get(name)),
                value=value)
            for name, value in (filter or {}).items()
        ]

    def _sequence(self) -> list[Any]:
        if isinstance(self.value, (list, tuple, set, frozenset)):
            return list(self.value)
        return [self.value]

    def to_sql(
        self,
        placeholder: str = "?",
        convert: Callable[[Any], Any] = lambda v: v,
    ) -> tuple[str, list[Any]]:
        """
        Convert the condition to an SQL fragment and parameters.

        Args:
            placeholder: Parameter placeholder of the driver ("?" or "%s")
            convert: Converts Python values to driver values
        """
        column = quote_identifier(self.field, "field name")

        if self.value is None and self.operator == Operator.EQ:
            return f"{column} IS NULL", []
        if self.value is None and self.operator in _NEGATED:
            return f"{column} IS NOT NULL", []

        if self.operator in (Operator.IN, Operator.NOT_IN):
            values = [convert(v) for v in self._sequence()]
            if not values:
                # IN () is invalid SQL; an empty set matches nothing
                return ("1 = 0", []) if self.operator == Operator.IN else ("1 = 1", [])
            placeholders = ", ".join(placeholder for _ in values)
            return f"{column} {self.operator.value} ({placeholders})", values

        return f"{column} {self.operator.value} {placeholder}", [convert(self.value)]

    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate the condition against a row with SQL NULL semantics."""
        actual = row.get(self.field)
        op = self.operator

        if self.value is None and op == Operator.EQ:
            return actual is None
        if self.value is None and op in _NEGATED:
            return actual is not None
        if actual is None:
            return False

        if op == Operator.EQ:
            return bool(actual == self.value)
        if op in _NEGATED:
            return bool(actual != self.value)
        if op in _ORDERING:
            try:
                return _ORDERING[op](actual, self.value)
            except TypeError:
                return False
        if op in (Operator.LIKE, Operator.NOT_LIKE):
            found = bool(_like_regex(str(self.value)).match(str(actual)))
            return found if op == Operator.LIKE else not found
        if op == Operator.IN:
            return actual in self._sequence()
        return actual not in self._sequence()


def build_where_clause(
    conditions: list[FilterCondition],
    placeholder: str = "?",
    convert: Callable[[Any], Any] = lambda v: v,
    *,
    exclude_deleted: bool = True,
) -> tuple[str, list[Any]]:
    """
    Build a WHERE clause joining all conditions with AND.

    Returns:
        Tuple of (where_clause, parameters); the clause is empty when there
        is nothing to filter on
    """
    fragments: list[str] = []
    params: list[Any] = []

    for condition in conditions:
        sql, condition_params = condition.to_sql(placeholder, convert)
        fragments.append(sql)
        params.extend(condition_params)

    if exclude_deleted:
        fragments.append('"deleted_at" IS NULL')

    if not fragments:
        return "", []
    return "WHERE " + " AND ".join(fragments), params


def matches_all(
    row: Mapping[str, Any],
    conditions: list[FilterCondition],
    *,
    exclude_deleted: bool = True,
) -> bool:
    """In-memory counterpart of build_where_clause()."""
    if exclude_deleted and row.get("deleted_at") is not None:
        return False
    return all(condition.matches(row) for condition in conditions)
