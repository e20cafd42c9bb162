"""Translation of compiled rules into SQLite WHERE fragments.

Used for list queries, where no concrete record is bound. Request operands
are resolved up front and bound as parameters, record fields become column
references. Constructs that need a join or per-row lookup raise
UnsupportedPredicate so the caller can fall back to in-process evaluation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from recordkit.core.datetimes import format_datetime
from recordkit.metadata.models import Collection, FieldDefinition
from recordkit.rules.evaluator import (
    EvaluationContext,
    OperandResolver,
    as_instant,
    guest_mismatch,
    like_pattern,
)
from recordkit.rules.parser import (
    ASTNode,
    CollectionRef,
    Comparison,
    FieldRef,
    Literal,
    LogicalOp,
    Macro,
    RequestRef,
)

ALWAYS_TRUE = "1 = 1"
ALWAYS_FALSE = "1 = 0"


class UnsupportedPredicate(Exception):
    """The expression has no SQL form."""


@dataclass
class SqlPredicate:
    """A parameterised WHERE fragment."""

    sql: str
    params: list[Any] = field(default_factory=list)


@dataclass
class _Expr:
    """One side of a comparison in SQL form."""

    sql: str
    params: list[Any]
    column: FieldDefinition | None = None  # set for multi-valued columns
    literal: Any = None
    is_param: bool = False
    is_date: bool = False
    guest: bool = False


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def json_array(column: str) -> str:
    """SQL expression that yields a JSON array for a multi-valued column."""
    return f"(CASE WHEN json_valid({column}) THEN {column} ELSE '[]' END)"


def json_elements(column: str) -> str:
    """Like json_array, but an empty set yields a single null element."""
    return (
        f"(CASE WHEN json_valid({column}) AND json_array_length({column}) > 0 "
        f"THEN {column} ELSE '[null]' END)"
    )


def escape_like(value: Any) -> str:
    """Escape LIKE metacharacters other than the % wildcard."""
    text = "" if value is None else str(value)
    return text.replace("\\", "\\\\").replace("_", "\\_")


def _instant_param(expr: _Expr) -> _Expr:
    """Rebind a value compared against a date as stored date text."""
    if not expr.is_param:
        return expr
    value = as_instant(expr.literal)
    is_date = isinstance(value, datetime)
    if is_date:
        value = format_datetime(value)
    return _Expr(
        "?", [value], literal=value, is_param=True, is_date=is_date, guest=expr.guest
    )


def _bind(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return format_datetime(value)
    return value


class SqlTranslator:
    """Translates a compiled rule into a WHERE fragment for one collection.

    Usage:
        translator = SqlTranslator(collection, info)
        predicate = translator.translate(rule.ast)
        rows = adapter.query(collection, where=predicate.sql, params=predicate.params)
    """

    def __init__(self, collection: Collection, context: EvaluationContext):
        self.collection = collection
        self.resolver = OperandResolver(context)

    def translate(self, node: ASTNode) -> SqlPredicate:
        sql, params = self._node(node)
        return SqlPredicate(sql, params)

    def _node(self, node: ASTNode) -> tuple[str, list[Any]]:
        if isinstance(node, LogicalOp):
            left_sql, left_params = self._node(node.left)
            right_sql, right_params = self._node(node.right)
            joiner = "AND" if node.operator == "&&" else "OR"
            return f"({left_sql} {joiner} {right_sql})", left_params + right_params
        if isinstance(node, Comparison):
            return self._comparison(node)
        raise UnsupportedPredicate(f"Cannot translate {type(node).__name__}")

    # -------------------------------------------------------------------------
    # Comparisons
    # -------------------------------------------------------------------------

    def _comparison(self, node: Comparison) -> tuple[str, list[Any]]:
        left = self._operand(node.left)
        right = self._operand(node.right)
        if left is None or right is None:
            # Unresolved request operand: fails closed
            return ALWAYS_FALSE, []
        if guest_mismatch(node, left, right):
            return ALWAYS_FALSE, []

        base = node.base_operator
        if left.column is not None and right.column is not None:
            raise UnsupportedPredicate("Comparison between two multi-valued columns")

        multi = left if left.column is not None else right if right.column is not None else None
        if multi is None:
            return self._scalar(base, left, right)

        if not node.existential:
            raise UnsupportedPredicate("Plain operator on a multi-valued column")

        element = _Expr("je.value", [])
        if multi is left:
            inner_sql, inner_params = self._scalar(base, element, right)
        else:
            inner_sql, inner_params = self._scalar(base, left, element)
        sql = (
            f"EXISTS (SELECT 1 FROM json_each({json_elements(quote_identifier(multi.column.name))}) AS je WHERE {inner_sql})"
        )
        return sql, multi.params + inner_params

    def _scalar(self, operator: str, left: _Expr, right: _Expr) -> tuple[str, list[Any]]:
        dates = (left.is_date or right.is_date) and operator not in ("~", "!~")
        if dates:
            if any(not side.is_param and not side.is_date for side in (left, right)):
                raise UnsupportedPredicate("Date compared against a non-date column")
            left, right = _instant_param(left), _instant_param(right)
        params = left.params + right.params
        if operator in ("=", "!="):
            sql_op = "=" if operator == "=" else "!="
            return f"COALESCE({left.sql}, '') {sql_op} COALESCE({right.sql}, '')", params
        if operator in ("~", "!~"):
            negate = "NOT " if operator == "!~" else ""
            if right.is_param:
                pattern = like_pattern(escape_like(right.literal))
                return (
                    f"COALESCE({left.sql}, '') {negate}LIKE ? ESCAPE '\\'",
                    left.params + [pattern],
                )
            return (
                f"COALESCE({left.sql}, '') {negate}LIKE ('%' || COALESCE({right.sql}, '') || '%')",
                params,
            )
        if operator in (">", ">=", "<", "<="):
            if dates:
                if not (left.is_date and right.is_date):
                    # Unparseable values never order against a date
                    return ALWAYS_FALSE, []
                # Empty dates never order against a date
                return (
                    f"(COALESCE({left.sql}, '') != '' AND COALESCE({right.sql}, '') != '' "
                    f"AND {left.sql} {operator} {right.sql})",
                    params + params,
                )
            return f"{left.sql} {operator} {right.sql}", params
        raise UnsupportedPredicate(f"Unknown operator '{operator}'")

    # -------------------------------------------------------------------------
    # Operands
    # -------------------------------------------------------------------------

    def _operand(self, node: ASTNode) -> _Expr | None:
        if isinstance(node, Literal):
            value = _bind(node.value)
            return _Expr("?", [value], literal=value, is_param=True)

        if isinstance(node, Macro):
            value = _bind(self.resolver.resolve(node).single_value)
            return _Expr("?", [value], literal=value, is_param=True, is_date=True)

        if isinstance(node, FieldRef):
            return self._field(node)

        if isinstance(node, RequestRef):
            if node.modifier == "each":
                raise UnsupportedPredicate(":each has no SQL form")
            operand = self.resolver.resolve(node)
            if not operand.resolved:
                return None
            if len(operand.values) > 1:
                raise UnsupportedPredicate("Multi-valued request operand")
            value = _bind(operand.single_value)
            return _Expr("?", [value], literal=value, is_param=True, guest=operand.guest)

        if isinstance(node, CollectionRef):
            raise UnsupportedPredicate("@collection operands have no SQL form")

        raise UnsupportedPredicate(f"Cannot translate {type(node).__name__}")

    def _field(self, node: FieldRef) -> _Expr:
        if len(node.path) > 1:
            raise UnsupportedPredicate("Relation traversal has no SQL form")
        if node.modifier == "each":
            raise UnsupportedPredicate(":each has no SQL form")

        field_def = self.collection.get_field(node.path[0])
        if field_def is None:
            raise UnsupportedPredicate(f"Unknown field '{node.path[0]}'")
        column = quote_identifier(field_def.name)

        if field_def.is_multi:
            if node.modifier == "length":
                return _Expr(f"json_array_length({json_array(column)})", [])
            return _Expr(json_array(column), [], column=field_def)

        if node.modifier == "length":
            return _Expr(f"(CASE WHEN COALESCE({column}, '') = '' THEN 0 ELSE 1 END)", [])
        if node.modifier == "lower":
            return _Expr(f"LOWER({column})", [])
        return _Expr(column, [], is_date=field_def.type == "date")


def translate_rule(
    ast: ASTNode, collection: Collection, context: EvaluationContext
) -> SqlPredicate:
    """Translate a rule AST into a WHERE fragment.

    Raises:
        UnsupportedPredicate: If some part of the expression has no SQL form
    """
    return SqlTranslator(collection, context).translate(ast)
