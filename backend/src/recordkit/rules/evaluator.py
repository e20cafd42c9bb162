"""Evaluator for the rule filter language.

Walks the AST and computes a boolean decision for a concrete record and
request context. Evaluation is read-only: the only outside access is
through the RecordLookup used for relation traversal and @collection
operands.

Operands resolve to a list of values. Comparisons on multi-valued operands
require every element to match, while the ?-prefixed operators (and every
@collection operand) require at least one match. An operand that cannot be
resolved (unset relation, missing related record, unknown collection)
makes its comparison false, including for negated operators. A guest's
@request.auth operands act as empty values against literals and macros, but
never match a record field or another request operand.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from recordkit.core.datetimes import datetime_macros, now_utc, parse_datetime
from recordkit.core.outcomes import InvalidRuleError
from recordkit.core.record import normalize_value
from recordkit.core.request import RequestInfo
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

if TYPE_CHECKING:
    from recordkit.core.record import Record
    from recordkit.metadata.models import Collection, FieldDefinition

FILE_MODIFIER_ERROR = "unsupported modifier :{modifier} on file field '{field}'"


class EvaluationError(InvalidRuleError):
    """Error during rule evaluation."""


class RecordLookup(Protocol):
    """Read access used for relation traversal and @collection operands."""

    def find_by_id(self, collection: str, id: str) -> "Record | None": ...

    def find_all(self, collection: str) -> "list[Record]": ...


@dataclass
class Operand:
    """A resolved operand.

    Attributes:
        values: Resolved values (an empty list acts as a single empty value)
        multi: True if the operand is set-valued
        resolved: False when resolution failed closed
        any_match: True if comparisons are existential regardless of operator
        each: True if every element must match (":each")
        guest: True for an @request.auth operand of an anonymous request
        is_date: True if the values are instants (date fields and macros)
    """

    values: list[Any] = field(default_factory=list)
    multi: bool = False
    resolved: bool = True
    any_match: bool = False
    each: bool = False
    guest: bool = False
    is_date: bool = False

    @classmethod
    def unresolved(cls) -> "Operand":
        return cls(resolved=False)

    @property
    def single_value(self) -> Any:
        return self.values[0] if self.values else None


@dataclass
class EvaluationContext:
    """Context for rule evaluation.

    Attributes:
        collection: Collection of the evaluated record
        record: The candidate record, or None when only request operands are used
        info: The request context
        lookup: Record access for relation traversal and @collection operands
        now: Reference time for the datetime macros
    """

    collection: "Collection"
    record: "Record | None" = None
    info: RequestInfo = field(default_factory=RequestInfo)
    lookup: RecordLookup | None = None
    now: datetime = field(default_factory=now_utc)


class OperandResolver:
    """Resolves operand nodes to values.

    Shared by the Evaluator and the SQL translator, which binds request
    operands as parameters.
    """

    def __init__(self, context: EvaluationContext):
        self.context = context
        self._macros = datetime_macros(context.now)

    def resolve(self, node: ASTNode) -> Operand:
        if isinstance(node, Literal):
            return Operand([node.value])
        if isinstance(node, Macro):
            return Operand([parse_datetime(self._macros[node.name])], is_date=True)
        if isinstance(node, FieldRef):
            return self._resolve_field(node)
        if isinstance(node, RequestRef):
            return self._resolve_request(node)
        if isinstance(node, CollectionRef):
            return self._resolve_collection(node)
        raise EvaluationError(f"Unknown operand type: {type(node).__name__}")

    # -------------------------------------------------------------------------
    # Operand kinds
    # -------------------------------------------------------------------------

    def _resolve_field(self, node: FieldRef) -> Operand:
        record = self.context.record
        if record is None:
            raise EvaluationError(
                f"Field '{'.'.join(node.path)}' cannot be evaluated without a record"
            )
        return self._walk([record], record.collection, node.path, node.modifier, multi=False)

    def _resolve_request(self, node: RequestRef) -> Operand:
        info = self.context.info

        if node.source == "context":
            return self._apply_modifier(Operand([info.context.value]), node.modifier, None)
        if node.source == "method":
            return self._apply_modifier(Operand([info.method]), node.modifier, None)

        if node.source in ("query", "headers"):
            source = info.query if node.source == "query" else info.headers
            value = source.get(node.path[0]) if len(node.path) == 1 else None
            return self._apply_modifier(Operand([value]), node.modifier, None)

        if node.source == "auth":
            if info.auth is None:
                operand = self._apply_modifier(Operand([None]), node.modifier, None)
                operand.guest = True
                return operand
            if info.auth.collection.get_field(node.path[0]) is None:
                return Operand.unresolved()
            return self._walk(
                [info.auth], info.auth.collection, node.path, node.modifier, multi=False
            )

        # body
        return self._resolve_body(node)

    def _resolve_body(self, node: RequestRef) -> Operand:
        info = self.context.info
        collection = self.context.collection
        name = node.path[0]
        field_def = collection.get_field(name)

        if node.modifier in ("isset", "length") and field_def is not None and field_def.is_file:
            raise EvaluationError(
                FILE_MODIFIER_ERROR.format(modifier=node.modifier, field=name)
            )

        if node.modifier == "isset":
            return Operand([name in info.body])

        raw = info.body.get(name)
        if field_def is None:
            return self._apply_modifier(Operand([raw]), node.modifier, None)

        value = normalize_value(field_def, raw)
        if len(node.path) == 1:
            values = value if isinstance(value, list) else [value]
            operand = Operand(
                self._typed(field_def, values),
                multi=field_def.is_multi,
                is_date=field_def.type == "date",
            )
            return self._apply_modifier(operand, node.modifier, field_def)

        if not field_def.is_relation:
            raise EvaluationError(f"Field '{name}' is not a relation")
        related = self._related_records(field_def, value)
        if not related:
            return Operand.unresolved()
        target = related[0].collection
        return self._walk(related, target, node.path[1:], node.modifier, multi=field_def.is_multi)

    def _resolve_collection(self, node: CollectionRef) -> Operand:
        lookup = self.context.lookup
        if lookup is None:
            return Operand.unresolved()
        try:
            records = lookup.find_all(node.collection)
        except LookupError:
            return Operand.unresolved()
        if not records:
            return Operand([], multi=True, any_match=True)
        operand = self._walk(
            records, records[0].collection, node.path, node.modifier, multi=True
        )
        operand.any_match = True
        return operand

    # -------------------------------------------------------------------------
    # Path traversal
    # -------------------------------------------------------------------------

    def _walk(
        self,
        records: "list[Record]",
        collection: "Collection",
        path: tuple[str, ...],
        modifier: str | None,
        multi: bool,
    ) -> Operand:
        """Follow a field path from a set of records."""
        current = records
        current_collection = collection

        for index, name in enumerate(path):
            field_def = current_collection.get_field(name)
            if field_def is None:
                raise EvaluationError(
                    f"Unknown field '{name}' in collection '{current_collection.name}'"
                )
            is_last = index == len(path) - 1

            if is_last:
                if modifier in ("isset", "length") and field_def.is_file:
                    raise EvaluationError(
                        FILE_MODIFIER_ERROR.format(modifier=modifier, field=name)
                    )
                values: list[Any] = []
                for record in current:
                    value = record.get(name)
                    if isinstance(value, list):
                        values.extend(value)
                    else:
                        values.append(value)
                is_multi = multi or field_def.is_multi or len(current) > 1
                if modifier == "length" and field_def.is_multi:
                    lengths = [len(record.get(name) or []) for record in current]
                    return Operand(lengths, multi=len(lengths) > 1)
                operand = Operand(
                    self._typed(field_def, values),
                    multi=is_multi,
                    is_date=field_def.type == "date",
                )
                return self._apply_modifier(operand, modifier, field_def)

            if not field_def.is_relation:
                raise EvaluationError(
                    f"Field '{name}' in collection '{current_collection.name}' is not a relation"
                )
            next_records: "list[Record]" = []
            for record in current:
                next_records.extend(self._related_records(field_def, record.get(name)))
            if not next_records:
                return Operand.unresolved()
            multi = multi or field_def.is_multi
            current = next_records
            current_collection = next_records[0].collection

        return Operand.unresolved()

    def _related_records(self, field_def: "FieldDefinition", value: Any) -> "list[Record]":
        lookup = self.context.lookup
        if lookup is None or not field_def.collection:
            return []
        ids = value if isinstance(value, list) else [value]
        related = []
        for related_id in ids:
            if not related_id:
                continue
            record = lookup.find_by_id(field_def.collection, related_id)
            if record is not None:
                related.append(record)
        return related

    def _typed(self, field_def: "FieldDefinition", values: list[Any]) -> list[Any]:
        if field_def.type == "date":
            return [parse_datetime(v) for v in values]
        return values

    def _apply_modifier(
        self, operand: Operand, modifier: str | None, field_def: "FieldDefinition | None"
    ) -> Operand:
        if modifier is None or not operand.resolved:
            return operand
        if modifier == "length":
            if field_def is not None and field_def.is_file:
                raise EvaluationError(
                    FILE_MODIFIER_ERROR.format(modifier=modifier, field=field_def.name)
                )
            if operand.multi:
                return Operand([len(operand.values)])
            value = operand.single_value
            if isinstance(value, (list, tuple)):
                return Operand([len(value)])
            return Operand([0 if value in (None, "") else 1])
        if modifier == "lower":
            operand.values = [v.lower() if isinstance(v, str) else v for v in operand.values]
            return operand
        if modifier == "each":
            operand.each = True
            return operand
        raise EvaluationError(f"Modifier ':{modifier}' is not supported here")


class Evaluator:
    """Evaluates a rule AST against a record and request context.

    Usage:
        ctx = EvaluationContext(collection=posts, record=post, info=info, lookup=records)
        allowed = Evaluator(ctx).evaluate(ast)
    """

    def __init__(self, context: EvaluationContext):
        self.context = context
        self.resolver = OperandResolver(context)

    def evaluate(self, node: ASTNode) -> bool:
        """Evaluate an AST node and return the decision."""
        if isinstance(node, LogicalOp):
            if node.operator == "&&":
                return self.evaluate(node.left) and self.evaluate(node.right)
            if node.operator == "||":
                return self.evaluate(node.left) or self.evaluate(node.right)
            raise EvaluationError(f"Unknown logical operator: {node.operator}")

        if isinstance(node, Comparison):
            left = self.resolver.resolve(node.left)
            right = self.resolver.resolve(node.right)
            if guest_mismatch(node, left, right):
                return False
            return compare_operands(node.operator, left, right)

        raise EvaluationError(f"Expected a comparison, got {type(node).__name__}")


# -----------------------------------------------------------------------------
# Comparison semantics
# -----------------------------------------------------------------------------


def guest_mismatch(node: Comparison, left: Any, right: Any) -> bool:
    """True when a guest auth operand meets anything but a literal or macro."""
    if left.guest and not isinstance(node.right, (Literal, Macro)):
        return True
    return right.guest and not isinstance(node.left, (Literal, Macro))


def compare_operands(operator: str, left: Operand, right: Operand) -> bool:
    """Compare two resolved operands under the multi-value rules."""
    if not left.resolved or not right.resolved:
        return False

    existential = operator.startswith("?")
    base = operator[1:] if existential else operator
    if left.each or right.each:
        existential = False
    elif left.any_match or right.any_match:
        existential = True

    left_values = left.values or [None]
    right_values = right.values or [None]
    dates = (left.is_date or right.is_date) and base not in ("~", "!~")
    if dates:
        left_values = [as_instant(v) for v in left_values]
        right_values = [as_instant(v) for v in right_values]
    results = (
        compare_scalars(base, lv, rv, dates) for lv in left_values for rv in right_values
    )
    return any(results) if existential else all(results)


def compare_scalars(operator: str, left: Any, right: Any, dates: bool = False) -> bool:
    if operator == "=":
        return values_equal(left, right)
    if operator == "!=":
        return not values_equal(left, right)
    if operator == "~":
        return values_like(left, right)
    if operator == "!~":
        return not values_like(left, right)

    if dates and not (isinstance(left, datetime) and isinstance(right, datetime)):
        # Empty or unparseable values never order against a date
        return False
    order = compare_order(left, right)
    if order is None:
        return False
    if operator == ">":
        return order > 0
    if operator == ">=":
        return order >= 0
    if operator == "<":
        return order < 0
    if operator == "<=":
        return order <= 0
    raise EvaluationError(f"Unknown operator: {operator}")


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def as_instant(value: Any) -> Any:
    """Parse date text into a datetime, leaving unparseable values as they are."""
    if _is_empty(value):
        return None
    if isinstance(value, str):
        return parse_datetime(value) or value
    return value


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(int(value))
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "false"):
            return 1.0 if text == "true" else 0.0
        try:
            return float(text)
        except ValueError:
            return None
    return None


def _coerce_pair(left: Any, right: Any) -> tuple[Any, Any] | None:
    """Bring two scalars to a common comparable type.

    Dates compare as instants, booleans as 0/1, numbers numerically and
    everything else as strings.
    """
    if isinstance(left, datetime) or isinstance(right, datetime):
        l_dt, r_dt = parse_datetime(left), parse_datetime(right)
        if l_dt is None or r_dt is None:
            return None
        return l_dt, r_dt

    numeric_side = any(
        isinstance(v, (int, float)) for v in (left, right)
    )
    if numeric_side:
        l_num = 0.0 if _is_empty(left) else _as_number(left)
        r_num = 0.0 if _is_empty(right) else _as_number(right)
        if l_num is not None and r_num is not None:
            return l_num, r_num

    return ("" if left is None else str(left)), ("" if right is None else str(right))


def values_equal(left: Any, right: Any) -> bool:
    if _is_empty(left) and _is_empty(right):
        return True
    pair = _coerce_pair(left, right)
    if pair is None:
        return False
    return pair[0] == pair[1]


def compare_order(left: Any, right: Any) -> int | None:
    pair = _coerce_pair(left, right)
    if pair is None:
        return None
    l_val, r_val = pair
    if l_val < r_val:
        return -1
    if l_val > r_val:
        return 1
    return 0


def like_pattern(value: Any) -> str:
    """Pattern text for ~: wrapped in % unless it already has a wildcard."""
    text = "" if value is None else str(value)
    if "%" not in text:
        text = f"%{text}%"
    return text


def values_like(left: Any, right: Any) -> bool:
    """Case-insensitive match where % in the right operand is a wildcard."""
    pattern = like_pattern(right)
    regex = ".*".join(re.escape(part) for part in pattern.split("%"))
    subject = "" if left is None else str(left)
    return re.fullmatch(regex, subject, re.IGNORECASE | re.DOTALL) is not None


# -----------------------------------------------------------------------------
# Convenience functions
# -----------------------------------------------------------------------------


def evaluate_rule(
    ast: ASTNode,
    collection: "Collection",
    record: "Record | None",
    info: RequestInfo,
    lookup: RecordLookup | None = None,
) -> bool:
    """Evaluate a parsed rule and return the decision."""
    context = EvaluationContext(
        collection=collection, record=record, info=info, lookup=lookup
    )
    return Evaluator(context).evaluate(ast)
