"""Rule enforcement for record actions.

Maps the five collection rules onto outcomes:

- Superusers bypass every rule
- A locked rule (None) is FORBIDDEN for everyone else
- An open rule ("") always passes
- Otherwise the expression is evaluated; a failed list rule yields an empty
  result, a failed create rule INPUT_REJECTED, and a failed view, update or
  delete rule NOT_FOUND so that existence is never leaked
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from recordkit.core.outcomes import InvalidRuleError, Outcome, OutcomeKind
from recordkit.core.record import Record
from recordkit.core.request import RequestInfo
from recordkit.metadata.models import Collection
from recordkit.rules.compiler import CompiledRule, RuleCache, RuleCompiler
from recordkit.rules.evaluator import EvaluationContext, Evaluator, RecordLookup
from recordkit.rules.sql import SqlPredicate, UnsupportedPredicate, translate_rule

logger = logging.getLogger(__name__)


@dataclass
class ListFilter:
    """Row filter for a list query.

    Parts that translate to SQL are pushed into the query; the rest are
    evaluated per candidate record.

    Attributes:
        outcome: Set when listing is refused outright (locked rule, bad expression)
        clauses: WHERE fragments ANDed together
        rules: Compiled rules evaluated in-process per record
    """

    collection: Collection
    info: RequestInfo
    lookup: RecordLookup | None = None
    outcome: Outcome | None = None
    clauses: list[SqlPredicate] = field(default_factory=list)
    rules: list[CompiledRule] = field(default_factory=list)

    @property
    def denied(self) -> bool:
        return self.outcome is not None

    @property
    def needs_python(self) -> bool:
        return bool(self.rules)

    def add(self, rule: CompiledRule) -> None:
        """Add a rule, in SQL form when it has one."""
        try:
            self.clauses.append(translate_rule(rule.ast, self.collection, self._context()))
        except UnsupportedPredicate as e:
            logger.debug("Rule '%s' evaluated in-process: %s", rule.source, e)
            self.rules.append(rule)

    def where(self) -> tuple[str | None, list[Any]]:
        """Combined WHERE fragment and its parameters."""
        if not self.clauses:
            return None, []
        sql = " AND ".join(f"({clause.sql})" for clause in self.clauses)
        params: list[Any] = []
        for clause in self.clauses:
            params.extend(clause.params)
        return sql, params

    def matches(self, record: Record) -> bool:
        """Evaluate the in-process rules against a candidate record."""
        if not self.rules:
            return True
        evaluator = Evaluator(self._context(record))
        return all(evaluator.evaluate(rule.ast) for rule in self.rules)

    def _context(self, record: Record | None = None) -> EvaluationContext:
        return EvaluationContext(
            collection=self.collection, record=record, info=self.info, lookup=self.lookup
        )


class RuleEnforcer:
    """Applies collection rules to record actions.

    Usage:
        enforcer = RuleEnforcer(RuleCompiler(loader), lookup=records)
        outcome = enforcer.check(posts, "view", record, info)
        if not outcome.ok:
            return outcome
    """

    def __init__(self, compiler: RuleCompiler, lookup: RecordLookup | None = None):
        self.compiler = compiler
        self.cache = RuleCache(compiler)
        self.lookup = lookup

    def compile(self, collection: Collection, source: str) -> CompiledRule:
        return self.cache.get(collection.name, source)

    def evaluate(
        self, collection: Collection, source: str, record: Record | None, info: RequestInfo
    ) -> bool:
        """Evaluate an expression; raises InvalidRuleError for bad expressions."""
        compiled = self.compile(collection, source)
        context = EvaluationContext(
            collection=collection, record=record, info=info, lookup=self.lookup
        )
        return Evaluator(context).evaluate(compiled.ast)

    def check(
        self, collection: Collection, action: str, record: Record | None, info: RequestInfo
    ) -> Outcome:
        """Decide an action on a concrete record."""
        if info.is_superuser:
            return Outcome.success()

        rule = collection.rules.get(action)
        if rule is None:
            return Outcome.forbidden()
        if rule.strip() == "":
            return Outcome.success()

        try:
            allowed = self.evaluate(collection, rule, record, info)
        except InvalidRuleError as e:
            return Outcome.invalid_rule(e.message)

        if allowed:
            return Outcome.success()
        return self.failure(action)

    def can_access(
        self, collection: Collection, action: str, record: Record, info: RequestInfo
    ) -> bool:
        """Boolean form of check(); bad expressions deny."""
        outcome = self.check(collection, action, record, info)
        if outcome.kind is OutcomeKind.INVALID_RULE:
            logger.warning(
                "Rule '%s' of '%s' is invalid: %s", action, collection.name, outcome.message
            )
        return outcome.ok

    def list_filter(
        self, collection: Collection, info: RequestInfo, client_filter: str | None = None
    ) -> ListFilter:
        """Build the row filter for listing a collection.

        The client filter is ANDed with the list rule so it can only narrow
        the result.
        """
        result = ListFilter(collection=collection, info=info, lookup=self.lookup)

        if not info.is_superuser:
            rule = collection.rules.list
            if rule is None:
                result.outcome = Outcome.forbidden()
                return result
            if rule.strip():
                try:
                    result.add(self.compile(collection, rule))
                except InvalidRuleError as e:
                    result.outcome = Outcome.invalid_rule(e.message)
                    return result

        if client_filter and client_filter.strip():
            try:
                result.add(self.compile(collection, client_filter))
            except InvalidRuleError as e:
                result.outcome = Outcome.invalid_rule(e.message)

        return result

    @staticmethod
    def failure(action: str) -> Outcome:
        """Outcome for a rule that evaluated to false."""
        if action == "list":
            return Outcome.success([])
        if action == "create":
            return Outcome.input_rejected()
        return Outcome.not_found()
