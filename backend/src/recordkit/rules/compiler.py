"""Rule compilation and caching.

Compiling parses an expression and checks its field paths against the
collection schema so that typos surface when rules are loaded, not when a
request happens to reach them.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Protocol

from recordkit.core.outcomes import InvalidRuleError
from recordkit.metadata.models import RULE_ACTIONS, Collection
from recordkit.rules.evaluator import FILE_MODIFIER_ERROR
from recordkit.rules.parser import (
    ASTNode,
    CollectionRef,
    Comparison,
    FieldRef,
    LogicalOp,
    ParseError,
    RequestRef,
    parse,
)

logger = logging.getLogger(__name__)


class CollectionSource(Protocol):
    def get_collection(self, name: str) -> Collection | None: ...


@dataclass(frozen=True)
class CompiledRule:
    """A parsed and schema-checked expression.

    Attributes:
        collection: Name of the collection the rule was compiled against
        source: The original expression text
        ast: The syntax tree root
    """

    collection: str
    source: str
    ast: ASTNode


@dataclass(frozen=True)
class RuleIssue:
    """A collection rule that failed to compile."""

    collection: str
    action: str
    message: str

    def __str__(self) -> str:
        return f"{self.collection}.{self.action}: {self.message}"


class RuleCompiler:
    """Parses expressions and checks them against collection schemas.

    Usage:
        compiler = RuleCompiler(loader)
        rule = compiler.compile("posts", "author = @request.auth.id")
    """

    def __init__(self, collections: CollectionSource):
        self.collections = collections

    def compile(self, collection_name: str, source: str) -> CompiledRule:
        """Compile an expression for a collection.

        Raises:
            InvalidRuleError: If the expression does not parse or refers to
                fields the schema does not allow
        """
        collection = self.collections.get_collection(collection_name)
        if collection is None:
            raise InvalidRuleError(f"Unknown collection '{collection_name}'")

        try:
            ast = parse(source)
        except ParseError as e:
            logger.warning("Rule for '%s' failed to parse: %s", collection_name, e)
            raise InvalidRuleError(f"Invalid rule expression: {e}") from e

        try:
            self._check(ast, collection)
        except InvalidRuleError as e:
            logger.warning("Rule for '%s' rejected: %s", collection_name, e.message)
            raise

        return CompiledRule(collection=collection_name, source=source, ast=ast)

    def check_all(self, collections: list[Collection]) -> list[RuleIssue]:
        """Compile every non-empty rule of the given collections.

        Returns:
            One RuleIssue per rule that failed to compile
        """
        issues = []
        for collection in collections:
            for action in RULE_ACTIONS:
                rule = collection.rules.get(action)
                if not rule or not rule.strip():
                    continue
                try:
                    self.compile(collection.name, rule)
                except InvalidRuleError as e:
                    issues.append(RuleIssue(collection.name, action, e.message))
        return issues

    # -------------------------------------------------------------------------
    # Schema checks
    # -------------------------------------------------------------------------

    def _check(self, node: ASTNode, collection: Collection) -> None:
        if isinstance(node, LogicalOp):
            self._check(node.left, collection)
            self._check(node.right, collection)
        elif isinstance(node, Comparison):
            self._check_operand(node.left, collection)
            self._check_operand(node.right, collection)

    def _check_operand(self, node: ASTNode, collection: Collection) -> None:
        if isinstance(node, FieldRef):
            self._check_path(collection, node.path, node.modifier)
        elif isinstance(node, RequestRef) and node.source == "body":
            field_def = collection.get_field(node.path[0])
            if field_def is None:
                raise InvalidRuleError(
                    f"Unknown field '{node.path[0]}' in @request.body for '{collection.name}'"
                )
            if len(node.path) == 1:
                if node.modifier in ("isset", "length") and field_def.is_file:
                    raise InvalidRuleError(
                        FILE_MODIFIER_ERROR.format(modifier=node.modifier, field=field_def.name)
                    )
                return
            if node.modifier == "isset":
                raise InvalidRuleError(":isset only applies to top-level @request.body fields")
            self._check_path(collection, node.path, node.modifier)
        elif isinstance(node, CollectionRef):
            target = self.collections.get_collection(node.collection)
            if target is None:
                raise InvalidRuleError(f"Unknown collection '@collection.{node.collection}'")
            self._check_path(target, node.path, node.modifier)

    def _check_path(
        self, collection: Collection, path: tuple[str, ...], modifier: str | None
    ) -> None:
        current = collection
        for index, name in enumerate(path):
            field_def = current.get_field(name)
            if field_def is None:
                raise InvalidRuleError(f"Unknown field '{name}' in collection '{current.name}'")
            if index == len(path) - 1:
                if modifier in ("isset", "length") and field_def.is_file:
                    raise InvalidRuleError(
                        FILE_MODIFIER_ERROR.format(modifier=modifier, field=name)
                    )
                if modifier == "each" and not field_def.is_multi:
                    raise InvalidRuleError(f":each requires a multi-valued field, got '{name}'")
                return
            if not field_def.is_relation or not field_def.collection:
                raise InvalidRuleError(
                    f"Field '{name}' in collection '{current.name}' is not a relation"
                )
            target = self.collections.get_collection(field_def.collection)
            if target is None:
                raise InvalidRuleError(f"Unknown relation target '{field_def.collection}'")
            current = target


class RuleCache:
    """Lazily populated LRU cache of compiled rules.

    Keys are (collection, expression). Client filters share the cache with
    collection rules, so it holds at most maxsize entries and evicts the
    least recently used one. A lock guards the dict. Compilation happens
    outside the lock, so two threads may compile the same rule once each;
    the last one to finish wins.
    """

    DEFAULT_MAXSIZE = 1024

    def __init__(self, compiler: RuleCompiler, maxsize: int = DEFAULT_MAXSIZE):
        self.compiler = compiler
        self.maxsize = maxsize
        self._rules: OrderedDict[tuple[str, str], CompiledRule] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, collection: str, source: str) -> CompiledRule:
        key = (collection, source)
        with self._lock:
            cached = self._rules.get(key)
            if cached is not None:
                self._rules.move_to_end(key)
                return cached

        compiled = self.compiler.compile(collection, source)
        with self._lock:
            self._rules[key] = compiled
            self._rules.move_to_end(key)
            while len(self._rules) > self.maxsize:
                self._rules.popitem(last=False)
        return compiled

    def clear(self) -> None:
        with self._lock:
            self._rules.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)
