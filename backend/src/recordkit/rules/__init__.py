"""Rule filter language.

Provides parsing, evaluation, SQL translation and enforcement of the
expressions used as collection access rules and list filters.

Example expressions:
    status = 'published' || author = @request.auth.id
    @request.auth.id != '' && @request.body.owner:isset = false
    members ?= @request.auth.id
    title ~ 'draft%' && created > @todayStart
"""

from recordkit.rules.compiler import CompiledRule, RuleCache, RuleCompiler, RuleIssue
from recordkit.rules.enforcement import ListFilter, RuleEnforcer
from recordkit.rules.evaluator import (
    EvaluationContext,
    EvaluationError,
    Evaluator,
    RecordLookup,
    evaluate_rule,
)
from recordkit.rules.lexer import Lexer, LexerError, Token, TokenType
from recordkit.rules.parser import ParseError, Parser, parse
from recordkit.rules.sql import SqlPredicate, SqlTranslator, UnsupportedPredicate, translate_rule

__all__ = [
    "CompiledRule",
    "EvaluationContext",
    "EvaluationError",
    "Evaluator",
    "Lexer",
    "LexerError",
    "ListFilter",
    "ParseError",
    "Parser",
    "RecordLookup",
    "RuleCache",
    "RuleCompiler",
    "RuleEnforcer",
    "RuleIssue",
    "SqlPredicate",
    "SqlTranslator",
    "Token",
    "TokenType",
    "UnsupportedPredicate",
    "evaluate_rule",
    "parse",
    "translate_rule",
]
