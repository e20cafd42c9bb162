"""Parser for the rule filter language.

Converts a stream of tokens into an immutable syntax tree.
Uses recursive descent parsing.

Grammar:
    expr       := and ("||" and)*
    and        := term ("&&" term)*
    term       := "(" expr ")" | comparison
    comparison := operand OP operand
    operand    := literal | macro | path (":" modifier)?

Operator Precedence (lowest to highest):
1. ||
2. &&
3. = != > >= < <= ~ !~ and ?-prefixed forms
"""

from dataclasses import dataclass
from typing import Any

from recordkit.rules.lexer import Lexer, LexerError, Token, TokenType

MODIFIERS = ("isset", "length", "lower", "each")

REQUEST_SOURCES = ("auth", "body", "query", "headers", "context", "method")

MACROS = ("now", "yesterday", "tomorrow", "todayStart", "todayEnd")


# -----------------------------------------------------------------------------
# AST Node Types
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ASTNode:
    """Base class for AST nodes."""


@dataclass(frozen=True)
class Literal(ASTNode):
    """A literal value (number, string, boolean, null)."""

    value: Any


@dataclass(frozen=True)
class Macro(ASTNode):
    """A datetime macro such as @now or @todayStart."""

    name: str


@dataclass(frozen=True)
class FieldRef(ASTNode):
    """A field path on the evaluated record (e.g. status, team.owner)."""

    path: tuple[str, ...]
    modifier: str | None = None


@dataclass(frozen=True)
class RequestRef(ASTNode):
    """A request context operand (e.g. @request.auth.id, @request.body.title)."""

    source: str
    path: tuple[str, ...] = ()
    modifier: str | None = None


@dataclass(frozen=True)
class CollectionRef(ASTNode):
    """A cross-collection operand (e.g. @collection.members.user)."""

    collection: str
    path: tuple[str, ...]
    modifier: str | None = None


@dataclass(frozen=True)
class Comparison(ASTNode):
    """Binary comparison (e.g. a = b, tags ?~ 'x')."""

    operator: str
    left: ASTNode
    right: ASTNode

    @property
    def existential(self) -> bool:
        return self.operator.startswith("?")

    @property
    def base_operator(self) -> str:
        return self.operator[1:] if self.existential else self.operator


@dataclass(frozen=True)
class LogicalOp(ASTNode):
    """Logical combination (&& or ||)."""

    operator: str
    left: ASTNode
    right: ASTNode


# -----------------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------------


class ParseError(Exception):
    """Error during parsing."""

    def __init__(self, message: str, token: Token):
        self.token = token
        super().__init__(f"{message} at position {token.position}")


class Parser:
    """Recursive descent parser for the rule language.

    Usage:
        parser = Parser("status = 'published' || author = @request.auth.id")
        ast = parser.parse()
    """

    def __init__(self, source: str):
        self.source = source
        try:
            self.tokens = Lexer(source).tokenize()
        except LexerError as e:
            raise ParseError(str(e), Token(TokenType.EOF, None, e.position)) from e
        self.position = 0

    def parse(self) -> ASTNode:
        """Parse the expression and return the AST root."""
        if not self.tokens or self.tokens[0].type == TokenType.EOF:
            raise ParseError("Empty expression", Token(TokenType.EOF, None, 0))

        ast = self._parse_or()

        if not self._is_at_end():
            raise ParseError(
                f"Unexpected token '{self._current().value}'",
                self._current(),
            )

        return ast

    # -------------------------------------------------------------------------
    # Helper methods
    # -------------------------------------------------------------------------

    def _current(self) -> Token:
        """Get current token."""
        if self.position >= len(self.tokens):
            return Token(TokenType.EOF, None, len(self.source))
        return self.tokens[self.position]

    def _is_at_end(self) -> bool:
        return self._current().type == TokenType.EOF

    def _advance(self) -> Token:
        """Consume and return current token."""
        token = self._current()
        self.position += 1
        return token

    def _match(self, *types: TokenType) -> bool:
        return self._current().type in types

    def _consume(self, token_type: TokenType, message: str) -> Token:
        """Consume a token of the expected type, or raise error."""
        if self._current().type == token_type:
            return self._advance()
        raise ParseError(message, self._current())

    # -------------------------------------------------------------------------
    # Parsing methods (in order of precedence, lowest to highest)
    # -------------------------------------------------------------------------

    def _parse_or(self) -> ASTNode:
        left = self._parse_and()

        while self._match(TokenType.OR):
            self._advance()
            right = self._parse_and()
            left = LogicalOp("||", left, right)

        return left

    def _parse_and(self) -> ASTNode:
        left = self._parse_term()

        while self._match(TokenType.AND):
            self._advance()
            right = self._parse_term()
            left = LogicalOp("&&", left, right)

        return left

    def _parse_term(self) -> ASTNode:
        if self._match(TokenType.LPAREN):
            self._advance()
            expr = self._parse_or()
            self._consume(TokenType.RPAREN, "Expected ')' after expression")
            return expr
        return self._parse_comparison()

    def _parse_comparison(self) -> ASTNode:
        left = self._parse_operand()
        op_token = self._consume(TokenType.OPERATOR, "Expected comparison operator")
        right = self._parse_operand()
        return Comparison(str(op_token.value), left, right)

    def _parse_operand(self) -> ASTNode:
        token = self._current()

        if token.type in (TokenType.NUMBER, TokenType.STRING, TokenType.BOOLEAN):
            self._advance()
            return Literal(token.value)

        if token.type == TokenType.NULL:
            self._advance()
            return Literal(None)

        if token.type != TokenType.IDENTIFIER:
            raise ParseError(f"Expected operand, got '{token.value}'", token)

        self._advance()
        modifier = self._parse_modifier()
        return self._resolve_identifier(str(token.value), modifier, token)

    def _parse_modifier(self) -> str | None:
        if not self._match(TokenType.COLON):
            return None
        self._advance()
        token = self._consume(TokenType.IDENTIFIER, "Expected modifier after ':'")
        if token.value not in MODIFIERS:
            raise ParseError(f"Unknown modifier ':{token.value}'", token)
        return str(token.value)

    def _resolve_identifier(self, name: str, modifier: str | None, token: Token) -> ASTNode:
        """Classify an identifier path into its operand node."""
        parts = tuple(name.split("."))

        if not name.startswith("@"):
            if modifier == "isset":
                raise ParseError(":isset is only supported on @request.body fields", token)
            return FieldRef(parts, modifier)

        head = parts[0][1:]

        if head in MACROS and len(parts) == 1:
            if modifier:
                raise ParseError(f"Modifiers are not supported on @{head}", token)
            return Macro(head)

        if head == "request":
            if len(parts) < 2 or parts[1] not in REQUEST_SOURCES:
                raise ParseError(f"Unknown request operand '{name}'", token)
            source = parts[1]
            path = parts[2:]
            if source in ("context", "method"):
                if path:
                    raise ParseError(f"@request.{source} has no sub-fields", token)
            elif not path:
                raise ParseError(f"@request.{source} requires a field name", token)
            if modifier == "isset" and source != "body":
                raise ParseError(":isset is only supported on @request.body fields", token)
            return RequestRef(source, path, modifier)

        if head == "collection":
            if len(parts) < 3:
                raise ParseError(
                    "@collection operands require a collection and a field", token
                )
            if modifier == "isset":
                raise ParseError(":isset is only supported on @request.body fields", token)
            return CollectionRef(parts[1], parts[2:], modifier)

        raise ParseError(f"Unknown operand '{name}'", token)


def parse(source: str) -> ASTNode:
    """Convenience function to parse a rule expression.

    Args:
        source: The expression string

    Returns:
        The AST root node
    """
    return Parser(source).parse()
