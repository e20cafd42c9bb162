"""Lexer/tokenizer for the rule filter language.

Converts rule strings into a stream of tokens for the parser.

Token types:
- Literals: NUMBER, STRING, BOOLEAN, NULL
- Identifiers: IDENTIFIER (field paths, @request.* and @collection.* operands, macros)
- Operators: comparison (= != > >= < <= ~ !~ and their ?-prefixed forms), logical
- Punctuation: LPAREN, RPAREN, COLON
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator


class TokenType(Enum):
    """Types of tokens in the rule language."""

    # Literals
    NUMBER = auto()
    STRING = auto()
    BOOLEAN = auto()
    NULL = auto()

    # Identifiers
    IDENTIFIER = auto()

    # Comparison operators (value holds the operator text)
    OPERATOR = auto()

    # Logical operators
    AND = auto()         # &&
    OR = auto()          # ||

    # Punctuation
    LPAREN = auto()      # (
    RPAREN = auto()      # )
    COLON = auto()       # :

    # End of input
    EOF = auto()


@dataclass(frozen=True)
class Token:
    """A single token from the lexer.

    Attributes:
        type: The token type
        value: The token's value (number, string content, identifier, operator text)
        position: Character position in the source string
    """

    type: TokenType
    value: str | int | float | bool | None
    position: int

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, pos={self.position})"


class LexerError(Exception):
    """Error during lexical analysis."""

    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} at position {position}")


COMPARISON_OPERATORS = (
    "?!~", "?!=", "?>=", "?<=", "?=", "?~", "?>", "?<",
    "!~", "!=", ">=", "<=", "=", "~", ">", "<",
)

# Token patterns (order matters - longer matches first)
TOKEN_PATTERNS = [
    # Whitespace and line comments (skip)
    (r"\s+", None),
    (r"//[^\n]*", None),

    # Logical operators
    (r"&&", TokenType.AND),
    (r"\|\|", TokenType.OR),

    # Comparison operators, longest first
    ("|".join(re.escape(op) for op in COMPARISON_OPERATORS), TokenType.OPERATOR),

    # Punctuation
    (r"\(", TokenType.LPAREN),
    (r"\)", TokenType.RPAREN),
    (r":", TokenType.COLON),

    # Numbers (integer and float, optionally negative)
    (r"-?\d+\.\d+", TokenType.NUMBER),
    (r"-?\d+", TokenType.NUMBER),

    # Strings (double or single quoted)
    (r'"([^"\\]|\\.)*"', TokenType.STRING),
    (r"'([^'\\]|\\.)*'", TokenType.STRING),

    # Identifiers and dotted paths, optionally @-prefixed
    (r"@?[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*", TokenType.IDENTIFIER),
]

# Keywords that map to specific token types
KEYWORDS = {
    "true": (TokenType.BOOLEAN, True),
    "false": (TokenType.BOOLEAN, False),
    "null": (TokenType.NULL, None),
}

_COMPILED_PATTERNS = [
    (re.compile(pattern), token_type) for pattern, token_type in TOKEN_PATTERNS
]


class Lexer:
    """Tokenizer for the rule language.

    Usage:
        lexer = Lexer("status = 'published' && author = @request.auth.id")
        for token in lexer:
            print(token)
    """

    def __init__(self, source: str):
        self.source = source
        self.position = 0

    def __iter__(self) -> Iterator[Token]:
        """Iterate over all tokens in the source."""
        while True:
            token = self.next_token()
            yield token
            if token.type == TokenType.EOF:
                break

    def next_token(self) -> Token:
        """Get the next token from the source."""
        while self.position < len(self.source):
            for pattern, token_type in _COMPILED_PATTERNS:
                match = pattern.match(self.source, self.position)
                if not match:
                    continue
                value = match.group()
                start = self.position
                self.position += len(value)

                if token_type is None:
                    break

                if token_type == TokenType.NUMBER:
                    number: int | float = float(value) if "." in value else int(value)
                    return Token(token_type, number, start)

                if token_type == TokenType.STRING:
                    return Token(token_type, self._unescape_string(value[1:-1]), start)

                if token_type == TokenType.IDENTIFIER and value in KEYWORDS:
                    keyword_type, keyword_value = KEYWORDS[value]
                    return Token(keyword_type, keyword_value, start)

                return Token(token_type, value, start)
            else:
                raise LexerError(
                    f"Unexpected character '{self.source[self.position]}'", self.position
                )

        return Token(TokenType.EOF, None, self.position)

    def _unescape_string(self, s: str) -> str:
        """Process escape sequences in a string."""
        result = []
        i = 0
        while i < len(s):
            if s[i] == "\\" and i + 1 < len(s):
                next_char = s[i + 1]
                if next_char == "n":
                    result.append("\n")
                elif next_char == "t":
                    result.append("\t")
                else:
                    result.append(next_char)
                i += 2
            else:
                result.append(s[i])
                i += 1
        return "".join(result)

    def tokenize(self) -> list[Token]:
        """Tokenize the entire source and return list of tokens."""
        return list(self)
