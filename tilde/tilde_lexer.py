"""
The Tilde tokenizer.

Turns source text into a flat list of `Token`s. The lexer never looks
back further than the previous token and never backtracks; the only
contextual decisions are

  * `-` directly followed by a digit is part of a negative number unless
    the previous token ends a value (`~a -1` is a subtraction),
  * a number directly after `.` is read as an integer index, so `~m.0.1`
    is two property steps rather than `~m` followed by `0.1`.

Interpolation markers inside strings (`` `expr` ``) are recorded as
`Interpolation` parts holding the raw expression text; the parser
re-enters expression parsing on them.
"""

import enum
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from tilde.tilde_datatypes import TildeSyntaxError


class LexError(TildeSyntaxError):
    """Unterminated string or invalid character."""


class TokenKind(enum.Enum):
    # Meta
    EOF = "end of input"
    NEWLINE = "newline"
    # Identifiers and literals
    NUMBER = "number"
    STRING = "string"
    VARIABLE = "variable"
    IDENTIFIER = "identifier"
    STAR_NAME = "*name"
    BLOCK = ":block:"
    # Operators
    PLUS = "+"
    MINUS = "-"
    STAR = "*"
    SLASH = "/"
    BACKSLASH = "\\"
    PERCENT = "%"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "=="
    NE = "!="
    PIPE = "|"
    # Delimiters
    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    LBRACE = "{"
    RBRACE = "}"
    COMMA = ","
    DOT = "."
    COLON = ":"
    # Keywords
    IS = "is"
    IF = "if"
    ELSE = "else"
    LOOP = "loop"
    FOR_EACH = "for-each"
    BREAK_LOOP = "break-loop"
    IN = "in"
    FUNCTION = "function"
    GIVE = "give"
    AND = "and"
    OR = "or"
    UP = "up"
    DOWN = "down"
    ATTEMPT = "attempt"
    RESCUE = "rescue"
    TRUE = "true"
    FALSE = "false"
    NULL = "null"

    def __str__(self):
        return self.value


KEYWORDS = {
    kind.value: kind for kind in (
        TokenKind.IS, TokenKind.IF, TokenKind.ELSE, TokenKind.LOOP, TokenKind.FOR_EACH,
        TokenKind.BREAK_LOOP, TokenKind.IN, TokenKind.FUNCTION, TokenKind.GIVE,
        TokenKind.AND, TokenKind.OR, TokenKind.UP, TokenKind.DOWN, TokenKind.ATTEMPT,
        TokenKind.RESCUE, TokenKind.TRUE, TokenKind.FALSE, TokenKind.NULL,
    )
}

OPERATORS = {
    "<=": TokenKind.LE, ">=": TokenKind.GE, "==": TokenKind.EQ, "!=": TokenKind.NE,
    "+": TokenKind.PLUS, "-": TokenKind.MINUS, "*": TokenKind.STAR, "/": TokenKind.SLASH,
    "\\": TokenKind.BACKSLASH, "%": TokenKind.PERCENT, "<": TokenKind.LT, ">": TokenKind.GT,
    "|": TokenKind.PIPE, "(": TokenKind.LPAREN, ")": TokenKind.RPAREN,
    "[": TokenKind.LBRACKET, "]": TokenKind.RBRACKET, "{": TokenKind.LBRACE,
    "}": TokenKind.RBRACE, ",": TokenKind.COMMA, ".": TokenKind.DOT, ":": TokenKind.COLON,
}

# Tokens after which `-5` means "minus five" rather than "negative five".
VALUE_ENDING = frozenset({
    TokenKind.NUMBER, TokenKind.STRING, TokenKind.VARIABLE, TokenKind.TRUE, TokenKind.FALSE,
    TokenKind.NULL, TokenKind.RPAREN, TokenKind.RBRACKET, TokenKind.RBRACE,
})

ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'", "`": "`"}


# ASCII only; `str.isdigit` also accepts superscripts and other scripts.
def _is_digit(ch: str) -> bool:
    return ch.isascii() and ch.isdigit()


@dataclass(frozen=True)
class Interpolation:
    """Raw source of one `` `expr` `` marker inside a string literal."""
    source: str
    offset: int
    line: int
    col: int


@dataclass
class Token:
    kind: TokenKind
    text: str
    line: int
    col: int
    offset: int
    # number -> float; string -> list of str | Interpolation; names -> str
    value: Any = None

    def describe(self) -> str:
        if self.kind in (TokenKind.EOF, TokenKind.NEWLINE):
            return str(self.kind)
        return repr(self.text)


class Lexer:
    RE_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
    RE_NUMBER = re.compile(r"[0-9]+(?:\.[0-9]+)?")
    RE_INTEGER = re.compile(r"[0-9]+")

    def __init__(self, source: str, *, line: int = 1, col: int = 1, offset: int = 0):
        self.source = source
        self.position = 0
        self.line = line
        self.col = col
        self.base_offset = offset
        self.tokens: List[Token] = []

    # --- Character helpers ---

    def _current_character(self) -> str:
        if self.position >= len(self.source):
            return ""
        return self.source[self.position]

    def _peek_character(self, distance: int = 1) -> str:
        index = self.position + distance
        if index >= len(self.source):
            return ""
        return self.source[index]

    def _is_eof(self) -> bool:
        return self.position >= len(self.source)

    def _advance_character(self, count: int = 1):
        for _ in range(count):
            if self._is_eof():
                return
            if self.source[self.position] == "\n":
                self.line += 1
                self.col = 1
            else:
                self.col += 1
            self.position += 1

    def _error(self, message: str, line=None, col=None, offset=None) -> LexError:
        return LexError(
            message,
            line if line is not None else self.line,
            col if col is not None else self.col,
            offset if offset is not None else self.base_offset + self.position,
        )

    def _previous_kind(self) -> Optional[TokenKind]:
        return self.tokens[-1].kind if self.tokens else None

    def _emit(self, kind: TokenKind, start: int, line: int, col: int, value: Any = None) -> Token:
        token = Token(kind, self.source[start:self.position], line, col, self.base_offset + start, value)
        self.tokens.append(token)
        return token

    # --- Scanning ---

    def tokenize(self) -> List[Token]:
        while not self._is_eof():
            ch = self._current_character()
            start, line, col = self.position, self.line, self.col

            if ch in " \t\r":
                self._advance_character()
            elif ch == "\n":
                self._advance_character()
                self._emit(TokenKind.NEWLINE, start, line, col)
            elif ch == "#":
                while not self._is_eof() and self._current_character() != "\n":
                    self._advance_character()
            elif _is_digit(ch):
                self._lex_number(start, line, col)
            elif ch == "-" and _is_digit(self._peek_character()) and self._previous_kind() not in VALUE_ENDING:
                self._advance_character()
                self._lex_number(start, line, col)
            elif ch == '"':
                self._lex_string(start, line, col)
            elif ch == "~":
                self._lex_prefixed_name(TokenKind.VARIABLE, start, line, col)
            elif ch == "*" and self._starts_name(1):
                self._lex_prefixed_name(TokenKind.STAR_NAME, start, line, col)
            elif ch == ":" and self._lex_block(start, line, col):
                pass
            elif self._starts_name(0):
                match = Lexer.RE_NAME.match(self.source, self.position)
                text = match[0]
                self._advance_character(len(text))
                kind = KEYWORDS.get(text, TokenKind.IDENTIFIER)
                self._emit(kind, start, line, col, text)
            elif self.source.startswith(("<=", ">=", "==", "!="), self.position):
                two = self.source[self.position:self.position + 2]
                self._advance_character(2)
                self._emit(OPERATORS[two], start, line, col)
            elif ch in OPERATORS:
                self._advance_character()
                self._emit(OPERATORS[ch], start, line, col)
            else:
                raise self._error(f"Unexpected character {ch!r}")

        self._emit(TokenKind.EOF, self.position, self.line, self.col)
        return self.tokens

    def _starts_name(self, distance: int) -> bool:
        ch = self._peek_character(distance)
        return ch.isascii() and (ch.isalpha() or ch == "_")

    def _lex_number(self, start: int, line: int, col: int):
        pattern = Lexer.RE_INTEGER if self._previous_kind() == TokenKind.DOT else Lexer.RE_NUMBER
        match = pattern.match(self.source, self.position)
        self._advance_character(len(match[0]))
        self._emit(TokenKind.NUMBER, start, line, col, float(self.source[start:self.position]))

    def _lex_prefixed_name(self, kind: TokenKind, start: int, line: int, col: int):
        self._advance_character()
        match = Lexer.RE_NAME.match(self.source, self.position)
        if match is None:
            raise self._error(f"Expected a name after {self.source[start]!r}", line, col, self.base_offset + start)
        self._advance_character(len(match[0]))
        self._emit(kind, start, line, col, match[0])

    def _lex_block(self, start: int, line: int, col: int) -> bool:
        """Lexes `:name:`; returns False when the colon is a plain delimiter."""
        match = Lexer.RE_NAME.match(self.source, self.position + 1)
        if match is None or self.source[match.end():match.end() + 1] != ":":
            return False
        self._advance_character(len(match[0]) + 2)
        self._emit(TokenKind.BLOCK, start, line, col, match[0])
        return True

    def _lex_string(self, start: int, line: int, col: int):
        self._advance_character()
        parts: List[Union[str, Interpolation]] = []
        buf: List[str] = []
        while True:
            if self._is_eof():
                raise self._error("Unterminated string", line, col, self.base_offset + start)
            ch = self._current_character()
            if ch == '"':
                self._advance_character()
                break
            if ch == "\\":
                nxt = self._peek_character()
                if nxt in ESCAPES and nxt != "":
                    buf.append(ESCAPES[nxt])
                    self._advance_character(2)
                else:
                    buf.append("\\")
                    self._advance_character()
            elif ch == "`":
                if buf:
                    parts.append("".join(buf))
                    buf = []
                parts.append(self._lex_interpolation())
            else:
                buf.append(ch)
                self._advance_character()
        if buf or not parts:
            parts.append("".join(buf))
        self._emit(TokenKind.STRING, start, line, col, parts)

    def _lex_interpolation(self) -> Interpolation:
        open_line, open_col, open_pos = self.line, self.col, self.position
        self._advance_character()
        expr_start, expr_line, expr_col = self.position, self.line, self.col
        while self._current_character() != "`":
            if self._is_eof():
                raise self._error("Unterminated interpolation", open_line, open_col, self.base_offset + open_pos)
            self._advance_character()
        text = self.source[expr_start:self.position]
        self._advance_character()
        return Interpolation(text, self.base_offset + expr_start, expr_line, expr_col)


def tokenize(source: str, *, line: int = 1, col: int = 1, offset: int = 0) -> List[Token]:
    """Tokenizes `source`, raising LexError on the first malformed token."""
    return Lexer(source, line=line, col=col, offset=offset).tokenize()
