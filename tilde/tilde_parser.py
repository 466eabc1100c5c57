"""
Recursive-descent parser for Tilde.

Statements are parsed by dedicated methods; expressions use one method per
precedence level (or < and < comparison < additive < multiplicative),
with unary minus and postfix property access binding tighter than any
binary operator. There is no error recovery: the first malformed
construct raises ParseError and the whole program is rejected.
"""

from typing import List, Optional, Union

from tilde.tilde_datatypes import TildeSyntaxError, format_number
from tilde.tilde_lexer import KEYWORDS, Interpolation, Token, TokenKind, tokenize
from tilde.tilde_ast import (
    Assign, Attempt, BinaryOp, Block, BooleanLiteral, Break, Call, ExpressionStatement,
    ForEach, FunctionChain, FunctionDef, FunctionLiteral, FunctionRef, Give, If, Increment,
    InterpolatedString, ListLiteral, Loop, NullLiteral, NumberLiteral, ObjectLiteral, Program,
    PropertyAccess, PropertyAssign, StringLiteral, UnaryMinus, Variable,
)


class ParseError(TildeSyntaxError):
    """Malformed syntax. Carries the line and column of the offending token."""


# Binary operators, lowest precedence first.
BINARY_LEVELS = [
    {TokenKind.OR: "or"},
    {TokenKind.AND: "and"},
    {
        TokenKind.EQ: "==", TokenKind.NE: "!=", TokenKind.LT: "<",
        TokenKind.LE: "<=", TokenKind.GT: ">", TokenKind.GE: ">=",
    },
    {TokenKind.PLUS: "+", TokenKind.MINUS: "-"},
    {TokenKind.STAR: "*", TokenKind.SLASH: "/", TokenKind.BACKSLASH: "\\", TokenKind.PERCENT: "%"},
]

KEYWORD_KINDS = frozenset(KEYWORDS.values())

NAME_KEY_KINDS = frozenset({TokenKind.IDENTIFIER, TokenKind.STRING, TokenKind.NUMBER}) | KEYWORD_KINDS

PROPERTY_KEY_KINDS = NAME_KEY_KINDS | {TokenKind.VARIABLE}

ARGUMENT_START = frozenset({
    TokenKind.NUMBER, TokenKind.STRING, TokenKind.VARIABLE, TokenKind.TRUE, TokenKind.FALSE,
    TokenKind.NULL, TokenKind.LBRACKET, TokenKind.LBRACE, TokenKind.PIPE, TokenKind.IDENTIFIER,
    TokenKind.STAR_NAME, TokenKind.BLOCK,
})


class Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0
        # True while parsing an `if` condition or a `for-each` source, where a
        # `(` starts the construct's body rather than another call argument.
        self._in_header = False

    # --- Token helpers ---

    def _current(self) -> Token:
        return self.tokens[self.pos]

    def _peek(self, distance: int = 1) -> Token:
        index = min(self.pos + distance, len(self.tokens) - 1)
        return self.tokens[index]

    def _check(self, *kinds: TokenKind) -> bool:
        return self._current().kind in kinds

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != TokenKind.EOF:
            self.pos += 1
        return token

    def _error(self, message: str, token: Optional[Token] = None) -> ParseError:
        token = token or self._current()
        return ParseError(message, token.line, token.col, token.offset)

    def _expect(self, kind: TokenKind, what: Optional[str] = None) -> Token:
        if not self._check(kind):
            raise self._error(f"Expected {what or repr(kind.value)}, found {self._current().describe()}")
        return self._advance()

    def _skip_newlines(self):
        while self._check(TokenKind.NEWLINE):
            self._advance()

    @staticmethod
    def _loc(token: Token) -> dict:
        return {'line': token.line, 'col': token.col}

    def _with_header(self, flag: bool, parse, *args):
        saved = self._in_header
        self._in_header = flag
        try:
            return parse(*args)
        finally:
            self._in_header = saved

    # --- Program and statements ---

    def parse_program(self) -> Program:
        first = self._current()
        statements = self._parse_statements(TokenKind.EOF)
        self._expect(TokenKind.EOF, "end of input")
        return Program(statements, loc=self._loc(first))

    def _parse_statements(self, until: TokenKind) -> list:
        statements = []
        self._skip_newlines()
        while not self._check(until, TokenKind.EOF):
            statements.append(self.parse_statement())
            self._skip_newlines()
        return statements

    def _parse_block(self) -> list:
        self._expect(TokenKind.LPAREN, "'(' to open a block")
        statements = self._with_header(False, self._parse_statements, TokenKind.RPAREN)
        self._expect(TokenKind.RPAREN, "')' to close the block")
        return statements

    def parse_statement(self):
        token = self._current()
        match token.kind:
            case TokenKind.VARIABLE:
                if self._peek().kind == TokenKind.COLON and self._peek(2).kind in (TokenKind.NEWLINE, TokenKind.EOF):
                    return self._parse_function_chain()
                if self._scan_assignment_target() in (TokenKind.IS, TokenKind.UP, TokenKind.DOWN):
                    return self._parse_assignment()
            case TokenKind.IF:
                return self._parse_if()
            case TokenKind.LOOP:
                self._advance()
                return Loop(self._parse_block(), loc=self._loc(token))
            case TokenKind.FOR_EACH:
                return self._parse_for_each()
            case TokenKind.BREAK_LOOP:
                self._advance()
                return Break(loc=self._loc(token))
            case TokenKind.FUNCTION:
                return self._parse_function_definition()
            case TokenKind.GIVE:
                self._advance()
                if self._check(TokenKind.NEWLINE, TokenKind.EOF, TokenKind.RPAREN, TokenKind.ELSE):
                    return Give(None, loc=self._loc(token))
                return Give(self.parse_expression(), loc=self._loc(token))
            case TokenKind.ATTEMPT:
                return self._parse_attempt()
            case TokenKind.ELSE:
                raise self._error("Unexpected 'else' without a matching 'if'")
            case TokenKind.RESCUE:
                raise self._error("Unexpected 'rescue' without a matching 'attempt'")
        return ExpressionStatement(self.parse_expression(), loc=self._loc(token))

    def _scan_assignment_target(self) -> TokenKind:
        """Looks past `~name(.key)*` and reports the kind of the token after it."""
        i = self.pos + 1
        while (
            self.tokens[i].kind == TokenKind.DOT
            and i + 1 < len(self.tokens)
            and self.tokens[i + 1].kind in PROPERTY_KEY_KINDS
        ):
            i += 2
        return self.tokens[i].kind

    def _parse_assignment(self):
        name_token = self._advance()
        path = []
        while self._check(TokenKind.DOT):
            self._advance()
            path.append(self._parse_property_key())
        op = self._advance()
        value = self.parse_expression()
        loc = self._loc(name_token)
        if op.kind == TokenKind.IS:
            if path:
                return PropertyAssign(name_token.value, path, value, loc=loc)
            return Assign(name_token.value, value, loc=loc)
        return Increment(name_token.value, path, value, op.kind.value, loc=loc)

    def _parse_function_chain(self):
        name_token = self._advance()
        self._advance()  # ':'
        steps = []
        while True:
            saved = self.pos
            self._skip_newlines()
            token = self._current()
            if (
                token.kind in (TokenKind.IDENTIFIER, TokenKind.STAR_NAME, TokenKind.BLOCK)
                and token.col > name_token.col
            ):
                steps.append(self._parse_call())
                if not self._check(TokenKind.NEWLINE, TokenKind.EOF, TokenKind.RPAREN):
                    raise self._error(f"Expected end of line after chain step, found {self._current().describe()}")
            else:
                self.pos = saved
                break
        if not steps:
            raise self._error("A function chain needs at least one indented step", name_token)
        return FunctionChain(name_token.value, steps, loc=self._loc(name_token))

    def _parse_if(self):
        token = self._advance()
        condition = self._with_header(True, self.parse_expression)
        then_branch = self.parse_statement()
        else_branch = None
        saved = self.pos
        self._skip_newlines()
        if self._check(TokenKind.ELSE):
            self._advance()
            else_branch = self.parse_statement()
        else:
            self.pos = saved
        return If(condition, then_branch, else_branch, loc=self._loc(token))

    def _parse_for_each(self):
        token = self._advance()
        variables = [self._expect(TokenKind.VARIABLE, "a loop variable").value]
        if self._check(TokenKind.VARIABLE):
            variables.append(self._advance().value)
        self._expect(TokenKind.IN, "'in'")
        iterable = self._with_header(True, self.parse_expression)
        body = self._parse_block()
        return ForEach(variables, iterable, body, loc=self._loc(token))

    def _parse_function_definition(self):
        token = self._advance()
        name = self._expect(TokenKind.IDENTIFIER, "a function name").value
        params = []
        while self._check(TokenKind.VARIABLE):
            params.append(self._advance().value)
        body = self._parse_block()
        function = FunctionLiteral(params, body, name, loc=self._loc(token))
        return FunctionDef(function, loc=self._loc(token))

    def _parse_attempt(self):
        token = self._advance()
        body = self._parse_block()
        self._skip_newlines()
        self._expect(TokenKind.RESCUE, "'rescue' after the attempt block")
        error_name = None
        if self._check(TokenKind.VARIABLE):
            error_name = self._advance().value
        rescue = self._parse_block()
        return Attempt(body, error_name, rescue, loc=self._loc(token))

    # --- Expressions ---

    def parse_expression(self):
        return self._parse_binary(0)

    def _parse_binary(self, level: int):
        if level == len(BINARY_LEVELS):
            return self._parse_unary()
        operators = BINARY_LEVELS[level]
        left = self._parse_binary(level + 1)
        while self._current().kind in operators:
            op_token = self._advance()
            self._skip_newlines()
            right = self._parse_binary(level + 1)
            left = BinaryOp(operators[op_token.kind], left, right, loc=self._loc(op_token))
        return left

    def _parse_unary(self):
        if self._check(TokenKind.MINUS):
            token = self._advance()
            return UnaryMinus(self._parse_unary(), loc=self._loc(token))
        return self._parse_postfix(self._parse_primary())

    def _parse_postfix(self, target):
        while self._check(TokenKind.DOT):
            dot = self._advance()
            target = PropertyAccess(target, self._parse_property_key(), loc=self._loc(dot))
        return target

    def _parse_property_key(self):
        token = self._current()
        if token.kind == TokenKind.VARIABLE:
            self._advance()
            return Variable(token.value, loc=self._loc(token))
        if token.kind == TokenKind.NUMBER:
            self._advance()
            return NumberLiteral(token.value, loc=self._loc(token))
        if token.kind in NAME_KEY_KINDS:
            return StringLiteral(self._parse_name_key(), loc=self._loc(token))
        raise self._error(f"Expected a property name after '.', found {token.describe()}")

    def _parse_name_key(self) -> str:
        token = self._advance()
        if token.kind == TokenKind.STRING:
            if any(isinstance(part, Interpolation) for part in token.value):
                raise self._error("Keys cannot contain interpolation", token)
            return "".join(token.value)
        if token.kind == TokenKind.NUMBER:
            return format_number(token.value)
        return token.text

    def _parse_primary(self):
        token = self._current()
        loc = self._loc(token)
        match token.kind:
            case TokenKind.NUMBER:
                self._advance()
                return NumberLiteral(token.value, loc=loc)
            case TokenKind.STRING:
                self._advance()
                return self._string_node(token)
            case TokenKind.TRUE | TokenKind.FALSE:
                self._advance()
                return BooleanLiteral(token.kind == TokenKind.TRUE, loc=loc)
            case TokenKind.NULL:
                self._advance()
                return NullLiteral(loc=loc)
            case TokenKind.VARIABLE:
                self._advance()
                return Variable(token.value, loc=loc)
            case TokenKind.LBRACKET:
                return self._with_header(False, self._parse_list)
            case TokenKind.LBRACE:
                return self._with_header(False, self._parse_object)
            case TokenKind.LPAREN:
                return Block(self._parse_block(), loc=loc)
            case TokenKind.PIPE:
                return self._with_header(False, self._parse_anonymous_function)
            case TokenKind.IDENTIFIER | TokenKind.STAR_NAME | TokenKind.BLOCK:
                return self._parse_call()
        raise self._error(f"Unexpected {token.describe()}")

    def _parse_list(self):
        start = self._advance()
        items = []
        while True:
            self._skip_newlines()
            if self._check(TokenKind.RBRACKET):
                break
            items.append(self.parse_expression())
            self._skip_newlines()
            if self._check(TokenKind.COMMA):
                self._advance()
        self._expect(TokenKind.RBRACKET, "']'")
        return ListLiteral(items, loc=self._loc(start))

    def _parse_object(self):
        start = self._advance()
        entries = []
        while True:
            self._skip_newlines()
            if self._check(TokenKind.RBRACE):
                break
            if not self._check(*NAME_KEY_KINDS):
                raise self._error(f"Expected an object key, found {self._current().describe()}")
            key = self._parse_name_key()
            self._expect(TokenKind.COLON, "':' after object key")
            self._skip_newlines()
            entries.append((key, self.parse_expression()))
            self._skip_newlines()
            if self._check(TokenKind.COMMA):
                self._advance()
        self._expect(TokenKind.RBRACE, "'}'")
        return ObjectLiteral(entries, loc=self._loc(start))

    def _parse_anonymous_function(self):
        start = self._advance()
        params = []
        while self._check(TokenKind.VARIABLE):
            params.append(self._advance().value)
        self._expect(TokenKind.LPAREN, "'(' before the function body")
        self._skip_newlines()
        body = self.parse_expression()
        self._skip_newlines()
        self._expect(TokenKind.RPAREN, "')' after the function body")
        self._expect(TokenKind.PIPE, "'|' to close the function")
        loc = self._loc(start)
        return FunctionLiteral(params, [ExpressionStatement(body, loc=body.loc)], None, loc=loc)

    def _parse_call(self) -> Call:
        token = self._advance()
        loc = self._loc(token)
        if token.kind == TokenKind.BLOCK:
            name = self._expect(TokenKind.IDENTIFIER, f"a function name after ':{token.value}:'").value
            return Call(name, self._parse_arguments(), block=token.value, loc=loc)
        return Call(token.value, self._parse_arguments(), star=token.kind == TokenKind.STAR_NAME, loc=loc)

    def _parse_arguments(self) -> list:
        args = []
        while self._starts_argument():
            token = self._current()
            if token.kind == TokenKind.IDENTIFIER:
                self._advance()
                args.append(FunctionRef(token.value, loc=self._loc(token)))
            elif token.kind == TokenKind.BLOCK:
                self._advance()
                name = self._expect(TokenKind.IDENTIFIER, f"a function name after ':{token.value}:'").value
                args.append(FunctionRef(name, token.value, loc=self._loc(token)))
            elif token.kind == TokenKind.STAR_NAME:
                # a nested explicit call takes every remaining argument
                args.append(self._parse_call())
            else:
                args.append(self._parse_postfix(self._parse_primary()))
        return args

    def _starts_argument(self) -> bool:
        kind = self._current().kind
        if kind == TokenKind.LPAREN:
            return not self._in_header
        return kind in ARGUMENT_START

    def _string_node(self, token: Token):
        parts = token.value
        if not any(isinstance(part, Interpolation) for part in parts):
            return StringLiteral("".join(parts), loc=self._loc(token))
        nodes = []
        for part in parts:
            if isinstance(part, str):
                nodes.append(part)
                continue
            sub = Parser(tokenize(part.source, line=part.line, col=part.col, offset=part.offset))
            sub._skip_newlines()
            if sub._check(TokenKind.EOF):
                raise ParseError("Empty interpolation", part.line, part.col, part.offset)
            nodes.append(sub.parse_expression())
            sub._skip_newlines()
            sub._expect(TokenKind.EOF, "end of interpolation")
        return InterpolatedString(nodes, loc=self._loc(token))


def parse(source: Union[str, List[Token]]) -> Program:
    """Parses source text (or an already tokenized stream) into a Program."""
    tokens = tokenize(source) if isinstance(source, str) else list(source)
    return Parser(tokens).parse_program()
