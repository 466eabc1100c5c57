"""
Pretty-printers for Tilde values and Tilde source.

`Printer` renders runtime values the way the REPL shows them. `SourcePrinter`
renders an AST back into source text that parses to an equal AST.
"""
from datetime import datetime

from tilde.tilde_ast import (
    Assign, Attempt, BinaryOp, Block, BooleanLiteral, Break, Call, ExpressionStatement,
    ForEach, FunctionChain, FunctionDef, FunctionLiteral, FunctionRef, Give, If, Increment,
    InterpolatedString, ListLiteral, Loop, NullLiteral, NumberLiteral, ObjectLiteral, Program,
    PropertyAccess, PropertyAssign, StringLiteral, UnaryMinus, Variable,
)
from tilde.tilde_datatypes import ErrorValue, TildeCallable, format_number, to_string
from tilde.tilde_lexer import Lexer

_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\t": "\\t", "\r": "\\r", "`": "\\`"}


def quote(text: str) -> str:
    return '"' + "".join(_ESCAPES.get(ch, ch) for ch in text) + '"'


def number_source(value: float) -> str:
    """Number literal text; the lexer has no exponent syntax."""
    text = format_number(value)
    if "e" in text:
        text = f"{value:.20f}".rstrip("0").rstrip(".")
    return text


def name_or_quoted(key: str) -> str:
    """Object keys and property names print bare when they lex as one name."""
    match = Lexer.RE_NAME.fullmatch(key)
    return key if match else quote(key)


class Printer:
    """Formats Tilde values into readable, source-like strings."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width

    def pformat(self, obj, level=0):
        """Public entry point to format a value."""
        match obj:
            case None:
                return "null"
            case bool():
                return "true" if obj else "false"
            case int() | float():
                return format_number(obj)
            case str():
                return quote(obj)
            case list():
                return self._pformat_list(obj, level)
            case dict():
                return self._pformat_dict(obj, level)
            case datetime():
                return f"date {quote(to_string(obj))}"
            case ErrorValue():
                code = f" ({obj.code})" if obj.code else ""
                return f"<error{code}: {obj.message}>"
            case TildeCallable():
                return obj.describe()
        return repr(obj)

    def _pformat_list(self, obj, level):
        if not obj:
            return "[]"
        items = [self.pformat(v, level + 1) for v in obj]
        flat = "[" + ", ".join(items) + "]"
        if len(flat) <= 72 and "\n" not in flat:
            return flat
        inner = self._indent_char * (level + 1)
        closing = self._indent_char * level
        return "[\n" + ",\n".join(f"{inner}{item}" for item in items) + f"\n{closing}]"

    def _pformat_dict(self, obj, level):
        if not obj:
            return "{}"
        items = [f"{name_or_quoted(k)}: {self.pformat(v, level + 1)}" for k, v in obj.items()]
        flat = "{" + ", ".join(items) + "}"
        if len(flat) <= 72 and "\n" not in flat:
            return flat
        inner = self._indent_char * (level + 1)
        closing = self._indent_char * level
        return "{\n" + ",\n".join(f"{inner}{item}" for item in items) + f"\n{closing}}}"


class SourcePrinter:
    """Renders AST nodes back into Tilde source."""

    def __init__(self, indent_width=4):
        self._indent = " " * indent_width

    def pformat(self, node) -> str:
        if isinstance(node, Program):
            return "\n".join(self.statement(s) for s in node.statements)
        if isinstance(node, list):
            return "\n".join(self.statement(s) for s in node)
        if _is_statement(node):
            return self.statement(node)
        return self.expression(node)

    def _indented(self, text: str) -> str:
        return "\n".join(self._indent + line if line else line for line in text.split("\n"))

    def block(self, statements: list) -> str:
        if not statements:
            return "()"
        body = "\n".join(self.statement(s) for s in statements)
        if len(statements) == 1 and "\n" not in body:
            return f"({body})"
        return "(\n" + self._indented(body) + "\n)"

    # --- Statements ---

    def statement(self, stmt) -> str:
        match stmt:
            case ExpressionStatement(expr=expr):
                return self.expression(expr)
            case Assign(name=name, value=value):
                return f"~{name} is {self.expression(value)}"
            case PropertyAssign(name=name, path=path, value=value):
                return f"~{name}{self._path(path)} is {self.expression(value)}"
            case Increment(name=name, path=path, amount=amount, direction=direction):
                return f"~{name}{self._path(path)} {direction} {self.expression(amount)}"
            case If(condition=condition, then_branch=then_branch, else_branch=else_branch):
                text = f"if {self.expression(condition)} {self.statement(then_branch)}"
                if else_branch is not None:
                    text += f" else {self.statement(else_branch)}"
                return text
            case Loop(body=body):
                return f"loop {self.block(body)}"
            case ForEach(variables=variables, iterable=iterable, body=body):
                names = " ".join(f"~{v}" for v in variables)
                return f"for-each {names} in {self.expression(iterable)} {self.block(body)}"
            case Break():
                return "break-loop"
            case FunctionDef(function=fn):
                params = "".join(f" ~{p}" for p in fn.params)
                return f"function {fn.name}{params} {self.block(fn.body)}"
            case Give(value=value):
                return "give" if value is None else f"give {self.expression(value)}"
            case Attempt(body=body, error_name=error_name, rescue=rescue):
                binding = f" ~{error_name}" if error_name else ""
                return f"attempt {self.block(body)} rescue{binding} {self.block(rescue)}"
            case FunctionChain(name=name, steps=steps):
                lines = [f"~{name}:"] + [self._indented(self.expression(step)) for step in steps]
                return "\n".join(lines)
        raise TypeError(f"Cannot print {type(stmt).__name__} as a statement")

    def _path(self, path) -> str:
        return "".join("." + self._key(k) for k in path)

    def _key(self, key) -> str:
        match key:
            case Variable(name=name):
                return f"~{name}"
            case NumberLiteral(value=value):
                return format_number(value)
            case StringLiteral(value=value):
                return name_or_quoted(value)
        raise TypeError(f"Cannot print {type(key).__name__} as a property key")

    # --- Expressions ---

    def expression(self, node) -> str:
        match node:
            case NumberLiteral(value=value):
                return number_source(value)
            case StringLiteral(value=value):
                return quote(value)
            case InterpolatedString(parts=parts):
                out = []
                for part in parts:
                    if isinstance(part, str):
                        out.append("".join(_ESCAPES.get(ch, ch) for ch in part))
                    else:
                        out.append(f"`{self.expression(part)}`")
                return '"' + "".join(out) + '"'
            case BooleanLiteral(value=value):
                return "true" if value else "false"
            case NullLiteral():
                return "null"
            case Variable(name=name):
                return f"~{name}"
            case ListLiteral(items=items):
                return "[" + ", ".join(self.expression(i) for i in items) + "]"
            case ObjectLiteral(entries=entries):
                inner = ", ".join(f"{name_or_quoted(k)}: {self.expression(v)}" for k, v in entries)
                return "{" + inner + "}"
            case PropertyAccess(target=target, key=key):
                return f"{self.expression(target)}.{self._key(key)}"
            case UnaryMinus(operand=operand):
                return f"- {self.expression(operand)}"
            case BinaryOp(op=op, left=left, right=right):
                return f"{self.expression(left)} {op} {self.expression(right)}"
            case Block(statements=statements):
                return self.block(statements)
            case FunctionLiteral(params=params, body=body):
                names = "".join(f"~{p} " for p in params)
                inner = self.expression(body[0].expr) if body else "null"
                return f"|{names}({inner})|"
            case Call(name=name, args=args, block=block, star=star):
                head = f":{block}:{name}" if block else (f"*{name}" if star else name)
                return " ".join([head] + [self.expression(a) for a in args])
            case FunctionRef(name=name, block=block):
                return f":{block}:{name}" if block else name
        raise TypeError(f"Cannot print {type(node).__name__} as an expression")


def _is_statement(node) -> bool:
    return isinstance(node, (
        ExpressionStatement, Assign, PropertyAssign, Increment, If, Loop, ForEach, Break,
        FunctionDef, Give, Attempt, FunctionChain,
    ))
