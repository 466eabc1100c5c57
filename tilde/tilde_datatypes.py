"""
Defines the core data types for the Tilde language runtime.

Tilde values are plain Python objects wherever Python already has the
right shape:

    number  -> float          string -> str        boolean -> bool
    null    -> None           list   -> list       object  -> dict (str keys)
    date    -> datetime (UTC)

This module provides the remaining runtime types (scopes, callables, error
values), the exceptions and control signals used by the evaluator, and the
value-model rules every other module relies on: truthiness, structural
equality, copying, and the canonical string conversion.
"""

import inspect
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# =================================================================
# Errors
# =================================================================


class TildeSyntaxError(Exception):
    """Base class for errors raised before any evaluation happens."""

    def __init__(self, message: str, line: Optional[int] = None, col: Optional[int] = None,
                 offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.col = col
        self.offset = offset

    def __str__(self):
        if self.line is None:
            return self.message
        return f"{self.message} (line {self.line}, col {self.col})"


@dataclass(frozen=True)
class ErrorValue:
    """A failure turned into data: what `rescue ~err` binds."""
    message: str
    code: Optional[str] = None
    source: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    FIELDS = ("message", "code", "source", "context")

    def field_value(self, name: str) -> Any:
        if name == "context":
            return clone_value(self.context)
        if name in ("message", "code", "source"):
            return getattr(self, name)
        return None


class TildeError(Exception):
    """A runtime error. Scripts can catch these with attempt/rescue."""
    code: Optional[str] = None

    def __init__(self, message: str = "", *, code: Optional[str] = None, source: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None, error: Optional[ErrorValue] = None):
        if error is None:
            error = ErrorValue(message, code or self.code, source, dict(context or {}))
        super().__init__(error.message)
        self.error = error
        # AST node and call frames active when the error was raised; filled in
        # by the evaluator.
        self.node = None
        self.stack = None

    @property
    def message(self) -> str:
        return self.error.message


class UndefinedVariable(TildeError):
    code = "undefined-variable"


class TildeTypeError(TildeError):
    code = "type-error"


class DivisionByZero(TildeError):
    code = "division-by-zero"


class UnknownFunction(TildeError):
    code = "unknown-function"


class ArityError(TildeError):
    code = "arity"


# =================================================================
# Control signals
# =================================================================
# Returned (never raised) up the statement walk so that a catch
# construct cannot absorb them by accident.

@dataclass
class BreakSignal:
    node: Any = None


@dataclass
class ReturnSignal:
    value: Any = None


def is_signal(x) -> bool:
    return isinstance(x, (BreakSignal, ReturnSignal))


# =================================================================
# Scopes
# =================================================================


class Scope:
    """One frame of the lexical environment.

    Frames form a parent chain. A frame's `kind` is either "function"
    (the root and every call frame) or "block" (frames that only hold
    loop or rescue variables). Assignments to a name nobody defines yet
    land in the nearest function frame, see `declaring_scope`.
    """
    def __init__(self, parent: Optional['Scope'] = None, kind: str = "function"):
        self.bindings: Dict[str, Any] = {}
        self.meta: Dict[str, Any] = {
            "parent": parent,
            "kind": kind,
        }

    @property
    def parent(self) -> Optional['Scope']:
        return self.meta.get("parent")

    @property
    def kind(self) -> str:
        return self.meta["kind"]

    def define(self, name: str, value: Any):
        """Binds `name` in this frame, shadowing any outer binding."""
        self.bindings[name] = value

    def find_owner(self, name: str) -> Optional['Scope']:
        scope = self
        while scope is not None:
            if name in scope.bindings:
                return scope
            scope = scope.parent
        return None

    def get(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise UndefinedVariable(f"Undefined variable: ~{name}")
        return owner.bindings[name]

    def lookup(self, name: str, default: Any = None) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            return default
        return owner.bindings[name]

    def set(self, name: str, value: Any):
        """Updates the nearest frame that already defines `name`."""
        owner = self.find_owner(name)
        if owner is None:
            raise UndefinedVariable(f"Undefined variable: ~{name}")
        owner.bindings[name] = value

    def declaring_scope(self) -> 'Scope':
        scope = self
        while scope.kind == "block" and scope.parent is not None:
            scope = scope.parent
        return scope

    def assign(self, name: str, value: Any):
        owner = self.find_owner(name)
        if owner is None:
            owner = self.declaring_scope()
        owner.bindings[name] = value

    def child_scope(self, kind: str = "block") -> 'Scope':
        return Scope(parent=self, kind=kind)

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def keys(self):
        return self.bindings.keys()

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Scope {self.kind} bindings=[{keys}]{parent_id}>"


# =================================================================
# Callables
# =================================================================


class TildeCallable(ABC):
    """Abstract base class for everything a Tilde call can invoke."""
    name: Optional[str] = None

    @abstractmethod
    def check_arity(self, count: int):
        """Raises ArityError when `count` arguments cannot be accepted."""

    @abstractmethod
    def call(self, args: List[Any], context) -> Any:
        """Runs the callable. `context` is the calling Evaluator."""

    @abstractmethod
    def describe(self) -> str:
        ...


class TildeFunction(TildeCallable):
    """A named or anonymous function written in Tilde.

    This is a closure: it bundles the parameter names and body with the
    scope in which it was defined.
    """
    def __init__(self, params: List[str], body: List[Any], closure: Scope, name: Optional[str] = None):
        self.params = list(params)
        self.body = body
        self.closure = closure
        self.name = name

    def check_arity(self, count: int):
        if count != len(self.params):
            label = self.name or "anonymous"
            raise ArityError(
                f"Function '{label}' expects {len(self.params)} arguments, but {count} were provided"
            )

    def call(self, args: List[Any], context) -> Any:
        frame = self.closure.child_scope("function")
        for param, arg in zip(self.params, args):
            frame.define(param, arg)
        return context.run_body(self, frame)

    def describe(self) -> str:
        return f"<function {self.name}>" if self.name else "<anonymous function>"

    def __repr__(self) -> str:
        params = " ".join(f"~{p}" for p in self.params)
        return f"TildeFunction({self.name or '<anonymous>'} {params})"


class BuiltinFunction(TildeCallable):
    """A library function implemented in Python.

    Python callables that declare a keyword-only `context` parameter
    receive the calling Evaluator through it.
    """
    def __init__(self, name: str, fn: Callable, block: str = "core"):
        self.name = name
        self.fn = fn
        self.block = block
        self.signature = inspect.signature(fn)
        self.wants_context = 'context' in self.signature.parameters

    def check_arity(self, count: int):
        try:
            self.signature.bind(*([None] * count), **({'context': None} if self.wants_context else {}))
        except TypeError:
            positional = [
                p for p in self.signature.parameters.values()
                if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
            ]
            required = [p for p in positional if p.default is p.empty]
            variadic = any(p.kind == p.VAR_POSITIONAL for p in self.signature.parameters.values())
            if variadic:
                expected = f"at least {len(required)}"
            elif len(required) == len(positional):
                expected = str(len(required))
            else:
                expected = f"{len(required)} to {len(positional)}"
            raise ArityError(f"Function '{self.name}' expects {expected} arguments, but {count} were provided")

    def call(self, args: List[Any], context) -> Any:
        if self.wants_context:
            return self.fn(*args, context=context)
        return self.fn(*args)

    def describe(self) -> str:
        return f"<builtin {self.name}>"

    def __repr__(self) -> str:
        return f"BuiltinFunction({self.block}:{self.name})"


# =================================================================
# Value model
# =================================================================


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_name(value) -> str:
    match value:
        case None:
            return "null"
        case bool():
            return "boolean"
        case int() | float():
            return "number"
        case str():
            return "string"
        case list():
            return "list"
        case dict():
            return "object"
        case datetime():
            return "date"
        case ErrorValue():
            return "error"
        case TildeCallable():
            return "function"
    return type(value).__name__


def is_truthy(value) -> bool:
    match value:
        case None:
            return False
        case bool():
            return value
        case int() | float():
            return value != 0
        case str() | list() | dict():
            return len(value) > 0
        case ErrorValue():
            return False
    # dates and functions
    return True


def values_equal(a, b) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if is_number(a) and is_number(b):
        return a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(values_equal(a[k], b[k]) for k in a)
    if isinstance(a, TildeCallable) or isinstance(b, TildeCallable):
        return a is b
    return type(a) is type(b) and a == b


def clone_value(value):
    """Deep-copies lists and objects. Everything else is immutable."""
    if isinstance(value, list):
        return [clone_value(v) for v in value]
    if isinstance(value, dict):
        return {k: clone_value(v) for k, v in value.items()}
    return value


def from_python(obj):
    """Normalizes a Python result into a Tilde value."""
    match obj:
        case None | bool() | str() | float():
            return obj
        case int():
            return float(obj)
        case list() | tuple():
            return [from_python(v) for v in obj]
        case dict():
            return {str(k): from_python(v) for k, v in obj.items()}
        case datetime():
            if obj.tzinfo is None:
                return obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc)
        case ErrorValue() | TildeCallable():
            return obj
    raise TildeTypeError(f"Cannot use a Python {type(obj).__name__} as a Tilde value")


def format_number(n: float) -> str:
    if math.isnan(n):
        return "NaN"
    if math.isinf(n):
        return "inf" if n > 0 else "-inf"
    if n == int(n):
        return str(int(n))
    return repr(float(n))


def to_string(value) -> str:
    """The canonical string form used by `say` and string interpolation."""
    match value:
        case None:
            return "null"
        case bool():
            return "true" if value else "false"
        case int() | float():
            return format_number(value)
        case str():
            return value
        case list():
            return "[" + ", ".join(to_string(v) for v in value) + "]"
        case dict():
            return "{" + ", ".join(f"{k}: {to_string(v)}" for k, v in value.items()) + "}"
        case datetime():
            return value.astimezone(timezone.utc).strftime(DATE_FORMAT)
        case ErrorValue():
            return f"Error: {value.message}"
        case TildeCallable():
            return value.describe()
    return str(value)
