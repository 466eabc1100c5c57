"""
AST node types produced by the parser.

Every node carries an optional `loc` dict ({'line': .., 'col': ..}) for
diagnostics. `loc` is excluded from equality so two parses of the same
program compare equal regardless of layout.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union


def _loc():
    return field(default=None, compare=False, repr=False, kw_only=True)


# =================================================================
# Expressions
# =================================================================

@dataclass
class NumberLiteral:
    value: float
    loc: Optional[dict] = _loc()


@dataclass
class StringLiteral:
    value: str
    loc: Optional[dict] = _loc()


@dataclass
class InterpolatedString:
    # str for literal text, any expression node for `...` markers
    parts: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class BooleanLiteral:
    value: bool
    loc: Optional[dict] = _loc()


@dataclass
class NullLiteral:
    loc: Optional[dict] = _loc()


@dataclass
class Variable:
    name: str
    loc: Optional[dict] = _loc()


@dataclass
class ListLiteral:
    items: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class ObjectLiteral:
    entries: List[Tuple[str, Any]]
    loc: Optional[dict] = _loc()


@dataclass
class PropertyAccess:
    """`target.key`. Static keys are StringLiteral/NumberLiteral, `.~k` is a Variable."""
    target: Any
    key: Union[StringLiteral, NumberLiteral, Variable]
    loc: Optional[dict] = _loc()


@dataclass
class UnaryMinus:
    operand: Any
    loc: Optional[dict] = _loc()


@dataclass
class BinaryOp:
    op: str
    left: Any
    right: Any
    loc: Optional[dict] = _loc()


@dataclass
class Block:
    """`( statements )`; evaluates to its last statement's value."""
    statements: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class FunctionLiteral:
    """Shared shape of named definitions and `|~x (expr)|` literals."""
    params: List[str]
    body: List[Any]
    name: Optional[str] = None
    loc: Optional[dict] = _loc()


@dataclass
class Call:
    name: str
    args: List[Any]
    block: Optional[str] = None
    star: bool = False
    loc: Optional[dict] = _loc()


@dataclass
class FunctionRef:
    """A bare `name` (or `:block:name`) in argument position."""
    name: str
    block: Optional[str] = None
    loc: Optional[dict] = _loc()


# =================================================================
# Statements
# =================================================================

@dataclass
class ExpressionStatement:
    expr: Any
    loc: Optional[dict] = _loc()


@dataclass
class Assign:
    name: str
    value: Any
    loc: Optional[dict] = _loc()


@dataclass
class PropertyAssign:
    name: str
    path: List[Any]
    value: Any
    loc: Optional[dict] = _loc()


@dataclass
class Increment:
    """`~x up n` / `~x.k down n`; `path` is empty for a plain variable."""
    name: str
    path: List[Any]
    amount: Any
    direction: str
    loc: Optional[dict] = _loc()


@dataclass
class If:
    condition: Any
    then_branch: Any
    else_branch: Optional[Any] = None
    loc: Optional[dict] = _loc()


@dataclass
class Loop:
    body: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class ForEach:
    variables: List[str]
    iterable: Any
    body: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class Break:
    loc: Optional[dict] = _loc()


@dataclass
class FunctionDef:
    function: FunctionLiteral
    loc: Optional[dict] = _loc()


@dataclass
class Give:
    value: Optional[Any] = None
    loc: Optional[dict] = _loc()


@dataclass
class Attempt:
    body: List[Any]
    error_name: Optional[str]
    rescue: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class FunctionChain:
    """`~name:` followed by indented call steps, each fed the previous result."""
    name: str
    steps: List[Call]
    loc: Optional[dict] = _loc()


@dataclass
class Program:
    statements: List[Any]
    loc: Optional[dict] = _loc()
