"""
The core Tilde interpreter.

`Evaluator` walks the AST produced by the parser. Statements return either
a plain value or one of the control signals (`BreakSignal`, `ReturnSignal`)
from tilde_datatypes; runtime errors are raised as `TildeError`. Keeping
signals as return values and errors as exceptions means an
attempt/rescue (which only catches `TildeError`) can never swallow a
`give` or `break-loop` meant for an outer construct.
"""
import math
import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from tilde.tilde_ast import (
    Assign, Attempt, BinaryOp, Block, BooleanLiteral, Break, Call, ExpressionStatement,
    ForEach, FunctionChain, FunctionDef, FunctionLiteral, FunctionRef, Give, If, Increment,
    InterpolatedString, ListLiteral, Loop, NullLiteral, NumberLiteral, ObjectLiteral, Program,
    PropertyAccess, PropertyAssign, StringLiteral, UnaryMinus, Variable,
)
from tilde.tilde_datatypes import (
    BreakSignal, BuiltinFunction, DivisionByZero, ErrorValue, ReturnSignal, Scope, TildeCallable,
    TildeError, TildeFunction, TildeTypeError, UnknownFunction, clone_value, format_number,
    from_python, is_number, is_signal, is_truthy, to_string, type_name, values_equal,
)
from tilde.tilde_stdlib import BuiltinRegistry


def is_return(x) -> bool:
    return isinstance(x, ReturnSignal)


def unwrap_return(x):
    return x.value if is_return(x) else x


class _Unwind(Exception):
    """Carries a signal out of a block used in expression position.

    Caught by the nearest enclosing statement, which turns it back into an
    ordinary signal value.
    """
    def __init__(self, signal):
        super().__init__(signal)
        self.signal = signal


class Evaluator:
    """The Tilde execution engine."""

    def __init__(self, builtins: Optional[BuiltinRegistry] = None):
        self.builtins = builtins if builtins is not None else BuiltinRegistry()
        self.side_effects: List[Dict[str, Any]] = []
        self.call_stack: List[Dict[str, Any]] = []
        self.current_node = None
        # Directory relative file paths resolve against; None means CWD.
        self.source_dir: Optional[str] = None
        self.input_func = input
        # Called with every side effect as it is emitted (live output).
        self.on_effect = None
        # Collaborator handles (e.g. a pooled HTTP client), released on reset.
        self.handles: Dict[str, Any] = {}

    # --- Session state ---

    def reset(self):
        self.side_effects.clear()
        self.call_stack.clear()
        self.current_node = None
        for handle in self.handles.values():
            close = getattr(handle, "close", None)
            if close is not None:
                close()
        self.handles.clear()

    def emit(self, topic: str, message: str):
        effect = {'topics': [topic], 'message': message}
        self.side_effects.append(effect)
        if self.on_effect is not None:
            self.on_effect(effect)

    def _dbg(self, *parts):
        if os.environ.get("TILDE_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    def _push_frame(self, func: TildeCallable, args: List[Any], call_site=None):
        loc = getattr(call_site, 'loc', None) or {}
        self.call_stack.append({
            'name': func.name or '<anonymous>',
            'func': func,
            'args': args,
            'line': loc.get('line'),
            'col': loc.get('col'),
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    # --- Entry points ---

    def run_program(self, program: Program, scope: Scope) -> Any:
        """Runs a whole program; a top-level `give` ends it with that value."""
        result = self._exec_statements(program.statements, scope)
        if isinstance(result, BreakSignal):
            raise self._located(TildeError("break-loop used outside of a loop"), result.node)
        return unwrap_return(result)

    def eval(self, node, scope: Scope) -> Any:
        """Evaluates a statement or expression node, unwrapping a return signal."""
        if isinstance(node, Program):
            return self.run_program(node, scope)
        if isinstance(node, list):
            return unwrap_return(self._exec_statements(node, scope))
        if _is_statement(node):
            return unwrap_return(self._exec(node, scope))
        return self._eval(node, scope)

    def run_body(self, func: TildeFunction, frame: Scope) -> Any:
        result = self._exec_statements(func.body, frame)
        if isinstance(result, ReturnSignal):
            return result.value
        if isinstance(result, BreakSignal):
            raise self._located(TildeError("break-loop used outside of a loop"), result.node)
        return result

    def call_function(self, func: TildeCallable, args: List[Any], call_site=None) -> Any:
        """The single call path for user, anonymous and builtin functions."""
        func.check_arity(len(args))
        self._dbg("CALL", func.describe(), "argc", len(args))
        self._push_frame(func, args, call_site)
        try:
            result = func.call(args, self)
        except TildeError as e:
            if e.stack is None:
                e.stack = list(self.call_stack)
            raise
        except RecursionError:
            raise
        except Exception as e:
            if not isinstance(func, BuiltinFunction):
                raise
            err = TildeError(f"{func.name}: {e}", code="builtin-error", source=func.name)
            err.stack = list(self.call_stack)
            raise err from e
        finally:
            self._pop_frame()
        if isinstance(func, BuiltinFunction):
            return from_python(result)
        return result

    # --- Statements ---

    def _exec_statements(self, statements: list, scope: Scope) -> Any:
        result = None
        for stmt in statements:
            result = self._exec(stmt, scope)
            if is_signal(result):
                return result
        return result

    def _exec(self, stmt, scope: Scope) -> Any:
        self.current_node = stmt
        try:
            return self._exec_node(stmt, scope)
        except _Unwind as unwind:
            return unwind.signal
        except TildeError as e:
            raise self._located(e, stmt)

    def _exec_node(self, stmt, scope: Scope) -> Any:
        match stmt:
            case ExpressionStatement(expr=Block(statements=statements)):
                return self._exec_statements(statements, scope)
            case ExpressionStatement(expr=expr):
                return self._eval(expr, scope)
            case Assign(name=name, value=value_node):
                value = self._eval(value_node, scope)
                scope.assign(name, value)
                return value
            case PropertyAssign():
                return self._exec_property_assign(stmt, scope)
            case Increment():
                return self._exec_increment(stmt, scope)
            case If(condition=condition, then_branch=then_branch, else_branch=else_branch):
                if is_truthy(self._eval(condition, scope)):
                    return self._exec(then_branch, scope)
                if else_branch is not None:
                    return self._exec(else_branch, scope)
                return None
            case Loop(body=body):
                while True:
                    result = self._exec_statements(body, scope)
                    if isinstance(result, BreakSignal):
                        return None
                    if isinstance(result, ReturnSignal):
                        return result
            case ForEach():
                return self._exec_for_each(stmt, scope)
            case Break():
                return BreakSignal(stmt)
            case Give(value=value_node):
                value = self._eval(value_node, scope) if value_node is not None else None
                return ReturnSignal(value)
            case FunctionDef(function=literal):
                func = TildeFunction(literal.params, literal.body, scope, literal.name)
                scope.declaring_scope().define(literal.name, func)
                return func
            case Attempt():
                return self._exec_attempt(stmt, scope)
            case FunctionChain():
                return self._exec_function_chain(stmt, scope)
            case _:
                raise TildeError(f"Cannot execute {type(stmt).__name__} as a statement")

    def _exec_for_each(self, stmt: ForEach, scope: Scope) -> Any:
        source = self._eval(stmt.iterable, scope)
        match source:
            case list():
                pairs = [(item, float(i)) for i, item in enumerate(source)]
            case str():
                pairs = [(ch, float(i)) for i, ch in enumerate(source)]
            case dict():
                if len(stmt.variables) == 1:
                    pairs = [(value, None) for value in source.values()]
                else:
                    pairs = list(source.items())
            case _:
                raise TildeTypeError(f"Cannot iterate over a {type_name(source)}")

        loop_scope = scope.child_scope("block")
        for first, second in pairs:
            loop_scope.define(stmt.variables[0], first)
            if len(stmt.variables) > 1:
                loop_scope.define(stmt.variables[1], second)
            result = self._exec_statements(stmt.body, loop_scope)
            if isinstance(result, BreakSignal):
                break
            if isinstance(result, ReturnSignal):
                return result
        return None

    def _exec_attempt(self, stmt: Attempt, scope: Scope) -> Any:
        try:
            return self._exec_statements(stmt.body, scope)
        except TildeError as e:
            self._dbg("RESCUE", e.error.code, e.message)
            rescue_scope = scope.child_scope("block")
            if stmt.error_name is not None:
                rescue_scope.define(stmt.error_name, e.error)
        # Outside the `except` so a failure in the rescue block propagates
        # on its own instead of chaining onto the rescued error.
        return self._exec_statements(stmt.rescue, rescue_scope)

    def _exec_function_chain(self, stmt: FunctionChain, scope: Scope) -> Any:
        value = self._eval(stmt.steps[0], scope)
        for step in stmt.steps[1:]:
            self.current_node = step
            try:
                func = self._resolve_call_target(step, scope)
                args = [value] + [self._eval(arg, scope) for arg in step.args]
                value = self.call_function(func, args, step)
            except TildeError as e:
                raise self._located(e, step)
        scope.assign(stmt.name, value)
        return value

    def _exec_property_assign(self, stmt: PropertyAssign, scope: Scope) -> Any:
        value = self._eval(stmt.value, scope)
        container = scope.get(stmt.name)
        keys = [self._eval_key(k, scope) for k in stmt.path]
        for key, inner in zip(keys, keys[1:]):
            container = self._child_for_write(container, key, inner)
        self._write_property(container, keys[-1], value)
        return value

    def _exec_increment(self, stmt: Increment, scope: Scope) -> Any:
        amount = self._eval(stmt.amount, scope)
        if not is_number(amount):
            raise TildeTypeError(f"'{stmt.direction}' needs a number, got {type_name(amount)}")
        delta = amount if stmt.direction == "up" else -amount
        if not stmt.path:
            current = scope.get(stmt.name)
            if not is_number(current):
                raise TildeTypeError(f"Cannot {stmt.direction} ~{stmt.name}: it holds a {type_name(current)}")
            value = float(current + delta)
            scope.set(stmt.name, value)
            return value
        container = scope.get(stmt.name)
        keys = [self._eval_key(k, scope) for k in stmt.path]
        for key, inner in zip(keys, keys[1:]):
            container = self._child_for_write(container, key, inner)
        current = self._read_property(container, keys[-1])
        if not is_number(current):
            raise TildeTypeError(f"Cannot {stmt.direction} a {type_name(current)}")
        value = float(current + delta)
        self._write_property(container, keys[-1], value)
        return value

    # --- Expressions ---

    def _eval(self, node, scope: Scope) -> Any:
        try:
            return self._eval_node(node, scope)
        except TildeError as e:
            raise self._located(e, node)

    def _eval_node(self, node, scope: Scope) -> Any:
        match node:
            case NumberLiteral(value=value) | StringLiteral(value=value) | BooleanLiteral(value=value):
                return value
            case NullLiteral():
                return None
            case InterpolatedString(parts=parts):
                return "".join(p if isinstance(p, str) else to_string(self._eval(p, scope)) for p in parts)
            case Variable(name=name):
                return clone_value(scope.get(name))
            case ListLiteral(items=items):
                return [self._eval(item, scope) for item in items]
            case ObjectLiteral(entries=entries):
                return {key: self._eval(value, scope) for key, value in entries}
            case PropertyAccess():
                return clone_value(self._eval_reference(node, scope))
            case UnaryMinus(operand=operand):
                value = self._eval(operand, scope)
                if not is_number(value):
                    raise TildeTypeError(f"Cannot negate a {type_name(value)}")
                return -value
            case BinaryOp(op="and", left=left, right=right):
                value = self._eval(left, scope)
                return self._eval(right, scope) if is_truthy(value) else value
            case BinaryOp(op="or", left=left, right=right):
                value = self._eval(left, scope)
                return value if is_truthy(value) else self._eval(right, scope)
            case BinaryOp(op=op, left=left, right=right):
                return self._binary(op, self._eval(left, scope), self._eval(right, scope))
            case Block(statements=statements):
                result = self._exec_statements(statements, scope)
                if is_signal(result):
                    raise _Unwind(result)
                return result
            case FunctionLiteral(params=params, body=body, name=name):
                return TildeFunction(params, body, scope, name)
            case Call(args=arg_nodes):
                func = self._resolve_call_target(node, scope)
                args = [self._eval(arg, scope) for arg in arg_nodes]
                return self.call_function(func, args, node)
            case FunctionRef(name=name, block=block):
                return self._resolve_function(name, block, scope)
        raise TildeError(f"Cannot evaluate {type(node).__name__}")

    def _eval_reference(self, node, scope: Scope) -> Any:
        """Like _eval, but returns stored composites without copying them."""
        match node:
            case Variable(name=name):
                return scope.get(name)
            case PropertyAccess(target=target, key=key):
                container = self._eval_reference(target, scope)
                return self._read_property(container, self._eval_key(key, scope))
        return self._eval(node, scope)

    def _eval_key(self, key_node, scope: Scope) -> Any:
        if isinstance(key_node, Variable):
            return self._eval(key_node, scope)
        return key_node.value

    def _binary(self, op: str, a, b) -> Any:
        if op == "==":
            return values_equal(a, b)
        if op == "!=":
            return not values_equal(a, b)
        if op in ("<", "<=", ">", ">="):
            comparable = (
                (is_number(a) and is_number(b))
                or (isinstance(a, str) and isinstance(b, str))
                or (isinstance(a, datetime) and isinstance(b, datetime))
            )
            if not comparable:
                raise TildeTypeError(f"Cannot compare {type_name(a)} and {type_name(b)} with '{op}'")
            match op:
                case "<":
                    return a < b
                case "<=":
                    return a <= b
                case ">":
                    return a > b
                case ">=":
                    return a >= b
        if op == "+" and isinstance(a, str) and isinstance(b, str):
            return a + b
        if not (is_number(a) and is_number(b)):
            raise TildeTypeError(f"Operator '{op}' needs numbers, got {type_name(a)} and {type_name(b)}")
        match op:
            case "+":
                return float(a + b)
            case "-":
                return float(a - b)
            case "*":
                return float(a * b)
            case "/":
                if b == 0:
                    raise DivisionByZero("Division by zero")
                return float(a / b)
            case "\\":
                if b == 0:
                    raise DivisionByZero("Division by zero")
                return float(math.floor(a / b))
            case "%":
                if b == 0:
                    raise DivisionByZero("Modulo by zero")
                return math.fmod(a, b)
        raise TildeError(f"Unknown operator '{op}'")

    # --- Property access ---

    @staticmethod
    def _as_index(key) -> Optional[int]:
        if is_number(key) and float(key).is_integer():
            return int(key)
        if isinstance(key, str) and key.isascii() and key.isdigit():
            return int(key)
        return None

    @staticmethod
    def _as_object_key(key) -> str:
        return key if isinstance(key, str) else to_string(key)

    def _read_property(self, container, key) -> Any:
        match container:
            case list() | str():
                index = self._as_index(key)
                if index is None:
                    raise TildeTypeError(f"Index into a {type_name(container)} must be a whole number, got '{to_string(key)}'")
                if 0 <= index < len(container):
                    return container[index]
                return None
            case dict():
                return container.get(self._as_object_key(key))
            case ErrorValue():
                return container.field_value(self._as_object_key(key))
        raise TildeTypeError(f"Cannot read property '{to_string(key)}' of {type_name(container)}")

    def _child_for_write(self, container, key, inner) -> Any:
        """Steps into `key` on the way to setting `inner`; absent or null object keys become {}."""
        if isinstance(container, dict):
            name = self._as_object_key(key)
            if container.get(name) is None:
                container[name] = {}
            child = container[name]
        else:
            child = self._read_property(container, key)
        if not isinstance(child, (dict, list)):
            raise TildeTypeError(f"Cannot set property '{to_string(inner)}' on non-object value")
        return child

    def _write_property(self, container, key, value):
        match container:
            case list():
                index = self._as_index(key)
                if index is None:
                    raise TildeTypeError(f"List index must be a whole number, got '{to_string(key)}'")
                if index < len(container):
                    container[index] = value
                else:
                    container.extend([None] * (index - len(container)))
                    container.append(value)
            case dict():
                container[self._as_object_key(key)] = value
            case _:
                raise TildeTypeError(f"Cannot set property '{to_string(key)}' on {type_name(container)}")

    # --- Name resolution ---

    def _resolve_call_target(self, call: Call, scope: Scope) -> TildeCallable:
        return self._resolve_function(call.name, call.block, scope)

    def _resolve_function(self, name: str, block: Optional[str], scope: Scope) -> TildeCallable:
        """Block-qualified builtin, else a bound function value, else a builtin."""
        if block is not None:
            return self.builtins.get_in_block(block, name)
        bound = scope.lookup(name)
        if isinstance(bound, TildeCallable):
            return bound
        builtin = self.builtins.get(name)
        if builtin is not None:
            return builtin
        raise UnknownFunction(f"Unknown function: {name}")

    # --- Errors ---

    def _located(self, error: TildeError, node) -> TildeError:
        if error.node is None and getattr(node, 'loc', None):
            error.node = node
        return error


def _is_statement(node) -> bool:
    return isinstance(node, (
        ExpressionStatement, Assign, PropertyAssign, Increment, If, Loop, ForEach, Break,
        FunctionDef, Give, Attempt, FunctionChain,
    ))
