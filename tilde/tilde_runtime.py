"""
Script execution: the `ScriptRunner` session object and its results.

A runner owns one root scope and one Evaluator. Successive scripts run
against the same root scope, so definitions persist (the REPL relies on
this) until `reset()`.
"""
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from tilde.tilde_datatypes import (
    BuiltinFunction, ErrorValue, Scope, TildeCallable, TildeError, TildeSyntaxError,
)
from tilde.tilde_interpreter import Evaluator
from tilde.tilde_lexer import LexError
from tilde.tilde_parser import parse
from tilde.tilde_stdlib import build_registry

RECURSION_LIMIT = 10_000

Token = Dict[str, Any]


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Token] = None
    # The rescuable error value for runtime failures; None for syntax errors.
    error: Optional[ErrorValue] = None
    # Source excerpt and call stack, for display under the message.
    details: str = ""
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            col_info = f", col {col}" if col is not None else ""
            return f"Error on line {line}{col_info}: {msg}"
        return msg


class ScriptRunner:
    """Parses and executes Tilde code against a persistent root scope."""

    def __init__(self, source_dir: Optional[str] = None, input_func: Optional[Callable[[str], str]] = None,
                 on_effect: Optional[Callable[[Dict], None]] = None):
        # Directory relative file paths resolve against; CWD when unknown.
        self.source_dir = source_dir
        self.registry = build_registry()
        self.evaluator = Evaluator(self.registry)
        if input_func is not None:
            self.evaluator.input_func = input_func
        self.evaluator.on_effect = on_effect
        self.root_scope = Scope()
        if sys.getrecursionlimit() < RECURSION_LIMIT:
            sys.setrecursionlimit(RECURSION_LIMIT)

    def reset(self):
        """Drops every binding, side effect and collaborator handle."""
        self.evaluator.reset()
        self.root_scope = Scope()

    # --- Execution ---

    def evaluate_program(self, source_code: str) -> Tuple[Any, List[Dict]]:
        """Runs a script and returns (value, side effects); errors propagate."""
        self.evaluator.side_effects.clear()
        self.evaluator.call_stack.clear()
        self.evaluator.source_dir = self.source_dir or os.getcwd()
        program = parse(source_code)
        value = self.evaluator.run_program(program, self.root_scope)
        return value, list(self.evaluator.side_effects)

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script.

        Never raises for script errors; only a host stack overflow
        (RecursionError) escapes.
        """
        try:
            value, effects = self.evaluate_program(source_code)
            return ExecutionResult(status='success', value=value, side_effects=effects)
        except RecursionError:
            raise
        except TildeSyntaxError as e:
            msg, details = self._format_parse_error(e, source_code)
            token = {'line': e.line, 'col': e.col} if e.line is not None else None
            return self._failure(msg, token, None, details)
        except TildeError as e:
            msg, token, details = self._format_runtime_error(e, source_code)
            return self._failure(msg, token, e.error, details)
        except Exception as e:
            node = self.evaluator.current_node
            loc = getattr(node, 'loc', None) or {}
            token = {'line': loc['line'], 'col': loc.get('col')} if loc.get('line') is not None else None
            return self._failure(f"InternalError: {type(e).__name__}: {e}", token, None, "")

    def _failure(self, msg, token, error, details) -> ExecutionResult:
        result = ExecutionResult(
            status='error',
            error_message=msg,
            error_token=token,
            error=error,
            details=details,
        )
        # Emit consolidated stderr side-effect
        rendered = result.format_error()
        if details:
            rendered = f"{rendered}\n{details}"
        self.evaluator.side_effects.append({'topics': ['stderr'], 'message': rendered})
        result.side_effects = list(self.evaluator.side_effects)
        return result

    # --- Error formatting ---

    def _format_parse_error(self, e: TildeSyntaxError, source: str) -> Tuple[str, str]:
        label = "LexError" if isinstance(e, LexError) else "ParseError"
        if e.line is not None:
            return f"{label}: {e.message}", self._source_context(source, e.line, e.col)
        return f"{label}: {e.message}", ""

    def _format_runtime_error(self, e: TildeError, source: str) -> Tuple[str, Optional[Token], str]:
        msg = e.message or "Unknown error"
        token = None
        parts = []
        loc = getattr(e.node, 'loc', None)
        if loc and loc.get('line') is not None:
            line, col = loc.get('line'), loc.get('col')
            token = {'line': line, 'col': col}
            parts.append(self._source_context(source, line, col))
        st = self._format_stacktrace(e.stack or [])
        if st:
            parts.append(st)
        return msg, token, "\n".join(p for p in parts if p)

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            content = lines[i - 1]
            out.append(f"{prefix} {ln} | {content}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self, stack: List[Dict]) -> str:
        if not stack:
            return ""
        from tilde.tilde_printer import Printer
        pf = Printer().pformat

        def fmt(arg):
            match arg:
                case list():
                    return f"[{len(arg)} items]" if len(arg) > 3 else pf(arg)
                case dict():
                    return "{...}" if arg else "{}"
                case BuiltinFunction():
                    return arg.name
                case TildeCallable():
                    return arg.name or "|fn|"
            return pf(arg)

        frames = []
        for frame in stack:
            name = frame.get('name') or '<call>'
            args_s = " ".join(fmt(a) for a in frame.get('args') or [])
            where = f" @{frame['line']}:{frame['col']}" if frame.get('line') is not None else ""
            frames.append(f"({name}{' ' + args_s if args_s else ''}){where}")
        return "Tilde stack: " + " ".join(frames)
