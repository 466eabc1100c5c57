"""Tilde: a small, readable scripting language."""
from tilde.tilde_datatypes import ErrorValue, Scope, TildeError, TildeSyntaxError
from tilde.tilde_lexer import LexError, tokenize
from tilde.tilde_parser import ParseError, parse
from tilde.tilde_runtime import ExecutionResult, ScriptRunner

__all__ = [
    "ErrorValue",
    "ExecutionResult",
    "LexError",
    "ParseError",
    "Scope",
    "ScriptRunner",
    "TildeError",
    "TildeSyntaxError",
    "parse",
    "tokenize",
]
