import pytest

from tilde import ScriptRunner
from tilde.tilde_runtime import ExecutionResult


def run_tilde(src: str):
    runner = ScriptRunner()
    return runner.handle_script(src)


def assert_ok(res, expected=None):
    assert res.status == 'success', res.error_message
    if expected is not None:
        assert res.value == expected


def assert_error(res, contains: str | None = None):
    assert res.status == 'error', f"expected error, got success: {res.value!r}"
    if contains is not None:
        assert contains in (res.error_message or ""), f"error did not contain {contains!r}: {res.error_message!r}"


# --- attempt / rescue ---

def test_rescue_binds_the_error():
    src = """
        attempt (
            error "boom"
        ) rescue ~e (
            ~caught is [~e.message, ~e.code, type-of ~e]
        )
        ~caught
    """
    assert_ok(run_tilde(src), ["boom", "user-error", "error"])


def test_runaway_recursion_is_not_rescuable():
    runner = ScriptRunner()
    with pytest.raises(RecursionError):
        runner.handle_script("function f (give f)\nattempt (f) rescue (~x is 1)")


def test_session_survives_runaway_recursion():
    runner = ScriptRunner()
    assert_ok(runner.handle_script("~kept is 3\nfunction f (give f)"))
    with pytest.raises(RecursionError):
        runner.handle_script("f")
    assert_ok(runner.handle_script("~kept"), 3)


def test_custom_error_code():
    src = """
        attempt (error "bad input" "validation") rescue ~e (~code is ~e.code)
        ~code
    """
    assert_ok(run_tilde(src), "validation")


def test_rescue_without_binding():
    assert_ok(run_tilde('attempt (1 / 0) rescue (~r is "caught")\n~r'), "caught")


def test_attempt_value_is_the_body_value_on_success():
    assert_ok(run_tilde("~v is 0\nattempt (~v is 7) rescue (~v is -1)\n~v"), 7)


def test_runtime_errors_are_rescuable():
    src = """
        ~codes is []
        attempt (1 / 0) rescue ~e (~codes is append ~codes ~e.code)
        attempt (~missing) rescue ~e (~codes is append ~codes ~e.code)
        attempt (nope 1) rescue ~e (~codes is append ~codes ~e.code)
        attempt (length) rescue ~e (~codes is append ~codes ~e.code)
        attempt (1 + "a") rescue ~e (~codes is append ~codes ~e.code)
        ~codes
    """
    assert_ok(run_tilde(src), [
        "division-by-zero", "undefined-variable", "unknown-function", "arity", "type-error",
    ])


def test_error_in_rescue_propagates():
    res = run_tilde('attempt (1 / 0) rescue (error "again")')
    assert_error(res, "again")
    assert res.error.code == "user-error"


def test_rethrowing_the_rescued_error_keeps_it():
    res = run_tilde('attempt (error "first" "c1") rescue ~e (error ~e)')
    assert_error(res, "first")
    assert res.error.code == "c1"


def test_attempt_does_not_catch_give():
    src = """
        function f (
            attempt (give 1) rescue (give 2)
            give 3
        )
        f
    """
    assert_ok(run_tilde(src), 1)


def test_attempt_does_not_catch_break():
    src = """
        ~n is 0
        loop (
            ~n up 1
            attempt (break-loop) rescue (~n is 100)
        )
        ~n
    """
    assert_ok(run_tilde(src), 1)


def test_nested_attempts_rescue_innermost_first():
    src = """
        ~log is []
        attempt (
            attempt (error "inner") rescue ~e (~log is append ~log "inner: `~e.message`")
            error "outer"
        ) rescue ~e (~log is append ~log "outer: `~e.message`")
        ~log
    """
    assert_ok(run_tilde(src), ["inner: inner", "outer: outer"])


def test_rescue_inside_function_catches_errors_from_callees():
    src = """
        function risky ~x (give 10 / ~x)
        function safe ~x (
            attempt (give risky ~x) rescue (give 0)
        )
        [safe 2, safe 0]
    """
    assert_ok(run_tilde(src), [5, 0])


def test_error_context_defaults_to_an_empty_object():
    src = 'attempt (error "x") rescue ~e (~ctx is ~e.context)\n~ctx'
    assert_ok(run_tilde(src), {})


def test_rescue_variable_is_scoped_to_the_rescue_block():
    src = 'attempt (error "x") rescue ~e (~seen is true)\n~e'
    assert_error(run_tilde(src), "Undefined variable: ~e")


# --- Uncaught errors ---

def test_uncaught_error_is_reported_with_location():
    src = "~x is 1\n~y is ~x / 0"
    res = run_tilde(src)
    assert_error(res, "Division by zero")
    assert res.error_token == {'line': 2, 'col': 10}
    assert res.format_error() == "Error on line 2, col 10: Division by zero"


def test_error_details_show_source_context():
    res = run_tilde("~x is 1\n~y is ~x / 0")
    assert "> 2 | ~y is ~x / 0" in res.details
    assert "| " + " " * 9 + "^" in res.details


def test_error_emits_stderr_side_effect():
    res = run_tilde('say "before"\n1 / 0\nsay "after"')
    topics = [e['topics'] for e in res.side_effects]
    assert topics == [['stdout'], ['stderr']]
    assert res.side_effects[0]['message'] == "before"
    assert res.side_effects[1]['message'].startswith("Error on line 2, col 3: Division by zero")


def test_error_inside_function_has_a_stack():
    src = """
        function inner ~x (~x / 0)
        function outer ~x (inner ~x)
        outer 5
    """
    res = run_tilde(src)
    assert_error(res, "Division by zero")
    assert res.error_token['line'] == 2
    assert "Tilde stack: (outer 5) @4:9 (inner 5) @3:28" in res.details


def test_parse_errors_are_reported():
    res = run_tilde("~x is (")
    assert_error(res, "ParseError: Expected ')' to close the block")
    assert res.error is None
    assert res.error_token == {'line': 1, 'col': 8}


def test_lex_errors_are_reported():
    res = run_tilde('~x is "abc')
    assert_error(res, "LexError: Unterminated string")
    assert res.format_error().startswith("Error on line 1, col 7:")


def test_non_ascii_names_are_lex_errors():
    res = run_tilde("~x is 1\nnaïve")
    assert_error(res, "LexError: Unexpected character")
    assert res.error_token == {'line': 2, 'col': 3}


def test_parse_error_runs_nothing():
    res = run_tilde('say "hi"\n~x is )')
    assert_error(res)
    assert [e['topics'] for e in res.side_effects] == [['stderr']]


def test_builtin_type_errors_name_the_function():
    assert_error(run_tilde('absolute "x"'), "absolute expects a number, got string")


def test_builtin_arity_error():
    assert_error(run_tilde("length"), "Function 'length' expects 1 arguments, but 0 were provided")


def test_unexpected_python_errors_become_builtin_errors():
    runner = ScriptRunner()

    def broken(x):
        raise KeyError(x)

    runner.registry.register("broken", broken)
    res = runner.handle_script('attempt (broken "k") rescue ~e (~info is [~e.code, ~e.source])\n~info')
    assert_ok(res, ["builtin-error", "broken"])


def test_format_error_without_location():
    res = ExecutionResult(status='error', error_message="plain")
    assert res.format_error() == "plain"
    assert ExecutionResult(status='success').format_error() == ""


@pytest.mark.parametrize("src", [
    "~a is [1, 2]\n~a.x is 1",
    "~n is 3\n~n.k is 1",
])
def test_bad_property_writes(src):
    res = run_tilde(src)
    assert_error(res)
    assert res.error.code == "type-error"
