import pytest

from tilde import ScriptRunner


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


def stdout_of(res):
    return [e['message'] for e in res.side_effects if e['topics'] == ['stdout']]


# --- Arithmetic and operators ---

@pytest.mark.parametrize("src, expected", [
    ("1 + 2 * 3", 7),
    ("(1 + 2) * 3", 9),
    ("10 / 4", 2.5),
    ("7 \\ 2", 3),
    ("-7 \\ 2", -4),
    ("7 % 3", 1),
    ("-7 % 3", -1),
    ("10 - 4 - 3", 3),
    ("~x is 5\n-~x", -5),
    ('"ab" + "cd"', "abcd"),
    ("1 < 2", True),
    ('"apple" < "banana"', True),
    ("3 >= 3", True),
    ("[1, [2]] == [1, [2]]", True),
    ("{a: 1, b: 2} == {b: 2, a: 1}", True),
    ('1 == "1"', False),
    ("null != false", True),
])
def test_operators(src, expected):
    assert_ok(run_tilde(src), expected)


def test_numbers_are_floats():
    res = run_tilde("1 + 1")
    assert_ok(res, 2)
    assert isinstance(res.value, float)


@pytest.mark.parametrize("src, message", [
    ("1 / 0", "Division by zero"),
    ("1 \\ 0", "Division by zero"),
    ("1 % 0", "Modulo by zero"),
    ('"a" + 1', "Operator '+' needs numbers, got string and number"),
    ('1 < "a"', "Cannot compare number and string with '<'"),
    ('-"a"', "Cannot negate a string"),
])
def test_operator_errors(src, message):
    assert_error(run_tilde(src), message)


def test_division_by_zero_code():
    res = run_tilde("1 / 0")
    assert res.error.code == "division-by-zero"


@pytest.mark.parametrize("src, expected", [
    ('false and (error "boom")', False),
    ('true or (error "boom")', True),
    ('null or "default"', "default"),
    ('0 and "never"', 0),
    ('1 and "second"', "second"),
])
def test_and_or_short_circuit(src, expected):
    assert_ok(run_tilde(src), expected)


# --- Variables and values ---

def test_undefined_variable():
    res = run_tilde("~nope + 1")
    assert_error(res, "Undefined variable: ~nope")
    assert res.error.code == "undefined-variable"


def test_assignment_value_is_the_statement_value():
    assert_ok(run_tilde("~x is 41 + 1"), 42)


def test_interpolation():
    src = """
        ~name is "World"
        ~n is 2
        "Hello `~name`! `~n` + 1 = `~n + 1`, list `[1, true]`"
    """
    assert_ok(run_tilde(src), "Hello World! 2 + 1 = 3, list [1, true]")


def test_composites_are_copied_on_assignment():
    src = """
        ~a is [1, 2]
        ~b is ~a
        ~b.0 is 99
        [~a, ~b]
    """
    assert_ok(run_tilde(src), [[1, 2], [99, 2]])


def test_nested_copy_is_deep():
    src = """
        ~a is {inner: {v: 1}}
        ~b is ~a.inner
        ~b.v is 2
        ~a.inner.v
    """
    assert_ok(run_tilde(src), 1)


def test_property_read():
    src = """
        ~user is {name: "Ada", tags: ["x", "y"], "full name": "Ada L"}
        ~k is "name"
        [~user.name, ~user.tags.1, ~user."full name", ~user.~k, "abc".1]
    """
    assert_ok(run_tilde(src), ["Ada", "y", "Ada L", "Ada", "b"])


def test_missing_property_and_index_are_null():
    assert_ok(run_tilde("[{a: 1}.b, [1, 2].10]"), [None, None])


def test_property_of_a_number_is_an_error():
    res = run_tilde("~n is 5\n~n.x")
    assert_error(res, "Cannot read property 'x' of number")
    assert res.error.code == "type-error"


def test_index_assignment_pads_with_null():
    assert_ok(run_tilde("~l is [1]\n~l.3 is 4\n~l"), [1, None, None, 4])


def test_nested_property_assignment_creates_objects():
    assert_ok(run_tilde("~o is {}\n~o.a.b is 1\n~o"), {"a": {"b": 1}})


def test_nested_property_assignment_fills_null_keys():
    assert_ok(run_tilde("~o is {a: null}\n~o.a.b is 1\n~o"), {"a": {"b": 1}})


def test_nested_property_assignment_keeps_scalars():
    res = run_tilde("~o is {a: 5}\n~o.a.b is 1")
    assert_error(res, "Cannot set property 'b' on non-object value")
    assert res.error.code == "type-error"
    res = run_tilde("~o is {a: \"text\"}\n~o.a.n up 1")
    assert_error(res, "Cannot set property 'n' on non-object value")


def test_nested_assignment_through_lists():
    assert_ok(run_tilde("~o is {rows: [{n: 1}]}\n~o.rows.0.n is 2\n~o"), {"rows": [{"n": 2}]})
    assert_error(run_tilde("~o is {rows: [1]}\n~o.rows.0.n is 2"), "Cannot set property 'n' on non-object value")


def test_property_assignment_with_dynamic_key():
    src = """
        ~scores is {}
        for-each ~name in ["ann", "bob"] (~scores.~name is length ~name)
        ~scores
    """
    assert_ok(run_tilde(src), {"ann": 3, "bob": 3})


def test_up_and_down():
    src = """
        ~count is 10
        ~count up 5
        ~count down 2
        ~stats is {hits: 1}
        ~stats.hits up 1
        [~count, ~stats.hits]
    """
    assert_ok(run_tilde(src), [13, 2])


def test_up_needs_a_number():
    assert_error(run_tilde('~s is "a"\n~s up 1'), "Cannot up ~s: it holds a string")


# --- Control flow ---

def test_if_else():
    src = """
        ~x is 5
        if ~x > 3 (~size is "big") else (~size is "small")
        ~size
    """
    assert_ok(run_tilde(src), "big")


def test_if_else_chain():
    src = """
        function classify ~n (
            if ~n < 0 (give "negative")
            else if ~n == 0 (give "zero")
            else (give "positive")
        )
        [classify -1, classify 0, classify 5]
    """
    assert_ok(run_tilde(src), ["negative", "zero", "positive"])


def test_call_in_if_condition():
    src = """
        ~n is 4
        if is-even ~n (~kind is "even") else (~kind is "odd")
        ~kind
    """
    assert_ok(run_tilde(src), "even")


def test_loop_with_break():
    src = """
        ~i is 0
        loop (
            ~i up 1
            if ~i >= 3 (break-loop)
        )
        ~i
    """
    assert_ok(run_tilde(src), 3)


def test_break_only_leaves_the_innermost_loop():
    src = """
        ~hits is 0
        for-each ~row in [1, 2, 3] (
            loop (
                ~hits up 1
                break-loop
            )
        )
        ~hits
    """
    assert_ok(run_tilde(src), 3)


def test_break_outside_loop_is_an_error():
    assert_error(run_tilde("break-loop"), "break-loop used outside of a loop")


def test_for_each_list_with_index():
    src = """
        ~out is []
        for-each ~item ~i in ["a", "b"] (~out is append ~out "`~i`:`~item`")
        ~out
    """
    assert_ok(run_tilde(src), ["0:a", "1:b"])


def test_for_each_string():
    src = """
        ~chars is []
        for-each ~c in "hey" (~chars is append ~chars ~c)
        ~chars
    """
    assert_ok(run_tilde(src), ["h", "e", "y"])


def test_for_each_object_values_and_pairs():
    src = """
        ~total is 0
        ~names is []
        for-each ~k ~v in {a: 1, b: 2} (
            ~total up ~v
            ~names is append ~names ~k
        )
        ~sum is 0
        for-each ~v in {x: 10, y: 20} (~sum up ~v)
        [~total, ~names, ~sum]
    """
    assert_ok(run_tilde(src), [3, ["a", "b"], 30])


def test_for_each_over_a_number_is_an_error():
    assert_error(run_tilde("for-each ~x in 5 (say ~x)"), "Cannot iterate over a number")


def test_loop_variable_is_scoped_to_the_loop():
    src = """
        for-each ~x in [1, 2] (~last is ~x)
        ~last
    """
    assert_ok(run_tilde(src), 2)
    assert_error(run_tilde("for-each ~x in [1, 2] (~y is ~x)\n~x"), "Undefined variable: ~x")


def test_for_each_iterates_a_snapshot():
    src = """
        ~items is [1, 2, 3]
        ~seen is 0
        for-each ~x in ~items (
            ~items is append ~items ~x
            ~seen up 1
        )
        [~seen, length ~items]
    """
    assert_ok(run_tilde(src), [3, 6])


def test_call_in_for_each_source():
    src = """
        ~sum is 0
        for-each ~n in range 4 (~sum up ~n)
        ~sum
    """
    assert_ok(run_tilde(src), 6)


def test_top_level_give_ends_the_program():
    res = run_tilde('give 5\nsay "unreachable"')
    assert_ok(res, 5)
    assert stdout_of(res) == []


# --- Functions ---

def test_function_definition_and_call():
    src = """
        function add-two ~a ~b (give ~a + ~b)
        add-two 1 2
    """
    assert_ok(run_tilde(src), 3)


def test_function_without_give_returns_last_value():
    assert_ok(run_tilde("function twice ~x (~x * 2)\ntwice 4"), 8)


def test_bare_give_returns_null():
    assert_ok(run_tilde("function nothing (give)\nnothing"), None)


def test_user_function_arity():
    res = run_tilde("function add-two ~a ~b (give ~a + ~b)\nadd-two 1")
    assert_error(res, "Function 'add-two' expects 2 arguments, but 1 were provided")
    assert res.error.code == "arity"


def test_recursion():
    src = """
        function fact ~n (
            if ~n <= 1 (give 1)
            give ~n * (fact (~n - 1))
        )
        fact 5
    """
    assert_ok(run_tilde(src), 120)


def test_give_inside_loop_returns_from_function():
    src = """
        function first-even ~items (
            for-each ~x in ~items (
                if is-even ~x (give ~x)
            )
            give null
        )
        [first-even [1, 3, 4, 5], first-even [1]]
    """
    assert_ok(run_tilde(src), [4, None])


def test_give_inside_expression_block():
    src = """
        function pick ~flag (
            ~x is (if ~flag (give "early") else ("late"))
            give "after `~x`"
        )
        [pick true, pick false]
    """
    assert_ok(run_tilde(src), ["early", "after late"])


def test_functions_do_not_leak_locals():
    src = """
        function setter (~local is 1)
        setter
        ~local
    """
    assert_error(run_tilde(src), "Undefined variable: ~local")


def test_functions_update_outer_variables():
    src = """
        ~total is 0
        function bump (~total up 1)
        bump
        bump
        ~total
    """
    assert_ok(run_tilde(src), 2)


def test_counter_closure():
    src = """
        function make-counter (
            ~count is 0
            function next-count (
                ~count up 1
                give ~count
            )
            give ~next-count
        )
        ~c1 is make-counter
        ~c2 is make-counter
        c1
        c1
        [c1, c2]
    """
    assert_ok(run_tilde(src), [3, 1])


def test_anonymous_functions():
    src = """
        ~double-it is |~x (~x * 2)|
        ~add is |~a ~b (~a + ~b)|
        [double-it 4, add 1 2, map [1, 2] ~double-it]
    """
    assert_ok(run_tilde(src), [8, 3, [2, 4]])


def test_anonymous_function_captures_scope():
    src = """
        ~factor is 3
        map [1, 2, 3] |~x (~x * ~factor)|
    """
    assert_ok(run_tilde(src), [3, 6, 9])


def test_user_function_as_argument():
    src = """
        function triple-it ~x (~x * 3)
        map [1, 2] triple-it
    """
    assert_ok(run_tilde(src), [3, 6])


def test_star_call_in_argument_position():
    res = run_tilde('~xs is [1, 2, 3]\nsay "count: " *length ~xs')
    assert_ok(res)
    assert stdout_of(res) == ["count: 3"]


# --- Function chains ---

def test_function_chain():
    src = """
        ~result:
            range 5
            map double
            filter |~x (~x > 2)|
        ~result
    """
    assert_ok(run_tilde(src), [4, 6, 8])


def test_chain_passes_value_as_first_argument():
    src = """
        ~text:
            join ["b", "a"] ","
            split ","
            sort
            join "+"
        ~text
    """
    assert_ok(run_tilde(src), "a+b")


def test_chain_error_reports_the_failing_step():
    src = "~r:\n    range 3\n    join 5"
    res = run_tilde(src)
    assert_error(res, "join expects a string, got number")
    assert res.error_token == {'line': 3, 'col': 5}


# --- Output ---

def test_say_concatenates_arguments():
    res = run_tilde('~sum is 10\nsay "Sum: " ~sum')
    assert_ok(res, "Sum: 10")
    assert stdout_of(res) == ["Sum: 10"]


def test_say_uses_canonical_strings():
    res = run_tilde('say "a" 1 true null [1, 2] {k: "v"}')
    assert_ok(res)
    assert res.side_effects == [{'topics': ['stdout'], 'message': 'a1truenull[1, 2]{k: v}'}]


def test_say_returns_the_message():
    assert_ok(run_tilde('~m is say "hi " 2\n~m'), "hi 2")


def test_runner_state_persists_between_scripts():
    runner = ScriptRunner()
    assert_ok(runner.handle_script("~x is 5\nfunction add-x ~n (~n + ~x)"))
    assert_ok(runner.handle_script("add-x 1"), 6)
    runner.reset()
    assert_error(runner.handle_script("~x"), "Undefined variable: ~x")


def test_side_effects_are_per_run():
    runner = ScriptRunner()
    first = runner.handle_script('say "one"')
    second = runner.handle_script('say "two"')
    assert stdout_of(first) == ["one"]
    assert stdout_of(second) == ["two"]
