from datetime import datetime, timezone

import pytest

from tilde.tilde_datatypes import (
    ArityError, BuiltinFunction, ErrorValue, Scope, TildeError, TildeFunction, TildeTypeError,
    UndefinedVariable, clone_value, format_number, from_python, is_truthy, to_string, type_name,
    values_equal,
)


# --- Scope ---

def test_scope_lookup_walks_parents():
    root = Scope()
    root.define("x", 1.0)
    child = root.child_scope("function")
    assert child.get("x") == 1.0
    assert "x" in child
    assert child.lookup("missing") is None


def test_scope_get_undefined_raises():
    with pytest.raises(UndefinedVariable, match="Undefined variable: ~nope"):
        Scope().get("nope")


def test_assign_updates_the_owning_frame():
    root = Scope()
    root.define("x", 1.0)
    inner = root.child_scope("function")
    inner.assign("x", 2.0)
    assert root.get("x") == 2.0
    assert "x" not in inner.keys()


def test_assign_new_name_lands_in_nearest_function_frame():
    root = Scope()
    call = root.child_scope("function")
    loop = call.child_scope("block")
    rescue = loop.child_scope("block")
    rescue.assign("y", 3.0)
    assert "y" in call.keys()
    assert "y" not in root
    assert rescue.declaring_scope() is call


def test_define_shadows_outer_binding():
    root = Scope()
    root.define("x", 1.0)
    loop = root.child_scope()
    loop.define("x", 5.0)
    assert loop.get("x") == 5.0
    assert root.get("x") == 1.0


def test_set_requires_existing_binding():
    with pytest.raises(UndefinedVariable):
        Scope().set("x", 1.0)


# --- Value model ---

@pytest.mark.parametrize("value, expected", [
    (None, False), (False, False), (True, True),
    (0.0, False), (-1.0, True),
    ("", False), ("0", True),
    ([], False), ([0.0], True),
    ({}, False), ({"a": None}, True),
    (ErrorValue("x"), False),
    (datetime(2024, 1, 1, tzinfo=timezone.utc), True),
])
def test_truthiness(value, expected):
    assert is_truthy(value) is expected


def test_structural_equality():
    assert values_equal([1.0, [2.0]], [1.0, [2.0]])
    assert values_equal({"a": 1.0, "b": 2.0}, {"b": 2.0, "a": 1.0})
    assert not values_equal([1.0], [1.0, 2.0])
    assert not values_equal(1.0, "1")
    assert not values_equal(1.0, True)
    assert not values_equal(0.0, False)
    assert values_equal(None, None)
    assert not values_equal(None, False)


def test_functions_compare_by_identity():
    f = TildeFunction([], [], Scope(), "f")
    g = TildeFunction([], [], Scope(), "f")
    assert values_equal(f, f)
    assert not values_equal(f, g)


@pytest.mark.parametrize("value, expected", [
    (None, "null"),
    (True, "true"),
    (3.0, "3"),
    (-3.0, "-3"),
    (2.5, "2.5"),
    ("text", "text"),
    ([1.0, "a", None], "[1, a, null]"),
    ({"a": 1.0, "b": [True]}, "{a: 1, b: [true]}"),
    (datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc), "2024-05-06T07:08:09Z"),
    (ErrorValue("broken"), "Error: broken"),
])
def test_to_string(value, expected):
    assert to_string(value) == expected


def test_format_number_specials():
    assert format_number(float("inf")) == "inf"
    assert format_number(float("-inf")) == "-inf"
    assert format_number(float("nan")) == "NaN"
    assert format_number(1e21) == "1000000000000000000000"


def test_clone_is_deep():
    original = {"list": [1.0, {"k": 2.0}]}
    copy = clone_value(original)
    copy["list"][1]["k"] = 99.0
    assert original["list"][1]["k"] == 2.0


def test_type_names():
    assert type_name(None) == "null"
    assert type_name(True) == "boolean"
    assert type_name(1.0) == "number"
    assert type_name("s") == "string"
    assert type_name([]) == "list"
    assert type_name({}) == "object"
    assert type_name(ErrorValue("x")) == "error"
    assert type_name(TildeFunction([], [], Scope())) == "function"


def test_from_python_normalizes():
    assert from_python(3) == 3.0 and isinstance(from_python(3), float)
    assert from_python((1, 2)) == [1.0, 2.0]
    assert from_python({1: True}) == {"1": True}
    naive = from_python(datetime(2024, 1, 1))
    assert naive.tzinfo is timezone.utc
    with pytest.raises(TildeTypeError):
        from_python(object())


# --- Errors and callables ---

def test_error_value_fields():
    err = TildeError("boom", code="c", source="s", context={"n": 1.0})
    assert err.message == "boom"
    assert err.error == ErrorValue("boom", "c", "s", {"n": 1.0})
    assert err.error.field_value("context") == {"n": 1.0}
    assert err.error.field_value("other") is None


def test_error_subclass_default_codes():
    assert UndefinedVariable("x").error.code == "undefined-variable"
    assert TildeTypeError("x").error.code == "type-error"
    assert TildeTypeError("x", code="parse-error").error.code == "parse-error"


def test_user_function_arity_message():
    fn = TildeFunction(["a", "b"], [], Scope(), "pair")
    with pytest.raises(ArityError, match="Function 'pair' expects 2 arguments, but 1 were provided"):
        fn.check_arity(1)


def test_builtin_arity_messages():
    def one_or_two(a, b=None):
        return a

    def variadic(first, *rest, context):
        return first

    ranged = BuiltinFunction("ranged", one_or_two)
    ranged.check_arity(1)
    ranged.check_arity(2)
    with pytest.raises(ArityError, match="expects 1 to 2 arguments, but 3 were provided"):
        ranged.check_arity(3)

    many = BuiltinFunction("many", variadic)
    assert many.wants_context
    many.check_arity(5)
    with pytest.raises(ArityError, match="expects at least 1 arguments, but 0 were provided"):
        many.check_arity(0)
