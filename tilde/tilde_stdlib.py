"""
The Tilde standard library.

Builtins are methods named `_kebab_name` on library classes; each is
exposed as `kebab-name` (leading underscore dropped, `_` becomes `-`) in
the `core` table and in the topical block named by the class's `block`
attribute. A method that declares a keyword-only `context` parameter is
handed the calling Evaluator.

Helpers return new values and never mutate their inputs.
"""
import base64
import binascii
import hashlib
import hmac
import inspect
import math
import os
import random
import subprocess
import time
import urllib.parse
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from tilde.tilde_datatypes import (
    BuiltinFunction, ErrorValue, TildeCallable, TildeError, TildeTypeError, UnknownFunction,
    clone_value, format_number, is_number, is_truthy, to_string, type_name, values_equal,
)
from tilde import tilde_file, tilde_http
from tilde.tilde_serialize import parse_text, serialize


# ===================================================================
# Registry
# ===================================================================

class BuiltinRegistry:
    """Builtin tables: `core` holds everything, other blocks one topic each."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, BuiltinFunction]] = {"core": {}}

    def register(self, name: str, fn, block: str = "core") -> BuiltinFunction:
        builtin = BuiltinFunction(name, fn, block)
        self.tables["core"][name] = builtin
        if block != "core":
            self.tables.setdefault(block, {})[name] = builtin
        return builtin

    def register_library(self, library: 'Library'):
        for name, member in inspect.getmembers(library):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                self.register(name[1:].replace('_', '-'), member, library.block)

    def get(self, name: str) -> Optional[BuiltinFunction]:
        return self.tables["core"].get(name)

    def get_in_block(self, block: str, name: str) -> BuiltinFunction:
        table = self.tables.get(block)
        if table is None:
            raise UnknownFunction(f"Unknown block: {block}")
        builtin = table.get(name)
        if builtin is None:
            raise UnknownFunction(f"Unknown function in block '{block}': {name}")
        return builtin

    def names(self, block: str = "core") -> List[str]:
        return sorted(self.tables.get(block, {}))

    def blocks(self) -> List[str]:
        return sorted(self.tables)

    def __contains__(self, name: str) -> bool:
        return name in self.tables["core"]


# ===================================================================
# Argument checks
# ===================================================================

def _expect(fn: str, value, ok: bool, what: str):
    if not ok:
        raise TildeTypeError(f"{fn} expects {what}, got {type_name(value)}")
    return value


def _num(fn, value, what="a number"):
    return _expect(fn, value, is_number(value), what)


def _int(fn, value, what="a whole number") -> int:
    _expect(fn, value, is_number(value) and float(value).is_integer(), what)
    return int(value)


def _str(fn, value, what="a string") -> str:
    return _expect(fn, value, isinstance(value, str), what)


def _list(fn, value, what="a list") -> list:
    return _expect(fn, value, isinstance(value, list), what)


def _obj(fn, value, what="an object") -> dict:
    return _expect(fn, value, isinstance(value, dict), what)


def _dated(fn, value, what="a date") -> datetime:
    return _expect(fn, value, isinstance(value, datetime), what)


def _fn(fn, value, what="a function") -> TildeCallable:
    return _expect(fn, value, isinstance(value, TildeCallable), what)


def _index_of(items: list, value) -> Optional[int]:
    for i, item in enumerate(items):
        if values_equal(item, value):
            return i
    return None


def _sortable(fn: str, keys: list):
    """Sorting needs all-number or all-string keys."""
    if all(is_number(k) for k in keys) or all(isinstance(k, str) for k in keys):
        return
    if all(isinstance(k, datetime) for k in keys):
        return
    raise TildeTypeError(f"{fn} can only order numbers, strings or dates")


class Library:
    block = "core"


# ===================================================================
# io
# ===================================================================

class IOLib(Library):
    block = "io"
    CLEAR_SEQUENCE = "\x1b[2J\x1b[H"

    def _say(self, *parts, context):
        message = "".join(to_string(p) for p in parts)
        context.emit('stdout', message)
        return message

    def _ask(self, prompt="", *, context):
        try:
            answer = context.input_func(to_string(prompt))
        except EOFError:
            return None
        return answer.rstrip("\r\n")

    def _wait(self, seconds):
        seconds = _num("wait", seconds)
        if seconds < 0:
            raise TildeError("wait duration cannot be negative")
        time.sleep(seconds)

    def _clear(self, *, context):
        context.emit('stdout', IOLib.CLEAR_SEQUENCE)

    def _error(self, message, code=None):
        """Raises a user error; an error value is re-raised as is."""
        if isinstance(message, ErrorValue):
            raise TildeError(error=message)
        raise TildeError(to_string(message), code=to_string(code) if code is not None else "user-error")


# ===================================================================
# math
# ===================================================================

class MathLib(Library):
    block = "math"

    def _absolute(self, n): return abs(_num("absolute", n))

    def _square_root(self, n):
        if _num("square-root", n) < 0:
            raise TildeError("square-root of a negative number")
        return math.sqrt(n)

    def _round(self, n, digits=0):
        """Rounds half away from zero."""
        factor = 10 ** _int("round", digits)
        n = _num("round", n)
        return math.copysign(math.floor(abs(n) * factor + 0.5) / factor, n)

    def _floor(self, n): return math.floor(_num("floor", n))
    def _ceiling(self, n): return math.ceil(_num("ceiling", n))

    def _power(self, base, exponent):
        try:
            return math.pow(_num("power", base), _num("power", exponent))
        except (OverflowError, ValueError):
            raise TildeError(f"power {format_number(base)} {format_number(exponent)} is out of range")

    def _max(self, *numbers):
        if len(numbers) == 1 and isinstance(numbers[0], list):
            numbers = numbers[0]
        if not numbers:
            raise TildeError("max needs at least one number")
        return max(_num("max", n) for n in numbers)

    def _min(self, *numbers):
        if len(numbers) == 1 and isinstance(numbers[0], list):
            numbers = numbers[0]
        if not numbers:
            raise TildeError("min needs at least one number")
        return min(_num("min", n) for n in numbers)

    def _add(self, a, b): return _num("add", a) + _num("add", b)
    def _multiply(self, a, b): return _num("multiply", a) * _num("multiply", b)

    def _random(self, low=None, high=None):
        """No arguments: a float in [0, 1). Two whole numbers: an integer, inclusive."""
        if low is None and high is None:
            return random.random()
        if high is None:
            low, high = 0.0, low
        low, high = _num("random", low), _num("random", high)
        if low > high:
            raise TildeError("random minimum value cannot be greater than maximum value")
        if float(low).is_integer() and float(high).is_integer():
            return random.randint(int(low), int(high))
        return random.uniform(low, high)

    def _is_even(self, n): return _num("is-even", n) % 2 == 0
    def _is_odd(self, n): return abs(math.fmod(_num("is-odd", n), 2)) == 1
    def _is_positive(self, n): return _num("is-positive", n) > 0
    def _is_negative(self, n): return _num("is-negative", n) < 0
    def _is_zero(self, n): return _num("is-zero", n) == 0
    def _double(self, n): return _num("double", n) * 2
    def _triple(self, n): return _num("triple", n) * 3
    def _quadruple(self, n): return _num("quadruple", n) * 4
    def _half(self, n): return _num("half", n) / 2
    def _square(self, n): return _num("square", n) ** 2
    def _increment(self, n): return _num("increment", n) + 1
    def _decrement(self, n): return _num("decrement", n) - 1


# ===================================================================
# list
# ===================================================================

class ListLib(Library):
    block = "list"

    def _length(self, value):
        _expect("length", value, isinstance(value, (list, str, dict)), "a list, string or object")
        return len(value)

    def _append(self, items, value): return _list("append", items) + [value]

    # --- Higher-order ---

    def _map(self, items, fn, *, context):
        fn = _fn("map", fn)
        return [context.call_function(fn, [item]) for item in _list("map", items)]

    def _filter(self, items, fn, *, context):
        fn = _fn("filter", fn)
        return [item for item in _list("filter", items) if is_truthy(context.call_function(fn, [item]))]

    def _reduce(self, items, fn, initial, *, context):
        fn = _fn("reduce", fn)
        acc = initial
        for item in _list("reduce", items):
            acc = context.call_function(fn, [acc, item])
        return acc

    def _sort(self, items):
        items = _list("sort", items)
        _sortable("sort", items)
        return sorted(items)

    def _sort_by(self, items, fn, *, context):
        fn = _fn("sort-by", fn)
        keyed = [(context.call_function(fn, [item]), item) for item in _list("sort-by", items)]
        _sortable("sort-by", [k for k, _ in keyed])
        return [item for _, item in sorted(keyed, key=lambda pair: pair[0])]

    def _reverse(self, value):
        _expect("reverse", value, isinstance(value, (list, str)), "a list or string")
        return value[::-1]

    def _find(self, items, fn, *, context):
        fn = _fn("find", fn)
        for item in _list("find", items):
            if is_truthy(context.call_function(fn, [item])):
                return item
        return None

    def _find_index(self, items, fn, *, context):
        fn = _fn("find-index", fn)
        for i, item in enumerate(_list("find-index", items)):
            if is_truthy(context.call_function(fn, [item])):
                return i
        return None

    def _find_last(self, items, fn, *, context):
        fn = _fn("find-last", fn)
        for item in reversed(_list("find-last", items)):
            if is_truthy(context.call_function(fn, [item])):
                return item
        return None

    def _every(self, items, fn, *, context):
        fn = _fn("every", fn)
        return all(is_truthy(context.call_function(fn, [item])) for item in _list("every", items))

    def _some(self, items, fn, *, context):
        fn = _fn("some", fn)
        return any(is_truthy(context.call_function(fn, [item])) for item in _list("some", items))

    def _remove_if(self, items, fn, *, context):
        fn = _fn("remove-if", fn)
        return [item for item in _list("remove-if", items) if not is_truthy(context.call_function(fn, [item]))]

    def _count_if(self, items, fn, *, context):
        fn = _fn("count-if", fn)
        return sum(1 for item in _list("count-if", items) if is_truthy(context.call_function(fn, [item])))

    def _take_while(self, items, fn, *, context):
        fn = _fn("take-while", fn)
        out = []
        for item in _list("take-while", items):
            if not is_truthy(context.call_function(fn, [item])):
                break
            out.append(item)
        return out

    def _drop_while(self, items, fn, *, context):
        fn = _fn("drop-while", fn)
        items = _list("drop-while", items)
        for i, item in enumerate(items):
            if not is_truthy(context.call_function(fn, [item])):
                return items[i:]
        return []

    def _partition(self, items, fn, *, context):
        """[matching, rest]"""
        fn = _fn("partition", fn)
        matching, rest = [], []
        for item in _list("partition", items):
            (matching if is_truthy(context.call_function(fn, [item])) else rest).append(item)
        return [matching, rest]

    def _group_by(self, items, fn, *, context):
        fn = _fn("group-by", fn)
        groups: Dict[str, list] = {}
        for item in _list("group-by", items):
            key = to_string(context.call_function(fn, [item]))
            groups.setdefault(key, []).append(item)
        return groups

    # --- Positional edits ---

    def _remove(self, items, value):
        """Drops the first element equal to `value`."""
        items = list(_list("remove", items))
        i = _index_of(items, value)
        if i is not None:
            del items[i]
        return items

    def _remove_at(self, items, index):
        items = list(_list("remove-at", items))
        index = _int("remove-at", index)
        if not 0 <= index < len(items):
            raise TildeError(f"remove-at: index {index} out of bounds for list of length {len(items)}")
        del items[index]
        return items

    def _insert(self, items, index, value):
        items = list(_list("insert", items))
        index = _int("insert", index)
        if not 0 <= index <= len(items):
            raise TildeError(f"insert: index {index} out of bounds for list of length {len(items)}")
        items.insert(index, value)
        return items

    def _set_at(self, items, index, value):
        items = list(_list("set-at", items))
        index = _int("set-at", index)
        if not 0 <= index < len(items):
            raise TildeError(f"set-at: index {index} out of bounds for list of length {len(items)}")
        items[index] = value
        return items

    def _pop(self, items):
        """{value: last element, list: the rest}"""
        items = _list("pop", items)
        return {'value': items[-1] if items else None, 'list': items[:-1]}

    def _shift(self, items):
        """{value: first element, list: the rest}"""
        items = _list("shift", items)
        return {'value': items[0] if items else None, 'list': items[1:]}

    def _unshift(self, items, value): return [value] + _list("unshift", items)

    # --- Queries ---

    def _index_of(self, items, value): return _index_of(_list("index-of", items), value)

    def _contains(self, haystack, needle):
        if isinstance(haystack, str):
            return _str("contains", needle, "a string to look for") in haystack
        return _index_of(_list("contains", haystack, "a list or string"), needle) is not None

    def _slice(self, value, start, end=None):
        _expect("slice", value, isinstance(value, (list, str)), "a list or string")
        start = _int("slice", start, "a whole-number start")
        if start < 0:
            raise TildeError("slice: start index must be non-negative")
        if end is None:
            return value[start:]
        end = _int("slice", end, "a whole-number end")
        if end < start:
            raise TildeError("slice: end index must not be before start")
        return value[start:end]

    def _concat(self, *lists):
        out = []
        for items in lists:
            out.extend(_list("concat", items))
        return out

    def _take(self, items, n):
        n = _int("take", n)
        if n < 0:
            raise TildeError("take: count must be non-negative")
        return _list("take", items)[:n]

    def _drop(self, items, n):
        n = _int("drop", n)
        if n < 0:
            raise TildeError("drop: count must be non-negative")
        return _list("drop", items)[n:]

    # --- Shape ---

    def _flatten(self, items, depth=None):
        """Flattens nested lists, fully unless `depth` limits it."""
        limit = None
        if depth is not None:
            limit = _int("flatten", depth)
            if limit < 0:
                raise TildeError("flatten: depth must be non-negative")

        def walk(seq, level):
            out = []
            for item in seq:
                if isinstance(item, list) and (limit is None or level < limit):
                    out.extend(walk(item, level + 1))
                else:
                    out.append(item)
            return out
        return walk(_list("flatten", items), 0)

    def _unique(self, items):
        out = []
        for item in _list("unique", items):
            if _index_of(out, item) is None:
                out.append(item)
        return out

    def _zip(self, first, second):
        return [[a, b] for a, b in zip(_list("zip", first), _list("zip", second))]

    def _chunk(self, items, size):
        size = _int("chunk", size)
        if size <= 0:
            raise TildeError("chunk: size must be positive")
        items = _list("chunk", items)
        return [items[i:i + size] for i in range(0, len(items), size)]

    def _transpose(self, matrix):
        rows = [_list("transpose", row, "a list of lists") for row in _list("transpose", matrix)]
        if not rows:
            return []
        width = len(rows[0])
        if any(len(row) != width for row in rows):
            raise TildeError("transpose: all rows must have the same length")
        return [[row[c] for row in rows] for c in range(width)]

    # --- Sets (order of first appearance is kept) ---

    def _union(self, first, second):
        return self._unique(_list("union", first) + _list("union", second))

    def _difference(self, first, second):
        second = _list("difference", second)
        return [x for x in self._unique(_list("difference", first)) if _index_of(second, x) is None]

    def _intersection(self, first, second):
        second = _list("intersection", second)
        return [x for x in self._unique(_list("intersection", first)) if _index_of(second, x) is not None]

    def _range(self, start, end=None, step=1):
        """Numbers from `start` up to, not including, `end` (or 0..start)."""
        if end is None:
            start, end = 0, start
        start, end, step = _num("range", start), _num("range", end), _num("range", step)
        if step == 0:
            raise TildeError("range: step cannot be zero")
        out = []
        value = start
        while (step > 0 and value < end) or (step < 0 and value > end):
            out.append(value)
            value += step
        return out


# ===================================================================
# string
# ===================================================================

class StringLib(Library):
    block = "string"

    def _split(self, s, separator):
        s, separator = _str("split", s), _str("split", separator)
        if separator == "":
            return list(s)
        return s.split(separator)

    def _join(self, items, separator=""):
        return _str("join", separator).join(to_string(x) for x in _list("join", items))

    def _trim(self, s): return _str("trim", s).strip()
    def _uppercase(self, s): return _str("uppercase", s).upper()
    def _lowercase(self, s): return _str("lowercase", s).lower()

    def _replace(self, s, old, new):
        return _str("replace", s).replace(_str("replace", old), to_string(new))

    def _starts_with(self, s, prefix): return _str("starts-with", s).startswith(_str("starts-with", prefix))
    def _ends_with(self, s, suffix): return _str("ends-with", s).endswith(_str("ends-with", suffix))
    def _to_string(self, value): return to_string(value)

    def _to_number(self, value):
        if is_number(value):
            return value
        text = _str("to-number", value, "a string or number").strip()
        try:
            number = float(text)
        except ValueError:
            raise TildeTypeError(f"Cannot convert '{value}' to a number")
        if math.isnan(number) or math.isinf(number):
            raise TildeTypeError(f"Cannot convert '{value}' to a number")
        return number


# ===================================================================
# object
# ===================================================================

def _split_path(path) -> List[str]:
    if is_number(path):
        return [format_number(path)]
    return [part for part in _str("object path", path).split(".") if part != ""]


class ObjectLib(Library):
    block = "object"

    def _keys(self, obj): return list(_obj("keys", obj).keys())
    def _values(self, obj): return list(_obj("values", obj).values())

    def _has(self, obj, key):
        return (key if isinstance(key, str) else to_string(key)) in _obj("has", obj)

    _keys_of = _keys
    _values_of = _values
    _has_key = _has

    def _entries(self, obj): return [[k, v] for k, v in _obj("entries", obj).items()]

    def _merge(self, first, second):
        return {**_obj("merge", first), **_obj("merge", second)}

    def _deep_merge(self, first, second):
        def merge(a, b):
            out = dict(a)
            for k, v in b.items():
                if isinstance(out.get(k), dict) and isinstance(v, dict):
                    out[k] = merge(out[k], v)
                else:
                    out[k] = v
            return out
        return merge(_obj("deep-merge", first), _obj("deep-merge", second))

    def _pick(self, obj, keys):
        obj = _obj("pick", obj)
        wanted = [to_string(k) for k in _list("pick", keys, "a list of keys")]
        return {k: obj[k] for k in wanted if k in obj}

    def _omit(self, obj, keys):
        unwanted = {to_string(k) for k in _list("omit", keys, "a list of keys")}
        return {k: v for k, v in _obj("omit", obj).items() if k not in unwanted}

    def _object_get(self, obj, path):
        """Follows a dot-separated path; null when any step is missing."""
        current = obj
        for part in _split_path(path):
            if isinstance(current, dict):
                current = current.get(part)
            elif isinstance(current, list) and part.isascii() and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                return None
        return current

    def _object_set(self, obj, path, value):
        """A copy of `obj` with `value` stored at the dot-separated path."""
        parts = _split_path(path)
        if not parts:
            raise TildeError("object-set: path cannot be empty")
        root = clone_value(_obj("object-set", obj))
        current = root
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value
        return root


# ===================================================================
# type
# ===================================================================

class TypeLib(Library):
    block = "type"

    def _type_of(self, value): return type_name(value)
    def _is_number(self, value): return is_number(value)
    def _is_string(self, value): return isinstance(value, str)
    def _is_boolean(self, value): return isinstance(value, bool)
    def _is_list(self, value): return isinstance(value, list)
    def _is_object(self, value): return isinstance(value, dict)
    def _is_null(self, value): return value is None
    def _is_function(self, value): return isinstance(value, TildeCallable)
    def _is_error(self, value): return isinstance(value, ErrorValue)
    def _is_date(self, value): return isinstance(value, datetime)


# ===================================================================
# date
# ===================================================================

def _utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


class DateLib(Library):
    block = "date"

    def _now(self):
        now = datetime.now(timezone.utc)
        return now.replace(microsecond=(now.microsecond // 1000) * 1000)

    def _date(self, text):
        """Parses `YYYY-MM-DD` or an ISO 8601 timestamp (UTC unless an offset is given)."""
        if isinstance(text, datetime):
            return text
        text = _str("date", text)
        try:
            return _utc(datetime.fromisoformat(text.strip()))
        except ValueError:
            raise TildeError(f"Invalid date format '{text}'. Expected YYYY-MM-DD or ISO 8601 format")

    def _date_add(self, date, days):
        try:
            return _dated("date-add", date) + timedelta(days=_num("date-add", days))
        except OverflowError:
            raise TildeError("Date arithmetic overflow")

    def _date_subtract(self, date, days):
        try:
            return _dated("date-subtract", date) - timedelta(days=_num("date-subtract", days))
        except OverflowError:
            raise TildeError("Date arithmetic overflow")

    def _date_diff(self, first, second):
        """`second - first` in whole units, truncated toward zero."""
        delta = _dated("date-diff", second) - _dated("date-diff", first)
        ms = delta / timedelta(milliseconds=1)
        return {
            'days': math.trunc(ms / 86_400_000),
            'hours': math.trunc(ms / 3_600_000),
            'minutes': math.trunc(ms / 60_000),
            'seconds': math.trunc(ms / 1000),
            'milliseconds': math.trunc(ms),
        }

    def _date_format(self, date, fmt):
        return _dated("date-format", date).strftime(_str("date-format", fmt))

    def _date_parse(self, text, fmt):
        text, fmt = _str("date-parse", text), _str("date-parse", fmt)
        try:
            return _utc(datetime.strptime(text, fmt))
        except ValueError:
            raise TildeError(f"Failed to parse '{text}' using format '{fmt}'")

    def _date_year(self, date): return _dated("date-year", date).year
    def _date_month(self, date): return _dated("date-month", date).month
    def _date_day(self, date): return _dated("date-day", date).day
    def _date_hour(self, date): return _dated("date-hour", date).hour
    def _date_minute(self, date): return _dated("date-minute", date).minute
    def _date_second(self, date): return _dated("date-second", date).second

    def _date_weekday(self, date):
        """Sunday is 0."""
        return (_dated("date-weekday", date).weekday() + 1) % 7

    def _date_before(self, first, second): return _dated("date-before", first) < _dated("date-before", second)
    def _date_after(self, first, second): return _dated("date-after", first) > _dated("date-after", second)
    def _date_equal(self, first, second): return _dated("date-equal", first) == _dated("date-equal", second)


# ===================================================================
# json / encoding / crypto
# ===================================================================

class JsonLib(Library):
    block = "json"

    def _to_json(self, value, pretty=False):
        return serialize(value, fmt='json', pretty=is_truthy(pretty))

    def _from_json(self, text): return parse_text(_str("from-json", text), fmt='json')
    def _to_yaml(self, value): return serialize(value, fmt='yaml')
    def _from_yaml(self, text): return parse_text(_str("from-yaml", text), fmt='yaml')


class EncodingLib(Library):
    block = "encoding"

    def _base64_encode(self, text):
        return base64.b64encode(_str("base64-encode", text).encode('utf-8')).decode('ascii')

    def _base64_decode(self, text):
        try:
            raw = base64.b64decode(_str("base64-decode", text), validate=True)
            return raw.decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise TildeError(f"Invalid base64 input: {e}", code="decode-error")

    def _url_encode(self, text): return urllib.parse.quote(_str("url-encode", text), safe='')
    def _url_decode(self, text): return urllib.parse.unquote(_str("url-decode", text))


class CryptoLib(Library):
    block = "crypto"

    def _sha256(self, text): return hashlib.sha256(_str("sha256", text).encode('utf-8')).hexdigest()
    def _md5(self, text): return hashlib.md5(_str("md5", text).encode('utf-8')).hexdigest()

    def _hmac_sha256(self, key, message):
        key, message = _str("hmac-sha256", key), _str("hmac-sha256", message)
        return hmac.new(key.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).hexdigest()


# ===================================================================
# file / http / system
# ===================================================================

class FileLib(Library):
    block = "file"

    def _read(self, path, *, context):
        return tilde_file.file_read(_str("read", path), base_dir=context.source_dir)

    def _write(self, path, content, *, context):
        return tilde_file.file_write(_str("write", path), content, base_dir=context.source_dir)

    def _append_file(self, path, content, *, context):
        return tilde_file.file_append(_str("append-file", path), content, base_dir=context.source_dir)

    def _file_exists(self, path, *, context):
        return tilde_file.file_exists(_str("file-exists", path), base_dir=context.source_dir)

    def _dir_exists(self, path, *, context):
        return tilde_file.dir_exists(_str("dir-exists", path), base_dir=context.source_dir)

    def _file_size(self, path, *, context):
        return tilde_file.file_size(_str("file-size", path), base_dir=context.source_dir)

    def _list_files(self, path="", *, context):
        return tilde_file.list_files(_str("list-files", path), base_dir=context.source_dir)


def _with_body(fn: str, body, options) -> dict:
    cfg = dict(_obj(fn, options, "an options object")) if options is not None else {}
    if body is not None:
        cfg['body'] = body
    return cfg


def _send(context, method: str, url, options: dict):
    url = _str(method.lower(), url, "a URL string")
    client = tilde_http.shared_client(context.handles)
    context._dbg("HTTP", method, url)
    return tilde_http.http_request(method, url, options=options, client=client)


class HttpLib(Library):
    block = "http"

    def _get(self, url, options=None, *, context):
        return _send(context, "GET", url, _with_body("get", None, options))

    def _post(self, url, body=None, options=None, *, context):
        return _send(context, "POST", url, _with_body("post", body, options))

    def _put(self, url, body=None, options=None, *, context):
        return _send(context, "PUT", url, _with_body("put", body, options))

    def _patch(self, url, body=None, options=None, *, context):
        return _send(context, "PATCH", url, _with_body("patch", body, options))

    def _delete(self, url, options=None, *, context):
        return _send(context, "DELETE", url, _with_body("delete", None, options))

    def _http(self, method, url, options=None, *, context):
        return _send(context, _str("http", method, "a method name").upper(), url,
                     _with_body("http", None, options))


class SystemLib(Library):
    block = "system"

    def _run(self, command, *, context):
        """Runs a shell command; {output, exit-code} with stderr appended to output."""
        command = _str("run", command, "a command string")
        context._dbg("RUN", command)
        proc = subprocess.run(["sh", "-c", command], capture_output=True, text=True, cwd=context.source_dir)
        output = proc.stdout
        if proc.stderr:
            output = f"{output}\n{proc.stderr}" if output else proc.stderr
        return {'output': output, 'exit-code': proc.returncode}

    def _env(self, name): return os.environ.get(_str("env", name))


LIBRARIES = (
    IOLib, MathLib, ListLib, StringLib, ObjectLib, TypeLib, DateLib,
    JsonLib, EncodingLib, CryptoLib, FileLib, HttpLib, SystemLib,
)


def build_registry() -> BuiltinRegistry:
    registry = BuiltinRegistry()
    for library in LIBRARIES:
        registry.register_library(library())
    return registry
