import math

import pytest

from interpreter import (
    DotRuntimeError,
    ErrorValue,
    Interpreter,
    TYPE_ARRAY,
    TYPE_BOOLEAN,
    TYPE_FUNCTION,
    TYPE_HASH,
    TYPE_NULL,
    TYPE_NUMBER,
    TYPE_STRING,
    render,
)


def run(source):
    interpreter = Interpreter(source=source, output_sink=lambda text: None)
    program = interpreter.parse()
    assert interpreter.parse_errors == []
    return interpreter.run(program)


def show(source):
    return render(run(source))


@pytest.mark.parametrize("source, expected", [
    ("5", "5"),
    ("-5", "-5"),
    ("+5", "5"),
    ("2.5 * 2", "5"),
    ("7 / 2", "3.5"),
    ("1 + 2 * 3 - 4", "3"),
    ("(5 + 10 * 2 + 15 / 3) * 2 + -10", "50"),
    ("0.1 + 0.2", "0.30000000000000004"),
    ("1 / 0", "+Inf"),
    ("-1 / 0", "-Inf"),
    ("0 / 0", "NaN"),
    ("1000000000000000 * 10", "1e+16"),
    ("100000", "100000"),
    ("1000 * 1000", "1e+06"),
    ("1234567.5", "1.2345675e+06"),
    ("0.0001", "0.0001"),
    ("1 / 100000", "1e-05"),
    ("0 - 0.000015", "-1.5e-05"),
    ("-0", "-0"),
])
def test_number_arithmetic(source, expected):
    assert show(source) == expected


@pytest.mark.parametrize("source, expected", [
    ("1 < 2", "true"),
    ("1 > 2", "false"),
    ("2 <= 2", "true"),
    ("3 >= 4", "false"),
    ("1 == 1", "true"),
    ("1 != 1", "false"),
    ("1 != 2", "true"),
    ("true && false", "false"),
    ("true || false", "true"),
    ("!true", "false"),
    ("!!false", "false"),
    ('"abc" == "abc"', "true"),
    ('1 == "1"', "true"),
    ('"1e+06" == 1000000', "true"),
    ('"1000000" == 1000000', "false"),
    ("[1, 2] == [1, 2]", "true"),
    ("[1, 2] != [1, 2]", "true"),
    ("true != true", "true"),
])
def test_comparisons_and_logic(source, expected):
    assert show(source) == expected


def test_not_equal_is_identity():
    assert show("let a = [1]; let b = a; a != b") == "false"
    assert show('let s = "x"; s != s') == "false"


def test_comparison_results_are_shared():
    interpreter = Interpreter(source="1 < 2")
    assert interpreter.run() is interpreter.run()


def test_string_concatenation():
    assert show('"Hello" + " " + "World!"') == "Hello World!"


@pytest.mark.parametrize("source, message", [
    ("5 + true", "type mismatch: NUMBER + BOOLEAN"),
    ("5 + true; 5", "type mismatch: NUMBER + BOOLEAN"),
    ("-true", "invalid operation: -BOOLEAN"),
    ("!5", "invalid operation: !NUMBER"),
    ("true + false", "unknown operator: BOOLEAN + BOOLEAN"),
    ('"a" - "b"', "unknown operator: STRING - STRING"),
    ("1 && 2", "unknown operator: NUMBER && NUMBER"),
    ("true && 1", "invalid operation: BOOLEAN && NUMBER"),
    ("foobar", "identifier not found: foobar"),
    ("if (10 > 1) { if (10 > 1) { return true + false; } return 1; }", "unknown operator: BOOLEAN + BOOLEAN"),
    ('{"name": "Dot"}[fn(x) { x }]', "unusable as hash key: FUNCTION"),
    ("5[0]", "index operator not supported: NUMBER[NUMBER]"),
    ("let x = 1; x()", "not a function: NUMBER"),
])
def test_error_messages(source, message):
    result = run(source)
    assert isinstance(result, ErrorValue)
    assert result.message == message


def test_error_carries_position_and_renders():
    result = run("let a = 1;\nlet b = a + true;")
    assert (result.line, result.column) == (2, 11)
    assert render(result) == "ERROR: type mismatch: NUMBER + BOOLEAN (line 2, column 11)"


def test_error_stops_program():
    interpreter_output = []
    interpreter = Interpreter(source='print("a"); missing; print("b")', output_sink=interpreter_output.append)
    result = interpreter.run()
    assert isinstance(result, ErrorValue)
    assert interpreter_output == ["a"]


def test_let_yields_value_and_binds():
    assert show("let x = 5 * 5;") == "25"
    assert show("let a = 5; let b = a; let c = a + b + 5; c") == "15"


def test_let_does_not_bind_error():
    result = run("let x = nope; x")
    assert result.message == "identifier not found: nope"


@pytest.mark.parametrize("source, expected", [
    ("if (true) { 10 }", "10"),
    ("if (false) { 10 }", "NULL"),
    ("if (1 < 2) { 10 } else { 20 }", "10"),
    ("if (1 > 2) { 10 } else { 20 }", "20"),
    ("if (1 > 2) { 10 } else if (2 > 1) { 30 } else { 20 }", "30"),
    ('if ("true") { 1 } else { 2 }', "1"),
    ("if (1) { 1 } else { 2 }", "2"),
])
def test_if_truthiness_by_rendering(source, expected):
    assert show(source) == expected


def test_if_block_shares_scope():
    assert show("if (true) { let inner = 4; } inner") == "4"


@pytest.mark.parametrize("source, expected", [
    ("return 10; 9;", "10"),
    ("9; return 2 * 5; 9;", "10"),
    ("if (10 > 1) { if (10 > 1) { return 10; } return 1; }", "10"),
    ("let f = fn(x) { return x; x + 10; }; f(10);", "10"),
    ("let f = fn(x) { let result = x + 10; return result; return 10; }; f(10);", "20"),
    ("let f = fn() { return; }; f()", "NULL"),
])
def test_return(source, expected):
    assert show(source) == expected


def test_function_value_and_rendering():
    result = run("fn(x, y) { x + y; }")
    assert result.type == TYPE_FUNCTION
    assert render(result) == "fn"
    assert show("fn(a) { a } == fn() { 1 }") == "true"


@pytest.mark.parametrize("source, expected", [
    ("let identity = fn(x) { x; }; identity(5);", "5"),
    ("let double = fn(x) { x * 2; }; double(5);", "10"),
    ("let add = fn(x, y) { x + y; }; add(5, 5);", "10"),
    ("let add = fn(x, y) { x + y; }; add(5 + 5, add(5, 5));", "20"),
    ("fn(x) { x; }(5)", "5"),
    ("let f = fn(a) { a }; f(1, 2, 3)", "1"),
    ("let f = fn() { }; f()", "NULL"),
])
def test_function_calls(source, expected):
    assert show(source) == expected


def test_closures_capture_defining_scope():
    source = """
    let newAdder = fn(x) { fn(y) { x + y }; };
    let addTwo = newAdder(2);
    addTwo(3);
    """
    assert show(source) == "5"


def test_closure_outlives_declaring_block():
    source = """
    let make = fn() { let n = 41; let f = fn() { return n + 1; }; f };
    let g = make();
    g()
    """
    assert show(source) == "42"


def test_recursive_function():
    source = """
    let fib = fn(n) { if (n < 2) { return n; } return fib(n - 1) + fib(n - 2); };
    fib(15)
    """
    assert show(source) == "610"


def test_missing_argument_is_fatal():
    interpreter = Interpreter(source="let f = fn(a, b) { a }; f(1)")
    with pytest.raises(DotRuntimeError) as info:
        interpreter.run()
    assert "Missing argument for parameter 'b'" in info.value.message
    assert info.value.step_index is not None


def test_runaway_recursion_is_fatal():
    interpreter = Interpreter(source="let f = fn(n) { f(n + 1) }; f(0)")
    with pytest.raises(DotRuntimeError) as info:
        interpreter.run()
    assert info.value.message == "maximum recursion depth exceeded"


def test_assignment_rebinds_outer_scope():
    source = """
    let count = 0;
    let bump = fn() { count = count + 1; };
    bump(); bump();
    count
    """
    assert show(source) == "2"


def test_assignment_defines_when_absent():
    assert show("let f = fn() { fresh = 3; fresh }; f()") == "3"
    assert run("let f = fn() { fresh = 3; }; f(); fresh").message == "identifier not found: fresh"


def test_assignment_is_right_associative():
    assert show("let a = 0; let b = 0; a = b = 7; a + b") == "14"


def test_index_assignment_mutates_aliases():
    assert show("let a = [1, 2]; let b = a; a[0] = 9; b") == "[9, 2]"


def test_index_assignment_out_of_range():
    result = run("let a = [1, 2]; a[2] = 3")
    assert result.message == "index out of range"


def test_hash_index_assignment_upserts():
    assert show('let h = {"a": 1}; h["a"] = 2; h["b"] = 3; h') == "{a: 2, b: 3}"


def test_index_assignment_on_unsupported_value():
    assert run('let s = "abc"; s[0] = "x"').message == "index assignment not supported: STRING"


@pytest.mark.parametrize("source, expected", [
    ("let x = 1; x += 2; x", "3"),
    ("let x = 10; x -= 4; x", "6"),
    ("let x = 3; x *= 4; x", "12"),
    ("let x = 9; x /= 2; x", "4.5"),
    ('let s = "ab"; s += "cd"; s', "abcd"),
    ("let x = 1; x += 2", "3"),
])
def test_compound_assignment(source, expected):
    assert show(source) == expected


def test_compound_assignment_mutates_in_place():
    assert show("let a = 1; let b = a; a += 5; b") == "6"


@pytest.mark.parametrize("source, message", [
    ('let x = 1; x += "a"', "type mismatch: NUMBER += STRING"),
    ('let s = "a"; s -= "b"', "invalid operation: STRING -= STRING"),
    ("y += 1", "identifier not found: y"),
])
def test_compound_assignment_errors(source, message):
    assert run(source).message == message


def test_while_loop_reuses_scope():
    source = """
    let i = 0;
    let total = 0;
    while (i < 5) { total += i; i += 1; }
    total
    """
    assert show(source) == "10"


def test_loops_yield_empty_string():
    result = run("let i = 0; while (i < 2) { i += 1; }")
    assert result.type == TYPE_STRING
    assert result.value == ""
    assert run("for (let j = 0; j < 2; j += 1) { j }").value == ""


def test_for_loop_has_one_scope():
    source = """
    let total = 0;
    for (let i = 0; i < 4; i += 1) { let last = i; total += i; }
    total
    """
    assert show(source) == "6"
    assert run("for (let i = 0; i < 1; i += 1) { } i").message == "identifier not found: i"


def test_return_escapes_loops():
    source = """
    let find = fn(items, wanted) {
        for (let i = 0; i < len(items); i += 1) {
            if (items[i] == wanted) { return i; }
        }
        return -1;
    };
    find([5, 6, 7], 7)
    """
    assert show(source) == "2"


def test_error_escapes_while():
    assert run("while (true) { nope; }").message == "identifier not found: nope"


def test_array_literal_and_index():
    result = run("[1, 2 * 2, 3 + 3]")
    assert result.type == TYPE_ARRAY
    assert render(result) == "[1, 4, 6]"


@pytest.mark.parametrize("source, expected", [
    ("[1, 2, 3][0]", "1"),
    ("[1, 2, 3][2]", "3"),
    ("let i = 0; [1][i]", "1"),
    ("let arr = [1, 2, 3]; arr[0] + arr[1] + arr[2];", "6"),
    ("[1, 2, 3][3]", "NULL"),
    ("[1, 2, 3][-1]", "NULL"),
    ("[1, 2, 3][1.9]", "2"),
])
def test_array_indexing(source, expected):
    assert show(source) == expected


def test_array_can_contain_itself():
    assert show("let a = [1]; a[0] = a; a") == "[[...]]"


def test_hash_literal():
    source = """
    let two = "two";
    {"one": 10 - 9, two: 1 + 1, "thr" + "ee": 6 / 2, 4: 4, true: 5, false: 6}
    """
    result = run(source)
    assert result.type == TYPE_HASH
    assert render(result) == "{one: 1, two: 2, three: 3, 4: 4, true: 5, false: 6}"


def test_hash_literal_last_write_wins():
    assert show('{"a": 1, "a": 2}') == "{a: 2}"


@pytest.mark.parametrize("source, expected", [
    ('{"foo": 5}["foo"]', "5"),
    ('{"foo": 5}["bar"]', "NULL"),
    ('let key = "foo"; {"foo": 5}[key]', "5"),
    ('{}["foo"]', "NULL"),
    ("{5: 5}[5]", "5"),
    ("{true: 5}[true]", "5"),
    ("{0: 1}[-0]", "1"),
])
def test_hash_indexing(source, expected):
    assert show(source) == expected


def test_hash_literal_rejects_unhashable_key():
    assert run("{[1]: 2}").message == "unusable as hash key: ARRAY"


def test_builtins_win_over_bindings():
    assert show('let len = fn(x) { 99 }; len("abc")') == "3"


def test_value_types():
    assert run("true").type == TYPE_BOOLEAN
    assert run("1").type == TYPE_NUMBER
    assert run("if (false) { 1 }").type == TYPE_NULL


def test_empty_program_is_null():
    assert run("").type == TYPE_NULL


def test_nan_is_not_equal_to_itself():
    result = run("let n = 0 / 0; n == n")
    assert result.value is False
    assert math.isnan(run("0 / 0").value)


ARITHMETIC_TRIPLES = [
    (0.1, 0.2, 0.3),
    (1.5, -2.25, 1000000.0),
    (3.0, 7.0, 11.0),
    (0.7, 123.456, -0.001),
]


@pytest.mark.parametrize("a, b, c", ARITHMETIC_TRIPLES)
def test_addition_commutes(a, b, c):
    for x, y in ((a, b), (b, c), (a, c)):
        assert math.isclose(run(f"{x!r} + {y!r}").value, run(f"{y!r} + {x!r}").value)


@pytest.mark.parametrize("operator", ["+", "*"])
@pytest.mark.parametrize("a, b, c", ARITHMETIC_TRIPLES)
def test_addition_and_multiplication_associate(operator, a, b, c):
    left = run(f"({a!r} {operator} {b!r}) {operator} {c!r}").value
    right = run(f"{a!r} {operator} ({b!r} {operator} {c!r})").value
    assert math.isclose(left, right, rel_tol=1e-12, abs_tol=1e-12)
