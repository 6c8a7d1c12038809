import builtins
import json
import sys

import pytest

import dotlang


def feed(monkeypatch, lines):
    pending = iter(lines)

    def fake_input(prompt=""):
        try:
            return next(pending)
        except StopIteration:
            raise EOFError
    monkeypatch.setattr(builtins, "input", fake_input)


@pytest.fixture
def script(tmp_path):
    def write(text):
        path = tmp_path / "program.dot"
        path.write_text(text, encoding="utf-8")
        return str(path)
    return write


def test_file_mode_prints_final_value(script, capsys):
    code = dotlang.run_cli([script('print("hi");\nlet x = 40;\nx + 2')])
    out = capsys.readouterr().out
    assert code == 0
    assert out.splitlines() == ["hi", "42"]


def test_source_mode(capsys):
    assert dotlang.run_cli(["-source", "1 + 2"]) == 0
    assert capsys.readouterr().out == "3\n"


def test_error_value_sets_exit_status(capsys):
    assert dotlang.run_cli(["-source", "1 + true"]) == 1
    assert capsys.readouterr().out == "ERROR: type mismatch: NUMBER + BOOLEAN (line 1, column 3)\n"


def test_parse_errors_reported_and_evaluation_continues(capsys):
    code = dotlang.run_cli(["-source", "let = 1; 5"])
    captured = capsys.readouterr()
    assert code == 0
    assert captured.err == "ParseError: expected IDENT, got ASSIGN at line 1, column 5\n"
    assert captured.out == "5\n"


def test_check_mode(capsys):
    assert dotlang.run_cli(["-check", "-source", "let x = 1;"]) == 0
    assert dotlang.run_cli(["-check", "-source", "let x 1; let = 2;"]) == 1
    err = capsys.readouterr().err.splitlines()
    assert err == [
        "ParseError: expected ASSIGN, got NUMBER at line 1, column 7",
        "ParseError: expected IDENT, got ASSIGN at line 1, column 14",
    ]


def test_missing_file(tmp_path, capsys):
    assert dotlang.run_cli([str(tmp_path / "absent.dot")]) == 1
    assert "Failed to read" in capsys.readouterr().err


def test_fatal_error_prints_traceback(script, capsys):
    path = script("let f = fn(a, b) {\n  a\n};\nf(1)")
    assert dotlang.run_cli([path, "--traceback-json"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Traceback (most recent call last):")
    assert "in <top-level>" in err
    assert "DotRuntimeError: Missing argument for parameter 'b' of f" in err
    payload = json.loads(err[err.index("{"):])
    assert payload["error"]["type"] == "DotRuntimeError"
    assert payload["traceback"][0]["name"] == "<top-level>"


def test_recursion_limit_flag(monkeypatch, capsys):
    limits = []
    monkeypatch.setattr(sys, "setrecursionlimit", limits.append)
    assert dotlang.run_cli(["-recursion-limit", "5000", "-source", "1"]) == 0
    assert limits == [5000]
    assert dotlang.run_cli(["-recursion-limit", "10", "-source", "1"]) == 1
    assert limits == [5000]


def test_source_flag_without_program(capsys):
    assert dotlang.run_cli(["-source"]) == 1
    assert "-source requires a program string" in capsys.readouterr().err


def test_repl_session(monkeypatch, capsys):
    feed(monkeypatch, [
        "let a = 2;",
        "a * 21",
        "",
        "nope",
        "if (false) { 1 }",
        "let = 3",
        "let f = fn(x) { x }; f()",
        "a",
        ".exit",
        "a + 1",
    ])
    assert dotlang.run_cli(["repl"]) == 0
    captured = capsys.readouterr()
    assert captured.out.splitlines()[1:] == [
        "2",
        "42",
        "ERROR: identifier not found: nope (line 1, column 1)",
        "2",
    ]
    assert "ParseError: expected IDENT, got ASSIGN at line 1, column 5" in captured.err
    assert "Missing argument for parameter 'x'" in captured.err


def test_repl_ends_on_eof(monkeypatch, capsys):
    feed(monkeypatch, [])
    assert dotlang.run_cli([]) == 0
    assert "REPL" in capsys.readouterr().out


def test_verbose_traceback_includes_env_snapshot(capsys):
    assert dotlang.run_cli(["-verbose", "-source", "let f = fn(a, b) { a }; f(1)"]) == 1
    assert "Env snapshot: f=FUNCTION:fn" in capsys.readouterr().err


def test_traceback_shows_call_arguments_and_pending_call(capsys):
    source = 'let h = fn(a, b) { a };\nlet g = fn(x, label) { h(x) };\ng(5, "run")'
    assert dotlang.run_cli(["-source", source, "--traceback-json"]) == 1
    err = capsys.readouterr().err
    text, _, payload = err.partition("\n{")
    assert 'line 2, column 25, in g(5, "run")' in text
    assert "last step: CALL h(NUMBER)" in text
    assert text.splitlines()[-1].endswith("at line 2, column 25 (rule: CALL)")
    data = json.loads("{" + payload)
    assert data["error"]["location"]["line"] == 2
    frames = data["traceback"]
    assert [frame["name"] for frame in frames] == ["<top-level>", "g"]
    assert frames[1]["arguments"] == [{"type": "NUMBER", "value": "5"}, {"type": "STRING", "value": "run"}]
    assert frames[1]["last_step"]["function"] == "h"
    assert frames[1]["last_step"]["args"] == ["NUMBER"]
