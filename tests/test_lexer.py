import pytest

from lexer import Lexer


def kinds(text):
    return [t.type for t in Lexer(text).tokenize()]


def test_let_statement_tokens():
    tokens = Lexer("let five = 5;").tokenize()
    assert [(t.type, t.value) for t in tokens] == [
        ("LET", "let"),
        ("IDENT", "five"),
        ("ASSIGN", "="),
        ("NUMBER", "5"),
        ("SEMICOLON", ";"),
        ("EOF", ""),
    ]


@pytest.mark.parametrize("text, expected", [
    ("==", "EQ"),
    ("!=", "NOT_EQ"),
    ("<=", "LTE"),
    (">=", "GTE"),
    ("+=", "PLUS_ASSIGN"),
    ("-=", "MINUS_ASSIGN"),
    ("*=", "ASTERISK_ASSIGN"),
    ("/=", "SLASH_ASSIGN"),
    ("&&", "AND"),
    ("||", "OR"),
    ("!", "BANG"),
    ("<", "LT"),
    (":", "COLON"),
])
def test_operators(text, expected):
    assert kinds(text) == [expected, "EOF"]


def test_keywords_and_identifiers():
    assert kinds("fn let true false if else return while for _x9") == [
        "FN", "LET", "TRUE", "FALSE", "IF", "ELSE", "RETURN", "WHILE", "FOR", "IDENT", "EOF",
    ]


def test_numbers_with_fraction():
    tokens = Lexer("3.25 7. 10").tokenize()
    assert [(t.type, t.value) for t in tokens[:4]] == [
        ("NUMBER", "3.25"),
        ("NUMBER", "7"),
        ("UNKNOWN", "."),
        ("NUMBER", "10"),
    ]


def test_strings_both_quotes_and_unterminated():
    tokens = Lexer("\"a b\" 'c' \"open").tokenize()
    assert [(t.type, t.value) for t in tokens] == [
        ("STRING", "a b"),
        ("STRING", "c"),
        ("STRING", "open"),
        ("EOF", ""),
    ]


def test_comment_token_runs_to_end_of_line():
    tokens = Lexer("x // note\ny").tokenize()
    assert [(t.type, t.value) for t in tokens] == [
        ("IDENT", "x"),
        ("COMMENT", "// note"),
        ("IDENT", "y"),
        ("EOF", ""),
    ]


def test_positions_are_one_based():
    tokens = Lexer("let a\n  = 1").tokenize()
    assert [(t.line, t.column) for t in tokens] == [(1, 1), (1, 5), (2, 3), (2, 5), (2, 6)]


def test_unknown_character():
    assert kinds("a @ b") == ["IDENT", "UNKNOWN", "IDENT", "EOF"]


def test_iteration_is_pull_based():
    lexer = Lexer("a b")
    assert lexer.next_token().value == "a"
    assert [t.type for t in lexer] == ["IDENT", "EOF"]
