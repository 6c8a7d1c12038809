from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List


class DotError(Exception):
    """Base class for interpreter errors."""


class DotParseError(DotError):
    """Raised when a caller asks for strict parsing and the source has syntax errors."""

    def __init__(self, errors: List[str]) -> None:
        super().__init__("\n".join(errors))
        self.errors = list(errors)


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    line: int
    column: int


KEYWORDS = {
    "fn": "FN",
    "let": "LET",
    "true": "TRUE",
    "false": "FALSE",
    "if": "IF",
    "else": "ELSE",
    "return": "RETURN",
    "while": "WHILE",
    "for": "FOR",
}

SYMBOLS = {
    "(": "LPAREN",
    ")": "RPAREN",
    "{": "LBRACE",
    "}": "RBRACE",
    "[": "LBRACKET",
    "]": "RBRACKET",
    ",": "COMMA",
    ";": "SEMICOLON",
    ":": "COLON",
    "+": "PLUS",
    "-": "MINUS",
    "*": "ASTERISK",
    "/": "SLASH",
    "<": "LT",
    ">": "GT",
    "=": "ASSIGN",
    "!": "BANG",
}

# Two-character operators take priority over their one-character prefixes.
DOUBLE_SYMBOLS = {
    "==": "EQ",
    "!=": "NOT_EQ",
    "<=": "LTE",
    ">=": "GTE",
    "+=": "PLUS_ASSIGN",
    "-=": "MINUS_ASSIGN",
    "*=": "ASTERISK_ASSIGN",
    "/=": "SLASH_ASSIGN",
    "&&": "AND",
    "||": "OR",
}


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next_token()
            yield token
            if token.type == "EOF":
                return

    def tokenize(self) -> List[Token]:
        return list(self)

    def next_token(self) -> Token:
        text = self.text
        n = len(text)
        _advance = self._advance

        while self.index < n and text[self.index] in " \t\r\n":
            _advance()
        if self.index >= n:
            return Token("EOF", "", self.line, self.column)

        ch: str = text[self.index]
        line, col = self.line, self.column
        pair = text[self.index:self.index + 2]
        if pair == "//":
            return self._consume_comment()
        if pair in DOUBLE_SYMBOLS:
            _advance()
            _advance()
            return Token(DOUBLE_SYMBOLS[pair], pair, line, col)
        if ch in SYMBOLS:
            _advance()
            return Token(SYMBOLS[ch], ch, line, col)
        if ch in ('"', "'"):
            return self._consume_string()
        if ch.isdigit():
            return self._consume_number()
        if self._is_identifier_start(ch):
            return self._consume_identifier()
        _advance()
        return Token("UNKNOWN", ch, line, col)

    def _consume_comment(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()
        return Token("COMMENT", text[start:self.index], line, col)

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        whole = self._consume_digits()
        # A '.' only belongs to the literal when a digit follows it.
        if not self._eof and self._peek() == "." and self._peek_next().isdigit():
            self._advance()
            frac = self._consume_digits()
            return Token("NUMBER", f"{whole}.{frac}", line, col)
        return Token("NUMBER", whole, line, col)

    def _consume_digits(self) -> str:
        start = self.index
        text = self.text
        n = len(text)
        while self.index < n and text[self.index].isdigit():
            self._advance()
        return text[start:self.index]

    def _consume_string(self) -> Token:
        line, col = self.line, self.column
        opening = self._peek()
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == opening:
                self._advance()
                return Token("STRING", "".join(chars), line, col)
            chars.append(ch)
            self._advance()
        # Unterminated strings run to the end of input.
        return Token("STRING", "".join(chars), line, col)

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        text = self.text
        n = len(text)
        while self.index < n and self._is_identifier_part(text[self.index]):
            self._advance()
        value = text[start:self.index]
        return Token(KEYWORDS.get(value, "IDENT"), value, line, col)

    def _is_identifier_start(self, ch: str) -> bool:
        return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")

    def _is_identifier_part(self, ch: str) -> bool:
        return self._is_identifier_start(ch) or ch.isdigit()

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _peek_next(self) -> str:
        if self.index + 1 >= len(self.text):
            return ""
        return self.text[self.index + 1]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
