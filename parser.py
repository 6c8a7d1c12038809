from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from lexer import Token


def literal_text(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Node:
    location: SourceLocation


@dataclass
class Program(Node):
    statements: List["Statement"]

    def __str__(self) -> str:
        return "\n".join(str(statement) for statement in self.statements)


class Statement(Node):
    pass


class Expression(Node):
    pass


@dataclass
class Block(Statement):
    statements: List[Statement]

    def __str__(self) -> str:
        if not self.statements:
            return "{ }"
        return "{ " + " ".join(str(statement) for statement in self.statements) + " }"


@dataclass
class Identifier(Expression):
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass
class LetStatement(Statement):
    name: Identifier
    value: Expression

    def __str__(self) -> str:
        return f"let {self.name} = {self.value};"


@dataclass
class ReturnStatement(Statement):
    value: Optional[Expression]

    def __str__(self) -> str:
        if self.value is None:
            return "return;"
        return f"return {self.value};"


@dataclass
class ExpressionStatement(Statement):
    expression: Expression

    def __str__(self) -> str:
        return str(self.expression)


@dataclass
class WhileStatement(Statement):
    condition: Expression
    body: Block

    def __str__(self) -> str:
        return f"while ({self.condition}) {self.body}"


@dataclass
class ForStatement(Statement):
    init: Statement
    condition: Expression
    increment: Statement
    body: Block

    def __str__(self) -> str:
        init = str(self.init).rstrip(";")
        increment = str(self.increment).rstrip(";")
        return f"for ({init}; {self.condition}; {increment}) {self.body}"


@dataclass
class IntegerLiteral(Expression):
    # Named after the source syntax; always holds a double.
    value: float

    def __str__(self) -> str:
        return literal_text(self.value)


@dataclass
class BooleanLiteral(Expression):
    value: bool

    def __str__(self) -> str:
        return "true" if self.value else "false"


@dataclass
class StringLiteral(Expression):
    value: str

    def __str__(self) -> str:
        return f'"{self.value}"'


@dataclass
class PrefixExpression(Expression):
    operator: str
    right: Expression

    def __str__(self) -> str:
        return f"({self.operator}{self.right})"


@dataclass
class InfixExpression(Expression):
    left: Expression
    operator: str
    right: Expression

    def __str__(self) -> str:
        return f"({self.left} {self.operator} {self.right})"


@dataclass
class IfExpression(Expression):
    condition: Expression
    consequence: Block
    alternative: Optional[Block] = None

    def __str__(self) -> str:
        text = f"if {self.condition} {self.consequence}"
        if self.alternative is not None:
            text += f" else {self.alternative}"
        return text


@dataclass
class FunctionLiteral(Expression):
    parameters: List[Identifier]
    body: Block

    def __str__(self) -> str:
        params = ", ".join(str(p) for p in self.parameters)
        return f"fn({params}) {self.body}"


@dataclass
class CallExpression(Expression):
    function: Expression
    arguments: List[Expression]

    def __str__(self) -> str:
        args = ", ".join(str(a) for a in self.arguments)
        return f"{self.function}({args})"


@dataclass
class ArrayLiteral(Expression):
    elements: List[Expression]

    def __str__(self) -> str:
        return "[" + ", ".join(str(e) for e in self.elements) + "]"


@dataclass
class IndexExpression(Expression):
    left: Expression
    index: Expression

    def __str__(self) -> str:
        return f"({self.left}[{self.index}])"


@dataclass
class HashLiteral(Expression):
    pairs: List[Tuple[Expression, Expression]]

    def __str__(self) -> str:
        return "{" + ", ".join(f"{k}: {v}" for k, v in self.pairs) + "}"


# Binding powers, lowest to highest. Assignment sits above INDEX on purpose:
# it binds to whatever operand immediately precedes it.
LOWEST = 1
LOGICAL = 2
EQUALITY = 3
RELATIONAL = 4
ADDITIVE = 5
MULTIPLICATIVE = 6
PREFIX = 7
CALL = 8
INDEX = 9
ASSIGNMENT = 10

PRECEDENCES: Dict[str, int] = {
    "AND": LOGICAL,
    "OR": LOGICAL,
    "EQ": EQUALITY,
    "NOT_EQ": EQUALITY,
    "LT": RELATIONAL,
    "GT": RELATIONAL,
    "LTE": RELATIONAL,
    "GTE": RELATIONAL,
    "PLUS": ADDITIVE,
    "MINUS": ADDITIVE,
    "ASTERISK": MULTIPLICATIVE,
    "SLASH": MULTIPLICATIVE,
    "LPAREN": CALL,
    "LBRACKET": INDEX,
    "ASSIGN": ASSIGNMENT,
    "PLUS_ASSIGN": ASSIGNMENT,
    "MINUS_ASSIGN": ASSIGNMENT,
    "ASTERISK_ASSIGN": ASSIGNMENT,
    "SLASH_ASSIGN": ASSIGNMENT,
}

COMPOUND_ASSIGNMENTS = {"PLUS_ASSIGN", "MINUS_ASSIGN", "ASTERISK_ASSIGN", "SLASH_ASSIGN"}

PrefixParser = Callable[[], Optional[Expression]]
InfixParser = Callable[[Expression], Optional[Expression]]


class Parser:
    """Pratt parser over a token stream.

    Every ``_parse_*`` routine is entered with ``self.current`` on the first
    token of its construct and returns with ``self.current`` on the first
    token after it. Syntax errors are collected in ``self.errors``; a routine
    that fails returns ``None`` and the statement loop resynchronises.
    """

    def __init__(
        self,
        tokens: Iterable[Token],
        filename: str = "<string>",
        source_lines: Optional[List[str]] = None,
    ):
        self._tokens = iter(tokens)
        self.filename = filename
        self.source_lines = source_lines or []
        self.errors: List[str] = []
        self._last = Token("EOF", "", 1, 1)
        self.current: Token = self._pull()
        self.peek: Token = self._pull()

        self.prefix_parsers: Dict[str, PrefixParser] = {
            "IDENT": self._parse_identifier,
            "NUMBER": self._parse_number,
            "STRING": self._parse_string,
            "TRUE": self._parse_boolean,
            "FALSE": self._parse_boolean,
            "BANG": self._parse_prefix_expression,
            "MINUS": self._parse_prefix_expression,
            "PLUS": self._parse_prefix_expression,
            "LPAREN": self._parse_grouped_expression,
            "IF": self._parse_if_expression,
            "FN": self._parse_function_literal,
            "LBRACKET": self._parse_array_literal,
            "LBRACE": self._parse_hash_literal,
        }
        self.infix_parsers: Dict[str, InfixParser] = {
            "LPAREN": self._parse_call_expression,
            "LBRACKET": self._parse_index_expression,
        }
        for kind in ("PLUS", "MINUS", "ASTERISK", "SLASH", "EQ", "NOT_EQ", "LT", "GT", "LTE", "GTE", "AND", "OR"):
            self.infix_parsers[kind] = self._parse_infix_expression
        for kind in ("ASSIGN", *COMPOUND_ASSIGNMENTS):
            self.infix_parsers[kind] = self._parse_assignment

    def parse(self) -> Program:
        first = self.current
        statements: List[Statement] = self._parse_statements(stop_tokens={"EOF"})
        return Program(location=self._location_from_token(first), statements=statements)

    # Statements

    def _parse_statements(self, stop_tokens: Set[str]) -> List[Statement]:
        statements: List[Statement] = []
        while self.current.type not in stop_tokens and self.current.type != "EOF":
            if self._match("SEMICOLON"):
                continue
            start = self.current
            statement = self._parse_statement()
            if statement is None:
                self._synchronize(start)
                continue
            statements.append(statement)
        return statements

    def _parse_statement(self) -> Optional[Statement]:
        statement = self._parse_clause()
        if statement is not None:
            self._match("SEMICOLON")
        return statement

    def _parse_clause(self) -> Optional[Statement]:
        kind = self.current.type
        if kind == "LET":
            return self._parse_let_statement()
        if kind == "RETURN":
            return self._parse_return_statement()
        if kind == "WHILE":
            return self._parse_while_statement()
        if kind == "FOR":
            return self._parse_for_statement()
        return self._parse_expression_statement()

    def _parse_let_statement(self) -> Optional[LetStatement]:
        keyword = self._consume("LET")
        ident = self._expect("IDENT")
        if ident is None or self._expect("ASSIGN") is None:
            return None
        value = self._parse_expression(LOWEST)
        if value is None:
            return None
        name = Identifier(location=self._location_from_token(ident), name=ident.value)
        return LetStatement(location=self._location_from_token(keyword), name=name, value=value)

    def _parse_return_statement(self) -> Optional[ReturnStatement]:
        keyword = self._consume("RETURN")
        location = self._location_from_token(keyword)
        if self.current.type in ("SEMICOLON", "RBRACE", "EOF"):
            return ReturnStatement(location=location, value=None)
        value = self._parse_expression(LOWEST)
        if value is None:
            return None
        return ReturnStatement(location=location, value=value)

    def _parse_while_statement(self) -> Optional[WhileStatement]:
        keyword = self._consume("WHILE")
        condition = self._parse_parenthesized_expression()
        if condition is None:
            return None
        body = self._parse_block()
        if body is None:
            return None
        return WhileStatement(location=self._location_from_token(keyword), condition=condition, body=body)

    def _parse_for_statement(self) -> Optional[ForStatement]:
        keyword = self._consume("FOR")
        if self._expect("LPAREN") is None:
            return None
        init = self._parse_clause()
        if init is None or self._expect("SEMICOLON") is None:
            return None
        condition = self._parse_expression(LOWEST)
        if condition is None or self._expect("SEMICOLON") is None:
            return None
        increment = self._parse_clause()
        if increment is None or self._expect("RPAREN") is None:
            return None
        body = self._parse_block()
        if body is None:
            return None
        return ForStatement(
            location=self._location_from_token(keyword),
            init=init,
            condition=condition,
            increment=increment,
            body=body,
        )

    def _parse_expression_statement(self) -> Optional[ExpressionStatement]:
        expr = self._parse_expression(LOWEST)
        if expr is None:
            return None
        return ExpressionStatement(location=expr.location, expression=expr)

    def _parse_block(self) -> Optional[Block]:
        start = self._expect("LBRACE")
        if start is None:
            return None
        statements: List[Statement] = self._parse_statements(stop_tokens={"RBRACE"})
        # A block left open at end of input is closed implicitly.
        self._match("RBRACE")
        return Block(location=self._location_from_token(start), statements=statements)

    # Expressions

    def _parse_expression(self, precedence: int) -> Optional[Expression]:
        prefix = self.prefix_parsers.get(self.current.type)
        if prefix is None:
            self._error(f"no prefix parser for '{self.current.type}'", self.current)
            return None
        left = prefix()
        while left is not None and precedence < self._current_precedence():
            infix = self.infix_parsers[self.current.type]
            left = infix(left)
        return left

    def _parse_identifier(self) -> Expression:
        token = self._consume("IDENT")
        return Identifier(location=self._location_from_token(token), name=token.value)

    def _parse_number(self) -> Optional[Expression]:
        token = self._consume("NUMBER")
        try:
            value = float(token.value)
        except ValueError:
            self._error(f"could not parse '{token.value}' as number", token)
            return None
        return IntegerLiteral(location=self._location_from_token(token), value=value)

    def _parse_string(self) -> Expression:
        token = self._consume("STRING")
        return StringLiteral(location=self._location_from_token(token), value=token.value)

    def _parse_boolean(self) -> Expression:
        token = self.current
        self._next_token()
        return BooleanLiteral(location=self._location_from_token(token), value=token.type == "TRUE")

    def _parse_prefix_expression(self) -> Optional[Expression]:
        operator = self.current
        self._next_token()
        right = self._parse_expression(PREFIX)
        if right is None:
            return None
        return PrefixExpression(location=self._location_from_token(operator), operator=operator.value, right=right)

    def _parse_infix_expression(self, left: Expression) -> Optional[Expression]:
        operator = self.current
        precedence = self._current_precedence()
        self._next_token()
        right = self._parse_expression(precedence)
        if right is None:
            return None
        return InfixExpression(location=self._location_from_token(operator), left=left, operator=operator.value, right=right)

    def _parse_assignment(self, left: Expression) -> Optional[Expression]:
        operator = self.current
        allowed: Tuple[type, ...] = (Identifier,) if operator.type in COMPOUND_ASSIGNMENTS else (Identifier, IndexExpression)
        if not isinstance(left, allowed):
            self._error(f"invalid assignment target '{left}' for '{operator.value}'", operator)
            return None
        self._next_token()
        # The right-hand side extends as far as possible: a = b = c is a = (b = c).
        right = self._parse_expression(LOWEST)
        if right is None:
            return None
        return InfixExpression(location=self._location_from_token(operator), left=left, operator=operator.value, right=right)

    def _parse_grouped_expression(self) -> Optional[Expression]:
        return self._parse_parenthesized_expression()

    def _parse_parenthesized_expression(self) -> Optional[Expression]:
        if self._expect("LPAREN") is None:
            return None
        expr = self._parse_expression(LOWEST)
        if expr is None or self._expect("RPAREN") is None:
            return None
        return expr

    def _parse_if_expression(self) -> Optional[Expression]:
        keyword = self._consume("IF")
        condition = self._parse_parenthesized_expression()
        if condition is None:
            return None
        consequence = self._parse_block()
        if consequence is None:
            return None
        alternative: Optional[Block] = None
        if self._match("ELSE"):
            if self.current.type == "IF":
                # else-if chains nest as a one-statement block.
                nested = self._parse_if_expression()
                if nested is None:
                    return None
                alternative = Block(
                    location=nested.location,
                    statements=[ExpressionStatement(location=nested.location, expression=nested)],
                )
            else:
                alternative = self._parse_block()
                if alternative is None:
                    return None
        return IfExpression(
            location=self._location_from_token(keyword),
            condition=condition,
            consequence=consequence,
            alternative=alternative,
        )

    def _parse_function_literal(self) -> Optional[Expression]:
        keyword = self._consume("FN")
        if self._expect("LPAREN") is None:
            return None
        params: List[Identifier] = []
        if not self._match("RPAREN"):
            while True:
                name_tok = self._expect("IDENT")
                if name_tok is None:
                    return None
                params.append(Identifier(location=self._location_from_token(name_tok), name=name_tok.value))
                if not self._match("COMMA"):
                    break
            if self._expect("RPAREN") is None:
                return None
        body = self._parse_block()
        if body is None:
            return None
        return FunctionLiteral(location=self._location_from_token(keyword), parameters=params, body=body)

    def _parse_call_expression(self, function: Expression) -> Optional[Expression]:
        lparen = self._consume("LPAREN")
        args = self._parse_expression_list("RPAREN")
        if args is None:
            return None
        return CallExpression(location=self._location_from_token(lparen), function=function, arguments=args)

    def _parse_array_literal(self) -> Optional[Expression]:
        lbracket = self._consume("LBRACKET")
        elements = self._parse_expression_list("RBRACKET")
        if elements is None:
            return None
        return ArrayLiteral(location=self._location_from_token(lbracket), elements=elements)

    def _parse_index_expression(self, left: Expression) -> Optional[Expression]:
        lbracket = self._consume("LBRACKET")
        index = self._parse_expression(LOWEST)
        if index is None or self._expect("RBRACKET") is None:
            return None
        return IndexExpression(location=self._location_from_token(lbracket), left=left, index=index)

    def _parse_hash_literal(self) -> Optional[Expression]:
        lbrace = self._consume("LBRACE")
        pairs: List[Tuple[Expression, Expression]] = []
        while self.current.type != "RBRACE":
            key = self._parse_expression(LOWEST)
            if key is None or self._expect("COLON") is None:
                return None
            value = self._parse_expression(LOWEST)
            if value is None:
                return None
            pairs.append((key, value))
            if self.current.type != "RBRACE" and self._expect("COMMA") is None:
                return None
        self._consume("RBRACE")
        return HashLiteral(location=self._location_from_token(lbrace), pairs=pairs)

    def _parse_expression_list(self, end: str) -> Optional[List[Expression]]:
        items: List[Expression] = []
        if self._match(end):
            return items
        while True:
            expr = self._parse_expression(LOWEST)
            if expr is None:
                return None
            items.append(expr)
            if not self._match("COMMA"):
                break
        if self._expect(end) is None:
            return None
        return items

    # Token cursor

    def _pull(self) -> Token:
        for token in self._tokens:
            self._last = token
            if token.type != "COMMENT":
                return token
        last = self._last
        if last.type == "EOF":
            return last
        return Token("EOF", "", last.line, last.column + len(last.value))

    def _next_token(self) -> None:
        self.current = self.peek
        self.peek = self._pull()

    def _consume(self, token_type: str) -> Token:
        # Only called where the dispatch already guarantees the token kind.
        token = self.current
        assert token.type == token_type, (token.type, token_type)
        self._next_token()
        return token

    def _expect(self, token_type: str) -> Optional[Token]:
        token = self.current
        if token.type != token_type:
            self._error(f"expected {token_type}, got {token.type}", token)
            return None
        self._next_token()
        return token

    def _match(self, token_type: str) -> bool:
        if self.current.type == token_type:
            self._next_token()
            return True
        return False

    def _current_precedence(self) -> int:
        return PRECEDENCES.get(self.current.type, LOWEST)

    def _synchronize(self, start: Token) -> None:
        if self.current is start:
            self._next_token()
        while self.current.type not in ("SEMICOLON", "RBRACE", "EOF"):
            self._next_token()
        self._match("SEMICOLON")

    def _error(self, message: str, token: Token) -> None:
        self.errors.append(f"{message} at line {token.line}, column {token.column}")

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)
