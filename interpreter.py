from __future__ import annotations
import hashlib
import json
import math
import os
import re
import struct
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from lexer import DotError, DotParseError, Lexer
from parser import (
    ArrayLiteral,
    Block,
    BooleanLiteral,
    CallExpression,
    Expression,
    ExpressionStatement,
    ForStatement,
    FunctionLiteral,
    HashLiteral,
    Identifier,
    IfExpression,
    IndexExpression,
    InfixExpression,
    IntegerLiteral,
    LetStatement,
    Node,
    Parser,
    PrefixExpression,
    Program,
    ReturnStatement,
    SourceLocation,
    Statement,
    StringLiteral,
    WhileStatement,
)


TYPE_NUMBER = "NUMBER"
TYPE_BOOLEAN = "BOOLEAN"
TYPE_STRING = "STRING"
TYPE_NULL = "NULL"
TYPE_ARRAY = "ARRAY"
TYPE_HASH = "HASH"
TYPE_FUNCTION = "FUNCTION"
TYPE_BUILTIN = "BUILTIN"

INTEGER_TEXT = re.compile(r"[+-]?[0-9]+")
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

@dataclass
class Value:
    type: str
    value: Any


@dataclass
class ReturnSignal:
    """Carries a returned value up to the nearest call boundary."""

    value: Value


@dataclass
class ErrorValue:
    """An evaluation error; halts the current chain and is never bound to a name."""

    message: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"ERROR: {self.message} (line {self.line}, column {self.column})"


Result = Union[Value, ReturnSignal, ErrorValue]

NULL = Value(TYPE_NULL, None)
TRUE = Value(TYPE_BOOLEAN, True)
FALSE = Value(TYPE_BOOLEAN, False)


class DotRuntimeError(DotError):
    """Raised for host-level faults that are not language values."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


@dataclass(frozen=True)
class HashKey:
    type: str
    value: int


@dataclass
class HashPair:
    key: Value
    value: Value


def hash_key(value: Value) -> Optional[HashKey]:
    if value.type == TYPE_NUMBER:
        # Adding 0.0 folds -0.0 onto 0.0 so both address the same slot.
        bits = struct.unpack("<Q", struct.pack("<d", value.value + 0.0))[0]
        return HashKey(TYPE_NUMBER, bits)
    if value.type == TYPE_BOOLEAN:
        return HashKey(TYPE_BOOLEAN, 1 if value.value else 0)
    if value.type == TYPE_STRING:
        digest = hashlib.blake2b(value.value.encode("utf-8", "surrogatepass"), digest_size=8).digest()
        return HashKey(TYPE_STRING, int.from_bytes(digest, "little"))
    return None


def format_number(value: float) -> str:
    """Shortest round-trip digits, laid out in exponent form when the
    decimal exponent is below -4 or at least 6 (1e+06, 1.5e-05, 250000).
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    sign = "-" if math.copysign(1.0, value) < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    point = len(digits) + exponent
    exp = point - 1
    if exp < -4 or exp >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        return f"{sign}{mantissa}e{'-' if exp < 0 else '+'}{abs(exp):02d}"
    if point <= 0:
        return f"{sign}0.{'0' * -point}{digits}"
    if point >= len(digits):
        return sign + digits + "0" * (point - len(digits))
    return f"{sign}{digits[:point]}.{digits[point:]}"


def render(obj: Result, _seen: Optional[set] = None) -> str:
    """Canonical rendering, shared by display, ``==`` and truthiness."""
    if isinstance(obj, ErrorValue):
        return str(obj)
    if isinstance(obj, ReturnSignal):
        return render(obj.value, _seen)
    vtype = obj.type
    if vtype == TYPE_NUMBER:
        return format_number(obj.value)
    if vtype == TYPE_STRING:
        return obj.value
    if vtype == TYPE_BOOLEAN:
        return "true" if obj.value else "false"
    if vtype == TYPE_NULL:
        return "NULL"
    if vtype == TYPE_FUNCTION:
        return "fn"
    if vtype == TYPE_BUILTIN:
        return "builtin function"
    # Containers can reach themselves through mutation.
    seen = set() if _seen is None else _seen
    if id(obj) in seen:
        return "[...]" if vtype == TYPE_ARRAY else "{...}"
    seen.add(id(obj))
    try:
        if vtype == TYPE_ARRAY:
            return "[" + ", ".join(render(e, seen) for e in obj.value) + "]"
        pairs = (f"{render(p.key, seen)}: {render(p.value, seen)}" for p in obj.value.values())
        return "{" + ", ".join(pairs) + "}"
    finally:
        seen.discard(id(obj))


def is_sentinel(obj: Any) -> bool:
    return isinstance(obj, (ReturnSignal, ErrorValue))


@dataclass(eq=False)
class Environment:
    parent: Optional["Environment"] = None
    values: Dict[str, Value] = field(default_factory=dict)

    def _find_env(self, name: str) -> Optional["Environment"]:
        env: Optional[Environment] = self
        while env is not None:
            if name in env.values:
                return env
            env = env.parent
        return None

    def get(self, name: str) -> Optional[Value]:
        env = self._find_env(name)
        if env is not None:
            return env.values[name]
        return None

    def set(self, name: str, value: Value) -> Value:
        self.values[name] = value
        return value

    def assign(self, name: str, value: Value) -> Value:
        """Rebind ``name`` where it is already bound, else define it here."""
        env = self._find_env(name) or self
        env.values[name] = value
        return value

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = render(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}


@dataclass(eq=False)
class Function:
    parameters: List[Identifier]
    body: Block
    closure: Environment


@dataclass
class Frame:
    name: str
    env: Environment
    frame_id: str
    call_location: Optional[SourceLocation]
    arguments: List[Value] = field(default_factory=list)


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, Any]]
    detail: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool, history: int = 10000) -> None:
        self.verbose = verbose
        # Only the most recent steps are kept; long loops would otherwise grow without bound.
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.last_state_id = "seed"
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        location: Optional[SourceLocation],
        statement: Optional[str],
        detail: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        record = {} if detail is None else detail
        if "from_state_id" not in record:
            record["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        record["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            frame_id=frame.frame_id if frame else None,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            detail=record,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    def forget(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)


BuiltinImpl = Callable[["Interpreter", List[Value], SourceLocation], Result]


@dataclass
class BuiltinFunction:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: BuiltinImpl

    def validate(self, supplied: int) -> Optional[str]:
        if supplied >= self.min_args and (self.max_args is None or supplied <= self.max_args):
            return None
        if self.max_args is None:
            want = f"{self.min_args}+"
        elif self.min_args == self.max_args:
            want = str(self.min_args)
        else:
            want = f"{self.min_args}..{self.max_args}"
        return f"wrong number of arguments. got={supplied}, want={want}"


def _error_at(message: str, location: SourceLocation) -> ErrorValue:
    return ErrorValue(message, location.line, location.column)


class Builtins:
    def __init__(self) -> None:
        self.table: Dict[str, BuiltinFunction] = {}
        self._values: Dict[str, Value] = {}
        self._register("len", 1, 1, self._len)
        self._register("first", 1, 1, self._first)
        self._register("last", 1, 1, self._last)
        self._register("rest", 1, 1, self._rest)
        self._register("push", 2, 2, self._push)
        self._register("print", 0, None, self._print)
        self._register("ask", 0, None, self._ask)
        self._register("int", 1, 1, self._int)

    def _register(self, name: str, min_args: int, max_args: Optional[int], impl: BuiltinImpl) -> None:
        builtin = BuiltinFunction(name=name, min_args=min_args, max_args=max_args, impl=impl)
        self.table[name] = builtin
        self._values[name] = Value(TYPE_BUILTIN, builtin)

    def register(
        self,
        *,
        name: str,
        min_args: int,
        max_args: Optional[int],
        impl: BuiltinImpl,
    ) -> None:
        if name in self.table:
            raise DotError(f"Cannot override existing built-in '{name}'")
        self._register(name, min_args, max_args, impl)

    def resolve(self, name: str) -> Optional[Value]:
        return self._values.get(name)

    def invoke(
        self,
        interpreter: "Interpreter",
        builtin: BuiltinFunction,
        args: List[Value],
        location: SourceLocation,
    ) -> Result:
        problem = builtin.validate(len(args))
        if problem is not None:
            return _error_at(problem, location)
        return builtin.impl(interpreter, args, location)

    # Helpers
    def _expect(self, value: Value, expected: str, name: str, location: SourceLocation) -> Optional[ErrorValue]:
        if value.type != expected:
            return _error_at(f"argument to '{name}' must be {expected}, got {value.type}", location)
        return None

    def _len(self, _: "Interpreter", args: List[Value], location: SourceLocation) -> Result:
        arg = args[0]
        if arg.type in (TYPE_STRING, TYPE_ARRAY):
            return Value(TYPE_NUMBER, float(len(arg.value)))
        return _error_at(f"argument to 'len' must be STRING or ARRAY, got {arg.type}", location)

    def _first(self, _: "Interpreter", args: List[Value], location: SourceLocation) -> Result:
        error = self._expect(args[0], TYPE_ARRAY, "first", location)
        if error is not None:
            return error
        elements = args[0].value
        return elements[0] if elements else NULL

    def _last(self, _: "Interpreter", args: List[Value], location: SourceLocation) -> Result:
        error = self._expect(args[0], TYPE_ARRAY, "last", location)
        if error is not None:
            return error
        elements = args[0].value
        return elements[-1] if elements else NULL

    def _rest(self, _: "Interpreter", args: List[Value], location: SourceLocation) -> Result:
        error = self._expect(args[0], TYPE_ARRAY, "rest", location)
        if error is not None:
            return error
        elements = args[0].value
        if not elements:
            return NULL
        return Value(TYPE_ARRAY, list(elements[1:]))

    def _push(self, _: "Interpreter", args: List[Value], location: SourceLocation) -> Result:
        error = self._expect(args[0], TYPE_ARRAY, "push", location)
        if error is not None:
            return error
        # Appending never touches the original array.
        return Value(TYPE_ARRAY, list(args[0].value) + [args[1]])

    def _print(self, interpreter: "Interpreter", args: List[Value], __: SourceLocation) -> Result:
        for arg in args:
            interpreter.output_sink(render(arg))
        return Value(TYPE_STRING, "")

    def _ask(self, interpreter: "Interpreter", args: List[Value], __: SourceLocation) -> Result:
        prompt = "".join(render(arg) for arg in args)
        try:
            text = interpreter.input_provider(prompt)
        except EOFError:
            text = ""
        return Value(TYPE_STRING, text.rstrip("\r\n"))

    def _int(self, _: "Interpreter", args: List[Value], location: SourceLocation) -> Result:
        error = self._expect(args[0], TYPE_STRING, "int", location)
        if error is not None:
            return error
        text = args[0].value
        # Plain ASCII digits within the signed 64-bit range; no underscores or padding.
        if INTEGER_TEXT.fullmatch(text):
            number = int(text)
            if INT64_MIN <= number <= INT64_MAX:
                return Value(TYPE_NUMBER, float(number))
        return _error_at(f"failed to convert string to integer: '{text}'", location)


def _divide(left: float, right: float) -> float:
    # IEEE semantics: x/0 is +-Inf and 0/0 is NaN.
    try:
        return left / right
    except ZeroDivisionError:
        if left == 0.0 or math.isnan(left):
            return math.nan
        return math.copysign(math.inf, left) * math.copysign(1.0, right)


class Interpreter:
    def __init__(
        self,
        *,
        source: str = "",
        filename: str = "<string>",
        verbose: bool = False,
        input_provider: Optional[Callable[[str], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        history: int = 10000,
    ) -> None:
        self.source = source
        self._source_lines = source.splitlines()
        self.filename = filename if filename.startswith("<") else os.path.abspath(filename)
        self.verbose = verbose
        self.input_provider = input_provider or input
        self.output_sink = output_sink or print
        self.builtins = Builtins()
        self.logger = StateLogger(verbose=verbose, history=history)
        self.logger.record(frame=None, location=None, statement="<seed>", detail={"rule": "SEED"})
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        self.parse_errors: List[str] = []

    def parse(self, *, strict: bool = False) -> Program:
        lexer = Lexer(self.source, self.filename)
        parser = Parser(lexer, self.filename, self._source_lines)
        program = parser.parse()
        self.parse_errors = parser.errors
        if strict and parser.errors:
            raise DotParseError(parser.errors)
        return program

    def run(self, program: Optional[Program] = None) -> Result:
        if program is None:
            program = self.parse()
        global_env = Environment()
        global_frame = self._new_frame("<top-level>", global_env, None)
        self.call_stack.append(global_frame)
        result = self.execute(program, global_env)
        self.call_stack.pop()
        return result

    def execute(self, program: Program, env: Environment) -> Result:
        """Evaluate ``program`` in ``env``, converting host faults into DotRuntimeError."""
        try:
            return self.evaluate(program, env)
        except DotRuntimeError as error:
            if self.logger.entries:
                error.step_index = self.logger.entries[-1].step_index
            raise
        except RecursionError:
            raise self._wrap_fault("maximum recursion depth exceeded", rule="CALL")
        except Exception as exc:
            # Unexpected Python-level exceptions surface as interpreter faults
            # so callers can format them with the language traceback.
            raise self._wrap_fault(f"Internal interpreter error: {exc}", rule="internal")

    def _wrap_fault(self, message: str, *, rule: str) -> DotRuntimeError:
        loc = None
        if self.logger.entries:
            loc = self.logger.entries[-1].source_location
        wrapped = DotRuntimeError(message, location=loc, rule=rule)
        if self.logger.entries:
            wrapped.step_index = self.logger.entries[-1].step_index
        return wrapped

    def evaluate(self, node: Node, env: Environment) -> Result:
        if isinstance(node, ExpressionStatement):
            return self.evaluate(node.expression, env)
        if isinstance(node, Identifier):
            return self._eval_identifier(node, env)
        if isinstance(node, IntegerLiteral):
            return Value(TYPE_NUMBER, node.value)
        if isinstance(node, StringLiteral):
            return Value(TYPE_STRING, node.value)
        if isinstance(node, BooleanLiteral):
            # Literals allocate; only operator results share TRUE/FALSE.
            return Value(TYPE_BOOLEAN, node.value)
        if isinstance(node, InfixExpression):
            return self._eval_infix(node, env)
        if isinstance(node, PrefixExpression):
            return self._eval_prefix(node, env)
        if isinstance(node, CallExpression):
            return self._eval_call(node, env)
        if isinstance(node, IndexExpression):
            return self._eval_index(node, env)
        if isinstance(node, LetStatement):
            value = self.evaluate(node.value, env)
            if is_sentinel(value):
                return value
            return env.set(node.name.name, value)
        if isinstance(node, ReturnStatement):
            if node.value is None:
                return ReturnSignal(NULL)
            value = self.evaluate(node.value, env)
            if is_sentinel(value):
                return value
            return ReturnSignal(value)
        if isinstance(node, IfExpression):
            return self._eval_if(node, env)
        if isinstance(node, Block):
            return self._eval_block(node.statements, env)
        if isinstance(node, WhileStatement):
            return self._eval_while(node, env)
        if isinstance(node, ForStatement):
            return self._eval_for(node, env)
        if isinstance(node, FunctionLiteral):
            return Value(TYPE_FUNCTION, Function(parameters=node.parameters, body=node.body, closure=env))
        if isinstance(node, ArrayLiteral):
            elements = self._eval_expressions(node.elements, env)
            if is_sentinel(elements):
                return elements
            return Value(TYPE_ARRAY, elements)
        if isinstance(node, HashLiteral):
            return self._eval_hash_literal(node, env)
        if isinstance(node, Program):
            result = self._eval_block(node.statements, env)
            if isinstance(result, ReturnSignal):
                return result.value
            return result
        raise DotRuntimeError(f"Unsupported node {node.__class__.__name__}", location=node.location)

    def _eval_block(self, statements: List[Statement], env: Environment) -> Result:
        result: Result = NULL
        log_step = self._log_step
        evaluate = self.evaluate
        for statement in statements:
            log_step(rule=statement.__class__.__name__, location=statement.location)
            result = evaluate(statement, env)
            if is_sentinel(result):
                return result
        return result

    def _eval_expressions(self, nodes: List[Expression], env: Environment) -> Union[List[Value], ReturnSignal, ErrorValue]:
        values: List[Value] = []
        for node in nodes:
            value = self.evaluate(node, env)
            if is_sentinel(value):
                return value
            values.append(value)
        return values

    def _eval_identifier(self, node: Identifier, env: Environment) -> Result:
        # Built-ins cannot be shadowed by bindings.
        builtin = self.builtins.resolve(node.name)
        if builtin is not None:
            return builtin
        found = env.get(node.name)
        if found is not None:
            return found
        return self._error(f"identifier not found: {node.name}", node)

    def _eval_prefix(self, node: PrefixExpression, env: Environment) -> Result:
        right = self.evaluate(node.right, env)
        if is_sentinel(right):
            return right
        operator = node.operator
        if operator == "!":
            if right.type != TYPE_BOOLEAN:
                return self._error(f"invalid operation: !{right.type}", node)
            return Value(TYPE_BOOLEAN, not right.value)
        if operator in ("-", "+"):
            if right.type != TYPE_NUMBER:
                return self._error(f"invalid operation: {operator}{right.type}", node)
            return Value(TYPE_NUMBER, -right.value if operator == "-" else right.value)
        return self._error(f"unknown operator: {operator}{right.type}", node)

    def _eval_infix(self, node: InfixExpression, env: Environment) -> Result:
        operator = node.operator
        if operator == "=":
            return self._eval_assignment(node, env)
        if operator in ("+=", "-=", "*=", "/="):
            return self._eval_compound_assignment(node, env)
        # Both operands are evaluated before the operator is inspected.
        left = self.evaluate(node.left, env)
        if is_sentinel(left):
            return left
        right = self.evaluate(node.right, env)
        if is_sentinel(right):
            return right
        if left.type == TYPE_NUMBER and right.type == TYPE_NUMBER:
            return self._eval_number_infix(operator, left.value, right.value, node)
        if operator == "==":
            return _boolean(render(left) == render(right))
        if operator in ("&&", "||"):
            if left.type != TYPE_BOOLEAN or right.type != TYPE_BOOLEAN:
                return self._error(f"invalid operation: {left.type} {operator} {right.type}", node)
            if operator == "&&":
                return _boolean(left.value and right.value)
            return _boolean(left.value or right.value)
        if operator == "!=":
            # Identity, not the negation of ==.
            return _boolean(left is not right)
        if left.type == TYPE_STRING and right.type == TYPE_STRING:
            if operator != "+":
                return self._error(f"unknown operator: {left.type} {operator} {right.type}", node)
            return Value(TYPE_STRING, left.value + right.value)
        if left.type != right.type:
            return self._error(f"type mismatch: {left.type} {operator} {right.type}", node)
        return self._error(f"unknown operator: {left.type} {operator} {right.type}", node)

    def _eval_number_infix(self, operator: str, left: float, right: float, node: InfixExpression) -> Result:
        if operator == "+":
            return Value(TYPE_NUMBER, left + right)
        if operator == "-":
            return Value(TYPE_NUMBER, left - right)
        if operator == "*":
            return Value(TYPE_NUMBER, left * right)
        if operator == "/":
            return Value(TYPE_NUMBER, _divide(left, right))
        if operator == "<":
            return _boolean(left < right)
        if operator == ">":
            return _boolean(left > right)
        if operator == "<=":
            return _boolean(left <= right)
        if operator == ">=":
            return _boolean(left >= right)
        if operator == "==":
            return _boolean(left == right)
        if operator == "!=":
            return _boolean(left != right)
        return self._error(f"unknown operator: {TYPE_NUMBER} {operator} {TYPE_NUMBER}", node)

    def _eval_assignment(self, node: InfixExpression, env: Environment) -> Result:
        value = self.evaluate(node.right, env)
        if is_sentinel(value):
            return value
        target = node.left
        if isinstance(target, Identifier):
            return env.assign(target.name, value)
        if isinstance(target, IndexExpression):
            return self._assign_index(target, value, env, node)
        return self._error(f"invalid assignment target: {target}", node)

    def _assign_index(self, target: IndexExpression, value: Value, env: Environment, node: InfixExpression) -> Result:
        collection = self.evaluate(target.left, env)
        if is_sentinel(collection):
            return collection
        index = self.evaluate(target.index, env)
        if is_sentinel(index):
            return index
        if collection.type == TYPE_ARRAY:
            if index.type != TYPE_NUMBER:
                return self._error(f"index must be NUMBER, got {index.type}", node)
            elements: List[Value] = collection.value
            position = index.value
            if math.isnan(position) or position < 0 or position >= len(elements):
                return self._error("index out of range", node)
            elements[int(position)] = value
            return value
        if collection.type == TYPE_HASH:
            key = hash_key(index)
            if key is None:
                return self._error(f"unusable as hash key: {index.type}", node)
            collection.value[key] = HashPair(key=index, value=value)
            return value
        return self._error(f"index assignment not supported: {collection.type}", node)

    def _eval_compound_assignment(self, node: InfixExpression, env: Environment) -> Result:
        operator = node.operator
        target = node.left
        if not isinstance(target, Identifier):
            return self._error(f"invalid assignment target: {target}", node)
        value = self.evaluate(node.right, env)
        if is_sentinel(value):
            return value
        existing = env.get(target.name)
        if existing is None:
            return self._error(f"identifier not found: {target.name}", node)
        if existing.type != value.type:
            return self._error(f"type mismatch: {existing.type} {operator} {value.type}", node)
        # The bound value is updated in place, so every alias observes the change.
        if operator == "+=" and existing.type in (TYPE_NUMBER, TYPE_STRING):
            existing.value = existing.value + value.value
        elif existing.type == TYPE_NUMBER and operator == "-=":
            existing.value = existing.value - value.value
        elif existing.type == TYPE_NUMBER and operator == "*=":
            existing.value = existing.value * value.value
        elif existing.type == TYPE_NUMBER and operator == "/=":
            existing.value = _divide(existing.value, value.value)
        else:
            return self._error(f"invalid operation: {existing.type} {operator} {value.type}", node)
        return existing

    def _eval_if(self, node: IfExpression, env: Environment) -> Result:
        condition = self.evaluate(node.condition, env)
        if is_sentinel(condition):
            return condition
        if render(condition) == "true":
            return self._eval_block(node.consequence.statements, env)
        if node.alternative is not None:
            return self._eval_block(node.alternative.statements, env)
        return NULL

    def _eval_while(self, node: WhileStatement, env: Environment) -> Result:
        eval_expr = self.evaluate
        while True:
            condition = eval_expr(node.condition, env)
            if is_sentinel(condition):
                return condition
            if render(condition) != "true":
                break
            result = self._eval_block(node.body.statements, env)
            if is_sentinel(result):
                return result
        return Value(TYPE_STRING, "")

    def _eval_for(self, node: ForStatement, env: Environment) -> Result:
        # One scope for the whole loop, shared by every iteration.
        loop_env = Environment(parent=env)
        eval_expr = self.evaluate
        init = eval_expr(node.init, loop_env)
        if is_sentinel(init):
            return init
        while True:
            condition = eval_expr(node.condition, loop_env)
            if is_sentinel(condition):
                return condition
            if render(condition) != "true":
                break
            result = self._eval_block(node.body.statements, loop_env)
            if is_sentinel(result):
                return result
            step = eval_expr(node.increment, loop_env)
            if is_sentinel(step):
                return step
        return Value(TYPE_STRING, "")

    def _eval_call(self, node: CallExpression, env: Environment) -> Result:
        callee = self.evaluate(node.function, env)
        if is_sentinel(callee):
            return callee
        if callee.type not in (TYPE_FUNCTION, TYPE_BUILTIN):
            return self._error(f"not a function: {callee.type}", node)
        args = self._eval_expressions(node.arguments, env)
        if is_sentinel(args):
            return args
        name = node.function.name if isinstance(node.function, Identifier) else "<fn>"
        self._log_step(rule="CALL", location=node.location, extra={"function": name, "args": [a.type for a in args]})
        if callee.type == TYPE_BUILTIN:
            return self.builtins.invoke(self, callee.value, args, node.location)
        return self._call_user_function(name, callee.value, args, node.location)

    def _call_user_function(
        self,
        name: str,
        function: Function,
        args: List[Value],
        call_location: SourceLocation,
    ) -> Result:
        params = function.parameters
        if len(args) < len(params):
            missing = params[len(args)].name
            raise DotRuntimeError(
                f"Missing argument for parameter '{missing}' of {name}: expected {len(params)} but received {len(args)}",
                location=call_location,
                rule="CALL",
            )
        env = Environment(parent=function.closure)
        # Extra arguments are ignored.
        for param, arg in zip(params, args):
            env.set(param.name, arg)
        frame = self._new_frame(name, env, call_location, args)
        self.call_stack.append(frame)
        result = self._eval_block(function.body.statements, env)
        self.call_stack.pop()
        self.logger.forget(frame.frame_id)
        if isinstance(result, ReturnSignal):
            return result.value
        return result

    def _eval_index(self, node: IndexExpression, env: Environment) -> Result:
        left = self.evaluate(node.left, env)
        if is_sentinel(left):
            return left
        index = self.evaluate(node.index, env)
        if is_sentinel(index):
            return index
        if left.type == TYPE_ARRAY and index.type == TYPE_NUMBER:
            elements: List[Value] = left.value
            position = index.value
            if math.isnan(position) or position < 0 or position > len(elements) - 1:
                return NULL
            return elements[int(position)]
        if left.type == TYPE_HASH:
            key = hash_key(index)
            if key is None:
                return self._error(f"unusable as hash key: {index.type}", node)
            pair = left.value.get(key)
            return NULL if pair is None else pair.value
        return self._error(f"index operator not supported: {left.type}[{index.type}]", node)

    def _eval_hash_literal(self, node: HashLiteral, env: Environment) -> Result:
        pairs: Dict[HashKey, HashPair] = {}
        for key_node, value_node in node.pairs:
            key = self.evaluate(key_node, env)
            if is_sentinel(key):
                return key
            hashed = hash_key(key)
            if hashed is None:
                return self._error(f"unusable as hash key: {key.type}", key_node)
            value = self.evaluate(value_node, env)
            if is_sentinel(value):
                return value
            pairs[hashed] = HashPair(key=key, value=value)
        return Value(TYPE_HASH, pairs)

    def _error(self, message: str, node: Node) -> ErrorValue:
        return _error_at(message, node.location)

    def _new_frame(
        self,
        name: str,
        env: Environment,
        call_location: Optional[SourceLocation],
        arguments: Optional[List[Value]] = None,
    ) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, env=env, frame_id=frame_id, call_location=call_location, arguments=arguments or [])

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        env_snapshot = frame.env.snapshot() if (self.verbose and frame) else None
        statement = location.statement if location else None
        detail: Dict[str, Any] = {"rule": rule}
        if extra:
            detail.update(extra)
        self.logger.record(
            frame=frame,
            location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            detail=detail,
        )


def _boolean(flag: bool) -> Value:
    return TRUE if flag else FALSE


@dataclass
class TracebackFrame:
    name: str
    arguments: List[Value]
    location: Optional[SourceLocation]
    last_step: Optional[StateEntry]

    def signature(self) -> str:
        if self.name.startswith("<"):
            return self.name
        return f"{self.name}(" + ", ".join(_describe_argument(arg) for arg in self.arguments) + ")"


def _describe_argument(value: Value, limit: int = 40) -> str:
    text = render(value)
    if value.type == TYPE_STRING:
        text = '"' + text + '"'
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


def _location_json(location: Optional[SourceLocation]) -> Optional[Dict[str, Any]]:
    if location is None:
        return None
    return {
        "file": location.file,
        "line": location.line,
        "column": location.column,
        "statement": location.statement,
    }


class TracebackFormatter:
    """Renders a fatal fault against the Dot call stack.

    Each frame shows the call that created it with its argument values, the
    position reached inside it, and the last logged step (a pending ``CALL``
    names the callee and its argument types).
    """

    # Deep recursion would otherwise print thousands of identical frames.
    MAX_FRAMES = 40

    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        logger = self.interpreter.logger
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = logger.last_entry_for_frame(frame.frame_id)
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    arguments=frame.arguments,
                    location=entry.source_location if entry else frame.call_location,
                    last_step=entry,
                )
            )
        return frames

    def _step_text(self, entry: StateEntry) -> str:
        detail = entry.detail or {}
        rule = detail.get("rule", "?")
        if rule == "CALL":
            arg_types = ", ".join(detail.get("args", []))
            return f"CALL {detail.get('function', '<fn>')}({arg_types}) [{entry.state_id}]"
        return f"{rule} [{entry.state_id}]"

    def format_text(self, error: DotRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        built = self.build_frames()
        shown: List[Optional[TracebackFrame]] = list(built)
        if len(built) > self.MAX_FRAMES:
            half = self.MAX_FRAMES // 2
            shown = built[:half] + [None] + built[-half:]
        for frame in shown:
            if frame is None:
                lines.append(f"  ... {len(built) - self.MAX_FRAMES} frames omitted ...")
                continue
            loc = frame.location
            if loc is None:
                lines.append(f"  <unknown location>, in {frame.signature()}")
            else:
                lines.append(f"  File \"{loc.file}\", line {loc.line}, column {loc.column}, in {frame.signature()}")
                if loc.statement:
                    lines.append(f"    {loc.statement}")
            if frame.last_step is not None:
                lines.append(f"    last step: {self._step_text(frame.last_step)}")
                if verbose and frame.last_step.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.last_step.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        where = ""
        if error.location is not None:
            where = f" at line {error.location.line}, column {error.location.column}"
        lines.append(f"{error.__class__.__name__}: {error.message}{where} (rule: {error.rule or 'runtime'})")
        return "\n".join(lines)

    def to_json(self, error: DotRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {
                "frame_index": index,
                "name": frame.name,
                "arguments": [{"type": arg.type, "value": render(arg)} for arg in frame.arguments],
                "source_location": _location_json(frame.location),
            }
            step = frame.last_step
            if step is not None:
                entry["last_step"] = {
                    "step_index": step.step_index,
                    "state_id": step.state_id,
                    **(step.detail or {}),
                }
                if step.env_snapshot is not None:
                    entry["env_snapshot"] = step.env_snapshot
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "location": _location_json(error.location),
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
