"""Expression language used by scoring formulas, validation rules and win checks.

Game definitions are authored in a small JavaScript-flavoured dialect
(``bid === tricks ? bid * 20 : -Math.abs(bid - tricks) * 10``). Expressions
are tokenized, parsed into an immutable tree and walked by an interpreter that
only sees the bindings it is handed, so an expression can read its context but
never change it.

Evaluation is bounded two ways: every node visit spends one step from a step
budget, and every step checks a wall-clock deadline. Running out of either
aborts the evaluation and the caller gets the safe default for its mode.
"""

import logging
import math
import re
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

FORMULA_TIMEOUT_MS = 1000
FORMULA_MAX_STEPS = 10000

NUMBER = 'number'
BOOLEAN = 'boolean'
RAW = 'raw'


class ExpressionError(Exception):
    """Raised inside the evaluator; never escapes ``evaluate``."""


class ExpressionSyntaxError(ExpressionError):
    pass


class ExpressionTimeout(ExpressionError):
    pass


class _Undefined:
    __slots__ = ()

    def __repr__(self):
        return 'undefined'

    def __bool__(self):
        return False


UNDEFINED = _Undefined()


# ---- Tokenizer ----

_TOKEN_RE = re.compile(r"""
    (?P<ws>\s+)
  | (?P<number>(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<ident>[A-Za-z_$][A-Za-z0-9_$]*)
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[-+*/%<>!?:()\[\],.])
""", re.VERBOSE)

_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', "'": "'", '"': '"'}

_KEYWORDS = {
    'true': True,
    'false': False,
    'null': None,
    'undefined': UNDEFINED,
}


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    pos: int


def _unescape(body: str) -> str:
    return re.sub(r'\\(.)', lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def _number_literal(text: str):
    number = float(text)
    if text.isdigit() and math.isfinite(number):
        return int(text)
    return number


def tokenize(expression: str) -> Tuple[Token, ...]:
    tokens = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if not match:
            raise ExpressionSyntaxError(f"Unexpected character {expression[pos]!r} at position {pos}")
        kind = match.lastgroup
        text = match.group()
        if kind == 'number':
            tokens.append(Token('number', _number_literal(text), pos))
        elif kind == 'string':
            tokens.append(Token('string', _unescape(text[1:-1]), pos))
        elif kind in ('ident', 'op'):
            tokens.append(Token(kind, text, pos))
        pos = match.end()
    tokens.append(Token('eof', None, pos))
    return tuple(tokens)


# ---- Syntax tree ----

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Ident:
    name: str


@dataclass(frozen=True)
class ArrayLiteral:
    items: tuple


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: Any


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class Logical:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class Ternary:
    test: Any
    consequent: Any
    alternate: Any


@dataclass(frozen=True)
class Member:
    obj: Any
    key: Any


@dataclass(frozen=True)
class Call:
    callee: Any
    args: tuple


# ---- Parser ----

_EQUALITY = ('===', '!==', '==', '!=')
_COMPARISON = ('<', '<=', '>', '>=')


class _Parser:
    """Recursive-descent parser, lowest precedence first."""

    def __init__(self, tokens):
        self.tokens = tokens
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _at(self, *ops) -> bool:
        token = self.current
        return token.kind == 'op' and token.value in ops

    def _expect(self, op: str) -> Token:
        if not self._at(op):
            raise ExpressionSyntaxError(f"Expected {op!r} at position {self.current.pos}")
        return self._advance()

    def parse(self):
        if self.current.kind == 'eof':
            raise ExpressionSyntaxError('Empty expression')
        node = self._ternary()
        if self.current.kind != 'eof':
            raise ExpressionSyntaxError(f"Unexpected token {self.current.value!r} at position {self.current.pos}")
        return node

    def _ternary(self):
        test = self._logical_or()
        if self._at('?'):
            self._advance()
            consequent = self._ternary()
            self._expect(':')
            alternate = self._ternary()
            return Ternary(test, consequent, alternate)
        return test

    def _logical_or(self):
        node = self._logical_and()
        while self._at('||'):
            self._advance()
            node = Logical('||', node, self._logical_and())
        return node

    def _logical_and(self):
        node = self._equality()
        while self._at('&&'):
            self._advance()
            node = Logical('&&', node, self._equality())
        return node

    def _equality(self):
        node = self._comparison()
        while self._at(*_EQUALITY):
            op = self._advance().value
            node = BinaryOp(op, node, self._comparison())
        return node

    def _comparison(self):
        node = self._additive()
        while self._at(*_COMPARISON):
            op = self._advance().value
            node = BinaryOp(op, node, self._additive())
        return node

    def _additive(self):
        node = self._multiplicative()
        while self._at('+', '-'):
            op = self._advance().value
            node = BinaryOp(op, node, self._multiplicative())
        return node

    def _multiplicative(self):
        node = self._unary()
        while self._at('*', '/', '%'):
            op = self._advance().value
            node = BinaryOp(op, node, self._unary())
        return node

    def _unary(self):
        if self._at('!', '-', '+'):
            op = self._advance().value
            return UnaryOp(op, self._unary())
        return self._postfix()

    def _postfix(self):
        node = self._primary()
        while True:
            if self._at('.'):
                self._advance()
                token = self._advance()
                if token.kind != 'ident':
                    raise ExpressionSyntaxError(f"Expected property name at position {token.pos}")
                node = Member(node, Literal(token.value))
            elif self._at('['):
                self._advance()
                key = self._ternary()
                self._expect(']')
                node = Member(node, key)
            elif self._at('('):
                self._advance()
                node = Call(node, self._arguments(')'))
            else:
                return node

    def _arguments(self, closing: str) -> tuple:
        args = []
        if not self._at(closing):
            args.append(self._ternary())
            while self._at(','):
                self._advance()
                args.append(self._ternary())
        self._expect(closing)
        return tuple(args)

    def _primary(self):
        token = self._advance()
        if token.kind in ('number', 'string'):
            return Literal(token.value)
        if token.kind == 'ident':
            if token.value in _KEYWORDS:
                return Literal(_KEYWORDS[token.value])
            return Ident(token.value)
        if token.kind == 'op' and token.value == '(':
            node = self._ternary()
            self._expect(')')
            return node
        if token.kind == 'op' and token.value == '[':
            return ArrayLiteral(self._arguments(']'))
        if token.kind == 'eof':
            raise ExpressionSyntaxError('Unexpected end of expression')
        raise ExpressionSyntaxError(f"Unexpected token {token.value!r} at position {token.pos}")


@lru_cache(maxsize=512)
def compile_expression(expression: str):
    """Parse ``expression`` into a syntax tree. Raises ExpressionSyntaxError."""
    return _Parser(tokenize(expression)).parse()


# ---- Value semantics (JavaScript-compatible where definitions rely on it) ----

def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _int_number(value):
    # ints past the double range read as +/-Infinity
    try:
        float(value)
    except OverflowError:
        return math.inf if value > 0 else -math.inf
    return value


def to_number(value):
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, int):
        return _int_number(value)
    if isinstance(value, float):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            number = float(text)
        except ValueError:
            return math.nan
        return int(number) if number.is_integer() else number
    return math.nan


def truthy(value) -> bool:
    if value is None or value is UNDEFINED or value is False:
        return False
    if is_number(value):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return len(value) > 0
    return True


def to_string(value) -> str:
    if value is None:
        return 'null'
    if value is UNDEFINED:
        return 'undefined'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        if math.isnan(value):
            return 'NaN'
        if math.isinf(value):
            return 'Infinity' if value > 0 else '-Infinity'
        if value.is_integer():
            return str(int(value))
    return str(value)


def normalize_number(value):
    """Collapse integral floats back to ints so totals stay tidy."""
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return value


def _kind(value) -> str:
    if value is None:
        return 'null'
    if value is UNDEFINED:
        return 'undefined'
    if isinstance(value, bool):
        return 'boolean'
    if is_number(value):
        return 'number'
    if isinstance(value, str):
        return 'string'
    return 'object'


def strict_equals(left, right) -> bool:
    kind = _kind(left)
    if kind != _kind(right):
        return False
    if kind == 'object':
        return left is right
    return left == right


def loose_equals(left, right) -> bool:
    left_kind, right_kind = _kind(left), _kind(right)
    if left_kind == right_kind:
        return strict_equals(left, right)
    nullish = ('null', 'undefined')
    if left_kind in nullish or right_kind in nullish:
        return left_kind in nullish and right_kind in nullish
    if 'object' in (left_kind, right_kind):
        return False
    return to_number(left) == to_number(right)


def _divide(left, right):
    if right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        return math.copysign(math.inf, left) * (math.copysign(1, right))
    return left / right


def _modulo(left, right):
    if right == 0 or math.isinf(left) or math.isnan(left) or math.isnan(right):
        return math.nan
    return math.fmod(left, right)


def _compare(op, left, right) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        a, b = to_number(left), to_number(right)
        if math.isnan(a) or math.isnan(b):
            return False
    if op == '<':
        return a < b
    if op == '<=':
        return a <= b
    if op == '>':
        return a > b
    return a >= b


# ---- Math helpers ----

def _spread(args):
    if len(args) == 1 and isinstance(args[0], (dict, list, tuple)):
        values = args[0].values() if isinstance(args[0], dict) else args[0]
        return [to_number(v) for v in values]
    return [to_number(v) for v in args]


def _abs(value=UNDEFINED):
    return abs(to_number(value))


def _min(*args):
    values = _spread(args)
    if any(math.isnan(v) for v in values):
        return math.nan
    return min(values) if values else math.inf


def _max(*args):
    values = _spread(args)
    if any(math.isnan(v) for v in values):
        return math.nan
    return max(values) if values else -math.inf


def _rounding(fn):
    def helper(value=UNDEFINED):
        number = to_number(value)
        if not math.isfinite(number):
            return number
        return fn(number)
    return helper


MATH_HELPERS = {
    'abs': _abs,
    'min': _min,
    'max': _max,
    'floor': _rounding(math.floor),
    'ceil': _rounding(math.ceil),
    'round': _rounding(lambda n: math.floor(n + 0.5)),
}

HELPERS = dict(MATH_HELPERS, Math=dict(MATH_HELPERS))


# ---- Interpreter ----

class _Interpreter:
    def __init__(self, bindings, max_steps: int, deadline: float):
        self.bindings = bindings
        self.max_steps = max_steps
        self.deadline = deadline
        self.steps = 0

    def run(self, node):
        self.steps += 1
        if self.steps > self.max_steps:
            raise ExpressionTimeout(f"Formula execution timed out after {self.max_steps} steps")
        if time.monotonic() >= self.deadline:
            raise ExpressionTimeout('Formula execution timed out')
        return self._dispatch[type(node)](self, node)

    def _literal(self, node):
        return node.value

    def _ident(self, node):
        if node.name in self.bindings:
            return self.bindings[node.name]
        if node.name in HELPERS:
            return HELPERS[node.name]
        raise ExpressionError(f"{node.name} is not defined")

    def _array(self, node):
        return [self.run(item) for item in node.items]

    def _unary(self, node):
        value = self.run(node.operand)
        if node.op == '!':
            return not truthy(value)
        number = to_number(value)
        return -number if node.op == '-' else number

    def _binary(self, node):
        left = self.run(node.left)
        right = self.run(node.right)
        op = node.op
        if op == '===':
            return strict_equals(left, right)
        if op == '!==':
            return not strict_equals(left, right)
        if op == '==':
            return loose_equals(left, right)
        if op == '!=':
            return not loose_equals(left, right)
        if op in _COMPARISON:
            return _compare(op, left, right)
        if op == '+' and (isinstance(left, str) or isinstance(right, str)):
            return to_string(left) + to_string(right)
        a, b = to_number(left), to_number(right)
        if op == '+':
            return a + b
        if op == '-':
            return a - b
        if op == '*':
            return a * b
        if op == '/':
            return _divide(a, b)
        return _modulo(a, b)

    def _logical(self, node):
        left = self.run(node.left)
        if node.op == '&&':
            return self.run(node.right) if truthy(left) else left
        return left if truthy(left) else self.run(node.right)

    def _ternary(self, node):
        if truthy(self.run(node.test)):
            return self.run(node.consequent)
        return self.run(node.alternate)

    def _member(self, node):
        obj = self.run(node.obj)
        key = self.run(node.key)
        if obj is None or obj is UNDEFINED:
            raise ExpressionError(f"Cannot read properties of {to_string(obj)} (reading '{to_string(key)}')")
        if isinstance(obj, dict):
            name = key if isinstance(key, str) else to_string(key)
            return obj.get(name, UNDEFINED)
        if isinstance(obj, (list, tuple, str)):
            if key == 'length':
                return len(obj)
            index = normalize_number(to_number(key))
            if isinstance(index, int) and 0 <= index < len(obj):
                return obj[index]
        return UNDEFINED

    def _call(self, node):
        fn = self.run(node.callee)
        if not callable(fn):
            raise ExpressionError(f"{_describe(node.callee)} is not a function")
        args = [self.run(arg) for arg in node.args]
        try:
            return fn(*args)
        except ExpressionError:
            raise
        except Exception as exc:
            raise ExpressionError(f"{_describe(node.callee)}() failed: {exc}") from exc

    _dispatch = {
        Literal: _literal,
        Ident: _ident,
        ArrayLiteral: _array,
        UnaryOp: _unary,
        BinaryOp: _binary,
        Logical: _logical,
        Ternary: _ternary,
        Member: _member,
        Call: _call,
    }


def _describe(node) -> str:
    if isinstance(node, Ident):
        return node.name
    if isinstance(node, Member) and isinstance(node.key, Literal):
        return f"{_describe(node.obj)}.{node.key.value}"
    return 'expression'


# ---- Public API ----

@dataclass(frozen=True)
class Evaluation:
    """Outcome of one evaluation: the coerced value plus an error, if any."""

    value: Any
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ExpressionEvaluator:
    """Evaluates expressions with a fixed time and step bound.

    ``mode`` selects the coercion applied to the result:

    - ``number``: non-numbers, NaN and infinities become 0
    - ``boolean``: truthiness; errors become False
    - ``raw``: the uncoerced value (errors become None)
    """

    def __init__(self, timeout_ms: int = FORMULA_TIMEOUT_MS, max_steps: int = FORMULA_MAX_STEPS):
        self.timeout_ms = timeout_ms
        self.max_steps = max_steps

    def with_timeout(self, timeout_ms: int) -> 'ExpressionEvaluator':
        return ExpressionEvaluator(timeout_ms=timeout_ms, max_steps=self.max_steps)

    def evaluate(self, expression, context, mode: str = NUMBER) -> Evaluation:
        default = _DEFAULTS[mode]
        if not isinstance(expression, str):
            return self._failed(expression, f"Expression must be a string, got {type(expression).__name__}", default)
        try:
            tree = compile_expression(expression)
            deadline = time.monotonic() + self.timeout_ms / 1000.0
            result = _Interpreter(context, self.max_steps, deadline).run(tree)
        except ExpressionTimeout as exc:
            logger.error(f"[expression-timeout] expression={expression!r} timeout_ms={self.timeout_ms} max_steps={self.max_steps}")
            return Evaluation(default, str(exc))
        except ExpressionError as exc:
            return self._failed(expression, str(exc), default)
        except RecursionError:
            return self._failed(expression, 'Expression is nested too deeply', default)
        except ArithmeticError as exc:
            return self._failed(expression, f"Arithmetic error: {exc}", default)

        if mode == BOOLEAN:
            return Evaluation(truthy(result))
        if mode == RAW:
            return Evaluation(result)
        if is_number(result):
            result = to_number(result)
        if not is_number(result) or not math.isfinite(result):
            logger.warning(f"[expression-non-numeric] expression={expression!r} result={to_string(result)}")
            return Evaluation(0, f"Formula returned non-numeric result: {to_string(result)}")
        return Evaluation(normalize_number(result))

    def number(self, expression, context):
        return self.evaluate(expression, context, NUMBER).value

    def boolean(self, expression, context) -> bool:
        return self.evaluate(expression, context, BOOLEAN).value

    @staticmethod
    def _failed(expression, message, default) -> Evaluation:
        logger.error(f"[expression-error] expression={expression!r} error={message}")
        return Evaluation(default, message)


_DEFAULTS = {NUMBER: 0, BOOLEAN: False, RAW: None}

default_evaluator = ExpressionEvaluator()


def evaluator_from_config(config) -> ExpressionEvaluator:
    """Build an evaluator from a Flask config mapping."""
    try:
        timeout_ms = int(config.get('FORMULA_TIMEOUT_MS', FORMULA_TIMEOUT_MS))
    except (TypeError, ValueError):
        timeout_ms = FORMULA_TIMEOUT_MS
    try:
        max_steps = int(config.get('FORMULA_MAX_STEPS', FORMULA_MAX_STEPS))
    except (TypeError, ValueError):
        max_steps = FORMULA_MAX_STEPS
    return ExpressionEvaluator(timeout_ms=timeout_ms, max_steps=max_steps)


def evaluate(expression, context, mode: str = NUMBER, evaluator: Optional[ExpressionEvaluator] = None) -> Evaluation:
    return (evaluator or default_evaluator).evaluate(expression, context, mode)


def evaluate_number(expression, context, evaluator: Optional[ExpressionEvaluator] = None):
    return evaluate(expression, context, NUMBER, evaluator).value


def evaluate_boolean(expression, context, evaluator: Optional[ExpressionEvaluator] = None) -> bool:
    return evaluate(expression, context, BOOLEAN, evaluator).value
