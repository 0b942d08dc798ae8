"""A small path-expression language evaluated over JSON-shaped resources.

Supported syntax:
    name.given                      navigation, flattening arrays
    name[0].family                  positional index
    identifier.where(system='x')    filtering with a boolean criteria
    Patient.active                  leading type filter on the focus resource
    value                           choice element (valueQuantity, valueString, ...)
    a = 'x' and (b != 1 or c)       equality and boolean logic
    exists() empty() count() first() last() not() hasValue()

Every expression evaluates to an ordered collection (a Python list).
"""

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from fhirval.errors import ExpressionRuntimeError, ExpressionSyntaxError

logger = logging.getLogger(__name__)

# name -> (min args, max args)
FUNCTIONS: dict[str, tuple[int, int]] = {
    "exists": (0, 1),
    "empty": (0, 0),
    "count": (0, 0),
    "first": (0, 0),
    "last": (0, 0),
    "not": (0, 0),
    "where": (1, 1),
    "hasValue": (0, 0),
}

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>'(?:[^'\\]|\\.)*')
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<this>\$this)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>!=|=|\.|\[|\]|\(|\)|,)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and", "or", "true", "false"}


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    pos: int


def tokenize(text: str) -> list[Token]:
    """Split an expression into tokens, raising on any unrecognized character."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match:
            raise ExpressionSyntaxError(
                f"Unexpected character '{text[pos]}' at position {pos}", text, pos
            )
        kind = match.lastgroup
        value = match.group()
        if kind == "ident" and value in _KEYWORDS:
            kind = value
        if kind != "ws":
            tokens.append(Token(kind, value, pos))
        pos = match.end()
    tokens.append(Token("eof", "", len(text)))
    return tokens


# AST nodes


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class This:
    pass


@dataclass(frozen=True)
class Identifier:
    name: str


@dataclass(frozen=True)
class Member:
    target: Any
    name: str


@dataclass(frozen=True)
class Index:
    target: Any
    index: int


@dataclass(frozen=True)
class Call:
    target: Any
    name: str
    args: tuple


@dataclass(frozen=True)
class Binary:
    op: str
    left: Any
    right: Any


class _Parser:
    """Recursive-descent parser producing an AST from tokens."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _expect(self, kind: str, value: str | None = None) -> Token:
        token = self.current
        if token.kind != kind or (value is not None and token.value != value):
            expected = value or kind
            found = token.value or "end of expression"
            raise ExpressionSyntaxError(
                f"Expected '{expected}' at position {token.pos}, found '{found}'",
                self.text,
                token.pos,
            )
        return self._advance()

    def _is_op(self, value: str) -> bool:
        return self.current.kind == "op" and self.current.value == value

    def parse(self):
        if self.current.kind == "eof":
            raise ExpressionSyntaxError("Expression is empty", self.text, 0)
        node = self._parse_or()
        if self.current.kind != "eof":
            raise ExpressionSyntaxError(
                f"Unexpected token '{self.current.value}' at position {self.current.pos}",
                self.text,
                self.current.pos,
            )
        return node

    def _parse_or(self):
        node = self._parse_and()
        while self.current.kind == "or":
            self._advance()
            node = Binary("or", node, self._parse_and())
        return node

    def _parse_and(self):
        node = self._parse_equality()
        while self.current.kind == "and":
            self._advance()
            node = Binary("and", node, self._parse_equality())
        return node

    def _parse_equality(self):
        node = self._parse_postfix()
        if self._is_op("=") or self._is_op("!="):
            op = self._advance().value
            node = Binary(op, node, self._parse_postfix())
        return node

    def _parse_postfix(self):
        node = self._parse_primary()
        while True:
            if self._is_op("."):
                self._advance()
                name = self._expect("ident").value
                if self._is_op("("):
                    node = self._parse_call(node, name)
                else:
                    node = Member(node, name)
            elif self._is_op("["):
                self._advance()
                token = self._expect("number")
                if "." in token.value:
                    raise ExpressionSyntaxError(
                        f"Index must be an integer at position {token.pos}", self.text, token.pos
                    )
                self._expect("op", "]")
                node = Index(node, int(token.value))
            else:
                return node

    def _parse_primary(self):
        token = self.current
        if token.kind == "string":
            self._advance()
            return Literal(_unquote(token.value))
        if token.kind == "number":
            self._advance()
            return Literal(float(token.value) if "." in token.value else int(token.value))
        if token.kind in ("true", "false"):
            self._advance()
            return Literal(token.kind == "true")
        if token.kind == "this":
            self._advance()
            return This()
        if self._is_op("("):
            self._advance()
            node = self._parse_or()
            self._expect("op", ")")
            return node
        if token.kind == "ident":
            self._advance()
            if self._is_op("("):
                return self._parse_call(None, token.value)
            return Identifier(token.value)
        found = token.value or "end of expression"
        raise ExpressionSyntaxError(
            f"Unexpected token '{found}' at position {token.pos}", self.text, token.pos
        )

    def _parse_call(self, target, name: str):
        open_paren = self._expect("op", "(")
        if name not in FUNCTIONS:
            raise ExpressionSyntaxError(
                f"Unknown function '{name}()' at position {open_paren.pos}", self.text, open_paren.pos
            )
        args = []
        if not self._is_op(")"):
            args.append(self._parse_or())
            while self._is_op(","):
                self._advance()
                args.append(self._parse_or())
        self._expect("op", ")")
        low, high = FUNCTIONS[name]
        if not low <= len(args) <= high:
            raise ExpressionSyntaxError(
                f"Function '{name}()' takes {low}..{high} arguments, got {len(args)}",
                self.text,
                open_paren.pos,
            )
        return Call(target, name, tuple(args))


def _unquote(literal: str) -> str:
    return re.sub(r"\\(.)", r"\1", literal[1:-1])


@dataclass(frozen=True)
class CompiledExpression:
    """A parsed expression, safe to share across threads."""
    text: str
    root: Any


@runtime_checkable
class PathExpressionEvaluator(Protocol):
    """Interface consumed by the selector, rule evaluator and quality hints."""

    def compile(self, expression: str) -> CompiledExpression: ...

    def evaluate(self, compiled: CompiledExpression, instance: Any) -> list[Any]: ...


class SimplePathEvaluator:
    """Default evaluator. Compiled expressions are cached per expression text."""

    def __init__(self):
        self._cache: dict[str, CompiledExpression] = {}
        self._lock = threading.Lock()

    def compile(self, expression: str) -> CompiledExpression:
        """Compile an expression.

        Raises:
            ExpressionSyntaxError: If the expression is malformed
        """
        cached = self._cache.get(expression)
        if cached is not None:
            return cached
        logger.debug(f"Compiling expression: {expression}")
        compiled = CompiledExpression(expression, _Parser(expression).parse())
        with self._lock:
            self._cache.setdefault(expression, compiled)
        return compiled

    def evaluate(self, compiled: CompiledExpression, instance: Any) -> list[Any]:
        """Evaluate a compiled expression with the instance as focus.

        Raises:
            ExpressionRuntimeError: If evaluation fails against this instance
        """
        focus = instance if isinstance(instance, list) else [instance]
        try:
            return _eval(compiled.root, focus, is_root=True)
        except ExpressionRuntimeError as e:
            e.expression = compiled.text
            raise
        except (TypeError, ValueError, AttributeError) as e:
            raise ExpressionRuntimeError(f"Evaluation failed: {e}", compiled.text) from e

    def evaluate_text(self, expression: str, instance: Any) -> list[Any]:
        return self.evaluate(self.compile(expression), instance)


def _children(items: list[Any], name: str) -> list[Any]:
    result: list[Any] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if name in item:
            values = [item[name]]
        else:
            # choice element: value -> valueQuantity, valueString, ...
            values = [
                v for k, v in item.items()
                if k.startswith(name) and len(k) > len(name) and k[len(name)].isupper()
            ]
        for value in values:
            if isinstance(value, list):
                result.extend(v for v in value if v is not None)
            elif value is not None:
                result.append(value)
    return result


def _eval(node, focus: list[Any], is_root: bool = False) -> list[Any]:
    if isinstance(node, Literal):
        return [node.value]
    if isinstance(node, This):
        return list(focus)
    if isinstance(node, Identifier):
        if is_root and node.name[:1].isupper():
            typed = [i for i in focus if isinstance(i, dict) and "resourceType" in i]
            if typed:
                return [i for i in typed if i.get("resourceType") == node.name]
        return _children(focus, node.name)
    if isinstance(node, Member):
        return _children(_eval(node.target, focus, is_root), node.name)
    if isinstance(node, Index):
        items = _eval(node.target, focus, is_root)
        return [items[node.index]] if 0 <= node.index < len(items) else []
    if isinstance(node, Call):
        items = focus if node.target is None else _eval(node.target, focus, is_root)
        return _call(node, items)
    if isinstance(node, Binary):
        return _binary(node, focus, is_root)
    raise ExpressionRuntimeError(f"Unsupported expression node {type(node).__name__}")


def _singleton_bool(items: list[Any], context: str) -> bool | None:
    if not items:
        return None
    if len(items) == 1 and isinstance(items[0], bool):
        return items[0]
    raise ExpressionRuntimeError(f"{context} requires a single boolean, got {items!r}")


def _call(node: Call, items: list[Any]) -> list[Any]:
    name = node.name
    if name == "where":
        kept = []
        for item in items:
            if _singleton_bool(_eval(node.args[0], [item]), "where() criteria"):
                kept.append(item)
        return kept
    if name == "exists":
        if node.args:
            return [any(_singleton_bool(_eval(node.args[0], [i]), "exists() criteria") for i in items)]
        return [len(items) > 0]
    if name == "empty":
        return [len(items) == 0]
    if name == "count":
        return [len(items)]
    if name == "first":
        return items[:1]
    if name == "last":
        return items[-1:]
    if name == "not":
        value = _singleton_bool(items, "not()")
        return [] if value is None else [not value]
    if name == "hasValue":
        return [len(items) == 1 and not isinstance(items[0], (dict, list))]
    raise ExpressionRuntimeError(f"Function '{name}()' is not implemented")


def _binary(node: Binary, focus: list[Any], is_root: bool) -> list[Any]:
    left = _eval(node.left, focus, is_root)
    right = _eval(node.right, focus, is_root)
    if node.op in ("=", "!="):
        if not left or not right:
            return []
        if len(left) > 1 or len(right) > 1:
            raise ExpressionRuntimeError(
                f"Operator '{node.op}' requires single-item operands, got {len(left)} and {len(right)} items"
            )
        equal = _equals(left[0], right[0])
        return [equal if node.op == "=" else not equal]
    lhs = _singleton_bool(left, f"Operator '{node.op}'")
    rhs = _singleton_bool(right, f"Operator '{node.op}'")
    if node.op == "and":
        if lhs is False or rhs is False:
            return [False]
        if lhs is None or rhs is None:
            return []
        return [True]
    # or
    if lhs is True or rhs is True:
        return [True]
    if lhs is None or rhs is None:
        return []
    return [False]


def _equals(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    return a == b
